"""Shared fixtures: throwaway Laravel project trees and parsed PHP snippets."""

import textwrap
from pathlib import Path
from typing import Dict

import pytest

from larashield.config import LarashieldConfig
from larashield.parser import parse_source


def write_project(base: Path, files: Dict[str, str]) -> Path:
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return base


@pytest.fixture
def make_project(tmp_path):
    """Build a project tree from ``{relative path: content}`` and return its root."""
    def _make(files: Dict[str, str]) -> Path:
        return write_project(tmp_path, files)
    return _make


@pytest.fixture
def parse_php_code():
    """Parse a PHP snippet (``<?php`` is prepended when missing)."""
    def _parse(code: str):
        code = textwrap.dedent(code).strip()
        if not code.startswith("<?php"):
            code = "<?php\n" + code
        return parse_source(code + "\n")
    return _parse


@pytest.fixture
def run_analyzer():
    """Run an analyzer class against a project root with an optional config dict."""
    def _run(analyzer_cls, base: Path, config: Dict = None, **kwargs):
        analyzer = analyzer_cls(LarashieldConfig(data=config or {}), **kwargs)
        analyzer.set_base_path(base)
        return analyzer.analyze()
    return _run
