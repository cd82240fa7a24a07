"""Thin wrapper around the Composer CLI and Composer metadata files."""

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from larashield.errors import ComposerError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120


class Composer:
    """Run Composer commands inside a project directory."""

    def __init__(self, working_path: str, timeout: int = DEFAULT_TIMEOUT):
        self.working_path = Path(working_path)
        self.timeout = timeout

    def find_composer(self) -> List[str]:
        """Command prefix for Composer: a local composer.phar or the global binary."""
        phar = self.working_path / "composer.phar"
        if phar.is_file() and shutil.which("php"):
            return ["php", str(phar)]
        binary = shutil.which("composer")
        if binary is None:
            raise ComposerError("Composer executable not found on PATH")
        return [binary]

    def run_command(self, options: Sequence[str], include_error_output: bool = True) -> str:
        """Run ``composer <options>`` and return its output.

        Raises:
            ComposerError: when Composer is missing, times out or exits non-zero.
        """
        command = self.find_composer() + list(options)
        logger.debug("Running %s in %s", " ".join(command), self.working_path)
        try:
            result = subprocess.run(
                command,
                cwd=str(self.working_path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "COMPOSER_NO_INTERACTION": "1"},
            )
        except subprocess.TimeoutExpired as e:
            raise ComposerError(f"'{' '.join(command)}' timed out after {self.timeout}s") from e
        except OSError as e:
            raise ComposerError(f"Cannot run Composer: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip().splitlines()
            raise ComposerError(
                f"Composer exited with status {result.returncode}"
                + (f": {detail[-1]}" if detail else "")
            )
        return result.stdout + (result.stderr if include_error_output else "")

    def update_dry_run(self, options: Sequence[str] = ()) -> str:
        return self.run_command(["update", "--dry-run", "--no-interaction", *options])


def read_json_file(path: Path) -> Optional[Dict[str, Any]]:
    """Decoded JSON object, or None when unreadable, invalid or not an object."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("%s does not contain a JSON object", path)
        return None
    return data


def find_package_line_number(path: Path, package: str) -> int:
    """1-based line of ``"name": "<package>"`` in a lock file, or 1."""
    needle = f'"name": "{package}"'
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for number, line in enumerate(f, 1):
                if needle in line:
                    return number
    except OSError as e:
        logger.debug("Cannot scan %s for %s: %s", path, package, e)
    return 1
