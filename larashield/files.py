"""Project file discovery."""

import fnmatch
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_DIRS = ("vendor", "node_modules", "storage", ".git", "bootstrap/cache")


def _is_excluded(rel: str, excluded_dirs: Iterable[str], exclude_patterns: Iterable[str]) -> bool:
    for d in excluded_dirs:
        d = d.strip("/")
        if rel == d or rel.startswith(d + "/") or f"/{d}/" in f"/{rel}":
            return True
    for pattern in exclude_patterns:
        if fnmatch.fnmatch(rel, pattern):
            return True
    return False


def list_files(base_dir: str,
               include_paths: Optional[Sequence[str]] = None,
               suffixes: Sequence[str] = (".php",),
               excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
               exclude_patterns: Iterable[str] = ()) -> List[Path]:
    """Return files under ``base_dir`` with one of ``suffixes``, sorted.

    ``include_paths`` restricts the walk to these project-relative files or
    directories; missing entries are ignored. Vendored and generated
    directories are never walked.
    """
    base = Path(base_dir)
    if not base.is_dir():
        return []

    roots = [base / p for p in include_paths] if include_paths else [base]
    excluded_dirs = list(excluded_dirs)
    exclude_patterns = list(exclude_patterns)
    seen = set()
    result: List[Path] = []

    for root in roots:
        if root.is_file():
            candidates = [root]
        elif root.is_dir():
            candidates = sorted(root.rglob("*"))
        else:
            continue
        for path in candidates:
            if not path.is_file() or not path.name.endswith(tuple(suffixes)):
                continue
            try:
                rel = path.relative_to(base).as_posix()
            except ValueError:
                rel = path.as_posix()
            if rel in seen or _is_excluded(rel, excluded_dirs, exclude_patterns):
                continue
            seen.add(rel)
            result.append(path)

    result.sort()
    logger.debug("Found %d file(s) under %s", len(result), base_dir)
    return result
