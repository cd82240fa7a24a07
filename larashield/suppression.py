"""
Inline suppression of issues.

A ``@larashield-ignore`` marker, bare or followed by comma separated
analyzer ids, silences issues reported on the marked line. PHP files are
checked through their comments: the comment block directly above the
issue line, or a comment on the line itself. Other files (.env, JSON) are
matched on the raw text of the issue line or the line above it.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from larashield.ast_query import comment_index, leading_comment_text, trailing_comment_text
from larashield.errors import ParseError
from larashield.models import Issue, Result, status_for_issues
from larashield.parser import SourceFile, parse_file

logger = logging.getLogger(__name__)


class InlineSuppressionParser:
    """Decide whether an issue is suppressed by a marker in the source."""

    def __init__(self, base_path: Path, keyword: str = "larashield-ignore"):
        self.base_path = Path(base_path)
        self.keyword = keyword
        self._marker_re = re.compile(
            r"@" + re.escape(keyword) + r"\b(?:[ \t]+([A-Za-z0-9_\-]+(?:[ \t]*,[ \t]*[A-Za-z0-9_\-]+)*))?")
        self._php_cache: Dict[str, Optional[Tuple[SourceFile, dict]]] = {}
        self._line_cache: Dict[str, List[str]] = {}

    def marker_applies(self, text: str, analyzer_id: str) -> bool:
        """Whether ``text`` holds a marker covering ``analyzer_id``."""
        for match in self._marker_re.finditer(text or ""):
            ids = match.group(1)
            if not ids:
                return True
            if analyzer_id in [part.strip() for part in ids.split(",")]:
                return True
        return False

    def _php_source(self, rel: str):
        if rel not in self._php_cache:
            try:
                source = parse_file(self.base_path / rel)
                self._php_cache[rel] = (source, comment_index(source.root))
            except ParseError as e:
                logger.debug("Suppression lookup skipped for %s: %s", rel, e)
                self._php_cache[rel] = None
        return self._php_cache[rel]

    def _raw_lines(self, rel: str) -> List[str]:
        if rel not in self._line_cache:
            try:
                text = (self.base_path / rel).read_text(encoding="utf-8", errors="replace")
                self._line_cache[rel] = text.splitlines()
            except OSError as e:
                logger.debug("Suppression lookup skipped for %s: %s", rel, e)
                self._line_cache[rel] = []
        return self._line_cache[rel]

    def is_suppressed(self, issue: Issue, analyzer_id: str) -> bool:
        rel = issue.location.file
        line = issue.location.line
        if rel.endswith(".php"):
            cached = self._php_source(rel)
            if cached is None:
                return False
            source, index = cached
            text = (leading_comment_text(source.root, line, index) + "\n"
                    + trailing_comment_text(source.root, line, index))
            return self.marker_applies(text, analyzer_id)

        lines = self._raw_lines(rel)
        candidates = [lines[n - 1] for n in (line, line - 1) if 1 <= n <= len(lines)]
        return any(self.marker_applies(text, analyzer_id) for text in candidates)

    def apply(self, result: Result, include_info: bool = True) -> Result:
        """Drop suppressed issues and re-reduce the outcome of a result with issues."""
        if not result.issues:
            return result
        kept = [i for i in result.issues if not self.is_suppressed(i, result.analyzer_id)]
        suppressed = len(result.issues) - len(kept)
        if not suppressed:
            return result
        logger.debug("%s: %d issue(s) suppressed inline", result.analyzer_id, suppressed)
        result.issues = kept
        result.status = status_for_issues(kept, include_info=include_info)
        result.metadata["suppressed"] = suppressed
        return result
