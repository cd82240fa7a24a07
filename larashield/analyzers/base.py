"""Analyzer contract shared by every concrete analyzer."""

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from larashield.config import DEFAULT_ANALYZE_PATHS, DEFAULT_EXCLUDED_PATHS, LarashieldConfig
from larashield.errors import ExternalToolError, ParseError
from larashield.files import list_files
from larashield.models import (
    AnalyzerMetadata, Issue, Location, Result, Severity, Status, status_for_issues,
)
from larashield.parser import SourceFile, parse_file

logger = logging.getLogger(__name__)


class Analyzer:
    """
    Base class for analyzers.

    Subclasses implement metadata() and run_analysis(), and usually
    should_run()/get_skip_reason(). analyze() drives the lifecycle: Skipped
    when should_run() is false, Error when an external tool fails,
    otherwise whatever run_analysis() returns.
    """

    def __init__(self, config: Optional[LarashieldConfig] = None):
        self.config = config or LarashieldConfig()
        self.base_path = Path(os.getcwd())
        self.paths: List[str] = list(DEFAULT_ANALYZE_PATHS)
        self.exclude_patterns: List[str] = list(DEFAULT_EXCLUDED_PATHS)

    # --- metadata ---

    def metadata(self) -> AnalyzerMetadata:
        raise NotImplementedError

    @property
    def id(self) -> str:
        return self.metadata().id

    # --- configuration ---

    def set_base_path(self, base_path: Union[str, Path]) -> "Analyzer":
        self.base_path = Path(base_path).resolve()
        return self

    def set_paths(self, paths: Sequence[str]) -> "Analyzer":
        self.paths = list(paths)
        return self

    def set_exclude_patterns(self, patterns: Sequence[str]) -> "Analyzer":
        self.exclude_patterns = list(patterns)
        return self

    def build_path(self, *parts: str) -> Path:
        return self.base_path.joinpath(*parts)

    def relative_path(self, path: Union[str, Path]) -> str:
        try:
            return Path(path).resolve().relative_to(self.base_path).as_posix()
        except ValueError:
            return Path(path).as_posix()

    def php_files(self, subdirs: Optional[Sequence[str]] = None) -> List[Path]:
        """PHP files under the analyzed paths (or ``subdirs``), excluding vendored code."""
        return list_files(
            str(self.base_path),
            include_paths=subdirs if subdirs is not None else self.paths,
            suffixes=(".php",),
            exclude_patterns=self.exclude_patterns,
        )

    def parse_file(self, path: Union[str, Path]) -> Optional[SourceFile]:
        """Parse a PHP file; syntax errors skip the file rather than fail the run."""
        try:
            return parse_file(path)
        except ParseError as e:
            logger.debug("%s: skipping %s: %s", self.id, self.relative_path(path), e)
            return None

    # --- lifecycle ---

    def should_run(self) -> bool:
        return True

    def get_skip_reason(self) -> str:
        return "Analyzer is not applicable to this project"

    def run_analysis(self) -> Result:
        raise NotImplementedError

    def analyze(self) -> Result:
        meta = self.metadata()
        start = time.time()
        if not self.should_run():
            result = self.skipped(self.get_skip_reason())
        else:
            try:
                result = self.run_analysis()
            except ExternalToolError as e:
                logger.warning("%s: %s", meta.id, e)
                result = self.error(str(e))
        result.execution_time = time.time() - start
        result.metadata.setdefault("analyzer", meta.to_dict())
        return result

    # --- results ---

    def _result(self, status: Status, message: str, issues: Optional[List[Issue]] = None) -> Result:
        return Result(analyzer_id=self.id, status=status, message=message, issues=list(issues or []))

    def passed(self, message: str) -> Result:
        return self._result(Status.PASSED, message)

    def skipped(self, message: str) -> Result:
        return self._result(Status.SKIPPED, message)

    def error(self, message: str) -> Result:
        return self._result(Status.ERROR, message)

    def result_by_severity(self, message: str, issues: List[Issue]) -> Result:
        """Reduce ``issues`` to an outcome by their highest severity."""
        status = status_for_issues(issues, include_info=self.metadata().info_affects_status)
        return self._result(status, message, issues)

    # --- issues ---

    def location(self, path: Union[str, Path], line: int = 1, column: int = 0) -> Location:
        return Location(file=self.relative_path(path), line=max(1, line), column=column)

    def create_issue(self, message: str, location: Location, severity: Severity,
                     recommendation: str = "", metadata: Optional[Dict[str, Any]] = None,
                     code: Optional[str] = None) -> Issue:
        return Issue(
            message=message,
            severity=severity,
            location=location,
            recommendation=recommendation,
            metadata=dict(metadata or {}),
            code=code,
        )

    @staticmethod
    def code_snippet(source: Optional[SourceFile], line: int) -> Optional[str]:
        if source is None:
            return None
        text = source.line(line).strip()
        return text or None
