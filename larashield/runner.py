"""Run a set of analyzers against one project."""

import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence, Type, Union

from larashield.analyzers import ALL_ANALYZERS
from larashield.analyzers.base import Analyzer
from larashield.config import LarashieldConfig
from larashield.models import Result, Status
from larashield.suppression import InlineSuppressionParser

logger = logging.getLogger(__name__)


class AnalyzerRunner:
    """Configure analyzers from config and run them in isolation.

    An exception escaping one analyzer becomes an Error result for that
    analyzer only; the others still run.
    """

    def __init__(self, config: Optional[LarashieldConfig] = None,
                 base_path: Union[str, Path] = ".",
                 analyzer_classes: Optional[Sequence[Type[Analyzer]]] = None):
        self.config = config or LarashieldConfig()
        self.base_path = Path(base_path).resolve()
        classes = ALL_ANALYZERS if analyzer_classes is None else analyzer_classes
        self.analyzers: List[Analyzer] = [self._configure(cls(self.config)) for cls in classes]
        self.suppression = InlineSuppressionParser(self.base_path, self.config.suppression_keyword)
        self.elapsed = 0.0

    def _configure(self, analyzer: Analyzer) -> Analyzer:
        return (analyzer.set_base_path(self.base_path)
                .set_paths(self.config.analyze_paths)
                .set_exclude_patterns(self.config.excluded_paths))

    @property
    def enabled_analyzers(self) -> List[Analyzer]:
        disabled = set(self.config.disabled_analyzers)
        return [a for a in self.analyzers if a.id not in disabled]

    def get(self, analyzer_id: str) -> Optional[Analyzer]:
        for analyzer in self.analyzers:
            if analyzer.id == analyzer_id:
                return analyzer
        return None

    def run_analyzer(self, analyzer: Analyzer) -> Result:
        try:
            meta = analyzer.metadata()
        except Exception as e:
            logger.exception("Analyzer %s has no usable metadata", type(analyzer).__name__)
            return Result(analyzer_id=type(analyzer).__name__, status=Status.ERROR,
                          message=f"Analyzer failed: {e}")
        try:
            result = analyzer.analyze()
        except Exception as e:
            logger.exception("Analyzer %s crashed", meta.id)
            return Result(analyzer_id=meta.id, status=Status.ERROR,
                          message=f"Analyzer failed: {e}")
        return self.suppression.apply(result, include_info=meta.info_affects_status)

    def run(self, analyzer_id: str) -> Result:
        analyzer = self.get(analyzer_id)
        if analyzer is None:
            raise KeyError(f"Unknown analyzer: {analyzer_id}")
        return self.run_analyzer(analyzer)

    def run_all(self, only: Optional[Sequence[str]] = None) -> List[Result]:
        start = time.time()
        selected = self.enabled_analyzers
        if only:
            wanted = set(only)
            selected = [a for a in selected if a.id in wanted]
        results = []
        for analyzer in selected:
            logger.debug("Running %s", analyzer.id)
            results.append(self.run_analyzer(analyzer))
        self.elapsed = time.time() - start
        return results
