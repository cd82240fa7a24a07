"""Issue, result and analyzer metadata models plus the outcome reduction."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


# ============================================================================
# Enums
# ============================================================================

class Severity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

SEVERITY_ORDER = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class Status(Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


class Category(Enum):
    SECURITY = "Security"
    RELIABILITY = "Reliability"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Location:
    """Position of an issue. ``file`` is relative to the analyzed project."""
    file: str
    line: int = 1
    column: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass(frozen=True)
class Issue:
    message: str
    severity: Severity
    location: Location
    recommendation: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "message": self.message,
            "severity": self.severity.value,
            "location": self.location.to_dict(),
            "recommendation": self.recommendation,
            "metadata": dict(self.metadata),
        }
        if self.code is not None:
            data["code"] = self.code
        return data


@dataclass(frozen=True)
class AnalyzerMetadata:
    """Static description of an analyzer.

    Attributes:
        id: Stable analyzer identifier used in config and suppressions.
        name: Human readable name.
        description: One sentence summary.
        category: Report grouping.
        severity: Highest severity the analyzer normally reports.
        tags: Free-form labels for filtering.
        docs_url: Link to remediation docs, if any.
        time_to_fix: Rough remediation estimate in minutes.
        run_in_ci: False for analyzers that need a production-like environment.
        info_affects_status: When False, Info issues never change the outcome.
    """
    id: str
    name: str
    description: str
    category: Category = Category.SECURITY
    severity: Severity = Severity.HIGH
    tags: Tuple[str, ...] = ()
    docs_url: Optional[str] = None
    time_to_fix: int = 30
    run_in_ci: bool = True
    info_affects_status: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "severity": self.severity.value,
            "tags": list(self.tags),
            "docs_url": self.docs_url,
            "time_to_fix": self.time_to_fix,
        }


@dataclass
class Result:
    analyzer_id: str
    status: Status
    message: str
    issues: List[Issue] = field(default_factory=list)
    execution_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == Status.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyzer_id": self.analyzer_id,
            "status": self.status.value,
            "message": self.message,
            "issues": [i.to_dict() for i in self.issues],
            "execution_time": round(self.execution_time, 4),
            "metadata": dict(self.metadata),
        }


# ============================================================================
# Outcome reduction
# ============================================================================

def max_severity(issues: Iterable[Issue]) -> Optional[Severity]:
    highest = None
    for issue in issues:
        if highest is None or SEVERITY_ORDER[issue.severity] > SEVERITY_ORDER[highest]:
            highest = issue.severity
    return highest


def status_for_issues(issues: Iterable[Issue], include_info: bool = True) -> Status:
    """Reduce a set of issues to an outcome.

    Critical or High yields FAILED, Medium/Low/Info yields WARNING and an
    empty set yields PASSED. With ``include_info=False`` Info issues are
    treated as absent.
    """
    considered = [i for i in issues if include_info or i.severity != Severity.INFO]
    highest = max_severity(considered)
    if highest is None:
        return Status.PASSED
    if highest in (Severity.CRITICAL, Severity.HIGH):
        return Status.FAILED
    return Status.WARNING
