"""Tests for issue/result models and the outcome reduction."""

import pytest

from larashield.models import (
    AnalyzerMetadata, Issue, Location, Result, Severity, Status, max_severity,
    status_for_issues,
)


def make_issue(severity: Severity) -> Issue:
    return Issue(message="m", severity=severity, location=Location("app/X.php", 3))


class TestStatusForIssues:
    """The severity-to-outcome reduction."""

    def test_no_issues_passes(self):
        assert status_for_issues([]) == Status.PASSED

    @pytest.mark.parametrize("severity", [Severity.CRITICAL, Severity.HIGH])
    def test_critical_and_high_fail(self, severity):
        assert status_for_issues([make_issue(severity)]) == Status.FAILED

    @pytest.mark.parametrize("severity", [Severity.MEDIUM, Severity.LOW, Severity.INFO])
    def test_lower_severities_warn(self, severity):
        assert status_for_issues([make_issue(severity)]) == Status.WARNING

    def test_highest_severity_decides(self):
        issues = [make_issue(Severity.LOW), make_issue(Severity.CRITICAL), make_issue(Severity.INFO)]
        assert status_for_issues(issues) == Status.FAILED

    def test_info_can_be_excluded(self):
        assert status_for_issues([make_issue(Severity.INFO)], include_info=False) == Status.PASSED


class TestModels:
    """Serialisation and helpers."""

    def test_max_severity(self):
        issues = [make_issue(Severity.LOW), make_issue(Severity.HIGH)]
        assert max_severity(issues) == Severity.HIGH
        assert max_severity([]) is None

    def test_issue_to_dict(self):
        issue = Issue(message="Weak", severity=Severity.MEDIUM, location=Location("a.php", 2, 4),
                      recommendation="Fix", metadata={"issue_type": "x"}, code="$a = 1;")
        data = issue.to_dict()
        assert data["severity"] == "MEDIUM"
        assert data["location"] == {"file": "a.php", "line": 2, "column": 4}
        assert data["metadata"] == {"issue_type": "x"}
        assert data["code"] == "$a = 1;"

    def test_result_to_dict(self):
        result = Result(analyzer_id="demo", status=Status.WARNING, message="one",
                        issues=[make_issue(Severity.LOW)])
        data = result.to_dict()
        assert data["analyzer_id"] == "demo"
        assert data["status"] == "warning"
        assert len(data["issues"]) == 1
        assert not result.failed

    def test_metadata_is_immutable(self):
        meta = AnalyzerMetadata(id="demo", name="Demo", description="d", run_in_ci=False)
        with pytest.raises(Exception):
            meta.run_in_ci = True
        assert meta.to_dict()["id"] == "demo"
