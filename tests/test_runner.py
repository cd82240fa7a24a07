"""Tests for the analyzer runner."""

import pytest

from larashield.analyzers import ALL_ANALYZERS
from larashield.analyzers.app_key import AppKeyAnalyzer
from larashield.analyzers.authentication import AuthenticationAnalyzer
from larashield.analyzers.base import Analyzer
from larashield.config import LarashieldConfig
from larashield.models import AnalyzerMetadata, Severity, Status
from larashield.runner import AnalyzerRunner


class CrashingAnalyzer(Analyzer):
    def metadata(self):
        return AnalyzerMetadata(id="crashing", name="Crashing", description="Always raises")

    def run_analysis(self):
        raise RuntimeError("boom")


class InfoOnlyAnalyzer(Analyzer):
    def metadata(self):
        return AnalyzerMetadata(id="info-only", name="Info", description="Reports one info issue",
                                info_affects_status=False)

    def run_analysis(self):
        issue = self.create_issue("note", self.location("app/x.php"), Severity.INFO)
        return self.result_by_severity("one note", [issue])


UNPROTECTED_ROUTE = """
    <?php
    Route::post('/users', [UserController::class, 'store']);
"""


class TestRunner:
    """Configuration, isolation and selection."""

    def test_default_analyzer_set(self, tmp_path):
        runner = AnalyzerRunner(base_path=tmp_path)
        assert len(runner.analyzers) == len(ALL_ANALYZERS)
        ids = [a.id for a in runner.analyzers]
        assert len(set(ids)) == len(ids)
        assert "authentication-authorization" in ids

    def test_analyzers_receive_config_paths(self, tmp_path):
        config = LarashieldConfig(data={"paths": {"analyze": ["src"]}, "excluded_paths": ["src/gen/*"]})
        runner = AnalyzerRunner(config, tmp_path, [AuthenticationAnalyzer])
        analyzer = runner.analyzers[0]
        assert analyzer.paths == ["src"]
        assert analyzer.exclude_patterns == ["src/gen/*"]
        assert analyzer.base_path == tmp_path.resolve()

    def test_crash_is_isolated(self, make_project):
        base = make_project({"routes/web.php": UNPROTECTED_ROUTE})
        runner = AnalyzerRunner(base_path=base, analyzer_classes=[CrashingAnalyzer, AuthenticationAnalyzer])
        results = {r.analyzer_id: r for r in runner.run_all()}
        assert results["crashing"].status == Status.ERROR
        assert results["crashing"].message == "Analyzer failed: boom"
        assert results["authentication-authorization"].status == Status.FAILED
        assert runner.elapsed >= 0

    def test_disabled_analyzers_are_not_run(self, make_project):
        base = make_project({"routes/web.php": UNPROTECTED_ROUTE, ".env": "APP_KEY=\n"})
        config = LarashieldConfig(data={"disabled_analyzers": ["authentication-authorization"]})
        runner = AnalyzerRunner(config, base, [AuthenticationAnalyzer, AppKeyAnalyzer])
        assert [r.analyzer_id for r in runner.run_all()] == ["app-key-security"]

    def test_only_selection(self, make_project):
        base = make_project({"routes/web.php": UNPROTECTED_ROUTE, ".env": "APP_KEY=\n"})
        runner = AnalyzerRunner(base_path=base, analyzer_classes=[AuthenticationAnalyzer, AppKeyAnalyzer])
        assert [r.analyzer_id for r in runner.run_all(only=["app-key-security"])] == ["app-key-security"]

    def test_run_by_id(self, make_project):
        base = make_project({".env": "APP_KEY=\n"})
        runner = AnalyzerRunner(base_path=base, analyzer_classes=[AppKeyAnalyzer])
        assert runner.run("app-key-security").status == Status.FAILED
        with pytest.raises(KeyError):
            runner.run("no-such-analyzer")

    def test_suppression_is_applied(self, make_project):
        base = make_project({".env": "# @larashield-ignore app-key-security\nAPP_KEY=\n"})
        runner = AnalyzerRunner(base_path=base, analyzer_classes=[AppKeyAnalyzer])
        result = runner.run("app-key-security")
        assert result.status == Status.PASSED
        assert result.metadata["suppressed"] == 1

    def test_info_issues_do_not_affect_status_when_declared(self, tmp_path):
        runner = AnalyzerRunner(base_path=tmp_path, analyzer_classes=[InfoOnlyAnalyzer])
        result = runner.run("info-only")
        assert result.status == Status.PASSED
        assert len(result.issues) == 1
