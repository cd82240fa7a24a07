"""Tests for inline issue suppression."""

import pytest

from larashield.analyzers.authentication import AuthenticationAnalyzer
from larashield.models import Issue, Location, Result, Severity, Status
from larashield.suppression import InlineSuppressionParser


def issue_at(rel, line, severity=Severity.HIGH):
    return Issue(message="m", severity=severity, location=Location(rel, line))


class TestMarker:
    """Marker syntax."""

    @pytest.mark.parametrize("text, analyzer_id, expected", [
        ("// @larashield-ignore", "password-security", True),
        ("// @larashield-ignore password-security", "password-security", True),
        ("# @larashield-ignore app-key-security, password-security", "password-security", True),
        ("// @larashield-ignore app-key-security", "password-security", False),
        ("// @larashield-ignored", "password-security", False),
        ("// larashield-ignore", "password-security", False),
        ("", "password-security", False),
    ])
    def test_marker_applies(self, tmp_path, text, analyzer_id, expected):
        parser = InlineSuppressionParser(tmp_path)
        assert parser.marker_applies(text, analyzer_id) is expected

    def test_custom_keyword(self, tmp_path):
        parser = InlineSuppressionParser(tmp_path, keyword="security-ok")
        assert parser.marker_applies("// @security-ok", "x")
        assert not parser.marker_applies("// @larashield-ignore", "x")


class TestIsSuppressed:
    """Lookup against PHP comments and raw lines."""

    def test_php_leading_and_trailing_comments(self, make_project):
        base = make_project({"routes/web.php": """
            <?php
            // Stripe signs its webhooks
            // @larashield-ignore authentication-authorization
            Route::post('/webhooks/stripe', [StripeController::class, 'handle']);
            Route::post('/a', fn () => 1); // @larashield-ignore
            Route::post('/b', fn () => 1);
            $text = '@larashield-ignore';
            Route::post('/c', fn () => 1);
        """})
        parser = InlineSuppressionParser(base)
        analyzer_id = "authentication-authorization"
        assert parser.is_suppressed(issue_at("routes/web.php", 4), analyzer_id)
        assert parser.is_suppressed(issue_at("routes/web.php", 5), analyzer_id)
        assert not parser.is_suppressed(issue_at("routes/web.php", 6), analyzer_id)
        assert not parser.is_suppressed(issue_at("routes/web.php", 8), analyzer_id)
        assert not parser.is_suppressed(issue_at("routes/web.php", 4), "password-security")

    def test_raw_files(self, make_project):
        base = make_project({".env": "# @larashield-ignore\nAPP_KEY=\nAPP_DEBUG=true\n"})
        parser = InlineSuppressionParser(base)
        assert parser.is_suppressed(issue_at(".env", 2), "app-key-security")
        assert not parser.is_suppressed(issue_at(".env", 3), "app-key-security")

    def test_unparseable_php_is_not_suppressed(self, make_project):
        base = make_project({"app/Broken.php": "<?php\n// @larashield-ignore\nfunction ( {\n"})
        parser = InlineSuppressionParser(base)
        assert not parser.is_suppressed(issue_at("app/Broken.php", 3), "x")


class TestApply:
    """Re-reduction of results after suppression."""

    def test_apply_recomputes_status(self, make_project):
        base = make_project({"app/Service.php": """
            <?php
            // @larashield-ignore
            $a = 1;
            $b = 2;
        """})
        result = Result(analyzer_id="demo", status=Status.FAILED, message="two", issues=[
            issue_at("app/Service.php", 3, Severity.CRITICAL),
            issue_at("app/Service.php", 4, Severity.LOW),
        ])
        InlineSuppressionParser(base).apply(result)
        assert [i.location.line for i in result.issues] == [4]
        assert result.status == Status.WARNING
        assert result.metadata["suppressed"] == 1

    def test_all_suppressed_passes(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::post('/users', [UserController::class, 'store']); // @larashield-ignore
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert result.status == Status.FAILED
        InlineSuppressionParser(base).apply(result)
        assert result.status == Status.PASSED
        assert result.issues == []

    def test_results_without_issues_are_untouched(self, tmp_path):
        result = Result(analyzer_id="demo", status=Status.SKIPPED, message="skip")
        assert InlineSuppressionParser(tmp_path).apply(result).status == Status.SKIPPED
