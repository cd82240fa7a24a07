"""Tests for the application key analyzer."""

import pytest

from larashield.analyzers.app_key import AppKeyAnalyzer
from larashield.models import Severity, Status

VALID_KEY = "base64:2fl+Ktvkfl+Fuz4Qp/A75G2RTiWVA/ZoKZvp6fiiM10="


def issue_types(result):
    return [i.metadata["issue_type"] for i in result.issues]


class TestEnvFiles:
    """APP_KEY in dotenv files."""

    def test_valid_key_passes(self, make_project, run_analyzer):
        base = make_project({".env": f"APP_NAME=Laravel\nAPP_KEY={VALID_KEY}\n"})
        result = run_analyzer(AppKeyAnalyzer, base)
        assert result.status == Status.PASSED
        assert result.message == "Application encryption key is properly configured"

    @pytest.mark.parametrize("line, issue_type, severity", [
        ("APP_KEY=", "empty_app_key", Severity.CRITICAL),
        ('APP_KEY=""', "placeholder_app_key", Severity.CRITICAL),
        ("APP_KEY=SomeRandomString", "placeholder_app_key", Severity.CRITICAL),
        ("APP_KEY=base64:your-key-here", "placeholder_app_key", Severity.CRITICAL),
        ("APP_KEY=short-key", "malformed_app_key", Severity.HIGH),
    ])
    def test_bad_keys(self, make_project, run_analyzer, line, issue_type, severity):
        base = make_project({".env": f"APP_ENV=production\n{line}\n"})
        result = run_analyzer(AppKeyAnalyzer, base)
        assert issue_types(result) == [issue_type]
        issue = result.issues[0]
        assert issue.severity == severity
        assert issue.location.file == ".env"
        assert issue.location.line == 2
        assert result.status == Status.FAILED

    def test_long_plain_key_is_accepted(self, make_project, run_analyzer):
        base = make_project({".env": "APP_KEY=" + "x" * 32 + "\n"})
        assert run_analyzer(AppKeyAnalyzer, base).status == Status.PASSED

    def test_quoted_key_and_comments(self, make_project, run_analyzer):
        base = make_project({".env": f'# APP_KEY=\nAPP_KEY="{VALID_KEY}"\n'})
        assert run_analyzer(AppKeyAnalyzer, base).status == Status.PASSED

    def test_missing_key(self, make_project, run_analyzer):
        base = make_project({
            ".env.production": "APP_ENV=production\n",
            ".env.example": "APP_ENV=local\n",
        })
        result = run_analyzer(AppKeyAnalyzer, base)
        assert issue_types(result) == ["missing_app_key"]
        assert result.issues[0].location.file == ".env.production"
        assert result.issues[0].location.line == 1

    def test_example_file_with_empty_key_is_still_checked(self, make_project, run_analyzer):
        base = make_project({".env.example": "APP_KEY=\n"})
        assert issue_types(run_analyzer(AppKeyAnalyzer, base)) == ["empty_app_key"]


class TestAppConfig:
    """key and cipher entries of config/app.php."""

    def test_env_reference_and_supported_cipher(self, make_project, run_analyzer):
        base = make_project({"config/app.php": """
            <?php
            return [
                'key' => env('APP_KEY'),
                'cipher' => 'AES-256-CBC',
            ];
        """})
        assert run_analyzer(AppKeyAnalyzer, base).status == Status.PASSED

    def test_hardcoded_key_and_weak_cipher(self, make_project, run_analyzer):
        base = make_project({"config/app.php": """
            <?php
            return [
                'key' => 'base64:hardcodedhardcodedhardcoded=',
                'cipher' => 'DES-CBC',
            ];
        """})
        result = run_analyzer(AppKeyAnalyzer, base)
        assert issue_types(result) == ["hardcoded_app_key", "unsupported_cipher"]
        hardcoded, cipher = result.issues
        assert hardcoded.severity == Severity.CRITICAL
        assert hardcoded.location.line == 3
        assert cipher.message == "Unsupported or weak cipher algorithm: des-cbc"
        assert cipher.severity == Severity.HIGH


class TestLifecycle:
    """Skip behaviour."""

    def test_skips_without_env_or_config(self, tmp_path, run_analyzer):
        result = run_analyzer(AppKeyAnalyzer, tmp_path)
        assert result.status == Status.SKIPPED
        assert result.message == "No environment files or config/app.php found"
