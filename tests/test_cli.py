"""Tests for the command line entry point."""

import json

import pytest

from larashield.cli import build_parser, main


class TestParser:
    """Argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.target == "."
        assert args.format == "console"
        assert args.analyzers is None
        assert args.fail_on is None

    def test_unknown_analyzer_is_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--analyzer", "nope"])


class TestMain:
    """End-to-end runs against small projects."""

    def test_json_output_and_exit_code(self, make_project, capsys):
        base = make_project({".env": "APP_KEY=\n"})
        code = main([str(base), "--format", "json", "--analyzer", "app-key-security"])
        data = json.loads(capsys.readouterr().out)
        assert code == 1
        assert [r["analyzer_id"] for r in data["results"]] == ["app-key-security"]
        assert data["results"][0]["status"] == "failed"

    def test_fail_on_never(self, make_project, capsys):
        base = make_project({".env": "APP_KEY=\n"})
        code = main([str(base), "--format", "json", "--analyzer", "app-key-security",
                     "--fail-on", "never"])
        capsys.readouterr()
        assert code == 0

    def test_fail_on_from_config(self, make_project, capsys):
        base = make_project({
            ".env": "APP_KEY=short\n",
            ".larashield.yml": "fail_on: high\n",
        })
        code = main([str(base), "--format", "json", "--analyzer", "app-key-security"])
        capsys.readouterr()
        assert code == 1

    def test_output_file(self, make_project, tmp_path):
        base = make_project({".env": "APP_KEY=base64:2fl+Ktvkfl+Fuz4Qp/A75G2RTiWVA/ZoKZvp6fiiM10=\n"})
        report = tmp_path / "report.txt"
        code = main([str(base), "--analyzer", "app-key-security", "--no-banner", "-o", str(report)])
        assert code == 0
        assert "[PASSED] app-key-security" in report.read_text()

    def test_missing_target(self, tmp_path):
        assert main([str(tmp_path / "missing")]) == 2

    def test_bad_config(self, make_project):
        base = make_project({".larashield.yml": "fail_on: [oops\n"})
        assert main([str(base)]) == 2
