"""
Application key analyzer.

Validates ``APP_KEY`` in the environment files and the ``key``/``cipher``
entries of config/app.php.
"""

import logging
import re
from pathlib import Path
from typing import List

from larashield.analyzers.base import Analyzer
from larashield.ast_query import (
    array_lookup, get_node_line, is_env_call, literal_string_value, returned_array,
)
from larashield.models import AnalyzerMetadata, Category, Issue, Severity

logger = logging.getLogger(__name__)

ENV_FILES = (".env", ".env.example", ".env.production", ".env.prod")

PLACEHOLDER_KEYS = {"base64:your-key-here", "SomeRandomString", "null", '""', "''"}

SUPPORTED_CIPHERS = ("aes-128-cbc", "aes-256-cbc", "aes-128-gcm", "aes-256-gcm")

MIN_KEY_LENGTH = 32

_APP_KEY_RE = re.compile(r"^(?:export\s+)?APP_KEY\s*=\s*(.*)$", re.I)


def _strip_env_value(value: str) -> str:
    """Drop surrounding quotes and a trailing ``# comment`` from a dotenv value."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value.split(" #", 1)[0].strip()


class AppKeyAnalyzer(Analyzer):
    """Validates that the application encryption key is properly configured."""

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="app-key-security",
            name="Application Key Security Analyzer",
            description="Validates that the application encryption key is properly configured and secure",
            category=Category.SECURITY,
            severity=Severity.CRITICAL,
            tags=("encryption", "app-key", "security", "configuration"),
            docs_url="https://laravel.com/docs/encryption",
        )

    def env_files(self) -> List[Path]:
        return [p for p in (self.build_path(name) for name in ENV_FILES) if p.is_file()]

    def should_run(self) -> bool:
        return bool(self.env_files()) or self.build_path("config", "app.php").is_file()

    def get_skip_reason(self) -> str:
        return "No environment files or config/app.php found"

    def run_analysis(self):
        issues: List[Issue] = []
        for path in self.env_files():
            issues.extend(self._check_env_file(path))
        issues.extend(self._check_app_config())

        if not issues:
            return self.passed("Application encryption key is properly configured")
        return self.result_by_severity(f"Found {len(issues)} application key security issues", issues)

    # ========================================================================
    # .env files
    # ========================================================================

    def _check_env_file(self, path: Path) -> List[Issue]:
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            logger.warning("Cannot read %s: %s", self.relative_path(path), e)
            return []

        issues = []
        has_key = False
        for number, line in enumerate(lines, 1):
            stripped = line.strip()
            if stripped.startswith("#"):
                continue
            match = _APP_KEY_RE.match(stripped)
            if not match:
                continue
            has_key = True
            raw_value = match.group(1).strip()
            value = _strip_env_value(raw_value)
            location = self.location(path, number)

            if raw_value in PLACEHOLDER_KEYS or value in PLACEHOLDER_KEYS:
                issues.append(self.create_issue(
                    message="APP_KEY is set to a placeholder/example value",
                    location=location,
                    severity=Severity.CRITICAL,
                    recommendation='Run "php artisan key:generate" to generate a secure application key',
                    metadata={"file": path.name, "issue_type": "placeholder_app_key"},
                    code=stripped,
                ))
            elif not value:
                issues.append(self.create_issue(
                    message="APP_KEY is not set or is empty",
                    location=location,
                    severity=Severity.CRITICAL,
                    recommendation='Run "php artisan key:generate" to generate a secure application key',
                    metadata={"file": path.name, "issue_type": "empty_app_key"},
                    code=stripped,
                ))
            elif not value.startswith("base64:") and len(value) < MIN_KEY_LENGTH:
                issues.append(self.create_issue(
                    message="APP_KEY does not follow the expected format or is too short",
                    location=location,
                    severity=Severity.HIGH,
                    recommendation='Ensure APP_KEY is properly generated with "php artisan key:generate"',
                    metadata={"file": path.name, "length": len(value), "issue_type": "malformed_app_key"},
                    code=stripped,
                ))

        if not has_key and ".example" not in path.name:
            issues.append(self.create_issue(
                message="APP_KEY is not defined in environment file",
                location=self.location(path),
                severity=Severity.CRITICAL,
                recommendation='Add APP_KEY to your .env file and run "php artisan key:generate"',
                metadata={"file": path.name, "issue_type": "missing_app_key"},
                code="Missing APP_KEY configuration",
            ))
        return issues

    # ========================================================================
    # config/app.php
    # ========================================================================

    def _check_app_config(self) -> List[Issue]:
        path = self.build_path("config", "app.php")
        if not path.is_file():
            return []
        source = self.parse_file(path)
        if source is None:
            return []
        config = returned_array(source.root)
        if config is None:
            return []

        issues = []
        key_node = array_lookup(config, "key")
        if key_node is not None and not is_env_call(key_node) and literal_string_value(key_node) is not None:
            line = get_node_line(key_node)
            issues.append(self.create_issue(
                message="Application key is hardcoded in config/app.php instead of using environment variable",
                location=self.location(path, line),
                severity=Severity.CRITICAL,
                recommendation='Use env("APP_KEY") to reference the key from .env file',
                metadata={"issue_type": "hardcoded_app_key"},
                code=self.code_snippet(source, line),
            ))

        cipher_node = array_lookup(config, "cipher")
        cipher = literal_string_value(cipher_node)
        if cipher is not None and cipher.lower() not in SUPPORTED_CIPHERS:
            line = get_node_line(cipher_node)
            issues.append(self.create_issue(
                message=f"Unsupported or weak cipher algorithm: {cipher.lower()}",
                location=self.location(path, line),
                severity=Severity.HIGH,
                recommendation='Use "AES-256-CBC" or "AES-128-CBC" cipher',
                metadata={"cipher": cipher.lower(), "issue_type": "unsupported_cipher"},
                code=self.code_snippet(source, line),
            ))
        return issues
