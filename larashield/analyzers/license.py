"""
Dependency license compliance analyzer.

Reads composer.lock and checks each package license against an allow list
and a list of restrictive (copyleft) licenses. SPDX expressions are
evaluated: ``A or B`` is acceptable when either side is, ``A and B`` is
restrictive when either side is.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from larashield.analyzers.base import Analyzer
from larashield.composer import find_package_line_number, read_json_file
from larashield.models import AnalyzerMetadata, Category, Issue, Severity

logger = logging.getLogger(__name__)

DEFAULT_WHITELISTED_LICENSES = [
    "Apache-2.0", "Apache2", "BSD-2-Clause", "BSD-3-Clause",
    "LGPL-2.1-only", "LGPL-2.1", "LGPL-2.1-or-later",
    "LGPL-3.0", "LGPL-3.0-only", "LGPL-3.0-or-later",
    "MIT", "ISC", "CC0-1.0", "Unlicense", "WTFPL",
]

DEFAULT_RESTRICTIVE_LICENSES = [
    "GPL-2.0", "GPL-2.0-only", "GPL-2.0-or-later",
    "GPL-3.0", "GPL-3.0-only", "GPL-3.0-or-later",
    "AGPL-3.0", "AGPL-3.0-only", "AGPL-3.0-or-later",
]


class LicenseStatus(Enum):
    ALLOWED = 0
    UNKNOWN = 1
    RESTRICTIVE = 2


# ============================================================================
# SPDX expressions
# ============================================================================

_TOKEN_RE = re.compile(r"\(|\)|[^\s()]+")


@dataclass
class LicenseExpression:
    """A single license id, or an ``and``/``or`` over sub-expressions."""
    license: Optional[str] = None
    operator: Optional[str] = None
    operands: List["LicenseExpression"] = field(default_factory=list)

    @property
    def is_conjunction(self) -> bool:
        return self.operator == "and"


class _ExpressionParser:
    """Recursive descent over ``or`` (lowest), ``and``, then terms and parentheses."""

    def __init__(self, text: str):
        self.tokens = _TOKEN_RE.findall(text)
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Optional[str]:
        token = self.peek()
        self.pos += 1
        return token

    def parse(self) -> Optional[LicenseExpression]:
        expr = self._parse_or()
        if self.peek() is not None:
            logger.debug("Trailing tokens in license expression: %s", self.tokens[self.pos:])
        return expr

    def _parse_binary(self, operator: str, operand) -> Optional[LicenseExpression]:
        operands = []
        first = operand()
        if first is not None:
            operands.append(first)
        while self.peek() is not None and self.peek().lower() == operator:
            self.take()
            nxt = operand()
            if nxt is not None:
                operands.append(nxt)
        if not operands:
            return None
        if len(operands) == 1:
            return operands[0]
        return LicenseExpression(operator=operator, operands=operands)

    def _parse_or(self) -> Optional[LicenseExpression]:
        return self._parse_binary("or", self._parse_and)

    def _parse_and(self) -> Optional[LicenseExpression]:
        return self._parse_binary("and", self._parse_term)

    def _parse_term(self) -> Optional[LicenseExpression]:
        token = self.peek()
        if token is None or token == ")":
            return None
        if token == "(":
            self.take()
            inner = self._parse_or()
            if self.peek() == ")":
                self.take()
            return inner
        self.take()
        # "GPL-2.0 WITH Classpath-exception-2.0" is judged by its license
        if self.peek() is not None and self.peek().lower() == "with":
            self.take()
            self.take()
        return LicenseExpression(license=token)


def parse_license_expression(text: str) -> Optional[LicenseExpression]:
    """Parse an SPDX license expression; None for an empty string."""
    return _ExpressionParser(text or "").parse()


class LicensePolicy:
    """Classify license ids and evaluate expressions against allow/deny lists."""

    def __init__(self, whitelisted: List[str], restrictive: List[str]):
        self.whitelisted = {name.upper() for name in whitelisted}
        self.restrictive = {name.upper() for name in restrictive}

    def classify(self, license_id: str) -> LicenseStatus:
        candidates = [license_id.upper()]
        if license_id.endswith("+"):
            candidates.append(license_id[:-1].upper() + "-OR-LATER")
            candidates.append(license_id[:-1].upper())
        for name in candidates:
            if name in self.whitelisted:
                return LicenseStatus.ALLOWED
        for name in candidates:
            if name in self.restrictive:
                return LicenseStatus.RESTRICTIVE
        return LicenseStatus.UNKNOWN

    def evaluate(self, expr: LicenseExpression) -> Tuple[LicenseStatus, bool]:
        """Status of an expression, and whether an ``and`` made it restrictive."""
        if expr.license is not None:
            return self.classify(expr.license), False
        results = [self.evaluate(op) for op in expr.operands]
        if expr.is_conjunction:
            status = max((r[0] for r in results), key=lambda s: s.value)
            return status, status == LicenseStatus.RESTRICTIVE or any(
                r[1] for r in results if r[0] == status)
        return min(results, key=lambda r: r[0].value)

    def evaluate_licenses(self, licenses: List[str]) -> Tuple[LicenseStatus, bool]:
        """A package's license list is disjunctive: any acceptable entry will do."""
        results = []
        for text in licenses:
            expr = parse_license_expression(text)
            if expr is not None:
                results.append(self.evaluate(expr))
        if not results:
            return LicenseStatus.UNKNOWN, False
        return min(results, key=lambda r: r[0].value)


def normalize_license_field(package: Dict[str, Any]) -> List[str]:
    value = package.get("license")
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


# ============================================================================
# Analyzer
# ============================================================================

class LicenseAnalyzer(Analyzer):
    """Validates that dependencies use legally acceptable licenses."""

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="license-compliance",
            name="Dependency License Compliance Analyzer",
            description="Validates that all dependencies use legally acceptable licenses for your application type",
            category=Category.SECURITY,
            severity=Severity.HIGH,
            tags=("licenses", "legal", "compliance", "dependencies", "gpl", "commercial"),
            time_to_fix=120,
        )

    def should_run(self) -> bool:
        return self.build_path("composer.lock").is_file()

    def get_skip_reason(self) -> str:
        return "No composer.lock file found"

    def policy(self) -> LicensePolicy:
        return LicensePolicy(
            self.config.get_str_list("security.license_compliance.whitelisted_licenses",
                                     DEFAULT_WHITELISTED_LICENSES),
            self.config.get_str_list("security.license_compliance.restrictive_licenses",
                                     DEFAULT_RESTRICTIVE_LICENSES),
        )

    def run_analysis(self):
        lock_path = self.build_path("composer.lock")
        data = read_json_file(lock_path)
        if data is None:
            return self.passed("composer.lock could not be read; license check skipped")

        issues: List[Issue] = []
        policy = self.policy()
        for key, is_dev in (("packages", False), ("packages-dev", True)):
            packages = data.get(key)
            if packages is None:
                continue
            if not isinstance(packages, list):
                logger.warning("composer.lock: %s is not a list", key)
                continue
            issues.extend(self._check_packages(packages, lock_path, policy, is_dev))

        count = len(issues)
        message = ("All dependency licenses are acceptable" if not issues else
                   f"Found {count} package{'' if count == 1 else 's'} with potentially problematic licenses")
        return self.result_by_severity(message, issues)

    def _check_packages(self, packages: List[Any], lock_path: Path,
                        policy: LicensePolicy, is_dev: bool) -> List[Issue]:
        issues = []
        for package in packages:
            if not isinstance(package, dict):
                continue
            name = package.get("name") if isinstance(package.get("name"), str) else "Unknown"
            location = self.location(lock_path, find_package_line_number(lock_path, name))
            licenses = normalize_license_field(package)

            if not licenses:
                if not is_dev:
                    issues.append(self.create_issue(
                        message=f'Package "{name}" has no license information',
                        location=location,
                        severity=Severity.MEDIUM,
                        recommendation=f'Investigate license for "{name}" or contact the package maintainer',
                        metadata={"package": name, "issue_type": "missing_license"},
                    ))
                continue

            status, conjunctive = policy.evaluate_licenses(licenses)
            if status == LicenseStatus.ALLOWED:
                continue

            if status == LicenseStatus.RESTRICTIVE:
                prefix = "Dev package" if is_dev else "Package"
                message = f'{prefix} "{name}" uses restrictive license: {", ".join(licenses)}'
                if conjunctive:
                    message += " (conjunctive license expression: ALL apply)"
                if is_dev:
                    recommendation = (f'Dev dependency "{name}" has GPL/AGPL license. This is generally safe '
                                      "for development tools, but verify it's not distributed with your application")
                else:
                    recommendation = ("GPL/AGPL licenses may require your application to be open-source. "
                                      f'Review "{name}" license implications or find an alternative package')
                issues.append(self.create_issue(
                    message=message,
                    location=location,
                    severity=Severity.LOW if is_dev else Severity.CRITICAL,
                    recommendation=recommendation,
                    metadata={
                        "package": name,
                        "licenses": licenses,
                        "issue_type": "restrictive_license",
                        "type": "dev_dependency" if is_dev else "production_dependency",
                        "conjunctive": conjunctive,
                    },
                ))
            elif not is_dev:
                issues.append(self.create_issue(
                    message=f'Package "{name}" uses non-standard license: {", ".join(licenses)}',
                    location=location,
                    severity=Severity.LOW,
                    recommendation=(f'Review the "{name}" license terms to ensure compatibility with your '
                                    "application. Common safe licenses: MIT, Apache-2.0, BSD"),
                    metadata={"package": name, "licenses": licenses, "issue_type": "unknown_license"},
                ))
        return issues
