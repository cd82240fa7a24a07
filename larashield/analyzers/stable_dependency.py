"""
Stable dependency analyzer.

Validates that Composer dependencies use stable releases: composer.json
stability settings, unstable version constraints, unstable locked versions,
and what ``composer update --prefer-stable`` would still change.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from larashield.analyzers.base import Analyzer
from larashield.composer import Composer, find_package_line_number, read_json_file
from larashield.errors import ComposerError
from larashield.models import AnalyzerMetadata, Category, Issue, Severity

logger = logging.getLogger(__name__)

_STABILITY_FLAG_RE = re.compile(r"@(dev|alpha|beta|rc)", re.I)
_UNSTABLE_VERSION_RE = re.compile(r"(alpha|beta|rc)", re.I)
_DRY_RUN_CHANGE_RE = re.compile(r"^\s*-\s*(Upgrading|Downgrading)\s+(\S+)\s*\((.*)\)", re.I)

MAX_EXAMPLES = 3


def _constraint_line(path: Path, package: str) -> int:
    needle = f'"{package}"'
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for number, line in enumerate(f, 1):
                if needle in line:
                    return number
    except OSError as e:
        logger.debug("Cannot scan %s for %s: %s", path, package, e)
    return 1


class StableDependencyAnalyzer(Analyzer):
    """Validates that all dependencies use stable versions."""

    def __init__(self, config=None, composer: Optional[Composer] = None):
        super().__init__(config)
        self._composer = composer

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="stable-dependencies",
            name="Stable Dependency Analyzer",
            description="Validates that all dependencies use stable versions rather than dev/alpha/beta releases",
            category=Category.SECURITY,
            severity=Severity.LOW,
            tags=("dependencies", "composer", "stability", "versions", "production"),
        )

    @property
    def composer(self) -> Composer:
        if self._composer is None:
            timeout = self.config.get_int("security.stable_dependencies.composer_timeout", 120)
            self._composer = Composer(str(self.base_path), timeout=timeout)
        return self._composer

    def should_run(self) -> bool:
        return self.build_path("composer.json").is_file()

    def get_skip_reason(self) -> str:
        return "No composer.json found - skipping stability check"

    def run_analysis(self):
        issues: List[Issue] = []
        json_path = self.build_path("composer.json")
        data = read_json_file(json_path)
        if data is not None:
            issues.extend(self._check_configuration(json_path, data))

        lock_path = self.build_path("composer.lock")
        if lock_path.is_file():
            lock = read_json_file(lock_path)
            if lock is not None:
                issues.extend(self._check_lock(lock_path, lock))

        composer_error = None
        if self.config.get_bool("security.stable_dependencies.check_with_composer", True):
            try:
                output = self.composer.update_dry_run(["--prefer-stable"])
            except ComposerError as e:
                if not issues:
                    raise
                logger.warning("%s: %s", self.id, e)
                composer_error = str(e)
            else:
                issues.extend(self._check_dry_run(json_path, output))

        if not issues:
            return self.passed("All dependencies are using stable versions")
        result = self.result_by_severity(f"Found {len(issues)} dependency stability issues", issues)
        if composer_error:
            result.metadata["composer_error"] = composer_error
        return result

    # ========================================================================
    # composer.json
    # ========================================================================

    def _check_configuration(self, path: Path, data: Dict[str, Any]) -> List[Issue]:
        issues = []
        minimum_stability = data.get("minimum-stability", "stable")
        if isinstance(minimum_stability, str) and minimum_stability.lower() != "stable":
            issues.append(self.create_issue(
                message=f'Composer minimum-stability is set to "{minimum_stability}" instead of "stable"',
                location=self.location(path, _constraint_line(path, "minimum-stability")),
                severity=Severity.MEDIUM,
                recommendation='Set "minimum-stability": "stable" in composer.json to prefer stable package versions',
                metadata={"minimum_stability": minimum_stability, "issue_type": "unstable_minimum_stability"},
                code=f'"minimum-stability": "{minimum_stability}"',
            ))

        if data.get("prefer-stable") is not True:
            issues.append(self.create_issue(
                message="Composer prefer-stable is not enabled",
                location=self.location(path, _constraint_line(path, "prefer-stable")),
                severity=Severity.LOW,
                recommendation='Set "prefer-stable": true in composer.json to prefer stable versions when possible',
                metadata={"issue_type": "prefer_stable_disabled"},
                code='Missing "prefer-stable": true',
            ))

        require = data.get("require")
        if isinstance(require, dict):
            issues.extend(self._check_constraints(path, require))
        elif require is not None:
            logger.warning("%s: \"require\" is not an object", self.relative_path(path))
        return issues

    def _check_constraints(self, path: Path, packages: Dict[str, Any]) -> List[Issue]:
        issues = []
        for package, version in packages.items():
            if package == "php" or package.startswith("ext-"):
                continue
            if not isinstance(version, str):
                continue
            line = _constraint_line(path, package)
            code = f'"{package}": "{version}"'

            if "dev-" in version.lower():
                issues.append(self.create_issue(
                    message=f'Package "{package}" requires unstable dev version: {version}',
                    location=self.location(path, line),
                    severity=Severity.MEDIUM,
                    recommendation=f'Update "{package}" to use a stable version constraint',
                    metadata={"package": package, "constraint": version, "issue_type": "dev_version_constraint"},
                    code=code,
                ))

            match = _STABILITY_FLAG_RE.search(version)
            if match:
                issues.append(self.create_issue(
                    message=f'Package "{package}" requires unstable version: {version}',
                    location=self.location(path, line),
                    severity=Severity.MEDIUM,
                    recommendation=f'Remove @{match.group(1)} flag and use stable version for "{package}"',
                    metadata={"package": package, "constraint": version,
                              "stability": match.group(1).lower(), "issue_type": "unstable_stability_flag"},
                    code=code,
                ))
        return issues

    # ========================================================================
    # composer.lock
    # ========================================================================

    def _check_lock(self, path: Path, lock: Dict[str, Any]) -> List[Issue]:
        packages = lock.get("packages")
        if not isinstance(packages, list):
            return []
        unstable = []
        first_line = None
        for package in packages:
            if not isinstance(package, dict):
                continue
            name = package.get("name") if isinstance(package.get("name"), str) else "Unknown"
            version = package.get("version") if isinstance(package.get("version"), str) else ""
            if version.startswith("dev-") or _UNSTABLE_VERSION_RE.search(version):
                unstable.append(f"{name} ({version})")
                if first_line is None:
                    first_line = find_package_line_number(path, name)
        if not unstable:
            return []

        count = len(unstable)
        examples = ", ".join(unstable[:MAX_EXAMPLES])
        more = f" and {count - MAX_EXAMPLES} more" if count > MAX_EXAMPLES else ""
        return [self.create_issue(
            message=f"Found {count} unstable package versions installed",
            location=self.location(path, first_line or 1),
            severity=Severity.LOW,
            recommendation=f'Update to stable versions: {examples}{more}. Run "composer update --prefer-stable"',
            metadata={"packages": unstable, "issue_type": "unstable_locked_versions"},
            code=f"Unstable packages: {examples}",
        )]

    # ========================================================================
    # composer update --dry-run --prefer-stable
    # ========================================================================

    def _check_dry_run(self, path: Path, output: str) -> List[Issue]:
        changes = []
        for line in output.splitlines():
            match = _DRY_RUN_CHANGE_RE.match(line)
            if match:
                changes.append(f"{match.group(2)} ({match.group(3).strip()})")
        if not changes:
            return []
        count = len(changes)
        examples = ", ".join(changes[:MAX_EXAMPLES])
        more = f" and {count - MAX_EXAMPLES} more" if count > MAX_EXAMPLES else ""
        return [self.create_issue(
            message=f"Composer would change {count} package{'' if count == 1 else 's'} when preferring stable versions",
            location=self.location(path),
            severity=Severity.LOW,
            recommendation=f'Run "composer update --prefer-stable" to move to stable releases: {examples}{more}',
            metadata={"changes": changes, "issue_type": "pending_stable_updates"},
        )]
