"""
Password security analyzer.

Checks hashing configuration strength, weak hashing of passwords in code,
plain-text password storage, password policy defaults, validation rules
and the password confirmation timeout.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

from tree_sitter import Node

from larashield.analyzers.base import Analyzer
from larashield.ast_query import (
    PROPERTY_ACCESS_TYPES, UNRESOLVED, array_entries, array_lookup, assignment_parts,
    call_chain, enclosing_scope, function_named, get_node_column, get_node_line,
    incremental_array_entries, is_literal, iter_calls, iter_nodes, literal_string_value,
    literal_value, named_children, node_text, object_creation_info,
    resolve_local_assignment, returned_array, static_call_on, subscript_parts, unwrap,
)
from larashield.models import AnalyzerMetadata, Category, Issue, Severity
from larashield.parser import SourceFile
from larashield.provenance import (
    PASSWORD_FIELD_RULES, ProvenanceTracker, ValueOrigin, is_password_name,
    mentions_user_input,
)

logger = logging.getLogger(__name__)

WEAK_DRIVERS = ("md5", "sha1", "sha256")

WEAK_HASH_FUNCTIONS = ("md5", "sha1")

WEAK_HASH_ALGORITHMS = ("md5", "sha1", "crc32", "md4")

DEFAULT_ALLOWED_WEAK_HASH_PATTERNS = ("cache", "fingerprint", "checksum", "etag")

SKIPPED_PATH_FRAGMENTS = ("/vendor/", "/tests/", "/Tests/", "/seeders/", "/factories/")

# Calls whose array argument is written to a model or table
PAYLOAD_METHODS = {
    "create", "forcecreate", "make", "fill", "forcefill", "update", "insert",
    "insertgetid", "upsert", "updateorcreate", "firstorcreate", "firstornew",
    "updateorinsert", "insertorignore",
}

DEFAULTS = {
    "bcrypt_min_rounds": 12,
    "argon2_min_memory": 65536,
    "argon2_min_time": 2,
    "argon2_min_threads": 2,
    "min_password_length": 8,
    "max_password_timeout": 3600,
}

_MIN_RULE_RE = re.compile(r"\bmin:(\d+)")


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def _assignment_target_name(left: Node) -> Optional[str]:
    """Password-like property or key written by an assignment, if any."""
    left = unwrap(left)
    if left is None:
        return None
    if left.type in PROPERTY_ACCESS_TYPES:
        kids = named_children(left)
        name = node_text(kids[-1]) if kids else ""
        return name if is_password_name(name) else None
    if left.type == "subscript_expression":
        base, index = subscript_parts(left)
        # Plain local arrays are judged where they are passed to a write
        if base is None or base.type == "variable_name":
            return None
        key = literal_string_value(index)
        return key if is_password_name(key) else None
    return None


class PasswordSecurityAnalyzer(Analyzer):
    """Validates password hashing and password policy configuration."""

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="password-security",
            name="Password Security Analyzer",
            description="Validates password hashing configuration and usage of secure hashing algorithms",
            category=Category.SECURITY,
            severity=Severity.CRITICAL,
            tags=("passwords", "hashing", "bcrypt", "argon2", "security"),
            time_to_fix=30,
            run_in_ci=False,
        )

    # --- configuration ---

    def setting(self, key: str) -> int:
        return self.config.get_int(f"security.password_security.{key}", DEFAULTS[key])

    @property
    def ignored_paths(self) -> List[str]:
        return self.config.get_str_list("security.password_security.ignored_paths")

    @property
    def allowed_weak_hash_patterns(self) -> List[str]:
        return self.config.get_str_list("security.password_security.allowed_weak_hash_patterns",
                                        list(DEFAULT_ALLOWED_WEAK_HASH_PATTERNS))

    # --- lifecycle ---

    def should_run(self) -> bool:
        return self.build_path("config", "hashing.php").is_file() or bool(self.php_files())

    def get_skip_reason(self) -> str:
        return "No hashing configuration or PHP files found"

    def run_analysis(self):
        issues: List[Issue] = []
        self._check_hashing_config(issues)

        tracker = ProvenanceTracker(PASSWORD_FIELD_RULES)
        seen: Set[Tuple[str, int, str]] = set()
        for path in self.php_files():
            if self._is_skipped_path(path):
                logger.debug("password-security: ignoring %s", self.relative_path(path))
                continue
            source = self.parse_file(path)
            if source is None:
                continue
            for issue in self._check_weak_hashing(source, path) + self._check_plain_text(source, path, tracker):
                key = (issue.location.file, issue.location.line, issue.metadata["issue_type"])
                if key in seen:
                    continue
                seen.add(key)
                issues.append(issue)
            if "/Requests/" in path.as_posix() or "/Controllers/" in path.as_posix():
                issues.extend(self._check_validation_rules(source, path))

        self._check_password_defaults(issues)
        self._check_confirmation_timeout(issues)

        count = len(issues)
        message = ("Password security configuration is secure" if not issues else
                   f"Found {count} password security issue{'' if count == 1 else 's'}")
        return self.result_by_severity(message, issues)

    def _is_skipped_path(self, path: Path) -> bool:
        rel = "/" + self.relative_path(path)
        if any(fragment in rel for fragment in SKIPPED_PATH_FRAGMENTS):
            return True
        return any(ignored.strip("/") and ("/" + ignored.strip("/") + "/") in rel + "/"
                   for ignored in self.ignored_paths)

    # ========================================================================
    # config/hashing.php
    # ========================================================================

    def _config_array(self, name: str) -> Tuple[Optional[SourceFile], Optional[Node]]:
        path = self.build_path("config", name)
        if not path.is_file():
            return None, None
        source = self.parse_file(path)
        if source is None:
            return None, None
        return source, returned_array(source.root)

    def _check_hashing_config(self, issues: List[Issue]):
        source, config = self._config_array("hashing.php")
        if config is None:
            return
        path = Path(source.path)

        driver_node = array_lookup(config, "driver")
        driver = literal_value(driver_node)
        if isinstance(driver, str) and driver.lower() in WEAK_DRIVERS:
            line = get_node_line(driver_node)
            issues.append(self.create_issue(
                message=f'Weak hashing driver "{driver.lower()}" configured',
                location=self.location(path, line),
                severity=Severity.CRITICAL,
                recommendation='Use "bcrypt" or "argon2id" as the hashing driver',
                metadata={"driver": driver.lower(), "issue_type": "weak_driver"},
                code=self.code_snippet(source, line),
            ))

        min_rounds = self.setting("bcrypt_min_rounds")
        rounds_node = array_lookup(config, "bcrypt", "rounds")
        rounds = literal_value(rounds_node)
        if isinstance(rounds, int) and not isinstance(rounds, bool) and rounds < min_rounds:
            line = get_node_line(rounds_node)
            issues.append(self.create_issue(
                message=f"Bcrypt rounds ({rounds}) is below recommended minimum of {min_rounds}",
                location=self.location(path, line),
                severity=Severity.CRITICAL,
                recommendation=(f"Set bcrypt rounds to at least {min_rounds} for better "
                                "protection against brute-force attacks"),
                metadata={"rounds": rounds, "minimum": min_rounds, "issue_type": "weak_bcrypt_rounds"},
                code=self.code_snippet(source, line),
            ))

        argon = array_lookup(config, "argon")
        if argon is None:
            argon = array_lookup(config, "argon2id")
        if argon is None:
            return
        checks = (
            ("memory", "argon2_min_memory", Severity.CRITICAL, "weak_argon2_memory",
             "Argon2 memory ({value} KB) is below recommended minimum of {minimum} KB",
             "Set argon2 memory to at least {minimum} KB"),
            ("time", "argon2_min_time", Severity.MEDIUM, "weak_argon2_time",
             "Argon2 time cost ({value}) is below recommended minimum of {minimum}",
             "Set argon2 time cost to at least {minimum}"),
            ("threads", "argon2_min_threads", Severity.LOW, "weak_argon2_threads",
             "Argon2 threads ({value}) is below recommended minimum of {minimum}",
             "Set argon2 threads to at least {minimum}"),
        )
        for key, setting, severity, issue_type, message, recommendation in checks:
            node = array_lookup(argon, key)
            value = literal_value(node)
            minimum = self.setting(setting)
            if not isinstance(value, int) or isinstance(value, bool) or value >= minimum:
                continue
            line = get_node_line(node)
            issues.append(self.create_issue(
                message=message.format(value=value, minimum=minimum),
                location=self.location(path, line),
                severity=severity,
                recommendation=recommendation.format(minimum=minimum),
                metadata={key: value, "minimum": minimum, "issue_type": issue_type},
                code=self.code_snippet(source, line),
            ))

    # ========================================================================
    # Code checks
    # ========================================================================

    def _check_weak_hashing(self, source: SourceFile, path: Path) -> List[Issue]:
        issues = []
        allowed = [p.lower() for p in self.allowed_weak_hash_patterns]
        for call in iter_calls(source.root, function_named(*WEAK_HASH_FUNCTIONS, "hash")):
            if call.lower_name == "hash":
                algorithm = literal_string_value(call.argument(0))
                if algorithm is None or algorithm.lower() not in WEAK_HASH_ALGORITHMS:
                    continue
                subject = call.argument(1)
                function = algorithm.lower()
            else:
                subject = call.argument(0)
                function = call.lower_name
            if subject is None or not self._mentions_password(subject):
                continue
            line = get_node_line(call.node)
            if any(p in source.line(line).lower() for p in allowed):
                continue
            issues.append(self.create_issue(
                message=f"Weak hashing function {function}() used for password",
                location=self.location(path, line, get_node_column(call.node)),
                severity=Severity.CRITICAL,
                recommendation="Use Hash::make() or bcrypt() to hash passwords",
                metadata={"function": function, "issue_type": "weak_hash_function"},
                code=self.code_snippet(source, line),
            ))
        return issues

    @staticmethod
    def _mentions_password(node: Node) -> bool:
        for sub in iter_nodes(node):
            if sub.type == "variable_name" and is_password_name(node_text(sub)):
                return True
            if sub.type in PROPERTY_ACCESS_TYPES:
                kids = named_children(sub)
                if kids and is_password_name(node_text(kids[-1])):
                    return True
            if sub.type in ("string", "encapsed_string") and is_password_name(literal_string_value(sub)):
                return True
        return False

    def _plain_text_issue(self, source: SourceFile, path: Path, node: Node,
                          field_name: str, context: str) -> Issue:
        line = get_node_line(node)
        return self.create_issue(
            message="Potential plain-text password storage detected",
            location=self.location(path, line, get_node_column(node)),
            severity=Severity.MEDIUM,
            recommendation="Always hash passwords using Hash::make() or bcrypt()",
            metadata={"field": field_name, "context": context, "issue_type": "plain_text_password"},
            code=self.code_snippet(source, line),
        )

    def _check_plain_text(self, source: SourceFile, path: Path,
                          tracker: ProvenanceTracker) -> List[Issue]:
        issues = []

        # Direct assignments: flag user input unless it was positively hashed
        for node in iter_nodes(source.root, {"assignment_expression"}):
            left, right = assignment_parts(node)
            field_name = _assignment_target_name(left)
            if field_name is None or right is None or is_literal(right):
                continue
            if tracker.classify(right) == ValueOrigin.HASHED_OR_FILTERED:
                continue
            if not mentions_user_input(right) and tracker.classify(right) != ValueOrigin.RAW_INPUT:
                continue
            if self._rehashed_later(node, left, tracker):
                continue
            issues.append(self._plain_text_issue(source, path, node, field_name, "assignment"))

        # Payload arrays: flag only values traced back to raw input
        for call in iter_calls(source.root, lambda c: c.lower_name in PAYLOAD_METHODS and c.kind != "function"):
            for arg in call.arguments:
                issue = self._check_payload(source, path, call.node, arg.value, tracker)
                if issue is not None:
                    issues.append(issue)
                    break
        for node in iter_nodes(source.root, {"object_creation_expression"}):
            created = object_creation_info(node)
            if created is None:
                continue
            for arg in created[1]:
                issue = self._check_payload(source, path, node, arg.value, tracker)
                if issue is not None:
                    issues.append(issue)
                    break
        return issues

    @staticmethod
    def _payload_entries(value: Node):
        value = unwrap(value)
        if value is None:
            return []
        if value.type == "array_creation_expression":
            return array_entries(value)
        if value.type == "variable_name":
            scope = enclosing_scope(value)
            entries = incremental_array_entries(scope, node_text(value), value)
            if entries is not None:
                return entries
            rhs = unwrap(resolve_local_assignment(scope, node_text(value), value))
            if rhs is not None and rhs.type == "array_creation_expression":
                return array_entries(rhs)
        return []

    def _check_payload(self, source: SourceFile, path: Path, call_node: Node,
                       value: Node, tracker: ProvenanceTracker) -> Optional[Issue]:
        for entry in self._payload_entries(value):
            if not is_password_name(entry.key_name):
                continue
            if tracker.classify(entry.value) == ValueOrigin.RAW_INPUT:
                return self._plain_text_issue(source, path, call_node, entry.key_name, "payload")
        return None

    @staticmethod
    def _rehashed_later(assignment: Node, left: Node, tracker: ProvenanceTracker) -> bool:
        """A later assignment to the same target in the same scope stores a hash."""
        target = node_text(left)
        scope = enclosing_scope(assignment)
        for node in iter_nodes(scope, {"assignment_expression"}, stop_at_scopes=True):
            if node.start_byte <= assignment.end_byte:
                continue
            later_left, later_right = assignment_parts(node)
            if node_text(later_left) == target and tracker.classify(later_right) == ValueOrigin.HASHED_OR_FILTERED:
                return True
        return False

    # ========================================================================
    # Validation rules
    # ========================================================================

    def _rule_min_length(self, value: Node) -> Tuple[Optional[int], Optional[Node]]:
        value = unwrap(value)
        if value is None:
            return None, None
        rules = [value]
        if value.type == "array_creation_expression":
            rules = [e.value for e in array_entries(value)]
        for rule in rules:
            text = literal_string_value(rule)
            if text is not None:
                match = _MIN_RULE_RE.search(text)
                if match:
                    return int(match.group(1)), rule
                continue
            for call in call_chain(rule):
                if call.kind == "static" and call.scope_name == "Password" and call.lower_name == "min":
                    length = literal_value(call.argument(0))
                    if isinstance(length, int) and not isinstance(length, bool):
                        return length, rule
        return None, None

    def _check_validation_rules(self, source: SourceFile, path: Path) -> List[Issue]:
        issues = []
        minimum = self.setting("min_password_length")
        for array in iter_nodes(source.root, {"array_creation_expression"}):
            for entry in array_entries(array):
                if not is_password_name(entry.key_name):
                    continue
                length, rule = self._rule_min_length(entry.value)
                if length is None or length >= minimum:
                    continue
                line = get_node_line(rule)
                issues.append(self.create_issue(
                    message=(f"Password validation requires only {length} characters "
                             f"(minimum recommended: {minimum})"),
                    location=self.location(path, line),
                    severity=Severity.MEDIUM,
                    recommendation=("Set minimum password length to at least "
                                    f"{minimum} characters: 'password' => ['required', Password::min({minimum})]"),
                    metadata={"min_length": length, "issue_type": "weak_validation_min_length"},
                    code=self.code_snippet(source, line),
                ))
        return issues

    # ========================================================================
    # Password::defaults()
    # ========================================================================

    def _policy_paths(self) -> List[Path]:
        paths = []
        providers = self.build_path("app", "Providers")
        if providers.is_dir():
            paths.extend(sorted(providers.glob("*.php")))
        bootstrap = self.build_path("bootstrap", "app.php")
        if bootstrap.is_file():
            paths.append(bootstrap)
        return paths

    def _check_password_defaults(self, issues: List[Issue]):
        paths = self._policy_paths()
        if not any(p.parent.name == "Providers" for p in paths):
            return

        defaults_call = None
        for path in paths:
            source = self.parse_file(path)
            if source is None:
                continue
            found = next(iter_calls(source.root, static_call_on("Password", "defaults")), None)
            if found is not None:
                defaults_call = (found, path)
                break

        location = self.location(self.build_path("app", "Providers", "AppServiceProvider.php"))
        if defaults_call is None:
            issues.append(self.create_issue(
                message="No Password::defaults() configured in service providers",
                location=location,
                severity=Severity.MEDIUM,
                recommendation=("Define password validation defaults in a service provider boot() method: "
                                "Password::defaults(fn () => Password::min(8)->mixedCase()->uncompromised());"),
                metadata={"issue_type": "missing_password_defaults"},
            ))
            return

        call, path = defaults_call
        location = self.location(path, get_node_line(call.node))
        minimum = self.setting("min_password_length")
        min_length = None
        methods = set()
        for inner in iter_calls(call.node, lambda c: c.node.start_byte != call.node.start_byte):
            methods.add(inner.lower_name)
            if inner.kind == "static" and inner.scope_name == "Password" and inner.lower_name == "min":
                value = literal_value(inner.argument(0))
                if isinstance(value, int) and not isinstance(value, bool):
                    min_length = value

        if min_length is None or min_length < minimum:
            issues.append(self.create_issue(
                message=f"Password::defaults() does not enforce minimum {minimum} character length",
                location=location,
                severity=Severity.MEDIUM,
                recommendation=f"Set minimum password length: Password::min({minimum})",
                metadata={"min_length": min_length, "issue_type": "weak_password_min_length"},
            ))
        if "mixedcase" not in methods:
            issues.append(self.create_issue(
                message="Password::defaults() does not require mixed case characters",
                location=location,
                severity=Severity.LOW,
                recommendation="Add mixed case requirement: Password::min(8)->mixedCase()",
                metadata={"issue_type": "no_mixed_case_requirement"},
            ))
        if "uncompromised" not in methods:
            issues.append(self.create_issue(
                message="Password::defaults() does not check against breached password databases",
                location=location,
                severity=Severity.LOW,
                recommendation="Add breached password check: Password::min(8)->uncompromised()",
                metadata={"issue_type": "no_breached_password_check"},
            ))

    # ========================================================================
    # config/auth.php
    # ========================================================================

    def _check_confirmation_timeout(self, issues: List[Issue]):
        source, config = self._config_array("auth.php")
        if config is None:
            return
        node = array_lookup(config, "password_timeout")
        timeout = literal_value(node)
        maximum = self.setting("max_password_timeout")
        if timeout is UNRESOLVED or not isinstance(timeout, int) or isinstance(timeout, bool):
            return
        if timeout <= maximum:
            return
        line = get_node_line(node)
        issues.append(self.create_issue(
            message=(f"Password confirmation timeout is {timeout} seconds "
                     f"({format_duration(timeout)}) - consider reducing"),
            location=self.location(Path(source.path), line),
            severity=Severity.LOW,
            recommendation=(f"Reduce password confirmation timeout to {maximum} seconds "
                            f"({format_duration(maximum)}) or less"),
            metadata={"timeout_seconds": timeout, "issue_type": "long_password_confirmation_timeout"},
            code=self.code_snippet(source, line),
        ))
