"""
Authentication & authorization analyzer.

Flags state-mutating routes without authentication middleware, sensitive
controller actions with no protection at any level, and ``Auth::user()``
dereferences that are not guarded by an authentication check.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from larashield.analyzers.base import Analyzer
from larashield.ast_query import (
    CALL_TYPES, FUNCTION_SCOPE_TYPES, METHOD_CALL_TYPES, PROPERTY_ACCESS_TYPES, any_of,
    array_entries, binary_operands, binary_operator, call_chain, call_info, class_methods,
    contains, declaration_name, enclosing_scope, facade_call, find_calls, function_body,
    get_node_column, get_node_line, iter_calls, iter_classes, iter_nodes, is_public_method,
    literal_string_value, method_modifiers, method_named, named_children, node_text,
    object_creation_info, unwrap,
)
from larashield.files import list_files
from larashield.models import AnalyzerMetadata, Category, Issue, Severity
from larashield.parser import SourceFile
from larashield.routes import (
    DEFAULT_AUTH_MIDDLEWARE, RouteDefinition, collect_routes, has_auth_middleware,
    is_publicly_exempt, middleware_names,
)

logger = logging.getLogger(__name__)

SENSITIVE_CONTROLLER_METHODS = ("destroy", "delete", "update", "edit", "store", "create")

SKIPPED_CONTROLLER_METHODS = {"__construct", "__invoke", "middleware"}

POLICY_METHODS = {"authorize", "authorizeforuser", "can", "cannot"}

GATE_METHODS = {"authorize", "allows", "denies", "check", "any", "none", "inspect"}

AUTH_CHECK_METHODS = {"check", "guest"}

AUTHORIZATION_CALL = any_of(method_named(*POLICY_METHODS), facade_call("Gate", *GATE_METHODS))


def _names_auth_check(call) -> bool:
    return call.lower_name in AUTH_CHECK_METHODS


@dataclass
class MiddlewareRule:
    """One middleware registration on a controller, limited by only/except."""
    middleware: List[str]
    only: Optional[Set[str]] = None
    except_: Optional[Set[str]] = None

    def applies_to(self, action: str) -> bool:
        if self.only is not None and action not in self.only:
            return False
        if self.except_ is not None and action in self.except_:
            return False
        return True


@dataclass
class ControllerInfo:
    name: str
    path: Path
    source: SourceFile
    node: Node
    rules: List[MiddlewareRule] = field(default_factory=list)
    policy_actions: Optional[Set[str]] = None  # authorizeResource(); None means not used

    def protects(self, action: str, recognized) -> bool:
        if self.policy_actions is not None and action in self.policy_actions:
            return True
        return any(rule.applies_to(action) and has_auth_middleware(rule.middleware, recognized)
                   for rule in self.rules)


def _string_set(node: Optional[Node]) -> Set[str]:
    node = unwrap(node)
    if node is None:
        return set()
    if node.type == "array_creation_expression":
        return {v for v in (literal_string_value(e.value) for e in array_entries(node)) if v}
    value = literal_string_value(node)
    return {value} if value else set()


def is_auth_check_call(node: Node) -> bool:
    """``Auth::check()``, ``auth()->guest()``, ``Auth::user()`` and friends."""
    info = call_info(node)
    if info is None:
        return False
    if info.kind == "static" and info.scope_name == "Auth":
        return info.lower_name in AUTH_CHECK_METHODS | {"user", "id"}
    if info.kind == "method" and info.lower_name in AUTH_CHECK_METHODS | {"user", "id"}:
        receiver = call_info(unwrap(info.receiver))
        return receiver is not None and receiver.kind == "function" and receiver.lower_name == "auth"
    return False


def _mentions_auth_check(node: Optional[Node]) -> bool:
    if node is None:
        return False
    return any(is_auth_check_call(n) for n in iter_nodes(node, CALL_TYPES))


def auth_user_label(node: Node) -> Optional[str]:
    """``Auth::user()`` or ``auth()->user()`` when ``node`` is such a call."""
    info = call_info(node)
    if info is None or info.lower_name != "user":
        return None
    if info.kind == "static" and info.scope_name == "Auth":
        return "Auth::user()"
    if info.kind == "method":
        receiver = call_info(unwrap(info.receiver))
        if receiver is not None and receiver.kind == "function" and receiver.lower_name == "auth":
            return "auth()->user()"
    return None


class AuthenticationAnalyzer(Analyzer):
    """Detects missing authentication and authorization on routes and controllers."""

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="authentication-authorization",
            name="Authentication & Authorization Analyzer",
            description="Detects missing authentication and authorization protection on routes and controllers",
            category=Category.SECURITY,
            severity=Severity.HIGH,
            tags=("authentication", "authorization", "security", "middleware"),
            time_to_fix=25,
        )

    # --- configuration ---

    @property
    def public_routes(self) -> List[str]:
        return self.config.get_str_list("security.authentication.public_routes")

    @property
    def auth_middleware(self) -> List[str]:
        return self.config.get_str_list("security.authentication.auth_middleware",
                                        list(DEFAULT_AUTH_MIDDLEWARE))

    @property
    def sensitive_methods(self) -> List[str]:
        return self.config.get_str_list("security.authentication.sensitive_methods",
                                        list(SENSITIVE_CONTROLLER_METHODS))

    # --- lifecycle ---

    def route_files(self) -> List[Path]:
        return list_files(str(self.base_path), include_paths=["routes"],
                          exclude_patterns=self.exclude_patterns)

    def controller_files(self) -> List[Path]:
        return [p for p in self.php_files()
                if "/Controllers/" in p.as_posix() or p.name.endswith("Controller.php")]

    def should_run(self) -> bool:
        return bool(self.route_files()) or bool(self.php_files())

    def get_skip_reason(self) -> str:
        return "No routes or controllers found to analyze"

    def run_analysis(self):
        issues: List[Issue] = []
        recognized = self.auth_middleware

        controllers = self._load_controllers()
        routes: List[Tuple[RouteDefinition, Path]] = []
        for path in self.route_files():
            source = self.parse_file(path)
            if source is not None:
                routes.extend((r, path) for r in collect_routes(source, self.relative_path(path)))

        coverage: Dict[Tuple[str, str], List[bool]] = {}
        for route, _ in routes:
            if route.controller and route.action:
                coverage.setdefault((route.controller, route.action), []).append(
                    has_auth_middleware(route.middleware, recognized))

        flagged: List[Tuple[RouteDefinition, Path]] = []
        for route, path in routes:
            issue = self._check_route(route, path, controllers, recognized)
            if issue is not None:
                issues.append(issue)
                flagged.append((route, path))
        issues.extend(self._check_route_groups(flagged, recognized))

        for controller in controllers.values():
            issues.extend(self._check_controller(controller, coverage, recognized))

        for path in self.php_files():
            source = self.parse_file(path)
            if source is not None:
                issues.extend(self._check_unsafe_auth_usage(source, path))

        count = len(issues)
        message = ("No authentication/authorization issues detected" if not issues else
                   f"Found {count} potential authentication/authorization issue{'' if count == 1 else 's'}")
        return self.result_by_severity(message, issues)

    # ========================================================================
    # Routes
    # ========================================================================

    def _check_route(self, route: RouteDefinition, path: Path,
                     controllers: Dict[str, ControllerInfo], recognized) -> Optional[Issue]:
        # GET/HEAD/OPTIONS routes are assumed side-effect free
        if not route.is_state_mutating:
            return None
        if has_auth_middleware(route.middleware, recognized):
            return None
        if is_publicly_exempt(route.path, route.name, self.public_routes):
            return None
        controller = controllers.get(route.controller) if route.controller else None
        if controller is not None and route.action:
            if controller.protects(route.action, recognized):
                return None
            method = self._find_method(controller, route.action)
            if method is not None and self._has_auth_check_in_method(method):
                return None

        action = f"{route.controller}@{route.action}" if route.controller else None
        return self.create_issue(
            message=f"{route.primary_method} route {route.path} without authentication middleware",
            location=self.location(path, route.line, route.column),
            severity=Severity.HIGH,
            recommendation='Add ->middleware("auth") or wrap in Route::middleware(["auth"])->group()',
            metadata={
                "method": route.primary_method,
                "path": route.path,
                "name": route.name,
                "action": action,
                "middleware": sorted(route.middleware),
                "registration": route.registration,
                "issue_type": "unauthenticated_route",
            },
        )

    def _check_route_groups(self, flagged: List[Tuple[RouteDefinition, Path]],
                            recognized) -> List[Issue]:
        """One issue per unauthenticated group that holds flagged routes."""
        groups: Dict[Tuple[Path, int], List[RouteDefinition]] = {}
        for route, path in flagged:
            if route.group_line is None or has_auth_middleware(route.group_middleware, recognized):
                continue
            groups.setdefault((path, route.group_line), []).append(route)

        issues = []
        for (path, line), members in groups.items():
            issues.append(self.create_issue(
                message="Route group without authentication middleware",
                location=self.location(path, line),
                severity=Severity.MEDIUM,
                recommendation='Add "auth" to the group middleware, e.g. Route::middleware(["auth"])->group()',
                metadata={
                    "route_type": "group",
                    "file": path.name,
                    "routes": [f"{r.primary_method} {r.path}" for r in members],
                    "issue_type": "unauthenticated_route_group",
                },
            ))
        return issues

    # ========================================================================
    # Controllers
    # ========================================================================

    def _load_controllers(self) -> Dict[str, ControllerInfo]:
        controllers: Dict[str, ControllerInfo] = {}
        for path in self.controller_files():
            source = self.parse_file(path)
            if source is None:
                continue
            for cls in iter_classes(source.root):
                name = declaration_name(cls)
                if not name:
                    continue
                info = ControllerInfo(name=name, path=path, source=source, node=cls)
                self._read_controller_middleware(info)
                controllers[name] = info
        return controllers

    @staticmethod
    def _find_method(controller: ControllerInfo, name: str) -> Optional[Node]:
        for method in class_methods(controller.node):
            if declaration_name(method) == name:
                return method
        return None

    def _read_controller_middleware(self, info: ControllerInfo):
        for method in class_methods(info.node):
            name = declaration_name(method)
            body = function_body(method)
            if body is None:
                continue
            if name == "__construct":
                self._read_constructor_middleware(info, body)
            elif name == "middleware" and "static" in method_modifiers(method):
                self._read_static_middleware(info, body)

    @staticmethod
    def _read_constructor_middleware(info: ControllerInfo, body: Node):
        for statement in named_children(body):
            if statement.type != "expression_statement":
                continue
            for expr in named_children(statement):
                chain = call_chain(expr)
                if not chain or chain[0].kind != "method" or node_text(chain[0].receiver) != "$this":
                    continue
                head = chain[0]
                if head.lower_name == "authorizeresource":
                    info.policy_actions = {"index", "show", "create", "store", "edit", "update", "destroy"}
                    continue
                if head.lower_name != "middleware":
                    continue
                rule = MiddlewareRule(middleware_names(a.value for a in head.arguments))
                for call in chain[1:]:
                    if call.lower_name == "only":
                        rule.only = set().union(*(_string_set(a.value) for a in call.arguments))
                    elif call.lower_name == "except":
                        rule.except_ = set().union(*(_string_set(a.value) for a in call.arguments))
                info.rules.append(rule)

    @staticmethod
    def _read_static_middleware(info: ControllerInfo, body: Node):
        for ret in iter_nodes(body, {"return_statement"}, stop_at_scopes=True):
            for value in named_children(ret):
                for entry in array_entries(value):
                    created = object_creation_info(entry.value)
                    if created is None:
                        names = middleware_names([entry.value])
                        if names:
                            info.rules.append(MiddlewareRule(names))
                        continue
                    _, args = created
                    rule = MiddlewareRule(middleware_names(
                        [a.value for a in args if a.name in (None, "middleware")][:1]))
                    for arg in args:
                        if arg.name == "only":
                            rule.only = _string_set(arg.value)
                        elif arg.name == "except":
                            rule.except_ = _string_set(arg.value)
                    info.rules.append(rule)

    @staticmethod
    def _has_auth_check_in_method(method: Node) -> bool:
        body = function_body(method)
        if body is None:
            return False
        if find_calls(body, AUTHORIZATION_CALL):
            return True
        return any(is_auth_check_call(call.node) for call in iter_calls(body, _names_auth_check))

    def _check_controller(self, controller: ControllerInfo,
                          coverage: Dict[Tuple[str, str], List[bool]], recognized) -> List[Issue]:
        issues = []
        sensitive = set(self.sensitive_methods)
        for method in class_methods(controller.node):
            name = declaration_name(method)
            if name in SKIPPED_CONTROLLER_METHODS or name not in sensitive:
                continue
            if not is_public_method(method) or "static" in method_modifiers(method):
                continue
            routed = coverage.get((controller.name, name))
            if routed and all(routed):
                continue
            if controller.protects(name, recognized):
                continue
            if self._has_auth_check_in_method(method):
                continue
            line = get_node_line(method)
            issues.append(self.create_issue(
                message=f"Sensitive method {controller.name}::{name}() without authentication check",
                location=self.location(controller.path, line, get_node_column(method)),
                severity=Severity.HIGH,
                recommendation='Add $this->middleware("auth") in constructor or use authorization checks',
                metadata={
                    "class": controller.name,
                    "method": name,
                    "issue_type": "unprotected_controller_method",
                },
                code=self.code_snippet(controller.source, line),
            ))
        return issues

    # ========================================================================
    # Nullable auth dereferences
    # ========================================================================

    def _check_unsafe_auth_usage(self, source: SourceFile, path: Path) -> List[Issue]:
        issues = []
        for node in iter_nodes(source.root, CALL_TYPES):
            label = auth_user_label(node)
            if label is None:
                continue
            parent = node.parent
            if parent is None or parent.type not in (METHOD_CALL_TYPES | PROPERTY_ACCESS_TYPES):
                continue
            if parent.type.startswith("nullsafe_"):
                continue
            obj = parent.child_by_field_name("object") or named_children(parent)[0]
            if obj.start_byte != node.start_byte or obj.end_byte != node.end_byte:
                continue
            if self._is_guarded(node):
                continue
            check = "Auth::check()" if label.startswith("Auth") else "auth()->check()"
            line = get_node_line(node)
            issues.append(self.create_issue(
                message=f"Unsafe {label} usage without null check",
                location=self.location(path, line, get_node_column(node)),
                severity=Severity.MEDIUM,
                recommendation=(f"Check if user is authenticated before accessing: "
                                f"if ({check}) or use {label}?->property"),
                metadata={
                    "method": label,
                    "check_method": check,
                    "file": path.name,
                    "issue_type": "unsafe_auth_user",
                },
                code=self.code_snippet(source, line),
            ))
        return issues

    @staticmethod
    def _is_guarded(node: Node) -> bool:
        """Inside an auth-checking condition, or after an auth check in the same scope."""
        for parent in _ancestors_within_scope(node):
            if parent.type in ("if_statement", "while_statement", "else_if_clause"):
                condition = parent.child_by_field_name("condition")
                if condition is not None and not contains(condition, node) and _mentions_auth_check(condition):
                    return True
            elif parent.type == "conditional_expression":
                condition = parent.child_by_field_name("condition")
                if condition is not None and not contains(condition, node) and _mentions_auth_check(condition):
                    return True
            elif parent.type == "binary_expression" and binary_operator(parent) in ("&&", "and", "?:"):
                left, _ = binary_operands(parent)
                if left is not None and not contains(left, node) and _mentions_auth_check(left):
                    return True

        scope = enclosing_scope(node)
        for call in iter_calls(scope, stop_at_scopes=True):
            if call.node.start_byte >= node.start_byte:
                break
            if call.lower_name in AUTH_CHECK_METHODS and is_auth_check_call(call.node):
                return True
        return False


def _ancestors_within_scope(node: Node):
    current = node.parent
    while current is not None and current.type not in FUNCTION_SCOPE_TYPES | {"program"}:
        yield current
        current = current.parent
