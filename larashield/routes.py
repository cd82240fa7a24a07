"""
Route and middleware propagation model.

Walks a parsed route file, pushing a middleware scope for every route group
and popping it once the group body has been walked, and records each leaf
route with its effective middleware set.
"""

import fnmatch
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from tree_sitter import Node

from larashield.ast_query import (
    CLOSURE_TYPES, FUNCTION_SCOPE_TYPES, CallInfo, array_entries, call_chain,
    chain_base, class_basename, class_constant_name, function_body,
    get_node_column, get_node_line, literal_string_value, named_children,
    node_text, unwrap,
)
from larashield.parser import SourceFile

logger = logging.getLogger(__name__)


MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE", "ANY"}

DEFAULT_PUBLIC_ROUTE_PATTERNS = (
    "login", "register", "password", "forgot-password", "reset-password",
    "verify", "health", "status",
)

DEFAULT_AUTH_MIDDLEWARE = (
    "auth", "auth.basic", "auth.session", "Authenticate",
    "AuthenticateWithBasicAuth", "AuthenticateSession",
)

VERB_METHODS = {
    "get": ("GET", "HEAD"),
    "post": ("POST",),
    "put": ("PUT",),
    "patch": ("PATCH",),
    "delete": ("DELETE",),
    "options": ("OPTIONS",),
    "any": ("ANY",),
}

# (action, methods, path suffix); "{}" is replaced by the resource parameter
RESOURCE_ACTIONS = (
    ("index", ("GET", "HEAD"), ""),
    ("create", ("GET", "HEAD"), "/create"),
    ("store", ("POST",), ""),
    ("show", ("GET", "HEAD"), "/{}"),
    ("edit", ("GET", "HEAD"), "/{}/edit"),
    ("update", ("PUT", "PATCH"), "/{}"),
    ("destroy", ("DELETE",), "/{}"),
)

SINGLETON_ACTIONS = (
    ("show", ("GET", "HEAD"), ""),
    ("edit", ("GET", "HEAD"), "/edit"),
    ("update", ("PUT", "PATCH"), ""),
)

RESOURCE_KINDS = {
    "resource": (RESOURCE_ACTIONS, None),
    "apiresource": (RESOURCE_ACTIONS, {"create", "edit"}),
    "singleton": (SINGLETON_ACTIONS, None),
    "apisingleton": (SINGLETON_ACTIONS, {"edit"}),
}

PLURAL_RESOURCE_KINDS = {"resources": "resource", "apiresources": "apiresource"}

ROUTER_VARIABLES = {"$router"}


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class MiddlewareScope:
    """Attributes in force inside one route group.

    ``inherited_middleware`` is the effective set for routes declared directly
    in the group: everything the ancestors applied plus the group's own
    middleware, minus the group's own removals.
    ``line`` is where the group was registered (0 for the root scope).
    """
    inherited_middleware: FrozenSet[str] = frozenset()
    explicitly_removed: FrozenSet[str] = frozenset()
    prefix: str = ""
    name_prefix: str = ""
    controller: Optional[str] = None
    line: int = 0


@dataclass(frozen=True)
class RouteDefinition:
    methods: Tuple[str, ...]
    path: str
    middleware: FrozenSet[str]
    line: int
    column: int = 0
    name: Optional[str] = None
    controller: Optional[str] = None
    action: Optional[str] = None
    registration: str = "get"
    file: Optional[str] = None
    group_depth: int = 0
    group_line: Optional[int] = None
    group_middleware: FrozenSet[str] = frozenset()

    @property
    def is_state_mutating(self) -> bool:
        return any(m in MUTATING_METHODS for m in self.methods)

    @property
    def primary_method(self) -> str:
        for m in self.methods:
            if m in MUTATING_METHODS:
                return m
        return self.methods[0] if self.methods else "GET"


# ============================================================================
# Middleware stack
# ============================================================================

def join_path(*parts: Optional[str]) -> str:
    segments = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/" + "/".join(segments)


class MiddlewareStack:
    """Stack of group scopes. The bottom scope is empty and is never popped."""

    def __init__(self):
        self._scopes: List[MiddlewareScope] = [MiddlewareScope()]

    @property
    def top(self) -> MiddlewareScope:
        return self._scopes[-1]

    @property
    def depth(self) -> int:
        return len(self._scopes) - 1

    def push(self, middleware: Iterable[str] = (), removed: Iterable[str] = (),
             prefix: Optional[str] = None, name_prefix: Optional[str] = None,
             controller: Optional[str] = None, line: int = 0) -> MiddlewareScope:
        parent = self.top
        removed = frozenset(removed)
        scope = MiddlewareScope(
            inherited_middleware=(parent.inherited_middleware | frozenset(middleware)) - removed,
            explicitly_removed=parent.explicitly_removed | removed,
            prefix=join_path(parent.prefix, prefix) if prefix else parent.prefix,
            name_prefix=parent.name_prefix + (name_prefix or ""),
            controller=controller or parent.controller,
            line=line,
        )
        self._scopes.append(scope)
        return scope

    def pop(self) -> MiddlewareScope:
        if len(self._scopes) == 1:
            raise IndexError("cannot pop the root middleware scope")
        return self._scopes.pop()

    def effective_for_route(self, local: Iterable[str] = (),
                            removed: Iterable[str] = ()) -> FrozenSet[str]:
        """Middleware for a route declared in the current scope. Never mutates the stack."""
        return (self.top.inherited_middleware | frozenset(local)) - frozenset(removed)


# ============================================================================
# Middleware predicates
# ============================================================================

def middleware_names(values: Iterable[Node]) -> List[str]:
    """Literal middleware names from call arguments: strings, arrays, ``X::class``."""
    names: List[str] = []
    for value in values:
        value = unwrap(value)
        if value is None:
            continue
        if value.type == "array_creation_expression":
            names.extend(middleware_names(e.value for e in array_entries(value)))
            continue
        literal = literal_string_value(value)
        if literal is not None:
            names.append(literal)
            continue
        cls = class_constant_name(value)
        if cls is not None:
            names.append(cls)
    return names


def has_auth_middleware(middleware: Iterable[str],
                        recognized: Sequence[str] = DEFAULT_AUTH_MIDDLEWARE) -> bool:
    """True if any entry is recognised, ignoring a ``:guard`` suffix and namespaces."""
    wanted = {r.lower() for r in recognized}
    for mw in middleware:
        name = mw.strip()
        base = class_basename(name.split(":", 1)[0])
        if name.lower() in wanted or base.lower() in wanted:
            return True
    return False


def _matches_segments(segments: List[str], wanted: List[str], anchored: bool = False) -> bool:
    """True if ``wanted`` is a run of ``segments`` with no route parameter before it."""
    if len(segments) < len(wanted):
        return False
    last = 0 if anchored else len(segments) - len(wanted)
    for start in range(last + 1):
        if segments[start:start + len(wanted)] == wanted:
            return True
        if segments[start].startswith("{"):
            return False
    return False


def is_publicly_exempt(path: str, name: Optional[str] = None,
                       custom_patterns: Iterable[str] = ()) -> bool:
    """Whether a route is conventionally public (login, health checks, ...).

    Plain patterns match whole path segments that are not nested under a
    route parameter, or the leading parts of the route name. ``/api/status``
    is public while ``/users/{user}/status`` is not. Glob patterns match the
    whole path or name.
    """
    path = path.strip("/").lower()
    candidates = [(path, [s for s in path.split("/") if s], False)]
    if name:
        candidates.append((name.lower(), [s for s in name.lower().split(".") if s], True))
    for pattern in list(DEFAULT_PUBLIC_ROUTE_PATTERNS) + list(custom_patterns):
        if not isinstance(pattern, str):
            continue
        p = pattern.strip().strip("/").lower()
        if not p:
            continue
        if any(ch in p for ch in "*?["):
            if any(fnmatch.fnmatch(text, p) for text, _, _ in candidates):
                return True
            continue
        wanted = [s for s in re.split(r"[/.]", p) if s]
        if any(_matches_segments(segments, wanted, anchored)
               for _, segments, anchored in candidates):
            return True
    return False


# ============================================================================
# Route collector
# ============================================================================

def _singular(word: str) -> str:
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _literal_list(node: Optional[Node]) -> List[str]:
    node = unwrap(node)
    if node is None:
        return []
    if node.type == "array_creation_expression":
        return [v for v in (literal_string_value(e.value) for e in array_entries(node)) if v]
    value = literal_string_value(node)
    return [value] if value else []


@dataclass
class _ChainState:
    middleware: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    prefix: Optional[str] = None
    name_prefix: Optional[str] = None
    route_name: Optional[str] = None
    controller: Optional[str] = None
    only: Optional[List[str]] = None
    except_: Optional[List[str]] = None
    middleware_for: Dict[str, List[str]] = field(default_factory=dict)
    removed_for: Dict[str, List[str]] = field(default_factory=dict)
    terminal: Optional[CallInfo] = None


class RouteCollector:
    """Collect leaf routes from one parsed route file."""

    def __init__(self, source: SourceFile, file_label: Optional[str] = None):
        self.source = source
        self.file_label = file_label or source.path
        self.stack = MiddlewareStack()
        self.routes: List[RouteDefinition] = []

    def collect(self) -> List[RouteDefinition]:
        """Walk the file with an explicit work list.

        Group bodies are scheduled between a scope push and a ``pop`` marker,
        so group nesting never turns into Python recursion.
        """
        work: List[Tuple[str, Optional[Node]]] = [("walk", self.source.root)]
        while work:
            op, node = work.pop()
            if op == "pop":
                self.stack.pop()
            elif op == "walk":
                work.extend(reversed(self._block_items(node)))
            else:
                work.extend(reversed(self._handle_expression(node)))
        return self.routes

    # --- traversal ---

    @staticmethod
    def _block_items(node: Node) -> List[Tuple[str, Optional[Node]]]:
        items: List[Tuple[str, Optional[Node]]] = []
        for child in named_children(node):
            if child.type == "expression_statement":
                items.extend(("expr", expr) for expr in named_children(child))
            elif child.type in FUNCTION_SCOPE_TYPES or child.type == "class_declaration":
                continue
            else:
                items.append(("walk", child))
        return items

    def _handle_expression(self, expr: Node) -> List[Tuple[str, Optional[Node]]]:
        """Record routes for one expression; return follow-up work for groups."""
        chain = call_chain(expr)
        if not chain or not self._is_route_chain(chain):
            return []
        state = self._read_chain(chain)
        terminal = state.terminal
        if terminal is None:
            return []
        kind = terminal.lower_name
        if kind == "group":
            return self._handle_group(terminal, state)
        if kind in VERB_METHODS or kind == "match":
            self._handle_verb(expr, terminal, state)
        elif kind in RESOURCE_KINDS:
            self._handle_resource(expr, terminal, state)
        elif kind in PLURAL_RESOURCE_KINDS:
            for entry in array_entries(terminal.argument(0)):
                self._add_resource(expr, PLURAL_RESOURCE_KINDS[kind], entry.key_name,
                                   entry.value, state, terminal.name)
        return []

    @staticmethod
    def _is_route_chain(chain: List[CallInfo]) -> bool:
        first = chain[0]
        if first.kind == "static":
            return first.scope_name == "Route"
        base = chain_base(chain)
        return base is not None and node_text(base) in ROUTER_VARIABLES

    def _read_chain(self, chain: List[CallInfo]) -> _ChainState:
        state = _ChainState()
        for call in chain:
            name = call.lower_name
            args = [a.value for a in call.arguments]
            if name == "middleware":
                state.middleware.extend(middleware_names(args))
            elif name == "withoutmiddleware":
                state.removed.extend(middleware_names(args))
            elif name == "middlewarefor" and len(args) >= 2:
                for action in _literal_list(args[0]):
                    state.middleware_for.setdefault(action, []).extend(middleware_names(args[1:]))
            elif name == "withoutmiddlewarefor" and len(args) >= 2:
                for action in _literal_list(args[0]):
                    state.removed_for.setdefault(action, []).extend(middleware_names(args[1:]))
            elif name == "prefix" and args:
                state.prefix = literal_string_value(args[0])
            elif name in ("name", "as") and args:
                if state.terminal is None:
                    state.name_prefix = literal_string_value(args[0])
                else:
                    state.route_name = literal_string_value(args[0])
            elif name == "controller" and args:
                state.controller = class_constant_name(args[0]) or _class_from_string(args[0])
            elif name == "only" and state.terminal is not None:
                state.only = [v for a in args for v in _literal_list(a)]
            elif name == "except" and state.terminal is not None:
                state.except_ = [v for a in args for v in _literal_list(a)]
            elif state.terminal is None and (
                    name == "group" or name == "match" or name in VERB_METHODS
                    or name in RESOURCE_KINDS or name in PLURAL_RESOURCE_KINDS):
                state.terminal = call
        return state

    # --- groups ---

    def _handle_group(self, call: CallInfo, state: _ChainState) -> List[Tuple[str, Optional[Node]]]:
        middleware = list(state.middleware)
        removed = list(state.removed)
        prefix = state.prefix
        name_prefix = state.name_prefix
        controller = state.controller
        closure = None

        for arg in call.arguments:
            value = unwrap(arg.value)
            if value is None:
                continue
            if value.type == "array_creation_expression":
                for entry in array_entries(value):
                    key = entry.key_name
                    if key == "middleware":
                        middleware.extend(middleware_names([entry.value]))
                    elif key in ("excluded_middleware", "without_middleware", "withoutMiddleware"):
                        removed.extend(middleware_names([entry.value]))
                    elif key == "prefix":
                        prefix = literal_string_value(entry.value)
                    elif key == "as":
                        name_prefix = (name_prefix or "") + (literal_string_value(entry.value) or "")
                    elif key == "controller":
                        controller = class_constant_name(entry.value) or _class_from_string(entry.value)
            elif value.type in CLOSURE_TYPES:
                closure = value

        if closure is None:
            logger.debug("%s:%d: route group without a closure body",
                         self.file_label, get_node_line(call.node))
            return []

        if closure.type == "arrow_function":
            body = closure.child_by_field_name("body")
            item = ("expr", body)
        else:
            body = function_body(closure)
            item = ("walk", body)
        if body is None:
            return []
        self.stack.push(middleware, removed, prefix, name_prefix, controller,
                        line=get_node_line(call.node))
        return [item, ("pop", None)]

    # --- leaf routes ---

    def _resolve_action(self, node: Optional[Node]) -> Tuple[Optional[str], Optional[str]]:
        node = unwrap(node)
        if node is None:
            return None, None
        if node.type == "array_creation_expression":
            entries = array_entries(node)
            if len(entries) >= 2:
                controller = class_constant_name(entries[0].value) or _class_from_string(entries[0].value)
                return controller, literal_string_value(entries[1].value)
            if len(entries) == 1:
                return class_constant_name(entries[0].value), "__invoke"
            return None, None
        cls = class_constant_name(node)
        if cls is not None:
            return cls, "__invoke"
        text = literal_string_value(node)
        if text is None:
            return None, None
        if "@" in text:
            controller, method = text.split("@", 1)
            return class_basename(controller), method
        if self.stack.top.controller:
            return self.stack.top.controller, text
        return None, None

    def _handle_verb(self, expr: Node, call: CallInfo, state: _ChainState):
        kind = call.lower_name
        if kind == "match":
            methods = tuple(m.upper() for m in _literal_list(call.argument(0)))
            path_node, action_node = call.argument(1), call.argument(2)
        else:
            methods = VERB_METHODS[kind]
            path_node, action_node = call.argument(0, "uri"), call.argument(1, "action")
        path = literal_string_value(path_node)
        if path is None or not methods:
            logger.debug("%s:%d: skipping route with a computed path",
                         self.file_label, get_node_line(expr))
            return
        controller, action = self._resolve_action(action_node)
        if controller is None and state.controller and literal_string_value(action_node):
            controller, action = state.controller, literal_string_value(action_node)
        self._add_route(expr, methods, join_path(self.stack.top.prefix, state.prefix, path),
                        state, controller, action, kind, state.route_name)

    def _handle_resource(self, expr: Node, call: CallInfo, state: _ChainState):
        name = literal_string_value(call.argument(0))
        options = unwrap(call.argument(2))
        if options is not None and options.type == "array_creation_expression":
            for entry in array_entries(options):
                if entry.key_name == "only":
                    state.only = _literal_list(entry.value)
                elif entry.key_name == "except":
                    state.except_ = _literal_list(entry.value)
        self._add_resource(expr, call.lower_name, name, call.argument(1), state, call.name)

    def _add_resource(self, expr: Node, kind: str, name: Optional[str],
                      controller_node: Optional[Node], state: _ChainState, registration: str):
        if not name:
            return
        actions, excluded = RESOURCE_KINDS[kind]
        controller = class_constant_name(controller_node) or _class_from_string(controller_node)
        segments = [s for s in name.split(".") if s]
        if not segments:
            logger.debug("%s:%d: skipping resource without a name",
                         self.file_label, get_node_line(expr))
            return
        base = ""
        for segment in segments[:-1]:
            base += f"/{segment}/{{{_singular(segment)}}}"
        base += f"/{segments[-1]}"
        param = _singular(segments[-1])

        for action, methods, suffix in actions:
            if excluded and action in excluded:
                continue
            if state.only is not None and action not in state.only:
                continue
            if state.except_ is not None and action in state.except_:
                continue
            path = join_path(self.stack.top.prefix, state.prefix,
                             base + suffix.replace("{}", "{" + param + "}"))
            route_state = _ChainState(
                middleware=state.middleware + state.middleware_for.get(action, []),
                removed=state.removed + state.removed_for.get(action, []),
                name_prefix=state.name_prefix,
            )
            self._add_route(expr, methods, path, route_state, controller, action,
                            registration, f"{name}.{action}")

    def _add_route(self, expr: Node, methods: Tuple[str, ...], path: str, state: _ChainState,
                   controller: Optional[str], action: Optional[str], registration: str,
                   route_name: Optional[str]):
        name = None
        if route_name:
            name = self.stack.top.name_prefix + (state.name_prefix or "") + route_name
        route = RouteDefinition(
            methods=tuple(methods),
            path=path,
            middleware=self.stack.effective_for_route(state.middleware, state.removed),
            line=get_node_line(expr),
            column=get_node_column(expr),
            name=name,
            controller=controller,
            action=action,
            registration=registration,
            file=self.file_label,
            group_depth=self.stack.depth,
            group_line=self.stack.top.line or None,
            group_middleware=self.stack.top.inherited_middleware,
        )
        self.routes.append(route)


def _class_from_string(node: Optional[Node]) -> Optional[str]:
    text = literal_string_value(node)
    if not text or "@" in text:
        return None
    return class_basename(text)


def collect_routes(source: SourceFile, file_label: Optional[str] = None) -> List[RouteDefinition]:
    return RouteCollector(source, file_label).collect()
