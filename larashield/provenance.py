"""
Value provenance tracking.

Classifies an expression as raw user input, as hashed/filtered, or as
unknown, using configurable rule tables. The tracker follows local variable
assignments within one function scope and unwraps pass-through transforms.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from tree_sitter import Node

from larashield.ast_query import (
    CALL_TYPES, PROPERTY_ACCESS_TYPES, CallInfo, array_entries, binary_operands,
    binary_operator, call_info, cast_operand, conditional_branches,
    enclosing_scope, incremental_array_entries, is_literal, iter_nodes,
    named_children, node_text, resolve_local_assignment, subscript_parts, unwrap,
)
from larashield.classifier import (
    REQUEST_FACADES, SUPERGLOBALS, is_request_chain, is_request_expression,
)

logger = logging.getLogger(__name__)

MAX_RESOLUTION_DEPTH = 5


class ValueOrigin(Enum):
    RAW_INPUT = "raw_input"
    HASHED_OR_FILTERED = "hashed_or_filtered"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProvenanceRules:
    """Rule tables for one kind of provenance question.

    Attributes:
        safe_functions: Global functions whose result is Safe.
        safe_static_calls: (class basename, method) pairs whose result is Safe.
        safe_receiver_methods: (method, receiver substring) pairs, e.g. a
            ``make`` call on anything whose text mentions ``hash``.
        safe_request_methods: Request methods returning filtered data.
        raw_request_methods: Request methods returning raw data regardless of arguments.
        raw_request_methods_without_arguments: Request methods that return the
            whole payload only when called with no arguments.
        raw_request_helper_with_arguments: Treat ``request('field')`` as Raw.
        raw_request_properties: Treat ``$request->field`` as Raw.
        passthrough_functions: Wrappers whose result has the origin of their arguments.
        passthrough_static_calls: (class, method) wrappers, e.g. ``Str::lower``.
        combining_functions: Array combinators; Raw when any argument is Raw.
    """
    safe_functions: FrozenSet[str] = frozenset()
    safe_static_calls: FrozenSet[Tuple[str, str]] = frozenset()
    safe_receiver_methods: FrozenSet[Tuple[str, str]] = frozenset()
    safe_request_methods: FrozenSet[str] = frozenset()
    raw_request_methods: FrozenSet[str] = frozenset()
    raw_request_methods_without_arguments: FrozenSet[str] = frozenset()
    raw_request_helper_with_arguments: bool = False
    raw_request_properties: bool = False
    passthrough_functions: FrozenSet[str] = frozenset()
    passthrough_static_calls: FrozenSet[Tuple[str, str]] = frozenset()
    combining_functions: FrozenSet[str] = frozenset()


STRING_PASSTHROUGH_FUNCTIONS = frozenset({
    "trim", "ltrim", "rtrim", "strtolower", "strtoupper", "ucfirst", "lcfirst",
    "ucwords", "strval", "mb_strtolower", "mb_strtoupper", "stripslashes",
    "str_replace", "htmlspecialchars", "strip_tags", "base64_encode",
    "urldecode", "rawurldecode", "utf8_encode", "mb_convert_encoding",
})

STRING_PASSTHROUGH_STATIC = frozenset({
    ("str", "lower"), ("str", "upper"), ("str", "trim"), ("str", "squish"),
    ("str", "of"), ("str", "ucfirst"),
})

PASSWORD_FIELD_RULES = ProvenanceRules(
    safe_functions=frozenset({"bcrypt", "password_hash", "hash_make"}),
    safe_static_calls=frozenset({("hash", "make"), ("hash", "driver")}),
    safe_receiver_methods=frozenset({("make", "hash")}),
    raw_request_methods=frozenset({
        "all", "input", "get", "post", "query", "json", "string", "str",
        "only", "except", "validated", "safe", "offsetget", "cookie", "old",
    }),
    raw_request_helper_with_arguments=True,
    raw_request_properties=True,
    passthrough_functions=STRING_PASSTHROUGH_FUNCTIONS,
    passthrough_static_calls=STRING_PASSTHROUGH_STATIC,
    combining_functions=frozenset({"sprintf", "implode", "join"}),
)

MASS_ASSIGNMENT_RULES = ProvenanceRules(
    safe_request_methods=frozenset({"only", "validated", "safe"}),
    raw_request_methods=frozenset({"all", "except"}),
    raw_request_methods_without_arguments=frozenset({"input", "get", "post", "query", "json"}),
    passthrough_functions=frozenset({"collect", "array_filter", "array_map", "array_values"}),
    combining_functions=frozenset({
        "array_merge", "array_merge_recursive", "array_replace", "compact",
    }),
)

_PASSWORD_NAME_RE = re.compile(r"pass(word|wd)", re.I)
_HASHED_NAME_RE = re.compile(r"(hash|encrypt|digest|crypt)", re.I)


def is_password_name(name: Optional[str]) -> bool:
    """``password``, ``new_password``, ``userPassword``; not ``password_confirmation`` or ``hashedPassword``."""
    if not name:
        return False
    name = name.lstrip("$")
    if not _PASSWORD_NAME_RE.search(name) or _HASHED_NAME_RE.search(name):
        return False
    lowered = name.lower()
    return not (lowered.endswith("confirmation") or lowered.endswith("_confirm")
                or "reset" in lowered or "token" in lowered or "timeout" in lowered)


# ============================================================================
# Combination rules
# ============================================================================

def combine_any_safe(origins: Iterable[ValueOrigin]) -> ValueOrigin:
    """Disjunctive: Safe if any branch is Safe, else Raw if any is Raw."""
    origins = list(origins)
    if ValueOrigin.HASHED_OR_FILTERED in origins:
        return ValueOrigin.HASHED_OR_FILTERED
    if ValueOrigin.RAW_INPUT in origins:
        return ValueOrigin.RAW_INPUT
    return ValueOrigin.UNKNOWN


def combine_any_raw(origins: Iterable[ValueOrigin]) -> ValueOrigin:
    """Conjunctive: Raw if any part is Raw, Safe only if every part is Safe."""
    origins = list(origins)
    if ValueOrigin.RAW_INPUT in origins:
        return ValueOrigin.RAW_INPUT
    if origins and all(o == ValueOrigin.HASHED_OR_FILTERED for o in origins):
        return ValueOrigin.HASHED_OR_FILTERED
    return ValueOrigin.UNKNOWN


# ============================================================================
# Tracker
# ============================================================================

class ProvenanceTracker:
    """Classify expressions against one rule set.

    A tracker holds no per-file state; create one per analysis pass.
    """

    def __init__(self, rules: ProvenanceRules, max_depth: int = MAX_RESOLUTION_DEPTH):
        self.rules = rules
        self.max_depth = max_depth

    def classify(self, expr: Optional[Node], scope: Optional[Node] = None,
                 depth: int = 0) -> ValueOrigin:
        node = unwrap(expr)
        if node is None:
            return ValueOrigin.UNKNOWN
        t = node.type

        if t in CALL_TYPES:
            info = call_info(node)
            if info is None:
                return ValueOrigin.UNKNOWN
            return self._classify_call(info, scope, depth)

        if t == "variable_name":
            return self._classify_variable(node, scope, depth)

        if t in PROPERTY_ACCESS_TYPES:
            kids = named_children(node)
            if self.rules.raw_request_properties and kids and is_request_expression(kids[0]):
                return ValueOrigin.RAW_INPUT
            return ValueOrigin.UNKNOWN

        if t == "subscript_expression":
            base, _ = subscript_parts(node)
            if base is not None and base.type == "variable_name" and node_text(base) in SUPERGLOBALS:
                return ValueOrigin.RAW_INPUT
            return self.classify(base, scope, depth)

        if t == "cast_expression":
            return self.classify(cast_operand(node), scope, depth)

        if t == "conditional_expression":
            return self._classify_branches(conditional_branches(node), scope, depth)

        if t == "binary_expression":
            op = binary_operator(node)
            left, right = binary_operands(node)
            if op == "??":
                return self._classify_branches([left, right], scope, depth)
            if op in (".", "+"):
                return combine_any_raw(self.classify(p, scope, depth) for p in (left, right))
            return ValueOrigin.UNKNOWN

        if t == "array_creation_expression":
            return combine_any_raw(
                self.classify(e.value, scope, depth) for e in array_entries(node))

        return ValueOrigin.UNKNOWN

    # --- internals ---

    def _classify_branches(self, branches: List[Node], scope, depth) -> ValueOrigin:
        """Ignore literal default branches; Safe if any remaining branch is Safe."""
        meaningful = [b for b in branches if b is not None and not is_literal(b)]
        if not meaningful:
            return ValueOrigin.UNKNOWN
        return combine_any_safe(self.classify(b, scope, depth) for b in meaningful)

    def _classify_variable(self, node: Node, scope: Optional[Node], depth: int) -> ValueOrigin:
        name = node_text(node)
        if name in SUPERGLOBALS:
            return ValueOrigin.RAW_INPUT
        if name == "$this" or depth >= self.max_depth:
            return ValueOrigin.UNKNOWN
        scope = enclosing_scope(node) if scope is None else scope
        entries = incremental_array_entries(scope, name, node)
        if entries is not None:
            return combine_any_raw(
                self.classify(e.value, None, depth + 1) for e in entries)
        rhs = resolve_local_assignment(scope, name, node)
        if rhs is None:
            return ValueOrigin.UNKNOWN
        return self.classify(rhs, None, depth + 1)

    def _request_origin(self, info: CallInfo) -> Optional[ValueOrigin]:
        rules = self.rules
        name = info.lower_name
        if name in rules.safe_request_methods:
            return ValueOrigin.HASHED_OR_FILTERED
        if name in rules.raw_request_methods:
            return ValueOrigin.RAW_INPUT
        if name in rules.raw_request_methods_without_arguments and not info.arguments:
            return ValueOrigin.RAW_INPUT
        return None

    def _receiver_filtered(self, receiver: Optional[Node]) -> bool:
        """Whether a call further down the chain already filtered the payload."""
        current = unwrap(receiver)
        while current is not None:
            info = call_info(current)
            if info is None:
                return False
            if info.lower_name in self.rules.safe_request_methods:
                return True
            current = unwrap(info.receiver) if info.kind == "method" else None
        return False

    def _classify_call(self, info: CallInfo, scope, depth) -> ValueOrigin:
        rules = self.rules
        name = info.lower_name

        if info.kind == "function":
            if name in rules.safe_functions:
                return ValueOrigin.HASHED_OR_FILTERED
            if name == "request":
                if info.arguments and rules.raw_request_helper_with_arguments:
                    return ValueOrigin.RAW_INPUT
                return ValueOrigin.UNKNOWN
            if name in rules.passthrough_functions:
                return combine_any_safe(self.classify(a.value, scope, depth) for a in info.arguments)
            if name in rules.combining_functions:
                return combine_any_raw(self.classify(a.value, scope, depth) for a in info.arguments)
            return ValueOrigin.UNKNOWN

        if info.kind == "static":
            scope_name = info.scope_name.lower()
            if (scope_name, name) in rules.safe_static_calls:
                return ValueOrigin.HASHED_OR_FILTERED
            if info.scope_name in REQUEST_FACADES:
                return self._request_origin(info) or ValueOrigin.UNKNOWN
            if (scope_name, name) in rules.passthrough_static_calls:
                return combine_any_safe(self.classify(a.value, scope, depth) for a in info.arguments)
            return ValueOrigin.UNKNOWN

        # Method call
        receiver_text = node_text(info.receiver).lower()
        for method, fragment in rules.safe_receiver_methods:
            if name == method and fragment in receiver_text:
                return ValueOrigin.HASHED_OR_FILTERED
        if is_request_chain(info.receiver):
            if self._receiver_filtered(info.receiver):
                return ValueOrigin.HASHED_OR_FILTERED
            return self._request_origin(info) or ValueOrigin.UNKNOWN
        receiver_info = call_info(unwrap(info.receiver))
        if (receiver_info is not None and receiver_info.kind == "static"
                and (receiver_info.scope_name.lower(), receiver_info.lower_name) in rules.safe_static_calls):
            # Hash::driver('argon')->make(...)
            return ValueOrigin.HASHED_OR_FILTERED
        return ValueOrigin.UNKNOWN


# ============================================================================
# User input heuristics
# ============================================================================

def mentions_user_input(node: Optional[Node]) -> bool:
    """Whether an expression visibly draws on request data or a password-like variable."""
    node = unwrap(node)
    if node is None:
        return False
    for sub in iter_nodes(node):
        if sub.type == "variable_name":
            text = node_text(sub)
            if text in SUPERGLOBALS or text in ("$request", "$input", "$data", "$validated"):
                return True
            if is_password_name(text):
                return True
        elif sub.type in PROPERTY_ACCESS_TYPES:
            kids = named_children(sub)
            if kids and is_request_expression(kids[0]):
                return True
        elif sub.type in CALL_TYPES:
            info = call_info(sub)
            if info is None:
                continue
            if info.kind == "function" and info.lower_name in ("request", "old"):
                return True
            if info.kind == "static" and info.scope_name in REQUEST_FACADES:
                return True
            if info.kind == "method" and is_request_chain(info.receiver):
                return True
    return False
