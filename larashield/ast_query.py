"""
AST query helpers over tree-sitter-php trees.

Everything here is read-only and tolerant of malformed input: unexpected
node shapes give empty results or ``None``, never an exception.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from tree_sitter import Node


CALL_TYPES = {
    "function_call_expression",
    "member_call_expression",
    "nullsafe_member_call_expression",
    "scoped_call_expression",
}

METHOD_CALL_TYPES = {"member_call_expression", "nullsafe_member_call_expression"}

PROPERTY_ACCESS_TYPES = {"member_access_expression", "nullsafe_member_access_expression"}

FUNCTION_SCOPE_TYPES = {
    "function_definition",
    "method_declaration",
    "anonymous_function",
    "anonymous_function_creation_expression",
    "arrow_function",
}

CLOSURE_TYPES = {"anonymous_function", "anonymous_function_creation_expression", "arrow_function"}

LITERAL_TYPES = {"string", "encapsed_string", "integer", "float", "boolean", "null"}

STRING_PART_TYPES = {"string_content", "string_value", "escape_sequence", "text"}


class _Unresolved:
    def __repr__(self):
        return "UNRESOLVED"

    def __bool__(self):
        return False


UNRESOLVED = _Unresolved()


# ============================================================================
# AST Helpers
# ============================================================================

def find_nodes(node: Node, type_name: str) -> List[Node]:
    """Find all descendant nodes of a given type, in document order."""
    return list(iter_nodes(node, {type_name}, skip_comments=False))


def node_text(node: Optional[Node]) -> str:
    """Get the source text of a node."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def get_node_line(node: Node) -> int:
    """Get 1-based line number."""
    return node.start_point[0] + 1


def get_node_column(node: Node) -> int:
    """Get 0-based column offset."""
    return node.start_point[1]


def get_child_by_type(node: Node, type_name: str) -> Optional[Node]:
    """Get first direct child of a given type."""
    for child in node.children:
        if child.type == type_name:
            return child
    return None


def get_children_by_type(node: Node, type_name: str) -> List[Node]:
    """Get all direct children of a given type."""
    return [c for c in node.children if c.type == type_name]


def named_children(node: Node) -> List[Node]:
    """Named children without interleaved comments."""
    return [c for c in node.named_children if c.type != "comment"]


def same_node(a: Optional[Node], b: Optional[Node]) -> bool:
    if a is None or b is None:
        return False
    return a.type == b.type and a.start_byte == b.start_byte and a.end_byte == b.end_byte


def contains(outer: Node, inner: Node) -> bool:
    """True when ``inner`` lies within the byte span of ``outer``."""
    return outer.start_byte <= inner.start_byte and inner.end_byte <= outer.end_byte


def ancestors(node: Node) -> Iterator[Node]:
    current = node.parent
    while current is not None:
        yield current
        current = current.parent


def unwrap(node: Optional[Node]) -> Optional[Node]:
    """Strip redundant parentheses."""
    while node is not None and node.type == "parenthesized_expression":
        inner = named_children(node)
        if not inner:
            return node
        node = inner[0]
    return node


def iter_nodes(root: Node, types: Optional[Set[str]] = None,
               stop_at_scopes: bool = False, skip_comments: bool = True) -> Iterator[Node]:
    """Lazy depth-first walk in document order.

    Comment subtrees are skipped. With ``stop_at_scopes`` the walk yields
    nested functions and closures but does not descend into them.
    """
    stack = [(root, True)]
    while stack:
        node, is_root = stack.pop()
        if skip_comments and node.type == "comment":
            continue
        if types is None or node.type in types:
            yield node
        if stop_at_scopes and not is_root and node.type in FUNCTION_SCOPE_TYPES:
            continue
        for child in reversed(node.children):
            stack.append((child, False))


def class_basename(name: str) -> str:
    """``\\App\\Models\\User`` -> ``User``."""
    return name.strip().lstrip("\\").split("\\")[-1]


# ============================================================================
# Calls
# ============================================================================

@dataclass
class Argument:
    value: Node
    name: Optional[str] = None
    unpacked: bool = False


@dataclass
class CallInfo:
    """A normalised view of a function, method or static call.

    Attributes:
        node: The call expression node.
        kind: ``function``, ``method`` or ``static``.
        name: Callee name as written (basename for namespaced functions).
        receiver: Object expression of a method call.
        scope: Class expression of a static call.
        arguments: Positional and named arguments in source order.
    """
    node: Node
    kind: str
    name: str
    receiver: Optional[Node] = None
    scope: Optional[Node] = None
    arguments: List[Argument] = field(default_factory=list)

    @property
    def lower_name(self) -> str:
        return self.name.lower()

    @property
    def scope_name(self) -> str:
        return class_basename(node_text(self.scope)) if self.scope is not None else ""

    def argument(self, index: int, name: str = None) -> Optional[Node]:
        """Argument by parameter name (named call syntax) or position."""
        if name is not None:
            for arg in self.arguments:
                if arg.name == name:
                    return arg.value
        positional = [a for a in self.arguments if a.name is None]
        if 0 <= index < len(positional):
            return positional[index].value
        return None


def _field(node: Node, name: str) -> Optional[Node]:
    try:
        return node.child_by_field_name(name)
    except (AttributeError, ValueError):
        return None


def _parse_arguments(args_node: Optional[Node]) -> List[Argument]:
    result: List[Argument] = []
    if args_node is None:
        return result
    for child in named_children(args_node):
        if child.type == "argument":
            name_node = _field(child, "name")
            values = [
                c for c in named_children(child)
                if c.type != "reference_modifier" and not same_node(c, name_node)
            ]
            if not values:
                continue
            value = values[-1]
            unpacked = any(c.type == "..." for c in child.children)
            if value.type == "variadic_unpacking":
                unpacked = True
                inner = named_children(value)
                value = inner[-1] if inner else value
            name = node_text(name_node) if name_node is not None else None
            result.append(Argument(value=value, name=name, unpacked=unpacked))
        elif child.type == "variadic_unpacking":
            inner = named_children(child)
            if inner:
                result.append(Argument(value=inner[-1], unpacked=True))
        elif child.type != "variadic_placeholder":
            result.append(Argument(value=child))
    return result


def call_info(node: Optional[Node]) -> Optional[CallInfo]:
    """Describe a call node, or return None for anything else."""
    if node is None or node.type not in CALL_TYPES:
        return None
    args = _parse_arguments(_field(node, "arguments") or get_child_by_type(node, "arguments"))

    if node.type == "function_call_expression":
        fn = _field(node, "function")
        if fn is None:
            kids = named_children(node)
            fn = kids[0] if kids else None
        if fn is None:
            return None
        text = node_text(fn)
        if fn.type in ("name", "qualified_name", "relative_name"):
            text = class_basename(text)
        return CallInfo(node=node, kind="function", name=text, arguments=args)

    if node.type in METHOD_CALL_TYPES:
        obj = _field(node, "object")
        name_node = _field(node, "name")
        if obj is None or name_node is None:
            kids = [c for c in named_children(node) if c.type != "arguments"]
            if len(kids) < 2:
                return None
            obj, name_node = kids[0], kids[-1]
        return CallInfo(node=node, kind="method", name=node_text(name_node),
                        receiver=obj, arguments=args)

    scope = _field(node, "scope")
    name_node = _field(node, "name")
    if scope is None or name_node is None:
        kids = [c for c in named_children(node) if c.type != "arguments"]
        if len(kids) < 2:
            return None
        scope, name_node = kids[0], kids[-1]
    return CallInfo(node=node, kind="static", name=node_text(name_node),
                    scope=scope, arguments=args)


CallPredicate = Callable[[CallInfo], bool]


def iter_calls(root: Node, predicate: Optional[CallPredicate] = None,
               stop_at_scopes: bool = False) -> Iterator[CallInfo]:
    """Lazily yield calls under ``root`` matching ``predicate``, in document order."""
    for node in iter_nodes(root, CALL_TYPES, stop_at_scopes=stop_at_scopes):
        info = call_info(node)
        if info is not None and (predicate is None or predicate(info)):
            yield info


def find_calls(root: Node, predicate: Optional[CallPredicate] = None,
               stop_at_scopes: bool = False) -> List[CallInfo]:
    return list(iter_calls(root, predicate, stop_at_scopes))


def function_named(*names: str) -> CallPredicate:
    wanted = {n.lower() for n in names}
    return lambda c: c.kind == "function" and c.lower_name in wanted


def method_named(*names: str) -> CallPredicate:
    wanted = {n.lower() for n in names}
    return lambda c: c.kind == "method" and c.lower_name in wanted


def static_call_on(class_pattern: Any, *methods: str) -> CallPredicate:
    """Static calls on a class.

    ``class_pattern`` is a class name (compared by basename), a compiled
    regex searched against the basename, or a callable taking the basename.
    An empty ``methods`` list matches any method.
    """
    if isinstance(class_pattern, str):
        target = class_basename(class_pattern).lower()
        matches = lambda n: n.lower() == target
    elif hasattr(class_pattern, "search"):
        matches = lambda n: bool(class_pattern.search(n))
    else:
        matches = class_pattern
    wanted = {m.lower() for m in methods}
    return lambda c: (c.kind == "static" and matches(c.scope_name)
                      and (not wanted or c.lower_name in wanted))


def facade_call(alias: str, *methods: str) -> CallPredicate:
    return static_call_on(alias, *methods)


def any_of(*predicates: CallPredicate) -> CallPredicate:
    return lambda c: any(p(c) for p in predicates)


def call_chain(node: Optional[Node]) -> List[CallInfo]:
    """Unwind a fluent chain, innermost call first.

    ``Route::middleware('auth')->post('/x', ...)->name('x')`` gives
    ``[middleware, post, name]``.
    """
    chain: List[CallInfo] = []
    current = unwrap(node)
    while current is not None:
        info = call_info(current)
        if info is None:
            break
        chain.append(info)
        current = unwrap(info.receiver) if info.kind == "method" else None
    chain.reverse()
    return chain


def chain_base(chain: List[CallInfo]) -> Optional[Node]:
    """The non-call expression a method chain starts from, e.g. ``$router``."""
    if chain and chain[0].kind == "method":
        return unwrap(chain[0].receiver)
    return None


# ============================================================================
# Operators
# ============================================================================

def binary_operator(node: Node) -> str:
    op = _field(node, "operator")
    if op is not None:
        return node_text(op)
    for child in node.children:
        if not child.is_named:
            return node_text(child)
    return ""


def binary_operands(node: Node):
    kids = named_children(node)
    left = _field(node, "left") or (kids[0] if kids else None)
    right = _field(node, "right") or (kids[-1] if kids else None)
    return left, right


def conditional_branches(node: Node) -> List[Node]:
    """Result branches of ``a ? b : c`` (``a ?: c`` yields ``a`` and ``c``)."""
    condition = _field(node, "condition")
    body = _field(node, "body")
    alternative = _field(node, "alternative")
    if condition is None and alternative is None:
        kids = named_children(node)
        if len(kids) == 3:
            return [kids[1], kids[2]]
        return kids
    first = body if body is not None else condition
    return [b for b in (first, alternative) if b is not None]


def assignment_parts(node: Node):
    """(left, right) of an assignment expression."""
    left = _field(node, "left")
    right = _field(node, "right")
    if left is None or right is None:
        kids = named_children(node)
        if len(kids) >= 2:
            left, right = kids[0], kids[-1]
    return left, right


def cast_operand(node: Node) -> Optional[Node]:
    value = _field(node, "value")
    if value is not None:
        return value
    kids = [c for c in named_children(node) if c.type != "cast_type"]
    return kids[-1] if kids else None


def subscript_parts(node: Node):
    """(base, index) of ``$a['k']``. ``index`` is None for ``$a[]``."""
    kids = named_children(node)
    base = kids[0] if kids else None
    index = kids[1] if len(kids) > 1 else None
    return base, index


# ============================================================================
# Literals
# ============================================================================

_DQ_ESCAPE_RE = re.compile(r"\\(.)", re.S)
_DQ_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "v": "\v", "f": "\f", "e": "\x1b",
    "0": "\0", "\\": "\\", '"': '"', "$": "$",
}


def _unquote(text: str) -> Optional[str]:
    if text[:1] in ("b", "B") and text[1:2] in ("'", '"'):
        text = text[1:]
    if len(text) < 2 or text[0] != text[-1] or text[0] not in ("'", '"'):
        return None
    body = text[1:-1]
    if text[0] == "'":
        return body.replace("\\\\", "\x00").replace("\\'", "'").replace("\x00", "\\")
    return _DQ_ESCAPE_RE.sub(lambda m: _DQ_ESCAPES.get(m.group(1), m.group(0)), body)


def literal_string_value(node: Optional[Node]) -> Optional[str]:
    """Value of a literal string or a concatenation of literal strings.

    Interpolated strings, heredocs and anything computed give None.
    """
    node = unwrap(node)
    if node is None:
        return None
    if node.type == "string":
        if any(c.type not in STRING_PART_TYPES for c in named_children(node)):
            return None
        return _unquote(node_text(node))
    if node.type == "encapsed_string":
        if any(c.type not in STRING_PART_TYPES for c in named_children(node)):
            return None
        return _unquote(node_text(node))
    if node.type == "binary_expression" and binary_operator(node) == ".":
        left, right = binary_operands(node)
        lhs = literal_string_value(left)
        rhs = literal_string_value(right)
        if lhs is None or rhs is None:
            return None
        return lhs + rhs
    return None


def is_literal(node: Optional[Node]) -> bool:
    """True for scalar literals, ``null``/``true``/``false`` and literal-only arrays."""
    node = unwrap(node)
    if node is None:
        return False
    if node.type in LITERAL_TYPES:
        return node.type != "encapsed_string" or literal_string_value(node) is not None
    if node.type == "name" and node_text(node).lower() in ("true", "false", "null"):
        return True
    if node.type == "array_creation_expression":
        return all(is_literal(e.value) for e in array_entries(node))
    if node.type == "unary_op_expression":
        kids = named_children(node)
        return len(kids) == 1 and kids[0].type in ("integer", "float")
    return False


def _parse_int(text: str):
    t = text.replace("_", "").lower()
    try:
        if t.startswith("0x"):
            return int(t, 16)
        if t.startswith("0b"):
            return int(t, 2)
        if t.startswith("0o"):
            return int(t[2:], 8)
        if len(t) > 1 and t.startswith("0"):
            return int(t, 8)
        return int(t)
    except ValueError:
        return UNRESOLVED


def literal_value(node: Optional[Node]) -> Any:
    """Evaluate a literal expression, or return ``UNRESOLVED``.

    Arrays become lists (no keys) or dicts. ``env('KEY', default)``
    evaluates to its default, the value used when the variable is unset.
    """
    node = unwrap(node)
    if node is None:
        return UNRESOLVED
    t = node.type
    if t in ("string", "encapsed_string") or (t == "binary_expression" and binary_operator(node) == "."):
        value = literal_string_value(node)
        return UNRESOLVED if value is None else value
    if t == "integer":
        return _parse_int(node_text(node))
    if t == "float":
        try:
            return float(node_text(node).replace("_", ""))
        except ValueError:
            return UNRESOLVED
    if t in ("boolean", "null", "name"):
        word = node_text(node).lower()
        if word == "true":
            return True
        if word == "false":
            return False
        if word == "null":
            return None
        return UNRESOLVED
    if t == "unary_op_expression":
        kids = named_children(node)
        if len(kids) == 1:
            operand = literal_value(kids[0])
            op = node_text(node).lstrip()[:1]
            if isinstance(operand, (int, float)) and not isinstance(operand, bool):
                if op == "-":
                    return -operand
                if op == "+":
                    return operand
        return UNRESOLVED
    if t == "array_creation_expression":
        entries = array_entries(node)
        if all(not e.has_key for e in entries):
            return [literal_value(e.value) for e in entries]
        result: Dict[Any, Any] = {}
        auto_index = 0
        for e in entries:
            if e.has_key and e.key is None:
                return UNRESOLVED
            key = e.key if e.has_key else auto_index
            if isinstance(key, int):
                auto_index = key + 1
            result[key] = literal_value(e.value)
        return result
    if t == "function_call_expression":
        info = call_info(node)
        if info is not None and info.lower_name == "env":
            default = info.argument(1, "default")
            if default is not None:
                return literal_value(default)
        return UNRESOLVED
    return UNRESOLVED


def is_env_call(node: Optional[Node]) -> bool:
    info = call_info(unwrap(node))
    return info is not None and info.kind == "function" and info.lower_name == "env"


def class_constant_name(node: Optional[Node]) -> Optional[str]:
    """``Foo\\Bar::class`` -> ``Bar``."""
    node = unwrap(node)
    if node is None or node.type != "class_constant_access_expression":
        return None
    text = node_text(node).strip()
    if not text.lower().endswith("::class"):
        return None
    return class_basename(text[:-len("::class")])


# ============================================================================
# Arrays
# ============================================================================

@dataclass
class ArrayEntry:
    """One direct element of an array literal or incremental build.

    ``key`` is the literal key (str or int) or None when absent or computed;
    ``key_node`` distinguishes the two.
    """
    value: Node
    key: Any = None
    key_node: Optional[Node] = None
    spread: bool = False

    @property
    def has_key(self) -> bool:
        return self.key_node is not None

    @property
    def key_name(self) -> Optional[str]:
        if self.key is None:
            return None
        return str(self.key)


def _literal_key(key_node: Node):
    value = literal_value(key_node)
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return value
    return None


def array_entries(node: Optional[Node]) -> List[ArrayEntry]:
    """Direct entries of an array literal. Nested arrays are not descended."""
    node = unwrap(node)
    if node is None or node.type != "array_creation_expression":
        return []
    entries: List[ArrayEntry] = []
    for element in named_children(node):
        if element.type != "array_element_initializer":
            continue
        children = [c for c in element.children if c.type != "comment"]
        arrow = next((i for i, c in enumerate(children) if c.type == "=>"), None)
        if arrow is not None:
            before = [c for c in children[:arrow] if c.is_named]
            after = [c for c in children[arrow + 1:] if c.is_named and c.type != "by_ref"]
            if not before or not after:
                continue
            entries.append(ArrayEntry(value=after[0], key=_literal_key(before[-1]),
                                      key_node=before[-1]))
            continue
        kids = [c for c in children if c.is_named and c.type != "by_ref"]
        if not kids:
            continue
        value = kids[-1]
        spread = any(c.type == "..." for c in children)
        if value.type == "variadic_unpacking":
            spread = True
            inner = named_children(value)
            value = inner[-1] if inner else value
        entries.append(ArrayEntry(value=value, spread=spread))
    return entries


def array_lookup(node: Optional[Node], *keys: str) -> Optional[Node]:
    """Walk nested array literals by string key: ``array_lookup(arr, 'bcrypt', 'rounds')``."""
    current = unwrap(node)
    for key in keys:
        found = None
        for entry in array_entries(current):
            if entry.key_name == key:
                found = entry.value
        if found is None:
            return None
        current = unwrap(found)
    return current


def returned_array(root: Node) -> Optional[Node]:
    """The array literal a config file returns at top level."""
    for ret in iter_nodes(root, {"return_statement"}, stop_at_scopes=True):
        for child in named_children(ret):
            child = unwrap(child)
            if child is not None and child.type == "array_creation_expression":
                return child
    return None


# ============================================================================
# Scopes & local variables
# ============================================================================

def enclosing_scope(node: Node) -> Node:
    """Nearest enclosing function, method or closure; the program root otherwise."""
    last = node
    for parent in ancestors(node):
        if parent.type in FUNCTION_SCOPE_TYPES:
            return parent
        last = parent
    return last


def closure_captures(closure: Node, variable: str) -> bool:
    """Whether a closure sees ``variable`` from its enclosing scope."""
    if closure.type == "arrow_function":
        return True
    use_clause = get_child_by_type(closure, "anonymous_function_use_clause")
    if use_clause is None:
        return False
    return any(node_text(v) == variable for v in find_nodes(use_clause, "variable_name"))


def _is_parameter(scope: Node, variable: str) -> bool:
    params = _field(scope, "parameters") or get_child_by_type(scope, "formal_parameters")
    if params is None:
        return False
    return any(node_text(v) == variable for v in find_nodes(params, "variable_name"))


def resolve_local_assignment(scope_root: Optional[Node], variable: str,
                             use_site: Node) -> Optional[Node]:
    """RHS of the last assignment to ``variable`` lexically before ``use_site``.

    Only the same function scope is searched; nested closures are opaque.
    Returns None for parameters and unassigned names.
    """
    if scope_root is None:
        scope_root = enclosing_scope(use_site)
    best = None
    for node in iter_nodes(scope_root, {"assignment_expression"}, stop_at_scopes=True):
        if node.start_byte > use_site.start_byte:
            break
        if contains(node, use_site):
            continue
        left, right = assignment_parts(node)
        if left is not None and left.type == "variable_name" and node_text(left) == variable:
            best = right
    if best is not None:
        return best
    if (scope_root.type in CLOSURE_TYPES and scope_root.parent is not None
            and not _is_parameter(scope_root, variable)
            and closure_captures(scope_root, variable)):
        return resolve_local_assignment(enclosing_scope(scope_root), variable, scope_root)
    return None


def incremental_array_entries(scope_root: Optional[Node], variable: str,
                              use_site: Node) -> Optional[List[ArrayEntry]]:
    """Entries of an array built up key by key before ``use_site``.

    Recognises ``$d = []; $d['k'] = v; ...`` (the initialisation may be
    missing). Returns None when the variable is not built that way, so the
    caller can fall back to plain assignment resolution.
    """
    if scope_root is None:
        scope_root = enclosing_scope(use_site)
    state = "none"
    entries: List[ArrayEntry] = []
    incremental = False
    for node in iter_nodes(scope_root, {"assignment_expression"}, stop_at_scopes=True):
        if node.start_byte > use_site.start_byte:
            break
        if contains(node, use_site):
            continue
        left, right = assignment_parts(node)
        if left is None or right is None:
            continue
        if left.type == "variable_name" and node_text(left) == variable:
            if unwrap(right).type == "array_creation_expression":
                state = "array"
                entries = list(array_entries(right))
            else:
                state = "opaque"
                entries = []
            incremental = False
            continue
        if left.type != "subscript_expression":
            continue
        base, index = subscript_parts(left)
        if base is None or base.type != "variable_name" or node_text(base) != variable:
            continue
        if state == "opaque":
            continue
        state = "array"
        incremental = True
        key = _literal_key(index) if index is not None else None
        entries.append(ArrayEntry(value=right, key=key, key_node=index))
    if state == "array" and incremental:
        return entries
    return None


# ============================================================================
# Comments
# ============================================================================

def comment_index(root: Node) -> Dict[int, List[Node]]:
    """Map 1-based end line -> comment nodes ending on that line."""
    index: Dict[int, List[Node]] = {}
    for comment in iter_nodes(root, {"comment"}, skip_comments=False):
        index.setdefault(comment.end_point[0] + 1, []).append(comment)
    return index


def leading_comment_text(root: Node, line: int,
                         index: Optional[Dict[int, List[Node]]] = None) -> str:
    """The contiguous comment block directly above ``line``.

    Comments trailing code on their own line belong to that line and end
    the block.
    """
    if index is None:
        index = comment_index(root)
    parts: List[str] = []
    target = line - 1
    while target in index:
        comments = [c for c in index[target] if _starts_line(c)]
        if not comments:
            break
        parts[:0] = [node_text(c) for c in comments]
        target = min(c.start_point[0] for c in comments)
    return "\n".join(parts)


def _starts_line(comment: Node) -> bool:
    previous = comment.prev_sibling
    return previous is None or previous.end_point[0] < comment.start_point[0]


def trailing_comment_text(root: Node, line: int,
                          index: Optional[Dict[int, List[Node]]] = None) -> str:
    """Comments that start on ``line`` itself."""
    if index is None:
        index = comment_index(root)
    parts = []
    for comments in index.values():
        for c in comments:
            if c.start_point[0] + 1 == line:
                parts.append(node_text(c))
    return "\n".join(parts)


# ============================================================================
# Namespaces & classes
# ============================================================================

def file_namespace(root: Node) -> str:
    for ns in iter_nodes(root, {"namespace_definition"}, stop_at_scopes=True):
        name = _field(ns, "name") or get_child_by_type(ns, "namespace_name")
        return node_text(name).lstrip("\\")
    return ""


def use_imports(root: Node) -> Dict[str, str]:
    """Class imports of a file: alias -> fully qualified name."""
    imports: Dict[str, str] = {}
    for decl in iter_nodes(root, {"namespace_use_declaration"}, stop_at_scopes=True):
        text = node_text(decl).strip()
        if re.match(r"use\s+(function|const)\b", text, re.I):
            continue
        body = re.sub(r"^use\s+", "", text, flags=re.I).rstrip(";").strip()
        if "{" in body:
            prefix, rest = body.split("{", 1)
            prefix = prefix.strip().rstrip("\\")
            items = [f"{prefix}\\{item.strip()}" for item in rest.rstrip("}").split(",") if item.strip()]
        else:
            items = [item.strip() for item in body.split(",") if item.strip()]
        for item in items:
            parts = re.split(r"\s+as\s+", item, flags=re.I)
            fqcn = parts[0].strip().lstrip("\\")
            alias = parts[1].strip() if len(parts) > 1 else class_basename(fqcn)
            imports[alias] = fqcn
    return imports


def iter_classes(root: Node) -> Iterator[Node]:
    return iter_nodes(root, {"class_declaration"})


def declaration_name(node: Node) -> str:
    name = _field(node, "name") or get_child_by_type(node, "name")
    return node_text(name)


def class_parent(cls: Node) -> Optional[str]:
    base = get_child_by_type(cls, "base_clause")
    if base is None:
        return None
    for child in named_children(base):
        if child.type in ("name", "qualified_name"):
            return class_basename(node_text(child))
    return None


def class_body(cls: Node) -> Optional[Node]:
    return _field(cls, "body") or get_child_by_type(cls, "declaration_list")


def class_methods(cls: Node) -> List[Node]:
    body = class_body(cls)
    if body is None:
        return []
    return [c for c in named_children(body) if c.type == "method_declaration"]


def function_body(scope: Node) -> Optional[Node]:
    return _field(scope, "body") or get_child_by_type(scope, "compound_statement")


def method_modifiers(method: Node) -> Set[str]:
    mods = set()
    for child in method.children:
        if child.type.endswith("_modifier"):
            mods.add(node_text(child).lower())
    return mods


def is_public_method(method: Node) -> bool:
    mods = method_modifiers(method)
    return not ({"private", "protected"} & mods)


def class_properties(cls: Node) -> Dict[str, Optional[Node]]:
    """Declared properties (without ``$``) mapped to their default value node."""
    props: Dict[str, Optional[Node]] = {}
    body = class_body(cls)
    if body is None:
        return props
    for decl in named_children(body):
        if decl.type != "property_declaration":
            continue
        for element in get_children_by_type(decl, "property_element"):
            var = _field(element, "name") or get_child_by_type(element, "variable_name")
            if var is None:
                continue
            value = _field(element, "default_value")
            if value is None:
                init = get_child_by_type(element, "property_initializer")
                holder = init if init is not None else element
                kids = [c for c in named_children(holder) if not same_node(c, var)]
                value = kids[-1] if kids else None
            props[node_text(var).lstrip("$")] = value
    return props


def object_creation_info(node: Optional[Node]):
    """(class basename, arguments) of ``new Foo(...)``, or None."""
    node = unwrap(node)
    if node is None or node.type != "object_creation_expression":
        return None
    cls = next((c for c in named_children(node) if c.type in ("name", "qualified_name")), None)
    if cls is None:
        return None
    return class_basename(node_text(cls)), _parse_arguments(get_child_by_type(node, "arguments"))
