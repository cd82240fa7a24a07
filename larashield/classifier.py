"""Name-based classification of the classes a call is made on."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from tree_sitter import Node

from larashield.ast_query import (
    CALL_TYPES, PROPERTY_ACCESS_TYPES, call_info, class_basename, named_children,
    node_text, unwrap,
)


class ClassKind(Enum):
    ELOQUENT_MODEL = "eloquent_model"
    QUERY_BUILDER_FACADE = "query_builder_facade"
    REQUEST_ACCESSOR = "request_accessor"
    UNKNOWN = "unknown"


# Class name endings that are never Eloquent models
NON_MODEL_SUFFIXES = (
    "Request", "Action", "Factory", "Service", "Controller", "Job", "Event",
    "Listener", "Policy", "Resource", "Collection", "Repository", "Middleware",
    "Provider", "Facade", "Helper", "Command", "Mail", "Notification",
    "Exception", "Rule", "Seeder", "Test", "Observer", "Builder", "Manager",
    "Handler", "Validator", "Enum", "Trait", "Interface",
)

KNOWN_FACADES = {
    "App", "Arr", "Artisan", "Auth", "Blade", "Broadcast", "Bus", "Cache",
    "Carbon", "Config", "Cookie", "Crypt", "Date", "Event", "Factory", "File",
    "Gate", "Hash", "Http", "Lang", "Log", "Mail", "Notification", "Password",
    "Process", "Queue", "RateLimiter", "Redirect", "Redis", "Response", "Route",
    "Schema", "Session", "Storage", "Str", "URL", "Validator", "View", "Vite",
    "self", "static", "parent",
}

QUERY_BUILDER_FACADES = {"DB"}

REQUEST_FACADES = {"Request", "Input"}

REQUEST_VARIABLES = {"$request", "$req"}

SUPERGLOBALS = {
    "$_GET", "$_POST", "$_REQUEST", "$_COOKIE", "$_FILES", "$_SERVER", "$_ENV",
    "$_SESSION", "$GLOBALS",
}


@dataclass
class ClassNameClassifier:
    """Classify class names as models, facades or request accessors.

    Attributes:
        known_models: Basenames of classes found under ``app/Models``.
        imports: The current file's ``use`` imports (alias -> FQCN).
    """
    known_models: Set[str] = field(default_factory=set)
    imports: Dict[str, str] = field(default_factory=dict)

    def resolve(self, name: str) -> str:
        """Fully qualified name when imported, else the name as written."""
        stripped = name.strip().lstrip("\\")
        return self.imports.get(stripped, stripped)

    def classify(self, name: str) -> ClassKind:
        base = class_basename(name)
        fqcn = self.resolve(name)
        if not base:
            return ClassKind.UNKNOWN
        if base in QUERY_BUILDER_FACADES:
            return ClassKind.QUERY_BUILDER_FACADE
        if base in REQUEST_FACADES or base.endswith("Request"):
            return ClassKind.REQUEST_ACCESSOR
        if base in KNOWN_FACADES or base.endswith(NON_MODEL_SUFFIXES):
            return ClassKind.UNKNOWN
        if base in self.known_models:
            return ClassKind.ELOQUENT_MODEL
        if "\\Models\\" in f"\\{fqcn}" or "\\Model\\" in f"\\{fqcn}":
            return ClassKind.ELOQUENT_MODEL
        return ClassKind.UNKNOWN

    def is_model(self, name: str) -> bool:
        return self.classify(name) == ClassKind.ELOQUENT_MODEL


def is_request_expression(node: Optional[Node]) -> bool:
    """``$request``, ``request()``, ``$this->request`` or a request facade scope."""
    node = unwrap(node)
    if node is None:
        return False
    if node.type == "variable_name":
        text = node_text(node)
        return text in REQUEST_VARIABLES or text.endswith("Request")
    if node.type in PROPERTY_ACCESS_TYPES:
        kids = named_children(node)
        return bool(kids) and node_text(kids[-1]) == "request" and node_text(kids[0]) == "$this"
    if node.type in ("name", "qualified_name"):
        return class_basename(node_text(node)) in REQUEST_FACADES
    if node.type in CALL_TYPES:
        info = call_info(node)
        return (info is not None and info.kind == "function"
                and info.lower_name == "request" and not info.arguments)
    return False


def is_request_chain(node: Optional[Node]) -> bool:
    """A request expression, possibly behind accessor calls like ``request()->json()``."""
    current = unwrap(node)
    while current is not None:
        if is_request_expression(current):
            return True
        info = call_info(current)
        if info is None:
            return False
        if info.kind == "static":
            return info.scope_name in REQUEST_FACADES
        if info.kind != "method":
            return False
        current = unwrap(info.receiver)
    return False
