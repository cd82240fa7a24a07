"""
Mass assignment analyzer.

Detects Eloquent models without ``$fillable``/``$guarded`` protection and
model or query builder writes fed with unfiltered request payloads.
"""

import logging
from pathlib import Path
from typing import List, Optional, Set

from tree_sitter import Node

from larashield.analyzers.base import Analyzer
from larashield.ast_query import (
    CallInfo, array_entries, call_chain, class_parent, class_properties,
    declaration_name, file_namespace, get_node_column, get_node_line, iter_calls,
    iter_classes, unwrap, use_imports,
)
from larashield.classifier import ClassKind, ClassNameClassifier
from larashield.models import AnalyzerMetadata, Category, Issue, Severity
from larashield.parser import SourceFile
from larashield.provenance import MASS_ASSIGNMENT_RULES, ProvenanceTracker, ValueOrigin

logger = logging.getLogger(__name__)

MODEL_STATIC_METHODS = {
    "create", "forcecreate", "firstorcreate", "updateorcreate", "firstornew",
    "make", "insert", "upsert", "insertorignore",
}

MODEL_INSTANCE_METHODS = {"fill", "forcefill", "update"}

BUILDER_METHODS = {
    "update", "insert", "upsert", "insertorignore", "insertusing", "insertgetid",
    "updateorinsert",
}

# Calls that turn a model class or table into a query builder
BUILDER_SOURCES = {"query", "table", "where", "wherein", "wherekey", "newquery"}

CALL_TYPE_LABELS = {
    "static": "Static call to",
    "instance": "Instance call to",
    "builder": "Query builder call to",
}


def is_model_class(cls: Node, namespace: str) -> bool:
    """Extends ``Model`` (or an ``Authenticatable`` user), or lives in ``App\\Models``."""
    parent = class_parent(cls)
    if parent in ("Model", "Authenticatable", "Pivot"):
        return True
    return namespace == "App\\Models" or namespace.startswith("App\\Models\\")


class MassAssignmentAnalyzer(Analyzer):
    """Detects mass assignment vulnerabilities in models and write calls."""

    def metadata(self) -> AnalyzerMetadata:
        return AnalyzerMetadata(
            id="mass-assignment-vulnerabilities",
            name="Mass Assignment Vulnerabilities Analyzer",
            description="Detects mass assignment vulnerabilities in Eloquent models and query builders",
            category=Category.SECURITY,
            severity=Severity.HIGH,
            tags=("mass-assignment", "eloquent", "security", "models", "sql-injection"),
            time_to_fix=25,
        )

    def should_run(self) -> bool:
        return self.build_path("app", "Models").is_dir()

    def get_skip_reason(self) -> str:
        return "No app/Models directory found"

    def known_models(self) -> Set[str]:
        """Basenames of the model classes declared under app/Models."""
        names = set()
        for path in self.php_files(["app/Models"]):
            source = self.parse_file(path)
            if source is None:
                continue
            names.update(declaration_name(cls) for cls in iter_classes(source.root))
        names.discard("")
        return names

    def run_analysis(self):
        issues: List[Issue] = []
        models = self.known_models()
        logger.debug("mass-assignment: %d known models", len(models))

        for path in self.php_files():
            source = self.parse_file(path)
            if source is None:
                continue
            namespace = file_namespace(source.root)
            for cls in iter_classes(source.root):
                if is_model_class(cls, namespace):
                    issues.extend(self._check_model_protection(source, path, cls))

            classifier = ClassNameClassifier(known_models=models, imports=use_imports(source.root))
            tracker = ProvenanceTracker(MASS_ASSIGNMENT_RULES)
            issues.extend(self._check_write_calls(source, path, classifier, tracker))

        count = len(issues)
        message = ("No mass assignment vulnerabilities detected" if not issues else
                   f"Found {count} potential mass assignment vulnerabilit{'y' if count == 1 else 'ies'}")
        return self.result_by_severity(message, issues)

    # ========================================================================
    # Model protection
    # ========================================================================

    def _check_model_protection(self, source: SourceFile, path: Path, cls: Node) -> List[Issue]:
        issues = []
        props = class_properties(cls)
        name = declaration_name(cls) or "Unknown"
        line = get_node_line(cls)

        if "fillable" not in props and "guarded" not in props:
            issues.append(self.create_issue(
                message=f"Model '{name}' lacks mass assignment protection ($fillable or $guarded)",
                location=self.location(path, line),
                severity=Severity.HIGH,
                recommendation='Add protected $fillable = [...] or protected $guarded = ["*"] to the model',
                metadata={"model": name, "issue_type": "missing_model_protection"},
                code=self.code_snippet(source, line),
            ))

        guarded = unwrap(props.get("guarded"))
        if guarded is not None and guarded.type == "array_creation_expression" and not array_entries(guarded):
            issues.append(self.create_issue(
                message=f"Model '{name}' has $guarded = [] which allows mass assignment of all attributes",
                location=self.location(path, line),
                severity=Severity.CRITICAL,
                recommendation='Either specify fillable attributes or use $guarded = ["*"] to protect all',
                metadata={"model": name, "issue_type": "empty_guarded_array"},
                code=self.code_snippet(source, line),
            ))
        return issues

    # ========================================================================
    # Write calls
    # ========================================================================

    @staticmethod
    def _is_builder_call(call: CallInfo, classifier: ClassNameClassifier) -> bool:
        """A method call whose receiver chain starts a query on a model or table."""
        chain = call_chain(call.node)[:-1]
        for link in chain:
            if link.kind == "static":
                kind = classifier.classify(link.scope_name)
                if kind == ClassKind.QUERY_BUILDER_FACADE:
                    return True
                if kind == ClassKind.ELOQUENT_MODEL and link.lower_name not in ("find", "findorfail", "first"):
                    return True
            elif link.kind == "method" and link.lower_name in BUILDER_SOURCES:
                return True
        return False

    def _call_type(self, call: CallInfo, classifier: ClassNameClassifier) -> Optional[str]:
        name = call.lower_name
        if call.kind == "static":
            if name in MODEL_STATIC_METHODS and classifier.is_model(call.scope_name):
                return "static"
            return None
        if call.kind != "method":
            return None
        if name in BUILDER_METHODS and self._is_builder_call(call, classifier):
            return "builder"
        if name in MODEL_INSTANCE_METHODS:
            return "instance"
        return None

    def _check_write_calls(self, source: SourceFile, path: Path,
                           classifier: ClassNameClassifier,
                           tracker: ProvenanceTracker) -> List[Issue]:
        issues = []
        for call in iter_calls(source.root):
            call_type = self._call_type(call, classifier)
            if call_type is None or not call.arguments:
                continue
            if not any(tracker.classify(arg.value) == ValueOrigin.RAW_INPUT for arg in call.arguments):
                continue
            line = get_node_line(call.node)
            issues.append(self.create_issue(
                message=(f"{CALL_TYPE_LABELS[call_type]} {call.name}() with unfiltered request data "
                         "may result in mass assignment vulnerability"),
                location=self.location(path, line, get_node_column(call.node)),
                severity=Severity.CRITICAL,
                recommendation=("Use request()->only([...]) or request()->validated() "
                                "to specify allowed fields explicitly"),
                metadata={"method": call.name, "call_type": call_type,
                          "issue_type": "dangerous_method_with_request_data"},
                code=self.code_snippet(source, line),
            ))
        return issues
