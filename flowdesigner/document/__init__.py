"""Path-addressed JSON document engine."""

from .path import Index, Key, NodeResolution, Predicate, format_path, join, parse, predicate, resolve
from .schema import FieldMetadata, FieldRules, SchemaProperties, SchemaResolver, ValidationIssue
from .store import DocumentStore, FieldChange, MutationResult

__all__ = [
    "DocumentStore",
    "FieldChange",
    "FieldMetadata",
    "FieldRules",
    "Index",
    "Key",
    "MutationResult",
    "NodeResolution",
    "Predicate",
    "SchemaProperties",
    "SchemaResolver",
    "ValidationIssue",
    "format_path",
    "join",
    "parse",
    "predicate",
    "resolve",
]
