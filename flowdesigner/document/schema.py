"""
schema.py - SchemaResolver: per-field metadata for document paths.

The resolver walks a JSON-Schema-like document in step with a document
path. A document path and its schema path differ only in array-element
segments: predicates and indices select one element in the document, but
the schema describes the item shape once, so those segments are skipped.

    resolver = SchemaResolver(schema)
    resolver.properties_for('functiongroups/{"id":"g1"}/functions')
    resolver.definition_for("functiongroups")["required"]

Besides the plain JSON Schema keywords, definitions may carry the designer's
form-gating lists (``required``, ``hidden``, ``unchangeable``) and fields may
carry a localization object ``lng: {code, default}``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator

from .path import Index, PathLike, Predicate, parse

logger = logging.getLogger(__name__)

_UI_KEYWORDS = ("title", "description", "enum", "format", "default", "minimum", "maximum")


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class SchemaProperties:
    """Schema node reached by a walk and its ``properties`` map."""

    node: Dict[str, Any]
    properties: Dict[str, Any]
    is_array: bool = False


@dataclass
class FieldRules:
    """Form-gating lists declared on a definition."""

    required: List[str] = field(default_factory=list)
    hidden: List[str] = field(default_factory=list)
    unchangeable: List[str] = field(default_factory=list)


@dataclass
class FieldMetadata:
    """Everything a form builder needs to render one field."""

    name: str
    type: Optional[str]
    required: bool = False
    hidden: bool = False
    unchangeable: bool = False
    ui: Dict[str, Any] = field(default_factory=dict)
    lng_code: Optional[str] = None
    lng_default: Optional[str] = None

    @property
    def editable(self) -> bool:
        return not (self.hidden or self.unchangeable)

    @property
    def label(self) -> str:
        return self.lng_default or self.ui.get("title") or self.name


@dataclass
class ValidationIssue:
    """Structured schema validation error."""

    path: str
    message: str
    schema_path: Optional[str] = None
    value: Optional[Any] = None

    def __str__(self) -> str:
        if self.path:
            return f"[{self.path}] {self.message}"
        return self.message


# =============================================================================
# SchemaResolver
# =============================================================================


class SchemaResolver:
    """Resolves document paths to schema nodes, following local ``$ref``s."""

    def __init__(self, schema: Any):
        if isinstance(schema, (bytes, bytearray)):
            schema = schema.decode("utf-8")
        if isinstance(schema, str):
            schema = json.loads(schema)
        self.schema: Dict[str, Any] = schema or {}
        self._root = self._deref(self.schema) or {}

    def root_node(self) -> Dict[str, Any]:
        return self._root

    def properties_for(self, path: PathLike) -> Optional[SchemaProperties]:
        """Return the schema node for ``path`` with its properties, or None."""
        walked = self._walk(path)
        if walked is None:
            return None
        node, is_array = walked
        return SchemaProperties(node=node, properties=node.get("properties", {}), is_array=is_array)

    def definition_for(self, path: PathLike) -> Optional[Dict[str, Any]]:
        walked = self._walk(path)
        return None if walked is None else walked[0]

    def field_rules(self, path: PathLike) -> Optional[FieldRules]:
        definition = self.definition_for(path)
        if definition is None:
            return None
        return FieldRules(
            required=list(definition.get("required", [])),
            hidden=list(definition.get("hidden", [])),
            unchangeable=list(definition.get("unchangeable", [])),
        )

    def field_metadata(self, path: PathLike, name: str) -> Optional[FieldMetadata]:
        """Metadata for field ``name`` of the object at ``path``."""
        props = self.properties_for(path)
        if props is None or name not in props.properties:
            return None
        field_schema = self._deref(props.properties[name]) or {}
        rules = FieldRules(
            required=list(props.node.get("required", [])),
            hidden=list(props.node.get("hidden", [])),
            unchangeable=list(props.node.get("unchangeable", [])),
        )
        ui = {k: field_schema[k] for k in _UI_KEYWORDS if k in field_schema}
        ui.update(field_schema.get("ui", {}))
        lng = field_schema.get("lng") or {}
        return FieldMetadata(
            name=name,
            type=field_schema.get("type"),
            required=name in rules.required,
            hidden=name in rules.hidden,
            unchangeable=name in rules.unchangeable,
            ui=ui,
            lng_code=lng.get("code"),
            lng_default=lng.get("default"),
        )

    def is_editable(self, path: PathLike, name: str) -> bool:
        metadata = self.field_metadata(path, name)
        return metadata is not None and metadata.editable

    def validate(self, document: Any) -> List[ValidationIssue]:
        """Validate a whole document. Empty list means valid."""
        issues: List[ValidationIssue] = []
        validator = Draft7Validator(self.schema)
        for error in validator.iter_errors(document):
            issues.append(
                ValidationIssue(
                    path="/".join(str(p) for p in error.absolute_path),
                    message=error.message,
                    schema_path="/".join(str(p) for p in error.schema_path),
                    value=error.instance,
                )
            )
        issues.sort(key=lambda issue: issue.path)
        return issues

    # -------------------------------------------------------------------------
    # Walking
    # -------------------------------------------------------------------------

    def _walk(self, path: PathLike) -> Optional[Tuple[Dict[str, Any], bool]]:
        segments = [s for s in parse(path) if not isinstance(s, (Predicate, Index))]
        node = self._root
        is_array = False
        for position, segment in enumerate(segments):
            properties = node.get("properties") if isinstance(node, dict) else None
            if not properties or str(segment) not in properties:
                logger.debug("No schema property for '%s'", segment)
                return None
            prop = properties[str(segment)]
            if not isinstance(prop, dict):
                return None
            if "$ref" in prop:
                target, is_array = self._deref(prop), False
            elif prop.get("type") == "array":
                target, is_array = self._deref(prop.get("items", {})), True
            else:
                target, is_array = prop, False
            if target is None:
                return None
            last = position == len(segments) - 1
            if last or not self._is_object(target):
                return target, is_array
            node = target
        return node, is_array

    @staticmethod
    def _is_object(node: Dict[str, Any]) -> bool:
        return node.get("type") == "object" or ("type" not in node and "properties" in node)

    def _deref(self, node: Any) -> Optional[Dict[str, Any]]:
        seen = set()
        while isinstance(node, dict) and "$ref" in node:
            ref = node["$ref"]
            if ref in seen:
                logger.warning("Circular $ref %s", ref)
                return None
            seen.add(ref)
            node = self._lookup(ref)
        return node

    def _lookup(self, ref: str) -> Optional[Dict[str, Any]]:
        if not isinstance(ref, str) or not ref.startswith("#"):
            logger.debug("Unsupported $ref %r", ref)
            return None
        node: Any = self.schema
        for part in ref[1:].split("/"):
            if not part:
                continue
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(node, dict) or part not in node:
                logger.debug("Dangling $ref %s", ref)
                return None
            node = node[part]
        return node if isinstance(node, dict) else None
