"""
errors.py - Error taxonomy for the flow designer.

Resolution failures (unknown paths, schema mismatches) are never raised;
they surface as None or as a non-applied MutationResult. The classes below
cover the failures that must reach the caller: uniqueness, naming and
structural validity of graph edits, plus the storage and loading edges.
"""

from __future__ import annotations

from typing import Optional


class FlowDesignerError(Exception):
    """Base exception for flow designer errors."""

    pass


class NotFoundError(FlowDesignerError):
    """Base for every lookup that names something that does not exist."""

    pass


# =============================================================================
# Edit Validation Errors
# =============================================================================


class UniquenessViolation(FlowDesignerError):
    """Raised when a create/rename would duplicate a sibling name."""

    def __init__(self, kind: str, name: str, scope: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.scope = scope
        msg = f"{kind} name '{name}' already exists"
        if scope:
            msg += f" in {scope}"
        super().__init__(msg)


class InvalidNameError(FlowDesignerError):
    """Raised when a name is empty or contains disallowed characters."""

    def __init__(self, kind: str, name: str, reason: str = "only letters, digits, '_' and '-' are allowed"):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid {kind} name '{name}': {reason}")


class InvalidLinkError(FlowDesignerError):
    """Raised when a connect/disconnect request is structurally invalid."""

    def __init__(self, reason: str, source: Optional[str] = None, target: Optional[str] = None):
        self.reason = reason
        self.source = source
        self.target = target
        super().__init__(reason)


class InvalidAssignmentError(FlowDesignerError):
    """Raised when a value cannot be assigned to a field, parameter or session."""

    pass


class EditingLevelError(FlowDesignerError):
    """Raised when an edit does not belong to the active editing level."""

    def __init__(self, operation: str, level: str):
        self.operation = operation
        self.level = level
        super().__init__(f"'{operation}' is not available at editing level '{level}'")


class EntityNotFoundError(NotFoundError):
    """Raised when an edit names a group, function, parameter or link that does not exist."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} '{ident}' not found")


class EditNotAppliedError(FlowDesignerError):
    """Raised when a create or connect edit could not write to the document.

    The store reports why (``read-only``, ``path not found``); the edit's
    new id is never handed out in that case.
    """

    def __init__(self, op: str, path: str, reason: str):
        self.op = op
        self.path = path
        self.reason = reason
        super().__init__(f"{op} at '{path}' was not applied: {reason}")


# =============================================================================
# Storage / Loading Errors
# =============================================================================


class DocumentNotFoundError(NotFoundError):
    """Raised when a requested flow or schema file does not exist."""

    kind = "Document"

    def __init__(self, doc_id: str, path=None):
        self.doc_id = doc_id
        self.path = path
        msg = f"{self.kind} '{doc_id}' not found"
        if path:
            msg += f" at {path}"
        super().__init__(msg)


class FlowNotFoundError(DocumentNotFoundError):
    kind = "Flow"


class SchemaNotFoundError(DocumentNotFoundError):
    kind = "Schema"


class FlowValidationError(FlowDesignerError):
    """Raised when a flow document fails schema validation on save."""

    def __init__(self, flow_id: str, issues):
        self.flow_id = flow_id
        self.issues = issues
        super().__init__(f"Flow '{flow_id}' validation failed: " + "; ".join(str(i) for i in issues))


class ConcurrencyError(FlowDesignerError):
    """Raised when a save carries an ETag that no longer matches the stored flow."""

    def __init__(self, flow_id: str, client_etag: str, stored_etag: str):
        self.flow_id = flow_id
        self.client_etag = client_etag
        self.stored_etag = stored_etag
        super().__init__(
            f"Flow '{flow_id}' changed on disk after it was loaded "
            f"(save sent {client_etag[:12]}, store holds {stored_etag[:12]})"
        )


class FetchError(FlowDesignerError):
    """Raised when a document or schema cannot be fetched."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")
