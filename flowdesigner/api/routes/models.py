"""
Pydantic models for the session and flow endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Request Models
# =============================================================================


class SessionCreateRequest(BaseModel):
    """Open a stored flow, an inline document, or a brand new flow."""

    flow_id: Optional[str] = Field(None, description="Stored flow to open")
    document: Optional[Any] = Field(None, description="Inline document (ignored when flow_id is set)")
    schema_name: Optional[str] = Field(None, description="Schema file to load from the schemas directory")
    schema_document: Optional[Dict[str, Any]] = Field(None, description="Inline schema")
    flat: bool = Field(False, description="Start a new block-sequence flow instead of a transaction")


class NodeWriteRequest(BaseModel):
    path: str = Field("", description="Slash-delimited address")
    value: Any = Field(None, description="Value to insert or update")


class GroupCreateRequest(BaseModel):
    name: Optional[str] = None
    description: str = ""


class RenameRequest(BaseModel):
    name: str


class RoutingRequest(BaseModel):
    variable: str = ""


class RouteValueRequest(BaseModel):
    route_index: int
    value: Any


class FunctionCreateRequest(BaseModel):
    functype: Any = Field(0, description="Function type code or label")
    name: Optional[str] = None


class FieldsRequest(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)


class ParameterCreateRequest(BaseModel):
    direction: str = Field(..., description="inputs or outputs")
    name: str
    datatype: int = 0


class SessionVariableRequest(BaseModel):
    direction: str
    kind: str = Field(..., description="system or user")
    variable: str


class LinkCreateRequest(BaseModel):
    """Link two nodes. Ports are required at the group detail level."""

    source: str
    target: str
    source_port: Optional[str] = None
    target_port: Optional[str] = None


class MoveRequest(BaseModel):
    x: float
    y: float


class OperationCreateRequest(BaseModel):
    sequence: Optional[int] = None
    work_center: str = ""
    description: str = ""


class SaveRequest(BaseModel):
    flow_id: Optional[str] = Field(None, description="Target flow id (defaults to the session's)")
    schema_name: Optional[str] = Field(None, description="Validate against this schema first")


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    sessions: int


class FlowSummaryModel(BaseModel):
    id: str
    name: str
    version: str
    description: str = ""
    kind: str


class FlowListResponse(BaseModel):
    flows: List[FlowSummaryModel]


class SessionResponse(BaseModel):
    session_id: str
    flow_id: Optional[str] = None
    name: Optional[str] = None
    level: str
    group: Optional[str] = None
    dirty: bool = False
    has_schema: bool = False


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]


class NodeResponse(BaseModel):
    path: str
    found: bool
    value: Any = None
    is_array_element: bool = False
    containing_array_path: Optional[str] = None
    index: int = -1


class MutationResponse(BaseModel):
    op: str
    path: str
    applied: bool
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None


class EditResponse(BaseModel):
    """Result of a structural edit plus the rebuilt graph."""

    result: Any = None
    mutations: List[MutationResponse] = Field(default_factory=list)
    graph: Dict[str, Any] = Field(default_factory=dict)


class ChangesResponse(BaseModel):
    dirty: bool
    changes: List[Dict[str, Any]]


class SaveResponse(BaseModel):
    flow_id: str
    etag: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
