"""
Session endpoints: document access and structural edits.

Each session serializes its edits with its own asyncio.Lock; the model
itself is synchronous and single-writer.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from ...errors import EntityNotFoundError, InvalidLinkError
from ...flow import SYSTEM_SESSIONS, EditingLevel
from ...session import DesignerSession, create_session
from ...storage import compute_etag, export_filename, serialize_flow
from ..registry import SessionRegistry, get_registry
from .models import (
    ChangesResponse,
    EditResponse,
    FieldsRequest,
    FunctionCreateRequest,
    GroupCreateRequest,
    LinkCreateRequest,
    MoveRequest,
    MutationResponse,
    NodeResponse,
    NodeWriteRequest,
    OperationCreateRequest,
    ParameterCreateRequest,
    RenameRequest,
    RouteValueRequest,
    RoutingRequest,
    SaveRequest,
    SaveResponse,
    SessionCreateRequest,
    SessionListResponse,
    SessionResponse,
    SessionVariableRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _edit_response(session: DesignerSession, result: Any = None) -> EditResponse:
    mutations = [MutationResponse(**m.to_dict()) for m in session.model.last_mutations]
    if isinstance(result, list):
        result = None
    return EditResponse(result=result, mutations=mutations, graph=session.model.payload().to_dict())


async def _run_edit(session: DesignerSession, method, *args, **kwargs) -> EditResponse:
    async with session.lock:
        result = method(*args, **kwargs)
        return _edit_response(session, result)


# =============================================================================
# Session Lifecycle
# =============================================================================


@router.post("", response_model=SessionResponse, status_code=201)
async def open_session(request: SessionCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    """Open a stored flow, an inline document, or a new flow."""
    etag = None
    if request.flow_id:
        document, etag = registry.files.load_flow(request.flow_id)
    elif request.document is not None:
        document = request.document
    else:
        document = None

    schema = request.schema_document
    if request.schema_name:
        schema = registry.files.load_schema(request.schema_name)

    session = create_session(
        document if document is not None else {},
        schema,
        config=registry.config,
        flow_id=request.flow_id,
        etag=etag,
    )
    if document is None:
        session.model.new_flow(flat=request.flat)
    registry.add(session)
    return SessionResponse(**session.summary())


@router.get("", response_model=SessionListResponse)
async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    return SessionListResponse(sessions=[SessionResponse(**s.summary()) for s in registry.list()])


@router.delete("/{session_id}", status_code=204)
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    registry.remove(session_id)
    return Response(status_code=204)


@router.get("/{session_id}/document")
async def get_document(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Whole document, with the ETag of the content as it would be saved."""
    session = registry.get(session_id)
    etag = compute_etag(serialize_flow(session.store.root))
    return JSONResponse(content=session.store.root, headers={"ETag": f'"{etag}"'})


@router.get("/{session_id}/export")
async def export_document(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    filename = export_filename(session.store.root) if isinstance(session.store.root, dict) else "flow.json"
    return Response(
        content=serialize_flow(session.store.root),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.put("/{session_id}/document", response_model=EditResponse)
async def import_document(session_id: str, document: Any = Body(...), registry: SessionRegistry = Depends(get_registry)):
    """Replace the whole document (import)."""
    session = registry.get(session_id)
    async with session.lock:
        session.model.load_document(document)
        session.model.last_mutations = []
        return _edit_response(session)


@router.get("/{session_id}/changes", response_model=ChangesResponse)
async def get_changes(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    changes = session.store.get_changes()
    return ChangesResponse(dirty=session.store.dirty, changes=[c.to_dict() for c in changes.values()])


@router.post("/{session_id}/save", response_model=SaveResponse)
async def save_session(
    session_id: str,
    request: SaveRequest,
    if_match: Optional[str] = Header(None, alias="If-Match"),
    registry: SessionRegistry = Depends(get_registry),
):
    """Save the document to the flows directory.

    Raises:
        409: If-Match (or the session's load-time ETag) no longer matches.
        422: Schema validation failed.
    """
    session = registry.get(session_id)
    flow_id = request.flow_id or session.flow_id
    if not flow_id:
        raise HTTPException(
            status_code=422,
            detail={"error": "flow_id_required", "message": "flow_id is required to save a new flow", "details": {}},
        )
    async with session.lock:
        expected = if_match or (session.etag if flow_id == session.flow_id else None)
        etag = registry.files.save_flow(flow_id, session.store.root, etag=expected, schema=request.schema_name)
        session.flow_id, session.etag = flow_id, etag
    return SaveResponse(flow_id=flow_id, etag=etag)


# =============================================================================
# Path-Addressed Access
# =============================================================================


@router.get("/{session_id}/nodes", response_model=NodeResponse)
async def get_node(session_id: str, path: str = Query(""), registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    resolution = session.store.get(path)
    if resolution is None:
        return NodeResponse(path=path, found=False)
    return NodeResponse(
        path=path,
        found=True,
        value=resolution.value,
        is_array_element=resolution.is_array_element,
        containing_array_path=resolution.containing_array_path,
        index=resolution.index,
    )


async def _write(session: DesignerSession, op: str, path: str, value: Any = None) -> MutationResponse:
    async with session.lock:
        store = session.store
        if op == "insert":
            result = store.insert(path, value)
        elif op == "update":
            result = store.update(path, value)
        else:
            result = store.delete(path)
        if result.applied:
            session.model.rebuild()
    return MutationResponse(**result.to_dict())


@router.post("/{session_id}/nodes", response_model=MutationResponse)
async def insert_node(session_id: str, request: NodeWriteRequest, registry: SessionRegistry = Depends(get_registry)):
    return await _write(registry.get(session_id), "insert", request.path, request.value)


@router.patch("/{session_id}/nodes", response_model=MutationResponse)
async def update_node(session_id: str, request: NodeWriteRequest, registry: SessionRegistry = Depends(get_registry)):
    return await _write(registry.get(session_id), "update", request.path, request.value)


@router.delete("/{session_id}/nodes", response_model=MutationResponse)
async def delete_node(session_id: str, path: str = Query(...), registry: SessionRegistry = Depends(get_registry)):
    return await _write(registry.get(session_id), "delete", path)


# =============================================================================
# Graph
# =============================================================================


@router.get("/{session_id}/graph")
async def get_graph(
    session_id: str,
    level: Optional[EditingLevel] = None,
    group: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(session_id)
    async with session.lock:
        if level is not None:
            session.model.switch_level(level, group)
        return session.model.payload().to_dict()


@router.get("/{session_id}/variables")
async def get_session_variables(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return {"system": list(SYSTEM_SESSIONS), "user": session.model.user_sessions()}


@router.post("/{session_id}/move/{node_id}", response_model=EditResponse)
async def move_node(session_id: str, node_id: str, request: MoveRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.move_node, node_id, request.x, request.y)


# =============================================================================
# Function Groups
# =============================================================================


@router.post("/{session_id}/groups", response_model=EditResponse, status_code=201)
async def add_group(session_id: str, request: GroupCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.add_function_group, request.name, request.description)


@router.post("/{session_id}/groups/{group_id}/rename", response_model=EditResponse)
async def rename_group(session_id: str, group_id: str, request: RenameRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.rename_function_group, group_id, request.name)


@router.patch("/{session_id}/groups/{group_id}", response_model=EditResponse)
async def update_group(session_id: str, group_id: str, request: FieldsRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.update_function_group, group_id, request.fields)


@router.post("/{session_id}/groups/{group_id}/routing", response_model=EditResponse)
async def set_routing(session_id: str, group_id: str, request: RoutingRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.set_routing_variable, group_id, request.variable)


@router.post("/{session_id}/groups/{group_id}/routes", response_model=EditResponse)
async def set_route_value(session_id: str, group_id: str, request: RouteValueRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.set_route_value, group_id, request.route_index, request.value)


@router.delete("/{session_id}/groups/{group_id}", response_model=EditResponse)
async def delete_group(session_id: str, group_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.delete_function_group, group_id)


# =============================================================================
# Functions and Parameters
# =============================================================================


@router.post("/{session_id}/functions", response_model=EditResponse, status_code=201)
async def add_function(session_id: str, request: FunctionCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.add_function, request.functype, request.name)


@router.post("/{session_id}/functions/{function_id}/rename", response_model=EditResponse)
async def rename_function(session_id: str, function_id: str, request: RenameRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.rename_function, function_id, request.name)


@router.patch("/{session_id}/functions/{function_id}", response_model=EditResponse)
async def update_function(session_id: str, function_id: str, request: FieldsRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.update_function, function_id, request.fields)


@router.delete("/{session_id}/functions/{function_id}", response_model=EditResponse)
async def delete_function(session_id: str, function_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.delete_function, function_id)


@router.post("/{session_id}/functions/{function_id}/parameters", response_model=EditResponse, status_code=201)
async def add_parameter(session_id: str, function_id: str, request: ParameterCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.add_parameter, function_id, request.direction, request.name, request.datatype)


@router.post("/{session_id}/functions/{function_id}/parameters/{param_id}/rename", response_model=EditResponse)
async def rename_parameter(
    session_id: str,
    function_id: str,
    param_id: str,
    request: RenameRequest,
    direction: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.rename_parameter, function_id, direction, param_id, request.name)


@router.delete("/{session_id}/functions/{function_id}/parameters/{param_id}", response_model=EditResponse)
async def delete_parameter(
    session_id: str,
    function_id: str,
    param_id: str,
    direction: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.delete_parameter, function_id, direction, param_id)


@router.post("/{session_id}/functions/{function_id}/parameters/{param_id}/session", response_model=EditResponse)
async def assign_session_variable(
    session_id: str,
    function_id: str,
    param_id: str,
    request: SessionVariableRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(session_id)
    return await _run_edit(
        session, session.model.assign_session_variable,
        function_id, request.direction, param_id, request.kind, request.variable,
    )


# =============================================================================
# Links and Operations
# =============================================================================


@router.post("/{session_id}/links", response_model=EditResponse, status_code=201)
async def add_link(session_id: str, request: LinkCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    """Connect two nodes using the link type of the active level."""
    session = registry.get(session_id)
    model = session.model
    if model.level == EditingLevel.GROUP_DETAIL:
        if not request.source_port or not request.target_port:
            raise InvalidLinkError("source_port and target_port are required for function links")
        return await _run_edit(
            session, model.connect_functions, request.source, request.source_port, request.target, request.target_port
        )
    if model.level == EditingLevel.FLAT_BLOCK_SEQUENCE:
        return await _run_edit(session, model.connect_blocks, request.source, request.target)
    return await _run_edit(session, model.connect_groups, request.source, request.target)


@router.delete("/{session_id}/links/{link_id}", response_model=EditResponse)
async def delete_link(session_id: str, link_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.delete_link, link_id)


@router.post("/{session_id}/operations", response_model=EditResponse, status_code=201)
async def add_operation(session_id: str, request: OperationCreateRequest, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return await _run_edit(session, session.model.add_operation, request.sequence, request.work_center, request.description)


@router.post("/{session_id}/links/{link_id}/merge", response_model=EditResponse, status_code=201)
async def add_merge_point(session_id: str, link_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    link = session.model.get_link(link_id)
    if link is None:
        raise EntityNotFoundError("link", link_id)
    return await _run_edit(session, session.model.add_merge_point, link.source, link.target)


# =============================================================================
# Schema
# =============================================================================


@router.get("/{session_id}/schema/properties")
async def schema_properties(session_id: str, path: str = Query(""), registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    props = session.schema.properties_for(path) if session.schema else None
    if props is None:
        return {"path": path, "found": False}
    return {"path": path, "found": True, "is_array": props.is_array, "properties": props.properties}


@router.get("/{session_id}/schema/definition")
async def schema_definition(session_id: str, path: str = Query(""), registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    definition = session.schema.definition_for(path) if session.schema else None
    if definition is None:
        return {"path": path, "found": False}
    return {"path": path, "found": True, "definition": definition}
