"""
Flow listing and health endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ... import __version__
from ..registry import SessionRegistry, get_registry
from .models import FlowListResponse, FlowSummaryModel, HealthResponse

router = APIRouter(prefix="/api", tags=["flows"])


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)):
    return HealthResponse(status="ok", version=__version__, sessions=len(registry))


@router.get("/flows", response_model=FlowListResponse)
async def list_flows(registry: SessionRegistry = Depends(get_registry)):
    """List flows stored in the flows directory."""
    return FlowListResponse(flows=[FlowSummaryModel(**s.to_dict()) for s in registry.files.list_flows()])
