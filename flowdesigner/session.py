"""
session.py - Explicit editing context for one open flow.

A DesignerSession bundles the FlowGraphModel (and through it the
DocumentStore), the optional SchemaResolver and the storage bookkeeping for
one document. Callers pass sessions around; nothing is kept in module state.

Loading is the only asynchronous step: the document and its schema are
fetched concurrently and both must arrive before the graph is built.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

from .config import DesignerConfig
from .document import DocumentStore, SchemaResolver
from .errors import FetchError
from .flow import FlowGraphModel
from .flow.document import generate_id

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[str]]

DEFAULT_FETCH_TIMEOUT = 10.0


@dataclass
class DesignerSession:
    """One open document with its graph model and optional schema."""

    id: str
    model: FlowGraphModel
    schema: Optional[SchemaResolver] = None
    flow_id: Optional[str] = None
    etag: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def store(self) -> DocumentStore:
        return self.model.store

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "flow_id": self.flow_id,
            "name": self.store.get_data("name"),
            "level": self.model.level.value,
            "group": self.model.group_id,
            "dirty": self.store.dirty,
            "has_schema": self.schema is not None,
        }


def create_session(
    document: Any,
    schema: Any = None,
    config: Optional[DesignerConfig] = None,
    flow_id: Optional[str] = None,
    etag: Optional[str] = None,
    session_id: Optional[str] = None,
) -> DesignerSession:
    """Build a session from already-loaded document/schema values."""
    model = FlowGraphModel.from_document(document, config=config)
    resolver = SchemaResolver(schema) if schema is not None else None
    session = DesignerSession(
        id=session_id or generate_id(),
        model=model,
        schema=resolver,
        flow_id=flow_id,
        etag=etag,
    )
    logger.info("Opened session %s for '%s'", session.id, model.store.get_data("name") or flow_id or "")
    return session


async def fetch_text(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> str:
    """Fetch text over HTTP(S), or read a local path / file:// URL."""
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            raise FetchError(url, str(e)) from e

    path = Path(parsed.path) if parsed.scheme == "file" else Path(url)
    try:
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
    except OSError as e:
        raise FetchError(url, str(e)) from e


async def open_session(
    document_url: str,
    schema_url: Optional[str] = None,
    fetch: Fetch = fetch_text,
    config: Optional[DesignerConfig] = None,
) -> DesignerSession:
    """Fetch a document (and schema) concurrently, then build the session."""
    if schema_url:
        document_text, schema_text = await asyncio.gather(fetch(document_url), fetch(schema_url))
    else:
        document_text, schema_text = await fetch(document_url), None

    document = _parse_json(document_url, document_text)
    schema = _parse_json(schema_url, schema_text) if schema_text is not None else None
    return create_session(document, schema, config=config)


def _parse_json(url: str, text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise FetchError(url, f"invalid JSON: {e}") from e
