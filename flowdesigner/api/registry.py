"""
registry.py - Open sessions for one API app.

The registry lives on ``app.state.registry``; routes reach it through the
``get_registry`` dependency rather than a module-level singleton.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import Request

from ..config import DesignerConfig
from ..errors import DocumentNotFoundError
from ..session import DesignerSession
from ..storage import FlowFileStore

logger = logging.getLogger(__name__)


class SessionNotFoundError(DocumentNotFoundError):
    kind = "Session"


class SessionRegistry:
    """Holds the sessions opened through one app instance."""

    def __init__(self, config: DesignerConfig):
        self.config = config
        self.files = FlowFileStore.from_config(config)
        self._sessions: Dict[str, DesignerSession] = {}

    def add(self, session: DesignerSession) -> DesignerSession:
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> DesignerSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def remove(self, session_id: str) -> None:
        self.get(session_id)
        del self._sessions[session_id]
        logger.info("Closed session %s", session_id)

    def list(self) -> List[DesignerSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry
