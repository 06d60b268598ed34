"""
sessions.py - Session variables referenced by a flow.

System sessions are fixed; user sessions are whatever names the flow reads
from (inputs with a user-session source) or writes to (outputs routed to the
session).
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List

from .document import SYSTEM_SESSIONS, InputSource, OutputDest, as_code

__all__ = ["SYSTEM_SESSIONS", "iter_functions", "user_sessions", "is_system_session"]


def is_system_session(name: str) -> bool:
    return name in SYSTEM_SESSIONS


def iter_functions(document: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for group in document.get("functiongroups", []) or []:
        if not isinstance(group, dict):
            continue
        for function in group.get("functions", []) or []:
            if isinstance(function, dict):
                yield function


def _output_pairs(param: Dict[str, Any]):
    dest = param.get("outputdest", [])
    alias = param.get("aliasname", [])
    if not isinstance(dest, list):
        dest = [dest]
    if not isinstance(alias, list):
        alias = [alias]
    return zip(dest, alias)


def user_sessions(document: Dict[str, Any]) -> List[str]:
    """Sorted, de-duplicated user session names used anywhere in the flow."""
    names = set()
    for function in iter_functions(document):
        for param in function.get("inputs", []):
            if as_code(param.get("source")) == InputSource.USER_SESSION and param.get("aliasname"):
                names.add(param["aliasname"])
        for param in function.get("outputs", []):
            for dest, alias in _output_pairs(param):
                if as_code(dest) == OutputDest.SESSION and alias:
                    names.add(alias)
    return sorted(names)
