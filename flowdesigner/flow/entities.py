"""
entities.py - Graph mirror of a flow document.

These objects are rebuilt from the document after every structural edit and
only exist to feed a renderer. The document stays the source of truth.

All dataclasses have to_dict() methods for JSON serialization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

START_NODE_ID = "start"

# Node types
START = "Start"
FUNC_GROUP = "FuncGroup"
FUNCTION = "Function"
OPERATION = "Operation"

# Link kinds
FUNCTION_LINK = "FunctionLink"
GROUP_LINK = "GroupLink"
SIMPLE_LINK = "SimpleLink"

# Group link roles
ROUTE = "route"
DEFAULT = "default"
FIRST = "first"


@dataclass
class Port:
    """Connection point on a function node; ids are parameter ids."""
    id: str
    name: str
    direction: str  # "input" or "output"
    datatype: int = 0
    source: Optional[int] = None
    aliasname: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Node:
    id: str
    type: str  # Start, FuncGroup, Function, Operation
    name: str
    description: str = ""
    x: float = 0
    y: float = 0
    width: float = 200
    height: float = 100
    routing: Optional[str] = None
    functype: Optional[int] = None
    ports: List[Port] = field(default_factory=list)

    def port(self, port_id: str) -> Optional[Port]:
        for port in self.ports:
            if port.id == port_id:
                return port
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Link:
    """Edge between two nodes.

    Group links carry a ``role`` (route, default or first) and, for routes,
    the index of the value/target pair in the source group's routerdef.
    Function links name the output and input parameter ids as ports.
    """
    id: str
    kind: str
    source: str
    target: str
    label: str = ""
    source_port: Optional[str] = None
    target_port: Optional[str] = None
    role: Optional[str] = None
    route_index: Optional[int] = None
    merge_point: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MergePoint:
    id: int
    links: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GraphPayload:
    """Graph data for one editing level."""
    level: str
    group: Optional[str] = None
    nodes: List[Node] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)
    merge_points: List[MergePoint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def route_link_id(group_id: str, index: int) -> str:
    return f"route:{group_id}:{index}"


def default_link_id(group_id: str) -> str:
    return f"default:{group_id}"


def first_link_id(group_id: str) -> str:
    return f"first:{group_id}"


def function_link_id(source_fn: str, source_port: str, target_fn: str, target_port: str) -> str:
    return f"fn:{source_fn}:{source_port}:{target_fn}:{target_port}"


def simple_link_id(source: Any, target: Any) -> str:
    return f"op:{source}:{target}"
