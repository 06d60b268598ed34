"""Flow documents and the graph editing model built on DocumentStore."""

from .document import (
    SYSTEM_SESSIONS,
    DataType,
    FunctionType,
    InputSource,
    OutputDest,
    generate_id,
    new_flow_document,
    normalize_flow_document,
)
from .entities import START_NODE_ID, GraphPayload, Link, MergePoint, Node, Port
from .model import EditingLevel, FlowGraphModel, LinkCheck
from .sessions import user_sessions

__all__ = [
    "DataType",
    "EditingLevel",
    "FlowGraphModel",
    "FunctionType",
    "GraphPayload",
    "InputSource",
    "Link",
    "LinkCheck",
    "MergePoint",
    "Node",
    "OutputDest",
    "Port",
    "START_NODE_ID",
    "SYSTEM_SESSIONS",
    "generate_id",
    "new_flow_document",
    "normalize_flow_document",
    "user_sessions",
]
