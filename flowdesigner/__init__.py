"""
flowdesigner - path-addressed document engine and flow-graph editing core.

The package is split into:
- flowdesigner.document: PathAddress, DocumentStore, SchemaResolver
- flowdesigner.flow: flow document helpers and the FlowGraphModel
- flowdesigner.storage / flowdesigner.session: disk and loading edges
- flowdesigner.api: FastAPI surface (import flowdesigner.api.asgi for uvicorn)
"""

from .document import DocumentStore, SchemaResolver, parse, resolve
from .errors import FlowDesignerError
from .flow import EditingLevel, FlowGraphModel

__version__ = "0.3.0"

__all__ = [
    "DocumentStore",
    "EditingLevel",
    "FlowDesignerError",
    "FlowGraphModel",
    "SchemaResolver",
    "parse",
    "resolve",
]
