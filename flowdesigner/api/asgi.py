"""
ASGI entrypoint for the flow designer API.

    uvicorn flowdesigner.api.asgi:app --port 5010

Importing flowdesigner.api.server does not build an app; this module does.
"""

from .server import create_app

app = create_app()
