"""
Flow designer API - FastAPI REST surface over designer sessions.

To avoid import side effects, the app instance is NOT created at import
time. Use one of these patterns:

    # For ASGI servers (recommended):
    uvicorn flowdesigner.api.asgi:app --port 5010

    # For just the factory (no app creation):
    from flowdesigner.api import create_app
    app = create_app()

Endpoints:
    GET    /api/health                              - Health check
    GET    /api/flows                               - List stored flows
    POST   /api/sessions                            - Open a session
    GET    /api/sessions                            - List open sessions
    DELETE /api/sessions/{sid}                      - Close a session
    GET    /api/sessions/{sid}/document             - Whole document (ETag)
    GET    /api/sessions/{sid}/changes              - Diff against load time
    GET|POST|PATCH|DELETE /api/sessions/{sid}/nodes - Path-addressed access
    GET    /api/sessions/{sid}/graph                - Graph for a level
    POST   /api/sessions/{sid}/groups               - Add function group
    ...                                             - see routes/sessions.py
    POST   /api/sessions/{sid}/save                 - Save (If-Match)
"""

from .server import create_app

__all__ = ["create_app"]
