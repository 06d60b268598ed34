"""
FastAPI server for the flow designer.

Usage:
    # Run standalone
    python -m flowdesigner.api.server --port 5010

    # Or via factory
    from flowdesigner.api import create_app
    app = create_app()
    uvicorn.run(app, port=5010)

API Structure:
    /api/health, /api/flows - routes/flows.py
    /api/sessions/...       - routes/sessions.py
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import DesignerConfig, get_default_config
from ..errors import (
    ConcurrencyError,
    EditingLevelError,
    EditNotAppliedError,
    FetchError,
    FlowDesignerError,
    NotFoundError,
    UniquenessViolation,
)
from .registry import SessionRegistry
from .routes import flows_router, sessions_router

logger = logging.getLogger(__name__)


def error_status(error: FlowDesignerError) -> int:
    """HTTP status for a designer error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (UniquenessViolation, ConcurrencyError, EditingLevelError, EditNotAppliedError)):
        return 409
    if isinstance(error, FetchError):
        return 502
    return 422


def _error_code(error: FlowDesignerError) -> str:
    name = type(error).__name__
    snake = "".join("_" + c.lower() if c.isupper() else c for c in name).lstrip("_")
    return snake[: -len("_error")] if snake.endswith("_error") else snake


def create_app(config: Optional[DesignerConfig] = None, enable_cors: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Designer configuration (defaults to get_default_config()).
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    config = config or get_default_config()
    for problem in config.validate():
        logger.warning("Config: %s", problem)

    app = FastAPI(
        title="Flow Designer API",
        description="Path-addressed flow documents and graph editing",
        version=__version__,
    )
    app.state.registry = SessionRegistry(config)

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["ETag"],
        )

    @app.exception_handler(FlowDesignerError)
    async def designer_error_handler(request: Request, exc: FlowDesignerError):
        status = error_status(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        details = {k: v for k, v in vars(exc).items() if isinstance(v, (str, int, float, bool)) or v is None}
        return JSONResponse(
            status_code=status,
            content={"detail": {"error": _error_code(exc), "message": str(exc), "details": details}},
        )

    app.include_router(flows_router)
    app.include_router(sessions_router)
    return app


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Flow Designer API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5010, help="Port to bind to")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    config = DesignerConfig.from_yaml(args.config) if args.config else get_default_config()
    app = create_app(config, enable_cors=not args.no_cors)

    print(f"Starting Flow Designer API server at http://{args.host}:{args.port}")
    print(f"  flows:   {config.flows_dir}")
    print(f"  schemas: {config.schemas_dir}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
