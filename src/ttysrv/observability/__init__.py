"""
Observability Module
====================

HTTP status API for ttysrv.

This module provides:
    - create_status_app: FastAPI app with health, readiness and metrics
    - bind_status_socket: Binds the listening socket, failing with ServerBindError
    - create_status_server / serve_status: uvicorn server on the running loop

DESIGN RULES:
    - Does NOT influence the broadcast
    - Disabled unless configured
"""

from ttysrv.observability.status import (
    bind_status_socket,
    create_status_app,
    create_status_server,
    serve_status,
)


__all__ = [
    "bind_status_socket",
    "create_status_app",
    "create_status_server",
    "serve_status",
]
