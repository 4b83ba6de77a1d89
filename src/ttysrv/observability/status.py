"""
Status API
==========

Optional HTTP view of the running service.

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe (is process alive?)
    GET  /ready     - Readiness probe (is the source streaming?)
    GET  /metrics   - Hub, log sink and tap server metrics

DESIGN RULES:
    - Read-only: never subscribes to or mutates the hub
    - Zero cost when disabled (the app is simply not served)
"""

import logging
import socket
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ttysrv import __version__
from ttysrv.broadcast import BroadcastHub
from ttysrv.errors import ServerBindError
from ttysrv.sinks import LogFileSink, TapServer
from ttysrv.stream import SerialFrameSource


logger = logging.getLogger(__name__)


def create_status_app(
    hub: BroadcastHub,
    tap_server: Optional[TapServer] = None,
    log_sink: Optional[LogFileSink] = None,
    source: Optional[SerialFrameSource] = None,
) -> FastAPI:
    """
    Build the status application for a running service.
    
    Args:
        hub: The broadcast hub
        tap_server: TCP tap server, if running
        log_sink: Capture log sink, if running
        source: Serial source, if running
    
    Returns:
        FastAPI app exposing the status endpoints
    """
    started_at = time.time()
    
    app = FastAPI(
        title="ttysrv",
        description="Serial tap server status",
        version=__version__,
    )
    
    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "ttysrv",
            "version": __version__,
            "device": source.device if source else None,
            "port": tap_server.bound_port if tap_server else None,
            "log_file": str(log_sink.path) if log_sink else None,
        })
    
    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe, always 200 while the process runs."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - started_at, 1),
        })
    
    @app.get("/ready")
    async def ready() -> JSONResponse:
        """
        Readiness probe.
        
        Returns 200 while the hub is consuming the source, 503 otherwise.
        """
        body = {
            "source_streaming": hub.running,
            "broadcast_closed": hub.closed,
            "subscribers": hub.subscriber_count,
        }
        if hub.running:
            return JSONResponse({"status": "ready", **body})
        return JSONResponse({"status": "not_ready", **body}, status_code=503)
    
    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed metrics for observability."""
        return JSONResponse({
            "uptime_seconds": round(time.time() - started_at, 1),
            "hub": hub.metrics(),
            "subscriptions": [s.metrics() for s in hub.subscriptions],
            "source": source.metrics.to_dict() if source else None,
            "log_sink": log_sink.metrics() if log_sink else None,
            "tap_server": tap_server.metrics() if tap_server else None,
        })
    
    return app


def bind_status_socket(host: str, port: int) -> socket.socket:
    """
    Bind the status API socket up front.
    
    uvicorn exits the process when it cannot bind, so the socket is bound
    here and handed to server.serve(sockets=[...]).
    
    Raises:
        ServerBindError: If the address is unavailable
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise ServerBindError(f"Cannot serve status API on {host}:{port}: {e}") from e
    return sock


def create_status_server(app: FastAPI, sock: socket.socket) -> uvicorn.Server:
    """
    Wrap the status app in a uvicorn server for the running event loop.
    
    The caller awaits serve_status() as a task and sets
    server.should_exit to stop it. uvicorn also exits on SIGINT/SIGTERM,
    so the caller treats an early exit of that task as a stop request.
    """
    host, port = sock.getsockname()[:2]
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        access_log=False,
    )
    logger.info(f"Status API on http://{host}:{port}")
    return uvicorn.Server(config)


async def serve_status(server: uvicorn.Server, sock: socket.socket) -> None:
    """
    Run the status server on a socket from bind_status_socket().
    
    Raises:
        ServerBindError: If uvicorn gives up during startup
    """
    try:
        await server.serve(sockets=[sock])
    except SystemExit as e:
        config = server.config
        raise ServerBindError(f"Status API failed to start on {config.host}:{config.port}") from e
