"""
Status API Tests
================

FastAPI endpoints, exercised with the test client.
"""

import asyncio
import socket
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from ttysrv.broadcast import BroadcastHub
from ttysrv.errors import ServerBindError
from ttysrv.observability import (
    bind_status_socket,
    create_status_app,
    create_status_server,
    serve_status,
)
from ttysrv.sinks import TapServer


class TestStatusApi:
    """Tests for health, readiness and metrics endpoints."""
    
    def test_health(self):
        client = TestClient(create_status_app(BroadcastHub()))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
    
    def test_root_without_components(self):
        client = TestClient(create_status_app(BroadcastHub()))
        body = client.get("/").json()
        assert body["service"] == "ttysrv"
        assert body["device"] is None
        assert body["port"] is None
    
    def test_not_ready_until_source_streams(self):
        client = TestClient(create_status_app(BroadcastHub()))
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["source_streaming"] is False
    
    def test_ready_while_running(self):
        hub = BroadcastHub()
        hub._running = True
        client = TestClient(create_status_app(hub))
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"
    
    def test_metrics_reflect_hub_state(self):
        hub = BroadcastHub(queue_size=8)
        hub.subscribe(name="log")
        asyncio.run(hub.publish(b"abc"))
        
        client = TestClient(create_status_app(hub, tap_server=TapServer(hub, port=0)))
        body = client.get("/metrics").json()
        
        assert body["hub"]["frames_ingested"] == 1
        assert body["hub"]["bytes_ingested"] == 3
        assert body["hub"]["subscriber_count"] == 1
        assert body["subscriptions"][0]["name"] == "log"
        assert body["subscriptions"][0]["size"] == 1
        assert body["tap_server"]["listening"] is False
        assert body["log_sink"] is None


class ExitingServer:
    """Stands in for a uvicorn server whose startup fails."""
    
    config = SimpleNamespace(host="127.0.0.1", port=8666)
    
    async def serve(self, sockets=None):
        raise SystemExit(1)


class TestStatusServer:
    """Tests for binding and running the status server."""
    
    def test_bind_returns_unlistened_socket(self):
        sock = bind_status_socket("127.0.0.1", 0)
        try:
            host, port = sock.getsockname()
            assert host == "127.0.0.1"
            assert port > 0
        finally:
            sock.close()
    
    def test_busy_port_raises_bind_error(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            with pytest.raises(ServerBindError, match="status API"):
                bind_status_socket("127.0.0.1", busy.getsockname()[1])
    
    def test_startup_exit_becomes_bind_error(self, run):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            with pytest.raises(ServerBindError, match="127.0.0.1:8666"):
                run(serve_status(ExitingServer(), sock))
    
    def test_serves_on_bound_socket(self, run):
        async def scenario():
            sock = bind_status_socket("127.0.0.1", 0)
            port = sock.getsockname()[1]
            server = create_status_server(create_status_app(BroadcastHub()), sock)
            task = asyncio.create_task(serve_status(server, sock))
            while not server.started:
                await asyncio.sleep(0.01)
            
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"GET /health HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n")
            await writer.drain()
            response = await reader.read()
            writer.close()
            
            server.should_exit = True
            await task
            return response
        
        assert run(scenario()).startswith(b"HTTP/1.1 200")
