"""
TCP Tap Server
==============

Raw TCP listener giving each client a live copy of the byte stream.

Each accepted connection gets its own hub subscription and its own
handler task that writes frames to the socket, unmodified and unframed.

Design Rules:
    - Write-only tap: bytes sent by clients are read and discarded
    - Failures are CONSUMER-LOCAL: a broken connection only detaches itself
    - A half-closed client keeps receiving; resets and failed writes detach it
    - Only a failure to bind at startup is fatal (ServerBindError)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ttysrv.broadcast import BroadcastHub, Subscription
from ttysrv.errors import ServerBindError


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TapClient:
    """Book-keeping for one connected client."""
    
    name: str
    subscription: Subscription
    writer: asyncio.StreamWriter
    task: Optional[asyncio.Task] = None
    connected_at: float = field(default_factory=time.time)
    bytes_sent: int = 0
    
    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "connected_seconds": round(time.time() - self.connected_at, 1),
            "bytes_sent": self.bytes_sent,
            "pending": self.subscription.pending,
            "dropped": self.subscription.dropped,
        }


class TapServer:
    """
    Serves the broadcast stream to any number of TCP clients.
    
    Attributes:
        host: Bind address
        port: Configured port (0 = ephemeral)
        bound_port: Actual listening port once started
        client_count: Number of connected clients
    
    Example:
        server = TapServer(hub, host="0.0.0.0", port=666)
        await server.start()
        ...
        await server.stop()
    """
    
    def __init__(
        self,
        hub: BroadcastHub,
        host: str = "0.0.0.0",
        port: int = 666,
        read_chunk: int = 4096,
    ) -> None:
        self.hub = hub
        self.host = host
        self.port = port
        self.read_chunk = read_chunk
        
        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: Dict[int, TapClient] = {}
        
        # Metrics
        self.connections_total: int = 0
        self.connections_failed: int = 0
    
    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]
    
    @property
    def client_count(self) -> int:
        return len(self._clients)
    
    @property
    def clients(self) -> List[TapClient]:
        return list(self._clients.values())
    
    async def start(self) -> None:
        """
        Bind and start accepting connections.
        
        Raises:
            ServerBindError: If the listening socket cannot be created
        """
        try:
            self._server = await asyncio.start_server(
                self._handle_client,
                host=self.host,
                port=self.port,
            )
        except OSError as e:
            raise ServerBindError(f"Cannot listen on {self.host}:{self.port}: {e}") from e
        
        logger.info(f"Started listening on {self.host}:{self.bound_port}")
    
    async def stop(self, drain_timeout: float = 5.0) -> None:
        """
        Stop accepting and disconnect clients.
        
        Clients whose subscriptions are already closed (broadcast ended) get
        up to drain_timeout seconds to flush their backlog. Clients on a
        live subscription are disconnected straight away.
        
        Args:
            drain_timeout: Seconds to wait for handlers before forcing
        """
        if self._server is None:
            return
        
        self._server.close()
        
        draining = [
            c.task for c in self._clients.values()
            if c.task is not None and c.subscription.closed
        ]
        if draining:
            _, pending = await asyncio.wait(draining, timeout=drain_timeout)
            if pending:
                logger.warning(f"Forcing {len(pending)} client(s) to disconnect")
        
        remaining = [c.task for c in self._clients.values() if c.task is not None]
        for client in list(self._clients.values()):
            self.hub.unsubscribe(client.subscription)
            client.writer.transport.abort()
        if remaining:
            await asyncio.wait(remaining, timeout=drain_timeout)
        
        await self._server.wait_closed()
        self._server = None
        logger.info("Tap server stopped")
    
    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Per-connection task: stream frames until the client goes away."""
        peer = writer.get_extra_info("peername")
        name = f"tcp:{peer[0]}:{peer[1]}" if peer else "tcp:?"
        
        subscription = self.hub.subscribe(name=name)
        client = TapClient(
            name=name,
            subscription=subscription,
            writer=writer,
            task=asyncio.current_task(),
        )
        self._clients[subscription.id] = client
        self.connections_total += 1
        logger.info(f"Client connected: {name} (clients: {len(self._clients)})")
        
        watcher = asyncio.create_task(
            self._watch_eof(reader, subscription),
            name=f"eof-{name}",
        )
        
        try:
            async for frame in subscription:
                writer.write(frame.data)
                await writer.drain()
                client.bytes_sent += len(frame.data)
        except (ConnectionError, OSError) as e:
            self.connections_failed += 1
            logger.info(f"Client {name} write failed: {e}")
        except Exception as e:
            self.connections_failed += 1
            logger.error(f"Client {name} handler error: {e}")
        finally:
            self.hub.unsubscribe(subscription)
            watcher.cancel()
            self._clients.pop(subscription.id, None)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.info(
                f"Client disconnected: {name} "
                f"({client.bytes_sent} bytes sent, clients: {len(self._clients)})"
            )
    
    async def _watch_eof(self, reader: asyncio.StreamReader, subscription: Subscription) -> None:
        """
        Discard client input.
        
        EOF only means the client closed its sending side; it may still be
        reading, so the subscription stays. A reset detaches it at once,
        anything else is noticed by the next failed write.
        """
        try:
            while await reader.read(self.read_chunk):
                pass
        except (ConnectionError, OSError) as e:
            logger.info(f"Client {subscription.name} connection lost: {e}")
            self.hub.unsubscribe(subscription)
    
    def metrics(self) -> dict:
        """Export server metrics as dict."""
        return {
            "listening": self._server is not None,
            "port": self.bound_port,
            "client_count": len(self._clients),
            "connections_total": self.connections_total,
            "connections_failed": self.connections_failed,
            "clients": [c.to_dict() for c in self._clients.values()],
        }
