"""
Subscription
============

Per-consumer channel receiving a replicated copy of the frame stream.

A Subscription is created by BroadcastHub.subscribe() and owned by the
consumer that asked for it. The hub keeps only a handle for delivery and
removal.

Example:
    sub = hub.subscribe(name="log")
    
    async for frame in sub:
        out.write(frame.data)
    
    # or, to stop early
    hub.unsubscribe(sub)
"""

from typing import Optional

from ttysrv.stream.buffer import FrameBuffer, OverflowPolicy, PutResult
from ttysrv.stream.frame import Frame


class Subscription:
    """
    Handle for one subscriber of a BroadcastHub.
    
    Iterating a Subscription yields frames in ingestion order and stops
    once it is closed, either by unsubscribe (backlog discarded) or by the
    hub ending the broadcast (backlog drained first).
    
    Attributes:
        id: Identifier unique within the owning hub
        name: Human-readable label, e.g. "log" or "tcp:10.0.0.5:51234"
        delivered: Frames accepted into this subscription's buffer
        received: Frames handed to the consumer
    """
    
    def __init__(self, sub_id: int, buffer: FrameBuffer, name: Optional[str] = None) -> None:
        self.id = sub_id
        self.name = name or f"sub-{sub_id}"
        self._buffer = buffer
        self.delivered: int = 0
        self.received: int = 0
    
    @property
    def closed(self) -> bool:
        """Whether the subscription stopped accepting frames."""
        return self._buffer.closed
    
    @property
    def dropped(self) -> int:
        """Frames lost to buffer overflow."""
        return self._buffer.dropped_count
    
    @property
    def pending(self) -> int:
        """Frames buffered but not yet read."""
        return self._buffer.size
    
    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Wait for the next frame.
        
        Args:
            timeout: Maximum seconds to wait. None = wait forever.
        
        Returns:
            Next frame, or None on timeout or end of stream.
        """
        frame = await self._buffer.get(timeout=timeout)
        if frame is not None:
            self.received += 1
        return frame
    
    def __aiter__(self) -> "Subscription":
        return self
    
    async def __anext__(self) -> Frame:
        frame = await self.get()
        if frame is None:
            raise StopAsyncIteration
        return frame
    
    async def _offer(self, frame: Frame, timeout: Optional[float]) -> PutResult:
        result = await self._buffer.put(frame, timeout=timeout)
        # drop-oldest still accepts the incoming frame
        if result is PutResult.DELIVERED or (
            result is PutResult.DROPPED
            and self._buffer.policy is OverflowPolicy.DROP_OLDEST
        ):
            self.delivered += 1
        return result
    
    def _close(self, drain: bool) -> None:
        self._buffer.close(drain=drain)
    
    def metrics(self) -> dict:
        """Export subscription metrics as dict."""
        return {
            "id": self.id,
            "name": self.name,
            "delivered": self.delivered,
            "received": self.received,
            **self._buffer.metrics(),
        }
    
    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Subscription(id={self.id}, name={self.name!r}, {state})"
