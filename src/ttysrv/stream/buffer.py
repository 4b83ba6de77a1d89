"""
Frame Buffer
=============

Async-safe bounded queue between the hub and one subscriber.

Every subscription owns exactly one FrameBuffer. The hub is the only
producer, the subscriber's task is the only consumer. What happens when
the buffer is full is decided by the configured OverflowPolicy.

Design Rules:
    - Fixed maximum size, never grows
    - Overflow handling is explicit and counted
    - Closing wakes both a waiting consumer and a blocked producer
    - Does NOT process or modify frames
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from ttysrv.stream.frame import Frame


logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    """
    What to do when a subscriber's buffer is full.
    
    Attributes:
        BLOCK: Wait for space (optionally bounded by a delivery timeout).
            A stalled subscriber stalls the whole broadcast.
        DROP_OLDEST: Discard the oldest buffered frame to make room.
        DROP_NEWEST: Discard the incoming frame for this subscriber.
        DISCONNECT: Report overflow so the hub detaches the subscriber.
    """
    
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"
    DISCONNECT = "disconnect"


class PutResult(str, Enum):
    """Outcome of offering a frame to a FrameBuffer."""
    
    DELIVERED = "delivered"
    DROPPED = "dropped"
    OVERFLOW = "overflow"
    TIMEOUT = "timeout"
    CLOSED = "closed"


class FrameBuffer:
    """
    Bounded, closable frame queue for a single subscriber.
    
    Attributes:
        maxsize: Maximum number of frames to buffer
        policy: Overflow policy applied by put()
        dropped_count: Number of frames dropped due to overflow
        closed: Whether the buffer has been closed
    
    Example:
        buffer = FrameBuffer(maxsize=256, policy=OverflowPolicy.DROP_OLDEST)
        
        # Producer (hub)
        result = await buffer.put(frame)
        
        # Consumer
        frame = await buffer.get()
        if frame is None and buffer.closed:
            ...  # end of stream
    """
    
    def __init__(
        self,
        maxsize: int = 256,
        policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        name: str = "",
    ) -> None:
        """
        Initialize frame buffer.
        
        Args:
            maxsize: Maximum frames to buffer. Must be >= 1.
            policy: Overflow policy
            name: Label used in log messages
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        
        self._maxsize = maxsize
        self._policy = OverflowPolicy(policy)
        self._name = name
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()
        self._discarded = False
        self._dropped_count: int = 0
        self._total_put: int = 0
    
    @property
    def maxsize(self) -> int:
        """Maximum buffer size."""
        return self._maxsize
    
    @property
    def policy(self) -> OverflowPolicy:
        return self._policy
    
    @property
    def size(self) -> int:
        """Current number of frames in buffer."""
        return self._queue.qsize()
    
    @property
    def dropped_count(self) -> int:
        """Number of frames dropped due to overflow."""
        return self._dropped_count
    
    @property
    def total_put(self) -> int:
        """Total frames ever offered to the buffer."""
        return self._total_put
    
    @property
    def closed(self) -> bool:
        return self._closed.is_set()
    
    async def put(self, frame: Frame, timeout: Optional[float] = None) -> PutResult:
        """
        Offer a frame according to the overflow policy.
        
        Args:
            frame: Frame to add
            timeout: Maximum seconds to wait for space. Only used by the
                BLOCK policy. None = wait until space or close.
        
        Returns:
            PutResult describing what happened to the frame.
        """
        if self.closed:
            return PutResult.CLOSED
        
        self._total_put += 1
        
        if not self._queue.full():
            self._queue.put_nowait(frame)
            return PutResult.DELIVERED
        
        if self._policy is OverflowPolicy.DROP_OLDEST:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(frame)
            self._record_drop()
            return PutResult.DROPPED
        
        if self._policy is OverflowPolicy.DROP_NEWEST:
            self._record_drop()
            return PutResult.DROPPED
        
        if self._policy is OverflowPolicy.DISCONNECT:
            return PutResult.OVERFLOW
        
        return await self._put_blocking(frame, timeout)
    
    async def _put_blocking(self, frame: Frame, timeout: Optional[float]) -> PutResult:
        """Wait for space, giving up on close or timeout."""
        put_task = asyncio.ensure_future(self._queue.put(frame))
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {put_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            put_task.cancel()
            closed_task.cancel()
        
        if self._discarded:
            # clear() made room and woke the putter; the frame may have
            # landed after close
            self.clear()
            return PutResult.CLOSED
        if put_task in done and not put_task.cancelled():
            return PutResult.DELIVERED
        if self.closed:
            return PutResult.CLOSED
        return PutResult.TIMEOUT
    
    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Get next frame from buffer.
        
        Frames buffered before a draining close are still returned.
        
        Args:
            timeout: Maximum seconds to wait. None = wait forever.
        
        Returns:
            Next frame, or None on timeout or once closed and empty.
        """
        frame = self.get_nowait()
        if frame is not None or self.closed:
            return frame
        
        get_task = asyncio.ensure_future(self._queue.get())
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            get_task.cancel()
            closed_task.cancel()
        
        if get_task in done and not get_task.cancelled():
            return get_task.result()
        
        # Closed while waiting: anything still queued was put before close
        return self.get_nowait()
    
    def get_nowait(self) -> Optional[Frame]:
        """
        Get next frame without waiting.
        
        Returns:
            Next frame if available, None otherwise.
        """
        if self._discarded:
            return None
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
    
    def close(self, drain: bool = True) -> None:
        """
        Close the buffer. Idempotent.
        
        Args:
            drain: Keep already-buffered frames readable. When False the
                backlog is discarded immediately, and nothing offered
                afterwards becomes readable.
        """
        if not drain and not self._discarded:
            self._discarded = True
            self.clear()
        self._closed.set()
    
    def clear(self) -> int:
        """Discard every buffered frame and return how many were dropped."""
        discarded = self._queue.qsize()
        for _ in range(discarded):
            self._queue.get_nowait()
        return discarded
    
    def _record_drop(self) -> None:
        self._dropped_count += 1
        if self._dropped_count == 1 or self._dropped_count % 100 == 0:
            logger.warning(
                f"Buffer {self._name or '?'} full ({self._policy.value}), "
                f"total dropped: {self._dropped_count}"
            )
    
    def metrics(self) -> dict:
        """
        Get buffer metrics for observability.
        
        Returns:
            Dict with size, maxsize, policy, dropped_count, total_put, closed
        """
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "policy": self._policy.value,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
            "closed": self.closed,
        }
