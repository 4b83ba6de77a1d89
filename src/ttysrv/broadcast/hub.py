"""
Broadcast Hub
=============

One-to-many replication of the upstream frame stream.

The hub consumes a single frame source and copies every frame into the
buffer of every subscription that is active at that moment. Consumers
attach and detach at any time through subscribe() / unsubscribe().

Ownership Model:
    The subscription set is owned by the event loop running the hub.
    subscribe() and unsubscribe() are synchronous, so they never interleave
    with each other or with a snapshot being taken. Fan-out iterates a
    per-frame snapshot and re-checks each subscription right before
    delivery, so an unsubscribe during fan-out is effective immediately
    and a subscription created during fan-out does not see that frame.

Design Rules:
    - Per-subscriber ordering is ingestion order
    - No replay: a subscriber only sees frames ingested after it joined
    - Unsubscribe is idempotent and wakes the consumer
    - End of the source closes every subscription (drain, then end)
    - A slow subscriber is handled by its overflow policy, never by
      crashing the broadcast
"""

import itertools
import logging
import time
from typing import AsyncIterable, Dict, List, Optional

from ttysrv.broadcast.subscription import Subscription
from ttysrv.stream.buffer import FrameBuffer, OverflowPolicy, PutResult
from ttysrv.stream.frame import Frame


logger = logging.getLogger(__name__)


class BroadcastHub:
    """
    Fan-out of a single frame source to a dynamic set of subscriptions.
    
    Attributes:
        queue_size: Buffer size given to each new subscription
        overflow_policy: Policy applied when a subscriber's buffer is full
        delivery_timeout: Max seconds to wait on a full buffer (BLOCK only)
    
    Example:
        hub = BroadcastHub(queue_size=256)
        sub = hub.subscribe(name="log")
        
        task = asyncio.create_task(hub.run(source))
        
        async for frame in sub:
            handle(frame.data)
    """
    
    def __init__(
        self,
        queue_size: int = 256,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        delivery_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize broadcast hub.
        
        Args:
            queue_size: Per-subscription buffer size. Must be >= 1.
            overflow_policy: Overflow policy for every subscription
            delivery_timeout: Seconds before a blocked delivery gives up and
                the subscriber is disconnected. Only used with BLOCK.
        """
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if delivery_timeout is not None and delivery_timeout <= 0:
            raise ValueError("delivery_timeout must be > 0")
        
        self.queue_size = queue_size
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.delivery_timeout = delivery_timeout
        
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._seq: int = 0
        self._started: bool = False
        self._running: bool = False
        self._closed: bool = False
        
        # Metrics
        self._bytes_ingested: int = 0
        self._subscriptions_total: int = 0
        self._frames_dropped: int = 0
        self._slow_disconnects: int = 0
    
    @property
    def running(self) -> bool:
        """Whether run() is currently consuming the source."""
        return self._running
    
    @property
    def closed(self) -> bool:
        """Whether the broadcast has ended."""
        return self._closed
    
    @property
    def frames_ingested(self) -> int:
        return self._seq
    
    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)
    
    @property
    def subscriptions(self) -> List[Subscription]:
        """Snapshot of active subscriptions in subscription order."""
        return list(self._subscriptions.values())
    
    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------
    
    def subscribe(self, name: Optional[str] = None) -> Subscription:
        """
        Create and register a new subscription.
        
        The subscription receives every frame ingested after this call
        returns. After the broadcast has ended, the returned subscription
        is already closed.
        
        Args:
            name: Optional label for logs and metrics
        
        Returns:
            New Subscription handle
        """
        sub_id = next(self._ids)
        buffer = FrameBuffer(
            maxsize=self.queue_size,
            policy=self.overflow_policy,
            name=name or f"sub-{sub_id}",
        )
        subscription = Subscription(sub_id, buffer, name=name)
        self._subscriptions_total += 1
        
        if self._closed:
            subscription._close(drain=False)
            logger.debug(f"Subscription {subscription.name} created after close")
            return subscription
        
        self._subscriptions[sub_id] = subscription
        logger.info(
            f"Subscribed {subscription.name} "
            f"(active: {len(self._subscriptions)})"
        )
        return subscription
    
    def unsubscribe(self, subscription: Subscription) -> None:
        """
        Deregister a subscription. Idempotent.
        
        Unknown or already removed handles are ignored. Buffered frames are
        discarded and a consumer waiting on the subscription is woken.
        
        Args:
            subscription: Handle returned by subscribe()
        """
        # Identity check: ids are only unique per hub
        if self._subscriptions.get(subscription.id) is not subscription:
            return
        
        del self._subscriptions[subscription.id]
        subscription._close(drain=False)
        logger.info(
            f"Unsubscribed {subscription.name} "
            f"(active: {len(self._subscriptions)})"
        )
    
    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------
    
    async def publish(self, data: bytes) -> Frame:
        """
        Ingest one chunk and deliver it to every active subscription.
        
        Args:
            data: Raw bytes from the source
        
        Returns:
            The stamped Frame that was broadcast
        
        Raises:
            RuntimeError: If the hub is closed
        """
        if self._closed:
            raise RuntimeError("Cannot publish to a closed hub")
        
        frame = Frame(seq=self._seq, timestamp=time.time(), data=bytes(data))
        self._seq += 1
        self._bytes_ingested += len(frame.data)
        
        for subscription in list(self._subscriptions.values()):
            # Removed while an earlier delivery of this frame was pending
            if subscription.closed:
                continue
            
            result = await subscription._offer(frame, self.delivery_timeout)
            
            if result is PutResult.DROPPED:
                self._frames_dropped += 1
            elif result in (PutResult.OVERFLOW, PutResult.TIMEOUT):
                self._slow_disconnects += 1
                logger.warning(
                    f"Disconnecting slow subscriber {subscription.name} "
                    f"({result.value} at frame {frame.seq})"
                )
                self.unsubscribe(subscription)
        
        return frame
    
    async def run(self, source: AsyncIterable[bytes]) -> None:
        """
        Drive the broadcast from a frame source until it ends.
        
        End of the source is terminal: every subscription is closed so
        consumers drain their backlog and then see end of stream.
        
        Args:
            source: Async iterable of byte chunks
        
        Raises:
            RuntimeError: If the hub was already started
        """
        if self._started:
            raise RuntimeError("BroadcastHub.run() may only be called once")
        self._started = True
        self._running = True
        
        logger.info(
            f"Broadcast started (queue_size={self.queue_size}, "
            f"policy={self.overflow_policy.value})"
        )
        
        try:
            async for chunk in source:
                if not chunk:
                    continue
                await self.publish(chunk)
            logger.info("Frame source ended")
        finally:
            self._running = False
            self.close()
    
    def close(self) -> None:
        """
        End the broadcast. Idempotent.
        
        Every active subscription is closed with its backlog kept, so
        consumers finish what they have and then see end of stream.
        """
        if self._closed:
            return
        self._closed = True
        
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._close(drain=True)
        
        logger.info(
            f"Broadcast closed after {self._seq} frames, "
            f"{len(subscriptions)} subscriptions released"
        )
    
    def metrics(self) -> dict:
        """
        Get hub metrics for observability.
        
        Returns:
            Dict with ingestion, membership and overflow counters
        """
        return {
            "frames_ingested": self._seq,
            "bytes_ingested": self._bytes_ingested,
            "subscriber_count": len(self._subscriptions),
            "subscriptions_total": self._subscriptions_total,
            "frames_dropped": self._frames_dropped,
            "slow_disconnects": self._slow_disconnects,
            "overflow_policy": self.overflow_policy.value,
            "running": self._running,
            "closed": self._closed,
        }
