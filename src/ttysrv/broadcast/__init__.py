"""
Broadcast Module
================

Fan-out of the upstream frame stream to independent subscribers.

    - BroadcastHub: owns the source, replicates frames to subscriptions
    - Subscription: per-consumer channel with its own bounded buffer

Example:
    from ttysrv.broadcast import BroadcastHub

    hub = BroadcastHub(queue_size=256)
    sub = hub.subscribe(name="printer")
    asyncio.create_task(hub.run(source))

    async for frame in sub:
        print(frame.data)
"""

from ttysrv.broadcast.hub import BroadcastHub
from ttysrv.broadcast.subscription import Subscription


__all__ = [
    "BroadcastHub",
    "Subscription",
]
