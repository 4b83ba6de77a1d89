"""
ttysrv
======

Serial tap server: capture a serial device to a log file and share the
live byte stream with any number of TCP clients.

Components:
    - stream: Frame model, per-subscriber buffers, serial source
    - broadcast: Hub replicating frames to subscriptions
    - sinks: Capture log and raw TCP tap server
    - observability: Optional HTTP status API

Example:
    from ttysrv.broadcast import BroadcastHub

    hub = BroadcastHub()
    sub = hub.subscribe()

    # Service is started via the ttysrv console script
    # See main.py for entry point
"""

__version__ = "0.2.0"
__author__ = "ttysrv contributors"

__all__ = [
    "__version__",
]
