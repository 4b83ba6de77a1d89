"""
Stream Module
=============

Upstream ingestion and per-subscriber buffering components:
    - Frame: Immutable chunk of the byte stream, stamped by the hub
    - FrameBuffer: Bounded, closable queue with an explicit overflow policy
    - SerialFrameSource: pyserial reader yielding raw chunks

Example:
    from ttysrv.stream import SerialFrameSource

    source = SerialFrameSource("/dev/ttyUSB0", baud=115200)
    source.open()

    async for chunk in source:
        process(chunk)
"""

from ttysrv.stream.frame import Frame
from ttysrv.stream.buffer import FrameBuffer, OverflowPolicy, PutResult
from ttysrv.stream.source import SerialFrameSource, SerialSourceMetrics


__all__ = [
    "Frame",
    "FrameBuffer",
    "OverflowPolicy",
    "PutResult",
    "SerialFrameSource",
    "SerialSourceMetrics",
]
