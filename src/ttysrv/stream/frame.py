"""
Frame Data Model
=================

Internal frame representation for the broadcast pipeline.

A Frame wraps one opaque chunk of bytes read from the upstream device.
The hub stamps each chunk with a sequence number and an ingestion time
so that subscribers and metrics can reason about ordering and gaps.

Design Rules:
    - The payload is NEVER interpreted or modified
    - Frames are immutable and shared by reference between subscribers
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One chunk of the upstream byte stream.
    
    Attributes:
        seq: Ingestion sequence number assigned by the hub, starting at 0
        timestamp: UNIX timestamp when the hub ingested the chunk
        data: Raw bytes exactly as read from the source
    """
    
    seq: int
    timestamp: float
    data: bytes
    
    def __len__(self) -> int:
        return len(self.data)
    
    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full payload."""
        return (
            f"Frame(seq={self.seq}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={len(self.data)})"
        )
