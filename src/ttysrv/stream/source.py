"""
Serial Frame Source
====================

Reads the upstream serial device and yields raw byte chunks.

This module provides the SerialFrameSource class which:
    - Opens the device with pyserial (failure is startup-fatal)
    - Reads chunks of at most read_size bytes in a worker thread
    - Ends the sequence on read error or close, never retries

Design Rules:
    - Does NOT interpret or frame the byte stream
    - Each yielded chunk is a fresh immutable bytes object
    - Read timeouts are polling ticks, not data
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import serial

from ttysrv.errors import SourceOpenError


logger = logging.getLogger(__name__)


class SerialSourceMetrics:
    """Metrics for SerialFrameSource observability."""
    
    __slots__ = (
        "chunks_read",
        "bytes_read",
        "read_errors",
    )
    
    def __init__(self) -> None:
        self.chunks_read: int = 0
        self.bytes_read: int = 0
        self.read_errors: int = 0
    
    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "chunks_read": self.chunks_read,
            "bytes_read": self.bytes_read,
            "read_errors": self.read_errors,
        }


class SerialFrameSource:
    """
    Async iterable of byte chunks read from a serial device.
    
    Attributes:
        device: Serial device path (e.g. /dev/ttyUSB0)
        baud: Baud rate
        read_size: Maximum bytes per chunk
        read_timeout: Seconds a single read may block before returning
        metrics: Operational metrics
    
    Example:
        source = SerialFrameSource("/dev/ttyUSB0", 115200)
        source.open()
        
        async for chunk in source:
            ...
        
        source.close()
    """
    
    def __init__(
        self,
        device: str,
        baud: int = 115200,
        read_size: int = 64,
        read_timeout: float = 0.5,
    ) -> None:
        """
        Initialize serial source.
        
        Args:
            device: Serial device path
            baud: Baud rate
            read_size: Maximum bytes per chunk. Must be >= 1.
            read_timeout: Per-read timeout in seconds, bounds shutdown latency
        """
        if read_size < 1:
            raise ValueError("read_size must be >= 1")
        
        self.device = device
        self.baud = baud
        self.read_size = read_size
        self.read_timeout = read_timeout
        
        self._serial: Optional[serial.Serial] = None
        self._closing: bool = False
        self.metrics = SerialSourceMetrics()
    
    @property
    def is_open(self) -> bool:
        return self._serial is not None and not self._closing
    
    def open(self) -> None:
        """
        Open the serial device.
        
        Raises:
            SourceOpenError: If the device cannot be opened
        """
        try:
            self._serial = serial.Serial(
                port=self.device,
                baudrate=self.baud,
                timeout=self.read_timeout,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise SourceOpenError(f"Cannot open {self.device} at {self.baud} baud: {e}") from e
        
        self._closing = False
        logger.info(f"Opened serial device {self.device} at {self.baud} baud")
    
    def close(self) -> None:
        """Close the device and end iteration. Idempotent."""
        self._closing = True
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning(f"Error closing {self.device}: {e}")
        self._serial = None
        logger.info(f"Closed serial device {self.device}")
    
    def _read_chunk(self) -> bytes:
        """Blocking read of up to read_size bytes (runs in a thread)."""
        ser = self._serial
        if ser is None:
            return b""
        waiting = ser.in_waiting
        return ser.read(min(max(waiting, 1), self.read_size))
    
    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._serial is None:
            raise RuntimeError("SerialFrameSource.open() must be called first")
        
        while not self._closing:
            try:
                data = await asyncio.to_thread(self._read_chunk)
            except (serial.SerialException, OSError) as e:
                if self._closing:
                    break
                self.metrics.read_errors += 1
                logger.warning(f"Read error on {self.device}, ending stream: {e}")
                break
            
            if not data:
                # timeout tick
                continue
            
            self.metrics.chunks_read += 1
            self.metrics.bytes_read += len(data)
            yield bytes(data)
        
        logger.info(f"Serial stream from {self.device} ended")
