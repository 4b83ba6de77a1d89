"""
Log File Sink
=============

Durable capture of the raw byte stream.

The sink subscribes to the hub once at startup and writes every frame to
the capture file as it arrives, echoing it to standard output.

Design Rules:
    - Bytes are written unmodified and flushed per frame
    - A write failure is FATAL for the process (raised as LogWriteError)
    - The stdout echo is a raw byte copy; if it breaks, echo stops and capture goes on
    - Ends quietly when the hub ends the broadcast
"""

import logging
import sys
from pathlib import Path
from typing import BinaryIO, Optional, Union

from ttysrv.broadcast import BroadcastHub, Subscription
from ttysrv.errors import LogOpenError, LogWriteError


logger = logging.getLogger(__name__)


class LogFileSink:
    """
    Writes the broadcast stream to a file and echoes the raw bytes to stdout.
    
    Attributes:
        path: Capture file path
        echo: Whether frames are echoed to the echo stream (binary,
            stdout by default)
        append: Open in append mode (True) or truncate (False)
    
    Example:
        sink = LogFileSink(hub, "ttysrv.log")
        sink.open()
        task = asyncio.create_task(sink.run())
    """
    
    def __init__(
        self,
        hub: BroadcastHub,
        path: Union[str, Path],
        echo: bool = True,
        append: bool = True,
        echo_stream: Optional[BinaryIO] = None,
    ) -> None:
        self.hub = hub
        self.path = Path(path)
        self.echo = echo
        self.append = append
        self._echo_stream = echo_stream
        
        self._file: Optional[BinaryIO] = None
        self._subscription: Optional[Subscription] = None
        self.frames_written: int = 0
        self.bytes_written: int = 0
    
    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription
    
    def open(self) -> None:
        """
        Open the capture file and subscribe to the hub.
        
        Raises:
            LogOpenError: If the file cannot be opened
        """
        mode = "ab" if self.append else "wb"
        try:
            self._file = open(self.path, mode)
        except OSError as e:
            raise LogOpenError(f"Cannot open log file {self.path}: {e}") from e
        
        self._subscription = self.hub.subscribe(name="log")
        logger.info(f"Capturing stream to {self.path} (mode={mode})")
    
    async def run(self) -> None:
        """
        Write frames until the broadcast ends.
        
        Raises:
            LogWriteError: On any write failure, after unsubscribing
        """
        if self._file is None or self._subscription is None:
            raise RuntimeError("LogFileSink.open() must be called first")
        
        try:
            async for frame in self._subscription:
                try:
                    self._file.write(frame.data)
                    self._file.flush()
                except OSError as e:
                    self.hub.unsubscribe(self._subscription)
                    raise LogWriteError(f"Write to {self.path} failed: {e}") from e
                
                self.frames_written += 1
                self.bytes_written += len(frame.data)
                
                if self.echo:
                    self._echo(frame.data)
        finally:
            self.close()
        
        logger.info(f"Log sink finished ({self.bytes_written} bytes written)")
    
    def _echo(self, data: bytes) -> None:
        """Copy raw bytes to the echo stream, turning echo off if it breaks."""
        stream = self._echo_stream or sys.stdout.buffer
        try:
            stream.write(data)
            stream.flush()
        except (OSError, ValueError) as e:
            # Broken pipe or closed stdout; the capture file carries on
            self.echo = False
            logger.warning(f"Echo to stdout disabled: {e}")
    
    def close(self) -> None:
        """Close the capture file. Idempotent."""
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            logger.warning(f"Error closing {self.path}: {e}")
        self._file = None
    
    def metrics(self) -> dict:
        """Export sink metrics as dict."""
        return {
            "path": str(self.path),
            "frames_written": self.frames_written,
            "bytes_written": self.bytes_written,
            "dropped": self._subscription.dropped if self._subscription else 0,
        }
