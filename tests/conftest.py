"""
Test Configuration
==================

Pytest fixtures and test configuration for ttysrv.
"""

import asyncio
import threading

import pytest


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop, with a deadline."""
    def _run(coro, timeout: float = 10.0):
        async def _bounded():
            return await asyncio.wait_for(coro, timeout=timeout)
        return asyncio.run(_bounded())
    return _run


@pytest.fixture
def chunks():
    """Provide the canonical end-to-end chunk sequence."""
    return [b"AB", b"CD", b"EF"]


class ListSource:
    """Async frame source backed by a list, optionally gated per chunk."""

    def __init__(self, items, gate: "asyncio.Event | None" = None):
        self.items = list(items)
        self.gate = gate

    async def __aiter__(self):
        for item in self.items:
            if self.gate is not None:
                await self.gate.wait()
                self.gate.clear()
            yield item


@pytest.fixture
def list_source():
    """Factory for list-backed async sources."""
    return ListSource


class FakeSerial:
    """
    Stand-in for serial.Serial.

    Serves queued chunks, then returns b"" (read timeout) until closed or
    until `fail_after` chunks, when it raises SerialException.
    """

    instances = []

    def __init__(self, port=None, baudrate=9600, timeout=None, **kwargs):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.chunks = []
        self.fail_after = None
        self.is_open = True
        self._reads = 0
        self._lock = threading.Lock()
        FakeSerial.instances.append(self)

    @property
    def in_waiting(self):
        with self._lock:
            return len(self.chunks[0]) if self.chunks else 0

    def read(self, size=1):
        import serial

        with self._lock:
            if not self.is_open:
                raise serial.SerialException("port closed")
            if self.fail_after is not None and self._reads >= self.fail_after:
                raise serial.SerialException("device disconnected")
            if not self.chunks:
                return b""
            self._reads += 1
            chunk = self.chunks.pop(0)
            if len(chunk) > size:
                self.chunks.insert(0, chunk[size:])
                chunk = chunk[:size]
            return chunk

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch):
    """Patch serial.Serial with FakeSerial and return the class."""
    import serial

    FakeSerial.instances = []
    monkeypatch.setattr(serial, "Serial", FakeSerial)
    return FakeSerial


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TTYSRV_* variables from the outer environment out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("TTYSRV_"):
            monkeypatch.delenv(key, raising=False)
