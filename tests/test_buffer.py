"""
Frame Buffer Tests
==================

Overflow policies and close semantics of the per-subscriber buffer.
"""

import asyncio

import pytest

from ttysrv.stream import Frame, FrameBuffer, OverflowPolicy, PutResult


def make_frame(seq: int) -> Frame:
    return Frame(seq=seq, timestamp=0.0, data=f"f{seq}".encode())


class TestFrame:
    """Tests for the Frame data model."""
    
    def test_frame_is_immutable(self):
        frame = make_frame(0)
        with pytest.raises(AttributeError):
            frame.data = b"other"
    
    def test_repr_does_not_dump_payload(self):
        frame = Frame(seq=3, timestamp=1.5, data=b"x" * 1000)
        assert "xxx" not in repr(frame)
        assert "size=1000" in repr(frame)
        assert len(frame) == 1000


class TestOverflowPolicies:
    """Tests for what happens when the buffer is full."""
    
    def test_rejects_invalid_maxsize(self):
        with pytest.raises(ValueError):
            FrameBuffer(maxsize=0)
    
    def test_drop_oldest_keeps_newest(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=2, policy=OverflowPolicy.DROP_OLDEST)
            results = [await buffer.put(make_frame(i)) for i in range(4)]
            kept = [buffer.get_nowait().seq, buffer.get_nowait().seq]
            return results, kept, buffer.dropped_count
        
        results, kept, dropped = run(scenario())
        assert results == [
            PutResult.DELIVERED,
            PutResult.DELIVERED,
            PutResult.DROPPED,
            PutResult.DROPPED,
        ]
        assert kept == [2, 3]
        assert dropped == 2
    
    def test_drop_newest_keeps_oldest(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=2, policy=OverflowPolicy.DROP_NEWEST)
            for i in range(4):
                await buffer.put(make_frame(i))
            return [buffer.get_nowait().seq, buffer.get_nowait().seq], buffer.dropped_count
        
        kept, dropped = run(scenario())
        assert kept == [0, 1]
        assert dropped == 2
    
    def test_disconnect_reports_overflow(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.DISCONNECT)
            first = await buffer.put(make_frame(0))
            second = await buffer.put(make_frame(1))
            return first, second, buffer.size
        
        first, second, size = run(scenario())
        assert first is PutResult.DELIVERED
        assert second is PutResult.OVERFLOW
        assert size == 1
    
    def test_block_waits_for_space(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.BLOCK)
            await buffer.put(make_frame(0))
            put_task = asyncio.create_task(buffer.put(make_frame(1)))
            await asyncio.sleep(0.01)
            blocked = not put_task.done()
            first = await buffer.get()
            result = await put_task
            second = await buffer.get()
            return blocked, first.seq, result, second.seq
        
        blocked, first, result, second = run(scenario())
        assert blocked
        assert (first, result, second) == (0, PutResult.DELIVERED, 1)
    
    def test_block_times_out(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.BLOCK)
            await buffer.put(make_frame(0))
            return await buffer.put(make_frame(1), timeout=0.05)
        
        assert run(scenario()) is PutResult.TIMEOUT


class TestClose:
    """Tests for closing a buffer."""
    
    def test_close_wakes_waiting_consumer(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=4)
            get_task = asyncio.create_task(buffer.get())
            await asyncio.sleep(0.01)
            buffer.close()
            return await get_task
        
        assert run(scenario()) is None
    
    def test_close_unblocks_blocked_producer(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.BLOCK)
            await buffer.put(make_frame(0))
            put_task = asyncio.create_task(buffer.put(make_frame(1)))
            await asyncio.sleep(0.01)
            buffer.close(drain=False)
            return await put_task
        
        assert run(scenario()) is PutResult.CLOSED
    
    def test_draining_close_keeps_backlog(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=4)
            await buffer.put(make_frame(0))
            await buffer.put(make_frame(1))
            buffer.close(drain=True)
            late = await buffer.put(make_frame(2))
            frames = [await buffer.get(), await buffer.get(), await buffer.get()]
            return late, frames
        
        late, frames = run(scenario())
        assert late is PutResult.CLOSED
        assert [f.seq for f in frames[:2]] == [0, 1]
        assert frames[2] is None
    
    def test_discarding_close_drops_backlog(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=4)
            await buffer.put(make_frame(0))
            buffer.close(drain=False)
            return await buffer.get(), buffer.size
        
        frame, size = run(scenario())
        assert frame is None
        assert size == 0
    
    def test_discarding_close_rejects_woken_producer(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.BLOCK)
            await buffer.put(make_frame(0))
            put_task = asyncio.create_task(buffer.put(make_frame(1)))
            await asyncio.sleep(0.01)
            buffer.close(drain=False)
            result = await put_task
            return result, await buffer.get(), buffer.size
        
        result, frame, size = run(scenario())
        assert result is PutResult.CLOSED
        assert frame is None
        assert size == 0
    
    def test_get_timeout_returns_none(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=4)
            return await buffer.get(timeout=0.01), buffer.closed
        
        frame, closed = run(scenario())
        assert frame is None
        assert not closed
    
    def test_metrics(self, run):
        async def scenario():
            buffer = FrameBuffer(maxsize=1, policy=OverflowPolicy.DROP_NEWEST)
            await buffer.put(make_frame(0))
            await buffer.put(make_frame(1))
            return buffer.metrics()
        
        metrics = run(scenario())
        assert metrics == {
            "size": 1,
            "maxsize": 1,
            "policy": "drop_newest",
            "dropped_count": 1,
            "total_put": 2,
            "closed": False,
        }
