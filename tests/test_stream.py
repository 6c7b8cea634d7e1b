"""Bounded channels and the concurrent stage runner."""

import asyncio

import pytest

from pgpipe.core.errors import PipelineCancelledError
from pgpipe.core.pipeline import Pipeline, Stage
from pgpipe.core.stream import Channel


@pytest.mark.asyncio
async def test_channel_preserves_order():
    channel = Channel("test", depth=4)
    for chunk in (b"a", b"bc", b"def"):
        await channel.write(chunk)
    channel.close()

    assert [chunk async for chunk in channel] == [b"a", b"bc", b"def"]
    assert await channel.read() == b""


@pytest.mark.asyncio
async def test_channel_error_after_buffered_chunks():
    channel = Channel("test", depth=4)
    await channel.write(b"partial")
    channel.close(RuntimeError("upstream broke"))

    assert await channel.read() == b"partial"
    with pytest.raises(RuntimeError, match="upstream broke"):
        await channel.read()


@pytest.mark.asyncio
async def test_channel_applies_backpressure():
    channel = Channel("test", depth=2)
    written = []

    async def writer():
        for i in range(5):
            await channel.write(b"%d" % i)
            written.append(i)
        channel.close()

    task = asyncio.ensure_future(writer())
    await asyncio.sleep(0.01)
    assert written == [0, 1]

    assert await channel.read() == b"0"
    await asyncio.sleep(0.01)
    assert written == [0, 1, 2]

    rest = [chunk async for chunk in channel]
    await task
    assert rest == [b"1", b"2", b"3", b"4"]


@pytest.mark.asyncio
async def test_write_after_reader_closed_raises_broken_pipe():
    channel = Channel("test", depth=1)
    await channel.write(b"x")
    blocked = asyncio.ensure_future(channel.write(b"y"))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    channel.close_reader()

    with pytest.raises(BrokenPipeError):
        await blocked
    with pytest.raises(BrokenPipeError):
        await channel.write(b"z")


@pytest.mark.asyncio
async def test_aclose_cancels_producer():
    channel = Channel("test", depth=1)

    async def produce():
        while True:
            await channel.write(b"chunk")

    task = asyncio.get_running_loop().create_task(produce())
    channel.attach_producer(task)

    assert await channel.read() == b"chunk"
    await channel.aclose()

    assert task.done()


@pytest.mark.asyncio
async def test_producer_exception_closes_channel():
    channel = Channel("test", depth=2)

    async def produce():
        await channel.write(b"one")
        raise ValueError("producer failed")

    channel.attach_producer(asyncio.get_running_loop().create_task(produce()))

    assert await channel.read() == b"one"
    with pytest.raises(ValueError, match="producer failed"):
        await channel.read()


def test_channel_depth_must_be_positive():
    with pytest.raises(ValueError):
        Channel("test", depth=0)


def source_of(*chunks, error=None):
    async def produce(_):
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    return produce


def passthrough(upstream):
    async def copy():
        async for chunk in upstream:
            yield chunk.upper()

    return copy()


@pytest.mark.asyncio
async def test_pipeline_moves_bytes_in_order():
    received = []

    async def sink(upstream):
        async for chunk in upstream:
            received.append(chunk)

    pipeline = Pipeline(
        "test",
        [Stage("source", source_of(b"ab", b"cd", b"ef")), Stage("upper", passthrough), Stage("sink", sink, terminal=True)],
        channel_depth=1,
    )

    outcomes = await pipeline.run()

    assert b"".join(received) == b"ABCDEF"
    assert [o.name for o in outcomes] == ["source", "upper", "sink"]
    assert [o.bytes_out for o in outcomes] == [6, 6, 0]
    assert all(o.ok for o in outcomes)


@pytest.mark.asyncio
async def test_pipeline_reports_earliest_failure():
    async def forgiving_sink(upstream):
        try:
            async for _ in upstream:
                pass
        except RuntimeError:
            pass

    pipeline = Pipeline(
        "test",
        [Stage("source", source_of(b"a", error=RuntimeError("source failed"))),
         Stage("sink", forgiving_sink, terminal=True)],
    )

    with pytest.raises(RuntimeError, match="source failed"):
        await pipeline.run()


@pytest.mark.asyncio
async def test_downstream_failure_stops_upstream():
    async def endless(_):
        while True:
            yield b"data"

    async def failing_sink(upstream):
        await upstream.read()
        raise ValueError("sink failed")

    pipeline = Pipeline("test", [Stage("source", endless), Stage("sink", failing_sink, terminal=True)], channel_depth=2)

    with pytest.raises(ValueError, match="sink failed"):
        await asyncio.wait_for(pipeline.run(), timeout=10)


@pytest.mark.asyncio
async def test_pipeline_cancellation_reaches_every_stage():
    stopped = []

    async def endless(_):
        try:
            while True:
                yield b"data"
        finally:
            stopped.append("source")

    async def slow_sink(upstream):
        try:
            async for _ in upstream:
                await asyncio.sleep(0.01)
        finally:
            stopped.append("sink")

    pipeline = Pipeline("test", [Stage("source", endless), Stage("sink", slow_sink, terminal=True)])
    task = asyncio.ensure_future(pipeline.run())
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(stopped) == ["sink", "source"]


@pytest.mark.asyncio
async def test_cancelled_stage_delivers_cancellation_downstream():
    channel = Channel("test")
    channel.close(PipelineCancelledError("stage cancelled"))

    with pytest.raises(PipelineCancelledError):
        await channel.read()


def test_terminal_stage_must_be_last():
    async def sink(_):
        pass

    with pytest.raises(ValueError):
        Pipeline("test", [Stage("sink", sink, terminal=True), Stage("other", passthrough)])
    with pytest.raises(ValueError):
        Pipeline("test", [])


@pytest.mark.asyncio
async def test_upstream_cut_off_by_failing_sink_is_marked_stopped():
    async def endless(_):
        while True:
            yield b"data"

    async def failing_sink(upstream):
        await upstream.read()
        raise ValueError("sink failed")

    pipeline = Pipeline("test", [Stage("source", endless), Stage("sink", failing_sink, terminal=True)], channel_depth=1)

    with pytest.raises(ValueError):
        await asyncio.wait_for(pipeline.run(), timeout=10)

    source, sink = pipeline.outcomes
    assert source.stopped and source.ok
    assert sink.error == "sink failed"
    assert not sink.stopped
