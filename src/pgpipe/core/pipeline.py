"""
Concurrent stage runner

A pipeline is an ordered list of stages joined by bounded channels. Every
channel exists before any stage starts and every stage is started before
any is awaited, so no stage ever waits on a pipe nobody will open. Each
stage runs as its own asyncio task; external tools additionally run as
their own OS processes inside the stage.

Outcome policy: the pipeline waits for all stages to terminate and then
raises the earliest failure that occurred anywhere in the chain. A
downstream stage that exits cleanly never hides an upstream failure. An
upstream stage cut off because its reader went away is marked ``stopped``
rather than failed.
"""

import asyncio
from typing import Any, Callable, List, Optional

from .errors import PipelineCancelledError
from .models import StageOutcome
from .stream import DEFAULT_CHANNEL_DEPTH, Channel, close_stream
from ..utils.logger import get_logger

logger = get_logger(__name__)


class Stage:
    """One link of a pipeline.

    ``func`` is called with the upstream stream (``None`` for the first
    stage). A terminal stage returns an awaitable; any other stage returns
    an async iterator of bytes that the pipeline copies into the channel
    feeding the next stage.
    """

    def __init__(self, name: str, func: Callable[[Optional[Any]], Any], terminal: bool = False):
        self.name = name
        self.func = func
        self.terminal = terminal

    def __repr__(self):
        return f"<Stage {self.name}>"


class Pipeline:
    """Runs a chain of stages and reports the first failure"""

    def __init__(self, name: str, stages: List[Stage], channel_depth: int = DEFAULT_CHANNEL_DEPTH):
        if not stages:
            raise ValueError("a pipeline needs at least one stage")
        for stage in stages[:-1]:
            if stage.terminal:
                raise ValueError(f"terminal stage {stage.name} must be last")
        self.name = name
        self.stages = stages
        self.channel_depth = channel_depth
        self.outcomes: List[StageOutcome] = []

    async def run(self) -> List[StageOutcome]:
        # Connect before starting: every channel exists before any task runs
        channels = [
            Channel(f"{upstream.name}->{downstream.name}", self.channel_depth)
            for upstream, downstream in zip(self.stages, self.stages[1:])
        ]
        outcomes = [StageOutcome(name=stage.name) for stage in self.stages]
        self.outcomes = outcomes
        failures: List[BaseException] = []

        tasks = []
        for index, stage in enumerate(self.stages):
            source = channels[index - 1] if index > 0 else None
            sink = channels[index] if index < len(channels) else None
            tasks.append(asyncio.ensure_future(
                self._run_stage(stage, source, sink, outcomes[index], failures)
            ))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.warning(f"Pipeline {self.name} cancelled, stopping all stages")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if failures:
            raise failures[0]
        return outcomes

    async def _run_stage(
        self,
        stage: Stage,
        source: Optional[Channel],
        sink: Optional[Channel],
        outcome: StageOutcome,
        failures: List[BaseException],
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            if stage.terminal or sink is None:
                await stage.func(source)
            else:
                stream = stage.func(source)
                try:
                    async for chunk in stream:
                        await sink.write(chunk)
                        outcome.bytes_out += len(chunk)
                finally:
                    await close_stream(stream)
        except asyncio.CancelledError:
            if sink is not None:
                sink.close(PipelineCancelledError(f"{self.name}: stage {stage.name} cancelled"))
            raise
        except BrokenPipeError as exc:
            if sink is None or not sink.reader_closed:
                self._record_failure(stage, exc, sink, outcome, failures)
            else:
                # The next stage stopped reading; its own outcome says why
                outcome.stopped = True
                logger.debug(f"Stage {stage.name} of {self.name} stopped by its downstream stage")
        except Exception as exc:
            self._record_failure(stage, exc, sink, outcome, failures)
        else:
            if sink is not None:
                sink.close()
        finally:
            if source is not None:
                source.close_reader()
            outcome.duration = loop.time() - started

    def _record_failure(
        self,
        stage: Stage,
        exc: Exception,
        sink: Optional[Channel],
        outcome: StageOutcome,
        failures: List[BaseException],
    ) -> None:
        # Appended in the order failures happen; the first one wins
        failures.append(exc)
        outcome.error = str(exc)
        logger.debug(f"Stage {stage.name} of {self.name} failed: {exc}")
        if sink is not None:
            sink.close(exc)
