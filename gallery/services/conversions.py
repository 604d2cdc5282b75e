"""Detached conversion runs with an in-flight guard and bounded concurrency."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .pipeline import ConversionError, ConversionPipeline


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartedConversion:
    """A conversion that was handed to the scheduler."""

    gif_id: str
    gif_name: str

    def to_payload(self) -> dict:
        return {"gifId": self.gif_id, "gifName": self.gif_name}


class ConversionScheduler:
    """Start pipeline runs as background tasks without waiting for them.

    At most ``max_concurrent`` runs execute their pipeline at once; extra runs
    wait on a semaphore. With ``dedupe_in_flight`` a source id that already has
    a run in progress is not started again, which keeps two triggers for the
    same GIF from uploading two MP4s with the same name.
    """

    def __init__(
        self,
        pipeline: ConversionPipeline,
        *,
        max_concurrent: int = 2,
        dedupe_in_flight: bool = True,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._pipeline = pipeline
        self._max_concurrent = max_concurrent
        self._dedupe = dedupe_in_flight
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task[None]] = set()
        self.completed = 0
        self.failed = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def dedupe_in_flight(self) -> bool:
        return self._dedupe

    @property
    def in_flight_count(self) -> int:
        return sum(self._in_flight.values())

    def in_flight_ids(self) -> List[str]:
        return sorted(self._in_flight)

    def is_in_flight(self, source_id: str) -> bool:
        return source_id in self._in_flight

    def schedule(
        self,
        source_id: str,
        source_name: str,
        target_folder_id: str,
        *,
        label: str = "Background",
    ) -> bool:
        """Start a run for *source_id*; return ``False`` when one is already active.

        Must be called from a coroutine running on the event loop.
        """

        if self._dedupe and source_id in self._in_flight:
            LOGGER.info("Conversion already in progress for %s; not starting another", source_name)
            return False

        self._in_flight[source_id] = self._in_flight.get(source_id, 0) + 1
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._run(source_id, source_name, target_folder_id, label),
            name=f"convert-{source_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, source_id: str, source_name: str, target_folder_id: str, label: str) -> None:
        try:
            async with self._semaphore:
                mp4_id = await self._pipeline.convert(source_id, source_name, target_folder_id)
        except ConversionError as error:
            self.failed += 1
            LOGGER.error("%s conversion failed for %s: %s", label, source_name, error)
        else:
            self.completed += 1
            LOGGER.info("%s conversion completed for %s: %s", label, source_name, mp4_id)
        finally:
            remaining = self._in_flight.get(source_id, 0) - 1
            if remaining > 0:
                self._in_flight[source_id] = remaining
            else:
                self._in_flight.pop(source_id, None)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until no run is active; return ``False`` if *timeout* expired first."""

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return True
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            # asyncio.wait leaves unfinished runs alone when the timeout expires
            await asyncio.wait(pending, timeout=remaining)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


__all__ = ["ConversionScheduler", "StartedConversion"]
