"""Periodic scan that converts every GIF still lacking an MP4."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import List, Optional, Tuple

from .catalog import ReadinessCatalog
from .conversions import ConversionScheduler, StartedConversion


LOGGER = logging.getLogger(__name__)


async def start_missing_conversions(
    catalog: ReadinessCatalog,
    scheduler: ConversionScheduler,
    source_folder_id: str,
    target_folder_id: str,
    *,
    label: str = "Background",
) -> Tuple[int, List[StartedConversion]]:
    """Schedule a run for each GIF without an MP4.

    Returns the number of GIFs in the source folder and the runs that were
    actually started; GIFs already being converted are skipped by the
    scheduler.
    """

    files, missing = await catalog.missing(source_folder_id, target_folder_id)
    started: List[StartedConversion] = []
    for item in missing:
        LOGGER.info("%s-converting GIF: %s", label, item.name)
        if scheduler.schedule(item.id, item.name, target_folder_id, label=label):
            started.append(StartedConversion(gif_id=item.id, gif_name=item.name))
    return len(files), started


class AutoConversionSweep:
    """Run :func:`start_missing_conversions` on a fixed interval."""

    def __init__(
        self,
        catalog: ReadinessCatalog,
        scheduler: ConversionScheduler,
        *,
        source_folder_id: Optional[str],
        target_folder_id: Optional[str],
        interval_seconds: float = 60.0,
        initial_delay_seconds: float = 10.0,
    ) -> None:
        self._catalog = catalog
        self._scheduler = scheduler
        self._source_folder_id = source_folder_id
        self._target_folder_id = target_folder_id
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[StartedConversion]:
        """Scan once; errors are logged and an empty list returned."""

        if not self._source_folder_id or not self._target_folder_id:
            LOGGER.debug("Skipping auto-conversion sweep; folder ids are not configured")
            return []
        self.runs += 1
        try:
            _total, started = await start_missing_conversions(
                self._catalog,
                self._scheduler,
                self._source_folder_id,
                self._target_folder_id,
                label="Auto",
            )
        except Exception as error:  # noqa: BLE001 - the timer must keep ticking
            LOGGER.error("Error in auto-conversion check: %s", error)
            return []
        if started:
            LOGGER.info("Auto-conversion sweep started %s conversion(s)", len(started))
        return started

    async def start(self) -> None:
        if self._interval <= 0:
            LOGGER.info("Auto-conversion sweep disabled")
            return
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop(), name="auto-conversion-sweep")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _loop(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)


__all__ = ["AutoConversionSweep", "start_missing_conversions"]
