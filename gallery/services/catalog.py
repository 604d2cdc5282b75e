"""Readiness catalog: which GIFs already have an MP4 next to them in Drive."""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from .drive import DriveFile, DriveGateway
from .naming import derive_target_name, gif_display_url, mp4_download_url


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CatalogEntry:
    """A GIF whose MP4 is ready, as shown in the gallery."""

    id: str
    name: str
    display_url: str
    mp4_id: str
    mp4_url: str
    web_view_link: Optional[str] = None
    mp4_available: bool = True

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "displayUrl": self.display_url,
            "webViewLink": self.web_view_link,
            "mp4Available": self.mp4_available,
            "mp4Url": self.mp4_url,
            "mp4Id": self.mp4_id,
        }


@dataclass(frozen=True)
class StatusSummary:
    total: int
    ready: int
    in_flight: int = 0

    @property
    def processing(self) -> int:
        return self.total - self.ready

    @property
    def message(self) -> str:
        if self.processing > 0:
            return f"{self.processing} GIF(s) are being converted and will appear soon"
        return "All GIFs are ready for instant download!"

    def to_payload(self) -> dict:
        return {
            "totalGifs": self.total,
            "readyForDisplay": self.ready,
            "processing": self.processing,
            "inFlight": self.in_flight,
            "message": self.message,
        }


class ExistenceChecker:
    """Look up the MP4 derived from a GIF by exact name in the target folder."""

    def __init__(self, drive: DriveGateway) -> None:
        self._drive = drive

    def exists(self, source_name: str, target_folder_id: Optional[str]) -> Optional[str]:
        """Return the id of the MP4 derived from *source_name*, or ``None``.

        Lookup failures are reported as ``None`` so listing never breaks; the
        worst case is a redundant conversion.
        """

        if not target_folder_id:
            return None
        target_name = derive_target_name(source_name)
        try:
            matches = self._drive.find_by_name(target_folder_id, target_name)
        except Exception as error:  # noqa: BLE001 - fail open toward re-conversion
            LOGGER.error("Error checking MP4 existence for %s: %s", source_name, error)
            return None
        return matches[0].id if matches else None


class ReadinessCatalog:
    """Build the gallery listing and the conversion status summary."""

    def __init__(
        self,
        drive: DriveGateway,
        *,
        checker: Optional[ExistenceChecker] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._drive = drive
        self._checker = checker or ExistenceChecker(drive)
        self._executor = executor

    @property
    def checker(self) -> ExistenceChecker:
        return self._checker

    async def _run_blocking(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    async def sources(self, source_folder_id: str) -> List[DriveFile]:
        return await self._run_blocking(self._drive.list_gifs, source_folder_id)

    async def source(self, file_id: str) -> DriveFile:
        return await self._run_blocking(self._drive.get_file, file_id)

    async def exists(self, source_name: str, target_folder_id: Optional[str]) -> Optional[str]:
        return await self._run_blocking(self._checker.exists, source_name, target_folder_id)

    async def list(self, source_folder_id: str, target_folder_id: Optional[str]) -> List[CatalogEntry]:
        """Return the GIFs whose MP4 already exists, newest first."""

        files = await self.sources(source_folder_id)
        entries: List[CatalogEntry] = []
        for item in files:
            mp4_id = await self.exists(item.name, target_folder_id)
            if not mp4_id:
                continue
            entries.append(
                CatalogEntry(
                    id=item.id,
                    name=item.name,
                    display_url=gif_display_url(item.id),
                    web_view_link=item.web_view_link,
                    mp4_id=mp4_id,
                    mp4_url=mp4_download_url(mp4_id),
                )
            )
        LOGGER.info(
            "Found %s GIFs with MP4s ready (%s total GIFs in folder)", len(entries), len(files)
        )
        return entries

    async def missing(self, source_folder_id: str, target_folder_id: str) -> tuple[List[DriveFile], List[DriveFile]]:
        """Return ``(all_sources, sources_without_mp4)``."""

        files = await self.sources(source_folder_id)
        missing: List[DriveFile] = []
        for item in files:
            if not await self.exists(item.name, target_folder_id):
                missing.append(item)
        return files, missing

    async def status(
        self, source_folder_id: str, target_folder_id: str, *, in_flight: int = 0
    ) -> StatusSummary:
        files, missing = await self.missing(source_folder_id, target_folder_id)
        return StatusSummary(total=len(files), ready=len(files) - len(missing), in_flight=in_flight)


__all__ = ["CatalogEntry", "ExistenceChecker", "ReadinessCatalog", "StatusSummary"]
