"""Download, transcode, upload and clean up a single GIF conversion."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import Executor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, TypeVar

from ..config import EncoderSettings
from .drive import DriveGateway
from .events import emit_file_event, emit_task_event
from .naming import derive_target_name, temp_paths
from .progress import build_conversion_step_message
from .transcoding import transcode_gif_to_mp4


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Transcoder = Callable[[Path, Path, EncoderSettings], Path]


class ConversionError(RuntimeError):
    """Raised when one of the download, transcode or upload steps fails."""

    def __init__(self, message: str, *, source_id: str, stage: str) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.stage = stage


def cleanup_temp_files(paths: Iterable[Path]) -> List[Path]:
    """Delete *paths* one by one and return the ones that were removed.

    Failures are logged and skipped so one stubborn file never prevents the
    others from being removed.
    """

    removed: List[Path] = []
    for path in paths:
        try:
            if path.exists():
                path.unlink()
                removed.append(path)
                emit_file_event("cleanup", context={"path": path})
        except OSError as error:
            LOGGER.error("Error cleaning up %s: %s", path, error)
    return removed


class ConversionPipeline:
    """Run the four conversion steps for one GIF.

    Blocking Drive and FFmpeg work is pushed to *executor* (the loop default
    when ``None``) so the event loop keeps serving requests.
    """

    def __init__(
        self,
        drive: DriveGateway,
        *,
        temp_root: Path,
        encoder: Optional[EncoderSettings] = None,
        transcoder: Transcoder = transcode_gif_to_mp4,
        executor: Optional[Executor] = None,
    ) -> None:
        self._drive = drive
        self._temp_root = temp_root
        self._encoder = encoder or EncoderSettings()
        self._transcoder = transcoder
        self._executor = executor

    @property
    def temp_root(self) -> Path:
        return self._temp_root

    async def _run_blocking(self, func: Callable[..., T], *args, **kwargs) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    async def convert(self, source_id: str, source_name: str, target_folder_id: str) -> str:
        """Convert the GIF *source_id* and upload the MP4; return the new file id."""

        gif_path, mp4_path = temp_paths(self._temp_root, source_id)
        target_name = derive_target_name(source_name)
        context = {"gif_id": source_id, "gif_name": source_name}
        stage = "download"
        started = time.perf_counter()

        emit_task_event("started", f"Starting conversion for {source_name}", context=context)
        try:
            self._temp_root.mkdir(parents=True, exist_ok=True)

            LOGGER.info(build_conversion_step_message(1, source_name))
            await self._run_blocking(self._drive.download, source_id, gif_path)

            stage = "transcode"
            LOGGER.info(build_conversion_step_message(2, source_name))
            await self._run_blocking(self._transcoder, gif_path, mp4_path, self._encoder)

            stage = "upload"
            LOGGER.info(build_conversion_step_message(3, source_name))
            mp4_id = await self._run_blocking(
                self._drive.upload, mp4_path, name=target_name, folder_id=target_folder_id
            )
        except Exception as error:  # noqa: BLE001 - every step failure aborts the run
            LOGGER.error("Conversion of %s failed during %s: %s", source_name, stage, error)
            emit_task_event(
                "failed",
                f"Conversion failed for {source_name}",
                context={**context, "stage": stage, "error": error},
                duration_ms=(time.perf_counter() - started) * 1000,
                level=logging.WARNING,
            )
            raise ConversionError(
                f"Conversion of {source_name} failed during {stage}: {error}",
                source_id=source_id,
                stage=stage,
            ) from error
        finally:
            LOGGER.info(build_conversion_step_message(4, source_name))
            cleanup_temp_files((gif_path, mp4_path))

        emit_task_event(
            "succeeded",
            f"Conversion completed for {source_name}",
            context={**context, "mp4_id": mp4_id, "mp4_name": target_name},
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return mp4_id


__all__ = ["ConversionError", "ConversionPipeline", "Transcoder", "cleanup_temp_files"]
