"""FastAPI application powering the Drive GIF gallery."""

from __future__ import annotations

import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from ..config import AppConfig
from ..services.catalog import ReadinessCatalog
from ..services.conversions import ConversionScheduler
from ..services.drive import DriveFileNotFoundError, DriveGateway, DriveStore, GIF_MIME_FILTER
from ..services.naming import mp4_download_url
from ..services.pipeline import ConversionPipeline, Transcoder
from ..services.sweep import AutoConversionSweep, start_missing_conversions
from ..services.transcoding import ffmpeg_available, transcode_gif_to_mp4


LOGGER = logging.getLogger(__name__)

_STATIC_ROOT = Path(__file__).parent / "static"
_TEMPLATE_PATH = Path(__file__).parent / "templates" / "index.html"
_SHUTDOWN_GRACE_SECONDS = 30.0


class GalleryAPIError(Exception):
    """Error rendered as ``{"error": message, **extra}`` with *status_code*."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra


class ConfigurationError(GalleryAPIError):
    """Missing Drive client or folder identifiers."""

    status_code = 400


class SourceNotFoundError(GalleryAPIError):
    status_code = 404


def _initialize_drive(config: AppConfig) -> Optional[DriveGateway]:
    if not config.has_credentials:
        LOGGER.warning("Google Drive credentials are not configured")
        return None
    try:
        drive = DriveStore.from_service_account(
            info=config.service_account_info,
            credentials_file=config.service_account_file,
        )
    except Exception:  # noqa: BLE001 - the server keeps running without Drive
        LOGGER.exception("Error initializing Google Drive API")
        return None
    LOGGER.info("Google Drive API initialized successfully")
    return drive


def create_app(
    config: AppConfig,
    *,
    drive: Optional[DriveGateway] = None,
    transcoder: Optional[Transcoder] = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    *drive* and *transcoder* default to the service-account Drive client and
    the FFmpeg transcoder.
    """

    if drive is None:
        drive = _initialize_drive(config)

    executor = ThreadPoolExecutor(
        max_workers=config.max_concurrent_conversions + 2,
        thread_name_prefix="drive-io",
    )
    catalog: Optional[ReadinessCatalog] = None
    scheduler: Optional[ConversionScheduler] = None
    sweep: Optional[AutoConversionSweep] = None
    if drive is not None:
        catalog = ReadinessCatalog(drive, executor=executor)
        pipeline = ConversionPipeline(
            drive,
            temp_root=config.temp_root,
            encoder=config.encoder,
            transcoder=transcoder or transcode_gif_to_mp4,
            executor=executor,
        )
        scheduler = ConversionScheduler(
            pipeline,
            max_concurrent=config.max_concurrent_conversions,
            dedupe_in_flight=config.dedupe_in_flight,
        )
        sweep = AutoConversionSweep(
            catalog,
            scheduler,
            source_folder_id=config.source_folder_id,
            target_folder_id=config.target_folder_id,
            interval_seconds=config.sweep_interval_seconds,
            initial_delay_seconds=config.sweep_initial_delay_seconds,
        )

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if sweep is not None:
            await sweep.start()
        try:
            yield
        finally:
            if sweep is not None:
                await sweep.stop()
            if scheduler is not None and scheduler.in_flight_count:
                LOGGER.info("Waiting for %s conversion(s) to finish", scheduler.in_flight_count)
                if not await scheduler.join(timeout=_SHUTDOWN_GRACE_SECONDS):
                    LOGGER.warning("Cancelling conversions still running at shutdown")
                    await scheduler.cancel_all()
            executor.shutdown(wait=False, cancel_futures=True)

    app = FastAPI(
        title="Drive GIF Gallery",
        description="Browse Drive GIFs and download them as MP4",
        lifespan=_lifespan,
    )
    app.state.config = config
    app.state.drive = drive
    app.state.catalog = catalog
    app.state.scheduler = scheduler
    app.state.sweep = sweep
    app.state.executor = executor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.mount(
        "/static",
        StaticFiles(directory=_STATIC_ROOT, check_dir=False),
        name="assets",
    )

    index_html = _TEMPLATE_PATH.read_text(encoding="utf-8")

    @app.exception_handler(GalleryAPIError)
    async def _handle_gallery_error(_request: Request, error: GalleryAPIError) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content={"error": error.message, **error.extra},
        )

    def _require_catalog(**extra: Any) -> ReadinessCatalog:
        if catalog is None:
            raise GalleryAPIError("Google Drive API not initialized", status_code=500, **extra)
        return catalog

    def _require_scheduler(**extra: Any) -> ConversionScheduler:
        if scheduler is None:
            raise GalleryAPIError("Google Drive API not initialized", status_code=500, **extra)
        return scheduler

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(index_html)

    @app.get("/gifs")
    async def list_gifs() -> Dict[str, Any]:
        active_catalog = _require_catalog(gifs=[])
        if not config.source_folder_id:
            raise ConfigurationError(
                "GOOGLE_DRIVE_FOLDER_ID environment variable not set", gifs=[]
            )
        try:
            entries = await active_catalog.list(config.source_folder_id, config.target_folder_id)
        except Exception as error:  # noqa: BLE001 - surfaced as an empty listing
            LOGGER.error("Error fetching GIFs: %s", error)
            raise GalleryAPIError(
                "Failed to fetch GIFs from Google Drive", status_code=500, gifs=[]
            ) from error
        return {"gifs": [entry.to_payload() for entry in entries]}

    @app.post("/convert/{gif_id}")
    async def convert_gif(gif_id: str) -> Dict[str, Any]:
        active_catalog = _require_catalog(success=False)
        active_scheduler = _require_scheduler(success=False)
        target_folder_id = config.target_folder_id
        if not target_folder_id:
            raise ConfigurationError("MP4 folder ID not configured", success=False)

        try:
            source = await active_catalog.source(gif_id)
        except DriveFileNotFoundError as error:
            raise SourceNotFoundError(f"GIF '{gif_id}' not found", success=False) from error
        except Exception as error:  # noqa: BLE001 - reported to the caller
            LOGGER.error("Error starting conversion for %s: %s", gif_id, error)
            raise GalleryAPIError(
                "Failed to start conversion", status_code=500, success=False
            ) from error

        if source.mime_type and GIF_MIME_FILTER not in source.mime_type:
            raise GalleryAPIError(
                f"'{source.name}' is not a GIF", status_code=400, success=False
            )

        existing_mp4_id = await active_catalog.exists(source.name, target_folder_id)
        if existing_mp4_id:
            return {
                "success": True,
                "message": "MP4 already exists",
                "gifId": gif_id,
                "gifFileName": source.name,
                "mp4Id": existing_mp4_id,
                "mp4Url": mp4_download_url(existing_mp4_id),
            }

        started = active_scheduler.schedule(source.id, source.name, target_folder_id)
        return {
            "success": True,
            "message": (
                "Conversion started in background" if started else "Conversion already in progress"
            ),
            "gifId": gif_id,
            "gifFileName": source.name,
        }

    @app.post("/convert-all")
    async def convert_all() -> Dict[str, Any]:
        active_catalog = _require_catalog(success=False)
        active_scheduler = _require_scheduler(success=False)
        if not config.target_folder_id:
            raise ConfigurationError("MP4 folder ID not configured", success=False)
        if not config.source_folder_id:
            raise ConfigurationError(
                "GOOGLE_DRIVE_FOLDER_ID environment variable not set", success=False
            )

        try:
            total, started = await start_missing_conversions(
                active_catalog,
                active_scheduler,
                config.source_folder_id,
                config.target_folder_id,
            )
        except Exception as error:  # noqa: BLE001 - reported to the caller
            LOGGER.error("Error starting bulk conversion: %s", error)
            raise GalleryAPIError(
                "Failed to start bulk conversion", status_code=500, success=False
            ) from error

        return {
            "success": True,
            "message": f"Started {len(started)} conversions in background",
            "conversionsStarted": [item.to_payload() for item in started],
            "totalGifs": total,
        }

    @app.get("/status")
    async def conversion_status() -> Dict[str, Any]:
        active_catalog = _require_catalog()
        active_scheduler = _require_scheduler()
        if not config.source_folder_id or not config.target_folder_id:
            raise ConfigurationError("Folder IDs not configured")

        try:
            summary = await active_catalog.status(
                config.source_folder_id,
                config.target_folder_id,
                in_flight=active_scheduler.in_flight_count,
            )
        except Exception as error:  # noqa: BLE001 - reported to the caller
            LOGGER.error("Error getting status: %s", error)
            raise GalleryAPIError("Failed to get processing status", status_code=500) from error
        return summary.to_payload()

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "driveApiReady": drive is not None,
            "ffmpegAvailable": ffmpeg_available(),
        }

    return app


__all__ = ["ConfigurationError", "GalleryAPIError", "SourceNotFoundError", "create_app"]
