"""Google Drive v3 access used for listing, downloading and uploading media."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload
from google.oauth2 import service_account

from .events import emit_drive_event, emit_file_event
from .naming import escape_query_value


LOGGER = logging.getLogger(__name__)

# Uploading derived MP4s needs write access; ``drive.readonly`` is not enough.
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
GIF_MIME_FILTER = "image/gif"
MP4_MIME_TYPE = "video/mp4"
_LIST_FIELDS = "nextPageToken, files(id, name, mimeType, webViewLink, createdTime)"
_PAGE_SIZE = 100
_DOWNLOAD_CHUNK_SIZE = 4 * 1024 * 1024


class DriveError(RuntimeError):
    """Raised when a Google Drive API call fails."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class DriveFileNotFoundError(DriveError):
    """Raised when a requested Drive file does not exist or is not visible."""


@dataclass(frozen=True)
class DriveFile:
    """Subset of Drive file metadata the gallery relies on."""

    id: str
    name: str
    mime_type: Optional[str] = None
    web_view_link: Optional[str] = None
    created_time: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "DriveFile":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            mime_type=payload.get("mimeType"),
            web_view_link=payload.get("webViewLink"),
            created_time=payload.get("createdTime"),
        )


class DriveGateway(Protocol):
    """Protocol describing the Drive operations the gallery needs."""

    def list_gifs(self, folder_id: str) -> List[DriveFile]:
        """Return the GIFs in *folder_id*, newest first."""

    def get_file(self, file_id: str) -> DriveFile:
        """Return metadata for *file_id*."""

    def find_by_name(self, folder_id: str, name: str) -> List[DriveFile]:
        """Return files named *name* in *folder_id*."""

    def download(self, file_id: str, destination: Path) -> Path:
        """Write the content of *file_id* to *destination*."""

    def upload(self, source: Path, *, name: str, folder_id: str, mime_type: str = ...) -> str:
        """Upload *source* as *name* into *folder_id* and return the new id."""


def _http_status(error: HttpError) -> Optional[int]:
    resp = getattr(error, "resp", None)
    status = getattr(resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _wrap_http_error(action: str, error: HttpError) -> DriveError:
    status = _http_status(error)
    message = f"Drive {action} failed"
    if status is not None:
        message = f"{message} (HTTP {status})"
    if status == 404:
        return DriveFileNotFoundError(message, status=status)
    return DriveError(message, status=status)


def build_drive_service_factory(
    *,
    info: Optional[Dict[str, Any]] = None,
    credentials_file: Optional[Path] = None,
) -> Callable[[], Any]:
    """Return a factory producing Drive v3 service objects for a service account."""

    if info:
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=DRIVE_SCOPES
        )
    elif credentials_file is not None:
        credentials = service_account.Credentials.from_service_account_file(
            str(credentials_file), scopes=DRIVE_SCOPES
        )
    else:
        raise ValueError("A service account key or key file is required")

    def _factory() -> Any:
        return build("drive", "v3", credentials=credentials, cache_discovery=False)

    return _factory


class DriveStore:
    """Blocking wrapper around the Drive ``files`` resource.

    The underlying HTTP transport is not thread-safe, so every worker thread
    gets its own service object from ``service_factory``.
    """

    def __init__(self, service_factory: Callable[[], Any]) -> None:
        self._service_factory = service_factory
        self._local = threading.local()

    @classmethod
    def from_service_account(
        cls,
        *,
        info: Optional[Dict[str, Any]] = None,
        credentials_file: Optional[Path] = None,
    ) -> "DriveStore":
        return cls(build_drive_service_factory(info=info, credentials_file=credentials_file))

    def _files(self) -> Any:
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service.files()

    def list_gifs(self, folder_id: str) -> List[DriveFile]:
        """Return the non-trashed GIFs in *folder_id*, newest first."""

        query = (
            f"'{escape_query_value(folder_id)}' in parents "
            f"and mimeType contains '{GIF_MIME_FILTER}' and trashed=false"
        )
        results: List[DriveFile] = []
        page_token: Optional[str] = None
        started = time.perf_counter()
        try:
            while True:
                response = (
                    self._files()
                    .list(
                        q=query,
                        fields=_LIST_FIELDS,
                        orderBy="createdTime desc",
                        pageSize=_PAGE_SIZE,
                        pageToken=page_token,
                        supportsAllDrives=True,
                        includeItemsFromAllDrives=True,
                    )
                    .execute()
                )
                results.extend(DriveFile.from_api(item) for item in response.get("files", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as error:
            raise _wrap_http_error("list", error) from error
        emit_drive_event(
            "files.list",
            context={"folder": folder_id, "count": len(results)},
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return results

    def get_file(self, file_id: str) -> DriveFile:
        try:
            payload = (
                self._files()
                .get(
                    fileId=file_id,
                    fields="id, name, mimeType, webViewLink, createdTime",
                    supportsAllDrives=True,
                )
                .execute()
            )
        except HttpError as error:
            raise _wrap_http_error("get", error) from error
        emit_drive_event("files.get", context={"file": file_id})
        return DriveFile.from_api(payload)

    def find_by_name(self, folder_id: str, name: str) -> List[DriveFile]:
        """Return non-trashed files in *folder_id* whose name equals *name*."""

        query = (
            f"'{escape_query_value(folder_id)}' in parents "
            f"and name='{escape_query_value(name)}' and trashed=false"
        )
        try:
            response = (
                self._files()
                .list(
                    q=query,
                    fields="files(id, name)",
                    pageSize=10,
                    supportsAllDrives=True,
                    includeItemsFromAllDrives=True,
                )
                .execute()
            )
        except HttpError as error:
            raise _wrap_http_error("lookup", error) from error
        matches = [DriveFile.from_api(item) for item in response.get("files", [])]
        emit_drive_event(
            "files.list(name)", context={"folder": folder_id, "name": name, "count": len(matches)}
        )
        return matches

    def download(self, file_id: str, destination: Path) -> Path:
        """Stream the content of *file_id* into *destination*."""

        destination.parent.mkdir(parents=True, exist_ok=True)
        started = time.perf_counter()
        try:
            request = self._files().get_media(fileId=file_id, supportsAllDrives=True)
            with destination.open("wb") as handle:
                downloader = MediaIoBaseDownload(handle, request, chunksize=_DOWNLOAD_CHUNK_SIZE)
                done = False
                while not done:
                    _status, done = downloader.next_chunk()
        except HttpError as error:
            raise _wrap_http_error("download", error) from error
        emit_file_event(
            "download",
            context={"file": file_id, "path": destination, "bytes": destination.stat().st_size},
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return destination

    def upload(
        self,
        source: Path,
        *,
        name: str,
        folder_id: str,
        mime_type: str = MP4_MIME_TYPE,
    ) -> str:
        """Create *name* in *folder_id* with the bytes of *source*; return its id."""

        started = time.perf_counter()
        media = MediaFileUpload(str(source), mimetype=mime_type, resumable=True)
        try:
            response = (
                self._files()
                .create(
                    body={"name": name, "parents": [folder_id]},
                    media_body=media,
                    fields="id",
                    supportsAllDrives=True,
                )
                .execute()
            )
        except HttpError as error:
            raise _wrap_http_error("upload", error) from error
        file_id = str(response["id"])
        emit_drive_event(
            "files.create",
            context={"folder": folder_id, "name": name, "file": file_id},
            duration_ms=(time.perf_counter() - started) * 1000,
            level=logging.INFO,
        )
        return file_id


__all__ = [
    "DRIVE_SCOPES",
    "DriveError",
    "DriveFile",
    "DriveFileNotFoundError",
    "DriveGateway",
    "DriveStore",
    "GIF_MIME_FILTER",
    "MP4_MIME_TYPE",
    "build_drive_service_factory",
]
