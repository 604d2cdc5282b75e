from __future__ import annotations

import itertools
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gallery.config import AppConfig, EncoderSettings
from gallery.services.drive import DriveError, DriveFile, DriveFileNotFoundError
from gallery.services.transcoding import TranscodeError


SOURCE_FOLDER = "gif-folder"
TARGET_FOLDER = "mp4-folder"


class FakeDrive:
    """In-memory stand-in for :class:`gallery.services.drive.DriveStore`."""

    def __init__(self) -> None:
        self._files: Dict[str, Dict[str, object]] = {}
        self._lock = threading.Lock()
        self._created = itertools.count(1)
        self._uploaded = itertools.count(1)
        self.downloads: List[str] = []
        self.uploads: List[Dict[str, object]] = []
        self.lookups = 0
        self.fail_list = False
        self.fail_lookup = False
        self.fail_download = False
        self.fail_upload = False

    def add(
        self,
        file_id: str,
        name: str,
        folder_id: str = SOURCE_FOLDER,
        *,
        mime_type: str = "image/gif",
        content: bytes = b"GIF89a",
    ) -> None:
        with self._lock:
            self._files[file_id] = {
                "name": name,
                "folder": folder_id,
                "mime_type": mime_type,
                "content": content,
                "created": next(self._created),
            }

    def names_in(self, folder_id: str) -> List[str]:
        with self._lock:
            return sorted(
                str(item["name"]) for item in self._files.values() if item["folder"] == folder_id
            )

    def _as_file(self, file_id: str, item: Dict[str, object]) -> DriveFile:
        return DriveFile(
            id=file_id,
            name=str(item["name"]),
            mime_type=str(item["mime_type"]),
            web_view_link=f"https://drive.google.com/file/d/{file_id}/view",
        )

    def list_gifs(self, folder_id: str) -> List[DriveFile]:
        if self.fail_list:
            raise DriveError("Drive list failed (HTTP 500)", status=500)
        with self._lock:
            items = [
                (file_id, item)
                for file_id, item in self._files.items()
                if item["folder"] == folder_id and "image/gif" in str(item["mime_type"])
            ]
        items.sort(key=lambda pair: pair[1]["created"], reverse=True)
        return [self._as_file(file_id, item) for file_id, item in items]

    def get_file(self, file_id: str) -> DriveFile:
        with self._lock:
            item = self._files.get(file_id)
        if item is None:
            raise DriveFileNotFoundError("Drive get failed (HTTP 404)", status=404)
        return self._as_file(file_id, item)

    def find_by_name(self, folder_id: str, name: str) -> List[DriveFile]:
        if self.fail_lookup:
            raise DriveError("Drive lookup failed (HTTP 503)", status=503)
        with self._lock:
            self.lookups += 1
            return [
                self._as_file(file_id, item)
                for file_id, item in self._files.items()
                if item["folder"] == folder_id and item["name"] == name
            ]

    def download(self, file_id: str, destination: Path) -> Path:
        if self.fail_download:
            raise DriveError("Drive download failed (HTTP 500)", status=500)
        with self._lock:
            item = self._files[file_id]
            self.downloads.append(file_id)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(bytes(item["content"]))
        return destination

    def upload(
        self,
        source: Path,
        *,
        name: str,
        folder_id: str,
        mime_type: str = "video/mp4",
    ) -> str:
        if self.fail_upload:
            raise DriveError("Drive upload failed (HTTP 500)", status=500)
        # duplicate runs share temp paths, so a sibling's cleanup may win
        try:
            content = source.read_bytes()
        except FileNotFoundError:
            content = b""
        with self._lock:
            file_id = f"mp4-{next(self._uploaded)}"
            self.uploads.append({"id": file_id, "name": name, "folder": folder_id})
        self.add(file_id, name, folder_id, mime_type=mime_type, content=content)
        return file_id


class FakeTranscoder:
    """Callable matching ``transcode_gif_to_mp4`` that never shells out."""

    def __init__(self, *, fail: bool = False, gate: Optional[threading.Event] = None) -> None:
        self.fail = fail
        self.gate = gate
        self.calls: List[tuple[Path, Path]] = []
        self._lock = threading.Lock()

    def __call__(self, source: Path, destination: Path, settings: EncoderSettings) -> Path:
        with self._lock:
            self.calls.append((source, destination))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise TranscodeError("Unable to convert GIF to MP4: Invalid data found")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return destination


@pytest.fixture()
def temp_config(tmp_path: Path) -> AppConfig:
    temp_root = tmp_path / "temp"
    log_root = tmp_path / "logs"
    temp_root.mkdir()
    log_root.mkdir()
    return AppConfig(
        temp_root=temp_root,
        log_root=log_root,
        source_folder_id=SOURCE_FOLDER,
        target_folder_id=TARGET_FOLDER,
        sweep_interval_seconds=0,
        sweep_initial_delay_seconds=0,
        max_concurrent_conversions=2,
    )


@pytest.fixture()
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture()
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()
