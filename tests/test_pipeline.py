import asyncio
from pathlib import Path

import pytest

from gallery.services.pipeline import ConversionError, ConversionPipeline, cleanup_temp_files

from conftest import SOURCE_FOLDER, TARGET_FOLDER, FakeDrive, FakeTranscoder


def _pipeline(drive: FakeDrive, transcoder: FakeTranscoder, temp_root: Path) -> ConversionPipeline:
    return ConversionPipeline(drive, temp_root=temp_root, transcoder=transcoder)


def test_convert_uploads_mp4_with_derived_name(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "Party.GIF")
    transcoder = FakeTranscoder()

    mp4_id = asyncio.run(_pipeline(drive, transcoder, tmp_path).convert("A", "Party.GIF", TARGET_FOLDER))

    assert drive.uploads == [{"id": mp4_id, "name": "Party.mp4", "folder": TARGET_FOLDER}]
    assert transcoder.calls == [(tmp_path / "A.gif", tmp_path / "A.mp4")]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize(
    ("failure", "stage"),
    [("fail_download", "download"), ("fail_upload", "upload")],
)
def test_drive_failures_abort_and_clean_up(tmp_path: Path, failure: str, stage: str) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    setattr(drive, failure, True)

    with pytest.raises(ConversionError) as excinfo:
        asyncio.run(_pipeline(drive, FakeTranscoder(), tmp_path).convert("A", "cat.gif", TARGET_FOLDER))

    assert excinfo.value.stage == stage
    assert excinfo.value.source_id == "A"
    assert drive.names_in(TARGET_FOLDER) == []
    assert list(tmp_path.iterdir()) == []


def test_transcode_failure_skips_upload(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")

    with pytest.raises(ConversionError) as excinfo:
        asyncio.run(
            _pipeline(drive, FakeTranscoder(fail=True), tmp_path).convert("A", "cat.gif", TARGET_FOLDER)
        )

    assert excinfo.value.stage == "transcode"
    assert "Invalid data found" in str(excinfo.value)
    assert drive.uploads == []
    assert drive.names_in(SOURCE_FOLDER) == ["cat.gif"]
    assert list(tmp_path.iterdir()) == []


def test_cleanup_continues_after_individual_failures(tmp_path: Path) -> None:
    stubborn = tmp_path / "stubborn"
    stubborn.mkdir()
    removable = tmp_path / "a.gif"
    removable.write_bytes(b"x")

    removed = cleanup_temp_files([stubborn, removable, tmp_path / "missing.mp4"])

    assert removed == [removable]
    assert stubborn.exists()
    assert not removable.exists()
