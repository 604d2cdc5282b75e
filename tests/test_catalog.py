import asyncio

from gallery.services.catalog import CatalogEntry, ExistenceChecker, ReadinessCatalog, StatusSummary

from conftest import SOURCE_FOLDER, TARGET_FOLDER, FakeDrive


def _drive_with_one_ready() -> FakeDrive:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    drive.add("B", "dog.gif")
    drive.add("M", "cat.mp4", TARGET_FOLDER, mime_type="video/mp4")
    return drive


def test_existence_checker_matches_derived_name() -> None:
    checker = ExistenceChecker(_drive_with_one_ready())

    assert checker.exists("cat.gif", TARGET_FOLDER) == "M"
    assert checker.exists("dog.gif", TARGET_FOLDER) is None
    assert checker.exists("cat.gif", None) is None


def test_existence_checker_is_idempotent() -> None:
    drive = _drive_with_one_ready()
    checker = ExistenceChecker(drive)

    results = [checker.exists(name, TARGET_FOLDER) for name in ("cat.gif", "dog.gif") * 3]

    assert results == ["M", None] * 3
    assert drive.lookups == 6


def test_existence_checker_fails_open_on_lookup_errors(caplog) -> None:
    drive = _drive_with_one_ready()
    drive.fail_lookup = True

    assert ExistenceChecker(drive).exists("cat.gif", TARGET_FOLDER) is None
    assert "Error checking MP4 existence for cat.gif" in caplog.text


def test_list_returns_only_ready_entries() -> None:
    catalog = ReadinessCatalog(_drive_with_one_ready())

    entries = asyncio.run(catalog.list(SOURCE_FOLDER, TARGET_FOLDER))

    assert entries == [
        CatalogEntry(
            id="A",
            name="cat.gif",
            display_url="https://drive.google.com/thumbnail?id=A&sz=w1000",
            web_view_link="https://drive.google.com/file/d/A/view",
            mp4_id="M",
            mp4_url="https://drive.google.com/uc?export=download&id=M",
        )
    ]
    assert entries[0].to_payload()["mp4Available"] is True


def test_list_without_target_folder_is_empty() -> None:
    catalog = ReadinessCatalog(_drive_with_one_ready())

    assert asyncio.run(catalog.list(SOURCE_FOLDER, None)) == []


def test_missing_and_status() -> None:
    catalog = ReadinessCatalog(_drive_with_one_ready())

    files, missing = asyncio.run(catalog.missing(SOURCE_FOLDER, TARGET_FOLDER))
    summary = asyncio.run(catalog.status(SOURCE_FOLDER, TARGET_FOLDER, in_flight=1))

    assert [item.id for item in files] == ["B", "A"]
    assert [item.id for item in missing] == ["B"]
    assert summary == StatusSummary(total=2, ready=1, in_flight=1)
    assert summary.processing == 1


def test_status_summary_messages() -> None:
    assert StatusSummary(total=0, ready=0).to_payload() == {
        "totalGifs": 0,
        "readyForDisplay": 0,
        "processing": 0,
        "inFlight": 0,
        "message": "All GIFs are ready for instant download!",
    }
    assert StatusSummary(total=3, ready=1).message == (
        "2 GIF(s) are being converted and will appear soon"
    )
