import asyncio
from pathlib import Path

from gallery.services.catalog import ReadinessCatalog
from gallery.services.conversions import ConversionScheduler
from gallery.services.pipeline import ConversionPipeline
from gallery.services.sweep import AutoConversionSweep, start_missing_conversions

from conftest import SOURCE_FOLDER, TARGET_FOLDER, FakeDrive, FakeTranscoder


def _components(tmp_path: Path, drive: FakeDrive):
    catalog = ReadinessCatalog(drive)
    pipeline = ConversionPipeline(drive, temp_root=tmp_path, transcoder=FakeTranscoder())
    return catalog, ConversionScheduler(pipeline)


def test_start_missing_conversions_skips_ready_gifs(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    drive.add("B", "dog.gif")
    drive.add("M", "cat.mp4", TARGET_FOLDER, mime_type="video/mp4")
    catalog, scheduler = _components(tmp_path, drive)

    async def scenario():
        result = await start_missing_conversions(catalog, scheduler, SOURCE_FOLDER, TARGET_FOLDER)
        await scheduler.join(timeout=5)
        return result

    total, started = asyncio.run(scenario())

    assert total == 2
    assert [item.to_payload() for item in started] == [{"gifId": "B", "gifName": "dog.gif"}]
    assert drive.names_in(TARGET_FOLDER) == ["cat.mp4", "dog.mp4"]


def test_second_sweep_does_not_restart_in_flight_runs(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    catalog, scheduler = _components(tmp_path, drive)
    sweep = AutoConversionSweep(
        catalog, scheduler, source_folder_id=SOURCE_FOLDER, target_folder_id=TARGET_FOLDER
    )

    async def scenario():
        first = await sweep.run_once()
        second = await sweep.run_once()
        await scheduler.join(timeout=5)
        third = await sweep.run_once()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert [item.gif_id for item in first] == ["A"]
    assert second == []
    assert third == []
    assert sweep.runs == 3
    assert drive.names_in(TARGET_FOLDER) == ["cat.mp4"]


def test_run_once_swallows_listing_errors(tmp_path: Path, caplog) -> None:
    drive = FakeDrive()
    drive.fail_list = True
    catalog, scheduler = _components(tmp_path, drive)
    sweep = AutoConversionSweep(
        catalog, scheduler, source_folder_id=SOURCE_FOLDER, target_folder_id=TARGET_FOLDER
    )

    assert asyncio.run(sweep.run_once()) == []
    assert "Error in auto-conversion check" in caplog.text


def test_run_once_without_folders_does_nothing(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    catalog, scheduler = _components(tmp_path, drive)
    sweep = AutoConversionSweep(catalog, scheduler, source_folder_id=None, target_folder_id=None)

    assert asyncio.run(sweep.run_once()) == []
    assert sweep.runs == 0


def test_timer_runs_after_initial_delay_and_stops(tmp_path: Path) -> None:
    drive = FakeDrive()
    drive.add("A", "cat.gif")
    catalog, scheduler = _components(tmp_path, drive)
    sweep = AutoConversionSweep(
        catalog,
        scheduler,
        source_folder_id=SOURCE_FOLDER,
        target_folder_id=TARGET_FOLDER,
        interval_seconds=0.01,
        initial_delay_seconds=0,
    )

    async def scenario() -> bool:
        await sweep.start()
        running = sweep.running
        for _ in range(200):
            if sweep.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await sweep.stop()
        await scheduler.join(timeout=5)
        return running

    assert asyncio.run(scenario()) is True
    assert sweep.runs >= 2
    assert sweep.running is False
    assert drive.names_in(TARGET_FOLDER) == ["cat.mp4"]


def test_non_positive_interval_disables_timer(tmp_path: Path) -> None:
    catalog, scheduler = _components(tmp_path, FakeDrive())
    sweep = AutoConversionSweep(
        catalog,
        scheduler,
        source_folder_id=SOURCE_FOLDER,
        target_folder_id=TARGET_FOLDER,
        interval_seconds=0,
    )

    async def scenario() -> bool:
        await sweep.start()
        return sweep.running

    assert asyncio.run(scenario()) is False
