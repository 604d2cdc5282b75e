from pathlib import Path

import pytest

from gallery.services.naming import (
    derive_target_name,
    escape_query_value,
    gif_display_url,
    mp4_download_url,
    temp_paths,
)


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("cat.gif", "cat.mp4"),
        ("Party.GIF", "Party.mp4"),
        ("my.gif.collection.gif", "my.gif.collection.mp4"),
        ("no-extension", "no-extension.mp4"),
        ("clip.gif.png", "clip.gif.png.mp4"),
    ],
)
def test_derive_target_name(source: str, expected: str) -> None:
    assert derive_target_name(source) == expected


def test_escape_query_value_escapes_quotes_and_backslashes() -> None:
    assert escape_query_value("bob's.mp4") == "bob\\'s.mp4"
    assert escape_query_value("a\\b") == "a\\\\b"
    assert escape_query_value("plain.mp4") == "plain.mp4"


def test_drive_urls() -> None:
    assert gif_display_url("abc") == "https://drive.google.com/thumbnail?id=abc&sz=w1000"
    assert mp4_download_url("xyz") == "https://drive.google.com/uc?export=download&id=xyz"


def test_temp_paths_are_keyed_by_source_id(tmp_path: Path) -> None:
    gif_path, mp4_path = temp_paths(tmp_path, "abc123")

    assert gif_path == tmp_path / "abc123.gif"
    assert mp4_path == tmp_path / "abc123.mp4"
