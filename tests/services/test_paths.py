from datetime import datetime

import pytest

from backend.src.services.paths import (
    clean_file_name,
    data_path,
    format_timestamp_for_filename,
    is_text_file,
    join_pod_path,
    normalise_timestamp,
    parse_timestamp,
    remote_file_name,
    safe_timestamp,
    sanitize_file_name,
    strip_data_root,
)


@pytest.mark.parametrize(
    "given,expected",
    [
        ("my report (final).pdf", "my_report__final_.pdf"),
        ("/home/user/docs/notes.txt", "notes.txt"),
        ("C:\\Users\\me\\scan.png", "scan.png"),
        ("already.txt.enc.ttl", "already.txt"),
    ],
)
def test_sanitize_file_name(given, expected):
    assert sanitize_file_name(given) == expected


def test_remote_file_name_appends_suffix_once():
    assert remote_file_name("notes.txt") == "notes.txt.enc.ttl"
    assert remote_file_name("notes.txt.enc.ttl") == "notes.txt.enc.ttl"


def test_clean_file_name_strips_suffix():
    assert clean_file_name("photo.png.enc.ttl") == "photo.png"
    assert clean_file_name("plain.txt") == "plain.txt"


def test_is_text_file_uses_extension():
    assert is_text_file("readings.csv")
    assert is_text_file("profile.json.enc.ttl")
    assert not is_text_file("scan.PNG")
    assert not is_text_file("archive")


def test_strip_data_root_and_join():
    assert strip_data_root("healthpod/data") == ""
    assert strip_data_root("/healthpod/data/blood_pressure/") == "blood_pressure"
    assert strip_data_root(None) == ""
    assert join_pod_path("healthpod/data", "a.enc.ttl") == "a.enc.ttl"
    assert join_pod_path("healthpod/data/profile", "a.enc.ttl") == "profile/a.enc.ttl"


def test_data_path():
    assert data_path() == "healthpod/data"
    assert data_path("profile") == "healthpod/data/profile"
    assert data_path("/blood_pressure/", "", "x") == "healthpod/data/blood_pressure/x"


def test_format_timestamp_for_filename():
    assert format_timestamp_for_filename(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03-04-05"


def test_parse_timestamp_variants():
    assert parse_timestamp("2025-03-01 08:15:00") == datetime(2025, 3, 1, 8, 15)
    assert parse_timestamp("2025-03-01T08:15:00Z").utcoffset().total_seconds() == 0
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(42) is None


def test_normalise_timestamp_truncates_seconds():
    assert normalise_timestamp("2025-03-01 08:15:30.987") == "2025-03-01T08:15:30"
    assert normalise_timestamp("2025-03-01T08:15:30+00:00") == "2025-03-01T08:15:30Z"


def test_normalise_timestamp_to_utc_iso():
    assert normalise_timestamp("2025-03-01T10:15:30+02:00", to_iso=True) == "2025-03-01T08:15:30Z"
    assert normalise_timestamp("2025-03-01 08:15:30", to_iso=True) == "2025-03-01T08:15:30Z"


def test_normalise_timestamp_rejects_garbage():
    with pytest.raises(ValueError):
        normalise_timestamp("not-a-time")


def test_safe_timestamp():
    assert safe_timestamp("2025-03-01T08:15:30") == "2025-03-01T08-15-30"
    assert safe_timestamp("2025-03-01T08:15:30.5") == "2025-03-01T08-15-30-5"
