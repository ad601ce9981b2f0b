from datetime import datetime, timedelta, timezone

import pytest

from app.utils import (
    looks_like_video,
    parse_timestamp,
    split_labels,
    to_naive_utc,
    weekday_label,
)


def test_weekday_label_starts_on_monday():
    assert weekday_label(datetime(2024, 1, 1)) == "Segunda"
    assert weekday_label(datetime(2024, 1, 7)) == "Domingo"


def test_looks_like_video_ignores_query_strings():
    assert looks_like_video("https://cdn.example.com/promo.MP4?token=abc")
    assert not looks_like_video("https://cdn.example.com/banner.jpg")
    assert not looks_like_video(None)


def test_parse_timestamp_accepts_iso_with_zulu_suffix():
    assert parse_timestamp("2024-05-01T12:30:00Z") == datetime(2024, 5, 1, 12, 30)


def test_parse_timestamp_converts_offsets_to_utc():
    assert parse_timestamp("2024-05-01T09:30:00-03:00") == datetime(2024, 5, 1, 12, 30)


def test_parse_timestamp_accepts_epoch_milliseconds():
    assert parse_timestamp(1714566600000) == datetime(2024, 5, 1, 12, 30)
    assert parse_timestamp("1714566600000") == datetime(2024, 5, 1, 12, 30)


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("") is None
    with pytest.raises(ValueError):
        parse_timestamp("not-a-date")
    with pytest.raises(ValueError):
        parse_timestamp(True)


def test_to_naive_utc_keeps_naive_values():
    naive = datetime(2024, 5, 1, 12, 30)
    aware = datetime(2024, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))

    assert to_naive_utc(naive) is naive
    assert to_naive_utc(aware) == naive


def test_split_labels_deduplicates_and_strips():
    assert split_labels("Segunda, Terça ,Segunda,") == ["Segunda", "Terça"]
    assert split_labels(["Sexta", " Sábado "]) == ["Sexta", "Sábado"]
    assert split_labels(None) == []
    with pytest.raises(ValueError):
        split_labels(42)
