"""Utility helpers for the Kioskplay service."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any


VIDEO_EXTENSION_RE = re.compile(r"\.(mp4|webm|mov|m4v)(?:$|[?#])", re.IGNORECASE)

# Day labels as the remote catalog spells them, indexed by ``date.weekday()``.
WEEKDAY_LABELS: tuple[str, ...] = (
    "Segunda",
    "Terça",
    "Quarta",
    "Quinta",
    "Sexta",
    "Sábado",
    "Domingo",
)


def weekday_label(moment: datetime) -> str:
    """Return the catalog's day-of-week label for ``moment``."""

    return WEEKDAY_LABELS[moment.weekday()]


def looks_like_video(url: str | None) -> bool:
    """Return ``True`` when the URL points at a common video container."""

    if not url:
        return False
    return VIDEO_EXTENSION_RE.search(url) is not None


def to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings or epoch milliseconds into naive UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, bool):
        raise ValueError("Boolean is not a valid timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return parse_timestamp(int(text))
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {value!r}") from exc
    return to_naive_utc(parsed)


def split_labels(value: Any) -> list[str]:
    """Normalise a list or comma separated string of labels."""

    if value is None or value == "":
        return []
    if isinstance(value, str):
        raw_values = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        raw_values = [str(part) for part in value]
    else:
        raise ValueError("Expected a string or a list of strings")
    cleaned: list[str] = []
    for entry in raw_values:
        label = entry.strip()
        if label and label not in cleaned:
            cleaned.append(label)
    return cleaned
