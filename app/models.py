"""Pydantic models describing catalog and playlist payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import looks_like_video, parse_timestamp, split_labels

MediaKind = Literal["image", "video"]

_KIND_SYNONYMS = {
    "image": "image",
    "imagem": "image",
    "img": "image",
    "video": "video",
    "vídeo": "video",
}


class CatalogMedia(BaseModel):
    """A single media entry as returned by the remote catalog."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_id: str = Field(validation_alias=AliasChoices("_id", "external_id"))
    legacy_id: str | None = Field(
        default=None, validation_alias=AliasChoices("id", "legacy_id")
    )
    name: str | None = Field(default=None, validation_alias=AliasChoices("nome", "name"))
    url: str = Field(validation_alias=AliasChoices("link", "url"))
    kind: MediaKind = Field(
        default="image", validation_alias=AliasChoices("tipo", "kind", "type")
    )
    sort_order: float = Field(
        default=0.0, validation_alias=AliasChoices("ordem", "sort_order")
    )
    volume: int | None = Field(
        default=None, validation_alias=AliasChoices("volumeaudio", "volume")
    )
    duration_seconds: float | None = Field(
        default=None, validation_alias=AliasChoices("time", "duration_seconds")
    )
    starts_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("inicia", "starts_at")
    )
    ends_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("final", "ends_at")
    )
    schedule_range: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("range", "schedule_range")
    )
    days_of_week: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("dias-da-semana", "dias_da_semana", "days_of_week"),
    )
    enabled: bool = Field(default=False, validation_alias=AliasChoices("ativado", "enabled"))
    group_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("grupo-lojas", "grupo_lojas", "group_key"),
    )
    collection: str | None = Field(
        default=None, validation_alias=AliasChoices("Coleções", "colecoes", "collection")
    )
    remote_created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("Created Date", "remote_created_at")
    )
    remote_modified_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("Modified Date", "remote_modified_at")
    )
    created_by: str | None = Field(
        default=None, validation_alias=AliasChoices("Created By", "created_by")
    )

    @model_validator(mode="before")
    @classmethod
    def _infer_kind(cls, data: Any) -> Any:
        """Map catalog kind labels and fall back to the URL extension."""

        if not isinstance(data, dict):
            return data
        payload = dict(data)
        raw_kind = next(
            (payload[key] for key in ("tipo", "kind", "type") if payload.get(key)),
            None,
        )
        url = payload.get("link") or payload.get("url")
        kind = _KIND_SYNONYMS.get(str(raw_kind).strip().lower()) if raw_kind else None
        if kind is None:
            kind = "video" if looks_like_video(url) else "image"
        for key in ("tipo", "type"):
            payload.pop(key, None)
        payload["kind"] = kind
        return payload

    @field_validator("external_id", "url", mode="before")
    @classmethod
    def _require_text(cls, value: object) -> object:
        if value is None:
            raise ValueError("Value is required")
        text = str(value).strip()
        if not text:
            raise ValueError("Value must not be blank")
        return text

    @field_validator("legacy_id", "name", "group_key", "collection", "created_by", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("sort_order", mode="before")
    @classmethod
    def _default_sort_order(cls, value: object) -> object:
        if value is None or value == "":
            return 0.0
        return value

    @field_validator(
        "starts_at", "ends_at", "remote_created_at", "remote_modified_at", mode="before"
    )
    @classmethod
    def _parse_timestamp(cls, value: object) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("days_of_week", "schedule_range", mode="before")
    @classmethod
    def _parse_labels(cls, value: object) -> list[str]:
        return split_labels(value)

    def to_record_values(self, *, position: int, synced_at: datetime) -> dict[str, Any]:
        """Return column values for a :class:`~app.db_models.MediaRecord`."""

        return {
            "external_id": self.external_id,
            "legacy_id": self.legacy_id,
            "name": self.name,
            "url": self.url,
            "kind": self.kind,
            "sort_order": self.sort_order,
            "position": position,
            "volume": self.volume,
            "duration_seconds": self.duration_seconds,
            "starts_at": self.starts_at,
            "ends_at": self.ends_at,
            "schedule_range": list(self.schedule_range),
            "days_of_week": list(self.days_of_week),
            "enabled": self.enabled,
            "group_key": self.group_key,
            "collection": self.collection,
            "remote_created_at": self.remote_created_at,
            "remote_modified_at": self.remote_modified_at,
            "created_by": self.created_by,
            "synced_at": synced_at,
        }


class PlaylistItem(BaseModel):
    """Filtered media entry handed to devices for playback."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(validation_alias=AliasChoices("id", "external_id"))
    name: str | None = None
    url: str
    kind: MediaKind = "image"
    sort_order: float = 0.0
    volume: int | None = None
    duration_seconds: float | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    days_of_week: list[str] = Field(default_factory=list)
    group_key: str | None = None
    collection: str | None = None

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _parse_days(cls, value: object) -> list[str]:
        return split_labels(value)

    def display_seconds(self, default: float) -> float:
        """Return how long an image stays on screen."""

        if self.duration_seconds and self.duration_seconds > 0:
            return float(self.duration_seconds)
        return default

    def display_name(self) -> str:
        name = (self.name or "").strip()
        return name or self.id

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
