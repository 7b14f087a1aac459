"""Entity kinds and typed views over stored records."""

import enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TableName(str, enum.Enum):
    """Entity tables held by the store."""

    VESSEL = "vessel"
    CREW = "crew"
    LOG_ENTRIES = "log_entries"
    PASSAGES = "passages"
    MAINTENANCE = "maintenance"
    SETTINGS = "settings"
    WATCHES = "watches"
    CHECKLISTS = "checklists"
    STORAGE_AREAS = "storage_areas"
    STORAGE_SECTIONS = "storage_sections"
    STORAGE_ITEMS = "storage_items"


class Attachment(BaseModel):
    """Binary payload embedded inline in its owning record.

    ``data`` holds either bare base64 or a ``data:<mime>;base64,`` URI.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str
    type: str = "application/octet-stream"
    data: str
    size: int = 0
    uploaded_at: str | None = None


class AppSettings(BaseModel):
    """The single settings record."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    language: Literal["de", "en"] = "de"
    distance_unit: Literal["nm", "km"] = "nm"
    speed_unit: Literal["kts", "kmh", "ms"] = "kts"
    temp_unit: Literal["celsius", "fahrenheit"] = "celsius"
    dark_mode: bool = False
    auto_backup: bool = True
    last_backup_date: str | None = Field(
        default=None, description="ISO timestamp of the last successful backup"
    )
    default_currency: str | None = None
    nmea_enabled: bool = False
    nmea_bridge_url: str | None = None
    protomaps_api_key: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AppSettingsUpdate(BaseModel):
    """Partial settings update."""

    language: Literal["de", "en"] | None = None
    distance_unit: Literal["nm", "km"] | None = None
    speed_unit: Literal["kts", "kmh", "ms"] | None = None
    temp_unit: Literal["celsius", "fahrenheit"] | None = None
    dark_mode: bool | None = None
    auto_backup: bool | None = None
    default_currency: str | None = None
    nmea_enabled: bool | None = None
    nmea_bridge_url: str | None = None
    protomaps_api_key: str | None = None
