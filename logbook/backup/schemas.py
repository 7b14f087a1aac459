"""Pydantic schemas for backup/restore functionality."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Backup document format written by this build
FORMAT_VERSION = 1


class BackupSnapshot(BaseModel):
    """Complete backup document.

    The envelope uses camelCase keys on the wire; records keep the store's
    field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    format_version: int = Field(alias="formatVersion", description="Backup format version")
    exported_at: str = Field(alias="exportedAt", description="ISO timestamp of the export")
    tables: dict[str, list[dict[str, Any]]] = Field(
        default_factory=dict, description="Table name -> list of records"
    )

    @property
    def record_counts(self) -> dict[str, int]:
        return {name: len(records) for name, records in self.tables.items()}


class ValidationResult(BaseModel):
    """Result of backup file validation."""

    is_valid: bool = Field(description="Whether the file can be imported")
    format_version: int | None = Field(default=None, description="Format version in the file")
    current_format_version: int = Field(default=FORMAT_VERSION)
    exported_at: str | None = Field(default=None, description="When the backup was made")
    record_counts: dict[str, int] = Field(
        default_factory=dict, description="Count of records per table"
    )
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")
    errors: list[str] = Field(default_factory=list, description="Fatal errors preventing import")


class ImportResult(BaseModel):
    """Result of an import operation."""

    success: bool = Field(description="Whether import completed successfully")
    records_imported: dict[str, int] = Field(
        default_factory=dict, description="Count of records imported per table"
    )
    warnings: list[str] = Field(default_factory=list, description="Warnings during import")


class DestinationInfo(BaseModel):
    """Currently configured backup folder."""

    configured: bool
    path: str | None = None
    label: str | None = None


class DestinationRequest(BaseModel):
    """Request body for choosing a backup folder."""

    path: str = Field(description="Absolute path of the folder")
    label: str | None = Field(default=None, description="Display name, defaults to the folder name")


class BackupRunResult(BaseModel):
    """Outcome of a manual or scheduled backup write."""

    method: Literal["directory", "save_as", "download", "cancelled"]
    filename: str
    path: str | None = None
