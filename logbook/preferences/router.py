"""Settings API routes."""

from fastapi import APIRouter

from logbook.db.models import AppSettings, AppSettingsUpdate
from logbook.dependencies import SettingsStore

router = APIRouter()


@router.get("", response_model=AppSettings)
async def get_settings(service: SettingsStore) -> AppSettings:
    """Get application settings."""
    return await service.get()


@router.patch("", response_model=AppSettings)
async def update_settings(changes: AppSettingsUpdate, service: SettingsStore) -> AppSettings:
    """Update application settings.

    Args:
        changes: Fields to change.
        service: Settings service.

    Returns:
        AppSettings: Settings after the update.
    """
    return await service.update(changes)
