"""Dependency injection for FastAPI."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from logbook.backup.destination import DestinationResolver
from logbook.backup.service import BackupService
from logbook.config import get_settings
from logbook.db.store import EntityStore
from logbook.preferences.service import SettingsService


def get_store(request: Request) -> EntityStore:
    """Get the entity store opened at startup.

    Raises:
        HTTPException: If the store is not open.
    """
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Store is not available",
        )
    return store


Store = Annotated[EntityStore, Depends(get_store)]


def get_resolver(store: Store) -> DestinationResolver:
    return DestinationResolver(store, get_settings().download_dir)


Resolver = Annotated[DestinationResolver, Depends(get_resolver)]


def get_backup_service(store: Store, resolver: Resolver) -> BackupService:
    return BackupService(store, resolver)


def get_settings_service(store: Store) -> SettingsService:
    return SettingsService(store)


Backups = Annotated[BackupService, Depends(get_backup_service)]
SettingsStore = Annotated[SettingsService, Depends(get_settings_service)]
