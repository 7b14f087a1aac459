"""API endpoints for backup/restore."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from logbook.backup.schemas import (
    BackupRunResult,
    DestinationInfo,
    DestinationRequest,
    ImportResult,
    ValidationResult,
)
from logbook.backup.service import backup_filename
from logbook.dependencies import Backups, Resolver
from logbook.errors import DestinationUnavailable, InvalidFormat

logger = logging.getLogger(__name__)

router = APIRouter()


def _download(content: bytes | str, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/export")
async def export_backup(service: Backups) -> Response:
    """Export every table as a JSON file download.

    Args:
        service: Backup service.

    Returns:
        JSON file download with backup data.
    """
    content = await service.export_snapshot()
    filename = backup_filename(datetime.now()).removesuffix(".zip") + ".json"
    return _download(content.encode("utf-8"), "application/json", filename)


@router.post("/export/archive")
async def export_archive(service: Backups) -> Response:
    """Export every table and its attachments as a ZIP download.

    Args:
        service: Backup service.

    Returns:
        ZIP file download.
    """
    content = await service.export_archive()
    return _download(content, "application/zip", backup_filename(datetime.now()))


@router.post("/validate", response_model=ValidationResult)
async def validate_backup(
    service: Backups,
    file: Annotated[UploadFile, File(description="Backup JSON or ZIP file")],
) -> ValidationResult:
    """Validate a backup file without importing.

    Args:
        service: Backup service.
        file: Uploaded backup file.

    Returns:
        ValidationResult with any issues found.
    """
    content = await file.read()
    return await service.validate_file(content, file.filename, file.content_type)


@router.post("/import", response_model=ImportResult)
async def import_backup(
    service: Backups,
    file: Annotated[UploadFile, File(description="Backup JSON or ZIP file")],
) -> ImportResult:
    """Replace all data with the contents of a backup file.

    Args:
        service: Backup service.
        file: Uploaded backup JSON or ZIP file.

    Returns:
        ImportResult with per-table counts.
    """
    content = await file.read()
    try:
        result = await service.import_file(content, file.filename, file.content_type)
    except InvalidFormat as e:
        logger.warning(f"Rejected backup {file.filename}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Backup {file.filename} imported: {result.records_imported}")
    return result


@router.post("/run", response_model=BackupRunResult)
async def run_backup(service: Backups) -> BackupRunResult:
    """Write a backup archive to the configured folder or the downloads folder.

    Args:
        service: Backup service.

    Returns:
        BackupRunResult naming where the file went.
    """
    try:
        filename, result = await service.run_backup()
    except DestinationUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return BackupRunResult(
        method=result.method,
        filename=filename,
        path=str(result.path) if result.path else None,
    )


@router.get("/destination", response_model=DestinationInfo)
async def get_destination(resolver: Resolver) -> DestinationInfo:
    """Get the configured backup folder."""
    handle = await resolver.get_handle()
    if handle is None:
        return DestinationInfo(configured=False)
    return DestinationInfo(configured=True, path=str(handle.path), label=handle.label)


@router.put("/destination", response_model=DestinationInfo)
async def set_destination(request: DestinationRequest, resolver: Resolver) -> DestinationInfo:
    """Choose the folder future backups are written to.

    Args:
        request: Folder path and optional label.
        resolver: Destination resolver.

    Returns:
        The stored destination.
    """
    try:
        handle = await resolver.set_handle(Path(request.path), request.label)
    except DestinationUnavailable as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return DestinationInfo(configured=True, path=str(handle.path), label=handle.label)


@router.delete("/destination", status_code=status.HTTP_204_NO_CONTENT)
async def clear_destination(resolver: Resolver) -> None:
    """Forget the configured backup folder."""
    await resolver.clear_handle()
