"""ZIP packaging of backups.

An archive holds ``backup.json`` at its root, byte-identical to a plain JSON
export, plus a copy of every embedded attachment under
``Attachments/<Category>/<name>`` for browsing outside the app.
"""

import asyncio
import base64
import binascii
import io
import json
import logging
import re
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from logbook.db.models import Attachment
from logbook.errors import BackupCancelled, InvalidFormat

logger = logging.getLogger(__name__)

BACKUP_JSON = "backup.json"
ATTACHMENTS_DIR = "Attachments"
COMPRESS_LEVEL = 6
# Fixed entry timestamp keeps archives of equal content byte-identical
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
# Attachments decoded between cancellation checks
BATCH_SIZE = 16

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")


@dataclass(frozen=True)
class AttachmentRef:
    """An attachment found in a snapshot, not yet decoded."""

    category: str
    name: str
    data: str

    @property
    def path(self) -> str:
        return f"{ATTACHMENTS_DIR}/{self.category}/{sanitize_filename(self.name)}"


def sanitize_filename(name: str) -> str:
    """Make an attachment name safe for use as an archive member.

    Runs of characters outside ``[A-Za-z0-9_.-]`` collapse to one ``_``.

    Args:
        name: Original attachment name.

    Returns:
        A non-empty name, ``attachment`` when nothing usable remains.
    """
    cleaned = _UNSAFE_CHARS.sub("_", name.strip()).strip()
    if not cleaned.strip("._"):
        return "attachment"
    return cleaned


def decode_payload(data: str) -> bytes:
    """Decode bare base64 or a ``data:<mime>;base64,`` URI.

    Raises:
        ValueError: If the payload is not valid base64.
    """
    payload = data
    if data.startswith("data:"):
        header, sep, payload = data.partition(",")
        if not sep or not header.endswith(";base64"):
            raise ValueError("data URI is not base64 encoded")
    return base64.b64decode("".join(payload.split()), validate=True)


def _attachment_list(value: Any, owner: str) -> Iterator[Attachment]:
    if not isinstance(value, list):
        return
    for position, item in enumerate(value):
        try:
            yield Attachment.model_validate(item)
        except ValidationError as exc:
            logger.warning(
                f"Skipping attachment {position} of {owner}: {exc.error_count()} invalid fields"
            )


def collect_attachments(tables: dict[str, list[dict[str, Any]]]) -> list[AttachmentRef]:
    """List every attachment embedded in the snapshot tables.

    Args:
        tables: Table name -> records, as found in a snapshot.

    Returns:
        Attachment references in table order.
    """
    refs: list[AttachmentRef] = []

    for vessel in tables.get("vessel", []):
        for document in _attachment_list(vessel.get("documents"), f"vessel {vessel.get('id')}"):
            refs.append(AttachmentRef("Vessel", document.name, document.data))

    for member in tables.get("crew", []):
        passport = member.get("passport_copy")
        if isinstance(passport, str) and passport:
            name = f"{member.get('last_name', '')}_{member.get('first_name', '')}_passport.jpg"
            refs.append(AttachmentRef("Crew", name, passport))

    for entry in tables.get("log_entries", []):
        owner = f"log entry {entry.get('id')}"
        for attachment in _attachment_list(entry.get("attachments"), owner):
            name = f"{entry.get('date', '')}_{attachment.name}"
            refs.append(AttachmentRef("LogEntries", name, attachment.data))

    return refs


def _entry(path: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(path, date_time=ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


async def pack(json_text: str, *, cancel: asyncio.Event | None = None) -> bytes:
    """Build a backup archive from export JSON.

    Args:
        json_text: Backup JSON exactly as exported.
        cancel: When set, packaging stops at the next batch boundary.

    Returns:
        The ZIP archive bytes.

    Raises:
        BackupCancelled: If ``cancel`` was set before packaging finished.
    """
    try:
        tables = json.loads(json_text).get("tables", {})
    except (json.JSONDecodeError, AttributeError):
        logger.warning("Backup JSON could not be read for attachments; archiving it alone")
        tables = {}
    if not isinstance(tables, dict):
        tables = {}

    files: dict[str, bytes] = {}
    refs = collect_attachments(tables)
    for start in range(0, len(refs), BATCH_SIZE):
        if cancel is not None and cancel.is_set():
            raise BackupCancelled("Archive packaging cancelled")
        for ref in refs[start : start + BATCH_SIZE]:
            try:
                content = decode_payload(ref.data)
            except (ValueError, binascii.Error) as exc:
                logger.warning(f"Skipping attachment {ref.category}/{ref.name}: {exc}")
                continue
            if ref.path in files:
                logger.warning(f"Attachment {ref.path} appears more than once; keeping the last")
            files[ref.path] = content
        await asyncio.sleep(0)

    if cancel is not None and cancel.is_set():
        raise BackupCancelled("Archive packaging cancelled")

    data = await asyncio.to_thread(_write_archive, json_text, files)
    logger.info(f"Packed backup archive with {len(files)} attachments")
    return data


def _write_archive(json_text: str, files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
    ) as archive:
        archive.writestr(
            _entry(BACKUP_JSON), json_text.encode("utf-8"), compresslevel=COMPRESS_LEVEL
        )
        for path, content in files.items():
            archive.writestr(_entry(path), content, compresslevel=COMPRESS_LEVEL)
    return buffer.getvalue()


async def unpack(data: bytes) -> str:
    """Return the ``backup.json`` text of an archive.

    Decompression runs in a worker thread.

    Raises:
        InvalidFormat: If the data is not a ZIP or lacks ``backup.json``.
    """
    return await asyncio.to_thread(_read_backup_json, data)


def _read_backup_json(data: bytes) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            try:
                raw = archive.read(BACKUP_JSON)
            except KeyError:
                raise InvalidFormat(f"No {BACKUP_JSON} found in archive") from None
    except zipfile.BadZipFile as exc:
        raise InvalidFormat(f"Not a ZIP archive: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidFormat(f"{BACKUP_JSON} is not UTF-8 text") from exc


def list_attachments(data: bytes) -> dict[str, bytes]:
    """Attachment members of an archive keyed by path."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return {
                name: archive.read(name)
                for name in archive.namelist()
                if name.startswith(f"{ATTACHMENTS_DIR}/")
            }
    except zipfile.BadZipFile as exc:
        raise InvalidFormat(f"Not a ZIP archive: {exc}") from exc


def is_zip(data: bytes) -> bool:
    return data[:4] == b"PK\x03\x04"
