"""Error taxonomy shared by the store, migrations and backup pipeline."""


class LogbookError(Exception):
    """Base class for all data layer errors."""


class MigrationFailure(LogbookError):
    """A schema migration failed; the store must not be used."""

    def __init__(self, version: int, message: str):
        super().__init__(f"Migration to schema v{version} failed: {message}")
        self.version = version


class InvalidFormat(LogbookError):
    """A backup document or archive is malformed or unsupported."""


class NotFound(LogbookError):
    """A record with the given id does not exist."""

    def __init__(self, table: str, record_id: int):
        super().__init__(f"{table} record {record_id} not found")
        self.table = table
        self.record_id = record_id


class Conflict(LogbookError):
    """A record with the given id already exists."""

    def __init__(self, table: str, record_id: int):
        super().__init__(f"{table} record {record_id} already exists")
        self.table = table
        self.record_id = record_id


class SchemaError(LogbookError):
    """Unknown table or undeclared index."""


class DestinationUnavailable(LogbookError):
    """No backup destination in the fallback chain could be written."""


class BackupCancelled(LogbookError):
    """Archive packaging was cancelled before completion."""
