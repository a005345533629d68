# geomayora/errors.py
from dataclasses import dataclass
from typing import Any, Optional


class GeoMayoraError(Exception):
    """Base class for errors raised by the records layer."""


class TransientBackendError(GeoMayoraError):
    """The storage backend could not be reached or refused the call."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        msg = f"{operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class PermissionDenied(GeoMayoraError):
    """The caller lacks the capability needed for the operation."""

    def __init__(self, capability: str, message: Optional[str] = None):
        self.capability = capability
        super().__init__(message or f"missing permission: {capability}")


class MigrationFailure(GeoMayoraError):
    """Legacy data could not be moved into the active backend."""


@dataclass
class ValidationGap:
    """A spreadsheet cell that was replaced by a default during import."""

    row: int
    column: str
    value: Any
    substituted: Any


class RecordNotFound(GeoMayoraError):
    """No record with the given id exists in the active backend."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"record {record_id} not found")
