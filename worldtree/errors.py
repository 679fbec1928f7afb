"""Error taxonomy for worldtree operations.

Raised errors carry the HTTP status they map to; ``main`` turns them into
``{"detail": ...}`` responses. Invalid references and failed back-link
writes are not raised to callers: the first is dropped where it is found,
the second is logged and reported as a ``PartialSyncFailure`` record.
"""

from __future__ import annotations

from dataclasses import dataclass


class WorldtreeError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorldtreeError):
    status_code = 400


class NotFound(WorldtreeError):
    status_code = 404


class Unauthorized(WorldtreeError):
    """No usable session, or wrong login credentials."""

    status_code = 401


class Forbidden(WorldtreeError):
    status_code = 403


class Conflict(WorldtreeError):
    status_code = 409


class StaleRecord(Conflict):
    """A record changed between read and write (optimistic version check)."""


class InvalidReference(WorldtreeError):
    """A malformed or out-of-world reference. Callers treat it as absent."""

    status_code = 400


@dataclass
class PartialSyncFailure:
    """A reciprocal spouse-link write that did not happen."""

    person_id: str
    spouse_id: str
    action: str
    error: str

    def as_dict(self) -> dict[str, str]:
        return {
            "person_id": self.person_id,
            "spouse_id": self.spouse_id,
            "action": self.action,
            "error": self.error,
        }
