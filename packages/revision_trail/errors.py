"""Typed errors raised by revision tracking.

Every error carries a stable machine-readable ``code`` and a coarse
``category`` so host applications can map failures onto their own error
envelopes without string matching. Nothing in this package recovers from these
errors locally: they propagate out of the flush and the host transaction is
expected to roll back the tracked-entity write together with any partial
revision bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class ErrorCategory(str, Enum):
    """High-level categories for revision tracking failures."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    POLICY = "policy"
    INTERNAL = "internal"


# Installation
INVALID_ENTITY_TYPE = "INVALID_ENTITY_TYPE"

# Lifecycle interceptor guards
DUPLICATE_CURRENT_REVISION = "DUPLICATE_CURRENT_REVISION"
MISSING_CURRENT_REVISION = "MISSING_CURRENT_REVISION"

# Shadow type guards
MANUAL_TIMESTAMP_NOT_ALLOWED = "MANUAL_TIMESTAMP_NOT_ALLOWED"
REVISION_IMMUTABLE = "REVISION_IMMUTABLE"
REVISION_ALREADY_CLOSED = "REVISION_ALREADY_CLOSED"
REVISION_DELETION_FORBIDDEN = "REVISION_DELETION_FORBIDDEN"


@dataclass(eq=False)
class RevisionTrailError(Exception):
    """Base error type for revision tracking failures."""

    message: str

    code: ClassVar[str] = "REVISION_TRAIL_ERROR"
    category: ClassVar[ErrorCategory] = ErrorCategory.INTERNAL

    def __str__(self) -> str:
        """Return the human-readable error message."""
        return self.message


@dataclass(eq=False)
class InvalidEntityType(RevisionTrailError):
    """The object handed to installation is not a trackable mapped class."""

    code: ClassVar[str] = INVALID_ENTITY_TYPE
    category: ClassVar[ErrorCategory] = ErrorCategory.VALIDATION


@dataclass(eq=False)
class DuplicateCurrentRevision(RevisionTrailError):
    """A current snapshot already exists where none was expected."""

    entity: str = ""
    entity_id: Any = None

    code: ClassVar[str] = DUPLICATE_CURRENT_REVISION
    category: ClassVar[ErrorCategory] = ErrorCategory.CONFLICT


@dataclass(eq=False)
class MissingCurrentRevision(RevisionTrailError):
    """No current snapshot exists for an entity that should have one."""

    entity: str = ""
    entity_id: Any = None

    code: ClassVar[str] = MISSING_CURRENT_REVISION
    category: ClassVar[ErrorCategory] = ErrorCategory.CONFLICT


@dataclass(eq=False)
class ManualTimestampNotAllowed(RevisionTrailError):
    """A caller supplied a validity timestamp when creating a revision."""

    field: str = ""

    code: ClassVar[str] = MANUAL_TIMESTAMP_NOT_ALLOWED
    category: ClassVar[ErrorCategory] = ErrorCategory.VALIDATION


@dataclass(eq=False)
class RevisionImmutable(RevisionTrailError):
    """A revision column other than ``revision_valid_to`` was changed."""

    revision_id: Any = None
    fields: tuple[str, ...] = ()

    code: ClassVar[str] = REVISION_IMMUTABLE
    category: ClassVar[ErrorCategory] = ErrorCategory.POLICY


@dataclass(eq=False)
class RevisionAlreadyClosed(RevisionTrailError):
    """``revision_valid_to`` was changed on a revision that is already closed."""

    revision_id: Any = None

    code: ClassVar[str] = REVISION_ALREADY_CLOSED
    category: ClassVar[ErrorCategory] = ErrorCategory.POLICY


@dataclass(eq=False)
class RevisionDeletionForbidden(RevisionTrailError):
    """Revisions are append-only and can never be deleted."""

    revision_id: Any = None

    code: ClassVar[str] = REVISION_DELETION_FORBIDDEN
    category: ClassVar[ErrorCategory] = ErrorCategory.POLICY
