"""Public revision tracking interface for SQLAlchemy mapped classes."""

from packages.revision_trail.attribution import (
    AttributionProvider,
    attributed,
    clear_who_dunnit,
    resolve_who_dunnit,
    session_attribution,
    set_who_dunnit,
)
from packages.revision_trail.config import RevisionTrailSettings, load_settings
from packages.revision_trail.errors import (
    DuplicateCurrentRevision,
    ErrorCategory,
    InvalidEntityType,
    ManualTimestampNotAllowed,
    MissingCurrentRevision,
    RevisionAlreadyClosed,
    RevisionDeletionForbidden,
    RevisionImmutable,
    RevisionTrailError,
)
from packages.revision_trail.interceptors import (
    DEFAULT_OBSERVER_PRIORITY,
    REVISION_PRIORITY,
    Phase,
    register_observer,
)
from packages.revision_trail.queries import (
    backfill_revisions,
    current_revision,
    revision_as_of,
    revision_history,
)
from packages.revision_trail.tracking import (
    RevisionTracker,
    ShadowRevision,
    get_tracker,
    install_revision_tracking,
    is_tracked,
    shadow_class_for,
)

__all__ = [
    "DEFAULT_OBSERVER_PRIORITY",
    "REVISION_PRIORITY",
    "AttributionProvider",
    "DuplicateCurrentRevision",
    "ErrorCategory",
    "InvalidEntityType",
    "ManualTimestampNotAllowed",
    "MissingCurrentRevision",
    "Phase",
    "RevisionAlreadyClosed",
    "RevisionDeletionForbidden",
    "RevisionImmutable",
    "RevisionTracker",
    "RevisionTrailError",
    "RevisionTrailSettings",
    "ShadowRevision",
    "attributed",
    "backfill_revisions",
    "clear_who_dunnit",
    "current_revision",
    "get_tracker",
    "install_revision_tracking",
    "is_tracked",
    "load_settings",
    "register_observer",
    "resolve_who_dunnit",
    "revision_as_of",
    "revision_history",
    "session_attribution",
    "set_who_dunnit",
    "shadow_class_for",
]
