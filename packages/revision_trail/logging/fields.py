"""Canonical structured logging field names for revision tracking."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

SERVICE = "service"
ENVIRONMENT = "environment"

# Revision bookkeeping fields.
ENTITY = "entity"
ENTITY_ID = "entity_id"
REVISION_ID = "revision_id"
WHO_DUNNIT = "who_dunnit"
PHASE = "phase"
ERROR_CODE = "error_code"

# Event names.
REVISION_OPENED_EVENT = "revision_opened"
REVISION_CLOSED_EVENT = "revision_closed"
GUARD_REJECTED_EVENT = "revision_guard_rejected"
BULK_WRITE_UNTRACKED_EVENT = "bulk_write_untracked"
