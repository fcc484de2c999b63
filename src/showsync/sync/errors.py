from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class InvariantViolation(RuntimeError):
    """Fatal condition that aborts a reconciliation pass."""

    def __init__(self, code: str, message: str, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        message = super().__str__()
        if not self.context:
            return f"[{self.code}] {message}"
        details = " ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
        return f"[{self.code}] {message} ({details})"


class IdentityInvariantViolation(InvariantViolation):
    """Identity fields are missing or contradictory."""

    MISSING_FIELD = "IDENTITY_REQUIRED_FIELD_MISSING"
    INVALID_TYPE = "IDENTITY_TYPE_INVALID"
    INVALID_TARGET = "IDENTITY_TARGET_INVALID"
    INVALID_DAYS = "IDENTITY_DAYS_INVALID"
    INVALID_TIME = "IDENTITY_TIME_INVALID"
    CONTRADICTORY_TIMING = "IDENTITY_TIMING_CONTRADICTORY"


class ManifestInvariantViolation(InvariantViolation):
    """Structural problem with a manifest or one of its events."""

    MANIFEST_UNREADABLE = "MANIFEST_UNREADABLE"
    MANIFEST_JSON_INVALID = "MANIFEST_JSON_INVALID"
    MANIFEST_SCHEMA_MISMATCH = "MANIFEST_SCHEMA_MISMATCH"
    EVENT_INVALID = "EVENT_INVALID"
    EVENT_MISSING_IDENTITY_HASH = "EVENT_MISSING_IDENTITY_HASH"
    EVENT_DUPLICATE_IDENTITY = "EVENT_DUPLICATE_IDENTITY"
    EVENT_NO_SUB_EVENTS = "EVENT_NO_SUB_EVENTS"
    EVENT_MISSING_STATE_HASH = "EVENT_MISSING_STATE_HASH"
    EVENT_AUTHORITY_INVALID = "EVENT_AUTHORITY_INVALID"
    EVENT_TIMESTAMP_INVALID = "EVENT_TIMESTAMP_INVALID"
    EVENT_CONTROLLER_CONFLICT = "EVENT_CONTROLLER_CONFLICT"
    EVENT_MANAGED_COLLISION = "EVENT_MANAGED_COLLISION"
