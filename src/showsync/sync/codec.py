"""Manifest JSON <-> model conversion.

This is the ingestion boundary: anything the engine would otherwise have to
second-guess (unknown controllers, missing sub-events, unparseable
timestamps) is rejected here with a ManifestInvariantViolation.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from .errors import ManifestInvariantViolation
from .hashing import build_identity, canonical_identity
from .models import (
    Behavior,
    DateValue,
    Diagnostic,
    Identity,
    ManifestEvent,
    Ownership,
    ReconciliationAction,
    SubEvent,
    TimeValue,
    Timing,
)
from .schema import (
    BEHAVIOR_ENABLED,
    BEHAVIOR_REPEAT,
    BEHAVIOR_STOP_TYPE,
    CONTROLLERS,
    KEY_AUTHORITY,
    KEY_BEHAVIOR,
    KEY_EVENTS,
    KEY_EXCLUSION_DATES,
    KEY_EXECUTION_ORDER,
    KEY_IDENTITY,
    KEY_IDENTITY_HASH,
    KEY_OWNERSHIP,
    KEY_PAYLOAD,
    KEY_SOURCE_UPDATED_AT,
    KEY_STATE_HASH,
    KEY_SUB_EVENTS,
    KEY_TIMING,
    OWNERSHIP_CONTROLLER,
    OWNERSHIP_LOCKED,
    OWNERSHIP_MANAGED,
    SCHEDULER,
    TIMING_ALL_DAY,
    TIMING_DAYS,
    TIMING_END_DATE,
    TIMING_END_TIME,
    TIMING_START_DATE,
    TIMING_START_TIME,
    TIMING_TIMEZONE,
    VALUE_HARD,
    VALUE_OFFSET,
    VALUE_SYMBOLIC,
    Controller,
)


def _invalid(message: str, **context: Any) -> ManifestInvariantViolation:
    return ManifestInvariantViolation(ManifestInvariantViolation.EVENT_INVALID, message, context)


def _mapping(value: Any, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise _invalid(f"{label} must be an object", value=value)
    return value


def _optional_str(value: Any, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(f"{label} must be a string", value=value)
    return value


def _bool(value: Any, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise _invalid(f"{label} must be a boolean", value=value)
    return value


def _int(value: Any, label: str, *, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise _invalid(f"{label} must be an integer", value=value)
    return value


def _controller(value: Any, label: str) -> Controller:
    if value not in CONTROLLERS:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_AUTHORITY_INVALID,
            f"{label} must be one of: " + ", ".join(CONTROLLERS),
            {"value": value},
        )
    return value


def parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID,
            "sourceUpdatedAt is required",
            {"value": value},
        )
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID,
            "sourceUpdatedAt is not an ISO timestamp",
            {"value": value},
        ) from exc
    if parsed.tzinfo is None:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID,
            "sourceUpdatedAt needs a UTC offset",
            {"value": value},
        )
    return parsed


def _time_value(value: Any, label: str) -> TimeValue | None:
    if value is None:
        return None
    if isinstance(value, str):
        return TimeValue(hard=value)
    data = _mapping(value, label)
    return TimeValue(
        hard=_optional_str(data.get(VALUE_HARD), f"{label}.hard"),
        symbolic=_optional_str(data.get(VALUE_SYMBOLIC), f"{label}.symbolic"),
        offset=_int(data.get(VALUE_OFFSET), f"{label}.offset"),
    )


def _date_value(value: Any, label: str) -> DateValue:
    if value is None:
        return DateValue()
    if isinstance(value, str):
        parsed = DateValue(hard=value)
    else:
        data = _mapping(value, label)
        parsed = DateValue(
            hard=_optional_str(data.get(VALUE_HARD), f"{label}.hard"),
            symbolic=_optional_str(data.get(VALUE_SYMBOLIC), f"{label}.symbolic"),
            offset=_int(data.get(VALUE_OFFSET), f"{label}.offset"),
        )
    if parsed.hard:
        try:
            date.fromisoformat(parsed.hard)
        except ValueError as exc:
            raise _invalid(f"{label}.hard is not an ISO date", value=parsed.hard) from exc
    return parsed


def timing_from_dict(value: Any) -> Timing:
    data = _mapping(value, KEY_TIMING)
    days = data.get(TIMING_DAYS) or []
    if isinstance(days, str) or not isinstance(days, Sequence):
        raise _invalid("timing.days must be a list", value=days)
    return Timing(
        all_day=_bool(data.get(TIMING_ALL_DAY), "timing.all_day", default=False),
        days=tuple(str(day) for day in days),
        timezone=_optional_str(data.get(TIMING_TIMEZONE), "timing.timezone") or "",
        start_date=_date_value(data.get(TIMING_START_DATE), "timing.start_date"),
        end_date=_date_value(data.get(TIMING_END_DATE), "timing.end_date"),
        start_time=_time_value(data.get(TIMING_START_TIME), "timing.start_time"),
        end_time=_time_value(data.get(TIMING_END_TIME), "timing.end_time"),
    )


def sub_event_from_dict(value: Any) -> SubEvent:
    data = _mapping(value, "subEvent")
    behavior = _mapping(data.get(KEY_BEHAVIOR) or {}, KEY_BEHAVIOR)
    exclusions = data.get(KEY_EXCLUSION_DATES) or []
    try:
        exclusion_dates = tuple(sorted({date.fromisoformat(str(item)) for item in exclusions}))
    except ValueError as exc:
        raise _invalid("exclusionDates must be ISO dates", value=exclusions) from exc
    execution_order = data.get(KEY_EXECUTION_ORDER)
    return SubEvent(
        timing=timing_from_dict(data.get(KEY_TIMING)),
        payload=dict(_mapping(data.get(KEY_PAYLOAD) or {}, KEY_PAYLOAD)),
        behavior=Behavior(
            enabled=_bool(behavior.get(BEHAVIOR_ENABLED), "behavior.enabled", default=True),
            repeat=_optional_str(behavior.get(BEHAVIOR_REPEAT), "behavior.repeat") or "none",
            stop_type=_optional_str(behavior.get(BEHAVIOR_STOP_TYPE), "behavior.stop_type")
            or "graceful",
        ),
        execution_order=None
        if execution_order is None
        else _int(execution_order, KEY_EXECUTION_ORDER),
        state_hash=_optional_str(data.get(KEY_STATE_HASH), KEY_STATE_HASH) or "",
        exclusion_dates=exclusion_dates,
    )


def _identity_from_dict(value: Any) -> Identity:
    data = _mapping(value, KEY_IDENTITY)
    days = data.get(TIMING_DAYS) or []
    if isinstance(days, str) or not isinstance(days, Sequence):
        raise _invalid("identity.days must be a list", value=days)
    return Identity(
        type=data.get("type"),  # type: ignore[arg-type]
        target=data.get("target"),  # type: ignore[arg-type]
        days=tuple(str(day) for day in days),
        start_time=_optional_str(data.get(TIMING_START_TIME), "identity.start_time"),
        end_time=_optional_str(data.get(TIMING_END_TIME), "identity.end_time"),
    )


def event_from_dict(value: Any) -> ManifestEvent:
    """Build a ManifestEvent from manifest JSON.

    A record without an ``identity`` object must carry top-level ``type`` and
    ``target``; its identity is then derived from the first sub-event. The
    owning controller is stable across passes and defaults to the scheduler,
    independent of which side reports the latest edit.
    """
    data = _mapping(value, "event")
    raw_subs = data.get(KEY_SUB_EVENTS)
    if not isinstance(raw_subs, Sequence) or isinstance(raw_subs, str) or not raw_subs:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_NO_SUB_EVENTS,
            "Event needs at least one sub-event",
            {"target": data.get("target")},
        )
    sub_events = tuple(sub_event_from_dict(sub) for sub in raw_subs)

    if data.get(KEY_IDENTITY) is not None:
        identity = _identity_from_dict(data[KEY_IDENTITY])
    else:
        first = sub_events[0]
        identity = build_identity(
            str(data.get("type") or ""),
            str(data.get("target") or ""),
            first.timing,
            repeat=first.behavior.repeat,
        )
    canonical_identity(identity)

    ownership_raw = _mapping(data.get(KEY_OWNERSHIP) or {}, KEY_OWNERSHIP)
    authority = _controller(data.get(KEY_AUTHORITY), KEY_AUTHORITY)
    ownership = Ownership(
        managed=_bool(ownership_raw.get(OWNERSHIP_MANAGED), "ownership.managed", default=True),
        controller=_controller(
            ownership_raw.get(OWNERSHIP_CONTROLLER, SCHEDULER), "ownership.controller"
        ),
        locked=_bool(ownership_raw.get(OWNERSHIP_LOCKED), "ownership.locked", default=False),
    )

    return ManifestEvent(
        identity=identity,
        sub_events=sub_events,
        authority=authority,
        source_updated_at=parse_timestamp(data.get(KEY_SOURCE_UPDATED_AT)),
        ownership=ownership,
        identity_hash=_optional_str(data.get(KEY_IDENTITY_HASH), KEY_IDENTITY_HASH) or "",
    )


def events_from_document(document: Any) -> list[ManifestEvent]:
    """Accept either a bare list of events or ``{"events": [...]}``."""
    if isinstance(document, Mapping):
        document = document.get(KEY_EVENTS, [])
    if not isinstance(document, list):
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.MANIFEST_JSON_INVALID,
            "Expected a list of events",
            {"type": type(document).__name__},
        )
    return [event_from_dict(item) for item in document]


def _time_to_dict(value: TimeValue | None) -> dict[str, Any] | None:
    if value is None:
        return None
    return {VALUE_HARD: value.hard, VALUE_SYMBOLIC: value.symbolic, VALUE_OFFSET: value.offset}


def _date_to_dict(value: DateValue) -> dict[str, Any]:
    return {VALUE_HARD: value.hard, VALUE_SYMBOLIC: value.symbolic, VALUE_OFFSET: value.offset}


def timing_to_dict(timing: Timing) -> dict[str, Any]:
    return {
        TIMING_ALL_DAY: timing.all_day,
        TIMING_DAYS: list(timing.days),
        TIMING_TIMEZONE: timing.timezone,
        TIMING_START_DATE: _date_to_dict(timing.start_date),
        TIMING_END_DATE: _date_to_dict(timing.end_date),
        TIMING_START_TIME: _time_to_dict(timing.start_time),
        TIMING_END_TIME: _time_to_dict(timing.end_time),
    }


def sub_event_to_dict(sub: SubEvent) -> dict[str, Any]:
    out: dict[str, Any] = {
        KEY_TIMING: timing_to_dict(sub.timing),
        KEY_PAYLOAD: dict(sub.payload),
        KEY_BEHAVIOR: {
            BEHAVIOR_ENABLED: sub.behavior.enabled,
            BEHAVIOR_REPEAT: sub.behavior.repeat,
            BEHAVIOR_STOP_TYPE: sub.behavior.stop_type,
        },
        KEY_EXECUTION_ORDER: sub.execution_order,
        KEY_STATE_HASH: sub.state_hash,
    }
    if sub.exclusion_dates:
        out[KEY_EXCLUSION_DATES] = [day.isoformat() for day in sub.exclusion_dates]
    return out


def event_to_dict(event: ManifestEvent) -> dict[str, Any]:
    return {
        KEY_IDENTITY_HASH: event.identity_hash,
        KEY_IDENTITY: {
            "type": event.identity.type,
            "target": event.identity.target,
            TIMING_DAYS: list(event.identity.days),
            TIMING_START_TIME: event.identity.start_time,
            TIMING_END_TIME: event.identity.end_time,
        },
        KEY_AUTHORITY: event.authority,
        KEY_SOURCE_UPDATED_AT: event.source_updated_at.isoformat()
        if event.source_updated_at
        else None,
        KEY_OWNERSHIP: {
            OWNERSHIP_MANAGED: event.ownership.managed,
            OWNERSHIP_CONTROLLER: event.ownership.controller,
            OWNERSHIP_LOCKED: event.ownership.locked,
        },
        KEY_SUB_EVENTS: [sub_event_to_dict(sub) for sub in event.sub_events],
    }


def action_to_dict(action: ReconciliationAction) -> dict[str, Any]:
    return {
        "type": action.type,
        "target": action.target,
        "authority": action.authority,
        KEY_IDENTITY_HASH: action.identity_hash,
        "reason": action.reason,
        "event": event_to_dict(action.event),
    }


def diagnostic_to_dict(diagnostic: Diagnostic) -> dict[str, Any]:
    return {
        "kind": diagnostic.kind,
        KEY_IDENTITY_HASH: diagnostic.identity_hash,
        "target": diagnostic.target,
        "reason": diagnostic.reason,
    }
