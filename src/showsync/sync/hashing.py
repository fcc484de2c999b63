"""Identity and state fingerprints for manifest events.

Identity answers "is this the same logical show?" and must stay stable across
years, so it is built from ``IDENTITY_FIELDS`` only and never sees a date.
State answers "does it still look the same?" and covers the full timing
(hard and symbolic), the payload and the behavior of one sub-event.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from .errors import IdentityInvariantViolation, ManifestInvariantViolation
from .models import Behavior, DateValue, Identity, ManifestEvent, SubEvent, TimeValue, Timing
from .schema import (
    BEHAVIOR_ENABLED,
    BEHAVIOR_REPEAT,
    BEHAVIOR_STOP_TYPE,
    EVENT_TYPES,
    IDENTITY_FIELDS,
    STATE_FIELDS,
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
    WEEKDAY_ALIASES,
    WEEKDAY_ORDER,
)

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def canonical_json(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=canonical_json)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _digest(material: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()


def canonical_clock(value: str | None) -> str | None:
    """Return ``HH:MM:SS`` for a hard clock value, None if it is not one."""
    if value is None:
        return None
    match = _CLOCK_RE.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = int(match[1]), int(match[2]), int(match[3] or 0)
    if hours > 24 or minutes > 59 or seconds > 59:
        return None
    if hours == 24 and (minutes or seconds):
        return None
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def canonical_days(days: Iterable[str]) -> tuple[str, ...]:
    """Map weekday tokens to two-letter codes in SU..SA order, de-duplicated."""
    codes: set[str] = set()
    for token in days:
        code = WEEKDAY_ALIASES.get(str(token).strip().lower())
        if code is None:
            raise IdentityInvariantViolation(
                IdentityInvariantViolation.INVALID_DAYS,
                "Unknown weekday token",
                {"token": token},
            )
        codes.add(code)
    return tuple(code for code in WEEKDAY_ORDER if code in codes)


def _symbolic(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


def build_identity(
    event_type: str,
    target: str,
    timing: Timing,
    *,
    repeat: str = "none",
) -> Identity:
    """Derive an identity from a normalized timing record.

    Only hard clock values are used. All-day events carry no times, and a
    non-repeating command without an end time is point-in-time.
    """
    if timing.all_day:
        start_time = end_time = None
    else:
        start_time = _required_clock(timing.start_time, TIMING_START_TIME)
        if timing.end_time is None and event_type == "command" and repeat.strip().lower() == "none":
            end_time = start_time
        else:
            end_time = _required_clock(timing.end_time, TIMING_END_TIME)

    return Identity(
        type=event_type,  # type: ignore[arg-type]
        target=target,
        days=canonical_days(timing.days),
        start_time=start_time,
        end_time=end_time,
    )


def _required_clock(value: TimeValue | None, field_name: str) -> str:
    hard = canonical_clock(value.hard) if value is not None else None
    if hard is None:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.MISSING_FIELD,
            "Timed event needs a resolved hard time for identity",
            {"field": field_name, "value": value},
        )
    return hard


def canonical_identity(identity: Identity) -> dict[str, Any]:
    if identity.type not in EVENT_TYPES:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.INVALID_TYPE,
            "Identity type must be one of: " + ", ".join(sorted(EVENT_TYPES)),
            {"type": identity.type},
        )

    target = identity.target.strip() if isinstance(identity.target, str) else ""
    if not target:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.INVALID_TARGET,
            "Identity target is missing",
        )

    days = canonical_days(identity.days)
    if not days:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.INVALID_DAYS,
            "Identity days must name at least one weekday",
        )

    start_time = canonical_clock(identity.start_time)
    end_time = canonical_clock(identity.end_time)
    if identity.start_time is not None and start_time is None:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.INVALID_TIME,
            "Identity start_time is not a clock value",
            {"start_time": identity.start_time},
        )
    if identity.end_time is not None and end_time is None:
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.INVALID_TIME,
            "Identity end_time is not a clock value",
            {"end_time": identity.end_time},
        )
    if (start_time is None) != (end_time is None):
        raise IdentityInvariantViolation(
            IdentityInvariantViolation.CONTRADICTORY_TIMING,
            "Identity must carry both times or neither",
            {"start_time": start_time, "end_time": end_time},
        )

    values = {
        "type": identity.type,
        "target": target,
        "days": list(days),
        "start_time": start_time,
        "end_time": end_time,
    }
    return {name: values[name] for name in IDENTITY_FIELDS}


def compute_identity_hash(identity: Identity) -> str:
    return _digest(canonical_identity(identity))


def _canonical_date(value: DateValue) -> dict[str, Any]:
    hard = value.hard.strip() if value.hard else None
    return {
        VALUE_HARD: hard or None,
        VALUE_SYMBOLIC: _symbolic(value.symbolic),
        VALUE_OFFSET: int(value.offset),
    }


def _canonical_time(value: TimeValue | None) -> dict[str, Any] | None:
    if value is None:
        return None
    hard = canonical_clock(value.hard)
    if value.hard is not None and hard is None:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_INVALID,
            "Hard time is not a clock value",
            {"hard": value.hard},
        )
    return {
        VALUE_HARD: hard,
        VALUE_SYMBOLIC: _symbolic(value.symbolic),
        VALUE_OFFSET: int(value.offset),
    }


def _canonical_behavior(behavior: Behavior) -> dict[str, Any]:
    return {
        BEHAVIOR_ENABLED: bool(behavior.enabled),
        BEHAVIOR_REPEAT: behavior.repeat.strip().lower(),
        BEHAVIOR_STOP_TYPE: behavior.stop_type.strip().lower(),
    }


def canonical_state(sub_event: SubEvent) -> dict[str, Any]:
    timing = sub_event.timing
    values = {
        "timing": {
            TIMING_ALL_DAY: bool(timing.all_day),
            TIMING_DAYS: list(canonical_days(timing.days)),
            TIMING_TIMEZONE: timing.timezone.strip(),
            TIMING_START_DATE: _canonical_date(timing.start_date),
            TIMING_END_DATE: _canonical_date(timing.end_date),
            TIMING_START_TIME: _canonical_time(timing.start_time),
            TIMING_END_TIME: _canonical_time(timing.end_time),
        },
        "payload": dict(sub_event.payload),
        "behavior": _canonical_behavior(sub_event.behavior),
    }
    return {name: values[name] for name in STATE_FIELDS}


def compute_state_hash(sub_event: SubEvent) -> str:
    try:
        return _digest(canonical_state(sub_event))
    except TypeError as exc:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_INVALID,
            "Sub-event payload is not serializable",
            {"error": str(exc)},
        ) from exc


def stamp_event(event: ManifestEvent) -> ManifestEvent:
    """Return a copy of ``event`` with its identity and state hashes computed."""
    if not event.sub_events:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_NO_SUB_EVENTS,
            "Manifest event has no sub-events",
            {"target": event.identity.target},
        )
    return replace(
        event,
        identity_hash=compute_identity_hash(event.identity),
        sub_events=tuple(
            replace(sub, state_hash=compute_state_hash(sub)) for sub in event.sub_events
        ),
    )
