"""Canonical field names and enumerations shared by the manifest layers.

Everything that decides what an identity or a state *is* reads its field set
from here. Changing any of the canonical sets below changes every stored hash,
so it must come with a ``SCHEMA_VERSION`` bump.
"""

from __future__ import annotations

from typing import Literal

SCHEMA_VERSION = 1

Controller = Literal["scheduler", "calendar"]
CONTROLLERS: tuple[Controller, ...] = ("calendar", "scheduler")
SCHEDULER: Controller = "scheduler"
CALENDAR: Controller = "calendar"

EventType = Literal["playlist", "sequence", "command"]
EVENT_TYPES: frozenset[str] = frozenset({"playlist", "sequence", "command"})

ActionType = Literal["create", "update", "delete"]
# Deletions on a target run before updates and creations on that target.
ACTION_PRIORITY: dict[str, int] = {"delete": 0, "update": 1, "create": 2}

WEEKDAY_ORDER: tuple[str, ...] = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")
WEEKDAY_ALIASES: dict[str, str] = {
    "su": "SU",
    "sun": "SU",
    "sunday": "SU",
    "mo": "MO",
    "mon": "MO",
    "monday": "MO",
    "tu": "TU",
    "tue": "TU",
    "tuesday": "TU",
    "we": "WE",
    "wed": "WE",
    "wednesday": "WE",
    "th": "TH",
    "thu": "TH",
    "thursday": "TH",
    "fr": "FR",
    "fri": "FR",
    "friday": "FR",
    "sa": "SA",
    "sat": "SA",
    "saturday": "SA",
}
# date.weekday(): Monday == 0
PY_WEEKDAY_CODES: tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

IDENTITY_FIELDS: tuple[str, ...] = ("type", "target", "days", "start_time", "end_time")
STATE_FIELDS: tuple[str, ...] = ("timing", "payload", "behavior")

# Manifest JSON keys.
KEY_SCHEMA_VERSION = "schemaVersion"
KEY_EVENTS = "events"
KEY_IDENTITY = "identity"
KEY_IDENTITY_HASH = "identityHash"
KEY_SUB_EVENTS = "subEvents"
KEY_OWNERSHIP = "ownership"
KEY_AUTHORITY = "authority"
KEY_SOURCE_UPDATED_AT = "sourceUpdatedAt"
KEY_TIMING = "timing"
KEY_STATE_HASH = "stateHash"
KEY_PAYLOAD = "payload"
KEY_BEHAVIOR = "behavior"
KEY_EXECUTION_ORDER = "executionOrder"
KEY_EXCLUSION_DATES = "exclusionDates"

OWNERSHIP_MANAGED = "managed"
OWNERSHIP_CONTROLLER = "controller"
OWNERSHIP_LOCKED = "locked"

TIMING_ALL_DAY = "all_day"
TIMING_DAYS = "days"
TIMING_TIMEZONE = "timezone"
TIMING_START_DATE = "start_date"
TIMING_END_DATE = "end_date"
TIMING_START_TIME = "start_time"
TIMING_END_TIME = "end_time"

VALUE_HARD = "hard"
VALUE_SYMBOLIC = "symbolic"
VALUE_OFFSET = "offset"

BEHAVIOR_ENABLED = "enabled"
BEHAVIOR_REPEAT = "repeat"
BEHAVIOR_STOP_TYPE = "stop_type"

# Diagnostic kinds surfaced next to the action list.
REASON_LOCKED = "locked"
REASON_GROUPING_AMBIGUITY = "grouping_ambiguity"
REASON_UNMANAGED = "unmanaged"


def other_controller(controller: Controller) -> Controller:
    return CALENDAR if controller == SCHEDULER else SCHEDULER
