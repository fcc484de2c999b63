from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from .schema import ACTION_PRIORITY, ActionType, Controller, EventType


@dataclass(frozen=True)
class TimeValue:
    """A time of day carried in both hard ("18:00:00") and symbolic ("dusk") form."""

    hard: str | None = None
    symbolic: str | None = None
    offset: int = 0  # minutes


@dataclass(frozen=True)
class DateValue:
    """A calendar date carried in both hard (ISO) and symbolic ("Christmas") form."""

    hard: str | None = None
    symbolic: str | None = None
    offset: int = 0  # days

    def resolved(self) -> date | None:
        if not self.hard:
            return None
        return date.fromisoformat(self.hard) + timedelta(days=self.offset)


@dataclass(frozen=True)
class Timing:
    all_day: bool = False
    days: tuple[str, ...] = ()
    timezone: str = ""
    start_date: DateValue = field(default_factory=DateValue)
    end_date: DateValue = field(default_factory=DateValue)
    start_time: TimeValue | None = None
    end_time: TimeValue | None = None

    def date_range(self) -> tuple[date, date] | None:
        """Inclusive hard date range, or None while either bound is unresolved."""
        start = self.start_date.resolved()
        end = self.end_date.resolved()
        if start is None or end is None or end < start:
            return None
        return start, end


@dataclass(frozen=True)
class Behavior:
    enabled: bool = True
    repeat: str = "none"
    stop_type: str = "graceful"


@dataclass(frozen=True)
class SubEvent:
    timing: Timing
    payload: Mapping[str, Any] = field(default_factory=dict)
    behavior: Behavior = field(default_factory=Behavior)
    execution_order: int | None = None
    state_hash: str = ""
    # Written by the override shadow resolver only; not part of the state hash.
    exclusion_dates: tuple[date, ...] = ()


@dataclass(frozen=True)
class Ownership:
    managed: bool = True
    controller: Controller = "scheduler"
    locked: bool = False


@dataclass(frozen=True)
class Identity:
    type: EventType
    target: str
    days: tuple[str, ...]
    start_time: str | None
    end_time: str | None


@dataclass(frozen=True)
class ManifestEvent:
    identity: Identity
    sub_events: tuple[SubEvent, ...]
    authority: Controller
    source_updated_at: datetime | None
    ownership: Ownership = field(default_factory=Ownership)
    identity_hash: str = ""

    @property
    def state_hashes(self) -> tuple[str, ...]:
        return tuple(sub.state_hash for sub in self.sub_events)

    @property
    def is_locked(self) -> bool:
        return self.ownership.locked

    @property
    def is_managed(self) -> bool:
        return self.ownership.managed


@dataclass(frozen=True)
class ReconciliationAction:
    type: ActionType
    target: Controller
    authority: Controller
    identity_hash: str
    event: ManifestEvent
    reason: str

    @property
    def sort_key(self) -> tuple[str, int, str]:
        return (self.target, ACTION_PRIORITY[self.type], self.identity_hash)


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal finding reported next to the action list."""

    kind: str
    identity_hash: str
    reason: str
    target: Controller | None = None
