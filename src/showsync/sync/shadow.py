"""Override shadow resolution for calendar-bound actions.

A calendar can hold one wide recurring base occurrence plus narrower
date-bounded overrides for the same show (a holiday exception inside a daily
schedule). Writing both as-is produces overlapping entries, so the base gets
an exclusion date for every day an override fully covers. Overrides are
written unchanged.

Which of two overlapping occurrences takes precedence is a policy choice:
an explicit ``execution_order`` wins when both sides carry one, otherwise
the configured heuristic decides.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Literal

from .hashing import canonical_clock, canonical_days
from .models import Diagnostic, ReconciliationAction, SubEvent, TimeValue, Timing
from .schema import CALENDAR, PY_WEEKDAY_CODES, REASON_GROUPING_AMBIGUITY, Controller

logger = logging.getLogger(__name__)

PrecedenceHeuristic = Literal["narrower_span", "input_order"]
PRECEDENCE_HEURISTICS: tuple[str, ...] = ("narrower_span", "input_order")

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class ShadowPolicy:
    # narrower_span: the shorter date range wins.
    # input_order: the occurrence listed first wins, like a schedule list.
    precedence: PrecedenceHeuristic = "narrower_span"


@dataclass(frozen=True)
class ShadowGroupKey:
    target: Controller
    all_day: bool
    timezone: str
    days: tuple[str, ...]


@dataclass(frozen=True)
class _Occurrence:
    position: int
    action_index: int
    sub_index: int
    sub_event: SubEvent
    start: date
    end: date

    @property
    def span(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def timing(self) -> Timing:
        return self.sub_event.timing


@dataclass(frozen=True)
class ShadowResolution:
    actions: tuple[ReconciliationAction, ...]
    diagnostics: tuple[Diagnostic, ...] = ()


class OverrideShadowResolver:
    def __init__(self, policy: ShadowPolicy | None = None) -> None:
        self.policy = policy or ShadowPolicy()

    def resolve(self, actions: Sequence[ReconciliationAction]) -> ShadowResolution:
        """Rewrite base occurrences of calendar create/update actions.

        Occurrences only shadow others of the same logical event. Actions keep
        their position in the list; exclusion dates arriving with an action are
        discarded and replaced by this pass's result.
        """
        groups = self._group(actions)

        exclusions: dict[tuple[int, int], tuple[date, ...]] = {}
        ambiguous: dict[int, list[str]] = {}
        diagnostics: list[Diagnostic] = []

        for (identity_hash, key), occurrences in groups.items():
            if len(occurrences) < 2:
                continue
            base = min(occurrences, key=lambda occ: (-occ.span, occ.start, occ.position))
            shadowed: set[date] = set()
            for candidate in occurrences:
                if candidate is base or not _overlaps(candidate, base):
                    continue
                if not _contained(candidate, base):
                    note = (
                        f"{REASON_GROUPING_AMBIGUITY}: {candidate.start}..{candidate.end} "
                        f"partially overlaps base {base.start}..{base.end}"
                    )
                    logger.warning("shadow skipped identity=%s %s", identity_hash, note)
                    ambiguous.setdefault(candidate.action_index, []).append(note)
                    diagnostics.append(
                        Diagnostic(
                            kind=REASON_GROUPING_AMBIGUITY,
                            identity_hash=identity_hash,
                            reason=note,
                            target=key.target,
                        )
                    )
                    continue
                if not self._outranks(candidate, base):
                    continue
                if not _covers_window(candidate.timing, base.timing):
                    continue
                shadowed.update(_days_in(candidate.start, candidate.end, key.days))

            exclusions[(base.action_index, base.sub_index)] = tuple(sorted(shadowed))
            logger.debug(
                "shadow group identity=%s days=%s base=%s..%s excluded=%s",
                identity_hash,
                ",".join(key.days),
                base.start,
                base.end,
                len(shadowed),
            )

        resolved = [
            self._rewrite(index, action, exclusions, ambiguous.get(index, []))
            for index, action in enumerate(actions)
        ]
        return ShadowResolution(actions=tuple(resolved), diagnostics=tuple(diagnostics))

    def _group(
        self, actions: Sequence[ReconciliationAction]
    ) -> dict[tuple[str, ShadowGroupKey], list[_Occurrence]]:
        """Group sub-events per logical event, then by ShadowGroupKey."""
        groups: dict[tuple[str, ShadowGroupKey], list[_Occurrence]] = {}
        position = 0
        for action_index, action in enumerate(actions):
            if not _in_scope(action):
                continue
            for sub_index, sub in enumerate(action.event.sub_events):
                bounds = sub.timing.date_range()
                if bounds is None:
                    continue
                key = ShadowGroupKey(
                    target=action.target,
                    all_day=sub.timing.all_day,
                    timezone=sub.timing.timezone.strip(),
                    days=canonical_days(sub.timing.days),
                )
                groups.setdefault((action.identity_hash, key), []).append(
                    _Occurrence(
                        position=position,
                        action_index=action_index,
                        sub_index=sub_index,
                        sub_event=sub,
                        start=bounds[0],
                        end=bounds[1],
                    )
                )
                position += 1
        return groups

    def _outranks(self, candidate: _Occurrence, base: _Occurrence) -> bool:
        candidate_rank = candidate.sub_event.execution_order
        base_rank = base.sub_event.execution_order
        if candidate_rank is not None and base_rank is not None:
            return candidate_rank < base_rank
        if self.policy.precedence == "input_order":
            return candidate.position < base.position
        return candidate.span < base.span

    def _rewrite(
        self,
        index: int,
        action: ReconciliationAction,
        exclusions: dict[tuple[int, int], tuple[date, ...]],
        notes: list[str],
    ) -> ReconciliationAction:
        """Set every sub-event's exclusions to this pass's result; anything else is dropped."""
        if not _in_scope(action):
            return action
        rewrites = {
            sub_index: dates
            for (action_index, sub_index), dates in exclusions.items()
            if action_index == index
        }
        event = action.event
        sub_events = tuple(
            replace(sub, exclusion_dates=rewrites.get(sub_index, ()))
            for sub_index, sub in enumerate(event.sub_events)
        )
        changed = any(
            new.exclusion_dates != old.exclusion_dates
            for new, old in zip(sub_events, event.sub_events)
        )
        if not changed and not notes:
            return action

        reason = action.reason
        excluded = sum(len(dates) for dates in rewrites.values())
        if excluded:
            reason += f"; excluded {excluded} shadowed date(s)"
        for note in notes:
            reason += f"; {note}"
        if changed:
            event = replace(event, sub_events=sub_events)
        return replace(action, event=event, reason=reason)


def _in_scope(action: ReconciliationAction) -> bool:
    return action.target == CALENDAR and action.type in ("create", "update")


def _overlaps(candidate: _Occurrence, base: _Occurrence) -> bool:
    return candidate.start <= base.end and candidate.end >= base.start


def _contained(candidate: _Occurrence, base: _Occurrence) -> bool:
    return base.start <= candidate.start and candidate.end <= base.end


def _covers_window(candidate: Timing, base: Timing) -> bool:
    if base.all_day:
        return candidate.all_day
    if candidate.all_day:
        return True

    window = _window(candidate)
    base_window = _window(base)
    if window is None or base_window is None:
        # Unresolved symbolic times only cover an identical window.
        return (candidate.start_time, candidate.end_time) == (base.start_time, base.end_time)
    return window[0] <= base_window[0] and window[1] >= base_window[1]


def _window(timing: Timing) -> tuple[int, int] | None:
    start = _minutes(timing.start_time)
    end = _minutes(timing.end_time)
    if start is None or end is None:
        return None
    if end <= start:
        end += MINUTES_PER_DAY
    return start, end


def _minutes(value: TimeValue | None) -> int | None:
    if value is None:
        return None
    clock = canonical_clock(value.hard)
    if clock is None:
        return None
    hours, minutes, _ = (int(part) for part in clock.split(":"))
    return hours * 60 + minutes


def _days_in(start: date, end: date, days: tuple[str, ...]) -> list[date]:
    allowed = set(days)
    result: list[date] = []
    current = start
    while current <= end:
        if not allowed or PY_WEEKDAY_CODES[current.weekday()] in allowed:
            result.append(current)
        current += timedelta(days=1)
    return result
