from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from .decision import AuthorityPolicy, Decision, DecisionState, decide, updated_at
from .errors import ManifestInvariantViolation
from .models import Diagnostic, ManifestEvent, ReconciliationAction
from .schema import (
    CALENDAR,
    CONTROLLERS,
    REASON_LOCKED,
    REASON_UNMANAGED,
    SCHEDULER,
    ActionType,
    Controller,
    other_controller,
)

logger = logging.getLogger(__name__)

ALL_CONTROLLERS: frozenset[Controller] = frozenset(CONTROLLERS)
_CONFLICTS = (DecisionState.CONFLICTING_AUTHORITATIVE, DecisionState.CONFLICTING_LOCKED)


def validate_event(event: ManifestEvent) -> None:
    """Reject events the engine cannot trust. Raises ManifestInvariantViolation."""
    context = {"identity_hash": event.identity_hash, "target": event.identity.target}
    if not isinstance(event.identity_hash, str) or not event.identity_hash.strip():
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_MISSING_IDENTITY_HASH,
            "Event has no identityHash",
            context,
        )
    if not event.sub_events:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_NO_SUB_EVENTS,
            "Event has no sub-events",
            context,
        )
    for index, sub in enumerate(event.sub_events):
        if not sub.state_hash:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.EVENT_MISSING_STATE_HASH,
                "Sub-event has no stateHash",
                {**context, "sub_event": index},
            )
    if event.authority not in CONTROLLERS:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_AUTHORITY_INVALID,
            "Event authority is not a known controller",
            {**context, "authority": event.authority},
        )
    if event.ownership.controller not in CONTROLLERS:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_AUTHORITY_INVALID,
            "Ownership controller is not a known controller",
            {**context, "controller": event.ownership.controller},
        )
    updated_at = event.source_updated_at
    if not isinstance(updated_at, datetime) or updated_at.tzinfo is None:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID,
            "Event sourceUpdatedAt must be a timezone-aware datetime",
            {**context, "source_updated_at": updated_at},
        )


class EventSet:
    """Events keyed by identity hash, plus which systems hold a copy of each."""

    def __init__(
        self,
        events: Mapping[str, ManifestEvent],
        holders: Mapping[str, frozenset[Controller]],
    ) -> None:
        self._events = dict(events)
        self._holders = dict(holders)

    @classmethod
    def of(cls, events: Iterable[ManifestEvent]) -> EventSet:
        """Each event is held only by the system that owns it."""
        indexed = _index(events, origin="events")
        return cls(indexed, {key: frozenset({event.authority}) for key, event in indexed.items()})

    @classmethod
    def reconciled(cls, events: Iterable[ManifestEvent]) -> EventSet:
        """Events of a converged manifest, held by every system."""
        indexed = _index(events, origin="manifest")
        return cls(indexed, {key: ALL_CONTROLLERS for key in indexed})

    @classmethod
    def from_sources(
        cls,
        scheduler_events: Iterable[ManifestEvent],
        calendar_events: Iterable[ManifestEvent],
        policy: AuthorityPolicy | None = None,
    ) -> EventSet:
        """Merge the per-system lists; when both hold an identity the later copy is kept."""
        policy = policy or AuthorityPolicy()
        by_origin: dict[Controller, dict[str, ManifestEvent]] = {
            SCHEDULER: _index(scheduler_events, origin=SCHEDULER),
            CALENDAR: _index(calendar_events, origin=CALENDAR),
        }
        events: dict[str, ManifestEvent] = dict(by_origin[SCHEDULER])
        holders: dict[str, frozenset[Controller]] = {
            key: frozenset({SCHEDULER}) for key in by_origin[SCHEDULER]
        }
        for key, calendar_copy in by_origin[CALENDAR].items():
            scheduler_copy = by_origin[SCHEDULER].get(key)
            if scheduler_copy is None:
                events[key] = calendar_copy
                holders[key] = frozenset({CALENDAR})
                continue

            _check_controllers(key, scheduler_copy, calendar_copy)
            events[key] = _later_copy(scheduler_copy, calendar_copy, policy)
            holders[key] = ALL_CONTROLLERS
        return cls(events, holders)

    def get(self, identity_hash: str) -> ManifestEvent | None:
        return self._events.get(identity_hash)

    def holders_of(self, identity_hash: str) -> frozenset[Controller]:
        return self._holders.get(identity_hash, frozenset())

    def identity_hashes(self) -> set[str]:
        return set(self._events)

    def events(self) -> list[ManifestEvent]:
        return [self._events[key] for key in sorted(self._events)]

    def __contains__(self, identity_hash: object) -> bool:
        return identity_hash in self._events

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._events))

    def __len__(self) -> int:
        return len(self._events)


def _index(events: Iterable[ManifestEvent], *, origin: str) -> dict[str, ManifestEvent]:
    indexed: dict[str, ManifestEvent] = {}
    for event in events:
        validate_event(event)
        if event.identity_hash in indexed:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.EVENT_DUPLICATE_IDENTITY,
                "Duplicate identityHash in one event set",
                {"identity_hash": event.identity_hash, "origin": origin},
            )
        indexed[event.identity_hash] = event
    return indexed


def _check_controllers(key: str, first: ManifestEvent, second: ManifestEvent) -> None:
    if first.ownership.controller != second.ownership.controller:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_CONTROLLER_CONFLICT,
            "Copies of one identity disagree on their controller",
            {
                "identity_hash": key,
                "first": first.ownership.controller,
                "second": second.ownership.controller,
            },
        )


def _later_copy(
    scheduler_copy: ManifestEvent,
    calendar_copy: ManifestEvent,
    policy: AuthorityPolicy,
) -> ManifestEvent:
    scheduler_ts = updated_at(scheduler_copy)
    calendar_ts = updated_at(calendar_copy)
    if scheduler_ts > calendar_ts:
        return scheduler_copy
    if calendar_ts > scheduler_ts:
        return calendar_copy
    return scheduler_copy if policy.tie_authority == SCHEDULER else calendar_copy


@dataclass(frozen=True)
class ReconciliationResult:
    actions: tuple[ReconciliationAction, ...]
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def count_by_type(self, action_type: ActionType) -> int:
        return sum(1 for action in self.actions if action.type == action_type)


class Reconciler:
    """Turns a current and a desired event set into an ordered action list.

    Pure and synchronous: the same inputs always produce the same list, and a
    fatal condition raises before any action is returned.
    """

    def __init__(self, policy: AuthorityPolicy | None = None) -> None:
        self.policy = policy or AuthorityPolicy()

    def reconcile(self, current: EventSet, desired: EventSet) -> ReconciliationResult:
        actions: list[ReconciliationAction] = []
        diagnostics: list[Diagnostic] = []
        states: dict[DecisionState, int] = {state: 0 for state in DecisionState}

        for identity_hash in sorted(current.identity_hashes() | desired.identity_hashes()):
            current_event = current.get(identity_hash)
            desired_event = desired.get(identity_hash)
            self._check_pair(identity_hash, current_event, desired_event)

            if _unmanaged(current_event) or _unmanaged(desired_event):
                logger.debug("skip unmanaged identity=%s", identity_hash)
                diagnostics.append(
                    Diagnostic(
                        kind=REASON_UNMANAGED,
                        identity_hash=identity_hash,
                        reason="unmanaged: never mutated",
                    )
                )
                continue

            decision = decide(current_event, desired_event, self.policy)
            states[decision.state] += 1
            logger.debug(
                "decision identity=%s state=%s reason=%s",
                identity_hash,
                decision.state,
                decision.reason,
            )
            produced, notes = self._apply_table(identity_hash, decision, current, desired)
            actions.extend(produced)
            diagnostics.extend(notes)

        actions.sort(key=lambda action: action.sort_key)
        diagnostics.sort(key=lambda note: (note.identity_hash, note.kind, note.target or ""))
        result = ReconciliationResult(actions=tuple(actions), diagnostics=tuple(diagnostics))

        logger.info(
            "reconcile summary current=%s desired=%s create=%s update=%s delete=%s equal=%s locked=%s diagnostics=%s",
            len(current),
            len(desired),
            result.count_by_type("create"),
            result.count_by_type("update"),
            result.count_by_type("delete"),
            states[DecisionState.EQUAL],
            states[DecisionState.CONFLICTING_LOCKED],
            len(result.diagnostics),
        )
        return result

    def _check_pair(
        self,
        identity_hash: str,
        current_event: ManifestEvent | None,
        desired_event: ManifestEvent | None,
    ) -> None:
        if current_event is None or desired_event is None:
            return
        _check_controllers(identity_hash, current_event, desired_event)
        if not current_event.is_managed and desired_event.is_managed:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.EVENT_MANAGED_COLLISION,
                "Desired state tries to manage an identity that is currently unmanaged",
                {"identity_hash": identity_hash},
            )

    def _apply_table(
        self,
        identity_hash: str,
        decision: Decision,
        current: EventSet,
        desired: EventSet,
    ) -> tuple[list[ReconciliationAction], list[Diagnostic]]:
        state = decision.state
        current_event = current.get(identity_hash)
        desired_event = desired.get(identity_hash)

        if state is DecisionState.ONLY_DESIRED and desired_event is not None:
            targets = sorted(ALL_CONTROLLERS - desired.holders_of(identity_hash))
            return [
                ReconciliationAction(
                    type="create",
                    target=target,
                    authority=desired_event.authority,
                    identity_hash=identity_hash,
                    event=desired_event,
                    reason=f"{decision.reason}; create",
                )
                for target in targets
            ], []

        if state is DecisionState.ONLY_CURRENT and current_event is not None:
            targets = sorted(current.holders_of(identity_hash))
            if current_event.is_locked:
                return [], [
                    Diagnostic(
                        kind=REASON_LOCKED,
                        identity_hash=identity_hash,
                        reason=f"{REASON_LOCKED}: stale event kept",
                        target=target,
                    )
                    for target in targets
                ]
            return [
                ReconciliationAction(
                    type="delete",
                    target=target,
                    authority=current_event.authority,
                    identity_hash=identity_hash,
                    event=current_event,
                    reason=f"{decision.reason}; delete",
                )
                for target in targets
            ], []

        if state in _CONFLICTS and current_event is not None and desired_event is not None:
            return self._update(identity_hash, decision, current_event, desired_event)

        return [], []

    def _update(
        self,
        identity_hash: str,
        decision: Decision,
        current_event: ManifestEvent,
        desired_event: ManifestEvent,
    ) -> tuple[list[ReconciliationAction], list[Diagnostic]]:
        # The desired copy winning means its system's edit must reach the other
        # system; the current copy winning means the desired side is stale.
        if decision.winner is desired_event:
            winner = desired_event
            target = other_controller(desired_event.authority)
        else:
            winner = current_event
            target = desired_event.authority

        if decision.state is DecisionState.CONFLICTING_LOCKED:
            return [], [
                Diagnostic(
                    kind=REASON_LOCKED,
                    identity_hash=identity_hash,
                    reason=f"{REASON_LOCKED}: {decision.reason}; update skipped",
                    target=target,
                )
            ]

        return [
            ReconciliationAction(
                type="update",
                target=target,
                authority=winner.authority,
                identity_hash=identity_hash,
                event=winner,
                reason=f"{decision.reason}; update",
            )
        ], []


def _unmanaged(event: ManifestEvent | None) -> bool:
    return event is not None and not event.is_managed


def reconcile(
    current: Sequence[ManifestEvent] | EventSet,
    desired: Sequence[ManifestEvent] | EventSet,
    policy: AuthorityPolicy | None = None,
) -> ReconciliationResult:
    """Convenience wrapper; plain sequences are treated as :meth:`EventSet.of`."""
    current_set = current if isinstance(current, EventSet) else EventSet.of(current)
    desired_set = desired if isinstance(desired, EventSet) else EventSet.of(desired)
    return Reconciler(policy).reconcile(current_set, desired_set)
