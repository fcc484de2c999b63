"""Authority decision table for one identity.

Every identity seen in either snapshot lands in exactly one
:class:`DecisionState`. The engine maps states to actions; nothing else in
the engine compares timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from .errors import ManifestInvariantViolation
from .models import ManifestEvent
from .schema import SCHEDULER, Controller


class DecisionState(StrEnum):
    BOTH_ABSENT = "both_absent"
    ONLY_DESIRED = "only_desired"
    ONLY_CURRENT = "only_current"
    EQUAL = "equal"
    CONFLICTING_AUTHORITATIVE = "conflicting_authoritative"
    CONFLICTING_LOCKED = "conflicting_locked"


@dataclass(frozen=True)
class AuthorityPolicy:
    # Side that wins when both copies report the same update time.
    tie_authority: Controller = SCHEDULER


@dataclass(frozen=True)
class Decision:
    state: DecisionState
    winner: ManifestEvent | None = None
    loser: ManifestEvent | None = None
    reason: str = ""


def decide(
    current: ManifestEvent | None,
    desired: ManifestEvent | None,
    policy: AuthorityPolicy,
) -> Decision:
    if current is None and desired is None:
        return Decision(DecisionState.BOTH_ABSENT)
    if current is None:
        return Decision(DecisionState.ONLY_DESIRED, winner=desired, reason="new event")
    if desired is None:
        return Decision(DecisionState.ONLY_CURRENT, loser=current, reason="stale event")

    if current.state_hashes == desired.state_hashes:
        return Decision(
            DecisionState.EQUAL,
            winner=desired,
            loser=current,
            reason="stateHash equal: already converged",
        )

    winner, loser, reason = _pick_winner(current, desired, policy)
    if _order_only_drift(current, desired):
        reason += "; order changed"

    if current.is_locked or desired.is_locked:
        return Decision(DecisionState.CONFLICTING_LOCKED, winner=winner, loser=loser, reason=reason)
    return Decision(DecisionState.CONFLICTING_AUTHORITATIVE, winner=winner, loser=loser, reason=reason)


def _pick_winner(
    current: ManifestEvent,
    desired: ManifestEvent,
    policy: AuthorityPolicy,
) -> tuple[ManifestEvent, ManifestEvent, str]:
    current_ts = updated_at(current)
    desired_ts = updated_at(desired)

    if desired_ts > current_ts:
        return desired, current, f"{desired.authority} newer ({desired_ts.isoformat()})"
    if current_ts > desired_ts:
        return current, desired, f"{current.authority} newer ({current_ts.isoformat()})"

    tie = f"tie ({current_ts.isoformat()}): {policy.tie_authority} wins"
    if current.authority == policy.tie_authority and desired.authority != policy.tie_authority:
        return current, desired, tie
    return desired, current, tie


def _order_only_drift(current: ManifestEvent, desired: ManifestEvent) -> bool:
    return sorted(current.state_hashes) == sorted(desired.state_hashes)


def updated_at(event: ManifestEvent) -> datetime:
    if event.source_updated_at is None:
        raise ManifestInvariantViolation(
            ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID,
            "Event has no sourceUpdatedAt",
            {"identity_hash": event.identity_hash},
        )
    return event.source_updated_at
