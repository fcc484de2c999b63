from __future__ import annotations

import logging
from dataclasses import dataclass

from .decision import AuthorityPolicy
from .engine import EventSet, Reconciler
from .models import Diagnostic, ReconciliationAction
from .schema import ActionType
from .shadow import OverrideShadowResolver, ShadowPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassPlan:
    """Ordered, override-resolved actions for one reconciliation pass."""

    actions: tuple[ReconciliationAction, ...]
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def count_by_type(self, action_type: ActionType) -> int:
        return sum(1 for action in self.actions if action.type == action_type)


def plan_pass(
    current: EventSet,
    desired: EventSet,
    *,
    authority_policy: AuthorityPolicy | None = None,
    shadow_policy: ShadowPolicy | None = None,
) -> PassPlan:
    """Diff two snapshots and fold calendar overrides into their base.

    Any InvariantViolation propagates; a caller must not apply anything from
    a pass that raised.
    """
    result = Reconciler(authority_policy).reconcile(current, desired)
    shadow = OverrideShadowResolver(shadow_policy).resolve(result.actions)
    plan = PassPlan(
        actions=shadow.actions,
        diagnostics=result.diagnostics + shadow.diagnostics,
    )
    logger.info("plan actions=%s diagnostics=%s", len(plan.actions), len(plan.diagnostics))
    return plan
