from __future__ import annotations

from datetime import date

from factories import EVERY_DAY, make_event, sub_event, timing

from showsync.sync.engine import EventSet
from showsync.sync.planner import plan_pass
from showsync.sync.schema import REASON_GROUPING_AMBIGUITY
from showsync.sync.shadow import ShadowPolicy


def test_new_event_then_converged_rerun() -> None:
    event = make_event(sub_event(timing(days=("MO", "WE", "FR"), start="18:00", end="22:00")))

    first = plan_pass(EventSet.reconciled([]), EventSet.of([event]))
    second = plan_pass(EventSet.reconciled([event]), EventSet.of([event]))

    assert len(first.actions) == 1
    assert first.count_by_type("create") == 1
    assert second.is_empty
    assert second.diagnostics == ()


def test_created_event_carries_resolved_exclusions() -> None:
    base = sub_event(timing(days=EVERY_DAY, start_date="2024-12-01", end_date="2024-12-31"))
    holiday = sub_event(
        timing(days=EVERY_DAY, start_date="2024-12-25", end_date="2024-12-25"),
        payload={"playlist": "Christmas Special"},
    )
    event = make_event(base, holiday)

    plan = plan_pass(EventSet.reconciled([]), EventSet.of([event]))

    (action,) = plan.actions
    assert action.target == "calendar"
    assert action.event.sub_events[0].exclusion_dates == (date(2024, 12, 25),)
    assert action.event.identity_hash == event.identity_hash


def test_rerun_with_shadowed_event_stays_converged() -> None:
    base = sub_event(timing(days=EVERY_DAY, start_date="2024-12-01", end_date="2024-12-31"))
    holiday = sub_event(timing(days=EVERY_DAY, start_date="2024-12-25", end_date="2024-12-25"))
    event = make_event(base, holiday)
    applied = plan_pass(EventSet.reconciled([]), EventSet.of([event])).actions[0].event

    rerun = plan_pass(EventSet.reconciled([applied]), EventSet.of([event]))

    assert rerun.is_empty


def test_shadow_diagnostics_follow_reconcile_diagnostics() -> None:
    locked_stale = make_event(target="Retired Show", locked=True)
    base = sub_event(timing(days=EVERY_DAY, start_date="2024-12-01", end_date="2024-12-31"))
    straddling = sub_event(timing(days=EVERY_DAY, start_date="2024-12-30", end_date="2025-01-02"))

    plan = plan_pass(
        EventSet.reconciled([locked_stale]),
        EventSet.of([make_event(base, straddling)]),
        shadow_policy=ShadowPolicy(precedence="input_order"),
    )

    assert [note.kind for note in plan.diagnostics] == [
        "locked",
        "locked",
        REASON_GROUPING_AMBIGUITY,
    ]
    assert plan.count_by_type("create") == 1
