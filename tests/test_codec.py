from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime

import pytest
from factories import make_event, sub_event, timing

from showsync.sync.codec import (
    action_to_dict,
    event_from_dict,
    event_to_dict,
    events_from_document,
    parse_timestamp,
)
from showsync.sync.engine import EventSet, Reconciler
from showsync.sync.errors import IdentityInvariantViolation, ManifestInvariantViolation
from showsync.sync.hashing import stamp_event
from showsync.sync.models import ReconciliationAction


def _raw_event(**overrides: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "type": "playlist",
        "target": "Holiday Show",
        "authority": "calendar",
        "sourceUpdatedAt": "2024-11-01T12:00:00Z",
        "subEvents": [
            {
                "timing": {
                    "all_day": False,
                    "days": ["FR", "MO", "WE"],
                    "timezone": "America/New_York",
                    "start_date": "2024-12-01",
                    "end_date": {"hard": "2024-12-31", "symbolic": "Epiphany", "offset": -6},
                    "start_time": {"hard": "17:12", "symbolic": "dusk", "offset": 0},
                    "end_time": "22:00",
                },
                "payload": {"playlist": "Holiday Show"},
                "behavior": {"repeat": "none"},
            }
        ],
    }
    raw.update(overrides)
    return raw


def test_identity_is_derived_from_first_sub_event() -> None:
    event = event_from_dict(_raw_event())

    assert event.identity.days == ("MO", "WE", "FR")
    assert event.identity.start_time == "17:12:00"
    assert event.ownership.controller == "scheduler"
    assert event.source_updated_at == datetime(2024, 11, 1, 12, 0, tzinfo=UTC)


def test_symbolic_tokens_survive_a_write_and_read() -> None:
    event = stamp_event(event_from_dict(_raw_event()))

    again = event_from_dict(event_to_dict(event))

    assert again == event
    assert again.sub_events[0].timing.start_time is not None
    assert again.sub_events[0].timing.start_time.symbolic == "dusk"
    assert again.sub_events[0].timing.end_date.offset == -6


def test_unknown_controller_is_rejected() -> None:
    with pytest.raises(ManifestInvariantViolation) as excinfo:
        event_from_dict(_raw_event(authority="fpp"))

    assert excinfo.value.code == ManifestInvariantViolation.EVENT_AUTHORITY_INVALID


def test_unknown_ownership_controller_is_rejected() -> None:
    with pytest.raises(ManifestInvariantViolation, match="ownership.controller"):
        event_from_dict(_raw_event(ownership={"controller": "outlook"}))


def test_missing_sub_events_are_rejected() -> None:
    with pytest.raises(ManifestInvariantViolation, match="at least one sub-event"):
        event_from_dict(_raw_event(subEvents=[]))


def test_missing_identity_fields_are_rejected() -> None:
    with pytest.raises(IdentityInvariantViolation):
        event_from_dict(_raw_event(target=""))


def test_bad_date_is_rejected() -> None:
    raw = _raw_event()
    raw["subEvents"][0]["timing"]["start_date"] = "12/01/2024"  # type: ignore[index]

    with pytest.raises(ManifestInvariantViolation, match="ISO date"):
        event_from_dict(raw)


def test_parse_timestamp() -> None:
    assert parse_timestamp("2024-11-01T12:00:00Z").tzinfo is not None
    assert parse_timestamp("2024-11-01T12:00:00+00:00") == datetime(2024, 11, 1, 12, 0, tzinfo=UTC)
    with pytest.raises(ManifestInvariantViolation, match="UTC offset"):
        parse_timestamp("2024-11-01T12:00:00")
    with pytest.raises(ManifestInvariantViolation, match="not an ISO timestamp"):
        parse_timestamp("yesterday")
    with pytest.raises(ManifestInvariantViolation, match="required"):
        parse_timestamp(None)


def test_events_from_document_accepts_list_or_manifest() -> None:
    assert len(events_from_document([_raw_event()])) == 1
    assert len(events_from_document({"events": [_raw_event()]})) == 1
    with pytest.raises(ManifestInvariantViolation, match="list of events"):
        events_from_document("events")


def test_action_to_dict_carries_exclusions() -> None:
    event = make_event(sub_event(timing()))
    event = replace(
        event, sub_events=(replace(event.sub_events[0], exclusion_dates=(date(2024, 12, 25),)),)
    )
    action = ReconciliationAction(
        type="create",
        target="calendar",
        authority="scheduler",
        identity_hash=event.identity_hash,
        event=event,
        reason="new event; create",
    )

    data = action_to_dict(action)

    assert data["identityHash"] == event.identity_hash
    assert data["event"]["subEvents"][0]["exclusionDates"] == ["2024-12-25"]


def test_calendar_edit_of_scheduler_owned_event_becomes_update() -> None:
    stored = stamp_event(event_from_dict(_raw_event(authority="scheduler")))
    edited = _raw_event(authority="calendar", sourceUpdatedAt="2024-11-02T08:30:00Z")
    edited["subEvents"][0]["payload"] = {"playlist": "Holiday Show (extended)"}  # type: ignore[index]
    calendar_copy = stamp_event(event_from_dict(edited))

    result = Reconciler().reconcile(EventSet.reconciled([stored]), EventSet.of([calendar_copy]))

    assert stored.ownership.controller == calendar_copy.ownership.controller == "scheduler"
    (action,) = result.actions
    assert action.type == "update"
    assert action.target == "scheduler"
    assert action.authority == "calendar"
    assert action.event is calendar_copy


def test_naive_timestamp_is_rejected_at_ingestion() -> None:
    with pytest.raises(ManifestInvariantViolation) as excinfo:
        event_from_dict(_raw_event(sourceUpdatedAt="2024-11-01T12:00:00"))

    assert excinfo.value.code == ManifestInvariantViolation.EVENT_TIMESTAMP_INVALID
