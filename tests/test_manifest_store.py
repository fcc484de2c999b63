from __future__ import annotations

import json
from pathlib import Path

import pytest
from factories import make_event

from showsync.sync.errors import ManifestInvariantViolation
from showsync.sync.manifest_store import ManifestStore


def test_missing_manifest_is_empty(tmp_path: Path) -> None:
    assert ManifestStore(tmp_path / "state" / "manifest.json").load() == []


def test_saved_manifest_loads_back(tmp_path: Path) -> None:
    store = ManifestStore(tmp_path / "manifest.json")
    events = [make_event(target="B Show"), make_event(target="A Show", locked=True)]

    store.save(events)
    loaded = store.load()

    assert sorted(loaded, key=lambda e: e.identity_hash) == sorted(
        events, key=lambda e: e.identity_hash
    )
    assert [path.name for path in tmp_path.iterdir()] == ["manifest.json"]
    document = json.loads((tmp_path / "manifest.json").read_text(encoding="utf-8"))
    assert document["schemaVersion"] == 1
    assert [item["identityHash"] for item in document["events"]] == sorted(
        event.identity_hash for event in events
    )


def test_schema_mismatch_is_fatal(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps({"schemaVersion": 0, "events": []}), encoding="utf-8")

    with pytest.raises(ManifestInvariantViolation) as excinfo:
        ManifestStore(path).load()

    assert excinfo.value.code == ManifestInvariantViolation.MANIFEST_SCHEMA_MISMATCH


def test_invalid_json_is_fatal(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ManifestInvariantViolation, match="not valid JSON"):
        ManifestStore(path).load()


def test_manifest_root_must_hold_events(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ManifestInvariantViolation, match="events list"):
        ManifestStore(path).load()
