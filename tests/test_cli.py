from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from showsync.cli import app

runner = CliRunner()


def _raw_event(target: str = "Holiday Show", **overrides: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "type": "playlist",
        "target": target,
        "authority": "scheduler",
        "sourceUpdatedAt": "2024-11-01T12:00:00Z",
        "subEvents": [
            {
                "timing": {
                    "days": ["MO", "WE", "FR"],
                    "timezone": "America/New_York",
                    "start_date": "2024-12-01",
                    "end_date": "2024-12-31",
                    "start_time": "18:00",
                    "end_time": "22:00",
                },
                "payload": {"playlist": target},
            }
        ],
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("SHOWSYNC_HOME", str(tmp_path / "home"))
    monkeypatch.setattr("showsync.commands.plan.configure_logging", lambda *a, **k: None)
    monkeypatch.setattr("showsync.commands.commit.configure_logging", lambda *a, **k: None)
    return tmp_path


def _write(path: Path, document: object) -> Path:
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_stamp_writes_hashed_manifest(workspace: Path) -> None:
    source = _write(workspace / "raw.json", [_raw_event()])
    output = workspace / "stamped.json"

    result = runner.invoke(app, ["stamp", str(source), "--output", str(output)])

    assert result.exit_code == 0, result.output
    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["schemaVersion"] == 1
    (event,) = document["events"]
    assert len(event["identityHash"]) == 64
    assert len(event["subEvents"][0]["stateHash"]) == 64


def test_plan_then_commit_then_plan_is_empty(workspace: Path) -> None:
    desired = _write(workspace / "desired.json", [_raw_event()])

    first = runner.invoke(app, ["plan", "--desired", str(desired), "--json"])
    assert first.exit_code == 0, first.output
    actions = json.loads(first.stdout)["actions"]
    assert [(a["type"], a["target"]) for a in actions] == [("create", "calendar")]

    committed = runner.invoke(app, ["commit", "--desired", str(desired)])
    assert committed.exit_code == 0, committed.output
    assert "commit: events=1" in committed.stdout
    assert (workspace / "home" / "manifest.json").exists()

    second = runner.invoke(app, ["plan", "--desired", str(desired)])
    assert second.exit_code == 0, second.output
    assert "plan: create=0 update=0 delete=0 diagnostics=0" in second.stdout


def test_plan_against_explicit_current(workspace: Path) -> None:
    stamped = workspace / "current.json"
    raw = _write(workspace / "raw.json", [_raw_event()])
    assert runner.invoke(app, ["stamp", str(raw), "-o", str(stamped)]).exit_code == 0
    desired = _write(workspace / "desired.json", [_raw_event(target="New Show")])

    result = runner.invoke(
        app, ["plan", "--desired", str(desired), "--current", str(stamped), "--json"]
    )

    assert result.exit_code == 0, result.output
    actions = json.loads(result.stdout)["actions"]
    assert sorted((a["type"], a["target"]) for a in actions) == [
        ("create", "calendar"),
        ("delete", "calendar"),
        ("delete", "scheduler"),
    ]


def test_plan_merges_per_source_documents(workspace: Path) -> None:
    desired = _write(
        workspace / "desired.json",
        {
            "scheduler": [_raw_event()],
            "calendar": [_raw_event(target="Calendar Show", authority="calendar")],
        },
    )

    result = runner.invoke(app, ["plan", "--desired", str(desired), "--json"])

    assert result.exit_code == 0, result.output
    actions = json.loads(result.stdout)["actions"]
    assert sorted((a["type"], a["target"]) for a in actions) == [
        ("create", "calendar"),
        ("create", "scheduler"),
    ]


def test_plan_invariant_violation_exits_2(workspace: Path) -> None:
    desired = _write(workspace / "desired.json", [_raw_event(authority="fpp")])

    result = runner.invoke(app, ["plan", "--desired", str(desired)])

    assert result.exit_code == 2
    assert "plan:" not in result.stdout


def test_plan_rejects_stale_schema_manifest(workspace: Path) -> None:
    (workspace / "home").mkdir()
    _write(workspace / "home" / "manifest.json", {"schemaVersion": 99, "events": []})
    desired = _write(workspace / "desired.json", [_raw_event()])

    result = runner.invoke(app, ["plan", "--desired", str(desired)])

    assert result.exit_code == 2


def test_plan_reports_bad_config(workspace: Path) -> None:
    config = workspace / "config.toml"
    config.write_text('[shadow]\nprecedence = "random"\n', encoding="utf-8")
    desired = _write(workspace / "desired.json", [_raw_event()])

    result = runner.invoke(app, ["plan", "--desired", str(desired), "--config", str(config)])

    assert result.exit_code == 2


def test_stamp_missing_source_exits_2(workspace: Path) -> None:
    result = runner.invoke(app, ["stamp", str(workspace / "missing.json")])

    assert result.exit_code == 2
