from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import typer

from ..config import AppConfig, ConfigError, load_config
from ..logging_config import configure_logging
from ..sync.codec import action_to_dict, diagnostic_to_dict, events_from_document
from ..sync.decision import AuthorityPolicy
from ..sync.engine import EventSet
from ..sync.errors import InvariantViolation
from ..sync.hashing import stamp_event
from ..sync.manifest_store import ManifestStore
from ..sync.models import ManifestEvent
from ..sync.planner import PassPlan, plan_pass
from ..sync.schema import CALENDAR, SCHEDULER

logger = logging.getLogger(__name__)
DESIRED_OPTION = typer.Option(..., "--desired", help="Desired events JSON.")
CURRENT_OPTION = typer.Option(
    None, "--current", help="Current manifest JSON (default: the stored manifest)."
)
JSON_OPTION = typer.Option(False, "--json", help="Emit machine-readable JSON output.")
CONFIG_OPTION = typer.Option(None, "--config", help="Path to config.toml")
DEBUG_OPTION = typer.Option(False, "--debug", help="Enable debug logging.")


def plan(
    desired: Path = DESIRED_OPTION,
    current: Path | None = CURRENT_OPTION,
    json_output: bool = JSON_OPTION,
    config: Path | None = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Compute the ordered action list for one reconciliation pass."""
    cfg = load_app_config(config)
    cfg.data_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(cfg.log_path, level="DEBUG" if debug else cfg.log_level)

    try:
        authority_policy = cfg.reconcile.policy()
        desired_set = desired_event_set(read_document(desired), authority_policy)
        if current is None:
            current_events = ManifestStore(cfg.manifest_path).load()
        else:
            current_events = events_from_document(read_document(current))
        result = plan_pass(
            EventSet.reconciled(current_events),
            desired_set,
            authority_policy=authority_policy,
            shadow_policy=cfg.shadow.policy(),
        )
    except InvariantViolation as exc:
        logger.error("Reconciliation pass aborted: %s", exc)
        typer.echo(f"plan aborted: {exc}", err=True)
        raise typer.Exit(code=2) from None

    if json_output:
        typer.echo(json.dumps(plan_to_dict(result), indent=2, sort_keys=True, ensure_ascii=False))
        return

    for action in result.actions:
        typer.echo(
            f"{action.type:<6} {action.target:<9} {action.identity_hash[:12]} "
            f"{action.event.identity.target} ({action.reason})"
        )
    for note in result.diagnostics:
        typer.echo(f"[{note.kind}] {note.identity_hash[:12]} {note.reason}")
    typer.echo(
        "plan: "
        f"create={result.count_by_type('create')} "
        f"update={result.count_by_type('update')} "
        f"delete={result.count_by_type('delete')} "
        f"diagnostics={len(result.diagnostics)}"
    )


def plan_to_dict(result: PassPlan) -> dict[str, Any]:
    return {
        "actions": [action_to_dict(action) for action in result.actions],
        "diagnostics": [diagnostic_to_dict(note) for note in result.diagnostics],
    }


def desired_event_set(document: Any, policy: AuthorityPolicy | None = None) -> EventSet:
    """Hash desired events; ``scheduler``/``calendar`` lists are merged per source."""
    if isinstance(document, Mapping) and (SCHEDULER in document or CALENDAR in document):
        return EventSet.from_sources(
            _stamped(document.get(SCHEDULER, [])),
            _stamped(document.get(CALENDAR, [])),
            policy,
        )
    return EventSet.of(_stamped(document))


def _stamped(document: Any) -> list[ManifestEvent]:
    return [stamp_event(event) for event in events_from_document(document)]


def read_document(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"cannot read {path}: {exc}", err=True)
        raise typer.Exit(code=2) from None


def load_app_config(config: Path | None) -> AppConfig:
    try:
        return load_config(config)
    except (ConfigError, OSError) as exc:
        typer.echo(f"config error: {exc}", err=True)
        raise typer.Exit(code=2) from None
