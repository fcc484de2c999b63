from __future__ import annotations

import logging
from pathlib import Path

import typer

from ..logging_config import configure_logging
from ..sync.errors import InvariantViolation
from ..sync.manifest_store import ManifestStore
from .plan import (
    CONFIG_OPTION,
    DEBUG_OPTION,
    DESIRED_OPTION,
    desired_event_set,
    load_app_config,
    read_document,
)

logger = logging.getLogger(__name__)


def commit(
    desired: Path = DESIRED_OPTION,
    config: Path | None = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Store the desired events as the reconciled manifest after a successful apply."""
    cfg = load_app_config(config)
    cfg.data_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(cfg.log_path, level="DEBUG" if debug else cfg.log_level)

    try:
        event_set = desired_event_set(read_document(desired), cfg.reconcile.policy())
        ManifestStore(cfg.manifest_path).save(event_set.events())
    except InvariantViolation as exc:
        logger.error("Manifest commit refused: %s", exc)
        typer.echo(f"commit refused: {exc}", err=True)
        raise typer.Exit(code=2) from None

    typer.echo(f"commit: events={len(event_set)} manifest={cfg.manifest_path}")
