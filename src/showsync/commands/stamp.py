from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

from ..sync.codec import event_to_dict, events_from_document
from ..sync.errors import InvariantViolation
from ..sync.hashing import stamp_event
from ..sync.schema import KEY_EVENTS, KEY_SCHEMA_VERSION, SCHEMA_VERSION
from .plan import read_document

logger = logging.getLogger(__name__)
OUTPUT_OPTION = typer.Option(None, "--output", "-o", help="Write the stamped events here.")


def stamp(
    source: Path,
    output: Path | None = OUTPUT_OPTION,
) -> None:
    """Compute identity and state hashes for raw events."""
    try:
        events = [stamp_event(event) for event in events_from_document(read_document(source))]
    except InvariantViolation as exc:
        logger.error("Stamping failed: %s", exc)
        typer.echo(f"stamp failed: {exc}", err=True)
        raise typer.Exit(code=2) from None
    logger.info("stamped events=%s source=%s", len(events), source)

    document = {
        KEY_SCHEMA_VERSION: SCHEMA_VERSION,
        KEY_EVENTS: [event_to_dict(event) for event in events],
    }
    encoded = json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False)
    if output is None:
        typer.echo(encoded)
        return
    output.write_text(encoded + "\n", encoding="utf-8")
    typer.echo(f"stamp: events={len(events)} output={output}")
