from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from .codec import event_from_dict, event_to_dict
from .errors import ManifestInvariantViolation
from .models import ManifestEvent
from .schema import KEY_EVENTS, KEY_SCHEMA_VERSION, SCHEMA_VERSION

logger = logging.getLogger(__name__)


class ManifestStore:
    """Last reconciled manifest, kept as one JSON file.

    A missing file is an empty manifest. Anything unreadable, or written under
    another schema version, is a hard failure: stored hashes from another
    canonical field set cannot be compared with fresh ones.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> list[ManifestEvent]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.MANIFEST_UNREADABLE,
                "Manifest file could not be read",
                {"path": str(self.path)},
            ) from exc
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.MANIFEST_JSON_INVALID,
                "Manifest is not valid JSON",
                {"path": str(self.path), "error": str(exc)},
            ) from exc
        if not isinstance(document, dict) or not isinstance(document.get(KEY_EVENTS), list):
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.MANIFEST_JSON_INVALID,
                "Manifest root must be an object with an events list",
                {"path": str(self.path)},
            )
        version = document.get(KEY_SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise ManifestInvariantViolation(
                ManifestInvariantViolation.MANIFEST_SCHEMA_MISMATCH,
                "Manifest was written under another schema version",
                {"path": str(self.path), "found": version, "expected": SCHEMA_VERSION},
            )
        events = [event_from_dict(item) for item in document[KEY_EVENTS]]
        logger.debug("manifest loaded path=%s events=%s", self.path, len(events))
        return events

    def save(self, events: Iterable[ManifestEvent]) -> None:
        ordered = sorted(events, key=lambda event: event.identity_hash)
        document = {
            KEY_SCHEMA_VERSION: SCHEMA_VERSION,
            KEY_EVENTS: [event_to_dict(event) for event in ordered],
        }
        encoded = json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(encoded)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("manifest saved path=%s events=%s", self.path, len(ordered))
