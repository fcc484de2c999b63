from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .paths import default_data_dir
from .sync.decision import AuthorityPolicy
from .sync.schema import CONTROLLERS
from .sync.shadow import PRECEDENCE_HEURISTICS, ShadowPolicy

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(ValueError):
    """Raised when config.toml holds a value showsync cannot use."""


@dataclass(frozen=True)
class ReconcileConfig:
    tie_authority: str = "scheduler"

    def policy(self) -> AuthorityPolicy:
        return AuthorityPolicy(tie_authority=self.tie_authority)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ShadowConfig:
    precedence: str = "narrower_span"

    def policy(self) -> ShadowPolicy:
        return ShadowPolicy(precedence=self.precedence)  # type: ignore[arg-type]


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    shadow: ShadowConfig = field(default_factory=ShadowConfig)
    log_level: str = "INFO"

    @property
    def manifest_path(self) -> Path:
        return self.data_dir / "manifest.json"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "showsync.log"


def load_config(path: Path | None = None) -> AppConfig:
    """Load config.toml.

    If `path` is None, load from the default data dir; a missing default file
    means every setting keeps its default. An explicit path must exist.
    """
    data_dir = default_data_dir()
    cfg_path = path or (data_dir / "config.toml")
    if path is None and not cfg_path.exists():
        return AppConfig(data_dir=data_dir)
    raw = tomllib.loads(cfg_path.read_text(encoding="utf-8-sig"))

    data_dir = Path(raw.get("data_dir", str(data_dir)))

    reconcile_raw = _section(raw, "reconcile")
    tie_authority = str(reconcile_raw.get("tie_authority", "scheduler")).strip().lower()
    if tie_authority not in CONTROLLERS:
        raise ConfigError(
            f"reconcile.tie_authority must be one of {', '.join(CONTROLLERS)}, got {tie_authority!r}"
        )

    shadow_raw = _section(raw, "shadow")
    precedence = str(shadow_raw.get("precedence", "narrower_span")).strip().lower()
    if precedence not in PRECEDENCE_HEURISTICS:
        raise ConfigError(
            f"shadow.precedence must be one of {', '.join(PRECEDENCE_HEURISTICS)}, got {precedence!r}"
        )

    logging_raw = _section(raw, "logging")
    log_level = str(logging_raw.get("level", "INFO")).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")

    return AppConfig(
        data_dir=data_dir,
        reconcile=ReconcileConfig(tie_authority=tie_authority),
        shadow=ShadowConfig(precedence=precedence),
        log_level=log_level,
    )


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value
