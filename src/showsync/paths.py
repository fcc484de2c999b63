from __future__ import annotations

import os
from pathlib import Path


def default_data_dir() -> Path:
    """Return the default ShowSync data directory.

    Order: $SHOWSYNC_HOME, %APPDATA%\\ShowSync\\ on Windows, otherwise ~/.showsync
    """
    override = os.environ.get("SHOWSYNC_HOME")
    if override:
        return Path(override)
    appdata = os.environ.get("APPDATA")
    if appdata:
        return Path(appdata) / "ShowSync"
    return Path.home() / ".showsync"
