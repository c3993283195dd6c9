from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path


def _data_root() -> Path:
    return Path(__file__).resolve().parents[2] / "data"


def ledger_root() -> Path:
    """Directory holding the append-only ledger files."""

    env_root = os.getenv("LEDGER_ROOT")
    root = Path(env_root).expanduser().resolve() if env_root else _data_root() / "ledger"
    root.mkdir(parents=True, exist_ok=True)
    return root


def uploads_root() -> Path:
    env_root = os.getenv("UPLOADS_ROOT")
    root = Path(env_root).expanduser().resolve() if env_root else _data_root() / "uploads"
    root.mkdir(parents=True, exist_ok=True)
    return root


def save_upload(filename: str, source) -> Path:
    """Persist an uploaded bulk file under a timestamped name."""

    safe_name = Path(filename).name
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    target = uploads_root() / f"{stamp}_{safe_name}"
    with target.open("wb") as buffer:
        shutil.copyfileobj(source, buffer)
    return target
