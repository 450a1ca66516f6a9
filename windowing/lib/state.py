"""Persistence of completed watermarks.

Completed watermarks are stored as one JSON file per source under the state
directory (``EngineSettings.state_dir``: ``WINDOWING_STATE_DIR`` from the
environment or a .env file, default ``.state``). The file is the previous
watermark handed to the next run.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from windowing.lib.config import EngineSettings
from windowing.lib.watermark import Watermark

logger = logging.getLogger(__name__)

__all__ = [
    "clear_all_watermarks",
    "delete_watermark",
    "get_watermark",
    "get_watermark_age",
    "list_watermarks",
    "save_watermark",
]

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _get_state_dir() -> Path:
    return Path(EngineSettings().state_dir)


def _get_watermark_path(source: str) -> Path:
    return _get_state_dir() / f"{_UNSAFE.sub('_', source)}_watermark.json"


def get_watermark(source: str) -> Optional[Watermark]:
    """Return the last completed watermark of a source."""
    path = _get_watermark_path(source)

    if not path.exists():
        logger.debug("No watermark found for %s", source)
        return None

    try:
        data = json.loads(path.read_text())
        watermark = Watermark.from_dict(data["watermark"])
        logger.debug(
            "Found watermark for %s: %s (updated %s)",
            source,
            watermark,
            data.get("updated_at", "unknown"),
        )
        return watermark
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Invalid watermark file for %s: %s", source, exc)
        return None


def save_watermark(source: str, watermark: Watermark) -> Path:
    """Persist a completed watermark."""
    state_dir = _get_state_dir()
    state_dir.mkdir(parents=True, exist_ok=True)

    path = _get_watermark_path(source)
    data = {
        "source": source,
        "watermark": watermark.to_dict(),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    # Replace atomically so a crash never leaves half a file behind
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(data, indent=2))
    tmp_path.replace(path)
    logger.info("Saved watermark for %s: %s", source, watermark)
    return path


def delete_watermark(source: str) -> bool:
    path = _get_watermark_path(source)

    if path.exists():
        path.unlink()
        logger.info("Deleted watermark for %s", source)
        return True

    return False


def list_watermarks() -> Dict[str, Dict[str, Any]]:
    """List all stored watermark entries keyed by source name."""
    state_dir = _get_state_dir()

    if not state_dir.exists():
        return {}

    watermarks: Dict[str, Dict[str, Any]] = {}

    for path in state_dir.glob("*_watermark.json"):
        try:
            data = json.loads(path.read_text())
            watermarks[data.get("source", path.stem)] = data
        except json.JSONDecodeError as exc:
            logger.warning("Invalid watermark file %s: %s", path, exc)

    return watermarks


def clear_all_watermarks() -> int:
    state_dir = _get_state_dir()

    if not state_dir.exists():
        return 0

    count = 0
    for path in state_dir.glob("*_watermark.json"):
        path.unlink()
        count += 1

    logger.info("Cleared %d watermarks", count)
    return count


def get_watermark_age(source: str) -> Optional[float]:
    """Return the age of the stored watermark in hours."""
    path = _get_watermark_path(source)

    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text())
        updated_at = data.get("updated_at")
        if not updated_at:
            return None

        updated_dt = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
        delta = datetime.now(timezone.utc) - updated_dt
        return delta.total_seconds() / 3600
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Could not calculate watermark age for %s: %s", source, exc)
        return None
