from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

__all__ = [
    "PROGRESS_ENV",
    "DEFAULT_PROGRESS_FILENAME",
    "EXPORT_PREFIX",
    "ProgressFile",
    "default_progress_path",
    "export_filename",
    "backup_filename",
    "write_json",
    "utc_timestamp",
]

PROGRESS_ENV = "SPANMARK_PROGRESS"
DEFAULT_PROGRESS_FILENAME = ".spanmark-progress.json"
EXPORT_PREFIX = "spanmark_annotations"

logger = logging.getLogger("spanmark.persistence")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_progress_path() -> Path:
    override = os.environ.get(PROGRESS_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_PROGRESS_FILENAME


def export_filename(day: date | None = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f"{EXPORT_PREFIX}_{day.isoformat()}.json"


def backup_filename(day: date | None = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f"{EXPORT_PREFIX}_backup_{day.isoformat()}.json"


def write_json(path: Path, payload: object) -> Path:
    """Write ``payload`` next to ``path`` and atomically move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return path


class ProgressFile:
    """
    Durable copy of the session's save blob.

    Writes never raise: a failed save is logged and reported as ``False`` so
    the annotation change that triggered it still stands.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def write(self, blob: dict[str, object]) -> bool:
        try:
            write_json(self.path, blob)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save progress to %s: %s", self.path, exc)
            return False
        logger.debug("Saved progress to %s", self.path)
        return True

    def read(self) -> dict[str, object] | None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable progress file %s: %s", self.path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring progress file %s: not a JSON object", self.path)
            return None
        return raw

    def remove(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Failed to remove progress file %s: %s", self.path, exc)
            return False
        return True
