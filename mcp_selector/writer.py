"""Atomic JSON writes and timestamped backups."""

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from .parser import read_json_file

logger = logging.getLogger(__name__)

# Backups kept per target file
MAX_BACKUPS_PER_FILE = 10

# {flattened path}.{YYYYMMDD_HHMMSS_micro}.bak
_BACKUP_PATTERN = re.compile(r"^(.+)\.(\d{8}_\d{6}_\d{6})\.bak$")


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON through a temp file in the same directory, then rename over ``path``.

    The temp file lives beside the target so the rename never crosses
    filesystems. Output is 2-space indented with a trailing newline.

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    logger.debug(f"Wrote {path}")


def _backup_prefix(path: Path) -> str:
    """Flatten an absolute path into a single file-name component."""
    flat = str(path.expanduser().resolve()).replace("\\", "/").replace(":", "")
    return flat.strip("/").replace("/", "_")


def create_backup(path: Path, backup_dir: Path) -> Path | None:
    """Copy ``path`` into ``backup_dir`` with a timestamp.

    Returns:
        The backup path, or None if ``path`` does not exist

    Raises:
        OSError: If the copy fails
    """
    if not path.exists():
        return None

    backup_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    backup_path = backup_dir / f"{_backup_prefix(path)}.{timestamp}.bak"
    shutil.copy2(path, backup_path)
    logger.debug(f"Backed up {path} to {backup_path}")

    cleanup_old_backups(backup_dir)
    return backup_path


def list_backups(path: Path, backup_dir: Path) -> list[Path]:
    """Backups of ``path``, newest first."""
    if not backup_dir.is_dir():
        return []
    prefix = _backup_prefix(path)
    found: list[tuple[str, Path]] = []
    for candidate in backup_dir.iterdir():
        match = _BACKUP_PATTERN.match(candidate.name)
        if match and match.group(1) == prefix and candidate.is_file():
            found.append((match.group(2), candidate))
    found.sort(key=lambda item: item[0], reverse=True)
    return [p for _, p in found]


def get_latest_backup(path: Path, backup_dir: Path) -> Path | None:
    backups = list_backups(path, backup_dir)
    return backups[0] if backups else None


def restore_from_backup(path: Path, backup_dir: Path, backup: Path | None = None) -> Path:
    """Replace ``path`` with a backup (the latest one unless given).

    The current file is backed up first so the rollback itself can be undone.

    Returns:
        The backup that was restored

    Raises:
        FileNotFoundError: If there is no backup to restore
        ConfigParseError: If the backup is not a valid JSON object
    """
    source = backup or get_latest_backup(path, backup_dir)
    if source is None or not source.exists():
        raise FileNotFoundError(f"No backup found for {path}")

    data = read_json_file(source)
    create_backup(path, backup_dir)
    atomic_write_json(path, data if data is not None else {})
    logger.info(f"Restored {path} from {source}")
    return source


def cleanup_old_backups(backup_dir: Path, max_per_file: int = MAX_BACKUPS_PER_FILE) -> list[Path]:
    """Delete all but the newest ``max_per_file`` backups of each target.

    Failures are logged, never raised.
    """
    deleted: list[Path] = []
    if not backup_dir.is_dir():
        return deleted

    by_target: dict[str, list[tuple[str, Path]]] = {}
    for candidate in backup_dir.iterdir():
        match = _BACKUP_PATTERN.match(candidate.name)
        if not match or not candidate.is_file():
            continue
        by_target.setdefault(match.group(1), []).append((match.group(2), candidate))

    for backups in by_target.values():
        backups.sort(key=lambda item: item[0], reverse=True)
        for _, old in backups[max_per_file:]:
            try:
                old.unlink()
                deleted.append(old)
                logger.debug(f"Deleted old backup: {old}")
            except OSError as e:
                logger.warning(f"Failed to delete old backup {old}: {e}")

    return deleted
