"""Cross-process advisory locks for config files.

A lock on ``X`` is the sidecar file ``X.lock`` created exclusively and holding
the owner's PID. A lock file older than the stale timeout is assumed to belong
to a crashed process and is removed.
"""

import logging
import os
import time
from collections.abc import Generator
from contextlib import ExitStack, contextmanager
from pathlib import Path

from .config import Settings

logger = logging.getLogger(__name__)


class LockError(OSError):
    """A lock could not be acquired within the retry budget."""


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


def backoff_delays(retries: int, min_timeout: float, max_timeout: float) -> list[float]:
    """Exponential delays between attempts: min, 2*min, 4*min ... capped at max."""
    return [min(min_timeout * (2 ** i), max_timeout) for i in range(retries)]


def _remove_if_stale(lock_path: Path, stale: float) -> bool:
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    if age < stale:
        return False
    logger.warning(f"Removing stale lock {lock_path} ({age:.1f}s old)")
    try:
        lock_path.unlink()
    except FileNotFoundError:
        pass
    return True


def acquire_lock(path: Path, settings: Settings) -> Path:
    """Create the lock file for ``path``, retrying with backoff.

    Returns:
        The lock file path, to be passed to ``release_lock``

    Raises:
        LockError: If the lock is still held after all retries, or the lock
            file cannot be created at all
    """
    lock_path = lock_path_for(path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LockError(f"Cannot create lock directory {lock_path.parent}: {e}") from e
    delays = backoff_delays(settings.lock_retries, settings.lock_min_timeout, settings.lock_max_timeout)

    for attempt in range(len(delays) + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if _remove_if_stale(lock_path, settings.lock_stale):
                continue
            if attempt == len(delays):
                break
            time.sleep(delays[attempt])
            continue
        except OSError as e:
            raise LockError(f"Cannot create lock file {lock_path}: {e}") from e

        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        logger.debug(f"Acquired lock {lock_path}")
        return lock_path

    raise LockError(f"Timed out waiting for lock {lock_path}")


def release_lock(lock_path: Path) -> None:
    try:
        lock_path.unlink()
        logger.debug(f"Released lock {lock_path}")
    except FileNotFoundError:
        logger.warning(f"Lock {lock_path} was already removed")


@contextmanager
def file_lock(path: Path, settings: Settings) -> Generator[bool, None, None]:
    """Hold the lock on ``path`` for the duration of the block.

    Yields True when the lock is held. If locking fails the block still runs,
    unlocked, after a warning, and False is yielded.
    """
    try:
        lock_path = acquire_lock(path, settings)
    except LockError as e:
        logger.warning(f"{e}; proceeding without lock")
        yield False
        return

    try:
        yield True
    finally:
        release_lock(lock_path)


@contextmanager
def locked_files(paths: list[Path], settings: Settings) -> Generator[list[bool], None, None]:
    """Lock several files, released in reverse order of acquisition."""
    with ExitStack() as stack:
        held = [stack.enter_context(file_lock(p, settings)) for p in paths]
        yield held
