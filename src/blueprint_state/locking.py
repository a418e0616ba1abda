"""Advisory per-document locks shared between independent hook processes.

A lock is a sidecar marker file named ``<document>.lock``. Creating it with
``O_CREAT | O_EXCL`` is the only synchronization primitive, so the protocol
works across processes (and runtimes) without ``flock`` support. The marker
records the holder's pid and host so release never removes a marker owned by
someone else. A marker older than the staleness window is presumed to belong
to a crashed holder and may be broken once per acquisition.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"

DEFAULT_TIMEOUT_MS = 1_000
DEFAULT_STALE_MS = 30_000
DEFAULT_POLL_INTERVAL_MS = 50


def lock_path_for(path: Path | str) -> Path:
    """Return the lock marker path guarding *path*."""
    target = Path(path)
    return target.with_name(target.name + LOCK_SUFFIX)


def _owner_info() -> dict[str, object]:
    return {"pid": os.getpid(), "host": socket.gethostname(), "timestamp": time.time()}


def _create_marker(lock_path: Path) -> None:
    """Atomically create the marker. Raises FileExistsError if it is already held."""
    fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(_owner_info(), handle)
    except OSError:
        lock_path.unlink(missing_ok=True)
        raise


def _marker_stat(lock_path: Path) -> os.stat_result | None:
    try:
        return lock_path.stat()
    except FileNotFoundError:
        return None


def _break_stale_marker(lock_path: Path, observed: os.stat_result) -> None:
    """Remove *lock_path* unless it was replaced since *observed* was taken."""
    current = _marker_stat(lock_path)
    if current is None:
        return
    if (current.st_ino, current.st_mtime_ns) != (observed.st_ino, observed.st_mtime_ns):
        return
    try:
        lock_path.unlink()
    except FileNotFoundError:
        pass


def acquire_lock(
    path: Path | str,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    stale_ms: int = DEFAULT_STALE_MS,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
) -> bool:
    """Try to take the lock guarding *path*.

    Args:
        path: Document path the lock protects.
        timeout_ms: How long to keep retrying while another holder is live.
            ``0`` means a single attempt.
        stale_ms: Age after which an existing marker is presumed abandoned.
        poll_interval_ms: Sleep between attempts.

    Returns:
        ``True`` if the lock is now held by this process, ``False`` on timeout
        or when the marker cannot be created at all.
    """
    lock_path = lock_path_for(path)
    deadline = time.monotonic() + max(timeout_ms, 0) / 1000
    poll_interval = max(poll_interval_ms, 1) / 1000
    broke_stale = False

    while True:
        try:
            _create_marker(lock_path)
            return True
        except FileExistsError:
            pass
        except OSError as exc:
            logger.warning("Cannot create lock marker %s: %s", lock_path, exc)
            return False

        observed = _marker_stat(lock_path)
        if observed is not None and not broke_stale:
            age_ms = (time.time() - observed.st_mtime) * 1000
            if age_ms > stale_ms:
                logger.warning("Breaking stale lock %s (age %.0fms)", lock_path, age_ms)
                broke_stale = True
                try:
                    _break_stale_marker(lock_path, observed)
                except OSError as exc:
                    logger.warning("Cannot remove stale lock %s: %s", lock_path, exc)
                    return False
                continue

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug("Timed out after %dms waiting for %s", timeout_ms, lock_path)
            return False
        if observed is not None:
            time.sleep(min(poll_interval, remaining))


def release_lock(path: Path | str) -> None:
    """Release the lock guarding *path* if this process holds it.

    Missing markers are ignored. Markers owned by another process, or whose
    owner cannot be read, are left for their holder or for stale-lock
    recovery.
    """
    lock_path = lock_path_for(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read lock marker %s: %s", lock_path, exc)
        return

    try:
        info = json.loads(raw)
    except json.JSONDecodeError:
        info = None
    if not isinstance(info, dict):
        logger.warning("Lock marker %s has no readable owner; leaving it in place", lock_path)
        return

    if info.get("pid") != os.getpid() or info.get("host") != socket.gethostname():
        logger.warning(
            "Not releasing lock %s held by pid %s on %s", lock_path, info.get("pid"), info.get("host")
        )
        return

    try:
        lock_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Cannot remove lock marker %s: %s", lock_path, exc)


@contextmanager
def document_lock(
    path: Path | str,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    stale_ms: int = DEFAULT_STALE_MS,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
) -> Iterator[bool]:
    """Hold the lock guarding *path* for the duration of the context.

    Yields whether the lock was acquired; callers skip their critical section
    when it was not. The lock is released on exit only if it was acquired.
    """
    acquired = acquire_lock(
        path,
        timeout_ms=timeout_ms,
        stale_ms=stale_ms,
        poll_interval_ms=poll_interval_ms,
    )
    try:
        yield acquired
    finally:
        if acquired:
            release_lock(path)
