"""Host hook entry points.

Two hooks drive the lifecycle engine:

* the phase tracker runs after every tool call and records activity on active
  cycles and pipeline runs when the tool indicates real progress;
* cycle finalize runs when the session stops and suspends everything that is
  still active.

Both read one JSON payload from stdin with a bounded wait and always answer
``{"continue": true}``: a broken or busy state store must never block the
host session.
"""

from __future__ import annotations

import logging
import os
import selectors
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Callable

from pydantic import ValidationError

from .lifecycle import LifecycleEngine
from .models import ACTIVITY_KINDS, ALL_KINDS, DocumentKind, HookInput, HookResult, SuspensionSummary
from .root import DEFAULT_STATE_DIR_NAME, VCS_MARKER, resolve_state_root
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

TRACKED_TOOLS: frozenset[str] = frozenset({"Task", "Write", "Edit", "Bash"})
PROJECT_SETTINGS_FILENAME = ".blueprint.env"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_READ_CHUNK = 65536


def read_hook_input(stream: IO[Any] | None = None, *, timeout_ms: int = 5_000) -> str:
    """Read the hook payload, giving up after *timeout_ms*.

    Whatever arrived before the deadline is returned. A read error yields an
    empty string.
    """
    source = stream if stream is not None else sys.stdin
    if source is None:
        return ""
    try:
        fd = source.fileno()
    except (AttributeError, OSError, ValueError):
        return _read_unbounded(source)

    chunks: list[bytes] = []
    deadline = time.monotonic() + max(timeout_ms, 0) / 1000
    try:
        with selectors.DefaultSelector() as selector:
            try:
                selector.register(fd, selectors.EVENT_READ)
            except (OSError, ValueError):
                # Regular files cannot be polled but never block either.
                return _read_unbounded(source)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.debug("Hook input not closed after %dms; using %d byte(s)", timeout_ms, sum(map(len, chunks)))
                    break
                if not selector.select(remaining):
                    continue
                chunk = os.read(fd, _READ_CHUNK)
                if not chunk:
                    break
                chunks.append(chunk)
    except OSError as exc:
        logger.warning("Cannot read hook input: %s", exc)
        return ""
    return b"".join(chunks).decode("utf-8", errors="replace")


def _read_unbounded(source: IO[Any]) -> str:
    try:
        data = source.read()
    except (OSError, ValueError) as exc:
        logger.warning("Cannot read hook input: %s", exc)
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data or ""


def parse_hook_input(raw: str) -> HookInput:
    """Parse the hook payload, treating anything malformed as an empty payload."""
    if not raw.strip():
        return HookInput()
    try:
        return HookInput.model_validate_json(raw)
    except ValidationError as exc:
        logger.debug("Ignoring malformed hook input: %s", exc)
        return HookInput()


def project_settings_dir(start_dir: Path | str) -> Path:
    """Return the directory whose settings file applies to *start_dir*.

    The nearest ancestor holding a settings file, a state-root or a VCS marker
    wins, so every subdirectory of a project reads the same file.
    """
    start = Path(os.path.abspath(Path(start_dir).expanduser()))
    for candidate in (start, *start.parents):
        markers = (PROJECT_SETTINGS_FILENAME, DEFAULT_STATE_DIR_NAME, VCS_MARKER)
        if any((candidate / marker).exists() for marker in markers):
            return candidate
    return start


def load_settings(start_dir: Path | str | None = None) -> RuntimeSettings:
    """Load settings, falling back to defaults when the configuration is invalid.

    With *start_dir*, the project's ``.blueprint.env`` (if any) is layered
    under the process environment.
    """
    env_file = project_settings_dir(start_dir) / PROJECT_SETTINGS_FILENAME if start_dir is not None else None
    try:
        return RuntimeSettings.from_env(env_file)
    except ValueError as exc:
        logger.warning("Invalid configuration, using defaults: %s", exc)
        return RuntimeSettings()


def _engine_for(hook_input: HookInput, clock: Callable[[], datetime] | None) -> LifecycleEngine | None:
    working_dir = hook_input.working_directory()
    settings = load_settings(working_dir)
    try:
        state_root = resolve_state_root(working_dir, dir_name=settings.state_dir_name)
    except OSError as exc:
        logger.warning("Cannot resolve state root from %s: %s", working_dir, exc)
        return None
    return LifecycleEngine(state_root, settings=settings, clock=clock)


def handle_activity(raw: str, *, clock: Callable[[], datetime] | None = None) -> dict[DocumentKind, int]:
    """Record activity for a post-tool-use payload.

    Returns:
        Documents touched per kind; empty when the payload is ignored.
    """
    if not raw.strip():
        return {}
    hook_input = parse_hook_input(raw)
    if (hook_input.tool_name or "") not in TRACKED_TOOLS:
        logger.debug("Ignoring untracked tool %r", hook_input.tool_name)
        return {}
    engine = _engine_for(hook_input, clock)
    if engine is None:
        return {}
    return engine.record_activity(ACTIVITY_KINDS)


def handle_finalize(raw: str, *, clock: Callable[[], datetime] | None = None) -> SuspensionSummary | None:
    """Suspend all active documents for a session-stop payload.

    Returns:
        The written summary, or ``None`` if no state-root could be resolved.
    """
    engine = _engine_for(parse_hook_input(raw), clock)
    if engine is None:
        return None
    return engine.finalize(ALL_KINDS)


def configure_logging(settings: RuntimeSettings) -> None:
    logging.basicConfig(level=settings.log_level_value, format=LOG_FORMAT, stream=sys.stderr)


def run_hook(
    handler: Callable[[str], object],
    *,
    hook_name: str,
    input_timeout_ms: int,
    stdin: IO[Any] | None = None,
    stdout: IO[str] | None = None,
) -> int:
    """Run *handler* on the hook payload behind a fail-open boundary.

    Exactly one ``{"continue": true}`` object is written to *stdout* whatever
    happens inside the handler.
    """
    out = stdout if stdout is not None else sys.stdout
    try:
        raw = read_hook_input(stdin, timeout_ms=input_timeout_ms)
        handler(raw)
    except Exception:  # noqa: BLE001
        logger.exception("[%s] hook failed; allowing the session to continue", hook_name)
    out.write(HookResult().to_json() + "\n")
    out.flush()
    return 0


def phase_tracker_main() -> int:
    """Console entry point for the post-tool-use hook."""
    settings = load_settings()
    configure_logging(settings)
    return run_hook(
        handle_activity,
        hook_name="phase-tracker",
        input_timeout_ms=settings.activity_input_timeout_ms,
    )


def cycle_finalize_main() -> int:
    """Console entry point for the session-stop hook."""
    settings = load_settings()
    configure_logging(settings)
    return run_hook(
        handle_finalize,
        hook_name="cycle-finalize",
        input_timeout_ms=settings.finalize_input_timeout_ms,
    )
