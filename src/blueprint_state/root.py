"""State-root discovery.

The state-root is a single ``.blueprint`` directory per project. A project is
recognised by an existing state-root or a ``.git`` directory in the start
directory or any of its ancestors; the nearest such ancestor wins.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR_NAME = ".blueprint"
VCS_MARKER = ".git"


def find_project_root(start_dir: Path | str, *, dir_name: str = DEFAULT_STATE_DIR_NAME) -> Path | None:
    """Return the nearest ancestor of *start_dir* carrying a project marker, or ``None``."""
    start = Path(os.path.abspath(Path(start_dir).expanduser()))
    for candidate in (start, *start.parents):
        if (candidate / dir_name).exists() or (candidate / VCS_MARKER).exists():
            return candidate
    return None


def resolve_state_root(start_dir: Path | str, *, dir_name: str = DEFAULT_STATE_DIR_NAME) -> Path:
    """Return the project's state-root directory, creating it if needed.

    Falls back to ``<start_dir>/<dir_name>`` when no ancestor carries a
    marker, so resolution succeeds even outside a managed tree.

    Args:
        start_dir: Directory to start searching from.
        dir_name: Name of the state-root directory.

    Returns:
        Absolute path of the state-root.

    Raises:
        OSError: If the state-root directory cannot be created.
    """
    start = Path(os.path.abspath(Path(start_dir).expanduser()))
    project_root = find_project_root(start, dir_name=dir_name)
    if project_root is None:
        logger.debug("No project marker above %s; using it as the project root", start)
        project_root = start

    state_root = project_root / dir_name
    state_root.mkdir(parents=True, exist_ok=True)
    return state_root
