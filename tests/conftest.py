from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import pytest


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project tree recognised through its ``.git`` marker."""
    root = tmp_path / "project"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def state_root(project_dir: Path) -> Path:
    root = project_dir / ".blueprint"
    root.mkdir()
    return root


@pytest.fixture
def ticking_clock() -> Callable[[], datetime]:
    """Clock that advances one second per call, starting at a fixed instant."""
    current = [datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)]

    def _tick() -> datetime:
        current[0] += timedelta(seconds=1)
        return current[0]

    return _tick


def put_document(directory: Path, name: str, payload: Any) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def load(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))
