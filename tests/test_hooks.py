from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

import pytest
from conftest import load, put_document

from blueprint_state.hooks import (
    handle_activity,
    handle_finalize,
    load_settings,
    parse_hook_input,
    project_settings_dir,
    read_hook_input,
    run_hook,
)
from blueprint_state.lifecycle import SUMMARY_FILENAME
from blueprint_state.models import DocumentKind
from blueprint_state.settings import RuntimeSettings

Clock = Callable[[], datetime]

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture
def tracked_project(project_dir: Path) -> dict[str, Path]:
    state_root = project_dir / ".blueprint"
    return {
        "cycle": put_document(state_root / "pdca" / "cycles", "c1.json", {"status": "active", "activityCount": 3}),
        "run": put_document(state_root / "pipeline" / "runs", "r1.json", {"status": "running"}),
        "analysis": put_document(state_root / "gaps" / "analyses", "g1.json", {"status": "active"}),
    }


def _payload(project_dir: Path, **fields: object) -> str:
    return json.dumps({"cwd": str(project_dir), **fields})


def test_parse_hook_input_accepts_both_tool_name_spellings(tmp_path: Path) -> None:
    assert parse_hook_input('{"tool_name": "Edit"}').tool_name == "Edit"
    assert parse_hook_input('{"toolName": "Bash", "extra": 1}').tool_name == "Bash"
    assert parse_hook_input(json.dumps({"directory": str(tmp_path)})).working_directory() == tmp_path


@pytest.mark.parametrize("raw", ["", "   ", "not json", "[1, 2]", "null", '{"cwd": 5}'])
def test_parse_hook_input_treats_malformed_payload_as_empty(raw: str) -> None:
    parsed = parse_hook_input(raw)
    assert parsed.cwd is None
    assert parsed.tool_name is None


def test_working_directory_defaults_to_process_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert parse_hook_input("{}").working_directory() == Path(os.getcwd())


def test_activity_for_tracked_tool_touches_cycles_and_runs_only(
    project_dir: Path, tracked_project: dict[str, Path], ticking_clock: Clock
) -> None:
    counts = handle_activity(_payload(project_dir, tool_name="Write"), clock=ticking_clock)

    assert counts == {DocumentKind.CYCLE: 1, DocumentKind.PIPELINE_RUN: 1}
    assert load(tracked_project["cycle"])["activityCount"] == 4
    assert load(tracked_project["run"])["activityCount"] == 1
    assert "activityCount" not in load(tracked_project["analysis"])


def test_activity_from_subdirectory_reaches_project_state(
    project_dir: Path, tracked_project: dict[str, Path], ticking_clock: Clock
) -> None:
    nested = project_dir / "src" / "module"
    nested.mkdir(parents=True)

    handle_activity(_payload(nested, toolName="Task"), clock=ticking_clock)

    assert load(tracked_project["cycle"])["activityCount"] == 4
    assert not (nested / ".blueprint").exists()


@pytest.mark.parametrize("tool_name", ["Read", "Grep", "write", None])
def test_untracked_tools_leave_state_untouched(
    project_dir: Path, tracked_project: dict[str, Path], tool_name: str | None
) -> None:
    before = {name: path.read_bytes() for name, path in tracked_project.items()}

    assert handle_activity(_payload(project_dir, tool_name=tool_name)) == {}

    assert {name: path.read_bytes() for name, path in tracked_project.items()} == before


def test_empty_activity_payload_is_ignored(project_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(project_dir)
    assert handle_activity("") == {}
    assert not (project_dir / ".blueprint").exists()


def test_finalize_suspends_everything_and_writes_summary(
    project_dir: Path, tracked_project: dict[str, Path], ticking_clock: Clock
) -> None:
    summary = handle_finalize(_payload(project_dir), clock=ticking_clock)

    assert summary is not None
    assert (summary.suspended_cycles, summary.suspended_runs, summary.suspended_gaps) == (1, 1, 1)
    assert load(tracked_project["cycle"])["status"] == "suspended"
    assert load(tracked_project["run"])["status"] == "paused"
    assert load(tracked_project["analysis"])["status"] == "suspended"
    assert load(project_dir / ".blueprint" / SUMMARY_FILENAME)["totalSuspended"] == 3


def test_finalize_without_payload_uses_process_cwd(
    project_dir: Path, tracked_project: dict[str, Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(project_dir)
    summary = handle_finalize("")
    assert summary is not None
    assert summary.total_suspended == 3


def test_project_env_file_configures_state_dir(project_dir: Path, ticking_clock: Clock) -> None:
    (project_dir / ".blueprint.env").write_text("BLUEPRINT_STATE_DIR_NAME=.state\n", encoding="utf-8")
    cycle = put_document(project_dir / ".state" / "pdca" / "cycles", "c1.json", {"status": "active"})

    handle_activity(_payload(project_dir, tool_name="Edit"), clock=ticking_clock)

    assert load(cycle)["activityCount"] == 1


def test_load_settings_falls_back_to_defaults_on_invalid_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLUEPRINT_LOCK_TIMEOUT_MS", "soon")
    assert load_settings() == RuntimeSettings()


def test_run_hook_always_answers_continue_when_handler_fails() -> None:
    def broken(raw: str) -> None:
        raise RuntimeError(f"cannot handle {raw!r}")

    stdout = io.StringIO()
    exit_code = run_hook(broken, hook_name="test", input_timeout_ms=100, stdin=io.StringIO("{}"), stdout=stdout)

    assert exit_code == 0
    assert stdout.getvalue() == '{"continue":true}\n'


def test_run_hook_passes_payload_to_handler() -> None:
    received: list[str] = []
    stdout = io.StringIO()

    run_hook(received.append, hook_name="test", input_timeout_ms=100, stdin=io.StringIO('{"cwd": "/x"}'), stdout=stdout)

    assert received == ['{"cwd": "/x"}']
    assert json.loads(stdout.getvalue()) == {"continue": True}


def test_read_hook_input_returns_partial_payload_when_writer_stays_open() -> None:
    read_fd, write_fd = os.pipe()
    os.write(write_fd, b'{"tool_name": ')
    try:
        with os.fdopen(read_fd, "rb") as reader:
            start = time.monotonic()
            assert read_hook_input(reader, timeout_ms=150) == '{"tool_name": '
            assert time.monotonic() - start < 5
    finally:
        os.close(write_fd)


def test_read_hook_input_reads_until_eof() -> None:
    read_fd, write_fd = os.pipe()
    os.write(write_fd, b'{"cwd": "/tmp"}')
    os.close(write_fd)
    with os.fdopen(read_fd, "rb") as reader:
        assert read_hook_input(reader, timeout_ms=1_000) == '{"cwd": "/tmp"}'


def _run_cli(args: list[str], stdin: str, cwd: Path) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
    for name in list(env):
        if name.startswith("BLUEPRINT_"):
            del env[name]
    return subprocess.run(
        [sys.executable, "-m", "blueprint_state", *args],
        input=stdin,
        capture_output=True,
        text=True,
        cwd=cwd,
        env=env,
        timeout=30,
        check=False,
    )


def test_cli_hooks_end_to_end(project_dir: Path, tracked_project: dict[str, Path]) -> None:
    activity = _run_cli(["activity"], _payload(project_dir, tool_name="Bash"), project_dir)
    assert activity.returncode == 0
    assert json.loads(activity.stdout) == {"continue": True}
    assert load(tracked_project["cycle"])["activityCount"] == 4

    finalize = _run_cli(["finalize"], _payload(project_dir), project_dir)
    assert finalize.returncode == 0
    assert json.loads(finalize.stdout) == {"continue": True}
    assert load(tracked_project["run"])["status"] == "paused"

    inspect = _run_cli(["inspect"], "", project_dir)
    assert inspect.returncode == 0
    report = json.loads(inspect.stdout)
    assert report["documents"] == {
        "cycle": {"suspended": 1},
        "pipeline_run": {"paused": 1},
        "analysis": {"suspended": 1},
    }
    assert report["lastSuspension"]["totalSuspended"] == 3


def test_cli_hook_answers_continue_on_garbage_input(project_dir: Path, tracked_project: dict[str, Path]) -> None:
    before = tracked_project["cycle"].read_bytes()

    result = _run_cli(["activity"], "\x00garbage{", project_dir)

    assert result.returncode == 0
    assert json.loads(result.stdout) == {"continue": True}
    assert tracked_project["cycle"].read_bytes() == before


def test_cli_inspect_does_not_create_state(tmp_path: Path) -> None:
    loose = tmp_path / "loose"
    loose.mkdir()

    result = _run_cli(["inspect", "--cwd", str(loose)], "", tmp_path)

    assert result.returncode == 0
    report = json.loads(result.stdout)
    assert report["lastSuspension"] is None
    assert all(statuses == {} for statuses in report["documents"].values())
    assert list(loose.iterdir()) == []


def test_project_env_file_applies_from_subdirectories(project_dir: Path, ticking_clock: Clock) -> None:
    (project_dir / ".blueprint.env").write_text("BLUEPRINT_STATE_DIR_NAME=.state\n", encoding="utf-8")
    cycle = put_document(project_dir / ".state" / "pdca" / "cycles", "c1.json", {"status": "active"})
    nested = project_dir / "src" / "module"
    nested.mkdir(parents=True)

    assert project_settings_dir(nested) == project_dir
    handle_activity(_payload(nested, tool_name="Edit"), clock=ticking_clock)

    assert load(cycle)["activityCount"] == 1
    assert not (project_dir / ".blueprint").exists()
    assert not (nested / ".state").exists()


def test_project_settings_dir_falls_back_to_start(tmp_path: Path) -> None:
    loose = tmp_path / "loose"
    loose.mkdir()
    assert project_settings_dir(loose) in {loose, *loose.parents}


def test_cli_inspect_reads_project_env_file(project_dir: Path) -> None:
    (project_dir / ".blueprint.env").write_text("BLUEPRINT_STATE_DIR_NAME=.state\n", encoding="utf-8")
    put_document(project_dir / ".state" / "pdca" / "cycles", "c1.json", {"status": "active"})
    nested = project_dir / "docs"
    nested.mkdir()

    result = _run_cli(["inspect", "--cwd", str(nested)], "", project_dir)

    assert result.returncode == 0
    report = json.loads(result.stdout)
    assert report["stateRoot"] == str(project_dir / ".state")
    assert report["documents"]["cycle"] == {"active": 1}
