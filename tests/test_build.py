import sys
import time

import pytest

from keymap_compiler.build import (
    BuildComplete,
    BuildErrorKind,
    BuildInProgressError,
    BuildLog,
    BuildOrchestrator,
    BuildProgress,
    BuildStatus,
    LogLevel,
)
from keymap_compiler.config import BuildConfig
from keymap_compiler.generate import Artifacts, ValidationReport
from keymap_compiler.generate.validation import ValidationError, ValidationKind

TIMEOUT = 30


def artifacts() -> Artifacts:
    files = {"keymap.c": "// keymap\n", "config.h": "#pragma once\n"}
    return Artifacts(keyboard="test/board", keymap="km", files=files)


def orchestrator(qmk_home, script: str) -> BuildOrchestrator:
    return BuildOrchestrator(BuildConfig(qmk_home=qmk_home, command=[sys.executable, "-c", script]))


def collect(handle) -> list:
    messages = list(handle.messages())
    assert handle.wait(TIMEOUT)
    return messages


def test_success(tmp_path):
    script = (
        "import pathlib; print('Compiling keymap'); "
        "pathlib.Path('test_board_km.hex').write_text('fw'); print('[OK]')"
    )
    with orchestrator(tmp_path, script) as orch:
        handle = orch.start_build(artifacts())
        messages = collect(handle)

        statuses = [m.status for m in messages if isinstance(m, BuildProgress)]
        assert statuses == [BuildStatus.VALIDATING, BuildStatus.GENERATING, BuildStatus.COMPILING, BuildStatus.SUCCESS]
        logs = [(m.level, m.line) for m in messages if isinstance(m, BuildLog)]
        assert logs == [(LogLevel.INFO, "Compiling keymap"), (LogLevel.SUCCESS, "[OK]")]

        complete = messages[-1]
        assert isinstance(complete, BuildComplete) and complete.success
        assert complete.exit_code == 0
        assert complete.firmware_path == tmp_path / "test_board_km.hex"

        keymap_dir = tmp_path / "keyboards" / "test" / "board" / "keymaps" / "km"
        assert (keymap_dir / "keymap.c").read_text(encoding="utf-8") == "// keymap\n"
        assert orch.status == BuildStatus.IDLE
        assert orch.last_status == BuildStatus.SUCCESS
        assert orch.active_build is None


def test_failure_exit_code(tmp_path):
    script = "import sys; print('keymap.c:1: error: oops'); sys.exit(2)"
    with orchestrator(tmp_path, script) as orch:
        messages = collect(orch.start_build(artifacts()))
        assert BuildLog(1, LogLevel.ERROR, "keymap.c:1: error: oops") in messages
        complete = messages[-1]
        assert isinstance(complete, BuildComplete) and not complete.success
        assert complete.status == BuildStatus.FAILED
        assert complete.error.kind == BuildErrorKind.EXIT
        assert complete.error.exit_code == 2
        assert complete.error.log == ["keymap.c:1: error: oops"]
        assert orch.last_status == BuildStatus.FAILED


def test_spawn_failure(tmp_path):
    config = BuildConfig(qmk_home=tmp_path, command=[str(tmp_path / "no-such-toolchain")])
    with BuildOrchestrator(config) as orch:
        complete = collect(orch.start_build(artifacts()))[-1]
        assert complete.error.kind == BuildErrorKind.SPAWN
        assert orch.status == BuildStatus.IDLE


def test_missing_qmk_home(tmp_path):
    with orchestrator(tmp_path / "missing", "pass") as orch:
        messages = collect(orch.start_build(artifacts()))
        assert messages[-1].error.kind == BuildErrorKind.SETUP
        assert not (tmp_path / "missing").exists()


def test_invalid_artifacts_are_not_built(tmp_path):
    report = ValidationReport()
    report.add(ValidationError(ValidationKind.UNMAPPED_POSITION, "bad"))
    invalid = artifacts()
    invalid.report = report
    with orchestrator(tmp_path, "pass") as orch:
        messages = collect(orch.start_build(invalid))
        assert messages[-1].error.kind == BuildErrorKind.SETUP
        assert not (tmp_path / "keyboards").exists()


def test_one_build_at_a_time_and_cancel(tmp_path):
    script = "import time; print('started', flush=True); time.sleep(60)"
    with orchestrator(tmp_path, script) as orch:
        handle = orch.start_build(artifacts())
        with pytest.raises(BuildInProgressError, match="already in progress"):
            orch.start_build(artifacts())

        deadline = time.monotonic() + TIMEOUT
        while handle.process is None and time.monotonic() < deadline:
            time.sleep(0.01)
        proc = handle.process
        assert proc is not None

        assert orch.cancel_build(handle)
        assert not orch.cancel_build(handle)
        assert handle.cancelled and handle.finished
        assert orch.status == BuildStatus.IDLE
        assert proc.poll() is not None

        messages = collect(handle)
        assert not any(isinstance(m, BuildComplete) for m in messages)

        # the orchestrator accepts a new build right away
        orch.cfg.command = [sys.executable, "-c", "pass"]
        second = orch.start_build(artifacts())
        assert second.build_id == handle.build_id + 1
        assert collect(second)[-1].success


@pytest.mark.parametrize("command", [["make\0x"], []])
def test_rejected_command_fails_the_build(tmp_path, command):
    with BuildOrchestrator(BuildConfig(qmk_home=tmp_path, command=command)) as orch:
        handle = orch.start_build(artifacts())
        complete = collect(handle)[-1]
        assert isinstance(complete, BuildComplete) and not complete.success
        assert complete.error.kind == BuildErrorKind.SPAWN
        assert orch.status == BuildStatus.IDLE
        assert orch.active_build is None
