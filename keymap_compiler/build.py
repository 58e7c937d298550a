"""
Module containing the BuildOrchestrator class, which writes generated sources into a QMK tree,
runs the firmware build as a child process on a background thread and streams its output, with
support for cancelling a running build.
"""

import logging
import os
import queue
import signal
import subprocess
import threading
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator

from keymap_compiler.config import BuildConfig
from keymap_compiler.generate import Artifacts

logger = logging.getLogger(__name__)


class BuildStatus(Enum):
    """States of a build attempt."""

    IDLE = "idle"
    VALIDATING = "validating"
    GENERATING = "generating"
    COMPILING = "compiling"
    SUCCESS = "success"
    FAILED = "failed"


class LogLevel(Enum):
    """Level of a build log line."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class BuildErrorKind(Enum):
    """Why a build attempt failed."""

    SETUP = "setup"  # the build could not be prepared, e.g. invalid artifacts or no QMK home
    SPAWN = "spawn"  # the toolchain process could not be started
    EXIT = "exit"  # the toolchain exited with a non-zero code


class BuildError(Exception):
    """Failure of a build attempt, delivered in its BuildComplete message along with the captured log."""

    def __init__(
        self, kind: BuildErrorKind, message: str, exit_code: int | None = None, log: list[str] | None = None
    ):
        self.kind = kind
        self.message = message
        self.exit_code = exit_code
        self.log = log if log is not None else []
        super().__init__(message)


class BuildInProgressError(Exception):
    """Raised when a build is requested while another one is still active."""


@dataclass(frozen=True)
class BuildProgress:
    """State transition of a build."""

    build_id: int
    status: BuildStatus
    message: str


@dataclass(frozen=True)
class BuildLog:
    """One line of toolchain output."""

    build_id: int
    level: LogLevel
    line: str


@dataclass(frozen=True)
class BuildComplete:
    """Terminal message of a build that was not cancelled."""

    build_id: int
    status: BuildStatus
    exit_code: int | None = None
    firmware_path: Path | None = None
    error: BuildError | None = None

    @property
    def success(self) -> bool:
        """Whether the build succeeded."""
        return self.status == BuildStatus.SUCCESS


BuildMessage = BuildProgress | BuildLog | BuildComplete


@dataclass(eq=False)
class BuildHandle:
    """Caller's view of one build attempt: its identity and its ordered stream of messages."""

    build_id: int
    keyboard: str
    keymap: str
    log: list[str] = field(default_factory=list)
    process: subprocess.Popen | None = None
    _queue: queue.Queue = field(default_factory=queue.Queue, repr=False)
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    _finished: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        """Whether the build was cancelled."""
        return self._cancelled.is_set()

    @property
    def finished(self) -> bool:
        """Whether the build completed or was cancelled; remaining messages may still be queued."""
        return self._finished.is_set()

    def put(self, message: BuildMessage) -> None:
        """Deliver a message to the consumer."""
        self._queue.put(message)

    def poll(self) -> list[BuildMessage]:
        """Return all messages received so far without blocking."""
        out = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out

    def messages(self, poll_interval: float = 0.1) -> Iterator[BuildMessage]:
        """Yield messages in order until the build completes or is cancelled."""
        while True:
            try:
                message = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                if self.finished and self._queue.empty():
                    return
                continue
            yield message
            if isinstance(message, BuildComplete):
                return

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the build completes or is cancelled, return False on timeout."""
        return self._finished.wait(timeout)


class BuildOrchestrator:
    """
    Runs at most one build at a time. `start_build` and `cancel_build` can be called from any thread;
    the toolchain output is drained on a dedicated thread per build.
    """

    def __init__(self, config: BuildConfig | None = None):
        self.cfg = config if config is not None else BuildConfig()
        self._lock = threading.Lock()
        self._status = BuildStatus.IDLE
        self._active: BuildHandle | None = None
        self._next_id = 1
        self.last_status: BuildStatus | None = None

    @property
    def status(self) -> BuildStatus:
        """Current build state."""
        with self._lock:
            return self._status

    @property
    def active_build(self) -> BuildHandle | None:
        """Handle of the running build, if any."""
        with self._lock:
            return self._active

    def __enter__(self) -> "BuildOrchestrator":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_active", None) is not None:
            self.close()

    def close(self) -> None:
        """Kill the running build, if any."""
        if (handle := self.active_build) is not None:
            self.cancel_build(handle)

    def keymap_dir(self, artifacts: Artifacts) -> Path:
        """Directory inside the QMK tree that receives the generated sources."""
        assert self.cfg.qmk_home is not None
        return self.cfg.qmk_home / "keyboards" / artifacts.keyboard / "keymaps" / artifacts.keymap

    def command(self, artifacts: Artifacts) -> list[str]:
        """Toolchain command line for the artifacts' keyboard and keymap."""
        return [
            part.replace("{keyboard}", artifacts.keyboard).replace("{keymap}", artifacts.keymap)
            for part in self.cfg.command
        ]

    def classify(self, line: str) -> LogLevel:
        """Infer the level of a toolchain output line."""
        if any(marker in line for marker in self.cfg.error_markers):
            return LogLevel.ERROR
        if any(marker in line for marker in self.cfg.success_markers):
            return LogLevel.SUCCESS
        return LogLevel.INFO

    def find_firmware(self, keyboard: str, keymap: str) -> Path | None:
        """Locate the firmware file produced by a successful build."""
        if self.cfg.qmk_home is None:
            return None
        stem = f"{keyboard.replace('/', '_')}_{keymap}"
        for directory in (self.cfg.qmk_home / ".build", self.cfg.qmk_home):
            for ext in self.cfg.firmware_extensions:
                if (path := directory / f"{stem}{ext}").is_file():
                    return path
        return None

    def _transition(self, handle: BuildHandle, status: BuildStatus, message: str) -> bool:
        """Move the active build to `status`, return False if the build is no longer active."""
        with self._lock:
            if self._active is not handle:
                return False
            self._status = status
            handle.put(BuildProgress(handle.build_id, status, message))
        logger.debug("build %d: %s", handle.build_id, message)
        return True

    def _complete(self, handle: BuildHandle, exit_code: int | None, error: BuildError | None = None) -> None:
        status = BuildStatus.FAILED if error is not None else BuildStatus.SUCCESS
        firmware = self.find_firmware(handle.keyboard, handle.keymap) if error is None else None
        with self._lock:
            if self._active is not handle:
                return
            handle.put(BuildProgress(handle.build_id, status, error.message if error else "Build succeeded"))
            handle.put(BuildComplete(handle.build_id, status, exit_code, firmware, error))
            self.last_status = status
            self._status = BuildStatus.IDLE
            self._active = None
            handle._finished.set()  # pylint: disable=protected-access
        if error is not None:
            logger.debug("build %d failed: %s", handle.build_id, error.message)

    def start_build(self, artifacts: Artifacts) -> BuildHandle:
        """
        Validate the artifacts, write them into the QMK tree and start compiling in the background.
        Raises BuildInProgressError if another build is active; every other failure is reported as
        a FAILED BuildComplete message on the returned handle.
        """
        with self._lock:
            if self._active is not None:
                raise BuildInProgressError("Build already in progress")
            handle = BuildHandle(self._next_id, artifacts.keyboard, artifacts.keymap)
            self._next_id += 1
            self._active = handle

        if not self._transition(handle, BuildStatus.VALIDATING, "Validating layout"):
            return handle
        if not artifacts.report.is_valid:
            self._complete(handle, None, BuildError(BuildErrorKind.SETUP, "Layout has validation errors"))
            return handle
        if self.cfg.qmk_home is None or not self.cfg.qmk_home.is_dir():
            self._complete(
                handle, None, BuildError(BuildErrorKind.SETUP, f"QMK home {self.cfg.qmk_home} is not a directory")
            )
            return handle

        if not self._transition(handle, BuildStatus.GENERATING, "Writing firmware sources"):
            return handle
        try:
            artifacts.write(self.keymap_dir(artifacts))
        except OSError as err:
            self._complete(handle, None, BuildError(BuildErrorKind.SETUP, f"Could not write sources: {err}"))
            return handle

        if not (cmd := self.command(artifacts)):
            self._complete(handle, None, BuildError(BuildErrorKind.SPAWN, "Build command is empty"))
            return handle
        if not self._transition(handle, BuildStatus.COMPILING, f"Running {' '.join(cmd)}"):
            return handle
        threading.Thread(target=self._run, args=(handle, cmd), name=f"build-{handle.build_id}", daemon=True).start()
        return handle

    def _run(self, handle: BuildHandle, cmd: list[str]) -> None:
        try:
            proc = subprocess.Popen(  # pylint: disable=consider-using-with
                cmd,
                cwd=self.cfg.qmk_home,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as err:
            # ValueError covers arguments Popen rejects before spawning, e.g. embedded null bytes
            self._complete(
                handle, None, BuildError(BuildErrorKind.SPAWN, f"Could not start build command {cmd[0]!r}: {err}")
            )
            return

        with self._lock:
            handle.process = proc
            cancelled = handle.cancelled
        if cancelled:
            _kill(proc)

        assert proc.stdout is not None
        with proc.stdout:
            for raw in proc.stdout:
                if handle.cancelled:
                    continue
                line = raw.rstrip("\r\n")
                handle.log.append(line)
                handle.put(BuildLog(handle.build_id, self.classify(line), line))
        exit_code = proc.wait()

        if exit_code == 0:
            self._complete(handle, exit_code)
        else:
            self._complete(
                handle,
                exit_code,
                BuildError(BuildErrorKind.EXIT, f"Build failed with exit code {exit_code}", exit_code, handle.log),
            )

    def cancel_build(self, handle: BuildHandle) -> bool:
        """
        Kill the build's process and go back to IDLE. No completion message is delivered for a cancelled
        build. Returns False if the build was not active.
        """
        with self._lock:
            if self._active is not handle:
                return False
            handle._cancelled.set()  # pylint: disable=protected-access
            self._active = None
            self._status = BuildStatus.IDLE
            proc = handle.process
            handle._finished.set()  # pylint: disable=protected-access
        if proc is not None:
            _kill(proc)
        logger.info("build %d cancelled", handle.build_id)
        return True


def _kill(proc: subprocess.Popen) -> None:
    """Kill the process along with its process group, so that toolchain children die with it."""
    if proc.poll() is None:
        if os.name == "posix":
            with suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    proc.wait()
