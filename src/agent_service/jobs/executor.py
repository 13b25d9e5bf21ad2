"""Run one shell command to completion and capture its output as log lines."""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import IO

logger = logging.getLogger(__name__)

STDOUT_TAG = "[stdout]"
STDERR_TAG = "[stderr]"
SYSTEM_TAG = "[system]"
_TERMINATE_GRACE_SECONDS = 2.0
_READER_JOIN_SECONDS = 2.0
_POLL_SECONDS = 0.1


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one command execution."""

    success: bool
    logs: list[str] = field(default_factory=list)
    exit_code: int | None = None
    signal_name: str | None = None
    timed_out: bool = False
    duration_seconds: float = 0.0


class CommandExecutor:
    """Execute shell commands with a timeout; never raises."""

    def __init__(self, *, shell_executable: str | None = None) -> None:
        self.shell_executable = shell_executable

    def execute(self, command: str, timeout_seconds: float) -> ExecutionResult:
        logs: list[str] = []
        started = time.monotonic()
        logger.info("Executing command: %s", command)

        try:
            process = subprocess.Popen(  # noqa: S602
                command,
                shell=True,
                executable=self.shell_executable,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=os.name != "nt",
            )
        except (OSError, ValueError) as error:
            logs.append(f"{SYSTEM_TAG} Execution error: {error}")
            logger.error("Command execution error: %s", error)
            return ExecutionResult(
                success=False,
                logs=logs,
                duration_seconds=time.monotonic() - started,
            )

        lines: queue.Queue[tuple[str, str]] = queue.Queue()
        readers = [
            _start_reader(process.stdout, STDOUT_TAG, lines),
            _start_reader(process.stderr, STDERR_TAG, lines),
        ]
        timed_out = _pump_until_exit(
            process=process,
            readers=readers,
            lines=lines,
            sink=logs.append,
            deadline=started + timeout_seconds,
        )
        for reader in readers:
            reader.join(timeout=_READER_JOIN_SECONDS)
        if any(reader.is_alive() for reader in readers):
            _send_signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            for reader in readers:
                reader.join(timeout=_READER_JOIN_SECONDS)
        _drain(lines, logs.append)

        returncode = process.returncode
        duration = time.monotonic() - started
        if returncode is not None and returncode < 0:
            signal_name = _signal_name(-returncode)
            logs.append(f"{SYSTEM_TAG} Process terminated by signal: {signal_name}")
            logger.warning(
                "Command terminated by signal %s after %.0fms%s",
                signal_name,
                duration * 1000,
                " (timeout)" if timed_out else "",
            )
            return ExecutionResult(
                success=False,
                logs=logs,
                signal_name=signal_name,
                timed_out=timed_out,
                duration_seconds=duration,
            )

        if timed_out:
            # Windows has no signal status; report the forced termination the same way.
            logs.append(f"{SYSTEM_TAG} Process terminated by signal: SIGTERM")
            return ExecutionResult(
                success=False,
                logs=logs,
                exit_code=returncode,
                signal_name="SIGTERM",
                timed_out=True,
                duration_seconds=duration,
            )

        logs.append(f"{SYSTEM_TAG} Process exited with code: {returncode}")
        logger.info("Command completed with code %s after %.0fms", returncode, duration * 1000)
        return ExecutionResult(
            success=returncode == 0,
            logs=logs,
            exit_code=returncode,
            duration_seconds=duration,
        )


def _start_reader(
    stream: IO[bytes] | None,
    tag: str,
    lines: queue.Queue[tuple[str, str]],
) -> threading.Thread:
    def _read() -> None:
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    lines.put((tag, text))
        finally:
            stream.close()

    reader = threading.Thread(target=_read, daemon=True, name=f"executor-{tag.strip('[]')}")
    reader.start()
    return reader


def _pump_until_exit(
    *,
    process: subprocess.Popen[bytes],
    readers: list[threading.Thread],
    lines: queue.Queue[tuple[str, str]],
    sink: Callable[[str], None],
    deadline: float,
) -> bool:
    """Forward output lines in arrival order until the process exits; True on timeout.

    Once the shell has exited, leftover members of its process group get
    ``_READER_JOIN_SECONDS`` to close stdout/stderr before they are killed.
    """

    exited_at: float | None = None
    while True:
        now = time.monotonic()
        if process.poll() is not None:
            if not any(reader.is_alive() for reader in readers):
                return False
            if exited_at is None:
                exited_at = now
            elif now - exited_at >= _READER_JOIN_SECONDS or now >= deadline:
                logger.warning(
                    "Command exited but background processes of pid %d keep its output open, "
                    "killing them",
                    process.pid,
                )
                _send_signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
                return False
        elif now >= deadline:
            logger.warning("Command exceeded timeout, terminating pid %d", process.pid)
            _terminate_process(process)
            return True
        try:
            item = lines.get(timeout=_POLL_SECONDS)
        except queue.Empty:
            continue
        tag, text = item
        sink(f"{tag} {text}")


def _drain(lines: queue.Queue[tuple[str, str]], sink: Callable[[str], None]) -> None:
    while True:
        try:
            item = lines.get_nowait()
        except queue.Empty:
            return
        tag, text = item
        sink(f"{tag} {text}")


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    _send_signal(process, signal.SIGTERM)
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        _send_signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        try:
            process.wait(timeout=_TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.error("Process %d did not exit after SIGKILL", process.pid)


def _send_signal(process: subprocess.Popen[bytes], signum: int) -> None:
    try:
        if os.name == "nt":
            process.terminate()
        else:
            os.killpg(process.pid, signum)
    except OSError:
        return


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
