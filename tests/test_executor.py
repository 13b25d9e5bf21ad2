from __future__ import annotations

import sys
import time
from pathlib import Path

import allure
import pytest

from agent_service.jobs import CommandExecutor

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Command Execution"),
    pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell semantics"),
]


@pytest.fixture()
def executor() -> CommandExecutor:
    return CommandExecutor()


def test_successful_command_captures_tagged_output(executor: CommandExecutor) -> None:
    result = executor.execute("echo hello; echo oops >&2", timeout_seconds=10)

    assert result.success is True
    assert result.exit_code == 0
    assert result.timed_out is False
    assert "[stdout] hello" in result.logs
    assert "[stderr] oops" in result.logs
    assert result.logs[-1] == "[system] Process exited with code: 0"


def test_stdout_lines_keep_their_order(executor: CommandExecutor) -> None:
    result = executor.execute("printf 'one\\ntwo\\nthree\\n'", timeout_seconds=10)

    assert result.logs == [
        "[stdout] one",
        "[stdout] two",
        "[stdout] three",
        "[system] Process exited with code: 0",
    ]


def test_non_zero_exit_marks_failure(executor: CommandExecutor) -> None:
    result = executor.execute("echo partial; exit 3", timeout_seconds=10)

    assert result.success is False
    assert result.exit_code == 3
    assert result.logs == ["[stdout] partial", "[system] Process exited with code: 3"]


def test_blank_and_whitespace_only_lines_are_dropped(executor: CommandExecutor) -> None:
    result = executor.execute("printf 'x  \\n\\n   \\ny\\n'", timeout_seconds=10)

    assert result.logs[:-1] == ["[stdout] x", "[stdout] y"]


def test_invalid_utf8_is_replaced_not_raised(executor: CommandExecutor) -> None:
    result = executor.execute("printf 'ok\\377\\n'", timeout_seconds=10)

    assert result.success is True
    assert result.logs[0] == "[stdout] ok\ufffd"


def test_timeout_terminates_process_group(executor: CommandExecutor) -> None:
    result = executor.execute("echo started; sleep 30", timeout_seconds=0.5)

    assert result.success is False
    assert result.timed_out is True
    assert result.signal_name == "SIGTERM"
    assert result.exit_code is None
    assert result.logs[0] == "[stdout] started"
    assert result.logs[-1] == "[system] Process terminated by signal: SIGTERM"
    assert not any("Process exited with code" in line for line in result.logs)
    assert result.duration_seconds < 10


def test_command_killed_by_signal_reports_signal_name(executor: CommandExecutor) -> None:
    result = executor.execute("kill -KILL $$", timeout_seconds=10)

    assert result.success is False
    assert result.timed_out is False
    assert result.logs == ["[system] Process terminated by signal: SIGKILL"]


def test_spawn_failure_is_reported_as_system_log() -> None:
    result = CommandExecutor(shell_executable="/nonexistent/shell").execute(
        "echo never",
        timeout_seconds=10,
    )

    assert result.success is False
    assert len(result.logs) == 1
    assert result.logs[0].startswith("[system] Execution error: ")


def test_command_does_not_read_service_stdin(executor: CommandExecutor) -> None:
    result = executor.execute("cat; echo after", timeout_seconds=5)

    assert result.success is True
    assert result.logs == ["[stdout] after", "[system] Process exited with code: 0"]


def _process_alive(pid: int) -> bool:
    stat = Path(f"/proc/{pid}/stat")
    try:
        fields = stat.read_text().rsplit(")", 1)[1].split()
    except (FileNotFoundError, ProcessLookupError, IndexError):
        return False
    return fields[0] != "Z"


@pytest.mark.skipif(not Path("/proc/self/stat").exists(), reason="needs procfs")
def test_background_child_holding_output_open_is_killed(executor: CommandExecutor) -> None:
    result = executor.execute("sleep 30 & echo $!; echo hi", timeout_seconds=60)

    assert result.success is True
    assert result.timed_out is False
    assert result.duration_seconds < 10
    assert result.logs[1:] == ["[stdout] hi", "[system] Process exited with code: 0"]
    background_pid = int(result.logs[0].removeprefix("[stdout] "))
    deadline = time.monotonic() + 5
    while _process_alive(background_pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _process_alive(background_pid)
