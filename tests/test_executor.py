"""Tests for executor.py module.

These run real subprocesses using the current Python interpreter.
"""

import sys
import time
from pathlib import Path

import pytest

from bootc_release.errors import ToolNotFoundError
from bootc_release.executor import (
    CommandResult,
    Deadline,
    RunOptions,
    SubprocessExecutor,
    format_command,
    last_n_lines,
    require_commands,
    session_log_path,
)

PY = sys.executable


@pytest.fixture
def executor() -> SubprocessExecutor:
    return SubprocessExecutor()


class TestSubprocessExecutor:
    """Tests for SubprocessExecutor.run."""

    def test_captures_stdout(self, executor: SubprocessExecutor) -> None:
        """Standard output is captured."""
        result = executor.run(PY, ["-c", "print('hello')"])
        assert result.ok
        assert result.exit_code == 0
        assert result.stdout == "hello\n"
        assert result.args == ("-c", "print('hello')")
        assert result.duration >= 0

    def test_nonzero_exit_is_error(self, executor: SubprocessExecutor) -> None:
        """A non-zero exit is an error with stderr kept."""
        script = "import sys; sys.stderr.write('oops\\n'); sys.exit(3)"
        result = executor.run(PY, ["-c", script])
        assert not result.ok
        assert result.exit_code == 3
        assert "exited with code 3" in (result.error or "")
        assert result.stderr == "oops\n"

    def test_start_failure(self, executor: SubprocessExecutor) -> None:
        """A missing executable is reported without raising."""
        result = executor.run("/nonexistent/tool-xyz", [])
        assert not result.ok
        assert result.exit_code == -1
        assert "failed to start" in (result.error or "")

    def test_timeout(self, executor: SubprocessExecutor) -> None:
        """A captured run is killed on timeout."""
        result = executor.run(
            PY, ["-c", "import time; time.sleep(5)"], RunOptions(timeout=0.5)
        )
        assert not result.ok
        assert result.timed_out
        assert result.exit_code == -1
        assert "timed out" in (result.error or "")

    def test_streaming_timeout(self, executor: SubprocessExecutor) -> None:
        """A streamed run is killed on timeout."""
        result = executor.run(
            PY, ["-c", "import time; time.sleep(5)"], RunOptions(timeout=0.5, stream=True)
        )
        assert result.timed_out
        assert result.duration < 5

    def test_streaming_timeout_kills_descendants(self, executor: SubprocessExecutor) -> None:
        """Background children holding the pipes do not delay a timeout."""
        result = executor.run(
            "sh", ["-c", "sleep 8 & sleep 8"], RunOptions(timeout=1, stream=True)
        )
        assert result.timed_out
        assert result.exit_code == -1
        assert result.duration < 5

    def test_env_merged_over_ambient(self, executor: SubprocessExecutor, monkeypatch) -> None:
        """Extra variables are added to the ambient environment."""
        monkeypatch.setenv("AMBIENT_VAR", "ambient")
        script = "import os; print(os.environ['AMBIENT_VAR'], os.environ['EXTRA_VAR'])"
        result = executor.run(PY, ["-c", script], RunOptions(env={"EXTRA_VAR": "extra"}))
        assert result.stdout.strip() == "ambient extra"

    def test_cwd(self, executor: SubprocessExecutor, tmp_path: Path) -> None:
        """The working directory is honored."""
        result = executor.run(PY, ["-c", "import os; print(os.getcwd())"], RunOptions(cwd=tmp_path))
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    def test_stdin(self, executor: SubprocessExecutor) -> None:
        """Standard input is passed to the process."""
        script = "import sys; print(sys.stdin.read().upper())"
        result = executor.run(PY, ["-c", script], RunOptions(stdin="abc"))
        assert result.stdout.strip() == "ABC"

    def test_stream_mirrors_and_captures(self, executor: SubprocessExecutor, capsys) -> None:
        """Streaming mirrors output and still captures it."""
        script = "import sys; print('out'); sys.stderr.write('err\\n')"
        result = executor.run(PY, ["-c", script], RunOptions(stream=True))
        captured = capsys.readouterr()
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert "out" in captured.out
        assert "err" in captured.err

    def test_log_file(self, executor: SubprocessExecutor, tmp_path: Path) -> None:
        """The session log gets a phase header and the output."""
        log_file = tmp_path / "logs" / "session.log"
        result = executor.run(
            PY, ["-c", "print('logged')"], RunOptions(log_file=log_file, phase="build")
        )
        assert result.ok
        content = log_file.read_text()
        assert "--- [build] Executing:" in content
        assert "logged" in content

    def test_lookup(self, executor: SubprocessExecutor) -> None:
        """Lookup resolves commands on the search path."""
        assert executor.lookup(PY)
        assert not executor.lookup("definitely-not-a-real-tool-xyz")


class TestHelpers:
    """Tests for helper functions."""

    def test_require_commands_lists_missing(self, executor: SubprocessExecutor) -> None:
        """Every missing command is listed at once."""
        with pytest.raises(ToolNotFoundError) as exc_info:
            require_commands(executor, PY, "missing-tool-a", "missing-tool-b")
        assert exc_info.value.missing == ["missing-tool-a", "missing-tool-b"]
        assert exc_info.value.code == "tool_not_found"

    def test_last_n_lines(self) -> None:
        """Only the last lines are kept."""
        text = "\n".join(str(i) for i in range(30))
        assert last_n_lines(text, 3) == "27\n28\n29"
        assert last_n_lines("a\nb", 5) == "a\nb"

    def test_stderr_tail(self) -> None:
        """The stderr tail is trimmed."""
        result = CommandResult(command="x", stderr="1\n2\n3\n")
        assert result.stderr_tail(2) == "2\n3"

    def test_format_command_quotes(self) -> None:
        """Arguments with spaces are quoted."""
        assert format_command("podman", ["build", "-t", "a b"]) == "podman build -t 'a b'"

    def test_session_log_path(self, tmp_path: Path) -> None:
        """Session logs are timestamped files in the log dir."""
        path = session_log_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("session-")


class TestDeadline:
    """Tests for Deadline."""

    def test_unbounded(self) -> None:
        """A deadline without timeout never expires."""
        deadline = Deadline()
        assert deadline.remaining() is None
        assert not deadline.expired
        assert deadline.clamp(30) == 30
        assert deadline.clamp(None) is None

    def test_clamp_takes_tighter(self) -> None:
        """Clamping picks the smaller timeout."""
        deadline = Deadline(10)
        assert deadline.clamp(3600) <= 10
        assert deadline.clamp(1) == 1

    def test_expires(self) -> None:
        """A short deadline expires."""
        deadline = Deadline(0.01)
        time.sleep(0.05)
        assert deadline.expired
        assert deadline.remaining() == 0.0
