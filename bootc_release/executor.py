"""Command execution for external tools.

Every external invocation (container engine, signer, SBOM scanners, disk
conversion tool, git, hypervisor) goes through a CommandExecutor. This
module handles:
- Running subprocesses with captured stdout/stderr
- Merging extra environment variables over the ambient environment
- Enforcing per-call timeouts and pipeline-wide deadlines
- Streaming output to the terminal while capturing it
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Protocol

from bootc_release.errors import ToolNotFoundError

logger = logging.getLogger(__name__)

# Seconds to wait for output readers once a timed-out process group is killed
READER_GRACE_PERIOD = 5.0


@dataclass(frozen=True)
class CommandResult:
    """Result of a single command invocation.

    Attributes:
        command: Executable name.
        args: Arguments passed to the executable.
        exit_code: Process exit code, or -1 if none is available.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration: Wall-clock duration in seconds.
        error: Failure description, None on success.
        timed_out: Whether the process was killed on timeout.
    """

    command: str
    args: tuple[str, ...] = ()
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """Check if the command succeeded."""
        return self.error is None

    def stderr_tail(self, n: int = 20) -> str:
        """Return the last n lines of stderr."""
        return last_n_lines(self.stderr, n)


@dataclass(frozen=True)
class RunOptions:
    """Options for a command invocation.

    Attributes:
        cwd: Working directory.
        env: Extra environment variables merged over the ambient environment.
        timeout: Timeout in seconds (None = no timeout).
        stream: Mirror output to the terminal while capturing it.
        stdin: Text passed on standard input.
        log_file: Optional session log that also receives the output.
        phase: Phase name written to the session log header.
    """

    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None
    stream: bool = False
    stdin: str | None = None
    log_file: Path | None = None
    phase: str | None = None


class CommandExecutor(Protocol):
    """Interface through which all external tools are invoked."""

    def run(
        self,
        name: str,
        args: Sequence[str],
        options: RunOptions | None = None,
    ) -> CommandResult:
        """Run a command and return its result."""
        ...

    def lookup(self, name: str) -> bool:
        """Check whether a command is resolvable on the search path."""
        ...


class Deadline:
    """Pipeline-wide time budget shared by consecutive invocations.

    A deadline created without a timeout never expires.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._expires_at = time.monotonic() + timeout if timeout else None

    def remaining(self) -> float | None:
        """Return the seconds left, or None if unbounded."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        """Check if the deadline has passed."""
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def clamp(self, timeout: float | None) -> float | None:
        """Return the tighter of a per-call timeout and the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)


def format_command(name: str, args: Sequence[str]) -> str:
    """Format a command for display."""
    return shlex.join([name, *args])


def last_n_lines(text: str, n: int) -> str:
    """Return the last n lines of a string."""
    lines = text.strip().splitlines()
    if len(lines) <= n:
        return text.strip()
    return "\n".join(lines[-n:])


def require_commands(executor: CommandExecutor, *names: str) -> None:
    """Ensure all commands are available.

    Raises:
        ToolNotFoundError: Listing every missing command.
    """
    missing = [name for name in names if not executor.lookup(name)]
    if missing:
        raise ToolNotFoundError(missing)


def _decode(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class _Tee:
    """Line sink fanning out to a capture buffer and optional targets."""

    def __init__(self, targets: list[IO[str]], lock: threading.Lock) -> None:
        self.lines: list[str] = []
        self._targets = targets
        self._lock = lock

    def pump(self, stream: IO[str]) -> None:
        for line in iter(stream.readline, ""):
            self.lines.append(line)
            with self._lock:
                for target in self._targets:
                    target.write(line)
                    target.flush()
        stream.close()

    @property
    def text(self) -> str:
        return "".join(self.lines)


class SubprocessExecutor:
    """CommandExecutor backed by real subprocesses."""

    def lookup(self, name: str) -> bool:
        return shutil.which(name) is not None

    def run(
        self,
        name: str,
        args: Sequence[str],
        options: RunOptions | None = None,
    ) -> CommandResult:
        """Execute a command.

        Failures never raise: a non-zero exit, a start failure or a timeout
        is reported through CommandResult.error.

        Args:
            name: Executable name.
            args: Command arguments.
            options: Invocation options.

        Returns:
            CommandResult with captured output and exit status.
        """
        if options is None:
            options = RunOptions()
        argv = [name, *args]

        env: dict[str, str] | None = None
        if options.env:
            env = dict(os.environ)
            env.update(options.env)

        logger.debug("Executing command: %s", format_command(name, args))
        log_handle: IO[str] | None = None
        if options.log_file and options.phase:
            options.log_file.parent.mkdir(parents=True, exist_ok=True)
            log_handle = options.log_file.open("a", encoding="utf-8")
            log_handle.write(
                f"\n--- [{options.phase}] Executing: {format_command(name, args)} ---\n"
            )
            log_handle.flush()

        started = time.monotonic()
        try:
            if options.stream or log_handle is not None:
                exit_code, stdout, stderr, timed_out = self._run_teed(
                    argv, options, env, log_handle
                )
            else:
                exit_code, stdout, stderr, timed_out = self._run_captured(
                    argv, options, env
                )
        except OSError as e:
            duration = time.monotonic() - started
            logger.debug("Command failed to start: %s (%s)", name, e)
            return CommandResult(
                command=name,
                args=tuple(args),
                exit_code=-1,
                duration=duration,
                error=f"failed to start {name}: {e}",
            )
        finally:
            if log_handle is not None:
                log_handle.close()

        duration = time.monotonic() - started
        error: str | None = None
        if timed_out:
            error = f"{name} timed out after {options.timeout}s"
        elif exit_code != 0:
            error = f"{name} exited with code {exit_code}"

        if error:
            logger.debug(
                "Command failed: %s (exit_code=%d, duration=%.1fs)",
                name,
                exit_code,
                duration,
            )
        else:
            logger.debug("Command succeeded: %s (duration=%.1fs)", name, duration)

        return CommandResult(
            command=name,
            args=tuple(args),
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            error=error,
            timed_out=timed_out,
        )

    def _run_captured(
        self,
        argv: list[str],
        options: RunOptions,
        env: dict[str, str] | None,
    ) -> tuple[int, str, str, bool]:
        try:
            result = subprocess.run(
                argv,
                cwd=options.cwd,
                env=env,
                input=options.stdin,
                capture_output=True,
                text=True,
                timeout=options.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            return -1, _decode(e.stdout), _decode(e.stderr), True
        return result.returncode, result.stdout, result.stderr, False

    def _run_teed(
        self,
        argv: list[str],
        options: RunOptions,
        env: dict[str, str] | None,
        log_handle: IO[str] | None,
    ) -> tuple[int, str, str, bool]:
        lock = threading.Lock()
        out_targets: list[IO[str]] = []
        err_targets: list[IO[str]] = []
        if options.stream:
            out_targets.append(sys.stdout)
            err_targets.append(sys.stderr)
        if log_handle is not None:
            out_targets.append(log_handle)
            err_targets.append(log_handle)
        out_tee = _Tee(out_targets, lock)
        err_tee = _Tee(err_targets, lock)

        proc = subprocess.Popen(
            argv,
            cwd=options.cwd,
            env=env,
            stdin=subprocess.PIPE if options.stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
            start_new_session=True,
        )
        readers = [
            threading.Thread(target=out_tee.pump, args=(proc.stdout,), daemon=True),
            threading.Thread(target=err_tee.pump, args=(proc.stderr,), daemon=True),
        ]
        for reader in readers:
            reader.start()

        if options.stdin is not None and proc.stdin is not None:
            try:
                proc.stdin.write(options.stdin)
                proc.stdin.close()
            except BrokenPipeError:
                pass

        timed_out = False
        killed = False
        try:
            proc.wait(timeout=options.timeout)
        except subprocess.TimeoutExpired:
            timed_out = killed = True
            _kill_process_group(proc)
            proc.wait()
        except BaseException:
            killed = True
            _kill_process_group(proc)
            proc.wait()
            raise
        finally:
            # Descendants outside the group may still hold the pipes open
            grace = READER_GRACE_PERIOD if killed else None
            for reader in readers:
                reader.join(timeout=grace)
            if any(reader.is_alive() for reader in readers):
                logger.warning(
                    "Output of %s still open after kill, leaving readers behind", argv[0]
                )

        exit_code = -1 if timed_out else proc.returncode
        return exit_code, out_tee.text, err_tee.text, timed_out


def _kill_process_group(proc: subprocess.Popen[str]) -> None:
    """Kill a process started in its own session, with all its descendants."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group %d already gone", proc.pid)


def session_log_path(log_dir: Path) -> Path:
    """Return a timestamped session log path inside log_dir."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return log_dir / f"session-{stamp}.log"


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "Deadline",
    "RunOptions",
    "SubprocessExecutor",
    "format_command",
    "last_n_lines",
    "require_commands",
    "session_log_path",
]
