"""GitHub Actions output, environment and annotation helpers.

Values are appended to the files named by GITHUB_OUTPUT, GITHUB_ENV,
GITHUB_PATH and GITHUB_STEP_SUMMARY. Workflow command markers are only
printed when GITHUB_ACTIONS=true.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)


def _environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def _stream(stream: TextIO | None) -> TextIO:
    return sys.stdout if stream is None else stream


def is_github_actions(environ: Mapping[str, str] | None = None) -> bool:
    """Check whether workflow command markers should be printed."""
    return _environ(environ).get("GITHUB_ACTIONS") == "true"


def format_key_value(name: str, value: str) -> str:
    """Format a key/value pair for a GitHub command file.

    Multi-line values use the heredoc form with a unique delimiter.
    """
    if "\n" in value:
        delimiter = f"EOF{time.time_ns()}"
        return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"
    return f"{name}={value}\n"


def _append(path: str, content: str) -> None:
    with open(path, "a", encoding="utf-8") as f:
        f.write(content)


def set_output(
    name: str,
    value: str,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Set a step output.

    Falls back to the legacy ::set-output marker when GITHUB_OUTPUT is
    not set.
    """
    output_file = _environ(environ).get("GITHUB_OUTPUT", "")
    if output_file:
        _append(output_file, format_key_value(name, value))
        return
    print(f"::set-output name={name}::{value}", file=_stream(stream))


def set_env(
    name: str,
    value: str,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Export an environment variable to subsequent steps.

    Does nothing outside GitHub Actions.
    """
    env_file = _environ(environ).get("GITHUB_ENV", "")
    if not env_file:
        logger.debug("GITHUB_ENV not set, not exporting %s", name)
        return
    _append(env_file, format_key_value(name, value))


def add_path(path: str, environ: Mapping[str, str] | None = None) -> None:
    """Prepend a directory to PATH for subsequent steps."""
    path_file = _environ(environ).get("GITHUB_PATH", "")
    if not path_file:
        logger.debug("GITHUB_PATH not set, not adding %s", path)
        return
    _append(path_file, f"{path}\n")


def add_summary(markdown: str, environ: Mapping[str, str] | None = None) -> None:
    """Append markdown to the job summary."""
    summary_file = _environ(environ).get("GITHUB_STEP_SUMMARY", "")
    if not summary_file:
        logger.debug("GITHUB_STEP_SUMMARY not set, skipping summary")
        return
    _append(summary_file, markdown if markdown.endswith("\n") else markdown + "\n")


def _marker(
    line: str,
    environ: Mapping[str, str] | None,
    stream: TextIO | None,
) -> None:
    if is_github_actions(environ):
        print(line, file=_stream(stream))


def start_group(
    name: str,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Open a collapsible log group."""
    _marker(f"::group::{name}", environ, stream)


def end_group(
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Close the current log group."""
    _marker("::endgroup::", environ, stream)


@contextmanager
def group(
    name: str,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> Iterator[None]:
    """Wrap a block in a collapsible log group."""
    start_group(name, environ, stream)
    try:
        yield
    finally:
        end_group(environ, stream)


def log_error(
    message: str,
    file: str = "",
    line: int = 0,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Emit an error annotation, optionally attached to a file location."""
    if file:
        location = f" file={file}"
        if line > 0:
            location += f",line={line}"
        _marker(f"::error{location}::{message}", environ, stream)
    else:
        _marker(f"::error::{message}", environ, stream)


def log_warning(
    message: str,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Emit a warning annotation."""
    _marker(f"::warning::{message}", environ, stream)


def log_notice(
    message: str,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Emit a notice annotation."""
    _marker(f"::notice::{message}", environ, stream)


def cache_dir(name: str, environ: Mapping[str, str] | None = None) -> Path:
    """Return a cache directory for a tool.

    Uses RUNNER_TOOL_CACHE on hosted runners, a temporary directory
    otherwise.
    """
    tool_cache = _environ(environ).get("RUNNER_TOOL_CACHE", "")
    if tool_cache:
        return Path(tool_cache) / name
    return Path(tempfile.gettempdir()) / f"{name}-cache"


__all__ = [
    "add_path",
    "add_summary",
    "cache_dir",
    "end_group",
    "format_key_value",
    "group",
    "is_github_actions",
    "log_error",
    "log_notice",
    "log_warning",
    "set_env",
    "set_output",
    "start_group",
]
