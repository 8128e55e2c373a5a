"""Shared fixtures for bootc_release tests."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from bootc_release.config import Settings
from bootc_release.executor import CommandResult, RunOptions
from bootc_release.project import ProjectConfig


@dataclass(frozen=True)
class Call:
    """A recorded command invocation."""

    name: str
    args: tuple[str, ...]
    options: RunOptions


class FakeExecutor:
    """In-memory CommandExecutor recording calls and returning scripted results.

    Unscripted commands succeed with empty output. Scripted results are
    matched by command name and argument prefix; later rules win.
    """

    def __init__(self, missing: Sequence[str] = ()) -> None:
        self.calls: list[Call] = []
        self.missing = set(missing)
        self._rules: list[tuple[str, tuple[str, ...], CommandResult]] = []

    def lookup(self, name: str) -> bool:
        return name not in self.missing

    def when(
        self,
        name: str,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        fail: bool = False,
        exit_code: int = 1,
    ) -> None:
        """Script the result for commands starting with name and prefix."""
        if fail:
            result = CommandResult(
                command=name,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                error=f"{name} exited with code {exit_code}",
            )
        else:
            result = CommandResult(command=name, stdout=stdout, stderr=stderr)
        self._rules.append((name, prefix, result))

    def run(
        self,
        name: str,
        args: Sequence[str],
        options: RunOptions | None = None,
    ) -> CommandResult:
        args = tuple(args)
        self.calls.append(Call(name, args, options or RunOptions()))
        for rule_name, prefix, result in reversed(self._rules):
            if rule_name == name and args[: len(prefix)] == prefix:
                return dataclasses.replace(result, args=args)
        return CommandResult(command=name, args=args)

    def calls_to(self, name: str, *prefix: str) -> list[Call]:
        """Return recorded calls matching a command name and argument prefix."""
        return [
            c for c in self.calls if c.name == name and c.args[: len(prefix)] == prefix
        ]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the host environment."""
    return Settings(
        container_engine="podman",
        signer="cosign",
        sbom_scanner="trivy",
        db_url="sqlite:///:memory:",
        _env_file=None,
    )


@pytest.fixture
def project() -> ProjectConfig:
    return ProjectConfig(name="test-os", registry="ghcr.io", repository="acme")


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A project directory holding a build description file."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "Containerfile").write_text("FROM scratch\n", encoding="utf-8")
    return root
