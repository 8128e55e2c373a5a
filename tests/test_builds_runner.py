"""Tests for builds/runner.py module."""

from datetime import datetime, timezone
from pathlib import Path

from bootc_release.builds.runner import (
    compose_build_args,
    compose_build_command,
    compose_label_args,
    merge_build_args,
    retag_ref,
)
from bootc_release.release.version import LABEL_VERSION, new_info

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _version():
    return new_info("42", 3, now=NOW).with_image("ghcr.io/acme/os:stable", "main", "stable")


class TestMergeBuildArgs:
    """Tests for merge_build_args."""

    def test_override_wins(self) -> None:
        """Caller build args override configured ones."""
        merged = merge_build_args({"A": "1", "B": "2"}, {"B": "3", "C": "4"})
        assert merged == {"A": "1", "B": "3", "C": "4"}

    def test_inputs_not_modified(self) -> None:
        """Merging leaves the input mappings untouched."""
        base = {"A": "1"}
        merge_build_args(base, {"A": "2"})
        assert base == {"A": "1"}

    def test_none_inputs(self) -> None:
        """Missing inputs merge to an empty mapping."""
        assert merge_build_args(None, None) == {}


class TestComposeArgs:
    """Tests for label and build-arg flags."""

    def test_labels_sorted(self) -> None:
        """Label flags are emitted in key order."""
        assert compose_label_args({"b": "2", "a": "1"}) == [
            "--label",
            "a=1",
            "--label",
            "b=2",
        ]

    def test_mandatory_build_args_appended(self) -> None:
        """Version build args follow the caller's build args."""
        args = compose_build_args({"FOO": "bar"}, _version())
        assert args == [
            "--build-arg",
            "FOO=bar",
            "--build-arg",
            "IMAGE_VERSION=42.20240101.3",
            "--build-arg",
            "OS_MAJOR_VERSION=42",
        ]


class TestComposeBuildCommand:
    """Tests for compose_build_command."""

    def test_shape(self) -> None:
        """The build command ends with tag, build file and context."""
        cmd = compose_build_command(
            "ghcr.io/acme/os:stable",
            Path("/src/Containerfile"),
            Path("/src"),
            _version(),
            build_args={"A": "1"},
            no_cache=True,
        )
        assert cmd[0] == "build"
        assert cmd[-5:] == ["-t", "ghcr.io/acme/os:stable", "-f", "/src/Containerfile", "/src"]
        assert "--no-cache" in cmd
        assert cmd.index("--no-cache") < cmd.index("-t")
        assert "A=1" in cmd

    def test_version_labels_override_caller_labels(self) -> None:
        """Version labels replace caller labels with the same key."""
        cmd = compose_build_command(
            "x:y",
            Path("Containerfile"),
            Path("."),
            _version(),
            labels={LABEL_VERSION: "fake", "custom": "1"},
        )
        assert f"{LABEL_VERSION}=42.20240101.3" in cmd
        assert f"{LABEL_VERSION}=fake" not in cmd
        assert "custom=1" in cmd

    def test_extra_refs_tagged(self) -> None:
        """Each extra reference gets its own -t flag."""
        cmd = compose_build_command(
            "r/os:stable",
            Path("Containerfile"),
            Path("."),
            _version(),
            extra_refs=["r/os:stable", "r/os:20240101"],
        )
        assert cmd.count("-t") == 2
        assert "r/os:20240101" in cmd

    def test_deterministic(self) -> None:
        """Build arg order does not change the command."""
        version = _version()
        first = compose_build_command("a:b", Path("C"), Path("."), version, {"z": "1", "a": "2"})
        second = compose_build_command("a:b", Path("C"), Path("."), version, {"a": "2", "z": "1"})
        assert first == second


class TestRetagRef:
    """Tests for retag_ref."""

    def test_replaces_tag(self) -> None:
        """The tag after the last colon is replaced."""
        assert retag_ref("ghcr.io/acme/os:stable", "20240101") == "ghcr.io/acme/os:20240101"

    def test_registry_port(self) -> None:
        """A registry port is not mistaken for a tag."""
        assert retag_ref("localhost:5000/os", "v1") == "localhost:5000/os:v1"
