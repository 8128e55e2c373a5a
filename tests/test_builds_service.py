"""Tests for builds/service.py module.

The Builder runs against a FakeExecutor so no external tool is needed.
"""

import logging
import time

import pytest

from bootc_release.builds.service import Builder, BuildOptions
from bootc_release.errors import (
    CommandFailedError,
    ConfigurationError,
    StageFailedError,
    ToolNotFoundError,
)
from bootc_release.executor import Deadline
from bootc_release.project import ProjectConfig
from bootc_release.types import StageOutcome
from tests.conftest import FakeExecutor

IMAGE = "ghcr.io/acme/test-os:latest"


@pytest.fixture
def builder(project, project_root, fake_executor, settings) -> Builder:
    fake_executor.when("podman", "inspect", stdout="sha256:abc123\n")
    return Builder(project, project_root, executor=fake_executor, settings=settings)


class TestDryRun:
    """Tests for dry-run builds."""

    def test_no_build_invocation(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Dry run computes the version without running any tool."""
        manifest = builder.build(BuildOptions(dry_run=True, push=True, sign=True))
        assert manifest.images == []
        assert manifest.signatures == []
        assert manifest.version.version.startswith("42.")
        assert manifest.version.image_ref == IMAGE
        assert fake_executor.calls_to("podman") == []
        assert fake_executor.calls_to("cosign") == []

    def test_report_all_skipped(self, builder: Builder) -> None:
        """Every stage of a dry run is reported as skipped."""
        _, report = builder.build_with_report(BuildOptions(dry_run=True))
        assert {r.outcome for r in report.results} == {StageOutcome.SKIPPED}

    def test_preview_uses_fallback_build_file(
        self, project, tmp_path, fake_executor: FakeExecutor, settings, caplog
    ) -> None:
        """Dry run previews the same fallback build file a real build uses."""
        (tmp_path / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
        builder = Builder(project, tmp_path, executor=fake_executor, settings=settings)
        with caplog.at_level(logging.INFO, logger="bootc_release.builds.service"):
            builder.build(BuildOptions(dry_run=True))
        builder.build(BuildOptions())
        [call] = fake_executor.calls_to("podman", "build")
        build_file = call.args[call.args.index("-f") + 1]
        assert build_file == str(tmp_path / "Dockerfile")
        assert f"-f {build_file}" in caplog.text

    def test_missing_build_file_still_previews(
        self, project, tmp_path, fake_executor: FakeExecutor, settings
    ) -> None:
        """Dry run does not require a build file to exist."""
        builder = Builder(project, tmp_path, executor=fake_executor, settings=settings)
        manifest = builder.build(BuildOptions(dry_run=True))
        assert manifest.version.image_ref == IMAGE


class TestBuild:
    """Tests for the normal build path."""

    def test_build_records_image(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A build records the image under the project name with its digest."""
        manifest = builder.build(BuildOptions())
        [call] = fake_executor.calls_to("podman", "build")
        assert call.args[-5:][:2] == ("-t", IMAGE)
        assert call.options.stream
        assert len(manifest.images) == 1
        image = manifest.images[0]
        assert image.name == "test-os"
        assert image.tag == "latest"
        assert image.digest == "sha256:abc123"
        assert image.variant == "main"

    def test_build_args_merged(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Option build args override project ones, version args are added."""
        builder.project.build.build_args.update({"A": "1", "B": "2"})
        builder.build(BuildOptions(extra_build_args={"B": "3", "C": "4"}))
        [call] = fake_executor.calls_to("podman", "build")
        assert "A=1" in call.args
        assert "B=3" in call.args
        assert "B=2" not in call.args
        assert "C=4" in call.args
        assert "OS_MAJOR_VERSION=42" in call.args

    def test_no_cache(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """--no-cache is passed through."""
        builder.build(BuildOptions(no_cache=True))
        [call] = fake_executor.calls_to("podman", "build")
        assert "--no-cache" in call.args

    def test_timeout_override(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """An explicit timeout wins over the defaults."""
        builder.build(BuildOptions(timeout=120))
        [call] = fake_executor.calls_to("podman", "build")
        assert call.options.timeout == 120

    def test_timeout_default(self, builder: Builder, fake_executor: FakeExecutor, settings) -> None:
        """Without overrides the settings build timeout applies."""
        builder.build(BuildOptions())
        [call] = fake_executor.calls_to("podman", "build")
        assert call.options.timeout == settings.build_timeout

    def test_variant_image_name(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A non-main variant suffixes the image name."""
        builder.project.variants.append(builder.project.variants[0].model_copy(update={"name": "nvidia"}))
        manifest = builder.build(BuildOptions(variant="nvidia", tag="stable"))
        assert manifest.version.image_ref == "ghcr.io/acme/test-os-nvidia:stable"

    def test_version_scheme_from_project(self, builder: Builder) -> None:
        """The project's versioning scheme drives the build version."""
        builder.project.version.scheme = "semver"
        builder.project.version.current = "2.0.0"
        manifest = builder.build(BuildOptions())
        assert manifest.version.version == "2.0.0"
        assert manifest.version.scheme == "semver"

    def test_unknown_variant(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """An unknown variant fails before any tool runs."""
        with pytest.raises(ConfigurationError):
            builder.build(BuildOptions(variant="missing"))
        assert fake_executor.calls == []

    def test_rechunk_always_skipped(self, builder: Builder) -> None:
        """Requested rechunking is reported as unsupported."""
        _, report = builder.build_with_report(BuildOptions(rechunk=True))
        [rechunk] = [r for r in report.results if r.name == "rechunk"]
        assert rechunk.outcome == StageOutcome.SKIPPED
        assert "not supported" in rechunk.message

    def test_lint_stage(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Lint runs bootc container lint inside the built image."""
        builder.build(BuildOptions(lint=True))
        [call] = fake_executor.calls_to("podman", "run")
        assert call.args == ("run", "--rm", IMAGE, "bootc", "container", "lint")

    def test_lint_failure_keeps_built_image(
        self, builder: Builder, fake_executor: FakeExecutor
    ) -> None:
        """A failed lint still leaves the built image in the manifest."""
        fake_executor.when("podman", "run", fail=True)
        manifest, report = builder.build_with_report(BuildOptions(lint=True, push=True))
        assert report.failed is not None
        assert report.failed.name == "lint"
        assert [(i.name, i.digest) for i in manifest.images] == [("test-os", "sha256:abc123")]
        assert fake_executor.calls_to("podman", "push") == []


class TestFailures:
    """Tests for fatal and soft-fail stages."""

    def test_invalid_config_fails_before_invocation(self, project_root, fake_executor, settings) -> None:
        """An incomplete project fails before any tool runs."""
        builder = Builder(
            ProjectConfig(name=""), project_root, executor=fake_executor, settings=settings
        )
        with pytest.raises(ConfigurationError, match="name is required"):
            builder.build(BuildOptions())
        assert fake_executor.calls == []

    def test_missing_engine(self, project, project_root, settings) -> None:
        """A missing container engine fails before any tool runs."""
        executor = FakeExecutor(missing=["podman"])
        builder = Builder(project, project_root, executor=executor, settings=settings)
        with pytest.raises(ToolNotFoundError):
            builder.build(BuildOptions())
        assert executor.calls == []

    def test_missing_containerfile(self, project, tmp_path, fake_executor, settings) -> None:
        """A real build without a build file is a configuration error."""
        builder = Builder(project, tmp_path, executor=fake_executor, settings=settings)
        with pytest.raises(ConfigurationError, match="build file not found"):
            builder.build(BuildOptions())

    def test_build_failure_is_fatal(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed build stops the pipeline and keeps the stderr tail."""
        fake_executor.when("podman", "build", fail=True, stderr="line1\nSTEP failed\n")
        with pytest.raises(StageFailedError) as exc_info:
            builder.build(BuildOptions(push=True))
        assert exc_info.value.stage == "build"
        cause = exc_info.value.__cause__
        assert isinstance(cause, CommandFailedError)
        assert "STEP failed" in cause.stderr_tail
        assert fake_executor.calls_to("podman", "inspect") == []
        assert fake_executor.calls_to("podman", "push") == []

    def test_digest_failure_is_soft(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed digest lookup records the image with an empty digest."""
        fake_executor.when("podman", "inspect", fail=True)
        manifest, report = builder.build_with_report(BuildOptions())
        assert report.succeeded
        assert report.outcome_of("digest") == StageOutcome.SOFT_FAIL
        assert len(manifest.images) == 1
        assert manifest.images[0].digest == ""

    def test_digest_failure_build_succeeds(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """build() does not raise on a failed digest lookup."""
        fake_executor.when("podman", "inspect", fail=True)
        manifest = builder.build(BuildOptions())
        assert manifest.images[0].digest == ""

    def test_push_failure_stops_pipeline(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed push prevents signing and SBOM generation."""
        fake_executor.when("podman", "push", fail=True, stderr="denied\n")
        with pytest.raises(StageFailedError) as exc_info:
            builder.build(BuildOptions(push=True, sign=True, sbom=True))
        assert exc_info.value.stage == "push"
        assert fake_executor.calls_to("cosign") == []
        assert fake_executor.calls_to("trivy") == []

    def test_missing_signer_is_fatal(self, project, project_root, settings) -> None:
        """A requested sign stage fails when the signer is missing."""
        executor = FakeExecutor(missing=["cosign"])
        builder = Builder(project, project_root, executor=executor, settings=settings)
        with pytest.raises(StageFailedError) as exc_info:
            builder.build(BuildOptions(push=True, sign=True))
        assert exc_info.value.stage == "sign"
        assert isinstance(exc_info.value.__cause__, ToolNotFoundError)

    def test_sbom_failure_is_fatal(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A requested SBOM that fails stops the pipeline."""
        fake_executor.when("trivy", fail=True)
        with pytest.raises(StageFailedError) as exc_info:
            builder.build(BuildOptions(sbom=True))
        assert exc_info.value.stage == "sbom"

    def test_expired_deadline(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """An expired deadline fails the build stage without running it."""
        deadline = Deadline(0.001)
        time.sleep(0.01)
        with pytest.raises(StageFailedError) as exc_info:
            builder.build(BuildOptions(), deadline)
        assert exc_info.value.stage == "build"
        assert "deadline exceeded" in exc_info.value.message
        assert fake_executor.calls_to("podman", "build") == []


class TestReleaseStages:
    """Tests for push, sign and SBOM stages."""

    def test_push_primary_and_extra_tags(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """The primary reference is pushed before the extra tags."""
        builder.build(BuildOptions(tag="stable", push=True, extra_tags=("20240101",)))
        pushed = [c.args[1] for c in fake_executor.calls_to("podman", "push")]
        assert pushed == ["ghcr.io/acme/test-os:stable", "ghcr.io/acme/test-os:20240101"]

    def test_keyless_sign(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Keyless signing records the signature reference."""
        manifest = builder.build(BuildOptions(push=True, sign=True))
        [call] = fake_executor.calls_to("cosign")
        assert call.args == ("sign", "--yes", IMAGE)
        assert manifest.signatures == [f"{IMAGE}.sig"]

    def test_key_sign(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A signing key is passed to the signer."""
        builder.build(BuildOptions(push=True, sign=True, sign_key="cosign.key"))
        [call] = fake_executor.calls_to("cosign")
        assert call.args == ("sign", "--key", "cosign.key", "--yes", IMAGE)

    def test_sbom_recorded(self, builder: Builder, fake_executor: FakeExecutor, project_root) -> None:
        """The SBOM location and format land in the manifest."""
        manifest = builder.build(BuildOptions(sbom=True))
        [call] = fake_executor.calls_to("trivy")
        assert call.args[:2] == ("image", IMAGE)
        assert manifest.sbom is not None
        assert manifest.sbom.format == "spdx-json"
        assert manifest.sbom.location == str(project_root / "sbom.spdx.json")

    def test_stage_order(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Stages are reported in pipeline order."""
        _, report = builder.build_with_report(
            BuildOptions(push=True, sign=True, sbom=True, lint=True)
        )
        assert [r.name for r in report.results] == [
            "build",
            "digest",
            "lint",
            "rechunk",
            "push",
            "sign",
            "sbom",
        ]


class TestGitInfo:
    """Tests for source-control metadata."""

    def test_collects_metadata(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Commit, branch and dirty state flow into the version."""
        fake_executor.when("git", "rev-parse", "HEAD", stdout="abcdef1234567890\n")
        fake_executor.when("git", "rev-parse", "--abbrev-ref", stdout="main\n")
        fake_executor.when("git", "status", stdout=" M Containerfile\n")
        manifest = builder.build(BuildOptions(dry_run=True))
        assert manifest.version.git_commit == "abcdef123456"
        assert manifest.version.git_branch == "main"
        assert manifest.version.git_dirty is True

    def test_failures_leave_fields_empty(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed git query only blanks its own field."""
        fake_executor.when("git", "rev-parse", "HEAD", fail=True)
        fake_executor.when("git", "rev-parse", "--abbrev-ref", stdout="dev\n")
        info = builder.git_info()
        assert info.commit == ""
        assert info.branch == "dev"
        assert info.dirty is False

    def test_git_missing(self, project, project_root, settings) -> None:
        """Without git no query runs and metadata stays empty."""
        executor = FakeExecutor(missing=["git"])
        builder = Builder(project, project_root, executor=executor, settings=settings)
        assert builder.git_info().commit == ""
        assert executor.calls_to("git") == []


class TestHousekeeping:
    """Tests for lint, clean, list and status."""

    def test_lint_failure(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed standalone lint raises."""
        fake_executor.when("podman", "run", fail=True)
        with pytest.raises(CommandFailedError):
            builder.lint(IMAGE)

    def test_clean_soft_fail(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """A failed removal is reported but does not raise."""
        fake_executor.when("podman", "rmi", fail=True)
        assert builder.clean(IMAGE) is False

    def test_clean(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Clean force-removes the image."""
        assert builder.clean(IMAGE) is True
        [call] = fake_executor.calls_to("podman", "rmi")
        assert call.args == ("rmi", "-f", IMAGE)

    def test_list_local_images(self, builder: Builder, fake_executor: FakeExecutor) -> None:
        """Local images are filtered by project name."""
        fake_executor.when("podman", "images", stdout="localhost/test-os:latest\n\nx/test-os:1\n")
        assert builder.list_local_images() == ["localhost/test-os:latest", "x/test-os:1"]
        [call] = fake_executor.calls_to("podman", "images")
        assert "reference=*test-os*" in call.args

    def test_status(self, builder: Builder) -> None:
        """Status reports the project, engine and variants."""
        info = builder.status()
        assert info["project"] == "test-os"
        assert info["engine_available"] is True
        assert info["variants"] == ["main"]
