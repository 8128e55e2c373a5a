"""Build service module.

This module provides the high-level build API:
- Builder.build(): build, digest lookup, push, sign and SBOM as an
  ordered stage pipeline producing a ReleaseManifest
- Source-control metadata gathering
- Local image housekeeping (lint, clean, list, status)

Build is the only fatal stage that always runs. Digest lookup and git
metadata degrade to empty values. Push, sign and SBOM are fatal once
requested.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bootc_release.builds.pipeline import (
    PipelineReport,
    Stage,
    StageResult,
    run_stages,
)
from bootc_release.builds.runner import (
    compose_build_command,
    merge_build_args,
    retag_ref,
)
from bootc_release.builds.sbom import SBOMGenerator, default_output_path, parse_format
from bootc_release.builds.signing import Signer
from bootc_release.config import Settings, get_settings
from bootc_release.errors import (
    CommandFailedError,
    ConfigurationError,
    StageFailedError,
)
from bootc_release.executor import (
    CommandExecutor,
    CommandResult,
    Deadline,
    RunOptions,
    SubprocessExecutor,
    format_command,
    require_commands,
)
from bootc_release.project import BUILD_FILES, ProjectConfig
from bootc_release.release.manifest import ReleaseManifest
from bootc_release.release.version import VersionInfo
from bootc_release.types import SBOMFormat

GIT_TIMEOUT = 30


@dataclass(frozen=True)
class BuildOptions:
    """Options for a single build invocation.

    Attributes:
        variant: Variant to build.
        tag: Primary image tag.
        build_number: Build number used in the version string.
        no_cache: Disable the layer cache.
        push: Push the image (and extra tags) to the registry.
        sign: Sign the pushed image.
        sbom: Generate an SBOM for the image.
        rechunk: Request rechunking (recorded as skipped).
        dry_run: Compute version and arguments without building.
        timeout: Build timeout in seconds; None uses the configured default.
        extra_build_args: Build arguments overriding the configured ones.
        sign_key: Signing key path; None signs keyless.
        extra_tags: Additional tags applied at build time and pushed.
        labels: Additional image labels.
        lint: Run `bootc container lint` inside the built image.
        sbom_format: SBOM document format.
        log_file: Session log receiving the build output.
    """

    variant: str = "main"
    tag: str = "latest"
    build_number: int = 0
    no_cache: bool = False
    push: bool = False
    sign: bool = False
    sbom: bool = False
    rechunk: bool = False
    dry_run: bool = False
    timeout: float | None = None
    extra_build_args: Mapping[str, str] = field(default_factory=dict)
    sign_key: str | None = None
    extra_tags: Sequence[str] = ()
    labels: Mapping[str, str] = field(default_factory=dict)
    lint: bool = False
    sbom_format: str = SBOMFormat.SPDX_JSON.value
    log_file: Path | None = None


@dataclass(frozen=True)
class GitInfo:
    """Best-effort source-control metadata; empty fields are unknown."""

    commit: str = ""
    branch: str = ""
    dirty: bool = False


@dataclass
class _BuildRun:
    """State shared by the stages of one build."""

    options: BuildOptions
    image_ref: str
    extra_refs: list[str]
    manifest: ReleaseManifest
    deadline: Deadline
    command: list[str]


class Builder:
    """Build orchestrator for one project.

    Args:
        project: Project configuration.
        root_dir: Project root (build context).
        executor: Command executor; a SubprocessExecutor by default.
        settings: Runtime settings; loaded from the environment by default.
        logger: Logger receiving progress messages.
    """

    def __init__(
        self,
        project: ProjectConfig,
        root_dir: Path,
        executor: CommandExecutor | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.project = project
        self.root_dir = root_dir
        self.executor = executor or SubprocessExecutor()
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def engine(self) -> str:
        return self.settings.container_engine

    def _run(
        self,
        name: str,
        args: Sequence[str],
        deadline: Deadline,
        timeout: float | None = None,
        **options: Any,
    ) -> CommandResult:
        """Run a command unless the pipeline deadline has passed."""
        if deadline.expired:
            self.logger.debug("Deadline exceeded, not running %s", name)
            return CommandResult(
                command=name,
                args=tuple(args),
                exit_code=-1,
                error="deadline exceeded",
                timed_out=True,
            )
        run_options = RunOptions(timeout=deadline.clamp(timeout), **options)
        return self.executor.run(name, args, run_options)

    def git_info(self, deadline: Deadline | None = None) -> GitInfo:
        """Gather commit, branch and dirty state.

        Each query is independent; a failure leaves its field empty.
        """
        deadline = deadline or Deadline()
        if not self.executor.lookup("git"):
            self.logger.debug("git not found, skipping source-control metadata")
            return GitInfo()

        def query(*args: str) -> str | None:
            result = self._run(
                "git", list(args), deadline, GIT_TIMEOUT, cwd=self.root_dir
            )
            if not result.ok:
                self.logger.debug("git %s failed: %s", " ".join(args), result.error)
                return None
            return result.stdout.strip()

        commit = query("rev-parse", "HEAD")
        branch = query("rev-parse", "--abbrev-ref", "HEAD")
        status = query("status", "--porcelain")
        return GitInfo(
            commit=(commit or "")[:12],
            branch=branch or "",
            dirty=bool(status),
        )

    def compute_version(
        self,
        options: BuildOptions,
        deadline: Deadline | None = None,
    ) -> VersionInfo:
        """Compute the version for a build, enriched with git metadata."""
        version = self.project.compute_version(options.build_number)
        git = self.git_info(deadline)
        version = version.with_git(git.commit, git.branch, git.dirty)
        image_ref = self.project.image_ref(options.variant, options.tag)
        return version.with_image(image_ref, options.variant, options.tag)

    def _find_containerfile(self) -> Path | None:
        configured = self.root_dir / self.project.build.containerfile
        if configured.is_file():
            return configured
        for name in BUILD_FILES:
            candidate = self.root_dir / name
            if candidate.is_file():
                return candidate
        return None

    def containerfile(self) -> Path:
        """Resolve the build description file.

        Raises:
            ConfigurationError: If no build description file exists.
        """
        found = self._find_containerfile()
        if found is None:
            configured = self.root_dir / self.project.build.containerfile
            raise ConfigurationError(f"build file not found: {configured}")
        return found

    def _check_variant(self, variant: str) -> None:
        if self.project.variants:
            self.project.get_variant(variant)

    def build(self, options: BuildOptions, deadline: Deadline | None = None) -> ReleaseManifest:
        """Run the build pipeline.

        Args:
            options: Build options.
            deadline: Pipeline-wide time budget.

        Returns:
            The populated ReleaseManifest.

        Raises:
            ConfigurationError: If the project configuration is incomplete.
            ToolNotFoundError: If a required tool is missing.
            StageFailedError: If a fatal stage fails.
        """
        manifest, report = self.build_with_report(options, deadline)
        failed = report.failed
        if failed is not None:
            raise StageFailedError(failed.name, failed.message) from failed.error
        return manifest

    def build_with_report(
        self,
        options: BuildOptions,
        deadline: Deadline | None = None,
    ) -> tuple[ReleaseManifest, PipelineReport]:
        """Run the build pipeline and return the per-stage report.

        Unlike build(), a fatal stage does not raise; it is reported as the
        report's failed result and the manifest holds what completed.

        Raises:
            ConfigurationError: If the project configuration is incomplete.
            ToolNotFoundError: If the container engine is missing.
        """
        deadline = deadline or Deadline()
        self.project.validate_required()
        self._check_variant(options.variant)
        require_commands(self.executor, self.engine)
        if options.sbom:
            parse_format(options.sbom_format)

        version = self.compute_version(options, deadline)
        image_ref = version.image_ref
        manifest = ReleaseManifest.create(self.project.name, version)
        self.logger.info("Building %s (version %s)", image_ref, version.version)

        extra_refs = [retag_ref(image_ref, tag) for tag in options.extra_tags]
        build_args = merge_build_args(
            self.project.build.build_args, options.extra_build_args
        )
        if options.dry_run:
            # A missing build file is only reported by a real build
            containerfile = self._find_containerfile() or (
                self.root_dir / self.project.build.containerfile
            )
        else:
            containerfile = self.containerfile()
        command = compose_build_command(
            image_ref,
            containerfile,
            self.root_dir,
            version,
            labels=options.labels,
            build_args=build_args,
            no_cache=options.no_cache,
            extra_refs=extra_refs,
        )
        if options.dry_run:
            self.logger.info("Dry run: %s", format_command(self.engine, command))
            report = PipelineReport(
                results=[StageResult.skipped(name, "dry run") for name in _STAGE_NAMES]
            )
            return manifest, report

        run = _BuildRun(
            options=options,
            image_ref=image_ref,
            extra_refs=extra_refs,
            manifest=manifest,
            deadline=deadline,
            command=command,
        )
        rechunk_reason = (
            "rechunking is not supported by this pipeline"
            if options.rechunk
            else "not requested"
        )
        stages = [
            Stage("build", lambda: self._stage_build(run)),
            Stage("digest", lambda: self._stage_digest(run)),
            Stage("lint", lambda: self._stage_lint(run), enabled=options.lint),
            Stage("rechunk", _never_run, enabled=False, skip_reason=rechunk_reason),
            Stage("push", lambda: self._stage_push(run), enabled=options.push),
            Stage("sign", lambda: self._stage_sign(run), enabled=options.sign),
            Stage("sbom", lambda: self._stage_sbom(run), enabled=options.sbom),
        ]
        report = run_stages(stages, self.logger)
        if report.succeeded:
            self.logger.info("Build of %s completed", image_ref)
        return manifest, report

    def _build_timeout(self, options: BuildOptions) -> float:
        if options.timeout:
            return options.timeout
        if self.project.build.timeout:
            return self.project.build.timeout
        return self.settings.build_timeout

    def _stage_build(self, run: _BuildRun) -> StageResult:
        result = self._run(
            self.engine,
            run.command,
            run.deadline,
            self._build_timeout(run.options),
            cwd=self.root_dir,
            stream=True,
            log_file=run.options.log_file,
            phase="build",
        )
        if not result.ok:
            raise CommandFailedError(f"building {run.image_ref}", result)
        return StageResult.ok("build", result=result)

    def _stage_lint(self, run: _BuildRun) -> StageResult:
        result = self._lint(run.image_ref, run.deadline)
        if not result.ok:
            raise CommandFailedError(f"linting {run.image_ref}", result)
        return StageResult.ok("lint", result=result)

    def _stage_digest(self, run: _BuildRun) -> StageResult:
        result = self._run(
            self.engine,
            ["inspect", "--format", "{{.Digest}}", run.image_ref],
            run.deadline,
            self.settings.command_timeout,
        )
        name = self.project.name
        if not result.ok:
            run.manifest.add_image(name, run.options.tag, "", run.options.variant)
            return StageResult.soft_fail(
                "digest", f"digest lookup failed: {result.error}", result
            )
        digest = result.stdout.strip()
        run.manifest.add_image(name, run.options.tag, digest, run.options.variant)
        return StageResult.ok("digest", message=digest, result=result)

    def _stage_push(self, run: _BuildRun) -> StageResult:
        pushed: CommandResult | None = None
        for ref in [run.image_ref, *run.extra_refs]:
            self.logger.info("Pushing %s", ref)
            pushed = self._run(
                self.engine,
                ["push", ref],
                run.deadline,
                self.settings.command_timeout,
                stream=True,
                log_file=run.options.log_file,
                phase="push",
            )
            if not pushed.ok:
                raise CommandFailedError(f"pushing {ref}", pushed)
        return StageResult.ok("push", result=pushed)

    def _stage_sign(self, run: _BuildRun) -> StageResult:
        signer = Signer(self.executor, self.settings, self.logger)
        timeout = self._command_timeout(run.deadline)
        signature = signer.sign(run.image_ref, run.options.sign_key, timeout=timeout)
        run.manifest.add_signature(signature)
        return StageResult.ok("sign", message=signature)

    def _stage_sbom(self, run: _BuildRun) -> StageResult:
        generator = SBOMGenerator(self.executor, self.settings, self.logger)
        output = default_output_path(self.root_dir, run.options.sbom_format)
        timeout = self._command_timeout(run.deadline)
        generator.generate(
            run.image_ref, output, run.options.sbom_format, timeout=timeout
        )
        run.manifest.set_sbom(run.options.sbom_format, str(output))
        return StageResult.ok("sbom", message=str(output))

    def _command_timeout(self, deadline: Deadline) -> float:
        if deadline.expired:
            raise CommandFailedError(
                "pipeline cancelled",
                CommandResult(command="", exit_code=-1, error="deadline exceeded"),
            )
        timeout = deadline.clamp(self.settings.command_timeout)
        return timeout if timeout is not None else self.settings.command_timeout

    def _lint(self, image_ref: str, deadline: Deadline) -> CommandResult:
        return self._run(
            self.engine,
            ["run", "--rm", image_ref, "bootc", "container", "lint"],
            deadline,
            self.settings.command_timeout,
            stream=True,
        )

    def lint(self, image_ref: str) -> CommandResult:
        """Run `bootc container lint` inside an image.

        Raises:
            ToolNotFoundError: If the container engine is missing.
            CommandFailedError: If the lint fails.
        """
        require_commands(self.executor, self.engine)
        result = self._lint(image_ref, Deadline())
        if not result.ok:
            raise CommandFailedError(f"linting {image_ref}", result)
        return result

    def clean(self, image_ref: str) -> bool:
        """Remove a local image; failures are only logged.

        Returns:
            True if the image was removed.
        """
        result = self._run(
            self.engine, ["rmi", "-f", image_ref], Deadline(), self.settings.command_timeout
        )
        if not result.ok:
            self.logger.warning("Failed to remove %s: %s", image_ref, result.error)
            return False
        self.logger.info("Removed %s", image_ref)
        return True

    def list_local_images(self) -> list[str]:
        """List local images belonging to this project.

        Raises:
            ToolNotFoundError: If the container engine is missing.
            CommandFailedError: If the listing fails.
        """
        require_commands(self.executor, self.engine)
        result = self._run(
            self.engine,
            [
                "images",
                "--filter",
                f"reference=*{self.project.name}*",
                "--format",
                "{{.Repository}}:{{.Tag}}",
            ],
            Deadline(),
            self.settings.command_timeout,
        )
        if not result.ok:
            raise CommandFailedError("listing images", result)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def status(self) -> dict[str, Any]:
        """Summarize the project, tool availability and local images."""
        engine_available = self.executor.lookup(self.engine)
        git = self.git_info()
        images: list[str] = []
        if engine_available:
            try:
                images = self.list_local_images()
            except CommandFailedError as e:
                self.logger.warning("Could not list local images: %s", e.message)
        return {
            "project": self.project.name,
            "root": str(self.root_dir),
            "engine": self.engine,
            "engine_available": engine_available,
            "variants": self.project.variant_names(),
            "git_commit": git.commit,
            "git_branch": git.branch,
            "git_dirty": git.dirty,
            "local_images": images,
        }


_STAGE_NAMES = ("build", "digest", "lint", "rechunk", "push", "sign", "sbom")


def _never_run() -> StageResult:
    return StageResult.skipped("rechunk")


__all__ = ["BuildOptions", "Builder", "GitInfo"]
