"""Tests for builds/pipeline.py module."""

import pytest

from bootc_release.builds.pipeline import Stage, StageResult, run_stages
from bootc_release.errors import StageFailedError, ToolNotFoundError
from bootc_release.types import StageOutcome


def _ok(name: str):
    return lambda: StageResult.ok(name)


class TestRunStages:
    """Tests for run_stages."""

    def test_runs_in_order(self) -> None:
        """Stages run in the given order."""
        order: list[str] = []

        def make(name: str):
            def action() -> StageResult:
                order.append(name)
                return StageResult.ok(name)

            return action

        report = run_stages([Stage("a", make("a")), Stage("b", make("b"))])
        assert order == ["a", "b"]
        assert report.succeeded
        assert report.summary() == {"a": "ok", "b": "ok"}

    def test_disabled_stage_recorded_as_skipped(self) -> None:
        """Disabled stages are skipped without running."""
        called = []
        report = run_stages(
            [Stage("push", lambda: called.append(1) or StageResult.ok("push"), enabled=False)]
        )
        assert called == []
        assert report.results[0].outcome == StageOutcome.SKIPPED
        assert report.results[0].message == "not requested"

    def test_soft_fail_continues(self) -> None:
        """A soft failure does not stop the pipeline."""
        report = run_stages(
            [
                Stage("digest", lambda: StageResult.soft_fail("digest", "no digest")),
                Stage("push", _ok("push")),
            ]
        )
        assert report.succeeded
        assert report.outcome_of("digest") == StageOutcome.SOFT_FAIL
        assert report.outcome_of("push") == StageOutcome.OK

    def test_release_error_is_fatal_and_stops(self) -> None:
        """A release error is fatal and stops later stages."""
        def fail() -> StageResult:
            raise ToolNotFoundError(["cosign"])

        report = run_stages(
            [Stage("sign", fail), Stage("sbom", _ok("sbom"))]
        )
        failed = report.failed
        assert failed is not None
        assert failed.name == "sign"
        assert isinstance(failed.error, ToolNotFoundError)
        assert report.outcome_of("sbom") is None

    def test_other_exceptions_propagate(self) -> None:
        """Unexpected exceptions propagate."""
        def boom() -> StageResult:
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            run_stages([Stage("build", boom)])

    def test_fatal_result_stops(self) -> None:
        """A fatal result stops the pipeline."""
        fatal = StageResult(name="x", outcome=StageOutcome.FATAL, message="bad")
        report = run_stages([Stage("x", lambda: fatal), Stage("y", _ok("y"))])
        assert report.failed == fatal
        assert len(report.results) == 1

    def test_stage_failed_error_names_stage(self) -> None:
        """StageFailedError names the failed stage."""
        err = StageFailedError("push", "denied")
        assert err.stage == "push"
        assert err.code == "stage_failed"
        assert "push failed: denied" in str(err)
