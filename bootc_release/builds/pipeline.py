"""Ordered stage pipeline with fatal and soft-fail outcomes.

A pipeline is a list of named stages. Each enabled stage runs to
completion before the next begins; the first fatal outcome stops the
run. Soft failures and skipped stages are recorded and the run goes on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from bootc_release.errors import ReleaseError
from bootc_release.executor import CommandResult
from bootc_release.types import StageOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageResult:
    """Tagged result of a single stage.

    Attributes:
        name: Stage name.
        outcome: Outcome of the stage.
        message: Human-readable detail (skip reason, warning, error).
        result: CommandResult of the stage's main invocation, if any.
        error: Error raised by a fatal stage.
        duration: Wall-clock duration in seconds.
    """

    name: str
    outcome: StageOutcome
    message: str = ""
    result: CommandResult | None = None
    error: ReleaseError | None = None
    duration: float = 0.0

    @classmethod
    def ok(cls, name: str, message: str = "", result: CommandResult | None = None) -> StageResult:
        return cls(name=name, outcome=StageOutcome.OK, message=message, result=result)

    @classmethod
    def soft_fail(
        cls, name: str, message: str, result: CommandResult | None = None
    ) -> StageResult:
        return cls(name=name, outcome=StageOutcome.SOFT_FAIL, message=message, result=result)

    @classmethod
    def skipped(cls, name: str, message: str = "") -> StageResult:
        return cls(name=name, outcome=StageOutcome.SKIPPED, message=message)


StageAction = Callable[[], StageResult]


@dataclass(frozen=True)
class Stage:
    """A named pipeline step.

    Attributes:
        name: Stage name.
        action: Callable returning the stage's result. Raising a
            ReleaseError marks the stage fatal.
        enabled: Disabled stages are recorded as skipped.
        skip_reason: Message recorded when the stage is disabled.
    """

    name: str
    action: StageAction
    enabled: bool = True
    skip_reason: str = "not requested"


@dataclass
class PipelineReport:
    """Results of a pipeline run, in execution order."""

    results: list[StageResult] = field(default_factory=list)

    @property
    def failed(self) -> StageResult | None:
        """Return the first fatal result, if any."""
        for result in self.results:
            if result.outcome == StageOutcome.FATAL:
                return result
        return None

    @property
    def succeeded(self) -> bool:
        return self.failed is None

    def outcome_of(self, name: str) -> StageOutcome | None:
        """Return the outcome of a stage, or None if it never ran."""
        for result in self.results:
            if result.name == name:
                return result.outcome
        return None

    def summary(self) -> dict[str, str]:
        """Map stage names to outcome values."""
        return {r.name: r.outcome.value for r in self.results}


def run_stages(
    stages: Sequence[Stage],
    log: logging.Logger | None = None,
) -> PipelineReport:
    """Run stages in order, stopping on the first fatal outcome.

    Args:
        stages: Stages to run.
        log: Logger receiving stage progress.

    Returns:
        PipelineReport. Stages after a fatal one are not recorded.
    """
    log = log or logger
    report = PipelineReport()

    for stage in stages:
        if not stage.enabled:
            log.debug("Skipping stage %s: %s", stage.name, stage.skip_reason)
            report.results.append(StageResult.skipped(stage.name, stage.skip_reason))
            continue

        log.info("Running stage: %s", stage.name)
        started = time.monotonic()
        try:
            result = stage.action()
        except ReleaseError as e:
            log.error("Stage %s failed: %s", stage.name, e.message)
            report.results.append(
                StageResult(
                    name=stage.name,
                    outcome=StageOutcome.FATAL,
                    message=e.message,
                    result=getattr(e, "result", None),
                    error=e,
                    duration=time.monotonic() - started,
                )
            )
            break

        if result.outcome == StageOutcome.SOFT_FAIL:
            log.warning("Stage %s degraded: %s", stage.name, result.message)
        report.results.append(result)
        if result.outcome == StageOutcome.FATAL:
            break

    return report


__all__ = ["PipelineReport", "Stage", "StageAction", "StageResult", "run_stages"]
