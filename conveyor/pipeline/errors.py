"""Pipeline exception hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conveyor.pipeline.models import RunReport, StepFailure


class PipelineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(PipelineError):
    """Task configuration is missing or invalid. Not retried automatically."""


class StepNotImplementedError(ConfigurationError):
    """A configured step has no registered handler."""

    def __init__(self, step_name: str) -> None:
        super().__init__(f"step '{step_name}' is not implemented")
        self.step_name = step_name


class PipelineRunError(PipelineError):
    """One or more steps of a run failed as a whole.

    Raised once per run after every step has had its chance, so a failing
    step never prevents its siblings from committing.
    """

    def __init__(
        self,
        task_name: str,
        run_count: int,
        failures: list[StepFailure],
        report: RunReport,
    ) -> None:
        steps = ", ".join(f"'{f.step_name}' ({f.phase}: {f.message})" for f in failures)
        super().__init__(
            f"Task '{task_name}' run #{run_count} had {len(failures)} failed step(s): {steps}"
        )
        self.task_name = task_name
        self.run_count = run_count
        self.failures = failures
        self.report = report
