"""Pipeline engine — schedule evaluation, retry selection, step dispatch, task loops."""

from conveyor.pipeline.errors import (
    ConfigurationError,
    PipelineError,
    PipelineRunError,
    StepNotImplementedError,
)
from conveyor.pipeline.host import PipelineHost
from conveyor.pipeline.models import (
    ProcessStatus,
    RunContext,
    RunReport,
    StepDescriptor,
    StepResult,
    WorkItem,
)
from conveyor.pipeline.orchestrator import PipelineOrchestrator
from conveyor.pipeline.provider import FileSettingsProvider, StaticSettingsProvider
from conveyor.pipeline.registry import HandlerRegistry, StepHandlerRegistry
from conveyor.pipeline.runner import RecurringTaskRunner
from conveyor.pipeline.schedule import ScheduleEvaluator
from conveyor.pipeline.settings import BackgroundConfig, RetryPolicy, Schedule, TaskSettings

__all__ = [
    "BackgroundConfig",
    "ConfigurationError",
    "FileSettingsProvider",
    "HandlerRegistry",
    "PipelineError",
    "PipelineHost",
    "PipelineOrchestrator",
    "PipelineRunError",
    "ProcessStatus",
    "RecurringTaskRunner",
    "RetryPolicy",
    "RunContext",
    "RunReport",
    "Schedule",
    "ScheduleEvaluator",
    "StaticSettingsProvider",
    "StepDescriptor",
    "StepHandlerRegistry",
    "StepNotImplementedError",
    "StepResult",
    "TaskSettings",
    "WorkItem",
]
