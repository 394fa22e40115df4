from controller.src.models.step import (
    StepStatus,
    MatchPolicy,
    TriggerRule,
    StepConfig,
    PipelineDefinition,
    StepResult,
    PipelineJob,
)
from controller.src.models.run import (
    RunStatus,
    TERMINAL_STATUSES,
    Event,
    Run,
)

__all__ = [
    "StepStatus",
    "MatchPolicy",
    "TriggerRule",
    "StepConfig",
    "PipelineDefinition",
    "StepResult",
    "PipelineJob",
    "RunStatus",
    "TERMINAL_STATUSES",
    "Event",
    "Run",
]
