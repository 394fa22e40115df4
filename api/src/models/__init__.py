from api.src.models.pipeline import PipelineRun, PipelineStep
from api.src.models.run import (
    TERMINAL_STATUSES,
    PipelineRunResponse,
    StepResponse,
    ManualTriggerRequest,
)

__all__ = [
    "PipelineRun",
    "PipelineStep",
    "TERMINAL_STATUSES",
    "PipelineRunResponse",
    "StepResponse",
    "ManualTriggerRequest",
]
