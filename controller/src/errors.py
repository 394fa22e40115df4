"""
Errors that end a pipeline run.
"""

from typing import Optional


class PipelineRunError(Exception):
    """Base class for failures that move a run to a terminal status."""

    def __init__(self, message: str, step_order: Optional[int] = None):
        super().__init__(message)
        self.step_order = step_order


class ProvisioningError(PipelineRunError):
    """Raised when the run workspace cannot be prepared."""


class StepExecutionError(PipelineRunError):
    """Raised when a step exits with a nonzero code."""


class StepTimeoutError(PipelineRunError):
    """Raised when a step exceeds its timeout and is terminated."""


class RunCancelledError(PipelineRunError):
    """Raised when a run is cancelled by an external request."""


class RunStateError(Exception):
    """Raised on an illegal run status transition or a mutation after completion."""


class PipelineConfigError(Exception):
    """Raised when a pipeline definition is invalid."""
