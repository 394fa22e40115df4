"""
Run and trigger event models.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from controller.src.models.step import PipelineDefinition, StepResult
from controller.src.errors import RunStateError

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED}

VALID_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.RUNNING: {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.SUCCEEDED: set(),
    RunStatus.FAILED: set(),
    RunStatus.CANCELLED: set(),
}

class Event(BaseModel):
    """A trigger event: a ref plus an accessor for the repository snapshot."""

    id: str = ""
    branch: str
    ref_type: str = "branch"
    commit_sha: str = ""
    repository: str = ""
    triggered_by: str = ""
    snapshot: Optional[Any] = None

    class Config:
        arbitrary_types_allowed = True

class Run(BaseModel):
    """
    One execution of a PipelineDefinition against one event.

    Mutate only through transition(), record() and finish().
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    definition: PipelineDefinition
    event_id: str = ""
    branch: str
    commit_sha: str = ""
    repository: str = ""
    triggered_by: str = ""
    status: RunStatus = RunStatus.PENDING
    current_step: int = 0
    results: List[StepResult] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_step: Optional[int] = None

    @property
    def pipeline(self) -> str:
        return self.definition.name

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, target: RunStatus):
        allowed = VALID_TRANSITIONS[self.status]
        if target not in allowed:
            raise RunStateError(
                f"Cannot transition run {self.id} from {self.status.value} to {target.value}"
            )
        self.status = target
        if target == RunStatus.RUNNING:
            self.started_at = datetime.utcnow()
        elif target in TERMINAL_STATUSES:
            self.finished_at = datetime.utcnow()

    def record(self, result: StepResult):
        """Append a step result and advance the step index."""
        if self.status != RunStatus.RUNNING:
            raise RunStateError(
                f"Cannot record results on run {self.id} in status {self.status.value}"
            )
        if result.step_order != len(self.results):
            raise RunStateError(
                f"Result for step {result.step_order} recorded out of order on run {self.id}"
            )
        self.results.append(result)
        self.current_step = len(self.results)

    def finish(self, status: RunStatus, error: Optional[BaseException] = None):
        if status not in TERMINAL_STATUSES:
            raise RunStateError(f"{status.value} is not a terminal status")
        if status not in VALID_TRANSITIONS[self.status]:
            raise RunStateError(f"Run {self.id} is already {self.status.value}")
        if error is not None:
            self.error = str(error)
            self.error_type = type(error).__name__
            self.failed_step = getattr(error, "step_order", None)
        self.transition(status)

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.id,
            "pipeline": self.pipeline,
            "branch": self.branch,
            "status": self.status.value,
            "error": self.error,
            "error_type": self.error_type,
            "steps": [
                {
                    "order": r.step_order,
                    "name": r.name,
                    "status": r.status.value,
                    "exit_code": r.exit_code,
                }
                for r in self.results
            ],
        }
