from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from uuid import UUID

TERMINAL_STATUSES = ("succeeded", "failed", "cancelled")

class StepResponse(BaseModel):
    id: UUID
    name: str
    command: Optional[str] = None
    status: str
    step_order: int
    exit_code: Optional[int] = None
    truncated: bool = False
    duration_seconds: Optional[float] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PipelineRunBase(BaseModel):
    commit_sha: Optional[str] = None
    branch: str

class PipelineRunResponse(PipelineRunBase):
    id: UUID
    pipeline: str
    event_id: Optional[str] = None
    repository: Optional[str] = None
    status: str
    triggered_by: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_step: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    steps: List[StepResponse] = []

    class Config:
        from_attributes = True

class ManualTriggerRequest(BaseModel):
    repository_url: str
    branch: str = "main"
    commit_sha: Optional[str] = None
    triggered_by: Optional[str] = None
