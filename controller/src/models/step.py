"""
Pipeline definition and step execution models.
"""

import re
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any, Set
from datetime import datetime
from enum import Enum

SECRET_REF = re.compile(r"^\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")
ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*\Z")

class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

class MatchPolicy(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    GLOB = "glob"

class TriggerRule(BaseModel):
    branches: List[str] = []
    match: MatchPolicy = MatchPolicy.EXACT
    ref_types: List[str] = ["branch"]

    class Config:
        frozen = True

def _check_artifact_name(name: str):
    if not ARTIFACT_NAME.match(name):
        raise ValueError(f"invalid artifact name '{name}'")

class StepConfig(BaseModel):
    name: str
    commands: List[str] = []
    uses: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = {}
    secrets: List[str] = []
    publishes: Dict[str, str] = {}
    consumes: List[str] = []
    timeout: Optional[int] = None

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("publishes")
    @classmethod
    def _check_published_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        for name in value:
            _check_artifact_name(name)
        return value

    @field_validator("consumes")
    @classmethod
    def _check_consumed_names(cls, value: List[str]) -> List[str]:
        for name in value:
            _check_artifact_name(name)
        return value

    def secret_bindings(self) -> Dict[str, str]:
        """Map of environment variable -> secret name for this step."""
        bindings = {name: name for name in self.secrets}
        for key, value in self.env.items():
            match = SECRET_REF.match(value)
            if match:
                bindings[key] = match.group(1)
        return bindings

    def plain_env(self) -> Dict[str, str]:
        """Environment values that are not secret references."""
        return {k: v for k, v in self.env.items() if not SECRET_REF.match(v)}

    def required_secrets(self) -> Set[str]:
        return set(self.secret_bindings().values())

class PipelineDefinition(BaseModel):
    name: str = "Unnamed Pipeline"
    trigger: TriggerRule = TriggerRule()
    env: Dict[str, str] = {}
    steps: List[StepConfig]

    class Config:
        frozen = True

    @field_validator("env")
    @classmethod
    def _no_secret_refs(cls, value: Dict[str, str]) -> Dict[str, str]:
        refs = sorted(k for k, v in value.items() if SECRET_REF.match(v))
        if refs:
            raise ValueError(
                f"pipeline env cannot reference secrets ({', '.join(refs)}); "
                "declare them on the steps that use them"
            )
        return value

    def required_secrets(self) -> Set[str]:
        names: Set[str] = set()
        for step in self.steps:
            names |= step.required_secrets()
        return names

class StepResult(BaseModel):
    step_order: int
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    truncated: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    class Config:
        frozen = True

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

class PipelineJob(BaseModel):
    event_id: str
    config: Dict[str, Any]
    repo_info: Dict[str, Any]
    queued_at: str
