from controller.src.services.trigger import evaluate, match_pattern
from controller.src.services.secrets import (
    SecretNotFoundError,
    SecretResolver,
    EnvSecretStore,
    StaticSecretStore,
    RunSecrets,
)
from controller.src.services.artifacts import (
    ArtifactChannel,
    ArtifactError,
    ArtifactNotReadyError,
)
from controller.src.services.actions import render_action, register_action
from controller.src.services.definition import load_definition
from controller.src.services.executor import LocalStepRunner, StepEnvironment
from controller.src.services.log_collector import BoundedOutput, collect_output
from controller.src.services.workspace import GitSnapshot, LocalSnapshot, Workspace
from controller.src.services.orchestrator import RunOrchestrator
from controller.src.services.status_reporter import (
    RunReporter,
    CompositeReporter,
    LiveStatusReporter,
    DatabaseStatusReporter,
)

__all__ = [
    "evaluate",
    "match_pattern",
    "SecretNotFoundError",
    "SecretResolver",
    "EnvSecretStore",
    "StaticSecretStore",
    "RunSecrets",
    "ArtifactChannel",
    "ArtifactError",
    "ArtifactNotReadyError",
    "render_action",
    "register_action",
    "load_definition",
    "LocalStepRunner",
    "StepEnvironment",
    "BoundedOutput",
    "collect_output",
    "GitSnapshot",
    "LocalSnapshot",
    "Workspace",
    "RunOrchestrator",
    "RunReporter",
    "CompositeReporter",
    "LiveStatusReporter",
    "DatabaseStatusReporter",
]
