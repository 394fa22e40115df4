"""
Run orchestrator - takes a trigger event through a complete pipeline run.

pending -> running -> succeeded | failed | cancelled

Steps run one at a time in declaration order. The first failing step ends
the run; later steps never start and nothing already applied is rolled back.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from controller.src.config import get_settings
from controller.src.errors import (
    PipelineRunError,
    RunCancelledError,
    RunStateError,
    StepExecutionError,
    StepTimeoutError,
)
from controller.src.models.run import Event, Run, RunStatus
from controller.src.models.step import PipelineDefinition, StepConfig, StepResult, StepStatus
from controller.src.services.artifacts import ArtifactChannel, ArtifactError, ArtifactNotReadyError
from controller.src.services.executor import LocalStepRunner, StepEnvironment
from controller.src.services.secrets import EnvSecretStore, RunSecrets, SecretResolver, SecretStore
from controller.src.services.status_reporter import RunReporter
from controller.src.services.trigger import match_pattern
from controller.src.services.workspace import RepositorySnapshot, Workspace, provision_workspace

logger = logging.getLogger(__name__)
settings = get_settings()

def artifact_env_var(name: str) -> str:
    return "PIPELINEX_ARTIFACT_" + re.sub(r"[^A-Za-z0-9]", "_", name).upper()

class RunOrchestrator:
    def __init__(
        self,
        executor=None,
        secret_store: Optional[SecretStore] = None,
        reporter: Optional[RunReporter] = None,
        workspace_root: Optional[str] = None,
        step_timeout: Optional[float] = None,
        inherit_env: Optional[Iterable[str]] = None,
        keep_workspace: Optional[bool] = None,
    ):
        self.executor = executor or LocalStepRunner()
        self.resolver = SecretResolver(secret_store or EnvSecretStore(settings.secret_env_prefix))
        self.reporter = reporter or RunReporter()
        self.workspace_root = Path(workspace_root or settings.workspace_root)
        self.step_timeout = step_timeout or settings.job_timeout
        self.inherit_env = list(settings.inherit_env if inherit_env is None else inherit_env)
        self.keep_workspace = settings.keep_workspace if keep_workspace is None else keep_workspace

        self._runs: Dict[str, Run] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    # Run registry

    def get_run(self, run_id: str) -> Optional[Run]:
        """Runs are registered from creation until they finish."""
        return self._runs.get(run_id)

    def active_run_ids(self) -> List[str]:
        return [run_id for run_id, run in self._runs.items() if not run.is_terminal]

    def cancel(self, run_id: str) -> bool:
        """Request cancellation. Returns False if the run is unknown or already finished."""
        run = self._runs.get(run_id)
        event = self._cancel_events.get(run_id)
        if run is None or event is None or run.is_terminal:
            return False
        event.set()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def cancel_all(self):
        for run_id in self.active_run_ids():
            self.cancel(run_id)

    # Lifecycle

    async def handle_event(self, definition: PipelineDefinition, event: Event) -> Optional[Run]:
        """
        Evaluate the trigger and, on a match, create and execute a run.
        Returns None when the event does not match; nothing is provisioned then.
        """
        pattern = match_pattern(event, definition.trigger)
        if pattern is None:
            logger.info(
                f"Pipeline '{definition.name}' not triggered by {event.ref_type} '{event.branch}'"
            )
            return None

        logger.info(f"Pipeline '{definition.name}' triggered by '{event.branch}' (pattern '{pattern}')")
        run = self.create_run(definition, event)
        return await self.execute(run, event.snapshot)

    def create_run(self, definition: PipelineDefinition, event: Event) -> Run:
        run = Run(
            definition=definition,
            event_id=event.id,
            branch=event.branch,
            commit_sha=event.commit_sha,
            repository=event.repository,
            triggered_by=event.triggered_by,
        )
        self._runs[run.id] = run
        self._cancel_events[run.id] = asyncio.Event()
        self._notify("run_created", run)
        return run

    async def execute(self, run: Run, snapshot: Optional[RepositorySnapshot] = None) -> Run:
        if run.status != RunStatus.PENDING:
            raise RunStateError(f"Run {run.id} has already been started")

        cancel_event = self._cancel_events.setdefault(run.id, asyncio.Event())
        workspace = None
        artifacts = None
        secrets = RunSecrets()
        steps = run.definition.steps

        logger.info(f"Starting pipeline run {run.id} with {len(steps)} steps")

        try:
            if cancel_event.is_set():
                raise RunCancelledError(f"Run {run.id} cancelled before start")

            workspace = await provision_workspace(self.workspace_root, run.id, snapshot)
            run.transition(RunStatus.RUNNING)
            self._notify("run_started", run)

            secrets = RunSecrets.open(self.resolver, run.definition.required_secrets())
            artifacts = ArtifactChannel(workspace.artifacts)

            for order, step in enumerate(steps):
                if cancel_event.is_set():
                    raise RunCancelledError(
                        f"Run cancelled before step {order} ({step.name})", step_order=order
                    )
                await self._run_step(run, order, step, workspace, secrets, artifacts, cancel_event)

            run.finish(RunStatus.SUCCEEDED)
        except RunCancelledError as e:
            run.finish(RunStatus.CANCELLED, e)
        except PipelineRunError as e:
            run.finish(RunStatus.FAILED, e)
        except asyncio.CancelledError:
            run.finish(RunStatus.CANCELLED, RunCancelledError("Run interrupted by worker shutdown"))
            raise
        except Exception as e:
            logger.exception(f"Pipeline run {run.id} failed with an unexpected error")
            run.finish(RunStatus.FAILED, e)
        finally:
            secrets.clear()
            if artifacts is not None:
                artifacts.discard()
            if workspace is not None and not self.keep_workspace:
                workspace.teardown()
            self._cancel_events.pop(run.id, None)
            self._runs.pop(run.id, None)
            self._notify("run_finished", run)

        log = logger.info if run.status == RunStatus.SUCCEEDED else logger.error
        log(f"Pipeline run {run.id} finished with status: {run.status.value}"
            + (f" ({run.error_type}: {run.error})" if run.error else ""))
        return run

    async def _run_step(
        self,
        run: Run,
        order: int,
        step: StepConfig,
        workspace: Workspace,
        secrets: RunSecrets,
        artifacts: ArtifactChannel,
        cancel_event: asyncio.Event,
    ):
        env = workspace.base_env(self.inherit_env)
        env.update({
            "PIPELINEX_RUN_ID": run.id,
            "PIPELINEX_STEP_ORDER": str(order),
            "PIPELINEX_STEP_NAME": step.name,
            "PIPELINEX_BRANCH": run.branch,
            "PIPELINEX_COMMIT_SHA": run.commit_sha,
        })
        env.update(run.definition.env)
        env.update(step.plain_env())

        for name in step.consumes:
            try:
                env[artifact_env_var(name)] = str(artifacts.consume(name))
            except ArtifactNotReadyError:
                raise ArtifactNotReadyError(
                    f"Step '{step.name}' consumes artifact '{name}' before it is published",
                    step_order=order,
                )

        env.update(secrets.for_step(step))

        environment = StepEnvironment(
            workdir=workspace.src,
            env=env,
            step_order=order,
            timeout=step.timeout or self.step_timeout,
            cancel_event=cancel_event,
            mask=secrets.mask,
            mask_margin=secrets.longest,
        )

        self._notify("step_started", run, order, step)
        result = await self.executor.execute(step, environment)

        if result.succeeded and step.publishes:
            try:
                self._publish(step, workspace, artifacts)
            except ArtifactError as e:
                result = result.model_copy(update={"status": StepStatus.FAILED, "error": str(e)})

        run.record(result)
        self._notify("step_finished", run, result)

        if not result.succeeded:
            raise self._step_error(result)

    def _publish(self, step: StepConfig, workspace: Workspace, artifacts: ArtifactChannel):
        src = workspace.src.resolve()
        for name, relative in step.publishes.items():
            path = (workspace.src / relative).resolve()
            if path != src and src not in path.parents:
                raise ArtifactError(f"Artifact '{name}' path '{relative}' is outside the workspace")
            artifacts.publish(step.name, name, path)

    @staticmethod
    def _step_error(result: StepResult) -> PipelineRunError:
        message = result.error or f"Step '{result.name}' failed"
        if result.status == StepStatus.TIMED_OUT:
            return StepTimeoutError(message, step_order=result.step_order)
        if result.status == StepStatus.CANCELLED:
            return RunCancelledError(message, step_order=result.step_order)
        return StepExecutionError(message, step_order=result.step_order)

    def _notify(self, hook: str, run: Run, *args):
        try:
            getattr(self.reporter, hook)(run, *args)
        except Exception:
            logger.exception(f"Status reporter failed on {hook} for run {run.id}")
