"""
Report pipeline and step status.

The orchestrator calls a RunReporter at each lifecycle point. The base class
does nothing; DatabaseStatusReporter persists runs and step results.
"""

import logging
import uuid
from datetime import datetime
from functools import lru_cache
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from controller.src.config import get_settings
from controller.src.models.db import PipelineRun, PipelineStep
from controller.src.models.run import Run
from controller.src.models.step import StepConfig, StepResult, StepStatus

logger = logging.getLogger(__name__)
settings = get_settings()

class RunReporter:
    def run_created(self, run: Run):
        pass

    def run_started(self, run: Run):
        pass

    def step_started(self, run: Run, step_order: int, step: StepConfig):
        pass

    def step_finished(self, run: Run, result: StepResult):
        pass

    def run_finished(self, run: Run):
        pass

class CompositeReporter(RunReporter):
    def __init__(self, *reporters: RunReporter):
        self.reporters = list(reporters)

    def run_created(self, run):
        for r in self.reporters:
            r.run_created(run)

    def run_started(self, run):
        for r in self.reporters:
            r.run_started(run)

    def step_started(self, run, step_order, step):
        for r in self.reporters:
            r.step_started(run, step_order, step)

    def step_finished(self, run, result):
        for r in self.reporters:
            r.step_finished(run, result)

    def run_finished(self, run):
        for r in self.reporters:
            r.run_finished(run)

PIPELINE_STATUS = "pipelinex:status"
PIPELINE_EVENTS = "pipelinex:events"

class LiveStatusReporter(RunReporter):
    """Mirrors run status into the Redis hashes the API reads."""

    def __init__(self, client):
        self.client = client

    def run_created(self, run: Run):
        self.client.hset(PIPELINE_STATUS, run.id, run.status.value)
        if run.event_id:
            self.client.hset(PIPELINE_EVENTS, run.event_id, run.id)

    def run_started(self, run: Run):
        self.client.hset(PIPELINE_STATUS, run.id, run.status.value)

    def step_started(self, run: Run, step_order: int, step: StepConfig):
        self.client.hset(PIPELINE_STATUS, run.id, f"{run.status.value}:{step_order}")

    def run_finished(self, run: Run):
        self.client.hset(PIPELINE_STATUS, run.id, run.status.value)

@lru_cache()
def get_session_factory() -> sessionmaker:
    # Sync database connection for controller
    engine = create_engine(settings.database_url)
    return sessionmaker(bind=engine)

class DatabaseStatusReporter(RunReporter):
    """Writes pipeline_runs and pipeline_steps rows. Never sees secret values."""

    def __init__(self, session_factory: sessionmaker = None):
        self._session_factory = session_factory or get_session_factory()

    def run_created(self, run: Run):
        with self._session_factory() as session:
            session.add(PipelineRun(
                id=uuid.UUID(run.id),
                pipeline=run.pipeline,
                event_id=run.event_id,
                repository=run.repository,
                commit_sha=run.commit_sha,
                branch=run.branch,
                status=run.status.value,
                triggered_by=run.triggered_by,
                config=run.definition.model_dump(mode="json", by_alias=True),
            ))
            session.commit()
        logger.info(f"Recorded run {run.id}")

    def run_started(self, run: Run):
        self._update_run(run.id, status=run.status.value, started_at=run.started_at)

    def run_finished(self, run: Run):
        self._update_run(
            run.id,
            status=run.status.value,
            finished_at=run.finished_at,
            error=run.error,
            error_type=run.error_type,
            failed_step=run.failed_step,
        )

    def step_started(self, run: Run, step_order: int, step: StepConfig):
        with self._session_factory() as session:
            session.add(PipelineStep(
                run_id=uuid.UUID(run.id),
                name=step.name,
                command=" && ".join(step.commands),
                status=StepStatus.RUNNING.value,
                step_order=step_order,
                started_at=datetime.utcnow(),
            ))
            session.commit()

    def step_finished(self, run: Run, result: StepResult):
        with self._session_factory() as session:
            session.execute(
                update(PipelineStep)
                .where(PipelineStep.run_id == uuid.UUID(run.id))
                .where(PipelineStep.step_order == result.step_order)
                .values(
                    status=result.status.value,
                    exit_code=result.exit_code,
                    logs=result.output,
                    truncated=result.truncated,
                    duration_seconds=result.duration_seconds,
                    started_at=result.started_at,
                    finished_at=result.finished_at,
                    updated_at=datetime.utcnow(),
                )
            )
            session.commit()
        logger.debug(f"Updated step {result.step_order} of run {run.id} to {result.status.value}")

    def _update_run(self, run_id: str, **values):
        values["updated_at"] = datetime.utcnow()
        with self._session_factory() as session:
            session.execute(
                update(PipelineRun)
                .where(PipelineRun.id == uuid.UUID(run_id))
                .values(**values)
            )
            session.commit()
        logger.info(f"Updated run {run_id} status to {values.get('status')}")
