"""Tests for the live and database status reporters."""

import asyncio
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from controller.src.models.db import Base, PipelineRun, PipelineStep
from controller.src.models.run import Event
from controller.src.services.definition import load_definition
from controller.src.services.status_reporter import (
    PIPELINE_EVENTS,
    PIPELINE_STATUS,
    CompositeReporter,
    DatabaseStatusReporter,
    LiveStatusReporter,
)

class FakeRedis:
    def __init__(self):
        self.hashes = {}
        self.history = []

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value
        self.history.append((name, key, value))

@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'pipelinex.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()

def test_database_reporter_records_run(make_orchestrator, deploy_definition, session_factory):
    orchestrator = make_orchestrator(reporter=DatabaseStatusReporter(session_factory))

    run = asyncio.run(orchestrator.handle_event(
        deploy_definition, Event(id="evt-1", branch="main", commit_sha="abc123", repository="acme/site")
    ))

    with session_factory() as session:
        row = session.get(PipelineRun, uuid.UUID(run.id))
        assert row.status == "succeeded"
        assert row.event_id == "evt-1"
        assert row.repository == "acme/site"
        assert row.pipeline == "Deploy site"
        assert [s["name"] for s in row.config["steps"]] == ["install", "build", "deploy"]
        assert row.started_at is not None
        assert row.finished_at is not None
        assert row.error is None

        steps = (
            session.query(PipelineStep)
            .filter(PipelineStep.run_id == uuid.UUID(run.id))
            .order_by(PipelineStep.step_order)
            .all()
        )
        assert [s.name for s in steps] == ["install", "build", "deploy"]
        assert all(s.status == "succeeded" and s.exit_code == 0 for s in steps)

def test_database_reporter_records_failure(make_orchestrator, session_factory):
    definition = load_definition({
        "trigger": {"branches": ["main"]},
        "steps": [
            {"name": "ok", "run": "echo fine"},
            {"name": "broken", "run": "echo nope; exit 2"},
            {"name": "never", "run": "true"},
        ],
    })
    orchestrator = make_orchestrator(reporter=DatabaseStatusReporter(session_factory))

    run = asyncio.run(orchestrator.handle_event(definition, Event(branch="main")))

    with session_factory() as session:
        row = session.get(PipelineRun, uuid.UUID(run.id))
        assert row.status == "failed"
        assert row.error_type == "StepExecutionError"
        assert row.failed_step == 1

        steps = (
            session.query(PipelineStep)
            .filter(PipelineStep.run_id == uuid.UUID(run.id))
            .order_by(PipelineStep.step_order)
            .all()
        )
        assert [s.name for s in steps] == ["ok", "broken"]
        assert steps[1].exit_code == 2
        assert steps[1].logs == "nope\n"

def test_database_never_stores_secret_values(make_orchestrator, session_factory):
    definition = load_definition({
        "trigger": {"branches": ["main"]},
        "steps": [{"name": "leak", "run": 'echo "$TOKEN"', "secrets": ["TOKEN"]}],
    })
    orchestrator = make_orchestrator(
        secrets={"TOKEN": "very-secret-value"},
        reporter=DatabaseStatusReporter(session_factory),
    )

    run = asyncio.run(orchestrator.handle_event(definition, Event(branch="main")))

    with session_factory() as session:
        step = session.query(PipelineStep).filter(PipelineStep.run_id == uuid.UUID(run.id)).one()
        assert step.logs == "***\n"
        row = session.get(PipelineRun, uuid.UUID(run.id))
        assert "very-secret-value" not in str(row.config)

def test_live_reporter(make_orchestrator, deploy_definition):
    client = FakeRedis()
    orchestrator = make_orchestrator(reporter=LiveStatusReporter(client))

    run = asyncio.run(orchestrator.handle_event(deploy_definition, Event(id="evt-9", branch="main")))

    assert client.hashes[PIPELINE_STATUS][run.id] == "succeeded"
    assert client.hashes[PIPELINE_EVENTS]["evt-9"] == run.id
    assert (PIPELINE_STATUS, run.id, "running:2") in client.history

def test_composite_reporter_fans_out(make_orchestrator, deploy_definition, reporter):
    client = FakeRedis()
    orchestrator = make_orchestrator(reporter=CompositeReporter(reporter, LiveStatusReporter(client)))

    run = asyncio.run(orchestrator.handle_event(deploy_definition, Event(branch="main")))

    assert reporter.events[-1] == ("run_finished", "succeeded")
    assert client.hashes[PIPELINE_STATUS][run.id] == "succeeded"
