"""Tests for the queue worker."""

import asyncio
import json
import time

from controller.src.models.run import Event, RunStatus
from controller.src.models.step import PipelineJob
from controller.src.services.definition import load_definition
from controller.src.services.workspace import GitSnapshot
from controller.src.worker import (
    CANCEL_REQUESTS,
    event_from_job,
    get_next_job,
    process_job,
    watch_cancellations,
    worker_loop,
)

REPO_INFO = {
    "repo_name": "site",
    "repo_full_name": "acme/site",
    "clone_url": "https://github.com/acme/site.git",
    "commit_sha": "0123456789abcdef0123456789abcdef01234567",
    "branch": "main",
    "ref_type": "branch",
    "pusher": "octocat",
}

def make_job(config, **repo_overrides):
    return {
        "event_id": "evt-1",
        "config": config,
        "repo_info": {**REPO_INFO, **repo_overrides},
        "queued_at": "2024-01-01T00:00:00",
    }

class FakeAsyncRedis:
    def __init__(self, queued=None, cancel_requests=None):
        self.queued = list(queued or [])
        self.sets = {CANCEL_REQUESTS: set(cancel_requests or [])}
        self.closed = False

    async def brpop(self, key, timeout=0):
        if self.queued:
            return key, self.queued.pop()
        await asyncio.sleep(0.01)
        return None

    async def srem(self, key, member):
        members = self.sets.setdefault(key, set())
        if member in members:
            members.remove(member)
            return 1
        return 0

    async def aclose(self):
        self.closed = True

def test_event_from_job():
    event = event_from_job(PipelineJob.model_validate(make_job({})))

    assert event.id == "evt-1"
    assert event.branch == "main"
    assert event.ref_type == "branch"
    assert event.repository == "acme/site"
    assert event.triggered_by == "octocat"
    assert isinstance(event.snapshot, GitSnapshot)
    assert event.snapshot.commit_sha == REPO_INFO["commit_sha"]
    assert event.snapshot.branch == "main"

def test_event_without_clone_url_has_no_snapshot():
    event = event_from_job(PipelineJob.model_validate(make_job({}, clone_url="")))
    assert event.snapshot is None

def test_get_next_job():
    client = FakeAsyncRedis(queued=[json.dumps(make_job({"steps": []}))])

    job = asyncio.run(get_next_job(client))

    assert job["event_id"] == "evt-1"
    assert job["repo_info"]["branch"] == "main"
    assert asyncio.run(get_next_job(client)) is None

def test_process_job_with_invalid_config(make_orchestrator, reporter):
    run = asyncio.run(process_job(make_job({"steps": []}), make_orchestrator()))

    assert run is None
    assert reporter.events == []

def test_process_job_not_triggered(make_orchestrator, deploy_config, reporter, workspace_root):
    # The clone URL is never contacted because the branch does not match
    job = make_job(deploy_config, branch="feature/login")

    run = asyncio.run(process_job(job, make_orchestrator()))

    assert run is None
    assert reporter.events == []
    assert not workspace_root.exists()

def test_process_job_runs_pipeline(make_orchestrator, deploy_config):
    job = make_job(deploy_config, clone_url="")

    run = asyncio.run(process_job(job, make_orchestrator()))

    assert run.status == RunStatus.SUCCEEDED
    assert run.event_id == "evt-1"
    assert run.repository == "acme/site"

def test_watch_cancellations(make_orchestrator):
    definition = load_definition({
        "trigger": {"branches": ["main"]},
        "steps": [{"name": "long", "run": "sleep 30"}],
    })
    orchestrator = make_orchestrator()

    async def scenario():
        run = orchestrator.create_run(definition, Event(branch="main"))
        client = FakeAsyncRedis(cancel_requests=[run.id, "some-other-run"])
        task = asyncio.create_task(orchestrator.execute(run))
        watcher = asyncio.create_task(watch_cancellations(client, orchestrator, 0.05))
        try:
            await asyncio.wait_for(task, timeout=15)
        finally:
            watcher.cancel()
        return run, client

    run, client = asyncio.run(scenario())

    assert run.status == RunStatus.CANCELLED
    assert client.sets[CANCEL_REQUESTS] == {"some-other-run"}

def test_shutdown_while_all_slots_are_busy(make_orchestrator, monkeypatch):
    monkeypatch.setattr("controller.src.worker.settings.max_concurrent_runs", 1)
    monkeypatch.setattr("controller.src.worker.settings.cancel_poll_interval", 0.05)
    config = {
        "trigger": {"branches": ["main"]},
        "steps": [{"name": "long", "run": "sleep 30"}],
    }
    orchestrator = make_orchestrator()
    client = FakeAsyncRedis(queued=[json.dumps(make_job(config, clone_url=""))])

    async def scenario():
        stopping = asyncio.Event()
        loop_task = asyncio.create_task(worker_loop(orchestrator, client, stopping))
        for _ in range(200):
            if orchestrator.active_run_ids():
                break
            await asyncio.sleep(0.02)
        run = orchestrator.get_run(orchestrator.active_run_ids()[0])

        start = time.monotonic()
        stopping.set()
        await asyncio.wait_for(loop_task, timeout=15)
        return run, time.monotonic() - start

    run, elapsed = asyncio.run(scenario())

    assert run.status == RunStatus.CANCELLED
    assert elapsed < 10
    assert client.closed
