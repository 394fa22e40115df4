"""
Queue worker - pulls trigger events from Redis and runs them.
"""

import asyncio
import logging
import signal
import redis
import redis.asyncio as aioredis
from typing import Optional, Dict, Any

from pydantic import ValidationError

from controller.src.config import get_settings
from controller.src.errors import PipelineConfigError
from controller.src.models.run import Event, Run
from controller.src.models.step import PipelineJob
from controller.src.services.definition import load_definition
from controller.src.services.orchestrator import RunOrchestrator
from controller.src.services.secrets import EnvSecretStore
from controller.src.services.status_reporter import (
    CompositeReporter,
    DatabaseStatusReporter,
    LiveStatusReporter,
)
from controller.src.services.workspace import GitSnapshot

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_QUEUE = "pipelinex:jobs"
CANCEL_REQUESTS = "pipelinex:cancel"

def build_orchestrator() -> RunOrchestrator:
    reporters = [LiveStatusReporter(redis.from_url(settings.redis_url, decode_responses=True))]
    if settings.report_to_database:
        reporters.append(DatabaseStatusReporter())

    return RunOrchestrator(
        secret_store=EnvSecretStore(settings.secret_env_prefix),
        reporter=CompositeReporter(*reporters),
    )

def event_from_job(job: PipelineJob) -> Event:
    repo = job.repo_info
    snapshot = None
    if repo.get("clone_url"):
        snapshot = GitSnapshot(repo["clone_url"], repo.get("commit_sha", ""), repo.get("branch", ""))

    return Event(
        id=job.event_id,
        branch=repo.get("branch", ""),
        ref_type=repo.get("ref_type", "branch"),
        commit_sha=repo.get("commit_sha", ""),
        repository=repo.get("repo_full_name", ""),
        triggered_by=repo.get("pusher", ""),
        snapshot=snapshot,
    )

async def get_next_job(client) -> Optional[Dict[str, Any]]:
    """Pull next job from Redis queue."""
    result = await client.brpop(PIPELINE_QUEUE, timeout=5)
    if result:
        _, job_data = result
        return PipelineJob.model_validate_json(job_data).model_dump()
    return None

async def process_job(job_data: Dict[str, Any], orchestrator: RunOrchestrator) -> Optional[Run]:
    """Load the definition carried by a job and hand the event to the orchestrator."""
    job = PipelineJob.model_validate(job_data)

    try:
        definition = load_definition(job.config)
    except PipelineConfigError as e:
        logger.error(f"Invalid pipeline config in event {job.event_id}: {e}")
        return None

    return await orchestrator.handle_event(definition, event_from_job(job))

async def watch_cancellations(client, orchestrator: RunOrchestrator, interval: float):
    """Forward cancel requests recorded by the API to in-flight runs."""
    while True:
        for run_id in orchestrator.active_run_ids():
            if await client.srem(CANCEL_REQUESTS, run_id):
                orchestrator.cancel(run_id)
        await asyncio.sleep(interval)

async def _run_job(job: Dict[str, Any], orchestrator: RunOrchestrator, slots: asyncio.Semaphore):
    event_id = job.get("event_id", "unknown")
    try:
        await process_job(job, orchestrator)
    except Exception as e:
        logger.exception(f"Failed to process event {event_id}: {e}")
    finally:
        slots.release()

async def _acquire_slot(slots: asyncio.Semaphore, stopping: asyncio.Event) -> bool:
    """Wait for a free run slot. Returns False when shutdown is requested first."""
    acquire = asyncio.ensure_future(slots.acquire())
    stop = asyncio.ensure_future(stopping.wait())
    await asyncio.wait({acquire, stop}, return_when=asyncio.FIRST_COMPLETED)
    stop.cancel()

    if not acquire.done():
        acquire.cancel()
        return False
    if stopping.is_set():
        slots.release()
        return False
    return True

async def worker_loop(
    orchestrator: Optional[RunOrchestrator] = None,
    client=None,
    stopping: Optional[asyncio.Event] = None,
):
    """Main worker loop. Runs until SIGINT/SIGTERM or until `stopping` is set."""
    orchestrator = orchestrator or build_orchestrator()
    client = client or aioredis.from_url(settings.redis_url, decode_responses=True)
    slots = asyncio.Semaphore(settings.max_concurrent_runs)
    running = set()
    stopping = stopping or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopping.set)
        except (NotImplementedError, RuntimeError):
            pass  # Not on the main thread

    watcher = asyncio.create_task(
        watch_cancellations(client, orchestrator, settings.cancel_poll_interval)
    )
    logger.info(f"Worker started ({settings.max_concurrent_runs} run slots), waiting for jobs...")

    try:
        while not stopping.is_set():
            if not await _acquire_slot(slots, stopping):
                break
            try:
                job = await get_next_job(client)
            except (redis.RedisError, ValidationError) as e:
                slots.release()
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(5)
                continue

            if not job:
                slots.release()
                continue

            logger.info(f"Received event {job['event_id']}")
            task = asyncio.create_task(_run_job(job, orchestrator, slots))
            running.add(task)
            task.add_done_callback(running.discard)
    finally:
        logger.info("Worker shutting down...")
        watcher.cancel()
        orchestrator.cancel_all()
        await asyncio.gather(*running, return_exceptions=True)
        await client.aclose()

def run_worker():
    """Entry point for worker."""
    asyncio.run(worker_loop())
