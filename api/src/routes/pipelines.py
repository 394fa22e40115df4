from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import List, Optional
from uuid import UUID

from api.src.db.database import get_db
from api.src.models.pipeline import PipelineRun, PipelineStep
from api.src.models.run import PipelineRunResponse, ManualTriggerRequest, TERMINAL_STATUSES
from api.src.services.events import submit_event
from api.src.services.queue import get_run_status, get_event_run, request_cancel

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

def repo_info_from_url(request: ManualTriggerRequest) -> dict:
    """Build the same repo info a push webhook carries from a repository URL."""
    path = request.repository_url.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    parts = path.replace(":", "/").split("/")
    full_name = "/".join(parts[-2:])

    return {
        "repo_name": parts[-1],
        "repo_full_name": full_name,
        "clone_url": request.repository_url,
        "commit_sha": request.commit_sha or "",
        "branch": request.branch,
        "ref_type": "branch",
        "commit_message": "",
        "pusher": request.triggered_by or "manual",
        "deleted": False,
    }

async def _load_run(run_id: UUID, db: AsyncSession) -> PipelineRun:
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .where(PipelineRun.id == run_id)
    )
    result = await db.execute(query)
    run = result.scalar_one_or_none()

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return run

@router.post("/trigger")
async def trigger_run(request: ManualTriggerRequest):
    """Queue a new event for a repository branch, as if it had just been pushed."""
    result = await submit_event(repo_info_from_url(request))
    if result["status"] == "error":
        raise HTTPException(status_code=422, detail=result["reason"])
    return result

@router.get("/events/{event_id}")
async def get_event(event_id: str):
    """Which run, if any, an event produced."""
    run_id = await get_event_run(event_id)
    return {"event_id": event_id, "run_id": run_id, "triggered": run_id is not None}

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    branch: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List all pipeline runs."""
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .order_by(PipelineRun.created_at.desc())
    )

    if status:
        query = query.where(PipelineRun.status == status)
    if branch:
        query = query.where(PipelineRun.branch == branch)

    query = query.limit(limit).offset(offset)

    result = await db.execute(query)
    runs = result.scalars().all()
    return runs

@router.get("/runs/{run_id}", response_model=PipelineRunResponse)
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get a specific pipeline run."""
    return await _load_run(run_id, db)

@router.get("/runs/{run_id}/status")
async def get_run_status_endpoint(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get real-time status of a pipeline run."""
    run = await _load_run(run_id, db)

    # Get live status from Redis
    redis_status = await get_run_status(str(run_id))

    declared = [s["name"] for s in (run.config or {}).get("steps", [])]
    recorded = {step.step_order: step for step in run.steps}

    return {
        "run_id": str(run_id),
        "db_status": run.status,
        "live_status": redis_status,
        "error": run.error,
        "error_type": run.error_type,
        "steps": [
            {
                "name": name,
                "status": recorded[i].status if i in recorded else "not_run",
                "order": i,
            }
            for i, name in enumerate(declared)
        ]
    }

@router.get("/runs/{run_id}/logs")
async def get_run_logs(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get logs for all executed steps in a pipeline run."""
    run = await _load_run(run_id, db)

    return {
        "run_id": str(run_id),
        "steps": [
            {
                "name": step.name,
                "status": step.status,
                "exit_code": step.exit_code,
                "logs": step.logs,
                "truncated": step.truncated,
                "started_at": step.started_at,
                "finished_at": step.finished_at,
            }
            for step in run.steps
        ]
    }

@router.post("/runs/{run_id}/cancel", status_code=202)
async def cancel_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Ask the controller to cancel an in-flight run."""
    run = await _load_run(run_id, db)

    if run.status in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Pipeline run already {run.status}")

    await request_cancel(str(run_id))
    return {"run_id": str(run_id), "status": "cancel_requested"}

@router.get("/stats")
async def get_pipeline_stats(db: AsyncSession = Depends(get_db)):
    """Get pipeline statistics."""
    # Count runs by status
    status_query = (
        select(PipelineRun.status, func.count(PipelineRun.id))
        .group_by(PipelineRun.status)
    )
    result = await db.execute(status_query)
    status_counts = {row[0]: row[1] for row in result.all()}

    # Count distinct repositories
    repo_count_query = select(func.count(func.distinct(PipelineRun.repository)))
    result = await db.execute(repo_count_query)
    repo_count = result.scalar()

    # Count executed steps
    step_count_query = select(func.count(PipelineStep.id))
    result = await db.execute(step_count_query)
    step_count = result.scalar()

    return {
        "repositories": repo_count,
        "runs": status_counts,
        "total_runs": sum(status_counts.values()),
        "steps_executed": step_count,
    }
