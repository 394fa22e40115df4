"""
Redis queue service for pipeline events.
"""

import redis.asyncio as redis
import json
from typing import Dict, Any, Optional
from datetime import datetime

from api.src.config import get_settings

settings = get_settings()

PIPELINE_QUEUE = "pipelinex:jobs"
PIPELINE_STATUS = "pipelinex:status"
PIPELINE_EVENTS = "pipelinex:events"
CANCEL_REQUESTS = "pipelinex:cancel"

async def get_redis_client() -> redis.Redis:
    """Get async Redis client."""
    return redis.from_url(settings.redis_url, decode_responses=True)

async def enqueue_event(event_id: str, config: Dict[str, Any], repo_info: Dict[str, Any]):
    """Add a trigger event to the processing queue."""
    client = await get_redis_client()

    job = {
        "event_id": event_id,
        "config": config,
        "repo_info": repo_info,
        "queued_at": datetime.utcnow().isoformat(),
    }

    try:
        await client.lpush(PIPELINE_QUEUE, json.dumps(job))
    finally:
        await client.aclose()

async def get_run_status(run_id: str) -> Optional[str]:
    """Get live pipeline run status from Redis."""
    client = await get_redis_client()

    try:
        return await client.hget(PIPELINE_STATUS, run_id)
    finally:
        await client.aclose()

async def get_event_run(event_id: str) -> Optional[str]:
    """Run id created for an event, if the event triggered a run."""
    client = await get_redis_client()

    try:
        return await client.hget(PIPELINE_EVENTS, event_id)
    finally:
        await client.aclose()

async def request_cancel(run_id: str):
    """Record a cancel request; the controller picks it up on its next poll."""
    client = await get_redis_client()

    try:
        await client.sadd(CANCEL_REQUESTS, run_id)
    finally:
        await client.aclose()

async def get_queue_length() -> int:
    """Get number of events in queue."""
    client = await get_redis_client()

    try:
        return await client.llen(PIPELINE_QUEUE)
    finally:
        await client.aclose()
