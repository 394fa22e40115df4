from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis

from api.src.db.database import get_db
from api.src.config import get_settings
from api.src.services.queue import get_queue_length, CANCEL_REQUESTS

settings = get_settings()

router = APIRouter(tags=["health"])

async def check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
        return "healthy"
    except (SQLAlchemyError, OSError) as e:
        return f"unhealthy: {e}"

async def check_redis() -> str:
    client = redis.from_url(settings.redis_url)
    try:
        await client.ping()
        return "healthy"
    except (redis.RedisError, OSError) as e:
        return f"unhealthy: {e}"
    finally:
        await client.aclose()

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "pipelinex-api"}

@router.get("/health/db")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    return {"status": await check_database(db)}

@router.get("/health/redis")
async def redis_health_check():
    return {"status": await check_redis()}

@router.get("/health/queue")
async def queue_health_check():
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        return {
            "status": "healthy",
            "queue_length": await get_queue_length(),
            "pending_cancellations": await client.scard(CANCEL_REQUESTS),
        }
    except (redis.RedisError, OSError) as e:
        return {"status": "unhealthy", "error": str(e)}
    finally:
        await client.aclose()

@router.get("/health/all")
async def full_health_check(db: AsyncSession = Depends(get_db)):
    """Combined health check for all services."""
    health = {
        "api": "healthy",
        "database": await check_database(db),
        "redis": await check_redis(),
    }

    overall = "healthy" if all(v == "healthy" for v in health.values()) else "degraded"

    return {"status": overall, "services": health}
