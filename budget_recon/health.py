"""Health check endpoints."""

import asyncio
from typing import Any

import redis.asyncio as redis
from sqlalchemy import func, select, text

from .config import settings
from .database import engine
from .models.ledger import UserLedger


async def check_postgresql() -> dict[str, Any]:
    """Check the ledger database is reachable and migrated."""
    try:
        async with asyncio.timeout(5.0):
            async with engine.connect() as conn:
                version = await conn.scalar(text("SELECT version()"))
                ledgers = await conn.scalar(select(func.count()).select_from(UserLedger))
        return {"status": "healthy", "version": version[:50] + "...", "ledgers": ledgers}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


async def check_redis() -> dict[str, Any]:
    """Check Redis connectivity. Skipped unless Redis backs the sync lock."""
    if settings.sync_lock_backend != "redis":
        return {"status": "healthy", "detail": "not used"}

    try:
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            decode_responses=True,
        )
        await asyncio.wait_for(client.ping(), timeout=5.0)
        info = await client.info("server")
        await client.aclose()
        return {"status": "healthy", "version": info.get("redis_version", "unknown")}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_plaid() -> dict[str, Any]:
    """Check sync can talk to Plaid and read stored tokens. No network calls."""
    missing = [
        name
        for name, value in (
            ("plaid_client_id", settings.plaid_client_id),
            ("plaid_secret", settings.plaid_secret),
            ("credential_secret", settings.credential_secret),
        )
        if not value
    ]
    if missing:
        return {"status": "unhealthy", "error": f"Missing settings: {', '.join(missing)}"}
    return {"status": "healthy", "environment": settings.plaid_env}


async def get_health_status() -> dict[str, Any]:
    """Get overall health status."""
    postgres, redis_status = await asyncio.gather(
        check_postgresql(),
        check_redis(),
        return_exceptions=True,
    )

    # Handle exceptions
    if isinstance(postgres, Exception):
        postgres = {"status": "unhealthy", "error": str(postgres)}
    if isinstance(redis_status, Exception):
        redis_status = {"status": "unhealthy", "error": str(redis_status)}
    plaid = check_plaid()

    all_healthy = all(s.get("status") == "healthy" for s in [postgres, redis_status, plaid])

    return {
        "status": "healthy" if all_healthy else "degraded",
        "services": {
            "postgresql": postgres,
            "redis": redis_status,
            "plaid": plaid,
        },
    }
