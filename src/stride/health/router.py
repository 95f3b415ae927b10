"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stride.config import get_settings
from stride.db.models import BadgeDefinition
from stride.dependencies import get_db, get_redis_dep

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe.

    The database must answer and hold at least one active badge definition.
    Redis is checked when configured; without it the service still runs,
    uncached and without events.
    """
    checks: dict[str, object] = {}
    failed = False

    try:
        result = await db.execute(
            select(func.count(BadgeDefinition.id)).where(BadgeDefinition.is_active.is_(True))
        )
        badge_count = int(result.scalar_one())
        checks["database"] = "ok"
        checks["badge_definitions"] = badge_count
        failed = badge_count == 0
    except Exception as exc:
        checks["database"] = f"error: {exc}"
        failed = True

    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()  # type: ignore[attr-defined]
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
            failed = True

    return {"status": "degraded" if failed else "ready", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
