"""Health endpoints: dependency report, readiness and liveness probes."""

from collections.abc import Awaitable, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sitescope.core.config import get_settings
from sitescope.core.database import ping_database
from sitescope.core.redis import ping_redis

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    checks: dict[str, str]


def _probes() -> dict[str, Callable[[], Awaitable[None]]]:
    # Looked up per call so tests can patch the module attributes
    return {"database": ping_database, "redis": ping_redis}


async def _run_checks() -> dict[str, str]:
    checks: dict[str, str] = {}
    for name, probe in _probes().items():
        try:
            await probe()
            checks[name] = "healthy"
        except Exception as exc:
            checks[name] = f"unhealthy: {exc}"
    return checks


def _all_healthy(checks: dict[str, str]) -> bool:
    return all(value == "healthy" for value in checks.values())


@router.get("", response_model=HealthResponse, include_in_schema=False)
async def health_check() -> HealthResponse:
    checks = await _run_checks()
    return HealthResponse(
        status="healthy" if _all_healthy(checks) else "degraded",
        version=get_settings().APP_VERSION,
        checks=checks,
    )


@router.get("/ready", include_in_schema=False)
async def readiness() -> JSONResponse:
    """Ready once the database and Redis both answer; 503 otherwise."""
    checks = await _run_checks()
    ready = _all_healthy(checks)
    return JSONResponse(status_code=200 if ready else 503, content={"ready": ready, "checks": checks})


@router.get("/live", include_in_schema=False)
async def liveness() -> dict:
    return {"alive": True}
