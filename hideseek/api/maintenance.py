"""Maintenance API routes — cleanup status, forced passes, storage health.

Operator-facing. Deployed behind the platform's admin gateway; these routes
take no player identity.

Tier 4 route module: imports from deps, cleanup, schemas.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from hideseek.api.deps import get_sweeper
from hideseek.cleanup import ExpirationSweeper
from hideseek.schemas import ApiError, ApiResponse

router = APIRouter()


@router.get("/cleanup")
async def cleanup_status(
    limit: int = Query(default=10, ge=1, le=100),
    sweeper: ExpirationSweeper = Depends(get_sweeper),
) -> dict:
    """Schedule state, aggregate statistics, and the most recent runs."""
    return ApiResponse(
        ok=True,
        data={
            "status": sweeper.status().model_dump(),
            "history": [run.model_dump() for run in sweeper.history(limit)],
        },
    ).model_dump()


@router.post("/cleanup")
async def force_cleanup(sweeper: ExpirationSweeper = Depends(get_sweeper)) -> dict:
    """Runs one cleanup pass now. 409 if a pass is already running."""
    run = await sweeper.force_run()
    if run is None:
        raise HTTPException(
            status_code=409,
            detail=ApiResponse(
                ok=False,
                error=ApiError(
                    code="CLEANUP_IN_PROGRESS",
                    message="A cleanup pass is already running.",
                ),
            ).model_dump(),
        )
    return ApiResponse(ok=True, data=run.model_dump()).model_dump()


@router.get("/health")
async def storage_health(sweeper: ExpirationSweeper = Depends(get_sweeper)) -> dict:
    """Connectivity plus TTL compliance of a sampled key batch."""
    health = await sweeper.health_check()
    return ApiResponse(ok=True, data=health.model_dump()).model_dump()
