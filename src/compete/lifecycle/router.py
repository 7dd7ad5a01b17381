"""Competition status-update endpoint, called by the external scheduler."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from compete.database import get_session
from compete.lifecycle.scheduler import run_status_update
from compete.lifecycle.schemas import ErrorResponse, StatusUpdateResponse
from compete.redis_client import get_redis_or_none

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/competitions", tags=["Competitions"])


@router.post(
    "/update-statuses",
    response_model=StatusUpdateResponse,
    responses={500: {"model": ErrorResponse}},
)
async def update_statuses(
    db: AsyncSession = Depends(get_session),  # noqa: B008
):
    """Advance competition statuses and settle rewards for newly completed ones."""
    try:
        summary = await run_status_update(db, redis=get_redis_or_none())
    except Exception as exc:
        logger.exception("Unexpected error during competition status update")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(details=str(exc)).model_dump(),
        )
    return StatusUpdateResponse.from_summary(summary)
