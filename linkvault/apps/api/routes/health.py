from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import get_db
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)):
    # Report degraded instead of failing so load balancers can tell the difference.
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("health_database_unreachable", exc_info=True)
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", database="unreachable").model_dump(),
        )
    return HealthResponse(status="ok", database="ok")
