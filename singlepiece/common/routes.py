from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.common.logging_setup import get_logger
from singlepiece.common.utils import success_response
from singlepiece.config.admin_config import admin_config
from singlepiece.db.dependencies import get_session

logger = get_logger("singlepiece.app")

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(select(1))
    except Exception as e:
        logger.error("health.db_unreachable", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database connection error")

    return success_response({"status": "healthy", "service": admin_config.SERVICE_NAME})
