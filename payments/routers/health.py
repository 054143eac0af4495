import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from payments import __version__
from payments.config import Settings
from payments.database import get_db
from payments.dependencies import get_app_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["core"])


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.warning("health check could not reach the database", exc_info=True)
        db_status = "error"

    return {"status": "ok", "service": "payments", "db": db_status}


@router.get("/version")
async def version(settings: Settings = Depends(get_app_settings)):
    return {
        "version": __version__,
        "environment": settings.environment,
        "app_name": settings.app_name,
    }
