from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.database import get_db
from aslan_crm.core.config import settings, logger
from aslan_crm.core.redis import redis_client

router = APIRouter()


@router.get('/healthz')
def healthz():
    return {"status": "ok"}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    # Check DB connectivity
    try:
        await db.execute(text('SELECT 1'))
    except SQLAlchemyError:
        logger.exception('Readiness DB check failed')
        raise HTTPException(status_code=503, detail='Not ready')

    # Redis is only a cache; check it when caching is on
    if settings.CACHE_ENABLED and not redis_client.health_check():
        logger.error('Redis health check failed')
        raise HTTPException(status_code=503, detail='Not ready')

    return {"status": "ready"}
