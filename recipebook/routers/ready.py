import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_blob_store
from ..infra.redis_client import get_redis
from ..storage.blobs import BlobStore

router = APIRouter()
logger = logging.getLogger("recipebook.ready")


@router.get("/ready")
async def ready(
    db: Session = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
):
    db_ok = False
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning(f"Database not ready: {e}")

    redis_ok = False
    try:
        r = await get_redis()
        await r.ping()
        redis_ok = True
    except Exception as e:
        logger.warning(f"Redis not ready: {e}")

    blobs_ok = False
    try:
        blobs_ok = blobs.healthcheck()
    except Exception as e:
        logger.warning(f"Blob store not ready: {e}")

    return {"ok": db_ok and blobs_ok, "db_ok": db_ok, "redis_ok": redis_ok, "blobs_ok": blobs_ok}
