import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from placegate.core.store import Store
from placegate.deps.db import get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/test-db")
async def test_db(store: Store = Depends(get_store)):
    # unauthenticated diagnostic probe
    try:
        await store.ping()
    except Exception as exc:
        logger.warning("db_probe_failed", extra={"error_type": type(exc).__name__})
        return JSONResponse(
            status_code=500,
            content={"error": "Database connection failed", "details": str(exc)},
        )
    return {"message": "Database connection OK"}
