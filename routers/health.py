import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import get_settings
from database import get_db
from responses import api_response

router = APIRouter(tags=["Health"])
logger = structlog.get_logger(__name__)


@router.get("/health")
def health(db: Database = Depends(get_db)):
    settings = get_settings()
    try:
        db.command("ping")
        database = "connected"
    except PyMongoError as e:
        logger.error("database ping failed", error=str(e))
        database = "disconnected"

    healthy = database == "connected"
    data = {
        "status": "ok" if healthy else "degraded",
        "database": database,
        "version": settings.app_version,
    }
    if not healthy:
        return api_response(data, "Service unhealthy", 503)
    return api_response(data, "All services are healthy")
