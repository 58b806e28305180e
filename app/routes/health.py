import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from app.database import get_session
from app.gateways import get_gateways

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/check")
def health_check(
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
):
    db_status = "ok"

    try:
        # simple DB ping
        session.exec(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database ping failed: {e}")
        db_status = "failed"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "gateways": sorted(gateways),
        "timestamp": datetime.utcnow().isoformat()
    }
