from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from stock_api.deps import get_session
from stock_api.responses import ok

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health(session: Session = Depends(get_session)):
    session.execute(text("SELECT 1"))
    return ok({"status": "ok"})
