# ============ IMPORTS ============
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging
import schemas
from database import get_db
from routers.utils import raise_http_error
from services.aggregator import refresh_overall_analysis
from services.errors import NotFoundError
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

# ============ ROUTER SETUP ============
# Note: the /users/{user_id} prefix is added in main.py
router = APIRouter()


# ============ ENDPOINTS ============

@router.get("/financial-profile", response_model=schemas.FinancialSnapshot)
async def get_financial_profile(user_id: str, db: Session = Depends(get_db)):
    """Get the user's monthly income and ordered debts."""
    snapshot = AnalysisStore(db).get_financial_snapshot(user_id)
    if snapshot is None:
        raise_http_error(NotFoundError(f"No financial profile for user {user_id}"))
    return snapshot


@router.put("/financial-profile", response_model=schemas.FinancialSnapshot)
async def put_financial_profile(
    user_id: str,
    snapshot: schemas.FinancialSnapshot,
    db: Session = Depends(get_db),
):
    """
    Replace the user's income and debts.

    Monthly repayments are always derived from total amount and months.
    The overall spending analysis is refreshed because it is normalised
    against income.
    """
    saved = AnalysisStore(db).upsert_financial_profile(user_id, snapshot)
    refresh_overall_analysis(db, user_id)
    logger.info(f"Updated financial profile for user {user_id} with {len(saved.debts)} debt(s)")
    return saved
