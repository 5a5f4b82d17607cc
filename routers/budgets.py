# ============ IMPORTS ============
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from datetime import date
import calendar
import logging
import schemas
from database import get_db
from routers.utils import raise_http_error
from services.analysis_controller import AnalysisController, get_analysis_controller
from services.errors import ValidationError
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

# ============ ROUTER SETUP ============
# Note: the /users/{user_id} prefix is added in main.py
router = APIRouter()


# ============ HELPER FUNCTIONS ============

def month_bounds(month: str) -> tuple:
    """
    First and last day of a "YYYY-MM" month.

    Raises:
        ValidationError: month number out of range
    """
    year, month_number = (int(part) for part in month.split("-"))
    if not 1 <= month_number <= 12:
        raise ValidationError(f"Invalid month: {month}")
    last_day = calendar.monthrange(year, month_number)[1]
    return date(year, month_number, 1), date(year, month_number, last_day)


# ============ ENDPOINTS ============

@router.get("/budgets", response_model=List[schemas.BudgetResponse])
async def get_budgets(user_id: str, db: Session = Depends(get_db)):
    """Get all budgets for the user, newest month first and then by priority."""
    return AnalysisStore(db).list_budgets(user_id)


@router.post(
    "/budgets/apply-plan",
    response_model=List[schemas.BudgetResponse],
    status_code=status.HTTP_201_CREATED,
)
async def apply_allocation_plan(
    user_id: str,
    request: schemas.ApplyPlanRequest,
    db: Session = Depends(get_db),
    controller: AnalysisController = Depends(get_analysis_controller),
):
    """
    Turn the stored allocation plan into monthly budgets.

    One budget is created per allocation for the requested month. Budgets an
    earlier plan created for the same month are replaced; manual budgets are
    left alone.
    """
    try:
        period_start, period_end = month_bounds(request.month)
        record = controller.get_cached_analysis(user_id)
        if (
            record is None
            or record.completeness != schemas.CompletenessEnum.complete
            or record.allocation_plan is None
        ):
            raise ValidationError("A complete budget analysis is required before applying its plan")
    except ValidationError as err:
        raise_http_error(err)

    budgets = AnalysisStore(db).replace_plan_budgets(user_id, period_start, period_end, record.allocation_plan)
    logger.info(f"Applied allocation plan for user {user_id}: {len(budgets)} budget(s) for {request.month}")
    return budgets
