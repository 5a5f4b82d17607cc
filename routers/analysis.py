# ============ IMPORTS ============
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import schemas
from database import get_db
from routers.utils import raise_http_error
from services.allocation import derive_allocation_plan
from services.analysis_controller import AnalysisController, get_analysis_controller
from services.errors import BudgetAssistantError, NotFoundError
from services.questionnaire import load_questionnaire
from services.store import AnalysisStore

# ============ ROUTER SETUP ============
# Note: the /users/{user_id} prefix is added in main.py
router = APIRouter()


# ============ HELPER FUNCTIONS ============

async def run_analysis(
    db: Session,
    controller: AnalysisController,
    user_id: str,
) -> schemas.AnalysisRunResponse:
    """
    Gather the user's questionnaire answers, financial snapshot and statement
    analyses, then get or generate the budget analysis.

    Raises:
        BudgetAssistantError: propagated from the controller
    """
    store = AnalysisStore(db)
    questionnaire = load_questionnaire(store.get_questionnaire_session(user_id))
    profile = questionnaire.profile or schemas.PreferenceProfile(answers=questionnaire.current_answers())

    return await controller.get_or_generate_analysis(
        user_id,
        profile,
        store.get_financial_snapshot(user_id),
        store.list_statement_analyses(user_id),
    )


def _stored_record(controller: AnalysisController, user_id: str) -> schemas.AnalysisCacheRecord:
    record = controller.get_cached_analysis(user_id)
    if record is None or record.result is None:
        raise_http_error(NotFoundError(f"No stored analysis for user {user_id}"))
    return record


# ============ ENDPOINTS ============

@router.post("/analysis", response_model=schemas.AnalysisRunResponse)
async def create_analysis(
    user_id: str,
    db: Session = Depends(get_db),
    controller: AnalysisController = Depends(get_analysis_controller),
):
    """
    Get or generate the user's budget analysis.

    Reuses the stored analysis when nothing it depends on has changed and it
    is complete; otherwise makes one Gemini call.
    """
    try:
        return await run_analysis(db, controller, user_id)
    except BudgetAssistantError as err:
        raise_http_error(err)


@router.get("/analysis", response_model=schemas.AnalysisCacheRecord)
async def get_analysis(
    user_id: str,
    controller: AnalysisController = Depends(get_analysis_controller),
):
    """Get the stored analysis without generating anything."""
    return _stored_record(controller, user_id)


@router.get("/analysis/state", response_model=schemas.AnalysisStateResponse)
async def get_analysis_state(
    user_id: str,
    controller: AnalysisController = Depends(get_analysis_controller),
):
    return schemas.AnalysisStateResponse(user_id=user_id, state=controller.get_state(user_id))


@router.get("/allocation-plan", response_model=schemas.AllocationPlan)
async def get_allocation_plan(
    user_id: str,
    db: Session = Depends(get_db),
    controller: AnalysisController = Depends(get_analysis_controller),
):
    """
    Get the allocation plan of the stored analysis.
    Derived from the stored result when no plan was stored alongside it.
    """
    record = _stored_record(controller, user_id)
    if record.allocation_plan is not None:
        return record.allocation_plan

    snapshot = AnalysisStore(db).get_financial_snapshot(user_id)
    return derive_allocation_plan(
        record.result,
        snapshot.income if snapshot else 0.0,
        controller.tolerance_pct,
    )
