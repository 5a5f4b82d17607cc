# ============ IMPORTS ============
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime, timezone
import logging
import schemas
from database import get_db
from routers.analysis import run_analysis
from routers.utils import raise_http_error
from services.analysis_controller import AnalysisController, get_analysis_controller
from services.errors import BudgetAssistantError, ValidationError
from services.questionnaire import load_questionnaire
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

# ============ ROUTER SETUP ============
# Note: the /users/{user_id} prefix is added in main.py
router = APIRouter()


# ============ ENDPOINTS ============

@router.get("/questionnaire", response_model=schemas.QuestionnaireStateResponse)
async def get_questionnaire(user_id: str, db: Session = Depends(get_db)):
    """Get the current step, question and answers of the user's questionnaire."""
    session = AnalysisStore(db).get_questionnaire_session(user_id)
    questionnaire = load_questionnaire(session)
    return questionnaire.to_state(session.completed_at if session else None)


@router.put("/questionnaire/answer", response_model=schemas.QuestionnaireStateResponse)
async def answer_question(
    user_id: str,
    answer: schemas.AnswerRequest,
    db: Session = Depends(get_db),
):
    """Record the answer to the current question. An empty value clears it."""
    store = AnalysisStore(db)
    session = store.get_questionnaire_session(user_id)
    questionnaire = load_questionnaire(session)
    completed_at = session.completed_at if session else None

    try:
        questionnaire.answer(answer.value)
    except ValidationError as err:
        raise_http_error(err)

    store.save_questionnaire_session(user_id, questionnaire.step, questionnaire.current_answers(), completed_at)
    return questionnaire.to_state(completed_at)


@router.post("/questionnaire/advance", response_model=schemas.QuestionnaireAdvanceResponse)
async def advance_questionnaire(
    user_id: str,
    db: Session = Depends(get_db),
    controller: AnalysisController = Depends(get_analysis_controller),
):
    """
    Move to the next step once the current answer is valid.

    Reaching the summary step completes the questionnaire and triggers the
    budget analysis. An analysis failure does not undo the step; it is
    reported in analysis_error and can be retried with POST /analysis.
    """
    store = AnalysisStore(db)
    session = store.get_questionnaire_session(user_id)
    questionnaire = load_questionnaire(session)
    completed_at = session.completed_at if session else None

    try:
        questionnaire.advance()
    except ValidationError as err:
        raise_http_error(err)

    if questionnaire.is_summary:
        completed_at = datetime.now(timezone.utc)
    store.save_questionnaire_session(user_id, questionnaire.step, questionnaire.current_answers(), completed_at)

    state = questionnaire.to_state(completed_at)
    response = schemas.QuestionnaireAdvanceResponse(**state.model_dump())
    if questionnaire.is_summary:
        try:
            response.analysis = await run_analysis(db, controller, user_id)
        except BudgetAssistantError as err:
            logger.warning(f"Analysis after questionnaire completion failed for user {user_id}: {err.message}")
            response.analysis_error = err.message
    return response


@router.post("/questionnaire/retreat", response_model=schemas.QuestionnaireStateResponse)
async def retreat_questionnaire(user_id: str, db: Session = Depends(get_db)):
    store = AnalysisStore(db)
    session = store.get_questionnaire_session(user_id)
    questionnaire = load_questionnaire(session)
    completed_at = session.completed_at if session else None

    try:
        questionnaire.retreat()
    except ValidationError as err:
        raise_http_error(err)

    store.save_questionnaire_session(user_id, questionnaire.step, questionnaire.current_answers(), completed_at)
    return questionnaire.to_state(completed_at)


@router.post("/questionnaire/reset", response_model=schemas.QuestionnaireStateResponse)
async def reset_questionnaire(user_id: str, db: Session = Depends(get_db)):
    """Discard every answer and return to the welcome step."""
    AnalysisStore(db).delete_questionnaire_session(user_id)
    return load_questionnaire(None).to_state()
