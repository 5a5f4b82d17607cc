# ============ IMPORTS ============
from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File
from sqlalchemy.orm import Session
from typing import List
import logging
import os
import schemas
from database import get_db
from routers.utils import raise_http_error
from services.aggregator import refresh_overall_analysis
from services.errors import BudgetAssistantError
from services.gemini_service import GeminiService, get_gemini_service
from services.statement_analyzer import analyze_statement_document
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

# ============ ROUTER SETUP ============
# Note: the /users/{user_id} prefix is added in main.py
router = APIRouter()

ALLOWED_DOCUMENT_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


def get_document_analyzer() -> GeminiService:
    """Dependency for the Gemini client used on uploaded statements."""
    try:
        return get_gemini_service()
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Statement analysis is unavailable: {err}",
        ) from err


# ============ STATEMENT ANALYSIS CRUD ============

@router.get("/statement-analyses", response_model=List[schemas.StatementAnalysis])
async def list_statement_analyses(user_id: str, db: Session = Depends(get_db)):
    return AnalysisStore(db).list_statement_analyses(user_id)


@router.post(
    "/statement-analyses",
    response_model=schemas.StatementAnalysis,
    status_code=status.HTTP_201_CREATED,
)
async def create_statement_analysis(
    user_id: str,
    analysis: schemas.StatementAnalysisCreate,
    db: Session = Depends(get_db),
):
    """
    Store a spending breakdown for one statement and refresh the user's
    overall analysis.
    """
    created = AnalysisStore(db).create_statement_analysis(user_id, analysis)
    refresh_overall_analysis(db, user_id)
    return created


@router.patch("/statement-analyses/{analysis_id}", response_model=schemas.StatementAnalysis)
async def update_statement_analysis(
    user_id: str,
    analysis_id: int,
    update: schemas.StatementAnalysisUpdate,
    db: Session = Depends(get_db),
):
    """Correct the month or breakdown of a stored statement analysis."""
    try:
        updated = AnalysisStore(db).update_statement_analysis(user_id, analysis_id, update)
    except BudgetAssistantError as err:
        raise_http_error(err)
    refresh_overall_analysis(db, user_id)
    return updated


@router.delete("/statement-analyses/{analysis_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_statement_analysis(
    user_id: str,
    analysis_id: int,
    db: Session = Depends(get_db),
):
    try:
        AnalysisStore(db).delete_statement_analysis(user_id, analysis_id)
    except BudgetAssistantError as err:
        raise_http_error(err)
    refresh_overall_analysis(db, user_id)
    return None


# ============ DOCUMENT UPLOAD ============

@router.post(
    "/statements/{statement_id}/analyze",
    response_model=schemas.StatementAnalysis,
    status_code=status.HTTP_201_CREATED,
)
async def analyze_statement(
    user_id: str,
    statement_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_document_analyzer),
):
    """
    Upload a bank statement and let Gemini summarise its spending by category.
    Supports: PDF statements and statement photos (JPG, PNG)
    """
    filename = file.filename or "statement.pdf"
    file_ext = os.path.splitext(filename)[1].lower()
    if file_ext not in ALLOWED_DOCUMENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"File type {file_ext} not allowed. Allowed: {', '.join(ALLOWED_DOCUMENT_TYPES)}",
        )

    document_bytes = await file.read()
    logger.info(f"Analyzing statement {statement_id} for user {user_id} ({len(document_bytes)} bytes)")

    try:
        analysis = await analyze_statement_document(
            gemini,
            document_bytes,
            statement_id,
            mime_type=ALLOWED_DOCUMENT_TYPES[file_ext],
        )
    except BudgetAssistantError as err:
        raise_http_error(err)

    created = AnalysisStore(db).create_statement_analysis(user_id, analysis)
    refresh_overall_analysis(db, user_id)
    return created


# ============ OVERALL ANALYSIS ============

@router.get("/overall-analysis", response_model=schemas.OverallAnalysis)
async def get_overall_analysis(user_id: str, db: Session = Depends(get_db)):
    """
    Get spending trends across every statement analysis, normalised against
    income. Users without statements get an empty trend list.
    """
    overall = AnalysisStore(db).get_overall_analysis(user_id)
    if overall is None:
        overall = refresh_overall_analysis(db, user_id)
    return overall
