from fastapi import HTTPException, status
from typing import Any, NoReturn, Optional
import logging
import schemas
from services.errors import (
    BudgetAssistantError,
    DataCorruptionError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _dump_last_result(last_result: Optional[Any]) -> Optional[dict]:
    if isinstance(last_result, schemas.AnalysisResult):
        return last_result.model_dump(mode="json", by_alias=True)
    return last_result


def raise_http_error(err: BudgetAssistantError) -> NoReturn:
    """
    Translate a service error into the matching HTTPException.

    Args:
        err: Error raised by a service

    Raises:
        HTTPException: 400 for validation, 404 for missing records,
            502 for unparseable Gemini output, 503 when Gemini is unavailable
    """
    if isinstance(err, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err.message) from err

    if isinstance(err, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=err.message) from err

    if isinstance(err, DataCorruptionError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": err.message,
                "diagnostics": err.diagnostics(),
                "last_result": _dump_last_result(err.last_result),
            },
        ) from err

    if isinstance(err, ExternalServiceError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "message": err.message,
                "last_result": _dump_last_result(err.last_result),
            },
        ) from err

    logger.error(f"Unhandled service error: {err}")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=err.message) from err
