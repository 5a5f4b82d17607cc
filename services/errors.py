"""
Error types raised by the budget analysis services.
Routers translate these into HTTP responses.
"""
from typing import Any, Optional


class BudgetAssistantError(Exception):
    """Base class for every error raised by the analysis services."""

    def __init__(self, message: str, last_result: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        # Last successfully stored AnalysisResult for the user, if any
        self.last_result = last_result


class ValidationError(BudgetAssistantError):
    """Input rejected before any external call (income, questionnaire answers, uploads)."""


class NotFoundError(BudgetAssistantError):
    """Requested record does not exist for this user."""


class ExternalServiceError(BudgetAssistantError):
    """Gemini call failed: timeout, quota, transport error or size limit."""


class DataCorruptionError(BudgetAssistantError):
    """Generation output could not be parsed as JSON."""

    def __init__(
        self,
        message: str,
        length: int = 0,
        prefix: str = "",
        suffix: str = "",
        last_result: Optional[Any] = None,
    ):
        super().__init__(message, last_result=last_result)
        self.length = length
        self.prefix = prefix
        self.suffix = suffix

    def diagnostics(self) -> dict:
        return {"length": self.length, "prefix": self.prefix, "suffix": self.suffix}
