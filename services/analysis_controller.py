"""
Budget Analysis Controller
Decides when a stored budget analysis can be reused and when a new Gemini
generation is required, and makes sure at most one generation runs per
(user, profile version) at a time.

Per-user lifecycle:
    idle -> checking -> reusable
                     -> generating -> ready | failed
"""
import asyncio
import hashlib
import json
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple, Union

import schemas
from database import SessionLocal
from services.aggregator import aggregate
from services.allocation import derive_allocation_plan
from services.errors import (
    BudgetAssistantError,
    DataCorruptionError,
    ExternalServiceError,
    ValidationError,
)
from services.result_parser import parse_analysis_result
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

State = schemas.AnalysisStateEnum

ANALYSIS_SYSTEM_PROMPT = """You are a professional financial advisor creating a personalized budget allocation strategy.
Analyze the user's ACTUAL expenses and financial situation to provide realistic, actionable advice.

CRITICAL REQUIREMENTS:
- Return ONLY valid JSON with NO additional text, markdown, or explanations
- Base ALL allocations on the user's ACTUAL expenses, NOT generic percentages
- Only allocate to categories the user actually has expenses for
- Allocation amounts must add up to the monthly income, never more
- Every budgetAllocations entry needs a unique integer priority starting at 1
- Provide realistic, achievable recommendations

REQUIRED JSON STRUCTURE:
{
  "summary": "Personalized summary of the user's financial situation, challenges and opportunities",
  "budgetAllocations": [
    {"category": "Emergency Fund", "amount": 0, "percentage": 0, "priority": 1, "description": "Why this allocation"}
  ],
  "priorities": [
    {"rank": 1, "category": "Emergency Fund", "reason": "Why this matters now", "action": "Concrete next step"}
  ],
  "riskAssessment": {"level": "Low/Moderate/High", "factors": ["Risk factor"], "mitigation": "How to reduce the risk"},
  "timeline": {"emergencyFund": "Milestones", "debtElimination": "Milestones", "goalAchievement": "Milestones"},
  "autoAllocationRules": [{"category": "Emergency Fund", "rule": "Transfer on payday", "priority": 1}],
  "recommendations": ["Specific action with amounts"],
  "progressMetrics": [{"metric": "Savings rate", "currentValue": 0, "targetValue": 0, "timeline": "6 months"}]
}"""


# ============ PROMPT & VERSIONING ============

def _format_answer(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(item) for item in value) or "None"
    return str(value)


def build_analysis_prompt(
    answers: Dict[str, Any],
    snapshot: schemas.FinancialSnapshot,
    overall: schemas.OverallAnalysis,
) -> str:
    """
    Build the user prompt from preferences, income, debts and spending trends.
    """
    lines = ["USER'S ACTUAL FINANCIAL SITUATION:", f"- Monthly income: {snapshot.income:.2f}"]

    if answers:
        lines.append("")
        lines.append("QUESTIONNAIRE ANSWERS:")
        lines.extend(f"- {key}: {_format_answer(value)}" for key, value in answers.items())

    lines.append("")
    if snapshot.debts:
        lines.append("DEBTS:")
        lines.extend(
            f"- {debt.name}: {debt.total_amount:.2f} total, {debt.monthly_repayment:.2f}/month "
            f"({debt.months} months remaining)"
            for debt in snapshot.debts
        )
    else:
        lines.append("DEBTS: None")

    if overall.spending_trends:
        lines.append("")
        lines.append("SPENDING TRENDS FROM BANK STATEMENTS:")
        lines.extend(
            f"- {trend.month} / {trend.category}: {trend.spending:.2f} "
            f"({trend.percentage_of_income:.1f}% of income)"
            for trend in overall.spending_trends
        )

    lines.append("")
    lines.append("Return the JSON object only.")
    return "\n".join(lines)


def compute_profile_version(
    answers: Dict[str, Any],
    snapshot: schemas.FinancialSnapshot,
    statement_ids: Iterable[str],
    spending_trends: Iterable[schemas.SpendingTrend] = (),
) -> str:
    """
    Content hash of everything that feeds the generation prompt.
    Identical inputs always produce the same version regardless of ordering.
    Trends are included so a corrected statement breakdown changes the version.
    """
    canonical = json.dumps(
        {
            "profile": answers,
            "snapshot": snapshot.model_dump(mode="json"),
            "statements": sorted(str(statement_id) for statement_id in statement_ids),
            "trends": [trend.model_dump(mode="json") for trend in spending_trends],
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _last_usable_result(record: Optional[schemas.AnalysisCacheRecord]) -> Optional[schemas.AnalysisResult]:
    """Result reported alongside a failure: the last complete one, else whatever is stored."""
    if record is None:
        return None
    return record.last_complete_result or record.result


# ============ CONTROLLER ============

class AnalysisController:
    """Get-or-generate access to a user's budget analysis with single-flight generation."""

    def __init__(
        self,
        generator=None,
        session_factory=SessionLocal,
        tolerance_pct: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._generator = generator
        self._session_factory = session_factory
        self.tolerance_pct = tolerance_pct if tolerance_pct is not None else float(os.getenv("ALLOCATION_TOLERANCE_PCT", "1.0"))
        self.max_output_tokens = max_output_tokens or int(os.getenv("ANALYSIS_MAX_OUTPUT_TOKENS", "4000"))
        self.temperature = temperature if temperature is not None else float(os.getenv("ANALYSIS_TEMPERATURE", "0.1"))

        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}
        self._states: Dict[str, State] = {}

    @property
    def generator(self):
        # Created on first use so the API can start without Gemini credentials
        if self._generator is None:
            from services.gemini_service import get_gemini_service
            self._generator = get_gemini_service()
        return self._generator

    @contextmanager
    def _store(self) -> Iterator[AnalysisStore]:
        db = self._session_factory()
        try:
            yield AnalysisStore(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _set_state(self, user_id: str, state: State) -> None:
        previous = self._states.get(user_id, State.idle)
        self._states[user_id] = state
        logger.info(f"Analysis state for user {user_id}: {previous.value} -> {state.value}")

    def get_state(self, user_id: str) -> State:
        return self._states.get(user_id, State.idle)

    def get_cached_analysis(self, user_id: str) -> Optional[schemas.AnalysisCacheRecord]:
        with self._store() as store:
            return store.get_cache_record(user_id)

    async def get_or_generate_analysis(
        self,
        user_id: str,
        profile: Union[schemas.PreferenceProfile, Dict[str, Any], None],
        snapshot: Optional[schemas.FinancialSnapshot],
        statements: Iterable,
    ) -> schemas.AnalysisRunResponse:
        """
        Return the user's budget analysis, generating it only when needed.

        A stored result is reused when its profile version matches and it is
        complete. Otherwise one Gemini call is made for the (user, version)
        pair; concurrent callers for the same pair share that call.

        Raises:
            ValidationError: income missing or negative (before any external call)
            ExternalServiceError: Gemini failed; carries the last stored result
            DataCorruptionError: Gemini output was unparseable; carries the last stored result
        """
        self._set_state(user_id, State.checking)

        if snapshot is None or snapshot.income is None or snapshot.income < 0:
            self._set_state(user_id, State.failed)
            raise ValidationError("A monthly income of zero or more is required before analysis")

        answers = profile.answers if isinstance(profile, schemas.PreferenceProfile) else dict(profile or {})
        overall = aggregate(statements, snapshot.income)
        profile_version = compute_profile_version(answers, snapshot, overall.statement_ids, overall.spending_trends)

        record = self.get_cached_analysis(user_id)
        if (
            record is not None
            and record.profile_version == profile_version
            and record.completeness == schemas.CompletenessEnum.complete
            and record.result is not None
        ):
            logger.info(f"Reusing stored analysis for user {user_id} (version {profile_version[:12]})")
            self._set_state(user_id, State.reusable)
            plan = record.allocation_plan or derive_allocation_plan(record.result, snapshot.income, self.tolerance_pct)
            return schemas.AnalysisRunResponse(
                state=State.reusable,
                completeness=record.completeness,
                profile_version=profile_version,
                result=record.result,
                allocation_plan=plan,
            )

        key = (user_id, profile_version)
        task = self._in_flight.get(key)
        if task is None:
            reason = "no stored analysis" if record is None else f"stored analysis is {record.completeness.value}"
            if record is not None and record.profile_version != profile_version:
                reason = "profile changed"
            logger.info(f"Generating analysis for user {user_id}: {reason}")
            task = asyncio.ensure_future(
                self._generate(key, answers, snapshot, overall, _last_usable_result(record))
            )
            self._in_flight[key] = task
        else:
            logger.info(f"Joining in-flight analysis for user {user_id}")

        self._set_state(user_id, State.generating)
        try:
            response = await asyncio.shield(task)
        except Exception:
            self._set_state(user_id, State.failed)
            raise
        self._set_state(user_id, State.ready)
        return response

    async def _generate(
        self,
        key: Tuple[str, str],
        answers: Dict[str, Any],
        snapshot: schemas.FinancialSnapshot,
        overall: schemas.OverallAnalysis,
        last_result: Optional[schemas.AnalysisResult],
    ) -> schemas.AnalysisRunResponse:
        user_id, profile_version = key
        try:
            prompt = build_analysis_prompt(answers, snapshot, overall)
            try:
                raw_text = await self.generator.generate_json(
                    prompt,
                    system_instruction=ANALYSIS_SYSTEM_PROMPT,
                    max_output_tokens=self.max_output_tokens,
                    temperature=self.temperature,
                )
            except BudgetAssistantError as err:
                err.last_result = last_result
                raise
            except Exception as err:
                logger.error(f"Analysis generation failed for user {user_id}: {err}")
                raise ExternalServiceError(f"Failed to generate analysis: {err}", last_result=last_result) from err

            try:
                parsed = parse_analysis_result(raw_text)
            except DataCorruptionError as err:
                logger.error(
                    f"Unparseable analysis for user {user_id}: {err.message} (length {err.length})"
                )
                err.last_result = last_result
                raise

            plan = derive_allocation_plan(parsed.result, snapshot.income, self.tolerance_pct)
            try:
                with self._store() as store:
                    store.upsert_cache_record(
                        user_id, profile_version, parsed.completeness, parsed.result, plan
                    )
            except Exception as err:
                logger.error(f"Storing analysis for user {user_id} failed: {err}", exc_info=True)
                raise ExternalServiceError(f"Failed to store analysis: {err}", last_result=last_result) from err

            return schemas.AnalysisRunResponse(
                state=State.ready,
                completeness=parsed.completeness,
                profile_version=profile_version,
                result=parsed.result,
                allocation_plan=plan,
            )
        finally:
            self._in_flight.pop(key, None)


# Global instance (singleton pattern)
_analysis_controller_instance = None

def get_analysis_controller() -> AnalysisController:
    """
    Get or create the global AnalysisController instance.

    Returns:
        Shared AnalysisController instance
    """
    global _analysis_controller_instance
    if _analysis_controller_instance is None:
        _analysis_controller_instance = AnalysisController()
    return _analysis_controller_instance
