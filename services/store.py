"""
Persistence adapter for the budget analysis tables.
Wraps a SQLAlchemy session with per-user keyed reads and upserts so the
services never build queries themselves.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

import models
import schemas
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStore:
    """Keyed access to every per-user record used by the analysis services."""

    def __init__(self, db: Session):
        self.db = db

    # ============ FINANCIAL PROFILE ============

    def _get_profile_row(self, user_id: str) -> Optional[models.FinancialProfile]:
        return self.db.query(models.FinancialProfile).filter(
            models.FinancialProfile.user_id == user_id
        ).first()

    def get_financial_snapshot(self, user_id: str) -> Optional[schemas.FinancialSnapshot]:
        profile = self._get_profile_row(user_id)
        if not profile:
            return None
        return schemas.FinancialSnapshot.model_validate(profile)

    def upsert_financial_profile(self, user_id: str, snapshot: schemas.FinancialSnapshot) -> schemas.FinancialSnapshot:
        """Replace income and the ordered debt list for a user."""
        profile = self._get_profile_row(user_id)
        if not profile:
            profile = models.FinancialProfile(user_id=user_id)
            self.db.add(profile)

        profile.income = snapshot.income
        profile.debts = [
            models.Debt(
                position=position,
                name=debt.name,
                total_amount=debt.total_amount,
                months=debt.months,
                monthly_repayment=debt.monthly_repayment,
            )
            for position, debt in enumerate(snapshot.debts)
        ]
        self.db.commit()
        self.db.refresh(profile)
        return schemas.FinancialSnapshot.model_validate(profile)

    # ============ STATEMENT ANALYSES ============

    def list_statement_analyses(self, user_id: str) -> List[models.StatementAnalysis]:
        return self.db.query(models.StatementAnalysis).filter(
            models.StatementAnalysis.user_id == user_id
        ).order_by(models.StatementAnalysis.analysis_id).all()

    def get_statement_analysis(self, user_id: str, analysis_id: int) -> models.StatementAnalysis:
        analysis = self.db.query(models.StatementAnalysis).filter(
            models.StatementAnalysis.analysis_id == analysis_id,
            models.StatementAnalysis.user_id == user_id,
        ).first()
        if not analysis:
            raise NotFoundError(f"Statement analysis {analysis_id} not found")
        return analysis

    def create_statement_analysis(self, user_id: str, data: schemas.StatementAnalysisCreate) -> models.StatementAnalysis:
        analysis = models.StatementAnalysis(
            user_id=user_id,
            statement_id=data.statement_id,
            statement_month=data.statement_month,
            category_breakdown=[entry.model_dump() for entry in data.category_breakdown],
        )
        if data.analysis_date:
            analysis.analysis_date = data.analysis_date
        self.db.add(analysis)
        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def update_statement_analysis(
        self, user_id: str, analysis_id: int, update: schemas.StatementAnalysisUpdate
    ) -> models.StatementAnalysis:
        analysis = self.get_statement_analysis(user_id, analysis_id)
        update_data = update.model_dump(exclude_unset=True)
        if "statement_month" in update_data:
            analysis.statement_month = update_data["statement_month"]
        if update.category_breakdown is not None:
            analysis.category_breakdown = [entry.model_dump() for entry in update.category_breakdown]
        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def delete_statement_analysis(self, user_id: str, analysis_id: int) -> None:
        analysis = self.get_statement_analysis(user_id, analysis_id)
        self.db.delete(analysis)
        self.db.commit()

    # ============ OVERALL ANALYSIS ============

    def get_overall_analysis(self, user_id: str) -> Optional[schemas.OverallAnalysis]:
        overall = self.db.query(models.OverallAnalysis).filter(
            models.OverallAnalysis.user_id == user_id
        ).first()
        if not overall:
            return None
        return schemas.OverallAnalysis.model_validate(overall)

    def upsert_overall_analysis(self, user_id: str, overall: schemas.OverallAnalysis) -> None:
        row = self.db.query(models.OverallAnalysis).filter(
            models.OverallAnalysis.user_id == user_id
        ).first()
        if not row:
            row = models.OverallAnalysis(user_id=user_id)
            self.db.add(row)

        row.total_income = overall.total_income
        row.spending_trends = [trend.model_dump() for trend in overall.spending_trends]
        row.statement_ids = list(overall.statement_ids)
        row.generated_at = overall.generated_at or _utcnow()
        self.db.commit()

    # ============ ANALYSIS CACHE ============

    def get_cache_record(self, user_id: str) -> Optional[schemas.AnalysisCacheRecord]:
        """
        Read the stored analysis for a user.

        A stored result or plan that no longer validates is returned with
        completeness "corrupted" and no result, so it is never reused.
        """
        row = self.db.query(models.AnalysisCache).filter(
            models.AnalysisCache.user_id == user_id
        ).first()
        if not row:
            return None

        try:
            return schemas.AnalysisCacheRecord(
                user_id=row.user_id,
                profile_version=row.profile_version,
                completeness=row.completeness,
                result=row.result,
                allocation_plan=row.allocation_plan,
                last_complete_result=row.last_complete_result,
                stored_at=row.stored_at,
            )
        except SchemaValidationError as e:
            logger.warning(f"Stored analysis for user {user_id} failed validation: {e.error_count()} error(s)")
            return schemas.AnalysisCacheRecord(
                user_id=row.user_id,
                profile_version=row.profile_version,
                completeness=schemas.CompletenessEnum.corrupted,
                stored_at=row.stored_at,
            )

    def upsert_cache_record(
        self,
        user_id: str,
        profile_version: str,
        completeness: schemas.CompletenessEnum,
        result: Optional[schemas.AnalysisResult],
        allocation_plan: Optional[schemas.AllocationPlan],
    ) -> schemas.AnalysisCacheRecord:
        """
        Store the latest analysis for a user, replacing the previous one.
        The most recent complete result is kept even when a partial one replaces it.
        """
        row = self.db.query(models.AnalysisCache).filter(
            models.AnalysisCache.user_id == user_id
        ).first()
        if not row:
            row = models.AnalysisCache(user_id=user_id)
            self.db.add(row)

        completeness = schemas.CompletenessEnum(completeness)
        row.profile_version = profile_version
        row.completeness = completeness.value
        row.result = result.model_dump(mode="json", by_alias=True) if result else None
        row.allocation_plan = allocation_plan.model_dump(mode="json") if allocation_plan else None
        if completeness == schemas.CompletenessEnum.complete:
            row.last_complete_result = row.result
        row.stored_at = _utcnow()
        self.db.commit()
        self.db.refresh(row)

        return schemas.AnalysisCacheRecord(
            user_id=user_id,
            profile_version=profile_version,
            completeness=completeness,
            result=result,
            allocation_plan=allocation_plan,
            last_complete_result=row.last_complete_result,
            stored_at=row.stored_at,
        )

    # ============ QUESTIONNAIRE ============

    def get_questionnaire_session(self, user_id: str) -> Optional[models.QuestionnaireSession]:
        return self.db.query(models.QuestionnaireSession).filter(
            models.QuestionnaireSession.user_id == user_id
        ).first()

    def save_questionnaire_session(
        self,
        user_id: str,
        current_step: int,
        answers: Dict[str, Any],
        completed_at: Optional[datetime] = None,
    ) -> models.QuestionnaireSession:
        session = self.get_questionnaire_session(user_id)
        if not session:
            session = models.QuestionnaireSession(user_id=user_id)
            self.db.add(session)

        session.current_step = current_step
        session.answers = dict(answers)
        session.completed_at = completed_at
        self.db.commit()
        self.db.refresh(session)
        return session

    def delete_questionnaire_session(self, user_id: str) -> None:
        session = self.get_questionnaire_session(user_id)
        if session:
            self.db.delete(session)
            self.db.commit()

    # ============ BUDGETS ============

    def list_budgets(self, user_id: str) -> List[models.Budget]:
        return self.db.query(models.Budget).filter(
            models.Budget.user_id == user_id
        ).order_by(models.Budget.period_start.desc(), models.Budget.priority).all()

    def replace_plan_budgets(
        self,
        user_id: str,
        period_start: date,
        period_end: date,
        plan: schemas.AllocationPlan,
    ) -> List[models.Budget]:
        """Swap the plan-generated budgets of one month for a fresh set built from the plan."""
        self.db.query(models.Budget).filter(
            models.Budget.user_id == user_id,
            models.Budget.source == "allocation_plan",
            models.Budget.period_start == period_start,
        ).delete(synchronize_session=False)

        budgets = [
            models.Budget(
                user_id=user_id,
                name=f"{allocation.category} ({period_start.strftime('%B %Y')})",
                limit_amount=allocation.amount,
                category=allocation.category,
                period_start=period_start,
                period_end=period_end,
                priority=allocation.priority,
                source="allocation_plan",
                notes=allocation.description or None,
            )
            for allocation in plan.allocations
        ]
        self.db.add_all(budgets)
        self.db.commit()
        for budget in budgets:
            self.db.refresh(budget)
        return budgets
