from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class FinancialProfile(Base):
    __tablename__ = "financial_profile"

    profile_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    income = Column(Float, nullable=False, default=0.0)  # Monthly take-home income
    created = Column(DateTime, nullable=False, server_default=func.now())
    updated = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    debts = relationship(
        "Debt",
        back_populates="profile",
        order_by="Debt.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("income >= 0", name="check_income_non_negative"),
    )


class Debt(Base):
    __tablename__ = "debt"

    debt_id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(Integer, ForeignKey("financial_profile.profile_id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Keeps the user's ordering
    name = Column(String, nullable=False)
    total_amount = Column(Float, nullable=False)
    months = Column(Integer, nullable=False, default=0)
    monthly_repayment = Column(Float, nullable=False, default=0.0)  # total_amount / months, 0 when months == 0

    # Relationships
    profile = relationship("FinancialProfile", back_populates="debts")


class StatementAnalysis(Base):
    __tablename__ = "statement_analysis"

    analysis_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    statement_id = Column(String, nullable=False, index=True)
    statement_month = Column(String, nullable=True)  # e.g. "July 2024"; falls back to analysis_date
    category_breakdown = Column(JSON, nullable=False)  # [{"category": str, "amount": float}]
    analysis_date = Column(DateTime, nullable=False, server_default=func.now())
    updated = Column(DateTime, nullable=True, onupdate=func.now())


class OverallAnalysis(Base):
    __tablename__ = "overall_analysis"

    overall_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)  # One live instance per user
    total_income = Column(Float, nullable=False, default=0.0)
    spending_trends = Column(JSON, nullable=False)
    statement_ids = Column(JSON, nullable=False)  # Statements that contributed to the trends
    generated_at = Column(DateTime, nullable=False)


class AnalysisCache(Base):
    __tablename__ = "analysis_cache"

    cache_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    profile_version = Column(String, nullable=False, index=True)
    completeness = Column(String, nullable=False)  # complete, partial, corrupted
    result = Column(JSON, nullable=True)  # Parsed Gemini budget analysis
    allocation_plan = Column(JSON, nullable=True)
    last_complete_result = Column(JSON, nullable=True)  # Survives partial regenerations
    stored_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "completeness IN ('complete', 'partial', 'corrupted')",
            name="check_cache_completeness"
        ),
    )


class QuestionnaireSession(Base):
    __tablename__ = "questionnaire_session"

    session_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    current_step = Column(Integer, nullable=False, default=0)
    answers = Column(JSON, nullable=False)
    completed_at = Column(DateTime, nullable=True)  # Set when the summary step is reached
    updated = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class Budget(Base):
    __tablename__ = "budget"

    budget_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    limit_amount = Column(Float, nullable=False)
    category = Column(String, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    alert_threshold = Column(Float, nullable=False, default=0.8)
    priority = Column(Integer, nullable=True)
    source = Column(String, nullable=False, default="manual")  # manual or allocation_plan
    notes = Column(Text, nullable=True)
    created = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "source IN ('manual', 'allocation_plan')",
            name="check_budget_source"
        ),
    )
