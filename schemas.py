import hashlib
import json
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Union
from datetime import date, datetime
from enum import Enum

# ============ ENUMS ============
class CompletenessEnum(str, Enum):
    complete = "complete"
    partial = "partial"
    corrupted = "corrupted"

class AnalysisStateEnum(str, Enum):
    idle = "idle"
    checking = "checking"
    reusable = "reusable"
    generating = "generating"
    ready = "ready"
    failed = "failed"

class QuestionTypeEnum(str, Enum):
    welcome = "welcome"
    number = "number"
    slider = "slider"
    radio = "radio"
    checkbox = "checkbox"
    text = "text"
    textarea = "textarea"

# ============ FINANCIAL PROFILE SCHEMAS ============
class Debt(BaseModel):
    name: str = Field(..., min_length=1, description="Name of the debt, e.g. 'Car loan'")
    total_amount: float = Field(..., ge=0, description="Outstanding amount")
    months: int = Field(0, ge=0, description="Months remaining")
    monthly_repayment: float = Field(0.0, description="Derived: total_amount / months, 0 when months is 0")

    @model_validator(mode="after")
    def _derive_monthly_repayment(self):
        self.monthly_repayment = self.total_amount / self.months if self.months > 0 else 0.0
        return self

    class Config:
        from_attributes = True

class FinancialSnapshot(BaseModel):
    income: float = Field(..., ge=0, description="Monthly income")
    debts: List[Debt] = Field(default_factory=list)

    class Config:
        from_attributes = True

# ============ STATEMENT ANALYSIS SCHEMAS ============
class CategoryAmount(BaseModel):
    category: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category must not be blank")
        return value

class StatementAnalysisBase(BaseModel):
    statement_id: str = Field(..., min_length=1, description="Identifier of the uploaded statement")
    statement_month: Optional[str] = Field(None, description="Month the statement covers, e.g. 'July 2024' or '2024-07'")
    category_breakdown: List[CategoryAmount] = Field(default_factory=list)

class StatementAnalysisCreate(StatementAnalysisBase):
    analysis_date: Optional[datetime] = None

class StatementAnalysisUpdate(BaseModel):
    statement_month: Optional[str] = None
    category_breakdown: Optional[List[CategoryAmount]] = None

class StatementAnalysis(StatementAnalysisBase):
    analysis_id: int
    user_id: str
    analysis_date: datetime

    class Config:
        from_attributes = True

# ============ OVERALL ANALYSIS SCHEMAS ============
class SpendingTrend(BaseModel):
    month: str
    category: str
    spending: float
    percentage_of_income: float
    savings_rate: float

class OverallAnalysis(BaseModel):
    total_income: float
    spending_trends: List[SpendingTrend] = Field(default_factory=list)
    statement_ids: List[str] = Field(default_factory=list)
    generated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# ============ AI ANALYSIS SCHEMAS ============
# Field aliases follow the camelCase JSON that Gemini is asked to produce.
class BudgetAllocation(BaseModel):
    category: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    percentage: float = Field(0.0, ge=0, le=100)
    priority: int = Field(..., ge=1)
    description: str = ""

class FinancialPriority(BaseModel):
    rank: int = 0
    category: str = ""
    reason: str = ""
    action: str = ""

class RiskAssessment(BaseModel):
    level: Optional[str] = None
    factors: List[str] = Field(default_factory=list)
    mitigation: str = ""

class AutoAllocationRule(BaseModel):
    category: str = ""
    rule: str = ""
    priority: int = 0

class AnalysisResult(BaseModel):
    summary: str = ""
    budget_allocations: List[BudgetAllocation] = Field(default_factory=list, alias="budgetAllocations")
    priorities: List[FinancialPriority] = Field(default_factory=list)
    risk_assessment: Optional[RiskAssessment] = Field(None, alias="riskAssessment")
    timeline: Dict[str, str] = Field(default_factory=dict)
    auto_allocation_rules: List[AutoAllocationRule] = Field(default_factory=list, alias="autoAllocationRules")
    recommendations: List[str] = Field(default_factory=list)
    progress_metrics: List[Union[str, Dict[str, Any]]] = Field(default_factory=list, alias="progressMetrics")

    class Config:
        populate_by_name = True

class ParsedAnalysis(BaseModel):
    completeness: CompletenessEnum
    result: AnalysisResult
    dropped_allocations: int = 0

# ============ ALLOCATION PLAN SCHEMAS ============
class PlannedAllocation(BudgetAllocation):
    # Recomputed against income, so an oversized allocation can exceed 100
    percentage: float = Field(0.0, ge=0)

class AllocationPlan(BaseModel):
    income: float
    allocations: List[PlannedAllocation] = Field(default_factory=list)
    total_amount: float = 0.0
    total_percentage: float = 0.0
    unallocated_amount: float = 0.0
    tolerance_pct: float = 1.0
    unvalidated: bool = False
    over_allocated: bool = False
    reranked: bool = False

# ============ ANALYSIS CACHE SCHEMAS ============
class AnalysisCacheRecord(BaseModel):
    user_id: str
    profile_version: str
    completeness: CompletenessEnum
    result: Optional[AnalysisResult] = None
    allocation_plan: Optional[AllocationPlan] = None
    last_complete_result: Optional[AnalysisResult] = None
    stored_at: datetime

class AnalysisRunResponse(BaseModel):
    state: AnalysisStateEnum
    completeness: CompletenessEnum
    profile_version: Optional[str] = None
    result: AnalysisResult
    allocation_plan: AllocationPlan

class AnalysisStateResponse(BaseModel):
    user_id: str
    state: AnalysisStateEnum

# ============ QUESTIONNAIRE SCHEMAS ============
class QuestionOption(BaseModel):
    value: str
    label: str
    description: str = ""

class Question(BaseModel):
    id: str
    title: str
    description: str = ""
    type: QuestionTypeEnum
    required: bool = True
    min: Optional[float] = None
    max: Optional[float] = None
    options: List[QuestionOption] = Field(default_factory=list)

    def option_values(self) -> List[str]:
        return [option.value for option in self.options]

class PreferenceProfile(BaseModel):
    """Answers keyed by question id, in questionnaire order. Frozen once built."""
    answers: Dict[str, Any] = Field(default_factory=dict)

    def content_hash(self) -> str:
        canonical = json.dumps(self.answers, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    class Config:
        frozen = True

class AnswerRequest(BaseModel):
    value: Any = None

class QuestionnaireStateResponse(BaseModel):
    step: int
    total_steps: int
    progress: float
    is_summary: bool
    current_question: Optional[Question] = None
    answers: Dict[str, Any] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None

class QuestionnaireAdvanceResponse(QuestionnaireStateResponse):
    analysis: Optional[AnalysisRunResponse] = None
    analysis_error: Optional[str] = None

# ============ BUDGET SCHEMAS ============
class ApplyPlanRequest(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$", description="Budget month in YYYY-MM format")

class BudgetResponse(BaseModel):
    budget_id: int
    user_id: str
    name: str
    limit_amount: float
    category: str
    period_start: date
    period_end: date
    alert_threshold: float
    priority: Optional[int] = None
    source: str
    notes: Optional[str] = None
    created: datetime

    class Config:
        from_attributes = True
