"""
Preference questionnaire state machine.

Step 0 is the welcome step, steps 1..K hold the questions and step K+1 is the
summary. Reaching the summary freezes the answers into a PreferenceProfile
that feeds the budget analysis.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import schemas
from services.errors import ValidationError

logger = logging.getLogger(__name__)

QT = schemas.QuestionTypeEnum


def _options(*choices) -> List[schemas.QuestionOption]:
    return [schemas.QuestionOption(value=value, label=label, description=description) for value, label, description in choices]


UTILITY_OPTIONS = (
    ("electricity", "Electricity", "Power and lighting"),
    ("gas", "Gas", "Heating and cooking"),
    ("water", "Water", "Water and sewage"),
    ("internet", "Internet", "WiFi and broadband"),
    ("phone", "Phone", "Landline service"),
)

DEFAULT_QUESTIONS: List[schemas.Question] = [
    schemas.Question(
        id="age", type=QT.number, min=18, max=100,
        title="What is your age?",
        description="This helps determine appropriate investment strategies and risk tolerance.",
    ),
    schemas.Question(
        id="familySize", type=QT.number, min=1, max=10,
        title="How many people are in your household?",
        description="This affects budget allocations for housing, food, and other family expenses.",
    ),
    schemas.Question(
        id="employmentStatus", type=QT.radio,
        title="What is your employment status?",
        description="This affects income stability and insurance needs.",
        options=_options(
            ("full-time", "Full-time Employee", "Stable income with benefits"),
            ("part-time", "Part-time Employee", "Variable income"),
            ("self-employed", "Self-employed", "Variable income, need to save for taxes"),
            ("contractor", "Contractor/Freelancer", "Variable income, no benefits"),
            ("unemployed", "Currently Unemployed", "Focus on emergency fund"),
        ),
    ),
    schemas.Question(
        id="housingType", type=QT.radio,
        title="What type of housing do you have?",
        description="This helps determine what housing-related expenses you actually have.",
        options=_options(
            ("rent", "Renting", "Pay rent, may include some utilities"),
            ("mortgage", "Mortgage", "Pay mortgage, property tax, insurance"),
            ("owned", "Own Outright", "No mortgage, just maintenance and taxes"),
            ("living-with-family", "Living with Family", "Minimal housing costs"),
            ("other", "Other", "Specify your housing situation"),
        ),
    ),
    schemas.Question(
        id="housingCosts", type=QT.number, min=0, max=10000,
        title="What are your monthly housing costs?",
        description="Enter your actual monthly housing expenses including rent/mortgage, property tax, and insurance.",
    ),
    schemas.Question(
        id="utilitiesIncluded", type=QT.checkbox,
        title="Which utilities are included in your housing costs?",
        description="Select all utilities that are already covered in your rent/mortgage payment.",
        options=_options(*UTILITY_OPTIONS, ("none", "None included", "I pay all utilities separately")),
    ),
    schemas.Question(
        id="separateUtilities", type=QT.checkbox, required=False,
        title="Which utilities do you pay separately?",
        description="Select all utilities you pay for separately from your housing costs.",
        options=_options(*UTILITY_OPTIONS, ("none", "None", "All utilities are included")),
    ),
    schemas.Question(
        id="transportationType", type=QT.radio,
        title="What is your primary mode of transportation?",
        description="This determines your actual transportation costs.",
        options=_options(
            ("car", "Personal Car", "Car payment, gas, insurance, maintenance"),
            ("public-transit", "Public Transportation", "Bus, train, subway passes"),
            ("walking-biking", "Walking/Biking", "Minimal transport costs"),
            ("multiple", "Multiple Options", "Mix of car and public transit"),
            ("other", "Other", "Specify your transportation method"),
        ),
    ),
    schemas.Question(
        id="transportationCosts", type=QT.number, min=0, max=2000,
        title="What are your monthly transportation costs?",
        description="Include car payment, gas, insurance, maintenance, or public transit passes.",
    ),
    schemas.Question(
        id="healthcareType", type=QT.radio,
        title="What type of healthcare coverage do you have?",
        description="This affects your healthcare costs and insurance needs.",
        options=_options(
            ("employer", "Employer Health Insurance", "Covered through work"),
            ("private", "Private Health Insurance", "Individual policy"),
            ("nhs", "NHS Only", "No private insurance"),
            ("none", "No Health Insurance", "Need to budget for medical costs"),
            ("other", "Other", "Specify your healthcare coverage"),
        ),
    ),
    schemas.Question(
        id="healthcareCosts", type=QT.number, min=0, max=1000,
        title="What are your monthly healthcare costs?",
        description="Include insurance premiums, prescriptions, doctor visits, and other medical expenses.",
    ),
    schemas.Question(
        id="foodAndGroceries", type=QT.number, min=0, max=2000,
        title="What are your monthly food and grocery costs?",
        description="Include groceries, dining out, food delivery, and any other food-related expenses.",
    ),
    schemas.Question(
        id="subscriptions", type=QT.checkbox, required=False,
        title="Which subscription services do you pay for monthly?",
        description="Select all subscription services you currently use.",
        options=_options(
            ("streaming", "Streaming Services", "Netflix, Disney+, etc."),
            ("music", "Music Services", "Spotify, Apple Music, etc."),
            ("gaming", "Gaming Services", "Xbox Game Pass, PlayStation Plus"),
            ("software", "Software Subscriptions", "Adobe, Microsoft 365, etc."),
            ("fitness", "Fitness Memberships", "Gym, fitness apps, etc."),
            ("education", "Education Platforms", "Coursera, Udemy, etc."),
            ("other", "Other Subscriptions", "Specify other services"),
            ("none", "No Subscriptions", "I don't pay for any subscription services"),
        ),
    ),
    schemas.Question(
        id="entertainmentAndHobbies", type=QT.number, min=0, max=1000,
        title="What are your monthly entertainment and hobby costs?",
        description="Include hobbies, entertainment, gym memberships, and leisure activities.",
    ),
    schemas.Question(
        id="shoppingAndPersonal", type=QT.number, min=0, max=1000,
        title="What are your monthly shopping and personal care costs?",
        description="Include clothing, personal care, household items, and other shopping expenses.",
    ),
    schemas.Question(
        id="currentSavings", type=QT.radio,
        title="How much do you currently have in savings?",
        description="Include all liquid savings accounts and emergency funds.",
        options=_options(
            ("none", "No savings", "Starting from zero"),
            ("low", "Low (<1 month expenses)", "Less than 1 month of expenses"),
            ("medium", "Medium (1-3 months)", "1-3 months of expenses"),
            ("high", "High (>3 months)", "More than 3 months of expenses"),
        ),
    ),
    schemas.Question(
        id="emergencyFund", type=QT.radio,
        title="How much do you currently have in emergency savings?",
        description="This determines if emergency fund building should be prioritized.",
        options=_options(
            ("none", "No emergency fund", "Need to build from scratch"),
            ("partial", "Partial emergency fund", "Some emergency savings"),
            ("complete", "Complete emergency fund", "6+ months of expenses"),
        ),
    ),
    schemas.Question(
        id="investmentExperience", type=QT.radio,
        title="What is your experience level with investments?",
        description="This affects how much to allocate to investment vs. safer options.",
        options=_options(
            ("beginner", "Beginner", "New to investing, prefer simple options"),
            ("intermediate", "Intermediate", "Some experience, comfortable with risk"),
            ("advanced", "Advanced", "Experienced investor, comfortable with complex strategies"),
        ),
    ),
    schemas.Question(
        id="timeHorizon", type=QT.radio,
        title="What is your primary investment time horizon?",
        description="This affects the balance between growth and stability.",
        options=_options(
            ("short", "1-3 years", "Short-term goals, conservative approach"),
            ("medium", "3-10 years", "Medium-term goals, balanced approach"),
            ("long", "10+ years", "Long-term goals, growth-focused approach"),
        ),
    ),
    schemas.Question(
        id="primaryGoal", type=QT.radio,
        title="What is your primary financial goal?",
        description="This determines your core budget allocation strategy and savings priorities.",
        options=_options(
            ("emergency-fund", "Build Emergency Fund", "Focus on 3-6 months of expenses"),
            ("debt-payoff", "Pay Off High-Interest Debt", "Prioritize debt elimination"),
            ("retirement", "Save for Retirement", "Long-term wealth building"),
            ("home-purchase", "Save for Home Purchase", "Down payment and closing costs"),
            ("investment", "Build Investment Portfolio", "Grow wealth through investments"),
            ("other", "Other", "Specify your primary financial goal"),
        ),
    ),
    schemas.Question(
        id="primaryGoalOther", type=QT.textarea, required=False,
        title="Please specify your primary financial goal",
        description="Describe your specific primary financial goal in detail.",
    ),
    schemas.Question(
        id="secondaryGoals", type=QT.checkbox,
        title="What are your secondary financial goals?",
        description="Select all that apply to understand your complete financial picture.",
        options=_options(
            ("vacation", "Vacation Fund", "Save for travel and experiences"),
            ("education", "Education Fund", "Save for courses or certifications"),
            ("wedding", "Wedding Fund", "Save for wedding expenses"),
            ("business", "Business Fund", "Start or expand a business"),
            ("car", "Car Fund", "Save for vehicle purchase or upgrade"),
            ("home-improvement", "Home Improvement", "Renovations and repairs"),
            ("children", "Children's Fund", "Save for children's future needs"),
            ("charity", "Charitable Giving", "Support causes you care about"),
            ("hobbies", "Hobby Fund", "Invest in your interests and passions"),
            ("technology", "Technology Fund", "Save for gadgets and tech upgrades"),
            ("other", "Other", "Specify additional secondary goals"),
        ),
    ),
    schemas.Question(
        id="secondaryGoalsOther", type=QT.textarea, required=False,
        title="Please specify your other secondary financial goals",
        description="Describe any additional secondary financial goals not listed above.",
    ),
    schemas.Question(
        id="riskTolerance", type=QT.slider, min=1, max=10,
        title="What is your risk tolerance level?",
        description="This affects how much to allocate to savings vs. investments vs. debt payoff.",
    ),
    schemas.Question(
        id="savingsPriority", type=QT.radio,
        title="Which savings category is most important to you right now?",
        description="This helps determine the order of budget allocations.",
        options=_options(
            ("emergency", "Emergency Fund", "Financial safety net"),
            ("short-term", "Short-term Goals", "Vacations, car repairs, etc."),
            ("long-term", "Long-term Goals", "Retirement, children's education"),
            ("investment", "Investment Growth", "Building wealth over time"),
        ),
    ),
    schemas.Question(
        id="lifestylePreferences", type=QT.radio,
        title="What lifestyle factors affect your budget?",
        description="Consider housing preferences, transportation choices, family activities, hobbies, etc.",
        options=_options(
            ("minimalist", "Minimalist", "Simple lifestyle, focus on essentials"),
            ("balanced", "Balanced", "Mix of essentials and some luxuries"),
            ("luxury", "Luxury-oriented", "Premium lifestyle, willing to spend more"),
        ),
    ),
    schemas.Question(
        id="financialStressors", type=QT.checkbox,
        title="What financial concerns keep you up at night?",
        description="This helps identify areas that need immediate attention in your budget.",
        options=_options(
            ("debt", "High debt levels", "Worried about debt and interest payments"),
            ("emergency", "No emergency fund", "Concerned about unexpected expenses"),
            ("retirement", "Retirement savings", "Worried about long-term financial security"),
            ("income", "Income stability", "Concerned about job security or income"),
            ("none", "No major concerns", "Financially stable and confident"),
        ),
    ),
]


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list)) and len(value) == 0) or (
        isinstance(value, str) and not value.strip()
    )


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() else number
    return None


def validate_answer(question: schemas.Question, value: Any) -> List[str]:
    """
    Check one answer against its question.

    Returns:
        List of human-readable problems, empty when the answer is acceptable
    """
    if _is_empty(value):
        return [f"'{question.title}' is required"] if question.required else []

    if question.type in (QT.number, QT.slider):
        number = _as_number(value)
        if number is None:
            return [f"'{question.title}' must be a number"]
        if question.min is not None and number < question.min:
            return [f"'{question.title}' must be at least {question.min:g}"]
        if question.max is not None and number > question.max:
            return [f"'{question.title}' must be at most {question.max:g}"]
        return []

    if question.type == QT.radio:
        if value not in question.option_values():
            return [f"'{value}' is not an option for '{question.title}'"]
        return []

    if question.type == QT.checkbox:
        if not isinstance(value, list):
            return [f"'{question.title}' expects a list of options"]
        unknown = [item for item in value if item not in question.option_values()]
        if unknown:
            return [f"Unknown option(s) for '{question.title}': {', '.join(map(str, unknown))}"]
        return []

    if not isinstance(value, str):
        return [f"'{question.title}' must be text"]
    return []


class Questionnaire:
    """Multi-step questionnaire with welcome, question and summary steps."""

    def __init__(
        self,
        questions: Optional[Sequence[schemas.Question]] = None,
        step: int = 0,
        answers: Optional[Dict[str, Any]] = None,
    ):
        self.questions = list(questions if questions is not None else DEFAULT_QUESTIONS)
        self._by_id = {question.id: question for question in self.questions}
        self._answers: Dict[str, Any] = {
            key: value for key, value in (answers or {}).items() if key in self._by_id
        }
        self.step = min(max(step, 0), self.summary_step)
        self.profile: Optional[schemas.PreferenceProfile] = None
        if self.is_summary:
            self.profile = schemas.PreferenceProfile(answers=self.current_answers())

    @property
    def summary_step(self) -> int:
        return len(self.questions) + 1

    @property
    def total_steps(self) -> int:
        return len(self.questions) + 2

    @property
    def is_summary(self) -> bool:
        return self.step == self.summary_step

    @property
    def progress(self) -> float:
        return (self.step + 1) / self.total_steps

    def question_at(self, step: int) -> Optional[schemas.Question]:
        """Question shown at a step; None for the welcome and summary steps."""
        if 1 <= step <= len(self.questions):
            return self.questions[step - 1]
        return None

    @property
    def current_question(self) -> Optional[schemas.Question]:
        return self.question_at(self.step)

    def answer(self, value: Any) -> None:
        """Record (or clear, with an empty value) the answer to the current question."""
        question = self.current_question
        if question is None:
            raise ValidationError(f"Step {self.step} does not take an answer")

        if question.type in (QT.number, QT.slider) and isinstance(value, str):
            value = _as_number(value) if _as_number(value) is not None else value

        if _is_empty(value):
            self._answers.pop(question.id, None)
        else:
            self._answers[question.id] = value

    def validate_step(self, step: Optional[int] = None) -> List[str]:
        """Problems blocking advance from a step (defaults to the current one)."""
        question = self.question_at(self.step if step is None else step)
        if question is None:
            return []
        return validate_answer(question, self._answers.get(question.id))

    def advance(self) -> int:
        """
        Move to the next step.

        Raises:
            ValidationError: the current step is invalid or already at the summary
        """
        if self.is_summary:
            raise ValidationError("Questionnaire is already complete")

        errors = self.validate_step()
        if errors:
            raise ValidationError("; ".join(errors))

        self.step += 1
        if self.is_summary:
            self.profile = schemas.PreferenceProfile(answers=self.current_answers())
            logger.info(f"Questionnaire completed with {len(self.profile.answers)} answer(s)")
        return self.step

    def retreat(self) -> int:
        if self.step <= 0:
            raise ValidationError("Already at the first step")
        self.step -= 1
        return self.step

    def current_answers(self) -> Dict[str, Any]:
        """Answers in question order."""
        return {
            question.id: self._answers[question.id]
            for question in self.questions
            if question.id in self._answers
        }

    def to_state(self, completed_at: Optional[datetime] = None) -> schemas.QuestionnaireStateResponse:
        return schemas.QuestionnaireStateResponse(
            step=self.step,
            total_steps=self.total_steps,
            progress=round(self.progress, 4),
            is_summary=self.is_summary,
            current_question=self.current_question,
            answers=self.current_answers(),
            completed_at=completed_at,
        )


def load_questionnaire(session) -> Questionnaire:
    """Rebuild a questionnaire from a stored QuestionnaireSession row (or None)."""
    if session is None:
        return Questionnaire()
    return Questionnaire(step=session.current_step, answers=session.answers or {})

