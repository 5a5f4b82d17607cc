"""
Statement analysis aggregation.
Combines per-statement category breakdowns into month-by-category spending
trends normalised against monthly income.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

import schemas
from services.store import AnalysisStore

logger = logging.getLogger(__name__)

# Month label formats seen in statement analyses, tried in order
MONTH_FORMATS = ("%B %Y", "%b %Y", "%Y-%m", "%m/%Y", "%Y/%m", "%b-%Y", "%B, %Y")


def parse_month_label(label: Optional[str]) -> Optional[date]:
    """
    Parse a month label ("March 2024", "Mar 2024", "2024-03", "2024-03-15",
    ISO timestamps) into the first day of that month.

    Returns None when the label cannot be understood.
    """
    if not label:
        return None
    text = label.strip()

    for fmt in MONTH_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
            return date(parsed.year, parsed.month, 1)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return date(parsed.year, parsed.month, 1)
    except ValueError:
        return None


def _month_of(statement) -> Tuple[str, Optional[date]]:
    """Resolve the month label and its calendar date for one statement analysis."""
    month = parse_month_label(statement.statement_month)
    if month is None and statement.statement_month:
        logger.warning(
            f"Unrecognised month label '{statement.statement_month}' on statement {statement.statement_id}"
        )
        return statement.statement_month.strip(), None

    if month is None and statement.analysis_date:
        analysis_date = statement.analysis_date
        month = date(analysis_date.year, analysis_date.month, 1)

    if month is None:
        return "Unknown", None
    return month.strftime("%B %Y"), month


def _ratio_pct(numerator: float, income: float) -> float:
    """Percentage of income, 0 when there is no income to compare against."""
    if income <= 0:
        return 0.0
    return round(numerator / income * 100, 2)


def aggregate(statements: Iterable, income: float) -> schemas.OverallAnalysis:
    """
    Build spending trends from every statement analysis a user owns.

    Entries are grouped by (month, category) and summed. Each group gets
    percentage_of_income and savings_rate relative to income; both are 0 when
    income is 0. Trends are sorted chronologically by the parsed month, then
    by category name. Unparseable months are kept and sorted last.

    Args:
        statements: StatementAnalysis schemas or ORM rows
        income: Monthly income

    Returns:
        OverallAnalysis with an empty trend list when there are no statements
    """
    income = float(income or 0)
    totals: Dict[Tuple[str, str], float] = defaultdict(float)
    month_dates: Dict[str, Optional[date]] = {}
    statement_ids: List[str] = []

    for statement in statements:
        statement_ids.append(str(statement.statement_id))
        label, month = _month_of(statement)
        month_dates[label] = month

        for entry in statement.category_breakdown or []:
            category = entry["category"] if isinstance(entry, dict) else entry.category
            amount = entry["amount"] if isinstance(entry, dict) else entry.amount
            totals[(label, category)] += float(amount or 0)

    def _sort_key(item: Tuple[Tuple[str, str], float]):
        (label, category), _ = item
        month = month_dates.get(label)
        # Parsed months first in calendar order, unknown labels after them
        return (month is None, month or date.max, label, category.lower())

    trends = [
        schemas.SpendingTrend(
            month=label,
            category=category,
            spending=round(spending, 2),
            percentage_of_income=_ratio_pct(spending, income),
            savings_rate=_ratio_pct(income - spending, income),
        )
        for (label, category), spending in sorted(totals.items(), key=_sort_key)
    ]

    return schemas.OverallAnalysis(
        total_income=income,
        spending_trends=trends,
        statement_ids=statement_ids,
        generated_at=datetime.now(timezone.utc),
    )


def refresh_overall_analysis(db: Session, user_id: str) -> schemas.OverallAnalysis:
    """
    Recompute and upsert the stored overall analysis for a user.
    Called whenever the user's statement analyses or income change.
    """
    store = AnalysisStore(db)
    statements = store.list_statement_analyses(user_id)
    snapshot = store.get_financial_snapshot(user_id)
    income = snapshot.income if snapshot else 0.0

    overall = aggregate(statements, income)
    store.upsert_overall_analysis(user_id, overall)
    logger.info(
        f"Refreshed overall analysis for user {user_id}: "
        f"{len(overall.statement_ids)} statements, {len(overall.spending_trends)} trend rows"
    )
    return overall
