"""
Bank statement document analysis.
Asks Gemini to summarise one uploaded statement into a month label and a
spending breakdown by category.
"""
import logging
from collections import OrderedDict
from typing import Optional

import schemas
from services.result_parser import extract_json_payload, as_number, as_text

logger = logging.getLogger(__name__)

STATEMENT_SYSTEM_PROMPT = """You are a financial data extraction assistant.
Read the attached bank statement and summarise the money that left the account, grouped by spending category."""

STATEMENT_PROMPT = """
Analyze this bank statement and return a JSON object with this exact structure:
{
  "statementMonth": "Month and year the statement covers, e.g. 'July 2024'",
  "categoryBreakdown": [
    {"category": "Groceries", "amount": 0}
  ]
}

Rules:
- Only include spending (debits, card payments, direct debits, transfers to other people)
- Do NOT include income, refunds or transfers between the account holder's own accounts
- Amounts are positive totals per category for the whole statement
- Use short category names such as Groceries, Rent / Mortgage, Utilities, Transport,
  Dining Out, Entertainment, Subscriptions, Shopping, Healthcare, Debt Repayment, Other
- If the month cannot be determined, use null for statementMonth

Return ONLY the JSON object, no markdown formatting.
"""


async def analyze_statement_document(
    gemini,
    document_bytes: bytes,
    statement_id: str,
    mime_type: str = "application/pdf",
) -> schemas.StatementAnalysisCreate:
    """
    Summarise an uploaded statement into a StatementAnalysisCreate.

    Args:
        gemini: GeminiService (or any object with a compatible generate_json)
        document_bytes: Raw uploaded file
        statement_id: Identifier the analysis is stored under
        mime_type: MIME type of the upload

    Returns:
        StatementAnalysisCreate with debits normalised to positive amounts
        and duplicate categories merged

    Raises:
        ValidationError: empty upload
        ExternalServiceError: Gemini failed or the upload is too large
        DataCorruptionError: Gemini output was not a JSON object
    """
    raw_text = await gemini.generate_json(
        STATEMENT_PROMPT,
        system_instruction=STATEMENT_SYSTEM_PROMPT,
        document=document_bytes,
        mime_type=mime_type,
        temperature=0.1,
    )
    payload = extract_json_payload(raw_text)

    totals: "OrderedDict[str, float]" = OrderedDict()
    skipped = 0
    for entry in payload.get("categoryBreakdown") or []:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        category = as_text(entry.get("category"))
        amount = as_number(entry.get("amount"))
        if not category or amount is None:
            skipped += 1
            continue
        # Debits sometimes come back negative
        totals[category] = totals.get(category, 0.0) + abs(amount)

    if skipped:
        logger.warning(f"Statement {statement_id}: skipped {skipped} unreadable breakdown entries")

    statement_month: Optional[str] = as_text(payload.get("statementMonth")) or None
    logger.info(
        f"Statement {statement_id}: {len(totals)} categories for {statement_month or 'unknown month'}"
    )

    return schemas.StatementAnalysisCreate(
        statement_id=statement_id,
        statement_month=statement_month,
        category_breakdown=[
            schemas.CategoryAmount(category=category, amount=round(amount, 2))
            for category, amount in totals.items()
        ],
    )
