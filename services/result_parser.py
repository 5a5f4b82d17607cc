"""
Parsing and validation of Gemini budget analysis output.

Gemini is asked for JSON but its output is untrusted: it may be wrapped in
code fences, surrounded by prose, truncated, or shaped slightly differently
from what the prompt requested. This module turns raw response text into a
validated AnalysisResult plus a completeness tag, or raises
DataCorruptionError when no JSON object can be recovered.
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

import schemas
from services.errors import DataCorruptionError

logger = logging.getLogger(__name__)

DIAGNOSTIC_SNIPPET_CHARS = 80


def strip_code_fences(text: str) -> str:
    """Remove surrounding ```json / ``` markers and whitespace."""
    json_text = (text or "").strip()
    if json_text.startswith("```json"):
        json_text = json_text[7:]
    if json_text.startswith("```"):
        json_text = json_text[3:]
    if json_text.endswith("```"):
        json_text = json_text[:-3]
    return json_text.strip()


def _corrupted(message: str, raw_text: str) -> DataCorruptionError:
    raw_text = raw_text or ""
    return DataCorruptionError(
        message,
        length=len(raw_text),
        prefix=raw_text[:DIAGNOSTIC_SNIPPET_CHARS],
        suffix=raw_text[-DIAGNOSTIC_SNIPPET_CHARS:] if len(raw_text) > DIAGNOSTIC_SNIPPET_CHARS else "",
    )


def extract_json_payload(raw_text: str) -> Dict[str, Any]:
    """
    Extract the JSON object from raw model text.

    Tries a direct parse of the fence-stripped text first, then the outermost
    {...} span. Anything that is not a JSON object is corrupted.
    """
    text = strip_code_fences(raw_text)
    if not text:
        raise _corrupted("Empty response from Gemini", raw_text)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text)
        if not match:
            raise _corrupted("Gemini response did not contain a JSON object", raw_text)
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as err:
            raise _corrupted(f"Gemini response is not valid JSON: {err.msg}", raw_text) from err

    if not isinstance(parsed, dict):
        raise _corrupted(f"Expected a JSON object, got {type(parsed).__name__}", raw_text)
    return parsed


# ============ COERCION HELPERS ============

def as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.replace(",", "").strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_positive_int(value: Any) -> Optional[int]:
    number = as_number(value)
    if number is None or number < 1 or number != int(number):
        return None
    return int(number)


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return value.strip() if isinstance(value, str) else str(value)


def _as_text_list(value: Any) -> List[str]:
    """Lists stay lists, scalar strings become one-element lists, mappings of lists are flattened."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, dict):
        flattened: List[str] = []
        for group in value.values():
            flattened.extend(_as_text_list(group))
        return flattened
    if isinstance(value, list):
        items: List[str] = []
        for item in value:
            if isinstance(item, (list, dict)):
                items.extend(_as_text_list(item))
            elif as_text(item):
                items.append(as_text(item))
        return items
    return [as_text(value)]


def _coerce_allocations(raw: Any) -> Tuple[List[schemas.BudgetAllocation], int]:
    """Coerce budgetAllocations entries, dropping the ones that cannot be repaired."""
    if not isinstance(raw, list):
        return [], 0

    allocations: List[schemas.BudgetAllocation] = []
    dropped = 0
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            dropped += 1
            continue

        category = as_text(entry.get("category"))
        amount = as_number(entry.get("amount"))
        if not category or amount is None or amount < 0:
            dropped += 1
            continue

        percentage = as_number(entry.get("percentage"))
        percentage = min(max(percentage if percentage is not None else 0.0, 0.0), 100.0)
        priority = _as_positive_int(entry.get("priority")) or index + 1

        allocations.append(
            schemas.BudgetAllocation(
                category=category,
                amount=amount,
                percentage=percentage,
                priority=priority,
                description=as_text(entry.get("description")),
            )
        )
    return allocations, dropped


def _coerce_priorities(raw: Any) -> List[schemas.FinancialPriority]:
    if not isinstance(raw, list):
        return []
    priorities = []
    for index, entry in enumerate(raw):
        if isinstance(entry, str):
            entry = {"category": entry}
        if not isinstance(entry, dict):
            continue
        priorities.append(
            schemas.FinancialPriority(
                rank=_as_positive_int(entry.get("rank")) or index + 1,
                category=as_text(entry.get("category")),
                reason=as_text(entry.get("reason")),
                action=as_text(entry.get("action")),
            )
        )
    return priorities


def _coerce_risk(raw: Any) -> Optional[schemas.RiskAssessment]:
    if isinstance(raw, str):
        return schemas.RiskAssessment(level=raw.strip() or None)
    if not isinstance(raw, dict):
        return None
    mitigation = raw.get("mitigation")
    if isinstance(mitigation, list):
        mitigation = " ".join(_as_text_list(mitigation))
    return schemas.RiskAssessment(
        level=as_text(raw.get("level")) or None,
        factors=_as_text_list(raw.get("factors")),
        mitigation=as_text(mitigation),
    )


def _coerce_rules(raw: Any) -> List[schemas.AutoAllocationRule]:
    if not isinstance(raw, list):
        return []
    rules = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            continue
        rules.append(
            schemas.AutoAllocationRule(
                category=as_text(entry.get("category")),
                rule=as_text(entry.get("rule")),
                priority=_as_positive_int(entry.get("priority")) or index + 1,
            )
        )
    return rules


def _coerce_progress_metrics(raw: Any) -> List[Any]:
    if isinstance(raw, str):
        return [raw.strip()] if raw.strip() else []
    if isinstance(raw, dict):
        return [raw]
    if not isinstance(raw, list):
        return []
    return [item if isinstance(item, dict) else as_text(item) for item in raw if item not in (None, "")]


def parse_analysis_result(raw_text: str) -> schemas.ParsedAnalysis:
    """
    Parse raw Gemini output into a validated analysis.

    Args:
        raw_text: Response text from Gemini

    Returns:
        ParsedAnalysis tagged complete when at least one budget allocation
        survived coercion, partial otherwise

    Raises:
        DataCorruptionError: no JSON object could be recovered
    """
    payload = extract_json_payload(raw_text)

    allocations, dropped = _coerce_allocations(payload.get("budgetAllocations"))
    timeline = payload.get("timeline")

    result = schemas.AnalysisResult(
        summary=as_text(payload.get("summary")),
        budget_allocations=allocations,
        priorities=_coerce_priorities(payload.get("priorities")),
        risk_assessment=_coerce_risk(payload.get("riskAssessment")),
        timeline={str(k): as_text(v) for k, v in timeline.items()} if isinstance(timeline, dict) else {},
        auto_allocation_rules=_coerce_rules(payload.get("autoAllocationRules")),
        recommendations=_as_text_list(payload.get("recommendations")),
        progress_metrics=_coerce_progress_metrics(payload.get("progressMetrics")),
    )

    completeness = schemas.CompletenessEnum.complete if allocations else schemas.CompletenessEnum.partial
    if dropped:
        logger.warning(f"Dropped {dropped} malformed budget allocation(s) from Gemini output")
    logger.info(f"Parsed analysis result as {completeness.value} with {len(allocations)} allocation(s)")

    return schemas.ParsedAnalysis(completeness=completeness, result=result, dropped_allocations=dropped)
