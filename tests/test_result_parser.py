import json

import pytest

from schemas import CompletenessEnum
from services.errors import DataCorruptionError
from services.result_parser import extract_json_payload, parse_analysis_result, strip_code_fences


def test_fenced_summary_only_is_partial():
    parsed = parse_analysis_result('```json\n{"summary":"ok"}\n```')

    assert parsed.completeness == CompletenessEnum.partial
    assert parsed.result.summary == "ok"
    assert parsed.result.budget_allocations == []


def test_plain_text_is_corrupted_with_diagnostics():
    with pytest.raises(DataCorruptionError) as excinfo:
        parse_analysis_result("not json at all")

    err = excinfo.value
    assert err.length == len("not json at all")
    assert err.prefix == "not json at all"
    assert set(err.diagnostics()) == {"length", "prefix", "suffix"}


def test_truncated_json_is_corrupted():
    with pytest.raises(DataCorruptionError):
        parse_analysis_result('{"summary": "cut off", "budgetAllocations": [{"category": "Rent"')


def test_json_array_is_corrupted():
    with pytest.raises(DataCorruptionError):
        parse_analysis_result('[{"category": "Rent", "amount": 900}]')


def test_object_is_recovered_from_surrounding_prose():
    payload = extract_json_payload('Here is your plan:\n{"summary": "fine"}\nGood luck!')

    assert payload == {"summary": "fine"}


def test_strip_code_fences_handles_bare_fence():
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_allocation_entries_are_coerced_and_invalid_ones_dropped():
    raw = json.dumps({
        "summary": "plan",
        "budgetAllocations": [
            {"category": "Rent", "amount": 900, "percentage": 45, "priority": 1},
            {"category": "", "amount": 100},
            {"category": "Fuel", "amount": "lots"},
            {"category": "Refund", "amount": -20},
            "Savings 300",
            {"category": "Groceries", "amount": "400", "percentage": 140, "priority": "high"},
            {"category": "Fun", "amount": 50, "percentage": -5, "priority": 0},
        ],
    })

    parsed = parse_analysis_result(raw)

    assert parsed.completeness == CompletenessEnum.complete
    assert parsed.dropped_allocations == 4
    rent, groceries, fun = parsed.result.budget_allocations
    assert (rent.category, rent.amount, rent.priority) == ("Rent", 900, 1)
    assert groceries.amount == 400
    assert groceries.percentage == 100
    assert groceries.priority == 6
    assert fun.percentage == 0
    assert fun.priority == 7


def test_recommendations_mapping_is_flattened():
    raw = json.dumps({
        "summary": "plan",
        "recommendations": {"immediate": ["Cancel gym"], "longTerm": ["Open a pension", "Invest"]},
    })

    parsed = parse_analysis_result(raw)

    assert parsed.result.recommendations == ["Cancel gym", "Open a pension", "Invest"]


def test_scalar_strings_become_lists():
    raw = json.dumps({
        "recommendations": "Spend less on takeaways",
        "riskAssessment": {"level": "High", "factors": "Single income", "mitigation": "Emergency fund"},
        "progressMetrics": "Savings rate",
    })

    result = parse_analysis_result(raw).result

    assert result.recommendations == ["Spend less on takeaways"]
    assert result.risk_assessment.factors == ["Single income"]
    assert result.progress_metrics == ["Savings rate"]


def test_full_response_is_complete():
    raw = json.dumps({
        "summary": "Solid income",
        "budgetAllocations": [
            {"category": "Rent / Mortgage", "amount": 1000, "percentage": 50, "priority": 1},
            {"category": "Groceries", "amount": 400, "percentage": 20, "priority": 2},
            {"category": "Emergency Fund", "amount": 600, "percentage": 30, "priority": 3},
        ],
        "priorities": [{"rank": 1, "category": "Emergency Fund", "reason": "No buffer", "action": "Save"}],
        "riskAssessment": {"level": "Moderate", "factors": ["No emergency fund"], "mitigation": "Save"},
        "timeline": {"emergencyFund": "6 months"},
    })

    parsed = parse_analysis_result(raw)

    assert parsed.completeness == CompletenessEnum.complete
    assert [a.category for a in parsed.result.budget_allocations] == ["Rent / Mortgage", "Groceries", "Emergency Fund"]
    assert parsed.result.priorities[0].rank == 1
    assert parsed.result.risk_assessment.level == "Moderate"
    assert parsed.result.timeline == {"emergencyFund": "6 months"}
