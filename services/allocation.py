"""
Allocation plan derivation.
Turns the budget allocations of an analysis result into a ranked plan whose
percentages are recomputed against the user's income.
"""
import logging
from typing import List

import schemas

logger = logging.getLogger(__name__)


def _ranks_are_permutation(allocations: List[schemas.BudgetAllocation]) -> bool:
    return sorted(a.priority for a in allocations) == list(range(1, len(allocations) + 1))


def derive_allocation_plan(
    result: schemas.AnalysisResult,
    income: float,
    tolerance_pct: float = 1.0,
) -> schemas.AllocationPlan:
    """
    Derive an allocation plan from an analysis result.

    Priorities are kept when they already form 1..N. Otherwise every entry is
    re-ranked by descending amount, ties broken by category name
    (case-insensitive). With a positive income each percentage is recomputed
    as amount / income * 100; with no income the provided percentages are
    kept and the plan is flagged unvalidated.

    The input result is never mutated and this function never raises.

    Args:
        result: Parsed analysis result
        income: Monthly income
        tolerance_pct: Allowed overshoot of income before the plan is over-allocated

    Returns:
        AllocationPlan ordered by rank
    """
    income = float(income or 0)
    allocations = [
        schemas.PlannedAllocation(**allocation.model_dump())
        for allocation in result.budget_allocations
    ]

    reranked = not _ranks_are_permutation(allocations)
    if reranked:
        allocations.sort(key=lambda a: (-a.amount, a.category.casefold()))
        for rank, allocation in enumerate(allocations, start=1):
            allocation.priority = rank
        logger.info(f"Re-ranked {len(allocations)} allocation(s) by amount")
    else:
        allocations.sort(key=lambda a: a.priority)

    unvalidated = income <= 0
    if not unvalidated:
        for allocation in allocations:
            allocation.percentage = round(allocation.amount / income * 100, 2)

    total_amount = round(sum(a.amount for a in allocations), 2)
    if unvalidated:
        total_percentage = round(sum(a.percentage for a in allocations), 2)
    else:
        total_percentage = round(total_amount / income * 100, 2)

    # Conservation check is meaningless without an income to compare against
    over_allocated = not unvalidated and total_amount > income * (1 + tolerance_pct / 100)
    if over_allocated:
        logger.warning(f"Allocation plan totals {total_amount} against income {income}")

    return schemas.AllocationPlan(
        income=income,
        allocations=allocations,
        total_amount=total_amount,
        total_percentage=total_percentage,
        unallocated_amount=round(income - total_amount, 2),
        tolerance_pct=tolerance_pct,
        unvalidated=unvalidated,
        over_allocated=over_allocated,
        reranked=reranked,
    )
