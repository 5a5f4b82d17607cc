from datetime import date, datetime

import models
import schemas
from services.aggregator import aggregate, parse_month_label, refresh_overall_analysis
from services.store import AnalysisStore


def _statement(statement_id, month, breakdown, analysis_date=datetime(2024, 9, 1)):
    return schemas.StatementAnalysis(
        analysis_id=1,
        user_id="u1",
        statement_id=statement_id,
        statement_month=month,
        analysis_date=analysis_date,
        category_breakdown=[{"category": c, "amount": a} for c, a in breakdown],
    )


def _trend(overall, month, category):
    return next(t for t in overall.spending_trends if t.month == month and t.category == category)


def test_no_statements_gives_empty_trends():
    overall = aggregate([], income=3000)

    assert overall.total_income == 3000
    assert overall.spending_trends == []
    assert overall.statement_ids == []


def test_income_normalisation_matches_worked_example():
    statements = [
        _statement("s-jul", "July 2024", [("Groceries", 200)]),
        _statement("s-aug", "August 2024", [("Groceries", 250)]),
    ]

    overall = aggregate(statements, income=2000)

    august = _trend(overall, "August 2024", "Groceries")
    assert august.spending == 250
    assert august.percentage_of_income == 12.5
    assert august.savings_rate == 87.5
    july = _trend(overall, "July 2024", "Groceries")
    assert july.percentage_of_income == 10.0
    assert july.savings_rate == 90.0


def test_zero_income_yields_zero_ratios():
    statements = [_statement("s1", "July 2024", [("Groceries", 200), ("Rent", 900)])]

    overall = aggregate(statements, income=0)

    assert len(overall.spending_trends) == 2
    for trend in overall.spending_trends:
        assert trend.percentage_of_income == 0
        assert trend.savings_rate == 0


def test_months_sort_by_calendar_not_alphabet():
    statements = [
        _statement("s-apr", "April 2024", [("Groceries", 100)]),
        _statement("s-mar", "March 2024", [("Groceries", 100)]),
        _statement("s-feb", "2024-02", [("Groceries", 100)]),
    ]

    overall = aggregate(statements, income=1000)

    assert [t.month for t in overall.spending_trends] == ["February 2024", "March 2024", "April 2024"]


def test_categories_within_month_sorted_case_insensitively():
    statements = [_statement("s1", "May 2024", [("groceries", 10), ("Bills", 20), ("alcohol", 5)])]

    overall = aggregate(statements, income=1000)

    assert [t.category for t in overall.spending_trends] == ["alcohol", "Bills", "groceries"]


def test_same_month_and_category_are_summed():
    statements = [
        _statement("s1", "July 2024", [("Groceries", 120.5)]),
        _statement("s2", "Jul 2024", [("Groceries", 79.5), ("Fuel", 60)]),
    ]

    overall = aggregate(statements, income=2000)

    assert _trend(overall, "July 2024", "Groceries").spending == 200
    assert overall.statement_ids == ["s1", "s2"]


def test_unparseable_month_kept_and_sorted_last():
    statements = [
        _statement("s1", "Q3 sometime", [("Groceries", 50)]),
        _statement("s2", "January 2024", [("Groceries", 50)]),
    ]

    overall = aggregate(statements, income=1000)

    assert [t.month for t in overall.spending_trends] == ["January 2024", "Q3 sometime"]


def test_missing_month_falls_back_to_analysis_date():
    statements = [_statement("s1", None, [("Fuel", 80)], analysis_date=datetime(2024, 6, 14, 9, 30))]

    overall = aggregate(statements, income=800)

    assert overall.spending_trends[0].month == "June 2024"
    assert overall.spending_trends[0].percentage_of_income == 10.0


def test_parse_month_label_formats():
    assert parse_month_label("March 2024") == date(2024, 3, 1)
    assert parse_month_label("Mar 2024") == date(2024, 3, 1)
    assert parse_month_label("2024-03") == date(2024, 3, 1)
    assert parse_month_label("2024-03-15") == date(2024, 3, 1)
    assert parse_month_label("2024-03-15T10:00:00Z") == date(2024, 3, 1)
    assert parse_month_label("sometime") is None
    assert parse_month_label("") is None


def test_refresh_overall_analysis_upserts_single_row(db_session):
    store = AnalysisStore(db_session)
    store.upsert_financial_profile("u1", schemas.FinancialSnapshot(income=2000))
    store.create_statement_analysis("u1", schemas.StatementAnalysisCreate(
        statement_id="s-jul", statement_month="July 2024",
        category_breakdown=[{"category": "Groceries", "amount": 200}],
    ))

    refresh_overall_analysis(db_session, "u1")
    store.create_statement_analysis("u1", schemas.StatementAnalysisCreate(
        statement_id="s-aug", statement_month="August 2024",
        category_breakdown=[{"category": "Groceries", "amount": 250}],
    ))
    overall = refresh_overall_analysis(db_session, "u1")

    assert db_session.query(models.OverallAnalysis).filter_by(user_id="u1").count() == 1
    stored = store.get_overall_analysis("u1")
    assert stored.statement_ids == ["s-jul", "s-aug"]
    assert stored.spending_trends == overall.spending_trends
