import asyncio

import pytest

import schemas
from services.analysis_controller import AnalysisController, build_analysis_prompt, compute_profile_version
from services.errors import DataCorruptionError, ExternalServiceError, ValidationError

State = schemas.AnalysisStateEnum

PROFILE = schemas.PreferenceProfile(answers={"age": 34, "primaryGoal": "emergency-fund"})
SNAPSHOT = schemas.FinancialSnapshot(
    income=2000,
    debts=[{"name": "Car loan", "total_amount": 2400, "months": 12}],
)


def _statements():
    return [
        schemas.StatementAnalysis(
            analysis_id=1, user_id="u1", statement_id="s-jul", statement_month="July 2024",
            analysis_date="2024-08-01T00:00:00", category_breakdown=[{"category": "Groceries", "amount": 200}],
        ),
    ]


def _run(controller, snapshot=SNAPSHOT, profile=PROFILE, user_id="u1"):
    return asyncio.run(controller.get_or_generate_analysis(user_id, profile, snapshot, _statements()))


def test_concurrent_calls_share_one_generation(controller, fake_generator):
    fake_generator.delay = 0.05

    async def both():
        return await asyncio.gather(
            controller.get_or_generate_analysis("u1", PROFILE, SNAPSHOT, _statements()),
            controller.get_or_generate_analysis("u1", PROFILE, SNAPSHOT, _statements()),
        )

    first, second = asyncio.run(both())

    assert len(fake_generator.calls) == 1
    assert first == second
    assert first.state == State.ready
    assert first.completeness == schemas.CompletenessEnum.complete
    assert controller._in_flight == {}


def test_unchanged_profile_reuses_stored_result(controller, fake_generator):
    generated = _run(controller)
    reused = _run(controller)

    assert len(fake_generator.calls) == 1
    assert reused.state == State.reusable
    assert reused.result == generated.result
    assert reused.allocation_plan == generated.allocation_plan
    assert controller.get_state("u1") == State.reusable


def test_changed_income_regenerates(controller, fake_generator):
    first = _run(controller)
    second = _run(controller, snapshot=schemas.FinancialSnapshot(income=2500))

    assert len(fake_generator.calls) == 2
    assert first.profile_version != second.profile_version
    assert second.allocation_plan.income == 2500


def test_partial_result_is_stored_but_regenerated(controller, fake_generator, partial_response):
    fake_generator.responses = [partial_response, partial_response]

    first = _run(controller)
    record = controller.get_cached_analysis("u1")
    second = _run(controller)

    assert first.completeness == schemas.CompletenessEnum.partial
    assert record.completeness == schemas.CompletenessEnum.partial
    assert second.state == State.ready
    assert len(fake_generator.calls) == 2


def test_failed_regeneration_keeps_stored_record(controller, fake_generator):
    original = _run(controller)
    fake_generator.error = ExternalServiceError("quota exceeded")

    with pytest.raises(ExternalServiceError) as excinfo:
        _run(controller, snapshot=schemas.FinancialSnapshot(income=3000))

    assert excinfo.value.last_result == original.result
    record = controller.get_cached_analysis("u1")
    assert record.profile_version == original.profile_version
    assert record.result == original.result
    assert controller.get_state("u1") == State.failed
    assert controller._in_flight == {}


def test_unparseable_output_raises_corruption_and_keeps_record(controller, fake_generator):
    original = _run(controller)
    fake_generator.responses = ["Sorry, I cannot help with that."]

    with pytest.raises(DataCorruptionError) as excinfo:
        _run(controller, snapshot=schemas.FinancialSnapshot(income=1800))

    assert excinfo.value.last_result == original.result
    assert excinfo.value.length == len("Sorry, I cannot help with that.")
    assert controller.get_cached_analysis("u1").profile_version == original.profile_version


def test_unexpected_generator_error_becomes_external_service_error(controller, fake_generator):
    fake_generator.error = RuntimeError("connection reset")

    with pytest.raises(ExternalServiceError) as excinfo:
        _run(controller)

    assert excinfo.value.last_result is None
    assert controller.get_cached_analysis("u1") is None


def test_slot_is_released_after_failure(controller, fake_generator):
    fake_generator.error = ExternalServiceError("timeout")
    with pytest.raises(ExternalServiceError):
        _run(controller)

    fake_generator.error = None
    response = _run(controller)

    assert response.state == State.ready
    assert len(fake_generator.calls) == 2


def test_missing_income_is_rejected_before_generation(controller, fake_generator):
    with pytest.raises(ValidationError):
        _run(controller, snapshot=None)

    assert fake_generator.calls == []
    assert controller.get_state("u1") == State.failed


def test_zero_income_generates_unvalidated_plan(controller):
    response = _run(controller, snapshot=schemas.FinancialSnapshot(income=0))

    assert response.allocation_plan.unvalidated
    assert not response.allocation_plan.over_allocated


def test_users_do_not_share_results(controller, fake_generator):
    _run(controller, user_id="u1")
    _run(controller, user_id="u2")

    assert len(fake_generator.calls) == 2


def test_generation_request_uses_configured_limits(db_session, make_generator):
    from database import SessionLocal

    generator = make_generator()
    controller = AnalysisController(generator=generator, session_factory=SessionLocal, max_output_tokens=1234, temperature=0.3)

    _run(controller)

    call = generator.calls[0]
    assert call["max_output_tokens"] == 1234
    assert call["temperature"] == 0.3
    assert "JSON" in call["system_instruction"]
    assert "Car loan" in call["prompt"]
    assert "July 2024 / Groceries" in call["prompt"]


def test_profile_version_ignores_statement_order():
    answers = {"age": 30}

    assert compute_profile_version(answers, SNAPSHOT, ["b", "a"]) == compute_profile_version(answers, SNAPSHOT, ["a", "b"])
    assert compute_profile_version(answers, SNAPSHOT, ["a"]) != compute_profile_version({"age": 31}, SNAPSHOT, ["a"])


def test_prompt_lists_debts_and_answers():
    overall = schemas.OverallAnalysis(total_income=2000)

    prompt = build_analysis_prompt({"secondaryGoals": ["vacation", "car"]}, SNAPSHOT, overall)

    assert "Monthly income: 2000.00" in prompt
    assert "secondaryGoals: vacation, car" in prompt
    assert "Car loan: 2400.00 total, 200.00/month (12 months remaining)" in prompt


def _failing_commit_session():
    from database import SessionLocal

    session = SessionLocal()

    def commit():
        raise RuntimeError("database is locked")

    session.commit = commit
    return session


def test_storage_failure_fails_with_last_result(controller, make_generator):
    original = _run(controller)
    failing = AnalysisController(generator=make_generator(), session_factory=_failing_commit_session)

    with pytest.raises(ExternalServiceError, match="database is locked") as excinfo:
        _run(failing, snapshot=schemas.FinancialSnapshot(income=2600))

    assert excinfo.value.last_result == original.result
    assert failing.get_state("u1") == State.failed
    assert failing._in_flight == {}
    assert controller.get_cached_analysis("u1").profile_version == original.profile_version


def test_corrected_breakdown_regenerates(controller, fake_generator):
    statements = _statements()
    first = asyncio.run(controller.get_or_generate_analysis("u1", PROFILE, SNAPSHOT, statements))

    corrected = [statements[0].model_copy(update={
        "category_breakdown": [schemas.CategoryAmount(category="Groceries", amount=180)],
    })]
    second = asyncio.run(controller.get_or_generate_analysis("u1", PROFILE, SNAPSHOT, corrected))

    assert second.state == State.ready
    assert first.profile_version != second.profile_version
    assert len(fake_generator.calls) == 2


def test_partial_regeneration_keeps_last_complete_result(controller, fake_generator, partial_response):
    original = _run(controller)
    fake_generator.responses = [partial_response]
    _run(controller, snapshot=schemas.FinancialSnapshot(income=2100))
    fake_generator.error = ExternalServiceError("quota exceeded")

    with pytest.raises(ExternalServiceError) as excinfo:
        _run(controller, snapshot=schemas.FinancialSnapshot(income=2200))

    record = controller.get_cached_analysis("u1")
    assert record.completeness == schemas.CompletenessEnum.partial
    assert record.last_complete_result == original.result
    assert excinfo.value.last_result == original.result
