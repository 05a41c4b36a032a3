from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from schemas import FormQuestion, PaginationConfig, SectionScore, ServiceLevel, Simulation


def test_form_question_flags():
    notes = FormQuestion(section="A. Intro", question_no="Notes")
    prefilled = FormQuestion(section="A. Intro", question_no="1", correct_answer="Jane", pre_fill=" YES ")

    assert notes.is_notes is True
    assert prefilled.is_notes is False
    assert prefilled.is_prefilled is True


def test_form_question_ignores_unknown_keys():
    question = FormQuestion.model_validate(
        {"section": "A. Intro", "question_no": "1", "legacy_field": 3}
    )
    assert question.correct_answer == ""


def test_simulation_normalises_timestamps_to_utc():
    local = timezone(timedelta(hours=-5))
    simulation = Simulation(
        id="sim-1",
        learner_id="learner",
        service_id="svc",
        service_level_id="lvl",
        started_at="2026-03-02T04:00:00-05:00",
        paused_at=[datetime(2026, 3, 2, 4, 5, tzinfo=local)],
    )
    assert simulation.started_at == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert simulation.paused_at[0].utcoffset() == timedelta(0)


def test_finished_at_prefers_ended_over_cancelled():
    ended = datetime(2026, 3, 2, 10, tzinfo=timezone.utc)
    cancelled = datetime(2026, 3, 2, 11, tzinfo=timezone.utc)
    simulation = Simulation(
        id="s", learner_id="l", service_id="v", service_level_id="x",
        ended_at=ended, cancelled_at=cancelled,
    )
    assert simulation.finished_at == ended
    assert simulation.is_ended


def test_service_level_limit():
    assert ServiceLevel(id="l", service_id="s").limit.is_unlimited
    assert ServiceLevel(id="l", service_id="s", time_limit=90_000).limit.milliseconds == 90_000


def test_section_score_accepts_both_names():
    by_alias = SectionScore.model_validate({"name": "A", "showScore": False})
    by_name = SectionScore(name="A", show_answers=False)
    assert by_alias.show_score is False
    assert by_name.model_dump()["showAnswers"] is False


def test_pagination_render_with_custom_labels():
    config = PaginationConfig(page=1, page_size=5, labels={"docs": "items", "total_docs": "count"})
    page = config.render([], 0)

    assert page["items"] == []
    assert page["count"] == 0
    assert page["total_pages"] == 1
    assert page["from"] == 0
    assert page["to"] == 0
    assert page["has_next_page"] is False


def test_pagination_config_is_validated():
    with pytest.raises(ValidationError):
        PaginationConfig(page=0)
