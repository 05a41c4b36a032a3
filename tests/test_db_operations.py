"""Test cases for db operations."""

import json
from datetime import datetime, timedelta, timezone

import pytest

import db
from schemas import FormAnswer, FormQuestion, PaginationConfig, ServiceLevel, Simulation, SimulationResult

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _level(**overrides):
    data = {
        "id": "lvl-1",
        "service_id": "svc-1",
        "title": "Level 1",
        "time_limit": 600_000,
        "form_questions": [
            FormQuestion(section="A. Identification", question_no="1", correct_answer="Yes"),
        ],
    }
    data.update(overrides)
    return ServiceLevel(**data)


def _simulation(sim_id="sim-1", started_at=T0, **overrides):
    data = {
        "id": sim_id,
        "learner_id": "learner-1",
        "service_id": "svc-1",
        "service_level_id": "lvl-1",
        "started_at": started_at,
        "paused_at": [started_at],
    }
    data.update(overrides)
    return db.create_simulation(Simulation(**data))


@pytest.mark.usefixtures("temp_db")
def test_service_level_round_trip():
    db.upsert_service_level(_level())
    stored = db.get_service_level("lvl-1")
    assert stored.title == "Level 1"
    assert stored.form_questions[0].correct_answer == "Yes"
    assert stored.limit.milliseconds == 600_000

    db.upsert_service_level(_level(time_limit=-1, title="Renamed"))
    updated = db.get_service_level("lvl-1")
    assert updated.title == "Renamed"
    assert updated.limit.is_unlimited

    assert db.get_service_level("missing") is None


@pytest.mark.usefixtures("temp_db")
def test_simulation_timestamps_come_back_as_utc():
    _simulation(resumed_at=[T0 + timedelta(seconds=5)])
    stored = db.get_simulation("sim-1")
    assert stored.started_at == T0
    assert stored.paused_at == [T0]
    assert stored.resumed_at == [T0 + timedelta(seconds=5)]
    assert stored.started_at.tzinfo is not None
    assert stored.ended_at is None


@pytest.mark.usefixtures("temp_db")
def test_append_pause_and_resume_only_with_expected_lengths():
    _simulation()

    assert db.append_resume_if("sim-1", 1, 0, T0 + timedelta(seconds=1)) is True
    # a second request that checked the same state loses
    assert db.append_resume_if("sim-1", 1, 0, T0 + timedelta(seconds=2)) is False
    assert db.append_pause_if("sim-1", 1, 1, T0 + timedelta(seconds=3)) is True
    assert db.append_pause_if("sim-1", 1, 1, T0 + timedelta(seconds=4)) is False

    stored = db.get_simulation("sim-1")
    assert stored.resumed_at == [T0 + timedelta(seconds=1)]
    assert stored.paused_at == [T0, T0 + timedelta(seconds=3)]


@pytest.mark.usefixtures("temp_db")
def test_append_is_rejected_once_ended():
    _simulation(ended_at=T0 + timedelta(seconds=10))
    assert db.append_resume_if("sim-1", 1, 0, T0 + timedelta(seconds=20)) is False


@pytest.mark.usefixtures("temp_db")
def test_append_on_missing_simulation_returns_false():
    assert db.append_pause_if("nope", 0, 0, T0) is False


@pytest.mark.usefixtures("temp_db")
def test_finish_simulation_if_open_happens_once():
    _simulation()
    answers = [FormAnswer(section="A. Identification", question_no="1", answer="Yes")]
    result = SimulationResult(overall_score=100.0, overall_correct=1, overall_total=1)
    ended = T0 + timedelta(minutes=5)

    assert db.finish_simulation_if_open("sim-1", ended, answers, result) is True
    assert db.finish_simulation_if_open("sim-1", ended + timedelta(minutes=1)) is False

    stored = db.get_simulation("sim-1")
    assert stored.ended_at == ended
    assert stored.form_answers == answers
    assert stored.simulation_result.overall_correct == 1


@pytest.mark.usefixtures("temp_db")
def test_replace_form_answers_only_while_open():
    _simulation()
    answers = [FormAnswer(section="A. Identification", question_no="1", answer="No")]
    assert db.replace_form_answers_if_open("sim-1", answers) is True
    assert db.get_simulation("sim-1").form_answers == answers

    db.update_simulation("sim-1", ended_at=T0 + timedelta(minutes=1))
    assert db.replace_form_answers_if_open("sim-1", []) is False


@pytest.mark.usefixtures("temp_db")
def test_update_simulation_leaves_unspecified_fields_alone():
    _simulation(form_answers=[FormAnswer(section="A", question_no="1", answer="x")])
    updated = db.update_simulation("sim-1", cancelled_at=T0 + timedelta(seconds=30))
    assert updated.cancelled_at == T0 + timedelta(seconds=30)
    assert updated.form_answers[0].answer == "x"
    assert db.update_simulation("missing", ended_at=T0) is None


@pytest.mark.usefixtures("temp_db")
def test_find_open_simulation_skips_ended_attempts():
    _simulation("old", started_at=T0, ended_at=T0 + timedelta(minutes=1))
    assert db.find_open_simulation("learner-1", "svc-1", "lvl-1") is None

    _simulation("open", started_at=T0 + timedelta(minutes=5))
    assert db.find_open_simulation("learner-1", "svc-1", "lvl-1").id == "open"


@pytest.mark.usefixtures("temp_db")
def test_list_completed_attempts_most_recent_first():
    for offset, sim_id in enumerate(["a", "b", "c"]):
        start = T0 + timedelta(days=offset)
        _simulation(sim_id, started_at=start, ended_at=start + timedelta(minutes=10))
    _simulation("ongoing", started_at=T0 + timedelta(days=5))

    attempts = db.list_completed_attempts("learner-1", "lvl-1")
    assert [attempt.id for attempt in attempts] == ["c", "b", "a"]


@pytest.mark.usefixtures("temp_db")
def test_paginate_simulations():
    for offset in range(7):
        start = T0 + timedelta(hours=offset)
        _simulation(f"s{offset}", started_at=start, ended_at=start + timedelta(minutes=1))
    _simulation("ongoing", started_at=T0 + timedelta(days=1))

    page, total = db.paginate_simulations("learner-1", "svc-1", PaginationConfig(page=2, page_size=5))
    assert total == 7
    assert [sim.id for sim in page] == ["s1", "s0"]

    page, total = db.paginate_simulations(
        "learner-1", "svc-1", PaginationConfig(page=1, page_size=5), include_ongoing=True
    )
    assert total == 8
    assert page[0].id == "ongoing"


@pytest.mark.usefixtures("temp_db")
def test_soft_skill_feedback_distinguishes_missing_and_null():
    assert db.get_soft_skill_feedback("sim-1") == (False, None)

    db.save_soft_skill_feedback("sim-1", None)
    assert db.get_soft_skill_feedback("sim-1") == (True, None)

    db.save_soft_skill_feedback("sim-1", "Empathy: 8/10")
    assert db.get_soft_skill_feedback("sim-1") == (True, "Empathy: 8/10")


@pytest.mark.usefixtures("temp_db")
def test_activity_log():
    db.log_activity("org-1", "Start Simulation", "learner-1 started", {"service_id": "svc-1"})
    db.log_activity("org-2", "Start Simulation", "learner-2 started", {})

    entries = db.list_activity("org-1")
    assert len(entries) == 1
    assert entries[0]["payload"] == {"service_id": "svc-1"}
    assert len(db.list_activity()) == 2

    with db._conn() as con:
        raw = con.execute("SELECT payload FROM activity_log WHERE organization = ?", ["org-1"]).fetchone()
    assert json.loads(raw["payload"]) == {"service_id": "svc-1"}
