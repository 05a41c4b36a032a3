import logging

from engines.soft_skills import (
    SKILL_ASSESSMENT_RUBRICS,
    SKILL_IMPORTANCE,
    canonical_skill_name,
    parse_rating,
    parse_soft_skills,
)


def test_parses_known_skills_with_rubric_metadata():
    data = parse_soft_skills("Empathy: 8/10, Active Listening: 5/5")

    assert data is not None
    assert data.summary == ""
    assert [(r.skill, r.score, r.total) for r in data.ratings] == [
        ("Empathy", 8, 10),
        ("Active Listening", 5, 5),
    ]
    empathy = data.ratings[0]
    assert empathy.importance == SKILL_IMPORTANCE["Empathy"]
    assert empathy.assessment == SKILL_ASSESSMENT_RUBRICS["Empathy"]
    assert empathy.description == ""


def test_none_feedback_returns_none():
    assert parse_soft_skills(None) is None


def test_garbage_feedback_yields_no_ratings():
    data = parse_soft_skills("garbage")
    assert data is not None
    assert data.ratings == []


def test_malformed_fragments_are_skipped():
    data = parse_soft_skills("Empathy: 8/10, Reasoning: high, Adaptability: 3/5")
    assert [r.skill for r in data.ratings] == ["Empathy", "Adaptability"]


def test_unknown_skill_keeps_rating_with_empty_metadata(caplog):
    with caplog.at_level(logging.WARNING):
        data = parse_soft_skills("Humor: 2/3")
    rating = data.ratings[0]
    assert (rating.skill, rating.score, rating.total) == ("Humor", 2, 3)
    assert rating.importance == ""
    assert rating.assessment == []
    assert "No rubric metadata" in caplog.text


def test_repeated_skills_stay_in_source_order():
    data = parse_soft_skills("Empathy: 1/10, Empathy: 9/10")
    assert [r.score for r in data.ratings] == [1, 9]


def test_skill_names_are_canonicalised():
    assert canonical_skill_name("active listening") == "Active Listening"
    assert canonical_skill_name("problem_solving") == "Problem Solving"
    assert canonical_skill_name("problem-solving") == "Problem Solving"
    assert canonical_skill_name("  respectfulness ") == "Respectfulness"
    assert canonical_skill_name("XML Parsing") == "XML Parsing"


def test_lower_case_skill_matches_metadata():
    rating = parse_rating("active listening: 4/5")
    assert rating.skill == "Active Listening"
    assert rating.assessment == SKILL_ASSESSMENT_RUBRICS["Active Listening"]


def test_skill_name_may_contain_a_colon():
    rating = parse_rating("Problem Solving: Conflicts: 3/4")
    assert rating is not None
    assert (rating.score, rating.total) == (3, 4)


def test_scores_must_be_integers():
    assert parse_rating("Empathy: 8.5/10") is None
    assert parse_rating("Empathy: /10") is None
    assert parse_rating("Empathy 8/10") is None


def test_empty_feedback_string_yields_no_ratings():
    data = parse_soft_skills("")
    assert data.ratings == []
