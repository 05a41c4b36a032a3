"""Answer-key scoring and competency verdicts for simulation form answers."""

from __future__ import annotations

import logging
from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from schemas import (
    ANSWER_NOT_REQUIRED,
    NOTES_QUESTION,
    DisplayScores,
    FormAnswer,
    FormQuestion,
    OverallScore,
    ScoreReport,
    SectionResult,
    SectionScore,
    ServiceLevel,
    Simulation,
    SimulationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MISTAKE_THRESHOLD = 4
COMPETENT_LABEL = "Competent"
NEEDS_PRACTICE_LABEL = "Needs Practice"

SubmittedAnswers = Mapping[str, Mapping[str, str]]


def split_section_name(section: str) -> List[str]:
    """Split ``"A. Identification Information"`` into ``["A", "Identification Information"]``."""

    parts = section.split(". ")
    if len(parts) != 2:
        logger.warning("Unexpected section name format: %r", section)
    return parts


def section_letter(section: str) -> str:
    return split_section_name(section)[0]


def _is_excluded_from_scoring(question: FormQuestion, answer: Optional[FormAnswer]) -> bool:
    return (
        question.is_notes
        or question.correct_answer == ""
        or (answer is not None and answer.answer == ANSWER_NOT_REQUIRED)
    )


def _index_answers(answers: Iterable[FormAnswer]) -> Dict[Tuple[str, str], FormAnswer]:
    indexed: Dict[Tuple[str, str], FormAnswer] = {}
    for answer in answers:
        # first match wins, as a linear search over the stored list would
        indexed.setdefault((answer.section, answer.question_no), answer)
    return indexed


def score_simulation(
    service_level: ServiceLevel,
    simulation: Simulation,
    excluded_sections: AbstractSet[str] = frozenset(),
) -> ScoreReport:
    """Score ``simulation`` against the current answer key of ``service_level``.

    ``excluded_sections`` holds section letters whose scores are withheld from
    the overall result while their answers stay visible.
    """

    answers = _index_answers(simulation.form_answers or [])
    sections: Dict[str, SectionScore] = {}
    excluded: Dict[str, bool] = {}
    has_answered_all = True

    for question in service_level.form_questions:
        section = sections.get(question.section)
        if section is None:
            section = sections[question.section] = SectionScore(name=question.section)
            excluded[question.section] = section_letter(question.section) in excluded_sections

        answer = answers.get((question.section, question.question_no))
        is_section_excluded = excluded[question.section]

        if (
            answer is not None
            and answer.answer == ""
            and not question.is_notes
            and answer.question_no != ANSWER_NOT_REQUIRED
            and not is_section_excluded
        ):
            has_answered_all = False

        if _is_excluded_from_scoring(question, answer):
            continue

        section.total += 1
        if answer is not None and answer.answer == question.correct_answer:
            section.score += 1

    display_sections: List[SectionScore] = []
    for section in sections.values():
        if section.total == 0:
            section.show_score = False
            section.show_answers = False
        if excluded[section.name]:
            section.score = 0
            section.total = 0
            section.show_score = False
            section.show_answers = True
        display_sections.append(section)

    overall = OverallScore(
        score=sum(section.score for section in display_sections),
        total=sum(section.total for section in display_sections),
    )
    overall.percentage = percentage_floor(overall.score, overall.total)

    return ScoreReport(
        scores=DisplayScores(overall=overall, sections=display_sections),
        has_answered_all=has_answered_all,
    )


def percentage_floor(score: int, total: int) -> int:
    if total == 0:
        return 0
    return (score * 100) // total


def is_competent(
    score: Optional[int],
    total: Optional[int],
    mistake_threshold: int = DEFAULT_MISTAKE_THRESHOLD,
) -> bool:
    """A learner is competent when their mistakes stay within the threshold.

    A zero (or missing) score is never competent, even with a zero total.
    """

    if not score:
        return False
    mistakes = (total or 0) - score
    return mistakes <= mistake_threshold


def competency_label(
    score: Optional[int],
    total: Optional[int],
    mistake_threshold: int = DEFAULT_MISTAKE_THRESHOLD,
) -> str:
    if is_competent(score, total, mistake_threshold):
        return COMPETENT_LABEL
    return NEEDS_PRACTICE_LABEL


def prefill_form_answers(questions: Sequence[FormQuestion]) -> List[FormAnswer]:
    """Initial answers for a new attempt: pre-filled questions carry their key."""

    return [
        FormAnswer(
            section=question.section,
            question_no=question.question_no,
            answer=question.correct_answer if question.is_prefilled else "",
        )
        for question in questions
    ]


def build_form_answers(
    questions: Sequence[FormQuestion], submitted: SubmittedAnswers
) -> List[FormAnswer]:
    """Lay ``submitted`` answers out in answer-key order; blanks become ``""``."""

    answers: List[FormAnswer] = []
    for question in questions:
        section = submitted.get(question.section) or {}
        value = section.get(question.question_no)
        answer = value if value is not None and value.strip() != "" else ""
        answers.append(
            FormAnswer(section=question.section, question_no=question.question_no, answer=answer)
        )
    return answers


def compute_simulation_result(
    questions: Sequence[FormQuestion], answers: Sequence[FormAnswer]
) -> SimulationResult:
    """Result stored at stop time: per-section correct/total and percentages."""

    key = {(question.section, question.question_no): question for question in questions}
    tallies: Dict[str, List[int]] = {}

    for answer in answers:
        question = key.get((answer.section, answer.question_no))
        if (
            answer.question_no == NOTES_QUESTION
            or (question is not None and question.correct_answer == "")
            or answer.answer == ANSWER_NOT_REQUIRED
        ):
            continue
        tally = tallies.setdefault(answer.section, [0, 0])
        tally[1] += 1
        if question is not None and question.correct_answer == answer.answer:
            tally[0] += 1

    sections = [
        SectionResult(section=name, score=correct / total * 100, correct=correct, total=total)
        for name, (correct, total) in tallies.items()
    ]
    overall_correct = sum(section.correct for section in sections)
    overall_total = sum(section.total for section in sections)
    overall_score = overall_correct / overall_total * 100 if overall_total > 0 else 0.0

    return SimulationResult(
        sections_score=sections,
        overall_score=overall_score,
        overall_correct=overall_correct,
        overall_total=overall_total,
    )


__all__ = [
    "DEFAULT_MISTAKE_THRESHOLD",
    "COMPETENT_LABEL",
    "NEEDS_PRACTICE_LABEL",
    "split_section_name",
    "section_letter",
    "score_simulation",
    "percentage_floor",
    "is_competent",
    "competency_label",
    "prefill_form_answers",
    "build_form_answers",
    "compute_simulation_result",
]
