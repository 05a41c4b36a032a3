"""Pydantic schemas for simulations, service levels and derived score reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "NOTES_QUESTION",
    "ANSWER_NOT_REQUIRED",
    "PREFILL_YES",
    "UNLIMITED_TIME_SENTINEL",
    "TimeLimit",
    "FormQuestionOption",
    "FormQuestion",
    "FormAnswer",
    "SectionResult",
    "SimulationResult",
    "Simulation",
    "ServiceLevel",
    "SectionScore",
    "OverallScore",
    "DisplayScores",
    "ScoreReport",
    "SoftSkillRating",
    "SoftSkillsData",
    "AttemptSummary",
    "HistoryNeighbors",
    "PaginationConfig",
    "as_utc",
]

NOTES_QUESTION = "Notes"
ANSWER_NOT_REQUIRED = "Not applicable"
PREFILL_YES = "yes"
UNLIMITED_TIME_SENTINEL = -1


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeLimit:
    """Either unlimited or a number of milliseconds.

    Only ``None`` and ``-1`` mean unlimited; a stored limit of zero or below
    leaves no time at all.
    """

    milliseconds: Optional[int] = None

    @classmethod
    def unlimited(cls) -> "TimeLimit":
        return cls(None)

    @classmethod
    def of(cls, milliseconds: int) -> "TimeLimit":
        if milliseconds <= 0:
            raise ValueError("time limit must be positive; use TimeLimit.unlimited()")
        return cls(int(milliseconds))

    @classmethod
    def from_raw(cls, raw: Optional[int]) -> "TimeLimit":
        """Translate the stored representation (``None``, ``-1`` or ms) once."""

        if raw is None or raw == UNLIMITED_TIME_SENTINEL:
            return cls.unlimited()
        return cls(int(raw))

    @property
    def is_unlimited(self) -> bool:
        return self.milliseconds is None

    def remaining(self, used_ms: int) -> Optional[int]:
        """Milliseconds left, negative once exceeded; ``None`` when unlimited."""

        if self.milliseconds is None:
            return None
        return self.milliseconds - used_ms


class FormQuestionOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option: str = ""
    option_description: str = ""
    pre_fill: str = ""


class FormQuestion(BaseModel):
    """One row of a service level's answer key."""

    model_config = ConfigDict(extra="ignore")

    section: str = Field(description="Section name, usually '<Letter>. <Title>'.")
    question_no: str = Field(description="Question identifier unique within its section.")
    question_type: str = ""
    question_title: str = ""
    correct_answer: str = Field(
        default="",
        description="Expected answer; an empty string means the question is not graded.",
    )
    pre_fill: str = Field(
        default="",
        description="'yes' when the correct answer is pre-filled for the learner.",
    )
    options: List[FormQuestionOption] = Field(default_factory=list)

    @property
    def is_notes(self) -> bool:
        return self.question_no == NOTES_QUESTION

    @property
    def is_prefilled(self) -> bool:
        return self.pre_fill.strip().lower() == PREFILL_YES


class FormAnswer(BaseModel):
    section: str
    question_no: str
    answer: str = ""


class SectionResult(BaseModel):
    section: str
    score: float
    correct: int
    total: int


class SimulationResult(BaseModel):
    """Result written once when the simulation is stopped."""

    sections_score: List[SectionResult] = Field(default_factory=list)
    overall_score: float = 0.0
    overall_correct: int = 0
    overall_total: int = 0


class Simulation(BaseModel):
    """One learner's timed attempt at a service level."""

    id: str
    learner_id: str
    service_id: str
    service_level_id: str
    form_answers: Optional[List[FormAnswer]] = None
    simulation_result: Optional[SimulationResult] = None
    is_trial_data: bool = False
    started_at: Optional[datetime] = None
    paused_at: List[datetime] = Field(default_factory=list)
    resumed_at: List[datetime] = Field(default_factory=list)
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_validator("started_at", "ended_at", "cancelled_at")
    @classmethod
    def _single_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("paused_at", "resumed_at")
    @classmethod
    def _many_utc(cls, values: List[datetime]) -> List[datetime]:
        return [as_utc(value) for value in values]

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    @property
    def finished_at(self) -> Optional[datetime]:
        """End of active time: ``ended_at`` or else ``cancelled_at``."""

        return self.ended_at or self.cancelled_at


class ServiceLevel(BaseModel):
    """Scoring rubric and constraints for one difficulty tier of a service."""

    id: str
    service_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    time_limit: Optional[int] = Field(
        default=None,
        description="Milliseconds; -1 or null stands for no limit.",
    )
    form_questions: List[FormQuestion] = Field(default_factory=list)

    @property
    def limit(self) -> TimeLimit:
        return TimeLimit.from_raw(self.time_limit)


class SectionScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    name: str
    score: int = 0
    total: int = 0
    show_score: bool = Field(default=True, alias="showScore")
    show_answers: bool = Field(default=True, alias="showAnswers")


class OverallScore(BaseModel):
    score: int = 0
    total: int = 0
    percentage: int = 0


class DisplayScores(BaseModel):
    overall: OverallScore = Field(default_factory=OverallScore)
    sections: List[SectionScore] = Field(default_factory=list)


class ScoreReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    scores: DisplayScores
    has_answered_all: bool = Field(alias="hasAnsweredAll")


class SoftSkillRating(BaseModel):
    skill: str
    score: int
    total: int
    description: str = ""
    importance: str = ""
    assessment: List[str] = Field(default_factory=list)


class SoftSkillsData(BaseModel):
    summary: str = ""
    ratings: List[SoftSkillRating] = Field(default_factory=list)


class AttemptSummary(BaseModel):
    id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class HistoryNeighbors(BaseModel):
    previous: Optional[AttemptSummary] = Field(
        default=None, description="The next older attempt, if any."
    )
    next: Optional[AttemptSummary] = Field(
        default=None, description="The next newer attempt, if any."
    )


DEFAULT_PAGINATION_LABELS: Dict[str, str] = {
    "total_docs": "total",
    "docs": "data",
    "page": "current_page",
    "next_page": "next_page",
    "prev_page": "prev_page",
    "total_pages": "total_pages",
    "paging_counter": "paging_counter",
    "has_prev_page": "has_prev_page",
    "has_next_page": "has_next_page",
}


class PaginationConfig(BaseModel):
    """Pagination settings passed explicitly to every paginated query."""

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=5, ge=1)
    labels: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_PAGINATION_LABELS))

    def label(self, key: str) -> str:
        return self.labels.get(key, DEFAULT_PAGINATION_LABELS[key])

    def render(self, docs: List[Any], total: int) -> Dict[str, Any]:
        """Shape a page of ``docs`` with labelled metadata plus ``from``/``to``."""

        total_pages = max(1, -(-total // self.page_size)) if total else 1
        paging_counter = (self.page - 1) * self.page_size + 1
        has_prev = self.page > 1
        has_next = self.page < total_pages
        to = min(self.page_size * self.page, total)
        return {
            self.label("docs"): docs,
            self.label("total_docs"): total,
            "limit": self.page_size,
            self.label("page"): self.page,
            self.label("total_pages"): total_pages,
            self.label("paging_counter"): paging_counter,
            self.label("has_prev_page"): has_prev,
            self.label("has_next_page"): has_next,
            self.label("prev_page"): self.page - 1 if has_prev else None,
            self.label("next_page"): self.page + 1 if has_next else None,
            "from": paging_counter if to != 0 else 0,
            "to": to,
        }
