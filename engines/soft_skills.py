"""Parse soft-skill feedback text into structured ratings.

Feedback arrives from the conversation agent as a single string such as
``"Empathy: 8/10, Active Listening: 5/5"``. Each fragment is matched on its own
and enriched with the static importance and assessment rubric for the skill.
Fragments that do not match are skipped so one malformed token never hides the
rest of the ratings.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from schemas import SoftSkillRating, SoftSkillsData

logger = logging.getLogger(__name__)

FRAGMENT_DELIMITER = ", "
NO_DYNAMIC_TEXT = ""

# skill name is everything up to the last ": "; score and total are bare integers
_RATING_PATTERN = re.compile(r"^(?P<skill>.*): (?P<score>\d+)/(?P<total>\d+)$")
_WORD_PATTERN = re.compile(r"[A-Z]{2,}(?=[A-Z][a-z]|\b|\d)|[A-Z]?[a-z]+|[A-Z]+|\d+")

SKILL_IMPORTANCE: Dict[str, str] = {
    "Empathy": "Helps in building trust and making the elderly feel understood and valued",
    "Active Listening": (
        "Ensures that the needs, concerns, and preferences of the elderly are heard and addressed"
    ),
    "Adaptability": (
        "Helps caregivers provide consistent, high-quality care even as circumstances change"
    ),
    "Respectfulness": (
        "Fosters a positive environment and enhances the residents' sense of self-worth"
    ),
    "Problem Solving": "Helps in effectively addressing and managing any challenges that arise",
    "Reasoning": "Learners are able to think through why they chose various options for coding",
}

SKILL_ASSESSMENT_RUBRICS: Dict[str, List[str]] = {
    "Empathy": [
        "Learner is able to describe residents' feelings",
        "Learner regularly checks in on emotional well-being",
    ],
    "Active Listening": [
        "Learner asks clarifying questions or expounds on what residents are saying",
        "Learner avoids interrupting or changing subjects while residents are speaking",
    ],
    "Adaptability": [
        "Learners ask questions that are appropriate to the flow of the conversation "
        "rather than the order the questions are in",
    ],
    "Respectfulness": [
        "Learner uses respectful language",
        "Learner honors residents' preferences for issues they don't wish to discuss",
    ],
    "Problem Solving": [
        "Learner is able to de-escalate conflicts",
        "Learner is able to direct conversations to be back on track",
    ],
    "Reasoning": [
        "Learners use the notes to give justification for their coding in a thought out manner",
    ],
}


def canonical_skill_name(raw: str) -> str:
    """Title-case ``raw`` word by word: ``"active_listening"`` -> ``"Active Listening"``.

    Separators (spaces, underscores, hyphens) collapse to single spaces; words
    that are already all capitals are kept as they are.
    """

    words = _WORD_PATTERN.findall(raw)
    return " ".join(word if word.isupper() else word[:1].upper() + word[1:] for word in words)


def parse_rating(fragment: str) -> Optional[SoftSkillRating]:
    match = _RATING_PATTERN.match(fragment)
    if match is None:
        logger.debug("Skipping unparsable soft-skill fragment: %r", fragment)
        return None

    skill = canonical_skill_name(match.group("skill"))
    importance = SKILL_IMPORTANCE.get(skill, "")
    assessment = list(SKILL_ASSESSMENT_RUBRICS.get(skill, []))
    if skill not in SKILL_IMPORTANCE:
        logger.warning("No rubric metadata for soft skill %r", skill)

    return SoftSkillRating(
        skill=skill,
        score=int(match.group("score")),
        total=int(match.group("total")),
        description=NO_DYNAMIC_TEXT,
        importance=importance,
        assessment=assessment,
    )


def parse_soft_skills(raw_text: Optional[str]) -> Optional[SoftSkillsData]:
    """Return structured ratings for ``raw_text``; ``None`` when there is no text.

    Repeated skills produce repeated ratings in source order.
    """

    if raw_text is None:
        return None

    data = SoftSkillsData(summary=NO_DYNAMIC_TEXT, ratings=[])
    for fragment in raw_text.split(FRAGMENT_DELIMITER):
        rating = parse_rating(fragment)
        if rating is not None:
            data.ratings.append(rating)
    return data


__all__ = [
    "SKILL_IMPORTANCE",
    "SKILL_ASSESSMENT_RUBRICS",
    "canonical_skill_name",
    "parse_rating",
    "parse_soft_skills",
]
