"""Navigation between a learner's completed attempts of one service level."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from schemas import AttemptSummary, HistoryNeighbors


def locate_neighbors(
    attempts: Sequence[AttemptSummary], current_attempt_id: str
) -> HistoryNeighbors:
    """Find the attempts on either side of ``current_attempt_id``.

    ``attempts`` must already be ordered most recent first, so the older
    attempt sits at the next index and the newer one at the previous index.
    """

    previous: Optional[AttemptSummary] = None
    newer: Optional[AttemptSummary] = None
    for index, attempt in enumerate(attempts):
        if attempt.id != current_attempt_id:
            continue
        if index + 1 < len(attempts):
            previous = attempts[index + 1]
        if index > 0:
            newer = attempts[index - 1]
    return HistoryNeighbors(previous=previous, next=newer)


def attempt_dates(
    attempts: Sequence[AttemptSummary], current_attempt_id: str
) -> List[Dict[str, Any]]:
    return [
        {
            "id": attempt.id,
            "date": attempt.started_at,
            "is_selected": attempt.id == current_attempt_id,
        }
        for attempt in attempts
    ]


__all__ = ["locate_neighbors", "attempt_dates"]
