"""Active-time accounting and time-limit gating for simulation attempts."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from schemas import ServiceLevel, Simulation, TimeLimit, as_utc

logger = logging.getLogger(__name__)

_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def diff_ms(start: datetime, end: datetime) -> int:
    """Milliseconds from ``start`` to ``end`` by direct UTC epoch subtraction."""

    return (as_utc(end) - as_utc(start)) // _ONE_MS


def used_time(simulation: Simulation, now: Optional[datetime] = None) -> int:
    """Return how long ``simulation`` has been active, in milliseconds.

    The first matching case wins:

    1. resumed at least once: the stretch up to the first pause, plus every
       resume-to-next-pause interval; the last resume runs to the end (or
       ``now`` while the attempt is still open);
    2. paused but never resumed: start to first pause;
    3. ended or cancelled: start to end;
    4. started: start to ``now``.

    A record that never started has no active time at all.
    """

    now = as_utc(now) if now is not None else utc_now()
    started = simulation.started_at
    paused = simulation.paused_at
    resumed = simulation.resumed_at
    finished = simulation.finished_at

    if started is None:
        return 0
    if resumed:
        total = diff_ms(started, paused[0])
        for index, resumed_at in enumerate(resumed):
            if index + 1 < len(paused):
                total += diff_ms(resumed_at, paused[index + 1])
            elif finished is None:
                total += diff_ms(resumed_at, now)
            else:
                total += diff_ms(resumed_at, finished)
        return total
    if paused:
        return diff_ms(started, paused[0])
    if finished is not None:
        return diff_ms(started, finished)
    return diff_ms(started, now)


def is_running(simulation: Simulation) -> bool:
    """True when the attempt is in its running sub-state (not paused)."""

    return len(simulation.resumed_at) >= len(simulation.paused_at)


def can_pause(simulation: Simulation) -> bool:
    if simulation.started_at is None or simulation.is_ended:
        return False
    never_toggled = not simulation.paused_at and not simulation.resumed_at
    return never_toggled or is_running(simulation)


def has_time_remaining(
    simulation: Simulation, limit: TimeLimit, now: Optional[datetime] = None
) -> bool:
    remaining = limit.remaining(used_time(simulation, now))
    return remaining is None or remaining > 0


def can_resume(
    simulation: Simulation, limit: TimeLimit, now: Optional[datetime] = None
) -> bool:
    if simulation.started_at is None or simulation.is_ended:
        return False
    if len(simulation.paused_at) <= len(simulation.resumed_at):
        return False
    return has_time_remaining(simulation, limit, now)


def ended_at_timestamp(
    simulation: Simulation, service_level: ServiceLevel, now: Optional[datetime] = None
) -> datetime:
    """Timestamp to record as ``ended_at`` when the attempt is stopped.

    With a finite limit that has already run out, the end is moved back to the
    instant the limit was crossed instead of the moment the stop arrived.
    """

    now = as_utc(now) if now is not None else utc_now()
    if not service_level.time_limit:
        # a zero limit never back-dates the end
        return now
    remaining = service_level.limit.remaining(used_time(simulation, now))
    if remaining is None or remaining > 0:
        return now
    logger.info(
        "Simulation %s exceeded its time limit by %sms; back-dating ended_at",
        simulation.id,
        abs(remaining),
    )
    return now - timedelta(milliseconds=abs(remaining))


def format_duration(ms: Optional[int], full_hour: bool = True) -> Tuple[str, float]:
    """Render ``ms`` as ``HH:MM:SS`` and return it with the total minutes."""

    if not ms:
        return "00:00:00", 0
    total_seconds = int(ms // 1000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    hours_part = f"{hours:02d}:" if hours > 0 or full_hour else ""
    time_string = f"{hours_part}{minutes:02d}:{seconds:02d}"
    total_minutes = hours * 60 + minutes + seconds / 60
    return time_string, total_minutes


__all__ = [
    "utc_now",
    "diff_ms",
    "used_time",
    "is_running",
    "can_pause",
    "can_resume",
    "has_time_remaining",
    "ended_at_timestamp",
    "format_duration",
]
