"""Lifecycle of simulation attempts: start, pause/resume, stop and result views."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import AbstractSet, Any, Callable, Dict, List, Optional

import db
import events
import xapi
from engines.history import attempt_dates, locate_neighbors
from engines.scoring import (
    DEFAULT_MISTAKE_THRESHOLD,
    build_form_answers,
    competency_label,
    compute_simulation_result,
    is_competent,
    percentage_floor,
    prefill_form_answers,
    score_simulation,
)
from engines.soft_skills import parse_soft_skills
from engines.timing import (
    can_pause,
    can_resume,
    ended_at_timestamp,
    format_duration,
    used_time,
    utc_now,
)
from engines.validation import (
    SERVICE_LEVEL_NOT_FOUND,
    SIMULATION_COMPLETED,
    SIMULATION_ENDED,
    SIMULATION_NOT_ENDED,
    SIMULATION_NOT_FOUND,
    SIMULATION_UPDATED,
    InvalidStateError,
    NotFoundError,
    validate_form_answers,
)
from env_validation import get_env_int
from schemas import (
    PaginationConfig,
    ScoreReport,
    ServiceLevel,
    Simulation,
    SoftSkillsData,
)

logger = logging.getLogger(__name__)

START_SIMULATION = "Start Simulation"
FINISH_SIMULATION = "Finish Simulation"

Clock = Callable[[], datetime]
StatementEmitter = Callable[..., Any]


class SimulationService:
    """Coordinate the timing and scoring engines with the document store.

    Pause and resume are check-then-append operations; the append is a
    conditional update keyed on the array lengths that were checked, so two
    concurrent requests cannot both succeed.
    """

    def __init__(
        self,
        *,
        store: Any = db,
        notifier: Optional[events.TimeUpdateNotifier] = None,
        emit_statement: Optional[StatementEmitter] = None,
        clock: Optional[Clock] = None,
        mistake_threshold: Optional[int] = None,
        page_size: Optional[int] = None,
        excluded_sections: AbstractSet[str] = frozenset(),
    ) -> None:
        self.store = store
        self.notifier = notifier or events.NOTIFIER
        self.emit_statement: StatementEmitter = emit_statement or xapi.emit
        self.clock: Clock = clock or utc_now
        self.mistake_threshold = (
            mistake_threshold
            if mistake_threshold is not None
            else get_env_int("COMPETENCY_MISTAKE_THRESHOLD", DEFAULT_MISTAKE_THRESHOLD)
        )
        self.page_size = page_size if page_size is not None else get_env_int("ATTEMPTS_PAGE_SIZE", 5)
        self.excluded_sections = frozenset(excluded_sections)

    # ------------------------------------------------------------------
    def _require_simulation(self, simulation_id: str) -> Simulation:
        simulation = self.store.get_simulation(simulation_id)
        if simulation is None:
            raise NotFoundError(SIMULATION_NOT_FOUND, resource="simulation", resource_id=simulation_id)
        return simulation

    def _require_service_level(self, service_level_id: str) -> ServiceLevel:
        level = self.store.get_service_level(service_level_id)
        if level is None:
            raise NotFoundError(
                SERVICE_LEVEL_NOT_FOUND, resource="service_level", resource_id=service_level_id
            )
        return level

    def _emit(self, simulation: Simulation, verb: str, **kwargs: Any) -> None:
        context = {
            "service_id": simulation.service_id,
            "service_level_id": simulation.service_level_id,
        }
        context.update(kwargs.pop("context", {}))
        self.emit_statement(simulation.learner_id, verb, simulation.id, context=context, **kwargs)

    # ------------------------------------------------------------------
    def start(
        self,
        learner_id: str,
        service_id: str,
        service_level_id: str,
        *,
        organization: Optional[str] = None,
        trial: bool = False,
    ) -> Simulation:
        """Return the learner's open attempt for the level, or create a new one.

        New attempts start paused; the first resume happens once a client connects.
        """

        level = self._require_service_level(service_level_id)
        existing = self.store.find_open_simulation(learner_id, service_id, service_level_id)
        if existing is not None:
            return existing

        now = self.clock()
        simulation = Simulation(
            id=self.store.new_id(),
            learner_id=learner_id,
            service_id=service_id,
            service_level_id=service_level_id,
            started_at=now,
            paused_at=[now],
            form_answers=prefill_form_answers(level.form_questions),
            is_trial_data=trial,
        )
        self.store.create_simulation(simulation)

        self.store.log_activity(
            organization,
            START_SIMULATION,
            f"{learner_id} started simulation of service level {level.title or level.id}",
            {"service_id": service_id, "service_level_id": service_level_id, "user_id": learner_id},
        )
        self._emit(simulation, xapi.VERB_INITIALIZED)
        return simulation

    def get(self, simulation_id: str) -> Dict[str, Any]:
        simulation = self._require_simulation(simulation_id)
        level = self._require_service_level(simulation.service_level_id)
        payload = simulation.model_dump(mode="json")
        payload["time_limit"] = level.time_limit
        payload["used_time"] = used_time(simulation, self.clock())
        return payload

    def used_time(self, simulation_id: str) -> int:
        return used_time(self._require_simulation(simulation_id), self.clock())

    # ------------------------------------------------------------------
    def pause(self, simulation_id: str) -> bool:
        """Record a pause if the attempt is running; returns whether it was recorded."""

        simulation = self._require_simulation(simulation_id)
        if not can_pause(simulation):
            logger.info("Ignoring pause for simulation %s in its current state", simulation_id)
            return False

        accepted = self.store.append_pause_if(
            simulation_id,
            len(simulation.paused_at),
            len(simulation.resumed_at),
            self.clock(),
        )
        if not accepted:
            logger.info("Pause for simulation %s lost a concurrent update", simulation_id)
            return False

        self.notifier.publish(simulation_id)
        self._emit(simulation, xapi.VERB_SUSPENDED)
        return True

    def resume(self, simulation_id: str) -> bool:
        """Record a resume if the attempt is paused and has time left."""

        simulation = self._require_simulation(simulation_id)
        level = self._require_service_level(simulation.service_level_id)
        now = self.clock()
        if not can_resume(simulation, level.limit, now):
            logger.info("Ignoring resume for simulation %s in its current state", simulation_id)
            return False

        accepted = self.store.append_resume_if(
            simulation_id,
            len(simulation.paused_at),
            len(simulation.resumed_at),
            now,
        )
        if not accepted:
            logger.info("Resume for simulation %s lost a concurrent update", simulation_id)
            return False

        self._emit(simulation, xapi.VERB_RESUMED)
        return True

    def on_client_connected(self, simulation_id: str) -> bool:
        try:
            return self.resume(simulation_id)
        except NotFoundError:
            logger.warning("Client connected for unknown simulation %s", simulation_id)
            return False

    def on_client_disconnected(self, simulation_id: str) -> bool:
        try:
            return self.pause(simulation_id)
        except NotFoundError:
            logger.warning("Client disconnected from unknown simulation %s", simulation_id)
            return False

    # ------------------------------------------------------------------
    def stop(
        self,
        simulation_id: str,
        submitted: Any,
        *,
        organization: Optional[str] = None,
    ) -> Dict[str, str]:
        """End the attempt, store its answers and the scored result."""

        answers_by_section = validate_form_answers(submitted)
        simulation = self._require_simulation(simulation_id)
        if simulation.is_ended:
            raise InvalidStateError(SIMULATION_ENDED)
        level = self._require_service_level(simulation.service_level_id)
        ended_at = ended_at_timestamp(simulation, level, self.clock())

        if not level.form_questions:
            if not self.store.finish_simulation_if_open(simulation_id, ended_at):
                raise InvalidStateError(SIMULATION_ENDED)
            return {"message": SIMULATION_UPDATED}

        answers = build_form_answers(level.form_questions, answers_by_section)
        result = compute_simulation_result(level.form_questions, answers)
        if not self.store.finish_simulation_if_open(
            simulation_id, ended_at, form_answers=answers, simulation_result=result
        ):
            raise InvalidStateError(SIMULATION_ENDED)

        self.store.log_activity(
            organization,
            FINISH_SIMULATION,
            f"{simulation.learner_id} finished simulation of service level {level.title or level.id}",
            {"simulation_id": simulation_id},
        )
        self._emit(
            simulation,
            xapi.VERB_COMPLETED,
            score=result.overall_score,
            success=is_competent(result.overall_correct, result.overall_total, self.mistake_threshold),
            context={
                "percentage": percentage_floor(result.overall_correct, result.overall_total),
                "used_time_ms": used_time(simulation.model_copy(update={"ended_at": ended_at})),
            },
        )
        return {"message": SIMULATION_COMPLETED}

    def update_form_answers(self, simulation_id: str, submitted: Any) -> Dict[str, str]:
        answers_by_section = validate_form_answers(submitted)
        simulation = self._require_simulation(simulation_id)
        if simulation.is_ended:
            raise InvalidStateError(SIMULATION_ENDED)
        level = self._require_service_level(simulation.service_level_id)

        answers = build_form_answers(level.form_questions, answers_by_section)
        if not self.store.replace_form_answers_if_open(simulation_id, answers):
            raise InvalidStateError(SIMULATION_ENDED)
        return {"message": SIMULATION_UPDATED}

    # ------------------------------------------------------------------
    def score(self, simulation_id: str) -> ScoreReport:
        simulation = self._require_simulation(simulation_id)
        level = self._require_service_level(simulation.service_level_id)
        return score_simulation(level, simulation, self.excluded_sections)

    def details(self, simulation_id: str) -> Dict[str, Any]:
        """Result view of a finished attempt."""

        simulation = self._require_simulation(simulation_id)
        if not simulation.is_ended:
            raise NotFoundError(SIMULATION_NOT_ENDED, resource="simulation", resource_id=simulation_id)
        level = self._require_service_level(simulation.service_level_id)

        report = score_simulation(level, simulation, self.excluded_sections)
        overall = report.scores.overall
        total_completed_time, _ = format_duration(used_time(simulation, self.clock()))
        return {
            "has_form_questions": len(level.form_questions) > 0,
            "display_scores": report.scores,
            "has_answered_all": report.has_answered_all,
            "total_completed_time": total_completed_time,
            "is_competent": is_competent(overall.score, overall.total, self.mistake_threshold),
            "form_questions": level.form_questions,
            "form_answers": simulation.form_answers,
        }

    def soft_skills(self, simulation_id: str) -> Optional[SoftSkillsData]:
        exists, feedback = self.store.get_soft_skill_feedback(simulation_id)
        if not exists:
            return None
        return parse_soft_skills(feedback)

    def attempt_dates(self, simulation_id: str) -> Dict[str, Any]:
        simulation = self._require_simulation(simulation_id)
        attempts = self.store.list_completed_attempts(
            simulation.learner_id, simulation.service_level_id
        )
        neighbors = locate_neighbors(attempts, simulation_id)
        return {
            "dates": attempt_dates(attempts, simulation_id),
            "previous_attempt": neighbors.previous,
            "next_attempt": neighbors.next,
        }

    def previous_attempts(
        self,
        learner_id: str,
        service_id: str,
        page: int = 1,
        include_ongoing: bool = False,
    ) -> Dict[str, Any]:
        config = PaginationConfig(page=max(1, int(page)), page_size=self.page_size)
        simulations, total = self.store.paginate_simulations(
            learner_id, service_id, config, include_ongoing=include_ongoing
        )

        levels: Dict[str, Optional[ServiceLevel]] = {}
        docs: List[Dict[str, Any]] = []
        for simulation in simulations:
            if include_ongoing:
                docs.append({"paused_at": simulation.paused_at, "ended_at": simulation.ended_at})
                continue

            level_id = simulation.service_level_id
            if level_id not in levels:
                levels[level_id] = self.store.get_service_level(level_id)
            level = levels[level_id]
            if level is None:
                logger.warning(
                    "Skipping attempt %s: service level %s is missing", simulation.id, level_id
                )
                continue

            overall = score_simulation(level, simulation, self.excluded_sections).scores.overall
            docs.append(
                {
                    "simulation_id": simulation.id,
                    "started_at": simulation.started_at,
                    "score": overall.percentage,
                    "competency": competency_label(
                        overall.score, overall.total, self.mistake_threshold
                    ),
                    "paused_at": simulation.paused_at,
                    "ended_at": simulation.ended_at,
                }
            )
        return config.render(docs, total)


__all__ = ["SimulationService", "START_SIMULATION", "FINISH_SIMULATION"]
