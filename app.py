# app.py: SimTrainer simulation service
# - Learner-facing simulation lifecycle: start, pause/resume, stop, answers
# - Result views: scores, soft skills, attempt history
# - Websocket channel that pauses on disconnect and resumes on (re)connect

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import db
import events
from engines.simulation import SimulationService
from engines.validation import (
    FormAnswersValidationError,
    InvalidStateError,
    NotFoundError,
)
from schemas import FormQuestion, ScoreReport, ServiceLevel, SoftSkillsData

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        global SIMULATIONS
        SIMULATIONS = SimulationService()
        logger.info(
            "Simulation service ready (mistake threshold %s, page size %s)",
            SIMULATIONS.mistake_threshold,
            SIMULATIONS.page_size,
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="SimTrainer", version="1.0.0", lifespan=_lifespan)

# built in the lifespan once the environment is validated
SIMULATIONS: Optional[SimulationService] = None


def _simulations() -> SimulationService:
    global SIMULATIONS
    if SIMULATIONS is None:
        SIMULATIONS = SimulationService()
    return SIMULATIONS


@app.exception_handler(NotFoundError)
async def _not_found(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "resource": exc.resource})


@app.exception_handler(InvalidStateError)
async def _invalid_state(_: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(FormAnswersValidationError)
async def _invalid_answers(_: Request, exc: FormAnswersValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------- Request bodies ----------
class StartSimulationBody(BaseModel):
    learner_id: str
    service_id: str
    service_level_id: str
    organization: Optional[str] = None


class FormAnswersBody(BaseModel):
    form_answers: Dict[str, Any] = Field(alias="formAnswers")
    organization: Optional[str] = None

    model_config = {"populate_by_name": True}


class ServiceLevelBody(BaseModel):
    service_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    time_limit: Optional[int] = None
    form_questions: List[FormQuestion] = Field(default_factory=list)


class SoftSkillFeedbackBody(BaseModel):
    soft_skills_feedback: Optional[str] = None


# ---------- Routes ----------
@app.put("/service-levels/{service_level_id}", response_model=ServiceLevel)
def put_service_level(service_level_id: str, body: ServiceLevelBody):
    level = ServiceLevel(id=service_level_id, **body.model_dump())
    return db.upsert_service_level(level)


@app.post("/simulations/start")
def start_simulation(body: StartSimulationBody):
    simulation = _simulations().start(
        body.learner_id,
        body.service_id,
        body.service_level_id,
        organization=body.organization,
    )
    return {"data": simulation.model_dump(mode="json")}


@app.get("/simulations/previous-attempts")
def previous_attempts(
    learner_id: str,
    service_id: str,
    page: int = 1,
    include_ongoing: bool = False,
):
    return _simulations().previous_attempts(
        learner_id, service_id, page=page, include_ongoing=include_ongoing
    )


@app.get("/simulations/{simulation_id}")
def get_simulation(simulation_id: str):
    return {"data": _simulations().get(simulation_id)}


@app.post("/simulations/{simulation_id}/pause")
def pause_simulation(simulation_id: str):
    return {"accepted": _simulations().pause(simulation_id)}


@app.post("/simulations/{simulation_id}/resume")
def resume_simulation(simulation_id: str):
    return {"accepted": _simulations().resume(simulation_id)}


@app.post("/simulations/{simulation_id}/stop")
def stop_simulation(simulation_id: str, body: FormAnswersBody):
    return _simulations().stop(simulation_id, body.form_answers, organization=body.organization)


@app.put("/simulations/{simulation_id}/form-answers")
def update_form_answers(simulation_id: str, body: FormAnswersBody):
    return _simulations().update_form_answers(simulation_id, body.form_answers)


@app.get("/simulations/{simulation_id}/scores", response_model=ScoreReport)
def simulation_scores(simulation_id: str):
    return _simulations().score(simulation_id)


@app.get("/simulations/{simulation_id}/details")
def simulation_details(simulation_id: str):
    return {"data": _simulations().details(simulation_id)}


@app.get("/simulations/{simulation_id}/soft-skills", response_model=Optional[SoftSkillsData])
def simulation_soft_skills(simulation_id: str):
    return _simulations().soft_skills(simulation_id)


@app.put("/simulations/{simulation_id}/soft-skills")
def put_simulation_soft_skills(simulation_id: str, body: SoftSkillFeedbackBody):
    db.save_soft_skill_feedback(simulation_id, body.soft_skills_feedback)
    return {"status": "success"}


@app.get("/simulations/{simulation_id}/dates")
def simulation_dates(simulation_id: str):
    return {"data": _simulations().attempt_dates(simulation_id)}


@app.websocket("/ws/simulations/{simulation_id}")
async def simulation_socket(websocket: WebSocket, simulation_id: str):
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def _forward(event: Dict[str, Any]) -> None:
        if event.get("simulation_id") == simulation_id:
            loop.call_soon_threadsafe(queue.put_nowait, event)

    unsubscribe = events.NOTIFIER.subscribe(_forward)
    await asyncio.to_thread(_simulations().on_client_connected, simulation_id)

    async def _pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    pump = asyncio.create_task(_pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Client disconnected from simulation %s", simulation_id)
    finally:
        pump.cancel()
        unsubscribe()
        await asyncio.to_thread(_simulations().on_client_disconnected, simulation_id)
