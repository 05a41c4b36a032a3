import json
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from db_pool import SQLiteConnectionPool
from schemas import (
    AttemptSummary,
    FormAnswer,
    PaginationConfig,
    ServiceLevel,
    Simulation,
    SimulationResult,
    as_utc,
)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_MISSING = object()


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS service_levels (
              id              TEXT PRIMARY KEY,
              service_id      TEXT NOT NULL,
              title           TEXT,
              description     TEXT,
              time_limit      INTEGER,
              form_questions  TEXT NOT NULL DEFAULT '[]',
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS simulations (
              id                 TEXT PRIMARY KEY,
              learner_id         TEXT NOT NULL,
              service_id         TEXT NOT NULL,
              service_level_id   TEXT NOT NULL,
              form_answers       TEXT,
              simulation_result  TEXT,
              is_trial_data      INTEGER NOT NULL DEFAULT 0,
              started_at         TEXT,
              paused_at          TEXT NOT NULL DEFAULT '[]',
              resumed_at         TEXT NOT NULL DEFAULT '[]',
              ended_at           TEXT,
              cancelled_at       TEXT,
              deleted_at         TEXT,
              created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_simulations_learner_level
              ON simulations(learner_id, service_level_id, started_at DESC);
            CREATE INDEX IF NOT EXISTS idx_simulations_learner_service
              ON simulations(learner_id, service_id, started_at DESC);

            CREATE TABLE IF NOT EXISTS soft_skill_feedback (
              simulation_id         TEXT PRIMARY KEY,
              soft_skills_feedback  TEXT,
              created_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS activity_log (
              id            INTEGER PRIMARY KEY AUTOINCREMENT,
              organization  TEXT,
              type          TEXT NOT NULL,
              activity      TEXT NOT NULL,
              payload       TEXT,
              created_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_activity_org ON activity_log(organization, created_at DESC);

            CREATE TABLE IF NOT EXISTS xapi_statements (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     TEXT NOT NULL,
              verb        TEXT NOT NULL,
              object_id   TEXT NOT NULL,
              score       REAL,
              success     INTEGER,
              context     TEXT,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_xapi_statements_user ON xapi_statements(user_id, created_at DESC);
            """
        )
        con.commit()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as fixed-width UTC ISO strings so they sort lexically."""
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid4().hex


# -------------- service levels --------------
def upsert_service_level(level: ServiceLevel) -> ServiceLevel:
    questions = [question.model_dump() for question in level.form_questions]
    _exec(
        """
        INSERT INTO service_levels (id, service_id, title, description, time_limit, form_questions)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            service_id = excluded.service_id,
            title = excluded.title,
            description = excluded.description,
            time_limit = excluded.time_limit,
            form_questions = excluded.form_questions,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            level.id,
            level.service_id,
            level.title,
            level.description,
            level.time_limit,
            json_dumps(questions),
        ),
    )
    return level


def _row_to_service_level(row: sqlite3.Row) -> ServiceLevel:
    data = dict(row)
    data["form_questions"] = _decode_json_field(data.get("form_questions")) or []
    return ServiceLevel.model_validate(data)


def get_service_level(service_level_id: str) -> Optional[ServiceLevel]:
    rows = _query(
        "SELECT id, service_id, title, description, time_limit, form_questions "
        "FROM service_levels WHERE id = ?",
        (service_level_id,),
    )
    if not rows:
        return None
    return _row_to_service_level(rows[0])


# -------------- simulations --------------
_SIMULATION_COLUMNS = (
    "id, learner_id, service_id, service_level_id, form_answers, simulation_result, "
    "is_trial_data, started_at, paused_at, resumed_at, ended_at, cancelled_at"
)


def _row_to_simulation(row: sqlite3.Row) -> Simulation:
    data = dict(row)
    data["form_answers"] = _decode_json_field(data.get("form_answers"))
    data["simulation_result"] = _decode_json_field(data.get("simulation_result"))
    data["paused_at"] = _decode_json_field(data.get("paused_at")) or []
    data["resumed_at"] = _decode_json_field(data.get("resumed_at")) or []
    data["is_trial_data"] = bool(data.get("is_trial_data"))
    return Simulation.model_validate(data)


def _dump_answers(answers: Optional[Sequence[FormAnswer]]) -> Optional[str]:
    if answers is None:
        return None
    return json_dumps([answer.model_dump() for answer in answers])


def _dump_result(result: Optional[SimulationResult]) -> Optional[str]:
    if result is None:
        return None
    return json_dumps(result.model_dump())


def create_simulation(simulation: Simulation) -> Simulation:
    _exec(
        f"""
        INSERT INTO simulations ({_SIMULATION_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            simulation.id,
            simulation.learner_id,
            simulation.service_id,
            simulation.service_level_id,
            _dump_answers(simulation.form_answers),
            _dump_result(simulation.simulation_result),
            1 if simulation.is_trial_data else 0,
            _ts(simulation.started_at),
            json_dumps([_ts(value) for value in simulation.paused_at]),
            json_dumps([_ts(value) for value in simulation.resumed_at]),
            _ts(simulation.ended_at),
            _ts(simulation.cancelled_at),
        ),
    )
    return simulation


def get_simulation(simulation_id: str) -> Optional[Simulation]:
    rows = _query(
        f"SELECT {_SIMULATION_COLUMNS} FROM simulations WHERE id = ? AND deleted_at IS NULL",
        (simulation_id,),
    )
    if not rows:
        return None
    return _row_to_simulation(rows[0])


def find_open_simulation(
    learner_id: str, service_id: str, service_level_id: str
) -> Optional[Simulation]:
    rows = _query(
        f"""
        SELECT {_SIMULATION_COLUMNS} FROM simulations
        WHERE learner_id = ? AND service_id = ? AND service_level_id = ?
          AND ended_at IS NULL AND deleted_at IS NULL
        ORDER BY started_at DESC
        LIMIT 1
        """,
        (learner_id, service_id, service_level_id),
    )
    if not rows:
        return None
    return _row_to_simulation(rows[0])


def update_simulation(
    simulation_id: str,
    *,
    form_answers: Any = _MISSING,
    simulation_result: Any = _MISSING,
    ended_at: Any = _MISSING,
    cancelled_at: Any = _MISSING,
) -> Optional[Simulation]:
    """Apply a partial update and return the updated record (``None`` if missing)."""
    assignments: list[str] = []
    params: list[Any] = []
    if form_answers is not _MISSING:
        assignments.append("form_answers = ?")
        params.append(_dump_answers(form_answers))
    if simulation_result is not _MISSING:
        assignments.append("simulation_result = ?")
        params.append(_dump_result(simulation_result))
    if ended_at is not _MISSING:
        assignments.append("ended_at = ?")
        params.append(_ts(ended_at))
    if cancelled_at is not _MISSING:
        assignments.append("cancelled_at = ?")
        params.append(_ts(cancelled_at))
    if assignments:
        assignments.append("updated_at = CURRENT_TIMESTAMP")
        _exec(
            f"UPDATE simulations SET {', '.join(assignments)} WHERE id = ?",
            (*params, simulation_id),
        )
    return get_simulation(simulation_id)


def _append_timestamp_if(
    column: str,
    simulation_id: str,
    expected_paused: int,
    expected_resumed: int,
    at: datetime,
) -> bool:
    with _pool.transaction() as con:
        cur = con.execute(
            f"""
            UPDATE simulations
            SET {column} = json_insert({column}, '$[#]', ?),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
              AND deleted_at IS NULL
              AND ended_at IS NULL
              AND json_array_length(paused_at) = ?
              AND json_array_length(resumed_at) = ?
            """,
            (_ts(at), simulation_id, int(expected_paused), int(expected_resumed)),
        )
        return cur.rowcount == 1


def append_pause_if(
    simulation_id: str, expected_paused: int, expected_resumed: int, at: datetime
) -> bool:
    """Append a pause only if the arrays still have the lengths the caller checked."""
    return _append_timestamp_if("paused_at", simulation_id, expected_paused, expected_resumed, at)


def append_resume_if(
    simulation_id: str, expected_paused: int, expected_resumed: int, at: datetime
) -> bool:
    """Append a resume only if the arrays still have the lengths the caller checked."""
    return _append_timestamp_if("resumed_at", simulation_id, expected_paused, expected_resumed, at)


def finish_simulation_if_open(
    simulation_id: str,
    ended_at: datetime,
    form_answers: Optional[Sequence[FormAnswer]] = None,
    simulation_result: Optional[SimulationResult] = None,
) -> bool:
    assignments = ["ended_at = ?", "updated_at = CURRENT_TIMESTAMP"]
    params: list[Any] = [_ts(ended_at)]
    if form_answers is not None:
        assignments.append("form_answers = ?")
        params.append(_dump_answers(form_answers))
    if simulation_result is not None:
        assignments.append("simulation_result = ?")
        params.append(_dump_result(simulation_result))
    with _pool.transaction() as con:
        cur = con.execute(
            f"UPDATE simulations SET {', '.join(assignments)} "
            "WHERE id = ? AND ended_at IS NULL AND deleted_at IS NULL",
            (*params, simulation_id),
        )
        return cur.rowcount == 1


def replace_form_answers_if_open(simulation_id: str, form_answers: Sequence[FormAnswer]) -> bool:
    with _pool.transaction() as con:
        cur = con.execute(
            "UPDATE simulations SET form_answers = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND ended_at IS NULL AND deleted_at IS NULL",
            (_dump_answers(form_answers), simulation_id),
        )
        return cur.rowcount == 1


def list_completed_attempts(learner_id: str, service_level_id: str) -> List[AttemptSummary]:
    """Ended attempts of a learner for one service level, most recent first."""
    rows = _query(
        """
        SELECT id, started_at, ended_at FROM simulations
        WHERE learner_id = ? AND service_level_id = ?
          AND ended_at IS NOT NULL AND deleted_at IS NULL
        ORDER BY started_at DESC, id DESC
        """,
        (learner_id, service_level_id),
    )
    return [AttemptSummary.model_validate(dict(row)) for row in rows]


def paginate_simulations(
    learner_id: str,
    service_id: str,
    config: PaginationConfig,
    include_ongoing: bool = False,
) -> Tuple[List[Simulation], int]:
    """Return one page of a learner's attempts for a service and the total count."""
    where = ["deleted_at IS NULL", "learner_id = ?", "service_id = ?"]
    params: list[Any] = [learner_id, service_id]
    if not include_ongoing:
        where.append("ended_at IS NOT NULL")
    clause = " AND ".join(where)

    total = _query(f"SELECT COUNT(*) AS n FROM simulations WHERE {clause}", params)[0]["n"]
    rows = _query(
        f"""
        SELECT {_SIMULATION_COLUMNS} FROM simulations
        WHERE {clause}
        ORDER BY started_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        (*params, config.page_size, (config.page - 1) * config.page_size),
    )
    return [_row_to_simulation(row) for row in rows], int(total)


# -------------- soft-skill feedback --------------
def save_soft_skill_feedback(simulation_id: str, feedback: Optional[str]) -> None:
    _exec(
        """
        INSERT INTO soft_skill_feedback (simulation_id, soft_skills_feedback)
        VALUES (?, ?)
        ON CONFLICT(simulation_id) DO UPDATE SET
            soft_skills_feedback = excluded.soft_skills_feedback
        """,
        (simulation_id, feedback),
    )


def get_soft_skill_feedback(simulation_id: str) -> Tuple[bool, Optional[str]]:
    """Return ``(document_exists, feedback_text)`` for ``simulation_id``."""
    rows = _query(
        "SELECT soft_skills_feedback FROM soft_skill_feedback WHERE simulation_id = ?",
        (simulation_id,),
    )
    if not rows:
        return False, None
    return True, rows[0]["soft_skills_feedback"]


# -------------- activity log --------------
def log_activity(
    organization: Optional[str], log_type: str, activity: str, payload: Dict[str, Any]
) -> None:
    _exec(
        "INSERT INTO activity_log(organization, type, activity, payload) VALUES (?,?,?,?)",
        (organization, log_type, activity, json_dumps(payload)),
    )


def list_activity(organization: Optional[str] = None, limit: int = 100) -> list[Dict[str, Any]]:
    if organization:
        rows = _query(
            "SELECT id, organization, type, activity, payload, created_at FROM activity_log "
            "WHERE organization = ? ORDER BY id DESC LIMIT ?",
            (organization, int(limit)),
        )
    else:
        rows = _query(
            "SELECT id, organization, type, activity, payload, created_at FROM activity_log "
            "ORDER BY id DESC LIMIT ?",
            (int(limit),),
        )

    data: list[Dict[str, Any]] = []
    for row in rows:
        item = dict(row)
        item["payload"] = _decode_json_field(item.get("payload"))
        data.append(item)
    return data
