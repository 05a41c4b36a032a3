"""xAPI statements for the simulation lifecycle, with optional LRS forwarding.

Each start, pause, resume and completion of an attempt becomes one statement.
Statements are checked against the small profile below, stored in the
``xapi_statements`` table and, when ``LRS_URL`` is set, posted in the
background to an external Learning Record Store with retry and backoff.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import requests

import db

LOGGER = logging.getLogger("simtrainer.xapi")

XAPI_VERSION = "1.0.3"

VERB_INITIALIZED = "http://adlnet.gov/expapi/verbs/initialized"
VERB_SUSPENDED = "http://adlnet.gov/expapi/verbs/suspended"
VERB_RESUMED = "http://adlnet.gov/expapi/verbs/resumed"
VERB_COMPLETED = "http://adlnet.gov/expapi/verbs/completed"

SIMULATION_VERBS: dict[str, str] = {
    VERB_INITIALIZED: "initialized",
    VERB_SUSPENDED: "suspended",
    VERB_RESUMED: "resumed",
    VERB_COMPLETED: "completed",
}

OBJECT_PREFIXES: Sequence[str] = ("simulation:", "service-level:", "urn:")

# extension key -> coercion applied before storing
EXTENSION_TYPES: dict[str, type] = {
    "service_id": str,
    "service_level_id": str,
    "organization": str,
    "used_time_ms": int,
    "percentage": int,
    "competent": bool,
}


def object_id_for(simulation_id: str) -> str:
    return f"simulation:{simulation_id}"


def _account_name(statement: Dict[str, Any]) -> str:
    actor = statement.get("actor")
    account = actor.get("account") if isinstance(actor, dict) else None
    name = account.get("name") if isinstance(account, dict) else None
    if not isinstance(name, str) or not name.strip():
        raise ValueError("actor.account.name is required")
    return name


def _checked_verb(statement: Dict[str, Any]) -> Dict[str, Any]:
    verb = statement.get("verb")
    verb_id = verb.get("id") if isinstance(verb, dict) else None
    if not isinstance(verb_id, str):
        raise ValueError("verb.id must be provided")
    verb_id = verb_id.strip()
    if verb_id not in SIMULATION_VERBS:
        raise ValueError(
            f"Unsupported verb '{verb_id}'. Allowed verbs: {', '.join(sorted(SIMULATION_VERBS))}"
        )
    return {"id": verb_id, "display": {"en-US": SIMULATION_VERBS[verb_id]}}


def _checked_object(statement: Dict[str, Any]) -> Dict[str, Any]:
    obj = statement.get("object")
    object_id = obj.get("id") if isinstance(obj, dict) else None
    if not isinstance(object_id, str):
        raise ValueError("object.id must be provided")
    object_id = object_id.strip()
    if not object_id.startswith(tuple(OBJECT_PREFIXES)):
        raise ValueError(f"object.id must start with one of: {', '.join(OBJECT_PREFIXES)}")
    return {**obj, "id": object_id}


def _checked_result(result: Any) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    if not isinstance(result, dict):
        raise ValueError("result must be a dict when provided")
    checked = dict(result)
    if checked.get("score") is not None:
        score = checked["score"]
        if not isinstance(score, dict) or "raw" not in score:
            raise ValueError("result.score.raw is required when score is provided")
        checked["score"] = {**score, "raw": float(score["raw"])}
    if "success" in checked:
        checked["success"] = bool(checked["success"])
    return checked


def _clean_extensions(extensions: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in extensions.items():
        kind = EXTENSION_TYPES.get(key)
        if kind is None:
            LOGGER.debug("Dropping unsupported xAPI extension: %s", key)
            continue
        if value is not None:
            cleaned[key] = kind(value)
    return cleaned


def validate_statement(statement: Dict[str, Any]) -> Dict[str, Any]:
    """Check ``statement`` against the simulation profile and normalise it in place."""

    if not isinstance(statement, dict):
        raise ValueError("statement must be a dict")

    _account_name(statement)
    statement["verb"] = _checked_verb(statement)
    statement["object"] = _checked_object(statement)

    result = _checked_result(statement.get("result"))
    if result is not None:
        statement["result"] = result

    context = statement.get("context") or {}
    if not isinstance(context, dict):
        raise ValueError("context must be a dict")
    extensions = context.get("extensions") or {}
    if not isinstance(extensions, dict):
        raise ValueError("context.extensions must be a dict")
    statement["context"] = {
        **context,
        "platform": context.get("platform") or os.getenv("XAPI_PLATFORM", "SimTrainer"),
        "extensions": _clean_extensions(extensions),
    }
    return statement


async def _forward_statement_with_retry(
    statement: Dict[str, Any],
    *,
    lrs_url: str,
    headers: Dict[str, str],
    timeout: float = 5.0,
    max_attempts: int = 3,
) -> None:
    """POST ``statement`` to the LRS, doubling the wait after each failed attempt."""

    delay = 0.5
    for attempt in range(1, max_attempts + 1):
        try:
            response = await asyncio.to_thread(
                requests.post, lrs_url, json=statement, headers=headers, timeout=timeout
            )
        except requests.RequestException as exc:
            LOGGER.warning("LRS request failed on attempt %s: %s", attempt, exc)
        else:
            if response.status_code < 500:
                return
            LOGGER.warning("LRS answered %s on attempt %s", response.status_code, attempt)
        if attempt < max_attempts:
            await asyncio.sleep(delay)
            delay *= 2
    LOGGER.error("Giving up forwarding xAPI statement for %s", statement["object"]["id"])


def _schedule_forward(statement: Dict[str, Any], *, lrs_url: str, headers: Dict[str, str]) -> None:
    coro = _forward_statement_with_retry(statement, lrs_url=lrs_url, headers=headers)
    try:
        asyncio.get_running_loop().create_task(coro)
    except RuntimeError:
        # called from a worker thread without an event loop
        threading.Thread(target=asyncio.run, args=(coro,), daemon=True).start()


def _lrs_headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json", "X-Experience-API-Version": XAPI_VERSION}
    auth = os.getenv("LRS_AUTH")
    if auth:
        headers["Authorization"] = auth
    return headers


def build_statement(
    user_id: str,
    verb: str,
    simulation_id: str,
    *,
    score: Optional[float] = None,
    success: Optional[bool] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    statement: Dict[str, Any] = {
        "actor": {
            "account": {
                "homePage": os.getenv("APP_BASE_URL", "https://local.simtrainer"),
                "name": user_id,
            }
        },
        "verb": {"id": verb},
        "object": {"id": object_id_for(simulation_id)},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "context": {"extensions": dict(context or {})},
    }
    result: Dict[str, Any] = {}
    if score is not None:
        result["score"] = {"raw": score}
    if success is not None:
        result["success"] = success
    if result:
        statement["result"] = result
    return statement


def emit(
    user_id: str,
    verb: str,
    simulation_id: str,
    *,
    score: Optional[float] = None,
    success: Optional[bool] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Store a lifecycle statement and forward it when an LRS is configured."""

    statement = validate_statement(
        build_statement(user_id, verb, simulation_id, score=score, success=success, context=context)
    )
    result = statement.get("result") or {}
    success_flag = result.get("success")

    db._exec(
        """
        INSERT INTO xapi_statements(user_id, verb, object_id, score, success, context)
        VALUES (?,?,?,?,?,?)
        """,
        (
            user_id,
            statement["verb"]["id"],
            statement["object"]["id"],
            (result.get("score") or {}).get("raw"),
            None if success_flag is None else int(success_flag),
            db.json_dumps(statement["context"]["extensions"]),
        ),
    )

    lrs_url = os.getenv("LRS_URL")
    if lrs_url:
        _schedule_forward(statement, lrs_url=lrs_url, headers=_lrs_headers())
    return statement


def list_statements(user_id: Optional[str] = None, limit: int = 100) -> list[Dict[str, Any]]:
    sql = "SELECT id, user_id, verb, object_id, score, success, context, created_at FROM xapi_statements"
    params: list[Any] = []
    if user_id:
        sql += " WHERE user_id = ?"
        params.append(user_id)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(int(limit))

    statements = []
    for row in db._query(sql, params):
        item = dict(row)
        item["context"] = db._decode_json_field(item.get("context"))
        statements.append(item)
    return statements
