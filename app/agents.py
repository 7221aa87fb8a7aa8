from __future__ import annotations

from typing import Any, List

AGENT_STATUSES = {"draft", "active", "paused", "archived"}

_STRING_FIELDS = ("name", "goal", "role", "model")


def _issue(code: str, message: str, path: str | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": None}


def validate_agent_payload(payload: Any, for_create: bool = True) -> List[dict]:
    if not isinstance(payload, dict):
        return [_issue("INVALID_TYPE", "agent payload must be object", None)]
    errors: List[dict] = []
    if for_create:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(_issue("REQUIRED_FIELD", "name is required", "name"))
    for key in _STRING_FIELDS:
        if key in payload and payload[key] is not None and not isinstance(payload[key], str):
            errors.append(_issue("INVALID_TYPE", f"{key} must be string", key))
    guardrails = payload.get("guardrails")
    if guardrails is not None:
        if not isinstance(guardrails, list) or not all(isinstance(g, str) for g in guardrails):
            errors.append(_issue("INVALID_TYPE", "guardrails must be a list of strings", "guardrails"))
    status = payload.get("status")
    if status is not None and status not in AGENT_STATUSES:
        errors.append(_issue("INVALID_TYPE", f"status must be one of {sorted(AGENT_STATUSES)}", "status"))
    return errors
