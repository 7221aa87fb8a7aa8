"""FastAPI app for the agentkit platform: modules, agents, connectors and credentials."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

import anyio

from app.agents import validate_agent_payload
from app.auth import JwtAuthMiddleware, auth_disabled
from app.connector_manager import ConnectorManager
from app.connectors import ConnectorError
from app.secrets import SecretStoreError, resolve_secret
from app.stores import MemoryAgentStore, MemoryCredentialStore
from module_registry import ModuleRegistry


app = FastAPI(title="agentkit")
logger = logging.getLogger("agentkit")
logging.basicConfig(level=logging.INFO)
_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("AGENTKIT_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
REQ_SLOW_MS = float(os.getenv("AGENTKIT_REQ_SLOW_MS", "250"))
JWT_SECRET = os.getenv("AGENTKIT_JWT_SECRET", "").strip()
JWT_AUDIENCE = os.getenv("AGENTKIT_JWT_AUDIENCE", "").strip() or None
logger.info("auth_disabled=%s jwt_audience=%s env=%s", auth_disabled(), JWT_AUDIENCE, APP_ENV)

_NOT_FOUND_CODES = {
    "MODULE_NOT_FOUND",
    "MODULE_INSTANCE_NOT_FOUND",
    "MODULE_NOT_ATTACHED",
    "AGENT_NOT_FOUND",
    "CONNECTOR_NOT_FOUND",
    "CREDENTIAL_NOT_FOUND",
    "TRIGGER_NOT_FOUND",
    "API_ENDPOINT_NOT_FOUND",
    "WORKFLOW_NOT_FOUND",
}
_STATUS_BY_CODE = {
    "MODULE_DISABLED": 409,
    "MODULE_ALREADY_REGISTERED": 409,
    "CONNECTOR_UPSTREAM_FAILED": 502,
    "API_REQUEST_FAILED": 502,
    "API_RATE_LIMITED": 429,
    "MODULE_INTERNAL_ERROR": 500,
    "CONNECTOR_NOT_CONFIGURED": 503,
    "TRENDS_NOT_CONFIGURED": 503,
    "WORKFLOW_TIMEOUT": 504,
    "WORKFLOW_CANCELLED": 409,
    "SECRET_STORE_ERROR": 500,
}

registry = ModuleRegistry()
connectors = ConnectorManager()
agents = MemoryAgentStore()
credentials = MemoryCredentialStore()


@app.middleware("http")
async def local_cors_fallback_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _CORS_ORIGINS or _LOCAL_CORS_REGEX.match(normalized_origin)):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    auth_ms = getattr(request.state, "auth_ms", 0.0)
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        auth_ms,
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-Route"] = route_name
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(JwtAuthMiddleware, secret=JWT_SECRET, audience=JWT_AUDIENCE)


def _status_for(code: str | None) -> int:
    if code in _NOT_FOUND_CODES:
        return 404
    return _STATUS_BY_CODE.get(code or "", 400)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int | None = None) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status or _status_for(code))


def _issues_response(errors: list, warnings: list | None = None) -> JSONResponse:
    body = {"ok": False, "errors": errors, "warnings": warnings or []}
    code = errors[0].get("code") if errors else None
    return JSONResponse(jsonable_encoder(body), status_code=_status_for(code))


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _connector_error(exc: ConnectorError) -> JSONResponse:
    return _error_response(exc.code, exc.message, exc.path)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _actor(request: Request) -> dict | None:
    return getattr(request.state, "user", None)


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# modules


@app.get("/modules")
async def list_modules(category: str | None = None):
    return _ok_response({"modules": registry.list(category)})


@app.get("/modules/{module_id}")
async def get_module(module_id: str):
    module = registry.get(module_id)
    if module is None:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id")
    return _ok_response({"module": module})


@app.get("/modules/{module_id}/schema")
async def get_module_schema(module_id: str):
    schema = registry.request_schema(module_id)
    if schema is None:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id")
    return _ok_response({"module_id": module_id, "schema": schema})


@app.get("/modules/{module_id}/instances")
async def list_module_instances(module_id: str, agent_id: str | None = None):
    if registry.get(module_id) is None:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id")
    return _ok_response({"instances": registry.list_instances(module_id, agent_id)})


@app.post("/modules/{module_id}/instances")
async def create_module_instance(module_id: str, request: Request):
    body = await _safe_json(request)
    result = registry.create_instance(module_id, body.get("config"), agent_id=body.get("agent_id"))
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    return _ok_response({"instance": result["instance"]}, status=201)


@app.post("/modules/{module_id}/invoke")
async def invoke_module(module_id: str, request: Request):
    body = await _safe_json(request)
    result = await anyio.to_thread.run_sync(
        registry.invoke,
        module_id,
        body.get("input"),
        body.get("instance_id"),
        _actor(request),
    )
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    return _ok_response({"result": result["result"], "audit_id": result["audit_id"]}, warnings=result["warnings"])


@app.post("/modules/{module_id}/enable")
async def module_enable(module_id: str, request: Request):
    body = await _safe_json(request)
    result = registry.set_enabled(module_id, True, actor=_actor(request), reason=body.get("reason", "enable"))
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    return _ok_response({"module": result["module"], "audit_id": result["audit_id"]}, warnings=result["warnings"])


@app.post("/modules/{module_id}/disable")
async def module_disable(module_id: str, request: Request):
    body = await _safe_json(request)
    result = registry.set_enabled(module_id, False, actor=_actor(request), reason=body.get("reason", "disable"))
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    return _ok_response({"module": result["module"], "audit_id": result["audit_id"]}, warnings=result["warnings"])


@app.get("/modules/{module_id}/history")
async def module_history(module_id: str):
    if registry.get(module_id) is None:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id")
    return _ok_response({"history": registry.history(module_id)})


# agents


def _agent_not_found() -> JSONResponse:
    return _error_response("AGENT_NOT_FOUND", "agent not found", "agent_id")


@app.get("/agents")
async def list_agents(status: str | None = None):
    return _ok_response({"agents": agents.list(status)})


@app.post("/agents")
async def create_agent(request: Request):
    body = await _safe_json(request)
    errors = validate_agent_payload(body, for_create=True)
    if errors:
        return _issues_response(errors)
    agent = agents.create({k: v for k, v in body.items() if k not in ("modules", "connectors")})
    logger.info("agent_created id=%s name=%s", agent["id"], agent["name"])
    return _ok_response({"agent": agent}, status=201)


@app.get("/agents/{agent_id}")
async def get_agent(agent_id: str):
    agent = agents.get(agent_id)
    if agent is None:
        return _agent_not_found()
    agent["connections"] = connectors.agent_connections(agent_id)
    return _ok_response({"agent": agent})


@app.put("/agents/{agent_id}")
async def update_agent(agent_id: str, request: Request):
    body = await _safe_json(request)
    errors = validate_agent_payload(body, for_create=False)
    if errors:
        return _issues_response(errors)
    agent = agents.update(agent_id, body)
    if agent is None:
        return _agent_not_found()
    return _ok_response({"agent": agent})


@app.delete("/agents/{agent_id}")
async def delete_agent(agent_id: str):
    agent = agents.delete(agent_id)
    if agent is None:
        return _agent_not_found()
    for ref in agent.get("modules") or []:
        registry.delete_instance(ref["instance_id"])
    for connector_id in connectors.agent_connections(agent_id):
        connectors.disconnect_agent(agent_id, connector_id)
    logger.info("agent_deleted id=%s", agent_id)
    return _ok_response({"agent_id": agent_id})


@app.post("/agents/{agent_id}/modules")
async def attach_agent_module(agent_id: str, request: Request):
    if agents.get(agent_id) is None:
        return _agent_not_found()
    body = await _safe_json(request)
    module_id = body.get("module_id")
    if not isinstance(module_id, str) or not module_id:
        return _error_response("REQUIRED_FIELD", "module_id is required", "module_id")
    result = registry.create_instance(module_id, body.get("config"), agent_id=agent_id)
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    previous = agents.remove_module(agent_id, module_id)
    if previous:
        registry.delete_instance(previous)
    agent = agents.add_module(agent_id, module_id, result["instance"]["instance_id"])
    return _ok_response({"agent": agent, "instance": result["instance"]}, status=201)


@app.delete("/agents/{agent_id}/modules/{module_id}")
async def detach_agent_module(agent_id: str, module_id: str):
    if agents.get(agent_id) is None:
        return _agent_not_found()
    instance_id = agents.remove_module(agent_id, module_id)
    if instance_id is None:
        return _error_response("MODULE_NOT_ATTACHED", "module is not attached to agent", "module_id")
    registry.delete_instance(instance_id)
    return _ok_response({"agent": agents.get(agent_id)})


@app.post("/agents/{agent_id}/modules/{module_id}/invoke")
async def invoke_agent_module(agent_id: str, module_id: str, request: Request):
    agent = agents.get(agent_id)
    if agent is None:
        return _agent_not_found()
    ref = next((m for m in agent.get("modules") or [] if m.get("module_id") == module_id), None)
    if ref is None:
        return _error_response("MODULE_NOT_ATTACHED", "module is not attached to agent", "module_id")
    body = await _safe_json(request)
    result = await anyio.to_thread.run_sync(
        registry.invoke,
        module_id,
        body.get("input"),
        ref["instance_id"],
        _actor(request),
    )
    if not result["ok"]:
        return _issues_response(result["errors"], result["warnings"])
    return _ok_response({"result": result["result"], "audit_id": result["audit_id"]}, warnings=result["warnings"])


@app.post("/agents/{agent_id}/connectors/{connector_id}")
async def connect_agent(agent_id: str, connector_id: str):
    if agents.get(agent_id) is None:
        return _agent_not_found()
    try:
        connectors.connect_agent(agent_id, connector_id)
    except ConnectorError as exc:
        return _connector_error(exc)
    agent = agents.set_connector(agent_id, connector_id, True)
    return _ok_response({"agent": agent, "connections": connectors.agent_connections(agent_id)})


@app.delete("/agents/{agent_id}/connectors/{connector_id}")
async def disconnect_agent(agent_id: str, connector_id: str):
    if agents.get(agent_id) is None:
        return _agent_not_found()
    connectors.disconnect_agent(agent_id, connector_id)
    agent = agents.set_connector(agent_id, connector_id, False)
    return _ok_response({"agent": agent, "connections": connectors.agent_connections(agent_id)})


# connectors


@app.get("/connectors")
async def list_connectors(category: str | None = None):
    return _ok_response({"connectors": connectors.list(category)})


@app.get("/connectors/stats")
async def connector_stats():
    return _ok_response({"stats": connectors.stats()})


@app.get("/connectors/endpoints")
async def connector_endpoints():
    return _ok_response({"endpoints": connectors.endpoints()})


@app.get("/connectors/health")
async def connectors_health():
    return _ok_response({"health": connectors.health_check()})


@app.get("/connectors/{connector_id}")
async def get_connector(connector_id: str):
    try:
        connector = connectors.get(connector_id)
    except ConnectorError as exc:
        return _connector_error(exc)
    return _ok_response({"connector": connector.info(), "endpoints": connector.endpoints()})


@app.get("/connectors/{connector_id}/health")
async def connector_health(connector_id: str):
    try:
        health = connectors.health_check(connector_id)
    except ConnectorError as exc:
        return _connector_error(exc)
    return _ok_response({"connector_id": connector_id, "health": health})


@app.post("/connectors/{connector_id}/actions/{action}")
async def execute_connector_action(connector_id: str, action: str, request: Request):
    body = await _safe_json(request)
    try:
        result = await anyio.to_thread.run_sync(connectors.execute, connector_id, action, body.get("params"))
    except ConnectorError as exc:
        return _connector_error(exc)
    return _ok_response({"connector_id": connector_id, "action": action, "result": result})


# credentials


def _apply_credential(provider: str, credential_id: str) -> bool:
    """Hand a stored key to the connector with the same id as the provider."""
    try:
        connector = connectors.get(provider)
    except ConnectorError:
        return False
    connector.api_key = resolve_secret(credentials, credential_id)
    logger.info("connector_key_configured connector=%s credential=%s", provider, credential_id)
    return True


def _release_credential(provider: str) -> bool:
    """Point the provider's connector at another stored key, or back to its default."""
    try:
        connector = connectors.get(provider)
    except ConnectorError:
        return False
    remaining = credentials.find_by_provider(provider)
    if remaining is not None:
        return _apply_credential(provider, remaining["id"])
    connector.api_key = connector.default_api_key()
    logger.info("connector_key_released connector=%s status=%s", provider, connector.status)
    return connector.api_key is not None


@app.get("/credentials")
async def list_credentials(provider: str | None = None):
    return _ok_response({"credentials": credentials.list(provider)})


@app.get("/credentials/stats")
async def credential_stats():
    return _ok_response({"stats": credentials.stats()})


@app.post("/credentials")
async def create_credential(request: Request):
    body = await _safe_json(request)
    errors = []
    for key in ("name", "provider", "value"):
        if not isinstance(body.get(key), str) or not body[key].strip():
            errors.append({"code": "REQUIRED_FIELD", "message": f"{key} is required", "path": key, "detail": None})
    if errors:
        return _issues_response(errors)
    try:
        credential = credentials.create(body["name"].strip(), body["provider"].strip(), body["value"])
        applied = _apply_credential(credential["provider"], credential["id"])
    except SecretStoreError as exc:
        return _error_response("SECRET_STORE_ERROR", str(exc), "value")
    return _ok_response({"credential": credential, "connector_configured": applied}, status=201)


@app.post("/credentials/rotate")
async def rotate_credentials():
    try:
        rotated = credentials.rotate_all()
    except SecretStoreError as exc:
        return _error_response("SECRET_STORE_ERROR", str(exc))
    logger.info("credentials_rotated count=%s", rotated)
    return _ok_response({"rotated": rotated})


@app.delete("/credentials/{credential_id}")
async def delete_credential(credential_id: str):
    credential = credentials.get(credential_id)
    if credential is None or not credentials.delete(credential_id):
        return _error_response("CREDENTIAL_NOT_FOUND", "credential not found", "credential_id")
    try:
        reconfigured = _release_credential(credential["provider"])
    except SecretStoreError as exc:
        return _error_response("SECRET_STORE_ERROR", str(exc), "credential_id")
    return _ok_response({"credential_id": credential_id, "connector_configured": reconfigured})
