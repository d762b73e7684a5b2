"""JSON API endpoints over the caller-facing operations."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from ..database import InvalidTransitionError, StoreError
from ..services import Services, to_jsonable

logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Owner-Id"

EXPORT_MEDIA_TYPES = {
	"json": "application/json",
	"jsonl": "application/x-ndjson",
	"csv": "text/csv",
}


def get_services(request: Request) -> Services:
	"""Get the Services from app state."""
	return request.app.state.services


def get_owner(request: Request) -> str:
	return request.headers.get(OWNER_HEADER) or get_services(request).config.default_owner


def _int_param(request: Request, name: str, default: int) -> int:
	value = request.query_params.get(name)
	return int(value) if value else default


async def _json_body(request: Request) -> dict[str, Any]:
	body = await request.json()
	if not isinstance(body, dict):
		raise ValueError("Request body must be a JSON object")
	return body


def json_errors(handler: Callable[[Request], Awaitable[Response]]) -> Callable[[Request], Awaitable[Response]]:
	"""Map lookup, validation and store failures onto HTTP status codes."""

	@functools.wraps(handler)
	async def wrapper(request: Request) -> Response:
		try:
			return await handler(request)
		except LookupError as e:
			return JSONResponse({"error": str(e)}, status_code=404)
		except InvalidTransitionError as e:
			return JSONResponse({"error": str(e)}, status_code=409)
		except StoreError as e:
			logger.error(f"Store failure on {request.url.path}: {e}")
			return JSONResponse({"error": str(e)}, status_code=503)
		except ValueError as e:
			return JSONResponse({"error": str(e)}, status_code=400)

	return wrapper


async def api_health(request: Request) -> JSONResponse:
	services = get_services(request)
	return JSONResponse({
		"status": "ok",
		"backends": services.registry.status(),
		"environment": services.config.default_environment,
	})


@json_errors
async def api_submit_goal(request: Request) -> JSONResponse:
	"""Submit a goal: {"goal": "...", "project_id", "context", "environment"}."""
	body = await _json_body(request)
	result = await get_services(request).submit_goal(
		get_owner(request),
		str(body.get("goal") or ""),
		project_id=body.get("project_id"),
		context=body.get("context"),
		environment=body.get("environment"),
	)
	return JSONResponse(to_jsonable(result), status_code=201)


@json_errors
async def api_goals(request: Request) -> JSONResponse:
	goals = await get_services(request).db.list_goals(
		get_owner(request), _int_param(request, "limit", 50),
	)
	return JSONResponse(to_jsonable(goals))


@json_errors
async def api_executions(request: Request) -> JSONResponse:
	"""Execution history with optional agent_id/status/project_id/since/until/limit filters."""
	params = request.query_params
	executions = await get_services(request).execution_history(
		get_owner(request),
		agent_id=params.get("agent_id"),
		status=params.get("status"),
		project_id=params.get("project_id"),
		since=params.get("since"),
		until=params.get("until"),
		limit=_int_param(request, "limit", 50),
	)
	return JSONResponse(to_jsonable(executions))


@json_errors
async def api_execution_detail(request: Request) -> JSONResponse:
	execution = await get_services(request).execution_trace(
		get_owner(request), request.path_params["id"],
	)
	return JSONResponse(to_jsonable(execution))


@json_errors
async def api_replay(request: Request) -> JSONResponse:
	result = await get_services(request).replay_execution(
		get_owner(request), request.path_params["id"],
	)
	return JSONResponse(to_jsonable(result), status_code=201)


@json_errors
async def api_metrics(request: Request) -> JSONResponse:
	metrics = await get_services(request).performance_metrics(
		get_owner(request), _int_param(request, "days", 7),
	)
	return JSONResponse(to_jsonable(metrics))


@json_errors
async def api_export(request: Request) -> Response:
	fmt = request.query_params.get("format", "json")
	text = await get_services(request).export_history(
		get_owner(request), fmt, _int_param(request, "limit", 100),
	)
	return PlainTextResponse(text, media_type=EXPORT_MEDIA_TYPES[fmt])


@json_errors
async def api_policies(request: Request) -> JSONResponse:
	policies = await get_services(request).list_policies(get_owner(request))
	return JSONResponse(to_jsonable(policies))


@json_errors
async def api_create_policy(request: Request) -> JSONResponse:
	body = await _json_body(request)
	if not body.get("name") or not body.get("type"):
		raise ValueError("name and type are required")
	policy = await get_services(request).create_policy(
		get_owner(request),
		body["name"],
		body["type"],
		conditions=body.get("conditions"),
		action=body.get("action", "BLOCK"),
		severity=body.get("severity", "MEDIUM"),
		description=body.get("description", ""),
		project_id=body.get("project_id"),
		expires_at=body.get("expires_at"),
	)
	return JSONResponse(to_jsonable(policy), status_code=201)


@json_errors
async def api_policy_active(request: Request) -> JSONResponse:
	body = await _json_body(request)
	policy = await get_services(request).set_policy_active(
		get_owner(request), request.path_params["id"], bool(body.get("active", True)),
	)
	return JSONResponse(to_jsonable(policy))


@json_errors
async def api_blocked_actions(request: Request) -> JSONResponse:
	blocked = await get_services(request).list_blocked_actions(
		get_owner(request), request.query_params.get("status"),
	)
	return JSONResponse(to_jsonable(blocked))


@json_errors
async def api_resolve_blocked(request: Request) -> JSONResponse:
	body = await _json_body(request)
	blocked = await get_services(request).resolve_blocked_action(
		get_owner(request), request.path_params["id"], bool(body.get("approve")),
	)
	return JSONResponse(to_jsonable(blocked))


@json_errors
async def api_agents(request: Request) -> JSONResponse:
	agents = await get_services(request).list_agents(request.query_params.get("category"))
	return JSONResponse(to_jsonable(agents))


@json_errors
async def api_create_agent(request: Request) -> JSONResponse:
	body = await _json_body(request)
	for key in ("name", "category", "system_prompt"):
		if not body.get(key):
			raise ValueError(f"{key} is required")
	agent = await get_services(request).register_agent(
		body["name"],
		body["category"],
		body["system_prompt"],
		model_preference=body.get("model_preference", "ollama"),
		capabilities=body.get("capabilities") or [],
		description=body.get("description", ""),
		slug=body.get("slug"),
	)
	return JSONResponse(to_jsonable(agent), status_code=201)


@json_errors
async def api_agent_deploy(request: Request) -> JSONResponse:
	agent = await get_services(request).deploy_agent(request.path_params["id"])
	return JSONResponse(to_jsonable(agent))


@json_errors
async def api_analyze(request: Request) -> JSONResponse:
	learnings = await get_services(request).analyze_and_learn(get_owner(request))
	return JSONResponse({"count": len(learnings), "insights": to_jsonable(learnings)})


@json_errors
async def api_insights(request: Request) -> JSONResponse:
	learnings = await get_services(request).list_insights(
		get_owner(request), _int_param(request, "limit", 10),
	)
	return JSONResponse(to_jsonable(learnings))


@json_errors
async def api_agent_performance(request: Request) -> JSONResponse:
	performance = await get_services(request).agent_performance(
		get_owner(request), _int_param(request, "days", 30),
	)
	return JSONResponse(to_jsonable(performance))


@json_errors
async def api_notifications(request: Request) -> JSONResponse:
	unread_only = request.query_params.get("unread") in ("1", "true")
	notifications = await get_services(request).list_notifications(get_owner(request), unread_only)
	return JSONResponse(to_jsonable(notifications))
