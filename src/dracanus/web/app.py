"""Starlette app with route assembly."""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.routing import Route

from ..services import Services
from .api import (
	api_agent_deploy,
	api_agents,
	api_analyze,
	api_agent_performance,
	api_blocked_actions,
	api_create_agent,
	api_create_policy,
	api_execution_detail,
	api_executions,
	api_export,
	api_goals,
	api_health,
	api_insights,
	api_metrics,
	api_notifications,
	api_policies,
	api_policy_active,
	api_replay,
	api_resolve_blocked,
	api_submit_goal,
)

logger = logging.getLogger(__name__)


def build_app(services: Services) -> Starlette:
	"""Build and return the Starlette ASGI app."""
	routes = [
		Route("/api/health", api_health),
		Route("/api/goals", api_goals, methods=["GET"]),
		Route("/api/goals", api_submit_goal, methods=["POST"]),
		Route("/api/executions", api_executions),
		Route("/api/executions/{id}", api_execution_detail),
		Route("/api/executions/{id}/replay", api_replay, methods=["POST"]),
		Route("/api/metrics", api_metrics),
		Route("/api/export", api_export),
		Route("/api/policies", api_policies, methods=["GET"]),
		Route("/api/policies", api_create_policy, methods=["POST"]),
		Route("/api/policies/{id}/active", api_policy_active, methods=["POST"]),
		Route("/api/blocked-actions", api_blocked_actions),
		Route("/api/blocked-actions/{id}/resolve", api_resolve_blocked, methods=["POST"]),
		Route("/api/agents", api_agents, methods=["GET"]),
		Route("/api/agents", api_create_agent, methods=["POST"]),
		Route("/api/agents/{id}/deploy", api_agent_deploy, methods=["POST"]),
		Route("/api/learning/analyze", api_analyze, methods=["POST"]),
		Route("/api/learning/insights", api_insights),
		Route("/api/learning/performance", api_agent_performance),
		Route("/api/notifications", api_notifications),
	]

	app = Starlette(routes=routes)
	app.state.services = services
	logger.debug(f"Web API built with {len(routes)} routes")
	return app
