"""Learning engine and notification tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import Services, to_jsonable


def register_learning_tools(mcp: FastMCP, services: Services) -> None:
	"""Register learning tools."""
	default_owner = services.config.default_owner

	@mcp.tool()
	async def analyze_and_learn(owner: str = "") -> str:
		"""
		Mine the last week of executions for patterns and store them as insights.

		Needs at least 5 recent executions; returns the number of insights created.
		"""
		learnings = await services.analyze_and_learn(owner or default_owner)
		return json.dumps({
			"count": len(learnings),
			"insights": to_jsonable(learnings),
		}, indent=2)

	@mcp.tool()
	async def list_insights(limit: int = 10, owner: str = "") -> str:
		"""
		Stored insights, highest confidence first.

		Args:
			limit: Maximum insights to return
			owner: Owner id (defaults to config)
		"""
		learnings = await services.list_insights(owner or default_owner, limit)
		return json.dumps(to_jsonable(learnings), indent=2)

	@mcp.tool()
	async def agent_performance(days: int = 30, owner: str = "") -> str:
		"""Per-agent execution totals and success rates over the trailing window."""
		performance = await services.agent_performance(owner or default_owner, days)
		return json.dumps(to_jsonable(performance), indent=2)

	@mcp.tool()
	async def list_notifications(unread_only: bool = False, owner: str = "") -> str:
		"""In-app notifications, e.g. production actions blocked by policy."""
		notifications = await services.list_notifications(owner or default_owner, unread_only)
		return json.dumps(to_jsonable(notifications), indent=2)
