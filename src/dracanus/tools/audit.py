"""Execution history, trace, replay, metrics and export tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import CALLER_ERRORS, Services, to_jsonable


def register_audit_tools(mcp: FastMCP, services: Services) -> None:
	"""Register audit and replay tools."""
	default_owner = services.config.default_owner

	@mcp.tool()
	async def execution_history(
		agent_id: str = "",
		status: str = "",
		project_id: str = "",
		since: str = "",
		until: str = "",
		limit: int = 50,
		owner: str = "",
	) -> str:
		"""
		Query execution history, newest first.

		Args:
			agent_id: Filter by agent
			status: Filter by status (RUNNING, COMPLETED, FAILED, BLOCKED)
			project_id: Filter by project
			since: ISO timestamp lower bound on start time
			until: ISO timestamp upper bound on start time
			limit: Maximum executions to return
			owner: Owner id (defaults to config)
		"""
		try:
			executions = await services.execution_history(
				owner or default_owner,
				agent_id=agent_id or None,
				status=status or None,
				project_id=project_id or None,
				since=since or None,
				until=until or None,
				limit=limit,
			)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(executions), indent=2)

	@mcp.tool()
	async def execution_trace(execution_id: str, owner: str = "") -> str:
		"""
		Get the full record of one execution.

		Args:
			execution_id: The execution ID
			owner: Owner id (defaults to config)
		"""
		try:
			execution = await services.execution_trace(owner or default_owner, execution_id)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(execution), indent=2)

	@mcp.tool()
	async def replay_execution(execution_id: str, owner: str = "") -> str:
		"""
		Re-run a past execution with its stored input and compare the outcomes.

		Creates a new execution tagged with replayOf; the original is never modified.

		Args:
			execution_id: The execution to replay
			owner: Owner id (defaults to config)
		"""
		try:
			result = await services.replay_execution(owner or default_owner, execution_id)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(result), indent=2)

	@mcp.tool()
	async def performance_metrics(days: int = 7, owner: str = "") -> str:
		"""
		Aggregate execution metrics over the trailing window.

		Args:
			days: Window length in days
			owner: Owner id (defaults to config)

		Returns:
			Totals, success rate, average duration, cost, per-agent and per-day breakdowns
		"""
		try:
			metrics = await services.performance_metrics(owner or default_owner, days)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(metrics), indent=2)

	@mcp.tool()
	async def export_history(format: str = "json", limit: int = 100, owner: str = "") -> str:
		"""
		Export execution history as json, jsonl or csv text.

		Args:
			format: json, jsonl or csv
			limit: Maximum executions to include
			owner: Owner id (defaults to config)
		"""
		try:
			return await services.export_history(owner or default_owner, format, limit)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
