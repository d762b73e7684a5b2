"""Goal submission tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import CALLER_ERRORS, Services, to_jsonable


def register_goal_tools(mcp: FastMCP, services: Services) -> None:
	"""Register goal orchestration tools."""
	default_owner = services.config.default_owner

	@mcp.tool()
	async def submit_goal(
		goal: str,
		project_id: str = "",
		context_json: str = "",
		environment: str = "",
		owner: str = "",
	) -> str:
		"""
		Decompose a goal into jobs, run each through policy checks and execute it.

		Args:
			goal: High-level natural-language goal
			project_id: Optional project scope for policies and executions
			context_json: Optional JSON object passed to every job as context
			environment: "production" or "sandbox" (defaults to config)
			owner: Owner id (defaults to config)

		Returns:
			goal_id, overall status (completed/partial/failed/blocked), per-job results and a summary
		"""
		try:
			context = json.loads(context_json) if context_json else None
			result = await services.submit_goal(
				owner or default_owner,
				goal,
				project_id=project_id or None,
				context=context,
				environment=environment or None,
			)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(result), indent=2)

	@mcp.tool()
	async def list_goals(limit: int = 20, owner: str = "") -> str:
		"""
		List recently submitted goals with their status.

		Args:
			limit: Maximum goals to return
			owner: Owner id (defaults to config)
		"""
		goals = await services.db.list_goals(owner or default_owner, limit)
		return json.dumps(to_jsonable(goals), indent=2)
