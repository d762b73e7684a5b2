"""Governance policy and blocked action tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import CALLER_ERRORS, Services, to_jsonable


def register_policy_tools(mcp: FastMCP, services: Services) -> None:
	"""Register policy tools."""
	default_owner = services.config.default_owner

	@mcp.tool()
	async def create_policy(
		name: str,
		type: str,
		conditions_json: str = "{}",
		action: str = "BLOCK",
		severity: str = "MEDIUM",
		description: str = "",
		project_id: str = "",
		expires_at: str = "",
		owner: str = "",
	) -> str:
		"""
		Create a governance policy evaluated before every job.

		Args:
			name: Policy name
			type: RATE_LIMIT, CONTENT_FILTER, APPROVAL_REQUIRED, BUDGET_LIMIT, TIME_WINDOW or CUSTOM
			conditions_json: JSON conditions, e.g. {"limit": 3, "window": "hour"}
			action: WARN, BLOCK or REQUIRE_APPROVAL
			severity: LOW, MEDIUM, HIGH or CRITICAL
			description: Free text
			project_id: Restrict the policy to one project
			expires_at: ISO timestamp after which the policy no longer applies
			owner: Owner id (defaults to config)
		"""
		try:
			policy = await services.create_policy(
				owner or default_owner,
				name,
				type,
				conditions=json.loads(conditions_json or "{}"),
				action=action,
				severity=severity,
				description=description,
				project_id=project_id or None,
				expires_at=expires_at or None,
			)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(policy), indent=2)

	@mcp.tool()
	async def list_policies(owner: str = "") -> str:
		"""List the owner's policies, newest first."""
		policies = await services.list_policies(owner or default_owner)
		return json.dumps(to_jsonable(policies), indent=2)

	@mcp.tool()
	async def set_policy_active(policy_id: str, active: bool, owner: str = "") -> str:
		"""
		Enable or disable a policy.

		Args:
			policy_id: The policy ID
			active: True to enable, False to disable
			owner: Owner id (defaults to config)
		"""
		try:
			policy = await services.set_policy_active(owner or default_owner, policy_id, active)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(policy), indent=2)

	@mcp.tool()
	async def list_blocked_actions(status: str = "", owner: str = "") -> str:
		"""
		List actions denied by policies.

		Args:
			status: PENDING, APPROVED or REJECTED (all when empty)
			owner: Owner id (defaults to config)
		"""
		try:
			blocked = await services.list_blocked_actions(owner or default_owner, status or None)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(blocked), indent=2)

	@mcp.tool()
	async def resolve_blocked_action(blocked_id: str, approve: bool, owner: str = "") -> str:
		"""
		Approve or reject a pending blocked action.

		Args:
			blocked_id: The blocked action ID
			approve: True to approve, False to reject
			owner: Owner id (defaults to config)
		"""
		try:
			blocked = await services.resolve_blocked_action(owner or default_owner, blocked_id, approve)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(blocked), indent=2)
