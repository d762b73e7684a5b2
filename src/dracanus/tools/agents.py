"""Agent registry tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import CALLER_ERRORS, Services, to_jsonable


def register_agent_tools(mcp: FastMCP, services: Services) -> None:
	"""Register agent tools."""

	@mcp.tool()
	async def register_agent(
		name: str,
		category: str,
		system_prompt: str,
		model_preference: str = "ollama",
		capabilities: str = "",
		description: str = "",
		slug: str = "",
	) -> str:
		"""
		Register an agent definition available to routing.

		Args:
			name: Display name
			category: EMAIL, CALENDAR, RESEARCH, DOCUMENT, DATA, CODE, SUPPORT or WORKFLOW
			system_prompt: Instructions sent as the system prompt
			model_preference: Preferred backend (ollama, plus-coder, openai)
			capabilities: Comma-separated capability list
			description: Free text
			slug: Optional unique slug
		"""
		try:
			agent = await services.register_agent(
				name,
				category,
				system_prompt,
				model_preference=model_preference,
				capabilities=[c.strip() for c in capabilities.split(",") if c.strip()],
				description=description,
				slug=slug or None,
			)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(agent), indent=2)

	@mcp.tool()
	async def list_agents(category: str = "") -> str:
		"""
		List active agents, most deployed first.

		Args:
			category: Optional category filter
		"""
		try:
			agents = await services.list_agents(category or None)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(agents), indent=2)

	@mcp.tool()
	async def deploy_agent(agent_id: str) -> str:
		"""
		Record a deployment of an agent. Routing prefers the most deployed agent per category.

		Args:
			agent_id: The agent ID
		"""
		try:
			agent = await services.deploy_agent(agent_id)
		except CALLER_ERRORS as e:
			return json.dumps({"error": str(e)})
		return json.dumps(to_jsonable(agent), indent=2)
