"""Core health check tool."""

import json

from mcp.server.fastmcp import FastMCP

from ..services import Services


def register_core_tools(mcp: FastMCP, services: Services) -> None:
	"""Register core tools."""
	config = services.config

	@mcp.tool()
	async def health_check() -> str:
		"""
		Check the health of the dracanus server.
		Returns store location and which completion backends are configured.
		"""
		status = {
			"server": "running",
			"config_dir": str(config.config_dir),
			"data_dir": str(config.data_dir),
			"db_exists": config.db_path.exists(),
			"backends": services.registry.status(),
			"fallback_order": config.fallback_order,
			"decomposition_backend": config.decomposition_backend,
			"environment": config.default_environment,
		}
		return json.dumps(status, indent=2)
