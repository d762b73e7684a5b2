"""dracanus MCP server."""

from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import load_config
from .logging_config import setup_logging
from .services import Services
from .tools import register_all_tools


def create_server(services: Optional[Services] = None) -> FastMCP:
	"""Build a FastMCP server exposing the caller-facing operations."""
	services = services or Services.from_config()
	mcp = FastMCP("dracanus")
	register_all_tools(mcp, services)
	return mcp


def main() -> None:
	"""Run the MCP server over stdio."""
	config = load_config()
	setup_logging(config.log_level, config.log_dir)
	create_server(Services.from_config(config)).run()


if __name__ == "__main__":
	main()
