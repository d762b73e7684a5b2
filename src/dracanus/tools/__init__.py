"""MCP tool registration - modular tool definitions."""

import logging

from mcp.server.fastmcp import FastMCP

from ..services import Services
from .agents import register_agent_tools
from .audit import register_audit_tools
from .core import register_core_tools
from .goals import register_goal_tools
from .learning import register_learning_tools
from .policies import register_policy_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, services: Services) -> None:
	"""Register all MCP tools."""
	register_core_tools(mcp, services)
	register_goal_tools(mcp, services)
	register_audit_tools(mcp, services)
	register_policy_tools(mcp, services)
	register_agent_tools(mcp, services)
	register_learning_tools(mcp, services)
	logger.debug("MCP tools registered")
