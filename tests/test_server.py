"""Tests for server startup and MCP tool behaviour."""

import json
from pathlib import Path

import pytest

from dracanus.server import create_server
from dracanus.tools.agents import register_agent_tools
from dracanus.tools.audit import register_audit_tools
from dracanus.tools.core import register_core_tools
from dracanus.tools.goals import register_goal_tools
from dracanus.tools.learning import register_learning_tools
from dracanus.tools.policies import register_policy_tools

from .helpers import capture_tools, make_services

EXPECTED_TOOLS = {
	"health_check",
	"submit_goal", "list_goals",
	"execution_history", "execution_trace", "replay_execution", "performance_metrics", "export_history",
	"create_policy", "list_policies", "set_policy_active", "list_blocked_actions", "resolve_blocked_action",
	"register_agent", "list_agents", "deploy_agent",
	"analyze_and_learn", "list_insights", "agent_performance", "list_notifications",
}


def test_server_tool_names(tmp_path: Path):
	"""Server should register every caller-facing tool."""
	mcp = create_server(make_services(tmp_path))
	tool_names = set(mcp._tool_manager._tools.keys())
	assert tool_names == EXPECTED_TOOLS


@pytest.mark.asyncio
async def test_health_check(tmp_path: Path):
	tools = capture_tools(make_services(tmp_path), register_core_tools)
	status = json.loads(await tools["health_check"]())
	assert status["server"] == "running"
	assert status["backends"] == {"ollama": True}
	assert status["fallback_order"] == ["ollama"]


@pytest.mark.asyncio
async def test_goal_and_audit_tools(tmp_path: Path):
	services = make_services(tmp_path)
	agent_tools = capture_tools(services, register_agent_tools)
	goal_tools = capture_tools(services, register_goal_tools)
	audit_tools = capture_tools(services, register_audit_tools)

	agent = json.loads(await agent_tools["register_agent"](
		name="Mailer", category="email", system_prompt="You write emails.", capabilities="send, draft",
	))
	assert agent["capabilities"] == ["send", "draft"]

	result = json.loads(await goal_tools["submit_goal"](goal="Send an email", context_json='{"to": "bob"}'))
	assert result["status"] == "completed"
	execution_id = result["jobs"][0]["execution_id"]

	history = json.loads(await audit_tools["execution_history"]())
	assert [e["id"] for e in history] == [execution_id]

	trace = json.loads(await audit_tools["execution_trace"](execution_id=execution_id))
	assert trace["input"]["context"] == {"to": "bob"}

	replay = json.loads(await audit_tools["replay_execution"](execution_id=execution_id))
	assert replay["comparison"]["output_match"] is True

	metrics = json.loads(await audit_tools["performance_metrics"](days=1))
	assert metrics["total_executions"] == 2

	csv_text = await audit_tools["export_history"](format="csv")
	assert csv_text.splitlines()[0].startswith("ID,Agent,Status")

	goals = json.loads(await goal_tools["list_goals"]())
	assert goals[0]["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_tools_report_caller_errors_as_json(tmp_path: Path):
	services = make_services(tmp_path)
	goal_tools = capture_tools(services, register_goal_tools)
	audit_tools = capture_tools(services, register_audit_tools)
	policy_tools = capture_tools(services, register_policy_tools)

	assert "error" in json.loads(await goal_tools["submit_goal"](goal=""))
	assert "error" in json.loads(await goal_tools["submit_goal"](goal="x", context_json="{not json"))
	assert "error" in json.loads(await audit_tools["execution_trace"](execution_id="missing"))
	assert "error" in json.loads(await audit_tools["export_history"](format="xml"))
	assert "error" in json.loads(await policy_tools["create_policy"](name="p", type="bogus"))
	assert "error" in json.loads(await policy_tools["set_policy_active"](policy_id="missing", active=False))


@pytest.mark.asyncio
async def test_policy_and_learning_tools(tmp_path: Path):
	services = make_services(tmp_path)
	policy_tools = capture_tools(services, register_policy_tools)
	learning_tools = capture_tools(services, register_learning_tools)

	policy = json.loads(await policy_tools["create_policy"](
		name="Hourly cap", type="RATE_LIMIT", conditions_json='{"limit": 3, "window": "hour"}',
	))
	assert policy["conditions"] == {"limit": 3, "window": "hour"}

	toggled = json.loads(await policy_tools["set_policy_active"](policy_id=policy["id"], active=False))
	assert toggled["active"] is False
	assert len(json.loads(await policy_tools["list_policies"]())) == 1
	assert json.loads(await policy_tools["list_blocked_actions"]()) == []

	analysis = json.loads(await learning_tools["analyze_and_learn"]())
	assert analysis == {"count": 0, "insights": []}
	assert json.loads(await learning_tools["list_insights"]()) == []
	assert json.loads(await learning_tools["list_notifications"]()) == []
