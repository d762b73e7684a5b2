"""CLI for dracanus: goals, audit, policies, agents, learning, serve and doctor."""

import argparse
import asyncio
import json
import platform
import re
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Optional

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

from .config import Config, load_config
from .logging_config import setup_logging
from .services import CALLER_ERRORS, Services, to_jsonable

CORE_DEPS = [
	"aiosqlite", "pydantic", "platformdirs", "python-dotenv",
	"rich", "mcp", "aiohttp", "starlette", "uvicorn",
]


def _build_services(args: argparse.Namespace) -> Services:
	config = load_config()
	setup_logging(config.log_level, config.log_dir, console=getattr(args, "verbose", False))
	return Services.from_config(config)


def _owner(args: argparse.Namespace, services: Services) -> str:
	return getattr(args, "owner", None) or services.config.default_owner


def _run(coro: Awaitable[Any]) -> Any:
	"""Run one service call, turning caller errors into a clean exit."""
	try:
		return asyncio.run(coro)
	except CALLER_ERRORS as e:
		print(f"Error: {e}", file=sys.stderr)
		sys.exit(1)


def _print_json(value: Any) -> None:
	print(json.dumps(to_jsonable(value), indent=2, default=str))


def _parse_since(since_str: str) -> str:
	"""Parse a duration string like '1h', '24h', '7d' into an ISO timestamp."""
	match = re.match(r"^(\d+)([hmd])$", since_str)
	if not match:
		print(f"Invalid --since format: {since_str} (use e.g. 1h, 24h, 7d)")
		sys.exit(1)
	amount = int(match.group(1))
	unit = match.group(2)
	if unit == "h":
		delta = timedelta(hours=amount)
	elif unit == "m":
		delta = timedelta(minutes=amount)
	else:
		delta = timedelta(days=amount)
	return (datetime.now() - delta).isoformat(timespec="microseconds")


def _parse_json_arg(value: Optional[str], name: str) -> Optional[dict]:
	if not value:
		return None
	try:
		parsed = json.loads(value)
	except json.JSONDecodeError as e:
		print(f"Invalid {name} JSON: {e}", file=sys.stderr)
		sys.exit(1)
	if not isinstance(parsed, dict):
		print(f"{name} must be a JSON object", file=sys.stderr)
		sys.exit(1)
	return parsed


# ---------------------------------------------------------------------------
# Goals and audit
# ---------------------------------------------------------------------------

def cmd_run(args: argparse.Namespace) -> None:
	"""Submit a goal and show what each job did."""
	from .visualizer.executions import render_orchestration

	services = _build_services(args)
	result = _run(services.submit_goal(
		_owner(args, services),
		" ".join(args.goal),
		project_id=args.project,
		context=_parse_json_arg(args.context, "--context"),
		environment=args.environment,
	))
	if args.json:
		_print_json(result)
	else:
		render_orchestration(result)


def cmd_history(args: argparse.Namespace) -> None:
	from .visualizer.executions import render_history

	services = _build_services(args)
	executions = _run(services.execution_history(
		_owner(args, services),
		agent_id=args.agent,
		status=args.status,
		project_id=args.project,
		since=_parse_since(args.since) if args.since else None,
		limit=args.limit,
	))
	if args.json:
		_print_json(executions)
	else:
		render_history(executions)


def cmd_trace(args: argparse.Namespace) -> None:
	from .visualizer.executions import render_trace

	services = _build_services(args)
	execution = _run(services.execution_trace(_owner(args, services), args.execution_id))
	if args.json:
		_print_json(execution)
	else:
		render_trace(execution)


def cmd_replay(args: argparse.Namespace) -> None:
	"""Re-run a recorded execution and compare the outcome."""
	from .visualizer.executions import render_replay

	services = _build_services(args)
	result = _run(services.replay_execution(_owner(args, services), args.execution_id))
	if args.json:
		_print_json(result)
	else:
		render_replay(result)


def cmd_metrics(args: argparse.Namespace) -> None:
	from .visualizer.insights import render_metrics

	services = _build_services(args)
	metrics = _run(services.performance_metrics(_owner(args, services), args.days))
	if args.json:
		_print_json(metrics)
	else:
		render_metrics(metrics, args.days)


def cmd_export(args: argparse.Namespace) -> None:
	services = _build_services(args)
	text = _run(services.export_history(_owner(args, services), args.format, args.limit))
	if args.output:
		Path(args.output).write_text(text + "\n")
		print(f"Exported to {args.output}")
	else:
		print(text)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

def cmd_policy(args: argparse.Namespace) -> None:
	"""Policy subcommand - add, list, enable and disable governance rules."""
	from .visualizer.insights import render_policies

	services = _build_services(args)
	owner = _owner(args, services)
	target = getattr(args, "policy_target", None)

	if target == "add":
		policy = _run(services.create_policy(
			owner,
			args.name,
			args.type,
			conditions=_parse_json_arg(args.conditions, "--conditions"),
			action=args.action,
			severity=args.severity,
			description=args.description,
			project_id=args.project,
			expires_at=args.expires,
		))
		print(f"Created policy {policy.id} ({policy.type.value}, {policy.action.value})")

	elif target == "list":
		policies = _run(services.list_policies(owner))
		if args.json:
			_print_json(policies)
		else:
			render_policies(policies)

	elif target in ("enable", "disable"):
		policy = _run(services.set_policy_active(owner, args.policy_id, target == "enable"))
		print(f"Policy {policy.id} {'enabled' if policy.active else 'disabled'}")

	else:
		print("Usage: dracanus policy {add|list|enable|disable}")
		sys.exit(1)


def cmd_blocked(args: argparse.Namespace) -> None:
	"""Blocked-action subcommand - review and resolve policy denials."""
	services = _build_services(args)
	owner = _owner(args, services)
	target = getattr(args, "blocked_target", None)

	if target == "list":
		blocked = _run(services.list_blocked_actions(owner, args.status))
		if args.json:
			_print_json(blocked)
			return
		if not blocked:
			print("No blocked actions.")
			return
		for b in blocked:
			print(f"{b.id}  {b.status.value:<9} {b.created_at[:19]}  agent={b.agent_id}  {b.reason}")

	elif target in ("approve", "reject"):
		blocked = _run(services.resolve_blocked_action(owner, args.blocked_id, target == "approve"))
		print(f"Blocked action {blocked.id} {blocked.status.value.lower()}")

	else:
		print("Usage: dracanus blocked {list|approve|reject}")
		sys.exit(1)


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

def cmd_agent(args: argparse.Namespace) -> None:
	"""Agent subcommand - register, list and deploy agents."""
	services = _build_services(args)
	target = getattr(args, "agent_target", None)

	if target == "add":
		capabilities = [c.strip() for c in (args.capabilities or "").split(",") if c.strip()]
		agent = _run(services.register_agent(
			args.name,
			args.category,
			args.prompt,
			model_preference=args.model,
			capabilities=capabilities,
			description=args.description,
			slug=args.slug,
		))
		print(f"Registered agent {agent.id} ({agent.category.value})")

	elif target == "list":
		agents = _run(services.list_agents(args.category))
		if args.json:
			_print_json(agents)
			return
		if not agents:
			print("No agents registered.")
			return
		for a in agents:
			state = "active" if a.active else "inactive"
			print(
				f"{a.id}  {a.category.value:<9} {a.name}  "
				f"[{a.model_preference}, {state}, deployed {a.deployment_count}x]"
			)

	elif target == "deploy":
		agent = _run(services.deploy_agent(args.agent_id))
		print(f"Agent {agent.id} deployment count: {agent.deployment_count}")

	else:
		print("Usage: dracanus agent {add|list|deploy}")
		sys.exit(1)


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------

def cmd_learn(args: argparse.Namespace) -> None:
	from .visualizer.insights import render_insights

	services = _build_services(args)
	learnings = _run(services.analyze_and_learn(_owner(args, services)))
	if args.json:
		_print_json(learnings)
		return
	print(f"Generated {len(learnings)} insight(s).")
	if learnings:
		render_insights(learnings)


def cmd_insights(args: argparse.Namespace) -> None:
	from .visualizer.insights import render_agent_performance, render_insights

	services = _build_services(args)
	owner = _owner(args, services)
	if args.agents:
		performance = _run(services.agent_performance(owner, args.days))
		if args.json:
			_print_json(performance)
		else:
			render_agent_performance(performance)
		return

	learnings = _run(services.list_insights(owner, args.limit))
	if args.json:
		_print_json(learnings)
	else:
		render_insights(learnings)


def cmd_notifications(args: argparse.Namespace) -> None:
	services = _build_services(args)
	notifications = _run(services.list_notifications(_owner(args, services), args.unread))
	if args.json:
		_print_json(notifications)
		return
	if not notifications:
		print("No notifications.")
		return
	for n in notifications:
		marker = " " if n.read else "*"
		print(f"{marker} {n.created_at[:19]}  {n.title}: {n.message}")


# ---------------------------------------------------------------------------
# Servers and diagnostics
# ---------------------------------------------------------------------------

def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import main as serve_main
	serve_main()


def cmd_web(args: argparse.Namespace) -> None:
	"""Run the JSON web API."""
	from .web import run_web_server

	services = _build_services(args)
	run_web_server(services, host=args.host, port=args.port)


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	import tomllib

	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		return f"INVALID ({e})", f"config.toml parse error: {e}"


async def _check_store(config: Config) -> tuple[str, str | None]:
	"""Open the store and count agents. Returns (status, issue_or_none)."""
	services = Services.from_config(config)
	try:
		agents = await services.db.list_agents()
	except CALLER_ERRORS as e:
		return f"FAILED ({e})", f"Store unavailable: {e}"
	return f"OK ({len(agents)} agents)", None


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation, configuration, backends and store."""
	print("dracanus doctor")
	print(f"{'=' * 40}")

	try:
		config = load_config()
	except (OSError, ValueError) as e:
		print(f"  Config:       FAILED ({e})")
		sys.exit(1)
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			print(f"    {dep:<16} {pkg_version(dep)}")
		except PackageNotFoundError:
			print(f"    {dep:<16} MISSING")
			issues.append(f"Missing dependency: {dep}")
	print()

	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"  Config dir:   {config.config_dir}")
	print(f"  Data dir:     {config.data_dir}")
	print(f"  config.toml:  {toml_status}")
	if toml_issue:
		issues.append(toml_issue)
	print()

	print("  Backends:")
	backends = Services.from_config(config).registry.status()
	for name, configured in backends.items():
		print(f"    {name:<16} {'configured' if configured else 'not configured'}")
	print(f"    fallback order:  {', '.join(config.fallback_order)}")
	for name in config.fallback_order:
		if name not in backends:
			issues.append(f"Unknown backend in fallback order: {name}")
	if not any(backends.values()):
		issues.append("No completion backend is configured")
	print()

	store_status, store_issue = asyncio.run(_check_store(config))
	print(f"  Store:        {store_status}")
	if store_issue:
		issues.append(store_issue)
	print()

	if issues:
		print(f"Issues ({len(issues)}):")
		for issue in issues:
			print(f"  - {issue}")
		sys.exit(1)
	print("All checks passed.")


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="dracanus",
		description="Goal orchestration for AI agents with policy enforcement, audit and learning",
	)
	parser.add_argument("--owner", type=str, default=None, help="Owner id (default: config default_owner)")
	parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Submit a goal for orchestration")
	run_parser.add_argument("goal", nargs="+", help="Goal description")
	run_parser.add_argument("--project", type=str, default=None, help="Project id")
	run_parser.add_argument("--context", type=str, default=None, help="Context as a JSON object")
	run_parser.add_argument(
		"--environment", choices=["sandbox", "production"], default=None,
		help="Enforcement environment (default: config)",
	)
	run_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	run_parser.set_defaults(func=cmd_run)

	# history
	history_parser = subparsers.add_parser("history", help="Execution history, newest first")
	history_parser.add_argument("--agent", type=str, default=None, help="Filter by agent id")
	history_parser.add_argument(
		"--status", choices=["running", "completed", "failed", "blocked"], default=None,
	)
	history_parser.add_argument("--project", type=str, default=None, help="Filter by project id")
	history_parser.add_argument("--since", type=str, default=None, help="Filter by time (e.g. 1h, 24h, 7d)")
	history_parser.add_argument("--limit", type=int, default=50, help="Max results")
	history_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	history_parser.set_defaults(func=cmd_history)

	# trace
	trace_parser = subparsers.add_parser("trace", help="Full record of one execution")
	trace_parser.add_argument("execution_id")
	trace_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	trace_parser.set_defaults(func=cmd_trace)

	# replay
	replay_parser = subparsers.add_parser("replay", help="Re-run an execution and compare")
	replay_parser.add_argument("execution_id")
	replay_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	replay_parser.set_defaults(func=cmd_replay)

	# metrics
	metrics_parser = subparsers.add_parser("metrics", help="Performance metrics")
	metrics_parser.add_argument("--days", type=int, default=7, help="Trailing window in days")
	metrics_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	metrics_parser.set_defaults(func=cmd_metrics)

	# export
	export_parser = subparsers.add_parser("export", help="Export execution history")
	export_parser.add_argument("--format", choices=["json", "jsonl", "csv"], default="json")
	export_parser.add_argument("--limit", type=int, default=100, help="Max executions")
	export_parser.add_argument("--output", "-o", type=str, default=None, help="Write to file")
	export_parser.set_defaults(func=cmd_export)

	# policy
	policy_parser = subparsers.add_parser("policy", help="Manage governance policies")
	policy_subparsers = policy_parser.add_subparsers(dest="policy_target")

	policy_add = policy_subparsers.add_parser("add", help="Create a policy")
	policy_add.add_argument("name")
	policy_add.add_argument(
		"type",
		choices=["rate_limit", "content_filter", "approval_required", "budget_limit", "time_window", "custom"],
	)
	policy_add.add_argument("--conditions", type=str, default=None, help="Conditions as a JSON object")
	policy_add.add_argument("--action", choices=["warn", "block", "require_approval"], default="block")
	policy_add.add_argument("--severity", choices=["low", "medium", "high", "critical"], default="medium")
	policy_add.add_argument("--description", type=str, default="")
	policy_add.add_argument("--project", type=str, default=None, help="Scope to one project")
	policy_add.add_argument("--expires", type=str, default=None, help="ISO expiry timestamp")
	policy_add.set_defaults(func=cmd_policy)

	policy_list = policy_subparsers.add_parser("list", help="List policies")
	policy_list.add_argument("--json", action="store_true", help="Print raw JSON")
	policy_list.set_defaults(func=cmd_policy)

	for name in ("enable", "disable"):
		toggle = policy_subparsers.add_parser(name, help=f"{name.capitalize()} a policy")
		toggle.add_argument("policy_id")
		toggle.set_defaults(func=cmd_policy)

	policy_parser.set_defaults(func=cmd_policy)

	# blocked
	blocked_parser = subparsers.add_parser("blocked", help="Review blocked actions")
	blocked_subparsers = blocked_parser.add_subparsers(dest="blocked_target")

	blocked_list = blocked_subparsers.add_parser("list", help="List blocked actions")
	blocked_list.add_argument("--status", choices=["pending", "approved", "rejected"], default=None)
	blocked_list.add_argument("--json", action="store_true", help="Print raw JSON")
	blocked_list.set_defaults(func=cmd_blocked)

	for name in ("approve", "reject"):
		resolve = blocked_subparsers.add_parser(name, help=f"{name.capitalize()} a pending blocked action")
		resolve.add_argument("blocked_id")
		resolve.set_defaults(func=cmd_blocked)

	blocked_parser.set_defaults(func=cmd_blocked)

	# agent
	agent_parser = subparsers.add_parser("agent", help="Manage agents")
	agent_subparsers = agent_parser.add_subparsers(dest="agent_target")

	agent_add = agent_subparsers.add_parser("add", help="Register an agent")
	agent_add.add_argument("name")
	agent_add.add_argument(
		"category",
		choices=["email", "calendar", "research", "document", "data", "code", "support", "workflow"],
	)
	agent_add.add_argument("--prompt", type=str, required=True, help="System prompt")
	agent_add.add_argument("--model", type=str, default="ollama", help="Preferred backend")
	agent_add.add_argument("--capabilities", type=str, default=None, help="Comma-separated capabilities")
	agent_add.add_argument("--description", type=str, default="")
	agent_add.add_argument("--slug", type=str, default=None)
	agent_add.set_defaults(func=cmd_agent)

	agent_list = agent_subparsers.add_parser("list", help="List agents")
	agent_list.add_argument("--category", type=str, default=None)
	agent_list.add_argument("--json", action="store_true", help="Print raw JSON")
	agent_list.set_defaults(func=cmd_agent)

	agent_deploy = agent_subparsers.add_parser("deploy", help="Record a deployment of an agent")
	agent_deploy.add_argument("agent_id")
	agent_deploy.set_defaults(func=cmd_agent)

	agent_parser.set_defaults(func=cmd_agent)

	# learn
	learn_parser = subparsers.add_parser("learn", help="Mine recent executions for insights")
	learn_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	learn_parser.set_defaults(func=cmd_learn)

	# insights
	insights_parser = subparsers.add_parser("insights", help="Show stored insights")
	insights_parser.add_argument("--limit", type=int, default=10, help="Max insights")
	insights_parser.add_argument("--agents", action="store_true", help="Show per-agent performance instead")
	insights_parser.add_argument("--days", type=int, default=30, help="Window for --agents")
	insights_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	insights_parser.set_defaults(func=cmd_insights)

	# notifications
	notifications_parser = subparsers.add_parser("notifications", help="Show notifications")
	notifications_parser.add_argument("--unread", action="store_true", help="Unread only")
	notifications_parser.add_argument("--json", action="store_true", help="Print raw JSON")
	notifications_parser.set_defaults(func=cmd_notifications)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# web
	web_parser = subparsers.add_parser("web", help="Run the JSON web API")
	web_parser.add_argument("--host", type=str, default="127.0.0.1")
	web_parser.add_argument("--port", type=int, default=8420, help="Server port (default: 8420)")
	web_parser.set_defaults(func=cmd_web)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
