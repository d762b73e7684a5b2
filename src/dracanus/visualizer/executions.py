"""Rich views for orchestration results, execution history and replays."""

import json
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..audit import ReplayResult
from ..models import Execution
from ..orchestrator import OrchestrationResult
from .utils import (
	RUN_STATUS_STYLES,
	format_cost,
	format_duration_ms,
	format_timestamp,
	styled_status,
	truncate,
)


def render_orchestration(result: OrchestrationResult, console: Optional[Console] = None) -> None:
	"""Render the outcome of one submitted goal."""
	console = console or Console()
	style = RUN_STATUS_STYLES.get(result.status, "white")

	table = Table(title=f"Goal {result.goal_id}")
	table.add_column("Execution", style="dim")
	table.add_column("Agent", style="cyan")
	table.add_column("Task")
	table.add_column("Status", justify="center")
	table.add_column("Result / Error")

	for job in result.jobs:
		table.add_row(
			job.execution_id,
			job.agent_id,
			truncate(job.task, 40),
			styled_status(job.status),
			truncate(job.error if job.error else job.result, 50),
		)

	console.print(table)
	console.print(f"[{style}]{result.status.upper()}[/{style}] {result.summary} (decomposed via {result.decomposition_source})")


def render_history(executions: list[Execution], console: Optional[Console] = None) -> None:
	"""Render a table of executions, newest first."""
	console = console or Console()

	if not executions:
		console.print("[dim]No executions recorded yet.[/dim]")
		return

	table = Table(title=f"Execution History (last {len(executions)})")
	table.add_column("ID", style="dim")
	table.add_column("Started")
	table.add_column("Agent", style="cyan")
	table.add_column("Status", justify="center")
	table.add_column("Duration", justify="right")
	table.add_column("Cost", justify="right")
	table.add_column("Error")

	for e in executions:
		table.add_row(
			e.id,
			format_timestamp(e.started_at),
			e.agent_id,
			styled_status(e.status),
			format_duration_ms(e.duration_ms),
			format_cost(e.cost),
			truncate(e.error, 40),
		)

	console.print(table)


def render_trace(execution: Execution, console: Optional[Console] = None) -> None:
	"""Render every field of one execution."""
	console = console or Console()

	lines = [
		f"[bold]Agent:[/bold] {execution.agent_id}",
		f"[bold]Status:[/bold] {styled_status(execution.status)}",
		f"[bold]Goal:[/bold] {execution.goal_id or '-'}",
		f"[bold]Project:[/bold] {execution.project_id or '-'}",
		f"[bold]Started:[/bold] {execution.started_at}",
		f"[bold]Completed:[/bold] {execution.completed_at or '-'}",
		f"[bold]Duration:[/bold] {format_duration_ms(execution.duration_ms)}",
		f"[bold]Tokens:[/bold] {execution.tokens_used if execution.tokens_used is not None else '-'}",
		f"[bold]Cost:[/bold] {format_cost(execution.cost)}",
		f"[bold]Policies checked:[/bold] {', '.join(execution.policies_checked) or '-'}",
	]
	if execution.blocked_by:
		lines.append(f"[bold]Blocked by:[/bold] [yellow]{execution.blocked_by}[/yellow]")
	if execution.error:
		lines.append(f"[bold]Error:[/bold] [red]{execution.error}[/red]")

	lines.extend(["", "[bold]Input:[/bold]", json.dumps(execution.input, indent=2, default=str)])
	if execution.output is not None:
		output = execution.output if isinstance(execution.output, str) else json.dumps(execution.output, indent=2, default=str)
		lines.extend(["", "[bold]Output:[/bold]", output])
	if execution.metadata:
		lines.extend(["", "[bold]Metadata:[/bold]", json.dumps(execution.metadata, indent=2, default=str)])

	console.print(Panel("\n".join(lines), title=f"Execution {execution.id}"))


def render_replay(result: ReplayResult, console: Optional[Console] = None) -> None:
	"""Render a side-by-side comparison of an execution and its replay."""
	console = console or Console()
	comparison = result.comparison

	table = Table(title=f"Replay of {result.original.id}")
	table.add_column("", style="bold")
	table.add_column("Original")
	table.add_column("Replay")
	table.add_row("Execution", result.original.id, result.replay.id)
	table.add_row("Status", styled_status(result.original.status), styled_status(result.replay.status))
	table.add_row(
		"Duration",
		format_duration_ms(result.original.duration_ms),
		format_duration_ms(result.replay.duration_ms),
	)
	table.add_row("Output", truncate(result.original.output, 40), truncate(result.replay.output, 40))
	console.print(table)

	if comparison.differences:
		console.print("[yellow]Differences:[/yellow]")
		for difference in comparison.differences:
			console.print(f"  - {difference}")
	else:
		console.print("[green]Replay matches the original execution.[/green]")
