"""Rich views for metrics, policies and learned insights."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..audit import PerformanceMetrics
from ..learning import AgentPerformance
from ..models import Learning, Policy
from .utils import format_cost, format_duration_ms, rate_style


def render_metrics(metrics: PerformanceMetrics, days: int, console: Optional[Console] = None) -> None:
	"""Render aggregate metrics with per-agent and per-day breakdowns."""
	console = console or Console()
	style = rate_style(metrics.success_rate)

	console.print(f"[bold]Last {days} day(s)[/bold]")
	console.print(
		f"  Executions: {metrics.total_executions}   "
		f"Success: [{style}]{metrics.success_rate:.1f}%[/{style}]   "
		f"Avg duration: {format_duration_ms(metrics.avg_duration_ms)}   "
		f"Cost: {format_cost(metrics.total_cost)}   "
		f"Blocked: {metrics.blocked_count}   Failed: {metrics.failed_count}"
	)

	if metrics.by_agent:
		table = Table(title="By Agent")
		table.add_column("Agent", style="cyan")
		table.add_column("Executions", justify="right")
		table.add_column("Success %", justify="right")
		table.add_column("Avg Duration", justify="right")
		for agent_id, agent in sorted(metrics.by_agent.items(), key=lambda item: -item[1].count):
			agent_style = rate_style(agent.success_rate)
			table.add_row(
				agent_id,
				str(agent.count),
				f"[{agent_style}]{agent.success_rate:.1f}%[/{agent_style}]",
				format_duration_ms(agent.avg_duration),
			)
		console.print(table)

	table = Table(title="By Day")
	table.add_column("Date")
	table.add_column("Executions", justify="right")
	table.add_column("Success %", justify="right")
	for day in metrics.by_day:
		table.add_row(day.date, str(day.count), f"{day.success_rate:.1f}%" if day.count else "-")
	console.print(table)


def render_policies(policies: list[Policy], console: Optional[Console] = None) -> None:
	console = console or Console()

	if not policies:
		console.print("[dim]No policies defined.[/dim]")
		return

	table = Table(title="Policies")
	table.add_column("ID", style="dim")
	table.add_column("Name", style="cyan")
	table.add_column("Type")
	table.add_column("Action")
	table.add_column("Severity")
	table.add_column("Active", justify="center")
	table.add_column("Triggered", justify="right")
	table.add_column("Scope")

	for p in policies:
		table.add_row(
			p.id,
			p.name,
			p.type.value,
			p.action.value,
			p.severity.value,
			"[green]yes[/green]" if p.active else "[dim]no[/dim]",
			str(p.triggered_count),
			p.project_id or "global",
		)

	console.print(table)


def render_insights(learnings: list[Learning], console: Optional[Console] = None) -> None:
	"""Render insights, highest confidence first."""
	console = console or Console()

	if not learnings:
		console.print("[dim]No insights yet. Run `dracanus learn` after a few executions.[/dim]")
		return

	table = Table(title="Insights")
	table.add_column("Confidence", justify="right")
	table.add_column("Type", style="cyan")
	table.add_column("Agent", style="dim")
	table.add_column("Insight")
	table.add_column("Samples", justify="right")

	for learning in learnings:
		table.add_row(
			f"{learning.confidence:.0%}",
			learning.type.value,
			learning.agent_id or "-",
			learning.insight,
			str(len(learning.source_execution_ids)),
		)

	console.print(table)


def render_agent_performance(performance: list[AgentPerformance], console: Optional[Console] = None) -> None:
	console = console or Console()

	if not performance:
		console.print("[dim]No executions in this window.[/dim]")
		return

	table = Table(title="Agent Performance")
	table.add_column("Agent", style="cyan")
	table.add_column("Total", justify="right")
	table.add_column("Completed", justify="right")
	table.add_column("Failed", justify="right")
	table.add_column("Blocked", justify="right")
	table.add_column("Success %", justify="right")
	table.add_column("Avg Duration", justify="right")

	for p in performance:
		style = rate_style(p.success_rate)
		table.add_row(
			p.agent_id,
			str(p.total_executions),
			str(p.completed),
			str(p.failed),
			str(p.blocked),
			f"[{style}]{p.success_rate:.1f}%[/{style}]",
			format_duration_ms(p.avg_duration),
		)

	console.print(table)
