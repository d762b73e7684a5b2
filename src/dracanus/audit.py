"""
Audit and replay - execution history, metrics, replay and export.

Everything here reads recorded Executions. Replay is the only writer: each
call re-runs a stored input and appends a new Execution tagged with its
provenance, leaving the original untouched.
"""

import csv
import io
import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from .database import Database, StoreError
from .executor import TaskExecutor, TaskInput, TaskOutcome
from .models import Execution, ExecutionStatus, now_iso

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "jsonl", "csv")
CSV_HEADERS = ["ID", "Agent", "Status", "Started At", "Duration (ms)", "Cost ($)", "Error"]
DURATION_TOLERANCE_MS = 1000


class ExecutionNotFoundError(LookupError):
	"""No execution with that id belongs to the caller."""
	pass


class AgentNotFoundError(LookupError):
	"""The execution's agent no longer exists."""
	pass


def _as_iso(value: Union[datetime, str, None]) -> Optional[str]:
	if value is None or isinstance(value, str):
		return value
	return now_iso(value)


@dataclass
class HistoryFilter:
	agent_id: Optional[str] = None
	status: Optional[ExecutionStatus] = None
	project_id: Optional[str] = None
	goal_id: Optional[str] = None
	since: Union[datetime, str, None] = None
	until: Union[datetime, str, None] = None
	limit: int = 100


@dataclass
class AgentMetrics:
	count: int
	success_rate: float
	avg_duration: float


@dataclass
class DailyMetrics:
	date: str
	count: int
	success_rate: float


@dataclass
class PerformanceMetrics:
	total_executions: int = 0
	success_rate: float = 0.0
	avg_duration_ms: float = 0.0
	total_cost: float = 0.0
	blocked_count: int = 0
	failed_count: int = 0
	by_agent: dict[str, AgentMetrics] = field(default_factory=dict)
	by_day: list[DailyMetrics] = field(default_factory=list)

	def to_dict(self) -> dict:
		return asdict(self)


@dataclass
class ReplayComparison:
	status_match: bool
	output_match: bool
	duration_diff: int
	differences: list[str] = field(default_factory=list)


@dataclass
class ReplayResult:
	original: Execution
	replay: Execution
	comparison: ReplayComparison

	def to_dict(self) -> dict:
		return {
			"original": self.original.model_dump(mode="json"),
			"replay": self.replay.model_dump(mode="json"),
			"comparison": asdict(self.comparison),
		}


def _success_rate(executions: list[Execution]) -> float:
	if not executions:
		return 0.0
	completed = sum(1 for e in executions if e.status is ExecutionStatus.COMPLETED)
	return completed / len(executions) * 100


def _avg_completed_duration(executions: list[Execution]) -> float:
	completed = [e for e in executions if e.status is ExecutionStatus.COMPLETED]
	if not completed:
		return 0.0
	return sum(e.duration_ms or 0 for e in completed) / len(completed)


def _canonical(value: Any) -> str:
	return json.dumps(value, sort_keys=True, default=str)


def compare_executions(original: Execution, replay: Execution) -> ReplayComparison:
	"""Diff a replay against the execution it reproduces."""
	differences = []

	status_match = original.status == replay.status
	if not status_match:
		differences.append(f"Status changed: {original.status.value} → {replay.status.value}")

	output_match = _canonical(original.output) == _canonical(replay.output)
	if not output_match:
		differences.append("Output differs from original execution")

	duration_diff = (replay.duration_ms or 0) - (original.duration_ms or 0)
	if abs(duration_diff) > DURATION_TOLERANCE_MS:
		direction = "increased" if duration_diff > 0 else "decreased"
		differences.append(f"Duration {direction} by {abs(duration_diff)}ms")

	if original.error != replay.error:
		differences.append(f'Error changed: "{original.error}" → "{replay.error}"')

	return ReplayComparison(
		status_match=status_match,
		output_match=output_match,
		duration_diff=duration_diff,
		differences=differences,
	)


class AuditSystem:
	"""
	Usage:
		audit = AuditSystem(db, executor)
		metrics = await audit.metrics("owner-1", days=7)
		result = await audit.replay(execution_id, "owner-1")
	"""

	def __init__(
		self,
		db: Database,
		executor: TaskExecutor,
		clock: Callable[[], datetime] = datetime.now,
	):
		self.db = db
		self.executor = executor
		self.clock = clock

	async def history(self, owner: str, filters: Optional[HistoryFilter] = None) -> list[Execution]:
		"""Matching executions, newest first."""
		filters = filters or HistoryFilter()
		return await self.db.query_executions(
			owner,
			agent_id=filters.agent_id,
			status=filters.status,
			project_id=filters.project_id,
			goal_id=filters.goal_id,
			since=_as_iso(filters.since),
			until=_as_iso(filters.until),
			limit=filters.limit,
		)

	async def trace(self, execution_id: str, owner: Optional[str] = None) -> Optional[Execution]:
		"""Full record of one execution; None when missing or owned by someone else."""
		execution = await self.db.get_execution(execution_id)
		if execution is None:
			return None
		if owner is not None and execution.owner != owner:
			return None
		return execution

	async def metrics(self, owner: str, days: int = 7) -> PerformanceMetrics:
		"""Aggregate performance over the trailing `days`."""
		now = self.clock()
		executions = await self.db.query_executions(
			owner, since=now_iso(now - timedelta(days=days)), limit=None,
		)

		by_agent_groups: dict[str, list[Execution]] = defaultdict(list)
		for execution in executions:
			by_agent_groups[execution.agent_id].append(execution)

		by_agent = {
			agent_id: AgentMetrics(
				count=len(group),
				success_rate=_success_rate(group),
				avg_duration=_avg_completed_duration(group),
			)
			for agent_id, group in by_agent_groups.items()
		}

		return PerformanceMetrics(
			total_executions=len(executions),
			success_rate=_success_rate(executions),
			avg_duration_ms=_avg_completed_duration(executions),
			total_cost=sum(e.cost or 0.0 for e in executions),
			blocked_count=sum(1 for e in executions if e.status is ExecutionStatus.BLOCKED),
			failed_count=sum(1 for e in executions if e.status is ExecutionStatus.FAILED),
			by_agent=by_agent,
			by_day=self._daily_metrics(executions, now, days),
		)

	def _daily_metrics(self, executions: list[Execution], now: datetime, days: int) -> list[DailyMetrics]:
		"""One bucket per calendar day in the window, zero-filled, oldest first."""
		buckets: dict[str, list[Execution]] = {
			(now - timedelta(days=offset)).date().isoformat(): []
			for offset in range(days)
		}
		for execution in executions:
			day = execution.started_at[:10]
			if day in buckets:
				buckets[day].append(execution)

		return [
			DailyMetrics(date=day, count=len(group), success_rate=_success_rate(group))
			for day, group in sorted(buckets.items())
		]

	async def replay(self, execution_id: str, owner: str) -> ReplayResult:
		"""
		Re-run an execution's stored input against the same agent.

		Raises:
			ExecutionNotFoundError: If the execution is missing or not the owner's
			AgentNotFoundError: If its agent has been removed
		"""
		original = await self.trace(execution_id, owner)
		if original is None:
			raise ExecutionNotFoundError(f"Execution not found: {execution_id}")

		agent = await self.db.get_agent(original.agent_id)
		if agent is None:
			raise AgentNotFoundError(f"Agent not found: {original.agent_id}")

		replay = await self.db.create_execution(Execution(
			owner=owner,
			agent_id=original.agent_id,
			goal_id=original.goal_id,
			project_id=original.project_id,
			input=original.input,
			policies_checked=original.policies_checked,
			started_at=now_iso(self.clock()),
		))

		try:
			outcome = await self.executor.execute(agent, TaskInput.from_record(original.input))
		except StoreError:
			raise
		except Exception as e:
			logger.exception(f"Replay {replay.id} of {execution_id} failed")
			outcome = TaskOutcome(success=False, error=str(e) or type(e).__name__, backend=agent.model_preference)

		replay = await self.db.finalize_execution(
			replay.id,
			ExecutionStatus.COMPLETED if outcome.success else ExecutionStatus.FAILED,
			output=outcome.result,
			error=outcome.error,
			duration_ms=outcome.duration_ms,
			tokens_used=outcome.tokens_used,
			cost=outcome.cost,
			metadata={
				"replayOf": execution_id,
				"originalDuration": original.duration_ms,
				**outcome.metadata,
			},
		)

		comparison = compare_executions(original, replay)
		logger.info(
			f"Replayed {execution_id} as {replay.id}: "
			f"{len(comparison.differences)} difference(s)"
		)
		return ReplayResult(original=original, replay=replay, comparison=comparison)

	async def export(
		self,
		owner: str,
		fmt: str = "json",
		filters: Optional[HistoryFilter] = None,
	) -> str:
		"""Serialize filtered history as json, jsonl or csv."""
		if fmt not in EXPORT_FORMATS:
			raise ValueError(f"Unsupported export format: {fmt}. Use one of {', '.join(EXPORT_FORMATS)}")

		executions = await self.history(owner, filters)
		records = [e.model_dump(mode="json") for e in executions]

		if fmt == "json":
			return json.dumps(records, indent=2)
		if fmt == "jsonl":
			return "\n".join(json.dumps(record) for record in records)

		buffer = io.StringIO()
		writer = csv.writer(buffer, lineterminator="\n")
		writer.writerow(CSV_HEADERS)
		for e in executions:
			writer.writerow([
				e.id,
				e.agent_id,
				e.status.value,
				e.started_at,
				"" if e.duration_ms is None else e.duration_ms,
				"" if e.cost is None else e.cost,
				e.error or "",
			])
		return buffer.getvalue().rstrip("\n")
