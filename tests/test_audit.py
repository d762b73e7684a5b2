"""Tests for history, trace, metrics, replay and export."""

import csv
import io
import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from dracanus.audit import (
	CSV_HEADERS,
	AgentNotFoundError,
	AuditSystem,
	ExecutionNotFoundError,
	HistoryFilter,
	compare_executions,
)
from dracanus.models import AgentCategory, Execution, ExecutionStatus, now_iso
from dracanus.orchestrator import OrchestrationRequest

from .helpers import FakeBackend, make_agent, make_execution, make_registry, make_services


def test_compare_identical_executions():
	original = make_execution("a1", duration_ms=1000)
	replay = make_execution("a1", duration_ms=1500)
	comparison = compare_executions(original, replay)
	assert comparison.status_match is True
	assert comparison.output_match is True
	assert comparison.duration_diff == 500
	assert comparison.differences == []


def test_compare_reports_every_difference():
	original = make_execution("a1", duration_ms=1000, output={"a": 1, "b": 2})
	replay = make_execution(
		"a1", status=ExecutionStatus.FAILED, duration_ms=3500, error="timeout",
	)
	comparison = compare_executions(original, replay)
	assert comparison.differences == [
		"Status changed: COMPLETED → FAILED",
		"Output differs from original execution",
		"Duration increased by 2500ms",
		'Error changed: "None" → "timeout"',
	]


def test_compare_output_ignores_key_order():
	original = make_execution("a1", output={"a": 1, "b": 2})
	replay = make_execution("a1", output={"b": 2, "a": 1})
	assert compare_executions(original, replay).output_match is True


class TestHistoryAndTrace:
	@pytest.mark.asyncio
	async def test_history_filters(self, tmp_path: Path):
		services = make_services(tmp_path)
		await services.db.create_execution(make_execution("a1", project_id="p1"))
		await services.db.create_execution(make_execution("a1", status=ExecutionStatus.FAILED))
		await services.db.create_execution(make_execution("a2"))

		assert len(await services.audit.history("u1")) == 3
		assert len(await services.audit.history("u1", HistoryFilter(agent_id="a1"))) == 2
		assert len(await services.audit.history("u1", HistoryFilter(project_id="p1"))) == 1
		failed = await services.audit.history("u1", HistoryFilter(status=ExecutionStatus.FAILED))
		assert [e.status for e in failed] == [ExecutionStatus.FAILED]
		future = datetime.now() + timedelta(days=1)
		assert await services.audit.history("u1", HistoryFilter(since=future)) == []

	@pytest.mark.asyncio
	async def test_trace_is_owner_scoped(self, tmp_path: Path):
		services = make_services(tmp_path)
		execution = await services.db.create_execution(make_execution("a1"))

		assert (await services.audit.trace(execution.id, "u1")).id == execution.id
		assert await services.audit.trace(execution.id, "intruder") is None
		assert await services.audit.trace("missing") is None


class TestMetrics:
	@pytest.mark.asyncio
	async def test_aggregates_and_zero_filled_days(self, tmp_path: Path):
		services = make_services(tmp_path)
		now = datetime.now()
		fixed = AuditSystem(services.db, services.executor, clock=lambda: now)
		yesterday = now_iso(now - timedelta(days=1))

		await services.db.create_execution(make_execution("a1", duration_ms=100, cost=0.1))
		await services.db.create_execution(make_execution("a1", duration_ms=300, cost=0.2))
		await services.db.create_execution(make_execution(
			"a2", status=ExecutionStatus.FAILED, duration_ms=50, started_at=yesterday,
		))
		await services.db.create_execution(make_execution(
			"a2", status=ExecutionStatus.BLOCKED, duration_ms=0,
		))
		await services.db.create_execution(make_execution(
			"a1", started_at=now_iso(now - timedelta(days=30)),
		))

		metrics = await fixed.metrics("u1", days=7)

		assert metrics.total_executions == 4
		assert metrics.success_rate == pytest.approx(50.0)
		assert metrics.avg_duration_ms == pytest.approx(200.0)
		assert metrics.total_cost == pytest.approx(0.3)
		assert metrics.blocked_count == 1
		assert metrics.failed_count == 1
		assert metrics.by_agent["a1"].count == 2
		assert metrics.by_agent["a1"].success_rate == pytest.approx(100.0)
		assert metrics.by_agent["a2"].avg_duration == 0.0

		assert len(metrics.by_day) == 7
		assert [d.date for d in metrics.by_day] == sorted(d.date for d in metrics.by_day)
		assert metrics.by_day[-1].date == now.date().isoformat()
		assert metrics.by_day[-1].count == 3
		assert metrics.by_day[-2].count == 1
		assert sum(d.count for d in metrics.by_day) == 4

	@pytest.mark.asyncio
	async def test_metrics_are_idempotent(self, tmp_path: Path):
		services = make_services(tmp_path)
		now = datetime.now()
		fixed = AuditSystem(services.db, services.executor, clock=lambda: now)
		await services.db.create_execution(make_execution("a1"))
		await services.db.create_execution(make_execution("a2", status=ExecutionStatus.FAILED))

		first = await fixed.metrics("u1", days=7)
		second = await fixed.metrics("u1", days=7)

		assert first == second
		assert first.to_dict() == second.to_dict()

	@pytest.mark.asyncio
	async def test_empty_window(self, tmp_path: Path):
		services = make_services(tmp_path)
		metrics = await services.audit.metrics("u1", days=3)
		assert metrics.total_executions == 0
		assert metrics.success_rate == 0.0
		assert [d.count for d in metrics.by_day] == [0, 0, 0]


class TestReplay:
	@pytest.mark.asyncio
	async def test_replay_of_deterministic_execution_matches(self, tmp_path: Path):
		services = make_services(tmp_path, make_registry(ollama=FakeBackend(content="fixed output")))
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		result = await services.orchestrator.orchestrate(OrchestrationRequest(
			owner="u1", goal="Send an email", context={"lead": "Acme"},
		))
		original_id = result.jobs[0].execution_id

		replayed = await services.audit.replay(original_id, "u1")

		assert replayed.replay.status is ExecutionStatus.COMPLETED
		assert replayed.comparison.output_match is True
		assert replayed.comparison.status_match is True
		assert replayed.replay.id != original_id
		assert replayed.replay.input == replayed.original.input
		assert replayed.replay.metadata["replayOf"] == original_id
		assert replayed.replay.goal_id == result.goal_id

		original = await services.db.get_execution(original_id)
		assert original.output == "fixed output"
		assert len(await services.db.query_executions("u1")) == 2

	@pytest.mark.asyncio
	async def test_replay_that_raises_is_finalized_failed(self, tmp_path: Path):
		services = make_services(tmp_path)
		agent = await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		original = await services.db.create_execution(make_execution(agent.id))

		async def explode(agent, task_input):
			raise ValueError("Expecting value: line 1 column 1")

		services.executor.execute = explode
		replayed = await services.audit.replay(original.id, "u1")

		assert replayed.replay.status is ExecutionStatus.FAILED
		assert replayed.replay.error == "Expecting value: line 1 column 1"
		assert replayed.replay.completed_at is not None
		assert replayed.replay.metadata["replayOf"] == original.id
		assert replayed.comparison.status_match is False

		stored = await services.db.query_executions("u1", status=ExecutionStatus.RUNNING)
		assert stored == []

	@pytest.mark.asyncio
	async def test_replay_missing_or_foreign_execution(self, tmp_path: Path):
		services = make_services(tmp_path)
		execution = await services.db.create_execution(make_execution("a1", owner="someone"))

		with pytest.raises(ExecutionNotFoundError):
			await services.audit.replay("missing", "u1")
		with pytest.raises(ExecutionNotFoundError):
			await services.audit.replay(execution.id, "u1")

	@pytest.mark.asyncio
	async def test_replay_with_deleted_agent(self, tmp_path: Path):
		services = make_services(tmp_path)
		execution = await services.db.create_execution(make_execution("gone"))
		with pytest.raises(AgentNotFoundError):
			await services.audit.replay(execution.id, "u1")


class TestExport:
	@pytest.mark.asyncio
	async def test_formats(self, tmp_path: Path):
		services = make_services(tmp_path)
		await services.db.create_execution(make_execution("a1", cost=0.25))
		await services.db.create_execution(Execution(
			owner="u1", agent_id="a2", status=ExecutionStatus.FAILED, error="bad, thing",
		))

		records = json.loads(await services.audit.export("u1", "json"))
		assert len(records) == 2
		assert {r["agent_id"] for r in records} == {"a1", "a2"}

		lines = (await services.audit.export("u1", "jsonl")).splitlines()
		assert len(lines) == 2
		assert json.loads(lines[0])["id"] == records[0]["id"]

		rows = list(csv.reader(io.StringIO(await services.audit.export("u1", "csv"))))
		assert rows[0] == CSV_HEADERS
		assert len(rows) == 3
		failed = next(row for row in rows[1:] if row[1] == "a2")
		assert failed[2] == "FAILED"
		assert failed[6] == "bad, thing"

	@pytest.mark.asyncio
	async def test_unknown_format(self, tmp_path: Path):
		services = make_services(tmp_path)
		with pytest.raises(ValueError):
			await services.audit.export("u1", "xml")
