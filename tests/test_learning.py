"""Tests for the learning engine's pattern detectors."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from dracanus.database import Database
from dracanus.learning import (
	LearningEngine,
	detect_failure_patterns,
	detect_performance_tips,
	detect_policy_triggers,
	most_common_agent,
	normalize_error,
)
from dracanus.models import ExecutionStatus, LearningType, now_iso

from .helpers import make_execution


@pytest.fixture
def db(tmp_path: Path) -> Database:
	return Database(str(tmp_path / "test.db"))


def test_normalize_error():
	assert normalize_error("Timeout: backend took too long") == "timeout"
	assert normalize_error("  Rate Limited ") == "rate limited"


def test_most_common_agent():
	executions = [make_execution("a1"), make_execution("a2"), make_execution("a2")]
	ids = [e.id for e in executions]
	assert most_common_agent(ids, executions) == "a2"
	assert most_common_agent(ids[:1], executions) == "a1"
	assert most_common_agent([], executions) is None


def test_failure_patterns_group_by_error_type():
	executions = [
		make_execution("a1", status=ExecutionStatus.FAILED, error="Timeout: 30s"),
		make_execution("a2", status=ExecutionStatus.FAILED, error="timeout: 60s"),
		make_execution("a1", status=ExecutionStatus.FAILED, error="Auth: bad key"),
		make_execution("a1"),
	]
	patterns = detect_failure_patterns(executions)

	assert len(patterns) == 1
	assert patterns[0].pattern["errorType"] == "timeout"
	assert patterns[0].pattern["affectedAgents"] == ["a1", "a2"]
	assert patterns[0].insight == 'Recurring failure: "timeout" (2 times, 50% of executions)'
	assert patterns[0].confidence == pytest.approx(0.4)


def test_performance_tips_flag_slow_agent():
	executions = [make_execution("fast", duration_ms=100) for _ in range(4)]
	executions += [make_execution("slow", duration_ms=5000) for _ in range(2)]
	patterns = detect_performance_tips(executions)

	assert len(patterns) == 1
	assert patterns[0].pattern["agentId"] == "slow"
	assert patterns[0].insight.startswith("Agent is slower than average (5000ms vs 1733ms)")


def test_policy_triggers():
	executions = [
		make_execution("a1", status=ExecutionStatus.BLOCKED, blocked_by="p1"),
		make_execution("a1", status=ExecutionStatus.BLOCKED, blocked_by="p1"),
		make_execution("a1", status=ExecutionStatus.BLOCKED, blocked_by="p2"),
		make_execution("a1"),
	]
	patterns = detect_policy_triggers(executions)

	assert [p.pattern["policyId"] for p in patterns] == ["p1"]
	assert patterns[0].type is LearningType.POLICY_TRIGGER
	assert patterns[0].pattern["blockRate"] == pytest.approx(50.0)


class TestLearningEngine:
	@pytest.mark.asyncio
	async def test_fewer_than_five_executions_yields_nothing(self, db: Database):
		for _ in range(4):
			await db.create_execution(make_execution("a1"))

		assert await LearningEngine(db).analyze_and_learn("u1") == []
		assert await db.list_learnings("u1") == []

	@pytest.mark.asyncio
	async def test_five_fast_executions_yield_success_pattern(self, db: Database):
		for _ in range(5):
			await db.create_execution(make_execution("a1", duration_ms=200))

		learnings = await LearningEngine(db).analyze_and_learn("u1")

		success = [item for item in learnings if item.type is LearningType.SUCCESS_PATTERN]
		assert len(success) == 1
		assert success[0].confidence == pytest.approx(0.5)
		assert success[0].agent_id == "a1"
		assert success[0].insight == "Agent performs well with 100% success rate and avg 200ms execution time"
		assert len(success[0].source_execution_ids) == 5

		routing = [item for item in learnings if item.type is LearningType.ROUTING_PREFERENCE]
		assert routing[0].pattern["usageRate"] == pytest.approx(100.0)

		stored = await LearningEngine(db).get_insights("u1")
		assert {item.id for item in stored} == {item.id for item in learnings}

	@pytest.mark.asyncio
	async def test_old_executions_are_ignored(self, db: Database):
		old = now_iso(datetime.now() - timedelta(days=10))
		for _ in range(5):
			await db.create_execution(make_execution("a1", started_at=old))
		assert await LearningEngine(db).analyze_and_learn("u1") == []

	@pytest.mark.asyncio
	async def test_agent_performance(self, db: Database):
		for _ in range(3):
			await db.create_execution(make_execution("busy", duration_ms=100))
		await db.create_execution(make_execution("busy", status=ExecutionStatus.FAILED, duration_ms=None))
		await db.create_execution(make_execution("quiet", status=ExecutionStatus.BLOCKED))

		performance = await LearningEngine(db).get_agent_performance("u1")

		assert [p.agent_id for p in performance] == ["busy", "quiet"]
		busy = performance[0]
		assert (busy.total_executions, busy.completed, busy.failed, busy.blocked) == (4, 3, 1, 0)
		assert busy.success_rate == pytest.approx(75.0)
		assert busy.avg_duration == pytest.approx(100.0)
		assert performance[1].blocked == 1
