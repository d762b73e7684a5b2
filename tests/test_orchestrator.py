"""Tests for the orchestrator: routing, sequencing, enforcement and bookkeeping."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from dracanus.database import StoreError
from dracanus.models import (
	AgentCategory,
	DecomposedJob,
	Environment,
	ExecutionStatus,
	GoalStatus,
	PolicyAction,
	PolicyType,
)
from dracanus.orchestrator import OrchestrationRequest, determine_status, generate_summary
from dracanus.orchestrator.engine import JobResult, order_by_dependencies, order_by_priority

from .helpers import (
	FailingBackend,
	FakeBackend,
	RaisingBackend,
	make_agent,
	make_policy,
	make_registry,
	make_services,
)


def _result(status: ExecutionStatus) -> JobResult:
	return JobResult(agent_id="a", execution_id="e", status=status, task="t")


class TestStatusAndSummary:
	@pytest.mark.parametrize("statuses, expected", [
		([], "failed"),
		([ExecutionStatus.COMPLETED, ExecutionStatus.COMPLETED], "completed"),
		([ExecutionStatus.COMPLETED, ExecutionStatus.BLOCKED], "blocked"),
		([ExecutionStatus.FAILED, ExecutionStatus.BLOCKED], "blocked"),
		([ExecutionStatus.FAILED, ExecutionStatus.FAILED], "failed"),
		([ExecutionStatus.COMPLETED, ExecutionStatus.FAILED], "partial"),
	])
	def test_determine_status(self, statuses, expected):
		assert determine_status([_result(s) for s in statuses]) == expected

	def test_summary(self):
		results = [_result(ExecutionStatus.COMPLETED), _result(ExecutionStatus.BLOCKED), _result(ExecutionStatus.FAILED)]
		assert generate_summary(results) == "1/3 jobs completed, 1 blocked, 1 failed"
		assert generate_summary([_result(ExecutionStatus.COMPLETED)]) == "1/1 jobs completed"


class TestOrdering:
	def _jobs(self, *specs):
		agent = make_agent()
		return [
			(index, DecomposedJob(agent_id=agent.id, task=f"job{index}", priority=priority, dependencies=deps), agent)
			for index, (priority, deps) in enumerate(specs)
		]

	def test_priority_order_is_stable(self):
		jobs = self._jobs((5, []), (9, []), (5, []), (1, []))
		assert [index for index, _, _ in order_by_priority(jobs)] == [1, 0, 2, 3]

	def test_dependencies_run_first(self):
		jobs = self._jobs((1, []), (10, [0]), (5, []))
		assert [index for index, _, _ in order_by_dependencies(jobs)] == [2, 0, 1]

	def test_cycles_run_last_by_priority(self):
		jobs = self._jobs((3, [1]), (7, [0]), (1, []), (5, [42]))
		assert [index for index, _, _ in order_by_dependencies(jobs)] == [3, 2, 1, 0]


class TestOrchestrate:
	@pytest.mark.asyncio
	async def test_each_job_leaves_one_terminal_execution(self, tmp_path: Path):
		backend = FakeBackend(content="done", responses=[json.dumps([
			{"agentType": "RESEARCH", "task": "Research pricing", "priority": 5},
			{"agentType": "DOCUMENT", "task": "Write report", "priority": 9},
			{"agentType": "EMAIL", "task": "Email the team", "priority": 1},
		])])
		services = make_services(tmp_path, make_registry(ollama=backend))
		for category in (AgentCategory.RESEARCH, AgentCategory.DOCUMENT, AgentCategory.EMAIL):
			await services.db.create_agent(make_agent(category))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Pricing review"))

		assert result.status == "completed"
		assert result.decomposition_source == "backend"
		assert [job.task for job in result.jobs] == ["Write report", "Research pricing", "Email the team"]
		executions = await services.db.query_executions("u1", goal_id=result.goal_id)
		assert len(executions) == 3
		assert all(e.status is ExecutionStatus.COMPLETED for e in executions)
		assert all(e.output == "done" for e in executions)
		assert all(e.metadata["backend"] == "ollama" for e in executions)

		goal = await services.db.get_goal(result.goal_id)
		assert goal.status is GoalStatus.COMPLETED
		assert goal.completed_at is not None
		assert len(goal.decomposed_jobs) == 3

	@pytest.mark.asyncio
	async def test_blocked_job_is_recorded_and_siblings_still_run(self, tmp_path: Path):
		content = json.dumps([
			{"agentType": "EMAIL", "task": "Email the secret plan", "priority": 9},
			{"agentType": "DOCUMENT", "task": "Write summary", "priority": 5},
		])
		services = make_services(tmp_path, make_registry(ollama=FakeBackend(responses=[content])))
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		await services.db.create_agent(make_agent(AgentCategory.DOCUMENT))
		policy = await services.db.create_policy(make_policy(PolicyType.CONTENT_FILTER, {"blacklist": ["secret"]}))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Share plan"))

		assert result.status == "blocked"
		blocked, completed = result.jobs
		assert blocked.status is ExecutionStatus.BLOCKED
		assert blocked.policy_id == policy.id
		assert completed.status is ExecutionStatus.COMPLETED

		record = await services.db.get_execution(blocked.execution_id)
		assert record.blocked_by == policy.id
		assert record.error == 'Content contains blacklisted term: "secret"'
		assert record.duration_ms == 0
		assert record.metadata["policy_action"] == "BLOCK"
		assert (await services.db.get_goal(result.goal_id)).status is GoalStatus.BLOCKED

	@pytest.mark.asyncio
	async def test_warning_proceeds_and_is_kept_in_metadata(self, tmp_path: Path):
		services = make_services(tmp_path, make_registry(ollama=FailingBackend("no decomposition")))
		services.executor.registry = make_registry(ollama=FakeBackend())
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		policy = await services.db.create_policy(make_policy(
			PolicyType.CONTENT_FILTER, {"blacklist": ["email"]}, action=PolicyAction.WARN,
		))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Send an email"))

		assert result.status == "completed"
		execution = await services.db.get_execution(result.jobs[0].execution_id)
		assert execution.metadata["warning"]["policy_id"] == policy.id
		assert execution.policies_checked == [policy.id]

	@pytest.mark.asyncio
	async def test_rate_limit_blocks_fourth_goal(self, tmp_path: Path):
		services = make_services(tmp_path)
		agent = await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		policy = await services.db.create_policy(make_policy(
			PolicyType.RATE_LIMIT, {"limit": 3, "window": "hour"},
		))

		statuses = []
		for _ in range(4):
			result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Send an email"))
			statuses.append(result.jobs[0].status)

		assert statuses == [ExecutionStatus.COMPLETED] * 3 + [ExecutionStatus.BLOCKED]
		assert (await services.db.get_policy(policy.id)).triggered_count == 1
		assert await services.db.count_executions("u1", agent_id=agent.id) == 4

	@pytest.mark.asyncio
	async def test_backend_failure_is_a_failed_job_not_an_exception(self, tmp_path: Path):
		services = make_services(tmp_path, make_registry(ollama=FailingBackend("boom")))
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Send an email"))

		assert result.status == "failed"
		assert result.jobs[0].error == "All providers failed. Original error: boom"
		assert (await services.db.get_goal(result.goal_id)).status is GoalStatus.FAILED

	@pytest.mark.asyncio
	async def test_unexpected_job_error_is_isolated(self, tmp_path: Path):
		content = json.dumps([
			{"agentType": "EMAIL", "task": "first", "priority": 9},
			{"agentType": "DOCUMENT", "task": "second", "priority": 5},
		])
		services = make_services(tmp_path, make_registry(ollama=FakeBackend(responses=[content])))
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		await services.db.create_agent(make_agent(AgentCategory.DOCUMENT))

		real_execute = services.executor.execute
		calls = []

		async def flaky(agent, task_input):
			calls.append(task_input.task)
			if len(calls) == 1:
				raise RuntimeError("agent crashed")
			return await real_execute(agent, task_input)

		services.executor.execute = flaky
		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Two jobs"))

		assert result.status == "partial"
		assert [job.status for job in result.jobs] == [ExecutionStatus.FAILED, ExecutionStatus.COMPLETED]
		failed = await services.db.get_execution(result.jobs[0].execution_id)
		assert failed.status is ExecutionStatus.FAILED
		assert failed.error == "agent crashed"
		assert (await services.db.get_goal(result.goal_id)).status is GoalStatus.FAILED

	@pytest.mark.asyncio
	async def test_store_failure_marks_goal_failed_and_reraises(self, tmp_path: Path):
		services = make_services(tmp_path)
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))

		with patch.object(services.db, "create_execution", AsyncMock(side_effect=StoreError("disk full"))):
			with pytest.raises(StoreError):
				await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Send an email"))

		goals = await services.db.list_goals("u1")
		assert len(goals) == 1
		assert goals[0].status is GoalStatus.FAILED

	@pytest.mark.asyncio
	async def test_no_agents_means_failed_goal(self, tmp_path: Path):
		services = make_services(tmp_path)
		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Send an email"))

		assert result.status == "failed"
		assert result.jobs == []
		assert (await services.db.get_goal(result.goal_id)).status is GoalStatus.FAILED

	@pytest.mark.asyncio
	async def test_sandbox_environment_reaches_enforcer(self, tmp_path: Path):
		services = make_services(tmp_path)
		await services.db.create_agent(make_agent(AgentCategory.EMAIL))
		await services.db.create_policy(make_policy(PolicyType.CONTENT_FILTER, {"blacklist": ["email"]}))

		await services.orchestrator.orchestrate(OrchestrationRequest(
			owner="u1", goal="Send an email", environment=Environment.SANDBOX,
		))

		blocked = await services.db.list_blocked_actions("u1")
		assert blocked[0].environment is Environment.SANDBOX
		assert await services.db.list_notifications("u1") == []

	@pytest.mark.asyncio
	async def test_respect_dependencies_orders_jobs(self, tmp_path: Path):
		content = json.dumps([
			{"agentType": "RESEARCH", "task": "gather", "priority": 1},
			{"agentType": "DOCUMENT", "task": "write", "priority": 10, "dependencies": [0]},
		])
		services = make_services(
			tmp_path, make_registry(ollama=FakeBackend(responses=[content])), respect_dependencies=True,
		)
		await services.db.create_agent(make_agent(AgentCategory.RESEARCH))
		await services.db.create_agent(make_agent(AgentCategory.DOCUMENT))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Report"))

		assert [job.task for job in result.jobs] == ["gather", "write"]

	@pytest.mark.asyncio
	async def test_unexpected_decomposition_error_falls_back_to_keywords(self, tmp_path: Path):
		services = make_services(
			tmp_path,
			make_registry(ollama=RaisingBackend(RuntimeError("backend exploded")), plus_coder=FakeBackend(content="sent")),
			fallback_order=["plus-coder"],
		)
		email = await services.db.create_agent(make_agent(AgentCategory.EMAIL, model_preference="plus-coder"))
		await services.db.create_agent(make_agent(AgentCategory.CALENDAR, model_preference="plus-coder"))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(
			owner="u1", goal="Send a follow-up email to the lead",
		))

		assert result.decomposition_source == "keywords"
		assert result.status == "completed"
		assert [job.agent_id for job in result.jobs] == [email.id]
		goal = await services.db.get_goal(result.goal_id)
		assert goal.status is GoalStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_dependencies_survive_a_skipped_leading_task(self, tmp_path: Path):
		content = json.dumps([
			{"agentType": "CODE", "task": "refactor", "priority": 5},
			{"agentType": "RESEARCH", "task": "gather", "priority": 1},
			{"agentType": "DOCUMENT", "task": "write", "priority": 10, "dependencies": [1]},
		])
		services = make_services(
			tmp_path, make_registry(ollama=FakeBackend(responses=[content])), respect_dependencies=True,
		)
		await services.db.create_agent(make_agent(AgentCategory.RESEARCH))
		await services.db.create_agent(make_agent(AgentCategory.DOCUMENT))

		result = await services.orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="Report"))

		assert [job.task for job in result.jobs] == ["gather", "write"]
