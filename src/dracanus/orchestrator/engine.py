"""
Orchestrator - goal lifecycle from decomposition to a finalized result.

Goal states: DECOMPOSING -> EXECUTING -> COMPLETED | FAILED | BLOCKED.
Jobs run one at a time; each passes the policy enforcer before its agent is
invoked, and every job leaves exactly one terminal Execution behind.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..database import Database, StoreError
from ..executor import TaskExecutor, TaskInput
from ..models import (
	Agent,
	DecomposedJob,
	Environment,
	Execution,
	ExecutionStatus,
	Goal,
	GoalStatus,
	now_iso,
)
from ..policies.enforcer import EnforcementContext, PolicyEnforcer
from .decomposer import GoalDecomposer

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationRequest:
	owner: str
	goal: str
	project_id: Optional[str] = None
	context: Optional[dict[str, Any]] = None
	environment: Environment = Environment.PRODUCTION


@dataclass
class JobResult:
	agent_id: str
	execution_id: str
	status: ExecutionStatus
	task: str
	result: Any = None
	error: Optional[str] = None
	policy_id: Optional[str] = None

	def to_dict(self) -> dict:
		return {
			"agent_id": self.agent_id,
			"execution_id": self.execution_id,
			"status": self.status.value,
			"task": self.task,
			"result": self.result,
			"error": self.error,
			"policy_id": self.policy_id,
		}


@dataclass
class OrchestrationResult:
	goal_id: str
	status: str  # completed, partial, failed, blocked
	jobs: list[JobResult] = field(default_factory=list)
	summary: str = ""
	decomposition_source: str = ""

	def to_dict(self) -> dict:
		return {
			"goal_id": self.goal_id,
			"status": self.status,
			"jobs": [job.to_dict() for job in self.jobs],
			"summary": self.summary,
			"decomposition_source": self.decomposition_source,
		}


GOAL_STATUS_FOR = {
	"completed": GoalStatus.COMPLETED,
	"blocked": GoalStatus.BLOCKED,
	"failed": GoalStatus.FAILED,
	"partial": GoalStatus.FAILED,
}


def determine_status(results: list[JobResult]) -> str:
	"""Overall run status from per-job statuses."""
	if not results:
		return "failed"
	statuses = [r.status for r in results]
	if all(s is ExecutionStatus.COMPLETED for s in statuses):
		return "completed"
	if ExecutionStatus.BLOCKED in statuses:
		return "blocked"
	if all(s is ExecutionStatus.FAILED for s in statuses):
		return "failed"
	return "partial"


def generate_summary(results: list[JobResult]) -> str:
	completed = sum(1 for r in results if r.status is ExecutionStatus.COMPLETED)
	blocked = sum(1 for r in results if r.status is ExecutionStatus.BLOCKED)
	failed = sum(1 for r in results if r.status is ExecutionStatus.FAILED)

	summary = f"{completed}/{len(results)} jobs completed"
	if blocked:
		summary += f", {blocked} blocked"
	if failed:
		summary += f", {failed} failed"
	return summary


def order_by_priority(jobs: list[tuple[int, DecomposedJob, Agent]]) -> list[tuple[int, DecomposedJob, Agent]]:
	"""Descending priority; stable, so ties keep decomposition order."""
	return sorted(jobs, key=lambda item: -item[1].priority)


def order_by_dependencies(jobs: list[tuple[int, DecomposedJob, Agent]]) -> list[tuple[int, DecomposedJob, Agent]]:
	"""
	Topological order over dependency indices, preferring higher priority
	among ready jobs. Dependencies on unknown indices are ignored; jobs left
	in a cycle run last in priority order.
	"""
	by_index = {index: (index, job, agent) for index, job, agent in jobs}
	pending = {
		index: {dep for dep in job.dependencies if dep in by_index and dep != index}
		for index, job, _ in jobs
	}

	ready = [(-job.priority, index) for index, job, _ in jobs if not pending[index]]
	heapq.heapify(ready)
	ordered = []
	while ready:
		_, index = heapq.heappop(ready)
		ordered.append(by_index[index])
		del pending[index]
		for other, deps in pending.items():
			if index in deps:
				deps.discard(index)
				if not deps:
					heapq.heappush(ready, (-by_index[other][1].priority, other))

	if pending:
		logger.warning(f"Dependency cycle among jobs {sorted(pending)}, running them by priority")
		ordered.extend(order_by_priority([by_index[index] for index in sorted(pending)]))
	return ordered


class Orchestrator:
	"""
	Runs goals end to end.

	Usage:
		orchestrator = Orchestrator(db, decomposer, enforcer, executor)
		result = await orchestrator.orchestrate(OrchestrationRequest(owner="u1", goal="..."))
	"""

	def __init__(
		self,
		db: Database,
		decomposer: GoalDecomposer,
		enforcer: PolicyEnforcer,
		executor: TaskExecutor,
		respect_dependencies: bool = False,
	):
		self.db = db
		self.decomposer = decomposer
		self.enforcer = enforcer
		self.executor = executor
		self.respect_dependencies = respect_dependencies

	async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
		"""
		Decompose, route, sequence and execute a goal.

		Raises:
			StoreError: If goal bookkeeping fails; the goal is marked FAILED first
		"""
		goal = await self.db.create_goal(Goal(
			owner=request.owner,
			description=request.goal,
			project_id=request.project_id,
		))
		logger.info(f"Goal {goal.id} submitted by {request.owner}")

		try:
			decomposition = await self.decomposer.decompose(request.goal, request.context)
			await self.db.update_goal(
				goal.id,
				decomposed_jobs=decomposition.jobs,
				status=GoalStatus.EXECUTING,
			)

			routed = await self.route_jobs(decomposition.jobs)
			results = []
			for _, job, agent in self.sequence_jobs(routed):
				results.append(await self._run_job(job, agent, request, goal.id))

			status = determine_status(results)
			await self.db.update_goal(
				goal.id,
				status=GOAL_STATUS_FOR[status],
				completed_at=now_iso(),
			)
		except Exception:
			logger.exception(f"Goal {goal.id} failed during bookkeeping")
			await self._mark_goal_failed(goal.id)
			raise

		summary = generate_summary(results)
		logger.info(f"Goal {goal.id} finished {status}: {summary}")
		return OrchestrationResult(
			goal_id=goal.id,
			status=status,
			jobs=results,
			summary=summary,
			decomposition_source=decomposition.source,
		)

	async def route_jobs(self, jobs: list[DecomposedJob]) -> list[tuple[int, DecomposedJob, Agent]]:
		"""Resolve each job's agent; jobs whose agent no longer exists are dropped."""
		routed = []
		for index, job in enumerate(jobs):
			agent = await self.db.get_agent(job.agent_id)
			if agent is None:
				logger.warning(f"Dropping job for unknown agent {job.agent_id}")
				continue
			routed.append((index, job, agent))
		return routed

	def sequence_jobs(self, routed: list[tuple[int, DecomposedJob, Agent]]) -> list[tuple[int, DecomposedJob, Agent]]:
		if self.respect_dependencies:
			return order_by_dependencies(routed)
		# Dependency indices are recorded on the goal but not enforced here
		return order_by_priority(routed)

	async def _run_job(
		self,
		job: DecomposedJob,
		agent: Agent,
		request: OrchestrationRequest,
		goal_id: str,
	) -> JobResult:
		task_input = TaskInput(task=job.task, goal=request.goal, context=request.context)
		execution: Optional[Execution] = None

		try:
			verdict = await self.enforcer.enforce(EnforcementContext(
				owner=request.owner,
				agent_id=agent.id,
				action={"task": job.task, "goal": request.goal},
				project_id=request.project_id,
				environment=request.environment,
			))

			if not verdict.allowed:
				timestamp = now_iso()
				blocked = await self.db.create_execution(Execution(
					owner=request.owner,
					agent_id=agent.id,
					goal_id=goal_id,
					project_id=request.project_id,
					input=task_input.to_record(),
					status=ExecutionStatus.BLOCKED,
					error=verdict.reason,
					policies_checked=verdict.policies_checked,
					blocked_by=verdict.policy.id,
					started_at=timestamp,
					completed_at=timestamp,
					duration_ms=0,
					metadata={
						"policy_action": verdict.action.value,
						"requires_approval": verdict.requires_approval,
						"blocked_action_id": verdict.blocked_action_id,
					},
				))
				return JobResult(
					agent_id=agent.id,
					execution_id=blocked.id,
					status=ExecutionStatus.BLOCKED,
					task=job.task,
					error=verdict.reason,
					policy_id=verdict.policy.id,
				)

			execution = await self.db.create_execution(Execution(
				owner=request.owner,
				agent_id=agent.id,
				goal_id=goal_id,
				project_id=request.project_id,
				input=task_input.to_record(),
				policies_checked=verdict.policies_checked,
			))

			outcome = await self.executor.execute(agent, task_input)
			metadata = outcome.metadata
			if verdict.is_warning:
				metadata["warning"] = {"policy_id": verdict.policy.id, "reason": verdict.reason}

			status = ExecutionStatus.COMPLETED if outcome.success else ExecutionStatus.FAILED
			await self.db.finalize_execution(
				execution.id,
				status,
				output=outcome.result,
				error=outcome.error,
				duration_ms=outcome.duration_ms,
				tokens_used=outcome.tokens_used,
				cost=outcome.cost,
				metadata=metadata,
			)
			return JobResult(
				agent_id=agent.id,
				execution_id=execution.id,
				status=status,
				task=job.task,
				result=outcome.result,
				error=outcome.error,
			)
		except StoreError:
			raise
		except Exception as e:
			logger.exception(f"Job for agent {agent.id} failed")
			return await self._record_job_failure(job, agent, request, goal_id, execution, str(e))

	async def _record_job_failure(
		self,
		job: DecomposedJob,
		agent: Agent,
		request: OrchestrationRequest,
		goal_id: str,
		execution: Optional[Execution],
		error: str,
	) -> JobResult:
		if execution is None:
			timestamp = now_iso()
			execution = await self.db.create_execution(Execution(
				owner=request.owner,
				agent_id=agent.id,
				goal_id=goal_id,
				project_id=request.project_id,
				input={"task": job.task, "goal": request.goal},
				status=ExecutionStatus.FAILED,
				error=error,
				started_at=timestamp,
				completed_at=timestamp,
			))
		else:
			await self.db.finalize_execution(execution.id, ExecutionStatus.FAILED, error=error)

		return JobResult(
			agent_id=agent.id,
			execution_id=execution.id,
			status=ExecutionStatus.FAILED,
			task=job.task,
			error=error,
		)

	async def _mark_goal_failed(self, goal_id: str) -> None:
		try:
			goal = await self.db.get_goal(goal_id)
			if goal and not goal.status.is_terminal:
				await self.db.update_goal(goal_id, status=GoalStatus.FAILED, completed_at=now_iso())
		except StoreError as e:
			logger.error(f"Could not mark goal {goal_id} as failed: {e}")
