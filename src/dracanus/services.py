"""
Services - composition root and caller-facing operations.

One `Services` instance is built per process from a `Config`; the CLI, the
MCP server and the web API all go through it instead of module globals.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel

from .audit import (
	AgentNotFoundError,
	AuditSystem,
	ExecutionNotFoundError,
	HistoryFilter,
	PerformanceMetrics,
	ReplayResult,
)
from .backends import BackendRegistry
from .config import Config, load_config
from .database import Database, StoreError
from .executor import TaskExecutor
from .learning import AgentPerformance, LearningEngine
from .models import (
	Agent,
	AgentCategory,
	BlockedAction,
	BlockedActionStatus,
	Environment,
	Execution,
	ExecutionStatus,
	Learning,
	Notification,
	Policy,
	PolicyAction,
	PolicyType,
	Severity,
)
from .orchestrator import GoalDecomposer, OrchestrationRequest, OrchestrationResult, Orchestrator
from .policies import PolicyEnforcer

logger = logging.getLogger(__name__)


class PolicyNotFoundError(LookupError):
	pass


class BlockedActionNotFoundError(LookupError):
	pass


# Errors the caller-facing surfaces report instead of crashing
CALLER_ERRORS = (LookupError, ValueError, StoreError)


def to_jsonable(value: Any) -> Any:
	"""Convert models, dataclasses and lists of them into JSON-ready data."""
	if isinstance(value, BaseModel):
		return value.model_dump(mode="json")
	if hasattr(value, "to_dict"):
		return value.to_dict()
	if dataclasses.is_dataclass(value) and not isinstance(value, type):
		return dataclasses.asdict(value)
	if isinstance(value, (list, tuple)):
		return [to_jsonable(item) for item in value]
	if isinstance(value, dict):
		return {key: to_jsonable(item) for key, item in value.items()}
	return value


@dataclass
class Services:
	config: Config
	db: Database
	registry: BackendRegistry
	executor: TaskExecutor
	enforcer: PolicyEnforcer
	decomposer: GoalDecomposer
	orchestrator: Orchestrator
	audit: AuditSystem
	learning: LearningEngine

	@classmethod
	def from_config(
		cls,
		config: Optional[Config] = None,
		registry: Optional[BackendRegistry] = None,
		clock: Callable[[], datetime] = datetime.now,
	) -> "Services":
		"""Wire every component once, with explicit dependencies."""
		config = config or load_config()
		db = Database(str(config.db_path))
		registry = registry or BackendRegistry.from_config(config)
		executor = TaskExecutor(
			registry,
			fallback_order=config.fallback_order,
			pricing=config.pricing,
			temperature=config.temperature,
			max_tokens=config.max_tokens,
		)
		enforcer = PolicyEnforcer(db, clock=clock)
		decomposer = GoalDecomposer(
			db, registry,
			backend_name=config.decomposition_backend,
			max_tokens=config.max_tokens,
		)
		orchestrator = Orchestrator(
			db, decomposer, enforcer, executor,
			respect_dependencies=config.respect_dependencies,
		)
		return cls(
			config=config,
			db=db,
			registry=registry,
			executor=executor,
			enforcer=enforcer,
			decomposer=decomposer,
			orchestrator=orchestrator,
			audit=AuditSystem(db, executor, clock=clock),
			learning=LearningEngine(db, clock=clock),
		)

	# ------------------------------------------------------------------
	# Goals and executions
	# ------------------------------------------------------------------

	async def submit_goal(
		self,
		owner: str,
		goal: str,
		project_id: Optional[str] = None,
		context: Optional[dict] = None,
		environment: Optional[str] = None,
	) -> OrchestrationResult:
		if not goal or not goal.strip():
			raise ValueError("Goal description must not be empty")
		return await self.orchestrator.orchestrate(OrchestrationRequest(
			owner=owner,
			goal=goal.strip(),
			project_id=project_id,
			context=context,
			environment=Environment(environment or self.config.default_environment),
		))

	async def execution_history(
		self,
		owner: str,
		agent_id: Optional[str] = None,
		status: Optional[str] = None,
		project_id: Optional[str] = None,
		since: Optional[str] = None,
		until: Optional[str] = None,
		limit: int = 50,
	) -> list[Execution]:
		return await self.audit.history(owner, HistoryFilter(
			agent_id=agent_id,
			status=ExecutionStatus(status.upper()) if status else None,
			project_id=project_id,
			since=since,
			until=until,
			limit=limit,
		))

	async def execution_trace(self, owner: str, execution_id: str) -> Execution:
		execution = await self.audit.trace(execution_id, owner)
		if execution is None:
			raise ExecutionNotFoundError(f"Execution not found: {execution_id}")
		return execution

	async def replay_execution(self, owner: str, execution_id: str) -> ReplayResult:
		return await self.audit.replay(execution_id, owner)

	async def performance_metrics(self, owner: str, days: int = 7) -> PerformanceMetrics:
		if days < 1:
			raise ValueError("days must be at least 1")
		return await self.audit.metrics(owner, days)

	async def export_history(self, owner: str, fmt: str = "json", limit: int = 100) -> str:
		return await self.audit.export(owner, fmt, HistoryFilter(limit=limit))

	# ------------------------------------------------------------------
	# Policies
	# ------------------------------------------------------------------

	async def create_policy(
		self,
		owner: str,
		name: str,
		type: str,
		conditions: Optional[dict] = None,
		action: str = PolicyAction.BLOCK.value,
		severity: str = Severity.MEDIUM.value,
		description: str = "",
		project_id: Optional[str] = None,
		expires_at: Optional[str] = None,
	) -> Policy:
		policy = await self.db.create_policy(Policy(
			owner=owner,
			name=name,
			description=description,
			type=PolicyType(type.upper()),
			conditions=conditions or {},
			action=PolicyAction(action.upper()),
			severity=Severity(severity.upper()),
			project_id=project_id,
			expires_at=expires_at,
		))
		logger.info(f"Policy {policy.name} ({policy.type.value}) created for {owner}")
		return policy

	async def list_policies(self, owner: str) -> list[Policy]:
		return await self.db.list_policies(owner)

	async def set_policy_active(self, owner: str, policy_id: str, active: bool) -> Policy:
		policy = await self.db.get_policy(policy_id)
		if policy is None or policy.owner != owner:
			raise PolicyNotFoundError(f"Policy not found: {policy_id}")
		return await self.db.set_policy_active(policy_id, active)

	async def list_blocked_actions(self, owner: str, status: Optional[str] = None) -> list[BlockedAction]:
		return await self.db.list_blocked_actions(
			owner, BlockedActionStatus(status.upper()) if status else None,
		)

	async def resolve_blocked_action(self, owner: str, blocked_id: str, approve: bool) -> BlockedAction:
		blocked = await self.db.get_blocked_action(blocked_id)
		if blocked is None or blocked.owner != owner:
			raise BlockedActionNotFoundError(f"Blocked action not found: {blocked_id}")
		status = BlockedActionStatus.APPROVED if approve else BlockedActionStatus.REJECTED
		return await self.db.resolve_blocked_action(blocked_id, status)

	# ------------------------------------------------------------------
	# Agents
	# ------------------------------------------------------------------

	async def register_agent(
		self,
		name: str,
		category: str,
		system_prompt: str,
		model_preference: str = "ollama",
		capabilities: Optional[list[str]] = None,
		description: str = "",
		slug: Optional[str] = None,
	) -> Agent:
		return await self.db.create_agent(Agent(
			name=name,
			slug=slug,
			category=AgentCategory(category.upper()),
			description=description,
			system_prompt=system_prompt,
			model_preference=model_preference,
			capabilities=capabilities or [],
		))

	async def list_agents(self, category: Optional[str] = None) -> list[Agent]:
		return await self.db.list_agents(AgentCategory(category.upper()) if category else None)

	async def deploy_agent(self, agent_id: str) -> Agent:
		agent = await self.db.increment_agent_deployments(agent_id)
		if agent is None:
			raise AgentNotFoundError(f"Agent not found: {agent_id}")
		return agent

	# ------------------------------------------------------------------
	# Learning and notifications
	# ------------------------------------------------------------------

	async def analyze_and_learn(self, owner: str) -> list[Learning]:
		return await self.learning.analyze_and_learn(owner)

	async def list_insights(self, owner: str, limit: int = 10) -> list[Learning]:
		return await self.learning.get_insights(owner, limit)

	async def agent_performance(self, owner: str, days: int = 30) -> list[AgentPerformance]:
		return await self.learning.get_agent_performance(owner, days)

	async def list_notifications(self, owner: str, unread_only: bool = False) -> list[Notification]:
		return await self.db.list_notifications(owner, unread_only)
