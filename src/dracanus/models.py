"""
Domain models - pydantic schemas for everything the store persists.

Agents, goals, executions, policies, blocked actions, learnings and
notifications. Timestamps are local ISO-8601 strings with microsecond
precision so that lexical order matches chronological order.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def now_iso(moment: Optional[datetime] = None) -> str:
	"""Format a timestamp the way the store expects it."""
	return (moment or datetime.now()).isoformat(timespec="microseconds")


def new_id() -> str:
	return uuid.uuid4().hex[:16]


class AgentCategory(str, Enum):
	"""Fixed task taxonomy used for decomposition and routing."""
	EMAIL = "EMAIL"
	CALENDAR = "CALENDAR"
	RESEARCH = "RESEARCH"
	DOCUMENT = "DOCUMENT"
	DATA = "DATA"
	CODE = "CODE"
	SUPPORT = "SUPPORT"
	WORKFLOW = "WORKFLOW"


class GoalStatus(str, Enum):
	DECOMPOSING = "DECOMPOSING"
	EXECUTING = "EXECUTING"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"
	BLOCKED = "BLOCKED"

	@property
	def is_terminal(self) -> bool:
		return self in (GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.BLOCKED)


class ExecutionStatus(str, Enum):
	RUNNING = "RUNNING"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"
	BLOCKED = "BLOCKED"

	@property
	def is_terminal(self) -> bool:
		return self is not ExecutionStatus.RUNNING


class PolicyType(str, Enum):
	RATE_LIMIT = "RATE_LIMIT"
	CONTENT_FILTER = "CONTENT_FILTER"
	APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
	BUDGET_LIMIT = "BUDGET_LIMIT"
	TIME_WINDOW = "TIME_WINDOW"
	CUSTOM = "CUSTOM"


class PolicyAction(str, Enum):
	"""What happens when a policy is violated."""
	WARN = "WARN"
	BLOCK = "BLOCK"
	REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class Severity(str, Enum):
	LOW = "LOW"
	MEDIUM = "MEDIUM"
	HIGH = "HIGH"
	CRITICAL = "CRITICAL"

	@property
	def rank(self) -> int:
		return list(Severity).index(self)


class Environment(str, Enum):
	SANDBOX = "sandbox"
	PRODUCTION = "production"


class BlockedActionStatus(str, Enum):
	PENDING = "PENDING"
	APPROVED = "APPROVED"
	REJECTED = "REJECTED"


class LearningType(str, Enum):
	SUCCESS_PATTERN = "SUCCESS_PATTERN"
	FAILURE_PATTERN = "FAILURE_PATTERN"
	PERFORMANCE_TIP = "PERFORMANCE_TIP"
	ROUTING_PREFERENCE = "ROUTING_PREFERENCE"
	POLICY_TRIGGER = "POLICY_TRIGGER"


class Agent(BaseModel):
	"""A named, reusable task-capability profile."""
	id: str = Field(default_factory=new_id)
	name: str
	slug: Optional[str] = None
	category: AgentCategory
	description: str = ""
	system_prompt: str = Field(description="Instruction template sent as the system prompt")
	model_preference: str = Field(default="ollama", description="Preferred completion backend")
	capabilities: list[str] = Field(default_factory=list)
	active: bool = True
	deployment_count: int = 0
	created_at: str = Field(default_factory=now_iso)


class DecomposedJob(BaseModel):
	"""One unit of work produced by decomposition. Never persisted on its own."""
	agent_id: str
	task: str
	priority: int = 5
	dependencies: list[int] = Field(default_factory=list)
	category: Optional[AgentCategory] = None


class Goal(BaseModel):
	"""A user's submitted high-level intent."""
	id: str = Field(default_factory=new_id)
	owner: str
	description: str
	project_id: Optional[str] = None
	status: GoalStatus = GoalStatus.DECOMPOSING
	priority: int = 5
	decomposed_jobs: list[DecomposedJob] = Field(default_factory=list)
	created_at: str = Field(default_factory=now_iso)
	completed_at: Optional[str] = None


class Execution(BaseModel):
	"""Durable record of one job attempt."""
	id: str = Field(default_factory=new_id)
	owner: str
	agent_id: str
	goal_id: Optional[str] = None
	project_id: Optional[str] = None
	input: dict[str, Any] = Field(default_factory=dict)
	output: Any = None
	status: ExecutionStatus = ExecutionStatus.RUNNING
	error: Optional[str] = None
	policies_checked: list[str] = Field(default_factory=list)
	blocked_by: Optional[str] = None
	started_at: str = Field(default_factory=now_iso)
	completed_at: Optional[str] = None
	duration_ms: Optional[int] = None
	tokens_used: Optional[int] = None
	cost: Optional[float] = Field(default=None, description="USD")
	metadata: dict[str, Any] = Field(default_factory=dict)


class Policy(BaseModel):
	"""An owner-scoped governance rule."""
	id: str = Field(default_factory=new_id)
	owner: str
	name: str
	description: str = ""
	type: PolicyType
	conditions: dict[str, Any] = Field(default_factory=dict)
	action: PolicyAction = PolicyAction.BLOCK
	severity: Severity = Severity.MEDIUM
	active: bool = True
	project_id: Optional[str] = None
	expires_at: Optional[str] = None
	triggered_count: int = 0
	created_at: str = Field(default_factory=now_iso)


class BlockedAction(BaseModel):
	"""Record of one enforcement denial."""
	id: str = Field(default_factory=new_id)
	owner: str
	policy_id: str
	agent_id: str
	action: Any = None
	reason: str
	environment: Environment = Environment.PRODUCTION
	status: BlockedActionStatus = BlockedActionStatus.PENDING
	created_at: str = Field(default_factory=now_iso)
	resolved_at: Optional[str] = None


class Learning(BaseModel):
	"""A mined, confidence-scored insight."""
	id: str = Field(default_factory=new_id)
	owner: str
	agent_id: Optional[str] = None
	type: LearningType
	pattern: dict[str, Any] = Field(default_factory=dict)
	insight: str
	confidence: float = Field(ge=0.0, le=1.0)
	source_execution_ids: list[str] = Field(default_factory=list)
	applied: bool = False
	verified: bool = False
	created_at: str = Field(default_factory=now_iso)


class Notification(BaseModel):
	id: str = Field(default_factory=new_id)
	owner: str
	type: str
	title: str
	message: str
	link: Optional[str] = None
	read: bool = False
	created_at: str = Field(default_factory=now_iso)
