"""SQLite persistent store for agents, goals, executions and governance records."""

import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Type, TypeVar

import aiosqlite
from pydantic import BaseModel

from .models import (
	Agent,
	AgentCategory,
	BlockedAction,
	BlockedActionStatus,
	Execution,
	ExecutionStatus,
	Goal,
	GoalStatus,
	Learning,
	Notification,
	Policy,
	now_iso,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StoreError(Exception):
	"""Raised when the store cannot be read or written."""
	pass


class InvalidTransitionError(StoreError):
	"""Raised when a terminal record would be mutated."""
	pass


class RecordNotFoundError(StoreError, LookupError):
	"""Raised when an update targets a record that does not exist."""
	pass


SCHEMA = """
	CREATE TABLE IF NOT EXISTS agents (
		id TEXT PRIMARY KEY,
		name TEXT NOT NULL,
		slug TEXT UNIQUE,
		category TEXT NOT NULL,
		description TEXT DEFAULT '',
		system_prompt TEXT NOT NULL,
		model_preference TEXT NOT NULL,
		capabilities TEXT,
		active INTEGER DEFAULT 1,
		deployment_count INTEGER DEFAULT 0,
		created_at TEXT NOT NULL
	);

	CREATE TABLE IF NOT EXISTS goals (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		description TEXT NOT NULL,
		project_id TEXT,
		status TEXT NOT NULL,
		priority INTEGER DEFAULT 5,
		decomposed_jobs TEXT,
		created_at TEXT NOT NULL,
		completed_at TEXT
	);

	CREATE TABLE IF NOT EXISTS executions (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		agent_id TEXT NOT NULL,
		goal_id TEXT,
		project_id TEXT,
		input TEXT,
		output TEXT,
		status TEXT NOT NULL,
		error TEXT,
		policies_checked TEXT,
		blocked_by TEXT,
		started_at TEXT NOT NULL,
		completed_at TEXT,
		duration_ms INTEGER,
		tokens_used INTEGER,
		cost REAL,
		metadata TEXT
	);

	CREATE TABLE IF NOT EXISTS policies (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		name TEXT NOT NULL,
		description TEXT DEFAULT '',
		type TEXT NOT NULL,
		conditions TEXT,
		action TEXT NOT NULL,
		severity TEXT NOT NULL,
		active INTEGER DEFAULT 1,
		project_id TEXT,
		expires_at TEXT,
		triggered_count INTEGER DEFAULT 0,
		created_at TEXT NOT NULL
	);

	CREATE TABLE IF NOT EXISTS blocked_actions (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		policy_id TEXT NOT NULL,
		agent_id TEXT NOT NULL,
		action TEXT,
		reason TEXT NOT NULL,
		environment TEXT NOT NULL,
		status TEXT NOT NULL,
		created_at TEXT NOT NULL,
		resolved_at TEXT
	);

	CREATE TABLE IF NOT EXISTS learnings (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		agent_id TEXT,
		type TEXT NOT NULL,
		pattern TEXT,
		insight TEXT NOT NULL,
		confidence REAL NOT NULL,
		source_execution_ids TEXT,
		applied INTEGER DEFAULT 0,
		verified INTEGER DEFAULT 0,
		created_at TEXT NOT NULL
	);

	CREATE TABLE IF NOT EXISTS notifications (
		id TEXT PRIMARY KEY,
		owner TEXT NOT NULL,
		type TEXT NOT NULL,
		title TEXT NOT NULL,
		message TEXT NOT NULL,
		link TEXT,
		read INTEGER DEFAULT 0,
		created_at TEXT NOT NULL
	);

	CREATE INDEX IF NOT EXISTS idx_agents_category ON agents(category, active);
	CREATE INDEX IF NOT EXISTS idx_goals_owner ON goals(owner);
	CREATE INDEX IF NOT EXISTS idx_executions_owner_started ON executions(owner, started_at);
	CREATE INDEX IF NOT EXISTS idx_executions_owner_agent ON executions(owner, agent_id, started_at);
	CREATE INDEX IF NOT EXISTS idx_policies_owner ON policies(owner, active);
	CREATE INDEX IF NOT EXISTS idx_blocked_owner ON blocked_actions(owner, status);
	CREATE INDEX IF NOT EXISTS idx_learnings_owner ON learnings(owner, confidence);
	CREATE INDEX IF NOT EXISTS idx_notifications_owner ON notifications(owner, read);
"""

# Columns holding JSON payloads, per table
JSON_COLUMNS = {
	"agents": {"capabilities"},
	"goals": {"decomposed_jobs"},
	"executions": {"input", "output", "policies_checked", "metadata"},
	"policies": {"conditions"},
	"blocked_actions": {"action"},
	"learnings": {"pattern", "source_execution_ids"},
	"notifications": set(),
}

SEVERITY_ORDER = (
	"CASE severity WHEN 'CRITICAL' THEN 3 WHEN 'HIGH' THEN 2 "
	"WHEN 'MEDIUM' THEN 1 ELSE 0 END"
)


def _to_row(table: str, record: BaseModel) -> dict[str, Any]:
	"""Flatten a model into column values."""
	data = record.model_dump(mode="json")
	row = {}
	for key, value in data.items():
		if key in JSON_COLUMNS[table]:
			row[key] = None if value is None else json.dumps(value)
		elif isinstance(value, bool):
			row[key] = int(value)
		else:
			row[key] = value
	return row


def _from_row(model: Type[M], table: str, row: aiosqlite.Row) -> M:
	"""Rebuild a model from a row, decoding JSON columns."""
	data = dict(row)
	for key in JSON_COLUMNS[table]:
		if data.get(key) is None:
			# Let the model default apply
			data.pop(key, None)
		else:
			data[key] = json.loads(data[key])
	return model.model_validate(data)


class Database:
	"""
	aiosqlite-backed store.

	Each operation opens its own connection, so one instance can be shared
	by concurrent orchestration runs and by different event loops.

	Usage:
		db = Database("data/dracanus.db")
		await db.init()
		await db.create_agent(agent)
	"""

	# Allowlist of goal columns that can be updated (prevents SQL injection via column names)
	ALLOWED_GOAL_UPDATES = frozenset({
		"status", "decomposed_jobs", "completed_at", "priority",
	})

	def __init__(self, db_path: str = ""):
		if not db_path:
			from .config import load_config
			db_path = str(load_config().db_path)
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._initialized = False

	async def init(self) -> None:
		"""Initialize database schema."""
		if self._initialized:
			return
		try:
			async with aiosqlite.connect(self.db_path) as db:
				await db.executescript(SCHEMA)
				await db.commit()
		except sqlite3.Error as e:
			raise StoreError(f"Could not initialize store at {self.db_path}: {e}") from e
		self._initialized = True
		logger.info(f"Store initialized: {self.db_path}")

	@asynccontextmanager
	async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
		await self.init()
		try:
			async with aiosqlite.connect(self.db_path) as db:
				db.row_factory = aiosqlite.Row
				yield db
		except sqlite3.Error as e:
			raise StoreError(str(e)) from e

	async def _insert(self, table: str, record: BaseModel) -> None:
		row = _to_row(table, record)
		columns = ", ".join(row.keys())
		placeholders = ", ".join("?" * len(row))
		async with self._connect() as db:
			await db.execute(
				f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
				list(row.values()),
			)
			await db.commit()

	async def _fetch_one(self, model: Type[M], table: str, sql: str, params: list) -> Optional[M]:
		async with self._connect() as db:
			async with db.execute(sql, params) as cursor:
				row = await cursor.fetchone()
		return _from_row(model, table, row) if row else None

	async def _fetch_all(self, model: Type[M], table: str, sql: str, params: list) -> list[M]:
		async with self._connect() as db:
			async with db.execute(sql, params) as cursor:
				rows = await cursor.fetchall()
		return [_from_row(model, table, row) for row in rows]

	# ------------------------------------------------------------------
	# Agents
	# ------------------------------------------------------------------

	async def create_agent(self, agent: Agent) -> Agent:
		"""Create a new agent definition."""
		await self._insert("agents", agent)
		return agent

	async def get_agent(self, agent_id: str) -> Optional[Agent]:
		return await self._fetch_one(
			Agent, "agents", "SELECT * FROM agents WHERE id = ?", [agent_id]
		)

	async def list_agents(
		self,
		category: Optional[AgentCategory] = None,
		active_only: bool = True,
	) -> list[Agent]:
		"""List agents, most deployed first."""
		conditions: list[str] = []
		params: list[Any] = []
		if category:
			conditions.append("category = ?")
			params.append(AgentCategory(category).value)
		if active_only:
			conditions.append("active = 1")
		where = " AND ".join(conditions) if conditions else "1=1"
		return await self._fetch_all(
			Agent, "agents",
			f"SELECT * FROM agents WHERE {where} ORDER BY deployment_count DESC, created_at ASC",
			params,
		)

	async def find_agent_by_category(self, category: AgentCategory) -> Optional[Agent]:
		"""Most-deployed active agent of a category."""
		return await self._fetch_one(
			Agent, "agents",
			"""
			SELECT * FROM agents WHERE category = ? AND active = 1
			ORDER BY deployment_count DESC, created_at ASC, rowid ASC LIMIT 1
			""",
			[AgentCategory(category).value],
		)

	async def find_any_active_agent(self) -> Optional[Agent]:
		return await self._fetch_one(
			Agent, "agents",
			"SELECT * FROM agents WHERE active = 1 ORDER BY created_at ASC, rowid ASC LIMIT 1",
			[],
		)

	async def increment_agent_deployments(self, agent_id: str) -> Optional[Agent]:
		async with self._connect() as db:
			await db.execute(
				"UPDATE agents SET deployment_count = deployment_count + 1 WHERE id = ?",
				(agent_id,),
			)
			await db.commit()
		return await self.get_agent(agent_id)

	# ------------------------------------------------------------------
	# Goals
	# ------------------------------------------------------------------

	async def create_goal(self, goal: Goal) -> Goal:
		await self._insert("goals", goal)
		return goal

	async def get_goal(self, goal_id: str) -> Optional[Goal]:
		return await self._fetch_one(
			Goal, "goals", "SELECT * FROM goals WHERE id = ?", [goal_id]
		)

	async def list_goals(self, owner: str, limit: int = 50) -> list[Goal]:
		return await self._fetch_all(
			Goal, "goals",
			"SELECT * FROM goals WHERE owner = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
			[owner, limit],
		)

	async def update_goal(self, goal_id: str, **updates) -> Goal:
		"""Update a non-terminal goal."""
		invalid_columns = set(updates.keys()) - self.ALLOWED_GOAL_UPDATES
		if invalid_columns:
			raise ValueError(f"Invalid columns for update: {invalid_columns}")

		if "status" in updates:
			updates["status"] = GoalStatus(updates["status"]).value
		if "decomposed_jobs" in updates:
			updates["decomposed_jobs"] = json.dumps([
				job.model_dump(mode="json") if isinstance(job, BaseModel) else job
				for job in updates["decomposed_jobs"]
			])

		async with self._connect() as db:
			async with db.execute("SELECT status FROM goals WHERE id = ?", (goal_id,)) as cursor:
				row = await cursor.fetchone()
			if row is None:
				raise RecordNotFoundError(f"Goal not found: {goal_id}")
			if GoalStatus(row["status"]).is_terminal:
				raise InvalidTransitionError(
					f"Goal {goal_id} is already {row['status']} and cannot change"
				)

			set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
			await db.execute(
				f"UPDATE goals SET {set_clause} WHERE id = ?",
				[*updates.values(), goal_id],
			)
			await db.commit()

		return await self.get_goal(goal_id)

	# ------------------------------------------------------------------
	# Executions
	# ------------------------------------------------------------------

	async def create_execution(self, execution: Execution) -> Execution:
		await self._insert("executions", execution)
		return execution

	async def finalize_execution(
		self,
		execution_id: str,
		status: ExecutionStatus,
		output: Any = None,
		error: Optional[str] = None,
		duration_ms: Optional[int] = None,
		tokens_used: Optional[int] = None,
		cost: Optional[float] = None,
		metadata: Optional[dict] = None,
		completed_at: Optional[str] = None,
	) -> Execution:
		"""
		Move a RUNNING execution to its terminal status.

		Raises:
			InvalidTransitionError: If the execution is already terminal
			RecordNotFoundError: If the execution does not exist
		"""
		status = ExecutionStatus(status)
		if not status.is_terminal:
			raise InvalidTransitionError("Executions can only be finalized to a terminal status")

		async with self._connect() as db:
			cursor = await db.execute(
				"""
				UPDATE executions
				SET status = ?, output = ?, error = ?, duration_ms = ?, tokens_used = ?,
					cost = ?, metadata = ?, completed_at = ?
				WHERE id = ? AND status = ?
				""",
				(
					status.value,
					None if output is None else json.dumps(output),
					error,
					duration_ms,
					tokens_used,
					cost,
					json.dumps(metadata or {}),
					completed_at or now_iso(),
					execution_id,
					ExecutionStatus.RUNNING.value,
				),
			)
			updated = cursor.rowcount
			await db.commit()

		if updated == 0:
			existing = await self.get_execution(execution_id)
			if existing is None:
				raise RecordNotFoundError(f"Execution not found: {execution_id}")
			raise InvalidTransitionError(
				f"Execution {execution_id} is already {existing.status.value}"
			)
		return await self.get_execution(execution_id)

	async def get_execution(self, execution_id: str) -> Optional[Execution]:
		return await self._fetch_one(
			Execution, "executions", "SELECT * FROM executions WHERE id = ?", [execution_id]
		)

	async def query_executions(
		self,
		owner: str,
		agent_id: Optional[str] = None,
		status: Optional[ExecutionStatus] = None,
		project_id: Optional[str] = None,
		goal_id: Optional[str] = None,
		since: Optional[str] = None,
		until: Optional[str] = None,
		limit: Optional[int] = 100,
	) -> list[Execution]:
		"""Query executions with optional filters, newest first."""
		conditions = ["owner = ?"]
		params: list[Any] = [owner]

		if agent_id:
			conditions.append("agent_id = ?")
			params.append(agent_id)
		if status:
			conditions.append("status = ?")
			params.append(ExecutionStatus(status).value)
		if project_id:
			conditions.append("project_id = ?")
			params.append(project_id)
		if goal_id:
			conditions.append("goal_id = ?")
			params.append(goal_id)
		if since:
			conditions.append("started_at >= ?")
			params.append(since)
		if until:
			conditions.append("started_at <= ?")
			params.append(until)

		sql = f"SELECT * FROM executions WHERE {' AND '.join(conditions)} ORDER BY started_at DESC, rowid DESC"
		if limit is not None:
			sql += " LIMIT ?"
			params.append(limit)
		return await self._fetch_all(Execution, "executions", sql, params)

	async def count_executions(
		self,
		owner: str,
		agent_id: Optional[str] = None,
		since: Optional[str] = None,
	) -> int:
		conditions = ["owner = ?"]
		params: list[Any] = [owner]
		if agent_id:
			conditions.append("agent_id = ?")
			params.append(agent_id)
		if since:
			conditions.append("started_at >= ?")
			params.append(since)

		async with self._connect() as db:
			async with db.execute(
				f"SELECT COUNT(*) FROM executions WHERE {' AND '.join(conditions)}", params
			) as cursor:
				row = await cursor.fetchone()
		return int(row[0])

	async def sum_execution_cost(self, owner: str, since: Optional[str] = None) -> float:
		"""Total USD cost of the owner's executions."""
		conditions = ["owner = ?", "cost IS NOT NULL"]
		params: list[Any] = [owner]
		if since:
			conditions.append("started_at >= ?")
			params.append(since)

		async with self._connect() as db:
			async with db.execute(
				f"SELECT COALESCE(SUM(cost), 0) FROM executions WHERE {' AND '.join(conditions)}",
				params,
			) as cursor:
				row = await cursor.fetchone()
		return float(row[0])

	# ------------------------------------------------------------------
	# Policies
	# ------------------------------------------------------------------

	async def create_policy(self, policy: Policy) -> Policy:
		await self._insert("policies", policy)
		return policy

	async def get_policy(self, policy_id: str) -> Optional[Policy]:
		return await self._fetch_one(
			Policy, "policies", "SELECT * FROM policies WHERE id = ?", [policy_id]
		)

	async def list_policies(self, owner: str) -> list[Policy]:
		return await self._fetch_all(
			Policy, "policies",
			"SELECT * FROM policies WHERE owner = ? ORDER BY created_at DESC, rowid DESC",
			[owner],
		)

	async def get_applicable_policies(
		self,
		owner: str,
		project_id: Optional[str],
		now: str,
	) -> list[Policy]:
		"""Active, unexpired policies for the owner: global or scoped to the project."""
		return await self._fetch_all(
			Policy, "policies",
			f"""
			SELECT * FROM policies
			WHERE owner = ?
				AND active = 1
				AND (project_id IS NULL OR project_id = ?)
				AND (expires_at IS NULL OR expires_at >= ?)
			ORDER BY {SEVERITY_ORDER} DESC, created_at ASC, rowid ASC
			""",
			[owner, project_id, now],
		)

	async def increment_policy_trigger(self, policy_id: str) -> None:
		async with self._connect() as db:
			await db.execute(
				"UPDATE policies SET triggered_count = triggered_count + 1 WHERE id = ?",
				(policy_id,),
			)
			await db.commit()

	async def set_policy_active(self, policy_id: str, active: bool) -> Optional[Policy]:
		async with self._connect() as db:
			await db.execute(
				"UPDATE policies SET active = ? WHERE id = ?",
				(int(active), policy_id),
			)
			await db.commit()
		return await self.get_policy(policy_id)

	# ------------------------------------------------------------------
	# Blocked actions
	# ------------------------------------------------------------------

	async def create_blocked_action(self, blocked: BlockedAction) -> BlockedAction:
		await self._insert("blocked_actions", blocked)
		return blocked

	async def get_blocked_action(self, blocked_id: str) -> Optional[BlockedAction]:
		return await self._fetch_one(
			BlockedAction, "blocked_actions",
			"SELECT * FROM blocked_actions WHERE id = ?", [blocked_id],
		)

	async def list_blocked_actions(
		self,
		owner: str,
		status: Optional[BlockedActionStatus] = None,
		limit: int = 100,
	) -> list[BlockedAction]:
		params: list[Any] = [owner]
		status_clause = ""
		if status:
			status_clause = "AND status = ?"
			params.append(BlockedActionStatus(status).value)
		params.append(limit)
		return await self._fetch_all(
			BlockedAction, "blocked_actions",
			f"""
			SELECT * FROM blocked_actions WHERE owner = ? {status_clause}
			ORDER BY created_at DESC, rowid DESC LIMIT ?
			""",
			params,
		)

	async def resolve_blocked_action(
		self,
		blocked_id: str,
		status: BlockedActionStatus,
	) -> BlockedAction:
		"""Approve or reject a pending blocked action."""
		status = BlockedActionStatus(status)
		if status is BlockedActionStatus.PENDING:
			raise InvalidTransitionError("A blocked action can only be resolved to APPROVED or REJECTED")

		async with self._connect() as db:
			cursor = await db.execute(
				"UPDATE blocked_actions SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
				(status.value, now_iso(), blocked_id, BlockedActionStatus.PENDING.value),
			)
			updated = cursor.rowcount
			await db.commit()

		blocked = await self.get_blocked_action(blocked_id)
		if blocked is None:
			raise RecordNotFoundError(f"Blocked action not found: {blocked_id}")
		if updated == 0:
			raise InvalidTransitionError(f"Blocked action {blocked_id} is already {blocked.status.value}")
		return blocked

	# ------------------------------------------------------------------
	# Learnings
	# ------------------------------------------------------------------

	async def create_learnings(self, learnings: list[Learning]) -> list[Learning]:
		"""Persist a batch of learnings in one transaction."""
		if not learnings:
			return []
		rows = [_to_row("learnings", learning) for learning in learnings]
		columns = list(rows[0].keys())
		placeholders = ", ".join("?" * len(columns))
		async with self._connect() as db:
			await db.executemany(
				f"INSERT INTO learnings ({', '.join(columns)}) VALUES ({placeholders})",
				[[row[c] for c in columns] for row in rows],
			)
			await db.commit()
		return learnings

	async def list_learnings(self, owner: str, limit: int = 10) -> list[Learning]:
		return await self._fetch_all(
			Learning, "learnings",
			"""
			SELECT * FROM learnings WHERE owner = ?
			ORDER BY confidence DESC, created_at DESC, rowid DESC LIMIT ?
			""",
			[owner, limit],
		)

	async def mark_learning(
		self,
		learning_id: str,
		applied: Optional[bool] = None,
		verified: Optional[bool] = None,
	) -> Optional[Learning]:
		updates = {}
		if applied is not None:
			updates["applied"] = int(applied)
		if verified is not None:
			updates["verified"] = int(verified)
		if updates:
			set_clause = ", ".join(f"{k} = ?" for k in updates)
			async with self._connect() as db:
				await db.execute(
					f"UPDATE learnings SET {set_clause} WHERE id = ?",
					[*updates.values(), learning_id],
				)
				await db.commit()
		return await self._fetch_one(
			Learning, "learnings", "SELECT * FROM learnings WHERE id = ?", [learning_id]
		)

	# ------------------------------------------------------------------
	# Notifications
	# ------------------------------------------------------------------

	async def create_notification(self, notification: Notification) -> Notification:
		await self._insert("notifications", notification)
		return notification

	async def list_notifications(
		self,
		owner: str,
		unread_only: bool = False,
		limit: int = 50,
	) -> list[Notification]:
		read_clause = "AND read = 0" if unread_only else ""
		return await self._fetch_all(
			Notification, "notifications",
			f"""
			SELECT * FROM notifications WHERE owner = ? {read_clause}
			ORDER BY created_at DESC, rowid DESC LIMIT ?
			""",
			[owner, limit],
		)

	async def mark_notification_read(self, notification_id: str) -> None:
		async with self._connect() as db:
			await db.execute(
				"UPDATE notifications SET read = 1 WHERE id = ?", (notification_id,)
			)
			await db.commit()
