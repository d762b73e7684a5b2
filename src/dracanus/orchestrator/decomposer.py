"""
Goal decomposition - splits a goal into category-routed jobs.

A completion backend (the free local one by default) is asked for a JSON task
list over the fixed category taxonomy. Each category resolves to the most
deployed active agent of that category. When the backend is unavailable, the
output is malformed, or nothing in it is routable, a keyword router takes over.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..backends import BackendError, BackendRegistry, CompletionRequest
from ..database import Database, StoreError
from ..models import Agent, AgentCategory, DecomposedJob

logger = logging.getLogger(__name__)


class DecompositionError(Exception):
	"""Decomposition output was unavailable or malformed."""
	pass


CATEGORY_DESCRIPTIONS = {
	AgentCategory.EMAIL: "Send emails, draft email content, manage inbox",
	AgentCategory.CALENDAR: "Schedule meetings, check availability, manage events",
	AgentCategory.RESEARCH: "Web research, data gathering, competitor analysis",
	AgentCategory.DOCUMENT: "Create/edit documents, generate reports, format content",
	AgentCategory.DATA: "Analyze data, create visualizations, extract insights",
	AgentCategory.CODE: "Review code, generate code, debug issues",
	AgentCategory.SUPPORT: "Customer support, ticket handling, FAQ responses",
	AgentCategory.WORKFLOW: "Automate workflows, integrate systems, trigger actions",
}

# Scanned in taxonomy order; one job per matched category
KEYWORDS = {
	AgentCategory.EMAIL: ("email", "send", "inbox"),
	AgentCategory.CALENDAR: ("calendar", "meeting", "schedule"),
	AgentCategory.RESEARCH: ("research", "find", "investigate"),
	AgentCategory.DOCUMENT: ("document", "write", "create", "report"),
	AgentCategory.DATA: ("analyze", "analyse", "dataset", "spreadsheet"),
	AgentCategory.CODE: ("code", "debug", "refactor"),
	AgentCategory.SUPPORT: ("support", "ticket", "customer"),
	AgentCategory.WORKFLOW: ("workflow", "automate", "integration"),
}

DEFAULT_PRIORITY = 5

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class Decomposition:
	jobs: list[DecomposedJob]
	source: str  # "backend" or "keywords"


def parse_tasks(content: str) -> list[dict[str, Any]]:
	"""
	Parse a backend's task list.

	Accepts a bare JSON array, an object wrapping it under "tasks", and either
	form inside a markdown code fence.

	Raises:
		DecompositionError: If no task list can be recovered
	"""
	text = (content or "").strip()
	fenced = _FENCE_RE.search(text)
	if fenced:
		text = fenced.group(1).strip()

	try:
		data = json.loads(text)
	except json.JSONDecodeError as e:
		raise DecompositionError(f"Decomposition output is not JSON: {e}") from e

	if isinstance(data, dict):
		data = data.get("tasks")
	if not isinstance(data, list):
		raise DecompositionError("Decomposition output is not a task list")
	return [item for item in data if isinstance(item, dict)]


def _priority(value: Any) -> int:
	try:
		priority = int(value)
	except (TypeError, ValueError):
		return DEFAULT_PRIORITY
	if priority < 1:
		return DEFAULT_PRIORITY
	return min(10, priority)


def _dependencies(value: Any) -> list[int]:
	if not isinstance(value, list):
		return []
	return [int(dep) for dep in value if isinstance(dep, int) or (isinstance(dep, str) and dep.isdigit())]


class GoalDecomposer:
	"""
	Usage:
		decomposer = GoalDecomposer(db, registry)
		decomposition = await decomposer.decompose("Research competitors and write a report")
	"""

	def __init__(
		self,
		db: Database,
		registry: BackendRegistry,
		backend_name: str = "ollama",
		max_tokens: int = 2000,
	):
		self.db = db
		self.registry = registry
		self.backend_name = backend_name
		self.max_tokens = max_tokens

	def build_prompt(self, goal: str, context: Optional[dict] = None) -> str:
		prompt_parts = [
			"Break down this goal into specific, actionable tasks that can be handled by specialized AI agents.",
			"",
			f"Goal: {goal}",
		]
		if context:
			prompt_parts.append(f"Context: {json.dumps(context, default=str)}")

		prompt_parts.extend(["", "Available agent types:"])
		prompt_parts.extend(
			f"- {category.value}: {description}"
			for category, description in CATEGORY_DESCRIPTIONS.items()
		)

		prompt_parts.extend([
			"",
			"Return a JSON array of tasks, each with:",
			"- agentType: which agent category should handle this",
			"- task: specific task description",
			"- priority: 1-10 (10 = highest)",
			"- dependencies: array of task indices that must complete first (if any)",
			"",
			"Example format:",
			"[",
			'  {"agentType": "RESEARCH", "task": "Research competitor pricing", "priority": 10, "dependencies": []},',
			'  {"agentType": "DOCUMENT", "task": "Create pricing comparison report", "priority": 8, "dependencies": [0]}',
			"]",
		])
		return "\n".join(prompt_parts)

	async def decompose(self, goal: str, context: Optional[dict] = None) -> Decomposition:
		"""Decompose a goal. Never raises for backend or parsing problems."""
		try:
			jobs = await self._decompose_with_backend(goal, context)
			if jobs:
				return Decomposition(jobs=jobs, source="backend")
			logger.info("Decomposition produced no routable jobs, using keyword routing")
		except StoreError:
			raise
		except DecompositionError as e:
			logger.warning(f"Decomposition failed, using keyword routing: {e}")
		except Exception as e:
			logger.warning(f"Decomposition backend raised {type(e).__name__}, using keyword routing: {e}")

		return Decomposition(jobs=await self.keyword_decomposition(goal), source="keywords")

	async def _decompose_with_backend(self, goal: str, context: Optional[dict]) -> list[DecomposedJob]:
		backend = self.registry.get(self.backend_name)
		if backend is None:
			raise DecompositionError(f"Decomposition backend {self.backend_name} not available")

		try:
			response = await backend.complete(CompletionRequest(
				system_prompt="You are a planning assistant. Respond with JSON only.",
				user_prompt=self.build_prompt(goal, context),
				temperature=0.2,
				max_tokens=self.max_tokens,
			))
		except BackendError as e:
			raise DecompositionError(str(e)) from e

		tasks = parse_tasks(response.content)
		logger.debug(f"Backend proposed {len(tasks)} tasks")

		agents: dict[AgentCategory, Optional[Agent]] = {}
		jobs: list[DecomposedJob] = []
		# task position in the backend's list -> position in jobs
		job_index: dict[int, int] = {}
		for position, task in enumerate(tasks):
			try:
				category = AgentCategory(str(task.get("agentType", "")).upper())
			except ValueError:
				logger.debug(f"Skipping task with unknown category: {task.get('agentType')}")
				continue
			if not task.get("task"):
				continue

			if category not in agents:
				agents[category] = await self.db.find_agent_by_category(category)
			agent = agents[category]
			if agent is None:
				continue

			job_index[position] = len(jobs)
			jobs.append(DecomposedJob(
				agent_id=agent.id,
				task=str(task["task"]),
				priority=_priority(task.get("priority", DEFAULT_PRIORITY)),
				dependencies=_dependencies(task.get("dependencies")),
				category=category,
			))

		# Dependencies on skipped tasks are dropped
		for job in jobs:
			job.dependencies = [job_index[dep] for dep in job.dependencies if dep in job_index]
		return jobs

	async def keyword_decomposition(self, goal: str) -> list[DecomposedJob]:
		"""Route by keywords; last resort is any active agent."""
		goal_lower = goal.lower()
		jobs: list[DecomposedJob] = []

		for category, words in KEYWORDS.items():
			if not any(word in goal_lower for word in words):
				continue
			agent = await self.db.find_agent_by_category(category)
			if agent:
				jobs.append(DecomposedJob(agent_id=agent.id, task=goal, category=category))

		if not jobs:
			agent = await self.db.find_any_active_agent()
			if agent:
				jobs.append(DecomposedJob(agent_id=agent.id, task=goal, category=agent.category))

		return jobs
