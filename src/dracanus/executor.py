"""Task Executor - runs one task against one agent with backend fallback."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from .backends import (
	BackendError,
	BackendRegistry,
	CompletionRequest,
	calculate_cost,
)
from .config import DEFAULT_FALLBACK_ORDER, DEFAULT_PRICING
from .models import Agent

logger = logging.getLogger(__name__)


@dataclass
class TaskInput:
	"""What an agent is asked to do."""
	task: str
	goal: Optional[str] = None
	context: Optional[dict[str, Any]] = None
	parameters: Optional[dict[str, Any]] = None

	def to_record(self) -> dict[str, Any]:
		"""Form stored on the Execution row; replay rebuilds from it."""
		record: dict[str, Any] = {"task": self.task}
		if self.goal is not None:
			record["goal"] = self.goal
		if self.context is not None:
			record["context"] = self.context
		if self.parameters is not None:
			record["parameters"] = self.parameters
		return record

	@classmethod
	def from_record(cls, record: dict[str, Any]) -> "TaskInput":
		return cls(
			task=record.get("task") or record.get("goal") or "",
			goal=record.get("goal"),
			context=record.get("context"),
			parameters=record.get("parameters"),
		)


@dataclass
class TaskOutcome:
	"""Normalized result of one execution attempt."""
	success: bool
	result: Any = None
	error: Optional[str] = None
	backend: str = ""
	model: str = "none"
	tokens_used: Optional[int] = None
	duration_ms: int = 0
	cost: float = 0.0

	@property
	def metadata(self) -> dict[str, Any]:
		return {
			"backend": self.backend,
			"model": self.model,
			"tokens_used": self.tokens_used,
			"duration_ms": self.duration_ms,
			"cost": self.cost,
		}


class TaskExecutor:
	"""
	Stateless executor over a BackendRegistry.

	The agent's preferred backend is tried first; on failure the remaining
	backends are tried in `fallback_order`, skipping unconfigured ones.
	"""

	def __init__(
		self,
		registry: BackendRegistry,
		fallback_order: Optional[list[str]] = None,
		pricing: Optional[dict[str, float]] = None,
		temperature: float = 0.7,
		max_tokens: int = 2000,
	):
		self.registry = registry
		self.fallback_order = list(fallback_order or DEFAULT_FALLBACK_ORDER)
		self.pricing = dict(DEFAULT_PRICING if pricing is None else pricing)
		self.temperature = temperature
		self.max_tokens = max_tokens

	def build_prompt(self, agent: Agent, task_input: TaskInput) -> str:
		"""Generate the user prompt for a task."""
		prompt_parts = [f"Goal: {task_input.goal or task_input.task}", ""]

		if task_input.goal and task_input.task != task_input.goal:
			prompt_parts.extend([f"Task: {task_input.task}", ""])

		if task_input.context:
			prompt_parts.extend([
				"Context:",
				json.dumps(task_input.context, indent=2, default=str),
				"",
			])

		if task_input.parameters:
			prompt_parts.extend([
				"Parameters:",
				json.dumps(task_input.parameters, indent=2, default=str),
				"",
			])

		prompt_parts.append(
			f"Execute this task according to your capabilities: {', '.join(agent.capabilities)}"
		)
		return "\n".join(prompt_parts)

	def _candidates(self, preferred: str) -> list[str]:
		return [preferred] + [name for name in self.fallback_order if name != preferred]

	async def execute(self, agent: Agent, task_input: TaskInput) -> TaskOutcome:
		"""
		Execute a task. Never raises for backend problems.

		Returns:
			TaskOutcome; on total failure the error carries the first failure's message
		"""
		start = time.monotonic()
		request = CompletionRequest(
			system_prompt=agent.system_prompt,
			user_prompt=self.build_prompt(agent, task_input),
			temperature=self.temperature,
			max_tokens=self.max_tokens,
		)
		logger.debug(f"Executing agent {agent.id} ({len(request.user_prompt)} prompt chars)")

		first_error: Optional[str] = None
		for name in self._candidates(agent.model_preference):
			backend = self.registry.get(name)
			if backend is None:
				if name == agent.model_preference:
					first_error = f"Backend {name} not available"
				continue

			try:
				response = await backend.complete(request)
			except BackendError as e:
				logger.warning(f"Backend {name} failed for agent {agent.id}: {e}")
				if first_error is None:
					first_error = str(e)
				continue

			if name != agent.model_preference:
				logger.warning(f"Agent {agent.id} fell back from {agent.model_preference} to {name}")

			return TaskOutcome(
				success=True,
				result=response.content,
				backend=name,
				model=response.model,
				tokens_used=response.tokens_used,
				duration_ms=int((time.monotonic() - start) * 1000),
				cost=calculate_cost(self.pricing, name, response.tokens_used),
			)

		return TaskOutcome(
			success=False,
			error=f"All providers failed. Original error: {first_error or 'no backend configured'}",
			backend=agent.model_preference,
			model="none",
			duration_ms=int((time.monotonic() - start) * 1000),
		)
