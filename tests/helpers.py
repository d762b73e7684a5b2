"""Shared test fixtures and helpers for dracanus tests."""

from pathlib import Path
from typing import Any, Callable, Optional

from dracanus.backends import (
	BackendError,
	BackendRegistry,
	CompletionBackend,
	CompletionRequest,
	CompletionResponse,
)
from dracanus.config import Config
from dracanus.models import Agent, AgentCategory, Execution, ExecutionStatus, Policy, PolicyAction, PolicyType
from dracanus.services import Services


class FakeBackend(CompletionBackend):
	"""Deterministic backend: queued responses first, then a fixed reply."""

	def __init__(self, content: str = "done", tokens_used: Optional[int] = 100, responses: Optional[list[str]] = None):
		super().__init__("http://fake", "fake-model", api_key="fake")
		self.content = content
		self.tokens_used = tokens_used
		self.responses = list(responses or [])
		self.requests: list[CompletionRequest] = []

	def _payload(self, request: CompletionRequest) -> dict[str, Any]:
		return {}

	def _parse(self, data: dict[str, Any]) -> CompletionResponse:
		return CompletionResponse(content=self.content, model=self.model)

	async def complete(self, request: CompletionRequest) -> CompletionResponse:
		self.requests.append(request)
		content = self.responses.pop(0) if self.responses else self.content
		return CompletionResponse(content=content, model=self.model, tokens_used=self.tokens_used)


class FailingBackend(FakeBackend):
	"""Backend whose every call fails like a transport error."""

	def __init__(self, message: str = "connection refused"):
		super().__init__()
		self.message = message

	async def complete(self, request: CompletionRequest) -> CompletionResponse:
		self.requests.append(request)
		raise BackendError(self.message)


class FakeHTTPResponse:
	"""Stands in for an aiohttp response inside `session.post(...)`."""

	def __init__(self, status: int = 200, payload: Any = None, error: Optional[Exception] = None):
		self.status = status
		self.reason = "OK" if status < 300 else "Error"
		self.payload = payload
		self.error = error

	async def json(self) -> Any:
		if self.error is not None:
			raise self.error
		return self.payload

	async def __aenter__(self):
		return self

	async def __aexit__(self, *exc_info):
		return False


def fake_client_session(response: FakeHTTPResponse) -> Callable:
	"""Factory to patch over aiohttp.ClientSession; every post returns `response`."""

	class FakeSession:
		def __init__(self, **kwargs):
			pass

		def post(self, url, **kwargs):
			return response

		async def __aenter__(self):
			return self

		async def __aexit__(self, *exc_info):
			return False

	return FakeSession


class RaisingBackend(FakeBackend):
	"""Backend that raises something other than BackendError."""

	def __init__(self, error: Exception):
		super().__init__()
		self.error = error

	async def complete(self, request: CompletionRequest) -> CompletionResponse:
		self.requests.append(request)
		raise self.error


def make_registry(**backends: CompletionBackend) -> BackendRegistry:
	"""Registry keyed by backend name; underscores become dashes (plus_coder -> plus-coder)."""
	return BackendRegistry({name.replace("_", "-"): backend for name, backend in backends.items()})


def make_config(tmp_path: Path) -> Config:
	return Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")


def make_services(
	tmp_path: Path,
	registry: Optional[BackendRegistry] = None,
	**overrides: Any,
) -> Services:
	"""Services over a tmp-path store and a fake registry."""
	config = make_config(tmp_path)
	config.fallback_order = ["ollama"]
	for key, value in overrides.items():
		setattr(config, key, value)
	return Services.from_config(config, registry=registry or make_registry(ollama=FakeBackend()))


def make_agent(
	category: AgentCategory = AgentCategory.EMAIL,
	name: Optional[str] = None,
	model_preference: str = "ollama",
	**kwargs: Any,
) -> Agent:
	return Agent(
		name=name or f"{category.value.title()} Agent",
		category=category,
		system_prompt=f"You handle {category.value.lower()} tasks.",
		model_preference=model_preference,
		capabilities=kwargs.pop("capabilities", [category.value.lower()]),
		**kwargs,
	)


def make_policy(
	type: PolicyType,
	conditions: dict,
	owner: str = "u1",
	action: PolicyAction = PolicyAction.BLOCK,
	**kwargs: Any,
) -> Policy:
	return Policy(
		owner=owner,
		name=kwargs.pop("name", f"{type.value.lower()} policy"),
		type=type,
		conditions=conditions,
		action=action,
		**kwargs,
	)


def make_execution(
	agent_id: str,
	owner: str = "u1",
	status: ExecutionStatus = ExecutionStatus.COMPLETED,
	duration_ms: Optional[int] = 100,
	**kwargs: Any,
) -> Execution:
	return Execution(
		owner=owner,
		agent_id=agent_id,
		status=status,
		duration_ms=duration_ms,
		input=kwargs.pop("input", {"task": "do something"}),
		output=kwargs.pop("output", "done" if status is ExecutionStatus.COMPLETED else None),
		**kwargs,
	)


def capture_tools(services: Services, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		services: Services passed to the registration function
		register_fn: The registration function (e.g., register_policy_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), services)
	return captured
