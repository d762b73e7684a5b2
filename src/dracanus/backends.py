"""
Completion backends - uniform async interface over text-generation providers.

Features:
- Ollama (free, local), Plus Coder (free tier) and OpenAI (metered)
- aiohttp transport with a per-request timeout
- Registry that only hands out configured backends
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from .config import Config

logger = logging.getLogger(__name__)


class BackendError(Exception):
	"""Transient backend failure: network error or non-2xx response."""
	pass


class BackendNotConfiguredError(BackendError):
	"""The backend is missing credentials or is not registered."""
	pass


@dataclass
class CompletionRequest:
	system_prompt: str
	user_prompt: str
	temperature: float = 0.7
	max_tokens: int = 2000


@dataclass
class CompletionResponse:
	content: str
	model: str
	tokens_used: Optional[int] = None


class CompletionBackend(ABC):
	"""One text-generation provider."""

	name: str = ""

	def __init__(self, url: str, model: str, api_key: str = "", timeout: float = 120.0):
		self.url = url
		self.model = model
		self.api_key = api_key
		self.timeout = timeout

	def is_configured(self) -> bool:
		return bool(self.api_key)

	@abstractmethod
	def _payload(self, request: CompletionRequest) -> dict[str, Any]:
		"""Build the provider-specific request body."""

	@abstractmethod
	def _parse(self, data: dict[str, Any]) -> CompletionResponse:
		"""Turn the provider-specific response body into a CompletionResponse."""

	def _endpoint(self) -> str:
		return self.url

	def _headers(self) -> dict[str, str]:
		headers = {"Content-Type": "application/json"}
		if self.api_key:
			headers["Authorization"] = f"Bearer {self.api_key}"
		return headers

	async def complete(self, request: CompletionRequest) -> CompletionResponse:
		"""
		Run one completion.

		Raises:
			BackendNotConfiguredError: If credentials are missing
			BackendError: On transport failure, non-2xx status or a non-JSON body
		"""
		if not self.is_configured():
			raise BackendNotConfiguredError(f"{self.name} API key not configured")

		try:
			async with aiohttp.ClientSession(
				timeout=aiohttp.ClientTimeout(total=self.timeout),
			) as session:
				async with session.post(
					self._endpoint(),
					json=self._payload(request),
					headers=self._headers(),
				) as response:
					if response.status >= 300:
						raise BackendError(f"{self.name} API error: {response.status} {response.reason}")
					data = await response.json()
		except aiohttp.ClientError as e:
			raise BackendError(f"{self.name} request failed: {e}") from e
		except TimeoutError as e:
			raise BackendError(f"{self.name} request timed out after {self.timeout}s") from e
		except ValueError as e:
			raise BackendError(f"{self.name} returned invalid JSON: {e}") from e

		try:
			return self._parse(data)
		except (KeyError, IndexError, TypeError) as e:
			raise BackendError(f"{self.name} returned an unexpected payload: {e}") from e


class OllamaBackend(CompletionBackend):
	name = "ollama"

	def is_configured(self) -> bool:
		# Local server, no credentials
		return bool(self.url)

	def _endpoint(self) -> str:
		return f"{self.url.rstrip('/')}/api/generate"

	def _payload(self, request: CompletionRequest) -> dict[str, Any]:
		return {
			"model": self.model,
			"prompt": f"{request.system_prompt}\n\nUser: {request.user_prompt}",
			"stream": False,
			"options": {
				"temperature": request.temperature,
				"num_predict": request.max_tokens,
			},
		}

	def _parse(self, data: dict[str, Any]) -> CompletionResponse:
		return CompletionResponse(
			content=data["response"],
			model=data.get("model") or self.model,
			tokens_used=data.get("eval_count"),
		)


class PlusCoderBackend(CompletionBackend):
	name = "plus-coder"

	def _payload(self, request: CompletionRequest) -> dict[str, Any]:
		return {
			"system": request.system_prompt,
			"prompt": request.user_prompt,
			"temperature": request.temperature,
			"max_tokens": request.max_tokens,
		}

	def _parse(self, data: dict[str, Any]) -> CompletionResponse:
		return CompletionResponse(
			content=data["completion"],
			model=data.get("model") or self.model,
			tokens_used=data.get("tokens_used"),
		)


class OpenAIBackend(CompletionBackend):
	name = "openai"

	def _payload(self, request: CompletionRequest) -> dict[str, Any]:
		return {
			"model": self.model,
			"messages": [
				{"role": "system", "content": request.system_prompt},
				{"role": "user", "content": request.user_prompt},
			],
			"temperature": request.temperature,
			"max_tokens": request.max_tokens,
		}

	def _parse(self, data: dict[str, Any]) -> CompletionResponse:
		usage = data.get("usage") or {}
		return CompletionResponse(
			content=data["choices"][0]["message"]["content"],
			model=data.get("model") or self.model,
			tokens_used=usage.get("total_tokens"),
		)


class BackendRegistry:
	"""Named completion backends, keyed by identifier."""

	def __init__(self, backends: Optional[dict[str, CompletionBackend]] = None):
		self._backends: dict[str, CompletionBackend] = dict(backends or {})

	@classmethod
	def from_config(cls, config: Config) -> "BackendRegistry":
		return cls({
			"ollama": OllamaBackend(
				config.ollama_url, config.ollama_model, timeout=config.request_timeout,
			),
			"plus-coder": PlusCoderBackend(
				config.plus_coder_url, "plus-coder-v1",
				api_key=config.plus_coder_api_key, timeout=config.request_timeout,
			),
			"openai": OpenAIBackend(
				config.openai_url, config.openai_model,
				api_key=config.openai_api_key, timeout=config.request_timeout,
			),
		})

	def register(self, name: str, backend: CompletionBackend) -> None:
		self._backends[name] = backend

	def get(self, name: str) -> Optional[CompletionBackend]:
		"""Return the named backend if it is registered and configured."""
		backend = self._backends.get(name)
		if backend is None or not backend.is_configured():
			return None
		return backend

	def require(self, name: str) -> CompletionBackend:
		backend = self.get(name)
		if backend is None:
			raise BackendNotConfiguredError(f"Backend {name} not available")
		return backend

	def status(self) -> dict[str, bool]:
		"""Configured flag per registered backend."""
		return {name: backend.is_configured() for name, backend in self._backends.items()}


def calculate_cost(pricing: dict[str, float], backend: str, tokens: Optional[int]) -> float:
	"""USD cost of a completion: tokens / 1000 * per-1k price. Unknown backends are free."""
	return (tokens or 0) / 1000 * pricing.get(backend, 0.0)
