"""JSON web API for dracanus."""

from __future__ import annotations

from typing import Optional

from ..services import Services


def create_app(services: Optional[Services] = None) -> object:
	"""Create the Starlette ASGI application."""
	from .app import build_app

	return build_app(services or Services.from_config())


def run_web_server(services: Services, host: str = "127.0.0.1", port: int = 8420) -> None:
	"""Run the API server with uvicorn."""
	import uvicorn

	app = create_app(services)
	print(f"API running at http://{host}:{port}/api")
	print("Press Ctrl+C to stop.")
	uvicorn.run(app, host=host, port=port, log_level="warning")
