"""Shared utilities for visualizer views."""

import json
from datetime import datetime
from typing import Any, Optional

from ..models import ExecutionStatus

STATUS_STYLES = {
	ExecutionStatus.RUNNING: "cyan",
	ExecutionStatus.COMPLETED: "green",
	ExecutionStatus.FAILED: "red",
	ExecutionStatus.BLOCKED: "yellow",
}

RUN_STATUS_STYLES = {
	"completed": "green",
	"partial": "yellow",
	"blocked": "yellow",
	"failed": "red",
}


def format_duration_ms(duration_ms: Optional[float]) -> str:
	"""Format milliseconds for display. e.g. '45ms', '1.2s', '2m 3s'."""
	if duration_ms is None:
		return "-"
	if duration_ms < 1000:
		return f"{duration_ms:.0f}ms"
	seconds = duration_ms / 1000
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	return f"{minutes}m {seconds % 60:.0f}s"


def format_timestamp(iso_str: Optional[str]) -> str:
	"""Format an ISO timestamp as relative time (e.g. '2m ago') or absolute."""
	if not iso_str:
		return "-"
	try:
		total_secs = int((datetime.now() - datetime.fromisoformat(iso_str)).total_seconds())
	except (ValueError, TypeError):
		return str(iso_str)[:19]

	if total_secs < 0:
		return iso_str[:19]
	if total_secs < 60:
		return f"{total_secs}s ago"
	if total_secs < 3600:
		return f"{total_secs // 60}m ago"
	if total_secs < 86400:
		return f"{total_secs // 3600}h ago"
	return f"{total_secs // 86400}d ago"


def format_cost(cost: Optional[float]) -> str:
	if cost is None:
		return "-"
	return f"${cost:.4f}" if cost < 0.01 and cost > 0 else f"${cost:.2f}"


def truncate(value: Any, max_len: int = 60) -> str:
	"""Shorten a value for table display."""
	if value is None:
		return ""
	text = value if isinstance(value, str) else json.dumps(value, default=str)
	text = " ".join(text.split())
	if len(text) <= max_len:
		return text
	return text[:max_len - 3] + "..."


def styled_status(status: ExecutionStatus) -> str:
	style = STATUS_STYLES.get(status, "white")
	return f"[{style}]{status.value}[/{style}]"


def rate_style(rate: float) -> str:
	return "green" if rate >= 90 else ("yellow" if rate >= 70 else "red")
