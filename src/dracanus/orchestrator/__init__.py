"""
Orchestration: goal decomposition, routing, sequencing and execution.
"""

from .decomposer import Decomposition, DecompositionError, GoalDecomposer, parse_tasks
from .engine import (
	JobResult,
	OrchestrationRequest,
	OrchestrationResult,
	Orchestrator,
	determine_status,
	generate_summary,
)

__all__ = [
	"Decomposition",
	"DecompositionError",
	"GoalDecomposer",
	"parse_tasks",
	"JobResult",
	"OrchestrationRequest",
	"OrchestrationResult",
	"Orchestrator",
	"determine_status",
	"generate_summary",
]
