"""Governance: policy enforcement and custom policy expressions."""

from .enforcer import EnforcementContext, PolicyEnforcer, Verdict
from .expressions import evaluate_expression

__all__ = [
	"EnforcementContext",
	"PolicyEnforcer",
	"Verdict",
	"evaluate_expression",
]
