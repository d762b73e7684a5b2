"""Tests for the restricted CUSTOM policy expression interpreter."""

import pytest

from dracanus.policies.expressions import evaluate_expression

VARIABLES = {
	"owner": "u1",
	"agent_id": "a1",
	"project_id": None,
	"environment": "production",
	"action": {"task": "Wire transfer to vendor", "goal": "Pay invoices"},
	"hour": 23,
}


@pytest.mark.parametrize("expression, expected", [
	("environment == 'production'", True),
	("environment == 'sandbox'", False),
	("hour >= 22 or hour < 6", True),
	("not hour < 22", True),
	("project_id is None", True),
	("agent_id in ['a1', 'a2']", True),
	("contains(lower(action.task), 'wire transfer')", True),
	("contains(action, 'invoices')", True),
	("action['goal'] == 'Pay invoices'", True),
	("len(action.task) > 100", False),
	("1 < hour < 24", True),
	("hour + 1 == 24", True),
	("hour - 3 == 20 and hour / 2 > 11", True),
	("hour * 2 > 50", False),
	("-hour < 0", True),
])
def test_evaluates_allowed_grammar(expression, expected):
	assert evaluate_expression(expression, VARIABLES) is expected


@pytest.mark.parametrize("expression", [
	"",
	"   ",
	"hour >=",
	"__import__('os').system('true')",
	"action.__class__",
	"owner.upper() == 'U1'",
	"unknown_name == 1",
	"[x for x in [1]]",
	"lambda: True",
	"open('/etc/passwd')",
	"hour ** 2 > 0",
	"hour / 0 > 1",
	"owner * 3 == 'u1u1u1'",
	"action.task + 'x' == ''",
])
def test_rejects_everything_else(expression):
	assert evaluate_expression(expression, VARIABLES) is False


def test_missing_key_is_none():
	assert evaluate_expression("action.missing is None", VARIABLES) is True


def test_runtime_type_error_is_false():
	assert evaluate_expression("hour > 'ten'", VARIABLES) is False
