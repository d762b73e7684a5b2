"""
Restricted expression interpreter for CUSTOM policies.

Expressions are parsed with `ast` and walked over a small whitelist of node
types, plus numeric `+ - * /`. Names resolve only to the supplied variables and a few helper
functions; attribute access reads mapping keys and never touches Python
attributes. Anything outside the grammar evaluates to False.

Example:
	environment == 'production' and contains(lower(action.task), 'wire transfer')
"""

import ast
import json
import logging
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)


def _contains(value: Any, needle: Any) -> bool:
	if value is None:
		return False
	if isinstance(value, (list, tuple, set)):
		return needle in value or any(str(needle) in str(item) for item in value)
	if isinstance(value, dict):
		value = json.dumps(value, default=str)
	return str(needle) in str(value)


def _lower(value: Any) -> str:
	if isinstance(value, (dict, list)):
		value = json.dumps(value, default=str)
	return str(value).lower() if value is not None else ""


FUNCTIONS: dict[str, Callable[..., Any]] = {
	"contains": _contains,
	"lower": _lower,
	"len": len,
}

CONSTANTS: dict[str, Any] = {"True": True, "False": False, "None": None}

OPERATORS: dict[type, Callable[[Any, Any], Any]] = {
	ast.Add: lambda a, b: a + b,
	ast.Sub: lambda a, b: a - b,
	ast.Mult: lambda a, b: a * b,
	ast.Div: lambda a, b: a / b,
}

COMPARATORS: dict[type, Callable[[Any, Any], bool]] = {
	ast.Eq: lambda a, b: a == b,
	ast.NotEq: lambda a, b: a != b,
	ast.Gt: lambda a, b: a > b,
	ast.GtE: lambda a, b: a >= b,
	ast.Lt: lambda a, b: a < b,
	ast.LtE: lambda a, b: a <= b,
	ast.In: lambda a, b: a in b,
	ast.NotIn: lambda a, b: a not in b,
	ast.Is: lambda a, b: a is b,
	ast.IsNot: lambda a, b: a is not b,
}


def evaluate_expression(expression: str, variables: Mapping[str, Any]) -> bool:
	"""
	Evaluate a boolean policy expression.

	Args:
		expression: Source text, e.g. "agent_id == 'abc' and environment == 'production'"
		variables: Names visible to the expression

	Returns:
		The truth value, or False when the expression is empty, malformed or
		uses anything outside the allowed grammar
	"""
	expression = (expression or "").strip()
	if not expression:
		return False

	try:
		tree = ast.parse(expression, mode="eval")
	except SyntaxError:
		logger.debug(f"Unparseable policy expression: {expression!r}")
		return False

	def _eval(node: ast.AST) -> Any:
		if isinstance(node, ast.BoolOp):
			if isinstance(node.op, ast.And):
				return all(_eval(value) for value in node.values)
			if isinstance(node.op, ast.Or):
				return any(_eval(value) for value in node.values)
			raise ValueError
		if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
			return not bool(_eval(node.operand))
		if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
			return -_eval(node.operand)
		if isinstance(node, ast.BinOp):
			operator = OPERATORS.get(type(node.op))
			if operator is None:
				raise ValueError
			left, right = _eval(node.left), _eval(node.right)
			# Arithmetic is numeric only
			if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (left, right)):
				raise ValueError
			return operator(left, right)
		if isinstance(node, ast.Compare):
			left = _eval(node.left)
			for op, comparator in zip(node.ops, node.comparators):
				compare = COMPARATORS.get(type(op))
				if compare is None:
					raise ValueError
				right = _eval(comparator)
				if not compare(left, right):
					return False
				left = right
			return True
		if isinstance(node, ast.Call):
			if not isinstance(node.func, ast.Name) or node.keywords:
				raise ValueError
			func = FUNCTIONS.get(node.func.id)
			if func is None:
				raise ValueError
			return func(*[_eval(arg) for arg in node.args])
		if isinstance(node, ast.Attribute):
			# Dotted access reads mapping keys only
			value = _eval(node.value)
			if not isinstance(value, Mapping) or node.attr.startswith("_"):
				raise ValueError
			return value.get(node.attr)
		if isinstance(node, ast.Subscript):
			value = _eval(node.value)
			if not isinstance(value, (Mapping, list, tuple, str)):
				raise ValueError
			return value[_eval(node.slice)]
		if isinstance(node, ast.Name):
			if node.id in CONSTANTS:
				return CONSTANTS[node.id]
			if node.id in variables:
				return variables[node.id]
			raise ValueError
		if isinstance(node, ast.Constant):
			return node.value
		if isinstance(node, ast.List):
			return [_eval(elt) for elt in node.elts]
		if isinstance(node, ast.Tuple):
			return tuple(_eval(elt) for elt in node.elts)
		if isinstance(node, ast.Dict):
			return {_eval(k): _eval(v) for k, v in zip(node.keys, node.values)}
		raise ValueError

	try:
		return bool(_eval(tree.body))
	except (ValueError, KeyError, IndexError, TypeError, ZeroDivisionError):
		logger.debug(f"Policy expression rejected or failed: {expression!r}")
		return False
