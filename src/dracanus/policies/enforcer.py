"""
Policy Enforcer - admission control evaluated before every job.

Applicable policies are evaluated in severity order (critical first, then
oldest first). The first violation wins: its trigger counter is bumped, a
BlockedAction is logged for BLOCK / REQUIRE_APPROVAL, and production denials
raise an in-app notification. All writes land before the verdict returns.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..database import Database
from ..models import (
	BlockedAction,
	Environment,
	Notification,
	Policy,
	PolicyAction,
	PolicyType,
	now_iso,
)
from .expressions import evaluate_expression

logger = logging.getLogger(__name__)

WINDOWS = {
	"hour": timedelta(hours=1),
	"day": timedelta(days=1),
	"week": timedelta(days=7),
	"month": timedelta(days=30),
}
DEFAULT_WINDOW = "day"


@dataclass
class EnforcementContext:
	"""The action about to run, and who is running it."""
	owner: str
	agent_id: str
	action: Any
	project_id: Optional[str] = None
	environment: Environment = Environment.PRODUCTION


@dataclass
class Verdict:
	"""Result of one enforcement call."""
	allowed: bool
	action: Optional[PolicyAction] = None
	policy: Optional[Policy] = None
	reason: Optional[str] = None
	requires_approval: bool = False
	policies_checked: list[str] = field(default_factory=list)
	blocked_action_id: Optional[str] = None

	@property
	def is_warning(self) -> bool:
		return self.action is PolicyAction.WARN

	def to_dict(self) -> dict:
		return {
			"allowed": self.allowed,
			"action": self.action.value if self.action else None,
			"policy_id": self.policy.id if self.policy else None,
			"policy_name": self.policy.name if self.policy else None,
			"reason": self.reason,
			"requires_approval": self.requires_approval,
			"policies_checked": self.policies_checked,
			"blocked_action_id": self.blocked_action_id,
		}


def serialize_action(action: Any) -> str:
	"""Compact lower-cased JSON used for substring matching."""
	return json.dumps(action, separators=(",", ":"), default=str, ensure_ascii=False).lower()


def window_start(now: datetime, window: Optional[str]) -> datetime:
	return now - WINDOWS.get(window or DEFAULT_WINDOW, WINDOWS[DEFAULT_WINDOW])


class PolicyEnforcer:
	"""
	Evaluates an action against the owner's active policies.

	Usage:
		enforcer = PolicyEnforcer(db)
		verdict = await enforcer.enforce(EnforcementContext(owner, agent.id, {"task": "..."}))
	"""

	def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
		self.db = db
		self.clock = clock
		self._handlers: dict[PolicyType, Callable[[dict, EnforcementContext, datetime], Awaitable[Optional[str]]]] = {
			PolicyType.RATE_LIMIT: self._check_rate_limit,
			PolicyType.CONTENT_FILTER: self._check_content_filter,
			PolicyType.APPROVAL_REQUIRED: self._check_approval_required,
			PolicyType.BUDGET_LIMIT: self._check_budget_limit,
			PolicyType.TIME_WINDOW: self._check_time_window,
			PolicyType.CUSTOM: self._check_custom,
		}

	async def enforce(self, context: EnforcementContext) -> Verdict:
		"""
		Decide whether an action may run.

		Returns:
			Verdict with allowed=True when nothing is violated or the violated
			policy only warns; allowed=False for BLOCK and REQUIRE_APPROVAL
		"""
		now = self.clock()
		policies = await self.db.get_applicable_policies(
			context.owner, context.project_id, now_iso(now),
		)

		checked: list[str] = []
		for policy in policies:
			checked.append(policy.id)
			reason = await self._check_policy(policy, context, now)
			if reason is None:
				continue
			return await self._record_violation(policy, context, reason, checked)

		return Verdict(allowed=True, policies_checked=checked)

	async def _check_policy(
		self,
		policy: Policy,
		context: EnforcementContext,
		now: datetime,
	) -> Optional[str]:
		handler = self._handlers.get(policy.type)
		if handler is None:
			return None
		try:
			return await handler(policy.conditions, context, now)
		except (TypeError, ValueError) as e:
			logger.warning(f"Policy {policy.id} has malformed conditions, skipping: {e}")
			return None

	async def _record_violation(
		self,
		policy: Policy,
		context: EnforcementContext,
		reason: str,
		checked: list[str],
	) -> Verdict:
		await self.db.increment_policy_trigger(policy.id)
		policy = policy.model_copy(update={"triggered_count": policy.triggered_count + 1})

		blocked_id = None
		if policy.action in (PolicyAction.BLOCK, PolicyAction.REQUIRE_APPROVAL):
			blocked = await self.db.create_blocked_action(BlockedAction(
				owner=context.owner,
				policy_id=policy.id,
				agent_id=context.agent_id,
				action=context.action,
				reason=reason,
				environment=Environment(context.environment),
			))
			blocked_id = blocked.id

			if Environment(context.environment) is Environment.PRODUCTION:
				await self.db.create_notification(Notification(
					owner=context.owner,
					type="blocked_action",
					title="Action Blocked by Policy",
					message=f'Policy "{policy.name}" blocked an action: {reason}',
					link="/dashboard/policies/blocked",
				))

		logger.info(
			f"Policy {policy.name} ({policy.type.value}/{policy.action.value}) "
			f"violated by agent {context.agent_id}: {reason}"
		)
		return Verdict(
			allowed=policy.action is PolicyAction.WARN,
			action=policy.action,
			policy=policy,
			reason=reason,
			requires_approval=policy.action is PolicyAction.REQUIRE_APPROVAL,
			policies_checked=checked,
			blocked_action_id=blocked_id,
		)

	# ------------------------------------------------------------------
	# Handlers: return a violation reason or None
	# ------------------------------------------------------------------

	async def _check_rate_limit(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		if conditions.get("limit") is None:
			return None
		limit = int(conditions["limit"])
		window = conditions.get("window") or DEFAULT_WINDOW

		count = await self.db.count_executions(
			context.owner,
			agent_id=context.agent_id,
			since=now_iso(window_start(now, window)),
		)
		if count >= limit:
			return f"Rate limit exceeded: {count}/{limit} executions in the last {window}"
		return None

	async def _check_content_filter(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		action_str = serialize_action(context.action)

		for term in conditions.get("blacklist") or []:
			if str(term).lower() in action_str:
				return f'Content contains blacklisted term: "{term}"'

		whitelist = conditions.get("whitelist") or []
		if whitelist and not any(str(term).lower() in action_str for term in whitelist):
			return "Content does not contain any whitelisted terms"
		return None

	async def _check_approval_required(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		action_str = serialize_action(context.action)

		for trigger in conditions.get("triggers") or []:
			if isinstance(trigger, str):
				trigger = {"pattern": trigger}
			pattern = str(trigger.get("pattern") or "").lower()
			if pattern in action_str:
				description = trigger.get("description") or "Action matches approval criteria"
				return f"Approval required: {description}"
		return None

	async def _check_budget_limit(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		if conditions.get("limit") is None:
			return None
		limit = float(conditions["limit"])
		window = conditions.get("window") or DEFAULT_WINDOW

		spent = await self.db.sum_execution_cost(
			context.owner, since=now_iso(window_start(now, window)),
		)
		if spent >= limit:
			return f"Budget limit exceeded: ${spent:.2f}/${limit:.2f} spent in the last {window}"
		return None

	async def _check_time_window(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		allowed_hours = conditions.get("allowedHours", conditions.get("allowed_hours"))
		if not isinstance(allowed_hours, list):
			return None

		timezone = conditions.get("timezone")
		if timezone:
			try:
				now = now.astimezone(ZoneInfo(timezone))
			except ZoneInfoNotFoundError as e:
				raise ValueError(f"Unknown timezone {timezone}") from e

		hours = [int(h) for h in allowed_hours]
		if now.hour not in hours:
			return (
				f"Action not allowed at this time (hour {now.hour}). "
				f"Allowed hours: {', '.join(str(h) for h in hours)}"
			)
		return None

	async def _check_custom(self, conditions: dict, context: EnforcementContext, now: datetime) -> Optional[str]:
		variables = {
			"owner": context.owner,
			"agent_id": context.agent_id,
			"project_id": context.project_id,
			"environment": Environment(context.environment).value,
			"action": context.action,
			"hour": now.hour,
		}
		if evaluate_expression(conditions.get("expression", ""), variables):
			return conditions.get("reason") or "Custom policy condition matched"
		return None
