"""
Learning engine - mines recent execution history for recurring patterns.

Five independent detectors run over the same execution sample. Every
detector has a minimum-sample gate, and confidence grows with sample size
up to 1.0. Insights are advisory; nothing here changes routing.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .database import Database
from .models import Execution, ExecutionStatus, Learning, LearningType, now_iso

logger = logging.getLogger(__name__)

MIN_EXECUTIONS = 5
SAMPLE_LIMIT = 100
FAST_EXECUTION_MS = 5000


@dataclass
class PatternAnalysis:
	type: LearningType
	pattern: dict
	insight: str
	confidence: float
	source_execution_ids: list[str]


@dataclass
class AgentPerformance:
	agent_id: str
	total_executions: int
	completed: int
	failed: int
	blocked: int
	success_rate: float
	avg_duration: float

	def to_dict(self) -> dict:
		return asdict(self)


def _group_by(executions: Iterable[Execution], key: Callable[[Execution], Optional[str]]) -> dict[str, list[Execution]]:
	"""Group preserving first-seen order of keys."""
	groups: dict[str, list[Execution]] = defaultdict(list)
	for execution in executions:
		groups[key(execution)].append(execution)
	return groups


def _average(values: list[float]) -> float:
	return sum(values) / len(values) if values else 0.0


def normalize_error(error: str) -> str:
	"""Error type: the text before the first colon, lower-cased."""
	return error.split(":")[0].strip().lower()


def most_common_agent(source_ids: list[str], executions: list[Execution]) -> Optional[str]:
	"""Plurality agent among the source executions; ties go to the first seen."""
	wanted = set(source_ids)
	counts = Counter(e.agent_id for e in executions if e.id in wanted)
	if not counts:
		return None
	return counts.most_common(1)[0][0]


def detect_success_patterns(executions: list[Execution]) -> list[PatternAnalysis]:
	fast = [
		e for e in executions
		if e.status is ExecutionStatus.COMPLETED and e.duration_ms and e.duration_ms < FAST_EXECUTION_MS
	]
	if len(fast) < 3:
		return []

	patterns = []
	for agent_id, group in _group_by(fast, lambda e: e.agent_id).items():
		if len(group) < 3:
			continue
		avg_duration = _average([e.duration_ms or 0 for e in group])
		success_rate = len(group) / len(executions) * 100
		patterns.append(PatternAnalysis(
			type=LearningType.SUCCESS_PATTERN,
			pattern={
				"agentId": agent_id,
				"avgDuration": avg_duration,
				"successRate": success_rate,
				"sampleSize": len(group),
			},
			insight=(
				f"Agent performs well with {success_rate:.0f}% success rate "
				f"and avg {round(avg_duration)}ms execution time"
			),
			confidence=min(len(group) / 10, 1.0),
			source_execution_ids=[e.id for e in group],
		))
	return patterns


def detect_failure_patterns(executions: list[Execution]) -> list[PatternAnalysis]:
	failed = [e for e in executions if e.status is ExecutionStatus.FAILED]
	if len(failed) < 2:
		return []

	patterns = []
	with_error = [e for e in failed if e.error]
	for error_type, group in _group_by(with_error, lambda e: normalize_error(e.error)).items():
		if len(group) < 2:
			continue
		failure_rate = len(group) / len(executions) * 100
		patterns.append(PatternAnalysis(
			type=LearningType.FAILURE_PATTERN,
			pattern={
				"errorType": error_type,
				"failureRate": failure_rate,
				"occurrences": len(group),
				"affectedAgents": list(dict.fromkeys(e.agent_id for e in group)),
			},
			insight=(
				f'Recurring failure: "{error_type}" '
				f"({len(group)} times, {failure_rate:.0f}% of executions)"
			),
			confidence=min(len(group) / 5, 1.0),
			source_execution_ids=[e.id for e in group],
		))
	return patterns


def detect_performance_tips(executions: list[Execution]) -> list[PatternAnalysis]:
	completed = [e for e in executions if e.status is ExecutionStatus.COMPLETED and e.duration_ms]
	if len(completed) < 5:
		return []

	avg_duration = _average([e.duration_ms for e in completed])
	slow = [e for e in completed if e.duration_ms > avg_duration * 2]
	if len(slow) < 2:
		return []

	patterns = []
	for agent_id, group in _group_by(slow, lambda e: e.agent_id).items():
		if len(group) < 2:
			continue
		avg_slow = _average([e.duration_ms for e in group])
		patterns.append(PatternAnalysis(
			type=LearningType.PERFORMANCE_TIP,
			pattern={
				"agentId": agent_id,
				"avgDuration": avg_slow,
				"occurrences": len(group),
			},
			insight=(
				f"Agent is slower than average ({round(avg_slow)}ms vs {round(avg_duration)}ms). "
				"Consider optimizing or using a different agent."
			),
			confidence=min(len(group) / 5, 1.0),
			source_execution_ids=[e.id for e in group],
		))
	return patterns


def detect_routing_preferences(executions: list[Execution]) -> list[PatternAnalysis]:
	completed = [e for e in executions if e.status is ExecutionStatus.COMPLETED]
	if len(completed) < 5:
		return []

	usage = _group_by(completed, lambda e: e.agent_id)
	top = sorted(usage.items(), key=lambda item: -len(item[1]))[:3]

	patterns = []
	for agent_id, group in top:
		usage_rate = len(group) / len(executions) * 100
		if usage_rate <= 20:
			continue
		patterns.append(PatternAnalysis(
			type=LearningType.ROUTING_PREFERENCE,
			pattern={
				"agentId": agent_id,
				"usageRate": usage_rate,
				"executions": len(group),
			},
			insight=(
				f"Agent is your most-used agent ({usage_rate:.0f}% of executions). "
				"Consider optimizing workflows around it."
			),
			confidence=min(len(group) / 10, 1.0),
			source_execution_ids=[e.id for e in group],
		))
	return patterns


def detect_policy_triggers(executions: list[Execution]) -> list[PatternAnalysis]:
	blocked = [e for e in executions if e.status is ExecutionStatus.BLOCKED]
	if len(blocked) < 2:
		return []

	patterns = []
	for policy_id, group in _group_by(blocked, lambda e: e.blocked_by).items():
		if not policy_id or len(group) < 2:
			continue
		block_rate = len(group) / len(executions) * 100
		patterns.append(PatternAnalysis(
			type=LearningType.POLICY_TRIGGER,
			pattern={
				"policyId": policy_id,
				"blockRate": block_rate,
				"occurrences": len(group),
			},
			insight=(
				f"Policy frequently blocks actions ({len(group)} times, "
				f"{block_rate:.0f}% of executions). Consider adjusting policy rules."
			),
			confidence=min(len(group) / 5, 1.0),
			source_execution_ids=[e.id for e in group],
		))
	return patterns


DETECTORS = (
	detect_success_patterns,
	detect_failure_patterns,
	detect_performance_tips,
	detect_routing_preferences,
	detect_policy_triggers,
)


class LearningEngine:
	"""
	Usage:
		engine = LearningEngine(db)
		learnings = await engine.analyze_and_learn("owner-1")
		top = await engine.get_insights("owner-1", limit=5)
	"""

	def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
		self.db = db
		self.clock = clock

	async def recent_executions(self, owner: str, days: int = 7, limit: Optional[int] = SAMPLE_LIMIT) -> list[Execution]:
		since = now_iso(self.clock() - timedelta(days=days))
		return await self.db.query_executions(owner, since=since, limit=limit)

	async def analyze_and_learn(self, owner: str, days: int = 7) -> list[Learning]:
		"""Run every detector over recent history and persist what they find."""
		executions = await self.recent_executions(owner, days)
		if len(executions) < MIN_EXECUTIONS:
			logger.info(f"Only {len(executions)} executions for {owner}, skipping analysis")
			return []

		patterns: list[PatternAnalysis] = []
		for detector in DETECTORS:
			patterns.extend(detector(executions))

		learnings = [
			Learning(
				owner=owner,
				agent_id=most_common_agent(p.source_execution_ids, executions),
				type=p.type,
				pattern=p.pattern,
				insight=p.insight,
				confidence=p.confidence,
				source_execution_ids=p.source_execution_ids,
			)
			for p in patterns
		]
		await self.db.create_learnings(learnings)
		logger.info(f"Persisted {len(learnings)} learnings for {owner} from {len(executions)} executions")
		return learnings

	async def get_insights(self, owner: str, limit: int = 10) -> list[Learning]:
		return await self.db.list_learnings(owner, limit)

	async def get_agent_performance(self, owner: str, days: int = 30) -> list[AgentPerformance]:
		"""Per-agent totals over the trailing window, busiest first."""
		executions = await self.recent_executions(owner, days, limit=None)

		performance = []
		for agent_id, group in _group_by(executions, lambda e: e.agent_id).items():
			completed = [e for e in group if e.status is ExecutionStatus.COMPLETED]
			performance.append(AgentPerformance(
				agent_id=agent_id,
				total_executions=len(group),
				completed=len(completed),
				failed=sum(1 for e in group if e.status is ExecutionStatus.FAILED),
				blocked=sum(1 for e in group if e.status is ExecutionStatus.BLOCKED),
				success_rate=len(completed) / len(group) * 100,
				avg_duration=_average([e.duration_ms or 0 for e in completed]),
			))
		return sorted(performance, key=lambda p: -p.total_executions)
