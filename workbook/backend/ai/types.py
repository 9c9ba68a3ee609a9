from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union


Role = Literal["system", "user", "assistant"]
ChatMessage = Dict[str, str]


class Mode(str, Enum):
	GUIDANCE = "guidance"
	REFLECTION_PROMPTS = "reflection_prompts"
	INSIGHTS = "insights"
	RECOMMENDATIONS = "recommendations"
	CONVERSATION = "conversation"
	SENTIMENT = "sentiment"
	SESSION_SUMMARY = "session_summary"


class ConversationType(str, Enum):
	THERAPEUTIC_GUIDANCE = "therapeutic_guidance"
	CRISIS_SUPPORT = "crisis_support"
	REFLECTION = "reflection"
	GOAL_SETTING = "goal_setting"


class ShapeKind(str, Enum):
	ARRAY = "array"
	OBJECT = "object"
	TEXT = "text"


@dataclass(frozen=True)
class ExpectedShape:
	"""What the validator expects back from the model for one mode."""

	kind: ShapeKind
	key: Optional[str] = None

	@property
	def structured(self) -> bool:
		return self.kind is not ShapeKind.TEXT


@dataclass(frozen=True)
class ModeSpec:
	mode: Mode
	shape: ExpectedShape
	max_tokens: int
	long_running: bool = False
	crisis_checked: bool = False


MODE_SPECS: Dict[Mode, ModeSpec] = {
	Mode.GUIDANCE: ModeSpec(Mode.GUIDANCE, ExpectedShape(ShapeKind.ARRAY, "guidance"), max_tokens=1500),
	Mode.REFLECTION_PROMPTS: ModeSpec(
		Mode.REFLECTION_PROMPTS, ExpectedShape(ShapeKind.ARRAY, "prompts"), max_tokens=1200
	),
	Mode.INSIGHTS: ModeSpec(Mode.INSIGHTS, ExpectedShape(ShapeKind.ARRAY, "insights"), max_tokens=1500),
	Mode.RECOMMENDATIONS: ModeSpec(
		Mode.RECOMMENDATIONS, ExpectedShape(ShapeKind.ARRAY, "recommendations"), max_tokens=1500
	),
	Mode.CONVERSATION: ModeSpec(
		Mode.CONVERSATION,
		ExpectedShape(ShapeKind.TEXT),
		max_tokens=500,
		long_running=True,
		crisis_checked=True,
	),
	Mode.SENTIMENT: ModeSpec(
		Mode.SENTIMENT,
		ExpectedShape(ShapeKind.OBJECT),
		max_tokens=200,
		crisis_checked=True,
	),
	Mode.SESSION_SUMMARY: ModeSpec(
		Mode.SESSION_SUMMARY, ExpectedShape(ShapeKind.TEXT), max_tokens=300, long_running=True
	),
}


@dataclass(frozen=True)
class AssessmentSummary:
	assessment_type: str
	average_score: float
	response_count: int
	completed_at: Optional[str]

	def as_dict(self) -> Dict[str, Any]:
		return {
			"assessmentType": self.assessment_type,
			"averageScore": self.average_score,
			"responseCount": self.response_count,
			"completedAt": self.completed_at,
		}


@dataclass(frozen=True)
class ProgressSummary:
	chapter_id: int
	section_id: str
	completed: bool
	updated_at: Optional[str]

	def as_dict(self) -> Dict[str, Any]:
		return {
			"chapterId": self.chapter_id,
			"sectionId": self.section_id,
			"completed": self.completed,
			"updatedAt": self.updated_at,
		}


@dataclass(frozen=True)
class InsightSummary:
	insight_type: str
	title: str
	description: str
	confidence: Optional[int]
	created_at: Optional[str]

	def as_dict(self) -> Dict[str, Any]:
		return {
			"insightType": self.insight_type,
			"title": self.title,
			"description": self.description,
			"confidence": self.confidence,
			"createdAt": self.created_at,
		}


@dataclass(frozen=True)
class TherapeuticContext:
	user_id: str
	chapter_id: Optional[int] = None
	section_id: Optional[str] = None
	user_responses: Any = None
	assessment_history: Tuple[AssessmentSummary, ...] = ()
	progress_history: Tuple[ProgressSummary, ...] = ()
	previous_insights: Tuple[InsightSummary, ...] = ()
	faults: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversationMessage:
	role: Literal["user", "assistant"]
	content: str
	timestamp: datetime
	# Crisis exchanges stay in the stored history but are never sent to a provider.
	crisis: bool = False

	def as_chat(self) -> ChatMessage:
		return {"role": self.role, "content": self.content}

	def as_dict(self) -> Dict[str, Any]:
		return {
			"role": self.role,
			"content": self.content,
			"timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
			"crisis": self.crisis,
		}


@dataclass(frozen=True)
class CrisisDecision:
	triggered: bool
	matched_terms: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class CompletionRequest:
	mode: Mode
	messages: Tuple[ChatMessage, ...]
	max_tokens: int
	require_structured_output: bool
	timeout_ms: int
	retry_budget: int


@dataclass(frozen=True)
class StructuredResult:
	mode: Mode
	payload: Dict[str, Any]


@dataclass(frozen=True)
class FreeformResult:
	mode: Mode
	text: str
	placeholder: bool = False


CompletionResult = Union[StructuredResult, FreeformResult]


@dataclass
class RetryStats:
	"""Counters for one pipeline invocation; never shared between calls."""

	attempts: int = 0
	network_retries: int = 0
	contract_retries: int = 0
	delays: List[float] = field(default_factory=list)
	states: List[str] = field(default_factory=list)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"attempts": self.attempts,
			"network_retries": self.network_retries,
			"contract_retries": self.contract_retries,
			"delays": [round(delay, 4) for delay in self.delays],
			"states": list(self.states),
		}


@dataclass(frozen=True)
class PipelineRequest:
	user_id: str
	mode: Mode
	chapter_id: Optional[int] = None
	section_id: Optional[str] = None
	user_responses: Any = None
	message: Optional[str] = None
	conversation_history: Tuple[ConversationMessage, ...] = ()
	conversation_type: ConversationType = ConversationType.THERAPEUTIC_GUIDANCE
	extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineOutcome:
	mode: Mode
	records: Optional[Union[List[Dict[str, Any]], Dict[str, Any]]] = None
	response: Optional[str] = None
	crisis: bool = False
	placeholder: bool = False
	matched_terms: Tuple[str, ...] = ()
	stats: RetryStats = field(default_factory=RetryStats)
