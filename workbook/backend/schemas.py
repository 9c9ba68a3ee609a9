from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from workbook.backend import constants
from workbook.backend.ai.types import ConversationType


class ApiError(BaseModel):
	model_config = ConfigDict(extra="forbid")

	code: str
	message: str
	evidence: List[str] = Field(default_factory=list)


class ApiEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: bool
	generated_at: str
	request_id: Optional[str] = None
	data: Optional[Dict[str, Any]] = None
	error: Optional[ApiError] = None


class _WorkbookLocation(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	chapterId: Optional[int] = Field(
		default=None,
		ge=constants.MIN_CHAPTER_ID,
		le=constants.MAX_CHAPTER_ID,
		description="Workbook chapter, 1 to 7.",
	)
	sectionId: Optional[str] = Field(default=None, min_length=1, max_length=100)
	userResponses: Optional[Any] = Field(default=None, description="Answers from the current section.")


class AiGuidanceRequest(_WorkbookLocation):
	specificChallenges: List[str] = Field(default_factory=list, max_length=20)


class AiPromptsRequest(_WorkbookLocation):
	previousResponse: Optional[str] = Field(default=None, max_length=constants.MAX_PROMPT_RESPONSE_CHARS)


class AiInsightsRequest(_WorkbookLocation):
	pass


class AiRecommendationsRequest(_WorkbookLocation):
	pass


class AiConversationRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	sessionId: str = Field(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.:-]+$")
	message: str = Field(..., min_length=1, max_length=constants.MAX_CONVERSATION_MESSAGE_CHARS)
	chapterId: Optional[int] = Field(default=None, ge=constants.MIN_CHAPTER_ID, le=constants.MAX_CHAPTER_ID)
	sectionId: Optional[str] = Field(default=None, min_length=1, max_length=100)
	conversationType: ConversationType = ConversationType.THERAPEUTIC_GUIDANCE


class AiSentimentRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	text: str = Field(..., min_length=1, max_length=constants.MAX_PROMPT_RESPONSE_CHARS)


class AiSessionSummaryRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	conversations: List[Any] = Field(default_factory=list)
	insights: List[Any] = Field(default_factory=list)
	guidance: List[Any] = Field(default_factory=list)
