from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from workbook.backend.ai.errors import EmptyResponse, ParseError, ShapeError
from workbook.backend.ai.types import (
	CompletionResult,
	ExpectedShape,
	FreeformResult,
	MODE_SPECS,
	Mode,
	ShapeKind,
	StructuredResult,
)


_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


class _ContractModel(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class GuidanceItem(_ContractModel):
	guidanceType: str = Field(..., min_length=1)
	title: str = Field(..., min_length=1)
	content: str = Field(..., min_length=1)
	personalizedFor: str = ""


class ReflectionPromptItem(_ContractModel):
	promptType: str = Field(..., min_length=1)
	promptText: str = Field(..., min_length=1)
	depth: int = Field(default=1, ge=1, le=3)
	followUpPrompts: List[str] = Field(default_factory=list)


class InsightItem(_ContractModel):
	insightType: str = Field(..., min_length=1)
	title: str = Field(..., min_length=1)
	description: str = Field(..., min_length=1)
	confidence: Optional[float] = Field(default=None, ge=0, le=100)
	actionable: bool = False
	data: Union[str, Dict[str, Any], List[Any], None] = None


class RecommendationItem(_ContractModel):
	recommendationType: str = Field(..., min_length=1)
	title: str = Field(..., min_length=1)
	description: str = Field(..., min_length=1)
	adaptationReason: str = ""
	priority: int = Field(default=3, ge=1, le=5)
	parameters: Union[str, Dict[str, Any], List[Any], None] = None


class GuidancePayload(_ContractModel):
	guidance: List[GuidanceItem]


class ReflectionPromptsPayload(_ContractModel):
	prompts: List[ReflectionPromptItem]


class InsightsPayload(_ContractModel):
	insights: List[InsightItem]


class RecommendationsPayload(_ContractModel):
	recommendations: List[RecommendationItem]


class SentimentPayload(_ContractModel):
	rating: int = Field(..., ge=1, le=5)
	confidence: float = Field(..., ge=0.0, le=1.0)
	emotional_state: str = Field(..., min_length=1)

	@field_validator("rating", mode="before")
	@classmethod
	def _round_rating(cls, value: Any) -> Any:
		if isinstance(value, float) and value.is_integer():
			return int(value)
		return value


PAYLOAD_MODELS: Dict[Mode, Type[_ContractModel]] = {
	Mode.GUIDANCE: GuidancePayload,
	Mode.REFLECTION_PROMPTS: ReflectionPromptsPayload,
	Mode.INSIGHTS: InsightsPayload,
	Mode.RECOMMENDATIONS: RecommendationsPayload,
	Mode.SENTIMENT: SentimentPayload,
}


def strip_code_fences(raw: str) -> str:
	candidate = raw.strip()
	if candidate.startswith("```"):
		candidate = _FENCE_OPEN.sub("", candidate)
		candidate = _FENCE_CLOSE.sub("", candidate)
	return candidate.strip()


def _describe_errors(exc: ValidationError, limit: int = 3) -> str:
	parts = []
	for issue in exc.errors()[:limit]:
		loc = ".".join(str(part) for part in issue.get("loc", []))
		parts.append(f"{loc}: {issue.get('msg', 'invalid')}" if loc else str(issue.get("msg", "invalid")))
	return "; ".join(parts)


class ResponseContractValidator:
	def validate(self, raw_text: Optional[str], mode: Mode, shape: Optional[ExpectedShape] = None) -> CompletionResult:
		mode = Mode(mode)
		shape = shape or MODE_SPECS[mode].shape
		text = raw_text.strip() if isinstance(raw_text, str) else ""
		if not text:
			raise EmptyResponse(f"Model returned no content for mode '{mode.value}'.")
		if not shape.structured:
			return FreeformResult(mode=mode, text=text)
		return StructuredResult(mode=mode, payload=self._validate_structured(text, mode, shape))

	def _validate_structured(self, text: str, mode: Mode, shape: ExpectedShape) -> Dict[str, Any]:
		try:
			parsed = json.loads(strip_code_fences(text))
		except json.JSONDecodeError as exc:
			raise ParseError(f"Model output for mode '{mode.value}' is not valid JSON.") from exc
		if not isinstance(parsed, dict):
			raise ShapeError(f"Model output for mode '{mode.value}' must be a JSON object.")
		if shape.kind is ShapeKind.ARRAY:
			if shape.key not in parsed:
				raise ShapeError(f"Model output for mode '{mode.value}' is missing key '{shape.key}'.")
			if not isinstance(parsed[shape.key], list):
				raise ShapeError(f"Model output key '{shape.key}' must be an array.")
		elif shape.key is not None and not isinstance(parsed.get(shape.key), dict):
			raise ShapeError(f"Model output key '{shape.key}' must be an object.")

		model = PAYLOAD_MODELS.get(mode)
		if model is None:
			return parsed
		try:
			validated = model.model_validate(parsed)
		except ValidationError as exc:
			raise ShapeError(
				f"Model output for mode '{mode.value}' does not match the contract: {_describe_errors(exc)}"
			) from exc
		return validated.model_dump()
