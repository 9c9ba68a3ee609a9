"""Bounded, minimized history context for AI prompts.

Only the summary fields named in the projections below ever leave this module;
raw per-question assessment answers are reduced to an average and a count.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from workbook.backend import constants
from workbook.backend.ai.errors import PartialContextFault
from workbook.backend.ai.policies import mask_user_id
from workbook.backend.ai.types import (
	AssessmentSummary,
	InsightSummary,
	ProgressSummary,
	TherapeuticContext,
)


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class HistorySource(Protocol):
	async def get_assessments(self, user_id: str) -> Sequence[Mapping[str, Any]]:
		...

	async def get_progress(self, user_id: str, chapter_id: Optional[int] = None) -> Sequence[Mapping[str, Any]]:
		...

	async def get_insights(self, user_id: str, acknowledged: Optional[bool] = None) -> Sequence[Mapping[str, Any]]:
		...


def _parse_timestamp(value: Any) -> Optional[datetime]:
	if isinstance(value, datetime):
		parsed = value
	elif isinstance(value, str) and value.strip():
		try:
			parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
		except ValueError:
			return None
	else:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


def _iso(value: Any) -> Optional[str]:
	parsed = _parse_timestamp(value)
	if parsed is None:
		return None
	return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def most_recent(records: Sequence[Mapping[str, Any]], time_field: str, limit: int) -> List[Mapping[str, Any]]:
	"""Newest `limit` records, ordered oldest to newest. Undated records sort first."""
	if limit <= 0:
		return []
	indexed = list(enumerate(records))
	indexed.sort(key=lambda pair: (_parse_timestamp(pair[1].get(time_field)) or _EPOCH, pair[0]))
	return [record for _index, record in indexed[-limit:]]


def _ratings(responses: Any) -> List[float]:
	if not isinstance(responses, list):
		return []
	ratings: List[float] = []
	for response in responses:
		if not isinstance(response, Mapping):
			continue
		raw = response.get("rating")
		if isinstance(raw, bool):
			continue
		try:
			rating = float(raw)
		except (TypeError, ValueError):
			continue
		if math.isfinite(rating):
			ratings.append(rating)
	return ratings


def summarize_assessment(record: Mapping[str, Any]) -> AssessmentSummary:
	ratings = _ratings(record.get("responses"))
	count = len(ratings)
	average = round(sum(ratings) / count, 2) if count else 0.0
	return AssessmentSummary(
		assessment_type=str(record.get("assessmentType") or "unknown"),
		average_score=average,
		response_count=count,
		completed_at=_iso(record.get("completedAt")),
	)


def _has_progress_identity(record: Mapping[str, Any]) -> bool:
	chapter_id = record.get("chapterId")
	return (
		isinstance(chapter_id, int)
		and not isinstance(chapter_id, bool)
		and isinstance(record.get("sectionId"), str)
	)


def summarize_progress(record: Mapping[str, Any]) -> Optional[ProgressSummary]:
	if not _has_progress_identity(record):
		return None
	return ProgressSummary(
		chapter_id=record["chapterId"],
		section_id=record["sectionId"],
		completed=bool(record.get("completed")),
		updated_at=_iso(record.get("updatedAt")),
	)


def summarize_insight(record: Mapping[str, Any]) -> InsightSummary:
	confidence = record.get("confidence")
	if isinstance(confidence, bool) or not isinstance(confidence, int):
		confidence = None
	return InsightSummary(
		insight_type=str(record.get("insightType") or ""),
		title=str(record.get("title") or ""),
		description=str(record.get("description") or ""),
		confidence=confidence,
		created_at=_iso(record.get("createdAt")),
	)


class ContextAggregator:
	def __init__(
		self,
		source: HistorySource,
		*,
		assessment_limit: int = constants.ASSESSMENT_HISTORY_LIMIT,
		progress_limit: int = constants.PROGRESS_HISTORY_LIMIT,
		insight_limit: int = constants.INSIGHT_HISTORY_LIMIT,
	):
		self._source = source
		self._assessment_limit = assessment_limit
		self._progress_limit = progress_limit
		self._insight_limit = insight_limit

	async def build_context(
		self,
		user_id: str,
		chapter_id: Optional[int] = None,
		section_id: Optional[str] = None,
		user_responses: Any = None,
	) -> TherapeuticContext:
		results = await asyncio.gather(
			self._source.get_assessments(user_id),
			self._source.get_progress(user_id, chapter_id),
			self._source.get_insights(user_id, False),
			return_exceptions=True,
		)
		categories = ("assessments", "progress", "insights")
		fetched: Dict[str, Sequence[Mapping[str, Any]]] = {}
		faults: List[str] = []
		for category, result in zip(categories, results):
			if isinstance(result, asyncio.CancelledError):
				raise result
			if isinstance(result, BaseException):
				fault = PartialContextFault(category, result)
				logger.warning(
					"%s user=%s error=%s",
					fault.message,
					mask_user_id(user_id),
					result.__class__.__name__,
				)
				faults.append(category)
				fetched[category] = []
			else:
				fetched[category] = list(result or [])

		assessments = tuple(
			summarize_assessment(record)
			for record in most_recent(fetched["assessments"], "completedAt", self._assessment_limit)
		)
		progress = self._progress_window(fetched["progress"])
		insights = tuple(
			summarize_insight(record)
			for record in most_recent(fetched["insights"], "createdAt", self._insight_limit)
		)
		return TherapeuticContext(
			user_id=user_id,
			chapter_id=chapter_id,
			section_id=section_id,
			user_responses=user_responses,
			assessment_history=assessments,
			progress_history=progress,
			previous_insights=insights,
			faults=tuple(faults),
		)

	def _progress_window(self, records: Sequence[Mapping[str, Any]]) -> Tuple[ProgressSummary, ...]:
		# Malformed entries are dropped before the cap so they never take a slot.
		valid = [record for record in records if _has_progress_identity(record)]
		recent = most_recent(valid, "updatedAt", self._progress_limit)
		return tuple(summary for summary in map(summarize_progress, recent) if summary is not None)
