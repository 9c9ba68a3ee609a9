from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI

from workbook.backend.adapters import sqlite_adapter
from workbook.backend.adapters.sqlite_adapter import SqliteHistorySource
from workbook.backend.ai.config import PipelineConfig, openai_api_key
from workbook.backend.ai.pipeline import TherapeuticPipeline
from workbook.backend.ai.policies import mask_user_id
from workbook.backend.ai.providers import OpenAIChatProvider
from workbook.backend.ai.safety import CrisisInterceptor, load_denylist
from workbook.backend.ai.types import ConversationType, Mode, PipelineOutcome, PipelineRequest
from workbook.backend.services import conversation_store


logger = logging.getLogger(__name__)


def build_pipeline(config: Optional[PipelineConfig] = None, db_path: Optional[str] = None) -> TherapeuticPipeline:
	config = config or PipelineConfig.from_env()
	# The HTTP client timeout is a backstop; per-attempt budgets are enforced by the completion client.
	client_timeout_s = max(config.structured_timeout_ms, config.conversation_timeout_ms) / 1000.0
	provider = OpenAIChatProvider(api_key=openai_api_key(), model=config.model, timeout_s=client_timeout_s)
	interceptor = CrisisInterceptor(load_denylist(config.crisis_terms_path))
	# Schema setup happens once here; request-time reads open the store read-only.
	sqlite_adapter.init_db(db_path)
	logger.info("AI pipeline ready model=%s", config.model)
	return TherapeuticPipeline(
		history=SqliteHistorySource(db_path),
		provider=provider,
		interceptor=interceptor,
		config=config,
	)


def pipeline_for(app: FastAPI) -> TherapeuticPipeline:
	pipeline = getattr(app.state, "pipeline", None)
	if pipeline is None:
		pipeline = build_pipeline()
		app.state.pipeline = pipeline
	return pipeline


def outcome_payload(outcome: PipelineOutcome) -> Dict[str, Any]:
	return {
		"mode": outcome.mode.value,
		"records": outcome.records,
		"response": outcome.response,
		"crisis": outcome.crisis,
		"placeholder": outcome.placeholder,
		"retry": outcome.stats.as_dict(),
	}


async def generate(
	pipeline: TherapeuticPipeline,
	*,
	user_id: str,
	mode: Mode,
	chapter_id: Optional[int] = None,
	section_id: Optional[str] = None,
	user_responses: Any = None,
	extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
	outcome = await pipeline.run(
		PipelineRequest(
			user_id=user_id,
			mode=mode,
			chapter_id=chapter_id,
			section_id=section_id,
			user_responses=user_responses,
			extra=dict(extra or {}),
		)
	)
	return outcome_payload(outcome)


async def converse(
	pipeline: TherapeuticPipeline,
	*,
	user_id: str,
	session_id: str,
	message: str,
	conversation_type: ConversationType = ConversationType.THERAPEUTIC_GUIDANCE,
	chapter_id: Optional[int] = None,
	section_id: Optional[str] = None,
) -> Dict[str, Any]:
	conversation_store.ensure_capacity(user_id, session_id)
	outcome = await pipeline.run(
		PipelineRequest(
			user_id=user_id,
			mode=Mode.CONVERSATION,
			chapter_id=chapter_id,
			section_id=section_id,
			message=message,
			conversation_history=conversation_store.history(user_id, session_id),
			conversation_type=conversation_type,
		)
	)
	messages = conversation_store.append_exchange(
		user_id, session_id, message, outcome.response or "", crisis=outcome.crisis
	)
	logger.info(
		"Conversation turn stored user=%s session=%s turns=%d crisis=%s placeholder=%s",
		mask_user_id(user_id),
		session_id,
		len(messages),
		outcome.crisis,
		outcome.placeholder,
	)
	payload = outcome_payload(outcome)
	payload["session_id"] = session_id
	payload["turn_count"] = len(messages)
	return payload


def conversation_history(user_id: str, session_id: str) -> Dict[str, Any]:
	messages = conversation_store.history(user_id, session_id)
	return {
		"session_id": session_id,
		"messages": [message.as_dict() for message in messages],
	}
