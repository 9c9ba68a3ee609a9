from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from workbook.backend import constants
from workbook.backend.ai.completion import ResilientCompletionClient, SleepFn
from workbook.backend.ai.config import PipelineConfig
from workbook.backend.ai.context import ContextAggregator, HistorySource
from workbook.backend.ai.contracts import ResponseContractValidator
from workbook.backend.ai.errors import ContractError, EmptyResponse, GenerationFailed
from workbook.backend.ai.policies import mask_user_id
from workbook.backend.ai.projector import project
from workbook.backend.ai.prompts import build_prompt
from workbook.backend.ai.providers import CompletionProvider
from workbook.backend.ai.safety import CrisisInterceptor
from workbook.backend.ai.types import (
	CompletionRequest,
	CompletionResult,
	ConversationMessage,
	FreeformResult,
	MODE_SPECS,
	Mode,
	ModeSpec,
	PipelineOutcome,
	PipelineRequest,
	RetryStats,
)


logger = logging.getLogger(__name__)


def conversation_window(
	history: Tuple[ConversationMessage, ...],
	latest: ConversationMessage,
	limit: int,
) -> Tuple[ConversationMessage, ...]:
	"""History plus the latest user turn, trimmed to the newest `limit` messages.

	Crisis-flagged turns are left out before trimming. Builds a new tuple; the
	caller's history is never changed.
	"""
	sequence = (*(message for message in history if not message.crisis), latest)
	return sequence[-limit:] if limit > 0 else (latest,)


class TherapeuticPipeline:
	def __init__(
		self,
		*,
		history: HistorySource,
		provider: CompletionProvider,
		interceptor: CrisisInterceptor,
		config: Optional[PipelineConfig] = None,
		sleep: Optional[SleepFn] = None,
	):
		self._config = config or PipelineConfig()
		self._provider = provider
		self._aggregator = ContextAggregator(history)
		self._interceptor = interceptor
		self._client = ResilientCompletionClient(provider, self._config.backoff, sleep=sleep)
		self._validator = ResponseContractValidator()

	@property
	def config(self) -> PipelineConfig:
		return self._config

	async def aclose(self) -> None:
		close = getattr(self._provider, "aclose", None)
		if close is not None:
			await close()

	async def run(self, request: PipelineRequest) -> PipelineOutcome:
		mode = Mode(request.mode)
		spec = MODE_SPECS[mode]
		stats = RetryStats()
		if mode is Mode.CONVERSATION and not (request.message or "").strip():
			raise ValueError("Conversation requests require a non-empty message.")

		if spec.crisis_checked:
			decision = self._interceptor.check_crisis(self._freeform_user_text(mode, request))
			if decision.triggered:
				logger.warning(
					"Crisis language intercepted mode=%s user=%s terms=%s",
					mode.value,
					mask_user_id(request.user_id),
					sorted(decision.matched_terms),
				)
				return PipelineOutcome(
					mode=mode,
					response=self._interceptor.referral_text,
					crisis=True,
					matched_terms=tuple(sorted(decision.matched_terms)),
					stats=stats,
				)

		context = await self._aggregator.build_context(
			request.user_id,
			chapter_id=request.chapter_id,
			section_id=request.section_id,
			user_responses=request.user_responses,
		)
		messages = build_prompt(mode, context, self._prompt_extra(mode, request))
		completion = CompletionRequest(
			mode=mode,
			messages=tuple(messages),
			max_tokens=spec.max_tokens,
			require_structured_output=spec.shape.structured,
			timeout_ms=self._config.timeout_ms_for(spec.long_running),
			retry_budget=self._config.retry_budget,
		)

		try:
			result = await self._complete_with_contract(completion, spec, stats)
		except (GenerationFailed, EmptyResponse) as exc:
			if mode is not Mode.CONVERSATION or not self._config.conversation_placeholder:
				raise
			logger.warning(
				"Conversation placeholder substituted user=%s reason=%s",
				mask_user_id(request.user_id),
				exc.code,
			)
			result = FreeformResult(mode=mode, text=constants.CONVERSATION_PLACEHOLDER_TEXT, placeholder=True)

		return self._outcome(request, result, stats)

	def _freeform_user_text(self, mode: Mode, request: PipelineRequest) -> Optional[str]:
		if mode is Mode.SENTIMENT:
			return str(request.extra.get("text") or "")
		return request.message

	def _prompt_extra(self, mode: Mode, request: PipelineRequest) -> Dict[str, Any]:
		extra = dict(request.extra)
		if mode is Mode.CONVERSATION:
			latest = ConversationMessage(
				role="user",
				content=str(request.message).strip(),
				timestamp=datetime.now(timezone.utc),
			)
			extra["messages"] = conversation_window(
				tuple(request.conversation_history),
				latest,
				self._config.conversation_window,
			)
			extra["conversation_type"] = request.conversation_type
		return extra

	async def _complete_with_contract(
		self,
		completion: CompletionRequest,
		spec: ModeSpec,
		stats: RetryStats,
	) -> CompletionResult:
		budget = self._config.contract_retry_budget if spec.shape.structured else self._config.empty_retry_budget
		while True:
			raw = await self._client.complete(completion, stats)
			try:
				return self._validator.validate(raw, spec.mode, spec.shape)
			except ContractError as exc:
				if stats.contract_retries >= budget:
					logger.error(
						"Contract violation not recovered mode=%s code=%s retries=%d",
						spec.mode.value,
						exc.code,
						stats.contract_retries,
					)
					raise
				stats.contract_retries += 1
				logger.warning(
					"Contract violation mode=%s code=%s; re-requesting (%d/%d)",
					spec.mode.value,
					exc.code,
					stats.contract_retries,
					budget,
				)

	def _outcome(self, request: PipelineRequest, result: CompletionResult, stats: RetryStats) -> PipelineOutcome:
		projected = project(
			result,
			user_id=request.user_id,
			chapter_id=request.chapter_id,
			section_id=request.section_id,
		)
		if isinstance(result, FreeformResult):
			return PipelineOutcome(
				mode=result.mode,
				response=projected["response"],
				placeholder=result.placeholder,
				stats=stats,
			)
		return PipelineOutcome(mode=result.mode, records=projected, stats=stats)
