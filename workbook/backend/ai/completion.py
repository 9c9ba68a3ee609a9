"""Retrying wrapper around a CompletionProvider.

Each call walks an explicit state machine:

    ATTEMPT -> SUCCESS | TIMEOUT | TRANSIENT_ERROR | FATAL_ERROR
    TIMEOUT | TRANSIENT_ERROR -> ATTEMPT (budget left) | EXHAUSTED

Attempts are sequential. A timed-out attempt is cancelled, not abandoned.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from workbook.backend.ai.config import BackoffPolicy
from workbook.backend.ai.errors import (
	FatalGenerationFailure,
	GenerationFailed,
	TransientGenerationFailure,
)
from workbook.backend.ai.policies import redact_for_log
from workbook.backend.ai.providers import CompletionProvider
from workbook.backend.ai.types import CompletionRequest, RetryStats


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class AttemptState(str, Enum):
	ATTEMPT = "attempt"
	SUCCESS = "success"
	TIMEOUT = "timeout"
	TRANSIENT_ERROR = "transient_error"
	FATAL_ERROR = "fatal_error"
	EXHAUSTED = "exhausted"


TRANSITIONS: Dict[AttemptState, FrozenSet[AttemptState]] = {
	AttemptState.ATTEMPT: frozenset(
		{
			AttemptState.SUCCESS,
			AttemptState.TIMEOUT,
			AttemptState.TRANSIENT_ERROR,
			AttemptState.FATAL_ERROR,
		}
	),
	AttemptState.TIMEOUT: frozenset({AttemptState.ATTEMPT, AttemptState.EXHAUSTED}),
	AttemptState.TRANSIENT_ERROR: frozenset({AttemptState.ATTEMPT, AttemptState.EXHAUSTED}),
	AttemptState.SUCCESS: frozenset(),
	AttemptState.FATAL_ERROR: frozenset(),
	AttemptState.EXHAUSTED: frozenset(),
}

TERMINAL_STATES = frozenset(state for state, targets in TRANSITIONS.items() if not targets)


def next_state(current: AttemptState, target: AttemptState) -> AttemptState:
	if target not in TRANSITIONS[current]:
		raise RuntimeError(f"Illegal completion state transition {current.value} -> {target.value}.")
	return target


def backoff_delay(attempt: int, policy: BackoffPolicy, rng: random.Random) -> float:
	"""Seconds to wait before retry number `attempt + 1` (attempt is 0-based).

	Jitter is bounded by `base * jitter_ratio` < base, so delays strictly grow
	below the cap. The jittered delay is clamped to `max_ms`, so it never
	exceeds the cap and never shrinks once the cap is reached.
	"""
	base = policy.base_ms / 1000.0
	cap = policy.max_ms / 1000.0
	exponential = min(cap, base * (2 ** attempt))
	jitter = rng.uniform(0.0, base * policy.jitter_ratio) if policy.jitter_ratio > 0 else 0.0
	return min(cap, exponential + jitter)


class ResilientCompletionClient:
	def __init__(
		self,
		provider: CompletionProvider,
		backoff: BackoffPolicy,
		*,
		sleep: Optional[SleepFn] = None,
		rng: Optional[random.Random] = None,
	):
		self._provider = provider
		self._backoff = backoff
		self._sleep = sleep or asyncio.sleep
		self._rng = rng or random.Random()

	async def complete(self, request: CompletionRequest, stats: Optional[RetryStats] = None) -> str:
		stats = stats if stats is not None else RetryStats()
		state = AttemptState.ATTEMPT
		retries_used = 0
		last_error: Optional[BaseException] = None

		while True:
			stats.attempts += 1
			stats.states.append(state.value)
			try:
				raw = await asyncio.wait_for(
					self._provider.complete(
						request.messages,
						max_tokens=request.max_tokens,
						require_structured_output=request.require_structured_output,
					),
					timeout=request.timeout_ms / 1000.0,
				)
			except asyncio.TimeoutError as exc:
				state = next_state(state, AttemptState.TIMEOUT)
				last_error = exc
			except TransientGenerationFailure as exc:
				state = next_state(state, AttemptState.TIMEOUT if exc.timeout else AttemptState.TRANSIENT_ERROR)
				last_error = exc
			except FatalGenerationFailure as exc:
				state = next_state(state, AttemptState.FATAL_ERROR)
				stats.states.append(state.value)
				logger.error(
					"Completion fatal failure mode=%s attempt=%d: %s",
					request.mode.value,
					stats.attempts,
					redact_for_log(exc.message),
				)
				raise
			else:
				state = next_state(state, AttemptState.SUCCESS)
				stats.states.append(state.value)
				return raw

			stats.states.append(state.value)
			if retries_used >= request.retry_budget:
				state = next_state(state, AttemptState.EXHAUSTED)
				stats.states.append(state.value)
				timed_out = isinstance(last_error, asyncio.TimeoutError) or (
					isinstance(last_error, TransientGenerationFailure) and last_error.timeout
				)
				logger.error(
					"Completion retries exhausted mode=%s attempts=%d last=%s",
					request.mode.value,
					stats.attempts,
					last_error.__class__.__name__,
				)
				raise GenerationFailed(
					"Text generation failed after retries.",
					attempts=stats.attempts,
					timed_out=timed_out,
				) from last_error

			delay = backoff_delay(retries_used, self._backoff, self._rng)
			retries_used += 1
			stats.network_retries += 1
			stats.delays.append(delay)
			logger.info(
				"Completion %s mode=%s attempt=%d; retrying in %.2fs",
				state.value,
				request.mode.value,
				stats.attempts,
				delay,
			)
			await self._sleep(delay)
			state = next_state(state, AttemptState.ATTEMPT)
