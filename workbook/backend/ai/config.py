from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from workbook.backend.ai.errors import ProviderUnconfigured


_DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
_DEFAULT_STRUCTURED_TIMEOUT_MS = 10_000
_DEFAULT_CONVERSATION_TIMEOUT_MS = 15_000
_DEFAULT_RETRY_BUDGET = 2
_DEFAULT_CONTRACT_RETRY_BUDGET = 2
_DEFAULT_EMPTY_RETRY_BUDGET = 1
_DEFAULT_BACKOFF_BASE_MS = 500
_DEFAULT_BACKOFF_MAX_MS = 8_000
_DEFAULT_BACKOFF_JITTER_RATIO = 0.5
_DEFAULT_CONVERSATION_WINDOW = 20

DEFAULT_CRISIS_TERMS_PATH = Path(__file__).resolve().parent / "data" / "crisis_terms.json"


def _int_env(name: str, default: int, minimum: int = 0) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError as exc:
		raise ProviderUnconfigured(f"{name} must be an integer.") from exc
	if value < minimum:
		raise ProviderUnconfigured(f"{name} must be at least {minimum}.")
	return value


def _float_env(name: str, default: float, *, lower: float, upper: float) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise ProviderUnconfigured(f"{name} must be numeric.") from exc
	if not lower <= value < upper:
		raise ProviderUnconfigured(f"{name} must be in [{lower}, {upper}).")
	return value


def _flag_env(name: str, default: bool) -> bool:
	raw = os.getenv(name, "").strip().lower()
	if not raw:
		return default
	return raw not in {"0", "false", "off", "no"}


@dataclass(frozen=True)
class BackoffPolicy:
	base_ms: int = _DEFAULT_BACKOFF_BASE_MS
	max_ms: int = _DEFAULT_BACKOFF_MAX_MS
	jitter_ratio: float = _DEFAULT_BACKOFF_JITTER_RATIO

	def __post_init__(self) -> None:
		if self.base_ms <= 0 or self.max_ms < self.base_ms:
			raise ValueError("Backoff requires 0 < base_ms <= max_ms.")
		if not 0.0 <= self.jitter_ratio < 1.0:
			raise ValueError("jitter_ratio must be in [0, 1).")


@dataclass(frozen=True)
class PipelineConfig:
	model: str = _DEFAULT_OPENAI_MODEL
	structured_timeout_ms: int = _DEFAULT_STRUCTURED_TIMEOUT_MS
	conversation_timeout_ms: int = _DEFAULT_CONVERSATION_TIMEOUT_MS
	retry_budget: int = _DEFAULT_RETRY_BUDGET
	contract_retry_budget: int = _DEFAULT_CONTRACT_RETRY_BUDGET
	empty_retry_budget: int = _DEFAULT_EMPTY_RETRY_BUDGET
	backoff: BackoffPolicy = BackoffPolicy()
	conversation_window: int = _DEFAULT_CONVERSATION_WINDOW
	conversation_placeholder: bool = True
	crisis_terms_path: Path = DEFAULT_CRISIS_TERMS_PATH

	def timeout_ms_for(self, long_running: bool) -> int:
		return self.conversation_timeout_ms if long_running else self.structured_timeout_ms

	@classmethod
	def from_env(cls) -> "PipelineConfig":
		model = os.getenv("AI_OPENAI_MODEL", _DEFAULT_OPENAI_MODEL).strip() or _DEFAULT_OPENAI_MODEL
		base_ms = _int_env("AI_BACKOFF_BASE_MS", _DEFAULT_BACKOFF_BASE_MS, minimum=1)
		max_ms = _int_env("AI_BACKOFF_MAX_MS", _DEFAULT_BACKOFF_MAX_MS, minimum=1)
		if max_ms < base_ms:
			raise ProviderUnconfigured("AI_BACKOFF_MAX_MS must not be lower than AI_BACKOFF_BASE_MS.")
		terms_raw = os.getenv("AI_CRISIS_TERMS_PATH", "").strip()
		return cls(
			model=model,
			structured_timeout_ms=_int_env("AI_STRUCTURED_TIMEOUT_MS", _DEFAULT_STRUCTURED_TIMEOUT_MS, minimum=1),
			conversation_timeout_ms=_int_env(
				"AI_CONVERSATION_TIMEOUT_MS", _DEFAULT_CONVERSATION_TIMEOUT_MS, minimum=1
			),
			retry_budget=_int_env("AI_RETRY_BUDGET", _DEFAULT_RETRY_BUDGET),
			contract_retry_budget=_int_env("AI_CONTRACT_RETRY_BUDGET", _DEFAULT_CONTRACT_RETRY_BUDGET),
			backoff=BackoffPolicy(
				base_ms=base_ms,
				max_ms=max_ms,
				jitter_ratio=_float_env(
					"AI_BACKOFF_JITTER_RATIO", _DEFAULT_BACKOFF_JITTER_RATIO, lower=0.0, upper=1.0
				),
			),
			conversation_window=_int_env("AI_CONVERSATION_WINDOW", _DEFAULT_CONVERSATION_WINDOW, minimum=1),
			conversation_placeholder=_flag_env("AI_CONVERSATION_PLACEHOLDER", True),
			crisis_terms_path=Path(terms_raw) if terms_raw else DEFAULT_CRISIS_TERMS_PATH,
		)


def openai_api_key() -> str:
	key = os.getenv("OPENAI_API_KEY", "").strip()
	if not key:
		raise ProviderUnconfigured("OpenAI API key not configured. Set OPENAI_API_KEY.")
	return key
