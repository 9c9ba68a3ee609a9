from __future__ import annotations

from typing import Optional


class AIServiceError(Exception):
	status_code = 502
	code = "ai_error"

	def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None):
		super().__init__(message)
		self.message = message
		if status_code is not None:
			self.status_code = status_code
		if code is not None:
			self.code = code


class ProviderUnconfigured(AIServiceError):
	status_code = 503
	code = "ai_provider_unconfigured"


class PartialContextFault(AIServiceError):
	"""A history category could not be read. Absorbed by the aggregator."""

	code = "ai_partial_context"

	def __init__(self, category: str, cause: BaseException):
		super().__init__(f"History fetch failed for category '{category}'.")
		self.category = category
		self.cause = cause


class TransientGenerationFailure(AIServiceError):
	"""One attempt failed in a way a later attempt may not."""

	code = "ai_provider_transient"

	def __init__(self, message: str, *, timeout: bool = False):
		super().__init__(message, status_code=504 if timeout else 502)
		self.timeout = timeout


class FatalGenerationFailure(AIServiceError):
	code = "ai_provider_fatal"


class GenerationFailed(AIServiceError):
	"""Transient failures outlasted the retry budget."""

	code = "ai_generation_failed"

	def __init__(self, message: str, *, attempts: int, timed_out: bool = False):
		super().__init__(message, status_code=504 if timed_out else 502)
		self.attempts = attempts
		self.timed_out = timed_out


class ContractError(AIServiceError):
	code = "ai_contract_violation"


class ParseError(ContractError):
	code = "ai_contract_parse_error"


class ShapeError(ContractError):
	code = "ai_contract_shape_error"


class EmptyResponse(ContractError):
	code = "ai_contract_empty_response"
