from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from workbook.backend.ai.errors import (
	FatalGenerationFailure,
	TransientGenerationFailure,
)
from workbook.backend.ai.types import ChatMessage


_TRANSIENT_STATUS_CODES = {408, 409, 425, 429}


class CompletionProvider(Protocol):
	"""One chat-completion call. Implementations raise TransientGenerationFailure
	or FatalGenerationFailure; retrying is the caller's job."""

	async def complete(
		self,
		messages: Sequence[ChatMessage],
		*,
		max_tokens: int,
		require_structured_output: bool,
	) -> str:
		...


def classify_status(status_code: Optional[int]) -> str:
	if status_code is None:
		return "transient"
	if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
		return "transient"
	return "fatal"


def _build_async_openai_client(*, api_key: str, timeout_s: float):
	# SDK retries are disabled; the completion client owns the retry policy.
	return AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)


def _extract_message_text(response: Any) -> str:
	choices = getattr(response, "choices", None)
	if not choices:
		return ""
	message = getattr(choices[0], "message", None)
	content = getattr(message, "content", None)
	return content if isinstance(content, str) else ""


class OpenAIChatProvider:
	def __init__(self, *, api_key: str, model: str, timeout_s: float, client: Any = None):
		self.model = model
		self._client = client or _build_async_openai_client(api_key=api_key, timeout_s=timeout_s)

	async def complete(
		self,
		messages: Sequence[ChatMessage],
		*,
		max_tokens: int,
		require_structured_output: bool,
	) -> str:
		kwargs: dict[str, Any] = {
			"model": self.model,
			"messages": list(messages),
			"max_completion_tokens": max_tokens,
		}
		if require_structured_output:
			kwargs["response_format"] = {"type": "json_object"}
		try:
			response = await self._client.chat.completions.create(**kwargs)
		except openai.APITimeoutError as exc:
			raise TransientGenerationFailure("Text generation provider timed out.", timeout=True) from exc
		except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
			raise FatalGenerationFailure(
				"Text generation provider rejected the credentials.", status_code=502
			) from exc
		except openai.APIConnectionError as exc:
			raise TransientGenerationFailure("Text generation provider connection failed.") from exc
		except openai.APIStatusError as exc:
			if classify_status(exc.status_code) == "transient":
				raise TransientGenerationFailure(
					f"Text generation provider returned HTTP {exc.status_code}."
				) from exc
			raise FatalGenerationFailure(f"Text generation provider returned HTTP {exc.status_code}.") from exc
		return _extract_message_text(response)

	async def aclose(self) -> None:
		close = getattr(self._client, "close", None)
		if close is not None:
			await close()
