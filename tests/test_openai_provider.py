from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase, TestCase

import httpx
import openai

from workbook.backend.ai.errors import FatalGenerationFailure, TransientGenerationFailure
from workbook.backend.ai.providers import OpenAIChatProvider, classify_status


_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int):
	return cls("provider error", response=httpx.Response(status, request=_REQUEST), body=None)


class _FakeCompletions:
	def __init__(self, *, content: str | None = None, error: Exception | None = None):
		self._content = content
		self._error = error
		self.kwargs = None

	async def create(self, **kwargs):
		self.kwargs = kwargs
		if self._error is not None:
			raise self._error
		message = SimpleNamespace(content=self._content)
		return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class _FakeClient:
	def __init__(self, **kwargs):
		self.chat = SimpleNamespace(completions=_FakeCompletions(**kwargs))
		self.closed = False

	async def close(self):
		self.closed = True


def _provider(client) -> OpenAIChatProvider:
	return OpenAIChatProvider(api_key="test-key", model="gpt-4.1-mini", timeout_s=10, client=client)


class OpenAIChatProviderTests(IsolatedAsyncioTestCase):
	async def test_structured_call_requests_json_object(self) -> None:
		client = _FakeClient(content='{"insights": []}')
		raw = await _provider(client).complete(
			[{"role": "user", "content": "hi"}],
			max_tokens=1500,
			require_structured_output=True,
		)

		self.assertEqual(raw, '{"insights": []}')
		kwargs = client.chat.completions.kwargs
		self.assertEqual(kwargs["model"], "gpt-4.1-mini")
		self.assertEqual(kwargs["max_completion_tokens"], 1500)
		self.assertEqual(kwargs["response_format"], {"type": "json_object"})

	async def test_freeform_call_omits_response_format(self) -> None:
		client = _FakeClient(content="Hello")
		await _provider(client).complete([], max_tokens=500, require_structured_output=False)
		self.assertNotIn("response_format", client.chat.completions.kwargs)

	async def test_missing_content_is_empty_text(self) -> None:
		raw = await _provider(_FakeClient(content=None)).complete([], max_tokens=10, require_structured_output=False)
		self.assertEqual(raw, "")

	async def test_timeout_is_transient(self) -> None:
		client = _FakeClient(error=openai.APITimeoutError(request=_REQUEST))
		with self.assertRaises(TransientGenerationFailure) as ctx:
			await _provider(client).complete([], max_tokens=10, require_structured_output=False)
		self.assertTrue(ctx.exception.timeout)

	async def test_connection_error_is_transient(self) -> None:
		client = _FakeClient(error=openai.APIConnectionError(request=_REQUEST))
		with self.assertRaises(TransientGenerationFailure) as ctx:
			await _provider(client).complete([], max_tokens=10, require_structured_output=False)
		self.assertFalse(ctx.exception.timeout)

	async def test_rate_limit_and_server_errors_are_transient(self) -> None:
		for error in (_status_error(openai.RateLimitError, 429), _status_error(openai.InternalServerError, 503)):
			with self.subTest(status=error.status_code):
				with self.assertRaises(TransientGenerationFailure):
					await _provider(_FakeClient(error=error)).complete([], max_tokens=10, require_structured_output=False)

	async def test_auth_and_bad_request_are_fatal(self) -> None:
		for error in (_status_error(openai.AuthenticationError, 401), _status_error(openai.BadRequestError, 400)):
			with self.subTest(status=error.status_code):
				with self.assertRaises(FatalGenerationFailure):
					await _provider(_FakeClient(error=error)).complete([], max_tokens=10, require_structured_output=False)

	async def test_aclose_closes_client(self) -> None:
		client = _FakeClient(content="x")
		await _provider(client).aclose()
		self.assertTrue(client.closed)


class StatusClassificationTests(TestCase):
	def test_classify_status(self) -> None:
		self.assertEqual(classify_status(None), "transient")
		self.assertEqual(classify_status(408), "transient")
		self.assertEqual(classify_status(429), "transient")
		self.assertEqual(classify_status(502), "transient")
		self.assertEqual(classify_status(400), "fatal")
		self.assertEqual(classify_status(404), "fatal")
