import os
from pathlib import Path
from unittest import TestCase
from unittest.mock import patch

from workbook.backend.ai.config import DEFAULT_CRISIS_TERMS_PATH, BackoffPolicy, PipelineConfig, openai_api_key
from workbook.backend.ai.errors import ProviderUnconfigured


_AI_ENV = {
	"AI_OPENAI_MODEL": "",
	"AI_STRUCTURED_TIMEOUT_MS": "",
	"AI_CONVERSATION_TIMEOUT_MS": "",
	"AI_RETRY_BUDGET": "",
	"AI_CONTRACT_RETRY_BUDGET": "",
	"AI_BACKOFF_BASE_MS": "",
	"AI_BACKOFF_MAX_MS": "",
	"AI_BACKOFF_JITTER_RATIO": "",
	"AI_CONVERSATION_WINDOW": "",
	"AI_CONVERSATION_PLACEHOLDER": "",
	"AI_CRISIS_TERMS_PATH": "",
}


class PipelineConfigTests(TestCase):
	def test_defaults(self) -> None:
		with patch.dict(os.environ, _AI_ENV, clear=False):
			config = PipelineConfig.from_env()
		self.assertEqual(config.model, "gpt-4.1-mini")
		self.assertEqual(config.timeout_ms_for(False), 10_000)
		self.assertEqual(config.timeout_ms_for(True), 15_000)
		self.assertEqual(config.retry_budget, 2)
		self.assertEqual(config.contract_retry_budget, 2)
		self.assertEqual(config.backoff, BackoffPolicy(500, 8000, 0.5))
		self.assertEqual(config.conversation_window, 20)
		self.assertTrue(config.conversation_placeholder)
		self.assertEqual(config.crisis_terms_path, DEFAULT_CRISIS_TERMS_PATH)

	def test_overrides(self) -> None:
		env = dict(_AI_ENV)
		env.update(
			{
				"AI_OPENAI_MODEL": "gpt-4o-mini",
				"AI_RETRY_BUDGET": "4",
				"AI_CONTRACT_RETRY_BUDGET": "0",
				"AI_BACKOFF_BASE_MS": "250",
				"AI_BACKOFF_JITTER_RATIO": "0.2",
				"AI_CONVERSATION_PLACEHOLDER": "off",
				"AI_CRISIS_TERMS_PATH": "/etc/workbook/terms.json",
			}
		)
		with patch.dict(os.environ, env, clear=False):
			config = PipelineConfig.from_env()
		self.assertEqual(config.model, "gpt-4o-mini")
		self.assertEqual(config.retry_budget, 4)
		self.assertEqual(config.contract_retry_budget, 0)
		self.assertEqual(config.backoff.base_ms, 250)
		self.assertEqual(config.backoff.jitter_ratio, 0.2)
		self.assertFalse(config.conversation_placeholder)
		self.assertEqual(config.crisis_terms_path, Path("/etc/workbook/terms.json"))

	def test_invalid_values_are_configuration_errors(self) -> None:
		cases = {
			"AI_RETRY_BUDGET": "two",
			"AI_STRUCTURED_TIMEOUT_MS": "0",
			"AI_BACKOFF_JITTER_RATIO": "1.5",
			"AI_BACKOFF_MAX_MS": "100",
		}
		for name, value in cases.items():
			with self.subTest(name=name):
				env = dict(_AI_ENV)
				env[name] = value
				with patch.dict(os.environ, env, clear=False):
					with self.assertRaises(ProviderUnconfigured) as ctx:
						PipelineConfig.from_env()
				self.assertEqual(ctx.exception.status_code, 503)

	def test_api_key_required(self) -> None:
		with patch.dict(os.environ, {"OPENAI_API_KEY": "  "}, clear=False):
			with self.assertRaises(ProviderUnconfigured):
				openai_api_key()
		with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=False):
			self.assertEqual(openai_api_key(), "sk-test")

	def test_backoff_policy_validation(self) -> None:
		with self.assertRaises(ValueError):
			BackoffPolicy(base_ms=500, max_ms=100)
		with self.assertRaises(ValueError):
			BackoffPolicy(jitter_ratio=1.0)
