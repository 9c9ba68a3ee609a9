import json
from unittest import TestCase

from workbook.backend.ai.contracts import ResponseContractValidator, strip_code_fences
from workbook.backend.ai.errors import EmptyResponse, ParseError, ShapeError
from workbook.backend.ai.types import FreeformResult, Mode, StructuredResult


_INSIGHT = {
	"insightType": "progress_analysis",
	"title": "Growing flexibility",
	"description": "You are returning to values after setbacks.",
	"confidence": 82,
	"actionable": True,
	"data": "3 of 4 sections completed",
}


class ResponseContractValidatorTests(TestCase):
	def setUp(self) -> None:
		self.validator = ResponseContractValidator()

	def test_valid_insights_payload(self) -> None:
		result = self.validator.validate(json.dumps({"insights": [_INSIGHT]}), Mode.INSIGHTS)
		self.assertIsInstance(result, StructuredResult)
		self.assertEqual(result.payload["insights"][0]["title"], "Growing flexibility")
		self.assertEqual(result.payload["insights"][0]["confidence"], 82)

	def test_fenced_json_is_accepted(self) -> None:
		raw = "```json\n" + json.dumps({"insights": [_INSIGHT]}) + "\n```"
		result = self.validator.validate(raw, Mode.INSIGHTS)
		self.assertEqual(len(result.payload["insights"]), 1)

	def test_prose_is_a_parse_error(self) -> None:
		with self.assertRaises(ParseError) as ctx:
			self.validator.validate("Here are some insights for you!", Mode.INSIGHTS)
		self.assertEqual(ctx.exception.code, "ai_contract_parse_error")
		self.assertEqual(ctx.exception.status_code, 502)

	def test_missing_key_is_a_shape_error(self) -> None:
		with self.assertRaises(ShapeError):
			self.validator.validate(json.dumps({"guidance": []}), Mode.INSIGHTS)

	def test_key_holding_an_object_is_a_shape_error(self) -> None:
		with self.assertRaises(ShapeError):
			self.validator.validate(json.dumps({"insights": _INSIGHT}), Mode.INSIGHTS)

	def test_top_level_array_is_a_shape_error(self) -> None:
		with self.assertRaises(ShapeError):
			self.validator.validate(json.dumps([_INSIGHT]), Mode.INSIGHTS)

	def test_item_missing_required_field_is_a_shape_error(self) -> None:
		item = dict(_INSIGHT)
		del item["title"]
		with self.assertRaises(ShapeError) as ctx:
			self.validator.validate(json.dumps({"insights": [item]}), Mode.INSIGHTS)
		self.assertIn("title", ctx.exception.message)

	def test_out_of_range_priority_is_a_shape_error(self) -> None:
		raw = json.dumps(
			{
				"recommendations": [
					{"recommendationType": "focus_area", "title": "t", "description": "d", "priority": 9}
				]
			}
		)
		with self.assertRaises(ShapeError):
			self.validator.validate(raw, Mode.RECOMMENDATIONS)

	def test_empty_output_is_distinct(self) -> None:
		for raw in ("", "   \n", None):
			with self.subTest(raw=raw):
				with self.assertRaises(EmptyResponse) as ctx:
					self.validator.validate(raw, Mode.GUIDANCE)
				self.assertEqual(ctx.exception.code, "ai_contract_empty_response")

	def test_empty_array_is_valid(self) -> None:
		result = self.validator.validate('{"prompts": []}', Mode.REFLECTION_PROMPTS)
		self.assertEqual(result.payload, {"prompts": []})

	def test_extra_item_fields_are_dropped(self) -> None:
		raw = json.dumps({"prompts": [{"promptType": "reflection_question", "promptText": "What matters?", "mood": "x"}]})
		prompt = self.validator.validate(raw, Mode.REFLECTION_PROMPTS).payload["prompts"][0]
		self.assertNotIn("mood", prompt)
		self.assertEqual(prompt["depth"], 1)
		self.assertEqual(prompt["followUpPrompts"], [])

	def test_sentiment_object(self) -> None:
		raw = json.dumps({"rating": 4.0, "confidence": 0.8, "emotional_state": "hopeful"})
		result = self.validator.validate(raw, Mode.SENTIMENT)
		self.assertEqual(result.payload, {"rating": 4, "confidence": 0.8, "emotional_state": "hopeful"})

	def test_sentiment_out_of_range_is_a_shape_error(self) -> None:
		raw = json.dumps({"rating": 7, "confidence": 0.8, "emotional_state": "hopeful"})
		with self.assertRaises(ShapeError):
			self.validator.validate(raw, Mode.SENTIMENT)

	def test_conversation_text_is_freeform(self) -> None:
		result = self.validator.validate("  That sounds hard. What matters to you here?  ", Mode.CONVERSATION)
		self.assertIsInstance(result, FreeformResult)
		self.assertEqual(result.text, "That sounds hard. What matters to you here?")
		self.assertFalse(result.placeholder)


class CodeFenceTests(TestCase):
	def test_strip_code_fences(self) -> None:
		self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')
		self.assertEqual(strip_code_fences('```\n{"a": 1}```'), '{"a": 1}')
		self.assertEqual(strip_code_fences('{"a": 1}'), '{"a": 1}')
