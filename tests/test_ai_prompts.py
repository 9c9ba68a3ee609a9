from datetime import datetime, timezone
from unittest import TestCase

from workbook.backend.ai.prompts import build_prompt, conversation_system_prompt
from workbook.backend.ai.types import (
	AssessmentSummary,
	ConversationMessage,
	ConversationType,
	Mode,
	ProgressSummary,
	TherapeuticContext,
)


def _context(**overrides) -> TherapeuticContext:
	values = dict(
		user_id="user-1",
		chapter_id=3,
		section_id="3.2",
		user_responses={"q1": "I avoid meetings"},
		assessment_history=(AssessmentSummary("aaq", 3.5, 7, "2024-01-01T00:00:00Z"),),
		progress_history=(
			ProgressSummary(3, "3.1", True, "2024-01-02T00:00:00Z"),
			ProgressSummary(3, "3.2", False, "2024-01-03T00:00:00Z"),
		),
	)
	values.update(overrides)
	return TherapeuticContext(**values)


class PromptBuilderTests(TestCase):
	def test_structured_modes_name_their_top_level_key(self) -> None:
		keys = {
			Mode.GUIDANCE: '"guidance"',
			Mode.REFLECTION_PROMPTS: '"prompts"',
			Mode.INSIGHTS: '"insights"',
			Mode.RECOMMENDATIONS: '"recommendations"',
		}
		for mode, key in keys.items():
			with self.subTest(mode=mode.value):
				messages = build_prompt(mode, _context())
				self.assertEqual([message["role"] for message in messages], ["system", "user"])
				self.assertIn(key, messages[0]["content"])
				self.assertIn("Return ONLY valid JSON", messages[0]["content"])
				self.assertIn(key, messages[1]["content"])

	def test_context_and_answers_are_embedded(self) -> None:
		user = build_prompt(Mode.INSIGHTS, _context())[1]["content"]
		self.assertIn("- Chapter: 3", user)
		self.assertIn("- Completed sections (recent window): 1", user)
		self.assertIn("I avoid meetings", user)
		self.assertIn('"averageScore": 3.5', user)

	def test_guidance_lists_specific_challenges(self) -> None:
		user = build_prompt(Mode.GUIDANCE, _context(), {"specific_challenges": ["sleep", " ", "work stress"]})[1]["content"]
		self.assertIn("Specific challenges: sleep, work stress", user)

	def test_prompts_carry_previous_response(self) -> None:
		user = build_prompt(Mode.REFLECTION_PROMPTS, _context(), {"previous_response": "I noticed fear."})[1]["content"]
		self.assertIn("Previous response: I noticed fear.", user)

	def test_sentiment_quotes_the_text_only(self) -> None:
		messages = build_prompt(Mode.SENTIMENT, _context(), {"text": "I feel hopeful"})
		self.assertIn('"I feel hopeful"', messages[1]["content"])
		self.assertNotIn("I avoid meetings", messages[1]["content"])

	def test_conversation_sequence_starts_with_system_prompt(self) -> None:
		stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
		history = (
			ConversationMessage(role="user", content="Hello", timestamp=stamp),
			ConversationMessage(role="assistant", content="Hi there", timestamp=stamp),
			ConversationMessage(role="user", content="I feel stuck", timestamp=stamp),
		)
		messages = build_prompt(
			Mode.CONVERSATION,
			_context(),
			{"messages": history, "conversation_type": ConversationType.REFLECTION},
		)
		self.assertEqual(messages[0]["role"], "system")
		self.assertIn("Session focus: reflection", messages[0]["content"])
		self.assertEqual(messages[1:], [message.as_chat() for message in history])

	def test_crisis_support_framing_lists_hotlines(self) -> None:
		prompt = conversation_system_prompt(_context(), ConversationType.CRISIS_SUPPORT)
		self.assertIn("988", prompt)
		self.assertIn("Current chapter: 3", prompt)

	def test_prompt_is_deterministic(self) -> None:
		first = build_prompt(Mode.RECOMMENDATIONS, _context())
		second = build_prompt(Mode.RECOMMENDATIONS, _context())
		self.assertEqual(first, second)
