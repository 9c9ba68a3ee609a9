from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from workbook.backend.ai.types import (
	ChatMessage,
	ConversationMessage,
	ConversationType,
	Mode,
	TherapeuticContext,
)


_ACT_PRINCIPLES = """
Core ACT processes:
1. Psychological flexibility
2. Acceptance and mindfulness
3. Values clarification
4. Committed action
5. Cognitive defusion
6. Self-as-context
""".strip()

_JSON_RULES = """
Return ONLY valid JSON (no markdown, no commentary) with exactly the top-level shape shown.
Do not add other top-level keys.
""".strip()

_GUIDANCE_SYSTEM_PROMPT = f"""
You are a professional ACT (Acceptance and Commitment Therapy) therapist.
Based on the user's context, provide 2-3 personalized therapeutic guidance suggestions.
{_JSON_RULES}
{{
  "guidance": [
    {{
      "guidanceType": "exercise_suggestion" | "coping_strategy" | "mindfulness_technique" | "values_exploration" | "behavioral_change",
      "title": "Brief title",
      "content": "Detailed therapeutic guidance (2-3 paragraphs)",
      "personalizedFor": "Why this is specifically relevant to this user"
    }}
  ]
}}
Focus on ACT principles: psychological flexibility, acceptance, mindfulness, values clarification, and committed action.
""".strip()

_PROMPTS_SYSTEM_PROMPT = f"""
You are an expert ACT therapist specializing in deep reflection exercises.
Generate 2-3 progressive, open-ended reflection prompts that build on the user's previous response.
{_JSON_RULES}
{{
  "prompts": [
    {{
      "promptType": "reflection_question" | "exploration_prompt" | "values_clarification" | "mindfulness_cue" | "behavioral_inquiry",
      "promptText": "Deep, open-ended question that encourages self-exploration",
      "depth": 1 | 2 | 3,
      "followUpPrompts": ["Follow-up question 1", "Follow-up question 2"]
    }}
  ]
}}
Make prompts progressively deeper and grounded in ACT core processes.
""".strip()

_INSIGHTS_SYSTEM_PROMPT = f"""
You are an expert ACT therapist analyzing client progress patterns.
Analyze the user's therapeutic journey and provide actionable insights.
{_JSON_RULES}
{{
  "insights": [
    {{
      "insightType": "progress_analysis" | "pattern_recognition" | "therapeutic_recommendation" | "growth_opportunity",
      "title": "Clear insight title",
      "description": "Detailed analysis (2-3 paragraphs)",
      "confidence": 1-100,
      "actionable": true | false,
      "data": "Supporting evidence"
    }}
  ]
}}
Focus on psychological flexibility growth, behavioral patterns, and therapeutic progress.
""".strip()

_RECOMMENDATIONS_SYSTEM_PROMPT = f"""
You are an expert ACT therapist designing adaptive therapeutic interventions.
Based on the user's progress and responses, recommend personalized adaptations.
{_JSON_RULES}
{{
  "recommendations": [
    {{
      "recommendationType": "exercise_modification" | "difficulty_adjustment" | "focus_area" | "learning_path" | "practice_frequency",
      "title": "Adaptation title",
      "description": "Detailed recommendation (2-3 paragraphs)",
      "adaptationReason": "Why this adaptation is recommended",
      "priority": 1-5,
      "parameters": "Specific adaptation parameters"
    }}
  ]
}}
Focus on optimizing learning and therapeutic outcomes based on individual progress patterns.
""".strip()

_SENTIMENT_SYSTEM_PROMPT = f"""
You are a sentiment analysis expert specializing in therapeutic contexts.
Analyze the emotional sentiment and therapeutic state of the user's text.
{_JSON_RULES}
{{
  "rating": 1-5,
  "confidence": 0.0-1.0,
  "emotional_state": "Short description"
}}
""".strip()

_SUMMARY_SYSTEM_PROMPT = """
You write brief therapeutic session summaries for an ACT self-help workbook.
Highlight:
1. Key themes discussed
2. Progress made
3. Areas for continued focus
4. Next steps
Keep it professional, warm, and under 200 words. Plain text only.
""".strip()

_CONVERSATION_SYSTEM_PROMPT = f"""
You are a professional ACT (Acceptance and Commitment Therapy) therapist providing conversational support.
You are warm, empathetic, and skilled in ACT principles.

{_ACT_PRINCIPLES}

Guidelines:
- Be warm, professional, and therapeutic
- Ask thoughtful follow-up questions
- Encourage self-reflection and mindfulness
- Help connect responses to ACT principles
- Provide gentle guidance without being prescriptive
- Validate emotions while encouraging growth
- Focus on values and committed action
- You are not a replacement for professional care; suggest professional support when appropriate
""".strip()

_CONVERSATION_FRAMING: Dict[ConversationType, str] = {
	ConversationType.THERAPEUTIC_GUIDANCE: (
		"Session focus: therapeutic guidance. Help the user apply the current chapter's ACT skills "
		"to what they are experiencing."
	),
	ConversationType.CRISIS_SUPPORT: (
		"Session focus: crisis support. Prioritize emotional safety. Keep replies short, calm, and grounding. "
		"Always remind the user that immediate help is available: call or text 988 (Suicide & Crisis Lifeline), "
		"text HOME to 741741 (Crisis Text Line), or call 911 in an emergency. Do not attempt therapy techniques "
		"that require sustained focus."
	),
	ConversationType.REFLECTION: (
		"Session focus: reflection. Ask one open question at a time and help the user notice thoughts and "
		"feelings without judging them."
	),
	ConversationType.GOAL_SETTING: (
		"Session focus: goal setting. Help the user link a concrete, small next step to a value they hold, "
		"and anticipate barriers with acceptance rather than avoidance."
	),
}


def _dumps(value: Any) -> str:
	return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def _completed_count(context: TherapeuticContext) -> int:
	return sum(1 for entry in context.progress_history if entry.completed)


def _context_lines(context: TherapeuticContext) -> List[str]:
	return [
		f"- Chapter: {context.chapter_id if context.chapter_id is not None else 'not specified'}",
		f"- Section: {context.section_id or 'not specified'}",
		f"- Completed sections (recent window): {_completed_count(context)}",
		f"- Assessment history: {_dumps([item.as_dict() for item in context.assessment_history])}",
		f"- Progress history: {_dumps([item.as_dict() for item in context.progress_history])}",
		f"- Previous insights: {_dumps([item.as_dict() for item in context.previous_insights])}",
	]


def _responses_line(context: TherapeuticContext) -> str:
	if context.user_responses is None:
		return "- User responses: none"
	return f"- User responses: {_dumps(context.user_responses)}"


def _structured(system_prompt: str, user_lines: Sequence[str]) -> List[ChatMessage]:
	return [
		{"role": "system", "content": system_prompt},
		{"role": "user", "content": "\n".join(user_lines)},
	]


def _guidance(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	challenges = [str(item).strip() for item in extra.get("specific_challenges") or [] if str(item).strip()]
	lines = ["User context:", *_context_lines(context), _responses_line(context)]
	lines.append(f"- Specific challenges: {', '.join(challenges) if challenges else 'None specified'}")
	lines.append('Respond with {"guidance": [...]} only.')
	return _structured(_GUIDANCE_SYSTEM_PROMPT, lines)


def _reflection_prompts(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	previous = str(extra.get("previous_response") or "").strip()
	lines = ["Context:", *_context_lines(context), _responses_line(context)]
	lines.append(f"- Previous response: {previous or 'None'}")
	lines.append('Respond with {"prompts": [...]} only.')
	return _structured(_PROMPTS_SYSTEM_PROMPT, lines)


def _insights(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	lines = ["Progress data:", *_context_lines(context), _responses_line(context)]
	lines.append('Respond with {"insights": [...]} only.')
	return _structured(_INSIGHTS_SYSTEM_PROMPT, lines)


def _recommendations(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	lines = ["User context:", *_context_lines(context), _responses_line(context)]
	lines.append('Respond with {"recommendations": [...]} only.')
	return _structured(_RECOMMENDATIONS_SYSTEM_PROMPT, lines)


def _sentiment(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	text = str(extra.get("text") or "").strip()
	return _structured(
		_SENTIMENT_SYSTEM_PROMPT,
		[f"Text: {_dumps(text)}", 'Respond with {"rating": ..., "confidence": ..., "emotional_state": ...} only.'],
	)


def _session_summary(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	lines = [
		f"Conversations: {_dumps(list(extra.get('conversations') or []))}",
		f"Insights: {_dumps(list(extra.get('insights') or []))}",
		f"Guidance: {_dumps(list(extra.get('guidance') or []))}",
	]
	return _structured(_SUMMARY_SYSTEM_PROMPT, lines)


def conversation_system_prompt(context: TherapeuticContext, conversation_type: ConversationType) -> str:
	return "\n\n".join(
		[
			_CONVERSATION_SYSTEM_PROMPT,
			_CONVERSATION_FRAMING[conversation_type],
			"User context:\n"
			+ "\n".join(
				[
					f"- Current chapter: {context.chapter_id if context.chapter_id is not None else 'not specified'}",
					f"- Section: {context.section_id or 'not specified'}",
					f"- Completed sections (recent window): {_completed_count(context)}",
					f"- Recent insights: {len(context.previous_insights)}",
				]
			),
		]
	)


def _conversation(context: TherapeuticContext, extra: Mapping[str, Any]) -> List[ChatMessage]:
	conversation_type = ConversationType(extra.get("conversation_type") or ConversationType.THERAPEUTIC_GUIDANCE)
	messages: Sequence[ConversationMessage] = extra.get("messages") or ()
	sequence: List[ChatMessage] = [{"role": "system", "content": conversation_system_prompt(context, conversation_type)}]
	sequence.extend(message.as_chat() for message in messages)
	return sequence


_TEMPLATES: Dict[Mode, Callable[[TherapeuticContext, Mapping[str, Any]], List[ChatMessage]]] = {
	Mode.GUIDANCE: _guidance,
	Mode.REFLECTION_PROMPTS: _reflection_prompts,
	Mode.INSIGHTS: _insights,
	Mode.RECOMMENDATIONS: _recommendations,
	Mode.CONVERSATION: _conversation,
	Mode.SENTIMENT: _sentiment,
	Mode.SESSION_SUMMARY: _session_summary,
}


def build_prompt(mode: Mode, context: TherapeuticContext, extra: Optional[Mapping[str, Any]] = None) -> List[ChatMessage]:
	return _TEMPLATES[Mode(mode)](context, extra or {})
