from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple, Union

from workbook.backend.ai.types import CompletionResult, FreeformResult, MODE_SPECS, Mode, StructuredResult


ProjectedRecords = Union[List[Dict[str, Any]], Dict[str, Any]]

# (user key, chapter key, section key); None means the identifier is not attached.
_IDENTITY_KEYS: Dict[Mode, Tuple[str, Optional[str], Optional[str]]] = {
	Mode.GUIDANCE: ("userId", "chapterId", "sectionId"),
	Mode.REFLECTION_PROMPTS: ("userId", "chapterId", "sectionId"),
	Mode.INSIGHTS: ("userId", None, None),
	Mode.RECOMMENDATIONS: ("userId", "targetChapterId", "targetSectionId"),
	Mode.SENTIMENT: ("userId", None, None),
}


def _identifiers(
	mode: Mode,
	user_id: str,
	chapter_id: Optional[int],
	section_id: Optional[str],
) -> Dict[str, Any]:
	user_key, chapter_key, section_key = _IDENTITY_KEYS[mode]
	identifiers: Dict[str, Any] = {user_key: user_id}
	if chapter_key is not None:
		identifiers[chapter_key] = chapter_id
	if section_key is not None:
		identifiers[section_key] = section_id
	return identifiers


def project(
	result: CompletionResult,
	*,
	user_id: str,
	chapter_id: Optional[int] = None,
	section_id: Optional[str] = None,
) -> ProjectedRecords:
	"""Shape a validated result into records ready for the caller to persist.

	Items are deep-copied; identifier keys are added next to the model's fields,
	which are left as validated. The same input always yields the same output.
	"""
	if isinstance(result, FreeformResult):
		return {"response": result.text}
	if not isinstance(result, StructuredResult):
		raise TypeError(f"Cannot project {type(result).__name__}.")

	identifiers = _identifiers(result.mode, user_id, chapter_id, section_id)
	shape = MODE_SPECS[result.mode].shape
	if shape.key is None:
		return {**copy.deepcopy(result.payload), **identifiers}
	return [{**copy.deepcopy(item), **identifiers} for item in result.payload[shape.key]]
