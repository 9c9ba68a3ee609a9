from __future__ import annotations

import re
from typing import Any


_USER_ID_VISIBLE_CHARS = 8

_SENSITIVE_TEXT_PATTERNS: list[tuple[str, str]] = [
	(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", "[redacted_email]"),
	(r"\bsk-[A-Za-z0-9_-]{16,}\b", "[redacted_key]"),
	(r"\b(?:\+?1[ -]?)?\(?\d{3}\)?[ -]?\d{3}[ -]?\d{4}\b", "[redacted_phone]"),
]


def mask_user_id(user_id: Any) -> str:
	text = str(user_id or "")
	if not text:
		return "<anonymous>"
	return text[:_USER_ID_VISIBLE_CHARS] + "..."


def normalize_for_match(text: str) -> str:
	return " ".join(text.split()).casefold()


def redact_for_log(text: str, *, max_chars: int = 200) -> str:
	result = text
	for pattern, replacement in _SENSITIVE_TEXT_PATTERNS:
		result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
	result = " ".join(result.split()).strip()
	if len(result) > max_chars:
		result = result[: max_chars - 15].rstrip() + "...[truncated]"
	return result
