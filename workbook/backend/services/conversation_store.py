from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, List, Optional, Tuple

from workbook.backend.ai.errors import AIServiceError
from workbook.backend.ai.types import ConversationMessage


_DEFAULT_TTL_SECONDS = 6 * 60 * 60
_DEFAULT_MAX_SESSIONS = 1000
_DEFAULT_MAX_MESSAGES = 200

SessionKey = Tuple[str, str]


class ConversationSessionFull(AIServiceError):
	status_code = 409
	code = "ai_conversation_session_full"


@dataclass
class ConversationSession:
	user_id: str
	session_id: str
	updated_at: datetime
	messages: List[ConversationMessage] = field(default_factory=list)


_STORE: Dict[SessionKey, ConversationSession] = {}
_LOCK = Lock()


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def ttl_seconds() -> int:
	return _int_env("AI_SESSION_TTL_S", _DEFAULT_TTL_SECONDS, minimum=60)


def max_sessions() -> int:
	return _int_env("AI_SESSION_MAX_SESSIONS", _DEFAULT_MAX_SESSIONS, minimum=1)


def max_messages() -> int:
	return _int_env("AI_SESSION_MAX_MESSAGES", _DEFAULT_MAX_MESSAGES, minimum=2)


def _evict_locked(now: datetime) -> None:
	ttl = timedelta(seconds=ttl_seconds())
	for key in [key for key, session in _STORE.items() if now - session.updated_at > ttl]:
		_STORE.pop(key, None)
	overflow = len(_STORE) - max_sessions()
	if overflow > 0:
		oldest = sorted(_STORE, key=lambda key: _STORE[key].updated_at)[:overflow]
		for key in oldest:
			_STORE.pop(key, None)


def history(user_id: str, session_id: str) -> Tuple[ConversationMessage, ...]:
	"""Stored turns for one session, oldest first. Unknown sessions are empty."""
	with _LOCK:
		_evict_locked(_now())
		session = _STORE.get((user_id, session_id))
		if session is None:
			return ()
		return tuple(session.messages)


def _full_message(limit: int) -> str:
	return f"Conversation session reached its limit of {limit} messages. Start a new session."


def ensure_capacity(user_id: str, session_id: str) -> None:
	"""Raise ConversationSessionFull when one more exchange would not fit."""
	limit = max_messages()
	with _LOCK:
		_evict_locked(_now())
		session = _STORE.get((user_id, session_id))
		if session is not None and len(session.messages) + 2 > limit:
			raise ConversationSessionFull(_full_message(limit))


def append_exchange(
	user_id: str,
	session_id: str,
	user_message: str,
	reply: str,
	*,
	crisis: bool = False,
	now: Optional[datetime] = None,
) -> Tuple[ConversationMessage, ...]:
	# Append-only: a full session rejects the exchange instead of dropping older turns.
	stamp = now or _now()
	limit = max_messages()
	with _LOCK:
		_evict_locked(stamp)
		key = (user_id, session_id)
		session = _STORE.get(key)
		if session is None:
			session = ConversationSession(user_id=user_id, session_id=session_id, updated_at=stamp)
			_STORE[key] = session
		if len(session.messages) + 2 > limit:
			raise ConversationSessionFull(_full_message(limit))
		session.messages.append(
			ConversationMessage(role="user", content=user_message.strip(), timestamp=stamp, crisis=crisis)
		)
		session.messages.append(
			ConversationMessage(role="assistant", content=reply.strip(), timestamp=stamp, crisis=crisis)
		)
		session.updated_at = stamp
		return tuple(session.messages)


def clear() -> None:
	with _LOCK:
		_STORE.clear()
