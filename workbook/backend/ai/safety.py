"""Crisis-language interception.

Matching is case-insensitive substring search over a denylist kept in a data
file. It will miss crisis language that avoids every listed phrase; the list is
meant to be extended rather than the matcher made clever.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple

from workbook.backend.ai.config import DEFAULT_CRISIS_TERMS_PATH
from workbook.backend.ai.errors import ProviderUnconfigured
from workbook.backend.ai.policies import normalize_for_match
from workbook.backend.ai.types import CrisisDecision


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrisisDenylist:
	terms: Tuple[str, ...]
	referral: str

	@classmethod
	def from_terms(cls, terms: Iterable[str], referral: str) -> "CrisisDenylist":
		cleaned = []
		for term in terms:
			normalized = normalize_for_match(str(term))
			if normalized and normalized not in cleaned:
				cleaned.append(normalized)
		if not cleaned:
			raise ValueError("Crisis denylist must contain at least one term.")
		if not referral.strip():
			raise ValueError("Crisis denylist requires referral text.")
		return cls(terms=tuple(cleaned), referral=referral.strip())


def load_denylist(path: Path = DEFAULT_CRISIS_TERMS_PATH) -> CrisisDenylist:
	try:
		payload = json.loads(Path(path).read_text(encoding="utf-8"))
	except (OSError, json.JSONDecodeError) as exc:
		raise ProviderUnconfigured(f"Crisis denylist at {path} could not be loaded.") from exc
	if not isinstance(payload, dict) or not isinstance(payload.get("terms"), list):
		raise ProviderUnconfigured(f"Crisis denylist at {path} must define a 'terms' list.")
	try:
		denylist = CrisisDenylist.from_terms(payload["terms"], str(payload.get("referral") or ""))
	except ValueError as exc:
		raise ProviderUnconfigured(f"Crisis denylist at {path} is invalid: {exc}") from exc
	logger.info("Loaded %d crisis terms from %s", len(denylist.terms), path)
	return denylist


class CrisisInterceptor:
	def __init__(self, denylist: CrisisDenylist):
		self._denylist = denylist

	@property
	def referral_text(self) -> str:
		return self._denylist.referral

	def check_crisis(self, latest_message: str | None) -> CrisisDecision:
		if not latest_message:
			return CrisisDecision(triggered=False)
		text = normalize_for_match(latest_message)
		matched = frozenset(term for term in self._denylist.terms if term in text)
		return CrisisDecision(triggered=bool(matched), matched_terms=matched)
