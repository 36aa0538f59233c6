"""Rule-based screening that decides which messages go to the analyzer."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern, Sequence

from ..utils.trigger_patterns import TRIGGER_CATEGORIES, TRIGGER_TABLE_VERSION

SELF_MENTION_REASON = "self-mention"
NO_MATCH_REASON = "no concerning patterns detected"
TONE_EXCLAMATION_COUNT = 3
TONE_MIN_CAPS_LENGTH = 10


@dataclass
class TriggerDecision:
    should_analyze: bool
    reason: str
    target_user_id: Optional[int] = None
    category: Optional[str] = None


@dataclass
class _CompiledCategory:
    category: str
    reason: str
    targeted: bool
    pattern_type: str
    keywords: List[str]
    regexes: List[Pattern[str]]


def _compile(entry: Dict[str, Any]) -> _CompiledCategory:
    pattern_type = entry["pattern_type"]
    keywords: List[str] = []
    regexes: List[Pattern[str]] = []
    if pattern_type == "keyword":
        keywords = [keyword.lower() for keyword in entry["patterns"]]
    elif pattern_type == "regex":
        regexes = [re.compile(pattern, re.IGNORECASE) for pattern in entry["patterns"]]
    elif pattern_type != "tone":
        raise ValueError(f"Unknown trigger pattern type: {pattern_type}")
    return _CompiledCategory(
        category=entry["category"],
        reason=entry["reason"],
        targeted=bool(entry["targeted"]),
        pattern_type=pattern_type,
        keywords=keywords,
        regexes=regexes,
    )


def has_aggressive_tone(content: str) -> bool:
    if content.count("!") >= TONE_EXCLAMATION_COUNT:
        return True
    # isupper() needs at least one cased letter, so CJK text never counts as shouting.
    return len(content) > TONE_MIN_CAPS_LENGTH and content.isupper()


class TriggerEngine:
    """Evaluates the trigger table against a message. Holds no mutable state."""

    version = TRIGGER_TABLE_VERSION

    def __init__(self, categories: Sequence[Dict[str, Any]] = TRIGGER_CATEGORIES):
        self._categories = [_compile(entry) for entry in categories]

    def _matches(self, category: _CompiledCategory, content: str, lowered: str) -> bool:
        if category.pattern_type == "keyword":
            return any(keyword in lowered for keyword in category.keywords)
        if category.pattern_type == "tone":
            return has_aggressive_tone(content)
        return any(regex.search(content) for regex in category.regexes)

    def classify(
        self,
        content: str,
        author_id: int,
        mentioned_user_ids: Sequence[int],
        reply_to_author_id: Optional[int] = None,
    ) -> TriggerDecision:
        if reply_to_author_id is not None:
            counterpart: Optional[int] = reply_to_author_id
        elif mentioned_user_ids:
            counterpart = mentioned_user_ids[0]
        else:
            counterpart = None

        if counterpart is not None and counterpart == author_id:
            return TriggerDecision(should_analyze=False, reason=SELF_MENTION_REASON)

        lowered = content.lower()
        for category in self._categories:
            if category.targeted and counterpart is None:
                continue
            if not self._matches(category, content, lowered):
                continue
            return TriggerDecision(
                should_analyze=True,
                reason=category.reason,
                target_user_id=counterpart if counterpart is not None else author_id,
                category=category.category,
            )

        return TriggerDecision(should_analyze=False, reason=NO_MATCH_REASON)
