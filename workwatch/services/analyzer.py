"""Adapter between the context bundle and the external verdict provider."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from openai import OpenAIError

from ..models.records import SEVERITIES, AnalysisRequest, Verdict
from ..utils.prompts import build_analysis_prompt
from .llm import LLMClient, LLMUnavailable

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_PATTERN_TYPES = {"single_incident", "cumulative", "escalation", "none"}


def _coerce_confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.5


def parse_verdict(text: str) -> Optional[Verdict]:
    """Extract a verdict from an analyzer reply, or ``None`` if it has no usable JSON."""

    payload = text or ""
    block = _CODE_BLOCK.search(payload)
    if block and block.group(1):
        payload = block.group(1)
    match = _JSON_OBJECT.search(payload)
    if match:
        payload = match.group(0)

    try:
        data: Dict[str, Any] = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("isConcerning"), bool):
        return None

    severity = data.get("severity")
    if not isinstance(severity, str) or severity not in SEVERITIES:
        severity = "low"
    pattern_type = data.get("patternType")
    if not isinstance(pattern_type, str) or pattern_type not in _PATTERN_TYPES:
        pattern_type = None

    return Verdict(
        is_concerning=data["isConcerning"],
        severity=severity,
        issue_type=str(data.get("issueType") or "none"),
        reason=str(data.get("reason") or ""),
        suggestion=str(data.get("suggestion") or ""),
        confidence=_coerce_confidence(data.get("confidence", 0.5)),
        pattern_type=pattern_type,
    )


class VerdictAnalyzer:
    """Asks the LLM for a verdict, falling back to a non-concerning default on any failure."""

    def __init__(self, llm: LLMClient, max_tokens: int = 1000):
        self._llm = llm
        self._max_tokens = max_tokens

    async def analyze(self, request: AnalysisRequest) -> Verdict:
        prompt = build_analysis_prompt(request)
        try:
            choice = await self._llm.run(
                [{"role": "user", "content": prompt}],
                max_tokens=self._max_tokens,
            )
        except LLMUnavailable:
            logger.warning("LLM not configured; skipping analysis")
            return Verdict.default("LLM not configured")
        except OpenAIError:
            logger.exception("Verdict request failed")
            return Verdict.default()

        verdict = parse_verdict(LLMClient.extract_text(choice))
        if verdict is None:
            logger.warning("Analyzer returned an unparsable response; defaulting to non-concerning")
            return Verdict.default("Unparsable analyzer response")
        return verdict
