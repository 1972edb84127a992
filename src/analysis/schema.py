"""Parse and normalize analysis results into the canonical shape.

Provider replies are untrusted text. parse_provider_json() extracts a JSON
object or raises MalformedProviderResponse; normalize_result() then coerces a
dict from either path into the canonical shape:

  - unknown top-level keys and None values dropped
  - sections of the wrong type dropped (toneAnalysis is mandatory)
  - severities, intensities and scores clamped to their ranges
  - participantTones completed for every participant of a group chat
  - redFlagsDetected / redFlagCount derived from the flag list when present
  - conversationType / participants stamped from the request
"""
from __future__ import annotations

import json
import logging
import math
import re

from src.errors import MalformedProviderResponse
from src.tiers import FULL_FIELDS

logger = logging.getLogger(__name__)

RESULT_FIELDS = frozenset(f for f in FULL_FIELDS if "." not in f)

GROUP_TONE_PLACEHOLDER = "Group participant (tone not individually analyzed)"

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

_DICT_SECTIONS = (
    "communication", "healthScore", "manipulationScores", "participantConflictScores",
    "tensionContributions", "communicationStyles", "accountabilitySignals",
    "powerDynamics", "messageDominance", "evasionDetection",
    "psychologicalProfile", "redFlagsTimeline", "relationshipHealthIndicators",
    "personalizedGrowthRecommendations", "communicationPatternComparison",
)
_LIST_SECTIONS = ("redFlags", "keyQuotes", "highTensionFactors")
_TEXT_SECTIONS = ("tensionMeaning",)

MAX_RED_FLAG_COUNT = 100


def parse_provider_json(text: str) -> dict:
    """Extract the JSON object from a provider reply."""
    if not text or not text.strip():
        raise MalformedProviderResponse("Empty provider reply")
    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        raise MalformedProviderResponse("No JSON object in provider reply")
    try:
        data = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedProviderResponse(f"Invalid JSON in provider reply: {e}") from e
    if not isinstance(data, dict):
        raise MalformedProviderResponse("Provider reply is not a JSON object")
    return data


def _drop_none(value):
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value if v is not None]
    return value


def clamp_int(value, low: int, high: int, default: int | None = None) -> int | None:
    """Coerce a number-ish value to an int within [low, high]."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return max(low, min(high, int(math.floor(number + 0.5))))


def health_label(score: int) -> tuple[str, str]:
    if score >= 80:
        return "Very Healthy", "green"
    if score >= 60:
        return "Healthy", "light-green"
    if score >= 40:
        return "Tense", "yellow"
    return "Conflict", "red"


def _normalize_tone(section, request) -> dict:
    if not isinstance(section, dict):
        raise MalformedProviderResponse("toneAnalysis missing or not an object")
    overall = section.get("overallTone")
    if not isinstance(overall, str) or not overall.strip():
        raise MalformedProviderResponse("toneAnalysis.overallTone missing")

    tone = dict(section)
    states = []
    for item in section.get("emotionalState") or []:
        if isinstance(item, dict) and isinstance(item.get("emotion"), str):
            state = dict(item)
            intensity = item.get("intensity")
            # Some replies use a 0-1 scale despite the instructions
            if isinstance(intensity, float) and 0 < intensity < 1:
                intensity = intensity * 10
            state["intensity"] = clamp_int(intensity, 0, 10, default=0)
            states.append(state)
    tone["emotionalState"] = states

    tones = section.get("participantTones")
    if tones is not None and not isinstance(tones, dict):
        tones = None
    if request is not None and request.is_group:
        tones = dict(tones or {})
        for name in request.participant_labels:
            tones.setdefault(name, GROUP_TONE_PLACEHOLDER)
    if tones is not None:
        tone["participantTones"] = tones
    else:
        tone.pop("participantTones", None)
    return tone


def _normalize_red_flags(flags: list) -> list:
    normalized = []
    for flag in flags:
        if not isinstance(flag, dict) or not isinstance(flag.get("type"), str):
            continue
        flag = dict(flag)
        flag["severity"] = clamp_int(flag.get("severity"), 1, 10, default=1)
        flag.setdefault("description", "")
        quotes = flag.get("evidenceQuotes")
        if quotes is not None and not isinstance(quotes, list):
            flag.pop("evidenceQuotes")
        normalized.append(flag)
    return normalized


def _normalize_health(section: dict) -> dict | None:
    score = clamp_int(section.get("score"), 0, 100)
    if score is None:
        return None
    label, color = health_label(score)
    health = dict(section)
    health["score"] = score
    health.setdefault("label", label)
    health.setdefault("color", color)
    return health


def _normalize_empathetic_summary(section):
    """Either one overall summary string or a per-participant mapping."""
    if isinstance(section, str):
        return section if section.strip() else None
    if isinstance(section, dict):
        entries = {
            name: entry for name, entry in section.items()
            if isinstance(entry, dict) or (isinstance(entry, str) and entry.strip())
        }
        return entries or None
    return None


def _red_flag_summary(result: dict, data: dict) -> None:
    """Set the redFlagsDetected / redFlagCount teaser on result.

    The flag list wins; without one a bare redFlagCount is accepted.
    """
    if "redFlags" in result:
        count = len(result["redFlags"])
    else:
        count = clamp_int(data.get("redFlagCount"), 0, MAX_RED_FLAG_COUNT)
        if count is None:
            return
    result["redFlagsDetected"] = count > 0
    result["redFlagCount"] = count


def normalize_result(raw: dict, request=None) -> dict:
    """Coerce a raw result dict into the canonical shape.

    Raises MalformedProviderResponse when the mandatory toneAnalysis section
    is unusable.
    """
    if not isinstance(raw, dict):
        raise MalformedProviderResponse("Result is not an object")
    data = _drop_none(raw)
    dropped = sorted(set(data) - RESULT_FIELDS)
    if dropped:
        logger.debug("Dropping unknown result fields: %s", ", ".join(dropped))

    result: dict = {"toneAnalysis": _normalize_tone(data.get("toneAnalysis"), request)}

    for key in _DICT_SECTIONS:
        if isinstance(data.get(key), dict):
            result[key] = data[key]
    for key in _LIST_SECTIONS:
        if isinstance(data.get(key), list):
            result[key] = data[key]
    for key in _TEXT_SECTIONS:
        if isinstance(data.get(key), str) and data[key].strip():
            result[key] = data[key]
    summary = _normalize_empathetic_summary(data.get("empatheticSummary"))
    if summary is not None:
        result["empatheticSummary"] = summary

    communication = dict(result.get("communication") or {})
    patterns = communication.get("patterns")
    communication["patterns"] = [p for p in patterns if isinstance(p, str)] if isinstance(patterns, list) else []
    result["communication"] = communication

    if "redFlags" in result:
        result["redFlags"] = _normalize_red_flags(result["redFlags"])
    _red_flag_summary(result, data)

    if "healthScore" in result:
        health = _normalize_health(result["healthScore"])
        if health is None:
            del result["healthScore"]
        else:
            result["healthScore"] = health

    if "dramaScore" in data:
        drama = clamp_int(data["dramaScore"], 0, 10)
        if drama is not None:
            result["dramaScore"] = drama

    for name, entry in list(result.get("manipulationScores", {}).items()):
        if isinstance(entry, dict):
            entry["score"] = clamp_int(entry.get("score"), 0, 10, default=0)
        else:
            del result["manipulationScores"][name]

    if request is not None:
        result["conversationType"] = request.conversation_type
        result["participants"] = list(request.participant_labels)
    return result
