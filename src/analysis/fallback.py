"""Deterministic lexicon-based conversation analyzer.

Used whenever the reasoning provider is unconfigured, switched off, or fails.
No network, no randomness: the same conversation always yields the same result.

Core scoring:
  1. Whole-word, case-insensitive counts against POSITIVE_WORDS / NEGATIVE_WORDS.
  2. Sentiment: Positive if pos > neg, Negative if neg > pos, else Neutral.
  3. Emotional intensity = min(10, round(100 * (pos + neg) / total_words)).
  4. Red flags (avoidance phrases; "Negative Tone" when neg / max(pos, 1) > 2,
     severity min(8, round(ratio))). Every level gets the count; the flag
     list itself is a standard/full section.
  5. full: drama score = min(10, round((2 * neg + pos) / 10)).

Rounding is half-up throughout. The analyzer only decides which sections are
worth computing for a detail level; hiding sections a tier can't see is the
result shaper's job.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass

from src.conversation import Message, messages_by_speaker, split_messages, tokenize
from src.tiers import DetailLevel

POSITIVE_WORDS = frozenset({
    "happy", "good", "great", "awesome", "love", "thanks", "appreciate",
    "hope", "pleased", "excited", "glad", "care",
})

NEGATIVE_WORDS = frozenset({
    "sad", "bad", "terrible", "hate", "angry", "upset", "annoyed", "disappointed",
    "sorry", "worried", "forget", "beg", "ignore", "excuse", "blame", "problem",
    "done", "never", "always",
})

AVOIDANCE_RE = re.compile(
    r"\b(?:won'?t talk|not talking|don'?t want to talk|done talking|"
    r"ignor(?:e|ed|ing)|leave me alone|forget it|whatever|silent treatment)\b",
    re.IGNORECASE,
)

MANIPULATION_TACTICS = {
    "Gaslighting": re.compile(
        r"\b(?:that never happened|you'?re (?:imagining (?:things|it)|crazy|overreacting|too sensitive)|"
        r"you'?re remembering it wrong)\b",
        re.IGNORECASE,
    ),
    "Guilt-tripping": re.compile(
        r"\b(?:after (?:everything|all) i'?ve done|if you (?:really )?loved me|you owe me)\b",
        re.IGNORECASE,
    ),
    "Blame-shifting": re.compile(
        r"\b(?:your fault|you made me|because of you|you'?re the one)\b",
        re.IGNORECASE,
    ),
    "Ultimatums": re.compile(
        r"\b(?:or else|you'?ll regret|i'?m leaving if|last chance)\b",
        re.IGNORECASE,
    ),
}

OWNERSHIP_PHRASES = (
    "i should", "i need to", "i'm sorry", "my fault", "i made a mistake",
    "i understand", "you're right", "i was wrong", "i take responsibility",
    "i could have", "i didn't mean to", "let me fix", "i'll work on",
)

DEFLECTION_PHRASES = (
    "you always", "you never", "that's not my", "it's your fault", "you made me",
    "if you hadn't", "you're the one", "you're overreacting", "but you",
    "that's not what i meant", "whatever",
)

NEGATIVE_TONE_CAP = 8
AVOIDANCE_CAP = 8

TONE_SUMMARIES = {
    "Positive": "Positive: supportive and appreciative language outweighs negative language",
    "Negative": "Negative: critical or hurt language outweighs positive language",
    "Neutral": "Neutral: positive and negative language are evenly balanced",
}


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _normalize_quotes(text: str) -> str:
    return text.replace("’", "'").replace("‘", "'")


@dataclass
class LexiconCounts:
    positive: int = 0
    negative: int = 0
    total_words: int = 0

    @property
    def negative_ratio(self) -> float:
        return self.negative / max(self.positive, 1)


def count_lexicon(text: str) -> LexiconCounts:
    words = tokenize(_normalize_quotes(text))
    return LexiconCounts(
        positive=sum(1 for w in words if w in POSITIVE_WORDS),
        negative=sum(1 for w in words if w in NEGATIVE_WORDS),
        total_words=len(words),
    )


def sentiment_label(counts: LexiconCounts) -> str:
    if counts.positive > counts.negative:
        return "Positive"
    if counts.negative > counts.positive:
        return "Negative"
    return "Neutral"


def emotional_intensity(counts: LexiconCounts) -> int:
    if counts.total_words == 0:
        return 0
    hits = counts.positive + counts.negative
    return min(10, round_half_up(100 * hits / counts.total_words))


def drama_score(counts: LexiconCounts) -> int:
    return min(10, round_half_up((2 * counts.negative + counts.positive) / 10))


def health_score(counts: LexiconCounts) -> dict:
    """0-100 health meter from the sentiment balance."""
    hits = counts.positive + counts.negative
    if hits == 0:
        score = 60
    else:
        score = round_half_up(50 + 50 * (counts.positive - counts.negative) / hits)
    score = max(0, min(100, score))
    if score >= 80:
        label, color = "Very Healthy", "green"
    elif score >= 60:
        label, color = "Healthy", "light-green"
    elif score >= 40:
        label, color = "Tense", "yellow"
    else:
        label, color = "Conflict", "red"
    return {"score": score, "label": label, "color": color}


# ---------------------------------------------------------------------------
# Red flags
# ---------------------------------------------------------------------------

def negative_tone_flag(counts: LexiconCounts, messages: list[Message]) -> dict | None:
    ratio = counts.negative_ratio
    if ratio <= 2:
        return None
    flag = {
        "type": "Negative Tone",
        "description": (
            f"Negative language outweighs positive language "
            f"({counts.negative} negative vs {counts.positive} positive words)"
        ),
        "severity": min(NEGATIVE_TONE_CAP, round_half_up(ratio)),
    }
    scored = [(count_lexicon(m.text).negative, m) for m in messages]
    evidence = [m.text for hits, m in sorted(scored, key=lambda t: -t[0]) if hits > 0][:3]
    if evidence:
        flag["evidenceQuotes"] = evidence
    return flag


def avoidance_flags(messages: list[Message]) -> list[dict]:
    """One Avoidance flag per speaker who shuts the conversation down."""
    hits: dict[str | None, list[str]] = {}
    for msg in messages:
        matches = AVOIDANCE_RE.findall(_normalize_quotes(msg.text))
        if matches:
            hits.setdefault(msg.speaker, []).extend([msg.text] * len(matches))
    flags = []
    for speaker, quotes in hits.items():
        flag = {
            "type": "Avoidance",
            "description": "Stonewalling or refusal to engage with the other person's concerns",
            "severity": min(AVOIDANCE_CAP, 3 + len(quotes)),
            "evidenceQuotes": list(dict.fromkeys(quotes))[:3],
        }
        if speaker:
            flag["participant"] = speaker
        flags.append(flag)
    return flags


# ---------------------------------------------------------------------------
# Per-participant sections
# ---------------------------------------------------------------------------

def participant_tones(grouped: dict[str, list[Message]]) -> dict[str, str]:
    tones = {}
    for name, msgs in grouped.items():
        if not msgs:
            tones[name] = "No messages detected"
            continue
        label = sentiment_label(count_lexicon(" ".join(m.text for m in msgs)))
        tones[name] = {
            "Positive": "Mostly positive and appreciative",
            "Negative": "Mostly negative or critical",
            "Neutral": "Balanced or matter-of-fact",
        }[label]
    return tones


def key_quotes(messages: list[Message], limit: int = 3) -> list[dict]:
    scored = []
    for msg in messages:
        if not msg.speaker:
            continue
        counts = count_lexicon(msg.text)
        if counts.positive + counts.negative:
            scored.append((counts, msg))
    scored.sort(key=lambda t: (-(t[0].positive + t[0].negative), t[1].line_no))
    quotes = []
    for counts, msg in scored[:limit]:
        quotes.append({
            "speaker": msg.speaker,
            "quote": msg.text,
            "analysis": f"{sentiment_label(counts)} language in this message",
        })
    return quotes


def _manipulation_label(score: int) -> str:
    if score >= 6:
        return "High"
    if score >= 3:
        return "Moderate"
    return "Low"


def manipulation_scores(grouped: dict[str, list[Message]]) -> dict[str, dict]:
    scores = {}
    for name, msgs in grouped.items():
        text = _normalize_quotes(" ".join(m.text for m in msgs))
        tactics = {}
        for tactic, pattern in MANIPULATION_TACTICS.items():
            found = len(pattern.findall(text))
            if found:
                tactics[tactic] = found
        score = min(10, 2 * sum(tactics.values()))
        scores[name] = {
            "score": score,
            "label": _manipulation_label(score),
            "tactics": sorted(tactics),
        }
    return scores


def _count_phrases(text: str, phrases) -> int:
    return sum(text.count(p) for p in phrases)


def accountability_signals(grouped: dict[str, list[Message]]) -> dict[str, dict]:
    signals = {}
    for name, msgs in grouped.items():
        text = _normalize_quotes(" ".join(m.text for m in msgs)).lower()
        ownership = _count_phrases(text, OWNERSHIP_PHRASES)
        deflection = _count_phrases(text, DEFLECTION_PHRASES)
        if ownership > deflection:
            score, description = "High", "Uses ownership language and acknowledges the other person"
        elif deflection > ownership * 2:
            score, description = "Low", "Shifts blame or deflects responsibility"
        else:
            score, description = "Moderate", "Occasional ownership mixed with defensiveness"
        signals[name] = {
            "score": score,
            "description": description,
            "ownershipIndicators": ownership,
            "deflectionIndicators": deflection,
        }
    return signals


def _dominance_level(percentage: float) -> str:
    if percentage > 45:
        return "Highly Dominant"
    if percentage > 30:
        return "Dominant"
    if percentage < 5:
        return "Observer"
    if percentage < 10:
        return "Minimal Participation"
    return "Balanced Participant"


def message_dominance(grouped: dict[str, list[Message]]) -> dict:
    total = sum(len(msgs) for msgs in grouped.values())
    data = {}
    for name, msgs in grouped.items():
        pct = (len(msgs) / total * 100) if total else 0.0
        data[name] = {
            "messageCount": len(msgs),
            "wordCount": sum(len(tokenize(m.text)) for m in msgs),
            "messagePercentage": round_half_up(pct),
            "dominanceLevel": _dominance_level(pct),
        }
    return {
        "summary": "Message volume and participation per participant",
        "totalMessages": total,
        "participantData": data,
    }


def power_dynamics(grouped: dict[str, list[Message]]) -> dict:
    ranked = sorted(grouped, key=lambda name: -len(grouped[name]))
    roles = {}
    for i, name in enumerate(ranked):
        count = len(grouped[name])
        if i == 0 and count > 0:
            roles[name] = "Conversation Leader"
        elif i == 1 and len(ranked) > 2 and count >= 3:
            roles[name] = "Active Participant"
        elif count < 3:
            roles[name] = "Observer"
        else:
            roles[name] = "Regular Participant"
    questions = {
        name: sum(m.text.count("?") for m in msgs) for name, msgs in grouped.items()
    }
    return {
        "overallDynamics": "Influence inferred from message volume and question asking",
        "participantRoles": roles,
        "questionsAsked": questions,
    }


def _length_style(avg_words: float) -> str:
    if avg_words >= 15:
        return "Detailed"
    if avg_words <= 5:
        return "Brief"
    return "Conversational"


_STYLE_TONES = {"Positive": "warm", "Negative": "critical", "Neutral": "even-toned"}


def communication_styles(grouped: dict[str, list[Message]]) -> dict[str, str]:
    """One-line style per participant from message length, lexicon and questions."""
    styles = {}
    for name, msgs in grouped.items():
        if not msgs:
            styles[name] = "No messages detected"
            continue
        words = sum(len(tokenize(m.text)) for m in msgs)
        questions = sum(m.text.count("?") for m in msgs)
        tone = _STYLE_TONES[sentiment_label(count_lexicon(" ".join(m.text for m in msgs)))]
        style = f"{_length_style(words / len(msgs))} and {tone}"
        if 2 * questions >= len(msgs):
            style += "; asks frequent questions"
        styles[name] = style
    return styles


def evasion_detection(grouped: dict[str, list[Message]]) -> dict:
    participants = {}
    for name, msgs in grouped.items():
        examples = [m.text for m in msgs if AVOIDANCE_RE.search(_normalize_quotes(m.text))]
        if examples:
            participants[name] = {"count": len(examples), "examples": examples[:3]}
    return {"detected": bool(participants), "participants": participants}


# ---------------------------------------------------------------------------
# Communication summary
# ---------------------------------------------------------------------------

def _patterns(label: str, counts: LexiconCounts, flags: list[dict]) -> list[str]:
    patterns = [{
        "Positive": "Positive language outweighs negative language.",
        "Negative": "Negative language outweighs positive language.",
        "Neutral": "Positive and negative language are roughly balanced.",
    }[label]]
    if any(f["type"] == "Avoidance" for f in flags):
        patterns.append("At least one participant withdraws from the conversation.")
    if counts.total_words and counts.positive + counts.negative == 0:
        patterns.append("Messages are mostly factual with little emotional language.")
    return patterns


_OUTLOOK = {
    "Very Healthy": "Likely to stay supportive if current habits continue.",
    "Healthy": "Stable, with room to address small frictions early.",
    "Tense": "At risk of recurring arguments unless the flagged patterns are addressed.",
    "Conflict": "Likely to escalate without a deliberate change in how disagreements are handled.",
}


def relationship_health_indicators(health: dict, flags: list[dict], suggestions: list[str]) -> dict:
    concerns = [
        {"issue": f["type"], "severity": f["severity"], "participant": f.get("participant", "Both")}
        for f in sorted(flags, key=lambda f: -f["severity"])
    ]
    return {
        "currentScore": health["score"],
        "currentLabel": health["label"],
        "primaryConcerns": concerns,
        "patterns": {
            "recurring": sorted({f["type"] for f in flags}),
            "escalating": [],
            "improving": [],
        },
        "projectedOutcome": _OUTLOOK[health["label"]],
        "recommendedFocus": suggestions[:3],
    }


def _suggestions(flags: list[dict], manipulation: dict[str, dict]) -> list[str]:
    suggestions = []
    types = {f["type"] for f in flags}
    if "Avoidance" in types:
        suggestions.append("Agree on a time to come back to the topic instead of ending the conversation.")
    if "Negative Tone" in types:
        suggestions.append("Describe the specific behaviour that hurt rather than using 'always' or 'never'.")
    if any(m["score"] >= 3 for m in manipulation.values()):
        suggestions.append("Focus on each person's own feelings and needs instead of assigning blame.")
    if not suggestions:
        suggestions.append("Keep acknowledging each other's points before responding.")
    return suggestions


class FallbackAnalyzer:
    """Produces the canonical result shape without calling any provider."""

    def analyze(self, request, detail_level: DetailLevel) -> dict:
        participants = list(request.participant_labels)
        text = request.conversation_text
        messages = split_messages(text, participants)
        grouped = messages_by_speaker(messages, participants)
        counts = count_lexicon(text)
        label = sentiment_label(counts)

        flags = avoidance_flags(messages)
        tone_flag = negative_tone_flag(counts, messages)
        if tone_flag:
            flags.append(tone_flag)
        manipulation: dict[str, dict] = {}
        if detail_level >= DetailLevel.STANDARD:
            manipulation = manipulation_scores(grouped)

        result = {
            "toneAnalysis": {
                "overallTone": TONE_SUMMARIES[label],
                "emotionalState": [{"emotion": label, "intensity": emotional_intensity(counts)}],
                "participantTones": participant_tones(grouped),
            },
            "communication": {"patterns": _patterns(label, counts, flags)},
            "healthScore": health_score(counts),
            "redFlagCount": len(flags),
            "conversationType": request.conversation_type,
            "participants": participants,
        }

        if detail_level >= DetailLevel.STANDARD:
            result["redFlags"] = flags
            result["communication"]["suggestions"] = _suggestions(flags, manipulation)
            result["manipulationScores"] = manipulation
            result["accountabilitySignals"] = accountability_signals(grouped)
            result["communicationStyles"] = communication_styles(grouped)
            quotes = key_quotes(messages)
            if quotes:
                result["keyQuotes"] = quotes

        if detail_level >= DetailLevel.FULL:
            dominance = message_dominance(grouped)
            result["dramaScore"] = drama_score(counts)
            result["messageDominance"] = dominance
            result["powerDynamics"] = power_dynamics(grouped)
            result["evasionDetection"] = evasion_detection(grouped)
            result["relationshipHealthIndicators"] = relationship_health_indicators(
                result["healthScore"], flags, result["communication"]["suggestions"],
            )
            result["communication"]["dynamics"] = [
                f"{name} sends {d['messagePercentage']}% of messages ({d['dominanceLevel']})"
                for name, d in dominance["participantData"].items()
            ]

        return result


def minimal_result(request) -> dict:
    """Smallest valid result, used only if the fallback itself blows up."""
    return {
        "toneAnalysis": {
            "overallTone": TONE_SUMMARIES["Neutral"],
            "emotionalState": [],
        },
        "communication": {"patterns": []},
        "conversationType": request.conversation_type,
        "participants": list(request.participant_labels),
    }
