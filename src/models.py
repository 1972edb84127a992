"""Data model for the analysis engine.

Identity (RegisteredUser or AnonymousDevice) and its usage records live across
many requests. AnalysisRequest and the result dict are created and discarded
within a single call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.errors import InvalidRequest
from src.tiers import DEFAULT_TIER

CONVERSATION_DYAD = "dyad"
CONVERSATION_GROUP = "group"
CONVERSATION_TYPES = (CONVERSATION_DYAD, CONVERSATION_GROUP)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_start(dt: datetime) -> datetime:
    """First instant of dt's calendar month."""
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegisteredUser:
    """Authenticated caller. Tier comes from the session, never from the request body."""

    user_id: str
    tier: str = DEFAULT_TIER

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class AnonymousDevice:
    """Unauthenticated caller identified by a client-remembered device id."""

    device_id: str

    @property
    def key(self) -> str:
        return f"device:{self.device_id}"


Identity = RegisteredUser | AnonymousDevice


# ---------------------------------------------------------------------------
# Usage records
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    """Monthly counter for a registered user."""

    user_id: str
    used: int = 0
    period_start: datetime = field(default_factory=utc_now)


@dataclass
class AnonymousUsageRecord:
    """Lifetime counter for an anonymous device. Never resets."""

    device_id: str
    count: int = 0
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a ledger admission (or a read-only usage peek)."""

    allowed: bool
    used: int
    limit: int | str
    remaining: int | str

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
        }


# ---------------------------------------------------------------------------
# Analysis request
# ---------------------------------------------------------------------------

@dataclass
class AnalysisRequest:
    conversation_text: str
    participant_labels: list[str]
    tier: str = DEFAULT_TIER
    conversation_type: str = CONVERSATION_DYAD

    @property
    def is_group(self) -> bool:
        return self.conversation_type == CONVERSATION_GROUP

    @classmethod
    def from_dict(cls, d: dict) -> AnalysisRequest:
        """Build from the JSON payload sent by the presentation layer.

        Accepts ``participantLabels`` (list) or the two-person ``me``/``them``
        pair. Structural problems raise InvalidRequest; semantic checks are
        left to validate().
        """
        if not isinstance(d, dict):
            raise InvalidRequest("Request body must be a JSON object")

        text = d.get("conversationText", d.get("conversation", ""))
        if not isinstance(text, str):
            raise InvalidRequest("conversationText must be a string")

        labels = d.get("participantLabels")
        if labels is None:
            labels = [d.get("me"), d.get("them")]
            labels = [label for label in labels if label]
        if not isinstance(labels, list) or not all(isinstance(x, str) for x in labels):
            raise InvalidRequest("participantLabels must be a list of strings")

        conversation_type = d.get("conversationType") or (
            CONVERSATION_GROUP if len(labels) > 2 else CONVERSATION_DYAD
        )
        return cls(
            conversation_text=text,
            participant_labels=[label.strip() for label in labels],
            tier=d.get("tier") or DEFAULT_TIER,
            conversation_type=str(conversation_type).strip().lower(),
        )

    def validate(self) -> None:
        """Raise InvalidRequest if the request cannot be analyzed."""
        if not self.conversation_text or not self.conversation_text.strip():
            raise InvalidRequest("Conversation text is empty")

        if self.conversation_type not in CONVERSATION_TYPES:
            raise InvalidRequest(
                f"Unknown conversationType '{self.conversation_type}' "
                f"(expected one of {', '.join(CONVERSATION_TYPES)})"
            )

        labels = self.participant_labels
        if any(not label for label in labels):
            raise InvalidRequest("Participant labels must be non-empty")
        if len({label.lower() for label in labels}) != len(labels):
            raise InvalidRequest("Participant labels must be distinct")

        if self.conversation_type == CONVERSATION_DYAD and len(labels) != 2:
            raise InvalidRequest(
                f"A dyad conversation needs exactly 2 participants, got {len(labels)}"
            )
        if self.conversation_type == CONVERSATION_GROUP and len(labels) < 2:
            raise InvalidRequest(
                f"A group conversation needs at least 2 participants, got {len(labels)}"
            )
