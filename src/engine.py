"""Analysis engine: validate -> admit -> analyze -> commit -> shape.

The ledger and analyzer are injected so the web layer and tests can share
one composition. The caller's tier always comes from the identity: registered
users carry their subscription tier, anonymous devices are "anonymous". Any
tier in the request body is overwritten.
"""

import logging
from dataclasses import dataclass

from src.analysis.analyzer import ConversationAnalyzer
from src.errors import QuotaExceeded
from src.models import AnonymousDevice, AnalysisRequest, QuotaDecision
from src.quota import QuotaLedger
from src.shaper import shape
from src.tiers import normalize_tier

logger = logging.getLogger(__name__)

ANONYMOUS_TIER = "anonymous"


def effective_tier(identity) -> str:
    if isinstance(identity, AnonymousDevice):
        return ANONYMOUS_TIER
    return normalize_tier(identity.tier)


@dataclass
class AnalysisResponse:
    analysis: dict
    tier: str
    used: int
    limit: int | str
    remaining: int | str
    source: str = ""

    def usage_dict(self) -> dict:
        return {
            "tier": self.tier,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
        }

    def to_dict(self) -> dict:
        return {"analysis": self.analysis, "usage": self.usage_dict()}


class AnalysisEngine:
    def __init__(self, ledger: QuotaLedger | None = None, analyzer: ConversationAnalyzer | None = None):
        self.ledger = ledger if ledger is not None else QuotaLedger()
        self.analyzer = analyzer if analyzer is not None else ConversationAnalyzer()

    async def run(self, identity, request: AnalysisRequest) -> AnalysisResponse:
        """Run one analysis for identity.

        Raises InvalidRequest before quota is touched, and QuotaExceeded
        without calling the provider. A failed or cancelled analysis gives
        its reserved slot back.
        """
        tier = effective_tier(identity)
        request.tier = tier
        request.validate()

        decision = self.ledger.admit(identity)
        if not decision.allowed:
            raise QuotaExceeded(decision, tier)

        try:
            result, source = await self.analyzer.analyze_with_source(request)
        except BaseException:
            self.ledger.release(identity)
            raise

        committed = self.ledger.commit(identity)
        logger.info(
            "analysis: %s tier=%s source=%s used=%s limit=%s",
            identity.key, tier, source, committed.used, committed.limit,
        )
        return AnalysisResponse(
            analysis=shape(result, tier),
            tier=tier,
            used=committed.used,
            limit=committed.limit,
            remaining=committed.remaining,
            source=source,
        )

    def usage(self, identity) -> tuple[str, QuotaDecision]:
        """Read-only counters for identity, with its effective tier."""
        return effective_tier(identity), self.ledger.usage(identity)
