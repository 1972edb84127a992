"""Conversation analyzer: the one place that picks provider vs fallback.

    result = await ConversationAnalyzer().analyze(request)

Primary path: tier-specific instructions -> reasoning provider (bounded
timeout) -> parse -> normalize. Any provider error, timeout, or unusable
reply drops to the deterministic fallback at the same detail level. The
provider is skipped outright when it is unconfigured, the kill switch is on,
or the circuit breaker is open.

analyze() never raises, except for cancellation of the calling task.
"""

import logging

from src.analysis.fallback import FallbackAnalyzer, minimal_result
from src.analysis.schema import normalize_result, parse_provider_json
from src.errors import MalformedProviderResponse, ProviderUnavailable
from src.reasoning.breaker import PROVIDER_CATEGORY, circuit_breaker
from src.reasoning.client import AnthropicProvider, is_kill_switch_active
from src.reasoning.prompts import SYSTEM_PROMPT, build_instructions
from src.tiers import policy_for

logger = logging.getLogger(__name__)

SOURCE_PROVIDER = "provider"
SOURCE_FALLBACK = "fallback"


class ConversationAnalyzer:
    def __init__(self, provider=None, fallback=None, breaker=None, timeout=None):
        self.provider = provider if provider is not None else AnthropicProvider()
        self.fallback = fallback if fallback is not None else FallbackAnalyzer()
        self.breaker = breaker if breaker is not None else circuit_breaker
        self.timeout = timeout

    def _provider_ready(self) -> bool:
        if is_kill_switch_active():
            logger.info("Kill switch active, using fallback analyzer")
            return False
        if not self.provider.configured:
            return False
        if self.breaker.is_open(PROVIDER_CATEGORY):
            logger.info("Provider circuit open, using fallback analyzer")
            return False
        return True

    async def _from_provider(self, request, policy) -> dict:
        instructions = build_instructions(policy, request)
        reply = await self.provider.complete(
            instructions,
            request.conversation_text,
            system_prompt=SYSTEM_PROMPT,
            timeout=self.timeout,
        )
        return normalize_result(parse_provider_json(reply.text), request)

    def _from_fallback(self, request, policy) -> dict:
        try:
            return normalize_result(self.fallback.analyze(request, policy.detail_level), request)
        except Exception:
            logger.exception("Fallback analyzer failed, returning minimal result")
            return minimal_result(request)

    async def analyze_with_source(self, request) -> tuple[dict, str]:
        """Analyze and report which path produced the result."""
        policy = policy_for(request.tier)
        if self._provider_ready():
            try:
                result = await self._from_provider(request, policy)
            except (ProviderUnavailable, MalformedProviderResponse) as e:
                self.breaker.record_failure(PROVIDER_CATEGORY)
                logger.warning(
                    "Provider analysis failed (tier=%s, level=%s), falling back: %s",
                    policy.tier, policy.detail_level.label, e,
                )
            except Exception as e:
                self.breaker.record_failure(PROVIDER_CATEGORY)
                logger.exception("Unexpected provider path error, falling back: %s", e)
            else:
                self.breaker.record_success(PROVIDER_CATEGORY)
                return result, SOURCE_PROVIDER
        return self._from_fallback(request, policy), SOURCE_FALLBACK

    async def analyze(self, request) -> dict:
        result, _source = await self.analyze_with_source(request)
        return result
