"""Anthropic client for conversation analysis.

Wraps the Anthropic SDK. Isolated so the rest of the codebase does not
import ``anthropic`` directly.

Environment variables:
    ANTHROPIC_API_KEY: Required for provider calls. Without it every analysis
        uses the local fallback.
    ANALYSIS_MODEL: Override model (default: claude-sonnet-4-20250514).
    ANALYSIS_MAX_TOKENS: Response token cap (default: 4096).
    ANALYSIS_PROVIDER_TIMEOUT_SECS: Hard bound on one call (default: 45).
    ANALYSIS_KILL_SWITCH: "1"/"true" forces the fallback path at startup.
        Can be overridden at runtime via set_kill_switch().
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass

from src.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = int(os.environ.get("ANALYSIS_MAX_TOKENS", "4096"))
PROVIDER_TIMEOUT_SECS = float(os.environ.get("ANALYSIS_PROVIDER_TIMEOUT_SECS", "45"))

# Anthropic pricing per million tokens (claude-sonnet-4, as of 2025-05)
_INPUT_COST_PER_MTOK = 3.00
_OUTPUT_COST_PER_MTOK = 15.00

# ── Kill switch ────────────────────────────────────────────────────

_kill_switch_active: bool = os.environ.get("ANALYSIS_KILL_SWITCH", "").lower() in (
    "1", "true", "yes",
)


def is_kill_switch_active() -> bool:
    """Return True if provider calls are switched off."""
    return _kill_switch_active


def set_kill_switch(active: bool) -> None:
    """Toggle the kill switch at runtime (admin use only)."""
    global _kill_switch_active
    if active != _kill_switch_active:
        logger.warning("Analysis kill switch %s", "ACTIVATED" if active else "deactivated")
    _kill_switch_active = active


# ── Provider ───────────────────────────────────────────────────────

@dataclass
class ProviderReply:
    """Raw text reply plus call accounting."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def estimated_cost_usd(self) -> float:
        input_cost = (self.input_tokens / 1_000_000) * _INPUT_COST_PER_MTOK
        output_cost = (self.output_tokens / 1_000_000) * _OUTPUT_COST_PER_MTOK
        return round(input_cost + output_cost, 6)


class AnthropicProvider:
    """One-shot Messages API calls with a bounded timeout.

    ``complete`` raises ProviderUnavailable for every failure mode (missing
    key, API error, timeout, empty reply). Cancellation of the awaiting task
    cancels the outbound call and propagates unchanged.
    """

    def __init__(self, api_key=None, model=None, max_tokens=DEFAULT_MAX_TOKENS, client=None):
        self._api_key = api_key
        self._model = model
        self.max_tokens = max_tokens
        self._client = client

    @property
    def api_key(self):
        return self._api_key or os.environ.get("ANTHROPIC_API_KEY")

    @property
    def model(self) -> str:
        return self._model or os.environ.get("ANALYSIS_MODEL", DEFAULT_MODEL)

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        instructions: str,
        conversation_text: str,
        system_prompt: str | None = None,
        timeout: float | None = None,
    ) -> ProviderReply:
        if not self.configured:
            raise ProviderUnavailable("ANTHROPIC_API_KEY not configured")

        effective_timeout = timeout if timeout is not None else PROVIDER_TIMEOUT_SECS
        kwargs: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": f"{instructions}\n\nConversation:\n{conversation_text}",
                }
            ],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        t0 = time.perf_counter()
        try:
            client = self._get_client()
            response = await asyncio.wait_for(
                client.messages.create(timeout=effective_timeout, **kwargs),
                timeout=effective_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Analysis provider timeout after %.0fs", effective_timeout)
            raise ProviderUnavailable("Analysis provider timeout") from e
        except Exception as e:
            error_str = str(e)
            if any(kw in error_str.lower() for kw in ("timeout", "timed out", "deadline")):
                logger.warning("Analysis provider timeout after %.0fs: %s", effective_timeout, e)
                raise ProviderUnavailable("Analysis provider timeout") from e
            logger.error("Analysis provider call failed: %s", e)
            raise ProviderUnavailable(error_str) from e

        duration_ms = int((time.perf_counter() - t0) * 1000)
        usage = getattr(response, "usage", None)
        reply = ProviderReply(
            text=_first_text(response),
            model=kwargs["model"],
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=duration_ms,
        )
        logger.info(
            "[analysis] model=%s duration_ms=%d in_tok=%d out_tok=%d cost_usd=%.4f",
            reply.model, reply.duration_ms, reply.input_tokens, reply.output_tokens,
            reply.estimated_cost_usd,
        )
        if not reply.text:
            raise ProviderUnavailable("Empty response from analysis provider")
        return reply


def _first_text(response) -> str:
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", "text") == "text" and isinstance(getattr(block, "text", None), str):
            return block.text
    return ""
