"""Error taxonomy for the analysis engine.

User-facing:
  InvalidRequest   - bad input, rejected before quota is touched (HTTP 400)
  QuotaExceeded    - identity is over its limit (HTTP 403)

Internal only (absorbed by the analyzer, which falls back to the heuristic path):
  ProviderUnavailable        - provider unconfigured, erroring, or timed out
  MalformedProviderResponse  - provider replied with something we cannot parse
"""
from __future__ import annotations


class AnalysisError(Exception):
    """Base class for engine errors."""

    status_code = 500
    error_kind = "analysis_error"


class InvalidRequest(AnalysisError):
    status_code = 400
    error_kind = "invalid_request"


class QuotaExceeded(AnalysisError):
    status_code = 403
    error_kind = "quota_exceeded"

    def __init__(self, decision, tier: str):
        self.decision = decision
        self.tier = tier
        super().__init__(
            f"Usage limit reached ({decision.used} of {decision.limit} used on tier '{tier}')"
        )


class ProviderUnavailable(AnalysisError):
    error_kind = "provider_unavailable"


class MalformedProviderResponse(AnalysisError):
    error_kind = "malformed_provider_response"
