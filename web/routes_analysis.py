"""Analysis API routes: run an analysis, read usage, list tiers.

Blueprint: analysis (no url_prefix)

Identity resolution is all this layer does; authentication happens upstream
and leaves ``user_id`` / ``subscription_tier`` in the session.
"""

import logging

from flask import Blueprint, jsonify, request

from src.errors import AnalysisError, InvalidRequest, QuotaExceeded
from src.models import AnalysisRequest
from src.tiers import public_policy_table
from web.helpers import get_engine, resolve_identity, run_async

logger = logging.getLogger(__name__)

bp = Blueprint("analysis", __name__)


def _error(kind: str, message: str, status: int, **extra):
    payload = {"error": kind, "message": message}
    payload.update(extra)
    return jsonify(payload), status


@bp.route("/api/analyze", methods=["POST"])
def api_analyze():
    """Analyze a conversation for the session user or anonymous device."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error("invalid_request", "Request body must be a JSON object", 400)

    identity = resolve_identity(data)
    if identity is None:
        return _error("invalid_request", "deviceId required when not logged in", 400)

    try:
        analysis_request = AnalysisRequest.from_dict(data)
        response = run_async(get_engine().run(identity, analysis_request))
    except InvalidRequest as e:
        return _error(e.error_kind, str(e), e.status_code)
    except QuotaExceeded as e:
        usage = {
            "tier": e.tier,
            "used": e.decision.used,
            "limit": e.decision.limit,
            "remaining": e.decision.remaining,
        }
        return _error(e.error_kind, str(e), e.status_code, **usage)
    except AnalysisError as e:
        logger.error("Analysis failed for %s: %s", identity.key, e)
        return _error(e.error_kind, str(e), e.status_code)
    except Exception:
        logger.exception("Unexpected analysis failure for %s", identity.key)
        return _error("analysis_error", "Analysis failed", 500)

    return jsonify(response.to_dict())


@bp.route("/api/usage")
def api_usage():
    """Read-only usage counters. Never consumes quota."""
    identity = resolve_identity()
    if identity is None:
        return _error("invalid_request", "deviceId required when not logged in", 400)
    tier, decision = get_engine().usage(identity)
    return jsonify({
        "tier": tier,
        "used": decision.used,
        "limit": decision.limit,
        "remaining": decision.remaining,
        "allowed": decision.allowed,
    })


@bp.route("/api/tiers")
def api_tiers():
    """Public tier table for pricing and upgrade screens."""
    return jsonify({"tiers": public_policy_table()})
