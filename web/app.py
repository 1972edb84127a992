"""tonegauge: conversation tone analysis API.

A small Flask app exposing the tiered analysis engine:
  - POST /api/analyze
  - GET  /api/usage
  - GET  /api/tiers
  - GET  /health
"""

import json
import logging
import os
import sys
from datetime import timedelta

from flask import Flask, Response

# Configure logging so gunicorn captures warnings from the engine
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

from web.routes_analysis import bp as analysis_bp  # noqa: E402

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-key-change-in-prod")
app.permanent_session_lifetime = timedelta(days=30)

# Pasted conversations and OCR output; nothing larger is expected
app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024

app.register_blueprint(analysis_bp)


@app.route("/health")
def health():
    """Health check endpoint: usage store, provider circuit, kill switch."""
    from src.db import BACKEND, DATABASE_URL, get_pool_stats, query_one
    from src.reasoning.breaker import circuit_breaker
    from src.reasoning.client import is_kill_switch_active
    from web.helpers import USAGE_STORE

    info = {
        "status": "ok",
        "usage_store": USAGE_STORE,
        "backend": BACKEND,
        "has_db_url": bool(DATABASE_URL),
        "kill_switch_active": is_kill_switch_active(),
        "circuit_breaker": circuit_breaker.get_status(),
    }
    if USAGE_STORE != "memory":
        try:
            query_one("SELECT 1")
            info["db_connected"] = True
            info["pool"] = get_pool_stats()
        except Exception as e:
            info["db_connected"] = False
            info["db_error"] = str(e)
            info["status"] = "degraded"

    return Response(json.dumps(info, indent=2), mimetype="application/json")


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
