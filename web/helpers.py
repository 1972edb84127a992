"""Shared utilities used across Flask Blueprint modules."""

import asyncio
import logging
import os

from flask import request, session

from src.models import AnonymousDevice, RegisteredUser
from src.tiers import DEFAULT_TIER

logger = logging.getLogger(__name__)

USAGE_STORE = os.environ.get("USAGE_STORE", "db").lower()


# ---------------------------------------------------------------------------
# Engine composition (one per process)
# ---------------------------------------------------------------------------

_engine = None


def build_engine(store_kind: str = USAGE_STORE):
    """Compose ledger + analyzer for the configured usage store."""
    from src.analysis.analyzer import ConversationAnalyzer
    from src.engine import AnalysisEngine
    from src.quota import QuotaLedger
    from src.usage_store import DatabaseUsageStore, InMemoryUsageStore

    if store_kind == "memory":
        store = InMemoryUsageStore()
    else:
        store = DatabaseUsageStore()
    logger.info("Analysis engine ready (usage_store=%s)", store_kind)
    return AnalysisEngine(ledger=QuotaLedger(store=store), analyzer=ConversationAnalyzer())


def get_engine():
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def set_engine(engine) -> None:
    """Replace the process engine (tests). None rebuilds on next use."""
    global _engine
    _engine = engine


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def resolve_identity(data: dict | None = None):
    """Identity for the current request, or None.

    A logged-in session wins. Otherwise the device id comes from the JSON
    body (``deviceId``), the query string, or the ``X-Device-Id`` header.
    """
    user_id = session.get("user_id")
    if user_id:
        return RegisteredUser(
            user_id=str(user_id),
            tier=session.get("subscription_tier") or DEFAULT_TIER,
        )
    device_id = (
        (data or {}).get("deviceId")
        or request.args.get("deviceId")
        or request.headers.get("X-Device-Id")
    )
    if isinstance(device_id, str) and device_id.strip():
        return AnonymousDevice(device_id=device_id.strip())
    return None


# ---------------------------------------------------------------------------
# Async helper
# ---------------------------------------------------------------------------

def run_async(coro):
    """Run an async function synchronously."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor() as pool:
        return pool.submit(asyncio.run, coro).result()
