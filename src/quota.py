"""Per-identity quota ledger.

Registered users: monthly allowance from the tier policy table, reset at the
calendar-month boundary (UTC), not on a rolling 30 days.
Anonymous devices: lifetime allowance of ANONYMOUS_ANALYSIS_LIMIT, no reset,
no tier policy involved.

Admission protocol:
    decision = ledger.admit(identity)     # reserves a slot when allowed
    ... run the analysis ...
    ledger.commit(identity)               # consumes the slot (+1 used)
    # or ledger.release(identity) if the analysis did not deliver

admit/commit/release run under a per-identity lock. A reserved slot counts
against the limit until it is committed, released, or expires, so two
concurrent requests at used == limit - 1 cannot both be admitted.
Different identities never contend. A lock lives only while some caller
holds or waits on it, so the lock table is bounded by concurrent requests.

A use is counted in the month it is committed: commit runs the same
monthly-reset check as admit before incrementing.

Store failures never deny: admit treats an unreadable record as "no usage
yet", and commit logs and carries on.
"""
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Callable, Optional

from src.models import AnonymousDevice, QuotaDecision, RegisteredUser, utc_now
from src.tiers import UNLIMITED, policy_for
from src.usage_store import InMemoryUsageStore, UsageStore

logger = logging.getLogger(__name__)

ANONYMOUS_ANALYSIS_LIMIT = int(os.environ.get("ANONYMOUS_ANALYSIS_LIMIT", "2"))
RESERVATION_TTL_SECS = float(os.environ.get("QUOTA_RESERVATION_TTL_SECS", "300"))


def in_prior_month(period_start: datetime, now: datetime) -> bool:
    """True if period_start falls in an earlier calendar month than now."""
    return (period_start.year, period_start.month) < (now.year, now.month)


class QuotaLedger:
    def __init__(
        self,
        store: Optional[UsageStore] = None,
        anonymous_limit: int = ANONYMOUS_ANALYSIS_LIMIT,
        reservation_ttl: float = RESERVATION_TTL_SECS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store if store is not None else InMemoryUsageStore()
        self._anonymous_limit = anonymous_limit
        self._reservation_ttl = reservation_ttl
        self._clock = clock
        self._guard = Lock()
        # identity key -> [Lock, number of callers holding or waiting on it]
        self._locks: dict[str, list] = {}
        # identity key -> monotonic expiry time of each outstanding reservation
        self._reservations: dict[str, list[float]] = {}

    @contextmanager
    def _identity_lock(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]
                    # Nobody holds the identity lock, so expired slots can go.
                    self._live_reservations(key)

    # ── reservations (caller holds the identity lock) ────────────

    def _live_reservations(self, key: str) -> int:
        now = time.monotonic()
        slots = [t for t in self._reservations.get(key, []) if t > now]
        if slots:
            self._reservations[key] = slots
        else:
            self._reservations.pop(key, None)
        return len(slots)

    def _reserve(self, key: str) -> None:
        self._reservations.setdefault(key, []).append(time.monotonic() + self._reservation_ttl)

    def _drop_reservation(self, key: str) -> bool:
        slots = self._reservations.get(key)
        if not slots:
            return False
        slots.pop(0)
        if not slots:
            del self._reservations[key]
        return True

    # ── usage loading ─────────────────────────────────────────────

    def _load_used(self, identity, now: datetime) -> int:
        """Current consumption for an identity, applying the monthly reset. Never raises."""
        try:
            if isinstance(identity, RegisteredUser):
                record = self._store.get_or_create_usage(identity.user_id, now)
                if in_prior_month(record.period_start, now):
                    logger.info(
                        "quota: monthly reset for %s (period_start=%s, used=%d)",
                        identity.key, record.period_start.date(), record.used,
                    )
                    record = self._store.reset_usage(identity.user_id, now)
                return record.used
            record = self._store.get_or_create_anonymous_usage(identity.device_id, now)
            return record.count
        except Exception as e:
            logger.warning("quota: usage lookup failed for %s, treating as new: %s", identity.key, e)
            return 0

    def _peek_used(self, identity, now: datetime) -> int:
        """Like _load_used, but never writes: no record creation, no reset."""
        try:
            if isinstance(identity, RegisteredUser):
                record = self._store.get_usage(identity.user_id)
                if record is None or in_prior_month(record.period_start, now):
                    return 0
                return record.used
            record = self._store.get_anonymous_usage(identity.device_id)
            return record.count if record is not None else 0
        except Exception as e:
            logger.warning("quota: usage lookup failed for %s, treating as new: %s", identity.key, e)
            return 0

    def _limit_for(self, identity) -> int | str:
        if isinstance(identity, AnonymousDevice):
            return self._anonymous_limit
        return policy_for(identity.tier).monthly_limit

    @staticmethod
    def _decision(allowed: bool, used: int, limit: int | str, pending: int = 0) -> QuotaDecision:
        if limit == UNLIMITED:
            return QuotaDecision(allowed=allowed, used=used, limit=UNLIMITED, remaining=UNLIMITED)
        remaining = max(0, limit - used - pending)
        return QuotaDecision(allowed=allowed, used=used, limit=limit, remaining=remaining)

    # ── public API ────────────────────────────────────────────────

    def admit(self, identity) -> QuotaDecision:
        """Decide whether identity may run one analysis, reserving a slot if so.

        ``remaining`` is the count before this admission is committed.
        """
        key = identity.key
        limit = self._limit_for(identity)
        with self._identity_lock(key):
            used = self._load_used(identity, self._clock())
            if limit == UNLIMITED:
                decision = self._decision(True, used, limit)
            else:
                pending = self._live_reservations(key)
                allowed = used + pending < limit
                decision = self._decision(allowed, used, limit, pending)
                if allowed:
                    self._reserve(key)

        if decision.allowed:
            logger.debug("quota: admit %s used=%s limit=%s", key, decision.used, decision.limit)
        else:
            logger.info("quota: deny %s used=%s limit=%s", key, decision.used, decision.limit)
        return decision

    def commit(self, identity) -> QuotaDecision:
        """Record one delivered analysis. Returns post-commit counters."""
        key = identity.key
        limit = self._limit_for(identity)
        now = self._clock()
        with self._identity_lock(key):
            self._drop_reservation(key)
            try:
                if isinstance(identity, RegisteredUser):
                    # Admitted last month, delivered this month: start the new period first.
                    self._load_used(identity, now)
                    used = self._store.increment_usage(identity.user_id, now).used
                else:
                    used = self._store.increment_anonymous_usage(identity.device_id, now).count
            except Exception as e:
                # The analysis was delivered; this count is lost.
                logger.error("quota: commit failed for %s: %s", key, e)
                used = self._load_used(identity, now)
            pending = 0 if limit == UNLIMITED else self._live_reservations(key)
        return self._decision(True, used, limit, pending)

    def release(self, identity) -> None:
        """Give back a reserved slot without consuming quota."""
        key = identity.key
        with self._identity_lock(key):
            if self._drop_reservation(key):
                logger.debug("quota: released reservation for %s", key)

    def usage(self, identity) -> QuotaDecision:
        """Read-only view of an identity's counters. Does not reserve or write."""
        key = identity.key
        limit = self._limit_for(identity)
        with self._identity_lock(key):
            used = self._peek_used(identity, self._clock())
            if limit == UNLIMITED:
                return self._decision(True, used, limit)
            pending = self._live_reservations(key)
        return self._decision(used + pending < limit, used, limit, pending)
