"""Persistence for quota usage records.

The ledger needs only get-or-create and atomic-increment semantics, so the
store is an injected interface with two implementations:

  InMemoryUsageStore  - dict-backed, for tests and single-process dev
  DatabaseUsageStore  - usage_records / anonymous_usage tables via src.db
                        (PostgreSQL in production, DuckDB locally)

All datetimes crossing this interface are timezone-aware UTC. The database
columns are plain TIMESTAMP holding naive UTC.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock

from src.models import AnonymousUsageRecord, UsageRecord, month_start

logger = logging.getLogger(__name__)


class UsageStore:
    """Interface the quota ledger depends on."""

    def get_usage(self, user_id: str) -> UsageRecord | None:
        raise NotImplementedError

    def get_or_create_usage(self, user_id: str, now: datetime) -> UsageRecord:
        raise NotImplementedError

    def reset_usage(self, user_id: str, period_start: datetime) -> UsageRecord:
        """Zero the counter and start a new period, unless the stored period
        already began in period_start's month. Returns the record as stored.
        """
        raise NotImplementedError

    def increment_usage(self, user_id: str, now: datetime) -> UsageRecord:
        """Atomically add one use, creating the record if needed."""
        raise NotImplementedError

    def get_anonymous_usage(self, device_id: str) -> AnonymousUsageRecord | None:
        raise NotImplementedError

    def get_or_create_anonymous_usage(self, device_id: str, now: datetime) -> AnonymousUsageRecord:
        raise NotImplementedError

    def increment_anonymous_usage(self, device_id: str, now: datetime) -> AnonymousUsageRecord:
        raise NotImplementedError


class InMemoryUsageStore(UsageStore):
    def __init__(self):
        self._lock = Lock()
        self._usage: dict[str, UsageRecord] = {}
        self._anonymous: dict[str, AnonymousUsageRecord] = {}

    # Seeding helpers (tests, fixtures)
    def put_usage(self, record: UsageRecord) -> None:
        with self._lock:
            self._usage[record.user_id] = replace(record)

    def put_anonymous_usage(self, record: AnonymousUsageRecord) -> None:
        with self._lock:
            self._anonymous[record.device_id] = replace(record)

    def clear(self) -> None:
        with self._lock:
            self._usage.clear()
            self._anonymous.clear()

    def get_usage(self, user_id):
        with self._lock:
            record = self._usage.get(user_id)
            return replace(record) if record is not None else None

    def get_or_create_usage(self, user_id, now):
        with self._lock:
            record = self._usage.setdefault(user_id, UsageRecord(user_id=user_id, period_start=now))
            return replace(record)

    def reset_usage(self, user_id, period_start):
        with self._lock:
            record = self._usage.get(user_id)
            if record is None or record.period_start < month_start(period_start):
                record = UsageRecord(user_id=user_id, used=0, period_start=period_start)
                self._usage[user_id] = record
            return replace(record)

    def increment_usage(self, user_id, now):
        with self._lock:
            record = self._usage.setdefault(user_id, UsageRecord(user_id=user_id, period_start=now))
            record.used += 1
            return replace(record)

    def get_anonymous_usage(self, device_id):
        with self._lock:
            record = self._anonymous.get(device_id)
            return replace(record) if record is not None else None

    def get_or_create_anonymous_usage(self, device_id, now):
        with self._lock:
            record = self._anonymous.setdefault(device_id, AnonymousUsageRecord(device_id=device_id))
            return replace(record)

    def increment_anonymous_usage(self, device_id, now):
        with self._lock:
            record = self._anonymous.setdefault(device_id, AnonymousUsageRecord(device_id=device_id))
            record.count += 1
            record.last_used_at = now
            return replace(record)


def _to_db(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _from_db(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class DatabaseUsageStore(UsageStore):
    """Usage records in Postgres/DuckDB. Increments are single UPDATE statements."""

    def __init__(self):
        self._schema_lock = Lock()
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if not self._schema_ready:
                from src.db import BACKEND, init_usage_schema
                init_usage_schema()
                self._schema_ready = True
                logger.info("Usage schema ready (backend=%s)", BACKEND)

    # ── registered users ──────────────────────────────────────────

    def get_usage(self, user_id):
        from src.db import query_one
        self._ensure_schema()
        row = query_one(
            "SELECT used, period_start FROM usage_records WHERE user_id = %s",
            (user_id,),
        )
        if row is None:
            return None
        return UsageRecord(user_id=user_id, used=int(row[0]), period_start=_from_db(row[1]))

    def get_or_create_usage(self, user_id, now):
        from src.db import execute_write
        self._ensure_schema()
        execute_write(
            "INSERT INTO usage_records (user_id, used, period_start) "
            "VALUES (%s, 0, %s) ON CONFLICT (user_id) DO NOTHING",
            (user_id, _to_db(now)),
        )
        return self.get_usage(user_id)

    def reset_usage(self, user_id, period_start):
        from src.db import execute_write
        self._ensure_schema()
        # Only a period from an earlier month is reset; a concurrent reset
        # that already started this month's period wins.
        execute_write(
            "UPDATE usage_records SET used = 0, period_start = %s "
            "WHERE user_id = %s AND period_start < %s",
            (_to_db(period_start), user_id, _to_db(month_start(period_start))),
        )
        return self.get_or_create_usage(user_id, period_start)

    def increment_usage(self, user_id, now):
        from src.db import execute_write
        self._ensure_schema()
        sql = (
            "UPDATE usage_records SET used = used + 1 "
            "WHERE user_id = %s RETURNING used, period_start"
        )
        row = execute_write(sql, (user_id,), returning=True)
        if row is None:
            self.get_or_create_usage(user_id, now)
            row = execute_write(sql, (user_id,), returning=True)
        return UsageRecord(user_id=user_id, used=int(row[0]), period_start=_from_db(row[1]))

    # ── anonymous devices ─────────────────────────────────────────

    def get_anonymous_usage(self, device_id):
        from src.db import query_one
        self._ensure_schema()
        row = query_one(
            "SELECT use_count, last_used_at FROM anonymous_usage WHERE device_id = %s",
            (device_id,),
        )
        if row is None:
            return None
        return AnonymousUsageRecord(
            device_id=device_id, count=int(row[0]), last_used_at=_from_db(row[1]),
        )

    def get_or_create_anonymous_usage(self, device_id, now):
        from src.db import execute_write
        self._ensure_schema()
        execute_write(
            "INSERT INTO anonymous_usage (device_id, use_count) "
            "VALUES (%s, 0) ON CONFLICT (device_id) DO NOTHING",
            (device_id,),
        )
        return self.get_anonymous_usage(device_id)

    def increment_anonymous_usage(self, device_id, now):
        from src.db import execute_write
        self._ensure_schema()
        sql = (
            "UPDATE anonymous_usage SET use_count = use_count + 1, last_used_at = %s "
            "WHERE device_id = %s RETURNING use_count, last_used_at"
        )
        params = (_to_db(now), device_id)
        row = execute_write(sql, params, returning=True)
        if row is None:
            self.get_or_create_anonymous_usage(device_id, now)
            row = execute_write(sql, params, returning=True)
        return AnonymousUsageRecord(
            device_id=device_id, count=int(row[0]), last_used_at=_from_db(row[1]),
        )
