"""Tests for src/usage_store.py: in-memory and DuckDB-backed usage stores."""

from datetime import datetime, timezone

import pytest

from src.models import AnonymousDevice, RegisteredUser
from src.quota import QuotaLedger
from src.usage_store import DatabaseUsageStore, InMemoryUsageStore

T0 = datetime(2025, 1, 10, 8, 30, tzinfo=timezone.utc)
T1 = datetime(2025, 2, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_store(tmp_path, monkeypatch):
    """DuckDB store on an isolated temp database."""
    import src.db as db_mod
    db_path = str(tmp_path / "test_usage.duckdb")
    monkeypatch.setattr(db_mod, "BACKEND", "duckdb")
    monkeypatch.setattr(db_mod, "_DUCKDB_PATH", db_path)
    return DatabaseUsageStore()


@pytest.fixture(params=["memory", "duckdb"])
def any_store(request):
    if request.param == "memory":
        return InMemoryUsageStore()
    return request.getfixturevalue("db_store")


class TestUsageRecords:

    def test_get_or_create_starts_at_zero(self, any_store):
        record = any_store.get_or_create_usage("u1", T0)
        assert record.used == 0
        assert record.period_start == T0

    def test_get_or_create_is_idempotent(self, any_store):
        any_store.get_or_create_usage("u1", T0)
        record = any_store.get_or_create_usage("u1", T1)
        assert record.period_start == T0

    def test_increment(self, any_store):
        any_store.get_or_create_usage("u1", T0)
        assert any_store.increment_usage("u1", T0).used == 1
        assert any_store.increment_usage("u1", T0).used == 2

    def test_increment_creates_missing_record(self, any_store):
        record = any_store.increment_usage("new", T0)
        assert record.used == 1

    def test_reset(self, any_store):
        any_store.increment_usage("u1", T0)
        record = any_store.reset_usage("u1", T1)
        assert record.used == 0
        assert record.period_start == T1
        assert any_store.get_or_create_usage("u1", T1).period_start == T1

    def test_returned_records_are_copies(self):
        store = InMemoryUsageStore()
        record = store.get_or_create_usage("u1", T0)
        record.used = 99
        assert store.get_or_create_usage("u1", T0).used == 0


class TestAnonymousRecords:

    def test_get_or_create(self, any_store):
        record = any_store.get_or_create_anonymous_usage("d1", T0)
        assert record.count == 0
        assert record.last_used_at is None

    def test_increment_stamps_last_used(self, any_store):
        any_store.increment_anonymous_usage("d1", T0)
        record = any_store.increment_anonymous_usage("d1", T1)
        assert record.count == 2
        assert record.last_used_at == T1


class TestLedgerOnDatabase:

    def test_monthly_reset_persists(self, db_store):
        db_store.get_or_create_usage("u1", T0)
        db_store.increment_usage("u1", T0)
        db_store.increment_usage("u1", T0)

        ledger = QuotaLedger(store=db_store, clock=lambda: T1)
        decision = ledger.admit(RegisteredUser("u1", "free"))
        assert decision.allowed is True
        assert decision.used == 0

        record = db_store.get_or_create_usage("u1", T1)
        assert record.used == 0
        assert record.period_start == T1

    def test_anonymous_allowance(self, db_store):
        ledger = QuotaLedger(store=db_store, anonymous_limit=2, clock=lambda: T0)
        device = AnonymousDevice("d9")
        for _ in range(2):
            assert ledger.admit(device).allowed is True
            ledger.commit(device)
        assert ledger.admit(device).allowed is False


class TestPlainLookups:

    def test_missing_records_are_none(self, any_store):
        assert any_store.get_usage("nobody") is None
        assert any_store.get_anonymous_usage("nowhere") is None

    def test_lookup_after_create(self, any_store):
        any_store.increment_usage("u1", T0)
        any_store.increment_anonymous_usage("d1", T0)
        assert any_store.get_usage("u1").used == 1
        assert any_store.get_anonymous_usage("d1").count == 1


class TestConditionalReset:

    def test_stale_reader_cannot_wipe_new_period(self, any_store):
        any_store.increment_usage("u1", T0)
        stale = any_store.get_or_create_usage("u1", T1)
        assert stale.period_start == T0

        # A second worker starts February and commits a use
        any_store.reset_usage("u1", T1)
        any_store.increment_usage("u1", T1)

        record = any_store.reset_usage("u1", T1)
        assert record.used == 1
        assert record.period_start == T1

    def test_reset_within_same_month_is_noop(self, any_store):
        any_store.increment_usage("u1", T0)
        later_in_january = datetime(2025, 1, 25, tzinfo=timezone.utc)
        record = any_store.reset_usage("u1", later_in_january)
        assert record.used == 1
        assert record.period_start == T0
