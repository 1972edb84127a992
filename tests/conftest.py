"""Root-level test conftest: fixtures shared across all test files.

Prevents cross-file contamination from in-process state (process engine,
circuit breaker, kill switch) that persists between test files in the same
pytest session.

Database isolation: each pytest session gets its own temp DuckDB file, and
opening the real development database is an error.
"""
import os

import pytest


# ---------------------------------------------------------------------------
# Session-scoped DB isolation fixture
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def _isolated_test_db(tmp_path_factory):
    """Point src.db at a temp DuckDB for the whole session."""
    import duckdb as _duckdb_mod

    import src.db as db_mod

    original_backend = db_mod.BACKEND
    original_url = os.environ.get("DATABASE_URL")
    original_duckdb_path = db_mod._DUCKDB_PATH

    # Guard: block access to the real DuckDB file
    _real_db = os.path.abspath(original_duckdb_path)
    _original_connect = _duckdb_mod.connect

    def _guarded_connect(database=":memory:", *args, **kwargs):
        if database not in (":memory:", ":default:"):
            if os.path.abspath(database) == _real_db:
                raise RuntimeError(
                    f"TEST GUARD: Attempted to open the real DuckDB file ({_real_db}) "
                    f"during tests. Use the temp DB from _isolated_test_db instead."
                )
        return _original_connect(database, *args, **kwargs)

    _duckdb_mod.connect = _guarded_connect

    tmpdir = tmp_path_factory.mktemp("duckdb")
    db_path = str(tmpdir / "test_tonegauge.duckdb")
    db_mod._DUCKDB_PATH = db_path
    db_mod.BACKEND = "duckdb"
    os.environ.pop("DATABASE_URL", None)
    db_mod.DATABASE_URL = None
    db_mod.init_usage_schema()

    yield db_path

    _duckdb_mod.connect = _original_connect
    db_mod._DUCKDB_PATH = original_duckdb_path
    db_mod.BACKEND = original_backend
    if original_url:
        os.environ["DATABASE_URL"] = original_url
    db_mod.DATABASE_URL = original_url


# ---------------------------------------------------------------------------
# Function-scoped state reset
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_process_state(monkeypatch):
    """No live provider calls, closed circuit, kill switch off, fresh engine."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    import src.reasoning.client as client_mod
    from src.reasoning.breaker import circuit_breaker
    from web import helpers

    monkeypatch.setattr(client_mod, "_kill_switch_active", False)
    circuit_breaker.reset()
    helpers.set_engine(None)

    yield

    circuit_breaker.reset()
    helpers.set_engine(None)


# ---------------------------------------------------------------------------
# Shared builders
# ---------------------------------------------------------------------------

DYAD_TEXT = (
    "Alex: I'm so happy we talked yesterday, thanks for listening\n"
    "Sam: I hope we can keep doing that\n"
    "Alex: Me too, it was great\n"
)

NEGATIVE_TEXT = (
    "Alex: You always ignore me and I hate it\n"
    "Sam: That's a terrible thing to say, you never listen either\n"
    "Alex: I'm upset. Thanks for nothing.\n"
)


@pytest.fixture
def dyad_request():
    from src.models import AnalysisRequest
    return AnalysisRequest(conversation_text=DYAD_TEXT, participant_labels=["Alex", "Sam"])


@pytest.fixture
def negative_request():
    from src.models import AnalysisRequest
    return AnalysisRequest(
        conversation_text=NEGATIVE_TEXT,
        participant_labels=["Alex", "Sam"],
        tier="personal",
    )
