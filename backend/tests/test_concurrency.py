"""
Concurrency tests.

Verifies:
- Transient lock failures are retried from the start; others propagate at once
- Exhausted retries raise the caller's error with the last failure as cause
- Overlapping sales over the same products lose no stock updates
"""

import sqlite3
import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app import create_app
from app.config import engine_options
from app.extensions import db
from app.models import IncomeExpense, Product, Transaction
from app.services.concurrency import (
    ExponentialBackoff,
    TransientError,
    is_transient_error,
    run_with_retry,
)
from app.services.transaction_service import create_transaction
from app.validation import ConflictError, ServerError


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _dbapi_error(orig):
    return OperationalError("SELECT 1", {}, orig)


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================


class TestTransientClassification:

    @pytest.mark.parametrize("orig", [
        _PgError("55P03"),
        _PgError("40P01"),
        Exception(1205, "Lock wait timeout exceeded"),
        Exception(1213, "Deadlock found"),
        sqlite3.OperationalError("database is locked"),
    ])
    def test_lock_errors_are_transient(self, orig):
        assert is_transient_error(_dbapi_error(orig))

    @pytest.mark.parametrize("orig", [
        _PgError("23505"),
        Exception(1062, "Duplicate entry"),
        sqlite3.OperationalError("no such table: products"),
    ])
    def test_other_errors_are_not(self, orig):
        assert not is_transient_error(_dbapi_error(orig))

    def test_library_errors(self):
        assert is_transient_error(TransientError("busy"))
        assert is_transient_error(StaleDataError("version mismatch"))
        assert not is_transient_error(ValueError("bad input"))


# =============================================================================
# RETRY LOOP
# =============================================================================


class TestRunWithRetry:

    def test_retries_until_success(self, db_session):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientError("busy")
            return "done"

        assert run_with_retry(flaky, attempts=3, sleep=sleeps.append) == "done"
        assert len(calls) == 3
        assert len(sleeps) == 2

    def test_non_transient_propagates_immediately(self, db_session):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken, attempts=5, sleep=lambda s: None)
        assert len(calls) == 1

    def test_exhausted_raises_with_cause(self, db_session):
        def always_busy():
            raise TransientError("busy")

        with pytest.raises(ServerError) as excinfo:
            run_with_retry(always_busy, attempts=2, sleep=lambda s: None)
        assert isinstance(excinfo.value.__cause__, TransientError)

        with pytest.raises(ConflictError):
            run_with_retry(always_busy, attempts=2, exhausted_error=ConflictError, sleep=lambda s: None)

    def test_failed_attempt_is_rolled_back(self, make_product):
        product = make_product(stock=10)
        seen = []

        def partial_write():
            row = db.session.get(Product, product.id)
            seen.append(row.stock)
            row.stock = 0
            db.session.flush()
            if len(seen) == 1:
                raise TransientError("busy")

        run_with_retry(partial_write, attempts=2, sleep=lambda s: None)
        db.session.rollback()

        # The second attempt starts from the committed state again
        assert seen == [10, 10]


class TestIsolationLevel:

    def test_server_databases_read_committed(self):
        assert engine_options("mysql+pymysql://pos@db/pos") == {"isolation_level": "READ COMMITTED"}
        assert engine_options("postgresql://pos@db/pos", {"pool_pre_ping": True}) == {
            "pool_pre_ping": True,
            "isolation_level": "READ COMMITTED",
        }

    def test_explicit_level_kept(self):
        options = engine_options("postgresql://pos@db/pos", {"isolation_level": "SERIALIZABLE"})
        assert options["isolation_level"] == "SERIALIZABLE"

    def test_sqlite_untouched(self, app):
        assert engine_options("sqlite:///:memory:") == {}
        assert "isolation_level" not in app.config["SQLALCHEMY_ENGINE_OPTIONS"]


class TestBackoff:

    def test_grows_and_caps(self):
        backoff = ExponentialBackoff(base=0.1, factor=2.0, max_delay=1.0, jitter=0.0)
        assert backoff.delay(0) == pytest.approx(0.1)
        assert backoff.delay(3) == pytest.approx(0.8)
        assert backoff.delay(10) == pytest.approx(1.0)

    def test_jitter_bounds(self):
        backoff = ExponentialBackoff(base=0.1, factor=2.0, max_delay=1.0, jitter=1.0)
        for _ in range(50):
            assert 0.2 <= backoff.delay(1) <= 0.4


# =============================================================================
# OVERLAPPING SALES
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file database so threads really share one store."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'pos.sqlite3'}",
        'BCRYPT_ROUNDS': 4,
        'RETRY_ATTEMPTS': 10,
        'RETRY_BACKOFF_BASE': 0.01,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


class TestOverlappingSales:

    def test_no_lost_stock_updates(self, file_app):
        with file_app.app_context():
            a = Product(name="A", price_cents=100, stock=100, has_stock=True)
            b = Product(name="B", price_cents=200, stock=100, has_stock=True)
            db.session.add_all([a, b])
            db.session.commit()
            a_id, b_id = a.id, b.id

        workers = 8
        errors = []
        barrier = threading.Barrier(workers)

        def sell(i):
            # Half the workers list the products in the opposite order
            items = [{"productId": a_id, "quantity": 1}, {"productId": b_id, "quantity": 2}]
            if i % 2:
                items.reverse()
            with file_app.app_context():
                barrier.wait()
                try:
                    create_transaction(None, {"items": items, "paymentMethod": "cash", "cashReceived": 100})
                except Exception as exc:
                    errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=sell, args=(i,)) for i in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        with file_app.app_context():
            assert db.session.get(Product, a_id).stock == 100 - workers
            assert db.session.get(Product, b_id).stock == 100 - 2 * workers
            assert db.session.query(Transaction).count() == workers
            assert db.session.query(IncomeExpense).count() == workers
