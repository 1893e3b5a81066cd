# Overview: Service-layer operations for concurrency; units of work, row locks, and bounded retry.

from __future__ import annotations

import random
import time
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ServerError


class TransientError(Exception):
    """Retryable contention failure: lock wait timeout, deadlock, or a busy NOWAIT lock."""


# MySQL: lock wait timeout, deadlock, NOWAIT lock unavailable
MYSQL_TRANSIENT_ERRNOS = {1205, 1213, 3572}
# PostgreSQL: lock_not_available, deadlock_detected, serialization_failure
PG_TRANSIENT_SQLSTATES = {"55P03", "40P01", "40001"}
SQLITE_TRANSIENT_MESSAGES = ("database is locked", "database table is locked")


def is_transient_error(exc: BaseException) -> bool:
    """Classify an exception as safe to retry from the start of the unit of work."""
    if isinstance(exc, (TransientError, StaleDataError)):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in PG_TRANSIENT_SQLSTATES:
        return True

    args = getattr(orig, "args", ()) or ()
    if args and isinstance(args[0], int) and args[0] in MYSQL_TRANSIENT_ERRNOS:
        return True

    message = str(orig).lower()
    return any(m in message for m in SQLITE_TRANSIENT_MESSAGES)


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Delay before retry `attempt` (0-based): base * factor**attempt, capped,
    plus up to `jitter` of that delay at random so colliding writers spread out.
    """
    base: float = 0.05
    factor: float = 2.0
    max_delay: float = 1.0
    jitter: float = 1.0

    def delay(self, attempt: int) -> float:
        d = min(self.base * (self.factor ** attempt), self.max_delay)
        return d + random.uniform(0, d * self.jitter)


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff: ExponentialBackoff | None = None,
    exhausted_error: type[Exception] = ServerError,
    sleep=time.sleep,
):
    """
    Execute a unit of work, retrying it from the beginning on transient failures.

    Every failure rolls the session back before anything else happens.
    Non-transient errors propagate unchanged on the first occurrence.
    When all attempts fail transiently, `exhausted_error` is raised with the
    last underlying error chained as its cause.
    """
    if attempts is None:
        attempts = int(_config("RETRY_ATTEMPTS", 3))
    if backoff is None:
        backoff = ExponentialBackoff(base=float(_config("RETRY_BACKOFF_BASE", 0.05)))
    attempts = max(attempts, 1)

    last_exc: Exception | None = None
    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            db.session.rollback()
            if not is_transient_error(exc):
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                break
            if has_app_context():
                current_app.logger.warning(
                    "Transient database contention (attempt %d/%d): %s", attempt + 1, attempts, exc
                )
            sleep(backoff.delay(attempt))

    raise exhausted_error(
        f"Operation failed after {attempts} attempts: {last_exc}"
    ) from last_exc


def begin_unit_of_work() -> None:
    """
    Start a write unit of work with short lock waits.

    - MySQL / PostgreSQL: LOCK_WAIT_TIMEOUT_SECONDS; READ COMMITTED comes
      from the engine (see config.engine_options), so it also covers reads
      made before this call in the same transaction
    - SQLite: BEGIN IMMEDIATE, taking the database write lock up front
      (SQLite ignores SELECT ... FOR UPDATE)
    """
    dialect = db.engine.dialect.name
    timeout = int(_config("LOCK_WAIT_TIMEOUT_SECONDS", 5))

    if dialect == "sqlite":
        raw = db.session.connection().connection.driver_connection
        if not raw.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))
        return

    if dialect == "mysql":
        db.session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {timeout}"))
    elif dialect == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = '{timeout}s'"))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows already in the session are overwritten with the locked read.
    """
    return query.with_for_update().populate_existing()


def lock_row_nowait(model, row_id: int):
    """
    Lock one row without queueing behind another writer.

    Returns the row (or None if absent). A row held elsewhere raises
    TransientError immediately instead of waiting.
    """
    try:
        return (
            db.session.query(model)
            .filter(model.id == row_id)
            .with_for_update(nowait=True)
            .populate_existing()
            .first()
        )
    except DBAPIError as exc:
        if is_transient_error(exc):
            raise TransientError(f"{model.__tablename__} row {row_id} is being edited by another writer") from exc
        raise


def lock_rows_for_update(model, ids) -> dict:
    """
    Lock a set of rows in one statement, in ascending id order.

    One acquisition point per unit of work keeps two sales over overlapping
    products from waiting on each other in opposite orders.
    """
    wanted = sorted({int(i) for i in ids})
    if not wanted:
        return {}
    rows = lock_for_update(
        db.session.query(model).filter(model.id.in_(wanted)).order_by(model.id.asc())
    ).all()
    return {row.id: row for row in rows}
