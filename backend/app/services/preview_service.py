# Overview: Service-layer operations for the customer-display preview feed.

"""
Preview Feed

The cashier screen POSTs a snapshot of the cart; customer displays listening
in-process receive it. Order of work is broadcast-then-persist: subscribers
see the snapshot before it is written, and a failed write does not undo the
broadcast. The subscriber set is the only process-wide mutable state and
holds no business data.
"""

from __future__ import annotations

import queue
import threading

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import PreviewSnapshot
from ..validation import ValidationError, dump_json
from app.time_utils import utcnow

SUBSCRIBER_QUEUE_SIZE = 16

_subscribers: set[queue.Queue] = set()
_subscribers_lock = threading.Lock()


def subscribe() -> queue.Queue:
    q: queue.Queue = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
    with _subscribers_lock:
        _subscribers.add(q)
    return q


def unsubscribe(q: queue.Queue) -> None:
    with _subscribers_lock:
        _subscribers.discard(q)


def subscriber_count() -> int:
    with _subscribers_lock:
        return len(_subscribers)


def broadcast(message: dict) -> int:
    """Hand the message to every subscriber; slow subscribers drop it. Returns deliveries."""
    with _subscribers_lock:
        targets = list(_subscribers)

    delivered = 0
    for q in targets:
        try:
            q.put_nowait(message)
            delivered += 1
        except queue.Full:
            current_app.logger.warning("Preview subscriber queue full; snapshot dropped")
    return delivered


def publish_snapshot(user_id: int, snapshot) -> dict:
    """
    Broadcast the snapshot, then store it as the user's latest.

    Subscribers get the message before the write starts. The write still
    finishes before this returns, so the caller can report `persisted`;
    a failed write is logged and leaves the broadcast in place.
    """
    if not isinstance(snapshot, dict):
        raise ValidationError("snapshot must be an object")

    message = {"userId": user_id, "snapshot": snapshot}
    delivered = broadcast(message)

    persisted = True
    try:
        row = db.session.query(PreviewSnapshot).filter_by(user_id=user_id).first()
        if row is None:
            row = PreviewSnapshot(user_id=user_id)
            db.session.add(row)
        row.payload = dump_json(snapshot)
        row.updated_at = utcnow()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        persisted = False
        current_app.logger.exception("Failed to persist preview snapshot for user %s", user_id)

    return {"delivered": delivered, "persisted": persisted}


def latest_snapshot(user_id: int) -> dict | None:
    row = db.session.query(PreviewSnapshot).filter_by(user_id=user_id).first()
    return row.to_dict() if row else None
