"""
Course Allocation Platform
Dispatch Queue — decouples notification persistence from outbound email.

One interface, three backings, selected by DISPATCH_QUEUE_BACKEND:

    memory    — thread-safe deque, single process (dev / tests)
    database  — ``dispatch_queue`` table, pop claims a row via conditional DELETE
    redis     — Redis list, LPUSH on enqueue / RPOP on dequeue (FIFO)

The scanner, submission events and the dispatcher only see ``DispatchQueue``.
Every ``pop`` is atomic: an intent is handed to at most one consumer.
Intents are transient; losing one before consumption only loses the email,
never the ledger record.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field

import redis

from compliance_engine.models import db
from compliance_engine.models.scheduling import DispatchQueueEntry
from compliance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# ── Intent kinds (select the email template) ─────────────────────────────────

REMINDER_FACILITATOR = "reminder_facilitator"
ALERT_MANAGER = "alert_manager"
ACTIVITY_LOG_CREATED = "activity_log_created"
ACTIVITY_LOG_UPDATED = "activity_log_updated"

INTENT_KINDS = {REMINDER_FACILITATOR, ALERT_MANAGER, ACTIVITY_LOG_CREATED, ACTIVITY_LOG_UPDATED}


@dataclass
class DispatchIntent:
    """Queued request to email one recipient about one notification."""

    kind: str
    recipient_id: str
    recipient_type: str
    allocation_id: str | None = None
    week_number: int | None = None
    notification_id: str | None = None
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> DispatchIntent:
        data = json.loads(raw)
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})


class DispatchQueue:
    """FIFO queue of dispatch intents."""

    backend = "abstract"

    def push(self, intent: DispatchIntent) -> None:
        raise NotImplementedError

    def pop(self) -> DispatchIntent | None:
        raise NotImplementedError

    def size(self) -> int:
        raise NotImplementedError

    def enqueue(self, intent: DispatchIntent) -> None:
        """Append an intent; never waits on the mail transport."""
        self.push(intent)
        logger.debug("Dispatch intent queued (%s): %s → %s %s",
                     self.backend, intent.kind, intent.recipient_type, intent.recipient_id)


class MemoryDispatchQueue(DispatchQueue):
    """In-process deque guarded by a lock."""

    backend = "memory"

    def __init__(self):
        self._items: deque[str] = deque()
        self._lock = threading.Lock()

    def push(self, intent):
        with self._lock:
            self._items.append(intent.to_json())

    def pop(self):
        with self._lock:
            if not self._items:
                return None
            raw = self._items.popleft()
        return DispatchIntent.from_json(raw)

    def size(self):
        with self._lock:
            return len(self._items)


class DatabaseDispatchQueue(DispatchQueue):
    """
    Queue stored in the ``dispatch_queue`` table.

    Must be used inside an application context. A pop selects the oldest
    row and claims it with ``DELETE ... WHERE id = :id``; a rowcount of 0
    means another consumer won the race and the next row is tried.
    """

    backend = "database"
    _MAX_CLAIM_ATTEMPTS = 5

    def push(self, intent):
        db.session.add(DispatchQueueEntry(payload=intent.to_json()))
        db.session.commit()

    def pop(self):
        for _ in range(self._MAX_CLAIM_ATTEMPTS):
            row = (
                db.session.query(DispatchQueueEntry.id, DispatchQueueEntry.payload)
                .order_by(DispatchQueueEntry.id.asc())
                .first()
            )
            if row is None:
                return None
            claimed = DispatchQueueEntry.query.filter_by(id=row.id).delete(
                synchronize_session=False,
            )
            db.session.commit()
            if claimed:
                return DispatchIntent.from_json(row.payload)
        return None

    def size(self):
        return DispatchQueueEntry.query.count()


class RedisDispatchQueue(DispatchQueue):
    """Redis list: LPUSH to enqueue, RPOP to dequeue."""

    backend = "redis"

    def __init__(self, client, key="notifications"):
        self._client = client
        self.key = key

    def push(self, intent):
        self._client.lpush(self.key, intent.to_json())

    def pop(self):
        raw = self._client.rpop(self.key)
        if raw is None:
            return None
        return DispatchIntent.from_json(raw)

    def size(self):
        return int(self._client.llen(self.key))


def build_dispatch_queue(config) -> DispatchQueue:
    """Create the queue backing named by DISPATCH_QUEUE_BACKEND.

    A redis backing that cannot be reached at start-up falls back to the
    in-memory queue with a warning. DISPATCH_QUEUE_TIMEOUT bounds every
    redis socket operation, so a stalled server cannot hang a caller.
    """
    backend = (config.get("DISPATCH_QUEUE_BACKEND") or "memory").lower()

    if backend == "database":
        return DatabaseDispatchQueue()

    if backend == "redis":
        redis_url = config.get("REDIS_URL")
        key = config.get("DISPATCH_QUEUE_KEY", "notifications")
        timeout = config.get("DISPATCH_QUEUE_TIMEOUT", 2)
        if redis_url and not redis_url.startswith("memory://"):
            try:
                client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=timeout,
                    socket_connect_timeout=timeout,
                )
                client.ping()
                logger.info("Dispatch queue: using Redis list '%s' at %s",
                            key, redis_url.split("@")[-1])
                return RedisDispatchQueue(client, key=key)
            except Exception as exc:
                logger.warning("Redis unavailable (%s) — falling back to memory dispatch queue", exc)
        else:
            logger.warning("DISPATCH_QUEUE_BACKEND=redis without REDIS_URL — using memory queue")
        return MemoryDispatchQueue()

    if backend != "memory":
        logger.warning("Unknown DISPATCH_QUEUE_BACKEND '%s' — using memory queue", backend)
    return MemoryDispatchQueue()
