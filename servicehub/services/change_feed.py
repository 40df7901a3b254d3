"""In-process row-change feed built on SQLAlchemy session events.

Changes are collected per session in ``after_flush`` and published only
after the surrounding transaction commits. A rollback discards them, and
a rolled back savepoint discards only what was flushed inside it.
Subscribers receive :class:`RowChange` objects for the table they asked
for, optionally narrowed by column filters.
"""

from __future__ import annotations

import enum
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import event, inspect

from servicehub.logging import get_logger

logger = get_logger(__name__)

_PENDING_KEY = "change_feed_pending"
_SAVEPOINT_KEY = "change_feed_savepoints"

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class RowChange:
    table: str
    action: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    changed: frozenset[str] = frozenset()
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def row(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


def normalize(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _row_snapshot(obj) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    return {attr.key: normalize(getattr(obj, attr.key, None)) for attr in mapper.column_attrs}


def _previous_snapshot(obj) -> tuple[dict[str, Any], frozenset[str]]:
    state = inspect(obj)
    previous: dict[str, Any] = {}
    changed: set[str] = set()
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            previous[attr.key] = normalize(history.deleted[0])
            changed.add(attr.key)
        elif history.added:
            previous[attr.key] = None
            changed.add(attr.key)
        else:
            previous[attr.key] = normalize(getattr(obj, attr.key, None))
    return previous, frozenset(changed)


class FeedSubscription:
    def __init__(self, feed: ChangeFeed, table: str, filters: dict[str, Any], callback) -> None:
        self.table = table
        self.filters = {key: _filter_values(value) for key, value in (filters or {}).items()}
        self.callback = callback
        self._feed = feed
        self.closed = False

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        if not self.filters:
            return True
        return any(
            row is not None and all(normalize(row.get(key)) in allowed for key, allowed in self.filters.items())
            for row in (change.new, change.old)
        )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)


def _filter_values(value: Any) -> frozenset:
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(normalize(item) for item in value)
    return frozenset([normalize(value)])


class ChangeFeed:
    """Publishes committed row changes to table subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[FeedSubscription] = []
        self._attached: list[Any] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Subscription API
    # ------------------------------------------------------------------
    def subscribe(
        self,
        table: str,
        filters: dict[str, Any] | None,
        on_event: Callable[[RowChange], None],
    ) -> FeedSubscription:
        subscription = FeedSubscription(self, table, filters or {}, on_event)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("change_feed_subscribed table=%s filters=%s", table, subscription.filters)
        return subscription

    def _remove(self, subscription: FeedSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.debug("change_feed_unsubscribed table=%s", subscription.table)

    def subscription_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for sub in self._subscriptions if sub.table == table)

    def publish(self, change: RowChange) -> None:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(change)]
        for subscription in targets:
            if subscription.closed:
                continue
            try:
                subscription.callback(change)
            except Exception:
                logger.warning(
                    "change_feed_listener_error table=%s action=%s",
                    change.table,
                    change.action,
                    exc_info=True,
                )

    def publish_many(self, changes: Iterable[RowChange]) -> None:
        for change in changes:
            self.publish(change)

    # ------------------------------------------------------------------
    # SQLAlchemy wiring
    # ------------------------------------------------------------------
    def attach(self, target) -> None:
        """Listen to a ``sessionmaker``, ``Session`` class or session instance."""
        if any(existing is target for existing in self._attached):
            return
        event.listen(target, "after_transaction_create", self._after_transaction_create)
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_soft_rollback", self._after_rollback)
        self._attached.append(target)

    def detach(self) -> None:
        for target in self._attached:
            event.remove(target, "after_transaction_create", self._after_transaction_create)
            event.remove(target, "after_flush", self._after_flush)
            event.remove(target, "after_commit", self._after_commit)
            event.remove(target, "after_soft_rollback", self._after_rollback)
        self._attached.clear()

    def _after_flush(self, session, _flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            pending.append(RowChange(table=obj.__tablename__, action=INSERT, new=_row_snapshot(obj)))
        for obj in session.dirty:
            if not session.is_modified(obj, include_collections=False):
                continue
            old, changed = _previous_snapshot(obj)
            if not changed:
                continue
            pending.append(
                RowChange(
                    table=obj.__tablename__,
                    action=UPDATE,
                    new=_row_snapshot(obj),
                    old=old,
                    changed=changed,
                )
            )
        for obj in session.deleted:
            pending.append(RowChange(table=obj.__tablename__, action=DELETE, old=_row_snapshot(obj)))

    def _after_transaction_create(self, session, transaction) -> None:
        if transaction.nested:
            marks = session.info.setdefault(_SAVEPOINT_KEY, {})
            marks[transaction] = len(session.info.get(_PENDING_KEY, ()))

    def _after_commit(self, session) -> None:
        # A released savepoint still belongs to the outer transaction.
        if session.in_nested_transaction():
            session.info.get(_SAVEPOINT_KEY, {}).pop(session.get_nested_transaction(), None)
            return
        session.info.pop(_SAVEPOINT_KEY, None)
        pending = session.info.pop(_PENDING_KEY, None)
        if pending:
            self.publish_many(pending)

    def _after_rollback(self, session, previous_transaction) -> None:
        if previous_transaction.parent is None:
            session.info.pop(_PENDING_KEY, None)
            session.info.pop(_SAVEPOINT_KEY, None)
            return
        if not previous_transaction.nested:
            return
        mark = session.info.get(_SAVEPOINT_KEY, {}).pop(previous_transaction, None)
        pending = session.info.get(_PENDING_KEY)
        if mark is not None and pending is not None:
            del pending[mark:]
