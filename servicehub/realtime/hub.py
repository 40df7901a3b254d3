"""Typed publish/subscribe hub for booking progress.

Channels are keyed by ``(entity_type, entity_id)``. The first local
listener on a booking channel opens the upstream change-feed
subscriptions; the last one to leave closes them again.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from servicehub.logging import get_logger
from servicehub.metrics import REALTIME_EVENTS
from servicehub.models.bookings import Milestone
from servicehub.realtime.events import ProgressAction, ProgressEvent, ProgressEventType
from servicehub.services.change_feed import DELETE, INSERT, ChangeFeed, FeedSubscription, RowChange

logger = get_logger(__name__)

ChannelKey = tuple[str, str]
Listener = Callable[[ProgressEvent], None]

BOOKING_CHANNEL = "booking"
BROADCAST_CHANNEL = "broadcast"
PROGRESS_UPDATE = "progress_update"

_PROGRESS_FIELDS = frozenset({"status", "weight", "milestone_id"})


@dataclass(eq=False)
class _ListenerEntry:
    callback: Listener


@dataclass
class _Channel:
    key: ChannelKey
    listeners: list[_ListenerEntry] = field(default_factory=list)
    upstream: list[FeedSubscription] = field(default_factory=list)
    milestone_ids: set[str] = field(default_factory=set)


def _action_for(change: RowChange) -> ProgressAction:
    if change.action == INSERT:
        return ProgressAction.CREATE
    if change.action == DELETE:
        return ProgressAction.DELETE
    new_status = (change.new or {}).get("status")
    old_status = (change.old or {}).get("status")
    if "status" in change.changed and new_status == "completed" and old_status != "completed":
        return ProgressAction.COMPLETE
    return ProgressAction.UPDATE


def _event_data(change: RowChange) -> dict[str, Any]:
    data = {key: value if not hasattr(value, "isoformat") else value.isoformat() for key, value in change.row.items()}
    if change.changed:
        data["changed_fields"] = sorted(change.changed)
    return data


class RealtimeHub:
    def __init__(self, feed: ChangeFeed, session_factory: Callable[[], Any] | None = None) -> None:
        self._feed = feed
        self._session_factory = session_factory
        self._channels: dict[ChannelKey, _Channel] = {}
        self._lock = threading.RLock()
        self._progress_service = None

    def configure_session_factory(self, session_factory: Callable[[], Any]) -> None:
        self._session_factory = session_factory

    def enable_recompute(self, progress_service) -> None:
        """Recompute milestone and booking progress when task rows change."""
        self._progress_service = progress_service

    # ------------------------------------------------------------------
    # Booking channels
    # ------------------------------------------------------------------
    def subscribe_booking(self, booking_id, on_change: Listener) -> Callable[[], None]:
        key: ChannelKey = (BOOKING_CHANNEL, str(booking_id))
        entry = _ListenerEntry(on_change)
        with self._lock:
            channel = self._channels.get(key)
            if channel is None:
                channel = _Channel(key)
                channel.upstream = self._open_upstream(channel)
                self._channels[key] = channel
                logger.info("realtime_channel_opened booking_id=%s", booking_id)
            channel.listeners.append(entry)
        return lambda: self._unsubscribe(key, entry)

    def _unsubscribe(self, key: ChannelKey, entry: _ListenerEntry) -> None:
        with self._lock:
            channel = self._channels.get(key)
            if channel is None or entry not in channel.listeners:
                return
            channel.listeners.remove(entry)
            if channel.listeners:
                return
            del self._channels[key]
            upstream, channel.upstream = channel.upstream, []
        for subscription in upstream:
            subscription.close()
        logger.info("realtime_channel_closed key=%s:%s", key[0], key[1])

    def _open_upstream(self, channel: _Channel) -> list[FeedSubscription]:
        booking_id = channel.key[1]
        return [
            self._feed.subscribe("tasks", None, lambda change: self._on_task_change(channel, change)),
            self._feed.subscribe(
                "milestones", {"booking_id": booking_id}, lambda change: self._on_milestone_change(channel, change)
            ),
            self._feed.subscribe("bookings", {"id": booking_id}, lambda change: self._on_booking_change(channel, change)),
        ]

    def _resolve_booking_id(self, milestone_id: str) -> str | None:
        if self._session_factory is None:
            return None
        with self._session_factory() as session:
            milestone = session.get(Milestone, uuid.UUID(str(milestone_id)))
            return str(milestone.booking_id) if milestone else None

    def _on_task_change(self, channel: _Channel, change: RowChange) -> None:
        booking_id = channel.key[1]
        milestone_id = change.row.get("milestone_id")
        if not milestone_id:
            return
        if milestone_id not in channel.milestone_ids:
            try:
                resolved = self._resolve_booking_id(milestone_id)
            except Exception as exc:
                REALTIME_EVENTS.labels(ProgressEventType.TASK.value, "dropped").inc()
                logger.debug("realtime_task_lookup_failed milestone_id=%s error=%s", milestone_id, exc)
                return
            if resolved != booking_id:
                return
            channel.milestone_ids.add(milestone_id)
        if change.action == DELETE or change.action == INSERT or (change.changed & _PROGRESS_FIELDS):
            self._recompute(milestone_id)
        self._dispatch(
            channel,
            ProgressEvent(
                booking_id=booking_id,
                milestone_id=milestone_id,
                task_id=change.row.get("id"),
                type=ProgressEventType.TASK,
                action=_action_for(change),
                data=_event_data(change),
            ),
        )

    def _on_milestone_change(self, channel: _Channel, change: RowChange) -> None:
        milestone_id = change.row.get("id")
        if change.action == DELETE:
            channel.milestone_ids.discard(milestone_id)
        elif milestone_id:
            channel.milestone_ids.add(milestone_id)
        self._dispatch(
            channel,
            ProgressEvent(
                booking_id=channel.key[1],
                milestone_id=milestone_id,
                type=ProgressEventType.MILESTONE,
                action=_action_for(change),
                data=_event_data(change),
            ),
        )

    def _on_booking_change(self, channel: _Channel, change: RowChange) -> None:
        self._dispatch(
            channel,
            ProgressEvent(
                booking_id=channel.key[1],
                type=ProgressEventType.BOOKING,
                action=_action_for(change),
                data=_event_data(change),
            ),
        )

    def _recompute(self, milestone_id: str) -> None:
        if self._progress_service is None or self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                self._progress_service.refresh_from_milestone_id(session, milestone_id)
        except Exception:
            logger.warning("realtime_recompute_failed milestone_id=%s", milestone_id, exc_info=True)

    # ------------------------------------------------------------------
    # Application broadcast channel
    # ------------------------------------------------------------------
    def subscribe_broadcast(self, name: str, listener: Listener) -> Callable[[], None]:
        key: ChannelKey = (BROADCAST_CHANNEL, name)
        entry = _ListenerEntry(listener)
        with self._lock:
            channel = self._channels.setdefault(key, _Channel(key))
            channel.listeners.append(entry)
        return lambda: self._unsubscribe(key, entry)

    def publish(self, name: str, event: ProgressEvent) -> None:
        with self._lock:
            channel = self._channels.get((BROADCAST_CHANNEL, name))
        if channel is not None:
            self._dispatch(channel, event)

    def publish_progress(self, booking_id, data: dict[str, Any], milestone_id=None, task_id=None) -> None:
        """Tell every open view of a booking that its progress changed."""
        event = ProgressEvent(
            booking_id=str(booking_id),
            milestone_id=str(milestone_id) if milestone_id else None,
            task_id=str(task_id) if task_id else None,
            type=ProgressEventType.PROGRESS_UPDATE,
            action=ProgressAction.UPDATE,
            data=data,
        )
        self.publish(PROGRESS_UPDATE, event)
        with self._lock:
            channel = self._channels.get((BOOKING_CHANNEL, str(booking_id)))
        if channel is not None:
            self._dispatch(channel, event)

    def _dispatch(self, channel: _Channel, event: ProgressEvent) -> None:
        with self._lock:
            listeners = list(channel.listeners)
        for entry in listeners:
            try:
                entry.callback(event)
                REALTIME_EVENTS.labels(event.type.value, "delivered").inc()
            except Exception:
                REALTIME_EVENTS.labels(event.type.value, "listener_error").inc()
                logger.warning(
                    "realtime_listener_error key=%s:%s event=%s",
                    channel.key[0],
                    channel.key[1],
                    event.type.value,
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def listener_count(self, entity_type: str, entity_id) -> int:
        with self._lock:
            channel = self._channels.get((entity_type, str(entity_id)))
            return len(channel.listeners) if channel else 0

    def has_channel(self, entity_type: str, entity_id) -> bool:
        with self._lock:
            return (entity_type, str(entity_id)) in self._channels
