"""Prometheus metrics for the progress and notification pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

NOTIFICATIONS_CREATED = Counter(
    "servicehub_notifications_created_total",
    "Notifications persisted",
    ["type", "delivery"],  # delivery: enqueued, suppressed, no_recipient, enqueue_failed
)

EMAIL_DELIVERIES = Counter(
    "servicehub_email_deliveries_total",
    "Email delivery attempts",
    ["status"],  # status: sent, failed, skipped
)

PROGRESS_RECOMPUTES = Counter(
    "servicehub_progress_recomputes_total",
    "Progress recalculations written back",
    ["level"],  # level: milestone, booking
)

PROGRESS_RECOMPUTE_TIME = Histogram(
    "servicehub_progress_recompute_seconds",
    "Time spent recalculating progress",
    ["level"],
)

REALTIME_EVENTS = Counter(
    "servicehub_realtime_events_total",
    "Events fanned out to local realtime listeners",
    ["type", "status"],  # status: delivered, dropped, listener_error
)

SIDE_EFFECT_FAILURES = Counter(
    "servicehub_side_effect_failures_total",
    "Isolated failures of secondary effects",
    ["effect"],
)
