import os
import sqlite3
import uuid

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("NOTIFICATION_DELIVERY_BACKEND", "inline")

from dotenv import load_dotenv  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

load_dotenv(os.path.join(os.getcwd(), ".env"))

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))

# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes  # noqa: E402

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is None:
                return None
            if isinstance(value, uuid.UUID):
                return str(value)
            return str(uuid.UUID(str(value)))
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is None or isinstance(value, uuid.UUID):
                return value
            return uuid.UUID(value) if value else None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


sqltypes.Uuid.bind_processor = _sqlite_uuid_bind_processor
sqltypes.Uuid.result_processor = _sqlite_uuid_result_processor

from servicehub.db import Base  # noqa: E402
from servicehub.models import (  # noqa: E402
    Booking,
    Milestone,
    MilestoneStatus,
    Notification,
    NotificationPriority,
    NotificationType,
    Profile,
    Task,
    TaskStatus,
)
from servicehub.realtime.hub import RealtimeHub  # noqa: E402
from servicehub.services.change_feed import ChangeFeed  # noqa: E402
from servicehub.services.notifications import NotificationService  # noqa: E402
from servicehub.services.progress import ProgressService  # noqa: E402
from servicehub.services.progress_cache import ProgressCache  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, _connection_record):
        # Let SQLAlchemy emit BEGIN so SAVEPOINTs work with pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def connection(engine):
    connection = engine.connect()
    transaction = connection.begin()
    try:
        yield connection
    finally:
        transaction.rollback()
        connection.close()


@pytest.fixture()
def session_factory(connection):
    """Sessions that share the per-test connection (and its rollback)."""
    return sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


class RecordingQueue:
    """Delivery queue double that keeps every job it is handed."""

    def __init__(self):
        self.jobs = []

    def enqueue(self, job):
        self.jobs.append(job)


@pytest.fixture()
def recording_queue():
    return RecordingQueue()


@pytest.fixture()
def progress_cache():
    return ProgressCache(ttl_seconds=300, max_entries=64)


@pytest.fixture()
def progress_service(progress_cache):
    return ProgressService(progress_cache)


@pytest.fixture()
def notification_service(recording_queue):
    return NotificationService(delivery_queue=recording_queue)


@pytest.fixture()
def change_feed(session_factory):
    feed = ChangeFeed()
    feed.attach(session_factory)
    yield feed
    feed.detach()


@pytest.fixture()
def hub(change_feed, session_factory):
    return RealtimeHub(change_feed, session_factory=session_factory)


@pytest.fixture()
def make_profile(db_session):
    def _make(**kwargs):
        values = {"email": _unique_email(), "full_name": "Test User"}
        values.update(kwargs)
        profile = Profile(**values)
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _make


@pytest.fixture()
def profile(make_profile):
    return make_profile(full_name="Casey Client")


@pytest.fixture()
def make_booking(db_session):
    def _make(**kwargs):
        values = {"title": "Kitchen remodel", "service_name": "Renovation"}
        values.update(kwargs)
        booking = Booking(**values)
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return _make


@pytest.fixture()
def booking(make_booking, profile):
    return make_booking(client_id=profile.id)


@pytest.fixture()
def make_milestone(db_session):
    def _make(booking, **kwargs):
        values = {"title": "Design", "weight": 1.0, "status": MilestoneStatus.pending}
        values.update(kwargs)
        milestone = Milestone(booking_id=booking.id, **values)
        db_session.add(milestone)
        db_session.commit()
        db_session.refresh(milestone)
        return milestone

    return _make


@pytest.fixture()
def milestone(make_milestone, booking):
    return make_milestone(booking)


@pytest.fixture()
def make_task(db_session):
    def _make(milestone, **kwargs):
        values = {"title": "Draft plan", "weight": 1.0, "status": TaskStatus.pending}
        values.update(kwargs)
        task = Task(milestone_id=milestone.id, **values)
        db_session.add(task)
        db_session.commit()
        db_session.refresh(task)
        return task

    return _make


@pytest.fixture()
def make_notification(db_session):
    def _make(user_id, **kwargs):
        values = {
            "type": NotificationType.task_created,
            "title": "New Task: Draft plan",
            "message": "A new task has been created.",
            "priority": NotificationPriority.medium,
            "data": {},
        }
        values.update(kwargs)
        notification = Notification(user_id=user_id, **values)
        db_session.add(notification)
        db_session.commit()
        db_session.refresh(notification)
        return notification

    return _make
