"""
Record store for notifications and templates.

This module provides the persistence layer the dispatch pipeline depends on.
Records live in a SQL database reached through SQLAlchemy's asyncio engine
(SQLite via aiosqlite by default, any async dialect works).

Design decisions:
- attempt_count is incremented with a single
  UPDATE ... SET attempt_count = attempt_count + 1, so concurrent
  increments from any number of workers or processes are never lost
- Template key uniqueness is a database constraint, not a read-then-insert
- Every operation runs in its own short transaction; nothing is cached, so
  several stores (or processes) on one database see each other's writes
- SQLite URLs use NullPool: connections are opened per operation and never
  shared between event loops (Celery worker threads, the demo, tests)
- Callers get pydantic models, never ORM rows
"""

import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from notifications.errors import ConflictError, NotFoundError
from notifications.models import (
    Notification,
    NotificationTemplate,
    OpaquePayload,
    as_utc,
    utcnow,
)
from notifications.tables import Base, NotificationRow, TemplateRow

logger = logging.getLogger("data_store")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./notifications.db"

_TIMESTAMPS = ("scheduled_for", "sent_at", "created_at", "updated_at")


def _engine_options(database_url: str) -> dict[str, Any]:
    if not database_url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    if ":memory:" in database_url:
        # One shared connection, otherwise every session sees an empty database
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"poolclass": NullPool}


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, OpaquePayload):
        return value.root
    return value


def _row_fields(row: Any, columns) -> dict[str, Any]:
    fields = {column.key: getattr(row, column.key) for column in columns}
    for name in _TIMESTAMPS:
        if fields.get(name) is not None:
            fields[name] = as_utc(fields[name])
    return fields


def _to_notification(row: NotificationRow) -> Notification:
    return Notification(**_row_fields(row, NotificationRow.__table__.columns))


def _to_template(row: TemplateRow) -> NotificationTemplate:
    return NotificationTemplate(**_row_fields(row, TemplateRow.__table__.columns))


class DataStore:
    """
    Notification Record Store.

    Example usage:
        store = DataStore("sqlite+aiosqlite:///var/notifications.db")
        await store.initialize()
        record = await store.create_notification(Notification(...))
        record = await store.increment_attempt(record.id)
        await store.dispose()
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        """
        Initialize the data store.

        Args:
            database_url: SQLAlchemy async database URL
            echo: Log every SQL statement (debugging)
        """
        self.database_url = database_url
        self.engine: AsyncEngine = create_async_engine(
            database_url, echo=echo, **_engine_options(database_url)
        )
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Create the tables if they do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug(f"Schema ready on {self.engine.url.render_as_string(hide_password=True)}")

    async def dispose(self) -> None:
        """Close pooled connections."""
        await self.engine.dispose()

    # =========================================================================
    # Notification Operations
    # =========================================================================

    async def create_notification(self, notification: Notification) -> Notification:
        values = {k: _column_value(v) for k, v in notification.model_dump().items()}
        async with self._sessions.begin() as session:
            session.add(NotificationRow(**values))
        return notification.model_copy(deep=True)

    async def find_notification(self, notification_id: str) -> Optional[Notification]:
        """Get a notification by ID, or None."""
        async with self._sessions() as session:
            row = await session.get(NotificationRow, notification_id)
            return _to_notification(row) if row else None

    async def update_notification(self, notification_id: str, **fields: Any) -> Notification:
        """
        Apply a partial update to a notification.

        Raises:
            NotFoundError: If the notification does not exist
        """
        values = {k: _column_value(v) for k, v in fields.items()}
        values["updated_at"] = utcnow()
        return await self._update_notification_row(notification_id, values)

    async def increment_attempt(self, notification_id: str) -> Notification:
        """
        Atomically add one to attempt_count.

        The database evaluates the increment, so concurrent callers never
        overwrite each other's attempt.
        """
        values = {
            "attempt_count": NotificationRow.attempt_count + 1,
            "updated_at": utcnow(),
        }
        return await self._update_notification_row(notification_id, values)

    async def _update_notification_row(self, notification_id: str, values: dict) -> Notification:
        async with self._sessions.begin() as session:
            result = await session.execute(
                update(NotificationRow)
                .where(NotificationRow.id == notification_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Notification", notification_id)
            row = await session.get(NotificationRow, notification_id, populate_existing=True)
            return _to_notification(row)

    # =========================================================================
    # Template Operations
    # =========================================================================

    async def create_template(self, template: NotificationTemplate) -> NotificationTemplate:
        """
        Insert a template, enforcing key uniqueness.

        Raises:
            ConflictError: If a template with the same key exists
        """
        values = {k: _column_value(v) for k, v in template.model_dump().items()}
        try:
            async with self._sessions.begin() as session:
                session.add(TemplateRow(**values))
        except IntegrityError as e:
            raise ConflictError(f"Template key already exists: {template.key}") from e
        return template.model_copy(deep=True)

    async def find_template(self, template_id: str) -> Optional[NotificationTemplate]:
        async with self._sessions() as session:
            row = await session.get(TemplateRow, template_id)
            return _to_template(row) if row else None

    async def find_template_by_key(self, key: str) -> Optional[NotificationTemplate]:
        async with self._sessions() as session:
            row = await session.scalar(select(TemplateRow).where(TemplateRow.key == key))
            return _to_template(row) if row else None

    async def update_template(self, template_id: str, **fields: Any) -> NotificationTemplate:
        """Apply a partial update; raises NotFoundError if absent."""
        values = {k: _column_value(v) for k, v in fields.items()}
        values["updated_at"] = utcnow()
        async with self._sessions.begin() as session:
            result = await session.execute(
                update(TemplateRow)
                .where(TemplateRow.id == template_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Template", template_id)
            row = await session.get(TemplateRow, template_id, populate_existing=True)
            return _to_template(row)

    async def list_templates(self) -> list[NotificationTemplate]:
        """All templates ordered by key."""
        async with self._sessions() as session:
            rows = await session.scalars(select(TemplateRow).order_by(TemplateRow.key))
            return [_to_template(row) for row in rows]

    async def delete_template(self, template_id: str) -> None:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(TemplateRow).where(TemplateRow.id == template_id)
            )
            if result.rowcount == 0:
                raise NotFoundError("Template", template_id)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    async def ping(self) -> bool:
        """Readiness check: the database answers a trivial query."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
