"""SQLite mirror of the tracker state, plus a fire-and-forget writer.

The store is only read on startup. While the process runs the in-memory
registry is authoritative and every write goes through StoreWriter, which
logs and counts failures instead of raising them.
"""

import json
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional

from sqlalchemy import Integer, cast, create_engine, delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..database import db
from ..models import AgentRow, MessageRow, SessionMetaRow
from .agent_registry import AgentRecord, AgentStatus
from .message_log import Message
from .usage import AgentUsage

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str) and value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(value))


def record_to_row(record: AgentRecord) -> AgentRow:
    usage = record.usage
    return AgentRow(
        id=record.id,
        session_id=record.session_id,
        description=record.description,
        prompt=record.prompt,
        subagent_type=record.subagent_type,
        background=record.background,
        status=record.status.value,
        started_at=record.started_at,
        last_activity=record.last_activity,
        ended_at=record.ended_at,
        duration_ms=record.duration_ms,
        error=record.error,
        output_preview=record.output_preview,
        output_file=record.output_file,
        parent_id=record.parent_id,
        usage_tokens=usage.total_tokens if usage else None,
        usage_tool_uses=usage.tool_uses if usage else None,
        usage_duration_ms=usage.duration_ms if usage else None,
        correlation_id=record.correlation_id,
    )


def row_to_record(row: AgentRow) -> AgentRecord:
    has_usage = (
        row.usage_tokens is not None
        or row.usage_tool_uses is not None
        or row.usage_duration_ms is not None
    )
    return AgentRecord(
        id=row.id,
        session_id=row.session_id or "",
        description=row.description or "",
        prompt=row.prompt or "",
        subagent_type=row.subagent_type or "unknown",
        background=bool(row.background),
        status=AgentStatus(row.status),
        started_at=_as_utc(row.started_at),
        last_activity=_as_utc(row.last_activity),
        ended_at=_as_utc(row.ended_at),
        duration_ms=row.duration_ms,
        error=row.error,
        output_preview=row.output_preview,
        output_file=row.output_file,
        parent_id=row.parent_id,
        usage=AgentUsage(
            total_tokens=row.usage_tokens or 0,
            tool_uses=row.usage_tool_uses or 0,
            duration_ms=row.usage_duration_ms or 0,
        ) if has_usage else None,
        correlation_id=row.correlation_id,
    )


def record_from_json(key: str, data: dict) -> AgentRecord:
    """Build a record from the pre-SQLite JSON state file format."""
    started_at = _parse_timestamp(data.get("started_at")) or datetime.now(timezone.utc)
    return AgentRecord(
        id=data.get("id") or key,
        session_id=data.get("session_id") or "",
        description=data.get("description") or "",
        prompt=data.get("prompt") or "",
        subagent_type=data.get("subagent_type") or "unknown",
        background=bool(data.get("background")),
        status=AgentStatus(data.get("status") or AgentStatus.RUNNING.value),
        started_at=started_at,
        last_activity=_parse_timestamp(data.get("last_activity")) or started_at,
        ended_at=_parse_timestamp(data.get("ended_at")),
        duration_ms=data.get("duration_ms"),
        error=data.get("error"),
        output_preview=data.get("output_preview"),
        output_file=data.get("output_file"),
        parent_id=data.get("parent_id") or "__user__",
        usage=AgentUsage.from_dict(data.get("usage")),
        correlation_id=data.get("agentId") or data.get("correlation_id"),
    )


class AgentStore:
    """
    Synchronous SQLite access for agents, messages and session metadata.

    Uses its own engine and session factory, independent of Flask, so the
    writer thread and startup recovery never need an app context.
    """

    def __init__(self, database_url: str) -> None:
        engine_kwargs: dict[str, Any] = {
            "connect_args": {"check_same_thread": False, "timeout": 5},
        }
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every thread sees its own empty database
            engine_kwargs["poolclass"] = StaticPool

        self._database_url = database_url
        self._engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        db.metadata.create_all(self._engine)
        logger.info(f"AgentStore initialized ({database_url})")

    def _session(self) -> Session:
        return self._session_factory()

    def save_agent(self, record: AgentRecord) -> None:
        with self._session() as session:
            session.merge(record_to_row(record))
            session.commit()

    def save_agents(self, records: list[AgentRecord]) -> None:
        with self._session() as session:
            for record in records:
                session.merge(record_to_row(record))
            session.commit()

    def delete_agent(self, agent_id: str) -> None:
        with self._session() as session:
            session.execute(delete(AgentRow).where(AgentRow.id == agent_id))
            session.commit()

    def load_all_agents(self) -> list[AgentRecord]:
        with self._session() as session:
            rows = session.scalars(select(AgentRow)).all()
            return [row_to_record(row) for row in rows]

    def mark_all_running_as_errored(self, reason: str, ended_at: datetime) -> int:
        """Demote every running row. Returns the number of rows changed."""
        with self._session() as session:
            result = session.execute(
                update(AgentRow)
                .where(AgentRow.status == AgentStatus.RUNNING.value)
                .values(status=AgentStatus.ERRORED.value, error=reason, ended_at=ended_at)
            )
            session.commit()
            return result.rowcount or 0

    def save_message(self, message: Message) -> None:
        with self._session() as session:
            session.merge(MessageRow(
                id=message.id,
                from_id=message.from_id,
                to_id=message.to_id,
                type=message.type,
                timestamp=message.timestamp,
            ))
            session.commit()

    def load_all_messages(self) -> list[Message]:
        with self._session() as session:
            rows = session.scalars(
                select(MessageRow).order_by(cast(MessageRow.id, Integer))
            ).all()
            return [
                Message(
                    id=row.id,
                    from_id=row.from_id,
                    to_id=row.to_id,
                    type=row.type,
                    timestamp=_as_utc(row.timestamp),
                )
                for row in rows
            ]

    def delete_messages_before(self, cutoff: datetime) -> int:
        with self._session() as session:
            result = session.execute(delete(MessageRow).where(MessageRow.timestamp < cutoff))
            session.commit()
            return result.rowcount or 0

    def save_meta(self, key: str, value: str) -> None:
        with self._session() as session:
            session.merge(SessionMetaRow(key=key, value=value))
            session.commit()

    def load_meta(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(SessionMetaRow, key)
            return row.value if row else None

    def clear_all(self) -> None:
        with self._session() as session:
            session.execute(delete(AgentRow))
            session.execute(delete(MessageRow))
            session.execute(delete(SessionMetaRow))
            session.commit()

    def check_health(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"AgentStore health check failed: {e}")
            return False

    def dispose(self) -> None:
        self._engine.dispose()
        logger.info("AgentStore disposed")


@dataclass
class WriterMetrics:
    """Metrics for monitoring store writer health."""

    total_writes: int = 0
    successful_writes: int = 0
    failed_writes: int = 0
    last_write_timestamp: Optional[datetime] = None
    last_error: Optional[str] = None
    _lock: Lock = field(default_factory=Lock)

    def record_success(self) -> None:
        with self._lock:
            self.total_writes += 1
            self.successful_writes += 1
            self.last_write_timestamp = datetime.now(timezone.utc)

    def record_failure(self, error: str) -> None:
        with self._lock:
            self.total_writes += 1
            self.failed_writes += 1
            self.last_error = error

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_writes": self.total_writes,
                "successful_writes": self.successful_writes,
                "failed_writes": self.failed_writes,
                "last_write_timestamp": (
                    self.last_write_timestamp.isoformat()
                    if self.last_write_timestamp
                    else None
                ),
                "last_error": self.last_error,
            }


_STOP = object()


class StoreWriter:
    """
    Fire-and-forget persistence facade used by the registry and message log.

    In async mode a single daemon thread applies writes in submission order,
    so the request path never waits on SQLite. Arguments are copied when
    submitted; later in-memory mutation cannot leak into a queued write.
    """

    def __init__(self, store: AgentStore | None, async_writes: bool = True) -> None:
        self._store = store
        self._async = async_writes
        self._metrics = WriterMetrics()
        self._queue: queue.Queue = queue.Queue()
        self._running = True
        self._thread: threading.Thread | None = None

        if self._async and self._store is not None:
            self._thread = threading.Thread(
                target=self._run, daemon=True, name="StoreWriter"
            )
            self._thread.start()

        logger.info(f"StoreWriter initialized (async={self._async}, store={store is not None})")

    @property
    def metrics(self) -> WriterMetrics:
        return self._metrics

    @property
    def enabled(self) -> bool:
        return self._store is not None

    def save_agent(self, record: AgentRecord) -> None:
        self._submit("save_agent", record.copy())

    def delete_agent(self, agent_id: str) -> None:
        self._submit("delete_agent", agent_id)

    def save_message(self, message: Message) -> None:
        self._submit("save_message", message)

    def save_meta(self, key: str, value: str) -> None:
        self._submit("save_meta", key, value)

    def delete_messages_before(self, cutoff: datetime) -> None:
        self._submit("delete_messages_before", cutoff)

    def clear_all(self) -> None:
        self._submit("clear_all")

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until everything submitted so far has been applied."""
        if self._thread is None or not self._thread.is_alive():
            return True
        done = threading.Event()
        self._queue.put(done)
        return done.wait(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Drain outstanding writes, then stop the worker thread."""
        if not self._running:
            return
        self._running = False
        if self._thread is not None and self._thread.is_alive():
            self._queue.put(_STOP)
            self._thread.join(timeout=timeout)
        logger.info("StoreWriter stopped")

    def get_health_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "enabled": self.enabled,
            "async": self._async,
            "queue_depth": self._queue.qsize(),
            "metrics": self._metrics.get_stats(),
        }

    def _submit(self, operation: str, *args) -> None:
        if self._store is None:
            return
        if not self._running:
            logger.debug(f"StoreWriter stopped, dropping {operation}")
            return
        if self._async:
            self._queue.put((operation, args))
        else:
            self._apply(operation, args)

    def _apply(self, operation: str, args: tuple) -> None:
        try:
            getattr(self._store, operation)(*args)
            self._metrics.record_success()
        except SQLAlchemyError as e:
            self._metrics.record_failure(str(e))
            logger.error(f"Store write failed ({operation}): {e}")
        except Exception as e:
            self._metrics.record_failure(str(e))
            logger.exception(f"Unexpected error in store write ({operation}): {e}")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if isinstance(item, threading.Event):
                item.set()
                continue
            operation, args = item
            self._apply(operation, args)


def migrate_from_json(store: AgentStore, path: str) -> bool:
    """
    Import a pre-SQLite JSON state file, then rename it to ``<path>.migrated``.

    Returns True if a file was migrated. A failed import is logged and the
    file is left in place for the next start.
    """
    if not os.path.exists(path):
        return False

    try:
        with open(path, "r") as f:
            data = json.load(f)

        agents = data.get("agents") or {}
        # Either {key: record} or a list of [key, record] pairs
        entries = agents if isinstance(agents, list) else list(agents.items())
        records = [record_from_json(key, value) for key, value in entries]
        if records:
            store.save_agents(records)

        for item in data.get("messages") or []:
            store.save_message(Message(
                id=str(item["id"]),
                from_id=item.get("from_id", ""),
                to_id=item.get("to_id", ""),
                type=item.get("type", ""),
                timestamp=_parse_timestamp(item.get("timestamp")) or datetime.now(timezone.utc),
            ))

        if data.get("messageCounter") is not None:
            store.save_meta("messageCounter", str(data["messageCounter"]))
        if data.get("sessionUsage"):
            store.save_meta("sessionUsage", json.dumps(data["sessionUsage"]))

        migrated_path = path + ".migrated"
        os.rename(path, migrated_path)
        logger.info(
            f"Migrated JSON state to SQLite ({len(records)} agents). "
            f"Old file renamed to {os.path.basename(migrated_path)}"
        )
        return True
    except (OSError, ValueError, KeyError, TypeError, SQLAlchemyError) as e:
        logger.error(f"JSON state migration failed: {e}")
        return False
