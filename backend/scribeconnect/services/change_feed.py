"""
ScribeConnect Backend: Realtime Change Feed
============================================

What:  Delivers "something changed in match_requests" events to subscribers.
How:   PostgreSQL LISTEN/NOTIFY. A row trigger (installed by the initial
       Alembic migration) calls pg_notify on every INSERT, UPDATE and DELETE
       with a small JSON payload. One asyncpg connection per process listens
       on the channel and fans each notification out to every handler.
Who:   RealtimeNotificationBridge, one subscription per open WebSocket.

Payload (from notify_match_request_change()):
    {"event": "UPDATE", "id": "...", "student_id": "...",
     "writer_id": "...", "status": "accepted"}

    Events are NOT filtered server-side: every handler sees every change and
    decides for itself whether to refetch.

Connection failures:
    Establishing the LISTEN connection is retried with exponential backoff
    and jitter (tenacity). Exhausted retries, and setup failures that are not
    worth retrying (bad DSN options, driver interface errors), raise
    RealtimeSubscriptionError.
    If an established connection drops, every subscription's on_lost callback
    is invoked so the caller can fall back to polling.
"""

import asyncio
import itertools
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

import asyncpg
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from scribeconnect.config import settings
from scribeconnect.exceptions import RealtimeSubscriptionError

logger = logging.getLogger(__name__)


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class ChangeEvent:
    """One row change on match_requests."""

    event: str
    id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    writer_id: Optional[uuid.UUID] = None
    status: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: str) -> "ChangeEvent":
        """Decodes a NOTIFY payload; unknown or malformed fields become None."""
        try:
            data = json.loads(payload) if payload else {}
        except json.JSONDecodeError:
            logger.warning("Undecodable change payload: %r", payload[:200])
            data = {}
        if not isinstance(data, dict):
            data = {}
        return cls(
            event=str(data.get("event") or "UNKNOWN"),
            id=_parse_uuid(data.get("id")),
            student_id=_parse_uuid(data.get("student_id")),
            writer_id=_parse_uuid(data.get("writer_id")),
            status=data.get("status"),
        )

    def concerns(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.student_id, self.writer_id)


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]
LostHandler = Callable[[], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe(); unsubscribe() is idempotent."""

    def __init__(self, release: Callable[[], None]):
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        if self._release is not None:
            release, self._release = self._release, None
            release()


class ChangeFeed(ABC):
    """
    Abstract change subscription port.

    Contract:
        - subscribe() either returns a live Subscription or raises
          RealtimeSubscriptionError
        - handlers are awaited outside the feed's own callback, so a slow or
          failing handler never blocks delivery to the others
    """

    @abstractmethod
    async def subscribe(
        self, handler: ChangeHandler, on_lost: Optional[LostHandler] = None
    ) -> Subscription:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    @abstractmethod
    def active_subscriptions(self) -> int:
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...


class PostgresChangeFeed(ChangeFeed):
    """LISTEN/NOTIFY implementation over a single shared asyncpg connection."""

    def __init__(self, dsn: str, channel: str):
        self._dsn = dsn
        self._channel = channel
        self._conn: Optional[asyncpg.Connection] = None
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._handlers: Dict[int, ChangeHandler] = {}
        self._lost_handlers: Dict[int, LostHandler] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_subscriptions(self) -> int:
        return len(self._handlers)

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def subscribe(
        self, handler: ChangeHandler, on_lost: Optional[LostHandler] = None
    ) -> Subscription:
        await self._ensure_listening()

        token = next(self._ids)
        self._handlers[token] = handler
        if on_lost is not None:
            self._lost_handlers[token] = on_lost

        def release() -> None:
            self._handlers.pop(token, None)
            self._lost_handlers.pop(token, None)

        return Subscription(release)

    async def _ensure_listening(self) -> None:
        async with self._lock:
            if self.is_connected:
                return
            conn: Optional[asyncpg.Connection] = None
            try:
                conn = await self._connect()
                await conn.add_listener(self._channel, self._on_notify)
            except Exception as e:
                # Any setup failure, including bad DSN options
                logger.error(
                    "Could not LISTEN on '%s': %s: %s", self._channel, type(e).__name__, str(e)
                )
                if conn is not None and not conn.is_closed():
                    conn.terminate()
                raise RealtimeSubscriptionError(
                    context={"channel": self._channel, "error": str(e)}
                ) from e
            conn.add_termination_listener(self._on_terminated)
            self._conn = conn
            logger.info("Listening for match request changes on '%s'", self._channel)

    @retry(
        retry=retry_if_exception_type((OSError, asyncpg.PostgresError, asyncio.TimeoutError)),
        stop=stop_after_attempt(settings.realtime_connect_attempts),
        wait=wait_exponential_jitter(
            initial=settings.realtime_connect_min_wait,
            max=settings.realtime_connect_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _connect(self) -> asyncpg.Connection:
        return await asyncpg.connect(self._dsn)

    def _on_notify(self, connection, pid: int, channel: str, payload: str) -> None:
        self.dispatch(ChangeEvent.from_payload(payload))

    def dispatch(self, event: ChangeEvent) -> None:
        """Schedules every handler for `event` on the running loop."""
        for handler in list(self._handlers.values()):
            task = asyncio.get_running_loop().create_task(self._run_handler(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error("Change handler failed for %s %s: %s", event.event, event.id, str(e))

    def _on_terminated(self, connection) -> None:
        if connection is not self._conn:
            return
        logger.warning(
            "LISTEN connection on '%s' lost; %d subscribers notified",
            self._channel,
            len(self._lost_handlers),
        )
        self._conn = None
        for on_lost in list(self._lost_handlers.values()):
            on_lost()

    async def close(self) -> None:
        self._handlers.clear()
        self._lost_handlers.clear()
        for task in list(self._tasks):
            task.cancel()
        conn, self._conn = self._conn, None
        if conn is not None and not conn.is_closed():
            try:
                await conn.remove_listener(self._channel, self._on_notify)
            finally:
                await conn.close()
        logger.info("Change feed on '%s' closed", self._channel)


def create_change_feed() -> ChangeFeed:
    return PostgresChangeFeed(dsn=settings.realtime_dsn, channel=settings.realtime_channel)
