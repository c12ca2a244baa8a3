"""
ScribeConnect Backend: Realtime Notification Bridge
====================================================

What:  Keeps one client's notification list fresh.
How:   Subscribes to the ChangeFeed; on every change it waits a short settle
       delay (so the triggering transaction is visible to a new session),
       re-runs the enrichment fetch, and hands the list to the on_change
       callback. If the subscription cannot be set up, or the LISTEN
       connection drops later, it switches to polling the same fetch.
Who:   The /ws/notifications endpoint, through BridgeRegistry.

Lifecycle:
    subscribe(session, on_change)
        ├── tear down any previous subscription of this bridge
        ├── feed.subscribe()  ──fails──▶ realtime_enabled = False, start polling
        └── initial fetch, always delivered
    change event ──▶ sleep(settle_delay) ──▶ fetch ──▶ on_change(list)
    poll tick    ──▶ fetch ──▶ on_change(list)
    unsubscribe()
        └── cancel pending refreshes and the poll task, release the feed
            subscription; nothing is delivered afterwards

A failed fetch is logged and skipped; the next event or tick corrects it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scribeconnect.database import async_session_factory
from scribeconnect.exceptions import RealtimeSubscriptionError
from scribeconnect.schemas.match_request import EnrichedMatchRequest
from scribeconnect.services.change_feed import ChangeEvent, ChangeFeed, Subscription
from scribeconnect.services.notification_service import notification_service
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)

Fetcher = Callable[[UserSession], Awaitable[List[EnrichedMatchRequest]]]
OnChange = Callable[[List[EnrichedMatchRequest]], Awaitable[None]]


def database_fetcher(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> Fetcher:
    """Fetcher that opens a short-lived database session per refresh."""

    async def fetch(session: UserSession) -> List[EnrichedMatchRequest]:
        async with session_factory() as db:
            return await notification_service.fetch_for_session(db, session)

    return fetch


class RealtimeNotificationBridge:
    def __init__(
        self,
        feed: ChangeFeed,
        fetcher: Fetcher,
        settle_delay: float = 0.1,
        poll_interval: float = 30.0,
    ):
        self._feed = feed
        self._fetcher = fetcher
        self._settle_delay = settle_delay
        self._poll_interval = poll_interval

        self.realtime_enabled = False
        self._session: Optional[UserSession] = None
        self._on_change: Optional[OnChange] = None
        self._subscription: Optional[Subscription] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._refresh_tasks: Set[asyncio.Task] = set()
        self._closed = True

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def subscribe(self, session: UserSession, on_change: OnChange) -> None:
        """Starts delivering `session`'s notifications to `on_change`."""
        await self.unsubscribe()

        self._closed = False
        self._session = session
        self._on_change = on_change

        try:
            self._subscription = await self._feed.subscribe(
                self._handle_event, on_lost=self._fall_back_to_polling
            )
            self.realtime_enabled = True
            logger.debug("Realtime subscription active for %s", session.user_id)
        except RealtimeSubscriptionError as e:
            logger.warning(
                "Realtime unavailable for %s, polling every %.0fs: %s",
                session.user_id,
                self._poll_interval,
                e.message,
            )
            self._fall_back_to_polling()
        except Exception as e:
            logger.error(
                "Realtime setup failed for %s, polling every %.0fs: %s: %s",
                session.user_id,
                self._poll_interval,
                type(e).__name__,
                str(e),
            )
            self._fall_back_to_polling()

        await self._refresh()

    async def _handle_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self._settle_then_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _settle_then_refresh(self) -> None:
        await asyncio.sleep(self._settle_delay)
        await self._refresh()

    async def _refresh(self) -> None:
        if self._closed or self._session is None or self._on_change is None:
            return
        try:
            notifications = await self._fetcher(self._session)
        except Exception as e:
            logger.warning("Notification refresh failed for %s: %s", self._session.user_id, str(e))
            return
        if self._closed:
            return
        try:
            await self._on_change(notifications)
        except Exception as e:
            logger.warning("Notification delivery failed for %s: %s", self._session.user_id, str(e))

    def _fall_back_to_polling(self) -> None:
        self.realtime_enabled = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._closed or self.is_polling:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._poll_interval)
            await self._refresh()

    async def unsubscribe(self) -> None:
        """Releases the subscription; no further on_change calls after this returns."""
        self._closed = True
        self.realtime_enabled = False

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        current = asyncio.current_task()
        pending = [t for t in self._refresh_tasks if t is not current]
        if self._poll_task is not None and self._poll_task is not current:
            pending.append(self._poll_task)
        self._poll_task = None

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._refresh_tasks.clear()


class BridgeRegistry:
    """
    One active bridge per audit session id.

    Opening a bridge for a session id that already has one (a reconnecting
    tab) closes the old bridge first.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        fetcher: Fetcher,
        settle_delay: float = 0.1,
        poll_interval: float = 30.0,
    ):
        self._feed = feed
        self._fetcher = fetcher
        self._settle_delay = settle_delay
        self._poll_interval = poll_interval
        self._bridges: Dict[str, RealtimeNotificationBridge] = {}

    def __len__(self) -> int:
        return len(self._bridges)

    def get(self, session_id: str) -> Optional[RealtimeNotificationBridge]:
        return self._bridges.get(session_id)

    async def open(
        self, session: UserSession, on_change: OnChange
    ) -> RealtimeNotificationBridge:
        previous = self._bridges.pop(session.session_id, None)
        if previous is not None:
            logger.info("Replacing realtime bridge for session %s", session.session_id)
            await previous.unsubscribe()

        bridge = RealtimeNotificationBridge(
            self._feed,
            self._fetcher,
            settle_delay=self._settle_delay,
            poll_interval=self._poll_interval,
        )
        self._bridges[session.session_id] = bridge
        await bridge.subscribe(session, on_change)
        return bridge

    async def close(self, session_id: str, bridge: RealtimeNotificationBridge) -> None:
        """Closes `bridge`; the registry entry is dropped only if it still points to it."""
        if self._bridges.get(session_id) is bridge:
            del self._bridges[session_id]
        await bridge.unsubscribe()

    async def close_all(self) -> None:
        bridges = list(self._bridges.values())
        self._bridges.clear()
        for bridge in bridges:
            await bridge.unsubscribe()
        if bridges:
            logger.info("Closed %d realtime bridges", len(bridges))
