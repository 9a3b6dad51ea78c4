"""
Keeps connected list and detail views in step with the database.

Two independent sources trigger a reload:
- the change feed (Postgres LISTEN/NOTIFY), debounced so a burst of row
  changes costs one reload
- a fixed-interval poller, which also covers a broken push channel

They are not coordinated; a change may be reloaded twice.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import asyncpg

from claims_portal.core.config import settings
from claims_portal.core.exceptions import PortalError

logger = logging.getLogger(__name__)

Reload = Callable[[], Awaitable[None]]
ChangeHandler = Callable[[Dict[str, Any]], None]


async def run_reload(reload: Reload, name: str = "view") -> None:
    """Run one reload; failures are logged and the next trigger tries again."""
    try:
        await reload()
    except PortalError as e:
        logger.error(f"Reload of {name} failed: {e.message}")
    except asyncpg.PostgresError as e:
        logger.error(f"Reload of {name} failed: {e}")
    except Exception as e:
        logger.error(f"Reload of {name} failed: {e}", exc_info=True)


class ReloadScheduler:
    """Coalesces bursts of triggers into one reload after a quiet window."""

    def __init__(self, reload: Reload, delay: float = settings.sync_debounce_seconds, name: str = "view"):
        self.reload = reload
        self.delay = delay
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._running: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """Re-arm the timer; a reload already in flight is left alone."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.create_task(run_reload(self.reload, self.name))
        self._running.add(task)
        task.add_done_callback(self._running.discard)


class Poller:
    """Reloads a view every ``interval`` seconds until stopped."""

    def __init__(self, reload: Reload, interval: float = settings.sync_poll_interval_seconds, name: str = "view"):
        self.reload = reload
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling, replacing any loop already running."""
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await run_reload(self.reload, self.name)


@dataclass(eq=False)
class Subscription:
    """One view's interest in changes to a table."""

    table: str
    on_change: ChangeHandler
    on_error: Optional[Callable[[], None]] = None
    claim_id: Optional[str] = None
    feed: Optional["ChangeFeed"] = field(default=None, repr=False)

    def matches(self, event: Dict[str, Any]) -> bool:
        if event.get("table") != self.table:
            return False
        if self.claim_id is None:
            return True
        for key in ("record", "old_record"):
            row = event.get(key) or {}
            if str(row.get("claim_id")) == self.claim_id:
                return True
        return False

    def unsubscribe(self) -> None:
        if self.feed is not None:
            self.feed.unsubscribe(self)
            self.feed = None


class ChangeFeed:
    """
    Row change notifications from Postgres.

    One asyncpg connection listens on a channel per table. Trigger payloads
    are JSON objects with ``table``, ``type``, ``record`` and ``old_record``.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        channels: Optional[Dict[str, str]] = None,
    ):
        self.dsn = dsn or settings.database_url
        self.channels = channels or {
            "claims": settings.claims_channel,
            "documents": settings.documents_channel,
        }
        self._connection: Optional[asyncpg.Connection] = None
        self._subscriptions: List[Subscription] = []

    @property
    def available(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    async def start(self) -> bool:
        """
        Connect and listen on every channel.

        Returns:
            True when listening; False when the channel is unavailable, in
            which case subscribers fall back to polling
        """
        try:
            connection = await asyncpg.connect(self.dsn)
            for channel in self.channels.values():
                await connection.add_listener(channel, self._on_notify)
            connection.add_termination_listener(self._on_terminated)
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning(f"Change feed unavailable, views will poll: {e}")
            self._channel_error()
            return False

        self._connection = connection
        logger.info(f"Listening for changes on {sorted(self.channels.values())}")
        return True

    async def stop(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None or connection.is_closed():
            return
        try:
            for channel in self.channels.values():
                await connection.remove_listener(channel, self._on_notify)
            await connection.close()
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning(f"Change feed teardown failed: {e}")

    def subscribe(
        self,
        table: str,
        on_change: ChangeHandler,
        on_error: Optional[Callable[[], None]] = None,
        claim_id: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(table, on_change, on_error, claim_id, feed=self)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: Dict[str, Any]) -> int:
        """Deliver an event to matching subscribers; returns how many matched."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.on_change(event)
                delivered += 1
        return delivered

    def _on_notify(self, connection, pid: int, channel: str, payload: str) -> None:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed payload on {channel}")
            return
        if not isinstance(event, dict):
            return
        event.setdefault("table", next((t for t, c in self.channels.items() if c == channel), channel))
        logger.debug(f"{event.get('type')} on {event['table']}")
        self.publish(event)

    def _on_terminated(self, connection) -> None:
        logger.warning("Change feed connection closed")
        self._connection = None
        self._channel_error()

    def _channel_error(self) -> None:
        for subscription in list(self._subscriptions):
            if subscription.on_error is not None:
                subscription.on_error()


class ViewSync:
    """
    Push and poll synchronisation for one view.

    ``start`` subscribes to the tables the view shows and starts polling;
    ``stop`` tears both down. A channel error restarts the poller.
    """

    def __init__(
        self,
        reload: Reload,
        feed: Optional[ChangeFeed] = None,
        tables: Sequence[str] = ("claims", "documents"),
        claim_id: Optional[str] = None,
        debounce: float = settings.sync_debounce_seconds,
        interval: float = settings.sync_poll_interval_seconds,
        name: str = "view",
    ):
        self.feed = feed
        self.tables = tuple(tables)
        self.claim_id = claim_id
        self.name = name
        self.scheduler = ReloadScheduler(reload, delay=debounce, name=name)
        self.poller = Poller(reload, interval=interval, name=name)
        self._subscriptions: List[Subscription] = []

    @property
    def active(self) -> bool:
        return self.poller.running or bool(self._subscriptions)

    def start(self) -> None:
        self.stop()
        if self.feed is not None:
            for table in self.tables:
                # Documents are scoped to the claim on detail views
                claim_id = self.claim_id if table == "documents" else None
                self._subscriptions.append(
                    self.feed.subscribe(table, self._on_change, self._on_error, claim_id=claim_id)
                )
        self.poller.start()
        logger.debug(f"Sync started for {self.name}")

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self.scheduler.cancel()
        self.poller.stop()

    def _on_change(self, event: Dict[str, Any]) -> None:
        if self.claim_id and event.get("table") == "claims":
            record = event.get("record") or event.get("old_record") or {}
            if str(record.get("id")) != self.claim_id:
                return
        self.scheduler.trigger()

    def _on_error(self) -> None:
        logger.warning(f"Realtime channel error for {self.name}, polling")
        self.poller.start()
