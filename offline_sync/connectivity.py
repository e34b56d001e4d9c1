"""
Connectivity monitoring.

Tracks whether the remote store is reachable and notifies subscribers once
per online/offline transition. Hosts with a native network-change signal
feed it through ``set_online``; otherwise ``start()`` polls a DNS probe and
retries the drain on every poll while online.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .engine import DrainResult

logger = logging.getLogger(__name__)


class ConnectivityEventType(str, Enum):
    """Direction of a connectivity transition."""

    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class ConnectivityEvent:
    """A connectivity transition delivered to subscribers.

    ``sync_result`` is set on online transitions once the automatic drain
    has finished.
    """

    event_type: ConnectivityEventType
    message: str
    sync_result: DrainResult | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


ConnectivityCallback = Callable[[ConnectivityEvent], Awaitable[None] | None]
DrainCallable = Callable[[], Awaitable[DrainResult]]
ProbeCallable = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Online/offline state with transition notifications.

    Example:
        >>> monitor = ConnectivityMonitor(online=False)
        >>> monitor.bind_drain(engine.drain)
        >>> unsubscribe = monitor.subscribe(lambda event: print(event.event_type))
        >>> await monitor.set_online(True)  # drains, then notifies
    """

    def __init__(
        self,
        online: bool = True,
        poll_interval_s: float = 30.0,
        probe_host: str = "dns.google",
        probe_timeout_s: float = 5.0,
        probe: ProbeCallable | None = None,
    ) -> None:
        """Initialize the connectivity monitor.

        Args:
            online: Initial connectivity state
            poll_interval_s: Seconds between polls when polling is started
            probe_host: Host resolved by the default probe
            probe_timeout_s: Timeout of the default probe
            probe: Custom reachability check replacing the DNS probe
        """
        self._online = online
        self.poll_interval_s = poll_interval_s
        self.probe_host = probe_host
        self.probe_timeout_s = probe_timeout_s
        self._probe = probe or self._dns_probe

        self._subscribers: list[ConnectivityCallback] = []
        self._drain: DrainCallable | None = None
        self._poll_task: asyncio.Task[None] | None = None

    def is_offline(self) -> bool:
        """Point-in-time connectivity check."""
        return not self._online

    def bind_drain(self, drain: DrainCallable | None) -> None:
        """Set the drain invoked automatically on online transitions."""
        self._drain = drain

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a transition callback (sync or async).

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def set_online(self, online: bool) -> ConnectivityEvent | None:
        """Apply a connectivity signal.

        Returns:
            The emitted event, or None if the signal was not a transition
        """
        if online == self._online:
            return None
        self._online = online

        if online:
            logger.info("Connection restored")
            sync_result = await self._run_drain()
            event = ConnectivityEvent(
                event_type=ConnectivityEventType.ONLINE,
                message="Connection restored",
                sync_result=sync_result,
            )
        else:
            logger.info("Connection lost, switching to offline mode")
            event = ConnectivityEvent(
                event_type=ConnectivityEventType.OFFLINE,
                message="Connection lost, switching to offline mode",
            )

        await self._emit(event)
        return event

    async def check_connectivity(self) -> bool:
        """Probe reachability without changing state."""
        try:
            return await self._probe()
        except (OSError, asyncio.TimeoutError):
            return False

    async def poll_once(self) -> ConnectivityEvent | None:
        """Probe, apply the result, and retry the drain if still online."""
        online = await self.check_connectivity()
        event = await self.set_online(online)
        if online and event is None:
            await self._run_drain()
        return event

    def start(self) -> None:
        """Start polling in the background."""
        if self._poll_task is not None:
            return

        async def poll_loop() -> None:
            while True:
                try:
                    await self.poll_once()
                    await asyncio.sleep(self.poll_interval_s)
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Connectivity poll failed")
                    await asyncio.sleep(self.poll_interval_s)

        self._poll_task = asyncio.create_task(poll_loop())
        logger.debug(f"Connectivity polling started every {self.poll_interval_s}s")

    async def stop(self) -> None:
        """Stop background polling."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None

    async def _dns_probe(self) -> bool:
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(
            loop.getaddrinfo(self.probe_host, 443, type=socket.SOCK_STREAM),
            timeout=self.probe_timeout_s,
        )
        return True

    async def _run_drain(self) -> DrainResult | None:
        if self._drain is None:
            return None
        try:
            return await self._drain()
        except Exception as e:
            logger.exception("Automatic drain failed")
            return DrainResult(success=False, reason="error", errors=[str(e)])

    async def _emit(self, event: ConnectivityEvent) -> None:
        for callback in list(self._subscribers):
            try:
                outcome = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Connectivity subscriber failed on {event.event_type.value}")
