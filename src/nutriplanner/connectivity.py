"""Network reachability checks with change notifications.

One underlying check is shared by every caller; listeners subscribe with
``on_change`` and receive each state flip synchronously, in subscription
order, before the triggering call returns.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URLS: tuple[str, ...] = (
    "https://www.google.com",
    "https://www.cloudflare.com",
    "https://httpbin.org/get",
)


@runtime_checkable
class ConnectivityProbe(Protocol):
    """Point-in-time reachability plus change subscription."""

    async def is_online(self) -> bool:
        """Return current reachability. Never raises."""
        ...

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register *callback*; return a function that unsubscribes it."""
        ...


class _ListenerSet:
    """Ordered listener registry shared by the probe implementations."""

    def __init__(self, logger: logging.Logger) -> None:
        self._listeners: list[Callable[[bool], None]] = []
        self._logger = logger

    def add(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify(self, online: bool) -> None:
        # Snapshot so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                self._logger.exception("Connectivity listener raised")

    def __len__(self) -> int:
        return len(self._listeners)


class ConnectivityMonitor:
    """Probe backed by one async reachability check.

    A check that raises is treated as offline (fail-closed).
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        *,
        logger: logging.Logger = logger,
    ) -> None:
        self._check = check
        self._logger = logger
        self._listeners = _ListenerSet(logger)
        self._last: bool | None = None

    @property
    def last_known(self) -> bool | None:
        """State observed by the most recent check, or None before the first."""
        return self._last

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def is_online(self) -> bool:
        try:
            online = bool(await self._check())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.debug("Connectivity check failed, assuming offline: %s", exc)
            online = False

        previous = self._last
        self._last = online
        if previous is not None and previous != online:
            self._logger.info("Connectivity changed: %s", "online" if online else "offline")
            self._listeners.notify(online)
        return online

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._listeners.add(callback)


class StaticConnectivity:
    """Probe whose state is set explicitly.

    Used when connectivity checks are disabled, and as a test double.
    """

    def __init__(self, online: bool = True, *, logger: logging.Logger = logger) -> None:
        self._online = online
        self._listeners = _ListenerSet(logger)

    async def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        self._listeners.notify(online)

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._listeners.add(callback)


async def http_reachability_check(
    urls: Sequence[str] = DEFAULT_PROBE_URLS,
    *,
    timeout_s: float = 5.0,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Return True as soon as one of *urls* answers a HEAD request.

    Transport failures move on to the next URL; all failing means offline.
    """
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)
    try:
        for url in urls:
            try:
                response = await http.head(url, timeout=timeout_s)
            except httpx.HTTPError:
                continue
            if response.status_code < 400:
                return True
        return False
    finally:
        if owns_client:
            await http.aclose()
