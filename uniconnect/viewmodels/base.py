"""Shared machinery for view-models: lifecycle, refresh coalescing, stale guards and optimism.

A view-model owns one denormalised read model. ``start`` subscribes to the
realtime tables it depends on and runs the first load; every change event
then either patches the read model in place (incremental strategy) or asks
the :class:`RefreshCoordinator` for another pass.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from enum import StrEnum
from typing import Any, Awaitable, Callable

from ..backend.realtime import ChangeEvent, RealtimeChannel
from ..backend.store import Store
from ..context import AppContext
from ..errors import NotReadyError

logger = logging.getLogger(__name__)


class RefreshStrategy(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


def _new_waiter(loop: asyncio.AbstractEventLoop) -> asyncio.Future[None]:
    waiter = loop.create_future()
    # callers may all be cancelled before a failed pass settles
    waiter.add_done_callback(lambda done: done.cancelled() or done.exception())
    return waiter


class RefreshCoordinator:
    """Runs at most one refresh pass at a time.

    A request made while a pass is running is folded into a single follow-up
    pass; every caller waits for the pass that started after its request.
    """

    def __init__(self, run: Callable[[], Awaitable[None]], *, name: str = "refresh") -> None:
        self._run = run
        self._name = name
        self._current: asyncio.Future[None] | None = None
        self._next: asyncio.Future[None] | None = None
        self._driver: asyncio.Task[None] | None = None
        self.passes = 0

    @property
    def running(self) -> bool:
        return self._current is not None

    async def request(self) -> None:
        loop = asyncio.get_running_loop()
        if self._current is None:
            self._current = _new_waiter(loop)
            waiter = self._current
            self._driver = loop.create_task(self._drive())
        else:
            if self._next is None:
                self._next = _new_waiter(loop)
            else:
                logger.debug("%s: request coalesced into the pending pass", self._name)
            waiter = self._next
        await asyncio.shield(waiter)

    async def _drive(self) -> None:
        while self._current is not None:
            waiter = self._current
            try:
                await self._run()
            except Exception as exc:
                waiter.set_exception(exc)
            else:
                waiter.set_result(None)
            finally:
                self.passes += 1
            self._current, self._next = self._next, None
        self._driver = None


class SequenceGuard:
    """Tags loads with increasing numbers; only the newest issued load may apply its result."""

    def __init__(self) -> None:
        self._issued = 0

    def issue(self) -> int:
        self._issued += 1
        return self._issued

    def is_current(self, token: int) -> bool:
        return token == self._issued


class ViewModel:
    """Base class for the feature view-models."""

    #: tables whose changes trigger a refresh
    tables: tuple[str, ...] = ()

    def __init__(self, context: AppContext, *, strategy: RefreshStrategy | str | None = None) -> None:
        self.context = context
        self.strategy = RefreshStrategy(strategy or context.settings.realtime_strategy)
        self.loading = False
        self.started = False
        self._channels: list[RealtimeChannel] = []
        self._listeners: list[Callable[[], None]] = []
        self._coordinator = RefreshCoordinator(self._refresh_pass, name=type(self).__name__)

    # lifecycle
    async def start(self) -> "ViewModel":
        if not self.context.ready:
            raise NotReadyError(f"{type(self).__name__} cannot start before the application context is ready")
        if not self.started:
            self.started = True
            self.subscribe()
            await self.refresh()
        return self

    async def close(self) -> None:
        for channel in self._channels:
            self.context.bus.remove_channel(channel)
        self._channels.clear()
        self.started = False

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # observers
    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Listener of %s failed", type(self).__name__)

    # store access
    @property
    def store(self) -> Store:
        return self.context.store

    @property
    def user_id(self) -> uuid.UUID | None:
        return self.context.user_id

    # refresh pipeline
    async def refresh(self) -> None:
        await self._coordinator.request()

    @property
    def refresh_passes(self) -> int:
        return self._coordinator.passes

    async def _refresh_pass(self) -> None:
        self.loading = True
        self._changed()
        started = time.perf_counter()
        try:
            await self.load()
        finally:
            self.loading = False
            logger.debug("%s refreshed in %.1fms", type(self).__name__, (time.perf_counter() - started) * 1000)
            self._changed()

    async def load(self) -> None:
        raise NotImplementedError

    # realtime
    def channel(self, suffix: str = "changes") -> RealtimeChannel:
        return self.context.bus.channel(f"{type(self).__name__.lower()}-{suffix}-{id(self):x}")

    def subscribe(self) -> None:
        if not self.tables:
            return
        channel = self.channel()
        for table in self.tables:
            channel.on("*", table, self.handle_change)
        self.track(channel.subscribe())

    def track(self, channel: RealtimeChannel) -> RealtimeChannel:
        self._channels.append(channel)
        return channel

    async def handle_change(self, event: ChangeEvent) -> None:
        if not self.started:
            return
        if self.strategy is RefreshStrategy.INCREMENTAL and self.apply_change(event):
            self._changed()
            return
        await self.refresh()

    def apply_change(self, event: ChangeEvent) -> bool:
        """Patch the read model for ``event``; return False to fall back to a full refresh."""

        return False

    # mutations
    async def optimistic(
        self,
        apply: Callable[[], None],
        revert: Callable[[], None],
        write: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Apply a local change, write it through and undo the local change if the write fails."""

        apply()
        self._changed()
        try:
            return await write()
        except Exception:
            revert()
            self._changed()
            raise


__all__ = ["RefreshCoordinator", "RefreshStrategy", "SequenceGuard", "ViewModel"]
