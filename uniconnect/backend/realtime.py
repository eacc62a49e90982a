"""In-process realtime bus delivering row-level change events to subscribed channels."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Literal

from ..database import utcnow

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE", "DELETE"]
ChangeCallback = Callable[["ChangeEvent"], Awaitable[None] | None]

_EVENT_TYPES = frozenset({"INSERT", "UPDATE", "DELETE", "*"})


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change."""

    table: str
    event_type: EventType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def to_payload(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type,
            "new": self.new or {},
            "old": self.old or {},
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }


@dataclass(frozen=True)
class _Binding:
    event: str
    table: str
    callback: ChangeCallback
    column: str | None = None
    value: str | None = None

    def matches(self, change: ChangeEvent) -> bool:
        if self.event != "*" and self.event != change.event_type:
            return False
        if self.table != "*" and self.table != change.table:
            return False
        if self.column is None:
            return True
        return str(change.record.get(self.column)) == self.value


def parse_filter(expression: str) -> tuple[str, str]:
    """Split ``column=eq.value`` into ``(column, value)``."""

    column, sep, rest = expression.partition("=")
    operator, dot, value = rest.partition(".")
    if not sep or not dot or operator != "eq" or not column.strip():
        raise ValueError(f"Unsupported realtime filter: {expression!r}")
    return column.strip(), value


class RealtimeChannel:
    """A named group of table bindings that is attached to the bus once subscribed."""

    def __init__(self, bus: "RealtimeBus", name: str) -> None:
        self._bus = bus
        self.name = name
        self._bindings: list[_Binding] = []
        self.subscribed = False

    def on(self, event: str, table: str, callback: ChangeCallback, *, filter: str | None = None) -> "RealtimeChannel":
        if event not in _EVENT_TYPES:
            raise ValueError(f"Unknown event type {event!r}")
        column = value = None
        if filter:
            column, value = parse_filter(filter)
        self._bindings.append(_Binding(event=event, table=table, callback=callback, column=column, value=value))
        return self

    def subscribe(self) -> "RealtimeChannel":
        self._bus._attach(self)
        self.subscribed = True
        return self

    def unsubscribe(self) -> None:
        self._bus.remove_channel(self)

    def matching(self, change: ChangeEvent) -> list[ChangeCallback]:
        return [binding.callback for binding in self._bindings if binding.matches(change)]


class RealtimeBus:
    """Fan-out of change events to channel callbacks.

    ``publish`` only schedules deliveries; callbacks run as separate tasks so a
    handler that writes to the store (and publishes in turn) never waits on
    itself. ``wait_idle`` drains every pending delivery, including cascades.
    """

    def __init__(self) -> None:
        self._channels: list[RealtimeChannel] = []
        self._pending: set[asyncio.Task[None]] = set()

    def channel(self, name: str) -> RealtimeChannel:
        return RealtimeChannel(self, name)

    def _attach(self, channel: RealtimeChannel) -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def remove_channel(self, channel: RealtimeChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
        channel.subscribed = False

    def remove_all_channels(self) -> None:
        for channel in list(self._channels):
            self.remove_channel(channel)

    @property
    def channels(self) -> list[RealtimeChannel]:
        return list(self._channels)

    def publish(self, changes: Iterable[ChangeEvent]) -> None:
        loop = asyncio.get_running_loop()
        for change in changes:
            for channel in list(self._channels):
                for callback in channel.matching(change):
                    task = loop.create_task(self._deliver(channel.name, callback, change))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)

    async def _deliver(self, channel_name: str, callback: ChangeCallback, change: ChangeEvent) -> None:
        try:
            result = callback(change)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Realtime callback on channel %s failed for %s %s", channel_name, change.event_type, change.table
            )

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["ChangeEvent", "EventType", "RealtimeBus", "RealtimeChannel", "parse_filter"]
