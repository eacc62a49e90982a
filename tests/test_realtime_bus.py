"""Tests for channel bindings, filters and delivery on the realtime bus."""
from __future__ import annotations

import logging

import pytest

from uniconnect.backend.realtime import ChangeEvent, RealtimeBus, parse_filter


def _insert(table: str, **record) -> ChangeEvent:
    return ChangeEvent(table=table, event_type="INSERT", new=record)


def test_parse_filter_accepts_only_equality():
    assert parse_filter("user_id=eq.42") == ("user_id", "42")
    with pytest.raises(ValueError):
        parse_filter("user_id=gt.42")
    with pytest.raises(ValueError):
        parse_filter("user_id")


async def test_bindings_match_event_table_and_filter():
    bus = RealtimeBus()
    seen: list[str] = []
    channel = bus.channel("mine")
    channel.on("INSERT", "notifications", lambda change: seen.append("filtered"), filter="user_id=eq.a")
    channel.on("*", "*", lambda change: seen.append("wildcard"))
    channel.subscribe()

    bus.publish([_insert("notifications", user_id="a"), _insert("notifications", user_id="b")])
    bus.publish([ChangeEvent(table="posts", event_type="DELETE", old={"id": 1})])
    await bus.wait_idle()

    assert seen.count("filtered") == 1
    assert seen.count("wildcard") == 3


async def test_unsubscribed_channels_receive_nothing():
    bus = RealtimeBus()
    seen: list[ChangeEvent] = []
    channel = bus.channel("gone").on("*", "posts", seen.append)

    bus.publish([_insert("posts", id=1)])
    channel.subscribe()
    channel.unsubscribe()
    bus.publish([_insert("posts", id=2)])
    await bus.wait_idle()

    assert seen == []
    assert bus.channels == []


async def test_failing_callback_is_logged_and_does_not_block_others(caplog):
    bus = RealtimeBus()
    seen: list[ChangeEvent] = []

    async def broken(change: ChangeEvent) -> None:
        raise RuntimeError("boom")

    bus.channel("broken").on("*", "posts", broken).subscribe()
    bus.channel("healthy").on("*", "posts", seen.append).subscribe()

    with caplog.at_level(logging.ERROR, logger="uniconnect.backend.realtime"):
        bus.publish([_insert("posts", id=1)])
        await bus.wait_idle()

    assert len(seen) == 1
    assert "Realtime callback on channel broken failed" in caplog.text


async def test_wait_idle_drains_cascading_deliveries():
    bus = RealtimeBus()
    seen: list[str] = []

    async def relay(change: ChangeEvent) -> None:
        bus.publish([_insert("notifications", id=change.record["id"])])

    bus.channel("relay").on("INSERT", "likes", relay).subscribe()
    bus.channel("sink").on("INSERT", "notifications", lambda change: seen.append(change.table)).subscribe()

    bus.publish([_insert("likes", id=7)])
    await bus.wait_idle()

    assert seen == ["notifications"]


def test_payload_shape():
    payload = ChangeEvent(table="posts", event_type="DELETE", old={"id": "1"}).to_payload()

    assert payload["table"] == "posts"
    assert payload["eventType"] == "DELETE"
    assert payload["new"] == {}
    assert payload["old"] == {"id": "1"}
    assert "commit_timestamp" in payload
