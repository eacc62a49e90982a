"""Tests for the shared view-model machinery: coalesced refreshes, stale guards and optimism."""
from __future__ import annotations

import asyncio
import gc

import pytest

from uniconnect.context import AppContext
from uniconnect.errors import NotReadyError
from uniconnect.viewmodels import PostsViewModel, RefreshCoordinator, SequenceGuard


async def test_requests_during_a_pass_fold_into_one_follow_up():
    release = asyncio.Event()
    calls = 0

    async def run() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            await release.wait()

    coordinator = RefreshCoordinator(run)
    first = asyncio.create_task(coordinator.request())
    await asyncio.sleep(0)
    followers = [asyncio.create_task(coordinator.request()) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(first, *followers)

    assert calls == 2
    assert coordinator.passes == 2
    assert not coordinator.running


async def test_failed_pass_is_raised_to_its_waiters():
    async def run() -> None:
        raise RuntimeError("load failed")

    coordinator = RefreshCoordinator(run)

    with pytest.raises(RuntimeError, match="load failed"):
        await coordinator.request()
    assert not coordinator.running


def test_sequence_guard_only_accepts_the_latest_token():
    guard = SequenceGuard()
    older = guard.issue()
    newer = guard.issue()

    assert not guard.is_current(older)
    assert guard.is_current(newer)


async def test_view_models_refuse_to_start_before_context_is_ready(backend):
    context = AppContext(backend)

    with pytest.raises(NotReadyError):
        await PostsViewModel(context).start()
    with pytest.raises(NotReadyError):
        context.store


class GatedFeed(PostsViewModel):
    """Feed whose loads wait on ``gate`` and which counts refresh requests."""

    def __init__(self, context) -> None:
        super().__init__(context, strategy="full")
        self.gate = asyncio.Event()
        self.gate.set()
        self.requests = 0

    async def refresh(self) -> None:
        self.requests += 1
        await super().refresh()

    async def load(self) -> None:
        await self.gate.wait()
        await super().load()


async def _until(predicate) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=5)


async def test_burst_of_changes_coalesces_refreshes(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    feed = await GatedFeed(ada).start()
    passes_after_start = feed.refresh_passes
    requests_after_start = feed.requests

    feed.gate.clear()
    for n in range(6):
        (await grace.store.table("posts").insert({"user_id": grace.user_id, "content": f"post {n}"}).execute()).unwrap()
    await _until(lambda: feed.requests - requests_after_start == 6)
    assert feed.refresh_passes == passes_after_start

    feed.gate.set()
    await ada.bus.wait_idle()

    assert feed.refresh_passes - passes_after_start == 2
    assert len(feed.posts) == 6
    await feed.close()


async def test_failed_pass_with_cancelled_callers_reports_nothing():
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    release = asyncio.Event()

    async def run() -> None:
        await release.wait()
        raise RuntimeError("load failed")

    coordinator = RefreshCoordinator(run)
    try:
        caller = asyncio.create_task(coordinator.request())
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        del caller

        release.set()
        await _until(lambda: not coordinator.running)
        for _ in range(3):
            await asyncio.sleep(0)
        gc.collect()
    finally:
        loop.set_exception_handler(previous)

    assert [context["message"] for context in reported] == []

async def test_optimistic_change_is_reverted_when_write_fails(sign_up):
    ada = await sign_up("ada")
    feed = PostsViewModel(ada)
    state: list[str] = []
    notifications = 0

    def listener() -> None:
        nonlocal notifications
        notifications += 1

    feed.add_listener(listener)

    async def write() -> None:
        raise RuntimeError("offline")

    with pytest.raises(RuntimeError):
        await feed.optimistic(lambda: state.append("liked"), lambda: state.remove("liked"), write)

    assert state == []
    assert notifications == 2


async def test_closed_view_model_ignores_changes(sign_up):
    ada = await sign_up("ada")
    feed = await PostsViewModel(ada).start()
    await feed.close()

    (await ada.store.table("posts").insert({"user_id": ada.user_id, "content": "after close"}).execute()).unwrap()
    await ada.bus.wait_idle()

    assert feed.posts == []
