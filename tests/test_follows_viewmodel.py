"""Follow graph: follow/unfollow, realtime follower lists, notifications and stats."""
from __future__ import annotations

import pytest

from uniconnect.errors import ValidationError
from uniconnect.viewmodels import FollowsViewModel


async def test_follow_updates_both_sides_and_notifies(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace", name="Grace Hopper")
    ada_graph = await FollowsViewModel(ada).start()
    grace_graph = await FollowsViewModel(grace).start()

    await grace_graph.follow_user(ada.user_id)
    await ada.bus.wait_idle()

    assert grace_graph.is_following(ada.user_id)
    assert grace_graph.following_count == 1
    assert ada_graph.is_follower(grace.user_id)
    assert [profile.name for profile in ada_graph.followers] == ["Grace Hopper"]

    (notification,) = (await ada.store.table("notifications").select("*").execute()).unwrap()
    assert notification["type"] == "follow"
    assert notification["title"] == "Grace Hopper started following you"
    assert notification["message"] == "Check out their profile!"
    assert notification["related_id"] == grace.user_id
    await ada_graph.close()
    await grace_graph.close()


async def test_following_twice_is_a_no_op(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    graph = FollowsViewModel(grace)

    await graph.follow_user(ada.user_id)
    await graph.follow_user(ada.user_id)

    rows = (await grace.store.table("follows").select("id").eq("follower_id", grace.user_id).execute()).unwrap()
    notifications = (await ada.store.table("notifications").select("id").execute()).unwrap()
    assert len(rows) == 1
    assert len(notifications) == 1


async def test_cannot_follow_yourself(sign_up):
    ada = await sign_up("ada")

    with pytest.raises(ValidationError):
        await FollowsViewModel(ada).follow_user(ada.user_id)


async def test_unfollow_and_stats(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    alan = await sign_up("alan")
    await FollowsViewModel(grace).follow_user(ada.user_id)
    await FollowsViewModel(alan).follow_user(ada.user_id)
    await FollowsViewModel(ada).follow_user(alan.user_id)
    graph = await FollowsViewModel(grace).start()

    stats = await graph.fetch_stats(ada.user_id)
    assert stats.followers_count == 2
    assert stats.following_count == 1

    await graph.unfollow_user(ada.user_id)
    await grace.bus.wait_idle()

    assert not graph.is_following(ada.user_id)
    assert (await graph.fetch_stats(ada.user_id)).followers_count == 1
    follow_notifications = (await ada.store.table("notifications").select("id").eq("type", "follow").execute()).unwrap()
    assert len(follow_notifications) == 2
    await graph.close()


async def test_incremental_strategy_ignores_unrelated_follows(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    alan = await sign_up("alan")
    graph = await FollowsViewModel(ada, strategy="incremental").start()
    passes = graph.refresh_passes

    await FollowsViewModel(grace).follow_user(alan.user_id)
    await ada.bus.wait_idle()

    assert graph.refresh_passes == passes
    assert graph.followers_count == 0
    await graph.close()
