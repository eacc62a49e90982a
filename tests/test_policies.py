"""Row-level access rules enforced for signed-in (non-service) store calls."""
from __future__ import annotations

import pytest

from uniconnect.backend.store import PERMISSION_DENIED
from uniconnect.errors import PermissionDeniedError


async def test_posts_must_belong_to_the_author(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")

    response = await ada.store.table("posts").insert({"user_id": grace.user_id, "content": "impersonation"}).execute()

    assert response.error is not None
    assert response.error.code == PERMISSION_DENIED


async def test_only_the_owner_or_a_moderator_can_delete_a_post(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    moderator = await sign_up("mod", role="moderator")
    post = (await ada.store.table("posts").insert({"user_id": ada.user_id, "content": "hi"}).single().execute()).unwrap()

    with pytest.raises(PermissionDeniedError):
        (await grace.store.table("posts").delete().eq("id", post["id"]).execute()).unwrap()

    deleted = (await moderator.store.table("posts").delete().eq("id", post["id"]).execute()).unwrap()
    assert [row["id"] for row in deleted] == [post["id"]]


async def test_students_cannot_grant_themselves_verification(sign_up):
    ada = await sign_up("ada")

    response = await ada.store.table("profiles").update({"is_verified": True}).eq("user_id", ada.user_id).execute()

    assert response.error.code == PERMISSION_DENIED
    assert "is_verified" in response.error.message


async def test_suspended_users_cannot_create_content(sign_up):
    ada = await sign_up("ada")
    admin = await sign_up("root", role="admin")
    (await admin.store.table("profiles").update({"is_suspended": True}).eq("user_id", ada.user_id).execute()).unwrap()

    response = await ada.store.table("posts").insert({"user_id": ada.user_id, "content": "still here"}).execute()

    assert response.error.code == PERMISSION_DENIED


async def test_notifications_are_private_to_their_recipient(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    (
        await grace.store.table("notifications")
        .insert({"user_id": ada.user_id, "type": "follow", "title": "Grace started following you", "message": "hi"})
        .execute()
    ).unwrap()

    mine = (await ada.store.table("notifications").select("*").execute()).unwrap()
    theirs = (await grace.store.table("notifications").select("*").execute()).unwrap()

    assert len(mine) == 1
    assert theirs == []


async def test_broadcast_notifications_require_an_admin(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")

    response = await ada.store.table("notifications").insert(
        {"user_id": grace.user_id, "type": "broadcast", "title": "Exams", "message": "Good luck"}
    ).execute()

    assert response.error.code == PERMISSION_DENIED


async def test_audit_log_is_only_readable_by_admins(sign_up):
    ada = await sign_up("ada")
    admin = await sign_up("root", role="admin")
    (
        await admin.store.table("audit_logs")
        .insert({"admin_id": admin.user_id, "action": "broadcast", "target_type": "notification"})
        .execute()
    ).unwrap()

    assert (await ada.store.table("audit_logs").select("*").execute()).unwrap() == []
    assert len((await admin.store.table("audit_logs").select("*").execute()).unwrap()) == 1


async def test_messages_are_hidden_from_non_participants(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    eve = await sign_up("eve")
    conversation = (await ada.store.table("conversations").insert({"is_group": True, "group_name": "Lab"}).single().execute()).unwrap()
    (
        await ada.store.table("conversation_participants")
        .insert([
            {"conversation_id": conversation["id"], "user_id": ada.user_id},
            {"conversation_id": conversation["id"], "user_id": grace.user_id},
        ])
        .execute()
    ).unwrap()
    (
        await ada.store.table("messages")
        .insert({"conversation_id": conversation["id"], "sender_id": ada.user_id, "content": "secret"})
        .execute()
    ).unwrap()

    assert len((await grace.store.table("messages").select("*").execute()).unwrap()) == 1
    assert (await eve.store.table("messages").select("*").execute()).unwrap() == []

    intrusion = await eve.store.table("messages").insert(
        {"conversation_id": conversation["id"], "sender_id": eve.user_id, "content": "let me in"}
    ).execute()
    assert intrusion.error.code == PERMISSION_DENIED


async def test_auth_users_are_never_exposed_to_clients(sign_up):
    ada = await sign_up("ada")

    assert (await ada.store.table("auth_users").select("*").execute()).unwrap() == []
