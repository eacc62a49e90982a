"""Confessions review, verification requests and the audit trail they leave."""
from __future__ import annotations

import pytest

from uniconnect.errors import PermissionDeniedError, ValidationError
from uniconnect.viewmodels import AdminViewModel, AuditLogsViewModel, ConfessionsViewModel, VerificationViewModel
from uniconnect.viewmodels.verification import DUPLICATE_REQUEST_MESSAGE


async def test_confession_is_hidden_until_approved(sign_up):
    ada = await sign_up("ada")
    admin = await sign_up("root", role="admin")
    wall = await ConfessionsViewModel(ada).start()
    queue = await ConfessionsViewModel(admin).start()
    audit = await AuditLogsViewModel(admin).start()

    confession = await wall.submit_confession("I have never finished a problem set on time")
    await ada.bus.wait_idle()

    assert wall.confessions == []
    assert [item.id for item in queue.pending_confessions] == [confession["id"]]
    assert wall.pending_confessions == []

    await queue.approve_confession(confession["id"])
    await ada.bus.wait_idle()

    (public,) = wall.confessions
    assert public.content == "I have never finished a problem set on time"
    assert public.user_id is None
    assert queue.confessions[0].user_id == ada.user_id
    assert queue.pending_confessions == []

    (entry,) = audit.logs
    assert entry.action == "approve_confession"
    assert entry.target_type == "confession"
    assert entry.target_id == confession["id"]
    assert entry.admin_id == admin.user_id
    for view in (wall, queue, audit):
        await view.close()


async def test_confession_length_is_validated(sign_up):
    ada = await sign_up("ada")
    wall = ConfessionsViewModel(ada)

    with pytest.raises(ValidationError):
        await wall.submit_confession("   ")
    with pytest.raises(ValidationError):
        await wall.submit_confession("x" * 1001)


async def test_students_cannot_review_confessions(sign_up):
    ada = await sign_up("ada")
    wall = ConfessionsViewModel(ada)
    confession = await wall.submit_confession("approve myself")

    with pytest.raises(PermissionDeniedError):
        await wall.approve_confession(confession["id"])


async def test_verification_application_is_single_use(sign_up):
    ada = await sign_up("ada")
    verification = await VerificationViewModel(ada).start()

    with pytest.raises(ValidationError):
        await verification.apply_for_verification("  ")

    await verification.apply_for_verification("Class representative", payment_reference="MPESA123")
    assert verification.my_request.status == "pending"
    assert verification.my_request.amount_kshs == 500
    assert verification.my_request.payment_reference == "MPESA123"

    with pytest.raises(ValidationError, match=DUPLICATE_REQUEST_MESSAGE):
        await VerificationViewModel(ada).apply_for_verification("Again")
    await verification.close()


async def test_approving_verification_verifies_profile_notifies_and_audits(sign_up):
    ada = await sign_up("ada", name="Ada Lovelace")
    admin = await sign_up("root", role="admin")
    request = await VerificationViewModel(ada).apply_for_verification("Society president")
    review = await VerificationViewModel(admin).start()

    assert [item.profile.name for item in review.pending_requests] == ["Ada Lovelace"]

    await review.approve_verification(request["id"])
    await admin.bus.wait_idle()

    assert review.pending_requests == []
    assert review.all_requests[0].status == "approved"
    assert review.all_requests[0].reviewed_by == admin.user_id
    profile = await ada.refresh_profile()
    assert profile.is_verified
    (notification,) = (await ada.store.table("notifications").select("*").execute()).unwrap()
    assert notification["title"] == "You're verified!"
    assert notification["type"] == "verification"
    (entry,) = (await admin.store.table("audit_logs").select("*").execute()).unwrap()
    assert entry["action"] == "approve_verification"
    assert entry["target_id"] == ada.user_id
    assert entry["details"] == {"request_id": str(request["id"])}
    await review.close()


async def test_rejecting_verification_records_notes(sign_up):
    ada = await sign_up("ada")
    admin = await sign_up("root", role="admin")
    request = await VerificationViewModel(ada).apply_for_verification("Please")

    await VerificationViewModel(admin).reject_verification(request["id"], notes="Payment not received")

    mine = await VerificationViewModel(ada).start()
    assert mine.my_request.status == "rejected"
    assert mine.my_request.admin_notes == "Payment not received"
    (notification,) = (await ada.store.table("notifications").select("*").execute()).unwrap()
    assert notification["message"] == "Payment not received"
    await mine.close()


async def test_students_cannot_approve_their_own_request(sign_up):
    ada = await sign_up("ada")
    verification = VerificationViewModel(ada)
    request = await verification.apply_for_verification("Trust me")

    with pytest.raises(PermissionDeniedError):
        await verification.approve_verification(request["id"])


async def test_audit_trail_only_reaches_admins_in_realtime(sign_up):
    ada = await sign_up("ada")
    grace = await sign_up("grace")
    admin = await sign_up("root", role="admin")
    student_view = await AuditLogsViewModel(ada, strategy="incremental").start()
    admin_view = await AuditLogsViewModel(admin, strategy="incremental").start()
    dashboard = await AdminViewModel(admin).start()

    await dashboard.suspend_user(grace.user_id)
    await admin.bus.wait_idle()

    assert student_view.logs == []
    assert [(entry.action, entry.target_id) for entry in admin_view.logs] == [("suspend_user", grace.user_id)]
    for view in (student_view, admin_view, dashboard):
        await view.close()
