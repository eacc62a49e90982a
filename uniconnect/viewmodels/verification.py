"""Verification view-model: the viewer's own request and the admin review list."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from ..backend.store import UNIQUE_VIOLATION
from ..database import utcnow
from ..errors import NotFoundError, ValidationError
from ..schemas.moderation import VerificationRequestRead
from ..schemas.notifications import NotificationType
from ..schemas.profiles import ProfileRead
from .audit_logs import record_audit
from .base import ViewModel
from .notifications import create_notification

logger = logging.getLogger(__name__)

DUPLICATE_REQUEST_MESSAGE = "You have already applied for verification"


class VerificationViewModel(ViewModel):
    tables = ("verification_requests",)

    def __init__(self, context, **kwargs) -> None:
        super().__init__(context, **kwargs)
        self.my_request: VerificationRequestRead | None = None
        self.all_requests: list[VerificationRequestRead] = []

    @property
    def pending_requests(self) -> list[VerificationRequestRead]:
        return [request for request in self.all_requests if request.status == "pending"]

    async def load(self) -> None:
        user_id = self.context.require_user()
        store = self.store
        mine = store.table("verification_requests").select("*").eq("user_id", user_id).maybe_single()
        if not self.context.is_admin:
            row = (await mine.execute()).unwrap()
            self.my_request = VerificationRequestRead.model_validate(row) if row else None
            self.all_requests = []
            return

        mine_response, all_response = await asyncio.gather(
            mine.execute(),
            store.table("verification_requests").select("*").order("created_at", desc=True).execute(),
        )
        row = mine_response.unwrap()
        self.my_request = VerificationRequestRead.model_validate(row) if row else None
        rows = all_response.unwrap()
        profiles = (
            await store.table("profiles").select("*").in_("user_id", list({r["user_id"] for r in rows})).execute()
        ).unwrap()
        by_user = {profile["user_id"]: ProfileRead.model_validate(profile) for profile in profiles}
        self.all_requests = [
            VerificationRequestRead.model_validate({**r, "profile": by_user.get(r["user_id"])}) for r in rows
        ]

    async def apply_for_verification(self, reason: str, payment_reference: str | None = None) -> dict[str, Any]:
        user_id = self.context.require_user()
        text = (reason or "").strip()
        if not text:
            raise ValidationError("Tell us why you should be verified")
        if self.my_request is not None:
            raise ValidationError(DUPLICATE_REQUEST_MESSAGE)

        response = await self.store.table("verification_requests").insert(
            {
                "user_id": user_id,
                "reason": text,
                "payment_reference": (payment_reference or "").strip() or None,
                "amount_kshs": self.context.settings.verification_fee_kshs,
            }
        ).single().execute()
        if response.error is not None and response.error.code == UNIQUE_VIOLATION:
            raise ValidationError(DUPLICATE_REQUEST_MESSAGE)
        row = response.unwrap()
        self.my_request = VerificationRequestRead.model_validate(row)
        self._changed()
        return row

    async def _request(self, request_id: uuid.UUID) -> dict[str, Any]:
        row = (
            await self.store.table("verification_requests").select("*").eq("id", request_id).maybe_single().execute()
        ).unwrap()
        if row is None:
            raise NotFoundError(f"Verification request {request_id} not found")
        return row

    async def approve_verification(self, request_id: uuid.UUID) -> None:
        """Approve a request, verify the applicant's profile, audit it and notify the applicant."""

        admin_id = self.context.require_user()
        request = await self._request(request_id)
        applicant = request["user_id"]
        store = self.store

        (
            await store.table("verification_requests")
            .update({"status": "approved", "reviewed_at": utcnow(), "reviewed_by": admin_id})
            .eq("id", request_id)
            .execute()
        ).unwrap()
        (await store.table("profiles").update({"is_verified": True}).eq("user_id", applicant).execute()).unwrap()
        await record_audit(
            store,
            admin_id=admin_id,
            action="approve_verification",
            target_id=applicant,
            target_type="user",
            details={"request_id": str(request_id)},
        )
        await create_notification(
            store,
            user_id=applicant,
            type=NotificationType.VERIFICATION,
            title="You're verified!",
            message="Your verification request has been approved.",
            related_id=request_id,
        )

    async def reject_verification(self, request_id: uuid.UUID, notes: str | None = None) -> None:
        admin_id = self.context.require_user()
        request = await self._request(request_id)
        applicant = request["user_id"]
        store = self.store
        notes = (notes or "").strip() or None

        (
            await store.table("verification_requests")
            .update({"status": "rejected", "admin_notes": notes, "reviewed_at": utcnow(), "reviewed_by": admin_id})
            .eq("id", request_id)
            .execute()
        ).unwrap()
        await record_audit(
            store,
            admin_id=admin_id,
            action="reject_verification",
            target_id=applicant,
            target_type="user",
            details={"request_id": str(request_id), "notes": notes},
        )
        await create_notification(
            store,
            user_id=applicant,
            type=NotificationType.VERIFICATION,
            title="Verification request declined",
            message=notes or "Your verification request was not approved.",
            related_id=request_id,
        )


__all__ = ["VerificationViewModel"]
