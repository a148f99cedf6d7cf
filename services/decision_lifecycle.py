from __future__ import annotations

import secrets
import string
import time
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Union

import structlog
from pydantic.alias_generators import to_camel

from schemas.underwriting import APPROVAL_FIELDS, ApprovalEntry, ApprovalInput, to_iso_utc, to_plain_date
from services.approval_reconciler import primary_approval, reconcile_approvals
from services.decision_store import DecisionStoreClient
from services.errors import DecisionNotFoundError, DecisionValidationError

logger = structlog.get_logger()

APPROVAL_STATUSES = ("approved", "funded")
_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_approval_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"appr-{int(time.time() * 1000)}-{suffix}"


def normalize_follow_up_date(value: Union[str, date, datetime, None]) -> Optional[str]:
    """Pin a follow-up day to midday UTC so it renders on the same date in any timezone."""
    day = to_plain_date(value)
    if not day:
        return None
    return f"{day}T12:00:00.000Z"


def _ensure_single_primary(approvals: list[ApprovalEntry]) -> list[ApprovalEntry]:
    """Keep the first primary flag; promote the first entry when none is flagged."""
    if not approvals:
        return approvals
    primary_index = next((i for i, a in enumerate(approvals) if a.is_primary), 0)
    return [
        a if a.is_primary == (i == primary_index) else a.model_copy(update={"is_primary": i == primary_index})
        for i, a in enumerate(approvals)
    ]


def _approval_list_updates(approvals: list[ApprovalEntry]) -> dict[str, Any]:
    """Request body for an approval-list write, mirroring the primary into the legacy fields."""
    primary = primary_approval(approvals)
    updates: dict[str, Any] = {"additionalApprovals": [a.to_wire() for a in approvals]}
    wire = primary.to_wire() if primary else {}
    for field in APPROVAL_FIELDS:
        key = to_camel(field)
        updates[key] = wire.get(key) or None
    return updates


class DecisionLifecycle:
    """
    Status transitions and approval-list edits for one business's decision.

    Every approval-list operation reads the current record, rebuilds the list in
    memory and writes it back whole with the version it read; a first write for a
    business is create-only. Two editors acting on the same business race; the
    loser gets DecisionConflictError and must re-read before retrying. Callers
    should invalidate the store's list cache after a successful call.
    """

    def __init__(self, store: DecisionStoreClient):
        self.store = store

    async def _approvals_for(self, business_email: str) -> tuple[Optional[dict[str, Any]], list[ApprovalEntry]]:
        decision = await self.store.find_by_email(business_email)
        if decision is None:
            return None, []
        return decision, reconcile_approvals(decision)

    async def record_approval(
        self,
        business_email: str,
        business_name: Optional[str],
        entry: Union[ApprovalInput, Mapping[str, Any]],
        editing_id: Optional[str] = None,
    ) -> list[ApprovalEntry]:
        """Add an offer, or replace the one with `editing_id`. The first offer a business gets is primary."""
        offer = entry if isinstance(entry, ApprovalInput) else ApprovalInput.model_validate(dict(entry))
        decision = await self.store.find_by_email(business_email)
        if decision is not None and decision.get("status") in APPROVAL_STATUSES:
            approvals = reconcile_approvals(decision)
        else:
            approvals = []

        target = next((a for a in approvals if editing_id and a.id == editing_id), None)
        if target is not None:
            replacement = ApprovalEntry(
                id=target.id,
                **offer.model_dump(),
                is_primary=target.is_primary,
                created_at=target.created_at,
            )
            approvals = [replacement if a.id == target.id else a for a in approvals]
        else:
            approvals = approvals + [
                ApprovalEntry(
                    id=new_approval_id(),
                    **offer.model_dump(),
                    is_primary=not approvals,
                    created_at=to_iso_utc(datetime.now(timezone.utc)),
                )
            ]
        approvals = _ensure_single_primary(approvals)
        updates = _approval_list_updates(approvals)

        if decision is None:
            created = await self.store.create_decision(
                {
                    "businessEmail": business_email,
                    "businessName": business_name or business_email,
                    "status": "approved",
                    **updates,
                },
                create_only=True,
            )
            logger.info("decision_created", decision_id=created.get("id"), status="approved")
        else:
            if decision.get("status") not in APPROVAL_STATUSES:
                updates.update({
                    "status": "approved",
                    "declineReason": None,
                    "followUpWorthy": False,
                    "followUpDate": None,
                })
            await self.store.update_decision(decision["id"], updates, version=decision.get("version"))
            logger.info(
                "approval_recorded",
                decision_id=decision["id"],
                approval_count=len(approvals),
                edited=target is not None,
            )
        return approvals

    async def set_primary(self, business_email: str, approval_id: str) -> list[ApprovalEntry]:
        decision, approvals = await self._approvals_for(business_email)
        if decision is None or not any(a.id == approval_id for a in approvals):
            return approvals
        approvals = [a.model_copy(update={"is_primary": a.id == approval_id}) for a in approvals]
        await self.store.update_decision(
            decision["id"], _approval_list_updates(approvals), version=decision.get("version")
        )
        logger.info("primary_approval_set", decision_id=decision["id"], approval_id=approval_id)
        return approvals

    async def delete_approval(self, business_email: str, approval_id: str) -> list[ApprovalEntry]:
        """Remove an offer; removing the last one deletes the whole decision."""
        decision, approvals = await self._approvals_for(business_email)
        removed = next((a for a in approvals if a.id == approval_id), None)
        if decision is None or removed is None:
            return approvals

        remaining = [a for a in approvals if a.id != approval_id]
        if not remaining:
            await self.store.delete_decision(decision["id"], version=decision.get("version"))
            logger.info("decision_cascade_deleted", decision_id=decision["id"], approval_id=approval_id)
            return []

        if removed.is_primary:
            remaining[0] = remaining[0].model_copy(update={"is_primary": True})
        remaining = _ensure_single_primary(remaining)
        await self.store.update_decision(
            decision["id"], _approval_list_updates(remaining), version=decision.get("version")
        )
        logger.info("approval_deleted", decision_id=decision["id"], approval_id=approval_id)
        return remaining

    async def _record_rejection(
        self,
        status: str,
        business_email: str,
        business_name: Optional[str],
        reason: Optional[str],
        follow_up_worthy: bool,
        follow_up_date: Union[str, date, datetime, None],
    ) -> dict[str, Any]:
        payload = {
            "businessEmail": business_email,
            "businessName": business_name or business_email,
            "status": status,
            "declineReason": reason or None,
            "followUpWorthy": bool(follow_up_worthy),
            "followUpDate": normalize_follow_up_date(follow_up_date) if follow_up_worthy else None,
        }
        existing = await self.store.find_by_email(business_email)
        if existing is None:
            decision = await self.store.create_decision(payload, create_only=True)
        else:
            decision = await self.store.create_decision(payload, version=existing.get("version"))
        logger.info("decision_rejected", decision_id=decision.get("id"), status=status)
        return decision

    async def record_decline(
        self,
        business_email: str,
        business_name: Optional[str],
        reason: Optional[str],
        follow_up_worthy: bool = False,
        follow_up_date: Union[str, date, datetime, None] = None,
    ) -> dict[str, Any]:
        return await self._record_rejection(
            "declined", business_email, business_name, reason, follow_up_worthy, follow_up_date
        )

    async def record_unqualified(
        self,
        business_email: str,
        business_name: Optional[str],
        reason: Optional[str],
        follow_up_worthy: bool = False,
        follow_up_date: Union[str, date, datetime, None] = None,
    ) -> dict[str, Any]:
        if not (reason or "").strip():
            raise DecisionValidationError("Please enter a reason why this applicant is unqualified")
        return await self._record_rejection(
            "unqualified", business_email, business_name, reason, follow_up_worthy, follow_up_date
        )

    async def mark_funded(self, business_email: str) -> dict[str, Any]:
        decision = await self.store.find_by_email(business_email)
        if decision is None:
            raise DecisionNotFoundError(f"No decision recorded for {business_email}")
        updated = await self.store.update_decision(
            decision["id"], {"status": "funded"}, version=decision.get("version")
        )
        logger.info("decision_funded", decision_id=decision["id"], previous_status=decision.get("status"))
        return updated

    async def reset_decision(self, decision_id: str) -> bool:
        """Delete a decision outright; False when it was already gone."""
        try:
            await self.store.delete_decision(decision_id)
        except DecisionNotFoundError:
            return False
        logger.info("decision_reset", decision_id=decision_id)
        return True
