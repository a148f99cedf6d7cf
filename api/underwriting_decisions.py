from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Response
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from api.auth import require_decision_role
from database import get_db
from models import UnderwritingDecision
from schemas.underwriting import DecisionCreate, DecisionUpdate, to_iso_utc
from services.approval_letter import approval_letter_payload, generate_approval_slug
from services.approval_reconciler import most_recent_approval_date
from services.decision_stats import compute_decision_stats

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/underwriting-decisions",
    tags=["underwriting-decisions"],
    dependencies=[Depends(require_decision_role)],
)
letters_router = APIRouter(prefix="/api/approval-letters", tags=["approval-letters"])

MSG_DECISION_NOT_FOUND = "Decision not found"
MSG_VERSION_CONFLICT = "Decision was modified by another request"
MSG_DECISION_EXISTS = "A decision already exists for this business"


def _decision_to_response(d: UnderwritingDecision) -> dict[str, Any]:
    """Serialize a decision with camelCase keys for the dashboard."""
    return {
        "id": d.id,
        "businessEmail": d.business_email,
        "businessName": d.business_name,
        "status": d.status,
        "lender": d.lender,
        "advanceAmount": d.advance_amount,
        "term": d.term,
        "paymentFrequency": d.payment_frequency,
        "factorRate": d.factor_rate,
        "maxUpsell": d.max_upsell,
        "totalPayback": d.total_payback,
        "netAfterFees": d.net_after_fees,
        "notes": d.notes,
        "approvalDate": d.approval_date,
        "additionalApprovals": d.additional_approvals,
        "declineReason": d.decline_reason,
        "followUpWorthy": bool(d.follow_up_worthy),
        "followUpDate": to_iso_utc(d.follow_up_date),
        "approvalSlug": d.approval_slug,
        "fundedDate": to_iso_utc(d.funded_date),
        "version": d.version,
        "createdAt": to_iso_utc(d.created_at),
        "updatedAt": to_iso_utc(d.updated_at),
    }


def _single_response(response: Response, d: UnderwritingDecision) -> dict[str, Any]:
    response.headers["ETag"] = f'"{d.version}"'
    return _decision_to_response(d)


def _parse_if_match(if_match: Optional[str]) -> Optional[int]:
    if not if_match or if_match.strip() == "*":
        return None
    token = if_match.strip()
    if token.startswith("W/"):
        token = token[2:]
    try:
        return int(token.strip('"'))
    except ValueError:
        raise HTTPException(status_code=400, detail="If-Match must carry a decision version")


def _check_version(d: UnderwritingDecision, if_match: Optional[str]) -> None:
    expected = _parse_if_match(if_match)
    if expected is not None and expected != d.version:
        logger.info("decision_conflict", decision_id=d.id, expected=expected, current=d.version)
        raise HTTPException(status_code=409, detail=MSG_VERSION_CONFLICT)


def _apply_fields(d: UnderwritingDecision, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if key == "follow_up_worthy":
            value = bool(value)
        setattr(d, key, value)


def _apply_status_effects(d: UnderwritingDecision, now: datetime) -> None:
    """Slug and funded-date bookkeeping that follows the stored status."""
    if d.status in ("approved", "funded") and not d.approval_slug:
        d.approval_slug = generate_approval_slug(d.business_name, d.business_email, today=now)
    elif d.status == "declined":
        d.approval_slug = None

    if d.status == "funded":
        if d.funded_date is None:
            d.funded_date = now
    else:
        d.funded_date = None


async def _get_decision(db: AsyncSession, decision_id: str) -> UnderwritingDecision:
    result = await db.execute(select(UnderwritingDecision).where(UnderwritingDecision.id == decision_id))
    decision = result.scalar_one_or_none()
    if not decision:
        raise HTTPException(status_code=404, detail=MSG_DECISION_NOT_FOUND)
    return decision


async def _commit(db: AsyncSession, decision_id: str) -> None:
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.info("decision_conflict", decision_id=decision_id)
        raise HTTPException(status_code=409, detail=MSG_VERSION_CONFLICT)
    except IntegrityError:
        await db.rollback()
        logger.info("decision_already_exists", decision_id=decision_id)
        raise HTTPException(status_code=409, detail=MSG_DECISION_EXISTS)


@router.get("")
async def list_decisions(
    status: Optional[str] = None,
    email: Optional[str] = None,
    q: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(UnderwritingDecision)
    if status:
        stmt = stmt.where(UnderwritingDecision.status == status)
    if email:
        stmt = stmt.where(UnderwritingDecision.email_key == email.strip().lower())
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(UnderwritingDecision.business_name).like(pattern),
                func.lower(UnderwritingDecision.business_email).like(pattern),
                func.lower(UnderwritingDecision.lender).like(pattern),
            )
        )
    result = await db.execute(stmt.order_by(UnderwritingDecision.updated_at.desc()))
    decisions = [_decision_to_response(d) for d in result.scalars().all()]
    if status == "funded":
        # Funded board: latest approval first
        decisions.sort(key=_approval_sort_key, reverse=True)
    return decisions


def _approval_sort_key(decision: dict[str, Any]) -> datetime:
    return most_recent_approval_date(decision) or datetime.min.replace(tzinfo=timezone.utc)


@router.get("/stats")
async def decision_stats(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(UnderwritingDecision))
    decisions = [_decision_to_response(d) for d in result.scalars().all()]
    return compute_decision_stats(decisions).to_wire()


@router.get("/{decision_id}")
async def get_decision(decision_id: str, response: Response, db: AsyncSession = Depends(get_db)):
    decision = await _get_decision(db, decision_id)
    return _single_response(response, decision)


@router.post("", status_code=201)
async def upsert_decision(
    body: DecisionCreate,
    response: Response,
    if_match: Optional[str] = Header(None),
    if_none_match: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Create the business's decision, or overwrite the one already stored for its email.

    `If-None-Match: *` makes the request create-only; `If-Match` makes it
    overwrite-only, against that version. Either precondition failing is a 409.
    """
    email_key = body.business_email.lower()
    result = await db.execute(select(UnderwritingDecision).where(UnderwritingDecision.email_key == email_key))
    decision = result.scalars().first()
    if decision is not None and (if_none_match or "").strip() == "*":
        logger.info("decision_conflict", decision_id=decision.id, reason="already_exists")
        raise HTTPException(status_code=409, detail=MSG_DECISION_EXISTS)
    if decision is None and _parse_if_match(if_match) is not None:
        logger.info("decision_conflict", business_email=body.business_email, reason="gone")
        raise HTTPException(status_code=409, detail=MSG_VERSION_CONFLICT)

    now = datetime.now(timezone.utc)
    data = body.model_dump(exclude_unset=True, by_alias=False)
    data.pop("business_email", None)

    if decision is None:
        decision = UnderwritingDecision(
            id=f"dec-{uuid.uuid4().hex[:12]}",
            business_email=body.business_email,
            email_key=email_key,
            follow_up_worthy=False,
            created_at=now,
            updated_at=now,
        )
        _apply_fields(decision, data)
        _apply_status_effects(decision, now)
        db.add(decision)
        created = True
    else:
        _check_version(decision, if_match)
        _apply_fields(decision, data)
        _apply_status_effects(decision, now)
        decision.updated_at = now
        response.status_code = 200
        created = False

    await _commit(db, decision.id)
    logger.info(
        "decision_created" if created else "decision_upserted",
        decision_id=decision.id,
        status=decision.status,
    )
    return _single_response(response, decision)


@router.patch("/{decision_id}")
async def update_decision(
    decision_id: str,
    body: DecisionUpdate,
    response: Response,
    if_match: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    decision = await _get_decision(db, decision_id)
    _check_version(decision, if_match)
    data = body.model_dump(exclude_unset=True, by_alias=False)
    if "status" in data and data["status"] is None:
        raise HTTPException(status_code=400, detail="status cannot be cleared")

    now = datetime.now(timezone.utc)
    _apply_fields(decision, data)
    _apply_status_effects(decision, now)
    decision.updated_at = now
    await _commit(db, decision.id)
    logger.info("decision_updated", decision_id=decision.id, fields=sorted(data))
    return _single_response(response, decision)


@router.delete("/{decision_id}", status_code=204)
async def delete_decision(
    decision_id: str,
    if_match: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    decision = await _get_decision(db, decision_id)
    _check_version(decision, if_match)
    await db.delete(decision)
    await _commit(db, decision_id)
    logger.info("decision_deleted", decision_id=decision_id)
    return Response(status_code=204)


@letters_router.get("/{slug}")
async def get_approval_letter(slug: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(UnderwritingDecision).where(UnderwritingDecision.approval_slug == slug))
    decision = result.scalar_one_or_none()
    payload = approval_letter_payload(_decision_to_response(decision)) if decision else None
    if payload is None:
        raise HTTPException(status_code=404, detail="Approval letter not found")
    return payload
