"""
Normalize a decision's stored approvals into the canonical entry list.

Stored rows come in two shapes. Newer rows keep every offer in
`additionalApprovals` with an explicit `isPrimary` flag. Older rows keep the
headline offer in the decision's top-level fields and loose extra offers
(sometimes keyed `amount` instead of `advanceAmount`) in the list. Callers only
ever see the canonical shape.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from schemas.underwriting import ApprovalEntry, LegacyApproval, to_iso_utc, to_plain_date, to_text


def _first_set(*values: Any) -> str:
    for value in values:
        if value not in (None, "", 0):
            return to_text(value)
    return ""


def _as_text(value: Any) -> str:
    """Like _first_set for one value, but a numeric 0 is kept as "0"."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
        return to_text(value)
    return _first_set(value)


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, Mapping) else {}


def is_canonical(raw: Optional[Sequence[Any]]) -> bool:
    """A list is canonical when its first element carries an isPrimary flag."""
    if not raw:
        return False
    first = raw[0]
    return isinstance(first, Mapping) and "isPrimary" in first


def _parse_canonical(raw: Sequence[Any]) -> list[ApprovalEntry]:
    return [ApprovalEntry.model_validate(dict(_as_mapping(item))) for item in raw]


def _primary_from_decision(decision: Mapping[str, Any], now: str) -> ApprovalEntry:
    return ApprovalEntry(
        id=f"primary-{decision.get('id', '')}",
        lender=_first_set(decision.get("lender")),
        advance_amount=_as_text(decision.get("advanceAmount")),
        term=_first_set(decision.get("term")),
        payment_frequency=_first_set(decision.get("paymentFrequency")) or "weekly",
        factor_rate=_as_text(decision.get("factorRate")),
        max_upsell=_as_text(decision.get("maxUpsell")),
        total_payback=_as_text(decision.get("totalPayback")),
        net_after_fees=_as_text(decision.get("netAfterFees")),
        notes=_first_set(decision.get("notes")),
        approval_date=to_plain_date(decision.get("approvalDate")),
        is_primary=True,
        created_at=_first_set(decision.get("createdAt")) or now,
    )


def _migrate_legacy(index: int, raw: Any, now: str) -> ApprovalEntry:
    old = LegacyApproval.model_validate(dict(_as_mapping(raw)))
    return ApprovalEntry(
        id=f"migrated-{index}",
        lender=_first_set(old.lender),
        advance_amount=_first_set(old.amount, old.advance_amount),
        term=_first_set(old.term),
        payment_frequency=_first_set(old.payment_frequency) or "weekly",
        factor_rate=_first_set(old.factor_rate),
        max_upsell=_first_set(old.max_upsell),
        total_payback=_first_set(old.total_payback),
        net_after_fees=_first_set(old.net_after_fees),
        notes=_first_set(old.notes),
        approval_date=_first_set(old.approval_date),
        is_primary=False,
        created_at=now,
    )


def reconcile_approvals(decision: Optional[Mapping[str, Any]], now: Optional[datetime] = None) -> list[ApprovalEntry]:
    """
    Return the canonical approval list for a decision record (wire/camelCase shape).

    Canonical lists come back as stored. Legacy data is migrated: a primary
    entry synthesized from the top-level fields (when `advanceAmount` or
    `lender` is set) followed by each loose entry, in stored order. Never raises.
    """
    if not decision:
        return []
    raw = decision.get("additionalApprovals")
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raw = None

    if is_canonical(raw):
        return _parse_canonical(raw)

    stamp = to_iso_utc(now or datetime.now(timezone.utc))
    result: list[ApprovalEntry] = []
    if decision.get("advanceAmount") or decision.get("lender"):
        result.append(_primary_from_decision(decision, stamp))
    for index, item in enumerate(raw or []):
        result.append(_migrate_legacy(index, item, stamp))
    return result


def primary_approval(entries: Sequence[ApprovalEntry]) -> Optional[ApprovalEntry]:
    """The primary entry, else the first one."""
    for entry in entries:
        if entry.is_primary:
            return entry
    return entries[0] if entries else None


def primary_first(entries: Sequence[ApprovalEntry]) -> list[ApprovalEntry]:
    """Primary entry first; the rest keep their stored order."""
    return sorted(entries, key=lambda e: 0 if e.is_primary else 1)


def _parse_instant(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def most_recent_approval_date(decision: Mapping[str, Any]) -> Optional[datetime]:
    """Latest approval date on the record, falling back to when it was created."""
    dates = [_parse_instant(decision.get("approvalDate"))]
    raw = decision.get("additionalApprovals")
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        dates.extend(_parse_instant(_as_mapping(item).get("approvalDate")) for item in raw)
    dates = [d for d in dates if d is not None]
    if dates:
        return max(dates)
    return _parse_instant(decision.get("createdAt"))
