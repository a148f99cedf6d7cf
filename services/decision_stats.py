from collections import Counter
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from schemas.underwriting import DecisionStats
from services.approval_reconciler import primary_approval, reconcile_approvals

STATUSES = ("approved", "declined", "unqualified", "funded")


def _amount(value: str) -> Decimal:
    try:
        return Decimal(value.replace(",", "").replace("$", "").strip() or "0")
    except InvalidOperation:
        return Decimal("0")


def primary_amount(decision: Mapping[str, Any]) -> Decimal:
    primary = primary_approval(reconcile_approvals(decision))
    amount = _amount(primary.advance_amount) if primary else Decimal("0")
    # NaN/Infinity parse as Decimal but are not amounts
    return amount if amount.is_finite() else Decimal("0")


def compute_decision_stats(decisions: Iterable[Mapping[str, Any]]) -> DecisionStats:
    """Dashboard counters; amounts sum each decision's primary advance."""
    by_status: Counter = Counter({s: 0 for s in STATUSES})
    amounts = {"approved": Decimal("0"), "funded": Decimal("0")}
    for decision in decisions:
        status = decision.get("status")
        by_status[status] += 1
        if status in amounts:
            amounts[status] += primary_amount(decision)
    return DecisionStats(
        by_status=dict(by_status),
        total_approved=by_status["approved"],
        total_funded=by_status["funded"],
        approved_amount=str(amounts["approved"]),
        funded_amount=str(amounts["funded"]),
    )
