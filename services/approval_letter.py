import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from services.approval_reconciler import primary_first, reconcile_approvals

LETTER_STATUSES = ("approved", "funded")
_CODE_ALPHABET = string.digits + string.ascii_uppercase


def generate_approval_slug(business_name: Optional[str], business_email: str, today: Optional[datetime] = None) -> str:
    """
    Public approval-letter token: `<business>-<YYYYMMDD>-<CODE>`.

    The business part is the name (or the email's local part) reduced to
    [a-z0-9] and cut to 15 characters.
    """
    today = today or datetime.now(timezone.utc)
    source = business_name or business_email.split("@")[0]
    indicator = re.sub(r"[^a-z0-9]", "", source.lower())[:15]
    code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"{indicator}-{today.strftime('%Y%m%d')}-{code}"


def approval_letter_payload(decision: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    """Offers for the public letter, primary first; None unless the decision is approved or funded."""
    if decision.get("status") not in LETTER_STATUSES:
        return None
    offers = primary_first(reconcile_approvals(decision))
    return {
        "businessName": decision.get("businessName") or decision.get("businessEmail"),
        "status": decision.get("status"),
        "approvalSlug": decision.get("approvalSlug"),
        "offers": [o.to_wire() for o in offers],
    }
