from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DecisionStatus = Literal["approved", "declined", "unqualified", "funded"]

APPROVAL_FIELDS = (
    "lender",
    "advance_amount",
    "term",
    "payment_frequency",
    "factor_rate",
    "max_upsell",
    "total_payback",
    "net_after_fees",
    "notes",
    "approval_date",
)

_camel_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_text(value: Any) -> str:
    """Best-effort string for a stored approval value; None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format(Decimal(str(value)), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def to_iso_utc(value: Optional[datetime]) -> Optional[str]:
    """Millisecond ISO-8601 in UTC with a Z suffix; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_plain_date(value: Any) -> str:
    """Render a date-ish value as YYYY-MM-DD with no time component."""
    if not value:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return text[:10]


class ApprovalEntry(BaseModel):
    """One lender offer in canonical shape."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = ""
    lender: str = ""
    advance_amount: str = ""
    term: str = ""
    payment_frequency: str = ""
    factor_rate: str = ""
    max_upsell: str = ""
    total_payback: str = ""
    net_after_fees: str = ""
    notes: str = ""
    approval_date: str = ""
    is_primary: bool = False
    created_at: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any, info) -> Any:
        if info.field_name == "is_primary":
            if isinstance(value, str):
                return value.strip().lower() == "true"
            return bool(value)
        return to_text(value)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LegacyApproval(BaseModel):
    """Loose pre-multi-approval entry; older rows used `amount` instead of `advanceAmount`."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    lender: Any = None
    amount: Any = None
    advance_amount: Any = None
    term: Any = None
    payment_frequency: Any = None
    factor_rate: Any = None
    max_upsell: Any = None
    total_payback: Any = None
    net_after_fees: Any = None
    notes: Any = None
    approval_date: Any = None


class ApprovalInput(BaseModel):
    """Offer details supplied by a caller recording an approval."""

    model_config = _camel_config

    lender: str = ""
    advance_amount: str = ""
    term: str = ""
    payment_frequency: str = "weekly"
    factor_rate: str = ""
    max_upsell: str = ""
    total_payback: str = ""
    net_after_fees: str = ""
    notes: str = ""
    approval_date: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return to_text(value)

    @field_validator("approval_date")
    @classmethod
    def _plain_date(cls, value: str) -> str:
        return to_plain_date(value)

    @field_validator("payment_frequency")
    @classmethod
    def _default_frequency(cls, value: str) -> str:
        return value or "weekly"


class _DecisionFields(BaseModel):
    model_config = _camel_config

    business_name: Optional[str] = None
    lender: Optional[str] = None
    advance_amount: Optional[str] = None
    term: Optional[str] = None
    payment_frequency: Optional[str] = None
    factor_rate: Optional[str] = None
    max_upsell: Optional[str] = None
    total_payback: Optional[str] = None
    net_after_fees: Optional[str] = None
    notes: Optional[str] = None
    approval_date: Optional[str] = None
    additional_approvals: Optional[list[dict[str, Any]]] = None
    decline_reason: Optional[str] = None
    follow_up_worthy: Optional[bool] = None
    follow_up_date: Optional[datetime] = None

    @field_validator(
        "advance_amount", "factor_rate", "max_upsell", "total_payback", "net_after_fees", "term", mode="before"
    )
    @classmethod
    def _number_to_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return to_text(value)

    @field_validator("approval_date", mode="before")
    @classmethod
    def _approval_date(cls, value: Any) -> Optional[str]:
        return to_plain_date(value) or None


class DecisionCreate(_DecisionFields):
    business_email: str = Field(..., min_length=1)
    status: DecisionStatus

    @field_validator("business_email")
    @classmethod
    def _strip_email(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("businessEmail is required")
        return value

    @model_validator(mode="after")
    def _unqualified_needs_reason(self) -> "DecisionCreate":
        if self.status == "unqualified" and not (self.decline_reason or "").strip():
            raise ValueError("A reason is required when marking an applicant unqualified")
        return self


class DecisionUpdate(_DecisionFields):
    status: Optional[DecisionStatus] = None


class DecisionStats(BaseModel):
    model_config = _camel_config

    by_status: dict[str, int]
    total_approved: int
    total_funded: int
    approved_amount: str
    funded_amount: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
