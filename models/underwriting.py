from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy import JSON

from database import Base


class UnderwritingDecision(Base):
    __tablename__ = "business_underwriting_decisions"

    id = Column(String(64), primary_key=True, index=True)
    business_email = Column(String(320), nullable=False, index=True)
    # Lower-cased business_email; one decision per business
    email_key = Column(String(320), nullable=False, unique=True)
    business_name = Column(String(256), nullable=True)
    status = Column(String(32), nullable=False, index=True)

    # Legacy primary-approval fields; mirror the primary entry of additional_approvals
    lender = Column(String(256), nullable=True)
    advance_amount = Column(String(32), nullable=True)
    term = Column(String(64), nullable=True)
    payment_frequency = Column(String(32), nullable=True)
    factor_rate = Column(String(32), nullable=True)
    max_upsell = Column(String(32), nullable=True)
    total_payback = Column(String(32), nullable=True)
    net_after_fees = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    approval_date = Column(String(10), nullable=True)
    # Either legacy loose objects or canonical entries carrying isPrimary
    additional_approvals = Column(JSON, nullable=True)

    decline_reason = Column(Text, nullable=True)
    follow_up_worthy = Column(Boolean, nullable=False, default=False)
    follow_up_date = Column(DateTime(timezone=True), nullable=True)
    approval_slug = Column(String(64), unique=True, nullable=True, index=True)
    funded_date = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}
