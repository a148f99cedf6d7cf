"""
Seed sample underwriting decisions, including pre-multi-approval (legacy) rows,
so the dashboard and reconciler can be exercised locally.
Run: python -m scripts.seed_decisions (from the repository root).
"""
import asyncio
import os
import sys
from datetime import datetime, timezone

# Add parent so we can import the service modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from database import AsyncSessionLocal, init_db
from models import UnderwritingDecision
from services.approval_letter import generate_approval_slug

DECISIONS_DATA = [
    {
        # Legacy shape: headline offer in the top-level fields, loose extras keyed `amount`
        "id": "dec-seed-legacy",
        "business_email": "owner@harborbakery.com",
        "business_name": "Harbor Bakery",
        "status": "approved",
        "lender": "Acme Capital",
        "advance_amount": "50000",
        "term": "6 months",
        "payment_frequency": "weekly",
        "factor_rate": "1.35",
        "approval_date": "2025-04-02",
        "additional_approvals": [
            {"lender": "Beta Funding", "amount": "30000", "term": "4 months"},
        ],
    },
    {
        "id": "dec-seed-multi",
        "business_email": "ops@northsidegarage.com",
        "business_name": "Northside Garage",
        "status": "funded",
        "lender": "Beta Funding",
        "advance_amount": "75000",
        "additional_approvals": [
            {
                "id": "appr-seed-1",
                "lender": "Beta Funding",
                "advanceAmount": "75000",
                "term": "9 months",
                "paymentFrequency": "daily",
                "factorRate": "1.29",
                "maxUpsell": "100000",
                "totalPayback": "96750",
                "netAfterFees": "72000",
                "notes": "",
                "approvalDate": "2025-05-10",
                "isPrimary": True,
                "createdAt": "2025-05-10T16:20:00.000Z",
            },
            {
                "id": "appr-seed-2",
                "lender": "Crest Capital",
                "advanceAmount": "40000",
                "term": "6 months",
                "paymentFrequency": "weekly",
                "factorRate": "1.38",
                "maxUpsell": "",
                "totalPayback": "55200",
                "netAfterFees": "38500",
                "notes": "Backup offer",
                "approvalDate": "2025-05-09",
                "isPrimary": False,
                "createdAt": "2025-05-09T14:05:00.000Z",
            },
        ],
    },
    {
        "id": "dec-seed-declined",
        "business_email": "hello@lumensalon.com",
        "business_name": "Lumen Salon",
        "status": "declined",
        "decline_reason": "Too many NSFs in the last 90 days",
        "follow_up_worthy": True,
        "follow_up_date": datetime(2025, 9, 1, 12, tzinfo=timezone.utc),
    },
    {
        "id": "dec-seed-unqualified",
        "business_email": "info@quickprints.com",
        "business_name": "Quick Prints",
        "status": "unqualified",
        "decline_reason": "Monthly revenue under $15k",
    },
]


async def seed():
    await init_db()
    now = datetime.now(timezone.utc)
    async with AsyncSessionLocal() as session:
        for data in DECISIONS_DATA:
            existing = await session.execute(
                select(UnderwritingDecision).where(
                    UnderwritingDecision.email_key == data["business_email"].lower()
                )
            )
            if existing.scalars().first():
                print(f"Decision for {data['business_email']} already exists, skipping")
                continue
            decision = UnderwritingDecision(
                email_key=data["business_email"].lower(), created_at=now, updated_at=now, **data
            )
            if decision.status in ("approved", "funded"):
                decision.approval_slug = generate_approval_slug(decision.business_name, decision.business_email)
            if decision.status == "funded":
                decision.funded_date = now
            session.add(decision)
            print(f"Seeded decision: {data['business_name']} ({data['status']})")
        await session.commit()
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(seed())
