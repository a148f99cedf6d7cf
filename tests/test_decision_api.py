"""
Route tests for the decision store: upsert, conditional writes, status side
effects, role scoping, stats and the public approval letter.
"""
import unittest
from unittest.mock import patch

from config import settings
from tests.decision_testing import DecisionServiceTestCase

PATH = "/api/underwriting-decisions"


class TestDecisionUpsert(DecisionServiceTestCase):
    async def test_create_returns_201_with_version_and_etag(self):
        response = await self.http.post(
            PATH,
            json={"businessEmail": "owner@acme.com", "businessName": "Acme Bakery", "status": "approved", "advanceAmount": 50000},
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["version"], 1)
        self.assertEqual(response.headers["etag"], '"1"')
        self.assertEqual(body["advanceAmount"], "50000")
        self.assertRegex(body["approvalSlug"], r"^acmebakery-\d{8}-[0-9A-Z]{6}$")
        self.assertIsNone(body["fundedDate"])
        self.assertTrue(body["createdAt"].endswith("Z"))

    async def test_same_email_any_case_updates_existing(self):
        created = await self.seed(businessEmail="Owner@Acme.com", status="approved", lender="Acme")
        response = await self.http.post(
            PATH, json={"businessEmail": "owner@acme.com", "status": "declined", "declineReason": "NSFs"}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["id"], created["id"])
        self.assertEqual(body["status"], "declined")
        self.assertEqual(body["version"], 2)
        self.assertIsNone(body["approvalSlug"])
        self.assertEqual(body["lender"], "Acme")

    async def test_unqualified_requires_reason(self):
        response = await self.http.post(
            PATH, json={"businessEmail": "owner@acme.com", "status": "unqualified", "declineReason": "   "}
        )
        self.assertEqual(response.status_code, 422)
        self.assertIn("reason is required", response.json()["error"])
        listing = await self.http.get(PATH)
        self.assertEqual(listing.json(), [])

    async def test_pending_is_not_a_storable_status(self):
        response = await self.http.post(PATH, json={"businessEmail": "owner@acme.com", "status": "pending"})
        self.assertEqual(response.status_code, 422)
        self.assertIn("error", response.json())

    async def test_blank_email_rejected(self):
        response = await self.http.post(PATH, json={"businessEmail": "  ", "status": "declined"})
        self.assertEqual(response.status_code, 422)


class TestDecisionQueries(DecisionServiceTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        await self.seed(businessEmail="a@one.com", businessName="One Diner", status="approved", lender="Acme")
        await self.seed(businessEmail="b@two.com", businessName="Two Garage", status="declined", declineReason="Low revenue")
        await self.seed(businessEmail="c@three.com", businessName="Three Salon", status="funded", lender="Beta")

    async def test_list_newest_first(self):
        response = await self.http.get(PATH)
        self.assertEqual([d["businessEmail"] for d in response.json()], ["c@three.com", "b@two.com", "a@one.com"])

    async def test_filter_by_email_is_case_insensitive(self):
        response = await self.http.get(PATH, params={"email": "B@TWO.COM"})
        self.assertEqual([d["businessName"] for d in response.json()], ["Two Garage"])

    async def test_filter_by_status_and_search(self):
        by_status = await self.http.get(PATH, params={"status": "funded"})
        self.assertEqual([d["businessEmail"] for d in by_status.json()], ["c@three.com"])
        by_lender = await self.http.get(PATH, params={"q": "acme"})
        self.assertEqual([d["businessEmail"] for d in by_lender.json()], ["a@one.com"])

    async def test_stats(self):
        response = await self.http.get(f"{PATH}/stats")
        body = response.json()
        self.assertEqual(body["totalApproved"], 1)
        self.assertEqual(body["totalFunded"], 1)
        self.assertEqual(body["byStatus"]["declined"], 1)

    async def test_missing_decision_is_404_with_error_body(self):
        response = await self.http.get(f"{PATH}/dec-missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Decision not found"})


class TestConditionalWrites(DecisionServiceTestCase):
    async def test_patch_with_current_version_bumps_it(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        response = await self.http.patch(
            f"{PATH}/{created['id']}", json={"notes": "call Friday"}, headers={"If-Match": '"1"'}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["version"], 2)
        self.assertEqual(response.headers["etag"], '"2"')

    async def test_patch_with_stale_version_conflicts_and_changes_nothing(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        await self.http.patch(f"{PATH}/{created['id']}", json={"notes": "first"})
        response = await self.http.patch(
            f"{PATH}/{created['id']}", json={"notes": "second"}, headers={"If-Match": '"1"'}
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Decision was modified by another request"})
        current = (await self.http.get(f"{PATH}/{created['id']}")).json()
        self.assertEqual(current["notes"], "first")
        self.assertEqual(current["version"], 2)

    async def test_malformed_if_match_rejected(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        response = await self.http.patch(
            f"{PATH}/{created['id']}", json={"notes": "x"}, headers={"If-Match": "banana"}
        )
        self.assertEqual(response.status_code, 400)

    async def test_delete_with_stale_version_conflicts(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        await self.http.patch(f"{PATH}/{created['id']}", json={"notes": "edited"})
        response = await self.http.delete(f"{PATH}/{created['id']}", headers={"If-Match": '"1"'})
        self.assertEqual(response.status_code, 409)
        self.assertEqual((await self.http.get(f"{PATH}/{created['id']}")).status_code, 200)

    async def test_create_only_post_conflicts_when_decision_exists(self):
        created = await self.seed(businessEmail="Owner@Acme.com", status="approved", lender="Acme")
        response = await self.http.post(
            PATH,
            json={"businessEmail": "owner@acme.com", "status": "approved", "lender": "Beta"},
            headers={"If-None-Match": "*"},
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "A decision already exists for this business"})
        current = (await self.http.get(f"{PATH}/{created['id']}")).json()
        self.assertEqual(current["lender"], "Acme")
        self.assertEqual(current["version"], 1)

    async def test_create_only_post_creates_when_absent(self):
        response = await self.http.post(
            PATH, json={"businessEmail": "owner@acme.com", "status": "declined"}, headers={"If-None-Match": "*"}
        )
        self.assertEqual(response.status_code, 201)

    async def test_post_with_if_match_checks_version(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        await self.http.patch(f"{PATH}/{created['id']}", json={"notes": "edited"})
        stale = await self.http.post(
            PATH,
            json={"businessEmail": "owner@acme.com", "status": "declined", "declineReason": "NSFs"},
            headers={"If-Match": '"1"'},
        )
        self.assertEqual(stale.status_code, 409)
        current = await self.http.post(
            PATH,
            json={"businessEmail": "owner@acme.com", "status": "declined", "declineReason": "NSFs"},
            headers={"If-Match": '"2"'},
        )
        self.assertEqual(current.status_code, 200)
        self.assertEqual(current.json()["version"], 3)

    async def test_post_with_if_match_for_deleted_decision_conflicts(self):
        response = await self.http.post(
            PATH, json={"businessEmail": "owner@acme.com", "status": "declined"}, headers={"If-Match": '"4"'}
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual((await self.http.get(PATH)).json(), [])

    async def test_delete_then_404(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        response = await self.http.delete(f"{PATH}/{created['id']}")
        self.assertEqual(response.status_code, 204)
        self.assertEqual((await self.http.get(f"{PATH}/{created['id']}")).status_code, 404)
        self.assertEqual((await self.http.delete(f"{PATH}/{created['id']}")).status_code, 404)


class TestFundedOrdering(DecisionServiceTestCase):
    async def test_funded_listing_orders_by_latest_approval_date(self):
        await self.seed(businessEmail="a@one.com", status="funded", lender="Acme", approvalDate="2025-05-01")
        await self.seed(
            businessEmail="b@two.com",
            status="funded",
            lender="Beta",
            approvalDate="2025-01-10",
            additionalApprovals=[{"id": "x1", "lender": "Beta", "approvalDate": "2025-06-20", "isPrimary": True}],
        )
        await self.seed(businessEmail="c@three.com", status="funded", lender="Crest", approvalDate="2025-03-03")
        response = await self.http.get(PATH, params={"status": "funded"})
        self.assertEqual([d["businessEmail"] for d in response.json()], ["b@two.com", "a@one.com", "c@three.com"])


class TestStatusSideEffects(DecisionServiceTestCase):
    async def test_funded_stamps_date_and_keeps_slug(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        funded = (await self.http.patch(f"{PATH}/{created['id']}", json={"status": "funded"})).json()
        self.assertIsNotNone(funded["fundedDate"])
        self.assertEqual(funded["approvalSlug"], created["approvalSlug"])

        back = (await self.http.patch(f"{PATH}/{created['id']}", json={"status": "approved"})).json()
        self.assertIsNone(back["fundedDate"])
        self.assertEqual(back["approvalSlug"], created["approvalSlug"])

    async def test_status_cannot_be_nulled(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        response = await self.http.patch(f"{PATH}/{created['id']}", json={"status": None})
        self.assertEqual(response.status_code, 400)


class TestApprovalLetterRoute(DecisionServiceTestCase):
    async def test_letter_served_for_approved(self):
        created = await self.seed(
            businessEmail="owner@acme.com",
            businessName="Acme Bakery",
            status="approved",
            lender="Acme",
            advanceAmount="50000",
        )
        response = await self.http.get(f"/api/approval-letters/{created['approvalSlug']}")
        self.assertEqual(response.status_code, 200)
        offers = response.json()["offers"]
        self.assertEqual(len(offers), 1)
        self.assertEqual(offers[0]["lender"], "Acme")
        self.assertTrue(offers[0]["isPrimary"])

    async def test_unknown_slug_is_404(self):
        response = await self.http.get("/api/approval-letters/nobody-20250101-AAAAAA")
        self.assertEqual(response.status_code, 404)


class TestRoleScoping(DecisionServiceTestCase):
    async def test_agents_are_forbidden_when_auth_enabled(self):
        with patch.object(settings, "auth_enabled", True):
            response = await self.http.get(PATH, headers={"X-User-Role": "agent"})
            self.assertEqual(response.status_code, 403)
            self.assertIn("error", response.json())

    async def test_missing_role_is_401_when_auth_enabled(self):
        with patch.object(settings, "auth_enabled", True):
            response = await self.http.get(PATH)
            self.assertEqual(response.status_code, 401)

    async def test_underwriting_role_allowed(self):
        with patch.object(settings, "auth_enabled", True):
            response = await self.http.get(PATH, headers={"X-User-Role": "Underwriting"})
            self.assertEqual(response.status_code, 200)

    async def test_letter_is_public(self):
        created = await self.seed(businessEmail="owner@acme.com", status="approved", lender="Acme")
        with patch.object(settings, "auth_enabled", True):
            response = await self.http.get(f"/api/approval-letters/{created['approvalSlug']}")
            self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
