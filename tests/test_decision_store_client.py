import unittest

import httpx

from services.decision_store import DecisionStoreClient
from services.errors import (
    GENERIC_STORE_ERROR,
    DecisionConflictError,
    DecisionNotFoundError,
    DecisionStoreError,
)
from tests.decision_testing import DecisionServiceTestCase


def _mock_client(handler) -> DecisionStoreClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store.test")
    return DecisionStoreClient(client=http, timeout=1.0, role="admin")


class TestClientAgainstService(DecisionServiceTestCase):
    async def test_find_by_email_is_case_insensitive(self):
        await self.seed(businessEmail="Owner@Acme.com", status="approved", lender="Acme")
        found = await self.store.find_by_email("owner@ACME.com")
        self.assertEqual(found["businessEmail"], "Owner@Acme.com")
        self.assertIsNone(await self.store.find_by_email("nobody@acme.com"))

    async def test_missing_record_raises_not_found(self):
        with self.assertRaises(DecisionNotFoundError):
            await self.store.get_decision("dec-missing")

    async def test_stale_version_raises_conflict(self):
        created = await self.store.create_decision(
            {"businessEmail": "owner@acme.com", "status": "approved", "lender": "Acme"}
        )
        await self.store.update_decision(created["id"], {"notes": "one"}, version=created["version"])
        with self.assertRaises(DecisionConflictError) as ctx:
            await self.store.update_decision(created["id"], {"notes": "two"}, version=created["version"])
        self.assertEqual(ctx.exception.status_code, 409)

    async def test_validation_failure_surfaces_server_message(self):
        with self.assertRaises(DecisionStoreError) as ctx:
            await self.store.create_decision({"businessEmail": "owner@acme.com", "status": "unqualified"})
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn("reason is required", ctx.exception.message)

    async def test_list_is_cached_until_invalidated(self):
        await self.seed(businessEmail="a@one.com", status="approved", lender="Acme")
        self.assertEqual(len(await self.store.list_decisions()), 1)
        await self.seed(businessEmail="b@two.com", status="declined", declineReason="NSFs")
        self.assertEqual(len(await self.store.list_decisions()), 1)
        self.store.invalidate()
        self.assertEqual(len(await self.store.list_decisions()), 2)

    async def test_filtered_lists_bypass_cache(self):
        await self.seed(businessEmail="a@one.com", status="approved", lender="Acme")
        await self.store.list_decisions()
        await self.seed(businessEmail="b@two.com", status="declined", declineReason="NSFs")
        declined = await self.store.list_decisions(status="declined")
        self.assertEqual([d["businessEmail"] for d in declined], ["b@two.com"])


class TestClientErrorMapping(unittest.IsolatedAsyncioTestCase):
    async def test_server_error_message_propagated(self):
        client = _mock_client(lambda request: httpx.Response(500, json={"error": "database is down"}))
        with self.assertRaises(DecisionStoreError) as ctx:
            await client.list_decisions()
        self.assertEqual(ctx.exception.message, "database is down")
        self.assertEqual(ctx.exception.status_code, 500)
        await client.aclose()

    async def test_generic_message_without_error_body(self):
        client = _mock_client(lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))
        with self.assertRaises(DecisionStoreError) as ctx:
            await client.get_decision("dec-1")
        self.assertEqual(ctx.exception.message, GENERIC_STORE_ERROR)

    async def test_timeout_becomes_store_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = _mock_client(handler)
        with self.assertRaises(DecisionStoreError) as ctx:
            await client.find_by_email("owner@acme.com")
        self.assertIsInstance(ctx.exception.__cause__, httpx.TimeoutException)

    async def test_connection_failure_becomes_store_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _mock_client(handler)
        with self.assertRaises(DecisionStoreError):
            await client.delete_decision("dec-1")

    async def test_if_match_and_role_headers_sent(self):
        seen = {}

        def handler(request):
            seen["if_match"] = request.headers.get("if-match")
            seen["role"] = request.headers.get("x-user-role")
            return httpx.Response(200, json={"id": "dec-1", "version": 4})

        client = _mock_client(handler)
        await client.update_decision("dec-1", {"status": "funded"}, version=3)
        self.assertEqual(seen, {"if_match": '"3"', "role": "admin"})

    async def test_no_automatic_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"error": "busy"})

        client = _mock_client(handler)
        with self.assertRaises(DecisionStoreError):
            await client.get_stats()
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()
