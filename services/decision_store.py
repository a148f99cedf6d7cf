"""
Async HTTP client for the underwriting decision store.

USAGE
-----
    async with DecisionStoreClient("http://localhost:3005", timeout=5.0) as store:
        decisions = await store.list_decisions()
        ...
        store.invalidate()   # after a successful mutation

Writes take the record's `version` and send it as `If-Match`; a stale version
comes back as DecisionConflictError. Nothing here retries.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from config import settings
from services.errors import (
    GENERIC_STORE_ERROR,
    DecisionConflictError,
    DecisionNotFoundError,
    DecisionStoreError,
)

logger = structlog.get_logger()

DECISIONS_PATH = "/api/underwriting-decisions"


class DecisionStoreClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        role: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.decision_store_timeout_seconds
        headers = {"X-User-Role": role} if role else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.decision_store_url,
            timeout=self.timeout,
        )
        self._headers = headers
        self._list_cache: Optional[list[dict[str, Any]]] = None

    async def __aenter__(self) -> "DecisionStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def invalidate(self) -> None:
        """Drop the cached decision list; call after a successful mutation."""
        self._list_cache = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        version: Optional[int] = None,
        create_only: bool = False,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if version is not None:
            headers["If-Match"] = f'"{version}"'
        if create_only:
            headers["If-None-Match"] = "*"
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.warning("decision_store_timeout", method=method, path=path)
            raise DecisionStoreError("Decision store request timed out") from e
        except httpx.TransportError as e:
            logger.warning("decision_store_unreachable", method=method, path=path, error=str(e))
            raise DecisionStoreError(f"Decision store unreachable: {e}") from e
        _raise_for_status(response)
        return response

    async def list_decisions(
        self,
        status: Optional[str] = None,
        query: Optional[str] = None,
        use_cache: bool = True,
    ) -> list[dict[str, Any]]:
        filtered = status is not None or query is not None
        if use_cache and not filtered and self._list_cache is not None:
            return list(self._list_cache)
        params = {k: v for k, v in {"status": status, "q": query}.items() if v is not None}
        response = await self._request("GET", DECISIONS_PATH, params=params or None)
        decisions = response.json()
        if not filtered:
            self._list_cache = list(decisions)
        return decisions

    async def find_by_email(self, business_email: str) -> Optional[dict[str, Any]]:
        """Fresh lookup by business email (case-insensitive on the store side); bypasses the cache."""
        response = await self._request("GET", DECISIONS_PATH, params={"email": business_email})
        matches = response.json()
        return matches[0] if matches else None

    async def get_decision(self, decision_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"{DECISIONS_PATH}/{decision_id}")
        return response.json()

    async def get_stats(self) -> dict[str, Any]:
        response = await self._request("GET", f"{DECISIONS_PATH}/stats")
        return response.json()

    async def create_decision(
        self, payload: dict[str, Any], version: Optional[int] = None, create_only: bool = False
    ) -> dict[str, Any]:
        """
        POST upsert keyed by businessEmail.

        `create_only` fails with DecisionConflictError when the business already
        has a decision; `version` fails the same way unless it is still current.
        """
        response = await self._request(
            "POST", DECISIONS_PATH, json=payload, version=version, create_only=create_only
        )
        return response.json()

    async def update_decision(
        self, decision_id: str, updates: dict[str, Any], version: Optional[int] = None
    ) -> dict[str, Any]:
        response = await self._request("PATCH", f"{DECISIONS_PATH}/{decision_id}", json=updates, version=version)
        return response.json()

    async def delete_decision(self, decision_id: str, version: Optional[int] = None) -> None:
        await self._request("DELETE", f"{DECISIONS_PATH}/{decision_id}", version=version)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return GENERIC_STORE_ERROR
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return GENERIC_STORE_ERROR


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    message = _error_message(response)
    logger.info(
        "decision_store_error",
        method=response.request.method,
        path=response.request.url.path,
        status_code=response.status_code,
        error=message,
    )
    if response.status_code == 404:
        raise DecisionNotFoundError(message)
    if response.status_code == 409:
        raise DecisionConflictError(message)
    raise DecisionStoreError(message, status_code=response.status_code)
