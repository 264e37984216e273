# cartsync/domain/repositories/http_cart_service.py
from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, Dict, Optional, Sequence

import httpx

from cartsync.domain.errors import CartServiceError, RemoteRejectionError
from cartsync.domain.models.cart import AddLine, CartSnapshot

logger = logging.getLogger(__name__)

REJECTION_STATUSES = (404, 422)
TRANSIENT_STATUSES = (429, 500, 502, 503, 504)
READ_RETRIES = 1
READ_RETRY_DELAY = 0.25


def _describe(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("description") or body.get("message") or body)
    return str(body)


class HttpCartService:
    """
    Storefront AJAX cart API (`/cart.js`, `/cart/change.js`, `/cart/add.js`).

    The given client carries the shopper's cart cookie and base URL. Only the
    read is retried; writes are never replayed.
    """

    def __init__(self, client: httpx.AsyncClient, *, timeout: float = 5.0):
        self.client = client
        self.timeout = timeout

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None, variant_id: Optional[str] = None) -> Dict[str, Any]:
        t0 = time.perf_counter()
        try:
            resp = await self.client.request(method, path, json=json, timeout=self.timeout, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise CartServiceError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise CartServiceError(f"{method} {path} failed: {e}") from e
        dt = time.perf_counter() - t0

        if resp.status_code in REJECTION_STATUSES:
            description = _describe(resp)
            logger.info("cart api rejected %s %s status=%s desc=%s", method, path, resp.status_code, description)
            raise RemoteRejectionError(description, status_code=resp.status_code, variant_id=variant_id)
        if resp.status_code >= 400:
            raise CartServiceError(f"{method} {path} status={resp.status_code}")
        logger.debug("cart api %s %s status=%s time=%.3fs", method, path, resp.status_code, dt)
        try:
            return resp.json()
        except ValueError as e:
            raise CartServiceError(f"{method} {path} returned invalid JSON") from e

    async def get_cart(self) -> CartSnapshot:
        for attempt in range(1 + READ_RETRIES):
            try:
                return CartSnapshot.from_remote(await self._request("GET", "/cart.js"))
            except CartServiceError as e:
                if attempt >= READ_RETRIES:
                    raise
                logger.warning("cart read retrying attempt=%s err=%s", attempt + 1, e)
                await asyncio.sleep(READ_RETRY_DELAY)
        raise CartServiceError("cart read failed")

    async def change_line_quantity(self, line_ref: str, quantity: int) -> CartSnapshot:
        data = await self._request("POST", "/cart/change.js", json={"id": str(line_ref), "quantity": max(0, int(quantity))})
        return CartSnapshot.from_remote(data)

    async def add_lines(self, lines: Sequence[AddLine]) -> CartSnapshot:
        """
        POST /cart/add.js answers with the added items only, so the full cart
        is read back afterwards.
        """
        if not lines:
            return await self.get_cart()
        variant_id = lines[0].variant_id if len(lines) == 1 else None
        await self._request("POST", "/cart/add.js", json={"items": [line.to_payload() for line in lines]}, variant_id=variant_id)
        return await self.get_cart()
