import json

import httpx
import pytest

from cartsync.domain.errors import CartServiceError, RemoteRejectionError
from cartsync.domain.models.cart import AddLine
from cartsync.domain.repositories.http_cart_service import HttpCartService

CART = {
    "token": "abc",
    "currency": "USD",
    "total_price": 2400,
    "items": [{"key": "v1:1", "variant_id": 1, "product_id": 10, "product_title": "Socks", "quantity": 2, "price": 1200}],
}


def _service(handler) -> HttpCartService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://shop.test")
    return HttpCartService(client)


@pytest.mark.asyncio
async def test_get_cart():
    async def handler(request: httpx.Request):
        assert request.url.path == "/cart.js"
        return httpx.Response(200, json=CART)

    snapshot = await _service(handler).get_cart()
    assert snapshot.token == "abc"
    assert snapshot.items[0].variant_id == "1"
    assert snapshot.total_price == 2400


@pytest.mark.asyncio
async def test_get_cart_retries_transient_failure_once():
    calls = []

    async def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json=CART)

    snapshot = await _service(handler).get_cart()
    assert len(calls) == 2
    assert snapshot.item_count == 2


@pytest.mark.asyncio
async def test_network_error_is_service_error():
    async def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(CartServiceError):
        await _service(handler).get_cart()


@pytest.mark.asyncio
async def test_change_posts_line_and_quantity():
    seen = {}

    async def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={**CART, "items": []})

    snapshot = await _service(handler).change_line_quantity("v1:1", -1)
    assert seen == {"path": "/cart/change.js", "body": {"id": "v1:1", "quantity": 0}}
    assert snapshot.is_empty


@pytest.mark.asyncio
async def test_add_posts_items_then_reads_cart():
    seen = []

    async def handler(request):
        seen.append((request.method, request.url.path, request.content))
        if request.url.path == "/cart/add.js":
            return httpx.Response(200, json={"items": []})
        return httpx.Response(200, json=CART)

    line = AddLine(variant_id="1", quantity=1, properties={"_source_rec_qty": "1"})
    snapshot = await _service(handler).add_lines([line])
    assert [s[:2] for s in seen] == [("POST", "/cart/add.js"), ("GET", "/cart.js")]
    assert json.loads(seen[0][2]) == {"items": [{"id": "1", "quantity": 1, "properties": {"_source_rec_qty": "1"}}]}
    assert snapshot.token == "abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 422])
async def test_rejection_carries_description(status):
    async def handler(request):
        return httpx.Response(status, json={"status": status, "message": "Cart Error", "description": "Sold out"})

    with pytest.raises(RemoteRejectionError) as exc:
        await _service(handler).add_lines([AddLine(variant_id="9", quantity=1)])
    assert exc.value.description == "Sold out"
    assert exc.value.status_code == status
    assert exc.value.variant_id == "9"


@pytest.mark.asyncio
async def test_writes_are_not_retried():
    calls = []

    async def handler(request):
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(CartServiceError):
        await _service(handler).change_line_quantity("k", 1)
    assert len(calls) == 1
