"""
API tests for the pending listing endpoints.
"""
import pytest

from cardsync.core.exceptions import CardTraderAPIError
from cardsync.services.cardtrader_dtos import ListingResultDTO

URL = "/api/v1/pending-listings"


def _listing(blueprint_id: int, **overrides):
    body = {
        "blueprint_id": blueprint_id,
        "quantity": 2,
        "price": "12.50",
        "condition": "Near Mint",
        "language": "English",
        "location": "Box 3",
    }
    body.update(overrides)
    return body


@pytest.fixture
def blueprint_id(catalog_rows):
    return catalog_rows["blueprint"].id


@pytest.mark.asyncio
async def test_stage_then_merge(client, blueprint_id):
    first = await client.post(URL, json=_listing(blueprint_id))
    second = await client.post(URL, json=_listing(blueprint_id, quantity=3))

    assert first.status_code == 201
    assert first.json()["merged"] is False
    assert second.status_code == 200
    assert second.json()["merged"] is True
    assert second.json()["listing"]["quantity"] == 5
    assert second.json()["message"] == "Quantity added to existing item. New total: 5"


@pytest.mark.asyncio
async def test_stage_unknown_blueprint(client, catalog_rows):
    response = await client.post(URL, json=_listing(9999))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_stage_rejects_zero_quantity(client, blueprint_id):
    response = await client.post(URL, json=_listing(blueprint_id, quantity=0))

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_update_delete(client, blueprint_id):
    created = (await client.post(URL, json=_listing(blueprint_id))).json()["listing"]

    fetched = await client.get(f"{URL}/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["selling_price"] == "12.50"

    updated = await client.put(f"{URL}/{created['id']}", json={"price": "9.99", "tag": "promo"})
    assert updated.status_code == 200
    assert updated.json()["selling_price"] == "9.99"
    assert updated.json()["tag"] == "promo"

    empty = await client.put(f"{URL}/{created['id']}", json={})
    assert empty.status_code == 422

    deleted = await client.delete(f"{URL}/{created['id']}")
    assert deleted.status_code == 204
    assert (await client.get(f"{URL}/{created['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_update_rejects_null_for_required_fields(client, blueprint_id):
    created = (await client.post(URL, json=_listing(blueprint_id))).json()["listing"]

    response = await client.put(f"{URL}/{created['id']}", json={"quantity": None, "tag": "promo"})

    assert response.status_code == 422
    assert "quantity" in response.json()["error"]["errors"][0]["message"]
    fetched = (await client.get(f"{URL}/{created['id']}")).json()
    assert (fetched["quantity"], fetched["tag"]) == (2, None)

    # Nullable columns can still be cleared
    cleared = await client.put(f"{URL}/{created['id']}", json={"location": None})
    assert cleared.status_code == 200
    assert cleared.json()["location"] is None


@pytest.mark.asyncio
async def test_list_filters(client, blueprint_id):
    await client.post(URL, json=_listing(blueprint_id))
    await client.post(URL, json=_listing(blueprint_id, price="20.00"))

    response = await client.get(URL, params={"is_synced": "false", "page_size": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert len(body["items"]) == 1
    assert body["page_size"] == 1


@pytest.mark.asyncio
async def test_publish_and_synced_rows_are_locked(client, mock_cardtrader_client, blueprint_id):
    ok = (await client.post(URL, json=_listing(blueprint_id))).json()["listing"]
    bad = (await client.post(URL, json=_listing(blueprint_id, price="0.01"))).json()["listing"]
    mock_cardtrader_client.create_listing.side_effect = [
        ListingResultDTO(product_id=321),
        CardTraderAPIError("price too low", upstream_status=422),
    ]

    response = await client.post(f"{URL}/publish")

    assert response.status_code == 200
    body = response.json()
    assert (body["total"], body["success"], body["errors"]) == (2, 1, 1)
    assert body["failures"] == [{"id": bad["id"], "error": "price too low"}]

    published = (await client.get(f"{URL}/{ok['id']}")).json()
    assert published["is_synced"] is True
    assert published["cardtrader_product_id"] == 321

    locked = await client.put(f"{URL}/{ok['id']}", json={"quantity": 1})
    assert locked.status_code == 409
    assert (await client.delete(f"{URL}/{ok['id']}")).status_code == 409

    errored = (await client.get(URL, params={"has_error": "true"})).json()
    assert [item["id"] for item in errored["items"]] == [bad["id"]]
