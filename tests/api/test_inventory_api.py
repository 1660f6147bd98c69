"""
API tests for the inventory item endpoints.
"""
from decimal import Decimal

import pytest

from cardsync.core.exceptions import CardTraderServiceUnavailableError
from cardsync.models.inventory import InventoryItem

URL = "/api/v1/inventory"


@pytest.fixture
async def item_id(session_factory, catalog_rows):
    async with session_factory() as session:
        item = InventoryItem(
            cardtrader_product_id=7001,
            blueprint_id=catalog_rows["blueprint"].id,
            quantity=2,
            price=Decimal("12.50"),
            condition="Near Mint",
            language="en",
            location="Box 1",
        )
        session.add(item)
        await session.commit()
        return item.id


@pytest.mark.asyncio
async def test_update_is_pushed(client, mock_cardtrader_client, item_id):
    response = await client.put(f"{URL}/{item_id}", json={"price": "10.00", "quantity": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["item"]["quantity"] == 3
    assert body["item"]["price"] == "10.00"
    assert body["cardtrader"] == {"attempted": True, "synced": True, "error": None}
    mock_cardtrader_client.update_listing.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_survives_open_breaker(client, mock_cardtrader_client, item_id):
    mock_cardtrader_client.update_listing.side_effect = CardTraderServiceUnavailableError(retry_after=30)

    response = await client.put(f"{URL}/{item_id}", json={"quantity": 7})

    assert response.status_code == 200
    assert response.json()["cardtrader"]["synced"] is False
    assert (await client.get(f"{URL}/{item_id}")).json()["quantity"] == 7


@pytest.mark.asyncio
async def test_update_rejects_null_and_empty_body(client, item_id):
    assert (await client.put(f"{URL}/{item_id}", json={"price": None})).status_code == 422
    assert (await client.put(f"{URL}/{item_id}", json={})).status_code == 422


@pytest.mark.asyncio
async def test_delete(client, mock_cardtrader_client, item_id):
    mock_cardtrader_client.delete_listing.return_value = False

    response = await client.delete(f"{URL}/{item_id}")

    assert response.status_code == 200
    assert response.json()["cardtrader"]["synced"] is True
    mock_cardtrader_client.delete_listing.assert_awaited_once_with(7001)
    assert (await client.get(f"{URL}/{item_id}")).status_code == 404
