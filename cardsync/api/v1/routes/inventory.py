"""
Inventory item edits, mirrored to CardTrader.
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from cardsync.api.dependencies import get_inventory_item_service
from cardsync.api.v1.schemas import (
    InventoryItemDeleteResponse,
    InventoryItemResponse,
    InventoryItemUpdate,
    InventoryItemUpdateResponse,
    MarketplacePush,
)
from cardsync.services.inventory_items import InventoryItemService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/{item_id}", response_model=InventoryItemResponse)
async def get_inventory_item(
    item_id: int,
    service: InventoryItemService = Depends(get_inventory_item_service),
) -> InventoryItemResponse:
    return InventoryItemResponse.model_validate(await service.get(item_id))


@router.put("/{item_id}", response_model=InventoryItemUpdateResponse)
async def update_inventory_item(
    item_id: int,
    request: InventoryItemUpdate,
    service: InventoryItemService = Depends(get_inventory_item_service),
) -> InventoryItemUpdateResponse:
    """
    Update an inventory item locally, then on CardTrader.

    A CardTrader failure is reported in ``cardtrader.error``; the local
    update is kept either way.
    """
    item, outcome = await service.update(item_id, request.to_item_fields())
    return InventoryItemUpdateResponse(
        message="Inventory item updated successfully",
        item=InventoryItemResponse.model_validate(item),
        cardtrader=MarketplacePush(**asdict(outcome)),
    )


@router.delete("/{item_id}", response_model=InventoryItemDeleteResponse)
async def delete_inventory_item(
    item_id: int,
    service: InventoryItemService = Depends(get_inventory_item_service),
) -> InventoryItemDeleteResponse:
    outcome = await service.delete(item_id)
    return InventoryItemDeleteResponse(
        message="Inventory item deleted successfully",
        cardtrader=MarketplacePush(**asdict(outcome)),
    )
