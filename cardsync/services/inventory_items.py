"""
Local edits of mirrored inventory items, pushed to CardTrader.

The local row is the source of the change: it is committed first, then the
matching CardTrader product is updated or deleted. A failed push is logged
and reported on the outcome but never undoes the local change; the next
inventory sync reconciles the two sides.
"""
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from cardsync.core.exceptions import NotFoundError
from cardsync.core.logging import log_operation
from cardsync.core.prometheus_metrics import inventory_push_total
from cardsync.models.inventory import InventoryItem
from cardsync.services import cardtrader_mapper as mapper
from cardsync.services.cardtrader_client import CardTraderClient

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "quantity",
    "price",
    "condition",
    "language",
    "is_foil",
    "is_signed",
    "location",
)


@dataclass
class PushOutcome:
    """What happened on the CardTrader side of a local change."""

    attempted: bool = False
    synced: bool = False
    error: Optional[str] = None


class InventoryItemService:
    """Edit and delete inventory items within one session."""

    def __init__(self, session: AsyncSession, client: CardTraderClient):
        self.session = session
        self.client = client

    async def get(self, item_id: int) -> InventoryItem:
        item = await self.session.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError("InventoryItem", item_id)
        return item

    async def update(self, item_id: int, changes: Mapping[str, Any]) -> Tuple[InventoryItem, PushOutcome]:
        item = await self.get(item_id)
        for name in EDITABLE_FIELDS:
            if name in changes:
                setattr(item, name, changes[name])
        await self.session.commit()
        await self.session.refresh(item)
        log_operation(logger, "inventory_item.update", item_id=item_id, fields=sorted(changes))

        if item.cardtrader_product_id is None:
            logger.warning(
                f"Inventory item {item_id} has no CardTrader product id, skipping CardTrader update",
                extra={"item_id": item_id},
            )
            inventory_push_total.labels(operation="update", outcome="skipped").inc()
            return item, PushOutcome()

        outcome = PushOutcome(attempted=True)
        try:
            await self.client.update_listing(
                item.cardtrader_product_id,
                price=float(item.price),
                quantity=item.quantity,
                properties=mapper.listing_properties(
                    item.condition, item.language, item.is_foil, item.is_signed
                ),
                user_data_field=item.location,
            )
        except Exception as e:
            outcome.error = str(e)
            inventory_push_total.labels(operation="update", outcome="error").inc()
            logger.error(
                f"Failed to update product {item.cardtrader_product_id} on CardTrader "
                f"for inventory item {item_id}: {e}",
                extra={"item_id": item_id, "product_id": item.cardtrader_product_id},
            )
        else:
            outcome.synced = True
            inventory_push_total.labels(operation="update", outcome="success").inc()
            logger.info(f"Inventory item {item_id} pushed to CardTrader")
        return item, outcome

    async def delete(self, item_id: int) -> PushOutcome:
        item = await self.get(item_id)
        product_id = item.cardtrader_product_id
        await self.session.delete(item)
        await self.session.commit()
        log_operation(logger, "inventory_item.delete", item_id=item_id, product_id=product_id)

        if product_id is None:
            inventory_push_total.labels(operation="delete", outcome="skipped").inc()
            return PushOutcome()

        outcome = PushOutcome(attempted=True)
        try:
            # A product CardTrader no longer has counts as deleted
            await self.client.delete_listing(product_id)
        except Exception as e:
            outcome.error = str(e)
            inventory_push_total.labels(operation="delete", outcome="error").inc()
            logger.error(
                f"Failed to delete product {product_id} on CardTrader for inventory item {item_id}: {e}",
                extra={"item_id": item_id, "product_id": product_id},
            )
        else:
            outcome.synced = True
            inventory_push_total.labels(operation="delete", outcome="success").inc()
        return outcome
