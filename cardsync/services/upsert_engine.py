"""
Entity upsert engine: merges typed CardTrader records into local rows.

Every upsert matches on the CardTrader id (the natural key) using an index
preloaded with one query per batch, resolves parents from rows that are
already persisted, and leaves the final flush to the caller so a whole phase
is saved as one batch.

Outcomes per record:
    added    new row inserted
    updated  existing row with at least one changed field
    skipped  parent missing or parent game disabled (policy, not an error)
    failed   unexpected error while mapping the record
Rows whose fields did not change count as none of the above.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardsync.core.prometheus_metrics import sync_records_total
from cardsync.models.catalog import Blueprint, Category, Expansion, Game, Property, PropertyValue
from cardsync.models.inventory import InventoryItem
from cardsync.models.orders import Order, OrderItem
from cardsync.services import cardtrader_mapper as mapper
from cardsync.services.cardtrader_dtos import (
    BlueprintDTO,
    CategoryDTO,
    ExpansionDTO,
    GameDTO,
    OrderDTO,
    ProductDTO,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

# Keeps IN (...) lists under SQLite's bound-parameter limit
_IN_CHUNK = 500


@dataclass
class UpsertStats:
    added: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0

    def merge(self, other: "UpsertStats") -> None:
        self.added += other.added
        self.updated += other.updated
        self.failed += other.failed
        self.skipped += other.skipped

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _chunks(values: Sequence[Any], size: int = _IN_CHUNK) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _comparable(value: Any) -> Any:
    # Some backends hand timestamps back without tzinfo; they are stored as UTC
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _apply(row: Any, fields: Mapping[str, Any]) -> bool:
    """Set changed attributes on ``row``; True if anything changed."""
    changed = False
    for name, value in fields.items():
        if _comparable(getattr(row, name)) != _comparable(value):
            setattr(row, name, value)
            changed = True
    return changed


class EntityUpsertEngine:
    """Per-phase merge of CardTrader records into one AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session
        # cardtrader_id -> row, per model; includes rows added in this session
        self._index: Dict[type, Dict[int, Any]] = {}

    async def _load_index(self, model: Type[RowT], ids: Iterable[int]) -> Dict[int, RowT]:
        index = self._index.setdefault(model, {})
        missing = sorted({i for i in ids if i is not None and i not in index})
        for chunk in _chunks(missing):
            result = await self.session.execute(
                select(model).where(model.cardtrader_id.in_(chunk))
            )
            for row in result.scalars():
                index[row.cardtrader_id] = row
        return index

    def _remember(self, model: type, row: Any) -> None:
        self._index.setdefault(model, {})[row.cardtrader_id] = row

    async def _games_by_cardtrader_id(self, ids: Iterable[int]) -> Dict[int, Game]:
        return await self._load_index(Game, ids)

    def _record(self, entity: str, stats: UpsertStats) -> None:
        for outcome, count in stats.as_dict().items():
            if count:
                sync_records_total.labels(entity=entity, outcome=outcome).inc(count)

    # Games

    async def upsert_games(self, records: List[GameDTO]) -> UpsertStats:
        stats = UpsertStats()
        existing = await self._load_index(Game, (r.id for r in records))

        for dto in records:
            try:
                fields = {"name": dto.name, "code": mapper.game_code(dto)}
                game = existing.get(dto.id)
                if game is None:
                    game = Game(cardtrader_id=dto.id, is_enabled=True, **fields)
                    self.session.add(game)
                    self._remember(Game, game)
                    stats.added += 1
                elif _apply(game, fields):
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert game {dto.id}: {e}", exc_info=True)

        self._record("games", stats)
        return stats

    # Expansions

    async def upsert_expansions(self, records: List[ExpansionDTO]) -> UpsertStats:
        stats = UpsertStats()
        games = await self._games_by_cardtrader_id(r.game_id for r in records)
        existing = await self._load_index(Expansion, (r.id for r in records))

        for dto in records:
            try:
                game = games.get(dto.game_id)
                if game is None or game.id is None:
                    logger.debug(f"Skipping expansion {dto.id}: game {dto.game_id} not synced")
                    stats.skipped += 1
                    continue
                if not game.is_enabled:
                    stats.skipped += 1
                    continue

                fields = {
                    "name": mapper.expansion_name(dto),
                    "code": mapper.expansion_code(dto),
                    "game_id": game.id,
                }
                expansion = existing.get(dto.id)
                if expansion is None:
                    expansion = Expansion(cardtrader_id=dto.id, **fields)
                    self.session.add(expansion)
                    self._remember(Expansion, expansion)
                    stats.added += 1
                elif _apply(expansion, fields):
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert expansion {dto.id}: {e}", exc_info=True)

        self._record("expansions", stats)
        return stats

    # Blueprints

    async def upsert_blueprints(
        self,
        records: List[BlueprintDTO],
        expansion: Expansion,
    ) -> UpsertStats:
        """Upsert the blueprints of one persisted expansion."""
        stats = UpsertStats()
        if expansion.id is None:
            stats.skipped += len(records)
            self._record("blueprints", stats)
            return stats

        existing = await self._load_index(Blueprint, (r.id for r in records))

        for dto in records:
            try:
                fields = {
                    "name": dto.name,
                    "rarity": mapper.blueprint_rarity(dto),
                    "version": mapper.blueprint_version(dto),
                    "image_url": dto.image_url,
                    "expansion_id": expansion.id,
                    "game_id": expansion.game_id,
                }
                blueprint = existing.get(dto.id)
                if blueprint is None:
                    blueprint = Blueprint(cardtrader_id=dto.id, **fields)
                    self.session.add(blueprint)
                    self._remember(Blueprint, blueprint)
                    stats.added += 1
                elif _apply(blueprint, fields):
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert blueprint {dto.id}: {e}", exc_info=True)

        self._record("blueprints", stats)
        return stats

    # Categories

    @staticmethod
    def _property_tree(dto: CategoryDTO) -> List[Tuple[str, str, Tuple[str, ...]]]:
        return [
            (
                prop.name,
                prop.type,
                tuple(mapper.property_value_to_str(v) for v in prop.possible_values),
            )
            for prop in dto.properties
        ]

    @staticmethod
    def _existing_tree(category: Category) -> List[Tuple[str, str, Tuple[str, ...]]]:
        return [
            (prop.name, prop.type, tuple(v.value for v in prop.possible_values))
            for prop in category.properties
        ]

    @staticmethod
    def _build_properties(tree: List[Tuple[str, str, Tuple[str, ...]]]) -> List[Property]:
        return [
            Property(
                name=name,
                type=type_,
                possible_values=[PropertyValue(value=value) for value in values],
            )
            for name, type_, values in tree
        ]

    async def upsert_categories(self, records: List[CategoryDTO]) -> UpsertStats:
        """
        Upsert categories with their property/value trees.

        On update the whole tree is deleted and recreated; it is never diffed.
        """
        stats = UpsertStats()
        games = await self._games_by_cardtrader_id(r.game_id for r in records)
        existing = await self._load_index(Category, (r.id for r in records))

        for dto in records:
            try:
                game = games.get(dto.game_id)
                if game is None or game.id is None or not game.is_enabled:
                    stats.skipped += 1
                    continue

                tree = self._property_tree(dto)
                fields = {"name": dto.name, "game_id": game.id}
                category = existing.get(dto.id)
                if category is None:
                    category = Category(
                        cardtrader_id=dto.id,
                        properties=self._build_properties(tree),
                        **fields,
                    )
                    self.session.add(category)
                    self._remember(Category, category)
                    stats.added += 1
                    continue

                tree_changed = self._existing_tree(category) != tree
                changed = _apply(category, fields)
                category.properties = self._build_properties(tree)
                if changed or tree_changed:
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert category {dto.id}: {e}", exc_info=True)

        self._record("categories", stats)
        return stats

    # Inventory

    async def upsert_products(self, records: List[ProductDTO]) -> UpsertStats:
        """
        Mirror the product export into InventoryItems.

        Products whose blueprint is not in the local catalog, or whose game is
        disabled, are skipped. Local items missing from the export are only
        reported.
        """
        stats = UpsertStats()
        blueprint_ids = sorted({r.blueprint_id for r in records})
        blueprints: Dict[int, Tuple[int, bool]] = {}
        for chunk in _chunks(blueprint_ids):
            result = await self.session.execute(
                select(Blueprint.cardtrader_id, Blueprint.id, Game.is_enabled)
                .join(Game, Blueprint.game_id == Game.id)
                .where(Blueprint.cardtrader_id.in_(chunk))
            )
            for cardtrader_id, local_id, enabled in result.all():
                blueprints[cardtrader_id] = (local_id, enabled)

        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.cardtrader_product_id.is_not(None))
        )
        existing = {item.cardtrader_product_id: item for item in result.scalars()}

        for dto in records:
            try:
                resolved = blueprints.get(dto.blueprint_id)
                if resolved is None or not resolved[1]:
                    stats.skipped += 1
                    continue

                fields = mapper.product_fields(dto)
                fields["blueprint_id"] = resolved[0]
                item = existing.get(dto.id)
                if item is None:
                    item = InventoryItem(cardtrader_product_id=dto.id, **fields)
                    self.session.add(item)
                    existing[dto.id] = item
                    stats.added += 1
                elif _apply(item, fields):
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert product {dto.id}: {e}", exc_info=True)

        exported = {r.id for r in records}
        missing = [pid for pid in existing if pid not in exported]
        if missing:
            logger.warning(
                f"{len(missing)} local inventory item(s) no longer exported by CardTrader; "
                f"left untouched for manual review",
                extra={"missing_product_ids": missing[:50]},
            )

        self._record("inventory", stats)
        return stats

    # Orders

    @staticmethod
    def _order_item_rows(
        dto: OrderDTO,
        blueprints: Mapping[int, Blueprint],
    ) -> List[Dict[str, Any]]:
        rows = []
        for item in dto.order_items:
            local = blueprints.get(item.blueprint_id) if item.blueprint_id is not None else None
            price = item.seller_price
            rows.append({
                "cardtrader_item_id": item.id,
                "cardtrader_product_id": item.product_id,
                "cardtrader_blueprint_id": item.blueprint_id,
                # Tolerant reference: unknown blueprints are stored as NULL
                "blueprint_id": local.id if local is not None else None,
                "name": item.name,
                "expansion_name": item.expansion,
                "quantity": item.quantity,
                "price": mapper.cents_to_decimal(price.cents if price else 0),
                "currency": price.currency if price else None,
                "properties": item.properties,
            })
        return rows

    @staticmethod
    def _item_signature(rows: Iterable[Mapping[str, Any]]) -> List[Tuple[Any, ...]]:
        keys = (
            "cardtrader_item_id", "cardtrader_product_id", "cardtrader_blueprint_id",
            "blueprint_id", "name", "expansion_name", "quantity", "price",
            "currency", "properties",
        )
        return [tuple(row[k] for k in keys) for row in rows]

    @staticmethod
    def _existing_item_rows(order: Order) -> List[Dict[str, Any]]:
        return [
            {
                "cardtrader_item_id": item.cardtrader_item_id,
                "cardtrader_product_id": item.cardtrader_product_id,
                "cardtrader_blueprint_id": item.cardtrader_blueprint_id,
                "blueprint_id": item.blueprint_id,
                "name": item.name,
                "expansion_name": item.expansion_name,
                "quantity": item.quantity,
                "price": item.price,
                "currency": item.currency,
                "properties": item.properties,
            }
            for item in order.items
        ]

    async def upsert_orders(self, records: List[OrderDTO]) -> UpsertStats:
        """
        Upsert orders keyed by the CardTrader order id.

        Re-applying an unchanged order is a no-op; changed item lists are
        replaced wholesale.
        """
        stats = UpsertStats()
        blueprints = await self._load_index(
            Blueprint,
            (item.blueprint_id for dto in records for item in dto.order_items),
        )

        order_ids = sorted({r.id for r in records})
        existing: Dict[int, Order] = {}
        for chunk in _chunks(order_ids):
            result = await self.session.execute(
                select(Order).where(Order.cardtrader_order_id.in_(chunk))
            )
            existing.update({o.cardtrader_order_id: o for o in result.scalars()})

        for dto in records:
            try:
                total = dto.seller_total or dto.seller_subtotal
                item_rows = self._order_item_rows(dto, blueprints)
                order = existing.get(dto.id)

                if order is None:
                    order = Order(
                        cardtrader_order_id=dto.id,
                        status=dto.state or "pending",
                        date_placed=dto.created_at,
                        total_amount=mapper.cents_to_decimal(total.cents if total else 0),
                        currency=total.currency if total else None,
                        items=[OrderItem(**row) for row in item_rows],
                    )
                    self.session.add(order)
                    existing[dto.id] = order
                    stats.added += 1
                    continue

                fields: Dict[str, Any] = {"status": dto.state or order.status}
                if dto.created_at is not None:
                    fields["date_placed"] = dto.created_at
                if total is not None:
                    fields["total_amount"] = mapper.cents_to_decimal(total.cents)
                    fields["currency"] = total.currency
                changed = _apply(order, fields)
                if self._item_signature(self._existing_item_rows(order)) != self._item_signature(item_rows):
                    order.items = [OrderItem(**row) for row in item_rows]
                    changed = True
                if changed:
                    stats.updated += 1
            except Exception as e:
                stats.failed += 1
                logger.error(f"Failed to upsert order {dto.id}: {e}", exc_info=True)

        self._record("orders", stats)
        return stats

    async def get_order(self, cardtrader_order_id: int) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.cardtrader_order_id == cardtrader_order_id)
        )
        return result.scalar_one_or_none()
