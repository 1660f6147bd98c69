"""
Selective CardTrader synchronization.

A run executes the requested entity phases in dependency order
(games, expansions, blueprints, categories, inventory, orders). Each phase
fetches through the gateway, merges through the upsert engine and commits in
its own session; an exception inside one phase is recorded on that phase and
the run moves on. Cancelling the task aborts the phase in flight (its session
is rolled back) while earlier phases stay committed.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardsync.core.exceptions import (
    CardTraderAPIError,
    CardTraderServiceUnavailableError,
    RateLimitError,
)
from cardsync.core.logging import LogContext, log_performance
from cardsync.core.prometheus_metrics import sync_phase_failures_total, sync_run_duration_seconds
from cardsync.models.catalog import Expansion, Game
from cardsync.services.cardtrader_client import CardTraderClient
from cardsync.services.sync_lease import SyncLease
from cardsync.services.upsert_engine import EntityUpsertEngine, UpsertStats

logger = logging.getLogger(__name__)

NO_SELECTION_MESSAGE = "No entities selected for synchronization"

# Fixed execution order, independent of how the selection was built
ENTITY_ORDER = ("games", "expansions", "blueprints", "categories", "properties", "inventory", "orders")


@dataclass
class SyncSelection:
    games: bool = False
    categories: bool = False
    expansions: bool = False
    blueprints: bool = False
    properties: bool = False
    inventory: bool = False
    orders: bool = False

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    @classmethod
    def full(cls) -> "SyncSelection":
        return cls(**{f.name: True for f in fields(cls)})


@dataclass
class EntitySyncResult:
    was_requested: bool = False
    added: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    error_message: Optional[str] = None

    def apply(self, stats: UpsertStats) -> None:
        self.added += stats.added
        self.updated += stats.updated
        self.failed += stats.failed
        self.skipped += stats.skipped


@dataclass
class SyncResult:
    run_id: str
    entities: Dict[str, EntitySyncResult] = field(
        default_factory=lambda: {name: EntitySyncResult() for name in ENTITY_ORDER}
    )
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    def total(self, outcome: str) -> int:
        return sum(getattr(result, outcome) for result in self.entities.values())

    @property
    def totals(self) -> Dict[str, int]:
        return {outcome: self.total(outcome) for outcome in ("added", "updated", "failed", "skipped")}

    @property
    def success(self) -> bool:
        return self.error_message is None and self.total("failed") == 0


class SyncOrchestrator:
    """Runs selective syncs against one CardTrader client."""

    def __init__(
        self,
        client: CardTraderClient,
        session_factory: async_sessionmaker[AsyncSession],
        lease: Optional[SyncLease] = None,
        trigger: str = "manual",
    ):
        self.client = client
        self.session_factory = session_factory
        self.lease = lease
        self.trigger = trigger

    async def sync(self, selection: SyncSelection) -> SyncResult:
        """
        Run the selected phases.

        Raises:
            SyncInProgressError: a lease is configured and another run holds it
        """
        result = SyncResult(run_id=uuid.uuid4().hex)

        if selection.is_empty():
            result.error_message = NO_SELECTION_MESSAGE
            result.finished_at = result.started_at
            logger.warning(NO_SELECTION_MESSAGE)
            return result

        if self.lease is not None:
            async with self.lease:
                await self._run(selection, result)
        else:
            await self._run(selection, result)
        return result

    async def _run(self, selection: SyncSelection, result: SyncResult) -> None:
        started = time.perf_counter()
        with LogContext(sync_run_id=result.run_id):
            logger.info(
                "Starting selective sync",
                extra={"selection": {f.name: getattr(selection, f.name) for f in fields(selection)},
                       "trigger": self.trigger},
            )

            phases: List[tuple] = [
                ("games", selection.games, self._sync_games),
                ("expansions", selection.expansions, self._sync_expansions),
                ("blueprints", selection.blueprints, self._sync_blueprints),
                ("categories", selection.categories, self._sync_categories),
                ("inventory", selection.inventory, self._sync_inventory),
                ("orders", selection.orders, self._sync_orders),
            ]
            if selection.properties:
                # Properties arrive nested in categories
                result.entities["properties"].was_requested = True
                logger.info("Properties are synced as part of the categories phase")

            for name, requested, phase in phases:
                if requested:
                    await self._run_phase(name, phase, result)

            elapsed = time.perf_counter() - started
            result.finished_at = datetime.now(timezone.utc)
            result.duration_seconds = elapsed
            sync_run_duration_seconds.labels(trigger=self.trigger).observe(elapsed)
            log_performance(logger, "selective_sync", elapsed, **result.totals)

    async def _run_phase(
        self,
        name: str,
        phase: Callable[[AsyncSession, UpsertStats], Awaitable[None]],
        result: SyncResult,
    ) -> None:
        entity = result.entities[name]
        entity.was_requested = True
        async with self.session_factory() as session:
            # Counts reach the result only once the phase is committed
            stats = UpsertStats()
            try:
                await phase(session, stats)
                await session.commit()
                entity.apply(stats)
                logger.info(
                    f"Phase {name} committed",
                    extra={"entity": name, "added": entity.added, "updated": entity.updated,
                           "failed": entity.failed, "skipped": entity.skipped},
                )
            except Exception as e:
                await session.rollback()
                entity.failed += 1
                entity.error_message = str(e)
                sync_phase_failures_total.labels(entity=name).inc()
                logger.error(f"Phase {name} failed: {e}", exc_info=True)
                if isinstance(e, CardTraderAPIError) and result.error_message is None:
                    result.error_message = f"CardTrader API unavailable: {e.detail}"

    # Phases

    async def _sync_games(self, session: AsyncSession, stats: UpsertStats) -> None:
        records = await self.client.get_games()
        stats.merge(await EntityUpsertEngine(session).upsert_games(records))

    async def _sync_expansions(self, session: AsyncSession, stats: UpsertStats) -> None:
        records = await self.client.get_expansions()
        stats.merge(await EntityUpsertEngine(session).upsert_expansions(records))

    async def _sync_blueprints(self, session: AsyncSession, stats: UpsertStats) -> None:
        result = await session.execute(
            select(Expansion)
            .join(Game, Expansion.game_id == Game.id)
            .where(Game.is_enabled.is_(True))
            .order_by(Expansion.id)
        )
        expansions = list(result.scalars())
        logger.info(f"Syncing blueprints for {len(expansions)} expansion(s) of enabled games")

        engine = EntityUpsertEngine(session)
        for expansion in expansions:
            try:
                records = await self.client.get_blueprints(expansion.cardtrader_id)
            except (CardTraderServiceUnavailableError, RateLimitError):
                # Every further call would fail the same way
                raise
            except Exception as e:
                stats.failed += 1
                logger.error(
                    f"Failed to fetch blueprints for expansion {expansion.cardtrader_id}: {e}",
                    extra={"expansion_id": expansion.cardtrader_id},
                )
                continue
            stats.merge(await engine.upsert_blueprints(records, expansion))

    async def _sync_categories(self, session: AsyncSession, stats: UpsertStats) -> None:
        records = await self.client.get_categories()
        stats.merge(await EntityUpsertEngine(session).upsert_categories(records))

    async def _sync_inventory(self, session: AsyncSession, stats: UpsertStats) -> None:
        records = await self.client.get_products_export()
        stats.merge(await EntityUpsertEngine(session).upsert_products(records))

    async def _sync_orders(self, session: AsyncSession, stats: UpsertStats) -> None:
        records = await self.client.get_orders()
        stats.merge(await EntityUpsertEngine(session).upsert_orders(records))
