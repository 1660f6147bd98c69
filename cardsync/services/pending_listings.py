"""
Pending listing queue: offers staged locally, then published to CardTrader.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardsync.core.exceptions import ListingAlreadySyncedError, NotFoundError, ValidationError
from cardsync.core.logging import log_operation
from cardsync.core.prometheus_metrics import listing_publish_total
from cardsync.models.catalog import Blueprint
from cardsync.models.inventory import PendingListing
from cardsync.services import cardtrader_mapper as mapper
from cardsync.services.cardtrader_client import CardTraderClient

logger = logging.getLogger(__name__)

GRADING_FIELDS = (
    "grading_score",
    "grading_condition_code",
    "grading_centering",
    "grading_corners",
    "grading_edges",
    "grading_surface",
    "grading_confidence",
    "grading_images_count",
)

EDITABLE_FIELDS = (
    "blueprint_id",
    "quantity",
    "selling_price",
    "purchase_price",
    "condition",
    "language",
    "is_foil",
    "is_signed",
    "location",
    "tag",
)


@dataclass
class PublishSummary:
    total: int = 0
    success: int = 0
    errors: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)


class PendingListingQueue:
    """Stage, edit and publish listings within one session."""

    def __init__(self, session: AsyncSession, client: Optional[CardTraderClient] = None):
        self.session = session
        self.client = client

    async def _require_blueprint(self, blueprint_id: int) -> Blueprint:
        blueprint = await self.session.get(Blueprint, blueprint_id)
        if blueprint is None:
            raise ValidationError("Blueprint not found", field="blueprint_id", value=blueprint_id)
        return blueprint

    async def _find_duplicate(self, data: Mapping[str, Any]) -> Optional[PendingListing]:
        result = await self.session.execute(
            select(PendingListing)
            .where(
                PendingListing.is_synced.is_(False),
                PendingListing.blueprint_id == data["blueprint_id"],
                PendingListing.condition == data["condition"],
                PendingListing.language == data["language"],
                PendingListing.selling_price == data["selling_price"],
                PendingListing.is_foil == data["is_foil"],
                PendingListing.is_signed == data["is_signed"],
            )
            .order_by(PendingListing.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def stage(self, data: Mapping[str, Any]) -> Tuple[PendingListing, bool]:
        """
        Stage a listing, merging into an unsynced duplicate when one exists.

        Returns:
            (listing, created) where created is False for a merge
        """
        await self._require_blueprint(data["blueprint_id"])

        existing = await self._find_duplicate(data)
        if existing is not None:
            existing.quantity += data["quantity"]
            if data.get("grading_score") is not None:
                for name in GRADING_FIELDS:
                    setattr(existing, name, data.get(name))
            await self.session.flush()
            logger.info(
                f"Merged staged listing into {existing.id}, quantity now {existing.quantity}",
                extra={"listing_id": existing.id},
            )
            return existing, False

        listing = PendingListing(
            **{name: data.get(name) for name in EDITABLE_FIELDS},
            **{name: data.get(name) for name in GRADING_FIELDS},
            is_synced=False,
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(listing)
        await self.session.flush()
        logger.info(f"Staged listing {listing.id}", extra={"listing_id": listing.id})
        return listing, True

    async def list(
        self,
        is_synced: Optional[bool] = None,
        has_error: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[PendingListing], int]:
        query = select(PendingListing)
        if is_synced is not None:
            query = query.where(PendingListing.is_synced.is_(is_synced))
        if has_error:
            query = query.where(PendingListing.sync_error.is_not(None))

        total = await self.session.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.session.execute(
            query.order_by(PendingListing.created_at.desc(), PendingListing.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars()), total or 0

    async def get(self, listing_id: int) -> PendingListing:
        listing = await self.session.get(PendingListing, listing_id)
        if listing is None:
            raise NotFoundError("PendingListing", listing_id)
        return listing

    async def update(self, listing_id: int, changes: Mapping[str, Any]) -> PendingListing:
        listing = await self.get(listing_id)
        if listing.is_synced:
            raise ListingAlreadySyncedError(listing_id, "update")
        if "blueprint_id" in changes and changes["blueprint_id"] != listing.blueprint_id:
            await self._require_blueprint(changes["blueprint_id"])

        for name in EDITABLE_FIELDS:
            if name in changes:
                setattr(listing, name, changes[name])
        listing.sync_error = None
        await self.session.flush()
        log_operation(logger, "pending_listing.update", listing_id=listing_id, fields=sorted(changes))
        return listing

    async def delete(self, listing_id: int) -> None:
        listing = await self.get(listing_id)
        if listing.is_synced:
            raise ListingAlreadySyncedError(listing_id, "delete")
        await self.session.delete(listing)
        await self.session.flush()
        log_operation(logger, "pending_listing.delete", listing_id=listing_id)

    async def publish_all(self) -> PublishSummary:
        """
        Publish every unsynced listing.

        Each row is committed on its own so a cancelled or crashed run keeps
        the rows it already published. Failures are stored on the row and the
        loop moves on.
        """
        if self.client is None:
            raise RuntimeError("PendingListingQueue.publish_all needs a CardTrader client")

        result = await self.session.execute(
            select(PendingListing, Blueprint.cardtrader_id)
            .join(Blueprint, PendingListing.blueprint_id == Blueprint.id)
            .where(PendingListing.is_synced.is_(False))
            .order_by(PendingListing.id)
        )
        rows = result.all()
        summary = PublishSummary(total=len(rows))

        for listing, cardtrader_blueprint_id in rows:
            payload = mapper.build_listing_payload(
                cardtrader_blueprint_id=cardtrader_blueprint_id,
                price=listing.selling_price,
                quantity=listing.quantity,
                condition=listing.condition,
                language=listing.language,
                is_foil=listing.is_foil,
                is_signed=listing.is_signed,
                location=listing.location,
                tag=listing.tag,
            )
            try:
                created = await self.client.create_listing(payload)
            except Exception as e:
                listing.sync_error = str(e)
                summary.errors += 1
                summary.failures.append({"id": listing.id, "error": str(e)})
                listing_publish_total.labels(outcome="error").inc()
                logger.error(f"Error publishing pending listing {listing.id}: {e}")
            else:
                listing.is_synced = True
                listing.synced_at = datetime.now(timezone.utc)
                listing.cardtrader_product_id = created.product_id
                listing.sync_error = None
                summary.success += 1
                listing_publish_total.labels(outcome="success").inc()
                if created.product_id is None:
                    logger.warning(f"CardTrader returned no product id for listing {listing.id}")
            await self.session.commit()

        logger.info(
            f"Publish completed. Success: {summary.success}, Errors: {summary.errors}",
            extra={"total": summary.total},
        )
        return summary
