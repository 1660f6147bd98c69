"""
Owned stock and staged listings.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from cardsync.models.base import Base, TimestampMixin


class InventoryItem(TimestampMixin, Base):
    """A stock unit mirrored from the CardTrader product export."""

    __tablename__ = "inventory_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cardtrader_product_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        unique=True,
        nullable=True,
        index=True,
        comment="CardTrader product.id",
    )
    blueprint_id: Mapped[int] = mapped_column(
        ForeignKey("blueprints.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Listing price in major currency units",
    )
    condition: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    language: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    is_foil: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="Unknown",
        comment="From the product user_data_field (warehouse location)",
    )


class PendingListing(Base):
    """
    A marketplace offer staged locally until the next publish.

    Unsynced rows are unique on (blueprint, condition, language, price, foil,
    signed); staging a duplicate adds to the quantity of the existing row.
    """

    __tablename__ = "pending_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    blueprint_id: Mapped[int] = mapped_column(
        ForeignKey("blueprints.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    selling_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    condition: Mapped[str] = mapped_column(String(64), nullable=False)
    language: Mapped[str] = mapped_column(String(32), nullable=False)
    is_foil: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Publish state
    is_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cardtrader_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Grading results, overwritten by the latest staging that supplies a score
    grading_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_condition_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    grading_centering: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_corners: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_edges: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_surface: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    grading_images_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_pending_listings_dedup",
            "blueprint_id",
            "condition",
            "language",
            "selling_price",
            "is_foil",
            "is_signed",
            "is_synced",
        ),
    )
