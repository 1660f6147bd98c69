"""
Marketplace orders received from CardTrader (sync or webhook).
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import TIMESTAMP, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cardsync.models.base import Base, JSONType, TimestampMixin


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cardtrader_order_id: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        nullable=False,
        index=True,
        comment="CardTrader order id (upsert key)",
    )
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="pending")
    date_placed: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cardtrader_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cardtrader_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cardtrader_blueprint_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Raw CardTrader blueprint id, kept when no local blueprint matches",
    )
    blueprint_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("blueprints.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Local blueprint; NULL when the blueprint is not in the catalog",
    )
    name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    expansion_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    properties: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    order: Mapped[Order] = relationship(back_populates="items")
