"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cardsync.services.sync_orchestrator import EntitySyncResult, SyncResult, SyncSelection


# Sync

class SyncRequest(BaseModel):
    """Entity selection for a selective sync; phases run in dependency order."""

    games: bool = Field(False, description="Sync games")
    categories: bool = Field(False, description="Sync categories with nested properties")
    expansions: bool = Field(False, description="Sync expansions of known games")
    blueprints: bool = Field(False, description="Sync blueprints of every enabled expansion")
    properties: bool = Field(
        False,
        description="Properties are refreshed inside the categories phase",
    )
    inventory: bool = Field(False, description="Mirror the CardTrader product export")
    orders: bool = Field(False, description="Sync marketplace orders")

    model_config = ConfigDict(
        json_schema_extra={"example": {"games": True, "expansions": True}}
    )

    def to_selection(self) -> SyncSelection:
        return SyncSelection(**self.model_dump())


class EntitySyncResultResponse(BaseModel):
    was_requested: bool
    added: int
    updated: int
    failed: int
    skipped: int
    error_message: Optional[str] = None

    @classmethod
    def from_result(cls, result: EntitySyncResult) -> "EntitySyncResultResponse":
        return cls(
            was_requested=result.was_requested,
            added=result.added,
            updated=result.updated,
            failed=result.failed,
            skipped=result.skipped,
            error_message=result.error_message,
        )


class SyncResponse(BaseModel):
    message: str
    run_id: str
    success: bool
    added: int
    updated: int
    failed: int
    skipped: int
    games: EntitySyncResultResponse
    expansions: EntitySyncResultResponse
    blueprints: EntitySyncResultResponse
    categories: EntitySyncResultResponse
    properties: EntitySyncResultResponse
    inventory: EntitySyncResultResponse
    orders: EntitySyncResultResponse
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float
    error_message: Optional[str] = None

    @classmethod
    def from_result(cls, result: SyncResult, message: str) -> "SyncResponse":
        return cls(
            message=message,
            run_id=result.run_id,
            success=result.success,
            started_at=result.started_at,
            finished_at=result.finished_at,
            duration_seconds=result.duration_seconds,
            error_message=result.error_message,
            **result.totals,
            **{
                name: EntitySyncResultResponse.from_result(entity)
                for name, entity in result.entities.items()
            },
        )


# Pending listings

class GradingFields(BaseModel):
    grading_score: Optional[Decimal] = Field(None, ge=0)
    grading_condition_code: Optional[str] = Field(None, max_length=16)
    grading_centering: Optional[Decimal] = Field(None, ge=0)
    grading_corners: Optional[Decimal] = Field(None, ge=0)
    grading_edges: Optional[Decimal] = Field(None, ge=0)
    grading_surface: Optional[Decimal] = Field(None, ge=0)
    grading_confidence: Optional[Decimal] = Field(None, ge=0)
    grading_images_count: Optional[int] = Field(None, ge=0)


class PendingListingCreate(GradingFields):
    """Stage a listing; an unsynced duplicate gets its quantity increased instead."""

    blueprint_id: int = Field(..., description="Local blueprint id")
    quantity: int = Field(..., ge=1, examples=[2])
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=["12.50"])
    purchase_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    condition: str = Field(..., min_length=1, max_length=64, examples=["Near Mint"])
    language: str = Field(..., min_length=1, max_length=32, examples=["English"])
    is_foil: bool = False
    is_signed: bool = False
    location: Optional[str] = Field(None, max_length=255, examples=["Box 3"])
    tag: Optional[str] = Field(None, max_length=255)

    @field_validator("location", "tag")
    @classmethod
    def validate_string_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def to_listing_fields(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"price"})
        data["selling_price"] = self.price
        return data


class PartialUpdate(BaseModel):
    """Base for PUT bodies where omitted fields are left untouched."""

    # Columns that cannot be cleared; omit them instead of sending null
    NON_NULLABLE: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def validate_changes(self) -> "PartialUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        cleared = [
            name for name in self.NON_NULLABLE
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(cleared)}")
        return self


class PendingListingUpdate(PartialUpdate):
    """Partial update of an unsynced listing."""

    NON_NULLABLE = ("blueprint_id", "quantity", "price", "condition", "language", "is_foil", "is_signed")

    blueprint_id: Optional[int] = None
    quantity: Optional[int] = Field(None, ge=1)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    purchase_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    condition: Optional[str] = Field(None, min_length=1, max_length=64)
    language: Optional[str] = Field(None, min_length=1, max_length=32)
    is_foil: Optional[bool] = None
    is_signed: Optional[bool] = None
    location: Optional[str] = Field(None, max_length=255)
    tag: Optional[str] = Field(None, max_length=255)

    def to_listing_fields(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if "price" in data:
            data["selling_price"] = data.pop("price")
        return data


class PendingListingResponse(GradingFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    blueprint_id: int
    quantity: int
    selling_price: Decimal
    purchase_price: Optional[Decimal] = None
    condition: str
    language: str
    is_foil: bool
    is_signed: bool
    location: Optional[str] = None
    tag: Optional[str] = None
    is_synced: bool
    synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    cardtrader_product_id: Optional[int] = None
    created_at: Optional[datetime] = None


class StageListingResponse(BaseModel):
    message: str
    merged: bool
    listing: PendingListingResponse


class PendingListingPage(BaseModel):
    items: List[PendingListingResponse]
    total: int
    page: int
    page_size: int


class PublishFailure(BaseModel):
    id: int
    error: str


class PublishResponse(BaseModel):
    message: str
    total: int
    success: int
    errors: int
    failures: List[PublishFailure] = Field(default_factory=list)


# Inventory items

class InventoryItemUpdate(PartialUpdate):
    """Partial update of a mirrored inventory item; pushed to CardTrader when linked."""

    NON_NULLABLE = ("quantity", "price", "condition", "language", "is_foil", "is_signed", "location")

    quantity: Optional[int] = Field(None, ge=0)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    condition: Optional[str] = Field(None, min_length=1, max_length=64)
    language: Optional[str] = Field(None, min_length=1, max_length=32)
    is_foil: Optional[bool] = None
    is_signed: Optional[bool] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)

    def to_item_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class InventoryItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cardtrader_product_id: Optional[int] = None
    blueprint_id: int
    quantity: int
    price: Decimal
    condition: str
    language: str
    is_foil: bool
    is_signed: bool
    location: str
    updated_at: Optional[datetime] = None


class MarketplacePush(BaseModel):
    attempted: bool
    synced: bool
    error: Optional[str] = None


class InventoryItemUpdateResponse(BaseModel):
    message: str
    item: InventoryItemResponse
    cardtrader: MarketplacePush


class InventoryItemDeleteResponse(BaseModel):
    message: str
    cardtrader: MarketplacePush
