"""
Typed CardTrader V2 records.

The client validates every response straight into these models, so callers
never handle raw dictionaries. Unknown fields are ignored; missing optional
fields take their defaults.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class CardTraderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class GameDTO(CardTraderModel):
    id: int
    name: str = ""
    display_name: Optional[str] = None


class ExpansionDTO(CardTraderModel):
    id: int
    game_id: int
    name: Optional[str] = None
    code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("code", "abbreviation")
    )


class BlueprintDTO(CardTraderModel):
    id: int
    name: str = ""
    version: Optional[str] = None
    game_id: Optional[int] = None
    category_id: Optional[int] = None
    expansion_id: Optional[int] = None
    image_url: Optional[str] = None
    fixed_properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("fixed_properties", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or {}


class PropertyDTO(CardTraderModel):
    name: str = ""
    type: str = ""
    possible_values: List[Any] = Field(default_factory=list)

    @field_validator("possible_values", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or []


class CategoryDTO(CardTraderModel):
    id: int
    name: str = ""
    game_id: int
    properties: List[PropertyDTO] = Field(default_factory=list)

    @field_validator("properties", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or []


class ProductDTO(CardTraderModel):
    """One row of ``GET products/export``."""

    id: int
    blueprint_id: int
    quantity: int = 0
    price_cents: int = 0
    price_currency: Optional[str] = None
    properties_hash: Dict[str, Any] = Field(default_factory=dict)
    user_data_field: Optional[str] = None

    @field_validator("properties_hash", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or {}


class MoneyDTO(CardTraderModel):
    cents: int = 0
    currency: Optional[str] = None


class OrderItemDTO(CardTraderModel):
    id: Optional[int] = None
    product_id: Optional[int] = None
    blueprint_id: Optional[int] = None
    name: Optional[str] = None
    expansion: Optional[str] = None
    quantity: int = 0
    seller_price: Optional[MoneyDTO] = None
    properties: Optional[Dict[str, Any]] = None

    @field_validator("expansion", mode="before")
    @classmethod
    def _expansion_name(cls, v: Any) -> Any:
        # Some payloads nest the expansion as an object
        if isinstance(v, dict):
            return v.get("name_en") or v.get("name")
        return v


class OrderDTO(CardTraderModel):
    id: int
    state: Optional[str] = None
    created_at: Optional[datetime] = None
    seller_total: Optional[MoneyDTO] = None
    seller_subtotal: Optional[MoneyDTO] = None
    order_items: List[OrderItemDTO] = Field(default_factory=list)

    @field_validator("order_items", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or []


class WebhookDTO(CardTraderModel):
    """Inbound webhook notification body."""

    id: str
    time: Optional[int] = None
    cause: str
    object_class: Optional[str] = None
    object_id: Optional[int] = None
    mode: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class CreateListingDTO(CardTraderModel):
    """Outbound body of ``POST products``."""

    blueprint_id: int
    price: float
    quantity: int
    user_data_field: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class ListingResultDTO(CardTraderModel):
    product_id: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict)
