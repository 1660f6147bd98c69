"""
Field-level mapping between CardTrader records and local rows.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

from cardsync.services.cardtrader_dtos import (
    BlueprintDTO,
    CreateListingDTO,
    ExpansionDTO,
    GameDTO,
    ProductDTO,
)

DEFAULT_BLUEPRINT_VERSION = "Regular"
DEFAULT_LOCATION = "Unknown"

LANGUAGE_PROPERTY_KEYS = ("language", "mtg_language", "pokemon_language", "yugioh_language")

LANGUAGE_CODES = {
    "english": "en",
    "french": "fr",
    "german": "de",
    "spanish": "es",
    "italian": "it",
    "portuguese": "pt",
    "japanese": "ja",
    "chinese": "zh",
    "russian": "ru",
    "korean": "ko",
}

_CENTS = Decimal("0.01")


def cents_to_decimal(cents: Optional[int]) -> Decimal:
    if not cents:
        return Decimal("0.00")
    return (Decimal(cents) / 100).quantize(_CENTS, rounding=ROUND_HALF_UP)


def game_code(dto: GameDTO) -> str:
    return dto.display_name or dto.name or ""


def generate_abbreviation(name: Optional[str]) -> str:
    """First three non-whitespace characters, uppercased; "N/A" if none."""
    if not name or not name.strip():
        return "N/A"
    letters = "".join(ch for ch in name if not ch.isspace())[:3]
    return letters.upper() or "N/A"


def expansion_name(dto: ExpansionDTO) -> str:
    if dto.name and dto.name.strip():
        return dto.name
    return f"Expansion {dto.id}"


def expansion_code(dto: ExpansionDTO) -> str:
    if dto.code and dto.code.strip():
        return dto.code
    return generate_abbreviation(expansion_name(dto))


def blueprint_rarity(dto: BlueprintDTO) -> Optional[str]:
    for key, value in dto.fixed_properties.items():
        if key.lower() in ("mtg_rarity", "rarity") and value is not None:
            return str(value)
    return None


def blueprint_version(dto: BlueprintDTO) -> str:
    if dto.version and dto.version.strip():
        return dto.version
    return DEFAULT_BLUEPRINT_VERSION


def property_value_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def flag_from_properties(properties: Mapping[str, Any], marker: str) -> bool:
    """True when any property whose key contains ``marker`` is set."""
    return any(marker in key.lower() and _truthy(value) for key, value in properties.items())


def product_condition(dto: ProductDTO) -> str:
    value = dto.properties_hash.get("condition")
    return str(value) if value is not None else ""


def product_language(dto: ProductDTO) -> str:
    for key in LANGUAGE_PROPERTY_KEYS:
        value = dto.properties_hash.get(key)
        if value:
            return str(value)
    return ""


def product_fields(dto: ProductDTO) -> Dict[str, Any]:
    """Mutable InventoryItem fields taken from an exported product."""
    return {
        "quantity": dto.quantity,
        "price": cents_to_decimal(dto.price_cents),
        "condition": product_condition(dto),
        "language": product_language(dto),
        "is_foil": flag_from_properties(dto.properties_hash, "foil"),
        "is_signed": flag_from_properties(dto.properties_hash, "signed"),
        "location": (dto.user_data_field or "").strip() or DEFAULT_LOCATION,
    }


def language_code(language: Optional[str]) -> str:
    """ISO code for a language name; codes pass through; default "en"."""
    if not language:
        return "en"
    normalized = language.strip().lower()
    if normalized in LANGUAGE_CODES:
        return LANGUAGE_CODES[normalized]
    if normalized in LANGUAGE_CODES.values():
        return normalized
    return "en"


def build_user_data_field(location: Optional[str], tag: Optional[str]) -> Optional[str]:
    parts = [part.strip() for part in (location, tag) if part and part.strip()]
    return " ".join(parts) or None


def listing_properties(condition: str, language: str, is_foil: bool, is_signed: bool) -> Dict[str, Any]:
    return {
        "condition": condition,
        "mtg_language": language_code(language),
        "mtg_foil": is_foil,
        "signed": is_signed,
        "altered": False,
    }


def build_listing_payload(
    cardtrader_blueprint_id: int,
    price: Decimal,
    quantity: int,
    condition: str,
    language: str,
    is_foil: bool,
    is_signed: bool,
    location: Optional[str] = None,
    tag: Optional[str] = None,
) -> CreateListingDTO:
    return CreateListingDTO(
        blueprint_id=cardtrader_blueprint_id,
        price=float(price),
        quantity=quantity,
        user_data_field=build_user_data_field(location, tag),
        properties=listing_properties(condition, language, is_foil, is_signed),
    )
