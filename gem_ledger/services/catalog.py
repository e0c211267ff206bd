"""
Customization catalog configuration.

Maps (category, item_id) to gem prices. Read-only at runtime.
"""

from dataclasses import dataclass

from gem_ledger.exceptions import UnknownItemError
from gem_ledger.models.api import HEX_COLOR_PATTERN, CustomizationCategory, Rarity

CUSTOM_COLOR_ITEM_ID = "custom"
DEFAULT_CUSTOM_COLOR = "#FF6B6B"


@dataclass(frozen=True)
class FixedItem:
    """Catalog item with a fixed identity and price."""

    category: CustomizationCategory
    item_id: str
    price: int
    rarity: Rarity
    asset: str

    def __post_init__(self) -> None:
        """Validate item configuration."""
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")
        if not self.item_id:
            raise ValueError("Item ID required")


@dataclass(frozen=True)
class CustomColorItem:
    """Username color chosen freely by the user, sold at a fixed price."""

    price: int
    rarity: Rarity = Rarity.COMMON
    default_value: str = DEFAULT_CUSTOM_COLOR

    category = CustomizationCategory.USERNAME_COLOR
    item_id = CUSTOM_COLOR_ITEM_ID

    def __post_init__(self) -> None:
        """Validate item configuration."""
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")

    @staticmethod
    def is_valid_value(value: str | None) -> bool:
        return value is not None and HEX_COLOR_PATTERN.match(value) is not None


CatalogItem = FixedItem | CustomColorItem


def _color(item_id: str, price: int, rarity: Rarity, asset: str) -> FixedItem:
    return FixedItem(CustomizationCategory.USERNAME_COLOR, item_id, price, rarity, asset)


def _image(item_id: str, price: int, rarity: Rarity) -> FixedItem:
    return FixedItem(CustomizationCategory.PROFILE_IMAGE, item_id, price, rarity, item_id)


def _border(item_id: str, price: int, rarity: Rarity, asset: str) -> FixedItem:
    return FixedItem(CustomizationCategory.PROFILE_BORDER, item_id, price, rarity, asset)


_ITEMS: tuple[CatalogItem, ...] = (
    # Username colors - basic
    _color("solid", 3, Rarity.COMMON, "#3B82F6"),
    _color("gradient", 5, Rarity.COMMON, "#3B82F6"),
    # Username colors - special
    _color("rainbow", 10, Rarity.RARE, "rainbow"),
    _color("neon", 15, Rarity.RARE, "#00FF00"),
    _color("automne", 20, Rarity.RARE, "#FF6B35"),
    _color("galaxy", 25, Rarity.EPIC, "#4C1D95"),
    _color("fire", 30, Rarity.EPIC, "#DC2626"),
    _color("ice", 30, Rarity.EPIC, "#0EA5E9"),
    _color("lightning", 35, Rarity.EPIC, "#F59E0B"),
    _color("cosmic", 40, Rarity.LEGENDARY, "#7C3AED"),
    _color("diamond", 45, Rarity.LEGENDARY, "#10B981"),
    _color("legendary", 50, Rarity.LEGENDARY, "#F97316"),
    # Username colors - typographic styles
    _color("glitch", 35, Rarity.EPIC, "glitch"),
    _color("stardust", 40, Rarity.LEGENDARY, "stardust"),
    _color("nitro", 55, Rarity.LEGENDARY, "nitro"),
    _color("typewriter", 25, Rarity.EPIC, "typewriter"),
    CustomColorItem(price=8),
    # Profile images
    _image("FoxyMecha.webp", 2, Rarity.COMMON),
    _image("FoxyTerreur.webp", 10, Rarity.RARE),
    _image("FoxyHallo.webp", 10, Rarity.RARE),
    _image("FoxyFrenchies.webp", 50, Rarity.LEGENDARY),
    _image("FoxyPink.webp", 10, Rarity.RARE),
    _image("FoxyWaMe.webp", 2, Rarity.COMMON),
    _image("FoxyWaterMelon.webp", 2, Rarity.COMMON),
    _image("FoxySably.webp", 30, Rarity.EPIC),
    # Profile borders
    _border("gold", 3, Rarity.COMMON, "gold.svg"),
    _border("silver", 2, Rarity.COMMON, "silver.svg"),
    _border("eclair_green", 15, Rarity.RARE, "eclair_green.apng"),
    _border("fumee", 10, Rarity.RARE, "fumee.png"),
    _border("poison_orange", 20, Rarity.EPIC, "poison_orange.png"),
    _border("halloween_pumpkins_apng", 3, Rarity.COMMON, "halloween_pumpkins_apng.png"),
    _border("yumego_manga", 5, Rarity.COMMON, "yumego_manga.svg"),
)

# Catalog keyed by (category, item_id)
CATALOG: dict[tuple[CustomizationCategory, str], CatalogItem] = {
    (item.category, item.item_id): item for item in _ITEMS
}


def get_catalog_item(category: CustomizationCategory, item_id: str) -> CatalogItem:
    """
    Get catalog item by category and ID.

    Raises:
        UnknownItemError: If the item is not sold
    """
    item = CATALOG.get((category, item_id))
    if item is None:
        raise UnknownItemError(category.value, item_id)
    return item


def list_catalog_items(category: CustomizationCategory | None = None) -> list[CatalogItem]:
    """List catalog items in display order, optionally for one category."""
    return [item for item in _ITEMS if category is None or item.category == category]
