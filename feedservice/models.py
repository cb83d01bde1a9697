"""Canonical product entity and its offers.

A `Product` is one sellable item variant (one color of one SKU). Records for
the same variant found through different feeds share an identity key and are
merged into a single `Product` with one `Retailer` entry per seller link.
"""

import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from feedservice.config import (
    DISCOUNT_BIN_SIZE,
    GENDERS,
    IN_STOCK,
    OUT_OF_STOCK,
    SIZE_DELIMITERS,
    SUPPORTED_LOCALES,
)
from feedservice.errors import IdentityMissingError, MergeError, StructuralError, ValidationError
from feedservice.text import collate_strings, fnv1a_64, hash_key, parse_price, sanitize_hard, unique_names

__all__ = [
    "EXPORT_HEADER",
    "Retailer",
    "ProviderCategory",
    "Product",
    "discount_bins",
]

# Column set of the flat tabular export, one row per in-stock offer
EXPORT_HEADER: List[str] = [
    "Name",
    "SKU",
    "Description",
    "Brand",
    "ExtractedColors",
    "OriginalColor",
    "Gender",
    "ImageURL",
    "ExtractedCategories",
    "OriginalCategory",
    "Store",
    "Availability",
    "StoreLink",
    "RegularPrice",
    "SalesPrice",
    "Discount",
    "DiscountBins",
    "Size",
    "Delivery",
    "Shipping Cost",
    "LastWeeksConversions",
]

# Ranking weights
_LEADS_WEIGHT = 2
_CONVERSIONS_WEIGHT = 5
_FEATURES_WEIGHT = 10


def discount_bins(lowest: float, highest: float, bin_size: int = DISCOUNT_BIN_SIZE) -> Tuple[int, List[str]]:
    """Discount in whole percent and its bin labels.

    90 vs 100 with bin size 10 gives (10, ["10%"]); 65 vs 100 gives
    (35, ["10%", "20%", "30%"]). Equal prices give (0, []). Any real
    difference counts as at least 1%.
    """
    if bin_size < 1:
        bin_size = DISCOUNT_BIN_SIZE
    if highest <= 0 or lowest <= 0 or lowest >= highest:
        return 0, []

    discount = max(1, math.floor(round((highest - lowest) / highest * 100, 6)))
    bins = [f"{i * bin_size}%" for i in range(1, discount // bin_size + 1)]
    return discount, bins


@dataclass
class Retailer:
    """One seller's offer for a product."""

    link: str
    name: str = ""
    price: str = ""
    highest_price: float = 0.0
    currency: str = ""
    availability: str = OUT_OF_STOCK
    delivery_time: str = ""
    shipping_cost: str = ""
    logo: str = ""
    is_crawler: bool = False
    sizes: List[str] = field(default_factory=list)

    @property
    def key(self) -> int:
        return hash_key(self.link)

    @property
    def in_stock(self) -> bool:
        return self.availability == IN_STOCK

    @property
    def price_value(self) -> Optional[float]:
        return parse_price(self.price)


@dataclass(frozen=True)
class ProviderCategory:
    """Category information as the feed provider stated it."""

    provider_name: str
    name: str
    gender: str  # one-letter tag: w, m or u
    provider_category_id: int = 0

    @property
    def identity(self) -> Tuple[str, str]:
        """One category entity per (name, gender) pair."""
        return self.name.strip().lower(), self.gender


@dataclass
class Product:
    """The canonical entity collated from all feeds."""

    name: str = ""
    description: str = ""
    short_description: str = ""
    brand: str = ""
    image_url: str = ""
    language: str = ""
    sku: str = ""
    color: str = ""
    material: str = ""
    gender: str = ""

    retailers: List[Retailer] = field(default_factory=list)
    highest_price: float = 0.0
    lowest_price: float = 0.0
    discount: int = 0
    discount_bins: List[str] = field(default_factory=list)

    color_groups: Set[str] = field(default_factory=set)
    patterns: Set[str] = field(default_factory=set)
    provider_categories: List[ProviderCategory] = field(default_factory=list)
    original_categories: List[str] = field(default_factory=list)

    from_feeds: Set[str] = field(default_factory=set)
    from_programs: Set[str] = field(default_factory=set)
    retailer_map: Set[int] = field(default_factory=set)

    key: int = 0
    active: bool = False
    last_seen: int = 0

    website_features: int = 0
    expected_value: float = 0.0
    leads_7d: int = 0
    conversions_7d: int = 0
    commission_7d: float = 0.0

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def identity(self) -> str:
        """Composite of SKU and hard-sanitized color the key is hashed from."""
        color = sanitize_hard(self.color)
        if not self.sku.strip() or not color:
            raise IdentityMissingError(
                f"Missing SKU or color to construct key - sku={self.sku!r} color={self.color!r}"
            )
        return f"{self.sku.strip()}-{color}"

    def set_key(self) -> int:
        # A zero hash would read as "unset"
        self.key = fnv1a_64(self.identity()) or 1
        return self.key

    # ------------------------------------------------------------------
    # Derived fields
    # ------------------------------------------------------------------

    def add_retailer(self, retailer: Retailer) -> bool:
        """Append an offer unless its link is already known."""
        k = retailer.key
        if k in self.retailer_map:
            return False
        self.retailers.append(retailer)
        self.retailer_map.add(k)
        return True

    def _offer_prices(self) -> List[float]:
        offers = [r for r in self.retailers if not r.is_crawler] or self.retailers
        prices: List[float] = []
        for r in offers:
            price = r.price_value
            if price is None:
                continue
            prices.append(price)
            if r.highest_price > price:
                prices.append(round(r.highest_price, 2))
        return prices

    def calculate_discounts(self, bin_size: int = DISCOUNT_BIN_SIZE) -> None:
        """Fill missing price bounds from the offers and recompute discount bins."""
        if self.highest_price * self.lowest_price == 0:
            prices = self._offer_prices()
            if prices:
                if not self.highest_price:
                    self.highest_price = max(prices)
                if not self.lowest_price:
                    self.lowest_price = min(prices)

        if self.highest_price < self.lowest_price:
            self.highest_price = self.lowest_price

        self.discount, self.discount_bins = discount_bins(self.lowest_price, self.highest_price, bin_size)

    def refresh(self, bin_size: int = DISCOUNT_BIN_SIZE) -> None:
        """Recompute every derived field. Safe to call repeatedly.

        Raises:
            IdentityMissingError: If no key is set and none can be built
        """
        if not self.key:
            self.set_key()

        self.calculate_discounts(bin_size)

        # Any non-crawler offer in stock keeps the product active
        self.active = any(r.in_stock for r in self.retailers if not r.is_crawler)

        if len(self.retailers) != len(self.retailer_map):
            self.retailer_map = {r.key for r in self.retailers}

        self.last_seen = int(time.time())

    def ranking(self) -> int:
        return (
            self.website_features * _FEATURES_WEIGHT
            + self.leads_7d * _LEADS_WEIGHT
            + self.conversions_7d * _CONVERSIONS_WEIGHT
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge_price_bounds(self, other: "Product") -> None:
        # Bounds come from the offers kept after the merge; crawler offers
        # and offers dropped as duplicate links carry no price.
        prices = self._offer_prices()
        if prices:
            self.lowest_price = min(prices)
            self.highest_price = max(prices)
            return

        self.highest_price = max(self.highest_price, other.highest_price)
        lows = [p for p in (self.lowest_price, other.lowest_price) if p > 0]
        self.lowest_price = min(lows) if lows else self.highest_price
        if self.highest_price < self.lowest_price:
            self.highest_price = self.lowest_price

    def merge_with(self, other: "Product", bin_size: int = DISCOUNT_BIN_SIZE) -> None:
        """Consolidate another record of the same variant into this one.

        Existing descriptive values win, gaps are filled from `other`. Offers,
        categories and provenance are unioned; engagement counters add up.

        Raises:
            MergeError: If the merged product fails refresh or validation
        """
        for attr in (
            "name", "description", "short_description", "brand", "image_url",
            "language", "sku", "color", "material", "gender",
        ):
            setattr(self, attr, collate_strings(getattr(self, attr), getattr(other, attr)))

        if len(self.retailer_map) != len(self.retailers):
            self.retailer_map = {r.key for r in self.retailers}
        for retailer in other.retailers:
            self.add_retailer(retailer)
        self._merge_price_bounds(other)

        self.color_groups |= other.color_groups
        self.patterns |= other.patterns
        self.from_feeds |= other.from_feeds
        self.from_programs |= other.from_programs

        known = {c.identity for c in self.provider_categories}
        for category in other.provider_categories:
            if category.identity not in known:
                self.provider_categories.append(category)
                known.add(category.identity)
        self.original_categories = unique_names(self.original_categories + other.original_categories)

        self.website_features += other.website_features
        self.leads_7d += other.leads_7d
        self.conversions_7d += other.conversions_7d
        self.commission_7d += other.commission_7d
        self.expected_value = max(self.expected_value, other.expected_value)

        try:
            self.refresh(bin_size)
            self.validate()
        except (IdentityMissingError, ValidationError) as e:
            raise MergeError(f"Update after merge - {self.name} - {e}") from e

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the completeness contract.

        Raises:
            ValidationError: Naming the first failing field
            StructuralError: If offers and their index disagree or sizes are unsplit
        """
        mandatory = {
            "name": self.name,
            "sku": self.sku,
            "color": self.color,
            "description": collate_strings(self.description, self.short_description),
            "gender": self.gender,
            "brand": self.brand,
            "language": self.language,
            "image_url": self.image_url,
        }
        for name, value in mandatory.items():
            if not value or not str(value).strip():
                raise ValidationError(name, f"{name} missing - {self.name}")

        if self.gender not in GENDERS:
            raise ValidationError("gender", f"Unknown gender {self.gender!r}")

        if self.language not in SUPPORTED_LOCALES:
            raise ValidationError("language", f"Unknown language {self.language!r}")

        self._validate_retailers()
        self._validate_prices()

        if not self.provider_categories and not self.original_categories:
            raise ValidationError("categories", f"Categories missing - {self.name}")

        for category in self.provider_categories:
            if not category.gender or not category.name.strip():
                raise ValidationError("provider_categories", f"Category incomplete - {category}")

    def _validate_retailers(self) -> None:
        if len(self.retailer_map) != len(self.retailers):
            raise StructuralError(
                "retailer_map",
                f"Retailer map inconsistent - {len(self.retailer_map)} keys for "
                f"{len(self.retailers)} retailers - {self.name}",
            )

        if not self.retailers:
            raise ValidationError("retailers", f"No retailers - {self.name}")

        for retailer in self.retailers:
            if not retailer.link or not retailer.availability:
                raise ValidationError("retailers", f"Retailer fields missing - {retailer.name}")
            if not retailer.sizes:
                raise ValidationError("sizes", f"Sizes missing for retailer {retailer.name}")
            for size in retailer.sizes:
                if any(d in size for d in SIZE_DELIMITERS):
                    raise StructuralError("sizes", f"Sizes were not split correctly - {size!r}")

    def _validate_prices(self) -> None:
        if self.highest_price * self.lowest_price == 0 or self.highest_price < self.lowest_price:
            raise ValidationError(
                "prices", f"Prices inconsistent - {self.lowest_price} / {self.highest_price}"
            )

        if self.lowest_price != self.highest_price:
            if len(set(self._offer_prices())) == 1:
                raise ValidationError(
                    "prices", "Single observed price but lowest and highest price differ"
                )
            if self.discount == 0 or not self.discount_bins:
                raise ValidationError("discount", "Prices and discounts inconsistent")

    # ------------------------------------------------------------------
    # Export and serialization
    # ------------------------------------------------------------------

    def as_rows(self, bin_size: int = DISCOUNT_BIN_SIZE) -> List[List[str]]:
        """Flat export rows, one per in-stock offer."""
        if self.gender not in GENDERS:
            raise ValidationError("gender", f"Product does not qualify, gender is {self.gender!r}")

        colors = ",".join(sorted(self.color_groups))
        categories = ",".join(unique_names(c.name for c in self.provider_categories))

        rows: List[List[str]] = []
        for retailer in self.retailers:
            if not retailer.in_stock:
                continue

            price = retailer.price_value or 0.0
            discount, bins = 0, []
            sales_price = ""
            if price and price < self.highest_price:
                sales_price = retailer.price
                regular_price = f"{self.highest_price:.2f}"
                discount, bins = discount_bins(price, self.highest_price, bin_size)
            else:
                regular_price = retailer.price

            rows.append([
                self.name,
                self.sku,
                collate_strings(self.description, self.short_description),
                self.brand,
                colors,
                self.color,
                self.gender,
                self.image_url,
                categories,
                collate_strings(*self.original_categories),
                retailer.name,
                retailer.availability,
                retailer.link,
                regular_price,
                sales_price,
                str(discount),
                ",".join(bins),
                ",".join(retailer.sizes),
                retailer.delivery_time,
                retailer.shipping_cost,
                str(self.conversions_7d),
            ])
        return rows

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in ("color_groups", "patterns", "from_feeds", "from_programs", "retailer_map"):
            data[name] = sorted(data[name])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        data = dict(data)
        data["retailers"] = [Retailer(**r) for r in data.get("retailers", [])]
        data["provider_categories"] = [ProviderCategory(**c) for c in data.get("provider_categories", [])]
        for name in ("color_groups", "patterns", "from_feeds", "from_programs", "retailer_map"):
            data[name] = set(data.get(name, []))
        return cls(**data)
