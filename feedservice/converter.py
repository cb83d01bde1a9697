"""Convert raw feed records into canonical products.

A raw record is a flat mapping of column name to value, as delivered by a
CSV download or an affiliate API. The converter copies what it needs into a
new `Product`; nothing in the product refers back to the record.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from feedservice.config import (
    AVAILABILITY_TERMS,
    DISCOUNT_BIN_SIZE,
    FEMALE_TERMS,
    FIELD_MAPPINGS,
    GENDER_TAGS,
    GENDERS,
    IN_STOCK,
    LANGUAGE_TO_LOCALE,
    MALE_TERMS,
    ONE_SIZE,
    OUT_OF_STOCK,
    PRICE_FIELDS,
    UNISEX_TERMS,
)
from feedservice.errors import (
    CategoryUnresolvedError,
    ColorUnresolvedError,
    GenderUnresolvedError,
    PriceMissingError,
)
from feedservice.locales import Locale
from feedservice.logging_config import get_logger
from feedservice.models import ProviderCategory, Product, Retailer
from feedservice.normalizer import TermMapping, VocabularyTable, find_terms, lookup_term, map_attributes
from feedservice.text import clean_html, collate_strings, parse_price, sanitize, split_list, split_sizes, unique_names

__all__ = [
    "RecordConverter",
    "resolve_prices",
    "resolve_gender",
    "resolve_availability",
    "resolve_language",
]

logger = get_logger("converter")


def _term_pattern(terms: Iterable[str]) -> "re.Pattern[str]":
    # Anchored at word start so "garment" never reads as "men"
    return re.compile(r"\b(?:" + "|".join(re.escape(t) for t in terms) + ")", re.IGNORECASE)


_WORD_RE = re.compile(r"\w+")

_GENDER_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    ("women", _term_pattern(FEMALE_TERMS)),
    ("men", _term_pattern(MALE_TERMS)),
    ("unisex", _term_pattern(UNISEX_TERMS)),
]


def resolve_prices(record: Mapping[str, Any], fields: Iterable[str] = PRICE_FIELDS) -> Tuple[float, float]:
    """Lowest and highest valid price over every price-bearing field.

    Raises:
        PriceMissingError: If no field holds a parseable, non-zero price
    """
    prices = [p for p in (parse_price(record.get(f)) for f in fields) if p is not None]
    if not prices:
        raise PriceMissingError(f"No valid price in {list(fields)}")
    return min(prices), max(prices)


def resolve_gender(values: Iterable[Optional[str]], genders: Optional[VocabularyTable] = None) -> str:
    """Resolve women/men/unisex from free-text values such as category paths.

    A gender vocabulary table, when given, is consulted first, word by word.
    Otherwise the keyword sets are tried in order female, male, unisex on
    every list token.
    Returns an empty string when nothing matched.
    """
    tokens: List[str] = []
    for value in values:
        tokens.extend(split_list(value))

    if genders:
        for token in tokens:
            words = set(_WORD_RE.findall(token.lower()))
            for gender in GENDERS:
                if words & set(genders.get(gender, ())):
                    return gender

    for token in tokens:
        for gender, pattern in _GENDER_PATTERNS:
            if pattern.search(token):
                return gender
    return ""


def resolve_availability(availability: Optional[str], stock_quantity: Optional[str] = None) -> str:
    """Normalize a raw availability flag to 'instock' or 'out of stock'."""
    value = sanitize(availability).lower()
    if value in AVAILABILITY_TERMS:
        return IN_STOCK
    if not value and stock_quantity:
        try:
            if int(float(stock_quantity)) > 0:
                return IN_STOCK
        except ValueError:
            pass
    return OUT_OF_STOCK


def resolve_language(language: Optional[str], locale: Optional[Locale] = None) -> str:
    """Map a raw language code onto a storefront locale, falling back to the feed's."""
    value = sanitize(language).lower()
    if value in LANGUAGE_TO_LOCALE:
        return LANGUAGE_TO_LOCALE[value]
    if locale is not None:
        return locale.locale
    return value


class RecordConverter:
    """Turns raw records of one provider into validated products.

    Args:
        provider_name: Name stored on provider categories and used as the
            default feed/program origin
        locale: Feed locale, used when a record has no language
        field_map: Canonical field -> raw keys, first non-empty value wins
        is_crawler: Mark offers as crawler-sourced
        bin_size: Discount bin size
    """

    def __init__(
        self,
        provider_name: str,
        locale: Optional[Locale] = None,
        field_map: Optional[Dict[str, List[str]]] = None,
        is_crawler: bool = False,
        bin_size: int = DISCOUNT_BIN_SIZE,
    ):
        self.provider_name = provider_name
        self.locale = locale
        self.field_map = field_map or FIELD_MAPPINGS
        self.is_crawler = is_crawler
        self.bin_size = bin_size

    def field(self, record: Mapping[str, Any], name: str) -> str:
        """First non-empty raw value for a canonical field."""
        return collate_strings(*(
            None if record.get(k) is None else str(record.get(k))
            for k in self.field_map.get(name, [])
        ))

    def fields(self, record: Mapping[str, Any], name: str) -> List[str]:
        """All non-empty raw values for a canonical field, in key order."""
        values = []
        for k in self.field_map.get(name, []):
            v = record.get(k)
            if v is not None and str(v).strip():
                values.append(str(v).strip())
        return unique_names(values)

    def convert(self, record: Mapping[str, Any], mapping: TermMapping) -> Product:
        """Convert one raw record.

        Raises:
            PriceMissingError, IdentityMissingError, ColorUnresolvedError,
            GenderUnresolvedError, CategoryUnresolvedError: The record is unusable
            ValidationError: The resulting product is incomplete
        """
        lowest, highest = resolve_prices(record)

        name = clean_html(self.field(record, "name"))
        brand = sanitize(self.field(record, "brand"))
        color = sanitize(self.field(record, "color"))

        product = Product(
            name=name,
            sku=sanitize(self.field(record, "sku")),
            color=color,
            description=clean_html(self.field(record, "description")),
            short_description=clean_html(self.field(record, "short_description")),
            brand=brand,
            image_url=self.field(record, "image_url"),
            language=resolve_language(self.field(record, "language"), self.locale),
            material=sanitize(self.field(record, "material")),
            highest_price=highest,
            lowest_price=lowest,
            expected_value=parse_price(self.field(record, "expected_value")) or 0.0,
        )
        product.set_key()

        product.color_groups = map_attributes(color, mapping.colors, strict=False)
        if not product.color_groups:
            raise ColorUnresolvedError(f"Failed to parse color - {color!r}")

        # Pattern words tend to live in the color field or the product name
        name_without_brand = name.replace(brand, "", 1) if brand else name
        product.patterns = map_attributes([color, name_without_brand], mapping.patterns, strict=True)

        category_values = self.fields(record, "categories")
        product.gender = resolve_gender(category_values + [name], mapping.genders)
        if not product.gender:
            raise GenderUnresolvedError(f"Failed to parse gender - {category_values}")

        product.provider_categories = self._categories(category_values, product.gender, mapping)
        if not product.provider_categories:
            raise CategoryUnresolvedError(f"No categories found for - {category_values}")
        product.original_categories = category_values

        product.add_retailer(self._retailer(record, lowest, highest, mapping))
        product.from_feeds = {self.field(record, "feed_id") or self.provider_name}
        product.from_programs = {self.field(record, "program") or self.provider_name}

        product.refresh(self.bin_size)
        product.validate()
        return product

    def _retailer(self, record: Mapping[str, Any], lowest: float, highest: float, mapping: TermMapping) -> Retailer:
        sizes = split_sizes(self.field(record, "sizes"))
        if mapping.sizes:
            sizes = unique_names(lookup_term(size, mapping.sizes) or size for size in sizes)

        return Retailer(
            link=self.field(record, "link"),
            name=sanitize(self.field(record, "retailer")) or self.provider_name,
            price=f"{lowest:.2f}",
            highest_price=highest,
            currency=sanitize(self.field(record, "currency")).upper(),
            availability=resolve_availability(
                self.field(record, "availability"), self.field(record, "stock_quantity")
            ),
            delivery_time=sanitize(self.field(record, "delivery_time")),
            shipping_cost=sanitize(self.field(record, "shipping_cost")),
            is_crawler=self.is_crawler,
            sizes=sizes or [ONE_SIZE],
        )

    def _categories(self, values: List[str], gender: str, mapping: TermMapping) -> List[ProviderCategory]:
        tag = GENDER_TAGS[gender]
        terms = unique_names(t.lower() for v in values for t in split_list(v))

        categories: List[ProviderCategory] = []
        seen = set()
        for term in terms:
            for name in sorted(find_terms(term, mapping.categories)):
                category = ProviderCategory(provider_name=self.provider_name, name=name, gender=tag)
                if category.identity in seen:
                    continue
                seen.add(category.identity)
                categories.append(category)
        return categories
