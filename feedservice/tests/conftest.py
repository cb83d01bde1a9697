"""Shared fixtures for the feed service tests."""

from typing import Any, Dict, List, Optional

import pytest

from feedservice.config import IN_STOCK
from feedservice.models import Product, ProviderCategory, Retailer
from feedservice.normalizer import TermMapping


@pytest.fixture
def term_mapping() -> TermMapping:
    """Small vocabulary covering the records built by make_record."""
    return TermMapping.from_dict({
        "colors": {
            "blue": ["navy", "blå"],
            "red": ["röd"],
            "black": ["svart"],
        },
        "patterns": {
            "striped": ["stripe", "randig"],
        },
        "sizes": {
            "small": ["s"],
            "medium": ["m"],
            "large": ["l"],
        },
        "genders": {
            "women": ["dam"],
            "men": ["herr"],
        },
        "categories": {
            "dresses": ["dress", "klänning"],
            "shirts": ["shirt", "skjorta"],
            "shoes": ["sneakers"],
        },
    })


@pytest.fixture
def make_record():
    """Factory for raw affiliate-style records; keyword args override fields."""

    def _make(**overrides: Any) -> Dict[str, str]:
        record = {
            "aw_product_id": "1001",
            "product_name": "Summer Dress",
            "colour": "Navy",
            "description": "A light summer dress",
            "brand_name": "Acme",
            "merchant_image_url": "https://img.example.com/1001.jpg",
            "language": "sv",
            "merchant_deep_link": "https://shop-a.example.com/p/1001",
            "merchant_name": "Shop A",
            "data_feed_id": "11",
            "currency": "SEK",
            "in_stock": "1",
            "size": "S,M,L",
            "merchant_category": "Women > Dresses",
            "search_price": "100.00",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def make_product():
    """Factory for a refreshed, valid product with a single offer."""

    def _make(
        sku: str = "1001",
        color: str = "Navy",
        price: str = "100.00",
        highest: float = 0.0,
        retailer: str = "Shop A",
        link: Optional[str] = None,
        availability: str = IN_STOCK,
        sizes: Optional[List[str]] = None,
        is_crawler: bool = False,
        feed: str = "11",
        **overrides: Any,
    ) -> Product:
        slug = retailer.lower().replace(" ", "-")
        product = Product(
            name="Summer Dress",
            sku=sku,
            color=color,
            description="A light summer dress",
            brand="Acme",
            image_url=f"https://img.example.com/{sku}.jpg",
            language="sv_se",
            gender="women",
            color_groups={"blue"},
            provider_categories=[ProviderCategory("shop", "dresses", "w")],
            original_categories=["Women > Dresses"],
            from_feeds={feed},
            from_programs={retailer},
        )
        for name, value in overrides.items():
            setattr(product, name, value)

        product.add_retailer(Retailer(
            link=link or f"https://{slug}.example.com/p/{sku}",
            name=retailer,
            price=price,
            highest_price=highest or float(price),
            currency="SEK",
            availability=availability,
            sizes=["small", "medium"] if sizes is None else sizes,
            is_crawler=is_crawler,
        ))
        product.refresh()
        return product

    return _make
