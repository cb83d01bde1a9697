"""Tests for Product identity, refresh, merge and validation."""

import copy

import pytest

from feedservice.config import IN_STOCK, OUT_OF_STOCK
from feedservice.errors import IdentityMissingError, MergeError, StructuralError, ValidationError
from feedservice.models import EXPORT_HEADER, Product, ProviderCategory, Retailer, discount_bins


def _commutative_view(product: Product):
    return {
        "key": product.key,
        "highest_price": product.highest_price,
        "lowest_price": product.lowest_price,
        "discount": product.discount,
        "discount_bins": product.discount_bins,
        "links": sorted(r.link for r in product.retailers),
        "retailer_map": product.retailer_map,
        "categories": sorted(c.identity for c in product.provider_categories),
        "original_categories": sorted(product.original_categories),
        "color_groups": product.color_groups,
        "patterns": product.patterns,
        "from_feeds": product.from_feeds,
        "from_programs": product.from_programs,
        "leads_7d": product.leads_7d,
        "conversions_7d": product.conversions_7d,
        "active": product.active,
    }


class TestIdentity:
    """Tests for the identity key."""

    def test_same_sku_and_color_share_key(self, make_product):
        a = make_product(retailer="Shop A")
        b = make_product(retailer="Shop B", price="90.00")
        assert a.key == b.key != 0

    def test_color_spelling_is_normalized(self, make_product):
        assert make_product(color="Navy Blue").key == make_product(color="navy-blue").key

    def test_different_color_different_key(self, make_product):
        assert make_product(color="Navy").key != make_product(color="Red").key

    def test_missing_sku_raises(self):
        with pytest.raises(IdentityMissingError):
            Product(sku="", color="Navy").set_key()

    def test_missing_color_raises(self):
        with pytest.raises(IdentityMissingError):
            Product(sku="1001", color=" - ").set_key()


class TestDiscountBins:
    """Tests for discount calculation."""

    def test_ten_percent(self):
        assert discount_bins(90, 100) == (10, ["10%"])

    def test_several_bins(self):
        assert discount_bins(65, 100) == (35, ["10%", "20%", "30%"])

    def test_equal_prices(self):
        assert discount_bins(100, 100) == (0, [])

    def test_custom_bin_size(self):
        assert discount_bins(50, 100, bin_size=25) == (50, ["25%", "50%"])

    @pytest.mark.parametrize("lowest", [1.0, 33.33, 50.0, 89.99, 95.5, 99.99])
    def test_bins_follow_discount(self, lowest):
        discount, bins = discount_bins(lowest, 100.0, 10)
        assert discount > 0
        assert len(bins) == discount // 10


class TestRefresh:
    """Tests for the refresh (update) step."""

    def test_fills_price_bounds_from_offers(self, make_product):
        product = make_product(price="80.00", highest=100.0)
        assert (product.lowest_price, product.highest_price) == (80.0, 100.0)
        assert product.discount == 20
        assert product.discount_bins == ["10%", "20%"]

    def test_refresh_is_idempotent(self, make_product):
        product = make_product(price="80.00", highest=100.0)
        product.refresh()
        before = product.to_dict()

        product.refresh()
        after = product.to_dict()

        before.pop("last_seen")
        after.pop("last_seen")
        assert before == after

    def test_active_requires_non_crawler_in_stock(self, make_product):
        assert make_product().active
        assert not make_product(availability=OUT_OF_STOCK).active
        assert not make_product(is_crawler=True).active

    def test_any_in_stock_offer_keeps_active(self, make_product):
        product = make_product(availability=OUT_OF_STOCK)
        product.add_retailer(Retailer(
            link="https://shop-b.example.com/p/1001",
            name="Shop B",
            price="100.00",
            availability=IN_STOCK,
            sizes=["small"],
        ))
        product.refresh()
        assert product.active

    def test_crawler_prices_ignored_for_bounds(self, make_product):
        product = make_product(price="100.00")
        product.add_retailer(Retailer(
            link="https://crawler.example.com/p/1001",
            name="Crawled",
            price="50.00",
            availability=IN_STOCK,
            is_crawler=True,
            sizes=["small"],
        ))
        product.lowest_price = product.highest_price = 0.0
        product.refresh()
        assert (product.lowest_price, product.highest_price) == (100.0, 100.0)

    def test_reconciles_retailer_map(self, make_product):
        product = make_product()
        product.retailer_map = set()
        product.refresh()
        assert len(product.retailer_map) == len(product.retailers) == 1

    def test_stamps_last_seen(self, make_product):
        product = make_product()
        product.last_seen = 0
        product.refresh()
        assert product.last_seen > 0


class TestMerge:
    """Tests for merging two records of the same variant."""

    def test_two_retailers_merge_into_one(self, make_product):
        """Same SKU and color from two shops at 100 and 90."""
        owner = make_product(retailer="Shop A", price="100.00", feed="11")
        other = make_product(retailer="Shop B", price="90.00", feed="12")

        owner.merge_with(other)

        assert owner.lowest_price == 90.0
        assert owner.highest_price == 100.0
        assert len(owner.retailers) == 2
        assert len(owner.retailer_map) == 2
        assert owner.active
        assert owner.discount == 10
        assert owner.discount_bins == ["10%"]
        assert owner.from_feeds == {"11", "12"}
        assert owner.from_programs == {"Shop A", "Shop B"}

    def test_merge_is_commutative(self, make_product):
        p1 = make_product(retailer="Shop A", price="100.00", feed="11", leads_7d=2)
        p1.patterns = {"striped"}
        p2 = make_product(retailer="Shop B", price="70.00", highest=90.0, feed="12", conversions_7d=3)
        p2.provider_categories.append(ProviderCategory("other", "summer", "w"))
        p2.color_groups = {"blue", "navy"}

        ab = copy.deepcopy(p1)
        ab.merge_with(copy.deepcopy(p2))
        ba = copy.deepcopy(p2)
        ba.merge_with(copy.deepcopy(p1))

        assert _commutative_view(ab) == _commutative_view(ba)

    def test_existing_scalar_wins_and_gaps_fill(self, make_product):
        owner = make_product(brand="")
        owner.material = ""
        other = make_product(retailer="Shop B", name="Other Name", brand="Acme")
        other.material = "cotton"

        owner.merge_with(other)

        assert owner.name == "Summer Dress"
        assert owner.brand == "Acme"
        assert owner.material == "cotton"

    def test_duplicate_link_not_appended(self, make_product):
        owner = make_product(retailer="Shop A")
        owner.merge_with(make_product(retailer="Shop A"))
        assert len(owner.retailers) == len(owner.retailer_map) == 1

    def test_crawler_offer_does_not_set_price_bounds(self, make_product):
        owner = make_product(retailer="Shop A", price="100.00")
        crawled = make_product(retailer="Crawled", price="80.00", is_crawler=True)

        owner.merge_with(crawled)

        assert (owner.lowest_price, owner.highest_price) == (100.0, 100.0)
        assert (owner.discount, owner.discount_bins) == (0, [])
        assert len(owner.retailers) == 2

    def test_duplicate_link_price_is_discarded(self, make_product):
        owner = make_product(retailer="Shop A", price="100.00", feed="11")
        repeat = make_product(retailer="Shop A", price="90.00", feed="12")

        owner.merge_with(repeat)

        assert (owner.lowest_price, owner.highest_price) == (100.0, 100.0)
        assert owner.from_feeds == {"11", "12"}

    def test_crawler_only_products_keep_their_prices(self, make_product):
        owner = make_product(retailer="Crawled A", price="100.00", is_crawler=True)
        owner.merge_with(make_product(retailer="Crawled B", price="90.00", is_crawler=True))

        assert (owner.lowest_price, owner.highest_price) == (90.0, 100.0)

    def test_categories_dedup_per_name_and_gender(self, make_product):
        owner = make_product()
        other = make_product(retailer="Shop B")
        other.provider_categories = [
            ProviderCategory("other", "Dresses", "w"),
            ProviderCategory("other", "dresses", "u"),
        ]

        owner.merge_with(other)

        assert sorted(c.identity for c in owner.provider_categories) == [("dresses", "u"), ("dresses", "w")]

    def test_counters_add_up(self, make_product):
        owner = make_product(leads_7d=1, conversions_7d=2, commission_7d=1.5)
        other = make_product(retailer="Shop B", leads_7d=3, conversions_7d=4, commission_7d=2.5)

        owner.merge_with(other)

        assert (owner.leads_7d, owner.conversions_7d, owner.commission_7d) == (4, 6, 4.0)

    def test_invalid_result_raises_merge_error(self, make_product):
        owner = make_product(provider_categories=[], original_categories=[])
        other = make_product(retailer="Shop B", provider_categories=[], original_categories=[])

        with pytest.raises(MergeError):
            owner.merge_with(other)


class TestValidate:
    """Tests for the completeness contract."""

    def test_complete_product_passes(self, make_product):
        make_product().validate()

    @pytest.mark.parametrize("field", [
        "name", "sku", "color", "description", "gender", "brand", "language", "image_url",
    ])
    def test_missing_mandatory_field_is_named(self, make_product, field):
        product = make_product()
        setattr(product, field, "")
        if field == "description":
            product.short_description = ""

        with pytest.raises(ValidationError) as exc_info:
            product.validate()

        assert exc_info.value.field == field

    def test_short_description_stands_in(self, make_product):
        product = make_product(description="", short_description="Short text")
        product.validate()

    def test_unsupported_language(self, make_product):
        with pytest.raises(ValidationError) as exc_info:
            make_product(language="de_de").validate()
        assert exc_info.value.field == "language"

    def test_unknown_gender(self, make_product):
        with pytest.raises(ValidationError) as exc_info:
            make_product(gender="kids").validate()
        assert exc_info.value.field == "gender"

    def test_unsplit_sizes_are_structural(self, make_product):
        """A 'S,M,L' size token reaching the retailer is a converter defect."""
        product = make_product(sizes=["S,M,L"])

        with pytest.raises(StructuralError) as exc_info:
            product.validate()

        assert exc_info.value.field == "sizes"

    def test_missing_sizes(self, make_product):
        with pytest.raises(ValidationError) as exc_info:
            make_product(sizes=[]).validate()
        assert exc_info.value.field == "sizes"

    def test_retailer_map_mismatch_is_structural(self, make_product):
        product = make_product()
        product.retailer_map.add(12345)

        with pytest.raises(StructuralError) as exc_info:
            product.validate()

        assert exc_info.value.field == "retailer_map"

    def test_zero_price_fails(self, make_product):
        product = make_product()
        product.lowest_price = 0.0
        with pytest.raises(ValidationError) as exc_info:
            product.validate()
        assert exc_info.value.field == "prices"

    def test_diverging_bounds_with_single_price_source(self, make_product):
        product = make_product(price="100.00")
        product.lowest_price = 80.0
        product.calculate_discounts()

        with pytest.raises(ValidationError) as exc_info:
            product.validate()

        assert exc_info.value.field == "prices"

    def test_discount_below_bin_size_fails(self, make_product):
        product = make_product(price="95.00", highest=100.0)

        with pytest.raises(ValidationError) as exc_info:
            product.validate()

        assert exc_info.value.field == "discount"

    def test_categories_required(self, make_product):
        product = make_product(provider_categories=[], original_categories=[])
        with pytest.raises(ValidationError) as exc_info:
            product.validate()
        assert exc_info.value.field == "categories"

    def test_provider_category_needs_gender(self, make_product):
        product = make_product(provider_categories=[ProviderCategory("shop", "dresses", "")])
        with pytest.raises(ValidationError) as exc_info:
            product.validate()
        assert exc_info.value.field == "provider_categories"


class TestExport:
    """Tests for rows, ranking and serialization."""

    def test_rows_per_in_stock_offer(self, make_product):
        product = make_product(price="100.00")
        product.merge_with(make_product(retailer="Shop B", price="80.00"))
        product.add_retailer(Retailer(
            link="https://shop-c.example.com/p/1001",
            name="Shop C",
            price="85.00",
            availability=OUT_OF_STOCK,
            sizes=["small"],
        ))

        rows = product.as_rows()

        assert len(rows) == 2
        assert all(len(row) == len(EXPORT_HEADER) for row in rows)
        by_store = {row[EXPORT_HEADER.index("Store")]: row for row in rows}
        sale = by_store["Shop B"]
        assert sale[EXPORT_HEADER.index("RegularPrice")] == "100.00"
        assert sale[EXPORT_HEADER.index("SalesPrice")] == "80.00"
        assert sale[EXPORT_HEADER.index("Discount")] == "20"
        assert sale[EXPORT_HEADER.index("DiscountBins")] == "10%,20%"
        assert by_store["Shop A"][EXPORT_HEADER.index("SalesPrice")] == ""

    def test_rows_reject_unknown_gender(self, make_product):
        with pytest.raises(ValidationError):
            make_product(gender="").as_rows()

    def test_ranking(self, make_product):
        product = make_product(website_features=1, leads_7d=2, conversions_7d=3)
        assert product.ranking() == 10 + 4 + 15

    def test_dict_round_trip(self, make_product):
        product = make_product(price="80.00", highest=100.0)
        product.patterns = {"striped"}

        restored = Product.from_dict(product.to_dict())

        assert restored == product
