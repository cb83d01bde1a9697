"""Tests for the feed adapters."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests  # type: ignore[import-untyped]

from feedservice.cache import ProductCache
from feedservice.diagnostics import Diagnostics
from feedservice.errors import PriceMissingError, SourceError
from feedservice.feed import CachedFeed, CSVFeed, StaticFeed

CSV_TEXT = (
    "aw_product_id;product_name;colour;description;brand_name;merchant_image_url;language;"
    "merchant_deep_link;merchant_name;data_feed_id;in_stock;size;merchant_category;search_price\n"
    "1001;Summer Dress;Navy;A light dress;Acme;https://img.example.com/1.jpg;sv;"
    "https://shop-a.example.com/p/1001;Shop A;11;1;S,M;Women > Dresses;100.00\n"
    "1002;Linen Shirt;Svart;A linen shirt;Acme;https://img.example.com/2.jpg;sv;"
    "https://shop-a.example.com/p/1002;Shop A;11;1;M;Herr > Skjorta;450,00\n"
)


def _response(status_code: int = 200, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    return resp


class TestStaticFeed:
    """Tests for the in-memory feed."""

    def test_converts_and_drops(self, make_record, term_mapping):
        diagnostics = Diagnostics()
        feed = StaticFeed(
            "static",
            [make_record(), make_record(aw_product_id="1002", search_price="")],
            term_mapping,
            diagnostics=diagnostics,
        )

        products = feed.fetch()

        assert [p.sku for p in products] == ["1001"]
        assert diagnostics.attempted == 2
        assert diagnostics.dropped == 1
        assert isinstance(diagnostics.entries[0].error, PriceMissingError)

    def test_sample_mode_limits_records(self, make_record, term_mapping):
        records = [make_record(aw_product_id=str(i)) for i in range(5)]
        feed = StaticFeed("static", records, term_mapping)

        with patch("feedservice.feed.SAMPLE_SIZE", 2):
            assert len(feed.fetch(production=False)) == 2
            assert len(feed.fetch(production=True)) == 5


class TestCSVFeed:
    """Tests for CSV downloads and local files."""

    def test_download_and_convert(self, term_mapping):
        session = MagicMock()
        session.get.return_value = _response(text=CSV_TEXT)
        feed = CSVFeed("csv", "https://feeds.example.com/shop.csv", term_mapping, session=session)

        products = feed.fetch(production=True)

        assert sorted(p.sku for p in products) == ["1001", "1002"]
        shirt = next(p for p in products if p.sku == "1002")
        assert shirt.gender == "men"
        assert shirt.lowest_price == 450.0
        session.get.assert_called_once()

    @patch("feedservice.feed.time.sleep")
    def test_retries_on_retryable_status(self, mock_sleep, term_mapping):
        session = MagicMock()
        session.get.side_effect = [_response(503), _response(text=CSV_TEXT)]
        feed = CSVFeed("csv", "https://feeds.example.com/shop.csv", term_mapping, session=session)

        assert feed.download() == CSV_TEXT
        assert session.get.call_count == 2
        mock_sleep.assert_called_once()

    @patch("feedservice.feed.time.sleep")
    def test_connection_errors_exhaust_retries(self, mock_sleep, term_mapping):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        feed = CSVFeed("csv", "https://feeds.example.com/shop.csv", term_mapping, session=session)

        with pytest.raises(SourceError) as exc_info:
            feed.fetch()

        assert exc_info.value.feed_name == "csv"
        assert session.get.call_count > 1

    def test_http_error_is_not_retried(self, term_mapping):
        session = MagicMock()
        session.get.return_value = _response(404)
        feed = CSVFeed("csv", "https://feeds.example.com/missing.csv", term_mapping, session=session)

        with pytest.raises(SourceError):
            feed.download()

        session.get.assert_called_once()

    def test_local_file(self, term_mapping, tmp_path: Path):
        path = tmp_path / "shop.csv"
        path.write_text(CSV_TEXT, encoding="utf-8")

        products = CSVFeed("local", str(path), term_mapping).fetch(production=True)

        assert len(products) == 2

    def test_missing_local_file(self, term_mapping, tmp_path: Path):
        feed = CSVFeed("local", str(tmp_path / "nope.csv"), term_mapping)

        with pytest.raises(SourceError):
            feed.fetch()


class TestCachedFeed:
    """Tests for serving feeds from the cache."""

    def test_second_fetch_served_from_cache(self, make_record, term_mapping, tmp_path: Path):
        cache = ProductCache(str(tmp_path / "cache.db"), ttl=3600)
        inner = StaticFeed("static", [make_record()], term_mapping)
        inner.fetch = MagicMock(wraps=inner.fetch)
        feed = CachedFeed(inner, cache)

        first = feed.fetch()
        second = feed.fetch()

        assert inner.fetch.call_count == 1
        assert [p.key for p in second] == [p.key for p in first]
        assert feed.name == "static"
        assert feed.locale == inner.locale

    def test_sample_batch_not_served_to_production(self, make_record, term_mapping, tmp_path: Path):
        cache = ProductCache(str(tmp_path / "cache.db"), ttl=3600)
        records = [make_record(aw_product_id=str(i)) for i in range(3)]
        feed = CachedFeed(StaticFeed("static", records, term_mapping), cache)

        with patch("feedservice.feed.SAMPLE_SIZE", 1):
            sample = feed.fetch(production=False)
            full = feed.fetch(production=True)
            sample_again = feed.fetch(production=False)

        assert (len(sample), len(full), len(sample_again)) == (1, 3, 1)
        assert sorted(cache.load_all()) == ["static:full", "static:sample"]

    def test_expired_entry_refetches(self, make_record, term_mapping, tmp_path: Path):
        cache = ProductCache(str(tmp_path / "cache.db"), ttl=0)
        inner = StaticFeed("static", [make_record()], term_mapping)
        inner.fetch = MagicMock(wraps=inner.fetch)
        feed = CachedFeed(inner, cache)

        feed.fetch()
        feed.fetch()

        assert inner.fetch.call_count == 2
