"""Tests for the command-line entry point."""

from pathlib import Path

import pytest

from feedservice import cli
from feedservice.shutdown import get_shutdown_handler

FEED_CSV = (
    "aw_product_id,product_name,colour,description,brand_name,merchant_image_url,language,"
    "merchant_deep_link,merchant_name,data_feed_id,in_stock,size,merchant_category,search_price\n"
    "2001,Randig Klänning,Svart,Randig klänning i bomull,Acme,https://img.example.com/2001.jpg,sv,"
    "https://shop-a.example.com/p/2001,Shop A,21,1,S/M,Dam > Klänningar,499.00\n"
)


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    monkeypatch.setattr(cli, "FEED_URLS", {})
    yield
    get_shutdown_handler().reset()


class TestParseFeedArgs:

    def test_pairs(self):
        assert cli.parse_feed_args(["a=https://a.example.com/a.csv", " b = data/b.csv "]) == {
            "a": "https://a.example.com/a.csv",
            "b": "data/b.csv",
        }

    def test_none(self):
        assert cli.parse_feed_args(None) == {}

    @pytest.mark.parametrize("value", ["no-separator", "=url", "name="])
    def test_malformed(self, value):
        with pytest.raises(ValueError):
            cli.parse_feed_args([value])


class TestMain:

    def test_no_feeds(self):
        assert cli.main(["--no-cache"]) == 2

    def test_malformed_feed(self):
        assert cli.main(["--feed", "broken", "--no-cache"]) == 2

    def test_local_feed_export(self, tmp_path: Path, capsys):
        source = tmp_path / "shop.csv"
        source.write_text(FEED_CSV, encoding="utf-8")
        output = tmp_path / "out.csv"

        code = cli.main([
            "--feed", f"shop={source}",
            "--no-cache",
            "--production",
            "--output", str(output),
        ])

        assert code == 0
        assert "Published 1 products from 1 feeds" in capsys.readouterr().out
        assert "Randig Klänning" in output.read_text(encoding="utf-8")

    def test_failed_run(self, tmp_path: Path):
        code = cli.main([
            "--feed", f"shop={tmp_path / 'missing.csv'}",
            "--no-cache",
            "--output", str(tmp_path / "out.csv"),
        ])

        assert code == 1
