import json
from pathlib import Path

from product_slugs import cli
from product_slugs.models import Product
from product_slugs.repositories import JsonProductRepository
from product_slugs.tests.test_support import ID_A


def _setup(tmp_path: Path) -> Path:
    data_dir = tmp_path / "data"
    repo = JsonProductRepository(str(data_dir / "product_data.json"))
    repo.insert_product(Product(name="Men's Cargo Pants (30-40)", price=3990, id=ID_A))
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps({"data_dir": str(data_dir), "log_dir": str(tmp_path / "logs")}),
        encoding="utf-8",
    )
    return config


def test_backfill_then_resolve(tmp_path: Path, capsys) -> None:
    config = _setup(tmp_path)

    assert cli.main(["--config", str(config), "backfill"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["assigned"] == 1
    assert report["failed"] == 0

    assert cli.main(["--config", str(config), "resolve", "mens-cargo-pants-30-40"]) == 0
    product = json.loads(capsys.readouterr().out)
    assert product["id"] == ID_A


def test_resolve_miss_exits_nonzero(tmp_path: Path, capsys) -> None:
    config = _setup(tmp_path)

    assert cli.main(["--config", str(config), "resolve", "unknown"]) == 1
    assert "not found" in capsys.readouterr().err


def test_bad_config_reports_error(tmp_path: Path, capsys) -> None:
    assert cli.main(["--config", str(tmp_path / "missing.json"), "backfill"]) == 1
    assert "ERROR" in capsys.readouterr().err
