import json
from pathlib import Path

import pytest

from product_slugs.application import ConfigurationError, SlugManagerApp
from product_slugs.models import Product
from product_slugs.services import SlugPolicy


def _write_config(tmp_path: Path, **overrides) -> Path:
    config = {
        "data_dir": str(tmp_path / "data"),
        "log_dir": str(tmp_path / "logs"),
    }
    config.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return path


def test_nested_sections_are_merged_with_defaults(tmp_path: Path) -> None:
    app = SlugManagerApp()
    app.initialize(str(_write_config(tmp_path, slugs={"policy": "follow-name"})))

    assert app.config["slugs"]["policy"] == "follow-name"
    assert app.config["slugs"]["max_commit_attempts"] == 5
    assert app.config["redirects"]["canonical_prefix"] == "/products"
    assert app.create_service().slug_policy is SlugPolicy.FOLLOW_NAME
    assert (tmp_path / "logs" / "product_slugs.log").exists()


def test_unknown_policy_is_rejected(tmp_path: Path) -> None:
    app = SlugManagerApp()
    with pytest.raises(ConfigurationError):
        app.initialize(str(_write_config(tmp_path, slugs={"policy": "sometimes"})))


def test_unreadable_config_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        SlugManagerApp().initialize(str(path))


def test_backfill_uses_configured_catalog(tmp_path: Path) -> None:
    app = SlugManagerApp()
    app.initialize(str(_write_config(tmp_path)))
    repo = app.create_repository()
    repo.insert_product(Product(name="Bark T-Shirt", price=1990, id=repo.next_id()))

    report = app.run_backfill()

    assert report.assigned == 1
    assert repo.get_by_slug("bark-t-shirt") is not None
