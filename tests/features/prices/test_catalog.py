# tests/features/prices/test_catalog.py
import pytest

from com.lingenhag.pricetrack.domain.errors import UnknownItem
from com.lingenhag.pricetrack.domain.models import SourceKind, TrackedItem
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog, item_from_mapping
from com.lingenhag.pricetrack.platform.config.settings import Settings


def test_default_catalog_has_single_decimal_item():
    catalog = ItemCatalog.default()
    assert len(catalog) == 9
    decimal_items = [i.id for i in catalog if i.price_decimals == 1]
    assert decimal_items == ["6861012"]


def test_default_catalog_mixes_source_kinds():
    kinds = {i.source_kind for i in ItemCatalog.default()}
    assert kinds == {SourceKind.AGGREGATED, SourceKind.RAW_SAMPLE}


def test_select_keeps_catalog_order_and_reports_unknown():
    catalog = ItemCatalog.default()
    selected, unknown = catalog.select(["6861012", "does-not-exist", "67400003", "6861012"])
    assert [i.id for i in selected] == ["67400003", "6861012"]
    assert len(unknown) == 1
    assert isinstance(unknown[0], UnknownItem)
    assert unknown[0].item_id == "does-not-exist"


def test_select_all_without_filter():
    catalog = ItemCatalog.default()
    selected, unknown = catalog.select(None)
    assert [i.id for i in selected] == catalog.ids()
    assert unknown == []


def test_duplicate_ids_rejected():
    item = TrackedItem("x", "X", SourceKind.AGGREGATED)
    with pytest.raises(ValueError):
        ItemCatalog(items=(item, item))


def test_tracked_item_validation():
    with pytest.raises(ValueError):
        TrackedItem("  ", "leer", SourceKind.AGGREGATED)
    with pytest.raises(ValueError):
        TrackedItem("x", "X", SourceKind.AGGREGATED, price_decimals=2)


def test_item_from_mapping_accepts_upstream_aliases():
    item = item_from_mapping({"id": "gem", "name": "Gem", "type": "auction", "fetch_params": {"category_code": 1}})
    assert item.source_kind is SourceKind.RAW_SAMPLE
    assert item.fetch_params == {"category_code": 1}
    with pytest.raises(ValueError):
        item_from_mapping({"id": "bad", "source_kind": "nonsense"})


def test_catalog_from_settings():
    settings = Settings(config={"catalog": {"items": [
        {"id": "1", "display_name": "Eins", "source_kind": "market", "price_decimals": 1},
        {"id": "2", "display_name": "Zwei", "source_kind": "raw_sample"},
    ]}})
    catalog = ItemCatalog.from_settings(settings)
    assert catalog.ids() == ["1", "2"]
    assert catalog.get("1").price_decimals == 1
    assert ItemCatalog.from_settings(Settings()).ids() == ItemCatalog.default().ids()
