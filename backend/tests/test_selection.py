"""Selection filter and quick-select presets."""

from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError

from catalog_bulk.api.schemas.selection import SelectionCriteria, StockBucket
from catalog_bulk.core.exceptions import ValidationError
from catalog_bulk.db.models import CatalogStatus
from catalog_bulk.services.selection import matches, quick_select, resolve_preset, select_item_ids

pytestmark = pytest.mark.unit


def _item(id, name="", status="Draft", category="", description=None, stock=0):
    return SimpleNamespace(
        id=id,
        name=name,
        status=status,
        category=category,
        description=description,
        stock_quantity=stock,
    )


@pytest.fixture
def items():
    return [
        _item(1, "Blue Mug", "Published", "Kitchen", "Stoneware", stock=12),
        _item(2, "Red Mug", "Draft", "Kitchen", None, stock=0),
        _item(3, "Linen Apron", "Published", "Textiles", "Great with any mug", stock=3),
        _item(4, "Tea Towel", "Archived", "Textiles", None, stock=5),
        _item(5, "Candle", "Draft", "Home", "Soy wax", stock=40),
    ]


def test_empty_criteria_selects_everything_in_order(items):
    assert select_item_ids(items, SelectionCriteria()) == [1, 2, 3, 4, 5]


def test_search_matches_name_category_and_description_case_insensitively(items):
    assert select_item_ids(items, SelectionCriteria(search_text="MUG")) == [1, 2, 3]
    assert select_item_ids(items, SelectionCriteria(search_text="textiles")) == [3, 4]
    assert select_item_ids(items, SelectionCriteria(search_text="soy")) == [5]


def test_filters_combine(items):
    criteria = SelectionCriteria(search_text="mug", status=CatalogStatus.PUBLISHED, category="Kitchen")
    assert select_item_ids(items, criteria) == [1]


@pytest.mark.parametrize(
    "bucket, expected",
    [
        (StockBucket.ANY, [1, 2, 3, 4, 5]),
        (StockBucket.IN_STOCK, [1, 3, 4, 5]),
        (StockBucket.OUT_OF_STOCK, [2]),
        (StockBucket.LOW_STOCK, [2, 3, 4]),
    ],
)
def test_stock_buckets(items, bucket, expected):
    assert select_item_ids(items, SelectionCriteria(stock_bucket=bucket)) == expected


def test_missing_stock_counts_as_out_of_stock():
    assert matches(_item(9, stock=None), SelectionCriteria(stock_bucket=StockBucket.OUT_OF_STOCK))


def test_unknown_status_or_bucket_is_rejected():
    with pytest.raises(PydanticValidationError):
        SelectionCriteria(status="Deleted")
    with pytest.raises(PydanticValidationError):
        SelectionCriteria(stock_bucket="plenty")


def test_presets_apply_within_the_filtered_set(items):
    base = SelectionCriteria(category="Kitchen")
    assert quick_select(items, "all", base) == [1, 2]
    assert quick_select(items, "draft", base) == [2]
    assert quick_select(items, "published") == [1, 3]
    assert quick_select(items, "out_of_stock") == [2]
    assert quick_select(items, "low_stock", SelectionCriteria(category="Textiles")) == [3, 4]


def test_unknown_preset_is_a_validation_error(items):
    with pytest.raises(ValidationError, match="Unknown quick-select preset"):
        resolve_preset("cheap")
    with pytest.raises(ValidationError):
        quick_select(items, "cheap")
