"""SKU-keyed stock CSV parsing and resolution."""

import pytest

from catalog_bulk.core.exceptions import ValidationError
from catalog_bulk.services.stock_csv import parse_stock_csv, resolve_skus

SELLER_ID = 1


@pytest.mark.unit
def test_parse_picks_the_new_stock_column():
    raw = b"SKU,Current Stock,New Stock\nMUG-1,4,10\nAPR-2,1,0\n"

    parsed = parse_stock_csv(raw)

    assert parsed.quantities == {"MUG-1": 10, "APR-2": 0}
    assert parsed.errors == []


@pytest.mark.unit
def test_parse_reports_bad_rows():
    raw = b"sku,stock\n,5\nA,lots\nB,-2\nC,7\n"

    parsed = parse_stock_csv(raw)

    assert parsed.quantities == {"C": 7}
    assert [(e["row"], e["field"]) for e in parsed.errors] == [(1, "sku"), (2, "stock"), (3, "stock")]


@pytest.mark.unit
def test_parse_requires_sku_and_stock_columns():
    with pytest.raises(ValidationError, match="SKU and Stock"):
        parse_stock_csv(b"Name,Quantity\nMug,3\n")


@pytest.mark.integration
def test_resolve_matches_products_case_insensitively(db_session, make_item):
    mug = make_item("Mug", sku="MUG-1")
    make_item("Foreign mug", sku="APR-2", seller_id=2)

    resolution = resolve_skus(db_session, SELLER_ID, {"mug-1": 10, "APR-2": 3})

    assert resolution.quantities == {mug.id: 10}
    assert resolution.unmatched_skus == ["APR-2"]


@pytest.mark.integration
def test_resolve_matches_variants_of_own_products(db_session, make_item, make_variant):
    mug = make_item("Mug", sku="MUG")
    small = make_variant(mug, "MUG-S", 1)
    other = make_item("Other", seller_id=2)
    make_variant(other, "MUG-L", 1)

    resolution = resolve_skus(db_session, SELLER_ID, {"MUG-S": 6, "MUG-L": 2}, target="variant")

    assert resolution.quantities == {small.id: 6}
    assert resolution.unmatched_skus == ["MUG-L"]
