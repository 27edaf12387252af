from __future__ import annotations

import json

from conftest import CATALOG_PATH, product, run
from smartpredict.catalog import CatalogLoader, ProductLookup, candidate_terms, search_catalog


def test_candidate_terms_widen_in_order() -> None:
    assert list(candidate_terms("chips")) == ["chips", "chip", "potato chips", "lays", "lay's"]
    assert list(candidate_terms("milk")) == ["milk"]


def test_singular_substring_hits_catalog(store) -> None:
    lookup = ProductLookup(store, [product("Chocolate Chip Cookies", 3.5)])

    found = run(lookup.find("chips", None))

    assert found.name == "Chocolate Chip Cookies"


def test_synonym_reaches_catalog_when_plain_term_misses(store) -> None:
    lookup = ProductLookup(store, [product("Lays Classic", 2.5), product("Bread", 1.98)])

    assert run(lookup.find("chips", None)).name == "Lays Classic"
    assert run(lookup.find("crisps", "u1")).name == "Lays Classic"


def test_empty_name_skips_store(store, lookup) -> None:
    store.fail_on.add(("select", "purchase_history"))

    assert run(lookup.find("   ", "u1")) is None


def test_most_recent_purchase_wins(store, lookup) -> None:
    run(
        store.insert(
            "purchase_history",
            [
                {"user_id": "u1", "product_name": "Skim Milk", "price": 2.0, "purchase_date": "2024-01-01"},
                {"user_id": "u1", "product_name": "Oat Milk", "price": 4.0, "purchase_date": "2024-03-01"},
            ],
        )
    )

    assert run(lookup.find("milk", "u1")).name == "Oat Milk"


def test_search_catalog_returns_all_matches(catalog) -> None:
    names = [item.name for item in search_catalog(catalog, "a")]

    assert "Bread" in names and "Great Value Organic Bananas" in names
    assert search_catalog(catalog, "") == []


def test_loader_reads_bundled_catalog() -> None:
    products, meta = CatalogLoader(CATALOG_PATH).load()

    assert meta.file_name == "catalog.json"
    assert len(products) == 11
    assert products[0].name == "Milk"


def test_loader_skips_invalid_entries(tmp_path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps({"items": [{"id": 1, "name": "Milk", "price": 3.68}, {"id": 2, "name": "Free", "price": 0}]}),
        encoding="utf-8",
    )

    products, _ = CatalogLoader(path).load()

    assert [item.name for item in products] == ["Milk"]
    assert products[0].id == "1"
    assert products[0].category == "Unknown"
