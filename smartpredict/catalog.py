from __future__ import annotations

"""Static catalog loading and the two-tier product lookup.

A free-text product name is resolved against the user's purchase history
first and the static catalog second, widening the search term step by step
(singular form, then synonyms) until one tier answers.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .record_store import RecordStore
from .models import Product
from .utils import contains_term

logger = logging.getLogger("smartpredict.catalog")

SYNONYMS: Dict[str, List[str]] = {
    "chips": ["potato chips", "lays", "lay's"],
    "crisps": ["potato chips", "lays", "lay's"],
    "coke": ["coca-cola", "coca cola"],
    "soda": ["coca-cola", "coca cola"],
    "detergent": ["tide", "laundry"],
    "banana": ["bananas"],
    "cereal": ["cheerios"],
    "tp": ["toilet paper"],
}


@dataclass
class CatalogMeta:
    """Metadata describing the catalog file version for logging."""
    file_name: str
    updated_at: str
    sha256: str


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        # Store the catalog file location for subsequent loads.
        self._path = path

    def load(self) -> Tuple[List[Product], CatalogMeta]:
        """Purpose: Load and validate catalog products from the JSON resource file.
        Inputs/Outputs: No inputs; returns a list of Product and CatalogMeta.
        Side Effects / State: Reads file contents and computes hash/mtime.
        Dependencies: Uses json, hashlib, and the Product model.
        Failure Modes: JSON decode errors raise to the caller; invalid entries are
            skipped with a warning.
        If Removed: Lookup has no static tier and the search endpoint is empty.
        Testing Notes: Load a temp catalog with one bad price and expect it skipped.
        """
        # Read bytes for hashing and parse JSON into Product models.
        raw_bytes = self._path.read_bytes()
        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        updated_at = datetime.fromtimestamp(self._path.stat().st_mtime).isoformat()

        data = json.loads(raw_bytes.decode("utf-8-sig"))
        entries: List[Dict[str, Any]]
        if isinstance(data, dict):
            entries = data.get("items", [])
        elif isinstance(data, list):
            entries = data
        else:
            entries = []

        products: List[Product] = []
        for entry in entries:
            product = _product_from_entry(entry)
            if product is None:
                logger.warning("catalog=%s skipped_entry=%s", self._path.name, entry)
                continue
            products.append(product)

        meta = CatalogMeta(file_name=self._path.name, updated_at=updated_at, sha256=sha256)
        logger.info("catalog=%s products=%d sha256=%s", meta.file_name, len(products), sha256[:12])
        return products, meta


def _product_from_entry(entry: Any) -> Optional[Product]:
    if not isinstance(entry, dict):
        return None
    try:
        price = float(entry.get("price"))
    except (TypeError, ValueError):
        return None
    name = str(entry.get("name") or "").strip()
    if not name or price <= 0:
        return None
    return Product(
        id=str(entry.get("id") or name),
        name=name,
        category=str(entry.get("category") or "Unknown"),
        price=price,
        image=entry.get("image"),
    )


def product_from_purchase(record: Dict[str, Any]) -> Optional[Product]:
    """Map a purchase_history row onto a Product; rows without a usable price yield None."""
    return _product_from_entry(
        {
            "id": record.get("id"),
            "name": record.get("product_name"),
            "category": record.get("product_category"),
            "price": record.get("price"),
            "image": record.get("image"),
        }
    )


def search_catalog(products: Sequence[Product], query: str) -> List[Product]:
    """Return every catalog product whose name contains the query; empty query gives no results."""
    term = (query or "").strip()
    if not term:
        return []
    return [product for product in products if contains_term(product.name, term)]


def candidate_terms(term: str) -> Iterator[str]:
    """Purpose: Yield the search terms tried by the lookup, in priority order.
    Inputs/Outputs: Input is a lowercased term; yields the term, its singular form,
        then synonym expansions of either.
    Side Effects / State: None.
    Dependencies: Uses SYNONYMS.
    Failure Modes: None; duplicates are suppressed.
    If Removed: Plural and colloquial names never resolve.
    Testing Notes: "chips" yields "chips", "chip", "potato chips", "lays", "lay's".
    """
    seen = set()
    singular = term[:-1] if len(term) > 1 and term.endswith("s") else ""
    ordered = [term, singular]
    for key in (term, singular):
        ordered.extend(SYNONYMS.get(key, []))
    for candidate in ordered:
        if candidate and candidate not in seen:
            seen.add(candidate)
            yield candidate


class ProductLookup:
    """Resolve a free-text product name to at most one Product."""

    def __init__(self, store: RecordStore, catalog: Sequence[Product]) -> None:
        self._store = store
        self._catalog = list(catalog)

    @property
    def catalog(self) -> List[Product]:
        return list(self._catalog)

    async def find(self, name: str, user_id: Optional[str]) -> Optional[Product]:
        """Purpose: Resolve a name fragment via purchase history, then the static catalog.
        Inputs/Outputs: Inputs are the fragment and user id; output is a Product or None.
        Side Effects / State: None; read-only.
        Dependencies: Uses candidate_terms, RecordStore.select, and the catalog list.
        Failure Modes: StoreError from the history tier propagates to the caller.
        If Removed: Chat intents cannot name products.
        Testing Notes: A recent purchase beats a catalog entry with the same substring.
        """
        # Try each widened term against both tiers before widening further.
        term = (name or "").strip().lower()
        if not term:
            return None
        for candidate in candidate_terms(term):
            product = await self._from_history(candidate, user_id)
            tier = "history"
            if product is None:
                product = self._from_catalog(candidate)
                tier = "catalog"
            if product is not None:
                logger.info("lookup query=%s term=%s tier=%s product=%s", term, candidate, tier, product.name)
                return product
        logger.info("lookup query=%s result=not_available", term)
        return None

    async def _from_history(self, term: str, user_id: Optional[str]) -> Optional[Product]:
        if not user_id:
            return None
        rows = await self._store.select(
            "purchase_history",
            eq={"user_id": user_id},
            ilike={"product_name": term},
            order_by="purchase_date",
            descending=True,
        )
        for row in rows:
            product = product_from_purchase(row)
            if product is not None:
                return product
        return None

    def _from_catalog(self, term: str) -> Optional[Product]:
        matches = search_catalog(self._catalog, term)
        return matches[0] if matches else None
