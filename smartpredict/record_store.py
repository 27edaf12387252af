from __future__ import annotations

"""Record store for the storefront collections.

Keeps named collections of dict records in memory and mirrors them to a JSON
file when a path is configured. All public operations are coroutines so the
store can be swapped for a hosted database client without touching callers.
"""

import copy
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import StoreError
from .utils import contains_term, utc_now_iso

logger = logging.getLogger("smartpredict.store")

COLLECTIONS = (
    "cart_items",
    "purchase_history",
    "favorites",
    "user_profiles",
    "orders",
    "ai_insights",
)

Record = Dict[str, Any]


class RecordStore:
    """CRUD over named record collections with optional JSON persistence."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Purpose: Initialize the store and hydrate collections from disk if available.
        Inputs/Outputs: Input is an optional JSON file path; no return value.
        Side Effects / State: Loads and caches every collection in memory.
        Dependencies: Calls _load.
        Failure Modes: JSON decode errors are logged and leave empty collections.
        If Removed: Cart, history, favorites, and profiles have no backing store.
        Testing Notes: Verify a store reopened on the same path sees earlier inserts.
        """
        # Keep configuration and preload persisted collections if present.
        self._path = path
        self._tables: Dict[str, List[Record]] = {name: [] for name in COLLECTIONS}
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted collections from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates _tables for known collection names.
        Dependencies: Uses json.loads.
        Failure Modes: A missing file, JSONDecodeError, or a top-level value that is
            not an object results in empty collections.
        If Removed: Previously stored records are never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate tables.
        """
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("store=%s status=corrupt action=start_empty", self._path)
            return
        if not isinstance(data, dict):
            logger.warning("store=%s status=not_an_object action=start_empty", self._path)
            return
        for name in COLLECTIONS:
            rows = data.get(name, [])
            if isinstance(rows, list):
                self._tables[name] = [row for row in rows if isinstance(row, dict)]

    def _persist(self) -> None:
        """Purpose: Persist in-memory collections to disk.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Writes a JSON file with one key per collection.
        Dependencies: Uses json.dumps and Path.write_text.
        Failure Modes: OSError is re-raised as StoreError.
        If Removed: Records are lost across restarts.
        Testing Notes: Point the store at an unwritable path and expect StoreError.
        """
        if not self._path:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._tables, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StoreError("Failed to persist records", details=str(exc)) from exc

    def _table(self, collection: str) -> List[Record]:
        if collection not in self._tables:
            raise StoreError(f"Unknown collection: {collection}")
        return self._tables[collection]

    def _commit(self, collection: str, previous: List[Record]) -> None:
        # Restore the collection when the write to disk fails.
        try:
            self._persist()
        except StoreError:
            self._tables[collection] = previous
            raise

    async def select(
        self,
        collection: str,
        eq: Optional[Mapping[str, Any]] = None,
        ilike: Optional[Mapping[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Purpose: Return copies of records matching equality and substring filters.
        Inputs/Outputs: Inputs are the collection, `eq` exact filters, `ilike`
            case-insensitive substring filters, ordering, and limit; output is a list.
        Side Effects / State: None.
        Dependencies: Uses contains_term for substring matching.
        Failure Modes: Unknown collection raises StoreError.
        If Removed: Lookup, history, and cart reads have no query primitive.
        Testing Notes: Check descending date order with a limit.
        """
        rows = [row for row in self._table(collection) if _matches(row, eq, ilike)]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is not None, row.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, collection: str, rows: Union[Record, Iterable[Record]]) -> List[Record]:
        """Purpose: Append one or more records, assigning `id` and `created_at` when absent.
        Inputs/Outputs: Inputs are a collection and a record or iterable of records;
            output is copies of the stored records.
        Side Effects / State: Mutates the collection and persists to disk.
        Dependencies: Uses uuid and _commit.
        Failure Modes: StoreError on unknown collection or disk failure; nothing is kept then.
        If Removed: Carts, orders, favorites, and insights cannot be created.
        Testing Notes: Insert a list and verify ids are unique.
        """
        table = self._table(collection)
        batch = [rows] if isinstance(rows, Mapping) else list(rows)
        previous = list(table)
        stored: List[Record] = []
        for row in batch:
            record = dict(row)
            record.setdefault("id", uuid.uuid4().hex)
            record.setdefault("created_at", utc_now_iso())
            stored.append(record)
        self._tables[collection] = previous + stored
        self._commit(collection, previous)
        return copy.deepcopy(stored)

    async def update(self, collection: str, match: Mapping[str, Any], values: Mapping[str, Any]) -> List[Record]:
        """Apply `values` to every record equal on `match`; returns the updated copies."""
        table = self._table(collection)
        previous = copy.deepcopy(table)
        updated: List[Record] = []
        for row in table:
            if _matches(row, match, None):
                row.update(values)
                updated.append(row)
        if updated:
            self._commit(collection, previous)
        return copy.deepcopy(updated)

    async def delete(self, collection: str, match: Mapping[str, Any]) -> int:
        """Delete every record equal on `match`; returns the number removed."""
        table = self._table(collection)
        previous = list(table)
        kept = [row for row in table if not _matches(row, match, None)]
        removed = len(table) - len(kept)
        if removed:
            self._tables[collection] = kept
            self._commit(collection, previous)
        return removed


def _matches(row: Record, eq: Optional[Mapping[str, Any]], ilike: Optional[Mapping[str, str]]) -> bool:
    for key, value in (eq or {}).items():
        if row.get(key) != value:
            return False
    for key, term in (ilike or {}).items():
        if not contains_term(str(row.get(key) or ""), term):
            return False
    return True
