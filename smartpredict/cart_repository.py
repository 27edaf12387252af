from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .errors import InvalidRequestError, ItemNotFoundError
from .record_store import RecordStore

logger = logging.getLogger("smartpredict.cart")

CART_COLLECTION = "cart_items"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _unit_count(value: Any) -> int:
    # Missing quantity means one unit.
    if value is None:
        return 1
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidRequestError("Quantity must be a positive integer")
    return value


class CartRepository:
    """Remote cart rows keyed by (user_id, name). There is no set-quantity primitive."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def list_items(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._store.select(CART_COLLECTION, eq={"user_id": user_id}, order_by="created_at")

    async def add_item(self, user_id: str, item: Mapping[str, Any]) -> Dict[str, Any]:
        """Purpose: Add units of an item, incrementing an existing row or inserting one.
        Inputs/Outputs: Inputs are user id and an item mapping (name, price, quantity,
            image, product_id); output is the stored row.
        Side Effects / State: Updates or inserts a cart_items row.
        Dependencies: Uses RecordStore select/update/insert.
        Failure Modes: InvalidRequestError for a missing name, non-numeric price, or bad
            quantity; StoreError from the store propagates.
        If Removed: Cart additions never reach the store.
        Testing Notes: Adding the same name twice yields one row with quantity 2.
        """
        name = str(item.get("name") or "").strip()
        price = item.get("price")
        if not name or not _is_number(price):
            raise InvalidRequestError("Missing or invalid item fields")
        units = _unit_count(item.get("quantity"))

        existing = await self._find(user_id, name)
        if existing:
            new_quantity = int(existing.get("quantity") or 0) + units
            updated = await self._store.update(CART_COLLECTION, {"id": existing["id"]}, {"quantity": new_quantity})
            logger.info("user=%s cart=add item=%s quantity=%d", user_id, name, new_quantity)
            return updated[0]
        rows = await self._store.insert(
            CART_COLLECTION,
            {
                "user_id": user_id,
                "product_id": item.get("product_id"),
                "name": name,
                "price": float(price),
                "image": item.get("image"),
                "quantity": units,
            },
        )
        logger.info("user=%s cart=insert item=%s quantity=%d", user_id, name, units)
        return rows[0]

    async def remove_item(self, user_id: str, name: str, quantity: int = 1) -> Optional[Dict[str, Any]]:
        """Purpose: Remove units of an item, deleting the row when none are left.
        Inputs/Outputs: Inputs are user id, item name, and unit count; output is the
            updated row, or None when the row was deleted.
        Side Effects / State: Updates or deletes a cart_items row.
        Dependencies: Uses RecordStore select/update/delete.
        Failure Modes: InvalidRequestError for a missing name or bad quantity;
            ItemNotFoundError when the row does not exist.
        If Removed: Cart removals never reach the store.
        Testing Notes: Removing the last unit deletes the row.
        """
        if not name:
            raise InvalidRequestError("Missing item name")
        units = _unit_count(quantity)
        existing = await self._find(user_id, name)
        if not existing:
            raise ItemNotFoundError("Item not found in cart")
        remaining = int(existing.get("quantity") or 0) - units
        if remaining > 0:
            updated = await self._store.update(CART_COLLECTION, {"id": existing["id"]}, {"quantity": remaining})
            logger.info("user=%s cart=remove item=%s quantity=%d", user_id, name, remaining)
            return updated[0]
        await self._store.delete(CART_COLLECTION, {"id": existing["id"]})
        logger.info("user=%s cart=delete item=%s", user_id, name)
        return None

    async def clear(self, user_id: str) -> int:
        removed = await self._store.delete(CART_COLLECTION, {"user_id": user_id})
        logger.info("user=%s cart=clear rows=%d", user_id, removed)
        return removed

    async def _find(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        rows = await self._store.select(CART_COLLECTION, eq={"user_id": user_id, "name": name}, limit=1)
        return rows[0] if rows else None
