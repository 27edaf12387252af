from __future__ import annotations

import logging
from typing import Any, Dict, List

from .errors import CheckoutError, InvalidRequestError, StoreError
from .record_store import RecordStore
from .utils import utc_now_iso

logger = logging.getLogger("smartpredict.checkout")


def _validate_items(cart_items: Any) -> List[Dict[str, Any]]:
    """Purpose: Check the cart lines submitted for checkout.
    Inputs/Outputs: Input is the raw cartItems payload; output is normalized lines
        with an integer quantity.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins.
    Failure Modes: InvalidRequestError for a non-list, an empty list, a missing name,
        a non-positive or non-numeric price, or a quantity that is not an int >= 1.
    If Removed: Orders with zero or negative totals can be placed.
    Testing Notes: A line priced 0 is rejected; a missing quantity counts as 1.
    """
    if not isinstance(cart_items, list) or not cart_items:
        raise InvalidRequestError("Cart is empty or invalid")
    lines: List[Dict[str, Any]] = []
    for entry in cart_items:
        if not isinstance(entry, dict):
            raise InvalidRequestError("Invalid cart item")
        name = str(entry.get("name") or "").strip()
        price = entry.get("price")
        quantity = entry.get("quantity", 1)
        if quantity is None:
            quantity = 1
        if not name:
            raise InvalidRequestError("Cart item is missing a name")
        if not isinstance(price, (int, float)) or isinstance(price, bool) or price <= 0:
            raise InvalidRequestError(f"Invalid price for {name}")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise InvalidRequestError(f"Invalid quantity for {name}")
        lines.append({**entry, "name": name, "price": float(price), "quantity": quantity})
    return lines


class CheckoutService:
    """Commit a cart as an order plus one purchase-history row per line."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def place_order(self, user_id: str, cart_items: Any) -> Dict[str, Any]:
        """Purpose: Place an order and record the purchases it contains.
        Inputs/Outputs: Inputs are the user id and submitted cart lines; output is the
            order dict with id, total, status, created_at, and its purchase rows.
        Side Effects / State: Inserts into `orders` and `purchase_history`. When the
            history insert fails the order row is deleted again.
        Dependencies: RecordStore insert/delete.
        Failure Modes: InvalidRequestError for bad input; CheckoutError when either
            insert fails. A failed compensating delete is logged and the order row
            is left behind.
        If Removed: Carts cannot be turned into orders and history never grows.
        Testing Notes: Milk 3.68 x1 plus chips 1.84 x2 totals 7.36.
        """
        # Validate, total, then write the order before its purchase rows.
        if not user_id:
            raise InvalidRequestError("Missing userId")
        lines = _validate_items(cart_items)
        total = round(sum(line["price"] * line["quantity"] for line in lines), 2)

        try:
            orders = await self._store.insert(
                "orders",
                {"user_id": user_id, "total": total, "status": "placed"},
            )
        except StoreError as exc:
            logger.error("user=%s checkout=order status=error error=%s", user_id, exc)
            raise CheckoutError("Failed to create order", details=str(exc)) from exc
        order = orders[0]

        purchase_date = utc_now_iso()
        try:
            purchases = await self._store.insert(
                "purchase_history",
                [
                    {
                        "user_id": user_id,
                        "order_id": order["id"],
                        "product_name": line["name"],
                        "product_category": line.get("product_category") or line.get("category") or "Unknown",
                        "price": line["price"],
                        "quantity": line["quantity"],
                        "image": line.get("image"),
                        "purchase_date": purchase_date,
                    }
                    for line in lines
                ],
            )
        except StoreError as exc:
            logger.error("user=%s checkout=history order=%s status=error error=%s", user_id, order["id"], exc)
            await self._compensate(order["id"])
            raise CheckoutError("Failed to record purchase history", details=str(exc)) from exc

        logger.info("user=%s checkout=placed order=%s total=%.2f lines=%d", user_id, order["id"], total, len(lines))
        return {
            "id": order["id"],
            "total": total,
            "status": order["status"],
            "created_at": order.get("created_at"),
            "items": purchases,
        }

    async def _compensate(self, order_id: str) -> None:
        try:
            await self._store.delete("orders", {"id": order_id})
        except StoreError as exc:
            logger.error("order=%s compensation=failed error=%s", order_id, exc)
