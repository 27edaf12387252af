from __future__ import annotations

"""Session cart with optimistic local updates and remote reconciliation.

Every mutation is applied to the local CartState first, then written to the
cart repository. A failed remote write restores the pre-mutation snapshot
exactly and surfaces CartSyncError. Remote acknowledgements are not ordered
against each other; two quick mutations can be confirmed out of order.
"""

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from .cart_repository import CartRepository
from .errors import CartSyncError, InvalidRequestError, ItemNotFoundError, StoreError
from .models import CartItem

logger = logging.getLogger("smartpredict.cart_sync")

REMOTE_FAILURES = (StoreError, ItemNotFoundError, InvalidRequestError)


@dataclass
class CartState:
    """Ordered cart lines; totals are always recomputed from the lines."""
    items: List[CartItem] = field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(item.price * item.quantity for item in self.items), 2)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, name: str) -> Optional[CartItem]:
        for item in self.items:
            if item.name == name:
                return item
        return None

    def add(self, item: CartItem, quantity: int = 1) -> None:
        existing = self.find(item.name)
        if existing is not None:
            existing.quantity += quantity
            return
        self.items.append(item.model_copy(update={"quantity": quantity}))

    def set_quantity(self, name: str, quantity: int) -> None:
        # A line never stays at zero units; it is dropped instead.
        if quantity <= 0:
            self.items = [item for item in self.items if item.name != name]
            return
        existing = self.find(name)
        if existing is not None:
            existing.quantity = quantity

    def clear(self) -> None:
        self.items = []

    def snapshot(self) -> List[CartItem]:
        return [item.model_copy() for item in self.items]

    def restore(self, snapshot: List[CartItem]) -> None:
        self.items = [item.model_copy() for item in snapshot]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.model_dump() for item in self.items],
            "total": self.total,
            "itemCount": self.item_count,
        }


class CartSynchronizer:
    """Cart operations for one session, mirrored to the remote cart store."""

    def __init__(self, repository: CartRepository, user_id: Optional[str] = None) -> None:
        """Purpose: Bind an empty local cart to a user's remote cart rows.
        Inputs/Outputs: Inputs are the cart repository and an optional user id; no return.
        Side Effects / State: Creates an empty CartState.
        Dependencies: CartRepository for remote writes.
        Failure Modes: None at init. Without a user id the cart is local-only.
        If Removed: Chat and cart endpoints cannot keep a session cart.
        Testing Notes: Construct with a failing store to exercise rollback.
        """
        self._repository = repository
        self._user_id = user_id
        self._state = CartState()
        self.hydrated = False

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def state(self) -> CartState:
        return self._state

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[None]:
        """Purpose: Snapshot local state around one optimistic mutation.
        Inputs/Outputs: Input is an action label for errors and logs; yields nothing.
        Side Effects / State: On a remote failure restores the snapshot.
        Dependencies: CartState.snapshot/restore.
        Failure Modes: Remote failures are re-raised as CartSyncError.
        If Removed: A failed write leaves the local cart diverged from the store.
        Testing Notes: Fail the store mid-clear and expect the exact prior items back.
        """
        snapshot = self._state.snapshot()
        try:
            yield
        except REMOTE_FAILURES as exc:
            self._state.restore(snapshot)
            logger.warning("user=%s action=%s status=rolled_back error=%s", self._user_id, action, exc)
            raise CartSyncError(f"Failed to {action}", details=str(exc)) from exc

    async def add(self, item: CartItem, quantity: int = 1) -> CartState:
        """Add units of an item; an existing line is incremented rather than duplicated."""
        if quantity < 1:
            raise InvalidRequestError("Quantity must be a positive integer")
        async with self._transaction("add to cart"):
            self._state.add(item, quantity)
            if self._user_id:
                payload = item.model_dump()
                payload["quantity"] = quantity
                await self._repository.add_item(self._user_id, payload)
        return self._state

    async def remove(self, name: str) -> CartState:
        """Remove one unit of an item; unknown names are a no-op."""
        item = self._state.find(name)
        if item is None:
            return self._state
        async with self._transaction("remove from cart"):
            self._state.set_quantity(name, item.quantity - 1)
            if self._user_id:
                await self._repository.remove_item(self._user_id, name, 1)
        return self._state

    async def set_quantity(self, name: str, quantity: int) -> CartState:
        """Purpose: Set a line's quantity locally; the store sees a relative change.
        Inputs/Outputs: Inputs are the item name and new quantity; output is the state.
        Side Effects / State: Mutates the local line, then adds or removes
            |new - old| units remotely.
        Dependencies: CartRepository.add_item/remove_item.
        Failure Modes: CartSyncError after rollback. Concurrent updates from another
            session can be lost because the store has no absolute set.
        If Removed: Quantity steppers cannot be reconciled with the store.
        Testing Notes: 2 -> 5 issues an add of 3; 3 -> 0 removes 3 and drops the line.
        """
        item = self._state.find(name)
        if item is None:
            return self._state
        old_quantity = item.quantity
        new_quantity = max(0, quantity)
        if new_quantity == old_quantity:
            return self._state
        snapshot_item = item.model_copy()
        delta = new_quantity - old_quantity
        async with self._transaction("update quantity"):
            self._state.set_quantity(name, new_quantity)
            if self._user_id:
                if delta > 0:
                    payload = snapshot_item.model_dump()
                    payload["quantity"] = delta
                    await self._repository.add_item(self._user_id, payload)
                else:
                    await self._repository.remove_item(self._user_id, name, -delta)
        return self._state

    async def clear(self) -> CartState:
        async with self._transaction("clear cart"):
            self._state.clear()
            if self._user_id:
                await self._repository.clear(self._user_id)
        return self._state

    async def hydrate(self) -> CartState:
        """Purpose: Rebuild the local cart from the remote rows.
        Inputs/Outputs: No inputs; output is the rebuilt state.
        Side Effects / State: Clears local state, then replays each row as an add
            followed by a quantity correction. No remote writes.
        Dependencies: CartRepository.list_items.
        Failure Modes: A failed read raises CartSyncError and leaves local state as is.
            Mutations issued while hydrating are not supported.
        If Removed: A new session starts with an empty cart despite stored rows.
        Testing Notes: Rows with quantity 3 hydrate to a line with quantity 3.
        """
        if not self._user_id:
            return self._state
        try:
            rows = await self._repository.list_items(self._user_id)
        except StoreError as exc:
            logger.warning("user=%s action=hydrate status=error error=%s", self._user_id, exc)
            raise CartSyncError("Failed to load cart", details=str(exc)) from exc

        self._state.clear()
        for row in rows:
            try:
                item = CartItem(
                    name=str(row.get("name") or ""),
                    price=float(row.get("price") or 0),
                    image=row.get("image"),
                    product_id=row.get("product_id"),
                )
                quantity = int(row.get("quantity") or 1)
            except (ValidationError, TypeError, ValueError):
                logger.warning("user=%s action=hydrate skipped_row=%s", self._user_id, row.get("id"))
                continue
            # Rows sharing a name stack onto one line.
            existing = self._state.find(item.name)
            held = existing.quantity if existing is not None else 0
            self._state.add(item, 1)
            if quantity > 1:
                self._state.set_quantity(item.name, held + quantity)
        self.hydrated = True
        logger.info("user=%s action=hydrate items=%d", self._user_id, self._state.item_count)
        return self._state


class CartSessions:
    """One hydrated CartSynchronizer per user id, least recently used evicted first."""

    def __init__(self, repository: CartRepository, max_sessions: Optional[int] = None) -> None:
        self._repository = repository
        self._max_sessions = max_sessions
        self._sessions: "OrderedDict[str, CartSynchronizer]" = OrderedDict()

    async def get(self, user_id: str) -> CartSynchronizer:
        """Purpose: Return the user's synchronizer, creating and hydrating it on first use.
        Inputs/Outputs: Input is a user id; output is a CartSynchronizer.
        Side Effects / State: May hydrate from the store and evict old sessions.
        Dependencies: CartSynchronizer.hydrate and _prune_sessions.
        Failure Modes: CartSyncError when hydration fails; nothing is cached then.
        If Removed: Every request would start from an empty local cart.
        Testing Notes: Set max_sessions=1 and verify the older user is evicted.
        """
        existing = self._sessions.get(user_id)
        if existing is not None:
            self._sessions.move_to_end(user_id)
            return existing
        synchronizer = CartSynchronizer(self._repository, user_id)
        await synchronizer.hydrate()
        self._sessions[user_id] = synchronizer
        self._prune_sessions()
        return synchronizer

    def drop(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def _prune_sessions(self) -> bool:
        # Remove least-recent sessions when above the configured cap.
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        removed = False
        while len(self._sessions) > self._max_sessions:
            user_id, _ = self._sessions.popitem(last=False)
            logger.info("user=%s action=evict_session", user_id)
            removed = True
        return removed
