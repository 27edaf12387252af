from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One conversation turn; immutable once created."""
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=time.time)


class Product(BaseModel):
    """Catalog or purchase-history product resolved by the lookup."""
    id: str
    name: str
    category: str = "Unknown"
    price: float = Field(gt=0)
    image: Optional[str] = None


class CartItem(BaseModel):
    """Cart line identified by product display name."""
    name: str
    price: float
    quantity: int = Field(default=1, ge=1)
    image: Optional[str] = None
    product_id: Optional[str] = None

    @classmethod
    def from_product(cls, product: Product, quantity: int = 1) -> "CartItem":
        return cls(
            name=product.name,
            price=product.price,
            quantity=quantity,
            image=product.image,
            product_id=product.id,
        )


# --- Intent outcomes ---


class AddToCart(BaseModel):
    type: Literal["add_to_cart"] = "add_to_cart"
    product: Product


class RemoveFromCart(BaseModel):
    type: Literal["remove_from_cart"] = "remove_from_cart"
    product: Product


class Checkout(BaseModel):
    type: Literal["checkout"] = "checkout"


class AddFavorite(BaseModel):
    type: Literal["add_favorite"] = "add_favorite"
    product_name: str


class RemoveFavorite(BaseModel):
    type: Literal["remove_favorite"] = "remove_favorite"
    product_name: str
    removed: bool = True


class ShowFavorites(BaseModel):
    type: Literal["show_favorites"] = "show_favorites"
    favorites: List[Dict[str, Any]] = Field(default_factory=list)


class SetPreference(BaseModel):
    type: Literal["set_preference"] = "set_preference"
    value: str
    preferences: List[str] = Field(default_factory=list)


class ProductSearch(BaseModel):
    type: Literal["product_search"] = "product_search"
    query: str
    result: Optional[Product] = None


class WeeklyDeals(BaseModel):
    type: Literal["weekly_deals"] = "weekly_deals"
    deals: List[Dict[str, Any]] = Field(default_factory=list)
    mood: Optional[str] = None


class OrderHistory(BaseModel):
    type: Literal["order_history"] = "order_history"
    orders: List[Dict[str, Any]] = Field(default_factory=list)


class CartContents(BaseModel):
    type: Literal["cart_contents"] = "cart_contents"
    items: List[Dict[str, Any]] = Field(default_factory=list)


class ProductNotAvailable(BaseModel):
    type: Literal["product_not_available"] = "product_not_available"
    product_name: str


class PlainText(BaseModel):
    """Generative fallback; `fragments` is the lazy reply stream and is never serialized."""
    type: Literal["plain_text"] = "plain_text"
    content: str = ""
    fragments: Optional[Any] = Field(default=None, exclude=True)


class ErrorOutcome(BaseModel):
    type: Literal["error"] = "error"
    message: str


IntentOutcome = Union[
    AddToCart,
    RemoveFromCart,
    Checkout,
    AddFavorite,
    RemoveFavorite,
    ShowFavorites,
    SetPreference,
    ProductSearch,
    WeeklyDeals,
    OrderHistory,
    CartContents,
    ProductNotAvailable,
    PlainText,
    ErrorOutcome,
]


# --- API payloads ---


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    message: str
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list, alias="conversationHistory")


class CartRequest(BaseModel):
    """Request payload for cart mutations."""
    model_config = ConfigDict(populate_by_name=True)

    action: str
    user_id: str = Field(alias="userId")
    item: Optional[Dict[str, Any]] = None


class QuantityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    name: str
    quantity: int


class CheckoutRequest(BaseModel):
    """Request payload for checkout; items are validated by the checkout service."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(default="", alias="userId")
    cart_items: Any = Field(default=None, alias="cartItems")
