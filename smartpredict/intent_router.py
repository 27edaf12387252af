"""Chat intent routing for the shopping concierge.

Role:
    Turns one free-text chat message into exactly one IntentOutcome. Rules are
    evaluated in a fixed priority order against the normalized message and the
    first match wins; anything unmatched becomes a streamed model reply.

Rule order:
    add_to_cart, remove_from_cart, checkout, add_favorite, remove_favorite,
    show_favorites, cart_contents, set_preference, product_search,
    weekly_deals, order_history, then the generative fallback.

Rule contracts:
    Cart rules resolve the product name through ProductLookup and never touch
    the cart themselves; the caller hands cart outcomes to the CartSynchronizer.
    Favorites and preference rules persist through the record store.
    A StoreError raised by any handler becomes an ErrorOutcome.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from .cart_repository import CartRepository
from .catalog import ProductLookup
from .errors import GenerationError, StoreError
from .insights import InsightService
from .models import (
    AddFavorite,
    AddToCart,
    CartContents,
    ChatMessage,
    Checkout,
    ErrorOutcome,
    IntentOutcome,
    OrderHistory,
    PlainText,
    ProductNotAvailable,
    ProductSearch,
    RemoveFavorite,
    RemoveFromCart,
    SetPreference,
    ShowFavorites,
    WeeklyDeals,
)
from .mood import detect_mood
from .prompt_loader import render_prompt
from .record_store import RecordStore
from .rule_table import IntentRule, RuleTable
from .utils import normalize_message

logger = logging.getLogger("smartpredict.router")

APOLOGY_REPLY = "Sorry, I'm having trouble responding right now. Please try again later."
STORE_ERROR_REPLY = "Something went wrong while saving your request. Please try again."

FAVORITES = r"(?:my\s+)?favou?rites?"

ADD_TO_CART_RE = re.compile(
    rf"add\s+(?!.*\bto\s+{FAVORITES}\b)(?P<item>.+?)(?:\s+to\s+(?:the\s+|my\s+)?cart)?[.!?]*"
)
REMOVE_FROM_CART_RE = re.compile(
    rf"remove\s+(?!.*\bfrom\s+{FAVORITES}\b)(?P<item>.+?)(?:\s+from\s+(?:the\s+|my\s+)?cart)?[.!?]*"
)
CHECKOUT_RE = re.compile(r"(?:checkout|place my order|place order)[.!?]*")
ADD_FAVORITE_RE = re.compile(rf"add\s+(?P<item>.+?)\s+to\s+{FAVORITES}[.!?]*")
REMOVE_FAVORITE_RE = re.compile(rf"remove\s+(?P<item>.+?)\s+from\s+{FAVORITES}[.!?]*")
SHOW_FAVORITES_RE = re.compile(r"show\s+my\s+favou?rites")
CART_CONTENTS_RE = re.compile(r"show my cart|what's in my cart|what is in my cart|cart contents|my cart")
SET_PREFERENCE_RE = re.compile(r"set\s+my\s+preferences?\s+to\s+(?P<value>.+?)[.!?]*")
FIND_RE = re.compile(r"find\s+(?P<item>.+?)(?:\s+(?:for\s+me|please))*[.!?]*")
WEEKLY_DEALS_RE = re.compile(r"weekly deals")
ORDER_HISTORY_RE = re.compile(r"order history")

TRAILING_FILLERS = (
    "to the cart",
    "to my cart",
    "to cart",
    "from the cart",
    "from my cart",
    "from cart",
    "for me",
    "please",
)
LEADING_ARTICLES = ("a ", "an ", "the ", "some ")


def clean_product_name(text: str) -> str:
    """Purpose: Strip filler phrases and articles around an extracted product name.
    Inputs/Outputs: Input is the raw captured text; output is the bare product name.
    Side Effects / State: None; pure function.
    Dependencies: Uses TRAILING_FILLERS and LEADING_ARTICLES.
    Failure Modes: Returns an empty string when only filler was captured.
    If Removed: "add milk to the cart please" looks up "milk to the cart please".
    Testing Notes: Verify repeated fillers ("to cart please") are all removed.
    """
    # Peel trailing fillers until none is left, then leading articles.
    name = text.strip(" .,!?")
    changed = True
    while changed and name:
        changed = False
        for filler in TRAILING_FILLERS:
            if name == filler:
                name = ""
                changed = True
                break
            if name.endswith(" " + filler):
                name = name[: -len(filler)].strip(" .,!?")
                changed = True
                break
    for article in LEADING_ARTICLES:
        if name.startswith(article):
            name = name[len(article):].strip()
            break
    return name


@dataclass
class RouteContext:
    """Per-message context handed to every rule handler."""
    user_id: str
    message: str
    normalized: str
    history: List[Dict[str, Any]] = field(default_factory=list)


class IntentRouter:
    def __init__(
        self,
        store: RecordStore,
        lookup: ProductLookup,
        cart_repository: CartRepository,
        insights: InsightService,
        generator: Any,
        prompts_dir: Path,
        order_history_limit: int = 10,
        context_purchase_limit: int = 10,
    ) -> None:
        """Purpose: Wire the router to its collaborators and build the rule table.
        Inputs/Outputs: Inputs are the record store, product lookup, cart repository,
            insight service, generative client, prompt directory, and limits.
        Side Effects / State: Builds a RuleTable with the handlers in priority order.
        Dependencies: RuleTable/IntentRule and the handler methods on this class.
        Failure Modes: None at init.
        If Removed: The chat endpoint cannot classify messages.
        Testing Notes: Instantiate with fakes and assert table names order.
        """
        self._store = store
        self._lookup = lookup
        self._cart = cart_repository
        self._insights = insights
        self._generator = generator
        self._prompts_dir = prompts_dir
        self._order_history_limit = order_history_limit
        self._context_purchase_limit = context_purchase_limit
        self._rules = RuleTable(
            [
                IntentRule("add_to_cart", ADD_TO_CART_RE, self._add_to_cart),
                IntentRule("remove_from_cart", REMOVE_FROM_CART_RE, self._remove_from_cart),
                IntentRule("checkout", CHECKOUT_RE, self._checkout),
                IntentRule("add_favorite", ADD_FAVORITE_RE, self._add_favorite),
                IntentRule("remove_favorite", REMOVE_FAVORITE_RE, self._remove_favorite),
                IntentRule("show_favorites", SHOW_FAVORITES_RE, self._show_favorites, search=True),
                IntentRule("cart_contents", CART_CONTENTS_RE, self._cart_contents, search=True),
                IntentRule("set_preference", SET_PREFERENCE_RE, self._set_preference),
                IntentRule("product_search", FIND_RE, self._find),
                IntentRule("weekly_deals", WEEKLY_DEALS_RE, self._weekly_deals, search=True),
                IntentRule("order_history", ORDER_HISTORY_RE, self._order_history, search=True),
            ]
        )

    @property
    def rule_names(self) -> List[str]:
        return self._rules.names

    async def route(
        self,
        message: str,
        user_id: str,
        history: Optional[Iterable[Any]] = None,
    ) -> IntentOutcome:
        """Purpose: Classify one chat message and run the matching action.
        Inputs/Outputs: Inputs are raw message text, user id, and prior turns; output
            is exactly one IntentOutcome. The fallback outcome carries a lazy stream.
        Side Effects / State: Favorites and preference rules write to the store.
        Dependencies: RuleTable.dispatch and the generative fallback.
        Failure Modes: StoreError inside a handler becomes ErrorOutcome.
        If Removed: Chat has no intent handling at all.
        Testing Notes: "add milk to cart" resolves through the lookup to AddToCart.
        """
        # Normalize once, dispatch, and fall back to the model when nothing matches.
        context = RouteContext(
            user_id=user_id,
            message=message or "",
            normalized=normalize_message(message or ""),
            history=_history_dicts(history or []),
        )
        try:
            dispatched = await self._rules.dispatch(context.normalized, context)
        except StoreError as exc:
            logger.error("user=%s status=store_error error=%s", user_id, exc)
            return ErrorOutcome(message=STORE_ERROR_REPLY)

        if dispatched is None:
            logger.info("user=%s intent=plain_text", user_id)
            return PlainText(fragments=self._stream_reply(context))
        rule_name, outcome = dispatched
        logger.info("user=%s rule=%s outcome=%s", user_id, rule_name, outcome.type)
        return outcome

    # --- Rule handlers ---

    async def _add_to_cart(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        name = clean_product_name(match.group("item"))
        product = await self._lookup.find(name, context.user_id)
        if product is None:
            return ProductNotAvailable(product_name=name)
        return AddToCart(product=product)

    async def _remove_from_cart(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        name = clean_product_name(match.group("item"))
        product = await self._lookup.find(name, context.user_id)
        if product is None:
            return ProductNotAvailable(product_name=name)
        return RemoveFromCart(product=product)

    async def _checkout(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        return Checkout()

    async def _add_favorite(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        """Resolve the product and save it to favorites once."""
        name = clean_product_name(match.group("item"))
        product = await self._lookup.find(name, context.user_id)
        if product is None:
            return ProductNotAvailable(product_name=name)
        existing = await self._store.select(
            "favorites",
            eq={"user_id": context.user_id, "product_name": product.name},
            limit=1,
        )
        if not existing:
            await self._store.insert(
                "favorites",
                {"user_id": context.user_id, "product_id": product.id, "product_name": product.name},
            )
        return AddFavorite(product_name=product.name)

    async def _remove_favorite(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        """Purpose: Delete the favorite naming exactly one resolved product.
        Inputs/Outputs: Input is the match holding the product fragment; output is
            RemoveFavorite whose `removed` tells whether a row existed.
        Side Effects / State: Deletes favorites rows of this user with that name.
        Dependencies: ProductLookup.find, then RecordStore select/delete.
        Failure Modes: StoreError propagates and becomes ErrorOutcome in route().
        If Removed: Favorites can only grow from the chat.
        Testing Notes: With "Whole Milk" and "Oat Milk" saved, only the resolved one goes.
        """
        # Resolve like add_favorite does; unresolved names must match a row exactly.
        name = clean_product_name(match.group("item"))
        if not name:
            return RemoveFavorite(product_name=name, removed=False)
        product = await self._lookup.find(name, context.user_id)
        rows: List[Dict[str, Any]] = []
        if product is not None:
            rows = await self._store.select(
                "favorites",
                eq={"user_id": context.user_id, "product_name": product.name},
            )
        if not rows:
            saved = await self._store.select("favorites", eq={"user_id": context.user_id})
            rows = [row for row in saved if str(row.get("product_name") or "").lower() == name]
        for row in rows:
            await self._store.delete("favorites", {"id": row["id"]})
        product_name = rows[0].get("product_name", name) if rows else (product.name if product else name)
        return RemoveFavorite(product_name=product_name, removed=bool(rows))

    async def _show_favorites(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        rows = await self._store.select("favorites", eq={"user_id": context.user_id}, order_by="created_at")
        return ShowFavorites(favorites=rows)

    async def _cart_contents(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        return CartContents(items=await self._cart.list_items(context.user_id))

    async def _set_preference(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        """Purpose: Add a shopping preference with set semantics.
        Inputs/Outputs: Input is the match holding the value; output is SetPreference
            with the full preference list.
        Side Effects / State: Creates the profile when missing, otherwise appends the
            value to shopping_preferences if absent.
        Dependencies: RecordStore select/insert/update on user_profiles.
        Failure Modes: StoreError propagates and becomes ErrorOutcome in route().
        If Removed: Preferences can only be edited outside the chat.
        Testing Notes: Setting the same value twice keeps a single entry.
        """
        value = match.group("value").strip(" .,!?")
        rows = await self._store.select("user_profiles", eq={"id": context.user_id}, limit=1)
        if not rows:
            preferences = [value]
            await self._store.insert(
                "user_profiles",
                {"id": context.user_id, "shopping_preferences": preferences, "dietary_restrictions": []},
            )
            return SetPreference(value=value, preferences=preferences)
        preferences = list(rows[0].get("shopping_preferences") or [])
        if value not in preferences:
            preferences.append(value)
            await self._store.update(
                "user_profiles",
                {"id": context.user_id},
                {"shopping_preferences": preferences},
            )
        return SetPreference(value=value, preferences=preferences)

    async def _find(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        query = clean_product_name(match.group("item"))
        product = await self._lookup.find(query, context.user_id)
        return ProductSearch(query=query, result=product)

    async def _weekly_deals(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        mood = detect_mood(context.message)
        deals = await self._insights.generate_weekly_deals(context.user_id, mood=mood)
        return WeeklyDeals(deals=deals, mood=mood)

    async def _order_history(self, match: re.Match, context: RouteContext) -> IntentOutcome:
        rows = await self._store.select(
            "purchase_history",
            eq={"user_id": context.user_id},
            order_by="purchase_date",
            descending=True,
            limit=self._order_history_limit,
        )
        return OrderHistory(orders=rows)

    # --- Generative fallback ---

    async def _stream_reply(self, context: RouteContext) -> AsyncIterator[str]:
        """Purpose: Stream a model reply seeded with the user's profile and purchases.
        Inputs/Outputs: Input is the RouteContext; yields text fragments in order.
        Side Effects / State: Reads the store and calls the model when first iterated.
        Dependencies: chat_system.txt, generator.stream_complete.
        Failure Modes: A model failure yields APOLOGY_REPLY instead, appended after any
            fragments already sent. Store failures only drop the context.
        If Removed: Unmatched messages get no answer.
        Testing Notes: Fail the fake stream after one fragment and expect the apology last.
        """
        system_prompt = render_prompt(
            self._prompts_dir / "chat_system.txt",
            await self._user_context(context.user_id),
        )
        messages = context.history + [{"role": "user", "content": context.message}]
        sent = False
        try:
            async for fragment in self._generator.stream_complete(system_prompt, messages):
                sent = True
                yield fragment
        except GenerationError as exc:
            logger.error("user=%s intent=plain_text status=model_error error=%s", context.user_id, exc)
            yield ("\n\n" + APOLOGY_REPLY) if sent else APOLOGY_REPLY

    async def _user_context(self, user_id: str) -> Dict[str, str]:
        try:
            profiles = await self._store.select("user_profiles", eq={"id": user_id}, limit=1)
            purchases = await self._store.select(
                "purchase_history",
                eq={"user_id": user_id},
                order_by="purchase_date",
                descending=True,
                limit=self._context_purchase_limit,
            )
        except StoreError as exc:
            logger.warning("user=%s chat_context=unavailable error=%s", user_id, exc)
            profiles, purchases = [], []
        return {
            "PROFILE": json.dumps(profiles[0] if profiles else None, default=str),
            "RECENT_PURCHASES": json.dumps(purchases, default=str),
        }


def _history_dicts(history: Iterable[Any]) -> List[Dict[str, Any]]:
    turns: List[Dict[str, Any]] = []
    for turn in history:
        if isinstance(turn, ChatMessage):
            turns.append({"role": turn.role, "content": turn.content})
        elif isinstance(turn, dict) and turn.get("role") in ("user", "assistant"):
            turns.append({"role": turn["role"], "content": str(turn.get("content") or "")})
    return turns
