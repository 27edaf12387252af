from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .cart_repository import CartRepository
from .cart_sync import CartSessions
from .catalog import CatalogLoader, ProductLookup, search_catalog
from .checkout import CheckoutService
from .config import Settings, load_settings
from .errors import CartSyncError, InvalidRequestError, ItemNotFoundError, SmartPredictError
from .gemini_client import GeminiClient
from .insights import InsightService
from .intent_router import IntentRouter
from .models import (
    AddToCart,
    CartItem,
    CartRequest,
    ChatRequest,
    Checkout,
    CheckoutRequest,
    ErrorOutcome,
    IntentOutcome,
    PlainText,
    QuantityRequest,
    RemoveFromCart,
)
from .record_store import RecordStore

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("smartpredict").setLevel(log_level)
logger = logging.getLogger("smartpredict.api")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)
else:
    load_dotenv()

EMPTY_CART_REPLY = "Your cart is empty. Add something before checking out."


@dataclass
class Services:
    """Collaborators shared by every request, built once per process."""
    store: RecordStore
    lookup: ProductLookup
    cart_repository: CartRepository
    cart_sessions: CartSessions
    insights: InsightService
    router: IntentRouter
    checkout: CheckoutService


def build_services(settings: Settings, generator: Optional[Any] = None) -> Services:
    """Purpose: Construct the store, catalog, model client, and services from settings.
    Inputs/Outputs: Inputs are Settings and an optional generator override; output
        is a Services bundle.
    Side Effects / State: Reads the catalog and record files; configures the model SDK.
    Dependencies: RecordStore, CatalogLoader, GeminiClient, and the service classes.
    Failure Modes: A missing GEMINI_API_KEY raises ValueError; an unreadable catalog
        raises from CatalogLoader.load.
    If Removed: The app has no collaborators at startup.
    Testing Notes: Pass a fake generator to avoid network access.
    """
    # Wire the store first; every service reads or writes through it.
    store = RecordStore(settings.store_path)
    products, meta = CatalogLoader(settings.catalog_path).load()
    logger.info("startup catalog=%s updated_at=%s", meta.file_name, meta.updated_at)
    lookup = ProductLookup(store, products)
    model = generator if generator is not None else GeminiClient(settings)
    cart_repository = CartRepository(store)
    insights = InsightService(store, model, settings.prompts_dir)
    router = IntentRouter(
        store=store,
        lookup=lookup,
        cart_repository=cart_repository,
        insights=insights,
        generator=model,
        prompts_dir=settings.prompts_dir,
        order_history_limit=settings.order_history_limit,
        context_purchase_limit=settings.context_purchase_limit,
    )
    return Services(
        store=store,
        lookup=lookup,
        cart_repository=cart_repository,
        cart_sessions=CartSessions(cart_repository, max_sessions=settings.max_cart_sessions),
        insights=insights,
        router=router,
        checkout=CheckoutService(store),
    )


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise InvalidRequestError("Missing userId")
    return user_id


def _services(request: Request) -> Services:
    return request.app.state.services


async def _apply_outcome(services: Services, user_id: str, outcome: IntentOutcome) -> Dict[str, Any]:
    """Purpose: Carry out the cart side of a chat outcome and build the JSON reply.
    Inputs/Outputs: Inputs are services, user id, and a non-streaming outcome; output
        is the response body with `type` and, for cart intents, the cart state.
    Side Effects / State: Mutates the user's session cart; checkout places an order
        and clears the cart.
    Dependencies: CartSessions, CartSynchronizer, and CheckoutService.
    Failure Modes: CartSyncError becomes an error outcome; checkout errors propagate
        to the exception handlers.
    If Removed: Chat cart intents are reported but never applied.
    Testing Notes: "add milk" through the chat must show up in /api/cart/state.
    """
    if not isinstance(outcome, (AddToCart, RemoveFromCart, Checkout)):
        return outcome.model_dump()

    synchronizer = await services.cart_sessions.get(user_id)
    try:
        if isinstance(outcome, AddToCart):
            await synchronizer.add(CartItem.from_product(outcome.product))
        elif isinstance(outcome, RemoveFromCart):
            await synchronizer.remove(outcome.product.name)
        else:
            if not synchronizer.state.items:
                return ErrorOutcome(message=EMPTY_CART_REPLY).model_dump()
            lines = [item.model_dump() for item in synchronizer.state.items]
            order = await services.checkout.place_order(user_id, lines)
            await _clear_after_checkout(services.cart_sessions, user_id)
            return {**outcome.model_dump(), "order": order, "cart": synchronizer.state.to_dict()}
    except CartSyncError as exc:
        return ErrorOutcome(message=exc.message).model_dump()
    return {**outcome.model_dump(), "cart": synchronizer.state.to_dict()}


async def _clear_after_checkout(sessions: CartSessions, user_id: str) -> None:
    # The order is already committed; loading or clearing the cart must not fail the checkout.
    try:
        synchronizer = await sessions.get(user_id)
        await synchronizer.clear()
    except CartSyncError as exc:
        logger.error("user=%s checkout=clear_cart status=error error=%s", user_id, exc)


def _cart_item(item: Optional[Dict[str, Any]]) -> CartItem:
    if not isinstance(item, dict):
        raise InvalidRequestError("Missing item")
    price = item.get("price")
    if not item.get("name") or not isinstance(price, (int, float)) or isinstance(price, bool):
        raise InvalidRequestError("Missing or invalid item fields")
    try:
        return CartItem(
            name=str(item["name"]),
            price=float(price),
            image=item.get("image"),
            product_id=str(item["id"]) if item.get("id") is not None else item.get("product_id"),
        )
    except ValidationError as exc:
        raise InvalidRequestError("Missing or invalid item fields", details=str(exc)) from exc


def _unit_count(item: Dict[str, Any]) -> int:
    quantity = item.get("quantity", 1)
    if quantity is None:
        return 1
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise InvalidRequestError("Quantity must be a positive integer")
    return quantity


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Purpose: Build the FastAPI application with handlers and routes.
    Inputs/Outputs: Inputs are optional prebuilt services and settings; output is the app.
    Side Effects / State: Registers routes; the lifespan builds services from settings
        when none were supplied.
    Dependencies: FastAPI, CORSMiddleware, build_services.
    Failure Modes: Startup fails when services cannot be built.
    If Removed: There is no HTTP surface.
    Testing Notes: Pass Services built on fakes and use TestClient.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            app.state.services = build_services(settings or load_settings())
        logger.info("startup status=ready")
        yield
        logger.info("shutdown status=done")

    app = FastAPI(title="SmartPredict Storefront", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SmartPredictError)
    async def handle_service_error(request: Request, exc: SmartPredictError) -> JSONResponse:
        logger.warning("path=%s status=%d error=%s details=%s", request.url.path, exc.status_code, exc.message, exc.details)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("path=%s status=400 error=validation", request.url.path)
        return JSONResponse(status_code=400, content={"error": "Missing or invalid request fields"})

    @app.get("/api/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/chat")
    async def chat(payload: ChatRequest, request: Request) -> Any:
        """Purpose: Route one chat message and reply with a stream or a JSON outcome.
        Inputs/Outputs: Input is ChatRequest; output is text/plain streamed for the
            generative fallback, otherwise the outcome as JSON.
        Side Effects / State: Cart intents mutate the session cart; favorites and
            preferences are persisted by the router.
        Dependencies: IntentRouter.route and _apply_outcome.
        Failure Modes: Errors become error outcomes or mapped JSON errors.
        If Removed: The chat assistant has no backend.
        Testing Notes: Unmatched text streams the fake model's fragments in order.
        """
        services = _services(request)
        user_id = _require_user(payload.user_id)
        outcome = await services.router.route(payload.message, user_id, payload.conversation_history)
        if isinstance(outcome, PlainText) and outcome.fragments is not None:
            return StreamingResponse(outcome.fragments, media_type="text/plain; charset=utf-8")
        return await _apply_outcome(services, user_id, outcome)

    @app.get("/api/cart")
    async def get_cart(request: Request, userId: Optional[str] = None) -> Dict[str, Any]:
        services = _services(request)
        items = await services.cart_repository.list_items(_require_user(userId))
        return {"items": items}

    @app.post("/api/cart")
    async def mutate_cart(payload: CartRequest, request: Request) -> Dict[str, Any]:
        """Purpose: Apply add, remove, or clear to the user's session cart.
        Inputs/Outputs: Input is CartRequest; output is {success, cart}.
        Side Effects / State: Optimistic local mutation mirrored to the store.
        Dependencies: CartSessions and CartSynchronizer.
        Failure Modes: 400 for bad fields or action, 404 for removing an item not in
            the cart, 500 after a rolled-back remote failure.
        If Removed: The storefront cart buttons have no backend.
        Testing Notes: An item without a price returns 400.
        """
        services = _services(request)
        user_id = _require_user(payload.user_id)
        action = payload.action
        if action == "add":
            item = _cart_item(payload.item)
            synchronizer = await services.cart_sessions.get(user_id)
            await synchronizer.add(item, _unit_count(payload.item or {}))
        elif action == "remove":
            name = str((payload.item or {}).get("name") or "")
            if not name:
                raise InvalidRequestError("Missing item name")
            synchronizer = await services.cart_sessions.get(user_id)
            if synchronizer.state.find(name) is None:
                raise ItemNotFoundError("Item not found in cart")
            await synchronizer.remove(name)
        elif action == "clear":
            synchronizer = await services.cart_sessions.get(user_id)
            await synchronizer.clear()
        else:
            raise InvalidRequestError("Invalid action")
        return {"success": True, "cart": synchronizer.state.to_dict()}

    @app.post("/api/cart/quantity")
    async def update_quantity(payload: QuantityRequest, request: Request) -> Dict[str, Any]:
        services = _services(request)
        synchronizer = await services.cart_sessions.get(_require_user(payload.user_id))
        state = await synchronizer.set_quantity(payload.name, payload.quantity)
        return state.to_dict()

    @app.get("/api/cart/state")
    async def cart_state(request: Request, userId: Optional[str] = None) -> Dict[str, Any]:
        services = _services(request)
        synchronizer = await services.cart_sessions.get(_require_user(userId))
        return synchronizer.state.to_dict()

    @app.post("/api/checkout")
    async def checkout(payload: CheckoutRequest, request: Request) -> Dict[str, Any]:
        """Place an order from the submitted lines, then clear the user's cart."""
        services = _services(request)
        order = await services.checkout.place_order(payload.user_id, payload.cart_items)
        await _clear_after_checkout(services.cart_sessions, payload.user_id)
        return {"success": True, "message": "Order placed successfully", "order": order}

    @app.get("/api/search")
    async def search(request: Request, query: str = "") -> Dict[str, Any]:
        services = _services(request)
        products = search_catalog(services.lookup.catalog, query)
        return {"products": [product.model_dump() for product in products]}

    @app.get("/api/recommendations")
    async def recommendations(request: Request, userId: Optional[str] = None, mood: Optional[str] = None) -> Dict[str, Any]:
        services = _services(request)
        suggestions = await services.insights.generate_recommendations(_require_user(userId), mood=mood)
        return {"smartSuggestions": suggestions}

    @app.get("/api/predictions")
    async def predictions(request: Request, userId: Optional[str] = None) -> Dict[str, Any]:
        services = _services(request)
        return {"predictions": await services.insights.predict_restock(_require_user(userId))}

    @app.get("/api/weekly-deals")
    async def weekly_deals(request: Request, userId: Optional[str] = None, mood: Optional[str] = None) -> Dict[str, Any]:
        services = _services(request)
        deals = await services.insights.generate_weekly_deals(_require_user(userId), mood=mood)
        return {"weeklyDeals": deals}

    return app


app = create_app()


def run() -> None:
    """Start the API with uvicorn; HOST and PORT come from the environment."""
    uvicorn.run(
        "smartpredict.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=log_level_name.lower(),
    )
