from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import pytest

from smartpredict.cart_repository import CartRepository
from smartpredict.catalog import ProductLookup
from smartpredict.config import BASE_DIR
from smartpredict.errors import GenerationError, StoreError
from smartpredict.insights import InsightService
from smartpredict.intent_router import IntentRouter
from smartpredict.models import Product
from smartpredict.record_store import RecordStore

PROMPTS_DIR = BASE_DIR / "prompts"
CATALOG_PATH = BASE_DIR / "data" / "catalog.json"


class FakeGenerator:
    """Stands in for GeminiClient: canned replies, optional failures, recorded prompts."""

    def __init__(
        self,
        reply: str = "[]",
        fragments: Sequence[str] = ("Hello", " there"),
        fail_complete: bool = False,
        fail_stream_after: Optional[int] = None,
    ) -> None:
        self.reply = reply
        self.fragments = list(fragments)
        self.fail_complete = fail_complete
        self.fail_stream_after = fail_stream_after
        self.prompts: List[str] = []
        self.streamed: List[List[Dict[str, Any]]] = []

    async def complete(self, system_prompt: str, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_complete:
            raise GenerationError("model down")
        return self.reply

    async def stream_complete(self, system_prompt: str, messages: Sequence[Dict[str, Any]]) -> AsyncIterator[str]:
        self.prompts.append(system_prompt)
        self.streamed.append(list(messages))
        for index, fragment in enumerate(self.fragments):
            if self.fail_stream_after is not None and index >= self.fail_stream_after:
                raise GenerationError("stream broke")
            yield fragment
        if self.fail_stream_after is not None and self.fail_stream_after >= len(self.fragments):
            raise GenerationError("stream broke")


class FailingStore(RecordStore):
    """In-memory store that raises StoreError for chosen (operation, collection) pairs."""

    def __init__(self, fail_on: Sequence[tuple] = ()) -> None:
        super().__init__()
        self.fail_on = set(fail_on)

    def _check(self, operation: str, collection: str) -> None:
        if (operation, collection) in self.fail_on:
            raise StoreError(f"{operation} on {collection} failed")

    async def select(self, collection, *args, **kwargs):
        self._check("select", collection)
        return await super().select(collection, *args, **kwargs)

    async def insert(self, collection, rows):
        self._check("insert", collection)
        return await super().insert(collection, rows)

    async def update(self, collection, match, values):
        self._check("update", collection)
        return await super().update(collection, match, values)

    async def delete(self, collection, match):
        self._check("delete", collection)
        return await super().delete(collection, match)


def run(coro):
    return asyncio.run(coro)


async def collect(fragments: AsyncIterator[str]) -> List[str]:
    return [fragment async for fragment in fragments]


def product(name: str, price: float, category: str = "Grocery", product_id: Optional[str] = None) -> Product:
    return Product(id=product_id or name.lower().replace(" ", "-"), name=name, category=category, price=price)


@pytest.fixture
def catalog() -> List[Product]:
    return [
        product("Whole Milk", 3.68, "Dairy"),
        product("Bread", 1.98, "Bakery"),
        product("Lay's Potato Chips", 2.98, "Snacks"),
        product("Great Value Organic Bananas", 2.48, "Produce"),
    ]


@pytest.fixture
def store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def lookup(store, catalog) -> ProductLookup:
    return ProductLookup(store, catalog)


@pytest.fixture
def repository(store) -> CartRepository:
    return CartRepository(store)


@pytest.fixture
def insights(store, generator) -> InsightService:
    return InsightService(store, generator, PROMPTS_DIR)


@pytest.fixture
def router(store, lookup, repository, insights, generator) -> IntentRouter:
    return IntentRouter(
        store=store,
        lookup=lookup,
        cart_repository=repository,
        insights=insights,
        generator=generator,
        prompts_dir=PROMPTS_DIR,
    )
