from __future__ import annotations

"""Model-generated recommendations, restock predictions, and weekly deals.

Each generator renders a prompt template, asks the model for a JSON array,
records every entry in `ai_insights`, and falls back to a static list when the
model, the reply, or the store lets it down.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import GenerationError, StoreError
from .prompt_loader import render_prompt
from .record_store import RecordStore
from .utils import safe_json_array

logger = logging.getLogger("smartpredict.insights")

FALLBACK_RECOMMENDATIONS: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "Great Value Organic Bananas",
        "price": 2.48,
        "image": "/placeholder.svg?height=120&width=120",
        "confidence": 95,
        "reason": "You buy these every week",
    },
    {
        "id": 2,
        "name": "Tide Laundry Detergent",
        "price": 12.97,
        "image": "/placeholder.svg?height=120&width=120",
        "confidence": 88,
        "reason": "Based on your purchase history",
    },
    {
        "id": 3,
        "name": "Honey Nut Cheerios",
        "price": 4.98,
        "image": "/placeholder.svg?height=120&width=120",
        "confidence": 82,
        "reason": "Popular with similar shoppers",
    },
]

FALLBACK_PREDICTIONS: List[Dict[str, Any]] = [
    {
        "item": "Toilet Paper",
        "daysLeft": 3,
        "confidence": "High",
        "action": "Order now for delivery tomorrow",
        "urgency_level": "high",
    },
    {
        "item": "Dog Food",
        "daysLeft": 5,
        "confidence": "Medium",
        "action": "Add to your next order",
        "urgency_level": "medium",
    },
]

FALLBACK_DEALS: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "Coca-Cola 12-pack",
        "originalPrice": 6.98,
        "salePrice": 4.98,
        "savings": 2.0,
        "image": "/placeholder.svg?height=80&width=80",
        "deal_reason": "Popular choice",
    },
    {
        "id": 2,
        "name": "Lay's Potato Chips",
        "originalPrice": 4.48,
        "salePrice": 2.98,
        "savings": 1.5,
        "image": "/placeholder.svg?height=80&width=80",
        "deal_reason": "Great snack deal",
    },
]

RECOMMENDATION_SYSTEM = (
    "You are a JSON API that returns only valid JSON arrays for product recommendations. "
    "Never include explanatory text."
)
PREDICTION_SYSTEM = (
    "You are a JSON API that returns only valid JSON arrays for restock predictions. "
    "Never include explanatory text."
)
DEAL_SYSTEM = (
    "You are a JSON API that returns only valid JSON arrays for weekly deals. Never include explanatory text."
)

PREDICTION_CONFIDENCE = {"high": 0.9, "medium": 0.7}


def recommendation_confidence(entry: Dict[str, Any]) -> float:
    value = entry.get("confidence")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0.0, min(1.0, float(value) / 100))
    return 0.5


def prediction_confidence(entry: Dict[str, Any]) -> float:
    return PREDICTION_CONFIDENCE.get(str(entry.get("confidence", "")).lower(), 0.5)


def mood_instruction(mood: Optional[str]) -> str:
    if not mood:
        return ""
    return f"The shopper seems {mood} right now; favour products that suit that mood."


class InsightService:
    """Generate and record model-backed shopping insights for a user."""

    def __init__(self, store: RecordStore, generator: Any, prompts_dir: Path, history_limit: int = 50) -> None:
        self._store = store
        self._generator = generator
        self._prompts_dir = prompts_dir
        self._history_limit = history_limit

    async def generate_recommendations(self, user_id: str, mood: Optional[str] = None) -> List[Dict[str, Any]]:
        """Purpose: Produce five personalized product recommendations.
        Inputs/Outputs: Inputs are user id and an optional mood; output is a list of dicts.
        Side Effects / State: Records each recommendation in ai_insights.
        Dependencies: recommendations.txt, the generator, and _generate.
        Failure Modes: Any model or store failure returns FALLBACK_RECOMMENDATIONS.
        If Removed: The storefront has no smart suggestions panel.
        Testing Notes: Make the fake model raise and expect the fallback list.
        """
        profile = await self._profile(user_id)
        purchases = await self._purchases(user_id, self._history_limit)
        return await self._generate(
            user_id,
            insight_type="recommendation",
            template="recommendations.txt",
            values={
                "PROFILE": _dump(profile),
                "PURCHASES": _dump(purchases),
                "MOOD": mood_instruction(mood),
            },
            system_prompt=RECOMMENDATION_SYSTEM,
            fallback=FALLBACK_RECOMMENDATIONS,
            confidence=recommendation_confidence,
        )

    async def predict_restock(self, user_id: str) -> List[Dict[str, Any]]:
        """Predict which regularly bought items are about to run out."""
        purchases = await self._purchases(user_id, None)
        return await self._generate(
            user_id,
            insight_type="prediction",
            template="restock.txt",
            values={"PURCHASES": _dump(purchases)},
            system_prompt=PREDICTION_SYSTEM,
            fallback=FALLBACK_PREDICTIONS,
            confidence=prediction_confidence,
        )

    async def generate_weekly_deals(self, user_id: str, mood: Optional[str] = None) -> List[Dict[str, Any]]:
        """Generate 3-4 weekly deals, biased by the shopper's mood when one is known."""
        profile = await self._profile(user_id)
        purchases = await self._purchases(user_id, None)
        return await self._generate(
            user_id,
            insight_type="deal",
            template="weekly_deals.txt",
            values={
                "PROFILE": _dump(profile),
                "PURCHASES": _dump(purchases),
                "MOOD": mood_instruction(mood),
            },
            system_prompt=DEAL_SYSTEM,
            fallback=FALLBACK_DEALS,
            confidence=lambda _entry: 0.8,
        )

    async def _generate(
        self,
        user_id: str,
        insight_type: str,
        template: str,
        values: Dict[str, str],
        system_prompt: str,
        fallback: List[Dict[str, Any]],
        confidence: Callable[[Dict[str, Any]], float],
    ) -> List[Dict[str, Any]]:
        """Purpose: Run one prompt, parse its JSON array, and record the entries.
        Inputs/Outputs: Inputs are the insight kind, template values, system prompt,
            fallback list, and confidence scorer; output is the entries.
        Side Effects / State: One model call and one ai_insights insert.
        Dependencies: render_prompt, safe_json_array, RecordStore.insert.
        Failure Modes: GenerationError, StoreError, or an unparseable reply yield a
            copy of the fallback list; nothing is re-raised.
        If Removed: Each generator would need its own parse-and-store code.
        Testing Notes: A reply wrapped in prose still parses.
        """
        prompt = render_prompt(self._prompts_dir / template, values)
        try:
            text = await self._generator.complete(system_prompt, prompt)
        except GenerationError as exc:
            logger.error("user=%s insight=%s status=model_error error=%s", user_id, insight_type, exc)
            return copy.deepcopy(fallback)

        entries = safe_json_array(text)
        if not entries:
            logger.error("user=%s insight=%s status=unparseable reply=%r", user_id, insight_type, text[:200])
            return copy.deepcopy(fallback)

        try:
            await self._store.insert(
                "ai_insights",
                [
                    {
                        "user_id": user_id,
                        "insight_type": insight_type,
                        "content": json.dumps(entry, ensure_ascii=False),
                        "confidence_score": confidence(entry),
                        "is_active": True,
                    }
                    for entry in entries
                ],
            )
        except StoreError as exc:
            logger.error("user=%s insight=%s status=store_error error=%s", user_id, insight_type, exc)
            return copy.deepcopy(fallback)

        logger.info("user=%s insight=%s entries=%d", user_id, insight_type, len(entries))
        return entries

    async def _profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            rows = await self._store.select("user_profiles", eq={"id": user_id}, limit=1)
        except StoreError as exc:
            logger.warning("user=%s profile=unavailable error=%s", user_id, exc)
            return None
        return rows[0] if rows else None

    async def _purchases(self, user_id: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        try:
            return await self._store.select(
                "purchase_history",
                eq={"user_id": user_id},
                order_by="purchase_date",
                descending=True,
                limit=limit,
            )
        except StoreError as exc:
            logger.warning("user=%s purchases=unavailable error=%s", user_id, exc)
            return []


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)
