from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, data files, and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    data_dir: Path
    store_path: Path
    catalog_path: Path
    prompts_dir: Path
    order_history_limit: int
    context_purchase_limit: int
    max_cart_sessions: int


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid integer env values raise ValueError.
    If Removed: App cannot configure the model, store, or catalog and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data, catalog and prompt paths, then build Settings.
    data_dir = Path(os.getenv("DATA_DIR") or (BASE_DIR / "data")).resolve()
    store_path = os.getenv("STORE_PATH")
    catalog_path = os.getenv("CATALOG_PATH")
    prompts_dir = os.getenv("PROMPTS_DIR")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        data_dir=data_dir,
        store_path=Path(store_path) if store_path else data_dir / "store.json",
        catalog_path=Path(catalog_path) if catalog_path else BASE_DIR / "data" / "catalog.json",
        prompts_dir=Path(prompts_dir) if prompts_dir else (BASE_DIR / "prompts").resolve(),
        order_history_limit=int(os.getenv("ORDER_HISTORY_LIMIT", "10")),
        context_purchase_limit=int(os.getenv("CONTEXT_PURCHASE_LIMIT", "10")),
        max_cart_sessions=int(os.getenv("MAX_CART_SESSIONS", "100")),
    )
