from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the LLM, knowledge tables, and catalog access."""
    gemini_api_key: str
    gemini_model: str
    knowledge_dir: Path
    prompts_dir: Path
    catalog_url: str
    catalog_path: Path
    catalog_timeout: float
    products_ttl: float
    knowledge_ttl: Optional[float]


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Non-numeric CATALOG_TIMEOUT/PRODUCTS_TTL/KNOWLEDGE_TTL raise ValueError.
    If Removed: App cannot locate knowledge tables or the catalog and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data paths, then build Settings.
    knowledge_dir = os.getenv("KNOWLEDGE_DIR")
    catalog_path = os.getenv("CATALOG_PATH")
    knowledge_ttl = os.getenv("KNOWLEDGE_TTL")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        knowledge_dir=Path(knowledge_dir) if knowledge_dir else BASE_DIR / "knowledge" / "data",
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        catalog_url=os.getenv("CATALOG_URL", ""),
        catalog_path=Path(catalog_path) if catalog_path else BASE_DIR / "data" / "products.sample.json",
        catalog_timeout=float(os.getenv("CATALOG_TIMEOUT", "10")),
        products_ttl=float(os.getenv("PRODUCTS_TTL", str(30 * 60))),
        knowledge_ttl=float(knowledge_ttl) if knowledge_ttl else None,
    )
