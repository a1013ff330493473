"""
core/config.py — Single responsibility: load environment variables from .env
and expose them as module-level constants.

Used by every package (core, tools, smartmatch, scripts).
"""

from dotenv import load_dotenv
import os

from core.models import LLMConfig

load_dotenv()


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


# Text-generation service (OpenAI-compatible chat completions)
LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")

# Reference dataset: filesystem path or http(s) URL of hpo_data.json
HPO_DATA_SOURCE: str = os.getenv("HPO_DATA_SOURCE", "data/hpo_data.json")

# Optional audit store
REDIS_URL: str = os.getenv("REDIS_URL", "")

# Matching knobs
CALIBRATION_THRESHOLD: float = _float("CALIBRATION_THRESHOLD", 0.75)
SEARCH_THRESHOLD: float = _float("SEARCH_THRESHOLD", 0.3)    # distance scale, 0 = exact
SEARCH_LIMIT: int = _int("SEARCH_LIMIT", 20)

# Timeouts (seconds)
GENERATION_TIMEOUT_S: float = _float("GENERATION_TIMEOUT_S", 60.0)
CHECK_TIMEOUT_S: float = _float("CHECK_TIMEOUT_S", 15.0)


def load_llm_config() -> LLMConfig:
    """Build the generation-service config from the environment constants."""
    return LLMConfig(
        api_key=LLM_API_KEY,
        base_url=LLM_BASE_URL,
        model_name=LLM_MODEL,
    )
