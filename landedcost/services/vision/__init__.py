"""
Vision providers.
Each provider extracts product facts from images (mock, OpenAI-compatible).
"""
from landedcost.core.config import settings
from landedcost.core.logging import get_logger

from .base import VisionProvider
from .mock import MockVisionProvider
from .openai_compat import OpenAICompatVisionProvider

logger = get_logger(__name__)


def get_vision_provider() -> VisionProvider:
    """Provider from settings; falls back to the mock when no key is configured."""
    if settings.VISION_PROVIDER == "openai" and settings.OPENAI_API_KEY:
        return OpenAICompatVisionProvider()
    if settings.VISION_PROVIDER != "mock":
        logger.warning(f"Vision provider '{settings.VISION_PROVIDER}' not configured; using mock")
    return MockVisionProvider()


__all__ = [
    "VisionProvider",
    "MockVisionProvider",
    "OpenAICompatVisionProvider",
    "get_vision_provider",
]
