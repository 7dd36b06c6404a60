"""
Base interface for vision / extraction providers.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from landedcost.services.schemas import FastFacts, ImageRef, InputImages


class VisionProvider(ABC):
    """
    Abstract base class for image extraction providers.

    Fast-path methods (barcode, label, classify) must be cheap enough to run
    under the fast facts budget. Failures are raised as ``ExtractionFailure``
    with a human-readable reason (e.g. "unreadable", "low-contrast").
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def read_barcode(self, image: ImageRef) -> Optional[str]:
        """Return the barcode digits, or None when no barcode is visible."""
        pass

    @abstractmethod
    async def read_label(self, image: ImageRef) -> str:
        """Return the label text as printed."""
        pass

    @abstractmethod
    async def classify_product(self, image: ImageRef) -> dict:
        """
        Quick product classification.

        Returns:
            dict with product_name, category, weight_text, keywords, confidence
        """
        pass

    @abstractmethod
    async def analyze_product(self, images: InputImages, facts: FastFacts) -> dict:
        """
        Deep analysis used by the background upgrade.

        Returns:
            dict with product_name, category, hs_code, market_candidates,
            weight_kg, unit_price_range, moq_range, lead_time_days,
            origin_country, certifications, labeling_risks, adcvd_possible
        """
        pass

    async def lookup_import_evidence(self, keywords: List[str], category: Optional[str]) -> List[dict]:
        """Import-record lookup. Providers without a source return nothing."""
        return []
