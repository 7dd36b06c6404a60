"""
Deterministic mock provider.

Behaviour is driven by words in the image reference (URL or decoded
content) so that tests and local runs are reproducible:
- "unreadable" / "lowcontrast": the step fails with that reason
- "slow": the step sleeps past any fast-path budget
- "nobarcode": barcode read finds nothing
- "noweight": label text has no net weight
- "analysisfail": deep analysis fails
"""
import asyncio
import base64
import hashlib
from typing import List, Optional
from urllib.parse import urlparse

from landedcost.core.errors import ExtractionFailure
from landedcost.services.category_rules import GENERAL_MERCH, categorize, get_prior
from landedcost.services.schemas import FastFacts, ImageRef, InputImages
from landedcost.services.vision.base import VisionProvider

CATEGORY_LABELS = {
    "food_candy": "Candy & Confectionery",
    "toys": "Toys",
    "electronics": "Electronics",
    "apparel": "Apparel",
    GENERAL_MERCH: "General Merchandise",
}

MOCK_HS = {
    "food_candy": ("1704.90.35", [{"code": "1806.90", "confidence": 0.6, "reason": "Chocolate confectionery"}]),
    "toys": ("9503.00.00", [{"code": "9503.00.0073", "confidence": 0.7}]),
    "electronics": ("8504.40", [{"code": "8544.42", "confidence": 0.55, "reason": "Cable assemblies"}]),
    "apparel": ("6109.10", []),
    GENERAL_MERCH: (None, []),
}

IMPORT_EVIDENCE_KEYWORDS = ("toy", "candy", "jelly", "plush", "figure", "electronic")


def _hint(image: Optional[ImageRef]) -> str:
    if image is None:
        return ""
    if image.url:
        return image.url.lower()
    return base64.b64decode(image.data_base64).decode("utf-8", "ignore").lower()[:256]


def _product_name(image: ImageRef) -> str:
    hint = _hint(image)
    if image.url:
        hint = urlparse(hint).path.rsplit("/", 1)[-1]
    stem = hint.rsplit(".", 1)[0]
    words = [w for w in stem.replace("_", " ").replace("-", " ").split() if w.isalpha()]
    return " ".join(w.capitalize() for w in words) or "Unknown Product"


async def _check_markers(hint: str, step: str):
    if "unreadable" in hint:
        raise ExtractionFailure("unreadable", step=step)
    if "lowcontrast" in hint or "low-contrast" in hint:
        raise ExtractionFailure("low-contrast", step=step)
    if "slow" in hint:
        await asyncio.sleep(5)


class MockVisionProvider(VisionProvider):
    """Offline provider with stable outputs."""

    @property
    def name(self) -> str:
        return "mock"

    async def read_barcode(self, image: ImageRef) -> Optional[str]:
        hint = _hint(image)
        await _check_markers(hint, "barcode")
        if "nobarcode" in hint:
            return None
        digest = int(hashlib.sha256(hint.encode("utf-8")).hexdigest(), 16)
        return str(digest % 10**12).zfill(12)

    async def read_label(self, image: ImageRef) -> str:
        hint = _hint(image)
        await _check_markers(hint, "label")
        lines = ["Ingredients / Materials: see package"]
        if "noweight" not in hint:
            lines.append("Net Wt 250g (8.8 oz)")
        lines.append("24 pcs per carton")
        lines.append("Made in China")
        return "\n".join(lines)

    async def classify_product(self, image: ImageRef) -> dict:
        await _check_markers(_hint(image), "classification")
        name = _product_name(image)
        key, matches = categorize([name])
        return {
            "product_name": name,
            "category": CATEGORY_LABELS[key],
            "weight_text": None,
            "keywords": [w.lower() for w in name.split() if len(w) > 2][:5],
            "confidence": 0.85 if matches else 0.5,
        }

    async def analyze_product(self, images: InputImages, facts: FastFacts) -> dict:
        if "analysisfail" in _hint(images.product):
            raise ExtractionFailure("vision analysis unavailable", step="deep_analysis")
        name = facts.product_name or _product_name(images.product)
        key, _ = categorize([name, facts.category] + list(facts.keywords))
        prior = get_prior(key)
        hs_code, market = MOCK_HS[key]
        return {
            "product_name": name,
            "category": CATEGORY_LABELS[key],
            "hs_code": hs_code,
            "market_candidates": market,
            "weight_kg": prior.weight_kg,
            "unit_price_range": list(prior.fob_range),
            "moq_range": list(prior.moq_range),
            "lead_time_days": list(prior.lead_time_days),
            "origin_country": "CN",
            "certifications": [],
            "labeling_risks": [],
            "adcvd_possible": False,
        }

    async def lookup_import_evidence(self, keywords: List[str], category: Optional[str]) -> List[dict]:
        terms = " ".join(list(keywords) + [category or ""]).lower()
        if not any(k in terms for k in IMPORT_EVIDENCE_KEYWORDS):
            return []
        return [
            {
                "shipper": "Shantou Chenghai Trading Co.",
                "consignee": "US importer of record",
                "description": f"{' '.join(keywords[:3]) or category} assorted",
                "arrival_date": "2024-09-14",
                "weight_kg": 1840.0,
            },
            {
                "shipper": "Ningbo Export Partners Ltd.",
                "consignee": "US importer of record",
                "description": f"{' '.join(keywords[:3]) or category} retail packs",
                "arrival_date": "2024-07-02",
                "weight_kg": 920.0,
            },
        ]
