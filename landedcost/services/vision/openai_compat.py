"""
Vision provider for OpenAI-compatible chat completion endpoints.
"""
import json
import re
from typing import List, Optional

import httpx

from landedcost.core.config import settings
from landedcost.core.errors import ExtractionFailure
from landedcost.core.logging import get_logger
from landedcost.services.schemas import FastFacts, ImageRef, InputImages
from landedcost.services.vision.base import VisionProvider

logger = get_logger(__name__)

BARCODE_PROMPT = (
    "Read the barcode in this image. Reply with only the digits, "
    "or NONE if no barcode is readable."
)
LABEL_PROMPT = (
    "Transcribe the product label text exactly as printed. "
    "If the label cannot be read reply UNREADABLE followed by the reason."
)
CLASSIFY_PROMPT = (
    "Identify this product. Reply in exactly four lines:\n"
    "Product: <name>\nCategory: <category>\nWeight: <net weight or unknown>\n"
    "Keywords: <comma separated keywords>"
)
ANALYZE_PROMPT = (
    "You are a customs and sourcing analyst. Given the product images and facts, reply with a JSON "
    "object with keys: product_name, category, hs_code, market_candidates (list of {code, confidence, "
    "reason}), weight_kg, unit_price_range [min, mid, max] FOB USD, moq_range [min, mid, max], "
    "lead_time_days [min, mid, max], origin_country (ISO code), certifications (list), "
    "labeling_risks (list), adcvd_possible (bool). Facts: "
)

MAX_LABEL_CHARS = 500


def _image_part(image: ImageRef) -> dict:
    url = image.url or f"data:{image.mime_type};base64,{image.data_base64}"
    return {"type": "image_url", "image_url": {"url": url}}


def parse_classification_text(text: str) -> dict:
    """Parse the four-line Product/Category/Weight/Keywords reply."""
    fields = {}
    for line in text.splitlines():
        match = re.match(r"\s*(Product|Category|Weight|Keywords)\s*:\s*(.*)", line, re.IGNORECASE)
        if match:
            fields[match.group(1).lower()] = match.group(2).strip()
    keywords = [k.strip().lower() for k in fields.get("keywords", "").split(",") if k.strip()]
    weight = fields.get("weight")
    return {
        "product_name": fields.get("product") or None,
        "category": fields.get("category") or None,
        "weight_text": None if not weight or weight.lower() == "unknown" else weight,
        "keywords": keywords[:5],
        "confidence": 0.8 if fields.get("product") and fields.get("category") else 0.4,
    }


class OpenAICompatVisionProvider(VisionProvider):
    """Calls a chat-completions endpoint with image inputs."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.VISION_MODEL

    @property
    def name(self) -> str:
        return "openai"

    async def _complete(self, content: list, step: str, json_mode: bool = False) -> str:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS, connect=5.0)) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ExtractionFailure(f"provider HTTP {e.response.status_code}", step=step) from e
        except httpx.HTTPError as e:
            raise ExtractionFailure(f"provider unreachable: {type(e).__name__}", step=step) from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionFailure("malformed provider response", step=step) from e

    async def read_barcode(self, image: ImageRef) -> Optional[str]:
        text = (await self._complete([{"type": "text", "text": BARCODE_PROMPT}, _image_part(image)], "barcode")).strip()
        if not text or text.upper() == "NONE":
            return None
        digits = re.sub(r"\D", "", text)
        if not digits:
            raise ExtractionFailure("unreadable", step="barcode")
        return digits

    async def read_label(self, image: ImageRef) -> str:
        text = (await self._complete([{"type": "text", "text": LABEL_PROMPT}, _image_part(image)], "label")).strip()
        if text.upper().startswith("UNREADABLE"):
            reason = text[len("UNREADABLE"):].strip(" :-") or "unreadable"
            raise ExtractionFailure(reason, step="label")
        return text[:MAX_LABEL_CHARS]

    async def classify_product(self, image: ImageRef) -> dict:
        text = await self._complete([{"type": "text", "text": CLASSIFY_PROMPT}, _image_part(image)], "classification")
        return parse_classification_text(text)

    async def analyze_product(self, images: InputImages, facts: FastFacts) -> dict:
        content = [{"type": "text", "text": ANALYZE_PROMPT + facts.model_dump_json()}]
        content += [_image_part(img) for img in (images.product, images.label) if img is not None]
        text = await self._complete(content, "deep_analysis", json_mode=True)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Deep analysis returned invalid JSON: {text[:200]}")
            raise ExtractionFailure("analysis returned invalid JSON", step="deep_analysis") from e

    async def lookup_import_evidence(self, keywords: List[str], category: Optional[str]) -> List[dict]:
        logger.info("No import-record source configured for the openai provider")
        return []
