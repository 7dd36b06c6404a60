"""
Fast facts extraction.

Runs barcode, label and classification reads concurrently under one latency
budget. Individual step failures lower confidence and are recorded in the
upload audit; only a failure of every attempted step is fatal.
"""
import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from landedcost.core.config import settings
from landedcost.core.errors import ExtractionFailure, PipelineFailure
from landedcost.core.logging import get_logger
from landedcost.services.schemas import FastFacts, InputImages
from landedcost.services.vision import VisionProvider, get_vision_provider

logger = get_logger(__name__)

FAST_FACTS_FAILED = "FAST_FACTS_FAILED"
FAST_FACTS_STEP = "fast_facts_extraction"

WEIGHT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(kg|grams?|g|oz|lbs?)\b", re.IGNORECASE)
CASE_PACK_PATTERN = re.compile(
    r"(\d+)\s*(?:pcs|pieces|units|ea)\s*(?:/|per)\s*(?:case|carton|ctn|box)",
    re.IGNORECASE,
)

WEIGHT_TO_KG = {
    "kg": 1.0,
    "g": 0.001,
    "gram": 0.001,
    "grams": 0.001,
    "oz": 0.0283495,
    "lb": 0.453592,
    "lbs": 0.453592,
}

# Confidence lost per failed or timed-out step
STEP_PENALTY = {"classification": 0.35, "label": 0.15, "barcode": 0.1}
MIN_CONFIDENCE = 0.05
MAX_LABEL_CHARS = 500


@dataclass
class FastExtraction:
    facts: FastFacts
    audit: Dict[str, object] = field(default_factory=dict)


def parse_weight_kg(text: Optional[str]) -> Optional[float]:
    """First weight mention in the text, converted to kg."""
    if not text:
        return None
    match = WEIGHT_PATTERN.search(text)
    if not match:
        return None
    value = float(match.group(1))
    return round(value * WEIGHT_TO_KG[match.group(2).lower()], 4)


def parse_case_pack(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = CASE_PACK_PATTERN.search(text)
    return int(match.group(1)) if match else None


def extract_keywords(product_name: Optional[str], limit: int = 5) -> list:
    if not product_name:
        return []
    words = re.findall(r"[A-Za-z0-9]+", product_name.lower())
    return list(dict.fromkeys(w for w in words if len(w) > 2))[:limit]


async def extract_fast_facts(
    images: InputImages,
    request_id: str,
    provider: Optional[VisionProvider] = None,
    budget_seconds: Optional[float] = None,
) -> FastExtraction:
    """
    Best-effort fast facts within the latency budget.

    Raises:
        PipelineFailure: every attempted step failed or timed out
    """
    provider = provider or get_vision_provider()
    budget = budget_seconds or settings.FAST_FACTS_BUDGET_SECONDS

    coros = {"classification": provider.classify_product(images.product)}
    if images.barcode is not None:
        coros["barcode"] = provider.read_barcode(images.barcode)
    if images.label is not None:
        coros["label"] = provider.read_label(images.label)

    tasks = {name: asyncio.ensure_future(coro) for name, coro in coros.items()}
    _, pending = await asyncio.wait(tasks.values(), timeout=budget)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    audit: Dict[str, object] = {
        "attempted_at": datetime.now(timezone.utc).isoformat(),
        "provider": provider.name,
        "budget_seconds": budget,
    }
    results: Dict[str, object] = {}
    for step in ("classification", "barcode", "label"):
        task = tasks.get(step)
        audit[f"{step}_uploaded"] = task is not None
        if task is None:
            audit[f"{step}_status"] = "not_provided"
            continue
        if task in pending:
            audit[f"{step}_status"] = "timeout"
            audit[f"{step}_failure_reason"] = f"exceeded {budget}s fast-path budget"
            logger.warning(f"[{request_id}] {step} read timed out")
            continue
        exc = task.exception()
        if exc is not None:
            if not isinstance(exc, ExtractionFailure):
                logger.error(f"[{request_id}] {step} read raised unexpectedly: {exc!r}")
            audit[f"{step}_status"] = "failed"
            audit[f"{step}_failure_reason"] = str(exc)
            logger.info(f"[{request_id}] {step} read failed: {exc}")
            continue
        if task.result() is None:
            audit[f"{step}_status"] = "failed"
            audit[f"{step}_failure_reason"] = f"no {step} detected"
            continue
        audit[f"{step}_status"] = "success"
        results[step] = task.result()

    if not results:
        raise PipelineFailure(FAST_FACTS_FAILED, FAST_FACTS_STEP, "no fast-path step produced a result")

    facts = _assemble(results, audit)
    logger.info(
        f"[{request_id}] fast facts ready: category={facts.category} confidence={facts.confidence:.2f}"
    )
    return FastExtraction(facts=facts, audit=audit)


def _assemble(results: Dict[str, object], audit: Dict[str, object]) -> FastFacts:
    classification = results.get("classification") or {}
    label_text = results.get("label")
    if isinstance(label_text, str):
        label_text = label_text[:MAX_LABEL_CHARS]

    product_name = classification.get("product_name")
    weight_kg = parse_weight_kg(label_text)
    weight_source = "label" if weight_kg is not None else None
    if weight_kg is None:
        weight_kg = parse_weight_kg(classification.get("weight_text"))
        weight_source = "vision" if weight_kg is not None else None

    confidence = float(classification.get("confidence", 0.5)) if classification else 0.5
    for step, penalty in STEP_PENALTY.items():
        if audit.get(f"{step}_status") in ("failed", "timeout"):
            confidence -= penalty

    return FastFacts(
        product_name=product_name,
        category=classification.get("category"),
        barcode=results.get("barcode"),
        label_text=label_text,
        weight_kg=weight_kg,
        weight_source=weight_source,
        units_per_case=parse_case_pack(label_text),
        keywords=classification.get("keywords") or extract_keywords(product_name),
        confidence=round(min(1.0, max(MIN_CONFIDENCE, confidence)), 3),
    )
