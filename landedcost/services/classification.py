"""
Classification (HS code) candidate resolution.

Priority order:
1) Code read directly by vision analysis
2) Market-estimate candidates, deduplicated by code
3) Category keyword fallback table, only when 1 and 2 produced nothing
4) Sentinel "9999" when nothing resolves

The result is never empty.
"""
from typing import Iterable, List, Optional

from landedcost.services.schemas import CandidateSource, ClassificationCandidate

VISION_CONFIDENCE = 0.95
MARKET_DEFAULT_CONFIDENCE = 0.75
CATEGORY_CONFIDENCE = 0.35
SENTINEL_CONFIDENCE = 0.2
SENTINEL_CODE = "9999"

# Matched in table order by case-insensitive substring
CATEGORY_FALLBACKS = (
    ("candy", "1704.90"),
    ("confection", "1704.90"),
    ("food", "2106.90"),
    ("snack", "2106.90"),
    ("toy", "9503.00"),
    ("plush", "9503.00"),
    ("electronics", "8509.80"),
    ("gadget", "8509.80"),
    ("apparel", "6203.00"),
    ("clothing", "6203.00"),
    ("garment", "6203.00"),
)


def pick_category_fallback(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    lower = category.lower()
    for keyword, code in CATEGORY_FALLBACKS:
        if keyword in lower:
            return code
    return None


def resolve_classification(
    vision_code: Optional[str] = None,
    market_candidates: Iterable[dict] = (),
    category: Optional[str] = None,
) -> List[ClassificationCandidate]:
    seen = set()
    resolved: List[ClassificationCandidate] = []

    if isinstance(vision_code, str) and len(vision_code.strip()) >= 4:
        code = vision_code.strip()
        seen.add(code)
        resolved.append(ClassificationCandidate(
            code=code,
            confidence=VISION_CONFIDENCE,
            reason="From image analysis",
            source=CandidateSource.VISION,
        ))

    for candidate in market_candidates or ():
        if not candidate or not candidate.get("code"):
            continue
        code = str(candidate["code"]).strip()
        if not code or code in seen:
            continue
        seen.add(code)
        confidence = candidate.get("confidence")
        resolved.append(ClassificationCandidate(
            code=code,
            confidence=MARKET_DEFAULT_CONFIDENCE if confidence is None else min(1.0, max(0.0, float(confidence))),
            reason=candidate.get("reason") or "From market estimate",
            source=CandidateSource.MARKET_ESTIMATE,
        ))

    if resolved:
        return resolved

    fallback = pick_category_fallback(category)
    if fallback:
        return [ClassificationCandidate(
            code=fallback,
            confidence=CATEGORY_CONFIDENCE,
            reason="Category fallback",
            source=CandidateSource.CATEGORY_FALLBACK,
        )]

    return [ClassificationCandidate(
        code=SENTINEL_CODE,
        confidence=SENTINEL_CONFIDENCE,
        reason="No HS signals available",
        source=CandidateSource.FALLBACK,
    )]
