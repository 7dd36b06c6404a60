"""
Deterministic category rules and per-category cost priors.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

GENERAL_MERCH = "general_merch"

CATEGORY_KEYWORDS = {
    "food_candy": [
        "candy", "confectionery", "gummy", "jelly", "marshmallow", "chocolate",
        "lollipop", "gum", "sugar", "snack", "sweet", "toffee", "caramel",
        "licorice", "taffy", "fudge",
    ],
    "toys": [
        "toy", "figure", "collectible", "blind box", "capsule", "kids", "game",
        "puzzle", "slime", "doll", "plush", "building block",
    ],
    "electronics": [
        "usb", "rechargeable", "battery", "charger", "led", "power", "voltage",
        "adapter", "cable", "plug", "electronic", "electric", "wireless", "bluetooth",
    ],
    "apparel": [
        "cotton", "polyester", "shirt", "socks", "hoodie", "jacket", "fabric",
        "garment", "clothing", "apparel", "dress", "pants", "textile",
    ],
}

# Keep bath and cleaning items out of toys
EXCLUDE_KEYWORDS = {
    "toys": ["bath", "sponge", "scrubber", "loofah", "shower", "wash"],
}


@dataclass(frozen=True)
class CategoryPrior:
    weight_kg: float
    units_per_case: int
    duty_rate: float
    fee_per_unit: float
    fob_range: Tuple[float, float, float]  # min, mid, max USD per unit
    moq_range: Tuple[float, float, float]
    lead_time_days: Tuple[float, float, float]
    certifications: List[str] = field(default_factory=list)
    labeling_risks: List[str] = field(default_factory=list)
    compliance_base: float = 20.0


CATEGORY_PRIORS = {
    "food_candy": CategoryPrior(
        weight_kg=0.2, units_per_case=12, duty_rate=0.05, fee_per_unit=0.35,
        fob_range=(0.35, 0.55, 0.75), moq_range=(500, 1000, 3000), lead_time_days=(20, 30, 45),
        certifications=["FDA food facility registration", "FSVP importer", "Prior notice"],
        labeling_risks=["Allergen declaration", "Nutrition facts panel", "English ingredient list"],
        compliance_base=45.0,
    ),
    "toys": CategoryPrior(
        weight_kg=0.15, units_per_case=24, duty_rate=0.0, fee_per_unit=0.25,
        fob_range=(0.8, 1.4, 2.2), moq_range=(300, 1000, 2000), lead_time_days=(25, 35, 50),
        certifications=["ASTM F963", "CPSIA", "Children's Product Certificate"],
        labeling_risks=["Small parts choking warning", "Tracking label"],
        compliance_base=40.0,
    ),
    "electronics": CategoryPrior(
        weight_kg=0.3, units_per_case=6, duty_rate=0.025, fee_per_unit=0.45,
        fob_range=(2.5, 4.5, 7.0), moq_range=(200, 500, 1000), lead_time_days=(30, 40, 60),
        certifications=["FCC Part 15", "UL / ETL listing", "UN38.3 for batteries"],
        labeling_risks=["FCC ID marking", "Battery handling label"],
        compliance_base=35.0,
    ),
    "apparel": CategoryPrior(
        weight_kg=0.25, units_per_case=12, duty_rate=0.165, fee_per_unit=0.30,
        fob_range=(2.0, 3.5, 5.5), moq_range=(300, 600, 1500), lead_time_days=(30, 45, 60),
        certifications=["CPSIA (children's apparel)"],
        labeling_risks=["Fiber content label", "Country of origin label", "Care instructions"],
        compliance_base=25.0,
    ),
    GENERAL_MERCH: CategoryPrior(
        weight_kg=0.25, units_per_case=12, duty_rate=0.04, fee_per_unit=0.30,
        fob_range=(0.5, 1.2, 2.5), moq_range=(300, 1000, 3000), lead_time_days=(25, 35, 50),
        compliance_base=20.0,
    ),
}

# USD per kg, per unit shipped
SHIPPING_RATE_PER_KG = {"air": 20.0, "ocean": 3.0}


def categorize(texts: Iterable[Optional[str]]) -> Tuple[str, List[str]]:
    """
    Score category keywords across product name, category and keywords.

    Returns:
        Tuple of (category_key, matched keywords)
    """
    haystack = " ".join(t.lower() for t in texts if t)
    best_key, best_matches = GENERAL_MERCH, []
    for key, words in CATEGORY_KEYWORDS.items():
        if any(ex in haystack for ex in EXCLUDE_KEYWORDS.get(key, [])):
            continue
        matches = [w for w in words if w in haystack]
        if len(matches) > len(best_matches):
            best_key, best_matches = key, matches
    return best_key, best_matches


def get_prior(category_key: Optional[str]) -> CategoryPrior:
    return CATEGORY_PRIORS.get(category_key or GENERAL_MERCH, CATEGORY_PRIORS[GENERAL_MERCH])
