"""
Typed payloads for the estimation pipeline.

These models are the only shapes written into the report JSON columns.
Evidence records are a discriminated union on ``kind``; every record carries
an explicit ``Provenance``.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


CURRENT_SCHEMA_VERSION = 2


# ============= INPUTS =============

class ImageRef(BaseModel):
    """Reference to an uploaded image: a URL or inline base64 content."""
    url: Optional[str] = None
    data_base64: Optional[str] = None
    mime_type: str = "image/jpeg"

    @model_validator(mode="after")
    def check_source(self):
        if not self.url and not self.data_base64:
            raise ValueError("image requires url or data_base64")
        return self


class InputImages(BaseModel):
    product: ImageRef
    barcode: Optional[ImageRef] = None
    label: Optional[ImageRef] = None


class EstimateParams(BaseModel):
    quantity: int = Field(500, gt=0)
    duty_rate: Optional[float] = Field(None, ge=0, le=1)
    shipping_cost: Optional[float] = Field(None, ge=0)  # total for the shipment
    fee: Optional[float] = Field(None, ge=0)  # total for the shipment
    destination: str = "US"
    shipping_mode: Literal["air", "ocean"] = "air"

    @field_validator("destination")
    @classmethod
    def upper_destination(cls, v: str) -> str:
        return v.strip().upper()


# ============= FAST FACTS =============

class FastFacts(BaseModel):
    product_name: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None
    label_text: Optional[str] = None
    weight_kg: Optional[float] = None
    weight_source: Optional[Literal["label", "vision"]] = None
    units_per_case: Optional[int] = None
    keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)


# ============= MONEY / COST =============

class MoneyRange(BaseModel):
    min: float
    mid: float
    max: float
    currency: str = "USD"


class CostBreakdown(BaseModel):
    unit_price: float
    shipping: float
    duty: float
    fee: float
    total_landed: float


class CostRange(BaseModel):
    conservative: CostBreakdown
    standard: CostBreakdown


class RiskScores(BaseModel):
    tariff: float
    compliance: float
    supply: float
    total: float
    level: str


class RiskFlags(BaseModel):
    hs_code_range: List[str] = Field(default_factory=list)
    adcvd_possible: bool = False
    origin_sensitive: bool = False
    required_certifications: List[str] = Field(default_factory=list)
    labeling_risks: List[str] = Field(default_factory=list)
    moq_range: Optional[MoneyRange] = None
    lead_time_days: Optional[MoneyRange] = None


class Baseline(BaseModel):
    cost_range: CostRange
    total_landed: MoneyRange
    unit_price: MoneyRange
    risk_scores: RiskScores
    risk_flags: RiskFlags
    assumptions: Dict[str, Union[float, str, None]] = Field(default_factory=dict)


# ============= CLASSIFICATION =============

class CandidateSource(str, Enum):
    VISION = "VISION"
    MARKET_ESTIMATE = "MARKET_ESTIMATE"
    CATEGORY_FALLBACK = "CATEGORY_FALLBACK"
    FALLBACK = "FALLBACK"


class ClassificationCandidate(BaseModel):
    code: str
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    source: CandidateSource


# ============= EVIDENCE =============

class Provenance(str, Enum):
    LABEL_CONFIRMED = "LABEL_CONFIRMED"
    VISION_INFERENCE = "VISION_INFERENCE"
    BARCODE_SCAN = "BARCODE_SCAN"
    MARKET_ESTIMATE = "MARKET_ESTIMATE"
    CATEGORY_DEFAULT = "CATEGORY_DEFAULT"
    MANUAL_ENTRY = "MANUAL_ENTRY"


class _EvidenceBase(BaseModel):
    uploaded: bool = False
    extracted: bool = False
    confirmed: bool = False
    failure_reason: Optional[str] = None
    provenance: Optional[Provenance] = None
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None


class LabelEvidence(_EvidenceBase):
    kind: Literal["label"] = "label"
    inferred_value: Optional[str] = None
    units_per_case: Optional[int] = None
    origin_country: Optional[str] = None

    @property
    def case_pack_known(self) -> bool:
        return self.units_per_case is not None and self.units_per_case > 0


class WeightEvidence(_EvidenceBase):
    kind: Literal["weight"] = "weight"
    inferred_value: Optional[float] = None  # kg


class BarcodeEvidence(_EvidenceBase):
    kind: Literal["barcode"] = "barcode"
    inferred_value: Optional[str] = None


class ClassificationEvidence(_EvidenceBase):
    kind: Literal["classification"] = "classification"
    inferred_value: Optional[str] = None  # top candidate code
    confidence: Optional[float] = None


EvidenceRecord = Annotated[
    Union[LabelEvidence, WeightEvidence, BarcodeEvidence, ClassificationEvidence],
    Field(discriminator="kind"),
]

evidence_list_adapter = TypeAdapter(List[EvidenceRecord])


class ReportEvidence(BaseModel):
    label: LabelEvidence = Field(default_factory=LabelEvidence)
    weight: WeightEvidence = Field(default_factory=WeightEvidence)
    barcode: BarcodeEvidence = Field(default_factory=BarcodeEvidence)
    classification: ClassificationEvidence = Field(default_factory=ClassificationEvidence)

    def as_records(self) -> list:
        return [self.label, self.weight, self.barcode, self.classification]

    def dump(self) -> list:
        return [r.model_dump(mode="json") for r in self.as_records()]

    @classmethod
    def load(cls, payload: Optional[list]) -> "ReportEvidence":
        evidence = cls()
        for record in evidence_list_adapter.validate_python(payload or []):
            setattr(evidence, record.kind, record)
        return evidence


# ============= SIGNALS / VERIFICATION / TIER =============

class Signals(BaseModel):
    has_import_evidence: bool = False
    has_internal_similar_records: bool = False
    has_category_baseline: bool = False

    @property
    def has_category_signals(self) -> bool:
        return self.has_import_evidence or self.has_internal_similar_records or self.has_category_baseline


class Verification(BaseModel):
    quoted: bool = False
    quote_date: Optional[datetime] = None
    quote_price: Optional[float] = None
    job_supplier_id: Optional[int] = None


class QualityTier(str, Enum):
    PRELIMINARY = "preliminary"
    BENCHMARK = "benchmark"
    TRADE_BACKED = "trade_backed"
    VERIFIED = "verified"

    @property
    def rank(self) -> int:
        return list(QualityTier).index(self)

    # Order by rank, not by the string value
    def __lt__(self, other):
        if not isinstance(other, QualityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, QualityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, QualityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, QualityTier):
            return NotImplemented
        return self.rank >= other.rank


class TierResult(BaseModel):
    tier: QualityTier
    reason: str
    missing_inputs: List[str] = Field(default_factory=list)


# ============= SOURCING =============

class SupplierInfo(BaseModel):
    name: Optional[str] = None
    company_type: Optional[str] = None  # manufacturer, trading, logistics
    has_import_history: Optional[bool] = None
    top_hs_codes: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)


class OutreachPack(BaseModel):
    outreach_message: str
    questions_checklist: List[str]
    spec_summary: List[str]
    red_flags: List[str]
    generated_at: datetime


class QuoteInput(BaseModel):
    price_per_unit: Optional[float] = Field(None, gt=0)
    currency: str = "USD"
    moq: Optional[int] = Field(None, gt=0)
    lead_time_days: Optional[int] = Field(None, ge=0)
    incoterm: Optional[str] = None
    payment_terms: Optional[str] = None
    confirmed_in_writing: bool = False
    validation_status: Optional[Literal["pending", "valid", "needs_review", "rejected"]] = None
    notes: Optional[str] = None
    raw_reply: Optional[str] = None

    @field_validator("incoterm")
    @classmethod
    def upper_incoterm(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class ParsedReply(BaseModel):
    quote: QuoteInput
    missing_fields: List[str] = Field(default_factory=list)
    followup_message: Optional[str] = None
    parser: Literal["llm", "regex"] = "regex"
