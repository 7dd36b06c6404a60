"""
Content cache key for estimate deduplication.

The key is a SHA-256 digest over a canonical JSON document, so it does not
depend on field insertion order. Missing optional fields hash as null.
"""
import base64
import hashlib
import json
from typing import Any, Mapping, Optional

from landedcost.services.schemas import EstimateParams, ImageRef, InputImages

CACHE_KEY_FIELDS = (
    "image_hash",
    "barcode_hash",
    "label_hash",
    "quantity",
    "duty_rate",
    "shipping_cost",
    "fee",
    "destination",
    "shipping_mode",
    "requester_id",
    "pipeline_version",
)

_NUMERIC_FIELDS = {"quantity", "duty_rate", "shipping_cost", "fee"}


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_image(image: Optional[ImageRef]) -> Optional[str]:
    """Hash image content; URL-only references hash the URL."""
    if image is None:
        return None
    if image.data_base64:
        return hash_bytes(base64.b64decode(image.data_base64))
    return hash_bytes(image.url.strip().encode("utf-8"))


def _normalize(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in _NUMERIC_FIELDS:
        return float(value)
    if field == "destination":
        return str(value).strip().upper()
    if field == "shipping_mode":
        return str(value).strip().lower()
    return value


def compute_cache_key(inputs: Mapping[str, Any]) -> str:
    """Deterministic digest over the known cache key fields. Unknown keys are ignored."""
    canonical = {field: _normalize(field, inputs.get(field)) for field in CACHE_KEY_FIELDS}
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_key_inputs(
    images: InputImages,
    params: EstimateParams,
    requester_id: str,
    pipeline_version: str,
) -> dict:
    return {
        "image_hash": hash_image(images.product),
        "barcode_hash": hash_image(images.barcode),
        "label_hash": hash_image(images.label),
        "quantity": params.quantity,
        "duty_rate": params.duty_rate,
        "shipping_cost": params.shipping_cost,
        "fee": params.fee,
        "destination": params.destination,
        "shipping_mode": params.shipping_mode,
        "requester_id": requester_id,
        "pipeline_version": pipeline_version,
    }
