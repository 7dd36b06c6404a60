"""
Tests for fast facts extraction under a latency budget.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from landedcost.core.errors import ExtractionFailure, PipelineFailure
from landedcost.services.fast_extract import (
    extract_fast_facts,
    extract_keywords,
    parse_case_pack,
    parse_weight_kg,
)
from landedcost.services.schemas import ImageRef, InputImages
from landedcost.services.vision import MockVisionProvider


def _images(product="https://img.test/plush_toy_bear.jpg", barcode=None, label=None) -> InputImages:
    return InputImages(
        product=ImageRef(url=product),
        barcode=ImageRef(url=barcode) if barcode else None,
        label=ImageRef(url=label) if label else None,
    )


class TestParsers:
    """Text parsing helpers."""

    @pytest.mark.parametrize("text,expected", [
        ("Net Wt 250g (8.8 oz)", 0.25),
        ("NET WEIGHT 1.5 kg", 1.5),
        ("16 oz", 0.4536),
        ("2 lbs", 0.9072),
        ("no weight here", None),
        (None, None),
    ])
    def test_parse_weight_kg(self, text, expected):
        result = parse_weight_kg(text)
        if expected is None:
            assert result is None
        else:
            assert result == pytest.approx(expected, rel=1e-3)

    def test_parse_case_pack(self):
        assert parse_case_pack("24 pcs per carton") == 24
        assert parse_case_pack("12 units/case") == 12
        assert parse_case_pack("Made in China") is None

    def test_extract_keywords(self):
        assert extract_keywords("Plush Toy Bear XL") == ["plush", "toy", "bear"]
        assert len(extract_keywords("alpha beta gamma delta epsilon zeta")) == 5


class TestExtractFastFacts:
    """Concurrent extraction with absorbed step failures."""

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self):
        images = _images(barcode="https://img.test/barcode.jpg", label="https://img.test/label.jpg")
        result = await extract_fast_facts(images, "test", provider=MockVisionProvider(), budget_seconds=2)

        facts = result.facts
        assert facts.product_name == "Plush Toy Bear"
        assert facts.category == "Toys"
        assert facts.weight_kg == pytest.approx(0.25)
        assert facts.weight_source == "label"
        assert facts.units_per_case == 24
        assert facts.barcode is not None
        assert 0.0 <= facts.confidence <= 1.0
        assert result.audit["label_status"] == "success"
        assert result.audit["barcode_status"] == "success"

    @pytest.mark.asyncio
    async def test_failed_label_lowers_confidence_and_records_reason(self):
        ok = await extract_fast_facts(
            _images(label="https://img.test/label.jpg"), "test", provider=MockVisionProvider(), budget_seconds=2
        )
        failed = await extract_fast_facts(
            _images(label="https://img.test/label_lowcontrast.jpg"), "test",
            provider=MockVisionProvider(), budget_seconds=2,
        )
        assert failed.audit["label_status"] == "failed"
        assert failed.audit["label_failure_reason"] == "low-contrast"
        assert failed.audit["label_uploaded"] is True
        assert failed.facts.label_text is None
        assert failed.facts.confidence < ok.facts.confidence

    @pytest.mark.asyncio
    async def test_slow_step_times_out(self):
        result = await extract_fast_facts(
            _images(label="https://img.test/label_slow.jpg"), "test",
            provider=MockVisionProvider(), budget_seconds=0.2,
        )
        assert result.audit["label_status"] == "timeout"
        assert "budget" in result.audit["label_failure_reason"]
        assert result.facts.product_name == "Plush Toy Bear"

    @pytest.mark.asyncio
    async def test_missing_images_are_not_provided(self):
        result = await extract_fast_facts(_images(), "test", provider=MockVisionProvider(), budget_seconds=2)
        assert result.audit["barcode_status"] == "not_provided"
        assert result.audit["label_uploaded"] is False

    @pytest.mark.asyncio
    async def test_every_step_failing_is_pipeline_failure(self):
        images = _images(
            product="https://img.test/unreadable.jpg",
            barcode="https://img.test/unreadable_code.jpg",
            label="https://img.test/unreadable_label.jpg",
        )
        with pytest.raises(PipelineFailure) as exc_info:
            await extract_fast_facts(images, "test", provider=MockVisionProvider(), budget_seconds=2)
        assert exc_info.value.code == "FAST_FACTS_FAILED"
        assert exc_info.value.step == "fast_facts_extraction"

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_is_absorbed(self):
        provider = MagicMock()
        provider.name = "broken"
        provider.classify_product = AsyncMock(return_value={"product_name": "Gadget", "category": "Electronics"})
        provider.read_label = AsyncMock(side_effect=RuntimeError("socket closed"))
        result = await extract_fast_facts(
            _images(label="https://img.test/label.jpg"), "test", provider=provider, budget_seconds=2
        )
        assert result.audit["label_status"] == "failed"
        assert result.audit["label_failure_reason"] == "socket closed"
        assert result.facts.category == "Electronics"

    @pytest.mark.asyncio
    async def test_barcode_not_found_is_failed_step(self):
        provider = MockVisionProvider()
        result = await extract_fast_facts(
            _images(barcode="https://img.test/nobarcode.jpg"), "test", provider=provider, budget_seconds=2
        )
        assert result.audit["barcode_status"] == "failed"
        assert result.audit["barcode_failure_reason"] == "no barcode detected"

    def test_extraction_failure_keeps_step(self):
        err = ExtractionFailure("unreadable", step="label")
        assert err.step == "label"
        assert err.message == "unreadable"
