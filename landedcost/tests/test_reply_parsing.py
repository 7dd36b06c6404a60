"""
Tests for supplier reply parsing and outreach message templates.
"""
import pytest

from landedcost.services.llm_provider import generate_outreach_message, parse_supplier_reply


class TestParseSupplierReply:
    """Regex parser used when no LLM is configured."""

    def test_full_reply(self):
        text = (
            "Dear buyer,\n"
            "Unit price: USD 1.45 per pc FOB Ningbo.\n"
            "MOQ: 3,000 pcs\n"
            "Lead time: 6 weeks after deposit\n"
            "Payment: 30% deposit, balance before shipment."
        )
        result = parse_supplier_reply(text)
        assert result["parser"] == "regex"
        assert result["moq"] == 3000
        assert result["lead_time_days"] == 42
        assert result["incoterm"] == "FOB"
        assert result["payment_terms"].startswith("30% deposit")

    def test_dollar_price(self):
        result = parse_supplier_reply("Price: $2.80 EXW, MOQ 500, lead time 25 days")
        assert result["price_per_unit"] == pytest.approx(2.80)
        assert result["incoterm"] == "EXW"
        assert result["missing_fields"] == []
        assert result["followup_message"] is None

    @pytest.mark.parametrize("text,days", [
        ("lead time 10 days", 10),
        ("Lead Time: 1 week", 7),
        ("delivery 2 months", 60),
    ])
    def test_lead_time_units(self, text, days):
        assert parse_supplier_reply(text)["lead_time_days"] == days

    def test_missing_terms_get_followup(self):
        result = parse_supplier_reply("Thanks for reaching out, we can make this item.")
        assert result["missing_fields"] == ["price_per_unit", "moq", "lead_time_days", "incoterm"]
        assert "price per unit" in result["followup_message"]
        assert result["currency"] == "USD"


class TestOutreachMessage:
    def test_template_lists_questions(self):
        message = generate_outreach_message({
            "supplier_name": "Ningbo Export",
            "product_name": "Plush Toy Bear",
            "category": "Toys",
            "destination": "US",
            "quantity": 1000,
            "shipping_mode": "ocean",
            "questions": ["Confirm MOQ", "Confirm lead time"],
        })
        assert message.startswith("Hello Ningbo Export,")
        assert "1. Confirm MOQ" in message
        assert "2. Confirm lead time" in message
        assert "1000 units, shipping by ocean" in message
