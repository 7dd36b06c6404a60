"""
LLM provider service with mock fallback.

Used for supplier-facing text: outreach messages and parsing supplier replies.
"""
import json
import re
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from landedcost.core.config import settings
from landedcost.core.logging import get_logger

logger = get_logger(__name__)

REQUIRED_QUOTE_FIELDS = ("price_per_unit", "moq", "lead_time_days", "incoterm")

PRICE_PATTERN = re.compile(r"(?:price|cost|unit|per\s+unit)[\s:]*\$?[\s]*([\d,]+\.?\d*)", re.IGNORECASE)
MOQ_PATTERN = re.compile(r"(?:moq|minimum\s+order)[\s:]*([\d,]+)", re.IGNORECASE)
LEAD_TIME_PATTERN = re.compile(r"(?:lead\s+time|delivery)[\s:]*([\d]+)\s*(days?|weeks?|months?)", re.IGNORECASE)
INCOTERM_PATTERN = re.compile(r"\b(FOB|CIF|EXW|DDP|DDU)\b", re.IGNORECASE)
PAYMENT_PATTERN = re.compile(r"(\d{1,3}\s*%\s*(?:deposit|advance)[^.\n]*)", re.IGNORECASE)

_LEAD_TIME_DAYS = {"day": 1, "week": 7, "month": 30}


def _llm_enabled() -> bool:
    return settings.LLM_PROVIDER == "openai" and bool(settings.OPENAI_API_KEY)


def generate_outreach_message(context: Dict[str, Any]) -> str:
    """Generate the first-contact message for a supplier."""
    if _llm_enabled():
        return _openai_outreach_message(context)
    return _mock_outreach_message(context)


def parse_supplier_reply(text: str) -> Dict[str, Any]:
    """
    Extract quote terms from a supplier reply.

    Returns:
        dict with price_per_unit, currency, moq, lead_time_days, incoterm,
        payment_terms, missing_fields, followup_message, parser
    """
    if _llm_enabled():
        return _openai_parse_reply(text)
    return _regex_parse_reply(text)


# ============= MOCK / DETERMINISTIC IMPLEMENTATIONS =============

def _mock_outreach_message(context: Dict[str, Any]) -> str:
    """Template outreach message."""
    questions = "\n".join(f"{i}. {q}" for i, q in enumerate(context.get("questions", []), 1))
    return f"""Hello {context.get('supplier_name') or 'team'},

We are sourcing {context.get('product_name') or 'the product shown in the attached photo'} \
({context.get('category') or 'general merchandise'}) for import into {context.get('destination', 'US')}.
Estimated order quantity: {context.get('quantity')} units, shipping by {context.get('shipping_mode', 'air')}.

Could you please confirm the following:
{questions}

Please reply in writing with your quotation so we can move forward.

Best regards,
Sourcing Team"""


def _build_followup(missing: List[str]) -> Optional[str]:
    if not missing:
        return None
    readable = ", ".join(m.replace("_", " ") for m in missing)
    return (
        "Thank you for your reply. To complete our comparison, could you please confirm "
        f"the following: {readable}?"
    )


def _to_number(raw: str) -> float:
    return float(raw.replace(",", ""))


def _regex_parse_reply(text: str) -> Dict[str, Any]:
    """Regex extraction of quote terms; used when no LLM is configured."""
    result: Dict[str, Any] = {
        "price_per_unit": None,
        "currency": "USD",
        "moq": None,
        "lead_time_days": None,
        "incoterm": None,
        "payment_terms": None,
        "parser": "regex",
    }

    price = PRICE_PATTERN.search(text)
    if price:
        try:
            result["price_per_unit"] = _to_number(price.group(1))
        except ValueError:
            pass

    moq = MOQ_PATTERN.search(text)
    if moq:
        try:
            result["moq"] = int(_to_number(moq.group(1)))
        except ValueError:
            pass

    lead = LEAD_TIME_PATTERN.search(text)
    if lead:
        unit = lead.group(2).lower().rstrip("s")
        result["lead_time_days"] = int(lead.group(1)) * _LEAD_TIME_DAYS[unit]

    incoterm = INCOTERM_PATTERN.search(text)
    if incoterm:
        result["incoterm"] = incoterm.group(1).upper()

    payment = PAYMENT_PATTERN.search(text)
    if payment:
        result["payment_terms"] = payment.group(1).strip()

    missing = [f for f in REQUIRED_QUOTE_FIELDS if result.get(f) in (None, 0)]
    result["missing_fields"] = missing
    result["followup_message"] = _build_followup(missing)
    return result


# ============= REAL LLM IMPLEMENTATIONS =============

def _openai_chat(system: str, user: str, json_mode: bool = False) -> str:
    client = OpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    extra = {"response_format": {"type": "json_object"}} if json_mode else {}
    response = client.chat.completions.create(
        model=settings.VISION_MODEL,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        temperature=0.2,
        **extra,
    )
    return response.choices[0].message.content or ""


def _openai_outreach_message(context: Dict[str, Any]) -> str:
    """OpenAI outreach message; falls back to the template on error."""
    try:
        return _openai_chat(
            "You write concise, professional supplier outreach messages for importers. "
            "Ask every question in the provided checklist. Plain text only.",
            json.dumps(context, default=str),
        )
    except (OpenAIError, IndexError) as e:
        logger.error(f"OpenAI outreach error: {e}")
        return _mock_outreach_message(context)


def _openai_parse_reply(text: str) -> Dict[str, Any]:
    """OpenAI reply parsing; falls back to regex extraction on error."""
    try:
        content = _openai_chat(
            "Extract quote terms from the supplier reply. Reply with a JSON object with keys "
            "price_per_unit (number), currency, moq (integer), lead_time_days (integer), "
            "incoterm, payment_terms. Use null when a value is not stated.",
            text,
            json_mode=True,
        )
        parsed = json.loads(content)
    except (OpenAIError, IndexError, json.JSONDecodeError) as e:
        logger.error(f"OpenAI reply parse error: {e}")
        return _regex_parse_reply(text)

    result = {
        "price_per_unit": parsed.get("price_per_unit"),
        "currency": parsed.get("currency") or "USD",
        "moq": parsed.get("moq"),
        "lead_time_days": parsed.get("lead_time_days"),
        "incoterm": parsed.get("incoterm"),
        "payment_terms": parsed.get("payment_terms"),
        "parser": "llm",
    }
    missing = [f for f in REQUIRED_QUOTE_FIELDS if result.get(f) in (None, 0)]
    result["missing_fields"] = missing
    result["followup_message"] = _build_followup(missing)
    return result
