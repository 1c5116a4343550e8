"""Invoice field schema, language-model prompt and the regex fallback."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Dict

from .errors import ExtractionServiceError

INVOICE_FIELDS = (
    "Invoice Number",
    "Invoice Date",
    "Vendor Name",
    "Vendor Address",
    "Total Amount",
    "Tax Amount",
    "Subtotal",
    "Due Date",
    "Purchase Order",
    "Description",
)
AMOUNT_FIELDS = ("Total Amount", "Tax Amount", "Subtotal")

_INVOICE_NUMBER = re.compile(
    r"\b(?:Invoice|INV)(?:\s*(?:No\.?|Number|Num))?[\s#:.-]*([A-Z0-9-]*\d[A-Z0-9-]*)",
    re.IGNORECASE,
)
_DATE = re.compile(r"^[ \t]*(?:Invoice\s+)?Date:[ \t]*([^\n]+)", re.IGNORECASE | re.MULTILINE)
_TOTAL = re.compile(r"\bTotal:\s*(?:[$€£]|KES|KSh)?\s*([0-9,]+\.?[0-9]*)", re.IGNORECASE)
_VENDOR = re.compile(r"^([^\n]*?\S[ \t]+(?:Corporation|Company|Inc)\b\.?)", re.MULTILINE)
_NOT_AMOUNT = re.compile(r"[^0-9.,\-]")


@dataclass
class InvoiceRecord:
    raw_text: str
    fields: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {"raw_text": self.raw_text, "fields": dict(self.fields)}


def empty_fields() -> Dict[str, str]:
    return {name: "" for name in INVOICE_FIELDS}


def _as_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_fields(data) -> Dict[str, str]:
    """Coerce a field mapping to exactly the ten schema keys as strings."""
    if not isinstance(data, dict):
        raise ExtractionServiceError("Extraction response is not a JSON object")
    fields = {name: _as_text(data.get(name)) for name in INVOICE_FIELDS}
    for name in AMOUNT_FIELDS:
        fields[name] = _NOT_AMOUNT.sub("", fields[name])
    return fields


def build_prompt(text: str) -> str:
    names = "\n".join(f'- "{name}"' for name in INVOICE_FIELDS)
    return (
        "Extract invoice data from the following text and return it as a JSON object "
        f"with these exact field names:\n{names}\n\n"
        "If a field is not found, use empty string. For amounts, include only the number "
        "without currency symbols.\n\n"
        f"Text to extract from:\n{text}\n\n"
        "Respond with ONLY a valid JSON object, no other text."
    )


def parse_fields(reply: str) -> Dict[str, str]:
    try:
        data = json.loads(reply.strip())
    except (TypeError, ValueError) as exc:
        raise ExtractionServiceError(f"Extraction response is not valid JSON: {exc}") from exc
    return normalize_fields(data)


def _first(pattern: re.Pattern, text: str) -> str:
    match = pattern.search(text)
    return match.group(1).strip() if match else ""


def fallback_extract(text) -> Dict[str, str]:
    """Best-effort regex extraction used when the language model is unavailable.

    Only invoice number, date, total and vendor are looked for; every other
    field stays empty so the review form always receives the full schema.
    """
    if not isinstance(text, str):
        text = ""
    fields = empty_fields()
    fields["Invoice Number"] = _first(_INVOICE_NUMBER, text)
    fields["Invoice Date"] = _first(_DATE, text)
    fields["Total Amount"] = _first(_TOTAL, text)
    fields["Vendor Name"] = _first(_VENDOR, text)
    return fields
