"""Hand-off of reviewed invoice rows to a spreadsheet.

Writing to Google Sheets itself is not implemented; ``LoggingSheetExporter``
only records the row it would append.
"""
import abc
import logging
import re

from .errors import ValidationError
from .extract import INVOICE_FIELDS, normalize_fields

logger = logging.getLogger(__name__)

SHEETS_URL = re.compile(r"^https://docs\.google\.com/spreadsheets/d/[A-Za-z0-9_-]+")


class SheetExporter(abc.ABC):
    @abc.abstractmethod
    def append_row(self, sheet_url: str, row: list) -> None:
        ...


class LoggingSheetExporter(SheetExporter):
    def append_row(self, sheet_url, row):
        logger.info("Appending invoice row", extra={"sheet_url": sheet_url, "row": row})


def export_invoice(exporter: SheetExporter, sheet_url, fields):
    sheet_url = (sheet_url or "").strip()
    if not sheet_url:
        raise ValidationError("Please enter a Google Sheets URL")
    if not SHEETS_URL.match(sheet_url):
        raise ValidationError("Not a Google Sheets URL")
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object")
    normalized = normalize_fields(fields)
    row = [normalized[name] for name in INVOICE_FIELDS]
    exporter.append_row(sheet_url, row)
    return row
