"""Invoice submission: charge a credit, OCR the file, extract the fields."""
from __future__ import annotations

import logging
import uuid

from .errors import ExtractionServiceError, InsufficientCreditsError, OcrServiceError, UnsupportedFileError
from .extract import InvoiceRecord, fallback_extract, normalize_fields

logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """Turns an uploaded file into an :class:`InvoiceRecord`.

    The credit is charged before OCR starts and refunded if OCR fails. A
    failure of the structured extractor is not refunded: the OCR work was
    done, so the regex fallback fills the record instead.
    """

    def __init__(self, ledger, error_log, ocr_client, extractor):
        self.ledger = ledger
        self.error_log = error_log
        self.ocr_client = ocr_client
        self.extractor = extractor

    def submit(self, file_bytes: bytes, mime_type: str, user_id: str, filename: str = "invoice") -> InvoiceRecord:
        if self.ledger.get_balance(user_id) <= 0:
            raise InsufficientCreditsError()

        upload_id = uuid.uuid4().hex
        self.ledger.adjust(
            user_id,
            -1,
            entry_type="charge",
            reason="Invoice processing",
            reference_type="invoice_charge",
            reference_id=upload_id,
        )

        try:
            text = self.ocr_client.extract_text(file_bytes, mime_type, filename=filename)
        except (UnsupportedFileError, OcrServiceError) as exc:
            self.ledger.adjust(
                user_id,
                1,
                entry_type="refund",
                reason="Refund for failed OCR",
                reference_type="invoice_refund",
                reference_id=upload_id,
            )
            self.error_log.record(user_id, exc, "File processing", "error")
            raise

        try:
            fields = normalize_fields(self.extractor.extract(text))
        except ExtractionServiceError as exc:
            self.error_log.record(user_id, exc, "Data extraction via language model", "warning")
            fields = fallback_extract(text)

        logger.info("Invoice extracted", extra={"user_id": user_id, "upload_id": upload_id, "chars": len(text)})
        return InvoiceRecord(raw_text=text, fields=fields)
