"""Exceptions surfaced by the ledger, workflows and collaborators.

Each carries the HTTP status the API answers with. ``logged`` is flipped by
:class:`invoicer.logs.ErrorLog` once the error has been recorded so the
blueprint error handler does not record it twice.
"""


class InvoicerError(Exception):
    status_code = 400
    default_message = "Request failed"
    logged = False

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(InvoicerError):
    status_code = 422
    default_message = "Invalid input"


class InsufficientCreditsError(InvoicerError):
    status_code = 402
    default_message = "No credits remaining. Please purchase credits to continue."


class DuplicateLedgerEntryError(InvoicerError):
    status_code = 409
    default_message = "Ledger entry already recorded"


class UnsupportedFileError(InvoicerError):
    status_code = 415
    default_message = "Unsupported file type. Please upload PDF or image files."


class OcrServiceError(InvoicerError):
    status_code = 502
    default_message = "OCR service failed"


class ExtractionServiceError(InvoicerError):
    status_code = 502
    default_message = "Field extraction failed"


class PaymentGatewayError(InvoicerError):
    status_code = 502
    default_message = "Payment initiation failed"


class PaymentNotFoundError(InvoicerError):
    status_code = 404
    default_message = "Payment not found"


class PaymentInProgressError(InvoicerError):
    status_code = 409
    default_message = "A payment is already awaiting confirmation"
