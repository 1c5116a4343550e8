"""OCR collaborator: file bytes and MIME type in, plain text out."""
from __future__ import annotations

import abc
import logging
from typing import Optional

import httpx

from .errors import OcrServiceError, UnsupportedFileError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def is_pdf(mime_type: Optional[str]) -> bool:
    return (mime_type or "").lower() == PDF_MIME_TYPE


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    return is_pdf(mime_type) or (mime_type or "").lower().startswith("image/")


class OcrClient(abc.ABC):
    @abc.abstractmethod
    def extract_text(self, file_bytes: bytes, mime_type: str, filename: str = "upload") -> str:
        """Return the document text, or "" when none was found.

        Raises UnsupportedFileError for MIME types other than PDF and images
        and OcrServiceError when the backend fails.
        """


class HttpOcrClient(OcrClient):
    """Forwards uploads to the OCR proxy service (``services/ocr``)."""

    def __init__(self, base_url: str, timeout: float = 60.0, http_client: Optional[httpx.Client] = None):
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def extract_text(self, file_bytes: bytes, mime_type: str, filename: str = "upload") -> str:
        if not is_supported_mime_type(mime_type):
            raise UnsupportedFileError()
        try:
            resp = self.http.post("/api/ocr", files={"file": (filename, file_bytes, mime_type)})
        except httpx.HTTPError as exc:
            raise OcrServiceError(f"OCR service unreachable: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code == 415:
            raise UnsupportedFileError(data.get("error"))
        if resp.is_error:
            logger.warning("OCR service answered %s", resp.status_code)
            raise OcrServiceError(data.get("error") or f"OCR service returned HTTP {resp.status_code}")

        text = data.get("text")
        if not isinstance(text, str):
            raise OcrServiceError("OCR service returned no text field")
        return text
