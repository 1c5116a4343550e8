"""Text recognition backends for the OCR proxy."""
from __future__ import annotations

import abc
import logging
from io import BytesIO

import pytesseract
from google.cloud import vision
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


class EngineError(Exception):
    """The backend could not produce text for a supported file."""


def is_supported(mime_type: str | None) -> bool:
    mime_type = (mime_type or "").lower()
    return mime_type == PDF_MIME_TYPE or mime_type.startswith("image/")


class OcrEngine(abc.ABC):
    @abc.abstractmethod
    def image_text(self, content: bytes) -> str:
        ...

    @abc.abstractmethod
    def pdf_text(self, content: bytes) -> str:
        ...

    def extract(self, content: bytes, mime_type: str) -> str:
        if mime_type.lower() == PDF_MIME_TYPE:
            return self.pdf_text(content)
        return self.image_text(content)


class VisionEngine(OcrEngine):
    """Google Cloud Vision.

    Images go through ``text_detection``; PDFs are sent inline to
    ``batch_annotate_files`` with DOCUMENT_TEXT_DETECTION, which reads at
    most five pages per request.
    """

    def __init__(self, client=None, max_pdf_pages: int = 5):
        self._client = client
        self.max_pdf_pages = max(1, min(max_pdf_pages, 5))

    @property
    def client(self):
        if self._client is None:
            self._client = vision.ImageAnnotatorClient()
        return self._client

    def image_text(self, content):
        response = self.client.text_detection(image=vision.Image(content=content))
        if response.error.message:
            raise EngineError(f"Vision API error: {response.error.message}")
        texts = response.text_annotations
        if not texts:
            return ""
        return texts[0].description

    def pdf_text(self, content):
        request = vision.AnnotateFileRequest(
            input_config=vision.InputConfig(content=content, mime_type=PDF_MIME_TYPE),
            features=[vision.Feature(type_=vision.Feature.Type.DOCUMENT_TEXT_DETECTION)],
            pages=list(range(1, self.max_pdf_pages + 1)),
        )
        response = self.client.batch_annotate_files(requests=[request])
        pages = []
        for file_response in response.responses:
            if file_response.error.message:
                raise EngineError(f"Vision API error: {file_response.error.message}")
            for page in file_response.responses:
                if page.error.message:
                    raise EngineError(f"Vision API error: {page.error.message}")
                if page.full_text_annotation.text:
                    pages.append(page.full_text_annotation.text)
        return "\n".join(pages)


class TesseractEngine(OcrEngine):
    """Local Tesseract; PDFs are rasterised with pdf2image first."""

    def __init__(self, max_pdf_pages: int = 5, lang: str = "eng"):
        self.max_pdf_pages = max_pdf_pages
        self.lang = lang

    def image_text(self, content):
        try:
            image = Image.open(BytesIO(content))
        except UnidentifiedImageError as exc:
            raise EngineError("Could not read image") from exc
        return self._recognise(image)

    def pdf_text(self, content):
        try:
            images = convert_from_bytes(content, first_page=1, last_page=self.max_pdf_pages)
        except PDFInfoNotInstalledError as exc:
            raise EngineError("poppler is not installed") from exc
        except (PDFPageCountError, PDFSyntaxError) as exc:
            raise EngineError("Could not read PDF") from exc
        pages = [self._recognise(image) for image in images]
        return "\n".join(p for p in pages if p)

    def _recognise(self, image):
        try:
            return pytesseract.image_to_string(image, lang=self.lang).strip()
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineError("tesseract is not installed") from exc
        except pytesseract.TesseractError as exc:
            raise EngineError(str(exc)) from exc


def build_engine(name: str, max_pdf_pages: int = 5) -> OcrEngine:
    if name == "vision":
        return VisionEngine(max_pdf_pages=max_pdf_pages)
    if name == "tesseract":
        return TesseractEngine(max_pdf_pages=max_pdf_pages)
    raise ValueError(f"Unknown OCR engine {name!r}")
