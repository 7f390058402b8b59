"""Source document text extraction with swappable PDF backends.

PDF goes through PyMuPDF (default) or pdfplumber; DOCX through python-docx.
Anything else is rejected with UnsupportedType.
"""

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class UnsupportedType(Exception):
    """The document type cannot be extracted. Not retryable."""

    retryable = False

    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(f"Unsupported file type: {mime_type}")


class PDFBackend(str, Enum):
    """Available PDF extraction backends."""

    PYMUPDF = "pymupdf"
    PDFPLUMBER = "pdfplumber"


@dataclass
class ExtractionResult:
    """Extracted document text."""

    text: str = ""
    page_count: int = 0
    warnings: list[str] = field(default_factory=list)
    backend_used: str = ""


class PDFExtractorBackend(ABC):
    """Abstract base class for PDF extraction backends."""

    join_pages_with = "\n\n"

    @abstractmethod
    def extract(self, file_bytes: bytes) -> ExtractionResult:
        """Extract text from PDF bytes."""


class PyMuPDFBackend(PDFExtractorBackend):
    """PyMuPDF (fitz) based extraction backend."""

    def extract(self, file_bytes: bytes) -> ExtractionResult:
        import fitz  # pymupdf

        result = ExtractionResult(backend_used="pymupdf")
        with fitz.open(stream=file_bytes, filetype="pdf") as doc:
            result.page_count = len(doc)
            pages = []
            for page_num in range(result.page_count):
                text = doc[page_num].get_text("text")
                if not text.strip():
                    result.warnings.append(f"Page {page_num + 1}: no text")
                    continue
                pages.append(text)
        result.text = self.join_pages_with.join(pages)
        return result


class PDFPlumberBackend(PDFExtractorBackend):
    """pdfplumber based extraction backend."""

    def extract(self, file_bytes: bytes) -> ExtractionResult:
        import pdfplumber

        result = ExtractionResult(backend_used="pdfplumber")
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            result.page_count = len(pdf.pages)
            pages = []
            for page_num, page in enumerate(pdf.pages):
                text = page.extract_text() or ""
                if not text.strip():
                    result.warnings.append(f"Page {page_num + 1}: no text")
                    continue
                pages.append(text)
        result.text = self.join_pages_with.join(pages)
        return result


_PDF_BACKENDS: dict[PDFBackend, type[PDFExtractorBackend]] = {
    PDFBackend.PYMUPDF: PyMuPDFBackend,
    PDFBackend.PDFPLUMBER: PDFPlumberBackend,
}


def get_pdf_backend(backend: PDFBackend = PDFBackend.PYMUPDF) -> PDFExtractorBackend:
    """Get a PDF extractor backend instance."""
    backend_class = _PDF_BACKENDS.get(backend)
    if not backend_class:
        raise ValueError(f"Unknown PDF backend: {backend}")
    return backend_class()


def extract_docx(file_bytes: bytes) -> str:
    """Paragraph text of a DOCX file, one paragraph per line."""
    import docx

    document = docx.Document(io.BytesIO(file_bytes))
    return "\n".join(p.text for p in document.paragraphs if p.text.strip())


class TextExtractor:
    """Extracts plain text from uploaded exercise source documents."""

    def __init__(self, pdf_backend: PDFBackend = PDFBackend.PYMUPDF):
        self._pdf = get_pdf_backend(pdf_backend)

    def extract(self, file_bytes: bytes, mime_type: str) -> str:
        """Extract text from a PDF or DOCX document.

        Raises:
            UnsupportedType: for any other MIME type
        """
        mime = (mime_type or "").split(";")[0].strip().lower()
        if mime == PDF_MIME:
            result = self._pdf.extract(file_bytes)
            logger.info(
                "document_extracted",
                mime_type=mime,
                backend=result.backend_used,
                pages=result.page_count,
                chars=len(result.text),
                warnings=len(result.warnings),
            )
            return result.text
        if mime == DOCX_MIME:
            text = extract_docx(file_bytes)
            logger.info("document_extracted", mime_type=mime, chars=len(text))
            return text
        raise UnsupportedType(mime_type)
