"""PDF text extraction with real page numbers."""
from dataclasses import dataclass
from pathlib import Path
from typing import List

import fitz  # PyMuPDF
import structlog

logger = structlog.get_logger()


@dataclass
class PageText:
    """Text of one PDF page."""

    text: str
    page: int
    source: str


class PDFReader:
    """Extracts text page by page, skipping pages without text."""

    def read(self, pdf_path: Path) -> List[PageText]:
        """Read every page of a PDF.

        Args:
            pdf_path: Path to the PDF file

        Returns:
            List of PageText with 1-based page numbers

        Raises:
            FileNotFoundError: If the file does not exist
        """
        pdf_path = Path(pdf_path)
        if not pdf_path.exists():
            raise FileNotFoundError(f"PDF not found at: {pdf_path}")

        pages = []
        with fitz.open(str(pdf_path)) as doc:
            page_count = doc.page_count
            for number, page in enumerate(doc, 1):
                text = page.get_text("text").strip()
                if text:
                    pages.append(PageText(text=text, page=number, source=pdf_path.name))

        logger.info(
            "pdf_read",
            path=str(pdf_path),
            pages=page_count,
            pages_with_text=len(pages),
            chars=sum(len(p.text) for p in pages),
        )
        return pages
