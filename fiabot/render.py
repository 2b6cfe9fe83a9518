"""Render PDF pages to PNG images with PyMuPDF."""

import logging
from pathlib import Path
from typing import List, Union

import pymupdf

from .models import RenderedPage

logger = logging.getLogger(__name__)


class RenderError(Exception):
    """Raised when a PDF cannot be rendered."""


class PDFRenderer:
    """Converts every page of a PDF into a PNG ``RenderedPage``."""

    def __init__(self, dpi: int = 110):
        self.dpi = dpi

    def render(self, pdf_path: Union[str, Path]) -> List[RenderedPage]:
        try:
            with pymupdf.open(str(pdf_path)) as doc:
                pages = []
                for index, page in enumerate(doc, start=1):
                    pixmap = page.get_pixmap(dpi=self.dpi)
                    pages.append(
                        RenderedPage(
                            page_number=index,
                            png_bytes=pixmap.tobytes("png"),
                            width=pixmap.width,
                            height=pixmap.height,
                        )
                    )
        except (RuntimeError, ValueError, OSError) as e:
            # pymupdf raises FileDataError (a RuntimeError) for corrupt files
            raise RenderError(f"Failed to render {pdf_path}: {e}") from e

        if not pages:
            raise RenderError(f"{pdf_path} has no pages")

        logger.info(f"Rendered {len(pages)} pages from {Path(pdf_path).name}")
        return pages
