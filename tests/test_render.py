"""Tests for fiabot/render.py - PDF rendering."""

import pymupdf
import pytest

from fiabot.render import PDFRenderer, RenderError


@pytest.fixture
def three_page_pdf(tmp_path):
    path = tmp_path / "decision.pdf"
    doc = pymupdf.open()
    for number in range(1, 4):
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), f"Decision document page {number}")
    doc.save(str(path))
    doc.close()
    return path


class TestPDFRenderer:
    """Tests for page rendering."""

    def test_renders_every_page(self, three_page_pdf):
        """Each page becomes a numbered PNG."""
        pages = PDFRenderer(dpi=72).render(three_page_pdf)

        assert [p.page_number for p in pages] == [1, 2, 3]
        assert all(p.png_bytes.startswith(b"\x89PNG") for p in pages)
        assert pages[0].width == 595
        assert pages[0].height == 842
        assert pages[0].filename == "page-001.png"

    def test_dpi_scales_images(self, three_page_pdf):
        """Higher DPI produces larger images."""
        small = PDFRenderer(dpi=72).render(three_page_pdf)[0]
        large = PDFRenderer(dpi=144).render(three_page_pdf)[0]

        assert large.width == small.width * 2

    def test_corrupt_file(self, tmp_path):
        """Non-PDF content raises RenderError."""
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"%PDF-1.7\n" + b"\x00garbage" * 200)

        with pytest.raises(RenderError):
            PDFRenderer().render(path)

    def test_missing_file(self, tmp_path):
        """A missing file raises RenderError."""
        with pytest.raises(RenderError):
            PDFRenderer().render(tmp_path / "missing.pdf")
