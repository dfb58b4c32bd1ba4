from __future__ import annotations

import io

from docx import Document as DocxDocument
from openpyxl import Workbook
import pytest

from docspace.core.errors import ExtractionError
from docspace.providers.llm.fake import FakeLLMProvider
from docspace.services.ai_client import GeminiClient
from docspace.services.extraction import detect_image_mime_type, extract_document
from docspace.tests.utils.files import build_pdf


def _docx_bytes(*paragraphs: str) -> bytes:
    document = DocxDocument()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _xlsx_bytes() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Revenue"
    sheet.append(["Quarter", "Amount"])
    sheet.append(["Q1", 1200])
    costs = workbook.create_sheet("Costs")
    costs.append(["Rent", 300])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _client(ocr_text: str = "Scanned receipt total 42.00") -> GeminiClient:
    return GeminiClient(FakeLLMProvider(ocr_text=ocr_text))


@pytest.mark.asyncio
async def test_extracts_docx_paragraphs_and_counts() -> None:
    result = await extract_document(_docx_bytes("Hello world", "Second line here"), "docx", _client())
    assert result.text == "Hello world\nSecond line here"
    assert result.metadata == {"word_count": 5, "character_count": len(result.text)}


@pytest.mark.asyncio
async def test_extracts_xlsx_sheets() -> None:
    result = await extract_document(_xlsx_bytes(), "xlsx", _client())
    assert result.text == "Sheet: Revenue\nQuarter Amount\nQ1 1200\n\nSheet: Costs\nRent 300"
    assert result.metadata["sheet_count"] == 2
    assert result.metadata["sheets"][0] == {"name": "Revenue", "rows": 2, "columns": 2}


@pytest.mark.asyncio
async def test_extracts_pdf_text() -> None:
    result = await extract_document(build_pdf("Quarterly report revenue grew"), "pdf", _client())
    assert "Quarterly report revenue grew" in result.text
    assert result.metadata["page_count"] == 1
    assert result.metadata["word_count"] == 4


@pytest.mark.asyncio
async def test_images_go_through_model_ocr() -> None:
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
    result = await extract_document(png, "image", _client())
    assert result.text == "Scanned receipt total 42.00"
    assert result.metadata == {"ocr_enabled": True, "extracted_text": True}


@pytest.mark.asyncio
async def test_corrupt_files_raise_extraction_error() -> None:
    with pytest.raises(ExtractionError):
        await extract_document(b"definitely not a zip", "docx", _client())
    with pytest.raises(ExtractionError):
        await extract_document(b"definitely not a zip", "xlsx", _client())
    with pytest.raises(ExtractionError):
        await extract_document(b"%PDF-1.4 truncated", "pdf", _client())


@pytest.mark.asyncio
async def test_unsupported_type_raises() -> None:
    with pytest.raises(ExtractionError, match="Unsupported"):
        await extract_document(b"data", "unknown", _client())


def test_detect_image_mime_type() -> None:
    assert detect_image_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert detect_image_mime_type(b"\x89PNG\r\n") == "image/png"
    assert detect_image_mime_type(b"GIF89a") == "image/jpeg"
