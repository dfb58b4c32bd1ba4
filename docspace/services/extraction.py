from __future__ import annotations

from dataclasses import dataclass, field
import io
import logging
from typing import Any
from zipfile import BadZipFile

from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from docspace.core.errors import AIError, ExtractionError
from docspace.services.ai_client import GeminiClient


logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


def detect_image_mime_type(data: bytes) -> str:
    # Magic numbers; anything unrecognised is sent as JPEG.
    if data[:2] == b"\xff\xd8":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    return "image/jpeg"


def _text_counts(text: str) -> dict[str, int]:
    return {"word_count": len(text.split()), "character_count": len(text)}


def extract_pdf(data: bytes) -> ExtractionResult:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError) as exc:
        raise ExtractionError("Failed to extract text from PDF") from exc
    text = "\n".join(pages).strip()
    return ExtractionResult(text=text, metadata={**_text_counts(text), "page_count": len(pages)})


def extract_docx(data: bytes) -> ExtractionResult:
    try:
        document = DocxDocument(io.BytesIO(data))
    except (BadZipFile, PackageNotFoundError, ValueError, KeyError, OSError) as exc:
        raise ExtractionError("Failed to extract text from DOCX") from exc
    text = "\n".join(paragraph.text for paragraph in document.paragraphs).strip()
    return ExtractionResult(text=text, metadata=_text_counts(text))


def extract_xlsx(data: bytes) -> ExtractionResult:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, ValueError, KeyError, OSError) as exc:
        raise ExtractionError("Failed to extract data from XLSX") from exc
    sheets: list[dict[str, Any]] = []
    blocks: list[str] = []
    try:
        for worksheet in workbook.worksheets:
            rows = [
                ["" if cell is None else str(cell) for cell in row]
                for row in worksheet.iter_rows(values_only=True)
                if any(cell is not None for cell in row)
            ]
            sheets.append(
                {
                    "name": worksheet.title,
                    "rows": len(rows),
                    "columns": len(rows[0]) if rows else 0,
                }
            )
            body = "\n".join(" ".join(row) for row in rows)
            blocks.append(f"Sheet: {worksheet.title}\n{body}")
    finally:
        workbook.close()
    return ExtractionResult(
        text="\n\n".join(blocks),
        metadata={"sheet_count": len(sheets), "sheets": sheets},
    )


async def extract_image(data: bytes, ai_client: GeminiClient) -> ExtractionResult:
    mime_type = detect_image_mime_type(data)
    try:
        text = await ai_client.extract_text_from_image(data, mime_type)
    except AIError as exc:
        raise ExtractionError("Failed to extract text from image") from exc
    return ExtractionResult(text=text, metadata={"ocr_enabled": True, "extracted_text": bool(text)})


async def extract_document(data: bytes, file_type: str, ai_client: GeminiClient) -> ExtractionResult:
    """Dispatch to the extractor for ``file_type`` (pdf, docx, xlsx or image)."""
    logger.info("extraction_start file_type=%s size=%s", file_type, len(data))
    if file_type == "pdf":
        return extract_pdf(data)
    if file_type == "docx":
        return extract_docx(data)
    if file_type == "xlsx":
        return extract_xlsx(data)
    if file_type == "image":
        return await extract_image(data, ai_client)
    raise ExtractionError(f"Unsupported file type: {file_type}")
