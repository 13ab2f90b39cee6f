import io
import logging
from typing import Optional, Tuple

from pypdf import PdfReader

logger = logging.getLogger("services.extraction")

PDF_MIME = "application/pdf"
TEXT_MIME = "text/plain"

PLACEHOLDER_MARKERS = (
	"This is simulated",
	"This is a sample document",
	"This would contain the actual",
)
MIN_REAL_TEXT_LENGTH = 200

SAMPLE_TEXT_TEMPLATE = """This is a sample document: {name}.

This document contains study material that has been uploaded for studying. In a real implementation, this would contain the actual extracted text from the document using OCR or text extraction.

Key topics covered:
- Document processing and text extraction
- AI-powered summaries and key points
- Interactive document chat functionality
- Study material organization and management

You can ask questions like:
- "What are the main topics in this document?"
- "Summarize the key points"
- "Create a quiz based on this content"
"""


def extract_pdf(data: bytes) -> Tuple[str, int]:
	"""Return the text of a PDF and its page count."""
	reader = PdfReader(io.BytesIO(data))
	text = ""
	for page in reader.pages:
		text += (page.extract_text() or "") + "\n"
	return text.strip(), len(reader.pages)


def extract_plain_text(data: bytes) -> str:
	return data.decode("utf-8", errors="replace")


def extract_text(data: bytes, mime_type: str) -> Optional[str]:
	"""Extract text for the MIME types we can read; None for anything else."""
	if mime_type == PDF_MIME:
		text, _ = extract_pdf(data)
		return text
	if mime_type == TEXT_MIME:
		return extract_plain_text(data)
	return None


def is_placeholder_text(text: str) -> bool:
	return any(marker in text for marker in PLACEHOLDER_MARKERS) or len(text) < MIN_REAL_TEXT_LENGTH


def sample_text(name: str) -> str:
	return SAMPLE_TEXT_TEMPLATE.format(name=name)
