# homeledger/extraction.py
"""
Vision extraction: turn a photo or PDF into an ExtractionResult.

Images go to the vision model as a base64 data URL. PDFs are flattened to text
with pypdf first (the vision endpoint only accepts images) and the text is sent
to the same model.
"""
import base64
import io
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from homeledger.categories import SYSTEM_SLUGS
from homeledger.config import settings
from homeledger.errors import ExtractionError
from homeledger.llm import LLMClient, LLMError
from homeledger.schemas import ExtractionResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert at extracting structured information from home-related documents: equipment data plates, receipts, manuals, warranties, invoices and product photos.

Categories for home items: %(category_list)s."""

USER_PROMPT = """Extract all visible information from this document and return JSON only (no markdown):
{
  "documentType": "equipment_plate|receipt|manual|warranty|invoice|product_photo|other",
  "confidence": 0.0-1.0,
  "rawText": "all visible text from the document",
  "date": "YYYY-MM-DD or null",
  "productName": "string or null",
  "equipment": {"manufacturer": "string or null", "model": "string or null", "serialNumber": "string or null"},
  "financial": {"vendor": "string or null", "amount": "number or null", "currency": "string or null"},
  "warranty": {"startDate": "YYYY-MM-DD or null", "endDate": "YYYY-MM-DD or null", "terms": "string or null"},
  "suggestedItemName": "descriptive name for the item",
  "suggestedCategory": "%(category_choices)s"
}"""


def render_prompts(categories: Optional[List[str]] = None) -> Tuple[str, str]:
    """System and user prompts listing the owner's categories (system ones when none are given)."""
    slugs = list(categories or SYSTEM_SLUGS)
    values = {"category_list": ", ".join(slugs), "category_choices": "|".join(slugs)}
    return SYSTEM_PROMPT % values, USER_PROMPT % values


def extract_text_from_pdf(data: bytes, max_pages: int) -> List[Tuple[int, str]]:
    """
    Extract text by page. Returns (page_number (1-based), text) tuples; a page
    that fails to extract yields "" so numbering is preserved.
    """
    reader = PdfReader(io.BytesIO(data))
    pages_text = []
    for i, page in enumerate(reader.pages[:max_pages]):
        try:
            text = page.extract_text() or ""
        except (PyPdfError, ValueError, KeyError) as e:
            logger.warning("Failed to extract text from page %s: %s", i + 1, e)
            text = ""
        pages_text.append((i + 1, text))
    return pages_text


def vision_mime(content_type: str) -> str:
    # the vision endpoint does not accept HEIC labels; phones re-encode on export anyway
    if content_type == "image/heic":
        return "image/jpeg"
    return content_type


class VisionExtractor:
    def __init__(self, llm: LLMClient, model: str = None, pdf_max_pages: int = None):
        self.llm = llm
        self.model = model or settings.vision_model
        self.pdf_max_pages = pdf_max_pages or settings.pdf_max_pages

    def build_messages(self, data: bytes, content_type: str, categories: Optional[List[str]] = None) -> list:
        system_prompt, user_prompt = render_prompts(categories)
        if content_type == "application/pdf":
            try:
                pages = extract_text_from_pdf(data, self.pdf_max_pages)
            except PyPdfError as e:
                raise ExtractionError(f"Unreadable PDF: {e}")
            text = "\n\n".join(f"[page {n}]\n{t}" for n, t in pages if t.strip())
            if not text:
                raise ExtractionError("PDF contains no extractable text")
            content = f"{user_prompt}\n\nDOCUMENT TEXT:\n{text}"
        else:
            encoded = base64.b64encode(data).decode("ascii")
            content = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": f"data:{vision_mime(content_type)};base64,{encoded}"}},
            ]
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": content},
        ]

    async def extract(self, data: bytes, content_type: str, categories: Optional[List[str]] = None) -> ExtractionResult:
        messages = self.build_messages(data, content_type, categories)
        logger.info("Calling vision model %s for %s (%d bytes)", self.model, content_type, len(data))
        try:
            payload = await self.llm.chat_json(messages, model=self.model, max_tokens=2048)
        except LLMError as e:
            raise ExtractionError(f"Vision model call failed: {e}")
        try:
            result = ExtractionResult.model_validate(payload)
        except ValidationError as e:
            raise ExtractionError(f"Malformed extraction payload: {e}")
        logger.info("Extraction complete: type=%s confidence=%s", result.document_type, result.confidence)
        return result
