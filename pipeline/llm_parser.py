"""
OpenAI-compatible structured field extraction for business documents.

Sends an uploaded document and a per-schema JSON skeleton to an LLM and
returns the raw JSON object it produces.  The reply is deliberately left
untyped here -- DocumentNormalizer owns validation and repair.

  - PDFs are converted to text with pdfplumber and sent as a text prompt.
  - PNG / JPEG / WEBP images are sent inline as base64 data URLs, which
    needs a vision-capable model.
  - confirm_document_type() asks a YES/NO question first, so a stray
    invoice uploaded as a PO is turned away before extraction.

Works with any OpenAI-compatible backend:
  - Ollama (local):  LLM_BASE_URL=http://localhost:11434/v1   LLM_API_KEY=ollama
  - OpenAI:          LLM_BASE_URL=https://api.openai.com/v1   LLM_API_KEY=sk-...
  - Gemini:          LLM_BASE_URL=https://generativelanguage.googleapis.com/v1beta/openai/
"""
import base64
import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from openai import OpenAI, OpenAIError

from models.result import SCHEMA_TAGS
from .errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_RULES = """IMPORTANT RULES:
- Return ONLY the JSON object -- no markdown, no explanation, no code fences
- Extract EXACT values as they appear in the document -- no placeholders, no sample data
- All monetary amounts must be plain numbers (no currency symbols, no commas)
- All dates must be in YYYY-MM-DD format (e.g. "28Jan26" -> "2026-01-28")
- Use null for any field not found in the document (not "N/A" or "Unknown")
- currency is the ISO code printed on the document (AED, INR, USD, ...) or null"""

_ITEM_PRICED = """{{
      "itemName": "string",
      "itemCode": "material code or null",
      "description": "string or null",
      "quantity": number,
      "unit": "EA, PCS, KG, ... or null",
      "unitPrice": number,
      "total": number or null
    }}"""

_SCHEMAS: dict[str, tuple[str, str]] = {
    "po": ("Purchase Order", """{{
  "poNumber": "string",
  "poDate": "YYYY-MM-DD",
  "expiryDate": "YYYY-MM-DD or null",
  "quotationReference": "string or null",
  "customerName": "string",
  "customerAddress": "string or null",
  "customerEmail": "string or null",
  "lineItems": [
    """ + _ITEM_PRICED + """
  ],
  "totalAmount": number or null,
  "currency": "string or null",
  "terms": "string or null",
  "notes": "string or null"
}}"""),
    "inquiry": ("Customer Inquiry / Purchase Requisition", """{{
  "inquiryNumber": "Purchase Requisition number, RFQ number or inquiry reference",
  "inquiryDate": "YYYY-MM-DD",
  "customerName": "customer name, or the Plant if no customer is named",
  "customerAddress": "string or null",
  "customerEmail": "string or null",
  "customerPhone": "string or null",
  "notes": "string or null",
  "items": [
    {{
      "itemName": "Short Text or item description",
      "itemCode": "Material code or null",
      "description": "string or null",
      "quantity": number,
      "unit": "Unit of Measure or null",
      "manufacturerPart": "VPN / part number or null",
      "classCode": "string or null",
      "plant": "string or null"
    }}
  ]
}}"""),
    "quotation": ("Quotation", """{{
  "quotationNumber": "string",
  "quotationDate": "YYYY-MM-DD",
  "validityDate": "YYYY-MM-DD or null",
  "customerName": "string",
  "customerAddress": "string or null",
  "customerEmail": "string or null",
  "customerPhone": "string or null",
  "items": [
    """ + _ITEM_PRICED + """
  ],
  "vatAmount": number or null,
  "totalAmount": number or null,
  "currency": "string or null",
  "terms": "string or null",
  "notes": "string or null"
}}"""),
    "supplier_order": ("Supplier Purchase Order", """{{
  "orderNumber": "string",
  "orderDate": "YYYY-MM-DD",
  "expectedDeliveryDate": "YYYY-MM-DD or null",
  "supplierName": "string",
  "supplierAddress": "string or null",
  "supplierEmail": "string or null",
  "supplierPhone": "string or null",
  "items": [
    """ + _ITEM_PRICED + """
  ],
  "totalAmount": number or null,
  "currency": "string or null",
  "terms": "string or null",
  "notes": "string or null"
}}"""),
    "delivery_document": ("Commercial Invoice / Delivery Order", """{{
  "documentNumber": "string",
  "documentType": "commercial_invoice, delivery_order or both",
  "documentDate": "YYYY-MM-DD",
  "customerName": "string",
  "customerAddress": "string or null",
  "customerEmail": "string or null",
  "customerPhone": "string or null",
  "customerTRN": "Tax Registration Number or null",
  "items": [
    """ + _ITEM_PRICED + """
  ],
  "vatAmount": number or null,
  "totalAmount": number or null,
  "currency": "string or null",
  "terms": "string or null",
  "notes": "string or null"
}}"""),
}

_PROMPT = """You are a business document data extraction system. Extract all structured data from the {title} below and return it as valid JSON.

{rules}

Return a JSON object with exactly this structure:
{skeleton}
{document}"""


def build_prompt(schema: str, document_text: Optional[str] = None) -> str:
    """Prompt for *schema*; the document is appended as text or sent alongside as an image."""
    if schema not in _SCHEMAS:
        raise ValueError(f"Unknown schema {schema!r}. Must be one of {SCHEMA_TAGS}")
    title, skeleton = _SCHEMAS[schema]
    if document_text is None:
        document = "\nThe document is attached as an image."
    else:
        document = f"\nDocument text:\n---\n{document_text}\n---"
    return _PROMPT.format(
        title=title,
        rules=_RULES,
        skeleton=skeleton.format(),
        document=document,
    )


# ---------------------------------------------------------------------------
# Document type check
# ---------------------------------------------------------------------------

MIN_CHECK_TEXT   = 50      # shorter PDF text is never accepted
CHECK_TEXT_LIMIT = 2000    # characters of PDF text shown to the model

# A genuine document of each type carries at least one of these
_TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "po":                ("purchase order", "po number", "po no", "po-", "order details",
                          "line item", "customer"),
    "inquiry":           ("inquiry", "enquiry", "rfq", "request for quotation",
                          "requisition", "quotation"),
    "quotation":         ("quotation", "quote", "offer", "validity"),
    "supplier_order":    ("purchase order", "order", "supplier", "vendor"),
    "delivery_document": ("invoice", "delivery", "trn", "consignee"),
}

_TYPE_HINTS: dict[str, str] = {
    "po":                "PO number, customer information, line items, quantities, prices, totals",
    "inquiry":           "inquiry, RFQ or requisition number, requested items and quantities",
    "quotation":         "quotation number, validity date, priced items, totals",
    "supplier_order":    "order number, supplier details, ordered items, prices",
    "delivery_document": "invoice or delivery order number, consignee, delivered items, TRN",
}

_CHECK_PROMPT = """Analyze the following {source} and determine if it is a {title} document.
Look for: {hints}.
Respond with only "YES" or "NO".
{document}"""

_ANSWERS = {"YES": True, "VALID": True, "NO": False, "INVALID": False}


def schema_title(schema: str) -> str:
    return _SCHEMAS[schema][0]


def has_type_keywords(schema: str, text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in _TYPE_KEYWORDS[schema])


def build_check_prompt(schema: str, document_text: Optional[str] = None) -> str:
    """Yes/no prompt asking whether the document is a *schema* document."""
    if schema not in _SCHEMAS:
        raise ValueError(f"Unknown schema {schema!r}. Must be one of {SCHEMA_TAGS}")
    title, _ = _SCHEMAS[schema]
    if document_text is None:
        source, document = "image", ""
    else:
        source = "text"
        document = f"\nText (first {CHECK_TEXT_LIMIT} chars):\n---\n{document_text[:CHECK_TEXT_LIMIT]}\n---"
    return _CHECK_PROMPT.format(
        source=source, title=title, hints=_TYPE_HINTS[schema], document=document,
    )


# ---------------------------------------------------------------------------
# Document handling
# ---------------------------------------------------------------------------

_IMAGE_SIGNATURES = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff",      "image/jpeg"),
    (b"RIFF",              "image/webp"),
]


def sniff_image_type(document: bytes) -> Optional[str]:
    """MIME type for image uploads, None for anything else."""
    for signature, mime in _IMAGE_SIGNATURES:
        if document.startswith(signature):
            if mime == "image/webp" and document[8:12] != b"WEBP":
                continue
            return mime
    return None


def pdf_text(document: bytes) -> tuple[str, int]:
    """Extract plain text from PDF bytes with pdfplumber.  Returns (text, page_count)."""
    import pdfplumber

    pages_text: list[str] = []
    with pdfplumber.open(io.BytesIO(document)) as pdf:
        page_count = len(pdf.pages)
        for i, page in enumerate(pdf.pages):
            text = page.extract_text()
            if text:
                pages_text.append(text.strip())
            else:
                logger.debug("Page %d yielded no text (may be scanned)", i + 1)
    return "\n\n".join(pages_text), page_count


@dataclass
class RawExtraction:
    """
    Untyped model output for one document.

    data:        the JSON object returned by the model
    text:        document text sent to the model (empty for images); the
                 normaliser scans it for currency tokens
    page_count:  PDF pages, 0 for images
    model:       model that produced the data
    """
    data: dict
    text: str = ""
    page_count: int = 0
    model: str = ""
    attempts: int = field(default=1, repr=False)


# ---------------------------------------------------------------------------
# LLMExtractor
# ---------------------------------------------------------------------------

class LLMExtractor:
    """
    Uses any OpenAI-compatible LLM API to extract document fields as JSON.

    max_attempts bounds how many times an unusable reply (no JSON object, or
    a transport error) is retried before ExternalServiceFailure is raised.
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "ollama",
        max_attempts: int = 3,
    ):
        self.model        = model
        self.base_url     = base_url
        self.api_key      = api_key
        self.max_attempts = max(1, max_attempts)
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        """Lazily initialise the OpenAI client."""
        if self._client is None:
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key)
        return self._client

    def extract(
        self,
        document: bytes,
        schema: str,
        filename: Optional[str] = None,
    ) -> RawExtraction:
        """
        Extract raw fields for *schema* from a PDF or image.

        Raises ExternalServiceFailure if the document has no readable text or
        the model does not return a JSON object within max_attempts.
        """
        label = filename or "<upload>"
        text, page_count, content = self._document_content(
            document, label, lambda t: build_prompt(schema, t),
        )
        if page_count:
            logger.info(
                "Extracting %s from %s (%d chars, %d pages)", schema, label, len(text), page_count,
            )
        else:
            logger.info("Extracting %s from image %s", schema, label)

        data, attempt = self._ask(content, self._parse_json_response, label, "valid JSON")
        logger.info("LLM extraction succeeded on attempt %d", attempt)
        return RawExtraction(
            data=data, text=text, page_count=page_count,
            model=self.model, attempts=attempt,
        )

    def confirm_document_type(
        self,
        document: bytes,
        schema: str,
        filename: Optional[str] = None,
    ) -> bool:
        """
        Whether *document* really is a *schema* document.

        PDF text must be long enough and carry a keyword for the type before
        the model is asked at all; images go straight to the model.  Raises
        ExternalServiceFailure on the same conditions as extract().
        """
        label = filename or "<upload>"
        text, page_count, content = self._document_content(
            document, label, lambda t: build_check_prompt(schema, t),
        )
        title, _ = _SCHEMAS[schema]
        if page_count and (len(text.strip()) < MIN_CHECK_TEXT or not has_type_keywords(schema, text)):
            logger.info("%s has no %s keywords", label, title)
            return False

        answer, _ = self._ask(content, self._parse_yes_no, label, "a YES/NO answer")
        logger.info("%s %s a %s", label, "is" if answer else "is not", title)
        return answer

    def _document_content(
        self,
        document: bytes,
        label: str,
        prompt_for: Callable[[Optional[str]], str],
    ) -> tuple[str, int, Any]:
        """
        Message content for *document*: (text, page_count, content).

        Images become a prompt plus an inline data URL; PDFs become a text
        prompt built from their pdfplumber text.
        """
        mime = sniff_image_type(document)
        if mime:
            encoded = base64.b64encode(document).decode("ascii")
            content = [
                {"type": "text", "text": prompt_for(None)},
                {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}},
            ]
            return "", 0, content

        try:
            text, page_count = pdf_text(document)
        except Exception as e:
            raise ExternalServiceFailure(f"Could not read {label} as a PDF: {e}") from e
        if len(text.strip()) < 20:
            raise ExternalServiceFailure(
                f"No readable text in {label} -- likely a scanned PDF. "
                "Upload a photo or image of the document instead."
            )
        return text, page_count, prompt_for(text)

    def _ask(
        self,
        content: Any,
        parse: Callable[[str], Optional[T]],
        label: str,
        expected: str,
    ) -> tuple[T, int]:
        """
        Send *content* until parse(reply) gives something other than None.
        Returns (parsed value, attempt number).
        """
        client = self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            logger.debug("LLM attempt %d (model=%s)", attempt, self.model)
            try:
                response = client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": content}],
                    temperature=0.0,   # deterministic output
                )
            except OpenAIError as e:
                logger.warning("LLM attempt %d failed: %s", attempt, e)
                last_error = e
                continue

            raw = (response.choices[0].message.content or "").strip()
            value = parse(raw)
            if value is not None:
                return value, attempt

        msg = f"LLM failed to return {expected} for {label} after {self.max_attempts} attempt(s)"
        if last_error is not None:
            raise ExternalServiceFailure(f"{msg}: {last_error}") from last_error
        raise ExternalServiceFailure(msg)

    @staticmethod
    def _parse_yes_no(raw: str) -> Optional[bool]:
        m = re.search(r"\b(YES|NO|VALID|INVALID)\b", raw.upper())
        if m is None:
            logger.warning("No YES/NO answer in LLM response: %r", raw[:80])
            return None
        return _ANSWERS[m.group(1)]

    @staticmethod
    def _parse_json_response(raw: str) -> Optional[dict]:
        """
        Extract the JSON object from the model's response.
        Handles markdown code fences and attempts basic JSON repair.
        """
        raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.IGNORECASE)
        raw = re.sub(r"\s*```$", "", raw)
        raw = raw.strip()

        # Find outermost JSON object
        start = raw.find("{")
        end = raw.rfind("}") + 1
        if start == -1 or end == 0:
            logger.warning("No JSON object found in LLM response")
            return None

        json_str = raw[start:end]
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.warning("JSON decode error: %s", e)
            # Attempt repair: remove trailing commas before } or ]
            json_str = re.sub(r",\s*([}\]])", r"\1", json_str)
            try:
                data = json.loads(json_str)
            except json.JSONDecodeError:
                logger.error("Could not repair JSON from LLM response")
                return None

        return data if isinstance(data, dict) else None

    def check_connection(self) -> dict:
        """
        Verify the LLM endpoint is reachable and the configured model is available.
        """
        try:
            client = self._get_client()
            models_response = client.models.list()
            available = [m.id for m in models_response.data]
            model_available = any(self.model in m for m in available)
            return {
                "ok": True,
                "base_url": self.base_url,
                "model_available": model_available,
                "available_models": available,
            }
        except OpenAIError as e:
            return {
                "ok": False,
                "base_url": self.base_url,
                "error": str(e),
                "model_available": False,
            }
