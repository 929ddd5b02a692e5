from typing import Any, Literal, Optional

from pydantic import BaseModel

SchemaTag = Literal["po", "inquiry", "quotation", "supplier_order", "delivery_document"]

SCHEMA_TAGS: tuple[str, ...] = ("po", "inquiry", "quotation", "supplier_order", "delivery_document")

IssueProblem = Literal["missing", "malformed", "invalid"]


class FieldIssue(BaseModel):
    """A single missing or malformed field found while normalising extracted data."""
    field: str                              # raw key path, e.g. "lineItems[0].quantity"
    problem: IssueProblem
    description: str                        # Human-readable explanation
    value: Optional[str] = None             # What the extraction contained


class IngestionResult(BaseModel):
    """
    The outcome of ingesting one uploaded document.
    Returned by DocumentProcessor.ingest and echoed by the CLI; the stored
    record gets its own "created" audit entry, the result itself is not
    persisted.
    """
    source_file: str
    schema_tag: SchemaTag
    processed_at: str                       # ISO 8601 datetime
    processing_time_seconds: float
    llm_model_used: str
    raw_text_length: int = 0

    entity_kind: Optional[str] = None
    entity_id: Optional[str] = None
    document_number: Optional[str] = None
    record: Optional[dict[str, Any]] = None

    issues: list[FieldIssue] = []
    error: Optional[str] = None             # set when a batch item failed outright

    @property
    def ok(self) -> bool:
        return self.entity_id is not None and not self.issues and self.error is None
