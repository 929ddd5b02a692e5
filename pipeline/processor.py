"""
Main pipeline orchestrator.

DocumentProcessor ties extraction, normalisation and persistence into a single
ingest() call, and exposes the workflow and forecast services over the same
database:

  1. LLMExtractor        -- is this really a <schema> document?  (optional)
  2. LLMExtractor        -- PDF text / image -> raw JSON for the chosen schema
  3. DocumentNormalizer  -- raw JSON -> typed record, or a list of field issues
  4. Database            -- store the record (audit-logged)

Documents arrive as files or from the email inbox (EmailIngestService).
Quotations and delivery documents are rendered to PDF on request.  Forecasts
are computed on demand from the purchase orders already stored.
"""
import logging
import re
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from config import Config
from models import Entity, FieldIssue, IngestionResult, MaterialForecast, PurchaseOrder
from .database import Database
from .documents import render_document
from .email_ingest import EmailIngestService
from .errors import PipelineError, ValidationFailure
from .forecast import ForecastEngine, collect_purchase_events, material_codes
from .llm_parser import LLMExtractor, schema_title
from .normalizer import DocumentNormalizer
from .numbering import DocumentNumbering
from .workflow import WorkflowService

logger = logging.getLogger(__name__)


class DocumentProcessor:
    """Orchestrates document ingestion and the services built on stored records."""

    def __init__(
        self,
        config: Optional[Config] = None,
        extractor: Optional[LLMExtractor] = None,
        mailbox: Optional[EmailIngestService] = None,
    ):
        self.config = config or Config()
        self.config.ensure_output_dir()

        self.db = Database(self.config.db_path)
        self.extractor = extractor or LLMExtractor(
            model=self.config.llm_model,
            base_url=self.config.llm_base_url,
            api_key=self.config.llm_api_key,
            max_attempts=self.config.llm_max_attempts,
        )
        self.mailbox = mailbox or EmailIngestService(self.config)
        self.normalizer = DocumentNormalizer(
            default_currency=self.config.default_currency,
            vat_rate=self.config.vat_rate,
            quotation_validity_days=self.config.quotation_validity_days,
            po_validity_days=self.config.po_validity_days,
        )
        self.workflow = WorkflowService(
            self.db,
            numbering=DocumentNumbering(self.config.quotation_prefix),
            vat_rate=self.config.vat_rate,
            quotation_validity_days=self.config.quotation_validity_days,
            po_validity_days=self.config.po_validity_days,
            default_currency=self.config.default_currency,
        )
        self.forecaster = ForecastEngine(
            min_purchases=self.config.stock_min_purchases,
            min_consistency=self.config.stock_min_consistency,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ingest(self, path: str | Path, schema: str, actor: str = "system") -> IngestionResult:
        """
        Extract, normalise and store one document.

        A document that is not of the requested type, or that fails
        validation, is not stored; the result carries the issues instead.
        Extraction and storage errors propagate.
        """
        path = Path(path)
        logger.info("=== Ingesting %s as %s ===", path.name, schema)
        start = time.monotonic()
        document = path.read_bytes()
        result = IngestionResult(
            source_file=str(path),
            schema_tag=schema,
            processed_at=datetime.now(timezone.utc).isoformat(),
            processing_time_seconds=0.0,
            llm_model_used=self.extractor.model,
        )

        if self.config.verify_document_type:
            logger.info("Step 1/4: Checking document type")
            if not self.extractor.confirm_document_type(document, schema, filename=path.name):
                title = schema_title(schema)
                logger.warning("%s rejected: not a %s", path.name, title)
                return result.model_copy(update={
                    "issues": [FieldIssue(
                        field="$",
                        problem="invalid",
                        description=f"{path.name} does not look like a {title}",
                    )],
                    "processing_time_seconds": round(time.monotonic() - start, 3),
                })

        logger.info("Step 2/4: LLM extraction (model=%s)", self.extractor.model)
        raw = self.extractor.extract(document, schema, filename=path.name)
        result = result.model_copy(update={
            "llm_model_used": raw.model or self.extractor.model,
            "raw_text_length": len(raw.text),
        })

        logger.info("Step 3/4: Normalising fields")
        try:
            record = self.normalizer.normalize(raw.data, schema, source_text=raw.text)
        except ValidationFailure as e:
            logger.warning("%s failed validation: %s", path.name, ", ".join(e.fields))
            return result.model_copy(update={
                "issues": e.issues,
                "processing_time_seconds": round(time.monotonic() - start, 3),
            })

        logger.info("Step 4/4: Saving %s %s", record.kind, record.number)
        stored = self.db.create(record.model_copy(update={"pdf_path": str(path)}), actor=actor)

        elapsed = round(time.monotonic() - start, 3)
        logger.info("Completed %s in %.2fs -> %s %s", path.name, elapsed, stored.kind, stored.id)
        return result.model_copy(update={
            "entity_kind": stored.kind,
            "entity_id": stored.id,
            "document_number": stored.number,
            "record": stored.model_dump(mode="json"),
            "processing_time_seconds": elapsed,
        })

    def ingest_many(
        self,
        items: Iterable[tuple[str | Path, str]],
        actor: str = "system",
    ) -> list[IngestionResult]:
        """
        Ingest (path, schema) pairs one after another.  A file that raises a
        PipelineError is logged and reported through the result's error, and
        the batch carries on.
        """
        items = list(items)
        results = []
        for i, (path, schema) in enumerate(items, 1):
            path = Path(path)
            logger.info("[%d/%d] %s", i, len(items), path.name)
            try:
                results.append(self.ingest(path, schema, actor=actor))
            except PipelineError as e:
                logger.error("Failed to ingest %s: %s", path.name, e)
                results.append(IngestionResult(
                    source_file=str(path),
                    schema_tag=schema,
                    processed_at=datetime.now(timezone.utc).isoformat(),
                    processing_time_seconds=0.0,
                    llm_model_used=self.extractor.model,
                    error=str(e),
                ))

        stored = sum(1 for r in results if r.ok)
        logger.info("Batch complete: %d stored, %d not stored", stored, len(results) - stored)
        return results

    def ingest_inbox(
        self,
        schemas: tuple[str, ...] = ("inquiry", "po"),
        actor: str = "email",
    ) -> list[IngestionResult]:
        """Poll the mailbox and ingest every saved attachment under its subject's schema."""
        attachments = self.mailbox.poll_mailbox(schemas)
        if not attachments:
            logger.info("No new inquiry or PO attachments in the mailbox")
            return []
        return self.ingest_many(((a.path, a.schema) for a in attachments), actor=actor)

    def render_document(
        self,
        kind: str,
        entity_id: str,
        output_dir: Optional[Path] = None,
        actor: str = "system",
    ) -> Entity:
        """
        Render a stored quotation or delivery document to PDF and record the
        file on it.  Returns the updated record.
        """
        entity = self.db.get(kind, entity_id)
        output_dir = Path(output_dir or self.config.documents_dir)
        filename = re.sub(r"[^A-Za-z0-9._-]", "_", entity.number) + ".pdf"
        path = render_document(entity, output_dir / filename, company_name=self.config.company_name)
        return self.workflow.attach_document(kind, entity_id, str(path), actor=actor)

    def purchase_orders(self) -> list[PurchaseOrder]:
        return self.db.list("purchase_order", limit=None)

    def forecast_material(self, material_code: str, today: Optional[date] = None) -> MaterialForecast:
        """Forecast one material from every stored PO.  Raises InsufficientData."""
        events, name = collect_purchase_events(self.purchase_orders(), material_code)
        return self.forecaster.forecast(material_code, events, material_name=name, today=today)

    def material_codes(self) -> list[str]:
        return material_codes(self.purchase_orders())

    def check_setup(self) -> dict:
        """Verify that all dependencies and connections are ready."""
        status = {}

        try:
            import pdfplumber  # noqa: F401
            status["pdfplumber"] = {"ok": True}
        except ImportError:
            status["pdfplumber"] = {
                "ok": False,
                "error": "pdfplumber not installed. Run: pip install pdfplumber",
            }

        status["llm"] = self.extractor.check_connection()

        status["database"] = {
            "path": str(self.config.db_path),
            "ok": self.config.db_path.exists(),
            "records": self.db.get_stats(),
        }
        return status
