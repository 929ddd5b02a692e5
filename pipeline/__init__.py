from .database import Database, Transaction
from .documents import render_document
from .email_ingest import EmailIngestService, InboxAttachment, classify_subject
from .errors import (
    EntityNotFound,
    ExternalServiceFailure,
    IllegalTransition,
    InsufficientData,
    PersistenceFailure,
    PipelineError,
    SerialsExhausted,
    ValidationFailure,
)
from .forecast import ForecastEngine, collect_purchase_events, material_codes
from .llm_parser import LLMExtractor, RawExtraction
from .normalizer import DocumentNormalizer
from .numbering import DocumentNumbering
from .workflow import WorkflowService, available_actions, transition
from .processor import DocumentProcessor

__all__ = [
    "Database", "Transaction",
    "PipelineError", "ValidationFailure", "IllegalTransition", "InsufficientData",
    "ExternalServiceFailure", "PersistenceFailure", "EntityNotFound", "SerialsExhausted",
    "render_document", "EmailIngestService", "InboxAttachment", "classify_subject",
    "ForecastEngine", "collect_purchase_events", "material_codes",
    "LLMExtractor", "RawExtraction", "DocumentNormalizer", "DocumentNumbering",
    "WorkflowService", "available_actions", "transition",
    "DocumentProcessor",
]
