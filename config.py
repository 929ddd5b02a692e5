"""
Central configuration for the PO processing pipeline.

All paths, thresholds, and model settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/pipeline_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_DB_PATH    = DEFAULT_OUTPUT_DIR / "po_processor.db"


@dataclass
class Config:
    # --- LLM settings (OpenAI-compatible API) ---
    # Works with Ollama, OpenAI, Gemini's OpenAI endpoint, Groq, or any
    # OpenAI-compatible backend.
    #
    # Ollama (default):   LLM_BASE_URL=http://localhost:11434/v1   LLM_API_KEY=ollama
    # OpenAI:             LLM_BASE_URL=https://api.openai.com/v1   LLM_API_KEY=sk-...
    # Gemini:             LLM_BASE_URL=https://generativelanguage.googleapis.com/v1beta/openai/
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "llama3.2")
    )
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "http://localhost:11434/v1")
    )
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY", "ollama")
    )
    # Retries on unusable model output are the caller's policy, not the client's.
    llm_max_attempts: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_ATTEMPTS", "3"))
    )

    # --- Storage ---
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    db_path:    Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- Normalisation ---
    default_currency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "INR")
    )
    vat_rate:                float = 0.05   # UAE standard rate
    quotation_validity_days: int   = 30     # validity when the document gives none
    po_validity_days:        int   = 30     # expiry when the PO gives none

    # --- Numbering ---
    quotation_prefix: str = "ALK"

    # --- Upload checks ---
    # Ask the model whether an upload really is the chosen document type
    # before extracting it.
    verify_document_type: bool = True

    # --- Generated documents ---
    documents_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DOCUMENTS_DIR", str(DEFAULT_OUTPUT_DIR / "documents")))
    )
    company_name: str = field(
        default_factory=lambda: os.getenv("COMPANY_NAME", "AL KAREEM ENTERPRISES L.L.C.")
    )

    # --- Email ingestion (IMAP) ---
    email_imap_host: str = field(default_factory=lambda: os.getenv("EMAIL_IMAP_HOST", ""))
    email_imap_port: int = field(default_factory=lambda: int(os.getenv("EMAIL_IMAP_PORT", "993")))
    email_imap_user: str = field(default_factory=lambda: os.getenv("EMAIL_IMAP_USER", ""))
    email_imap_password: str = field(default_factory=lambda: os.getenv("EMAIL_IMAP_PASSWORD", ""))
    email_use_ssl: bool = field(
        default_factory=lambda: os.getenv("EMAIL_USE_SSL", "true").lower() not in ("0", "false", "no")
    )
    email_mailbox: str = field(default_factory=lambda: os.getenv("EMAIL_MAILBOX", "INBOX"))
    email_processed_mailbox: str = field(default_factory=lambda: os.getenv("EMAIL_PROCESSED_MAILBOX", ""))
    email_search_criteria: str = field(default_factory=lambda: os.getenv("EMAIL_SEARCH_CRITERIA", "UNSEEN"))
    inbox_dir: Path = field(
        default_factory=lambda: Path(os.getenv("INBOX_DIR", str(DEFAULT_OUTPUT_DIR / "inbox")))
    )

    # --- Forecast decision thresholds ---
    stock_min_purchases:   int   = 3      # purchases in the trailing 12 months
    stock_min_consistency: float = 0.5    # 1 - coefficient of variation of gaps

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from pipeline_settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "pipeline_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "llm_max_attempts":        int,
            "default_currency":        str,
            "vat_rate":                float,
            "quotation_validity_days": int,
            "po_validity_days":        int,
            "quotation_prefix":        str,
            "stock_min_purchases":     int,
            "stock_min_consistency":   float,
            "verify_document_type":    bool,
            "company_name":            str,
            "email_mailbox":           str,
            "email_processed_mailbox": str,
            "email_search_criteria":   str,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to load pipeline_settings.json: %s", exc)

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
