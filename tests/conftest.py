"""
Pytest configuration and shared fixtures for the PO processor test suite.
"""
import os
import shutil
import tempfile
from datetime import date, timedelta
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="po_processor_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    # Keep a developer's pipeline_settings.json out of the tests
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    config = Config()
    config.output_dir = temp_dir / "output"
    config.db_path = temp_dir / "output" / "po_processor.db"
    config.documents_dir = temp_dir / "output" / "documents"
    config.inbox_dir = temp_dir / "inbox"
    config.default_currency = "INR"
    config.ensure_output_dir()
    return config


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from pipeline.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def workflow(test_db) -> "WorkflowService":
    from pipeline.workflow import WorkflowService
    return WorkflowService(test_db)


@pytest.fixture
def raw_po() -> dict:
    """A purchase order as the model returns it."""
    return {
        "poNumber": "PO-2025-0042",
        "poDate": "2025-11-22",
        "expiryDate": "22-12-2025",
        "customerName": "Al Khaleej Trading LLC",
        "customerEmail": "purchasing@alkhaleej.ae",
        "lineItems": [
            {
                "itemName": "V-Belt B52",
                "itemCode": "MAT-001",
                "quantity": 4,
                "unit": "PCS",
                "unitPrice": 12.5,
                "total": 50,
            },
            {
                "itemName": "Bearing 6204-ZZ",
                "itemCode": "MAT-002",
                "quantity": "3",
                "unitPrice": "1,127.50",
                "total": None,
            },
        ],
        "totalAmount": 3432.5,
        "currency": "AED",
        "terms": "30 days",
    }


@pytest.fixture
def raw_inquiry() -> dict:
    return {
        "inquiryNumber": "PR-10020034",
        "inquiryDate": "28Jan26",
        "customerName": "Plant 1100",
        "items": [
            {"itemName": "V-Belt B52", "itemCode": "MAT-001", "quantity": 10, "unit": "EA"},
            {"itemName": "Seal kit", "itemCode": None, "quantity": 2, "unit": "SET"},
        ],
    }


@pytest.fixture
def make_po():
    """Factory for stored-shape purchase orders."""
    from models import LineItem, PurchaseOrder

    def _make(number="PO-1", po_date=None, expiry_days=30, code="MAT-001", quantity=5.0, **extra):
        po_date = po_date or date.today()
        item = LineItem(
            item_name=f"Item {code}", item_code=code, quantity=quantity,
            unit_price=10.0, total=quantity * 10.0,
        )
        return PurchaseOrder(
            po_number=number,
            po_date=po_date,
            expiry_date=po_date + timedelta(days=expiry_days),
            customer_name="Al Khaleej Trading LLC",
            line_items=[item],
            total_amount=item.total,
            currency="AED",
            **extra,
        )

    return _make


@pytest.fixture
def stored_inquiry(test_db):
    """A reviewed inquiry saved in the test database."""
    from models import CustomerInquiry, InquiryItem

    inquiry = CustomerInquiry(
        inquiry_number="PR-10020034",
        inquiry_date=date.today(),
        customer_name="Al Khaleej Trading LLC",
        customer_email="purchasing@alkhaleej.ae",
        items=[
            InquiryItem(item_name="V-Belt B52", item_code="MAT-001", quantity=10),
            InquiryItem(item_name="Seal kit", quantity=2, unit="SET"),
        ],
        status="reviewed",
    )
    return test_db.create(inquiry)


@pytest.fixture
def sample_pdf_path(temp_dir: Path) -> Path:
    """Create a minimal test PDF file."""
    pdf_path = temp_dir / "test_po.pdf"
    pdf_path.write_bytes(b"%PDF-1.4\n%test purchase order\n%%EOF")
    return pdf_path


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
