"""
Unit tests for extraction normalisation.
"""
from datetime import date

import pytest

from models import CustomerInquiry, DeliveryDocument, PurchaseOrder, Quotation, SupplierOrder
from pipeline.errors import ValidationFailure
from pipeline.normalizer import DocumentNormalizer


@pytest.mark.unit
class TestPurchaseOrderNormalisation:
    """Tests for the "po" schema."""

    @pytest.fixture
    def normalizer(self):
        return DocumentNormalizer(default_currency="INR")

    def test_valid_po(self, normalizer, raw_po):
        """A complete extraction produces a typed purchase order."""
        po = normalizer.normalize(raw_po, "po")

        assert isinstance(po, PurchaseOrder)
        assert po.po_number == "PO-2025-0042"
        assert po.po_date == date(2025, 11, 22)
        assert po.expiry_date == date(2025, 12, 22)
        assert po.customer_name == "Al Khaleej Trading LLC"
        assert po.currency == "AED"
        assert len(po.line_items) == 2

    def test_line_totals_are_recomputed(self, normalizer, raw_po):
        """Line totals are quantity * unit price regardless of what the model said."""
        raw_po["lineItems"][0]["total"] = 999
        po = normalizer.normalize(raw_po, "po")

        for item in po.line_items:
            assert item.total == item.quantity * item.unit_price
        assert po.line_items[0].total == 50.0
        assert po.line_items[1].unit_price == 1127.5
        assert po.total_amount == 50.0 + 3 * 1127.5

    def test_missing_customer_name_is_reported(self, normalizer, raw_po):
        del raw_po["customerName"]

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert exc_info.value.fields == ["customerName"]
        assert exc_info.value.issues[0].problem == "missing"

    @pytest.mark.parametrize("placeholder", ["", "N/A", "null", "Unknown", "  "])
    def test_placeholder_values_count_as_missing(self, normalizer, raw_po, placeholder):
        """Placeholder strings never become an empty customer name."""
        raw_po["customerName"] = placeholder

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert "customerName" in exc_info.value.fields

    def test_all_issues_are_collected(self, normalizer, raw_po):
        del raw_po["poNumber"]
        raw_po["poDate"] = "sometime last week"
        raw_po["lineItems"][1]["quantity"] = 0

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert set(exc_info.value.fields) == {"poNumber", "poDate", "lineItems[1].quantity"}

    def test_unparsable_date_is_not_defaulted(self, normalizer, raw_po):
        raw_po["poDate"] = "32/13/2025"

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        issue = exc_info.value.issues[0]
        assert issue.field == "poDate"
        assert issue.problem == "malformed"
        assert issue.value == "32/13/2025"

    def test_missing_expiry_defaults_to_thirty_days(self, normalizer, raw_po):
        del raw_po["expiryDate"]
        po = normalizer.normalize(raw_po, "po")
        assert po.expiry_date == date(2025, 12, 22)

    def test_expiry_alias_is_read(self, normalizer, raw_po):
        del raw_po["expiryDate"]
        raw_po["validUntil"] = "2026-01-15"
        po = normalizer.normalize(raw_po, "po")
        assert po.expiry_date == date(2026, 1, 15)

    def test_expiry_before_po_date_is_invalid(self, normalizer, raw_po):
        raw_po["expiryDate"] = "2025-11-01"

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert exc_info.value.issues[0].problem == "invalid"

    def test_missing_line_items(self, normalizer, raw_po):
        raw_po["lineItems"] = []

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert exc_info.value.fields == ["lineItems"]

    def test_items_alias_and_snake_case_keys(self, normalizer, raw_po):
        raw = {
            "po_number": raw_po["poNumber"],
            "po_date": raw_po["poDate"],
            "customer_name": raw_po["customerName"],
            "items": [{"item_name": "V-Belt B52", "quantity": 2, "unit_price": 10}],
        }
        po = normalizer.normalize(raw, "po")
        assert po.line_items[0].total == 20.0

    def test_negative_unit_price_is_invalid(self, normalizer, raw_po):
        raw_po["lineItems"][0]["unitPrice"] = -1

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        assert exc_info.value.fields == ["lineItems[0].unitPrice"]

    @pytest.mark.parametrize("price, expected", [
        ("Rs. 1,500", 1500.0),
        ("Rs.1500", 1500.0),
        ("Dhs. 80", 80.0),
        ("1.5e3", 1500.0),
        ("12127.50 AED", 12127.5),
        (".5", 0.5),
    ])
    def test_prices_with_currency_text(self, normalizer, raw_po, price, expected):
        raw_po["lineItems"][0]["unitPrice"] = price
        po = normalizer.normalize(raw_po, "po")

        assert po.line_items[0].unit_price == expected
        assert po.line_items[0].total == 4 * expected

    @pytest.mark.parametrize("price", ["4 x 12.50", "N.A.", "12.5.3", "TBA"])
    def test_ambiguous_price_is_malformed(self, normalizer, raw_po, price):
        """Strings with no number, or several, are rejected rather than guessed."""
        raw_po["lineItems"][0]["unitPrice"] = price

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_po, "po")

        issue = exc_info.value.issues[0]
        assert issue.field == "lineItems[0].unitPrice"
        assert issue.problem == "malformed"
        assert issue.value == price

    def test_currency_from_source_text(self, normalizer, raw_po):
        raw_po["currency"] = None
        po = normalizer.normalize(raw_po, "po", source_text="Grand total: ₹ 3,432.50")
        assert po.currency == "INR"

    def test_currency_falls_back_to_default(self, raw_po):
        raw_po["currency"] = None
        po = DocumentNormalizer(default_currency="USD").normalize(raw_po, "po")
        assert po.currency == "USD"

    def test_non_mapping_input(self, normalizer):
        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(["not", "an", "object"], "po")
        assert exc_info.value.fields == ["$"]

    def test_unknown_schema(self, normalizer, raw_po):
        with pytest.raises(ValueError):
            normalizer.normalize(raw_po, "invoice")


@pytest.mark.unit
class TestOtherSchemas:
    """Tests for inquiries, quotations, supplier orders and delivery documents."""

    @pytest.fixture
    def normalizer(self):
        return DocumentNormalizer(default_currency="AED", vat_rate=0.05)

    def test_inquiry(self, normalizer, raw_inquiry):
        inquiry = normalizer.normalize(raw_inquiry, "inquiry")

        assert isinstance(inquiry, CustomerInquiry)
        assert inquiry.inquiry_date == date(2026, 1, 28)
        assert inquiry.status == "pending"
        assert [i.status for i in inquiry.items] == ["pending", "pending"]
        assert inquiry.items[1].unit == "SET"
        assert inquiry.quotation_id is None

    def test_inquiry_items_need_no_price(self, normalizer, raw_inquiry):
        raw_inquiry["items"][0]["quantity"] = -2

        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw_inquiry, "inquiry")

        assert exc_info.value.fields == ["items[0].quantity"]

    def test_quotation_vat_defaults_to_rate(self, normalizer):
        raw = {
            "quotationNumber": "ALK 22-11-2025-100000",
            "quotationDate": "22 November 2025",
            "customerName": "Al Khaleej Trading LLC",
            "items": [{"itemName": "V-Belt B52", "quantity": 4, "unitPrice": 25}],
        }
        quotation = normalizer.normalize(raw, "quotation")

        assert isinstance(quotation, Quotation)
        assert quotation.validity_date == date(2025, 12, 22)
        assert quotation.subtotal == 100.0
        assert quotation.vat_amount == 5.0
        assert quotation.total_amount == 105.0
        assert quotation.status == "draft"

    def test_quotation_keeps_stated_vat(self, normalizer):
        raw = {
            "quotationNumber": "Q-1",
            "quotationDate": "November 22, 2025",
            "validityDate": "2025-12-01",
            "customerName": "Al Khaleej Trading LLC",
            "items": [{"itemName": "V-Belt B52", "quantity": 4, "unitPrice": 25}],
            "vatAmount": 0,
        }
        quotation = normalizer.normalize(raw, "quotation")
        assert quotation.vat_amount == 0.0
        assert quotation.total_amount == 100.0

    def test_supplier_order_requires_supplier(self, normalizer):
        raw = {
            "orderNumber": "SO-1",
            "orderDate": "2025-11-22",
            "items": [{"itemName": "V-Belt B52", "quantity": 1, "unitPrice": 5}],
        }
        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw, "supplier_order")
        assert exc_info.value.fields == ["supplierName"]

        raw["supplierName"] = "Gulf Bearings LLC"
        order = normalizer.normalize(raw, "supplier_order")
        assert isinstance(order, SupplierOrder)
        assert order.party == "Gulf Bearings LLC"

    def test_delivery_document(self, normalizer):
        raw = {
            "documentNumber": "DOC-20251122-0001",
            "documentType": "Delivery Order",
            "documentDate": "2025-11-22",
            "customerName": "Al Khaleej Trading LLC",
            "customerTRN": "100234567800003",
            "items": [{"itemName": "V-Belt B52", "quantity": 2, "unitPrice": 10}],
        }
        document = normalizer.normalize(raw, "delivery_document")

        assert isinstance(document, DeliveryDocument)
        assert document.document_type == "delivery_order"
        assert document.customer_trn == "100234567800003"
        assert document.vat_amount is None
        assert document.total_amount == 20.0

    def test_delivery_document_type_must_be_known(self, normalizer):
        raw = {
            "documentNumber": "DOC-1",
            "documentType": "packing list",
            "documentDate": "2025-11-22",
            "customerName": "Al Khaleej Trading LLC",
            "items": [{"itemName": "V-Belt B52", "quantity": 2, "unitPrice": 10}],
        }
        with pytest.raises(ValidationFailure) as exc_info:
            normalizer.normalize(raw, "delivery_document")
        assert exc_info.value.fields == ["documentType"]
