"""
Extraction normalisation and repair.

Turns the loosely-typed JSON a model returns for an uploaded document into a
typed, immutable record -- or raises ValidationFailure listing every missing
or malformed field so the user can correct the extraction.

Checks:
  Required:    document number, document date, customer/supplier name,
               at least one line item
  Dates:       multi-format parsing; unparsable dates fail, never default to today
  Line items:  quantity > 0, unit price >= 0; totals recomputed (model totals
               are hints only)
  Currency:    explicit code, else tokens in the raw values/source text,
               else the configured fallback

Pure: no I/O, no clock reads.
"""
import logging
import math
import re
from datetime import date, timedelta
from typing import Any, Iterator, Mapping, Optional

from models import (
    CustomerInquiry, DeliveryDocument, Entity, InquiryItem, LineItem,
    PurchaseOrder, Quotation, SupplierOrder,
)
from models.delivery_document import DOCUMENT_TYPES
from models.result import FieldIssue, SCHEMA_TAGS
from .currency import resolve_currency
from .dates import parse_date
from .errors import ValidationFailure

logger = logging.getLogger(__name__)

# Values models emit instead of null
_PLACEHOLDERS = {"", "null", "none", "n/a", "na", "unknown", "-", "--"}

TOTAL_TOLERANCE = 0.005     # model total vs quantity * unit_price

# One number per amount string.  A leading "." only counts when it does not
# end an abbreviation, so "Rs.1500" reads as 1500 and ".5" as 0.5.
_NUMBER = re.compile(r"-?(?:\d+(?:\.\d+)?|(?<![A-Za-z])\.\d+)(?:[eE][-+]?\d+)?")


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _to_float(value: Any) -> Optional[float]:
    """
    Coerce numbers and strings like "1,127.50", "Rs. 1,500" or "12127.50 AED"
    to float.  Strings holding no number, or more than one, give None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        tokens = _NUMBER.findall(value.replace(",", ""))
        if len(tokens) != 1:
            return None
        number = float(tokens[0])
    else:
        return None
    return number if math.isfinite(number) else None


def _string_leaves(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from _string_leaves(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from _string_leaves(v)


class _Reader:
    """Reads fields out of one raw mapping, recording issues as it goes."""

    def __init__(self, raw: Mapping[str, Any], issues: list[FieldIssue], prefix: str = ""):
        self.raw = raw
        self.issues = issues
        self.prefix = prefix

    def path(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def lookup(self, key: str, *aliases: str) -> Any:
        for name in (key, *aliases):
            for candidate in (name, _snake(name)):
                if candidate in self.raw:
                    value = self.raw[candidate]
                    if isinstance(value, str) and value.strip().lower() in _PLACEHOLDERS:
                        continue
                    if value is not None:
                        return value
        return None

    def missing(self, key: str, what: str) -> None:
        self.issues.append(FieldIssue(
            field=self.path(key),
            problem="missing",
            description=f"No {what} found in the extracted data",
        ))

    def malformed(self, key: str, description: str, value: Any) -> None:
        self.issues.append(FieldIssue(
            field=self.path(key),
            problem="malformed",
            description=description,
            value=None if value is None else str(value),
        ))

    def invalid(self, key: str, description: str, value: Any) -> None:
        self.issues.append(FieldIssue(
            field=self.path(key),
            problem="invalid",
            description=description,
            value=None if value is None else str(value),
        ))

    def text(self, key: str, *aliases: str, required: bool = False, what: str = "") -> Optional[str]:
        value = self.lookup(key, *aliases)
        if value is None:
            if required:
                self.missing(key, what or key)
            return None
        if isinstance(value, (Mapping, list)):
            self.malformed(key, f"Expected text for {key}", value)
            return None
        return str(value).strip()

    def date(self, key: str, *aliases: str, required: bool = False, what: str = "") -> Optional[date]:
        value = self.lookup(key, *aliases)
        if value is None:
            if required:
                self.missing(key, what or key)
            return None
        parsed = parse_date(value)
        if parsed is None:
            self.malformed(key, f"Unrecognised date format: {value!r}", value)
        return parsed

    def number(self, key: str, *aliases: str, required: bool = False, what: str = "") -> Optional[float]:
        value = self.lookup(key, *aliases)
        if value is None:
            if required:
                self.missing(key, what or key)
            return None
        number = _to_float(value)
        if number is None:
            self.malformed(key, f"Not a number: {value!r}", value)
        return number


class DocumentNormalizer:
    """
    Validates and repairs raw extraction output into typed records.

    Usage:
        normalizer = DocumentNormalizer(default_currency="AED")
        po = normalizer.normalize(raw_json, "po", source_text=pdf_text)
    """

    def __init__(
        self,
        default_currency: str = "INR",
        vat_rate: float = 0.05,
        quotation_validity_days: int = 30,
        po_validity_days: int = 30,
    ):
        self.default_currency = default_currency
        self.vat_rate = vat_rate
        self.quotation_validity_days = quotation_validity_days
        self.po_validity_days = po_validity_days

    def normalize(
        self,
        raw: Mapping[str, Any],
        schema: str,
        source_text: str = "",
    ) -> Entity:
        """Return the typed record for *schema*, or raise ValidationFailure."""
        builders = {
            "po":                self._purchase_order,
            "inquiry":           self._inquiry,
            "quotation":         self._quotation,
            "supplier_order":    self._supplier_order,
            "delivery_document": self._delivery_document,
        }
        if schema not in builders:
            raise ValueError(f"Unknown schema {schema!r}. Must be one of {SCHEMA_TAGS}")
        if not isinstance(raw, Mapping):
            raise ValidationFailure(schema, [FieldIssue(
                field="$",
                problem="malformed",
                description="Extraction did not return a JSON object",
                value=str(raw)[:200],
            )])

        issues: list[FieldIssue] = []
        record = builders[schema](_Reader(raw, issues), raw, source_text)
        if issues:
            logger.info(
                "%s extraction rejected: %s",
                schema, ", ".join(f"{i.field} ({i.problem})" for i in issues),
            )
            raise ValidationFailure(schema, issues)
        logger.debug("%s extraction normalised: %s", schema, record.number)
        return record

    # ------------------------------------------------------------------
    # Per-schema builders
    # ------------------------------------------------------------------

    def _purchase_order(self, r: _Reader, raw: Mapping, source_text: str) -> Optional[PurchaseOrder]:
        number = r.text("poNumber", "purchaseOrderNumber", required=True, what="PO number")
        po_date = r.date("poDate", "orderDate", "date", required=True, what="PO date")
        expiry = r.date("expiryDate", "expiry", "validUntil", "expirationDate", "validUntilDate")
        customer = r.text("customerName", required=True, what="customer name")
        items = self._priced_items(r, "lineItems", "items")

        if expiry is None and po_date is not None and r.lookup(
            "expiryDate", "expiry", "validUntil", "expirationDate", "validUntilDate"
        ) is None:
            expiry = po_date + timedelta(days=self.po_validity_days)
        if expiry is not None and po_date is not None and expiry < po_date:
            r.invalid("expiryDate", "Expiry date is before the PO date", expiry.isoformat())

        if r.issues:
            return None
        total = self._reconcile_total(r, items, "totalAmount")
        return PurchaseOrder(
            po_number=number,
            po_date=po_date,
            expiry_date=expiry,
            customer_name=customer,
            customer_address=r.text("customerAddress"),
            customer_email=r.text("customerEmail"),
            line_items=items,
            total_amount=total,
            currency=self._currency(r, raw, source_text),
            terms=r.text("terms", "paymentTerms"),
            notes=r.text("notes"),
            quotation_reference=r.text("quotationReference"),
        )

    def _inquiry(self, r: _Reader, raw: Mapping, source_text: str) -> Optional[CustomerInquiry]:
        number = r.text("inquiryNumber", "rfqNumber", "purchaseRequisition",
                        required=True, what="inquiry number")
        inquiry_date = r.date("inquiryDate", "date", required=True, what="inquiry date")
        customer = r.text("customerName", required=True, what="customer name")
        items = self._inquiry_items(r, "items", "lineItems")
        if r.issues:
            return None
        return CustomerInquiry(
            inquiry_number=number,
            inquiry_date=inquiry_date,
            customer_name=customer,
            customer_address=r.text("customerAddress"),
            customer_email=r.text("customerEmail"),
            customer_phone=r.text("customerPhone"),
            sender_email=r.text("senderEmail"),
            items=items,
            notes=r.text("notes"),
        )

    def _quotation(self, r: _Reader, raw: Mapping, source_text: str) -> Optional[Quotation]:
        number = r.text("quotationNumber", "quoteNumber", required=True, what="quotation number")
        quotation_date = r.date("quotationDate", "date", required=True, what="quotation date")
        validity = r.date("validityDate", "validUntil")
        customer = r.text("customerName", required=True, what="customer name")
        items = self._priced_items(r, "items", "lineItems")

        if validity is None and quotation_date is not None and r.lookup("validityDate", "validUntil") is None:
            validity = quotation_date + timedelta(days=self.quotation_validity_days)
        vat = r.number("vatAmount", "taxAmount")
        if vat is not None and vat < 0:
            r.invalid("vatAmount", "VAT amount cannot be negative", vat)

        if r.issues:
            return None
        subtotal = sum(item.total for item in items)
        if vat is None:
            vat = round(subtotal * self.vat_rate, 2)
        total = subtotal + vat
        self._log_total_mismatch(r, "totalAmount", total)
        return Quotation(
            quotation_number=number,
            quotation_date=quotation_date,
            validity_date=validity,
            customer_name=customer,
            customer_address=r.text("customerAddress"),
            customer_email=r.text("customerEmail"),
            customer_phone=r.text("customerPhone"),
            items=items,
            subtotal=subtotal,
            vat_amount=vat,
            total_amount=total,
            currency=self._currency(r, raw, source_text),
            terms=r.text("terms", "paymentTerms"),
            notes=r.text("notes"),
        )

    def _supplier_order(self, r: _Reader, raw: Mapping, source_text: str) -> Optional[SupplierOrder]:
        number = r.text("orderNumber", "poNumber", required=True, what="order number")
        order_date = r.date("orderDate", "date", required=True, what="order date")
        expected = r.date("expectedDeliveryDate", "deliveryDate")
        supplier = r.text("supplierName", "vendorName", required=True, what="supplier name")
        items = self._priced_items(r, "items", "lineItems")
        if r.issues:
            return None
        total = self._reconcile_total(r, items, "totalAmount")
        return SupplierOrder(
            order_number=number,
            order_date=order_date,
            expected_delivery_date=expected,
            supplier_name=supplier,
            supplier_address=r.text("supplierAddress"),
            supplier_email=r.text("supplierEmail"),
            supplier_phone=r.text("supplierPhone"),
            items=items,
            total_amount=total,
            currency=self._currency(r, raw, source_text),
            terms=r.text("terms", "paymentTerms"),
            notes=r.text("notes"),
        )

    def _delivery_document(self, r: _Reader, raw: Mapping, source_text: str) -> Optional[DeliveryDocument]:
        number = r.text("documentNumber", "invoiceNumber", "deliveryOrderNumber",
                        required=True, what="document number")
        doc_date = r.date("documentDate", "date", required=True, what="document date")
        customer = r.text("customerName", required=True, what="customer name")
        items = self._priced_items(r, "items", "lineItems")

        doc_type = (r.text("documentType") or "both").lower().replace(" ", "_")
        if doc_type not in DOCUMENT_TYPES:
            r.invalid("documentType", f"Document type must be one of {DOCUMENT_TYPES}", doc_type)
        vat = r.number("vatAmount", "taxAmount")
        if vat is not None and vat < 0:
            r.invalid("vatAmount", "VAT amount cannot be negative", vat)

        if r.issues:
            return None
        subtotal = sum(item.total for item in items)
        total = subtotal + (vat or 0.0)
        self._log_total_mismatch(r, "totalAmount", total)
        return DeliveryDocument(
            document_number=number,
            document_type=doc_type,
            document_date=doc_date,
            customer_name=customer,
            customer_address=r.text("customerAddress"),
            customer_email=r.text("customerEmail"),
            customer_phone=r.text("customerPhone"),
            customer_trn=r.text("customerTRN", "customerTrn", "trn"),
            items=items,
            subtotal=subtotal,
            vat_amount=vat,
            total_amount=total,
            currency=self._currency(r, raw, source_text),
            terms=r.text("terms", "paymentTerms"),
            notes=r.text("notes"),
        )

    # ------------------------------------------------------------------
    # Line items
    # ------------------------------------------------------------------

    def _item_rows(self, r: _Reader, key: str, alias: str) -> list[tuple[_Reader, Mapping]]:
        value = r.lookup(key, alias)
        if value is None or value == []:
            r.missing(key, "line items")
            return []
        if not isinstance(value, list):
            r.malformed(key, "Line items must be a list", type(value).__name__)
            return []
        rows = []
        for i, row in enumerate(value):
            if not isinstance(row, Mapping):
                r.malformed(f"{key}[{i}]", "Line item must be an object", row)
                continue
            rows.append((_Reader(row, r.issues, prefix=f"{r.prefix}{key}[{i}]."), row))
        return rows

    def _priced_items(self, r: _Reader, key: str, alias: str) -> list[LineItem]:
        items = []
        for ir, _ in self._item_rows(r, key, alias):
            before = len(ir.issues)
            name = ir.text("itemName", "name", "description", required=True, what="item name")
            quantity = ir.number("quantity", "qty", required=True, what="quantity")
            unit_price = ir.number("unitPrice", "price", "rate", required=True, what="unit price")
            if quantity is not None and quantity <= 0:
                ir.invalid("quantity", "Quantity must be greater than zero", quantity)
            if unit_price is not None and unit_price < 0:
                ir.invalid("unitPrice", "Unit price cannot be negative", unit_price)
            if len(ir.issues) > before:
                continue

            total = quantity * unit_price
            stated = _to_float(ir.lookup("total", "amount", "lineTotal"))
            if stated is not None and abs(stated - total) > TOTAL_TOLERANCE:
                logger.warning(
                    "%stotal %.2f != quantity x unit price %.2f -- using recomputed value",
                    ir.prefix, stated, total,
                )
            items.append(LineItem(
                item_name=name,
                item_code=ir.text("itemCode", "materialCode", "code", "sku"),
                description=ir.text("description"),
                quantity=quantity,
                unit=ir.text("unit", "uom") or "EA",
                unit_price=unit_price,
                total=total,
                manufacturer_part=ir.text("manufacturerPart"),
            ))
        return items

    def _inquiry_items(self, r: _Reader, key: str, alias: str) -> list[InquiryItem]:
        items = []
        for ir, _ in self._item_rows(r, key, alias):
            before = len(ir.issues)
            name = ir.text("itemName", "shortText", "name", "description",
                           required=True, what="item name")
            quantity = ir.number("quantity", "quantityRequested", "qty",
                                 required=True, what="quantity")
            if quantity is not None and quantity <= 0:
                ir.invalid("quantity", "Quantity must be greater than zero", quantity)
            if len(ir.issues) > before:
                continue
            items.append(InquiryItem(
                item_name=name,
                item_code=ir.text("itemCode", "material", "materialCode"),
                description=ir.text("description"),
                quantity=quantity,
                unit=ir.text("unit", "unitOfMeasure", "uom") or "EA",
                manufacturer_part=ir.text("manufacturerPart", "vpn"),
                class_code=ir.text("classCode", "class"),
                plant=ir.text("plant"),
            ))
        return items

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reconcile_total(self, r: _Reader, items: list[LineItem], key: str) -> float:
        total = sum(item.total for item in items)
        self._log_total_mismatch(r, key, total)
        return total

    @staticmethod
    def _log_total_mismatch(r: _Reader, key: str, computed: float) -> None:
        stated = _to_float(r.lookup(key, "total", "grandTotal"))
        if stated is not None and abs(stated - computed) > TOTAL_TOLERANCE:
            logger.warning(
                "Stated %s %.2f differs from recomputed %.2f -- using recomputed value",
                key, stated, computed,
            )

    def _currency(self, r: _Reader, raw: Mapping, source_text: str) -> str:
        explicit = r.lookup("currency", "currencyCode")
        texts = list(_string_leaves(raw))
        if source_text:
            texts.append(source_text)
        return resolve_currency(
            explicit if isinstance(explicit, str) else None,
            texts,
            self.default_currency,
        )
