"""
PDF rendering for quotations and delivery documents.

Both share one A4 layout: company header, document title and numbers, the
customer block, a line-item table, totals, then terms and notes.  Rendering
only writes the file; recording the path (and moving a delivery document
from draft to generated) is WorkflowService.attach_document's job.
"""
import logging
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models import DeliveryDocument, Entity, LineItem, Quotation
from .currency import format_amount

logger = logging.getLogger(__name__)

RENDERABLE_KINDS = ("quotation", "delivery_document")

_DELIVERY_TITLES = {
    "commercial_invoice": "COMMERCIAL INVOICE",
    "delivery_order":     "DELIVERY ORDER",
    "both":               "COMMERCIAL INVOICE / DELIVERY ORDER",
}

_ITEM_HEADER = ["Sl.", "Description", "Material Code", "Qty", "UOM", "Unit Price", "Total"]
_COLUMN_WIDTHS = [10 * mm, 58 * mm, 28 * mm, 15 * mm, 15 * mm, 26 * mm, 28 * mm]


def _p(text: Optional[str], style) -> Paragraph:
    return Paragraph(escape(text or ""), style)


def _items_table(items: list[LineItem], currency: Optional[str], styles) -> Table:
    body = styles["BodyText"]
    rows: list[list] = [_ITEM_HEADER]
    for i, item in enumerate(items, 1):
        description = item.item_name
        if item.description and item.description != item.item_name:
            description = f"{description}\n{item.description}"
        rows.append([
            str(i),
            _p(description, body),
            _p(item.item_code or "-", body),
            f"{item.quantity:g}",
            item.unit,
            format_amount(item.unit_price, currency),
            format_amount(item.total, currency),
        ])

    table = Table(rows, colWidths=_COLUMN_WIDTHS, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f3864")),
        ("TEXTCOLOR",  (0, 0), (-1, 0), colors.white),
        ("FONTNAME",   (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE",   (0, 0), (-1, -1), 8),
        ("GRID",       (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN",     (0, 0), (-1, -1), "TOP"),
        ("ALIGN",      (3, 1), (-1, -1), "RIGHT"),
    ]))
    return table


def _totals_table(rows: list[tuple[str, str]]) -> Table:
    table = Table(rows, colWidths=[40 * mm, 30 * mm], hAlign="RIGHT")
    table.setStyle(TableStyle([
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN",    (1, 0), (1, -1), "RIGHT"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.black),
    ]))
    return table


def _build(
    path: Path,
    company_name: str,
    title: str,
    reference_lines: list[str],
    entity,
    intro: Optional[str],
    totals: list[tuple[str, str]],
    footer_lines: list[str],
) -> Path:
    styles = getSampleStyleSheet()
    body = styles["BodyText"]

    customer_lines = [entity.customer_name]
    for extra in (entity.customer_address, entity.customer_email, entity.customer_phone):
        if extra:
            customer_lines.append(extra)

    story = [
        _p(company_name, styles["Title"]),
        _p(title, styles["Heading2"]),
        Spacer(1, 4 * mm),
    ]
    story += [_p(line, body) for line in reference_lines]
    story += [Spacer(1, 4 * mm), _p("To:", styles["Heading4"])]
    story += [_p(line, body) for line in customer_lines]
    if intro:
        story += [Spacer(1, 4 * mm), _p(intro, body)]
    story += [
        Spacer(1, 4 * mm),
        _items_table(entity.items, entity.currency, styles),
        Spacer(1, 4 * mm),
        _totals_table(totals),
    ]
    if footer_lines:
        story.append(Spacer(1, 6 * mm))
        story += [_p(line, body) for line in footer_lines]

    path.parent.mkdir(parents=True, exist_ok=True)
    doc = SimpleDocTemplate(
        str(path),
        pagesize=A4,
        title=f"{title} {entity.number}",
        author=company_name,
        leftMargin=15 * mm, rightMargin=15 * mm, topMargin=15 * mm, bottomMargin=15 * mm,
    )
    doc.build(story)
    logger.info("Rendered %s %s -> %s", entity.kind, entity.number, path)
    return path


def render_quotation(quotation: Quotation, path: Path, company_name: str) -> Path:
    currency = quotation.currency
    footer = [
        "Prices are exclusive of VAT unless shown above.",
        f"Offer valid until {quotation.validity_date:%d %b %Y}.",
    ]
    if quotation.terms:
        footer.append(f"Terms: {quotation.terms}")
    if quotation.notes:
        footer.append(f"Notes: {quotation.notes}")
    footer.append("We look forward to receiving your valued order.")

    return _build(
        Path(path),
        company_name,
        "QUOTATION",
        [
            f"Quotation No: {quotation.quotation_number}",
            f"Date: {quotation.quotation_date:%d %b %Y}",
        ],
        quotation,
        "We thank you for your inquiry and are pleased to offer our best prices as below.",
        [
            ("Subtotal", format_amount(quotation.subtotal, currency)),
            ("VAT", format_amount(quotation.vat_amount, currency)),
            ("Total", format_amount(quotation.total_amount, currency)),
        ],
        footer,
    )


def render_delivery_document(document: DeliveryDocument, path: Path, company_name: str) -> Path:
    currency = document.currency
    references = [
        f"Document No: {document.document_number}",
        f"Date: {document.document_date:%d %b %Y}",
    ]
    if document.customer_trn:
        references.append(f"Customer TRN: {document.customer_trn}")

    totals = [("Subtotal", format_amount(document.subtotal, currency))]
    if document.vat_amount is not None:
        totals.append(("VAT", format_amount(document.vat_amount, currency)))
    totals.append(("Total", format_amount(document.total_amount, currency)))

    footer = []
    if document.terms:
        footer.append(f"Terms: {document.terms}")
    if document.notes:
        footer.append(f"Notes: {document.notes}")
    footer.append("Received the above goods in good order and condition.")

    return _build(
        Path(path),
        company_name,
        _DELIVERY_TITLES[document.document_type],
        references,
        document,
        None,
        totals,
        footer,
    )


def render_document(entity: Entity, path: Path, company_name: str) -> Path:
    """Render a quotation or delivery document to *path*."""
    if isinstance(entity, Quotation):
        return render_quotation(entity, path, company_name)
    if isinstance(entity, DeliveryDocument):
        return render_delivery_document(entity, path, company_name)
    raise ValueError(f"Cannot render a {entity.kind}; expected one of {RENDERABLE_KINDS}")
