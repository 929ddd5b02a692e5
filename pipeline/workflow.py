"""
Workflow state machine and cross-entity conversions.

transition() is a pure function over one record: it checks the action against
TRANSITIONS and returns a copy with the new status.  WorkflowService wraps the
multi-record operations (inquiry -> quotation -> PO -> supplier order ->
delivery document) so each one commits as a single database transaction.

Purchase order status is derived from the expiry date and cannot be moved by
any action.
"""
import logging
from datetime import date, timedelta
from typing import Mapping, Optional

from models import (
    CustomerInquiry,
    DeliveryDocument,
    Entity,
    InquiryItem,
    LineItem,
    PurchaseOrder,
    Quotation,
    SupplierOrder,
)
from models.base import utcnow
from models.delivery_document import DOCUMENT_TYPES
from .database import Database
from .errors import IllegalTransition
from .numbering import DocumentNumbering

logger = logging.getLogger(__name__)


# kind -> action -> (allowed source statuses, target status)
TRANSITIONS: dict[str, dict[str, tuple[tuple[str, ...], str]]] = {
    "inquiry": {
        "review":  (("pending",), "reviewed"),
        "quote":   (("reviewed",), "quoted"),
        "convert": (("quoted",), "converted_to_po"),
    },
    "quotation": {
        "send":   (("draft",), "sent"),
        "accept": (("sent",), "accepted"),
        "reject": (("sent",), "rejected"),
    },
    "supplier_order": {
        "confirm": (("pending",), "confirmed"),
        "ship":    (("confirmed",), "in_transit"),
        "deliver": (("in_transit",), "delivered"),
        "cancel":  (("pending", "confirmed", "in_transit"), "cancelled"),
    },
    "delivery_document": {
        "generate": (("draft",), "generated"),
        "send":     (("generated",), "sent"),
    },
}


def status_of(entity: Entity, today: Optional[date] = None) -> Optional[str]:
    """Status used for transition checks, with derived statuses evaluated on *today*."""
    if isinstance(entity, PurchaseOrder):
        return entity.status_on(today or date.today())
    if isinstance(entity, Quotation):
        return entity.effective_status(today)
    return getattr(entity, "status", None)


def transition(entity: Entity, action: str, today: Optional[date] = None) -> Entity:
    """
    Apply *action* to *entity* and return the updated copy.

    Raises IllegalTransition when the action is unknown for the entity kind or
    not allowed from its current status.
    """
    status = status_of(entity, today)
    if isinstance(entity, PurchaseOrder):
        raise IllegalTransition(
            entity.kind, status, action, "purchase order status follows its expiry date",
        )

    rules = TRANSITIONS.get(entity.kind, {})
    if action not in rules:
        raise IllegalTransition(
            entity.kind, status, action, f"unknown action, expected one of {sorted(rules)}",
        )

    sources, target = rules[action]
    if status not in sources:
        raise IllegalTransition(
            entity.kind, status, action, f"only allowed from {', '.join(sources)}",
        )

    logger.debug("%s %s: %s -> %s", entity.kind, entity.id, status, target)
    return entity.model_copy(update={"status": target, "updated_at": utcnow()})


def available_actions(entity: Entity, today: Optional[date] = None) -> list[str]:
    """Actions legal from the entity's current status."""
    if isinstance(entity, PurchaseOrder):
        return []
    status = status_of(entity, today)
    return [
        action
        for action, (sources, _) in TRANSITIONS.get(entity.kind, {}).items()
        if status in sources
    ]


def _price_for(item: InquiryItem, prices: Mapping[str, float]) -> Optional[float]:
    """Look an inquiry item up by material code first, then by item name."""
    for key in (item.item_code, item.item_name):
        if key and key in prices:
            return float(prices[key])
    lowered = {str(k).strip().lower(): v for k, v in prices.items()}
    for key in (item.item_code, item.item_name):
        if key and key.strip().lower() in lowered:
            return float(lowered[key.strip().lower()])
    return None


def _line_from(item, unit_price: float) -> LineItem:
    return LineItem(
        item_name=item.item_name,
        item_code=item.item_code,
        description=item.description,
        quantity=item.quantity,
        unit=item.unit,
        unit_price=unit_price,
        total=item.quantity * unit_price,
        manufacturer_part=item.manufacturer_part,
    )


class WorkflowService:
    """
    Cross-entity conversions.  Every public method runs inside one
    Database.transaction(): either all of its writes land or none do.
    """

    def __init__(
        self,
        db: Database,
        numbering: Optional[DocumentNumbering] = None,
        vat_rate: float = 0.05,
        quotation_validity_days: int = 30,
        po_validity_days: int = 30,
        default_currency: str = "INR",
    ):
        self.db = db
        self.numbering = numbering or DocumentNumbering()
        self.vat_rate = vat_rate
        self.quotation_validity_days = quotation_validity_days
        self.po_validity_days = po_validity_days
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Single-record transitions
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        kind: str,
        entity_id: str,
        action: str,
        today: Optional[date] = None,
        actor: str = "system",
    ) -> Entity:
        with self.db.transaction(actor) as tx:
            current = tx.get(kind, entity_id)
            updated = transition(current, action, today)
            return tx.save(
                updated,
                action=f"transition:{action}",
                detail={"from": status_of(current, today), "to": updated.status},
            )

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def convert_inquiry_to_quotation(
        self,
        inquiry_id: str,
        prices: Mapping[str, float],
        quotation_date: Optional[date] = None,
        currency: Optional[str] = None,
        terms: Optional[str] = None,
        notes: Optional[str] = None,
        actor: str = "system",
    ) -> Quotation:
        """
        Create a draft quotation from a reviewed inquiry.

        *prices* maps item code (or item name) to unit price.  Unpriced items
        are carried at 0 and stay "pending" on the inquiry.
        """
        quotation_date = quotation_date or date.today()
        with self.db.transaction(actor) as tx:
            inquiry: CustomerInquiry = tx.get("inquiry", inquiry_id)
            quoted = transition(inquiry, "quote", quotation_date)

            lines: list[LineItem] = []
            inquiry_items: list[InquiryItem] = []
            for item in inquiry.items:
                price = _price_for(item, prices)
                lines.append(_line_from(item, price if price is not None else 0.0))
                if price is not None:
                    item = item.model_copy(update={"status": "quoted"})
                inquiry_items.append(item)

            unpriced = sum(1 for i in inquiry_items if i.status == "pending")
            if unpriced:
                logger.warning(
                    "Inquiry %s: %d of %d item(s) have no price",
                    inquiry.inquiry_number, unpriced, len(inquiry_items),
                )

            subtotal = sum(line.total for line in lines)
            vat = round(subtotal * self.vat_rate, 2)
            quotation = tx.create(Quotation(
                quotation_number=self.numbering.quotation_number(tx, quotation_date),
                quotation_date=quotation_date,
                validity_date=quotation_date + timedelta(days=self.quotation_validity_days),
                customer_name=inquiry.customer_name,
                customer_address=inquiry.customer_address,
                customer_email=inquiry.customer_email,
                customer_phone=inquiry.customer_phone,
                items=lines,
                subtotal=subtotal,
                vat_amount=vat,
                total_amount=subtotal + vat,
                currency=currency or self.default_currency,
                terms=terms,
                notes=notes,
                inquiry_id=inquiry.id,
            ))
            tx.save(
                quoted.model_copy(update={"items": inquiry_items, "quotation_id": quotation.id}),
                action="transition:quote",
                detail={"quotation_id": quotation.id},
            )
        logger.info(
            "Inquiry %s quoted as %s", inquiry.inquiry_number, quotation.quotation_number,
        )
        return quotation

    def accept_quotation(
        self,
        quotation_id: str,
        po_number: Optional[str] = None,
        expiry_date: Optional[date] = None,
        today: Optional[date] = None,
        actor: str = "system",
    ) -> PurchaseOrder:
        """
        Accept a sent quotation and create its purchase order.

        The quotation is written before the PO so a failing PO insert (e.g. a
        duplicate PO number) rolls the quotation back with it.
        """
        today = today or date.today()
        with self.db.transaction(actor) as tx:
            quotation: Quotation = tx.get("quotation", quotation_id)
            accepted = transition(quotation, "accept", today)

            po = PurchaseOrder(
                po_number=po_number or f"PO-{quotation.quotation_number}",
                po_date=today,
                expiry_date=expiry_date or today + timedelta(days=self.po_validity_days),
                customer_name=quotation.customer_name,
                customer_address=quotation.customer_address,
                customer_email=quotation.customer_email,
                line_items=quotation.items,
                total_amount=quotation.total_amount,
                currency=quotation.currency,
                terms=quotation.terms,
                quotation_reference=quotation.quotation_number,
                inquiry_id=quotation.inquiry_id,
                quotation_id=quotation.id,
            )
            # PO id is assigned up front so the quotation can point at it
            po = po.model_copy(update={"id": Database.new_id()})
            tx.save(
                accepted.model_copy(update={"po_id": po.id}),
                action="transition:accept",
                detail={"po_id": po.id},
            )
            po = tx.create(po)

            if quotation.inquiry_id:
                inquiry = tx.get("inquiry", quotation.inquiry_id)
                converted = transition(inquiry, "convert", today)
                tx.save(
                    converted.model_copy(update={"po_id": po.id}),
                    action="transition:convert",
                    detail={"po_id": po.id},
                )
        logger.info("Quotation %s accepted as PO %s", quotation.quotation_number, po.po_number)
        return po

    def create_supplier_order_from_po(
        self,
        po_id: str,
        supplier_name: str,
        items: Optional[list[LineItem]] = None,
        order_date: Optional[date] = None,
        expected_delivery_date: Optional[date] = None,
        supplier_email: Optional[str] = None,
        terms: Optional[str] = None,
        notes: Optional[str] = None,
        actor: str = "system",
    ) -> SupplierOrder:
        """Place a pending supplier order for a live PO (all PO lines unless *items* given)."""
        if not supplier_name or not supplier_name.strip():
            raise ValueError("supplier_name is required")
        order_date = order_date or date.today()
        with self.db.transaction(actor) as tx:
            po: PurchaseOrder = tx.get("purchase_order", po_id)
            if po.status_on(order_date) == "expired":
                raise IllegalTransition(
                    po.kind, "expired", "order", f"PO {po.po_number} expired on {po.expiry_date}",
                )

            lines = list(items) if items is not None else list(po.line_items)
            order = tx.create(SupplierOrder(
                order_number=self.numbering.supplier_order_number(tx, order_date),
                order_date=order_date,
                expected_delivery_date=expected_delivery_date,
                supplier_name=supplier_name.strip(),
                supplier_email=supplier_email,
                items=lines,
                total_amount=sum(line.total for line in lines),
                currency=po.currency,
                terms=terms,
                notes=notes,
                po_id=po.id,
            ))
            tx.save(
                po.model_copy(update={
                    "supplier_order_ids": [*po.supplier_order_ids, order.id],
                    "updated_at": utcnow(),
                }),
                detail={"supplier_order_id": order.id},
            )
        logger.info("Supplier order %s placed for PO %s", order.order_number, po.po_number)
        return order

    def receive_delivery(
        self,
        supplier_order_id: str,
        document_type: str = "both",
        document_date: Optional[date] = None,
        customer_trn: Optional[str] = None,
        actor: str = "system",
    ) -> DeliveryDocument:
        """
        Record receipt of an in-transit supplier order: the order moves to
        delivered and a draft delivery document is raised for the customer.
        """
        if document_type not in DOCUMENT_TYPES:
            raise ValueError(f"document_type must be one of {DOCUMENT_TYPES}, got {document_type!r}")
        document_date = document_date or date.today()
        with self.db.transaction(actor) as tx:
            order: SupplierOrder = tx.get("supplier_order", supplier_order_id)
            delivered = transition(order, "deliver", document_date)
            if not order.po_id:
                raise IllegalTransition(
                    order.kind, order.status, "deliver", "order is not linked to a purchase order",
                )
            po: PurchaseOrder = tx.get("purchase_order", order.po_id)

            subtotal = sum(line.total for line in order.items)
            vat = round(subtotal * self.vat_rate, 2)
            document = tx.create(DeliveryDocument(
                document_number=self.numbering.delivery_document_number(tx, document_date),
                document_type=document_type,
                document_date=document_date,
                customer_name=po.customer_name,
                customer_address=po.customer_address,
                customer_email=po.customer_email,
                customer_trn=customer_trn,
                items=order.items,
                subtotal=subtotal,
                vat_amount=vat,
                total_amount=subtotal + vat,
                currency=order.currency,
                terms=order.terms,
                po_id=order.po_id,
                supplier_order_id=order.id,
            ))
            tx.save(
                delivered.model_copy(update={"delivery_document_id": document.id}),
                action="transition:deliver",
                detail={"delivery_document_id": document.id},
            )
        logger.info("Order %s delivered, document %s raised", order.order_number, document.document_number)
        return document

    def attach_document(
        self,
        kind: str,
        entity_id: str,
        pdf_path: str,
        today: Optional[date] = None,
        actor: str = "system",
    ) -> Entity:
        """
        Record the rendered PDF of a quotation or delivery document.  A draft
        delivery document moves to generated in the same transaction.
        """
        if kind not in ("quotation", "delivery_document"):
            raise ValueError(f"Only quotations and delivery documents are rendered, got {kind!r}")
        with self.db.transaction(actor) as tx:
            current = tx.get(kind, entity_id)
            updated, action = current, "rendered"
            if isinstance(current, DeliveryDocument) and current.status == "draft":
                updated, action = transition(current, "generate", today), "transition:generate"
            return tx.save(
                updated.model_copy(update={"pdf_path": pdf_path, "updated_at": utcnow()}),
                action=action,
                detail={"pdf_path": pdf_path},
            )
