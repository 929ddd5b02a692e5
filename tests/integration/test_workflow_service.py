"""
Integration tests for cross-entity conversions.
"""
from datetime import date, timedelta

import pytest

from pipeline.errors import EntityNotFound, IllegalTransition, PersistenceFailure


@pytest.mark.integration
class TestInquiryToQuotation:

    def test_convert(self, workflow, test_db, stored_inquiry):
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 12.5})

        assert quotation.status == "draft"
        assert quotation.inquiry_id == stored_inquiry.id
        assert quotation.quotation_number.startswith(f"ALK {date.today():%d-%m-%Y}-")
        assert quotation.items[0].total == 125.0
        assert quotation.items[1].unit_price == 0.0
        assert quotation.subtotal == 125.0
        assert quotation.vat_amount == 6.25
        assert quotation.total_amount == 131.25
        assert quotation.currency == "INR"

        inquiry = test_db.get("inquiry", stored_inquiry.id)
        assert inquiry.status == "quoted"
        assert inquiry.quotation_id == quotation.id
        assert [i.status for i in inquiry.items] == ["quoted", "pending"]

    def test_prices_by_item_name(self, workflow, stored_inquiry):
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"seal kit": 40})
        assert quotation.items[1].total == 80.0

    def test_quotation_numbers_advance(self, workflow, test_db, stored_inquiry):
        first = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {})
        test_db.update("inquiry", stored_inquiry.id, {"status": "reviewed"})
        second = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {})

        assert first.quotation_number.endswith("-100000")
        assert second.quotation_number.endswith("-100002")

    def test_pending_inquiry_cannot_be_quoted(self, workflow, test_db, stored_inquiry):
        test_db.update("inquiry", stored_inquiry.id, {"status": "pending"})

        with pytest.raises(IllegalTransition):
            workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 1})
        assert test_db.list("quotation") == []


@pytest.mark.integration
class TestAcceptQuotation:

    @pytest.fixture
    def sent_quotation(self, workflow, stored_inquiry):
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 10})
        return workflow.apply_transition("quotation", quotation.id, "send")

    def test_accept_links_everything(self, workflow, test_db, sent_quotation, stored_inquiry):
        po = workflow.accept_quotation(sent_quotation.id, po_number="PO-7781")

        quotation = test_db.get("quotation", sent_quotation.id)
        inquiry = test_db.get("inquiry", stored_inquiry.id)
        assert quotation.status == "accepted"
        assert quotation.po_id == po.id
        assert po.quotation_id == quotation.id
        assert po.inquiry_id == inquiry.id
        assert inquiry.po_id == po.id
        assert inquiry.status == "converted_to_po"
        assert po.expiry_date == date.today() + timedelta(days=30)
        assert po.line_items == quotation.items
        assert test_db.get("purchase_order", po.id).status == "active"

    def test_draft_quotation_cannot_be_accepted(self, workflow, stored_inquiry):
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 10})
        with pytest.raises(IllegalTransition):
            workflow.accept_quotation(quotation.id)

    def test_failed_po_creation_rolls_back(self, workflow, test_db, make_po, sent_quotation, stored_inquiry):
        """A duplicate PO number leaves the quotation and inquiry untouched."""
        test_db.create(make_po("PO-7781"))

        with pytest.raises(PersistenceFailure):
            workflow.accept_quotation(sent_quotation.id, po_number="PO-7781")

        quotation = test_db.get("quotation", sent_quotation.id)
        assert quotation.po_id is None
        assert quotation.status == "sent"
        assert test_db.get("inquiry", stored_inquiry.id).status == "quoted"
        assert len(test_db.list("purchase_order")) == 1


@pytest.mark.integration
class TestFulfilment:

    @pytest.fixture
    def po(self, test_db, make_po):
        return test_db.create(make_po("PO-1"))

    def test_supplier_order_from_po(self, workflow, test_db, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")

        assert order.status == "pending"
        assert order.po_id == po.id
        assert order.order_number == f"SO-{date.today():%Y%m%d}-0001"
        assert order.items == po.line_items
        assert test_db.get("purchase_order", po.id).supplier_order_ids == [order.id]

        second = workflow.create_supplier_order_from_po(po.id, "Emirates Belts")
        assert second.order_number.endswith("-0002")
        assert test_db.get("purchase_order", po.id).supplier_order_ids == [order.id, second.id]

    def test_expired_po_cannot_be_ordered(self, workflow, test_db, make_po):
        expired = test_db.create(make_po("PO-OLD", po_date=date.today() - timedelta(days=60)))
        with pytest.raises(IllegalTransition):
            workflow.create_supplier_order_from_po(expired.id, "Gulf Bearings LLC")
        assert test_db.list("supplier_order") == []

    def test_unknown_po(self, workflow):
        with pytest.raises(EntityNotFound):
            workflow.create_supplier_order_from_po("missing", "Gulf Bearings LLC")

    def test_receive_delivery(self, workflow, test_db, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        with pytest.raises(IllegalTransition):
            workflow.receive_delivery(order.id)

        workflow.apply_transition("supplier_order", order.id, "confirm")
        workflow.apply_transition("supplier_order", order.id, "ship")
        document = workflow.receive_delivery(order.id, document_type="commercial_invoice")

        assert document.status == "draft"
        assert document.document_type == "commercial_invoice"
        assert document.po_id == po.id
        assert document.supplier_order_id == order.id
        assert document.customer_name == po.customer_name
        assert document.document_number == f"DOC-{date.today():%Y%m%d}-0001"

        delivered = test_db.get("supplier_order", order.id)
        assert delivered.status == "delivered"
        assert delivered.delivery_document_id == document.id

    def test_apply_transition_is_audited(self, workflow, test_db, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        workflow.apply_transition("supplier_order", order.id, "cancel")

        actions = [e["action"] for e in test_db.get_audit_log(order.id)]
        assert actions == ["created", "transition:cancel"]

    def test_illegal_transition_changes_nothing(self, workflow, test_db, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        with pytest.raises(IllegalTransition):
            workflow.apply_transition("supplier_order", order.id, "deliver")
        assert test_db.get("supplier_order", order.id).status == "pending"

    def test_attach_document_generates_draft_delivery(self, workflow, test_db, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        workflow.apply_transition("supplier_order", order.id, "confirm")
        workflow.apply_transition("supplier_order", order.id, "ship")
        document = workflow.receive_delivery(order.id)

        generated = workflow.attach_document("delivery_document", document.id, "/tmp/DOC-1.pdf")
        assert generated.status == "generated"
        assert generated.pdf_path == "/tmp/DOC-1.pdf"

        again = workflow.attach_document("delivery_document", document.id, "/tmp/DOC-1b.pdf")
        assert again.status == "generated"
        actions = [e["action"] for e in test_db.get_audit_log(document.id)]
        assert actions == ["created", "transition:generate", "rendered"]

    def test_attach_document_keeps_quotation_status(self, workflow, stored_inquiry):
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 12.5})
        updated = workflow.attach_document("quotation", quotation.id, "/tmp/q.pdf")
        assert updated.status == "draft"
        assert updated.pdf_path == "/tmp/q.pdf"

    def test_only_outgoing_documents_are_attached(self, workflow, po):
        with pytest.raises(ValueError):
            workflow.attach_document("purchase_order", po.id, "/tmp/po.pdf")


@pytest.fixture
def failing_save(monkeypatch):
    """Make Transaction.save raise for one entity kind, after earlier writes in the block."""
    from pipeline.database import Transaction

    real_save = Transaction.save

    def _fail_for(kind):
        def save(self, entity, *args, **kwargs):
            if entity.kind == kind:
                raise PersistenceFailure(f"disk I/O error while saving {kind}")
            return real_save(self, entity, *args, **kwargs)

        monkeypatch.setattr(Transaction, "save", save)

    return _fail_for


@pytest.mark.integration
class TestConversionRollback:
    """A failure part-way through a conversion leaves every record as it was."""

    @pytest.fixture
    def po(self, test_db, make_po):
        return test_db.create(make_po("PO-1"))

    @pytest.fixture
    def shipped_order(self, workflow, po):
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        workflow.apply_transition("supplier_order", order.id, "confirm")
        return workflow.apply_transition("supplier_order", order.id, "ship")

    def test_quotation_is_not_kept_when_inquiry_update_fails(
        self, workflow, test_db, stored_inquiry, failing_save, monkeypatch,
    ):
        failing_save("inquiry")

        with pytest.raises(PersistenceFailure):
            workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 12.5})

        assert test_db.list("quotation") == []
        inquiry = test_db.get("inquiry", stored_inquiry.id)
        assert inquiry.status == "reviewed"
        assert inquiry.quotation_id is None
        assert [i.status for i in inquiry.items] == ["pending", "pending"]

        monkeypatch.undo()
        quotation = workflow.convert_inquiry_to_quotation(stored_inquiry.id, {"MAT-001": 12.5})
        assert quotation.quotation_number.endswith("-100000")

    def test_supplier_order_is_not_kept_when_po_update_fails(
        self, workflow, test_db, po, failing_save, monkeypatch,
    ):
        failing_save("purchase_order")

        with pytest.raises(PersistenceFailure):
            workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")

        assert test_db.list("supplier_order") == []
        assert test_db.get("purchase_order", po.id).supplier_order_ids == []

        monkeypatch.undo()
        order = workflow.create_supplier_order_from_po(po.id, "Gulf Bearings LLC")
        assert order.order_number.endswith("-0001")

    def test_delivery_for_deleted_po_changes_nothing(self, workflow, test_db, po, shipped_order):
        test_db.delete("purchase_order", po.id)

        with pytest.raises(EntityNotFound):
            workflow.receive_delivery(shipped_order.id)

        order = test_db.get("supplier_order", shipped_order.id)
        assert order.status == "in_transit"
        assert order.delivery_document_id is None
        assert test_db.list("delivery_document") == []

    def test_delivery_document_is_not_kept_when_order_update_fails(
        self, workflow, test_db, shipped_order, failing_save,
    ):
        failing_save("supplier_order")

        with pytest.raises(PersistenceFailure):
            workflow.receive_delivery(shipped_order.id)

        assert test_db.list("delivery_document") == []
        order = test_db.get("supplier_order", shipped_order.id)
        assert order.status == "in_transit"
        assert order.delivery_document_id is None
