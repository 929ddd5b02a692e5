from .base import Entity
from .line_item import LineItem, InquiryItem
from .purchase_order import PurchaseOrder, expiry_status
from .inquiry import CustomerInquiry
from .quotation import Quotation
from .supplier_order import SupplierOrder
from .delivery_document import DeliveryDocument
from .forecast import PurchaseEvent, MaterialForecast
from .result import FieldIssue, IngestionResult, SchemaTag, SCHEMA_TAGS

# Storage discriminator -> model class
ENTITY_TYPES: dict[str, type[Entity]] = {
    cls.kind: cls
    for cls in (PurchaseOrder, CustomerInquiry, Quotation, SupplierOrder, DeliveryDocument)
}

__all__ = [
    "Entity", "LineItem", "InquiryItem",
    "PurchaseOrder", "expiry_status", "CustomerInquiry", "Quotation",
    "SupplierOrder", "DeliveryDocument",
    "PurchaseEvent", "MaterialForecast",
    "FieldIssue", "IngestionResult", "SchemaTag", "SCHEMA_TAGS",
    "ENTITY_TYPES",
]
