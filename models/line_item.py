from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

InquiryItemStatus = Literal["pending", "quoted"]


class LineItem(BaseModel):
    """A priced line on a PO, quotation, supplier order or delivery document."""
    model_config = ConfigDict(frozen=True)

    item_name: str
    item_code: Optional[str] = None         # Material code
    description: Optional[str] = None
    quantity: float
    unit: str = "EA"
    unit_price: float
    total: float                            # always quantity * unit_price
    manufacturer_part: Optional[str] = None


class InquiryItem(BaseModel):
    """
    A requested line on a customer inquiry / purchase requisition.
    No price yet; status flips to "quoted" once a price is assigned on a quotation.
    """
    model_config = ConfigDict(frozen=True)

    item_name: str
    item_code: Optional[str] = None
    description: Optional[str] = None
    quantity: float
    unit: str = "EA"
    manufacturer_part: Optional[str] = None
    class_code: Optional[str] = None
    plant: Optional[str] = None
    status: InquiryItemStatus = "pending"
