from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


class POStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (POStatus.RECEIVED, POStatus.CANCELLED)


# Allowed forward moves; terminal states have no entry.
PO_TRANSITIONS = {
    POStatus.DRAFT: {POStatus.SENT, POStatus.CANCELLED},
    POStatus.SENT: {POStatus.RECEIVED, POStatus.CANCELLED},
}


class PurchaseOrderItem(BaseModel):
    """A single line on a Purchase Order."""
    product_id: str
    product_name: Optional[str] = None  # defaults to product_id when created
    quantity: int
    unit_cost: Decimal

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_cost


class PurchaseOrder(BaseModel):
    """
    A Purchase Order raised against a supplier.

    total_cost is always derived from the items; it is never stored on its
    own, so a changed line can never leave a stale total behind.
    """
    id: str
    po_number: str                          # e.g. "PO-000042"
    supplier_id: str                        # reference into the supplier directory
    items: List[PurchaseOrderItem] = Field(default_factory=list)
    status: POStatus = POStatus.DRAFT
    created_date: datetime
    expected_date: date
    received_date: Optional[date] = None

    @computed_field
    @property
    def total_cost(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def can_transition_to(self, target: POStatus) -> bool:
        return target in PO_TRANSITIONS.get(self.status, set())
