from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, computed_field


class InvoiceStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"


def invoice_status(paid_amount: Decimal, total_amount: Decimal) -> InvoiceStatus:
    """Three-way status rule; the only place an invoice status is decided."""
    if paid_amount >= total_amount:
        return InvoiceStatus.PAID
    if paid_amount > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.UNPAID


class SupplierInvoice(BaseModel):
    """
    Supplier invoice materialised when a Purchase Order is received.

    Only paid_amount ever changes after creation, and only by appending a
    SupplierPayment.  status and amount_due are computed from the two
    decimal fields and are never persisted.
    """
    id: str
    invoice_number: str                     # "INV-" + PO number
    purchase_order_id: str                  # unique: one invoice per receipt
    supplier_id: str
    invoice_date: date
    due_date: date
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal                   # subtotal + tax_amount
    paid_amount: Decimal = Decimal("0")

    @computed_field
    @property
    def status(self) -> InvoiceStatus:
        return invoice_status(self.paid_amount, self.total_amount)

    @computed_field
    @property
    def amount_due(self) -> Decimal:
        return self.total_amount - self.paid_amount
