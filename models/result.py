from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from .invoice import SupplierInvoice
from .payment import SupplierPayment
from .purchase_order import PurchaseOrder


class ReceiptResult(BaseModel):
    """Outcome of receiving a PO: the PO in its Received state and the invoice it produced."""
    purchase_order: PurchaseOrder
    invoice: SupplierInvoice


class PaymentResult(BaseModel):
    """Outcome of a successful RecordPayment: the updated invoice and the new ledger entry."""
    invoice: SupplierInvoice
    payment: SupplierPayment


class AgingReport(BaseModel):
    """
    Outstanding supplier balances bucketed by days past due as of a date.
    Paid invoices never contribute; all four sums are non-negative.
    """
    as_of: date
    current: Decimal = Decimal("0")         # not yet due (due_date >= as_of)
    due1_30: Decimal = Decimal("0")
    due31_60: Decimal = Decimal("0")
    due60plus: Decimal = Decimal("0")

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.current + self.due1_30 + self.due31_60 + self.due60plus


class PayablesSummary(BaseModel):
    """Dashboard view of accounts payable: total outstanding plus the most urgent invoices."""
    total_due: Decimal = Decimal("0")
    open_invoice_count: int = 0
    urgent_invoices: List[SupplierInvoice] = Field(default_factory=list)


class InputVatRow(BaseModel):
    """Purchases and input VAT for one calendar month of invoice dates."""
    month: str                              # YYYY-MM
    net_purchases: Decimal = Decimal("0")
    input_vat: Decimal = Decimal("0")
    gross_purchases: Decimal = Decimal("0")
    invoice_count: int = 0


class AuditEntry(BaseModel):
    id: int
    entity_id: str
    timestamp: str                          # ISO-8601 UTC
    action: str
    actor: str = "system"
    detail: Optional[dict] = None
