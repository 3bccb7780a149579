from .purchase_order import PurchaseOrder, PurchaseOrderItem, POStatus, PO_TRANSITIONS
from .invoice import SupplierInvoice, InvoiceStatus, invoice_status
from .payment import SupplierPayment, PaymentMethod
from .supplier import Supplier, parse_credit_days
from .result import ReceiptResult, PaymentResult, AgingReport, PayablesSummary, InputVatRow, AuditEntry

__all__ = [
    "PurchaseOrder", "PurchaseOrderItem", "POStatus", "PO_TRANSITIONS",
    "SupplierInvoice", "InvoiceStatus", "invoice_status",
    "SupplierPayment", "PaymentMethod",
    "Supplier", "parse_credit_days",
    "ReceiptResult", "PaymentResult", "AgingReport", "PayablesSummary", "InputVatRow", "AuditEntry",
]
