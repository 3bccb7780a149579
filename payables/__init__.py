from .errors import (
    LedgerError, ValidationError, NotFoundError,
    InvalidTransitionError, OverpaymentError, DuplicateReceiptError,
)
from .database import LedgerStore
from .collaborators import (
    SupplierDirectory, InventoryService, TaxSettings,
    InMemorySupplierDirectory, CsvSupplierDirectory, InMemoryInventory, ConfigTaxSettings,
)
from .purchase_orders import PurchaseOrderManager, compute_invoice_amounts
from .payments import InvoicePaymentEngine
from .aging import AgingReporter, compute_aging
from .service import PayablesService

__all__ = [
    "LedgerError", "ValidationError", "NotFoundError",
    "InvalidTransitionError", "OverpaymentError", "DuplicateReceiptError",
    "LedgerStore",
    "SupplierDirectory", "InventoryService", "TaxSettings",
    "InMemorySupplierDirectory", "CsvSupplierDirectory", "InMemoryInventory", "ConfigTaxSettings",
    "PurchaseOrderManager", "compute_invoice_amounts",
    "InvoicePaymentEngine",
    "AgingReporter", "compute_aging",
    "PayablesService",
]
