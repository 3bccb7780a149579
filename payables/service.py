"""
PayablesService ties the ledger store, the external collaborators and the
three components together behind one object, built from a Config.

The CLI and the HTTP API both go through this class; embedding callers can
pass their own supplier directory, inventory and tax settings.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional, Union

from config import Config
from models.invoice import InvoiceStatus, SupplierInvoice
from models.payment import PaymentMethod, SupplierPayment
from models.purchase_order import POStatus, PurchaseOrder
from models.result import (
    AgingReport,
    AuditEntry,
    InputVatRow,
    PayablesSummary,
    PaymentResult,
    ReceiptResult,
)
from .aging import AgingReporter
from .collaborators import (
    ConfigTaxSettings,
    CsvSupplierDirectory,
    InMemoryInventory,
    InventoryService,
    SupplierDirectory,
    TaxSettings,
)
from .database import LedgerStore
from .payments import Amount, InvoicePaymentEngine
from .purchase_orders import ItemInput, PurchaseOrderManager

logger = logging.getLogger(__name__)


class PayablesService:
    """
    Command / query surface of the Purchase-Order → Invoice → Payment core.

    Usage:
        service = PayablesService(Config())
        po = service.create_purchase_order("SUP-001", [{"product_id": "P1", "quantity": 2, "unit_cost": 500}],
                                           expected_date=date(2025, 1, 31))
        service.send(po.id)
        receipt = service.receive(po.id)
        service.record_payment(receipt.invoice.id, receipt.invoice.total_amount)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        suppliers: Optional[SupplierDirectory] = None,
        inventory: Optional[InventoryService] = None,
        tax: Optional[TaxSettings] = None,
        store: Optional[LedgerStore] = None,
    ):
        self.config = config or Config()
        self.store = store or LedgerStore(self.config.db_path)
        self.suppliers = suppliers if suppliers is not None else CsvSupplierDirectory(self.config.suppliers_csv)
        self.inventory = inventory if inventory is not None else InMemoryInventory()
        self.tax = tax if tax is not None else ConfigTaxSettings(self.config)

        self.purchase_orders = PurchaseOrderManager(
            self.store, self.suppliers, self.inventory, self.tax,
            default_credit_days=self.config.default_credit_days,
        )
        self.payments = InvoicePaymentEngine(self.store)
        self.reports = AgingReporter(self.store)
        logger.debug("Payables service ready (db=%s)", self.store.db_path)

    # --- Purchase orders ---

    def create_purchase_order(
        self,
        supplier_id: str,
        items: Iterable[ItemInput],
        expected_date: Union[date, datetime],
        initial_status: POStatus = POStatus.DRAFT,
        actor: str = "system",
    ) -> PurchaseOrder:
        return self.purchase_orders.create_purchase_order(
            supplier_id, items, expected_date, initial_status=initial_status, actor=actor,
        )

    def add_item(self, po_id: str, item: ItemInput, actor: str = "system") -> PurchaseOrder:
        return self.purchase_orders.add_item(po_id, item, actor=actor)

    def send(self, po_id: str, actor: str = "system") -> PurchaseOrder:
        return self.purchase_orders.send(po_id, actor=actor)

    def receive(
        self,
        po_id: str,
        received_date: Union[date, datetime, None] = None,
        actor: str = "system",
    ) -> ReceiptResult:
        return self.purchase_orders.receive(po_id, received_date, actor=actor)

    def cancel(self, po_id: str, actor: str = "system") -> PurchaseOrder:
        return self.purchase_orders.cancel(po_id, actor=actor)

    def get_purchase_order(self, po_id: str) -> PurchaseOrder:
        return self.purchase_orders.get_purchase_order(po_id)

    def list_purchase_orders(
        self, status: Optional[POStatus] = None, supplier_id: Optional[str] = None,
    ) -> list[PurchaseOrder]:
        return self.purchase_orders.list_purchase_orders(status=status, supplier_id=supplier_id)

    # --- Invoices & payments ---

    def record_payment(
        self,
        invoice_id: str,
        amount: Amount,
        payment_date: Union[date, datetime, None] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.BANK_TRANSFER,
        actor: str = "system",
    ) -> PaymentResult:
        return self.payments.record_payment(invoice_id, amount, payment_date, method, actor=actor)

    def get_amount_due(self, invoice_id: str) -> Decimal:
        return self.payments.get_amount_due(invoice_id)

    def get_invoice(self, invoice_id: str) -> SupplierInvoice:
        return self.payments.get_invoice(invoice_id)

    def list_invoices(
        self, status: Optional[InvoiceStatus] = None, supplier_id: Optional[str] = None,
    ) -> list[SupplierInvoice]:
        return self.payments.list_invoices(status=status, supplier_id=supplier_id)

    def list_payments(self, invoice_id: str) -> list[SupplierPayment]:
        return self.payments.list_payments(invoice_id)

    # --- Reports ---

    def compute_aging(self, as_of: Union[date, datetime, None] = None) -> AgingReport:
        return self.reports.aging(as_of)

    def payables_summary(self, limit: int = 5) -> PayablesSummary:
        return self.reports.payables_summary(limit=limit)

    def input_vat_by_month(self) -> list[InputVatRow]:
        return self.reports.input_vat()

    # --- Audit & maintenance ---

    def get_audit_log(self, entity_id: str) -> list[AuditEntry]:
        return self.store.get_audit_log(entity_id)

    def get_recent_audit_log(self, limit: int = 200, offset: int = 0) -> list[AuditEntry]:
        return self.store.get_recent_audit_log(limit=limit, offset=offset)

    def backup(self, destination: Optional[Path] = None) -> Path:
        """Write a timestamped copy of the ledger database into *destination*."""
        dest_dir = Path(destination) if destination else self.config.backup_dir
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.store.backup_to(dest_dir / f"ledger_backup_{timestamp}.db")
