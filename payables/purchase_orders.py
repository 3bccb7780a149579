"""
Purchase Order lifecycle.

State machine:

    Draft ──send──▶ Sent ──receive──▶ Received
      │               │
      └────cancel─────┴──────────────▶ Cancelled

Received and Cancelled are terminal.  Receiving a PO materialises exactly one
SupplierInvoice in the same ledger transaction that flips the PO status, so
a crash can never leave one without the other.  A retried receipt finds the
existing invoice and fails with DuplicateReceiptError.

Stock is posted line by line before that transaction, each posting recorded
in stock_postings as soon as the inventory service accepts it.  A receipt
interrupted partway leaves the PO Sent; receiving it again skips the lines
already posted.  Such a PO cannot be cancelled or extended until then.
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from config import PRICING_INCLUSIVE
from models.invoice import SupplierInvoice
from models.purchase_order import PurchaseOrder, PurchaseOrderItem, POStatus
from models.result import ReceiptResult
from .collaborators import InventoryService, SupplierDirectory, TaxSettings
from .database import CENT, LedgerStore
from .errors import (
    DuplicateReceiptError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PO_SEQUENCE = "po_number"

# Largest line or PO total; with VAT on top it still fits the ledger's integer cent columns.
MAX_AMOUNT = Decimal("1000000000000.00")

ItemInput = Union[PurchaseOrderItem, dict]


def compute_invoice_amounts(
    total_cost: Decimal,
    vat_rate: Decimal,
    pricing_type: str,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Split a PO total into (subtotal, tax_amount, total_amount), each to the cent.

    exclusive: unit costs are net, VAT is added on top.
    inclusive: unit costs already carry VAT, which is backed out.
    total_amount always equals subtotal + tax_amount exactly.
    """
    if pricing_type == PRICING_INCLUSIVE:
        total = total_cost.quantize(CENT, rounding=ROUND_HALF_UP)
        subtotal = (total / (1 + vat_rate)).quantize(CENT, rounding=ROUND_HALF_UP)
        tax = total - subtotal
    else:
        subtotal = total_cost.quantize(CENT, rounding=ROUND_HALF_UP)
        tax = (subtotal * vat_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        total = subtotal + tax
    return subtotal, tax, total


def _as_date(value: Union[date, datetime, None]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


class PurchaseOrderManager:
    """Creates purchase orders and drives them through their lifecycle."""

    def __init__(
        self,
        store: LedgerStore,
        suppliers: SupplierDirectory,
        inventory: InventoryService,
        tax: TaxSettings,
        default_credit_days: int = 30,
    ):
        self.store = store
        self.suppliers = suppliers
        self.inventory = inventory
        self.tax = tax
        self.default_credit_days = default_credit_days

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_purchase_order(
        self,
        supplier_id: str,
        items: Iterable[ItemInput],
        expected_date: Union[date, datetime],
        initial_status: POStatus = POStatus.DRAFT,
        actor: str = "system",
    ) -> PurchaseOrder:
        """
        Create a PO in Draft (or Sent, when it went straight to the supplier).

        Raises ValidationError for an empty or malformed item list, an
        initial status other than Draft/Sent, or an unknown supplier.
        """
        try:
            initial_status = POStatus(initial_status)
        except ValueError:
            raise ValidationError(f"Unknown purchase order status: {initial_status!r}") from None
        if initial_status not in (POStatus.DRAFT, POStatus.SENT):
            raise ValidationError(
                f"A purchase order can only be created as Draft or Sent, not {initial_status.value}"
            )

        po_items = _merge_lines(_normalise_item(item) for item in items)
        if not po_items:
            raise ValidationError("A purchase order needs at least one item")
        _check_amount(sum((i.line_total for i in po_items), Decimal("0")), "Purchase order total")

        try:
            supplier = self.suppliers.resolve_supplier(supplier_id)
        except NotFoundError as exc:
            raise ValidationError(str(exc)) from exc

        po_id = f"po_{uuid.uuid4().hex}"
        with self.store.transaction(po_id) as conn:
            seq = self.store.next_sequence(conn, PO_SEQUENCE)
            po = PurchaseOrder(
                id=po_id,
                po_number=f"PO-{seq:06d}",
                supplier_id=supplier.id,
                items=po_items,
                status=initial_status,
                created_date=datetime.now(timezone.utc),
                expected_date=_as_date(expected_date),
            )
            self.store.insert_purchase_order(conn, po)
            self.store.log_audit(
                po.id, "po_created", actor=actor,
                detail={"po_number": po.po_number, "status": po.status.value,
                        "total_cost": str(po.total_cost)},
                conn=conn,
            )

        logger.info(
            "Created %s for %s (%d items, total %s, status %s)",
            po.po_number, supplier.name, len(po.items), po.total_cost, po.status.value,
        )
        return po

    def add_item(self, po_id: str, item: ItemInput, actor: str = "system") -> PurchaseOrder:
        """
        Add a product to an open (Draft or Sent) PO.  An existing line for the
        same product has its quantity increased instead of being duplicated.
        """
        new_item = _normalise_item(item)
        with self.store.transaction(po_id) as conn:
            po = self._load(po_id, conn)
            if po.status.is_terminal:
                raise InvalidTransitionError(
                    po.id, po.status.value, po.status.value,
                    message=f"Items cannot be added to {po.po_number}: it is {po.status.value}",
                )
            self._reject_if_partially_received(po, conn, po.status.value)

            items = [i.model_copy() for i in po.items]
            for existing in items:
                if existing.product_id == new_item.product_id:
                    existing.quantity += new_item.quantity
                    _check_amount(existing.line_total, f"Line total for {existing.product_id}")
                    break
            else:
                items.append(new_item)

            po = po.model_copy(update={"items": items})
            _check_amount(po.total_cost, f"Total for {po.po_number}")
            self.store.update_purchase_order(conn, po)
            self.store.log_audit(
                po.id, "po_item_added", actor=actor,
                detail={"product_id": new_item.product_id, "quantity": new_item.quantity},
                conn=conn,
            )

        logger.info("Added %d x %s to %s", new_item.quantity, new_item.product_id, po.po_number)
        return po

    def send(self, po_id: str, actor: str = "system") -> PurchaseOrder:
        """Draft → Sent."""
        return self._transition(po_id, POStatus.SENT, "po_sent", actor)

    def cancel(self, po_id: str, actor: str = "system") -> PurchaseOrder:
        """Draft or Sent → Cancelled."""
        return self._transition(po_id, POStatus.CANCELLED, "po_cancelled", actor)

    def receive(
        self,
        po_id: str,
        received_date: Union[date, datetime, None] = None,
        actor: str = "system",
    ) -> ReceiptResult:
        """
        Sent → Received, posting stock and creating the supplier invoice.

        Runs under the PO's key lock in three steps:

          1. check the PO has no invoice yet and is Sent;
          2. for each line not yet in stock_postings, call the inventory
             service, then commit the posting row in its own short
             transaction;
          3. once every line is posted, flip the PO to Received and insert
             the invoice in one short transaction.

        No SQLite write transaction is open while the inventory service
        runs.  If it fails partway, the PO stays Sent with no invoice, and
        a retry posts only the lines that were not posted before.
        """
        received_on = _as_date(received_date)

        with self.store.locked(po_id):
            po = self._check_receivable(po_id)

            posted = self.store.get_stock_postings(po.id)
            for item in po.items:
                if item.product_id in posted:
                    continue
                self.inventory.increase_stock(item.product_id, item.quantity)
                with self.store.transaction(po.id) as conn:
                    self.store.record_stock_posting(conn, po.id, item.product_id, item.quantity)
                    self.store.log_audit(
                        po.id, "stock_posted", actor=actor,
                        detail={"product_id": item.product_id, "quantity": item.quantity},
                        conn=conn,
                    )

            credit_days = self._credit_days(po.supplier_id)
            subtotal, tax_amount, total_amount = compute_invoice_amounts(
                po.total_cost, self.tax.current_vat_rate(), self.tax.pricing_type,
            )

            with self.store.transaction(po.id) as conn:
                # Another process sharing the file may have moved the PO meanwhile
                po = self._check_receivable(po.id, conn)
                po = po.model_copy(update={
                    "status": POStatus.RECEIVED,
                    "received_date": received_on,
                })
                invoice = SupplierInvoice(
                    id=f"inv_{po.id}",
                    invoice_number=f"INV-{po.po_number}",
                    purchase_order_id=po.id,
                    supplier_id=po.supplier_id,
                    invoice_date=received_on,
                    due_date=received_on + timedelta(days=credit_days),
                    subtotal=subtotal,
                    tax_amount=tax_amount,
                    total_amount=total_amount,
                )

                self.store.update_purchase_order(conn, po)
                self.store.insert_invoice(conn, invoice)
                self.store.log_audit(
                    po.id, "po_received", actor=actor,
                    detail={"received_date": received_on.isoformat(),
                            "invoice_number": invoice.invoice_number},
                    conn=conn,
                )
                self.store.log_audit(
                    invoice.id, "invoice_created", actor=actor,
                    detail={"invoice_number": invoice.invoice_number,
                            "total_amount": str(invoice.total_amount),
                            "due_date": invoice.due_date.isoformat()},
                    conn=conn,
                )

        logger.info(
            "Received %s — invoice %s for %s due %s",
            po.po_number, invoice.invoice_number, invoice.total_amount, invoice.due_date,
        )
        return ReceiptResult(purchase_order=po, invoice=invoice)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_purchase_order(self, po_id: str) -> PurchaseOrder:
        po = self.store.get_purchase_order(po_id)
        if po is None:
            raise NotFoundError("Purchase order", po_id)
        return po

    def list_purchase_orders(
        self,
        status: Optional[POStatus] = None,
        supplier_id: Optional[str] = None,
    ) -> list[PurchaseOrder]:
        return self.store.list_purchase_orders(status=status, supplier_id=supplier_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, po_id: str, conn=None) -> PurchaseOrder:
        po = self.store.get_purchase_order(po_id, conn)
        if po is None:
            raise NotFoundError("Purchase order", po_id)
        return po

    def _check_receivable(self, po_id: str, conn=None) -> PurchaseOrder:
        po = self._load(po_id, conn)
        existing = self.store.get_invoice_for_po(po.id, conn)
        if existing is not None:
            raise DuplicateReceiptError(po.id, existing.invoice_number)
        if not po.can_transition_to(POStatus.RECEIVED):
            raise InvalidTransitionError(po.id, po.status.value, POStatus.RECEIVED.value)
        return po

    def _reject_if_partially_received(self, po: PurchaseOrder, conn, target: str) -> None:
        posted = self.store.get_stock_postings(po.id, conn)
        if posted:
            raise InvalidTransitionError(
                po.id, po.status.value, target,
                message=(
                    f"{po.po_number} has stock posted for {len(posted)} line(s) by an "
                    f"interrupted receipt; receive it again to complete the receipt"
                ),
            )

    def _transition(self, po_id: str, target: POStatus, action: str, actor: str) -> PurchaseOrder:
        with self.store.transaction(po_id) as conn:
            po = self._load(po_id, conn)
            if not po.can_transition_to(target):
                raise InvalidTransitionError(po.id, po.status.value, target.value)
            if target == POStatus.CANCELLED:
                self._reject_if_partially_received(po, conn, target.value)
            previous = po.status
            po = po.model_copy(update={"status": target})
            self.store.update_purchase_order(conn, po)
            self.store.log_audit(
                po.id, action, actor=actor,
                detail={"from": previous.value, "to": target.value},
                conn=conn,
            )
        logger.info("%s: %s → %s", po.po_number, previous.value, target.value)
        return po

    def _credit_days(self, supplier_id: str) -> int:
        try:
            return self.suppliers.resolve_supplier(supplier_id).credit_days
        except NotFoundError:
            logger.warning(
                "Supplier %s no longer in directory — using default %d credit days",
                supplier_id, self.default_credit_days,
            )
            return self.default_credit_days


def _merge_lines(items: Iterable[PurchaseOrderItem]) -> list[PurchaseOrderItem]:
    """One line per product; repeated products have their quantities added."""
    merged: dict[str, PurchaseOrderItem] = {}
    for item in items:
        if item.product_id in merged:
            existing = merged[item.product_id]
            merged[item.product_id] = existing.model_copy(
                update={"quantity": existing.quantity + item.quantity}
            )
        else:
            merged[item.product_id] = item
    return list(merged.values())


def _check_amount(amount: Decimal, label: str) -> None:
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{label} of {amount} exceeds the maximum of {MAX_AMOUNT:,.2f}")


def _normalise_item(raw: Any) -> PurchaseOrderItem:
    """Validate one item and fill product_name from product_id when missing."""
    try:
        item = raw if isinstance(raw, PurchaseOrderItem) else PurchaseOrderItem.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid purchase order item: {exc.errors()[0]['msg']}") from exc

    if item.quantity <= 0:
        raise ValidationError(
            f"Quantity for {item.product_id} must be greater than zero (got {item.quantity})"
        )
    if not item.unit_cost.is_finite():
        raise ValidationError(f"Unit cost for {item.product_id} must be a finite number")
    if item.unit_cost < 0:
        raise ValidationError(
            f"Unit cost for {item.product_id} cannot be negative (got {item.unit_cost})"
        )
    _check_amount(item.line_total, f"Line total for {item.product_id}")
    if not item.product_name:
        item = item.model_copy(update={"product_name": item.product_id})
    return item
