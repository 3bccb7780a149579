"""
Typed failures raised by the payables core.

Every error leaves ledger state untouched: mutations run inside a single
store transaction that is rolled back when one of these propagates.
"""
from decimal import Decimal


class LedgerError(Exception):
    """Base class for all accounts-payable failures."""


class ValidationError(LedgerError):
    """Malformed input: empty item list, non-positive quantity or amount, unknown supplier."""


class NotFoundError(LedgerError):
    """An id referenced by a command does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class InvalidTransitionError(LedgerError):
    """The purchase order state machine does not allow the requested move."""

    def __init__(self, entity_id: str, current: str, target: str, message: str | None = None):
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            message or f"Purchase order {entity_id} cannot move from {current} to {target}"
        )


class OverpaymentError(LedgerError):
    """A payment would push paid_amount above the invoice total."""

    def __init__(self, invoice_id: str, amount: Decimal, amount_due: Decimal):
        self.invoice_id = invoice_id
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(
            f"Payment of {amount:.2f} exceeds the {amount_due:.2f} due on invoice {invoice_id}"
        )


class DuplicateReceiptError(LedgerError):
    """An invoice already exists for this purchase order."""

    def __init__(self, purchase_order_id: str, invoice_number: str | None = None):
        self.purchase_order_id = purchase_order_id
        self.invoice_number = invoice_number
        suffix = f" ({invoice_number})" if invoice_number else ""
        super().__init__(
            f"Purchase order {purchase_order_id} has already been received{suffix}"
        )
