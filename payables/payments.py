"""
Invoice payment engine.

record_payment() is the only code path that changes a SupplierInvoice after
it is created.  The amount-due check and the paid_amount update happen in a
single ledger transaction keyed by the invoice id, so two cashiers paying
the same invoice at once are applied one after the other and the second is
checked against the balance the first left behind.
"""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from models.invoice import InvoiceStatus, SupplierInvoice
from models.payment import PaymentMethod, SupplierPayment
from models.result import PaymentResult
from .database import LedgerStore
from .errors import NotFoundError, OverpaymentError, ValidationError

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]


def parse_amount(value: Amount) -> Decimal:
    """
    Convert user input to a Decimal payment amount.

    Floats go through str() so 0.1 stays 0.1.  Amounts must be positive
    and expressed in whole cents.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid payment amount: {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"Invalid payment amount: {value!r}")
    if amount <= 0:
        raise ValidationError(f"Payment amount must be greater than zero (got {amount})")
    if amount.as_tuple().exponent < -2 and amount != amount.quantize(Decimal("0.01")):
        raise ValidationError(f"Payment amount cannot have fractions of a cent (got {amount})")
    return amount


class InvoicePaymentEngine:
    """Applies supplier payments to invoices without ever overpaying them."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def record_payment(
        self,
        invoice_id: str,
        amount: Amount,
        payment_date: Union[date, datetime, None] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.BANK_TRANSFER,
        actor: str = "system",
    ) -> PaymentResult:
        """
        Append a payment and return the updated invoice with the new payment.

        Raises:
            ValidationError:  amount <= 0, sub-cent amount or unknown method.
            NotFoundError:    no invoice with this id.
            OverpaymentError: amount exceeds the amount due at the moment the
                              payment is applied (paying exactly the balance is fine).
        """
        value = parse_amount(amount)
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {method!r}") from None
        if isinstance(payment_date, datetime):
            payment_date = payment_date.date()
        paid_on = payment_date or date.today()

        with self.store.transaction(invoice_id) as conn:
            invoice = self.store.get_invoice(invoice_id, conn)
            if invoice is None:
                raise NotFoundError("Invoice", invoice_id)

            amount_due = invoice.amount_due
            if value > amount_due:
                raise OverpaymentError(invoice.id, value, amount_due)

            payment = SupplierPayment(
                id=f"pay_{uuid.uuid4().hex}",
                invoice_id=invoice.id,
                payment_date=paid_on,
                amount=value,
                method=method,
            )
            invoice = invoice.model_copy(update={"paid_amount": invoice.paid_amount + value})

            self.store.insert_payment(conn, payment)
            self.store.update_paid_amount(conn, invoice.id, invoice.paid_amount)
            self.store.log_audit(
                invoice.id, "payment_recorded", actor=actor,
                detail={"payment_id": payment.id, "amount": str(value),
                        "method": method.value, "status": invoice.status.value},
                conn=conn,
            )

        logger.info(
            "Recorded %s payment of %s on %s (%s, %s still due)",
            method.value, value, invoice.invoice_number, invoice.status.value, invoice.amount_due,
        )
        return PaymentResult(invoice=invoice, payment=payment)

    def get_amount_due(self, invoice_id: str) -> Decimal:
        return self.get_invoice(invoice_id).amount_due

    def get_invoice(self, invoice_id: str) -> SupplierInvoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def list_invoices(
        self,
        status: Optional[InvoiceStatus] = None,
        supplier_id: Optional[str] = None,
    ) -> list[SupplierInvoice]:
        invoices = self.store.list_invoices(supplier_id=supplier_id)
        if status:
            status = InvoiceStatus(status)
            invoices = [inv for inv in invoices if inv.status == status]
        return invoices

    def list_payments(self, invoice_id: str) -> list[SupplierPayment]:
        self.get_invoice(invoice_id)
        return self.store.list_payments(invoice_id)
