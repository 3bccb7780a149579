"""
Accounts-payable reporting.

compute_aging() buckets the outstanding balance of every non-paid invoice
by days past due:

    current     due_date on or after as_of
    due1_30     1-30 days late
    due31_60    31-60 days late
    due60plus   more than 60 days late

Both dates are compared as calendar dates, so the time of day at which the
report is run never shifts an invoice between buckets.  Reports are
recomputed from the ledger on every call; nothing is cached.
"""
import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Union

from models.invoice import InvoiceStatus, SupplierInvoice
from models.result import AgingReport, InputVatRow, PayablesSummary
from .database import LedgerStore

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


def _to_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def compute_aging(invoices: Iterable[SupplierInvoice], as_of: DateLike) -> AgingReport:
    """Pure reduction of *invoices* into aging buckets as of *as_of*."""
    as_of_day = _to_date(as_of)
    buckets = {"current": Decimal("0"), "due1_30": Decimal("0"),
               "due31_60": Decimal("0"), "due60plus": Decimal("0")}

    for inv in invoices:
        if inv.status == InvoiceStatus.PAID:
            continue
        amount_due = inv.total_amount - inv.paid_amount
        due_day = _to_date(inv.due_date)

        if due_day >= as_of_day:
            buckets["current"] += amount_due
            continue

        days_late = (as_of_day - due_day).days
        if days_late <= 30:
            buckets["due1_30"] += amount_due
        elif days_late <= 60:
            buckets["due31_60"] += amount_due
        else:
            buckets["due60plus"] += amount_due

    return AgingReport(as_of=as_of_day, **buckets)


def summarise_payables(invoices: Iterable[SupplierInvoice], limit: int = 5) -> PayablesSummary:
    """Total outstanding and the *limit* open invoices falling due soonest."""
    open_invoices = [inv for inv in invoices if inv.status != InvoiceStatus.PAID]
    total_due = sum((inv.amount_due for inv in open_invoices), Decimal("0"))
    urgent = sorted(open_invoices, key=lambda inv: (inv.due_date, inv.invoice_number))[:limit]
    return PayablesSummary(
        total_due=total_due,
        open_invoice_count=len(open_invoices),
        urgent_invoices=urgent,
    )


def input_vat_by_month(invoices: Iterable[SupplierInvoice]) -> list[InputVatRow]:
    """Net purchases, input VAT and gross purchases per invoice month, newest month first."""
    rows: "OrderedDict[str, InputVatRow]" = OrderedDict()
    for inv in sorted(invoices, key=lambda i: i.invoice_date, reverse=True):
        month = inv.invoice_date.strftime("%Y-%m")
        row = rows.setdefault(month, InputVatRow(month=month))
        row.net_purchases += inv.subtotal
        row.input_vat += inv.tax_amount
        row.gross_purchases += inv.total_amount
        row.invoice_count += 1
    return list(rows.values())


class AgingReporter:
    """Read-side reports over the current invoice set.  Never mutates the ledger."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def aging(self, as_of: Optional[DateLike] = None) -> AgingReport:
        report = compute_aging(self.store.list_invoices(), as_of or date.today())
        logger.debug("Aging as of %s: total outstanding %s", report.as_of, report.total)
        return report

    def payables_summary(self, limit: int = 5) -> PayablesSummary:
        return summarise_payables(self.store.list_invoices(), limit=limit)

    def input_vat(self) -> list[InputVatRow]:
        return input_vat_by_month(self.store.list_invoices())
