#!/usr/bin/env python3
"""
Accounts Payable Ledger — CLI entry point.

Usage examples:
  python main.py check                                   # Verify setup (database, suppliers CSV)
  python main.py create-po SUP-001 -i P-100:2:500 --expected 2025-07-01
  python main.py create-po SUP-001 -i P-100:2:500:"Maize flour 2kg" --sent
  python main.py add-item po_1a2b… P-200:5:80
  python main.py send po_1a2b…
  python main.py receive po_1a2b… --date 2025-07-03
  python main.py pay inv_po_1a2b… 580.00 --method M-Pesa
  python main.py aging --as-of 2025-08-31
  python main.py serve --port 8000
"""
import logging
import sys
from datetime import date, datetime, timedelta
from functools import wraps
from pathlib import Path

import click

from config import Config
from models.invoice import InvoiceStatus
from models.payment import PaymentMethod
from models.purchase_order import POStatus
from payables.errors import LedgerError, OverpaymentError
from payables.service import PayablesService


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _parse_item(raw: str) -> dict:
    """PRODUCT_ID:QTY:UNIT_COST[:NAME] → item dict."""
    parts = raw.split(":", 3)
    if len(parts) < 3:
        raise click.BadParameter(f"'{raw}' — expected PRODUCT_ID:QTY:UNIT_COST[:NAME]")
    try:
        quantity = int(parts[1])
    except ValueError:
        raise click.BadParameter(f"'{raw}' — quantity must be a whole number") from None
    item = {"product_id": parts[0].strip(), "quantity": quantity, "unit_cost": parts[2].strip()}
    if len(parts) == 4 and parts[3].strip():
        item["product_name"] = parts[3].strip()
    return item


def _money(config: Config, amount) -> str:
    return f"{config.currency_label} {amount:,.2f}"


def ledger_command(func):
    """Build the service for the command and turn ledger errors into a clean exit."""
    @wraps(func)
    @click.pass_context
    def wrapper(ctx: click.Context, *args, **kwargs):
        config = ctx.obj["config"]
        service = PayablesService(config)
        try:
            return func(service, *args, **kwargs)
        except OverpaymentError as exc:
            click.echo(
                f"✗ Payment of {_money(config, exc.amount)} exceeds "
                f"{_money(config, exc.amount_due)} due",
                err=True,
            )
            sys.exit(1)
        except LedgerError as exc:
            click.echo(f"✗ {exc}", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", default=None, type=click.Path(), help="Path to the ledger database")
@click.option("--suppliers", default=None, type=click.Path(), help="Path to suppliers CSV")
@click.option("--actor", default="cli", help="Name recorded in the audit log")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db: str | None, suppliers: str | None, actor: str) -> None:
    """Accounts Payable Ledger — purchase orders, supplier invoices and payments."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["actor"] = actor
    _setup_logging(verbose)

    config = Config()
    if db:
        config.db_path = Path(db)
    if suppliers:
        config.suppliers_csv = Path(suppliers)
    ctx.obj["config"] = config


def _actor() -> str:
    return click.get_current_context().obj["actor"]


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@ledger_command
def check(service: PayablesService) -> None:
    """Verify that the ledger database and supplier directory are ready."""
    config = service.config
    click.echo("\n=== Ledger Setup Check ===\n")

    db_tick = "✓" if service.store.db_path.exists() else "✗"
    click.echo(f"  Database:       {db_tick}  {service.store.db_path}")

    csv_exists = config.suppliers_csv.exists()
    count = len(getattr(service.suppliers, "suppliers", {}))
    count_str = f" ({count} loaded)" if csv_exists else " (file not found)"
    click.echo(f"  suppliers.csv   {'✓' if csv_exists else '✗'}{count_str}")
    if not csv_exists:
        click.echo(f"     → Expected at: {config.suppliers_csv}")

    click.echo(f"  VAT:            {config.vat_rate:g}% ({service.tax.pricing_type})")
    click.echo()


# --------------------------------------------------------------------
# purchase order commands
# --------------------------------------------------------------------

@cli.command("create-po")
@click.argument("supplier_id")
@click.option("--item", "-i", "items", multiple=True, required=True,
              help="PRODUCT_ID:QTY:UNIT_COST[:NAME] (repeatable)")
@click.option("--expected", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Expected delivery date (default: one week from today)")
@click.option("--sent", is_flag=True, help="Create the PO as already sent to the supplier")
@ledger_command
def create_po(
    service: PayablesService,
    supplier_id: str,
    items: tuple[str, ...],
    expected: datetime | None,
    sent: bool,
) -> None:
    """Create a purchase order for SUPPLIER_ID."""
    expected_date = expected.date() if expected else date.today() + timedelta(days=7)
    po = service.create_purchase_order(
        supplier_id,
        [_parse_item(raw) for raw in items],
        expected_date,
        initial_status=POStatus.SENT if sent else POStatus.DRAFT,
        actor=_actor(),
    )
    click.echo(f"✓ {po.po_number} ({po.id}) created as {po.status.value}")
    click.echo(f"  Total cost:  {_money(service.config, po.total_cost)}")


@cli.command("add-item")
@click.argument("po_id")
@click.argument("item")
@ledger_command
def add_item(service: PayablesService, po_id: str, item: str) -> None:
    """Add ITEM (PRODUCT_ID:QTY:UNIT_COST[:NAME]) to an open purchase order."""
    po = service.add_item(po_id, _parse_item(item), actor=_actor())
    click.echo(f"✓ {po.po_number} now totals {_money(service.config, po.total_cost)}")


@cli.command()
@click.argument("po_id")
@ledger_command
def send(service: PayablesService, po_id: str) -> None:
    """Mark a draft purchase order as sent to the supplier."""
    po = service.send(po_id, actor=_actor())
    click.echo(f"✓ {po.po_number} sent")


@cli.command()
@click.argument("po_id")
@click.option("--date", "received", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Date the goods arrived (default: today)")
@ledger_command
def receive(service: PayablesService, po_id: str, received: datetime | None) -> None:
    """Receive a sent purchase order and raise its supplier invoice."""
    result = service.receive(po_id, received.date() if received else None, actor=_actor())
    inv = result.invoice
    config = service.config
    click.echo(f"✓ {result.purchase_order.po_number} received — invoice {inv.invoice_number}")
    click.echo(f"  Subtotal:    {_money(config, inv.subtotal)}")
    click.echo(f"  VAT:         {_money(config, inv.tax_amount)}")
    click.echo(f"  Total:       {_money(config, inv.total_amount)}")
    click.echo(f"  Due:         {inv.due_date.isoformat()}")
    click.echo(f"  Invoice id:  {inv.id}")


@cli.command()
@click.argument("po_id")
@ledger_command
def cancel(service: PayablesService, po_id: str) -> None:
    """Cancel a draft or sent purchase order."""
    po = service.cancel(po_id, actor=_actor())
    click.echo(f"✓ {po.po_number} cancelled")


@cli.command("list-pos")
@click.option("--status", type=click.Choice([s.value for s in POStatus]), default=None)
@ledger_command
def list_pos(service: PayablesService, status: str | None) -> None:
    """List purchase orders, newest first."""
    pos = service.list_purchase_orders(status=POStatus(status) if status else None)
    if not pos:
        click.echo("No purchase orders.")
        return
    for po in pos:
        click.echo(
            f"  {po.po_number:<10} {po.status.value:<10} {po.supplier_id:<12} "
            f"{_money(service.config, po.total_cost):>16}  expected {po.expected_date}  {po.id}"
        )


# --------------------------------------------------------------------
# invoice & payment commands
# --------------------------------------------------------------------

@cli.command("list-invoices")
@click.option("--status", type=click.Choice([s.value for s in InvoiceStatus]), default=None)
@ledger_command
def list_invoices(service: PayablesService, status: str | None) -> None:
    """List supplier invoices, earliest due first."""
    invoices = service.list_invoices(status=InvoiceStatus(status) if status else None)
    if not invoices:
        click.echo("No invoices.")
        return
    config = service.config
    for inv in invoices:
        click.echo(
            f"  {inv.invoice_number:<14} {inv.status.value:<15} due {inv.due_date}  "
            f"total {_money(config, inv.total_amount):>14}  due {_money(config, inv.amount_due):>14}  {inv.id}"
        )


@cli.command()
@click.argument("invoice_id")
@click.argument("amount")
@click.option("--method", "-m", type=click.Choice([m.value for m in PaymentMethod]),
              default=PaymentMethod.BANK_TRANSFER.value, show_default=True)
@click.option("--date", "paid_on", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Payment date (default: today)")
@ledger_command
def pay(service: PayablesService, invoice_id: str, amount: str, method: str,
        paid_on: datetime | None) -> None:
    """Record a payment of AMOUNT against INVOICE_ID."""
    result = service.record_payment(
        invoice_id, amount, paid_on.date() if paid_on else None, method, actor=_actor(),
    )
    inv = result.invoice
    click.echo(
        f"✓ Paid {_money(service.config, result.payment.amount)} on {inv.invoice_number} "
        f"— {inv.status.value}, {_money(service.config, inv.amount_due)} still due"
    )


@cli.command()
@click.argument("invoice_id")
@ledger_command
def payments(service: PayablesService, invoice_id: str) -> None:
    """List the payments recorded against INVOICE_ID."""
    rows = service.list_payments(invoice_id)
    if not rows:
        click.echo("No payments recorded.")
        return
    for p in rows:
        click.echo(f"  {p.payment_date}  {p.method.value:<14} {_money(service.config, p.amount):>14}  {p.id}")


# --------------------------------------------------------------------
# report commands
# --------------------------------------------------------------------

@cli.command()
@click.option("--as-of", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Reference date (default: today)")
@ledger_command
def aging(service: PayablesService, as_of: datetime | None) -> None:
    """Show outstanding supplier balances by days past due."""
    report = service.compute_aging(as_of.date() if as_of else None)
    config = service.config
    click.echo(f"\n=== Accounts Payable Aging as of {report.as_of} ===\n")
    click.echo(f"  Current              {_money(config, report.current):>16}")
    click.echo(f"  Overdue 1-30 days    {_money(config, report.due1_30):>16}")
    click.echo(f"  Overdue 31-60 days   {_money(config, report.due31_60):>16}")
    click.echo(f"  Overdue 60+ days     {_money(config, report.due60plus):>16}")
    click.echo(f"  Total outstanding    {_money(config, report.total):>16}")
    click.echo()


@cli.command()
@click.option("--limit", default=5, show_default=True, help="Number of urgent invoices to show")
@ledger_command
def summary(service: PayablesService, limit: int) -> None:
    """Total payables and the invoices falling due soonest."""
    s = service.payables_summary(limit=limit)
    config = service.config
    click.echo(f"\n  Total due:  {_money(config, s.total_due)} across {s.open_invoice_count} open invoice(s)\n")
    for inv in s.urgent_invoices:
        click.echo(f"  {inv.due_date}  {inv.invoice_number:<14} {_money(config, inv.amount_due):>14}")
    click.echo()


@cli.command("input-vat")
@ledger_command
def input_vat(service: PayablesService) -> None:
    """Net purchases and input VAT by month of invoice."""
    rows = service.input_vat_by_month()
    if not rows:
        click.echo("No invoices.")
        return
    config = service.config
    click.echo(f"\n  {'Month':<8} {'Net purchases':>18} {'VAT input':>16} {'Gross':>18}")
    for r in rows:
        click.echo(
            f"  {r.month:<8} {_money(config, r.net_purchases):>18} "
            f"{_money(config, r.input_vat):>16} {_money(config, r.gross_purchases):>18}"
        )
    click.echo()


@cli.command()
@click.option("--entity", default=None, help="Only show entries for this PO or invoice id")
@click.option("--limit", default=50, show_default=True)
@ledger_command
def audit(service: PayablesService, entity: str | None, limit: int) -> None:
    """Show the audit log."""
    entries = service.get_audit_log(entity) if entity else service.get_recent_audit_log(limit=limit)
    for e in entries:
        click.echo(f"  {e.timestamp}  {e.actor:<10} {e.action:<18} {e.entity_id}")


# --------------------------------------------------------------------
# maintenance commands
# --------------------------------------------------------------------

@cli.command()
@click.argument("destination", type=click.Path(), default=None, required=False)
@ledger_command
def backup(service: PayablesService, destination: str | None) -> None:
    """Write a timestamped copy of the ledger database to DESTINATION (default: BACKUP_DIR)."""
    path = service.backup(Path(destination) if destination else None)
    click.echo(f"✓ Backup written: {path}")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: API_HOST or 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port (default: API_PORT or 8000)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the JSON API."""
    import uvicorn

    from api.app import create_app

    config = ctx.obj["config"]
    app = create_app(PayablesService(config))
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port)


if __name__ == "__main__":
    cli()
