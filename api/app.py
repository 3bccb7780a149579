"""
Accounts Payable API — FastAPI backend.

JSON surface over PayablesService for the POS front end.  The app never
renders anything; every route is a command or a query against the ledger.

Endpoints
---------
  GET  /api/health                           → liveness probe
  GET  /api/purchase-orders                  → list POs (supports ?status= and ?supplier_id=)
  POST /api/purchase-orders                  → create a PO (Draft or Sent)
  GET  /api/purchase-orders/{po_id}          → one PO
  POST /api/purchase-orders/{po_id}/items    → add an item to an open PO
  POST /api/purchase-orders/{po_id}/send     → Draft → Sent
  POST /api/purchase-orders/{po_id}/receive  → Sent → Received, creates the invoice
  POST /api/purchase-orders/{po_id}/cancel   → Draft/Sent → Cancelled
  GET  /api/invoices                         → list invoices (supports ?status= and ?supplier_id=)
  GET  /api/invoices/{invoice_id}            → one invoice
  GET  /api/invoices/{invoice_id}/amount-due → outstanding balance
  GET  /api/invoices/{invoice_id}/payments   → payments, oldest first
  POST /api/invoices/{invoice_id}/payments   → record a payment
  GET  /api/reports/aging                    → aging buckets (?as_of=YYYY-MM-DD)
  GET  /api/reports/payables-summary         → total due + most urgent invoices
  GET  /api/reports/input-vat                → input VAT by month
  GET  /api/audit                            → recent audit log

Ledger errors map to HTTP status codes:
  NotFoundError → 404, ValidationError → 422,
  InvalidTransitionError / DuplicateReceiptError / OverpaymentError → 409
"""
import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from models.invoice import InvoiceStatus
from models.purchase_order import POStatus
from payables.errors import (
    DuplicateReceiptError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from payables.service import PayablesService
from .models import ItemIn, PaymentCreate, PurchaseOrderCreate, ReceiveRequest

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    NotFoundError:          404,
    ValidationError:        422,
    InvalidTransitionError: 409,
    DuplicateReceiptError:  409,
    OverpaymentError:       409,
}


def _error_body(exc: LedgerError, currency: str) -> dict:
    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, OverpaymentError):
        body["detail"] = (
            f"Payment of {currency} {exc.amount:.2f} exceeds the "
            f"{currency} {exc.amount_due:.2f} due"
        )
        body["amount"] = str(exc.amount)
        body["amount_due"] = str(exc.amount_due)
    elif isinstance(exc, InvalidTransitionError):
        body["current_status"] = exc.current
        body["requested_status"] = exc.target
    return body


def _parse_enum(enum_cls, value: Optional[str]):
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Status must be one of: {allowed}") from None


def create_app(service: Optional[PayablesService] = None) -> FastAPI:
    """Build the API around *service* (a default-configured PayablesService if omitted)."""
    service = service or PayablesService()
    currency = service.config.currency_label

    app = FastAPI(title="Accounts Payable API", docs_url=None, redoc_url=None)
    app.state.service = service

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status = next(
            (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
        )
        logger.info("%s %s → %d %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content=_error_body(exc, currency))

    # ── Health ───────────────────────────────────────────────────────────────

    @app.get("/api/health")
    def health():
        return {
            "status":    "ok",
            "db_path":   str(service.store.db_path),
            "db_exists": service.store.db_path.exists(),
        }

    # ── Purchase orders ──────────────────────────────────────────────────────

    @app.get("/api/purchase-orders")
    def list_purchase_orders(
        status: Optional[str] = Query(default=None),
        supplier_id: Optional[str] = Query(default=None),
    ):
        return service.list_purchase_orders(
            status=_parse_enum(POStatus, status), supplier_id=supplier_id or None,
        )

    @app.post("/api/purchase-orders", status_code=201)
    def create_purchase_order(
        body: PurchaseOrderCreate,
        x_actor: str = Header(default="api"),
    ):
        return service.create_purchase_order(
            body.supplier_id,
            [item.model_dump() for item in body.items],
            body.expected_date,
            initial_status=_parse_enum(POStatus, body.status),
            actor=x_actor,
        )

    @app.get("/api/purchase-orders/{po_id}")
    def get_purchase_order(po_id: str):
        return service.get_purchase_order(po_id)

    @app.post("/api/purchase-orders/{po_id}/items")
    def add_item(po_id: str, body: ItemIn, x_actor: str = Header(default="api")):
        return service.add_item(po_id, body.model_dump(), actor=x_actor)

    @app.post("/api/purchase-orders/{po_id}/send")
    def send_purchase_order(po_id: str, x_actor: str = Header(default="api")):
        return service.send(po_id, actor=x_actor)

    @app.post("/api/purchase-orders/{po_id}/receive")
    def receive_purchase_order(
        po_id: str,
        body: Optional[ReceiveRequest] = None,
        x_actor: str = Header(default="api"),
    ):
        received_date = body.received_date if body else None
        return service.receive(po_id, received_date, actor=x_actor)

    @app.post("/api/purchase-orders/{po_id}/cancel")
    def cancel_purchase_order(po_id: str, x_actor: str = Header(default="api")):
        return service.cancel(po_id, actor=x_actor)

    # ── Invoices & payments ──────────────────────────────────────────────────

    @app.get("/api/invoices")
    def list_invoices(
        status: Optional[str] = Query(default=None),
        supplier_id: Optional[str] = Query(default=None),
    ):
        return service.list_invoices(
            status=_parse_enum(InvoiceStatus, status), supplier_id=supplier_id or None,
        )

    @app.get("/api/invoices/{invoice_id}")
    def get_invoice(invoice_id: str):
        return service.get_invoice(invoice_id)

    @app.get("/api/invoices/{invoice_id}/amount-due")
    def get_amount_due(invoice_id: str):
        return {"invoice_id": invoice_id, "amount_due": str(service.get_amount_due(invoice_id))}

    @app.get("/api/invoices/{invoice_id}/payments")
    def list_payments(invoice_id: str):
        return service.list_payments(invoice_id)

    @app.post("/api/invoices/{invoice_id}/payments", status_code=201)
    def record_payment(
        invoice_id: str,
        body: PaymentCreate,
        x_actor: str = Header(default="api"),
    ):
        return service.record_payment(
            invoice_id, body.amount, body.payment_date, body.method, actor=x_actor,
        )

    # ── Reports ──────────────────────────────────────────────────────────────

    @app.get("/api/reports/aging")
    def aging(as_of: Optional[date] = Query(default=None)):
        return service.compute_aging(as_of)

    @app.get("/api/reports/payables-summary")
    def payables_summary(limit: int = Query(default=5, ge=1, le=100)):
        return service.payables_summary(limit=limit)

    @app.get("/api/reports/input-vat")
    def input_vat():
        return service.input_vat_by_month()

    # ── Audit ────────────────────────────────────────────────────────────────

    @app.get("/api/audit")
    def recent_audit(
        limit: int = Query(default=200, le=2000),
        offset: int = Query(default=0, ge=0),
        entity_id: Optional[str] = Query(default=None),
    ):
        if entity_id:
            return service.get_audit_log(entity_id)
        return service.get_recent_audit_log(limit=limit, offset=offset)

    return app
