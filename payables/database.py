"""
SQLite persistence layer for the accounts-payable ledger.

A single database file (output/ledger.db) holds every durable record:

  purchase_orders    One row per PO.  Items are stored as a JSON array;
                     total_cost is never stored, it is derived on load.
  supplier_invoices  One row per received PO.  purchase_order_id is UNIQUE,
                     which makes receipt idempotent at the storage level.
                     Money is held as integer cents with a CHECK keeping
                     0 <= paid_cents <= total_cents.
  supplier_payments  Append-only.  Rows are never updated or deleted.
  stock_postings     One row per PO line whose stock increase has been sent
                     to the inventory service.  UNIQUE (purchase_order_id,
                     product_id) so a retried receipt never posts a line twice.
  audit_log          One row per state change, oldest first.
  sequences          Counters for human-readable numbers (PO-000001, ...).

Concurrency
-----------
Mutations go through LedgerStore.transaction(key).  The key (an entity id)
selects an in-process lock, so two commands against the same PO or invoice
run strictly one after the other while commands against different entities
never wait on each other's lock.  Inside the lock the connection opens a
BEGIN IMMEDIATE transaction, which also serialises writers from other
processes sharing the file.  Any exception rolls the whole unit back.

SQLite's write lock covers the whole file, so transactions stay short and
never wrap calls to outside services.  Work that spans several transactions
for one entity holds LedgerStore.locked(key) instead; the key locks are
re-entrant, so transaction(key) can be opened inside it.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Iterator, Optional

from models.invoice import SupplierInvoice
from models.payment import SupplierPayment
from models.purchase_order import PurchaseOrder, POStatus
from models.result import AuditEntry
from .errors import DuplicateReceiptError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    id             TEXT PRIMARY KEY,
    po_number      TEXT NOT NULL UNIQUE,
    supplier_id    TEXT NOT NULL,
    status         TEXT NOT NULL,
    items          TEXT NOT NULL,   -- JSON array of PurchaseOrderItem
    created_date   TEXT NOT NULL,   -- ISO-8601 datetime
    expected_date  TEXT NOT NULL,   -- YYYY-MM-DD
    received_date  TEXT,
    updated_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_po_status   ON purchase_orders (status);
CREATE INDEX IF NOT EXISTS idx_po_supplier ON purchase_orders (supplier_id);

CREATE TABLE IF NOT EXISTS supplier_invoices (
    id                 TEXT PRIMARY KEY,
    invoice_number     TEXT NOT NULL UNIQUE,
    purchase_order_id  TEXT NOT NULL UNIQUE REFERENCES purchase_orders (id),
    supplier_id        TEXT NOT NULL,
    invoice_date       TEXT NOT NULL,
    due_date           TEXT NOT NULL,
    subtotal_cents     INTEGER NOT NULL,
    tax_cents          INTEGER NOT NULL,
    total_cents        INTEGER NOT NULL,
    paid_cents         INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL,
    CHECK (total_cents = subtotal_cents + tax_cents),
    CHECK (paid_cents >= 0 AND paid_cents <= total_cents)
);

CREATE INDEX IF NOT EXISTS idx_invoices_supplier ON supplier_invoices (supplier_id);
CREATE INDEX IF NOT EXISTS idx_invoices_due      ON supplier_invoices (due_date);

CREATE TABLE IF NOT EXISTS supplier_payments (
    id            TEXT PRIMARY KEY,
    invoice_id    TEXT NOT NULL REFERENCES supplier_invoices (id),
    payment_date  TEXT NOT NULL,
    amount_cents  INTEGER NOT NULL CHECK (amount_cents > 0),
    method        TEXT NOT NULL,
    recorded_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_payments_invoice ON supplier_payments (invoice_id);

CREATE TABLE IF NOT EXISTS stock_postings (
    purchase_order_id  TEXT    NOT NULL REFERENCES purchase_orders (id),
    product_id         TEXT    NOT NULL,
    quantity           INTEGER NOT NULL CHECK (quantity > 0),
    posted_at          TEXT    NOT NULL,
    PRIMARY KEY (purchase_order_id, product_id)
);

CREATE TABLE IF NOT EXISTS sequences (
    name   TEXT PRIMARY KEY,
    value  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id   TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- po_created | po_item_added | po_sent | po_received |
                                    -- po_cancelled | stock_posted | invoice_created | payment_recorded
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


def to_cents(amount: Decimal) -> int:
    return int((amount / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class _KeyedLocks:
    """One threading.RLock per key, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}   # key -> [lock, holders+waiters]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class LedgerStore:
    """Thin wrapper around an SQLite database file holding the payables ledger."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self, **kwargs) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30, **kwargs)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _conn(self):
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _reading(self, conn: Optional[sqlite3.Connection]):
        if conn is not None:
            yield conn
        else:
            with self._conn() as c:
                yield c

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Hold the in-process lock for *key* without opening a transaction."""
        with self._locks.hold(key):
            yield

    @contextmanager
    def transaction(self, key: str) -> Iterator[sqlite3.Connection]:
        """
        Run one all-or-nothing unit of work against the entity *key*.

        Holds the per-key lock for the whole read-modify-write and commits
        only if the block exits normally.
        """
        with self._locks.hold(key):
            conn = self._connect(isolation_level=None)
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Ledger schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    def next_sequence(self, conn: sqlite3.Connection, name: str) -> int:
        """Allocate the next value of counter *name* inside the caller's transaction."""
        conn.execute(
            """INSERT INTO sequences (name, value) VALUES (?, 1)
               ON CONFLICT(name) DO UPDATE SET value = value + 1""",
            (name,),
        )
        return conn.execute(
            "SELECT value FROM sequences WHERE name = ?", (name,)
        ).fetchone()["value"]

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def insert_purchase_order(self, conn: sqlite3.Connection, po: PurchaseOrder) -> None:
        conn.execute(
            """
            INSERT INTO purchase_orders (
                id, po_number, supplier_id, status, items,
                created_date, expected_date, received_date, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                po.id,
                po.po_number,
                po.supplier_id,
                po.status.value,
                _items_json(po),
                po.created_date.isoformat(),
                po.expected_date.isoformat(),
                po.received_date.isoformat() if po.received_date else None,
                _utcnow(),
            ),
        )

    def update_purchase_order(self, conn: sqlite3.Connection, po: PurchaseOrder) -> None:
        conn.execute(
            """UPDATE purchase_orders SET
                   status = ?, items = ?, received_date = ?, updated_at = ?
               WHERE id = ?""",
            (
                po.status.value,
                _items_json(po),
                po.received_date.isoformat() if po.received_date else None,
                _utcnow(),
                po.id,
            ),
        )

    def get_purchase_order(
        self, po_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[PurchaseOrder]:
        with self._reading(conn) as c:
            row = c.execute(
                "SELECT * FROM purchase_orders WHERE id = ?", (po_id,)
            ).fetchone()
        return _row_to_po(row) if row else None

    def list_purchase_orders(
        self,
        status: Optional[POStatus] = None,
        supplier_id: Optional[str] = None,
    ) -> list[PurchaseOrder]:
        """Return purchase orders newest-first, optionally filtered."""
        clauses: list[str] = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(POStatus(status).value)
        if supplier_id:
            clauses.append("supplier_id = ?")
            params.append(supplier_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM purchase_orders {where} ORDER BY po_number DESC",
                params,
            ).fetchall()
        return [_row_to_po(r) for r in rows]

    # ------------------------------------------------------------------
    # Supplier invoices
    # ------------------------------------------------------------------

    def insert_invoice(self, conn: sqlite3.Connection, invoice: SupplierInvoice) -> None:
        """
        Insert a freshly materialised invoice.

        The UNIQUE constraint on purchase_order_id is the last line of
        defence against a second invoice for the same receipt.
        """
        try:
            conn.execute(
                """
                INSERT INTO supplier_invoices (
                    id, invoice_number, purchase_order_id, supplier_id,
                    invoice_date, due_date,
                    subtotal_cents, tax_cents, total_cents, paid_cents,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice.id,
                    invoice.invoice_number,
                    invoice.purchase_order_id,
                    invoice.supplier_id,
                    invoice.invoice_date.isoformat(),
                    invoice.due_date.isoformat(),
                    to_cents(invoice.subtotal),
                    to_cents(invoice.tax_amount),
                    to_cents(invoice.total_amount),
                    to_cents(invoice.paid_amount),
                    _utcnow(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateReceiptError(invoice.purchase_order_id) from exc
            raise

    def update_paid_amount(
        self, conn: sqlite3.Connection, invoice_id: str, paid_amount: Decimal
    ) -> None:
        conn.execute(
            "UPDATE supplier_invoices SET paid_cents = ? WHERE id = ?",
            (to_cents(paid_amount), invoice_id),
        )

    def get_invoice(
        self, invoice_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SupplierInvoice]:
        with self._reading(conn) as c:
            row = c.execute(
                "SELECT * FROM supplier_invoices WHERE id = ?", (invoice_id,)
            ).fetchone()
        return _row_to_invoice(row) if row else None

    def get_invoice_for_po(
        self, po_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SupplierInvoice]:
        with self._reading(conn) as c:
            row = c.execute(
                "SELECT * FROM supplier_invoices WHERE purchase_order_id = ?", (po_id,)
            ).fetchone()
        return _row_to_invoice(row) if row else None

    def list_invoices(self, supplier_id: Optional[str] = None) -> list[SupplierInvoice]:
        """
        Return every invoice, earliest due first, read in a single statement
        so reports see one consistent point in time.
        """
        where, params = ("WHERE supplier_id = ?", [supplier_id]) if supplier_id else ("", [])
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM supplier_invoices {where} ORDER BY due_date ASC, invoice_number ASC",
                params,
            ).fetchall()
        return [_row_to_invoice(r) for r in rows]

    # ------------------------------------------------------------------
    # Stock postings
    # ------------------------------------------------------------------

    def record_stock_posting(
        self, conn: sqlite3.Connection, po_id: str, product_id: str, quantity: int
    ) -> None:
        conn.execute(
            """INSERT INTO stock_postings (purchase_order_id, product_id, quantity, posted_at)
               VALUES (?, ?, ?, ?)""",
            (po_id, product_id, quantity, _utcnow()),
        )

    def get_stock_postings(
        self, po_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> dict[str, int]:
        """Return {product_id: quantity} already posted to inventory for one PO."""
        with self._reading(conn) as c:
            rows = c.execute(
                "SELECT product_id, quantity FROM stock_postings WHERE purchase_order_id = ?",
                (po_id,),
            ).fetchall()
        return {r["product_id"]: r["quantity"] for r in rows}

    # ------------------------------------------------------------------
    # Supplier payments (append-only)
    # ------------------------------------------------------------------

    def insert_payment(self, conn: sqlite3.Connection, payment: SupplierPayment) -> None:
        conn.execute(
            """INSERT INTO supplier_payments
                   (id, invoice_id, payment_date, amount_cents, method, recorded_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                payment.id,
                payment.invoice_id,
                payment.payment_date.isoformat(),
                to_cents(payment.amount),
                payment.method.value,
                _utcnow(),
            ),
        )

    def list_payments(self, invoice_id: str) -> list[SupplierPayment]:
        """Return all payments against one invoice in the order they were recorded."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT * FROM supplier_payments WHERE invoice_id = ?
                   ORDER BY recorded_at ASC, rowid ASC""",
                (invoice_id,),
            ).fetchall()
        return [_row_to_payment(r) for r in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_audit(
        self,
        entity_id: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Append one entry to the audit log (inside *conn*'s transaction when given)."""
        with self._reading(conn) as c:
            c.execute(
                """INSERT INTO audit_log (entity_id, timestamp, action, actor, detail)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    entity_id,
                    _utcnow(),
                    action,
                    actor,
                    json.dumps(detail, default=str) if detail is not None else None,
                ),
            )

    def get_audit_log(self, entity_id: str) -> list[AuditEntry]:
        """Return all audit entries for one entity, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, entity_id, timestamp, action, actor, detail
                   FROM audit_log WHERE entity_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (entity_id,),
            ).fetchall()
        return [_row_to_audit(r) for r in rows]

    def get_recent_audit_log(self, limit: int = 200, offset: int = 0) -> list[AuditEntry]:
        """Return recent audit entries across all entities, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, entity_id, timestamp, action, actor, detail
                   FROM audit_log
                   ORDER BY timestamp DESC, id DESC
                   LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [_row_to_audit(r) for r in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def backup_to(self, dest: Path) -> Path:
        """Write a consistent copy of the ledger to *dest* using the SQLite backup API."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        src_conn = sqlite3.connect(str(self.db_path), timeout=30)
        dst_conn = sqlite3.connect(str(dest))
        try:
            src_conn.backup(dst_conn)
        finally:
            src_conn.close()
            dst_conn.close()
        logger.info("Ledger backed up to %s", dest)
        return dest


# ------------------------------------------------------------------
# Row mapping
# ------------------------------------------------------------------

def _items_json(po: PurchaseOrder) -> str:
    return json.dumps([
        item.model_dump(mode="json", exclude={"line_total"}) for item in po.items
    ])


def _row_to_po(row: sqlite3.Row) -> PurchaseOrder:
    return PurchaseOrder(
        id=row["id"],
        po_number=row["po_number"],
        supplier_id=row["supplier_id"],
        status=POStatus(row["status"]),
        items=json.loads(row["items"]),
        created_date=datetime.fromisoformat(row["created_date"]),
        expected_date=date.fromisoformat(row["expected_date"]),
        received_date=date.fromisoformat(row["received_date"]) if row["received_date"] else None,
    )


def _row_to_invoice(row: sqlite3.Row) -> SupplierInvoice:
    return SupplierInvoice(
        id=row["id"],
        invoice_number=row["invoice_number"],
        purchase_order_id=row["purchase_order_id"],
        supplier_id=row["supplier_id"],
        invoice_date=date.fromisoformat(row["invoice_date"]),
        due_date=date.fromisoformat(row["due_date"]),
        subtotal=from_cents(row["subtotal_cents"]),
        tax_amount=from_cents(row["tax_cents"]),
        total_amount=from_cents(row["total_cents"]),
        paid_amount=from_cents(row["paid_cents"]),
    )


def _row_to_payment(row: sqlite3.Row) -> SupplierPayment:
    return SupplierPayment(
        id=row["id"],
        invoice_id=row["invoice_id"],
        payment_date=date.fromisoformat(row["payment_date"]),
        amount=from_cents(row["amount_cents"]),
        method=row["method"],
    )


def _row_to_audit(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        entity_id=row["entity_id"],
        timestamp=row["timestamp"],
        action=row["action"],
        actor=row["actor"],
        detail=json.loads(row["detail"]) if row["detail"] else None,
    )
