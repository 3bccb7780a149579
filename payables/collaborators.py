"""
Boundary contracts the payables core consumes, plus the adapters shipped
with the project.

  SupplierDirectory  resolve a supplier id to its name and credit terms
  InventoryService   increase stock for a received product
  TaxSettings        prevailing VAT rate and pricing type

The core only ever talks to the protocols; the POS front end can plug in
its own catalog, stock and settings services.
"""
import csv
import logging
import threading
from collections import defaultdict
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Protocol

from config import Config, PRICING_EXCLUSIVE, PRICING_INCLUSIVE
from models.supplier import Supplier
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class SupplierDirectory(Protocol):
    def resolve_supplier(self, supplier_id: str) -> Supplier:
        """Return the supplier or raise NotFoundError."""
        ...


class InventoryService(Protocol):
    def increase_stock(self, product_id: str, quantity: int) -> None:
        ...


class TaxSettings(Protocol):
    pricing_type: str

    def current_vat_rate(self) -> Decimal:
        """VAT rate as a fraction, e.g. Decimal("0.16")."""
        ...


# ------------------------------------------------------------------
# Supplier directory adapters
# ------------------------------------------------------------------

class InMemorySupplierDirectory:
    """Supplier directory backed by a dict; used by tests and embedding callers."""

    def __init__(self, suppliers: Iterable[Supplier] = ()):
        self.suppliers: dict[str, Supplier] = {s.id: s for s in suppliers}

    def add(self, supplier: Supplier) -> None:
        self.suppliers[supplier.id] = supplier

    def resolve_supplier(self, supplier_id: str) -> Supplier:
        try:
            return self.suppliers[supplier_id]
        except KeyError:
            raise NotFoundError("Supplier", supplier_id) from None


class CsvSupplierDirectory(InMemorySupplierDirectory):
    """
    Loads the supplier master list from CSV.

    CSV format (suppliers.csv):
      id, name, contact, email, credit_terms
      credit_terms: free text, e.g. "Net 30", "Net 7", "On Delivery"
    """

    def __init__(self, suppliers_csv: str | Path):
        super().__init__()
        self.path = Path(suppliers_csv)
        self._load(self.path)

    def _load(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Suppliers CSV not found: %s — every supplier lookup will fail", path)
            return
        with open(path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                supplier = Supplier(
                    id=row["id"].strip(),
                    name=row["name"].strip(),
                    contact=(row.get("contact") or "").strip() or None,
                    email=(row.get("email") or "").strip() or None,
                    credit_terms=(row.get("credit_terms") or "").strip() or "Net 30",
                )
                self.suppliers[supplier.id] = supplier
        logger.info("Loaded %d suppliers from %s", len(self.suppliers), path.name)


# ------------------------------------------------------------------
# Inventory adapter
# ------------------------------------------------------------------

class InMemoryInventory:
    """
    Records stock increases per product.

    Stock levels belong to the catalog service; this adapter keeps a running
    tally so receipts can be inspected when no catalog is attached.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.received: dict[str, int] = defaultdict(int)
        self.calls: list[tuple[str, int]] = []

    def increase_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self.received[product_id] += quantity
            self.calls.append((product_id, quantity))
        logger.info("Stock increased: %s +%d", product_id, quantity)


# ------------------------------------------------------------------
# Tax settings adapter
# ------------------------------------------------------------------

class ConfigTaxSettings:
    """Reads VAT settings from Config on every call so overlay edits take effect."""

    def __init__(self, config: Config):
        self.config = config

    @property
    def pricing_type(self) -> str:
        pricing = (self.config.vat_pricing_type or PRICING_EXCLUSIVE).lower()
        if pricing not in (PRICING_EXCLUSIVE, PRICING_INCLUSIVE):
            logger.warning("Unknown VAT pricing type %r — using exclusive", pricing)
            return PRICING_EXCLUSIVE
        return pricing

    def current_vat_rate(self) -> Decimal:
        return Decimal(str(self.config.vat_rate)) / Decimal("100")
