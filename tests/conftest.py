"""
Pytest configuration and shared fixtures for the payables ledger test suite.
"""
import os
import shutil
import tempfile
from datetime import date
from pathlib import Path
from typing import Generator

import pytest

# Run from the project root so relative data paths resolve
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="ledger_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories and 16% exclusive VAT."""
    from config import Config

    # Keep any real ledger_settings.json out of the tests
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))

    config = Config()
    config.db_path = temp_dir / "output" / "ledger.db"
    config.backup_dir = temp_dir / "backups"
    config.suppliers_csv = temp_dir / "data" / "suppliers.csv"
    config.vat_rate = 16.0
    config.vat_pricing_type = "exclusive"
    config.default_credit_days = 30
    config.currency_label = "Ksh"

    config.suppliers_csv.parent.mkdir(parents=True, exist_ok=True)
    return config


@pytest.fixture
def sample_suppliers_csv(temp_dir: Path) -> Path:
    """Create a sample suppliers CSV file."""
    csv_path = temp_dir / "suppliers.csv"
    content = """id,name,contact,email,credit_terms
SUP-001,Unga Millers Ltd,Jane Wanjiru,accounts@ungamillers.co.ke,Net 30
SUP-002,Coastal Beverages,Ali Hassan,ali@coastalbev.co.ke,net 7
SUP-003,Mama Mboga Wholesale,,,On Delivery
SUP-004,Nairobi Stationers,Peter Otieno,,"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def suppliers() -> "InMemorySupplierDirectory":
    from models.supplier import Supplier
    from payables.collaborators import InMemorySupplierDirectory

    return InMemorySupplierDirectory([
        Supplier(id="SUP-001", name="Unga Millers Ltd", credit_terms="Net 30"),
        Supplier(id="SUP-002", name="Coastal Beverages", credit_terms="Net 7"),
        Supplier(id="SUP-003", name="Mama Mboga Wholesale", credit_terms="On Delivery"),
    ])


@pytest.fixture
def inventory() -> "InMemoryInventory":
    from payables.collaborators import InMemoryInventory
    return InMemoryInventory()


@pytest.fixture
def test_store(test_config) -> "LedgerStore":
    """Provide a test ledger database instance."""
    from payables.database import LedgerStore
    return LedgerStore(test_config.db_path)


@pytest.fixture
def service(test_config, suppliers, inventory, test_store) -> "PayablesService":
    """A fully wired PayablesService on a throwaway database."""
    from payables.service import PayablesService
    return PayablesService(
        test_config, suppliers=suppliers, inventory=inventory, store=test_store,
    )


@pytest.fixture
def sample_items() -> list[dict]:
    """Two lines totalling 1000.00."""
    return [
        {"product_id": "P-100", "product_name": "Maize flour 2kg", "quantity": 4, "unit_cost": "150.00"},
        {"product_id": "P-200", "product_name": "Cooking oil 1L", "quantity": 2, "unit_cost": "200.00"},
    ]


@pytest.fixture
def sent_po(service, sample_items):
    """A purchase order for SUP-001 worth 1000.00, already sent to the supplier."""
    po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10))
    return service.send(po.id)


@pytest.fixture
def received_invoice(service, sent_po):
    """The 1160.00 invoice (1000.00 + 16% VAT) produced by receiving sent_po on 2025-01-01."""
    return service.receive(sent_po.id, date(2025, 1, 1)).invoice


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
