"""
Integration tests for the purchase order lifecycle and invoice creation on receipt.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from models.invoice import InvoiceStatus
from models.purchase_order import POStatus
from payables.collaborators import ConfigTaxSettings, CsvSupplierDirectory, InMemoryInventory
from payables.errors import (
    DuplicateReceiptError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from payables.service import PayablesService


@pytest.mark.integration
class TestCreatePurchaseOrder:
    """Creating purchase orders."""

    def test_create_draft(self, service, sample_items):
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10))

        assert po.status == POStatus.DRAFT
        assert po.po_number == "PO-000001"
        assert po.supplier_id == "SUP-001"
        assert po.total_cost == Decimal("1000.00")
        assert po.received_date is None
        assert service.get_purchase_order(po.id) == po

    def test_po_numbers_are_sequential(self, service, sample_items):
        numbers = [
            service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10)).po_number
            for _ in range(3)
        ]
        assert numbers == ["PO-000001", "PO-000002", "PO-000003"]

    def test_create_as_sent(self, service, sample_items):
        po = service.create_purchase_order(
            "SUP-002", sample_items, date(2025, 1, 10), initial_status=POStatus.SENT,
        )
        assert po.status == POStatus.SENT

    def test_expected_date_accepts_datetime(self, service, sample_items):
        po = service.create_purchase_order("SUP-001", sample_items, datetime(2025, 1, 10, 17, 45))
        assert po.expected_date == date(2025, 1, 10)

    def test_product_name_defaults_to_product_id(self, service):
        po = service.create_purchase_order(
            "SUP-001", [{"product_id": "P-9", "quantity": 1, "unit_cost": 5}], date(2025, 1, 10),
        )
        assert po.items[0].product_name == "P-9"

    def test_free_items_are_allowed(self, service):
        po = service.create_purchase_order(
            "SUP-001", [{"product_id": "P-FREE", "quantity": 3, "unit_cost": "0"}], date(2025, 1, 10),
        )
        assert po.total_cost == Decimal("0")

    @pytest.mark.parametrize("items", [
        [],
        [{"product_id": "P-1", "quantity": 0, "unit_cost": "10"}],
        [{"product_id": "P-1", "quantity": -2, "unit_cost": "10"}],
        [{"product_id": "P-1", "quantity": 1, "unit_cost": "-0.01"}],
        [{"product_id": "P-1", "quantity": 1, "unit_cost": "ten"}],
        [{"quantity": 1, "unit_cost": "10"}],
    ])
    def test_invalid_items_rejected(self, service, items):
        with pytest.raises(ValidationError):
            service.create_purchase_order("SUP-001", items, date(2025, 1, 10))
        assert service.list_purchase_orders() == []

    def test_unknown_supplier_rejected(self, service, sample_items):
        with pytest.raises(ValidationError):
            service.create_purchase_order("SUP-404", sample_items, date(2025, 1, 10))
        assert service.list_purchase_orders() == []

    @pytest.mark.parametrize("status", [POStatus.RECEIVED, POStatus.CANCELLED, "Shipped"])
    def test_invalid_initial_status_rejected(self, service, sample_items, status):
        with pytest.raises(ValidationError):
            service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10), initial_status=status)

    def test_repeated_product_lines_are_merged(self, service):
        po = service.create_purchase_order("SUP-001", [
            {"product_id": "P-100", "quantity": 2, "unit_cost": "150.00"},
            {"product_id": "P-100", "quantity": 3, "unit_cost": "150.00"},
        ], date(2025, 1, 10))

        assert [(i.product_id, i.quantity) for i in po.items] == [("P-100", 5)]
        assert po.total_cost == Decimal("750.00")

    @pytest.mark.parametrize("unit_cost", ["1e30", "NaN", "Infinity"])
    def test_out_of_range_unit_cost_rejected(self, service, unit_cost):
        with pytest.raises(ValidationError):
            service.create_purchase_order(
                "SUP-001", [{"product_id": "P-1", "quantity": 1, "unit_cost": unit_cost}], date(2025, 1, 10),
            )
        assert service.list_purchase_orders() == []

    def test_total_above_maximum_rejected(self, service):
        items = [
            {"product_id": f"P-{n}", "quantity": 1, "unit_cost": "600000000000.00"}
            for n in range(2)
        ]
        with pytest.raises(ValidationError):
            service.create_purchase_order("SUP-001", items, date(2025, 1, 10))

    def test_creation_is_audited(self, service, sample_items):
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10), actor="cashier1")
        entries = service.get_audit_log(po.id)
        assert [e.action for e in entries] == ["po_created"]
        assert entries[0].actor == "cashier1"
        assert entries[0].detail["po_number"] == po.po_number


@pytest.mark.integration
class TestPurchaseOrderTransitions:
    """Send, cancel and add-item on the status machine."""

    def test_send(self, service, sample_items):
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10))
        sent = service.send(po.id)
        assert sent.status == POStatus.SENT
        assert service.get_purchase_order(po.id).status == POStatus.SENT

    def test_send_twice_fails(self, service, sent_po):
        with pytest.raises(InvalidTransitionError):
            service.send(sent_po.id)

    def test_cancel_draft_and_sent(self, service, sample_items, sent_po):
        draft = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10))
        assert service.cancel(draft.id).status == POStatus.CANCELLED
        assert service.cancel(sent_po.id).status == POStatus.CANCELLED

    def test_cancelled_is_terminal(self, service, sent_po):
        service.cancel(sent_po.id)
        for command in (service.send, service.cancel, service.receive):
            with pytest.raises(InvalidTransitionError):
                command(sent_po.id)
        assert service.get_purchase_order(sent_po.id).status == POStatus.CANCELLED
        assert service.list_invoices() == []

    def test_cannot_receive_draft(self, service, sample_items):
        draft = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10))
        with pytest.raises(InvalidTransitionError) as exc_info:
            service.receive(draft.id)
        assert exc_info.value.current == "Draft"
        assert exc_info.value.target == "Received"

    def test_cannot_cancel_received(self, service, sent_po):
        service.receive(sent_po.id, date(2025, 1, 1))
        with pytest.raises(InvalidTransitionError):
            service.cancel(sent_po.id)

    def test_unknown_po(self, service):
        for command in (service.send, service.cancel, service.receive, service.get_purchase_order):
            with pytest.raises(NotFoundError):
                command("po_missing")

    def test_add_item_merges_same_product(self, service, sent_po):
        po = service.add_item(sent_po.id, {"product_id": "P-100", "quantity": 1, "unit_cost": "150.00"})
        po = service.add_item(po.id, {"product_id": "P-300", "quantity": 10, "unit_cost": "5.00"})

        quantities = {i.product_id: i.quantity for i in po.items}
        assert quantities == {"P-100": 5, "P-200": 2, "P-300": 10}
        assert po.total_cost == Decimal("1200.00")
        assert service.get_purchase_order(po.id).total_cost == Decimal("1200.00")

    def test_add_item_rejected_on_terminal_po(self, service, sent_po):
        service.cancel(sent_po.id)
        with pytest.raises(InvalidTransitionError):
            service.add_item(sent_po.id, {"product_id": "P-1", "quantity": 1, "unit_cost": "1"})

    def test_add_invalid_item(self, service, sent_po):
        with pytest.raises(ValidationError):
            service.add_item(sent_po.id, {"product_id": "P-1", "quantity": 0, "unit_cost": "1"})
        assert service.get_purchase_order(sent_po.id).total_cost == Decimal("1000.00")

    def test_add_item_above_maximum_rejected(self, service, sent_po):
        with pytest.raises(ValidationError):
            service.add_item(sent_po.id, {"product_id": "P-100", "quantity": 1, "unit_cost": "1e30"})
        with pytest.raises(ValidationError):
            service.add_item(sent_po.id, {"product_id": "P-100", "quantity": 10**13, "unit_cost": "150.00"})
        po = service.get_purchase_order(sent_po.id)
        assert po.total_cost == Decimal("1000.00")
        assert [e.action for e in service.get_audit_log(po.id)][-1] != "po_item_added"

    def test_list_filters(self, service, sample_items, sent_po):
        draft = service.create_purchase_order("SUP-002", sample_items, date(2025, 1, 10))
        assert [p.id for p in service.list_purchase_orders(status=POStatus.DRAFT)] == [draft.id]
        assert [p.id for p in service.list_purchase_orders(supplier_id="SUP-001")] == [sent_po.id]

    def test_transitions_are_audited(self, service, sent_po):
        service.cancel(sent_po.id, actor="manager")
        entries = service.get_audit_log(sent_po.id)
        assert [e.action for e in entries] == ["po_created", "po_sent", "po_cancelled"]
        assert entries[-1].detail == {"from": "Sent", "to": "Cancelled"}
        assert entries[-1].actor == "manager"


@pytest.mark.integration
class TestReceivePurchaseOrder:
    """Receiving a PO creates exactly one invoice and posts stock."""

    def test_net_30_with_vat(self, service, sent_po):
        """1000.00 PO, Net 30 supplier, 16% VAT, received 2025-01-01."""
        result = service.receive(sent_po.id, date(2025, 1, 1))
        inv = result.invoice

        assert result.purchase_order.status == POStatus.RECEIVED
        assert result.purchase_order.received_date == date(2025, 1, 1)
        assert inv.subtotal == Decimal("1000.00")
        assert inv.tax_amount == Decimal("160.00")
        assert inv.total_amount == Decimal("1160.00")
        assert inv.paid_amount == Decimal("0")
        assert inv.status == InvoiceStatus.UNPAID
        assert inv.invoice_date == date(2025, 1, 1)
        assert inv.due_date == date(2025, 1, 31)
        assert inv.invoice_number == f"INV-{sent_po.po_number}"
        assert inv.purchase_order_id == sent_po.id
        assert inv.supplier_id == "SUP-001"

        assert service.get_invoice(inv.id) == inv
        assert service.get_purchase_order(sent_po.id).status == POStatus.RECEIVED

    def test_credit_terms_drive_due_date(self, service, sample_items):
        net7 = service.create_purchase_order("SUP-002", sample_items, date(2025, 1, 10),
                                             initial_status=POStatus.SENT)
        on_delivery = service.create_purchase_order("SUP-003", sample_items, date(2025, 1, 10),
                                                    initial_status=POStatus.SENT)
        assert service.receive(net7.id, date(2025, 3, 1)).invoice.due_date == date(2025, 3, 8)
        assert service.receive(on_delivery.id, date(2025, 3, 1)).invoice.due_date == date(2025, 3, 1)

    def test_supplier_removed_after_ordering_uses_default_terms(self, service, suppliers, sent_po):
        del suppliers.suppliers["SUP-001"]
        service.purchase_orders.default_credit_days = 45
        inv = service.receive(sent_po.id, date(2025, 1, 1)).invoice
        assert inv.due_date == date(2025, 1, 1) + timedelta(days=45)

    def test_defaults_to_today(self, service, sent_po):
        inv = service.receive(sent_po.id).invoice
        assert inv.invoice_date == date.today()

    def test_inclusive_pricing(self, test_config, suppliers, inventory, test_store, sample_items):
        test_config.vat_pricing_type = "inclusive"
        service = PayablesService(test_config, suppliers=suppliers, inventory=inventory,
                                  store=test_store, tax=ConfigTaxSettings(test_config))
        po = service.create_purchase_order("SUP-001", [
            {"product_id": "P-1", "quantity": 1, "unit_cost": "1160.00"},
        ], date(2025, 1, 10), initial_status=POStatus.SENT)

        inv = service.receive(po.id, date(2025, 1, 1)).invoice
        assert (inv.subtotal, inv.tax_amount, inv.total_amount) == (
            Decimal("1000.00"), Decimal("160.00"), Decimal("1160.00"),
        )

    def test_stock_increased_per_item(self, service, inventory, sent_po):
        service.receive(sent_po.id, date(2025, 1, 1))
        assert inventory.calls == [("P-100", 4), ("P-200", 2)]
        assert inventory.received["P-100"] == 4

    def test_second_receipt_is_duplicate(self, service, inventory, sent_po):
        first = service.receive(sent_po.id, date(2025, 1, 1))
        with pytest.raises(DuplicateReceiptError) as exc_info:
            service.receive(sent_po.id, date(2025, 1, 2))

        assert exc_info.value.invoice_number == first.invoice.invoice_number
        assert len(service.list_invoices()) == 1
        assert len(inventory.calls) == 2

    def test_concurrent_receipts_create_one_invoice(self, service, sent_po):
        def attempt(_):
            try:
                service.receive(sent_po.id, date(2025, 1, 1))
                return "ok"
            except DuplicateReceiptError:
                return "duplicate"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(8)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("duplicate") == 7
        assert len(service.list_invoices()) == 1

    def test_inventory_failure_rolls_back_receipt(self, test_config, suppliers, test_store, sample_items):
        class FailingInventory:
            def __init__(self):
                self.fail = True

            def increase_stock(self, product_id, quantity):
                if self.fail:
                    raise ConnectionError("catalog service unavailable")

        inventory = FailingInventory()
        service = PayablesService(test_config, suppliers=suppliers, inventory=inventory, store=test_store)
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10),
                                           initial_status=POStatus.SENT)

        with pytest.raises(ConnectionError):
            service.receive(po.id, date(2025, 1, 1))
        assert service.get_purchase_order(po.id).status == POStatus.SENT
        assert service.list_invoices() == []
        assert [e.action for e in service.get_audit_log(po.id)] == ["po_created"]

        inventory.fail = False
        assert service.receive(po.id, date(2025, 1, 1)).invoice.total_amount == Decimal("1160.00")

    def test_retry_after_failure_on_second_line_posts_each_line_once(
        self, test_config, suppliers, test_store, sample_items,
    ):
        class FlakyInventory:
            def __init__(self, fail_on):
                self.fail_on = fail_on
                self.stock = {}

            def increase_stock(self, product_id, quantity):
                if product_id == self.fail_on:
                    self.fail_on = None
                    raise ConnectionError("catalog service unavailable")
                self.stock[product_id] = self.stock.get(product_id, 0) + quantity

        inventory = FlakyInventory(fail_on="P-200")
        service = PayablesService(test_config, suppliers=suppliers, inventory=inventory, store=test_store)
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10),
                                           initial_status=POStatus.SENT)

        with pytest.raises(ConnectionError):
            service.receive(po.id, date(2025, 1, 1))
        assert service.get_purchase_order(po.id).status == POStatus.SENT
        assert service.list_invoices() == []
        assert inventory.stock == {"P-100": 4}
        assert test_store.get_stock_postings(po.id) == {"P-100": 4}

        result = service.receive(po.id, date(2025, 1, 1))

        assert inventory.stock == {"P-100": 4, "P-200": 2}
        assert result.invoice.total_amount == Decimal("1160.00")
        assert test_store.get_stock_postings(po.id) == {"P-100": 4, "P-200": 2}
        posted = [e.detail["product_id"] for e in service.get_audit_log(po.id) if e.action == "stock_posted"]
        assert posted == ["P-100", "P-200"]

    def test_partially_received_po_is_frozen_until_received(
        self, test_config, suppliers, test_store, sample_items,
    ):
        class FailOnceInventory(InMemoryInventory):
            def __init__(self):
                super().__init__()
                self.failed = False

            def increase_stock(self, product_id, quantity):
                if product_id == "P-200" and not self.failed:
                    self.failed = True
                    raise ConnectionError("catalog service unavailable")
                super().increase_stock(product_id, quantity)

        inventory = FailOnceInventory()
        service = PayablesService(test_config, suppliers=suppliers, inventory=inventory, store=test_store)
        po = service.create_purchase_order("SUP-001", sample_items, date(2025, 1, 10),
                                           initial_status=POStatus.SENT)
        with pytest.raises(ConnectionError):
            service.receive(po.id, date(2025, 1, 1))

        with pytest.raises(InvalidTransitionError):
            service.cancel(po.id)
        with pytest.raises(InvalidTransitionError):
            service.add_item(po.id, {"product_id": "P-100", "quantity": 1, "unit_cost": "150.00"})
        assert service.get_purchase_order(po.id).total_cost == Decimal("1000.00")

        assert service.receive(po.id, date(2025, 1, 1)).purchase_order.status == POStatus.RECEIVED
        assert dict(inventory.received) == {"P-100": 4, "P-200": 2}

    @pytest.mark.slow
    def test_slow_inventory_does_not_block_payments(self, service, received_invoice, sample_items):
        class BlockingInventory:
            def __init__(self):
                self.entered = threading.Event()
                self.release = threading.Event()

            def increase_stock(self, product_id, quantity):
                self.entered.set()
                self.release.wait(timeout=10)

        inventory = BlockingInventory()
        service.purchase_orders.inventory = inventory
        other = service.create_purchase_order("SUP-002", sample_items, date(2025, 1, 10),
                                              initial_status=POStatus.SENT)

        outcome = {}

        def receive_other():
            outcome["result"] = service.receive(other.id, date(2025, 1, 2))

        worker = threading.Thread(target=receive_other)
        worker.start()
        try:
            assert inventory.entered.wait(timeout=5)

            started = time.monotonic()
            payment = service.record_payment(received_invoice.id, "10.00")
            elapsed = time.monotonic() - started

            assert payment.payment.amount == Decimal("10.00")
            assert elapsed < 2.0
            assert "result" not in outcome
        finally:
            inventory.release.set()
            worker.join(timeout=10)

        assert outcome["result"].purchase_order.status == POStatus.RECEIVED

    def test_receipt_is_audited(self, service, sent_po):
        inv = service.receive(sent_po.id, date(2025, 1, 1), actor="storekeeper").invoice
        po_actions = [e.action for e in service.get_audit_log(sent_po.id)]
        inv_entries = service.get_audit_log(inv.id)

        assert po_actions[-1] == "po_received"
        assert [e.action for e in inv_entries] == ["invoice_created"]
        assert inv_entries[0].actor == "storekeeper"
        assert inv_entries[0].detail["total_amount"] == "1160.00"


@pytest.mark.integration
class TestCsvSupplierDirectory:
    """Supplier directory loaded from CSV."""

    def test_load_suppliers_from_csv(self, sample_suppliers_csv):
        directory = CsvSupplierDirectory(sample_suppliers_csv)

        assert len(directory.suppliers) == 4
        unga = directory.resolve_supplier("SUP-001")
        assert unga.name == "Unga Millers Ltd"
        assert unga.credit_days == 30
        assert directory.resolve_supplier("SUP-002").credit_days == 7
        assert directory.resolve_supplier("SUP-003").credit_days == 0
        # Blank terms fall back to Net 30
        assert directory.resolve_supplier("SUP-004").credit_terms == "Net 30"
        assert directory.resolve_supplier("SUP-003").email is None

    def test_unknown_supplier(self, sample_suppliers_csv):
        with pytest.raises(NotFoundError):
            CsvSupplierDirectory(sample_suppliers_csv).resolve_supplier("SUP-999")

    def test_missing_file_gives_empty_directory(self, temp_dir):
        directory = CsvSupplierDirectory(temp_dir / "nope.csv")
        assert directory.suppliers == {}
