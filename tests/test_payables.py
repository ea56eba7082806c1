"""
Tests for the vendor payable cache and its rebuild from the ledger
"""

from decimal import Decimal

import pytest

from marketplace_ledger import tables
from marketplace_ledger.audit import AuditAction
from marketplace_ledger.payables import VendorPayable
from marketplace_ledger.vouchers import VoucherType

from tests.helpers import ENTRY_DATE, VENDOR_1


def confirm_order(system, order_id, amount, vendor_id="vendor-1"):
    return system.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", {
        "order_id": order_id, "vendor_id": vendor_id, "amount": amount,
        "commission_rate": "10", "occurred_on": ENTRY_DATE,
    })


def pay_out(system, amount, reference, vendor_id="vendor-1"):
    return system.auto_vouchers.create_auto_voucher("VENDOR_PAYOUT", {
        "vendor_id": vendor_id, "amount": amount, "reference": reference, "occurred_on": ENTRY_DATE,
    })


def figures(payable):
    return (payable.total_sales, payable.total_payable, payable.total_paid, payable.balance, payable.total_orders)


@pytest.fixture
def activity(provisioned):
    confirm_order(provisioned, "1", "1000")
    second = confirm_order(provisioned, "2", "250")
    pay_out(provisioned, "300", "PO-1")
    confirm_order(provisioned, "3", "40", vendor_id="vendor-2")
    provisioned.vouchers.reverse_voucher(second.vouchers[0].id, "order cancelled", "admin")
    return provisioned


class TestIncrementalUpdates:

    def test_sales_payouts_and_reversals(self, activity):
        payable = activity.payables.get_payable("vendor-1")

        assert figures(payable) == (
            Decimal("1000"), Decimal("1000"), Decimal("300"), Decimal("700"), 1
        )
        assert payable.last_sale_at is not None
        assert payable.last_payout_at is not None
        assert payable.last_synced_at is not None

    def test_reversing_a_payout_restores_balance(self, activity):
        receipt = pay_out(activity, "100", "PO-2").vouchers[1]
        assert activity.payables.get_payable("vendor-1").balance == Decimal("600")

        reversal = activity.vouchers.reverse_voucher(receipt.id, "bounced transfer", "admin")

        assert reversal.voucher_type == VoucherType.RECEIPT
        assert activity.payables.get_payable("vendor-1").balance == Decimal("700")

    def test_reversing_a_sale_reversal_counts_the_order_again(self, provisioned):
        sale = confirm_order(provisioned, "9", "1000").vouchers[0]
        reversal = provisioned.vouchers.reverse_voucher(sale.id, "cancelled by mistake", "admin")
        cancelled = provisioned.payables.get_payable("vendor-1")
        assert (cancelled.total_sales, cancelled.total_orders) == (Decimal("0"), 0)

        provisioned.vouchers.reverse_voucher(reversal.id, "order reinstated", "admin")

        payable = provisioned.payables.get_payable("vendor-1")
        assert (payable.total_sales, payable.total_orders) == (Decimal("1000"), 1)
        rebuilt = provisioned.payables.rebuild("admin", vendor_id="vendor-1")
        assert figures(rebuilt[0]) == figures(payable)

    def test_admin_vouchers_do_not_touch_cache(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("PAYMENT_RECEIVED", {
            "transaction_id": "TX1", "order_id": "1", "amount": "10",
            "gateway_fee": "1", "net_amount": "9",
        })
        assert provisioned.payables.list_payables() == []

    def test_list_orders_by_balance(self, activity):
        assert [p.vendor_id for p in activity.payables.list_payables()] == ["vendor-1", "vendor-2"]


class TestRebuild:

    def test_rebuild_matches_incremental(self, activity):
        incremental = {p.vendor_id: figures(p) for p in activity.payables.list_payables()}

        rebuilt = activity.payables.rebuild("admin")

        assert {p.vendor_id: figures(p) for p in rebuilt} == incremental
        assert [p.vendor_id for p in rebuilt] == ["vendor-1", "vendor-2"]

    def test_rebuild_repairs_drift(self, activity):
        drifted = activity.payables.get_payable("vendor-1")
        drifted.total_paid = Decimal("0")
        drifted.balance = Decimal("999999")
        activity.storage.save(tables.VENDOR_PAYABLES, drifted.id, drifted.to_dict())

        activity.payables.rebuild("admin", vendor_id="vendor-1")

        repaired = activity.payables.get_payable("vendor-1")
        assert repaired.balance == Decimal("700")
        assert repaired.created_at == drifted.created_at

        entry = activity.audit_log.query(
            entity_name=tables.VENDOR_PAYABLES, entity_id="vendor-1", action=AuditAction.REBUILD
        ).data[0]
        assert entry.actor == "admin"
        assert entry.before["balance"] == "999999"
        assert entry.after["balance"] == "700"

    def test_rebuild_removes_rows_without_activity(self, activity):
        ghost = VendorPayable.empty("vendor-ghost")
        ghost.balance = Decimal("5")
        activity.storage.save(tables.VENDOR_PAYABLES, ghost.id, ghost.to_dict())

        activity.payables.rebuild("admin")

        assert activity.payables.get_payable("vendor-ghost") is None

    def test_single_vendor_rebuild_leaves_others(self, activity):
        other = activity.payables.get_payable("vendor-2")
        other.balance = Decimal("1")
        activity.storage.save(tables.VENDOR_PAYABLES, other.id, other.to_dict())

        rebuilt = activity.payables.rebuild("admin", vendor_id="vendor-1")

        assert [p.vendor_id for p in rebuilt] == ["vendor-1"]
        assert activity.payables.get_payable("vendor-2").balance == Decimal("1")

    def test_rebuild_from_empty_cache(self, activity):
        activity.storage.clear_table(tables.VENDOR_PAYABLES)

        activity.payables.rebuild("admin")

        assert activity.payables.get_payable("vendor-1").balance == Decimal("700")
        assert activity.vouchers.list_vouchers(VENDOR_1).total == 4
