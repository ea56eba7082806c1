"""
Test suite for the auto-voucher engine

Each marketplace event is booked against provisioned platform and vendor
accounts; failures must leave nothing behind.
"""

from decimal import Decimal

import pytest

from marketplace_ledger import tables
from marketplace_ledger.accounts import WellKnownAccount
from marketplace_ledger.autovoucher import (
    HANDLERS, GatewayTransactionStatus, OrderConfirmedPayload, parse_event_type
)
from marketplace_ledger.commissions import CommissionStatus
from marketplace_ledger.errors import ConflictError, NotFoundError, ValidationError
from marketplace_ledger.events import AutoVoucherEvent
from marketplace_ledger.vouchers import VoucherStatus, VoucherType

from tests.helpers import ADMIN, ENTRY_DATE, VENDOR_1, VENDOR_2


def order_confirmed(**overrides):
    payload = {
        "order_id": 501,
        "vendor_id": "vendor-1",
        "customer_id": "c-9",
        "amount": "1000",
        "commission_rate": "10",
        "occurred_on": ENTRY_DATE,
    }
    payload.update(overrides)
    return payload


def lines_of(system, voucher):
    return [
        (system.chart.get_account(e.account_id).system_key, e.debit_amount, e.credit_amount)
        for e in system.vouchers.get_ledger_entries(voucher.id)
    ]


class TestEventRegistry:

    def test_every_event_has_a_handler(self):
        assert set(HANDLERS) == set(AutoVoucherEvent)

    def test_parse_event_type(self):
        assert parse_event_type("order_confirmed") == AutoVoucherEvent.ORDER_CONFIRMED
        assert parse_event_type(AutoVoucherEvent.VENDOR_PAYOUT) == AutoVoucherEvent.VENDOR_PAYOUT

    def test_unknown_event(self, provisioned):
        with pytest.raises(ValidationError, match="Unsupported event type"):
            provisioned.auto_vouchers.create_auto_voucher("ORDER_SHIPPED", {})


class TestOrderConfirmed:

    def test_sales_and_commission_vouchers(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            AutoVoucherEvent.ORDER_CONFIRMED, order_confirmed()
        )

        sales, commission = result.vouchers
        assert sales.entity == VENDOR_1
        assert sales.voucher_type == VoucherType.SALES
        assert sales.voucher_number == "SAL25030001"
        assert sales.status == VoucherStatus.POSTED
        assert sales.is_auto
        assert sales.event_type == AutoVoucherEvent.ORDER_CONFIRMED
        assert sales.created_by == "system"
        assert sales.reference_type == "order"
        assert sales.reference_id == "501"
        assert lines_of(provisioned, sales) == [
            ("CUSTOMER_RECEIVABLE", Decimal("1000"), Decimal("0")),
            ("SALES", Decimal("0"), Decimal("1000")),
        ]

        assert commission.entity == ADMIN
        assert commission.voucher_number == "COM25030001"
        assert lines_of(provisioned, commission) == [
            ("COMMISSION_RECEIVABLE", Decimal("100.00"), Decimal("0")),
            ("COMMISSION_INCOME", Decimal("0"), Decimal("100.00")),
        ]

        record = result.commission_record
        assert record.commission_amount == Decimal("100.00")
        assert record.status == CommissionStatus.RECOGNIZED
        assert record.voucher_id == commission.id
        assert provisioned.auto_vouchers.get_commission_records(vendor_id="vendor-1") == [record]

    def test_explicit_commission_amount(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "ORDER_CONFIRMED", order_confirmed(commission_amount="75.50")
        )
        assert result.vouchers[1].total_debit == Decimal("75.50")

    def test_zero_commission_skips_commission_voucher(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "ORDER_CONFIRMED", order_confirmed(commission_rate="0")
        )
        assert [v.voucher_type for v in result.vouchers] == [VoucherType.SALES]
        assert result.commission_record is None

    def test_updates_vendor_payable_cache(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        payable = provisioned.payables.get_payable("vendor-1")
        assert payable.total_sales == Decimal("1000")
        assert payable.total_orders == 1
        assert payable.balance == Decimal("1000")

    def test_payload_model_instance_accepted(self, provisioned):
        payload = OrderConfirmedPayload(**order_confirmed())
        result = provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", payload, actor="ops")
        assert result.vouchers[0].created_by == "ops"

    def test_float_amount_rejected(self, provisioned):
        with pytest.raises(ValidationError, match="Invalid ORDER_CONFIRMED payload") as exc_info:
            provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed(amount=1000.0))

        assert exc_info.value.details["errors"][0]["loc"] == "amount"
        assert provisioned.storage.count(tables.VOUCHERS) == 0

    @pytest.mark.parametrize("overrides", [
        {"amount": "0"},
        {"commission_rate": "101"},
        {"commission_amount": "2000"},
        {"order_id": ""},
    ])
    def test_invalid_payloads(self, provisioned, overrides):
        with pytest.raises(ValidationError):
            provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed(**overrides))

    def test_missing_accounts_are_not_created(self, system):
        system.chart.provision_admin_accounts("admin")

        with pytest.raises(NotFoundError, match="CUSTOMER_RECEIVABLE"):
            system.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        assert system.chart.list_accounts(VENDOR_1) == []
        assert system.storage.count(tables.VOUCHERS) == 0

    def test_duplicate_order_rolls_back_completely(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())
        vouchers = provisioned.storage.count(tables.VOUCHERS)
        entries = provisioned.storage.count(tables.LEDGER_ENTRIES)
        audit_entries = provisioned.audit_log.count_entries()

        with pytest.raises(ConflictError):
            provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        assert provisioned.storage.count(tables.VOUCHERS) == vouchers
        assert provisioned.storage.count(tables.LEDGER_ENTRIES) == entries
        assert provisioned.audit_log.count_entries() == audit_entries
        assert provisioned.payables.get_payable("vendor-1").total_orders == 1


class TestOrderDelivered:

    def test_books_nothing(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "ORDER_DELIVERED", {"order_id": "501", "vendor_id": "vendor-1", "amount": "1000"}
        )
        assert result.vouchers == []
        assert provisioned.storage.count(tables.VOUCHERS) == 0


class TestPaymentReceived:

    def payment(self, **overrides):
        payload = {
            "transaction_id": "TX1",
            "tran_ref": "REF-77",
            "order_id": "501",
            "vendor_id": "vendor-1",
            "amount": "1000",
            "gateway_fee": "20",
            "vat_amount": "3",
            "net_amount": "977",
            "occurred_on": ENTRY_DATE,
        }
        payload.update(overrides)
        return payload

    def test_receipt_voucher(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher("PAYMENT_RECEIVED", self.payment())

        (receipt,) = result.vouchers
        assert receipt.entity == ADMIN
        assert receipt.voucher_type == VoucherType.RECEIPT
        assert lines_of(provisioned, receipt) == [
            ("ADMIN_BANK", Decimal("977"), Decimal("0")),
            ("GATEWAY_CHARGES", Decimal("23"), Decimal("0")),
            ("SETTLEMENT_PAYABLE", Decimal("0"), Decimal("1000")),
        ]

        transaction = provisioned.auto_vouchers.get_gateway_transaction("TX1")
        assert transaction.status == GatewayTransactionStatus.SUCCESS
        assert transaction.payment_voucher_id == receipt.id
        assert transaction.net_amount == Decimal("977")

    def test_zero_fee_line_dropped(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "PAYMENT_RECEIVED", self.payment(gateway_fee="0", vat_amount="0", net_amount="1000")
        )
        assert [key for key, _, _ in lines_of(provisioned, result.vouchers[0])] == [
            "ADMIN_BANK", "SETTLEMENT_PAYABLE"
        ]

    def test_split_must_add_up(self, provisioned):
        with pytest.raises(ValidationError):
            provisioned.auto_vouchers.create_auto_voucher("PAYMENT_RECEIVED", self.payment(net_amount="900"))

    def test_duplicate_payment_rejected(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("PAYMENT_RECEIVED", self.payment())

        with pytest.raises(ConflictError, match="already booked"):
            provisioned.auto_vouchers.create_auto_voucher("PAYMENT_RECEIVED", self.payment())
        assert provisioned.storage.count(tables.VOUCHERS) == 1


class TestSettlementReceived:

    def settlement(self, **overrides):
        payload = {
            "batch_id": "B1",
            "batch_number": "2025-03-A",
            "settlement_date": "2025-03-20",
            "transactions": [
                {"id": "TX1", "vendor_id": "vendor-2", "amount": "500"},
                {"id": "TX2", "vendor_id": "vendor-1", "amount": "1000", "net_amount": "900"},
                {"id": "TX3", "vendor_id": "vendor-1", "amount": "100"},
            ],
        }
        payload.update(overrides)
        return payload

    def test_settlement_voucher(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher("SETTLEMENT_RECEIVED", self.settlement())

        (voucher,) = result.vouchers
        assert voucher.voucher_type == VoucherType.SETTLEMENT
        assert voucher.voucher_number == "SET25030001"

        entries = provisioned.vouchers.get_ledger_entries(voucher.id)
        payable_1 = provisioned.chart.resolve_account(ADMIN, WellKnownAccount.VENDOR_PAYABLE, "vendor-1")
        payable_2 = provisioned.chart.resolve_account(ADMIN, WellKnownAccount.VENDOR_PAYABLE, "vendor-2")
        assert [(e.account_id, e.debit_amount, e.credit_amount) for e in entries[1:]] == [
            (payable_1.id, Decimal("0"), Decimal("1000")),
            (payable_2.id, Decimal("0"), Decimal("500")),
        ]
        assert entries[0].debit_amount == Decimal("1500")

        transaction = provisioned.auto_vouchers.get_gateway_transaction("TX2")
        assert transaction.is_settled
        assert transaction.settlement_batch_id == "B1"
        assert transaction.settlement_voucher_id == voucher.id

    def test_settling_twice_conflicts(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("SETTLEMENT_RECEIVED", self.settlement())

        with pytest.raises(ConflictError, match="already settled"):
            provisioned.auto_vouchers.create_auto_voucher(
                "SETTLEMENT_RECEIVED", self.settlement(batch_id="B2")
            )
        assert provisioned.storage.count(tables.VOUCHERS) == 1

    def test_repeated_transactions_rejected(self, provisioned):
        repeated = [
            {"id": "TX1", "vendor_id": "vendor-1", "amount": "5"},
            {"id": "TX1", "vendor_id": "vendor-1", "amount": "5"},
        ]
        with pytest.raises(ValidationError):
            provisioned.auto_vouchers.create_auto_voucher(
                "SETTLEMENT_RECEIVED", self.settlement(transactions=repeated)
            )

    def test_empty_batch_rejected(self, provisioned):
        with pytest.raises(ValidationError):
            provisioned.auto_vouchers.create_auto_voucher(
                "SETTLEMENT_RECEIVED", self.settlement(transactions=[])
            )


class TestVendorPayout:

    def test_payout_books_both_sides(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "VENDOR_PAYOUT",
            {"vendor_id": "vendor-1", "amount": "300", "reference": "PO-1", "occurred_on": ENTRY_DATE}
        )

        payout, receipt = result.vouchers
        assert (payout.entity, payout.voucher_type) == (ADMIN, VoucherType.PAYOUT)
        assert lines_of(provisioned, payout) == [
            ("VENDOR_PAYABLE", Decimal("300"), Decimal("0")),
            ("ADMIN_BANK", Decimal("0"), Decimal("300")),
        ]
        assert (receipt.entity, receipt.voucher_type) == (VENDOR_1, VoucherType.RECEIPT)
        assert lines_of(provisioned, receipt) == [
            ("VENDOR_BANK", Decimal("300"), Decimal("0")),
            ("PLATFORM_RECEIVABLE", Decimal("0"), Decimal("300")),
        ]

        payable = provisioned.payables.get_payable("vendor-1")
        assert payable.total_paid == Decimal("300")
        assert payable.last_payout_at is not None

    def test_unprovisioned_vendor(self, provisioned):
        with pytest.raises(NotFoundError):
            provisioned.auto_vouchers.create_auto_voucher(
                "VENDOR_PAYOUT", {"vendor_id": "vendor-9", "amount": "1", "reference": "PO-2"}
            )
        assert provisioned.storage.count(tables.VOUCHERS) == 0


class TestRefundInitiated:

    def refund(self, **overrides):
        payload = {
            "refund_id": "R1",
            "order_id": 501,
            "vendor_id": "vendor-1",
            "refund_amount": "1000",
            "commission_reversed": "100",
            "occurred_on": ENTRY_DATE,
        }
        payload.update(overrides)
        return payload

    def test_full_refund_reverses_commission(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        result = provisioned.auto_vouchers.create_auto_voucher("REFUND_INITIATED", self.refund())

        refund, commission = result.vouchers
        assert (refund.entity, refund.voucher_type) == (VENDOR_1, VoucherType.REFUND)
        assert lines_of(provisioned, refund) == [
            ("SALES", Decimal("1000"), Decimal("0")),
            ("CUSTOMER_RECEIVABLE", Decimal("0"), Decimal("1000")),
        ]
        assert lines_of(provisioned, commission) == [
            ("COMMISSION_INCOME", Decimal("100"), Decimal("0")),
            ("COMMISSION_RECEIVABLE", Decimal("0"), Decimal("100")),
        ]

        record = result.commission_record
        assert record.status == CommissionStatus.REVERSED
        assert record.outstanding == Decimal("0")
        assert record.reversal_voucher_ids == [commission.id]

    def test_partial_refund_keeps_commission_recognized(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        result = provisioned.auto_vouchers.create_auto_voucher(
            "REFUND_INITIATED", self.refund(refund_amount="400", commission_reversed="40")
        )

        assert result.commission_record.status == CommissionStatus.RECOGNIZED
        assert result.commission_record.outstanding == Decimal("60.00")

    def test_over_reversal_rolls_back(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())
        vouchers = provisioned.storage.count(tables.VOUCHERS)

        with pytest.raises(ValidationError, match="exceeds outstanding"):
            provisioned.auto_vouchers.create_auto_voucher(
                "REFUND_INITIATED", self.refund(commission_reversed="150")
            )
        assert provisioned.storage.count(tables.VOUCHERS) == vouchers

    def test_refund_without_commission(self, provisioned):
        result = provisioned.auto_vouchers.create_auto_voucher(
            "REFUND_INITIATED", self.refund(commission_reversed="0")
        )
        assert [v.voucher_type for v in result.vouchers] == [VoucherType.REFUND]
        assert result.commission_record is None

    def test_result_serializes(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())
        data = provisioned.auto_vouchers.create_auto_voucher("REFUND_INITIATED", self.refund()).to_dict()

        assert data["event_type"] == "REFUND_INITIATED"
        assert len(data["vouchers"]) == 2
        assert data["commission_record"]["status"] == "REVERSED"


class TestEventIsolation:

    def test_other_vendor_untouched(self, provisioned):
        provisioned.auto_vouchers.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())

        assert provisioned.vouchers.list_vouchers(VENDOR_2).total == 0
        assert provisioned.payables.get_payable("vendor-2") is None

    def test_every_posting_balances_after_mixed_events(self, provisioned):
        engine = provisioned.auto_vouchers
        engine.create_auto_voucher("ORDER_CONFIRMED", order_confirmed())
        engine.create_auto_voucher("ORDER_CONFIRMED", order_confirmed(
            order_id=502, vendor_id="vendor-2", amount="333.33", commission_rate="7.5"
        ))
        engine.create_auto_voucher("PAYMENT_RECEIVED", {
            "transaction_id": "TX1", "order_id": "501", "vendor_id": "vendor-1",
            "amount": "1000", "gateway_fee": "20", "vat_amount": "3", "net_amount": "977",
            "occurred_on": ENTRY_DATE,
        })
        engine.create_auto_voucher("SETTLEMENT_RECEIVED", {
            "batch_id": "B1", "settlement_date": "2025-03-20",
            "transactions": [{"id": "TX1", "vendor_id": "vendor-1", "amount": "1000"}],
        })
        engine.create_auto_voucher("VENDOR_PAYOUT", {
            "vendor_id": "vendor-1", "amount": "250", "reference": "PO-1", "occurred_on": ENTRY_DATE,
        })
        engine.create_auto_voucher("REFUND_INITIATED", {
            "refund_id": "R1", "order_id": 501, "vendor_id": "vendor-1",
            "refund_amount": "100", "commission_reversed": "10", "occurred_on": ENTRY_DATE,
        })

        for entity in (ADMIN, VENDOR_1, VENDOR_2):
            for voucher in provisioned.vouchers.list_vouchers(entity, limit=100).data:
                entries = provisioned.vouchers.get_ledger_entries(voucher.id)
                assert sum(e.debit_amount for e in entries) == voucher.total_debit
                assert sum(e.credit_amount for e in entries) == voucher.total_credit
                assert voucher.total_debit == voucher.total_credit
            assert provisioned.reporting.trial_balance(entity).is_balanced
        assert provisioned.audit_log.verify_integrity()["valid"]
