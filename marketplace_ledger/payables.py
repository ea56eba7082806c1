"""
Vendor Payable Cache

A per-vendor convenience balance (sales earned, paid out, still owed) kept
up to date as vendor vouchers post, so dashboards do not replay the ledger on
every request. rebuild() recomputes it from the ledger when drift is
suspected.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import tables
from .access import EntityType
from .accounts import AccountClass, WellKnownAccount
from .audit import AuditAction, AuditLog
from .events import AutoVoucherEvent
from .logging_config import get_logger, log_action
from .money import ZERO
from .storage import StorageInterface, StorageRecord, parse_datetime, parse_decimal
from .vouchers import LedgerEntry, Voucher, VoucherStatus, VoucherType


@dataclass
class VendorPayable(StorageRecord):
    vendor_id: str
    total_sales: Decimal = ZERO
    total_payable: Decimal = ZERO
    total_paid: Decimal = ZERO
    balance: Decimal = ZERO
    total_orders: int = 0
    last_sale_at: Optional[datetime] = None
    last_payout_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def empty(cls, vendor_id: str) -> 'VendorPayable':
        now = datetime.now(timezone.utc)
        return cls(id=vendor_id, created_at=now, updated_at=now, vendor_id=vendor_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VendorPayable':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            vendor_id=data['vendor_id'],
            total_sales=parse_decimal(data['total_sales']),
            total_payable=parse_decimal(data['total_payable']),
            total_paid=parse_decimal(data['total_paid']),
            balance=parse_decimal(data['balance']),
            total_orders=data['total_orders'],
            last_sale_at=parse_datetime(data.get('last_sale_at')),
            last_payout_at=parse_datetime(data.get('last_payout_at')),
            last_synced_at=parse_datetime(data.get('last_synced_at')),
        )


@dataclass
class PayableDelta:
    sales: Decimal = ZERO
    orders: int = 0
    paid: Decimal = ZERO
    sale_at: Optional[datetime] = None
    payout_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.sales == ZERO and self.orders == 0 and self.paid == ZERO


class VendorPayableCache:
    """
    Maintains VendorPayable rows.

    account_lookup maps an account id to its Account; it is the chart of
    accounts' get_account in production.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_log: AuditLog,
        account_lookup: Callable[[str], Any]
    ):
        self.storage = storage
        self.audit_log = audit_log
        self.account_lookup = account_lookup
        self.table_name = tables.VENDOR_PAYABLES
        self.logger = get_logger("ledger.payables")

    def compute_delta(self, voucher, entries: Iterable) -> PayableDelta:
        """
        Effect of one posted vendor voucher on the cache.

        SALES vouchers move sales by the net credit on income accounts and
        count one order in the same direction. Vouchers raised by a
        vendor payout move the paid total by the net debit on the vendor's
        bank account, so reversing a payout undoes it.
        """
        delta = PayableDelta()
        if voucher.entity_type != EntityType.VENDOR:
            return delta

        accounts: Dict[str, Any] = {}

        def account_of(entry):
            if entry.account_id not in accounts:
                accounts[entry.account_id] = self.account_lookup(entry.account_id)
            return accounts[entry.account_id]

        if voucher.voucher_type == VoucherType.SALES:
            for entry in entries:
                account = account_of(entry)
                if account and account.account_class == AccountClass.INCOME:
                    delta.sales += entry.credit_amount - entry.debit_amount
            if delta.sales > ZERO:
                delta.orders = 1
                delta.sale_at = voucher.posting_date
            elif delta.sales < ZERO:
                delta.orders = -1

        if voucher.event_type == AutoVoucherEvent.VENDOR_PAYOUT:
            for entry in entries:
                account = account_of(entry)
                if account and account.system_key == WellKnownAccount.VENDOR_BANK.name:
                    delta.paid += entry.debit_amount - entry.credit_amount
            if not voucher.reversal_of_id:
                delta.payout_at = voucher.posting_date

        return delta

    def apply_posting(self, voucher, entries: Iterable) -> Optional[VendorPayable]:
        """Fold one freshly posted voucher into its vendor's cached row"""
        delta = self.compute_delta(voucher, list(entries))
        if delta.is_empty:
            return None
        payable = self.get_payable(voucher.entity_id) or VendorPayable.empty(voucher.entity_id)
        self._apply(payable, delta)
        payable.last_synced_at = datetime.now(timezone.utc)
        payable.updated_at = payable.last_synced_at
        self.storage.save(self.table_name, payable.id, payable.to_dict())
        return payable

    def rebuild(self, actor: str, vendor_id: Optional[str] = None) -> List[VendorPayable]:
        """
        Recompute cached rows by replaying every posted vendor voucher.

        Args:
            actor: Who requested the reconciliation (audited)
            vendor_id: Limit the rebuild to one vendor

        Returns:
            The rebuilt rows, one per vendor with activity
        """
        filters: Dict[str, Any] = {"entity_type": EntityType.VENDOR.value}
        if vendor_id:
            filters["entity_id"] = vendor_id
        vouchers = [Voucher.from_dict(d) for d in self.storage.find(tables.VOUCHERS, filters)]
        vouchers = [v for v in vouchers if v.status in (VoucherStatus.POSTED, VoucherStatus.REVERSED)]
        vouchers.sort(key=lambda v: (v.posting_date or v.created_at, v.voucher_number))

        rebuilt: Dict[str, VendorPayable] = {}
        for voucher in vouchers:
            entries = [
                LedgerEntry.from_dict(d)
                for d in self.storage.find(tables.LEDGER_ENTRIES, {"voucher_id": voucher.id})
            ]
            delta = self.compute_delta(voucher, entries)
            if delta.is_empty:
                continue
            payable = rebuilt.setdefault(voucher.entity_id, VendorPayable.empty(voucher.entity_id))
            self._apply(payable, delta)

        existing = {p.vendor_id: p for p in self.list_payables()}
        if vendor_id:
            existing = {k: v for k, v in existing.items() if k == vendor_id}

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            for stale_id in set(existing) - set(rebuilt):
                self.storage.delete(self.table_name, stale_id)
                self.audit_log.record(
                    AuditAction.REBUILD, self.table_name, stale_id, actor,
                    before=existing[stale_id].to_dict()
                )
            for payable in rebuilt.values():
                previous = existing.get(payable.vendor_id)
                if previous:
                    payable.created_at = previous.created_at
                payable.last_synced_at = now
                payable.updated_at = now
                self.storage.save(self.table_name, payable.id, payable.to_dict())
                self.audit_log.record(
                    AuditAction.REBUILD, self.table_name, payable.id, actor,
                    before=previous.to_dict() if previous else None,
                    after=payable.to_dict()
                )

        log_action(
            self.logger, "info", f"Vendor payable cache rebuilt for {len(rebuilt)} vendor(s)",
            user_id=actor, action="rebuild_vendor_payables",
            resource=f"vendor_payable:{vendor_id or '*'}"
        )
        return sorted(rebuilt.values(), key=lambda p: p.vendor_id)

    def get_payable(self, vendor_id: str) -> Optional[VendorPayable]:
        data = self.storage.load(self.table_name, vendor_id)
        if data:
            return VendorPayable.from_dict(data)
        return None

    def list_payables(self) -> List[VendorPayable]:
        payables = [VendorPayable.from_dict(d) for d in self.storage.load_all(self.table_name)]
        payables.sort(key=lambda p: p.balance, reverse=True)
        return payables

    @staticmethod
    def _apply(payable: VendorPayable, delta: PayableDelta) -> None:
        payable.total_sales += delta.sales
        payable.total_payable += delta.sales
        payable.total_paid += delta.paid
        payable.balance = payable.total_payable - payable.total_paid
        payable.total_orders += delta.orders
        if delta.sale_at and (not payable.last_sale_at or delta.sale_at > payable.last_sale_at):
            payable.last_sale_at = delta.sale_at
        if delta.payout_at and (not payable.last_payout_at or delta.payout_at > payable.last_payout_at):
            payable.last_payout_at = delta.payout_at
