"""
Commission Records

One record per order whose confirmation earned the platform a commission.
Refunds reduce it; once the whole amount is given back the record is
REVERSED.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from . import tables
from .audit import AuditAction, AuditLog
from .errors import ConflictError, ValidationError
from .money import ZERO
from .storage import StorageInterface, StorageRecord, parse_datetime, parse_decimal


class CommissionStatus(Enum):
    RECOGNIZED = "RECOGNIZED"
    REVERSED = "REVERSED"


@dataclass
class CommissionRecord(StorageRecord):
    order_id: str
    vendor_id: str
    order_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    voucher_id: str
    status: CommissionStatus = CommissionStatus.RECOGNIZED
    reversed_amount: Decimal = ZERO
    recognized_at: Optional[datetime] = None
    reversal_voucher_ids: List[str] = field(default_factory=list)

    @property
    def outstanding(self) -> Decimal:
        return self.commission_amount - self.reversed_amount

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommissionRecord':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            order_id=data['order_id'],
            vendor_id=data['vendor_id'],
            order_amount=parse_decimal(data['order_amount']),
            commission_rate=parse_decimal(data['commission_rate']),
            commission_amount=parse_decimal(data['commission_amount']),
            voucher_id=data['voucher_id'],
            status=CommissionStatus(data['status']),
            reversed_amount=parse_decimal(data.get('reversed_amount', '0')),
            recognized_at=parse_datetime(data.get('recognized_at')),
            reversal_voucher_ids=list(data.get('reversal_voucher_ids') or []),
        )


class CommissionBook:
    """Stores commission records; writes join the caller's transaction"""

    def __init__(self, storage: StorageInterface, audit_log: AuditLog):
        self.storage = storage
        self.audit_log = audit_log
        self.table_name = tables.COMMISSION_RECORDS

    def recognize(
        self,
        order_id: str,
        vendor_id: str,
        order_amount: Decimal,
        commission_rate: Decimal,
        commission_amount: Decimal,
        voucher_id: str,
        actor: str
    ) -> CommissionRecord:
        if self.find_for_order(order_id, vendor_id):
            raise ConflictError(f"Commission already recognized for order {order_id}")

        now = datetime.now(timezone.utc)
        record = CommissionRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            order_id=order_id,
            vendor_id=vendor_id,
            order_amount=order_amount,
            commission_rate=commission_rate,
            commission_amount=commission_amount,
            voucher_id=voucher_id,
            recognized_at=now,
        )
        with self.storage.atomic():
            self.storage.save(self.table_name, record.id, record.to_dict())
            self.audit_log.record(
                AuditAction.CREATE, self.table_name, record.id, actor,
                after=record.to_dict()
            )
        return record

    def apply_reversal(
        self,
        order_id: str,
        vendor_id: str,
        amount: Decimal,
        voucher_id: str,
        actor: str
    ) -> Optional[CommissionRecord]:
        """
        Give back part or all of an order's commission.

        Returns None when the order never had a commission recorded.
        """
        record = self.find_for_order(order_id, vendor_id)
        if not record:
            return None
        if amount > record.outstanding:
            raise ValidationError(
                f"Commission reversal {amount} exceeds outstanding commission {record.outstanding} for order {order_id}"
            )

        before = record.to_dict()
        record.reversed_amount += amount
        record.reversal_voucher_ids.append(voucher_id)
        if record.outstanding == ZERO:
            record.status = CommissionStatus.REVERSED
        record.updated_at = datetime.now(timezone.utc)

        with self.storage.atomic():
            self.storage.save(self.table_name, record.id, record.to_dict())
            self.audit_log.record(
                AuditAction.UPDATE, self.table_name, record.id, actor,
                before=before, after=record.to_dict()
            )
        return record

    def find_for_order(self, order_id: str, vendor_id: str) -> Optional[CommissionRecord]:
        found = self.storage.find(self.table_name, {"order_id": order_id, "vendor_id": vendor_id})
        if found:
            return CommissionRecord.from_dict(found[0])
        return None

    def get_commission_records(
        self,
        vendor_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> List[CommissionRecord]:
        filters: Dict[str, Any] = {}
        if vendor_id:
            filters['vendor_id'] = vendor_id
        if order_id:
            filters['order_id'] = order_id
        records = [CommissionRecord.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        records.sort(key=lambda r: r.created_at)
        return records
