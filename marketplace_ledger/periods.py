"""
Accounting Periods

Non-overlapping [start_date, end_date) windows per entity. Closing a period
is recorded here; whether posting into a closed period is refused is a
configuration decision enforced by the voucher engine.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import uuid

from . import tables
from .access import EntityAccessPolicy, EntityRef, EntityType
from .audit import AuditAction, AuditLog
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime


class PeriodType(Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"


@dataclass
class AccountingPeriod(StorageRecord):
    period_name: str
    period_type: PeriodType
    start_date: date
    end_date: date  # exclusive
    entity_type: EntityType
    entity_id: Optional[str] = None
    is_active: bool = True
    is_closed: bool = False
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None

    @property
    def entity(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    def contains(self, day: date) -> bool:
        return self.start_date <= day < self.end_date

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date < end and start < self.end_date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccountingPeriod':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            period_name=data['period_name'],
            period_type=PeriodType(data['period_type']),
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data['end_date']),
            entity_type=EntityType(data['entity_type']),
            entity_id=data.get('entity_id'),
            is_active=data.get('is_active', True),
            is_closed=data.get('is_closed', False),
            closed_at=parse_datetime(data.get('closed_at')),
            closed_by=data.get('closed_by'),
        )


NetProfitFn = Callable[[EntityRef, date, date], Decimal]


class PeriodManager:
    """Creates, closes and looks up accounting periods"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_log: AuditLog,
        access_policy: EntityAccessPolicy,
        net_profit_fn: Optional[NetProfitFn] = None
    ):
        self.storage = storage
        self.audit_log = audit_log
        self.access_policy = access_policy
        # Wired by the composition root once the reporting engine exists
        self.net_profit_fn = net_profit_fn
        self.table_name = tables.PERIODS
        self.logger = get_logger("ledger.periods")

    def create_period(
        self,
        entity: EntityRef,
        period_name: str,
        start_date: date,
        end_date: date,
        actor: str,
        period_type: PeriodType = PeriodType.MONTHLY
    ) -> AccountingPeriod:
        """
        Open a new period for an entity

        Raises:
            ValidationError: If start_date is not before end_date
            ConflictError: If the window overlaps an existing period of the entity
        """
        self.access_policy.ensure_access(entity, actor)
        if start_date >= end_date:
            raise ValidationError("Period start_date must be before end_date")

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            for existing in self.list_periods(entity):
                if existing.overlaps(start_date, end_date):
                    raise ConflictError(
                        f"Period overlaps with existing period {existing.period_name}",
                        details={"period_id": existing.id}
                    )

            period = AccountingPeriod(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                period_name=period_name,
                period_type=period_type,
                start_date=start_date,
                end_date=end_date,
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
            )
            self.storage.save(self.table_name, period.id, period.to_dict())
            self.audit_log.record(
                AuditAction.CREATE, self.table_name, period.id, actor,
                after=period.to_dict()
            )

        log_action(
            self.logger, "info", f"Accounting period created: {period_name}",
            user_id=actor, action="create_period", resource=f"period:{period.id}",
            extra={"entity": str(entity), "start": start_date.isoformat(), "end": end_date.isoformat()}
        )
        return period

    def close_period(self, period_id: str, actor: str) -> AccountingPeriod:
        period = self.get_period(period_id)
        if not period:
            raise NotFoundError(f"Period {period_id} not found")
        if period.is_closed:
            raise InvalidStateError(f"Period {period.period_name} already closed")

        self.access_policy.ensure_access(period.entity, actor)

        before = period.to_dict()
        now = datetime.now(timezone.utc)
        period.is_closed = True
        period.closed_at = now
        period.closed_by = actor
        period.updated_at = now

        after = period.to_dict()
        if self.net_profit_fn:
            last_day = period.end_date - timedelta(days=1)
            after['net_profit'] = str(self.net_profit_fn(period.entity, period.start_date, last_day))

        with self.storage.atomic():
            if not self.storage.compare_and_set(self.table_name, period.id, {"is_closed": False}, period.to_dict()):
                raise InvalidStateError(f"Period {period.period_name} already closed")
            self.audit_log.record(
                AuditAction.CLOSE, self.table_name, period.id, actor,
                before=before, after=after
            )

        log_action(
            self.logger, "info", f"Accounting period closed: {period.period_name}",
            user_id=actor, action="close_period", resource=f"period:{period.id}"
        )
        return period

    def get_period(self, period_id: str) -> Optional[AccountingPeriod]:
        data = self.storage.load(self.table_name, period_id)
        if data:
            return AccountingPeriod.from_dict(data)
        return None

    def list_periods(self, entity: EntityRef) -> List[AccountingPeriod]:
        periods = [AccountingPeriod.from_dict(d) for d in self.storage.find(self.table_name, entity.filters())]
        periods.sort(key=lambda p: p.start_date)
        return periods

    def find_period(self, entity: EntityRef, day: date) -> Optional[AccountingPeriod]:
        for period in self.list_periods(entity):
            if period.contains(day):
                return period
        return None

    def is_date_closed(self, entity: EntityRef, day: date) -> bool:
        period = self.find_period(entity, day)
        return bool(period and period.is_closed)
