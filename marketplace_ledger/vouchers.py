"""
Voucher Engine

Double-entry vouchers and their state machine:

    DRAFT -> POSTED -> REVERSED
    DRAFT -> CANCELLED

LOCKED is a flag on POSTED admin vouchers that blocks reversal. Posting
turns draft entries into immutable ledger entries; a correction is always a
new reversing voucher, never an edit.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import uuid

from . import tables
from .access import EntityAccessPolicy, EntityRef, EntityType
from .accounts import ChartOfAccounts
from .audit import AuditAction, AuditLog
from .config import ClosedPeriodPolicy, LedgerConfig, get_config
from .errors import (
    InvalidStateError, LedgerError, LockedError, MalformedEntryError,
    NotFoundError, PeriodClosedError, UnbalancedVoucherError, ValidationError,
    ZeroAmountError
)
from .events import AutoVoucherEvent
from .logging_config import get_logger, log_action
from .money import ZERO, to_amount
from .pagination import Page, normalize_paging, paginate
from .periods import PeriodManager
from .storage import (
    StorageInterface, StorageRecord, parse_date, parse_datetime, parse_decimal
)


class VoucherType(Enum):
    """Kinds of vouchers; the number prefix is the first three letters"""
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    RECEIPT = "RECEIPT"
    PAYMENT = "PAYMENT"
    JOURNAL = "JOURNAL"
    CONTRA = "CONTRA"
    PAYOUT = "PAYOUT"
    REFUND = "REFUND"
    COMMISSION = "COMMISSION"
    SETTLEMENT = "SETTLEMENT"

    @property
    def prefix(self) -> str:
        return self.value[:3]


class VoucherStatus(Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"
    CANCELLED = "CANCELLED"


@dataclass
class EntryLine:
    """
    One requested debit or credit line of a new voucher.
    Exactly one of debit_amount / credit_amount must be non-zero.
    """
    account_id: str
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def debit(cls, account_id: str, amount: Any, description: Optional[str] = None, **tags) -> 'EntryLine':
        return cls(account_id=account_id, debit_amount=amount, description=description, **tags)

    @classmethod
    def credit(cls, account_id: str, amount: Any, description: Optional[str] = None, **tags) -> 'EntryLine':
        return cls(account_id=account_id, credit_amount=amount, description=description, **tags)

    @property
    def is_debit(self) -> bool:
        return self.debit_amount != ZERO


@dataclass
class DraftEntry(StorageRecord):
    """A line of a DRAFT voucher; deleted when the voucher posts or is cancelled"""
    voucher_id: str
    line_number: int
    account_id: str
    debit_amount: Decimal
    credit_amount: Decimal
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DraftEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            voucher_id=data['voucher_id'],
            line_number=data['line_number'],
            account_id=data['account_id'],
            debit_amount=parse_decimal(data['debit_amount']),
            credit_amount=parse_decimal(data['credit_amount']),
            description=data.get('description'),
            reference_type=data.get('reference_type'),
            reference_id=data.get('reference_id'),
            cost_center=data.get('cost_center'),
            department=data.get('department'),
        )


@dataclass
class LedgerEntry(StorageRecord):
    """
    Immutable posting created from a draft entry. Never updated or deleted.
    sequence gives a total order for running balances.
    """
    voucher_id: str
    voucher_number: str
    voucher_type: VoucherType
    sequence: int
    line_number: int
    entry_date: date
    account_id: str
    entity_type: EntityType
    entity_id: Optional[str]
    debit_amount: Decimal
    credit_amount: Decimal
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            voucher_id=data['voucher_id'],
            voucher_number=data['voucher_number'],
            voucher_type=VoucherType(data['voucher_type']),
            sequence=data['sequence'],
            line_number=data['line_number'],
            entry_date=parse_date(data['entry_date']),
            account_id=data['account_id'],
            entity_type=EntityType(data['entity_type']),
            entity_id=data.get('entity_id'),
            debit_amount=parse_decimal(data['debit_amount']),
            credit_amount=parse_decimal(data['credit_amount']),
            description=data.get('description'),
            reference_type=data.get('reference_type'),
            reference_id=data.get('reference_id'),
            cost_center=data.get('cost_center'),
            department=data.get('department'),
        )


@dataclass
class Voucher(StorageRecord):
    """Transaction header"""
    voucher_number: str
    voucher_type: VoucherType
    entity_type: EntityType
    entity_id: Optional[str]
    voucher_date: date
    narration: str
    total_debit: Decimal
    total_credit: Decimal
    status: VoucherStatus
    created_by: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    is_auto: bool = False
    event_type: Optional[AutoVoucherEvent] = None
    posted_by: Optional[str] = None
    posting_date: Optional[datetime] = None
    is_locked: bool = False
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    is_reversed: bool = False
    reversed_by_id: Optional[str] = None
    reversal_of_id: Optional[str] = None
    reversal_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    @property
    def entity(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Voucher':
        event_type = data.get('event_type')
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            voucher_number=data['voucher_number'],
            voucher_type=VoucherType(data['voucher_type']),
            entity_type=EntityType(data['entity_type']),
            entity_id=data.get('entity_id'),
            voucher_date=parse_date(data['voucher_date']),
            narration=data['narration'],
            total_debit=parse_decimal(data['total_debit']),
            total_credit=parse_decimal(data['total_credit']),
            status=VoucherStatus(data['status']),
            created_by=data['created_by'],
            reference_type=data.get('reference_type'),
            reference_id=data.get('reference_id'),
            is_auto=data.get('is_auto', False),
            event_type=AutoVoucherEvent(event_type) if event_type else None,
            posted_by=data.get('posted_by'),
            posting_date=parse_datetime(data.get('posting_date')),
            is_locked=data.get('is_locked', False),
            locked_by=data.get('locked_by'),
            locked_at=parse_datetime(data.get('locked_at')),
            is_reversed=data.get('is_reversed', False),
            reversed_by_id=data.get('reversed_by_id'),
            reversal_of_id=data.get('reversal_of_id'),
            reversal_reason=data.get('reversal_reason'),
            cancelled_by=data.get('cancelled_by'),
            cancelled_at=parse_datetime(data.get('cancelled_at')),
            cancel_reason=data.get('cancel_reason'),
        )


@dataclass
class VoucherSnapshot:
    """Voucher header with its lines, as returned to callers and audited"""
    voucher: Voucher
    entries: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.voucher.to_dict()
        data['entries'] = [e.to_dict() for e in self.entries]
        return data


class VoucherEngine:
    """
    Creates, posts, locks, reverses and cancels vouchers.

    Every mutating operation validates first and then runs as a single
    storage.atomic() block, so a failure never leaves a POSTED voucher
    without its ledger entries or orphaned draft entries.
    """

    def __init__(
        self,
        storage: StorageInterface,
        chart: ChartOfAccounts,
        audit_log: AuditLog,
        access_policy: EntityAccessPolicy,
        periods: PeriodManager,
        payables=None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.chart = chart
        self.audit_log = audit_log
        self.access_policy = access_policy
        self.periods = periods
        self.payables = payables
        self.config = config or get_config()
        self.table_name = tables.VOUCHERS
        self.logger = get_logger("ledger.vouchers")

    def create_voucher(
        self,
        entity: EntityRef,
        voucher_type: VoucherType,
        voucher_date: date,
        narration: str,
        lines: List[EntryLine],
        actor: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        is_auto: bool = False,
        event_type: Optional[AutoVoucherEvent] = None,
        reversal_of_id: Optional[str] = None
    ) -> Voucher:
        """
        Create a DRAFT voucher with its entries

        Args:
            entity: Owner of the books the voucher belongs to
            voucher_type: Kind of voucher, drives the number prefix
            voucher_date: Accounting date; its month scopes the number sequence
            narration: Free text description
            lines: Debit and credit lines, which must balance
            actor: Who is creating the voucher
            is_auto: Voucher raised by the auto-voucher engine
            event_type: Business event behind an automatic voucher

        Returns:
            Created Voucher in DRAFT status

        Raises:
            AccessDeniedError: If the actor may not modify the entity's books
            UnbalancedVoucherError: If debits and credits differ
            ZeroAmountError: If the voucher total is zero
            MalformedEntryError: If a line is negative, two-sided or empty,
                or its account is inactive or belongs to another entity
            NotFoundError: If a line references an unknown account
        """
        try:
            self.access_policy.ensure_access(entity, actor)
            lines = self._validate_lines(entity, lines)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Voucher rejected: {e.message}",
                user_id=actor, action="create_voucher", resource=f"entity:{entity}",
                extra={"kind": e.kind}
            )
            raise

        total = sum((line.debit_amount for line in lines), ZERO)
        now = datetime.now(timezone.utc)
        voucher_id = str(uuid.uuid4())

        with self.storage.atomic():
            voucher = Voucher(
                id=voucher_id,
                created_at=now,
                updated_at=now,
                voucher_number=self._generate_number(entity, voucher_type, voucher_date),
                voucher_type=voucher_type,
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
                voucher_date=voucher_date,
                narration=narration or "",
                total_debit=total,
                total_credit=total,
                status=VoucherStatus.DRAFT,
                created_by=actor,
                reference_type=reference_type,
                reference_id=reference_id,
                is_auto=is_auto,
                event_type=event_type,
                reversal_of_id=reversal_of_id,
            )
            self._save_voucher(voucher)

            drafts = []
            for line_number, line in enumerate(lines, start=1):
                draft = DraftEntry(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    voucher_id=voucher_id,
                    line_number=line_number,
                    account_id=line.account_id,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    description=line.description,
                    reference_type=line.reference_type,
                    reference_id=line.reference_id,
                    cost_center=line.cost_center,
                    department=line.department,
                )
                self.storage.save(tables.DRAFT_ENTRIES, draft.id, draft.to_dict())
                drafts.append(draft)

            self.audit_log.record(
                AuditAction.CREATE, self.table_name, voucher.id, actor,
                after=VoucherSnapshot(voucher, drafts).to_dict()
            )

        log_action(
            self.logger, "info", f"Voucher created: {voucher.voucher_number}",
            user_id=actor, action="create_voucher", resource=f"voucher:{voucher.id}",
            extra={"entity": str(entity), "type": voucher_type.value, "total": str(total)}
        )
        return voucher

    def post_voucher(self, voucher_id: str, actor: str) -> Voucher:
        """
        Post a DRAFT voucher: materialize one ledger entry per draft entry,
        delete the drafts and mark the voucher POSTED, all at once.

        Raises:
            NotFoundError: Unknown voucher
            InvalidStateError: Voucher is not DRAFT (including a concurrent post)
            LockedError: Voucher is locked
            PeriodClosedError: Voucher date is in a closed period and the
                closed-period policy is "reject"
        """
        voucher = self._require_voucher(voucher_id)
        try:
            if voucher.status != VoucherStatus.DRAFT:
                raise InvalidStateError(
                    f"Voucher {voucher.voucher_number} is {voucher.status.value}, only DRAFT vouchers can be posted"
                )
            if voucher.is_locked:
                raise LockedError(f"Voucher {voucher.voucher_number} is locked")
            self.access_policy.ensure_access(voucher.entity, actor)
            self._check_period(voucher, actor)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Post rejected: {e.message}",
                user_id=actor, action="post_voucher", resource=f"voucher:{voucher_id}",
                extra={"kind": e.kind}
            )
            raise

        before = voucher.to_dict()
        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            drafts = self._load_drafts(voucher.id)
            if not drafts:
                raise InvalidStateError(f"Voucher {voucher.voucher_number} has no entries to post")

            voucher.status = VoucherStatus.POSTED
            voucher.posted_by = actor
            voucher.posting_date = now
            voucher.updated_at = now
            if not self.storage.compare_and_set(
                self.table_name, voucher.id, {"status": VoucherStatus.DRAFT.value}, voucher.to_dict()
            ):
                raise InvalidStateError(f"Voucher {voucher.voucher_number} is no longer DRAFT")

            entries = []
            for draft in drafts:
                entry = LedgerEntry(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    voucher_id=voucher.id,
                    voucher_number=voucher.voucher_number,
                    voucher_type=voucher.voucher_type,
                    sequence=self.storage.next_sequence(tables.LEDGER_ENTRIES),
                    line_number=draft.line_number,
                    entry_date=voucher.voucher_date,
                    account_id=draft.account_id,
                    entity_type=voucher.entity_type,
                    entity_id=voucher.entity_id,
                    debit_amount=draft.debit_amount,
                    credit_amount=draft.credit_amount,
                    description=draft.description,
                    reference_type=draft.reference_type,
                    reference_id=draft.reference_id,
                    cost_center=draft.cost_center,
                    department=draft.department,
                )
                self.storage.save(tables.LEDGER_ENTRIES, entry.id, entry.to_dict())
                self.storage.delete(tables.DRAFT_ENTRIES, draft.id)
                entries.append(entry)

            if self.payables is not None and voucher.entity_type == EntityType.VENDOR:
                self.payables.apply_posting(voucher, entries)

            self.audit_log.record(
                AuditAction.POST, self.table_name, voucher.id, actor,
                before=before, after=VoucherSnapshot(voucher, entries).to_dict()
            )

        log_action(
            self.logger, "info", f"Voucher posted: {voucher.voucher_number}",
            user_id=actor, action="post_voucher", resource=f"voucher:{voucher.id}",
            extra={"entries": len(entries), "total": str(voucher.total_debit)}
        )
        return voucher

    def lock_voucher(self, voucher_id: str, actor: str) -> Voucher:
        """Lock a POSTED, manual, admin voucher against reversal"""
        voucher = self._require_voucher(voucher_id)
        try:
            if voucher.is_locked:
                raise LockedError(f"Voucher {voucher.voucher_number} is already locked")
            if voucher.status != VoucherStatus.POSTED:
                raise InvalidStateError(f"Only POSTED vouchers can be locked, {voucher.voucher_number} is {voucher.status.value}")
            if voucher.entity_type != EntityType.ADMIN:
                raise InvalidStateError("Only admin vouchers can be locked")
            if voucher.is_auto:
                raise InvalidStateError("Auto-generated vouchers cannot be locked")
            self.access_policy.ensure_access(voucher.entity, actor)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Lock rejected: {e.message}",
                user_id=actor, action="lock_voucher", resource=f"voucher:{voucher_id}",
                extra={"kind": e.kind}
            )
            raise

        before = voucher.to_dict()
        now = datetime.now(timezone.utc)
        voucher.is_locked = True
        voucher.locked_by = actor
        voucher.locked_at = now
        voucher.updated_at = now

        with self.storage.atomic():
            if not self.storage.compare_and_set(
                self.table_name, voucher.id,
                {"status": VoucherStatus.POSTED.value, "is_locked": False},
                voucher.to_dict()
            ):
                raise LockedError(f"Voucher {voucher.voucher_number} changed state while locking")
            self.audit_log.record(
                AuditAction.LOCK, self.table_name, voucher.id, actor,
                before=before, after=voucher.to_dict()
            )

        log_action(
            self.logger, "info", f"Voucher locked: {voucher.voucher_number}",
            user_id=actor, action="lock_voucher", resource=f"voucher:{voucher.id}"
        )
        return voucher

    def reverse_voucher(
        self,
        voucher_id: str,
        reason: str,
        actor: str,
        reversal_date: Optional[date] = None
    ) -> Voucher:
        """
        Reverse a posted voucher by posting an offsetting one

        Args:
            voucher_id: ID of the voucher to reverse
            reason: Why the voucher is reversed, kept in the narration
            actor: Who is reversing
            reversal_date: Accounting date of the reversal (default today)

        Returns:
            The posted reversal voucher

        Raises:
            NotFoundError: Unknown voucher
            LockedError: Voucher is locked
            InvalidStateError: Voucher is not POSTED or already reversed
        """
        voucher = self._require_voucher(voucher_id)
        try:
            if not reason or not reason.strip():
                raise ValidationError("Reversal reason is required")
            if voucher.is_locked:
                raise LockedError(f"Voucher {voucher.voucher_number} is locked and cannot be reversed")
            if voucher.is_reversed or voucher.status == VoucherStatus.REVERSED:
                raise InvalidStateError(f"Voucher {voucher.voucher_number} is already reversed")
            if voucher.status != VoucherStatus.POSTED:
                raise InvalidStateError(f"Only POSTED vouchers can be reversed, {voucher.voucher_number} is {voucher.status.value}")
            self.access_policy.ensure_access(voucher.entity, actor)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Reversal rejected: {e.message}",
                user_id=actor, action="reverse_voucher", resource=f"voucher:{voucher_id}",
                extra={"kind": e.kind}
            )
            raise

        # Flip debits and credits
        description = f"Reversal of {voucher.voucher_number}"
        reversing_lines = [
            EntryLine(
                account_id=entry.account_id,
                debit_amount=entry.credit_amount,
                credit_amount=entry.debit_amount,
                description=description,
                reference_type=entry.reference_type,
                reference_id=entry.reference_id,
                cost_center=entry.cost_center,
                department=entry.department,
            )
            for entry in self.get_ledger_entries(voucher.id)
        ]

        before = voucher.to_dict()
        with self.storage.atomic():
            reversal = self.create_voucher(
                entity=voucher.entity,
                voucher_type=voucher.voucher_type,
                voucher_date=reversal_date or date.today(),
                narration=f"REVERSAL: {voucher.narration} ({reason})",
                lines=reversing_lines,
                actor=actor,
                reference_type=voucher.reference_type,
                reference_id=voucher.reference_id,
                event_type=voucher.event_type,
                reversal_of_id=voucher.id,
            )
            reversal = self.post_voucher(reversal.id, actor)

            now = datetime.now(timezone.utc)
            voucher.status = VoucherStatus.REVERSED
            voucher.is_reversed = True
            voucher.reversed_by_id = reversal.id
            voucher.reversal_reason = reason
            voucher.updated_at = now
            if not self.storage.compare_and_set(
                self.table_name, voucher.id,
                {"status": VoucherStatus.POSTED.value, "is_locked": False},
                voucher.to_dict()
            ):
                raise InvalidStateError(f"Voucher {voucher.voucher_number} changed state while reversing")

            self.audit_log.record(
                AuditAction.REVERSE, self.table_name, voucher.id, actor,
                before=before, after=dict(voucher.to_dict(), reason=reason)
            )

        log_action(
            self.logger, "info", f"Voucher reversed: {voucher.voucher_number} by {reversal.voucher_number}",
            user_id=actor, action="reverse_voucher", resource=f"voucher:{voucher.id}",
            extra={"reversal_id": reversal.id, "reason": reason}
        )
        return reversal

    def cancel_voucher(self, voucher_id: str, reason: str, actor: str) -> Voucher:
        """Cancel a manual DRAFT voucher; its draft entries are discarded"""
        voucher = self._require_voucher(voucher_id)
        try:
            if voucher.is_auto:
                raise InvalidStateError("Auto-generated vouchers cannot be cancelled")
            if voucher.status == VoucherStatus.CANCELLED:
                raise InvalidStateError(f"Voucher {voucher.voucher_number} is already cancelled")
            if voucher.status != VoucherStatus.DRAFT:
                raise InvalidStateError(f"Only DRAFT vouchers can be cancelled, {voucher.voucher_number} is {voucher.status.value}")
            self.access_policy.ensure_access(voucher.entity, actor)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Cancel rejected: {e.message}",
                user_id=actor, action="cancel_voucher", resource=f"voucher:{voucher_id}",
                extra={"kind": e.kind}
            )
            raise

        drafts = self._load_drafts(voucher.id)
        before = VoucherSnapshot(voucher, drafts).to_dict()
        now = datetime.now(timezone.utc)
        voucher.status = VoucherStatus.CANCELLED
        voucher.cancelled_by = actor
        voucher.cancelled_at = now
        voucher.cancel_reason = reason
        voucher.updated_at = now

        with self.storage.atomic():
            if not self.storage.compare_and_set(
                self.table_name, voucher.id, {"status": VoucherStatus.DRAFT.value}, voucher.to_dict()
            ):
                raise InvalidStateError(f"Voucher {voucher.voucher_number} is no longer DRAFT")
            for draft in drafts:
                self.storage.delete(tables.DRAFT_ENTRIES, draft.id)
            self.audit_log.record(
                AuditAction.CANCEL, self.table_name, voucher.id, actor,
                before=before, after=voucher.to_dict()
            )

        log_action(
            self.logger, "info", f"Voucher cancelled: {voucher.voucher_number}",
            user_id=actor, action="cancel_voucher", resource=f"voucher:{voucher.id}",
            extra={"reason": reason}
        )
        return voucher

    def get_voucher(self, voucher_id: str) -> Optional[Voucher]:
        data = self.storage.load(self.table_name, voucher_id)
        if data:
            return Voucher.from_dict(data)
        return None

    def get_voucher_entries(self, voucher_id: str) -> List[Any]:
        """Draft entries while the voucher is DRAFT, ledger entries once posted"""
        voucher = self._require_voucher(voucher_id)
        if voucher.status == VoucherStatus.DRAFT:
            return self._load_drafts(voucher_id)
        return self.get_ledger_entries(voucher_id)

    def get_ledger_entries(self, voucher_id: str) -> List[LedgerEntry]:
        entries = [
            LedgerEntry.from_dict(d)
            for d in self.storage.find(tables.LEDGER_ENTRIES, {"voucher_id": voucher_id})
        ]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def list_vouchers(
        self,
        entity: EntityRef,
        voucher_type: Optional[VoucherType] = None,
        status: Optional[VoucherStatus] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Page[Voucher]:
        """Vouchers of an entity, newest voucher date first"""
        page, limit = normalize_paging(
            page, limit, self.config.default_page_limit, self.config.max_page_limit
        )
        if start and end and start > end:
            raise ValidationError("start must not be after end")

        filters = entity.filters()
        if voucher_type:
            filters['voucher_type'] = voucher_type.value
        if status:
            filters['status'] = status.value
        if reference_type:
            filters['reference_type'] = reference_type
        if reference_id:
            filters['reference_id'] = reference_id

        vouchers = [Voucher.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start:
            vouchers = [v for v in vouchers if v.voucher_date >= start]
        if end:
            vouchers = [v for v in vouchers if v.voucher_date <= end]
        vouchers.sort(key=lambda v: (v.voucher_date, v.created_at, v.voucher_number), reverse=True)
        return paginate(vouchers, page, limit)

    def _validate_lines(self, entity: EntityRef, lines: Iterable[EntryLine]) -> List[EntryLine]:
        """Normalize amounts and check the entry set; raises before any write"""
        lines = list(lines or [])
        if not lines:
            raise MalformedEntryError("Voucher requires at least one entry")

        normalized = []
        for position, line in enumerate(lines, start=1):
            debit = to_amount(line.debit_amount, f"entries[{position}].debit_amount")
            credit = to_amount(line.credit_amount, f"entries[{position}].credit_amount")
            if debit < ZERO or credit < ZERO:
                raise MalformedEntryError(f"Entry {position} has a negative amount")
            if debit != ZERO and credit != ZERO:
                raise MalformedEntryError(f"Entry {position} cannot have both debit and credit amounts")
            normalized.append(EntryLine(
                account_id=line.account_id,
                debit_amount=debit,
                credit_amount=credit,
                description=line.description,
                reference_type=line.reference_type,
                reference_id=line.reference_id,
                cost_center=line.cost_center,
                department=line.department,
            ))

        total_debit = sum((line.debit_amount for line in normalized), ZERO)
        total_credit = sum((line.credit_amount for line in normalized), ZERO)
        if total_debit == ZERO and total_credit == ZERO:
            raise ZeroAmountError("Voucher total cannot be zero")
        for position, line in enumerate(normalized, start=1):
            if line.debit_amount == ZERO and line.credit_amount == ZERO:
                raise MalformedEntryError(f"Entry {position} must have either a debit or a credit amount")
        if total_debit != total_credit:
            raise UnbalancedVoucherError(
                f"Voucher not balanced: debits={total_debit}, credits={total_credit}",
                details={"total_debit": str(total_debit), "total_credit": str(total_credit)}
            )

        for position, line in enumerate(normalized, start=1):
            account = self.chart.get_account(line.account_id)
            if not account:
                raise NotFoundError(f"Account {line.account_id} not found (entry {position})")
            if not account.is_active:
                raise MalformedEntryError(f"Account {account.code} is inactive (entry {position})")
            if account.entity != entity:
                raise MalformedEntryError(
                    f"Account {account.code} belongs to {account.entity}, not {entity} (entry {position})"
                )
        return normalized

    def _check_period(self, voucher: Voucher, actor: str) -> None:
        if not self.periods.is_date_closed(voucher.entity, voucher.voucher_date):
            return
        if self.config.closed_period_policy == ClosedPeriodPolicy.REJECT:
            raise PeriodClosedError(
                f"Voucher date {voucher.voucher_date.isoformat()} falls in a closed accounting period"
            )
        log_action(
            self.logger, "warning",
            f"Posting {voucher.voucher_number} into closed period ({voucher.voucher_date.isoformat()})",
            user_id=actor, action="post_voucher", resource=f"voucher:{voucher.id}"
        )

    def _generate_number(self, entity: EntityRef, voucher_type: VoucherType, voucher_date: date) -> str:
        """{prefix}{YY}{MM}{NNNN}, sequence scoped to entity, type and month"""
        stem = f"{voucher_type.prefix}{voucher_date.year % 100:02d}{voucher_date.month:02d}"
        sequence = self.storage.next_sequence(f"voucher_number:{entity}:{stem}")
        return f"{stem}{sequence:04d}"

    def _load_drafts(self, voucher_id: str) -> List[DraftEntry]:
        drafts = [
            DraftEntry.from_dict(d)
            for d in self.storage.find(tables.DRAFT_ENTRIES, {"voucher_id": voucher_id})
        ]
        drafts.sort(key=lambda d: d.line_number)
        return drafts

    def _require_voucher(self, voucher_id: str) -> Voucher:
        voucher = self.get_voucher(voucher_id)
        if not voucher:
            raise NotFoundError(f"Voucher {voucher_id} not found")
        return voucher

    def _save_voucher(self, voucher: Voucher) -> None:
        self.storage.save(self.table_name, voucher.id, voucher.to_dict())
