"""
Auto-Voucher Engine

Translates marketplace business events into balanced, posted vouchers.
Each event has a payload model and a handler registered in HANDLERS; the
handler builds voucher specifications from the payload and the chart of
accounts, and the engine creates and posts them inside one transaction, so
an event either books completely or not at all.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic import ValidationError as PayloadValidationError

from . import tables
from .access import EntityRef
from .accounts import ChartOfAccounts, WellKnownAccount
from .audit import AuditAction, AuditLog
from .commissions import CommissionBook, CommissionRecord
from .config import LedgerConfig, get_config
from .errors import ConflictError, LedgerError, ValidationError
from .events import AutoVoucherEvent
from .logging_config import get_logger, log_action
from .money import ZERO, percent_of, to_amount
from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, parse_decimal
from .vouchers import EntryLine, Voucher, VoucherEngine, VoucherType


def _external_id(value: Any) -> Any:
    # Order ids arrive as integers from the order subsystem
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


ExternalId = Annotated[str, BeforeValidator(_external_id), Field(min_length=1)]
Amount = Annotated[Decimal, BeforeValidator(to_amount)]


class EventPayload(BaseModel):
    """Base payload; occurred_on dates the vouchers (default today)"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    occurred_on: Optional[date] = None

    @property
    def voucher_date(self) -> date:
        return self.occurred_on or date.today()


class OrderConfirmedPayload(EventPayload):
    order_id: ExternalId
    vendor_id: ExternalId
    customer_id: Optional[ExternalId] = None
    amount: Annotated[Amount, Field(gt=0)]
    commission_rate: Annotated[Amount, Field(ge=0, le=100)]
    commission_amount: Optional[Annotated[Amount, Field(ge=0)]] = None

    @model_validator(mode="after")
    def check_commission(self):
        if self.commission_amount is not None and self.commission_amount > self.amount:
            raise ValueError("commission_amount cannot exceed amount")
        return self


class OrderDeliveredPayload(EventPayload):
    order_id: ExternalId
    vendor_id: ExternalId
    amount: Annotated[Amount, Field(ge=0)]


class PaymentReceivedPayload(EventPayload):
    transaction_id: ExternalId
    tran_ref: Optional[str] = None
    order_id: ExternalId
    vendor_id: Optional[ExternalId] = None
    amount: Annotated[Amount, Field(gt=0)]
    gateway_fee: Annotated[Amount, Field(ge=0)]
    vat_amount: Annotated[Amount, Field(ge=0)] = ZERO
    net_amount: Annotated[Amount, Field(ge=0)]

    @model_validator(mode="after")
    def check_split(self):
        if self.net_amount + self.gateway_fee + self.vat_amount != self.amount:
            raise ValueError("net_amount + gateway_fee + vat_amount must equal amount")
        return self


class SettlementTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: ExternalId
    vendor_id: ExternalId
    amount: Annotated[Amount, Field(gt=0)]
    net_amount: Optional[Annotated[Amount, Field(gt=0)]] = None

    @property
    def settled_amount(self) -> Decimal:
        return self.net_amount if self.net_amount is not None else self.amount


class SettlementReceivedPayload(EventPayload):
    batch_id: ExternalId
    batch_number: str
    settlement_date: date
    transactions: List[SettlementTransaction] = Field(min_length=1)

    @property
    def voucher_date(self) -> date:
        return self.settlement_date

    @model_validator(mode="after")
    def check_unique(self):
        ids = [tx.id for tx in self.transactions]
        if len(ids) != len(set(ids)):
            raise ValueError("transactions must not repeat")
        return self


class VendorPayoutPayload(EventPayload):
    vendor_id: ExternalId
    amount: Annotated[Amount, Field(gt=0)]
    reference: ExternalId


class RefundInitiatedPayload(EventPayload):
    refund_id: ExternalId
    order_id: ExternalId
    vendor_id: ExternalId
    refund_amount: Annotated[Amount, Field(gt=0)]
    commission_reversed: Annotated[Amount, Field(ge=0)] = ZERO


class GatewayTransactionStatus(Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"


@dataclass
class GatewayTransaction(StorageRecord):
    """Payment gateway transaction as seen by the ledger"""
    order_id: Optional[str] = None
    vendor_id: Optional[str] = None
    tran_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    gateway_fee: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    status: GatewayTransactionStatus = GatewayTransactionStatus.PENDING
    success_at: Optional[datetime] = None
    payment_voucher_id: Optional[str] = None
    is_settled: bool = False
    settlement_date: Optional[date] = None
    settlement_batch_id: Optional[str] = None
    settlement_voucher_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GatewayTransaction':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            order_id=data.get('order_id'),
            vendor_id=data.get('vendor_id'),
            tran_ref=data.get('tran_ref'),
            amount=parse_decimal(data.get('amount')),
            gateway_fee=parse_decimal(data.get('gateway_fee')),
            vat_amount=parse_decimal(data.get('vat_amount')),
            net_amount=parse_decimal(data.get('net_amount')),
            status=GatewayTransactionStatus(data.get("status", "PENDING")),
            success_at=parse_datetime(data.get('success_at')),
            payment_voucher_id=data.get('payment_voucher_id'),
            is_settled=data.get('is_settled', False),
            settlement_date=parse_date(data.get('settlement_date')),
            settlement_batch_id=data.get('settlement_batch_id'),
            settlement_voucher_id=data.get('settlement_voucher_id'),
        )


@dataclass
class VoucherSpec:
    """A voucher the engine is about to create and post"""
    entity: EntityRef
    voucher_type: VoucherType
    voucher_date: date
    narration: str
    lines: List[EntryLine]
    reference_type: str
    reference_id: str


@dataclass
class AutoVoucherResult:
    event_type: AutoVoucherEvent
    vouchers: List[Voucher] = field(default_factory=list)
    commission_record: Optional[CommissionRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "vouchers": [v.to_dict() for v in self.vouchers],
            "commission_record": self.commission_record.to_dict() if self.commission_record else None,
        }


class AccountResolver:
    """Read-only well-known account lookup handed to voucher builders"""

    def __init__(self, chart: ChartOfAccounts):
        self.chart = chart

    def admin(self, key: WellKnownAccount, vendor_id: Optional[str] = None) -> str:
        return self.chart.resolve_account(EntityRef.admin(), key, subject_id=vendor_id).id

    def vendor(self, vendor_id: str, key: WellKnownAccount) -> str:
        return self.chart.resolve_account(EntityRef.vendor(vendor_id), key).id


Builder = Callable[[AccountResolver, Any, LedgerConfig], List[VoucherSpec]]
Finisher = Callable[['AutoVoucherEngine', Any, List[Voucher], str], Optional[CommissionRecord]]


@dataclass(frozen=True)
class EventHandler:
    payload_model: Type[EventPayload]
    build: Builder
    prepare: Optional[Callable[['AutoVoucherEngine', Any], None]] = None
    finish: Optional[Finisher] = None


def commission_for(payload: OrderConfirmedPayload, config: LedgerConfig) -> Decimal:
    if payload.commission_amount is not None:
        return payload.commission_amount
    return percent_of(payload.amount, payload.commission_rate, config.commission_precision)


def build_order_confirmed(accounts: AccountResolver, payload: OrderConfirmedPayload,
                          config: LedgerConfig) -> List[VoucherSpec]:
    order = payload.order_id
    tags = {"reference_type": "order", "reference_id": order}
    specs = [VoucherSpec(
        entity=EntityRef.vendor(payload.vendor_id),
        voucher_type=VoucherType.SALES,
        voucher_date=payload.voucher_date,
        narration=f"Sales voucher for Order #{order}",
        lines=[
            EntryLine.debit(
                accounts.vendor(payload.vendor_id, WellKnownAccount.CUSTOMER_RECEIVABLE),
                payload.amount, f"Receivable from Customer for Order #{order}", **tags
            ),
            EntryLine.credit(
                accounts.vendor(payload.vendor_id, WellKnownAccount.SALES),
                payload.amount, f"Sales revenue for Order #{order}", **tags
            ),
        ],
        **tags
    )]

    commission = commission_for(payload, config)
    if commission > ZERO:
        specs.append(VoucherSpec(
            entity=EntityRef.admin(),
            voucher_type=VoucherType.COMMISSION,
            voucher_date=payload.voucher_date,
            narration=f"Commission voucher for Order #{order}",
            lines=[
                EntryLine.debit(
                    accounts.admin(WellKnownAccount.COMMISSION_RECEIVABLE), commission,
                    f"Commission receivable from Vendor {payload.vendor_id} for Order #{order}", **tags
                ),
                EntryLine.credit(
                    accounts.admin(WellKnownAccount.COMMISSION_INCOME), commission,
                    f"Commission income from Order #{order}", **tags
                ),
            ],
            **tags
        ))
    return specs


def finish_order_confirmed(engine: 'AutoVoucherEngine', payload: OrderConfirmedPayload,
                           vouchers: List[Voucher], actor: str) -> Optional[CommissionRecord]:
    commission_vouchers = [v for v in vouchers if v.voucher_type == VoucherType.COMMISSION]
    if not commission_vouchers:
        return None
    return engine.commissions.recognize(
        order_id=payload.order_id,
        vendor_id=payload.vendor_id,
        order_amount=payload.amount,
        commission_rate=payload.commission_rate,
        commission_amount=commission_vouchers[0].total_debit,
        voucher_id=commission_vouchers[0].id,
        actor=actor,
    )


def build_order_delivered(accounts: AccountResolver, payload: OrderDeliveredPayload,
                          config: LedgerConfig) -> List[VoucherSpec]:
    # Revenue is recognized at confirmation
    return []


def build_payment_received(accounts: AccountResolver, payload: PaymentReceivedPayload,
                           config: LedgerConfig) -> List[VoucherSpec]:
    order = payload.order_id
    tags = {"reference_type": "gateway_transaction", "reference_id": payload.transaction_id}
    tran = payload.tran_ref or payload.transaction_id
    lines = [
        EntryLine.debit(
            accounts.admin(WellKnownAccount.ADMIN_BANK), payload.net_amount,
            f"Payment for Order #{order}, Tran ID: {tran}", **tags
        ),
        EntryLine.debit(
            accounts.admin(WellKnownAccount.GATEWAY_CHARGES), payload.gateway_fee + payload.vat_amount,
            f"Gateway charges for Order #{order}", **tags
        ),
        EntryLine.credit(
            accounts.admin(WellKnownAccount.SETTLEMENT_PAYABLE), payload.amount,
            f"Payable to vendor for Order #{order}", **tags
        ),
    ]
    return [VoucherSpec(
        entity=EntityRef.admin(),
        voucher_type=VoucherType.RECEIPT,
        voucher_date=payload.voucher_date,
        narration=f"Payment received for Order #{order} via payment gateway",
        # A zero net or zero fee side is simply left out
        lines=[line for line in lines if line.debit_amount != ZERO or line.credit_amount != ZERO],
        **tags
    )]


def prepare_payment_received(engine: 'AutoVoucherEngine', payload: PaymentReceivedPayload) -> None:
    existing = engine.get_gateway_transaction(payload.transaction_id)
    if existing and existing.payment_voucher_id:
        raise ConflictError(
            f"Payment for transaction {payload.transaction_id} already booked",
            details={"voucher_id": existing.payment_voucher_id}
        )


def finish_payment_received(engine: 'AutoVoucherEngine', payload: PaymentReceivedPayload,
                            vouchers: List[Voucher], actor: str) -> None:
    now = datetime.now(timezone.utc)
    transaction = engine.get_gateway_transaction(payload.transaction_id) or GatewayTransaction(
        id=payload.transaction_id, created_at=now, updated_at=now
    )
    before = transaction.to_dict()
    transaction.order_id = payload.order_id
    transaction.vendor_id = payload.vendor_id
    transaction.tran_ref = payload.tran_ref
    transaction.amount = payload.amount
    transaction.gateway_fee = payload.gateway_fee
    transaction.vat_amount = payload.vat_amount
    transaction.net_amount = payload.net_amount
    transaction.status = GatewayTransactionStatus.SUCCESS
    transaction.success_at = now
    transaction.payment_voucher_id = vouchers[0].id
    transaction.updated_at = now
    engine.save_gateway_transaction(transaction, actor, before)
    return None


def build_settlement_received(accounts: AccountResolver, payload: SettlementReceivedPayload,
                              config: LedgerConfig) -> List[VoucherSpec]:
    tags = {"reference_type": "settlement_batch", "reference_id": payload.batch_id}
    vendor_totals: Dict[str, Decimal] = {}
    for tx in payload.transactions:
        vendor_totals[tx.vendor_id] = vendor_totals.get(tx.vendor_id, ZERO) + tx.settled_amount
    total = sum(vendor_totals.values(), ZERO)

    lines = [EntryLine.debit(
        accounts.admin(WellKnownAccount.SETTLEMENT_PAYABLE), total,
        f"Settlement batch {payload.batch_number}", **tags
    )]
    for vendor_id in sorted(vendor_totals):
        lines.append(EntryLine.credit(
            accounts.admin(WellKnownAccount.VENDOR_PAYABLE, vendor_id=vendor_id), vendor_totals[vendor_id],
            f"Payable to vendor {vendor_id} for settlement", **tags
        ))
    return [VoucherSpec(
        entity=EntityRef.admin(),
        voucher_type=VoucherType.SETTLEMENT,
        voucher_date=payload.voucher_date,
        narration=f"Settlement batch {payload.batch_number}",
        lines=lines,
        **tags
    )]


def prepare_settlement_received(engine: 'AutoVoucherEngine', payload: SettlementReceivedPayload) -> None:
    for tx in payload.transactions:
        existing = engine.get_gateway_transaction(tx.id)
        if existing and existing.is_settled:
            raise ConflictError(
                f"Transaction {tx.id} already settled in batch {existing.settlement_batch_id}",
                details={"transaction_id": tx.id, "settlement_batch_id": existing.settlement_batch_id}
            )


def finish_settlement_received(engine: 'AutoVoucherEngine', payload: SettlementReceivedPayload,
                               vouchers: List[Voucher], actor: str) -> None:
    now = datetime.now(timezone.utc)
    for tx in payload.transactions:
        transaction = engine.get_gateway_transaction(tx.id) or GatewayTransaction(
            id=tx.id, created_at=now, updated_at=now, vendor_id=tx.vendor_id,
            amount=tx.amount, net_amount=tx.net_amount
        )
        before = transaction.to_dict()
        transaction.is_settled = True
        transaction.settlement_date = payload.settlement_date
        transaction.settlement_batch_id = payload.batch_id
        transaction.settlement_voucher_id = vouchers[0].id
        transaction.updated_at = now
        engine.save_gateway_transaction(transaction, actor, before)
    return None


def build_vendor_payout(accounts: AccountResolver, payload: VendorPayoutPayload,
                        config: LedgerConfig) -> List[VoucherSpec]:
    vendor = payload.vendor_id
    tags = {"reference_type": "payout", "reference_id": payload.reference}
    return [
        VoucherSpec(
            entity=EntityRef.admin(),
            voucher_type=VoucherType.PAYOUT,
            voucher_date=payload.voucher_date,
            narration=f"Payout to vendor {vendor}",
            lines=[
                EntryLine.debit(
                    accounts.admin(WellKnownAccount.VENDOR_PAYABLE, vendor_id=vendor), payload.amount,
                    f"Payout to vendor {vendor}, Ref: {payload.reference}", **tags
                ),
                EntryLine.credit(
                    accounts.admin(WellKnownAccount.ADMIN_BANK), payload.amount,
                    f"Bank transfer to vendor {vendor}", **tags
                ),
            ],
            **tags
        ),
        VoucherSpec(
            entity=EntityRef.vendor(vendor),
            voucher_type=VoucherType.RECEIPT,
            voucher_date=payload.voucher_date,
            narration="Payout received from platform",
            lines=[
                EntryLine.debit(
                    accounts.vendor(vendor, WellKnownAccount.VENDOR_BANK), payload.amount,
                    f"Payout received, Ref: {payload.reference}", **tags
                ),
                EntryLine.credit(
                    accounts.vendor(vendor, WellKnownAccount.PLATFORM_RECEIVABLE), payload.amount,
                    "Receivable cleared by payout", **tags
                ),
            ],
            **tags
        ),
    ]


def build_refund_initiated(accounts: AccountResolver, payload: RefundInitiatedPayload,
                           config: LedgerConfig) -> List[VoucherSpec]:
    order = payload.order_id
    tags = {"reference_type": "refund", "reference_id": payload.refund_id}
    specs = [VoucherSpec(
        entity=EntityRef.vendor(payload.vendor_id),
        voucher_type=VoucherType.REFUND,
        voucher_date=payload.voucher_date,
        narration=f"Refund for Order #{order}",
        lines=[
            EntryLine.debit(
                accounts.vendor(payload.vendor_id, WellKnownAccount.SALES), payload.refund_amount,
                f"Sales refund for Order #{order}", **tags
            ),
            EntryLine.credit(
                accounts.vendor(payload.vendor_id, WellKnownAccount.CUSTOMER_RECEIVABLE), payload.refund_amount,
                f"Customer receivable reversed for Order #{order}", **tags
            ),
        ],
        **tags
    )]
    if payload.commission_reversed > ZERO:
        specs.append(VoucherSpec(
            entity=EntityRef.admin(),
            voucher_type=VoucherType.COMMISSION,
            voucher_date=payload.voucher_date,
            narration=f"Commission reversal for refunded Order #{order}",
            lines=[
                EntryLine.debit(
                    accounts.admin(WellKnownAccount.COMMISSION_INCOME), payload.commission_reversed,
                    f"Commission income reversed for Order #{order}", **tags
                ),
                EntryLine.credit(
                    accounts.admin(WellKnownAccount.COMMISSION_RECEIVABLE), payload.commission_reversed,
                    f"Commission receivable reversed for Order #{order}", **tags
                ),
            ],
            **tags
        ))
    return specs


def finish_refund_initiated(engine: 'AutoVoucherEngine', payload: RefundInitiatedPayload,
                            vouchers: List[Voucher], actor: str) -> Optional[CommissionRecord]:
    commission_vouchers = [v for v in vouchers if v.voucher_type == VoucherType.COMMISSION]
    if not commission_vouchers:
        return None
    return engine.commissions.apply_reversal(
        order_id=payload.order_id,
        vendor_id=payload.vendor_id,
        amount=payload.commission_reversed,
        voucher_id=commission_vouchers[0].id,
        actor=actor,
    )


HANDLERS: Dict[AutoVoucherEvent, EventHandler] = {
    AutoVoucherEvent.ORDER_CONFIRMED: EventHandler(
        OrderConfirmedPayload, build_order_confirmed, finish=finish_order_confirmed
    ),
    AutoVoucherEvent.ORDER_DELIVERED: EventHandler(OrderDeliveredPayload, build_order_delivered),
    AutoVoucherEvent.PAYMENT_RECEIVED: EventHandler(
        PaymentReceivedPayload, build_payment_received,
        prepare=prepare_payment_received, finish=finish_payment_received
    ),
    AutoVoucherEvent.SETTLEMENT_RECEIVED: EventHandler(
        SettlementReceivedPayload, build_settlement_received,
        prepare=prepare_settlement_received, finish=finish_settlement_received
    ),
    AutoVoucherEvent.VENDOR_PAYOUT: EventHandler(VendorPayoutPayload, build_vendor_payout),
    AutoVoucherEvent.REFUND_INITIATED: EventHandler(
        RefundInitiatedPayload, build_refund_initiated, finish=finish_refund_initiated
    ),
}

_unhandled = set(AutoVoucherEvent) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No auto-voucher handler for: {sorted(e.value for e in _unhandled)}")


def parse_event_type(event_type: Union[AutoVoucherEvent, str]) -> AutoVoucherEvent:
    if isinstance(event_type, AutoVoucherEvent):
        return event_type
    try:
        return AutoVoucherEvent(str(event_type).upper())
    except ValueError:
        raise ValidationError(f"Unsupported event type: {event_type}")


class AutoVoucherEngine:
    """
    Sole entry point for automatic bookkeeping
    """

    def __init__(
        self,
        storage: StorageInterface,
        chart: ChartOfAccounts,
        vouchers: VoucherEngine,
        commissions: CommissionBook,
        audit_log: AuditLog,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.chart = chart
        self.vouchers = vouchers
        self.commissions = commissions
        self.audit_log = audit_log
        self.config = config or get_config()
        self.accounts = AccountResolver(chart)
        self.logger = get_logger("ledger.autovoucher")

    def create_auto_voucher(
        self,
        event_type: Union[AutoVoucherEvent, str],
        payload: Union[Dict[str, Any], EventPayload],
        actor: Optional[str] = None
    ) -> AutoVoucherResult:
        """
        Book one business event

        Args:
            event_type: AutoVoucherEvent or its name
            payload: Event data as a dict or the event's payload model
            actor: Actor stamped on the vouchers (default: configured system actor)

        Returns:
            AutoVoucherResult with the posted vouchers and any commission record

        Raises:
            ValidationError: Unknown event or invalid payload
            NotFoundError: A required well-known account is not provisioned
            ConflictError: The event was already booked
        """
        actor = actor or self.config.system_actor
        event = parse_event_type(event_type)
        handler = HANDLERS[event]

        try:
            data = self._parse_payload(event, handler, payload)
            with self.storage.atomic():
                specs = handler.build(self.accounts, data, self.config)
                if handler.prepare:
                    handler.prepare(self, data)

                posted = []
                for spec in specs:
                    voucher = self.vouchers.create_voucher(
                        entity=spec.entity,
                        voucher_type=spec.voucher_type,
                        voucher_date=spec.voucher_date,
                        narration=spec.narration,
                        lines=spec.lines,
                        actor=actor,
                        reference_type=spec.reference_type,
                        reference_id=spec.reference_id,
                        is_auto=True,
                        event_type=event,
                    )
                    posted.append(self.vouchers.post_voucher(voucher.id, actor))

                commission_record = None
                if handler.finish:
                    commission_record = handler.finish(self, data, posted, actor)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Auto-voucher for {event.value} failed: {e.message}",
                user_id=actor, action="create_auto_voucher", resource=f"event:{event.value}",
                extra={"kind": e.kind}
            )
            raise

        log_action(
            self.logger, "info", f"Auto-voucher processed {event.value}: {len(posted)} voucher(s)",
            user_id=actor, action="create_auto_voucher", resource=f"event:{event.value}",
            extra={"vouchers": [v.voucher_number for v in posted]}
        )
        return AutoVoucherResult(event_type=event, vouchers=posted, commission_record=commission_record)

    def get_gateway_transaction(self, transaction_id: str) -> Optional[GatewayTransaction]:
        data = self.storage.load(tables.GATEWAY_TRANSACTIONS, transaction_id)
        if data:
            return GatewayTransaction.from_dict(data)
        return None

    def save_gateway_transaction(self, transaction: GatewayTransaction, actor: str,
                                 before: Optional[Dict[str, Any]] = None) -> None:
        self.storage.save(tables.GATEWAY_TRANSACTIONS, transaction.id, transaction.to_dict())
        self.audit_log.record(
            AuditAction.UPDATE, tables.GATEWAY_TRANSACTIONS, transaction.id, actor,
            before=before, after=transaction.to_dict()
        )

    def get_commission_records(self, vendor_id: Optional[str] = None,
                               order_id: Optional[str] = None) -> List[CommissionRecord]:
        return self.commissions.get_commission_records(vendor_id=vendor_id, order_id=order_id)

    @staticmethod
    def _parse_payload(event: AutoVoucherEvent, handler: EventHandler,
                       payload: Union[Dict[str, Any], EventPayload]) -> EventPayload:
        if isinstance(payload, handler.payload_model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return handler.payload_model.model_validate(payload)
        except PayloadValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(f"Invalid {event.value} payload", details={"errors": errors}) from e
