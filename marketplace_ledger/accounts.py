"""
Chart of Accounts Module

Manages the chart of accounts of every entity (platform operator and each
vendor): creation with sequential codes, protected system accounts, and the
well-known accounts the auto-voucher engine posts to.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from . import tables
from .access import EntityAccessPolicy, EntityRef, EntityType
from .audit import AuditAction, AuditLog
from .errors import (
    ConflictError, ImmutableAccountError, NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, parse_datetime


class AccountClass(Enum):
    """Standard accounting classes"""
    ASSET = "ASSET"          # Debit normal balance
    LIABILITY = "LIABILITY"  # Credit normal balance
    EQUITY = "EQUITY"        # Credit normal balance
    INCOME = "INCOME"        # Credit normal balance
    EXPENSE = "EXPENSE"      # Debit normal balance


class AccountNature(Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


def resolve_nature(account_class: AccountClass) -> AccountNature:
    """Assets and expenses carry debit balances, everything else credit"""
    if account_class in (AccountClass.ASSET, AccountClass.EXPENSE):
        return AccountNature.DEBIT
    return AccountNature.CREDIT


ENTITY_PREFIX = {
    EntityType.ADMIN: "ADM",
    EntityType.VENDOR: "VND",
}

CLASS_PREFIX = {
    AccountClass.ASSET: "AST",
    AccountClass.LIABILITY: "LIB",
    AccountClass.EQUITY: "EQT",
    AccountClass.INCOME: "INC",
    AccountClass.EXPENSE: "EXP",
}


class WellKnownAccount(Enum):
    """
    Stable keys for accounts the ledger itself needs, independent of the
    display name an operator may later give them.
    """
    # Vendor books
    CUSTOMER_RECEIVABLE = (EntityType.VENDOR, AccountClass.ASSET, "Customer Receivable", "current_asset")
    SALES = (EntityType.VENDOR, AccountClass.INCOME, "Sales", "operating_income")
    VENDOR_BANK = (EntityType.VENDOR, AccountClass.ASSET, "Bank Account", "bank")
    PLATFORM_RECEIVABLE = (EntityType.VENDOR, AccountClass.ASSET, "Platform Receivable", "current_asset")

    # Platform books
    ADMIN_BANK = (EntityType.ADMIN, AccountClass.ASSET, "Bank Account", "bank")
    COMMISSION_RECEIVABLE = (EntityType.ADMIN, AccountClass.ASSET, "Vendor Commission Receivable", "current_asset")
    COMMISSION_INCOME = (EntityType.ADMIN, AccountClass.INCOME, "Commission Income", "operating_income")
    GATEWAY_CHARGES = (EntityType.ADMIN, AccountClass.EXPENSE, "Gateway Charges", "operating_expense")
    SETTLEMENT_PAYABLE = (EntityType.ADMIN, AccountClass.LIABILITY, "Gateway Settlement Payable", "current_liability")
    VENDOR_PAYABLE = (EntityType.ADMIN, AccountClass.LIABILITY, "Vendor Payable", "current_liability")  # one per vendor

    def __init__(self, entity_type: EntityType, account_class: AccountClass,
                 default_name: str, account_type: str):
        self.entity_type = entity_type
        self.account_class = account_class
        self.default_name = default_name
        self.account_type = account_type

    @property
    def per_vendor(self) -> bool:
        return self is WellKnownAccount.VENDOR_PAYABLE


@dataclass
class Account(StorageRecord):
    """
    A ledger bucket in one entity's chart of accounts
    """
    code: str
    name: str
    account_class: AccountClass
    nature: AccountNature
    entity_type: EntityType
    entity_id: Optional[str] = None
    account_type: Optional[str] = None
    group_name: Optional[str] = None
    parent_id: Optional[str] = None
    name_local: Optional[str] = None
    description: Optional[str] = None
    is_system: bool = False
    is_active: bool = True
    can_delete: bool = True
    system_key: Optional[str] = None
    subject_id: Optional[str] = None

    @property
    def entity(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    @property
    def is_protected(self) -> bool:
        return self.is_system or not self.can_delete

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            code=data['code'],
            name=data['name'],
            account_class=AccountClass(data['account_class']),
            nature=AccountNature(data['nature']),
            entity_type=EntityType(data['entity_type']),
            entity_id=data.get('entity_id'),
            account_type=data.get('account_type'),
            group_name=data.get('group_name'),
            parent_id=data.get('parent_id'),
            name_local=data.get('name_local'),
            description=data.get('description'),
            is_system=data.get('is_system', False),
            is_active=data.get('is_active', True),
            can_delete=data.get('can_delete', True),
            system_key=data.get('system_key'),
            subject_id=data.get('subject_id'),
        )


class ChartOfAccounts:
    """
    Account registry: CRUD, code generation and well-known account lookup
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_log: AuditLog,
        access_policy: EntityAccessPolicy
    ):
        self.storage = storage
        self.audit_log = audit_log
        self.access_policy = access_policy
        self.table_name = tables.ACCOUNTS
        self.logger = get_logger("ledger.accounts")

    def create_account(
        self,
        entity: EntityRef,
        account_class: AccountClass,
        name: str,
        actor: str,
        account_type: Optional[str] = None,
        group_name: Optional[str] = None,
        parent_id: Optional[str] = None,
        name_local: Optional[str] = None,
        description: Optional[str] = None,
        is_system: bool = False,
        can_delete: bool = True,
        system_key: Optional[WellKnownAccount] = None,
        subject_id: Optional[str] = None
    ) -> Account:
        """
        Create an account in an entity's chart

        Args:
            entity: Owner of the account
            account_class: ASSET, LIABILITY, EQUITY, INCOME or EXPENSE
            name: Display name
            actor: Who is creating the account
            parent_id: Optional parent account (same entity and class)
            is_system: Protect the account from edit and delete
            system_key: Register the account under a well-known key

        Returns:
            Created Account with its generated code

        Raises:
            AccessDeniedError: If the actor may not modify the entity's books
            ValidationError: If the name is empty or the parent is unusable
            ConflictError: If the well-known key is already taken
        """
        self.access_policy.ensure_access(entity, actor)

        if not name or not name.strip():
            raise ValidationError("Account name is required")

        if parent_id:
            parent = self.get_account(parent_id)
            if not parent:
                raise NotFoundError(f"Parent account {parent_id} not found")
            if parent.entity != entity or parent.account_class != account_class:
                raise ValidationError("Parent account must belong to the same entity and class")

        if system_key:
            if system_key.entity_type != entity.entity_type:
                raise ValidationError(f"{system_key.name} is not a {entity.entity_type.value} account")
            if self._find_by_key(entity, system_key, subject_id, active_only=False):
                raise ConflictError(f"Account {system_key.name} already exists for {entity}")

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                code=self._generate_code(entity, account_class),
                name=name.strip(),
                account_class=account_class,
                nature=resolve_nature(account_class),
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
                account_type=account_type,
                group_name=group_name,
                parent_id=parent_id,
                name_local=name_local,
                description=description,
                is_system=is_system,
                is_active=True,
                can_delete=can_delete,
                system_key=system_key.name if system_key else None,
                subject_id=subject_id,
            )
            self._save_account(account)
            self.audit_log.record(
                AuditAction.CREATE, self.table_name, account.id, actor,
                after=account.to_dict()
            )

        log_action(
            self.logger, "info", f"Account created: {account.code} {account.name}",
            user_id=actor, action="create_account", resource=f"account:{account.id}",
            extra={"entity": str(entity), "code": account.code, "class": account_class.value}
        )
        return account

    def update_account(
        self,
        account_id: str,
        actor: str,
        name: Optional[str] = None,
        name_local: Optional[str] = None,
        group_name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Account:
        """Change the descriptive attributes of an account; None leaves a field as is"""
        account = self._require_account(account_id)
        if account.is_system:
            raise ImmutableAccountError(f"System account {account.code} cannot be modified")
        if not account.can_delete:
            raise ImmutableAccountError(f"Account {account.code} cannot be modified")

        self.access_policy.ensure_access(account.entity, actor)

        if name is not None and not name.strip():
            raise ValidationError("Account name cannot be empty")

        before = account.to_dict()
        if name is not None:
            account.name = name.strip()
        if name_local is not None:
            account.name_local = name_local
        if group_name is not None:
            account.group_name = group_name
        if description is not None:
            account.description = description
        if is_active is not None:
            account.is_active = is_active
        account.updated_at = datetime.now(timezone.utc)

        with self.storage.atomic():
            self._save_account(account)
            self.audit_log.record(
                AuditAction.UPDATE, self.table_name, account.id, actor,
                before=before, after=account.to_dict()
            )

        log_action(
            self.logger, "info", f"Account updated: {account.code}",
            user_id=actor, action="update_account", resource=f"account:{account.id}"
        )
        return account

    def delete_account(self, account_id: str, actor: str) -> None:
        """
        Hard-delete an account that was never used

        Raises:
            NotFoundError: Unknown account
            ImmutableAccountError: System or protected account
            ConflictError: Account has ledger entries, pending draft entries or children
        """
        account = self._require_account(account_id)
        if account.is_system:
            raise ImmutableAccountError(f"System account {account.code} cannot be deleted")
        if not account.can_delete:
            raise ImmutableAccountError(f"Account {account.code} cannot be deleted")
        if self.has_ledger_entries(account_id):
            raise ConflictError(f"Cannot delete account {account.code} with existing transactions")
        if self.storage.find(tables.DRAFT_ENTRIES, {"account_id": account_id}):
            raise ConflictError(f"Cannot delete account {account.code} referenced by draft vouchers")
        if self.get_children(account_id):
            raise ConflictError(f"Cannot delete account {account.code} with child accounts")

        self.access_policy.ensure_access(account.entity, actor)

        with self.storage.atomic():
            self.storage.delete(self.table_name, account_id)
            self.audit_log.record(
                AuditAction.DELETE, self.table_name, account_id, actor,
                before=account.to_dict()
            )

        log_action(
            self.logger, "info", f"Account deleted: {account.code}",
            user_id=actor, action="delete_account", resource=f"account:{account_id}"
        )

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def get_account_by_code(self, entity: EntityRef, code: str) -> Optional[Account]:
        found = self.storage.find(self.table_name, dict(entity.filters(), code=code))
        if found:
            return Account.from_dict(found[0])
        return None

    def list_accounts(
        self,
        entity: EntityRef,
        account_class: Optional[AccountClass] = None,
        include_inactive: bool = False
    ) -> List[Account]:
        """Accounts of an entity ordered by code"""
        filters = entity.filters()
        if account_class:
            filters['account_class'] = account_class.value
        if not include_inactive:
            filters['is_active'] = True
        accounts = [Account.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        accounts.sort(key=lambda a: a.code)
        return accounts

    def get_children(self, account_id: str) -> List[Account]:
        return [Account.from_dict(d) for d in self.storage.find(self.table_name, {"parent_id": account_id})]

    def has_ledger_entries(self, account_id: str) -> bool:
        return bool(self.storage.find(tables.LEDGER_ENTRIES, {"account_id": account_id}))

    def resolve_account(
        self,
        entity: EntityRef,
        key: WellKnownAccount,
        subject_id: Optional[str] = None
    ) -> Account:
        """
        Find the active account registered under a well-known key.

        Never creates anything: a missing account is a setup error and
        raises NotFoundError so nothing gets posted to the wrong place.
        """
        if key.entity_type != entity.entity_type:
            raise ValidationError(f"{key.name} is not a {entity.entity_type.value} account")
        if key.per_vendor and not subject_id:
            raise ValidationError(f"{key.name} requires the vendor id")

        account = self._find_by_key(entity, key, subject_id, active_only=True)
        if not account:
            subject = f" ({subject_id})" if subject_id else ""
            raise NotFoundError(
                f"Account not found: {key.name}{subject} ({key.account_class.value}) for {entity}",
                details={"entity": str(entity), "key": key.name, "subject_id": subject_id}
            )
        return account

    def provision_admin_accounts(self, actor: str) -> List[Account]:
        """Create the platform's system accounts that do not exist yet"""
        entity = EntityRef.admin()
        return [
            self._provision(entity, key, actor)
            for key in WellKnownAccount
            if key.entity_type == EntityType.ADMIN and not key.per_vendor
        ]

    def provision_vendor_accounts(self, vendor_id: str, actor: str) -> List[Account]:
        """
        Create a vendor's system accounts plus the platform-side payable
        account for that vendor. Safe to call repeatedly.
        """
        entity = EntityRef.vendor(vendor_id)
        accounts = [
            self._provision(entity, key, actor)
            for key in WellKnownAccount
            if key.entity_type == EntityType.VENDOR
        ]
        accounts.append(self._provision(
            EntityRef.admin(), WellKnownAccount.VENDOR_PAYABLE, actor,
            subject_id=vendor_id, name=f"Vendor Payable - {vendor_id}"
        ))
        return accounts

    def _provision(
        self,
        entity: EntityRef,
        key: WellKnownAccount,
        actor: str,
        subject_id: Optional[str] = None,
        name: Optional[str] = None
    ) -> Account:
        existing = self._find_by_key(entity, key, subject_id, active_only=False)
        if existing:
            return existing
        return self.create_account(
            entity=entity,
            account_class=key.account_class,
            name=name or key.default_name,
            actor=actor,
            account_type=key.account_type,
            is_system=True,
            can_delete=False,
            system_key=key,
            subject_id=subject_id,
        )

    def _find_by_key(
        self,
        entity: EntityRef,
        key: WellKnownAccount,
        subject_id: Optional[str],
        active_only: bool
    ) -> Optional[Account]:
        filters = dict(entity.filters(), system_key=key.name, subject_id=subject_id)
        if active_only:
            filters['is_active'] = True
        found = self.storage.find(self.table_name, filters)
        if found:
            return Account.from_dict(found[0])
        return None

    def _generate_code(self, entity: EntityRef, account_class: AccountClass) -> str:
        """
        Next code for (entity, class), e.g. VND-AST-0003.

        The sequence comes from an atomic counter; a code that is already
        taken (accounts imported with explicit codes) is skipped.
        """
        prefix = f"{ENTITY_PREFIX[entity.entity_type]}-{CLASS_PREFIX[account_class]}"
        scope = f"account_code:{entity}:{account_class.value}"
        while True:
            code = f"{prefix}-{self.storage.next_sequence(scope):04d}"
            if not self.get_account_by_code(entity, code):
                return code

    def _require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.table_name, account.id, account.to_dict())
