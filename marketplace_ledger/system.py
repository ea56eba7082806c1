"""
Accounting system context: every ledger component wired to one storage.
"""

from typing import Optional

from .access import ActorDirectory, EntityAccessPolicy
from .accounts import ChartOfAccounts
from .audit import AuditLog
from .autovoucher import AutoVoucherEngine
from .commissions import CommissionBook
from .config import LedgerConfig, get_config
from .logging_config import get_logger
from .payables import VendorPayableCache
from .periods import PeriodManager
from .reporting import ReportingEngine
from .storage import StorageInterface, create_storage
from .vouchers import VoucherEngine


class AccountingSystem:
    """Core accounting system with all components initialized"""

    def __init__(
        self,
        storage: StorageInterface,
        access_policy: EntityAccessPolicy,
        config: Optional[LedgerConfig] = None,
        actor_directory: Optional[ActorDirectory] = None
    ):
        if access_policy is None:
            raise ValueError("An entity access policy is required")

        self.config = config or get_config()
        self.storage = storage
        self.access_policy = access_policy
        self.actor_directory = actor_directory
        self.logger = get_logger("ledger.system")

        self.audit_log = AuditLog(
            self.storage, actor_directory,
            default_limit=self.config.audit_page_limit,
            max_limit=self.config.max_page_limit
        )
        self.chart = ChartOfAccounts(self.storage, self.audit_log, access_policy)
        self.periods = PeriodManager(self.storage, self.audit_log, access_policy)
        self.payables = VendorPayableCache(self.storage, self.audit_log, self.chart.get_account)
        self.commissions = CommissionBook(self.storage, self.audit_log)
        self.vouchers = VoucherEngine(
            self.storage, self.chart, self.audit_log, access_policy,
            self.periods, self.payables, self.config
        )
        self.auto_vouchers = AutoVoucherEngine(
            self.storage, self.chart, self.vouchers, self.commissions,
            self.audit_log, self.config
        )
        self.reporting = ReportingEngine(self.storage, self.chart, self.payables, self.config)

        # Period close records the net profit of the closed window
        self.periods.net_profit_fn = (
            lambda entity, start, end: self.reporting.profit_and_loss(entity, start, end).net_profit
        )

    def close(self) -> None:
        self.storage.close()


def create_accounting_system(
    storage: Optional[StorageInterface],
    access_policy: EntityAccessPolicy,
    config: Optional[LedgerConfig] = None,
    actor_directory: Optional[ActorDirectory] = None
) -> AccountingSystem:
    """
    Build an AccountingSystem.

    When storage is None the backend is created from config.database_url.
    """
    config = config or get_config()
    if storage is None:
        storage = create_storage(config.database_url)
    return AccountingSystem(storage, access_policy, config, actor_directory)
