"""
Reporting Engine Module

Financial statements derived on demand from posted ledger entries: trial
balance, profit and loss, balance sheet and the running-balance ledger. The
vendor payable report is the only one served from a cache. Reports never
write.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import tables
from .access import EntityRef
from .accounts import Account, AccountClass, AccountNature, ChartOfAccounts
from .config import LedgerConfig, get_config
from .errors import NotFoundError, ValidationError
from .money import ZERO
from .pagination import Page, normalize_paging, paginate
from .payables import VendorPayable, VendorPayableCache
from .storage import StorageInterface
from .vouchers import LedgerEntry, Voucher, VoucherStatus, VoucherType

EPOCH = date(1970, 1, 1)


def _money(value: Decimal) -> str:
    return str(value)


def account_balance(nature: AccountNature, total_debit: Decimal, total_credit: Decimal) -> Decimal:
    """Balance on the account's natural side"""
    if nature == AccountNature.DEBIT:
        return total_debit - total_credit
    return total_credit - total_debit


@dataclass
class TrialBalanceLine:
    account_id: str
    code: str
    name: str
    account_class: AccountClass
    account_type: Optional[str]
    group_name: Optional[str]
    nature: AccountNature
    total_debit: Decimal
    total_credit: Decimal
    balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "code": self.code,
            "name": self.name,
            "class": self.account_class.value,
            "account_type": self.account_type,
            "group_name": self.group_name,
            "nature": self.nature.value,
            "total_debit": _money(self.total_debit),
            "total_credit": _money(self.total_credit),
            "balance": _money(self.balance),
        }


@dataclass
class TrialBalance:
    entity: EntityRef
    as_of: date
    lines: List[TrialBalanceLine] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return self.difference == ZERO

    def line_for(self, account_id: str) -> Optional[TrialBalanceLine]:
        for line in self.lines:
            if line.account_id == account_id:
                return line
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": str(self.entity),
            "as_of": self.as_of.isoformat(),
            "trial_balance": [line.to_dict() for line in self.lines],
            "totals": {
                "total_debit": _money(self.total_debit),
                "total_credit": _money(self.total_credit),
                "difference": _money(self.difference),
            },
        }


@dataclass
class StatementLine:
    account_id: str
    code: str
    name: str
    group_name: Optional[str]
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "code": self.code,
            "name": self.name,
            "group_name": self.group_name,
            "amount": _money(self.amount),
        }


@dataclass
class ProfitAndLoss:
    entity: EntityRef
    start: date
    end: date
    income: List[StatementLine] = field(default_factory=list)
    expenses: List[StatementLine] = field(default_factory=list)
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO

    @property
    def net_profit(self) -> Decimal:
        return self.total_income - self.total_expense

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": str(self.entity),
            "income": {
                "accounts": [line.to_dict() for line in self.income],
                "total": _money(self.total_income),
            },
            "expenses": {
                "accounts": [line.to_dict() for line in self.expenses],
                "total": _money(self.total_expense),
            },
            "net_profit": _money(self.net_profit),
            "period": {"start": self.start.isoformat(), "end": self.end.isoformat()},
        }


@dataclass
class BalanceSheet:
    """
    Assets against liabilities and equity. Retained earnings are the net
    profit from the epoch through as_of; the tie-out is reported, not enforced.
    """
    entity: EntityRef
    as_of: date
    assets: List[StatementLine] = field(default_factory=list)
    liabilities: List[StatementLine] = field(default_factory=list)
    equity: List[StatementLine] = field(default_factory=list)
    total_assets: Decimal = ZERO
    total_liabilities: Decimal = ZERO
    total_equity: Decimal = ZERO
    retained_earnings: Decimal = ZERO

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.total_liabilities + self.total_equity + self.retained_earnings

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities_and_equity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": str(self.entity),
            "as_of": self.as_of.isoformat(),
            "assets": {
                "accounts": [line.to_dict() for line in self.assets],
                "total": _money(self.total_assets),
            },
            "liabilities": {
                "accounts": [line.to_dict() for line in self.liabilities],
                "total": _money(self.total_liabilities),
            },
            "equity": {
                "accounts": [line.to_dict() for line in self.equity],
                "total": _money(self.total_equity),
                "retained_earnings": _money(self.retained_earnings),
                "total_with_retained_earnings": _money(self.total_equity + self.retained_earnings),
            },
            "total_assets": _money(self.total_assets),
            "total_liabilities_and_equity": _money(self.total_liabilities_and_equity),
        }


@dataclass
class LedgerLine:
    entry: LedgerEntry
    account_code: Optional[str]
    account_name: Optional[str]
    running_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.to_dict()
        data["account_code"] = self.account_code
        data["account_name"] = self.account_name
        data["running_balance"] = _money(self.running_balance)
        return data


@dataclass
class FinancialSummary:
    trial_balance: TrialBalance
    profit_and_loss: ProfitAndLoss
    balance_sheet: BalanceSheet

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trial_balance": self.trial_balance.to_dict(),
            "profit_and_loss": self.profit_and_loss.to_dict(),
            "balance_sheet": self.balance_sheet.to_dict(),
        }


@dataclass
class VendorSalesSummary:
    vendor_id: str
    start: Optional[date]
    end: Optional[date]
    total_sales: Decimal = ZERO
    voucher_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor_id": self.vendor_id,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "total_sales": _money(self.total_sales),
            "voucher_count": self.voucher_count,
        }


class ReportingEngine:
    """
    Read-only statements over the ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        chart: ChartOfAccounts,
        payables: VendorPayableCache,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.chart = chart
        self.payables = payables
        self.config = config or get_config()

    def trial_balance(self, entity: EntityRef, as_of: Optional[date] = None) -> TrialBalance:
        """
        Debit and credit totals of every active account of an entity

        Args:
            entity: Books to report on
            as_of: Include entries dated on or before this day (default today)
        """
        as_of = as_of or date.today()
        totals = self._account_totals(entity, end=as_of)

        report = TrialBalance(entity=entity, as_of=as_of)
        for account in self.chart.list_accounts(entity):
            debit, credit = totals.get(account.id, (ZERO, ZERO))
            report.lines.append(TrialBalanceLine(
                account_id=account.id,
                code=account.code,
                name=account.name,
                account_class=account.account_class,
                account_type=account.account_type,
                group_name=account.group_name,
                nature=account.nature,
                total_debit=debit,
                total_credit=credit,
                balance=account_balance(account.nature, debit, credit),
            ))
            report.total_debit += debit
            report.total_credit += credit
        return report

    def profit_and_loss(
        self,
        entity: EntityRef,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> ProfitAndLoss:
        """Income and expense movements within [start, end], both inclusive"""
        start = start or EPOCH
        end = end or date.today()
        if start > end:
            raise ValidationError("start must not be after end")

        totals = self._account_totals(entity, start=start, end=end)
        report = ProfitAndLoss(entity=entity, start=start, end=end)
        for line in self._statement_lines(entity, AccountClass.INCOME, totals):
            report.income.append(line)
            report.total_income += line.amount
        for line in self._statement_lines(entity, AccountClass.EXPENSE, totals):
            report.expenses.append(line)
            report.total_expense += line.amount
        return report

    def balance_sheet(self, entity: EntityRef, as_of: Optional[date] = None) -> BalanceSheet:
        as_of = as_of or date.today()
        totals = self._account_totals(entity, end=as_of)

        report = BalanceSheet(entity=entity, as_of=as_of)
        report.assets = self._statement_lines(entity, AccountClass.ASSET, totals)
        report.liabilities = self._statement_lines(entity, AccountClass.LIABILITY, totals)
        report.equity = self._statement_lines(entity, AccountClass.EQUITY, totals)
        report.total_assets = sum((line.amount for line in report.assets), ZERO)
        report.total_liabilities = sum((line.amount for line in report.liabilities), ZERO)
        report.total_equity = sum((line.amount for line in report.equity), ZERO)
        report.retained_earnings = self.profit_and_loss(entity, EPOCH, as_of).net_profit
        return report

    def ledger(
        self,
        entity: EntityRef,
        account_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        page: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> Page[LedgerLine]:
        """
        Ledger entries newest first.

        The running balance accumulates debit - credit over the returned page
        only, walking it oldest entry first.
        """
        page, limit = normalize_paging(
            page, limit, self.config.ledger_page_limit, self.config.max_page_limit
        )
        if start and end and start > end:
            raise ValidationError("start must not be after end")

        accounts: Dict[str, Account] = {a.id: a for a in self.chart.list_accounts(entity, include_inactive=True)}
        if account_id and account_id not in accounts:
            raise NotFoundError(f"Account {account_id} not found for {entity}")

        entries = self._entries(entity, start=start, end=end)
        if account_id:
            entries = [e for e in entries if e.account_id == account_id]
        entries.sort(key=lambda e: (e.entry_date, e.sequence), reverse=True)

        result = paginate(entries, page, limit)
        running = ZERO
        lines = []
        for entry in reversed(result.data):
            running += entry.debit_amount - entry.credit_amount
            account = accounts.get(entry.account_id)
            lines.append(LedgerLine(
                entry=entry,
                account_code=account.code if account else None,
                account_name=account.name if account else None,
                running_balance=running,
            ))
        lines.reverse()
        return Page(data=lines, page=result.page, limit=result.limit, total=result.total)

    def vendor_payable_report(self, vendor_id: Optional[str] = None) -> List[VendorPayable]:
        """Cached vendor payable rows, highest balance first"""
        if vendor_id:
            payable = self.payables.get_payable(vendor_id)
            return [payable] if payable else []
        return self.payables.list_payables()

    def financial_summary(
        self,
        entity: EntityRef,
        start: Optional[date] = None,
        end: Optional[date] = None,
        as_of: Optional[date] = None
    ) -> FinancialSummary:
        as_of = as_of or end or date.today()
        return FinancialSummary(
            trial_balance=self.trial_balance(entity, as_of),
            profit_and_loss=self.profit_and_loss(entity, start, end),
            balance_sheet=self.balance_sheet(entity, as_of),
        )

    def vendor_sales_summary(
        self,
        vendor_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> VendorSalesSummary:
        """Posted, unreversed SALES vouchers of a vendor"""
        filters = dict(
            EntityRef.vendor(vendor_id).filters(),
            voucher_type=VoucherType.SALES.value,
            status=VoucherStatus.POSTED.value,
        )
        summary = VendorSalesSummary(vendor_id=vendor_id, start=start, end=end)
        for data in self.storage.find(tables.VOUCHERS, filters):
            voucher = Voucher.from_dict(data)
            if voucher.reversal_of_id:
                continue
            if start and voucher.voucher_date < start:
                continue
            if end and voucher.voucher_date > end:
                continue
            summary.total_sales += voucher.total_credit
            summary.voucher_count += 1
        return summary

    def _entries(
        self,
        entity: EntityRef,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[LedgerEntry]:
        entries = [LedgerEntry.from_dict(d) for d in self.storage.find(tables.LEDGER_ENTRIES, entity.filters())]
        if start:
            entries = [e for e in entries if e.entry_date >= start]
        if end:
            entries = [e for e in entries if e.entry_date <= end]
        return entries

    def _account_totals(
        self,
        entity: EntityRef,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Dict[str, "tuple[Decimal, Decimal]"]:
        totals: Dict[str, List[Decimal]] = {}
        for entry in self._entries(entity, start=start, end=end):
            bucket = totals.setdefault(entry.account_id, [ZERO, ZERO])
            bucket[0] += entry.debit_amount
            bucket[1] += entry.credit_amount
        return {account_id: (debit, credit) for account_id, (debit, credit) in totals.items()}

    def _statement_lines(
        self,
        entity: EntityRef,
        account_class: AccountClass,
        totals: Dict[str, "tuple[Decimal, Decimal]"]
    ) -> List[StatementLine]:
        lines = []
        for account in self.chart.list_accounts(entity, account_class=account_class):
            debit, credit = totals.get(account.id, (ZERO, ZERO))
            lines.append(StatementLine(
                account_id=account.id,
                code=account.code,
                name=account.name,
                group_name=account.group_name,
                amount=account_balance(account.nature, debit, credit),
            ))
        return lines
