"""
Test suite for the chart of accounts
"""

import threading

import pytest

from marketplace_ledger.access import EntityRef
from marketplace_ledger.accounts import AccountClass, AccountNature, WellKnownAccount
from marketplace_ledger.audit import AuditAction
from marketplace_ledger.errors import (
    AccessDeniedError, ConflictError, ImmutableAccountError, NotFoundError, ValidationError
)
from marketplace_ledger.storage import InMemoryStorage
from marketplace_ledger.system import create_accounting_system
from marketplace_ledger.vouchers import EntryLine, VoucherType

from tests.helpers import ADMIN, ENTRY_DATE, VENDOR_1, DenyActorPolicy, make_config


class TestAccountCreation:

    def test_codes_are_sequential_per_entity_and_class(self, system):
        first = system.chart.create_account(ADMIN, AccountClass.ASSET, "Cash", "admin")
        second = system.chart.create_account(ADMIN, AccountClass.ASSET, "Petty Cash", "admin")
        income = system.chart.create_account(ADMIN, AccountClass.INCOME, "Fees", "admin")
        vendor = system.chart.create_account(VENDOR_1, AccountClass.ASSET, "Till", "admin")

        assert first.code == "ADM-AST-0001"
        assert second.code == "ADM-AST-0002"
        assert income.code == "ADM-INC-0001"
        assert vendor.code == "VND-AST-0001"

    @pytest.mark.parametrize("account_class,nature", [
        (AccountClass.ASSET, AccountNature.DEBIT),
        (AccountClass.EXPENSE, AccountNature.DEBIT),
        (AccountClass.LIABILITY, AccountNature.CREDIT),
        (AccountClass.EQUITY, AccountNature.CREDIT),
        (AccountClass.INCOME, AccountNature.CREDIT),
    ])
    def test_nature_follows_class(self, system, account_class, nature):
        account = system.chart.create_account(ADMIN, account_class, "Bucket", "admin")
        assert account.nature == nature

    def test_creation_is_audited(self, system):
        account = system.chart.create_account(ADMIN, AccountClass.EQUITY, "Capital", "admin")

        entries = system.audit_log.query(entity_id=account.id).data
        assert len(entries) == 1
        assert entries[0].action == AuditAction.CREATE
        assert entries[0].after["code"] == "ADM-EQT-0001"

    def test_blank_name_rejected(self, system):
        with pytest.raises(ValidationError, match="name is required"):
            system.chart.create_account(ADMIN, AccountClass.ASSET, "  ", "admin")

    def test_parent_must_share_entity_and_class(self, system):
        parent = system.chart.create_account(ADMIN, AccountClass.ASSET, "Current Assets", "admin")
        child = system.chart.create_account(ADMIN, AccountClass.ASSET, "Cash", "admin", parent_id=parent.id)
        assert child.parent_id == parent.id

        with pytest.raises(ValidationError, match="same entity and class"):
            system.chart.create_account(ADMIN, AccountClass.INCOME, "Fees", "admin", parent_id=parent.id)
        with pytest.raises(NotFoundError):
            system.chart.create_account(ADMIN, AccountClass.ASSET, "Orphan", "admin", parent_id="missing")

    def test_access_denied(self):
        system = create_accounting_system(InMemoryStorage(), DenyActorPolicy("intruder"), make_config())

        with pytest.raises(AccessDeniedError) as exc_info:
            system.chart.create_account(VENDOR_1, AccountClass.ASSET, "Till", "intruder")

        assert exc_info.value.kind == "permission_denied"
        assert system.chart.list_accounts(VENDOR_1) == []


class TestProvisioning:

    def test_admin_accounts(self, system):
        accounts = system.chart.provision_admin_accounts("admin")
        codes = {a.system_key: a.code for a in accounts}

        assert codes == {
            "ADMIN_BANK": "ADM-AST-0001",
            "COMMISSION_RECEIVABLE": "ADM-AST-0002",
            "COMMISSION_INCOME": "ADM-INC-0001",
            "GATEWAY_CHARGES": "ADM-EXP-0001",
            "SETTLEMENT_PAYABLE": "ADM-LIB-0001",
        }
        assert all(a.is_system and not a.can_delete for a in accounts)

    def test_vendor_accounts_include_platform_payable(self, system):
        system.chart.provision_admin_accounts("admin")
        accounts = system.chart.provision_vendor_accounts("vendor-1", "admin")

        vendor_side = [a for a in accounts if a.entity == VENDOR_1]
        assert [a.code for a in vendor_side] == ["VND-AST-0001", "VND-INC-0001", "VND-AST-0002", "VND-AST-0003"]

        payable = accounts[-1]
        assert payable.entity == ADMIN
        assert payable.name == "Vendor Payable - vendor-1"
        assert payable.account_class == AccountClass.LIABILITY
        assert payable.subject_id == "vendor-1"

    def test_provisioning_is_idempotent(self, system):
        first = system.chart.provision_vendor_accounts("vendor-1", "admin")
        second = system.chart.provision_vendor_accounts("vendor-1", "admin")

        assert [a.id for a in first] == [a.id for a in second]
        assert len(system.chart.list_accounts(VENDOR_1)) == 4

    def test_resolve_account(self, provisioned):
        payable = provisioned.chart.resolve_account(ADMIN, WellKnownAccount.VENDOR_PAYABLE, "vendor-2")
        assert payable.name == "Vendor Payable - vendor-2"

        sales = provisioned.chart.resolve_account(VENDOR_1, WellKnownAccount.SALES)
        assert sales.code == "VND-INC-0001"

    def test_resolve_never_creates(self, system):
        with pytest.raises(NotFoundError, match="SALES"):
            system.chart.resolve_account(VENDOR_1, WellKnownAccount.SALES)
        assert system.chart.list_accounts(VENDOR_1) == []

    def test_resolve_rejects_wrong_entity(self, provisioned):
        with pytest.raises(ValidationError):
            provisioned.chart.resolve_account(ADMIN, WellKnownAccount.SALES)
        with pytest.raises(ValidationError, match="requires the vendor id"):
            provisioned.chart.resolve_account(ADMIN, WellKnownAccount.VENDOR_PAYABLE)

    def test_duplicate_key_conflicts(self, provisioned):
        with pytest.raises(ConflictError):
            provisioned.chart.create_account(
                ADMIN, AccountClass.ASSET, "Second Bank", "admin",
                system_key=WellKnownAccount.ADMIN_BANK
            )


class TestAccountMaintenance:

    def test_update_descriptive_fields(self, system):
        account = system.chart.create_account(ADMIN, AccountClass.EXPENSE, "Rent", "admin")

        updated = system.chart.update_account(account.id, "admin", name="Office Rent", group_name="Overheads")

        assert updated.name == "Office Rent"
        assert updated.code == account.code
        audit = system.audit_log.query(entity_id=account.id, action=AuditAction.UPDATE).data[0]
        assert audit.before["name"] == "Rent"
        assert audit.after["name"] == "Office Rent"

    def test_system_accounts_are_immutable(self, provisioned):
        bank = provisioned.chart.resolve_account(ADMIN, WellKnownAccount.ADMIN_BANK)

        with pytest.raises(ImmutableAccountError):
            provisioned.chart.update_account(bank.id, "admin", name="Renamed")
        with pytest.raises(ImmutableAccountError):
            provisioned.chart.delete_account(bank.id, "admin")
        assert provisioned.chart.get_account(bank.id).name == "Bank Account"

    def test_delete_unused_account(self, system):
        account = system.chart.create_account(ADMIN, AccountClass.EXPENSE, "Misc", "admin")

        system.chart.delete_account(account.id, "admin")

        assert system.chart.get_account(account.id) is None
        with pytest.raises(NotFoundError):
            system.chart.delete_account(account.id, "admin")

    def test_delete_refused_with_draft_entries(self, system, cash_and_revenue):
        cash, revenue = cash_and_revenue
        system.vouchers.create_voucher(
            ADMIN, VoucherType.JOURNAL, ENTRY_DATE, "Draft only",
            [EntryLine.debit(cash.id, "10"), EntryLine.credit(revenue.id, "10")], "admin"
        )

        with pytest.raises(ConflictError, match="draft"):
            system.chart.delete_account(cash.id, "admin")

    def test_delete_refused_with_ledger_entries(self, system, cash_and_revenue):
        cash, revenue = cash_and_revenue
        voucher = system.vouchers.create_voucher(
            ADMIN, VoucherType.JOURNAL, ENTRY_DATE, "Posted",
            [EntryLine.debit(cash.id, "10"), EntryLine.credit(revenue.id, "10")], "admin"
        )
        system.vouchers.post_voucher(voucher.id, "admin")

        with pytest.raises(ConflictError, match="existing transactions"):
            system.chart.delete_account(revenue.id, "admin")

    def test_delete_refused_with_children(self, system):
        parent = system.chart.create_account(ADMIN, AccountClass.ASSET, "Current Assets", "admin")
        system.chart.create_account(ADMIN, AccountClass.ASSET, "Cash", "admin", parent_id=parent.id)

        with pytest.raises(ConflictError, match="child"):
            system.chart.delete_account(parent.id, "admin")

    def test_list_accounts_filters(self, system):
        cash = system.chart.create_account(ADMIN, AccountClass.ASSET, "Cash", "admin")
        system.chart.create_account(ADMIN, AccountClass.INCOME, "Fees", "admin")
        system.chart.update_account(cash.id, "admin", is_active=False)

        assert [a.name for a in system.chart.list_accounts(ADMIN)] == ["Fees"]
        assert len(system.chart.list_accounts(ADMIN, include_inactive=True)) == 2
        assert system.chart.list_accounts(ADMIN, AccountClass.INCOME)[0].code == "ADM-INC-0001"
        assert system.chart.get_account_by_code(ADMIN, "ADM-AST-0001").id == cash.id
        assert system.chart.get_account_by_code(EntityRef.vendor("x"), "ADM-AST-0001") is None


class TestConcurrentCreation:

    def test_codes_never_repeat(self, backed_system):
        system = backed_system
        codes, errors = [], []

        def create(worker):
            try:
                for n in range(5):
                    account = system.chart.create_account(ADMIN, AccountClass.ASSET, f"Till {worker}-{n}", "admin")
                    codes.append(account.code)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(codes) == [f"ADM-AST-{n:04d}" for n in range(1, 21)]
        assert len(system.chart.list_accounts(ADMIN)) == 20
