"""
Shared fixtures: an accounting system over in-memory storage with the
platform and two vendors provisioned.
"""

import pytest

from marketplace_ledger.access import ActorProfile
from marketplace_ledger.accounts import AccountClass
from marketplace_ledger.storage import InMemoryStorage, SQLiteStorage
from marketplace_ledger.system import create_accounting_system

from tests.helpers import ADMIN, AllowAllPolicy, StaticDirectory, make_config


@pytest.fixture
def policy():
    return AllowAllPolicy()


@pytest.fixture
def system(policy):
    return create_accounting_system(InMemoryStorage(), policy, make_config())


@pytest.fixture(params=["memory", "sqlite"])
def backed_system(request, tmp_path, policy):
    """The same system over each storage backend"""
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "ledger.db")
    system = create_accounting_system(storage, policy, make_config())
    yield system
    system.close()


@pytest.fixture
def provisioned(system):
    system.chart.provision_admin_accounts("admin")
    system.chart.provision_vendor_accounts("vendor-1", "admin")
    system.chart.provision_vendor_accounts("vendor-2", "admin")
    return system


@pytest.fixture
def cash_and_revenue(system):
    """Two plain admin accounts: a debit-nature asset and a credit-nature income"""
    cash = system.chart.create_account(ADMIN, AccountClass.ASSET, "Cash", "admin")
    revenue = system.chart.create_account(ADMIN, AccountClass.INCOME, "Service Revenue", "admin")
    return cash, revenue


@pytest.fixture
def directory():
    return StaticDirectory({"admin": ActorProfile(display_name="Ada Admin", role="ADMIN")})
