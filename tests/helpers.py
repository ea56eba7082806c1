"""
Shared test collaborators and constants
"""

from datetime import date

from marketplace_ledger.access import ActorDirectory, EntityAccessPolicy, EntityRef
from marketplace_ledger.config import LedgerConfig


class AllowAllPolicy(EntityAccessPolicy):
    """Grants everything and remembers every check"""

    def __init__(self):
        self.calls = []

    def validate_entity_access(self, entity_type, entity_id, actor_id):
        self.calls.append((entity_type, entity_id, actor_id))
        return True


class DenyActorPolicy(EntityAccessPolicy):
    """Refuses the listed actors"""

    def __init__(self, *denied):
        self.denied = set(denied)

    def validate_entity_access(self, entity_type, entity_id, actor_id):
        return actor_id not in self.denied


class StaticDirectory(ActorDirectory):
    def __init__(self, profiles):
        self.profiles = profiles

    def describe(self, actor_id):
        return self.profiles.get(actor_id)


ADMIN = EntityRef.admin()
VENDOR_1 = EntityRef.vendor("vendor-1")
VENDOR_2 = EntityRef.vendor("vendor-2")
ENTRY_DATE = date(2025, 3, 14)


def make_config(**overrides):
    return LedgerConfig(_env_file=None, **overrides)
