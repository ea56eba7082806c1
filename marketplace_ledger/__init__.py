"""
Marketplace Ledger

Double-entry bookkeeping core for a multi-vendor marketplace: chart of
accounts per entity, balanced vouchers posted into an append-only ledger,
automatic vouchers for marketplace events, and statements derived by
replaying ledger history.
"""

__version__ = "1.0.0"
