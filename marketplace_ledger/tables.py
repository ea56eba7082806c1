"""Storage table names shared across components."""

ACCOUNTS = "chart_of_accounts"
VOUCHERS = "vouchers"
DRAFT_ENTRIES = "voucher_draft_entries"
LEDGER_ENTRIES = "ledger_entries"
PERIODS = "accounting_periods"
VENDOR_PAYABLES = "vendor_payables"
COMMISSION_RECORDS = "commission_records"
GATEWAY_TRANSACTIONS = "gateway_transactions"
