"""
GlobalPay Ledger

Multi-currency peer-to-peer money-transfer ledger: accounts with balances
in several currencies, deposits, withdrawals and sends with fee
calculation and exchange-rate lookups, committed atomically through a
pluggable ledger store.
"""

__version__ = "1.0.0"
