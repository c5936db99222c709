"""
Settlement Kernel

Persistence and domain core for payment allocation:
- Ledger account directory with derived balances
- Invoices, bills and their settlements
- Allocation groups and records
- Vouchers with per-type account-class rules
- Full auditability via hash chain
"""

__version__ = "0.1.0"
