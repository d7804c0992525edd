"""
Ledger Kernel

The atomic transaction and ledger engine for a personal-finance ledger:
- Cumulative, lock-protected balance updates
- Balanced double-entry journal lines for every completed transaction
- Credit-card billing-cycle placement
- Installment and fixed-series chain scopes
- Period closures that block retroactive writes
- Idempotent operations keyed by client-generated keys
"""

__version__ = "0.1.0"
