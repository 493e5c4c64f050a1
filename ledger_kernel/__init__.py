"""
Ledger Kernel

Double-entry journal posting and batch-costed stock ledger with:
- Balanced, reversible journals
- Weighted-average lot costing
- Cached per-entity running balances, rebuildable from the journal
- Atomic units of work with row-level locking
"""

__version__ = "0.1.0"
