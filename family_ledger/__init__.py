"""
Family Ledger - Source Package

Budget-sharing and spend-aggregation core for a personal/family
finance tracker backed by a document store.

DESIGN PRINCIPLES:
1. The transaction record is the source of truth
2. Derived totals move by atomic deltas, never by overwrite
3. Authorization fails before any side effect
4. Every significant step is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Ledger Team"
