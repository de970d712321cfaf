"""
Budget Ledger - Source Package

The ledger materialization engine behind a personal budgeting tool:
installment splitting, recurring-rule materialization and display
currency projection over monthly ledgers kept in a document store.

DESIGN PRINCIPLES:
1. Every multi-document write is one atomic batch
2. Appends are additive, never whole-list overwrites
3. The recurring cursor only moves together with its entries
4. Display conversion never touches stored amounts
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
