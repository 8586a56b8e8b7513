"""
Household Ledger - Source Package

The computational core of a household-management app: who owes whom,
how a payment is spread over the underlying expense splits, and whose
turn it is to take the next recurring chore.

DESIGN PRINCIPLES:
1. Engines are pure functions over explicit inputs
2. All I/O goes through injected storage interfaces
3. Amounts are computed in integer cents, never floats
4. Every settlement and every auto-created chore is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
