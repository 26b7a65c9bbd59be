"""
Expense Kernel

Multi-tenant expense approval core:
- Rule-driven approval workflows (sequential, parallel, percentage, any-one)
- Atomic, conditional decision recording
- Currency converted once at submission and never recomputed
- Typed errors and structured logging throughout
"""

__version__ = "0.1.0"
