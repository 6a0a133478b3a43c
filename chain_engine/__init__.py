"""
Chain Execution Engine

Durable, time-bounded execution of multi-stage task chains: a file-backed
FIFO of chain ids, atomic chain storage, nested timeout budgets, parallel
stages, and a one-time migration from a legacy key-value store.
"""

__version__ = "1.0.0"
