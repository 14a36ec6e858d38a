"""
Matching Rules Module
"""

from .ledger_rules import LedgerMatchingEngine, LedgerSnapshot, Match, matching_engine

__all__ = ["LedgerMatchingEngine", "LedgerSnapshot", "Match", "matching_engine"]
