"""
Reconciliation Engine Module

Pairs bank transactions with the open payables and receivables they settle:
- Text similarity scoring on a 0-100 scale
- Composite amount/date/text matching with configurable thresholds
- Single, batch and sequential-review acceptance
- Archive-once guarantee for every bank transaction
"""

from reconciliation.similarity import (
    SimilarityScorer,
    SequenceSimilarityScorer,
    normalise_similarity,
    default_scorer,
)
from reconciliation.matching_config import MatchingConfig
from reconciliation.matching_rules.ledger_rules import (
    LedgerMatchingEngine,
    LedgerSnapshot,
    Match,
    matching_engine,
)

__all__ = [
    # Similarity
    'SimilarityScorer',
    'SequenceSimilarityScorer',
    'normalise_similarity',
    'default_scorer',
    # Matching Rules
    'MatchingConfig',
    'LedgerMatchingEngine',
    'LedgerSnapshot',
    'Match',
    'matching_engine',
]
