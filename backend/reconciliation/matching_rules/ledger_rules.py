"""
Ledger Matching Rules

Pairs bank transactions with the open payables and receivables they most
likely settle.

Sign Gate:
- debit (amount < 0) -> pending vendor transactions only
- credit (amount > 0) -> pending income items only
- zero amount -> no candidates

Composite Score (weights from MatchingConfig):
- amount: 1.0 on exact absolute match, linear to 0 at the tolerance band
- date: 1.0 same day, linear to 0 at the date window, 0.5 when undated
- text: best similarity between bank and counterparty names, 0-1

The breakdown also flags name_match when the best similarity reaches
similarity_match_threshold on the 0-100 scale; it does not affect the score.

A candidate whose amount score is 0 is never emitted. Others are emitted
when the composite exceeds min_score.

The engine is pure: it only reads the snapshot it is given.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Any, List, Optional, Tuple, Union

from models.enums import MatchType, VendorTransactionStatus, IncomeStatus
from models.schemas import BankTransaction, VendorTransaction, IncomeItem
from reconciliation.matching_config import MatchingConfig
from reconciliation.similarity import (
    SimilarityScorer,
    default_scorer,
    normalise_similarity,
)


UNDATED_SCORE = 0.5

Candidate = Union[VendorTransaction, IncomeItem]


@dataclass
class LedgerSnapshot:
    """
    Point-in-time copy of the three live record sets for one user.
    """
    bank_transactions: List[BankTransaction] = field(default_factory=list)
    vendor_transactions: List[VendorTransaction] = field(default_factory=list)
    income_items: List[IncomeItem] = field(default_factory=list)


@dataclass
class Match:
    """
    Proposed pairing of a bank transaction with one payable or receivable.

    Never persisted; recomputed from the current snapshot on demand.
    """
    bank_transaction: BankTransaction
    type: MatchType
    match_score: float
    matched_vendor_transaction: Optional[VendorTransaction] = None
    matched_income: Optional[IncomeItem] = None
    date_distance_days: Optional[int] = None
    scoring_breakdown: Dict[str, Any] = field(default_factory=dict)

    @property
    def matched_id(self) -> str:
        if self.type == MatchType.VENDOR:
            return self.matched_vendor_transaction.id
        return self.matched_income.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_transaction": self.bank_transaction.model_dump(mode="json"),
            "type": self.type.value,
            "matched_id": self.matched_id,
            "matched_vendor_transaction": (
                self.matched_vendor_transaction.model_dump(mode="json")
                if self.matched_vendor_transaction else None
            ),
            "matched_income": (
                self.matched_income.model_dump(mode="json")
                if self.matched_income else None
            ),
            "match_score": self.match_score,
            "date_distance_days": self.date_distance_days,
            "scoring_breakdown": self.scoring_breakdown,
        }


class LedgerMatchingEngine:
    """
    Matching rules engine for bank reconciliation.

    Scores every sign-compatible (bank transaction, open record) pair and
    emits those above threshold, ordered for review.
    """

    def __init__(
        self,
        config: Optional[MatchingConfig] = None,
        scorer: Optional[SimilarityScorer] = None
    ):
        self._config = config
        self.scorer = scorer or default_scorer

    @property
    def config(self) -> MatchingConfig:
        # Resolved lazily so importing the engine never reads the environment
        if self._config is None:
            self._config = MatchingConfig.from_settings()
        return self._config

    def compute_matches(self, snapshot: LedgerSnapshot) -> List[Match]:
        """
        Compute all candidate matches for a snapshot.

        Bank transactions keep their input order; candidates for one bank
        transaction are ordered by score descending, then date distance
        ascending, then id.

        Returns:
            List of Match, possibly several per bank transaction
        """
        open_payables = [
            v for v in snapshot.vendor_transactions
            if v.status == VendorTransactionStatus.PENDING
        ]
        open_receivables = [
            i for i in snapshot.income_items
            if i.status == IncomeStatus.PENDING
        ]

        matches = []
        for bank_tx in snapshot.bank_transactions:
            if bank_tx.is_debit:
                candidates = open_payables
            elif bank_tx.is_credit:
                candidates = open_receivables
            else:
                continue

            found = []
            for candidate in candidates:
                match = self.score_candidate(bank_tx, candidate)
                if match.scoring_breakdown['amount'] <= 0:
                    continue
                if match.scoring_breakdown['raw_total'] > self.config.min_score:
                    found.append(match)

            found.sort(key=self._order_key)
            matches.extend(found)

        return matches

    def score_candidate(self, bank_tx: BankTransaction, candidate: Candidate) -> Match:
        """
        Score one explicit pairing regardless of threshold.

        Used for manual matching. Sign compatibility is not checked here.
        """
        breakdown, distance = self._score_match(bank_tx, candidate)

        if isinstance(candidate, VendorTransaction):
            return Match(
                bank_transaction=bank_tx,
                type=MatchType.VENDOR,
                match_score=breakdown['total'],
                matched_vendor_transaction=candidate,
                date_distance_days=distance,
                scoring_breakdown=breakdown,
            )

        return Match(
            bank_transaction=bank_tx,
            type=MatchType.INCOME,
            match_score=breakdown['total'],
            matched_income=candidate,
            date_distance_days=distance,
            scoring_breakdown=breakdown,
        )

    def select_best_matches(self, matches: List[Match]) -> List[Match]:
        """
        Collapse candidate matches to a one-to-one assignment.

        Greedy by score: each bank transaction and each payable/receivable
        is used at most once. Result keeps the input order.
        """
        ranked = sorted(
            range(len(matches)),
            key=lambda i: (*self._order_key(matches[i]), matches[i].bank_transaction.id)
        )

        used_bank = set()
        used_targets = set()
        chosen = set()
        for index in ranked:
            match = matches[index]
            target = (match.type, match.matched_id)
            if match.bank_transaction.id in used_bank or target in used_targets:
                continue
            used_bank.add(match.bank_transaction.id)
            used_targets.add(target)
            chosen.add(index)

        return [m for i, m in enumerate(matches) if i in chosen]

    # ==================== LOOKUPS ====================

    @staticmethod
    def matches_for_bank_transaction(matches: List[Match], bank_transaction_id: str) -> List[Match]:
        return [m for m in matches if m.bank_transaction.id == bank_transaction_id]

    @staticmethod
    def matches_for_vendor_transaction(matches: List[Match], vendor_transaction_id: str) -> List[Match]:
        return [
            m for m in matches
            if m.type == MatchType.VENDOR and m.matched_id == vendor_transaction_id
        ]

    @staticmethod
    def matches_for_income(matches: List[Match], income_id: str) -> List[Match]:
        return [
            m for m in matches
            if m.type == MatchType.INCOME and m.matched_id == income_id
        ]

    # ==================== SCORING ====================

    def _score_match(
        self,
        bank_tx: BankTransaction,
        candidate: Candidate
    ) -> Tuple[Dict[str, Any], Optional[int]]:
        """
        Score a pairing.

        Returns:
            Tuple of (scoring_breakdown, date_distance_days)
        """
        breakdown = {}

        amount_score = self._score_amount(bank_tx.amount, candidate.amount)
        breakdown['amount'] = round(amount_score, 4)

        date_score, distance = self._score_date(bank_tx.date, self._candidate_date(candidate))
        breakdown['date'] = round(date_score, 4)

        similarity = self._best_similarity(bank_tx, candidate)
        text_score = normalise_similarity(similarity)
        breakdown['text'] = round(text_score, 4)
        breakdown['name_match'] = similarity >= self.config.similarity_match_threshold

        total_score = (
            amount_score * self.config.weight_amount +
            date_score * self.config.weight_date +
            text_score * self.config.weight_text
        )

        breakdown['raw_total'] = total_score
        breakdown['total'] = round(total_score, 4)

        return breakdown, distance

    def _score_amount(self, bank_amount: Decimal, candidate_amount: Decimal) -> float:
        """Linear decay from 1.0 at an exact match to 0 at the tolerance band"""
        bank_abs = abs(Decimal(bank_amount))
        candidate_abs = abs(Decimal(candidate_amount))

        diff = abs(bank_abs - candidate_abs)
        if diff == 0:
            return 1.0

        band = self.config.amount_tolerance(candidate_abs)
        if band <= 0 or diff >= band:
            return 0.0

        return float(1 - diff / band)

    def _score_date(self, bank_date: date, candidate_date: Optional[date]) -> Tuple[float, Optional[int]]:
        """Linear decay from 1.0 on the same day to 0 at the date window"""
        if candidate_date is None:
            return UNDATED_SCORE, None

        distance = abs((bank_date - candidate_date).days)
        window = self.config.date_window_days

        if distance == 0:
            return 1.0, distance
        if window <= 0 or distance >= window:
            return 0.0, distance

        return 1.0 - distance / window, distance

    def _best_similarity(self, bank_tx: BankTransaction, candidate: Candidate) -> float:
        """Best 0-100 similarity across the bank text and the counterparty fields"""
        bank_texts = [t for t in (bank_tx.merchant_name, bank_tx.description) if t]
        if isinstance(candidate, VendorTransaction):
            candidate_texts = [candidate.vendor_name, candidate.description]
        else:
            candidate_texts = [candidate.source, candidate.description]
        candidate_texts = [t for t in candidate_texts if t]

        best = 0.0
        for bank_text in bank_texts:
            for candidate_text in candidate_texts:
                best = max(best, self.scorer.score(bank_text, candidate_text))

        return best

    @staticmethod
    def _candidate_date(candidate: Candidate) -> Optional[date]:
        if isinstance(candidate, VendorTransaction):
            return candidate.due_date
        return candidate.payment_date

    @staticmethod
    def _order_key(match: Match) -> Tuple[float, float, str]:
        distance = match.date_distance_days
        return (
            -match.scoring_breakdown['raw_total'],
            float(distance) if distance is not None else float('inf'),
            match.matched_id,
        )


# Singleton instance
matching_engine = LedgerMatchingEngine()
