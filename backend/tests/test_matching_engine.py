"""
Tests for the ledger matching engine.

The engine is pure, so these tests build snapshots directly without a
database.
"""

from datetime import date
from decimal import Decimal

import pytest

from models.enums import MatchType, VendorTransactionStatus, IncomeStatus
from models.schemas import BankTransaction, VendorTransaction, IncomeItem
from reconciliation.matching_config import MatchingConfig
from reconciliation.matching_rules.ledger_rules import (
    LedgerMatchingEngine,
    LedgerSnapshot,
    UNDATED_SCORE,
)


BANK_DAY = date(2025, 3, 12)


def bank(id, amount, on=BANK_DAY, merchant="ACME SUPPLIES", description=""):
    return BankTransaction(
        id=id,
        amount=Decimal(amount),
        date=on,
        merchant_name=merchant,
        description=description,
    )


def payable(id, amount, due=BANK_DAY, vendor="Acme Supplies", status=VendorTransactionStatus.PENDING):
    return VendorTransaction(
        id=id,
        vendor_name=vendor,
        amount=Decimal(amount),
        due_date=due,
        status=status,
    )


def receivable(id, amount, on=BANK_DAY, source="Globex Corporation", status=IncomeStatus.PENDING):
    return IncomeItem(
        id=id,
        amount=Decimal(amount),
        payment_date=on,
        source=source,
        status=status,
    )


@pytest.fixture
def engine():
    return LedgerMatchingEngine(config=MatchingConfig())


class TestScenario:

    def test_debit_matches_pending_payable(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00", on=date(2025, 3, 12))],
            vendor_transactions=[payable("v1", "250.00", due=date(2025, 3, 10))],
        )

        matches = engine.compute_matches(snapshot)

        assert len(matches) == 1
        match = matches[0]
        assert match.type == MatchType.VENDOR
        assert match.matched_id == "v1"
        assert match.date_distance_days == 2
        assert match.scoring_breakdown["amount"] == 1.0
        assert match.scoring_breakdown["text"] == 1.0
        assert match.scoring_breakdown["date"] == pytest.approx(1 - 2 / 30, abs=1e-4)
        assert match.match_score == pytest.approx(0.5 + 0.2 * (1 - 2 / 30) + 0.3, abs=1e-4)
        assert match.match_score > 0.5


class TestSignGate:

    def test_debits_only_match_payables_and_credits_only_receivables(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[
                bank("debit", "-250.00"),
                bank("credit", "500.00", merchant="GLOBEX CORPORATION"),
            ],
            vendor_transactions=[
                payable("v-250", "250.00"),
                payable("v-500", "500.00", vendor="Globex Corporation"),
            ],
            income_items=[
                receivable("i-250", "250.00", source="Acme Supplies"),
                receivable("i-500", "500.00"),
            ],
        )

        matches = engine.compute_matches(snapshot)

        assert matches
        for match in matches:
            if match.bank_transaction.amount < 0:
                assert match.type == MatchType.VENDOR
                assert match.matched_income is None
            else:
                assert match.type == MatchType.INCOME
                assert match.matched_vendor_transaction is None

        assert {(m.bank_transaction.id, m.matched_id) for m in matches} == {
            ("debit", "v-250"),
            ("credit", "i-500"),
        }

    def test_zero_amount_never_matches(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b0", "0.00")],
            vendor_transactions=[payable("v1", "250.00")],
            income_items=[receivable("i1", "250.00", source="ACME SUPPLIES")],
        )

        assert engine.compute_matches(snapshot) == []

    def test_only_open_records_are_candidates(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("debit", "-250.00"), bank("credit", "250.00", merchant="Globex Corporation")],
            vendor_transactions=[
                payable("paid", "250.00", status=VendorTransactionStatus.COMPLETED),
                payable("split", "250.00", status=VendorTransactionStatus.PARTIALLY_PAID),
            ],
            income_items=[receivable("received", "250.00", status=IncomeStatus.RECEIVED)],
        )

        assert engine.compute_matches(snapshot) == []


class TestAmountBand:

    def test_amount_outside_band_is_never_emitted(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-300.00")],
            vendor_transactions=[payable("v1", "250.00")],
        )

        assert engine.compute_matches(snapshot) == []

    def test_difference_equal_to_band_scores_zero(self, engine):
        # Band for 250.00 is max(250 * 0.02, 1.00) = 5.00
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-255.00")],
            vendor_transactions=[payable("v1", "250.00")],
        )

        assert engine.compute_matches(snapshot) == []
        assert engine.score_candidate(snapshot.bank_transactions[0], snapshot.vendor_transactions[0]).scoring_breakdown["amount"] == 0.0

    def test_amount_inside_band_decays_linearly(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-252.50")],
            vendor_transactions=[payable("v1", "250.00")],
        )

        matches = engine.compute_matches(snapshot)

        assert len(matches) == 1
        assert matches[0].scoring_breakdown["amount"] == pytest.approx(0.5)
        assert matches[0].match_score == pytest.approx(0.25 + 0.2 + 0.3)

    def test_zero_tolerance_requires_exact_amount(self):
        engine = LedgerMatchingEngine(config=MatchingConfig(amount_tolerance_percent=0, amount_tolerance_fixed=0))
        vendor = payable("v1", "250.00")

        near = LedgerSnapshot(bank_transactions=[bank("b1", "-250.01")], vendor_transactions=[vendor])
        exact = LedgerSnapshot(bank_transactions=[bank("b1", "-250.00")], vendor_transactions=[vendor])

        assert engine.compute_matches(near) == []
        assert len(engine.compute_matches(exact)) == 1

    def test_tolerance_is_larger_of_percent_and_fixed(self):
        config = MatchingConfig()

        assert config.amount_tolerance(Decimal("1000.00")) == Decimal("20")
        assert config.amount_tolerance(Decimal("10.00")) == Decimal("1")


class TestThreshold:

    def test_weak_evidence_is_not_emitted(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-253.00")],
            vendor_transactions=[payable("v1", "250.00", due=date(2025, 5, 1), vendor="Zeta Holdings")],
        )

        assert engine.compute_matches(snapshot) == []

    def test_score_equal_to_threshold_is_not_emitted(self, engine):
        # Exact amount only: 0.5 * 1.0, no date or text evidence
        bank_tx = bank("b1", "-250.00", merchant=None)
        vendor = payable("v1", "250.00", due=date(2025, 6, 1))
        snapshot = LedgerSnapshot(bank_transactions=[bank_tx], vendor_transactions=[vendor])

        assert engine.compute_matches(snapshot) == []

        manual = engine.score_candidate(bank_tx, vendor)
        assert manual.match_score == pytest.approx(0.5)
        assert manual.type == MatchType.VENDOR

    def test_undated_candidate_scores_half_on_date(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00")],
            vendor_transactions=[payable("v1", "250.00", due=None)],
        )

        matches = engine.compute_matches(snapshot)

        assert len(matches) == 1
        assert matches[0].scoring_breakdown["date"] == UNDATED_SCORE
        assert matches[0].date_distance_days is None
        assert matches[0].match_score == pytest.approx(0.9)


class TestOrdering:

    def test_higher_score_first(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00")],
            vendor_transactions=[
                payable("far", "250.00", due=date(2025, 3, 2)),
                payable("near", "250.00", due=BANK_DAY),
            ],
        )

        matches = engine.compute_matches(snapshot)

        assert [m.matched_id for m in matches] == ["near", "far"]
        assert matches[0].match_score >= matches[1].match_score

    def test_equal_scores_prefer_dated_candidate(self, engine):
        # 15 days out scores 0.5 on date, the same as an undated candidate
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00")],
            vendor_transactions=[
                payable("a-undated", "250.00", due=None),
                payable("z-dated", "250.00", due=date(2025, 2, 25)),
            ],
        )

        matches = engine.compute_matches(snapshot)

        assert [m.matched_id for m in matches] == ["z-dated", "a-undated"]
        assert matches[0].match_score == matches[1].match_score

    def test_full_ties_break_on_id(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00")],
            vendor_transactions=[payable("v-b", "250.00"), payable("v-a", "250.00")],
        )

        assert [m.matched_id for m in engine.compute_matches(snapshot)] == ["v-a", "v-b"]

    def test_bank_transactions_keep_input_order(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("second", "-100.00"), bank("first", "-250.00")],
            vendor_transactions=[payable("v-250", "250.00"), payable("v-100", "100.00")],
        )

        assert [m.bank_transaction.id for m in engine.compute_matches(snapshot)] == ["second", "first"]

    def test_repeated_runs_are_identical(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("b1", "-250.00"), bank("b2", "-251.00", on=date(2025, 3, 20))],
            vendor_transactions=[
                payable("v1", "250.00", due=date(2025, 3, 10)),
                payable("v2", "251.00", due=None),
            ],
        )

        first = [m.to_dict() for m in engine.compute_matches(snapshot)]
        second = [m.to_dict() for m in engine.compute_matches(snapshot)]

        assert first == second


class TestSelectBestMatches:

    def test_each_side_used_once(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[
                bank("b1", "-250.00", on=date(2025, 3, 10)),
                bank("b2", "-250.00", on=date(2025, 3, 20)),
            ],
            vendor_transactions=[
                payable("v1", "250.00", due=date(2025, 3, 10)),
                payable("v2", "250.00", due=date(2025, 3, 20)),
            ],
        )

        matches = engine.compute_matches(snapshot)
        best = engine.select_best_matches(matches)

        assert len(matches) == 4
        assert {(m.bank_transaction.id, m.matched_id) for m in best} == {("b1", "v1"), ("b2", "v2")}

    def test_single_payable_goes_to_best_bank_transaction(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[
                bank("b-late", "-250.00", on=date(2025, 3, 25)),
                bank("b-exact", "-250.00", on=date(2025, 3, 10)),
            ],
            vendor_transactions=[payable("v1", "250.00", due=date(2025, 3, 10))],
        )

        best = engine.select_best_matches(engine.compute_matches(snapshot))

        assert [(m.bank_transaction.id, m.matched_id) for m in best] == [("b-exact", "v1")]


class TestLookups:

    def test_filters(self, engine):
        snapshot = LedgerSnapshot(
            bank_transactions=[bank("debit", "-250.00"), bank("credit", "500.00", merchant="Globex Corporation")],
            vendor_transactions=[payable("v1", "250.00")],
            income_items=[receivable("i1", "500.00")],
        )
        matches = engine.compute_matches(snapshot)

        assert [m.matched_id for m in LedgerMatchingEngine.matches_for_bank_transaction(matches, "debit")] == ["v1"]
        assert [m.bank_transaction.id for m in LedgerMatchingEngine.matches_for_vendor_transaction(matches, "v1")] == ["debit"]
        assert [m.bank_transaction.id for m in LedgerMatchingEngine.matches_for_income(matches, "i1")] == ["credit"]
        assert LedgerMatchingEngine.matches_for_income(matches, "v1") == []


class TestScorerInjection:

    def test_custom_scorer_drives_text_score(self):
        class ConstantScorer:
            def score(self, a, b):
                return 40.0

        engine = LedgerMatchingEngine(config=MatchingConfig(), scorer=ConstantScorer())
        match = engine.score_candidate(bank("b1", "-250.00"), payable("v1", "250.00", vendor="Anything"))

        assert match.scoring_breakdown["text"] == pytest.approx(0.4)

    def test_name_match_flag_uses_similarity_threshold(self):
        class ConstantScorer:
            def score(self, a, b):
                return 40.0

        candidate = (bank("b1", "-250.00"), payable("v1", "250.00", vendor="Anything"))
        strict = LedgerMatchingEngine(config=MatchingConfig(), scorer=ConstantScorer())
        lenient = LedgerMatchingEngine(config=MatchingConfig(similarity_match_threshold=40.0), scorer=ConstantScorer())

        strict_match = strict.score_candidate(*candidate)
        lenient_match = lenient.score_candidate(*candidate)

        assert strict_match.scoring_breakdown["name_match"] is False
        assert lenient_match.scoring_breakdown["name_match"] is True
        assert strict_match.match_score == lenient_match.match_score
