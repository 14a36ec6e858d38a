"""
Matching Configuration

Thresholds, tolerances and weights used by the ledger matching engine.
Defaults live in config.Settings so they can be tuned per environment.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Dict, Any, Optional

from config import Settings, get_settings


@dataclass(frozen=True)
class MatchingConfig:
    """
    Tunable matching parameters.

    amount_tolerance_percent and amount_tolerance_fixed define the band at
    which the amount score reaches zero: max(amount * percent, fixed).
    """
    min_score: float = 0.5
    amount_tolerance_percent: float = 0.02
    amount_tolerance_fixed: float = 1.00
    date_window_days: int = 30
    weight_amount: float = 0.5
    weight_date: float = 0.2
    weight_text: float = 0.3
    similarity_match_threshold: float = 80.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MatchingConfig":
        settings = settings or get_settings()
        return cls(
            min_score=settings.MATCH_MIN_SCORE,
            amount_tolerance_percent=settings.MATCH_AMOUNT_TOLERANCE_PERCENT,
            amount_tolerance_fixed=settings.MATCH_AMOUNT_TOLERANCE_FIXED,
            date_window_days=settings.MATCH_DATE_WINDOW_DAYS,
            weight_amount=settings.MATCH_WEIGHT_AMOUNT,
            weight_date=settings.MATCH_WEIGHT_DATE,
            weight_text=settings.MATCH_WEIGHT_TEXT,
            similarity_match_threshold=settings.SIMILARITY_MATCH_THRESHOLD,
        )

    def amount_tolerance(self, amount: Decimal) -> Decimal:
        """Width of the amount band for a given absolute amount"""
        relative = abs(amount) * Decimal(str(self.amount_tolerance_percent))
        return max(relative, Decimal(str(self.amount_tolerance_fixed)))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
