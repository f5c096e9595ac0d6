"""
recurring_pattern_detector.py
------------------------------
Recurring expense detection over the full transaction history.

It only answers one question:

    "Does this merchant get paid on a regular schedule, for a steady amount?"

Output: a PatternSuggestion per qualifying merchant cluster. Suggestions are
unconfirmed; they become RecurringRules only through confirm_pattern().

Design decisions:
    - Merchants are clustered greedily, first-fit: each new name joins the
      first existing cluster key it scores >= 0.8 against. Order-dependent.
    - Cadence is the average gap between consecutive payments, classified
      into WEEKLY / MONTHLY / YEARLY bands. Anything else is not a pattern.
    - Clusters that already have an active confirmed rule are skipped, so a
      rule and a suggestion for the same merchant never coexist.
    - All thresholds and weights are read from config.yaml.
"""

import calendar
import logging
from collections import Counter
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

import numpy as np
from dateutil.relativedelta import relativedelta

from core.models import Direction, Frequency, PatternSuggestion, Transaction
from core.similarity import SimilarityScorer
from core.stores import RuleStore, TransactionStore
from config.config_loader import get_pattern_detection_config
from parsers.message_parser import is_known_subscription

logger = logging.getLogger(__name__)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class PatternDetector:
    """
    Mines transaction history for recurring merchant payments.

    Usage:
        detector = PatternDetector(transaction_store, rule_store)
        suggestions = detector.detect_patterns()
    """

    def __init__(
        self,
        transaction_store: TransactionStore,
        rule_store: RuleStore,
        scorer: SimilarityScorer | None = None,
    ):
        self.config = get_pattern_detection_config()
        self.transaction_store = transaction_store
        self.rule_store = rule_store
        self.scorer = scorer or SimilarityScorer()

        self.min_occurrences = self.config["min_occurrences"]
        self.min_confidence = self.config["min_confidence"]
        self.cluster_threshold = self.config["cluster_similarity_threshold"]
        self.frequency_bands = self.config["frequency_bands"]
        self.period_days = self.config["period_days"]
        self.weights = self.config["confidence_weights"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect_patterns(self, transactions: Iterable[Transaction] | None = None) -> List[PatternSuggestion]:
        """
        Run a full detection pass.

        Args:
            transactions: History to mine. If None, reads everything from the
                transaction store.

        Returns:
            Suggestions with confidence >= min_confidence, highest first.
        """
        if transactions is None:
            transactions = self.transaction_store.get_all()

        debits = [t for t in transactions if t.direction == Direction.DEBIT]
        if not debits:
            return []

        clusters = self.group_transactions_by_merchant(debits)
        suggestions: List[PatternSuggestion] = []

        for merchant_key, group in clusters.items():
            try:
                suggestion = self._build_suggestion(merchant_key, group)
            except Exception:
                logger.exception(f"Pattern detection failed for merchant '{merchant_key}'")
                continue
            if suggestion is not None:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        logger.info(
            f"Detected {len(suggestions)} recurring patterns across {len(clusters)} merchant clusters"
        )
        return suggestions

    def confirm_pattern(self, suggestion: PatternSuggestion) -> int:
        """Persists the suggestion as an active RecurringRule and returns its id."""
        rule_id = self.rule_store.insert(suggestion.to_recurring_rule())
        logger.info(f"Confirmed recurring pattern '{suggestion.merchant_pattern}' as rule {rule_id}")
        return rule_id

    def dismiss_pattern(self, suggestion: PatternSuggestion) -> None:
        # Dismissals are tracked by the suggestion store, not here.
        pass

    # -------------------------------------------------------------------------
    # MERCHANT CLUSTERING
    # -------------------------------------------------------------------------

    def group_transactions_by_merchant(self, transactions: Iterable[Transaction]) -> Dict[str, List[Transaction]]:
        """
        Greedy first-fit clustering of debit transactions by merchant name.

        Returns:
            Dict of canonical cluster key -> transactions, in first-seen order.
        """
        groups: Dict[str, List[Transaction]] = {}
        canonical_by_name: Dict[str, str] = {}

        for txn in transactions:
            if txn.direction != Direction.DEBIT:
                continue

            name = self.scorer.normalize(txn.merchant_name)
            key = canonical_by_name.get(name)

            if key is None:
                key = next(
                    (existing for existing in groups
                     if self.scorer.similarity(name, existing) >= self.cluster_threshold),
                    name,
                )
                canonical_by_name[name] = key

            groups.setdefault(key, []).append(txn)

        return groups

    # -------------------------------------------------------------------------
    # CADENCE & AMOUNT STATISTICS
    # -------------------------------------------------------------------------

    def detect_frequency(self, dates: Iterable[date]) -> Optional[Frequency]:
        """Classifies the average gap between sorted dates. None outside every band."""
        gaps = self._gaps(dates)
        if gaps.size == 0:
            return None

        avg_gap = float(np.mean(gaps))
        for frequency in (Frequency.WEEKLY, Frequency.MONTHLY, Frequency.YEARLY):
            band = self.frequency_bands[frequency.value]
            if band["min_days"] <= avg_gap <= band["max_days"]:
                return frequency
        return None

    @staticmethod
    def calculate_amount_variance(amounts: Iterable[float]) -> float:
        """Coefficient of variation (population std / mean). 0 for one amount or zero mean."""
        values = np.asarray(list(amounts), dtype=float)
        if values.size <= 1:
            return 0.0

        mean = float(np.mean(values))
        if mean == 0:
            return 0.0
        return float(np.std(values)) / mean

    @staticmethod
    def calculate_typical_day_of_period(dates: Iterable[date], frequency: Frequency) -> int:
        """
        Mode of ISO weekday (1=Mon..7=Sun) for WEEKLY, of day-of-month otherwise.
        Ties go to the value seen first.
        """
        dates = [_as_date(d) for d in dates]
        if not dates:
            return 1

        if frequency == Frequency.WEEKLY:
            days = [d.isoweekday() for d in dates]
        else:
            days = [d.day for d in dates]

        return Counter(days).most_common(1)[0][0]

    def calculate_interval_consistency(self, dates: Iterable[date], frequency: Frequency) -> float:
        """
        1.0 when every gap equals the canonical period (7/30/365 days),
        falling linearly to 0.0 at an average deviation of 100%.
        """
        gaps = self._gaps(dates)
        if gaps.size == 0:
            return 1.0

        period = self.period_days[frequency.value]
        avg_deviation = float(np.mean(np.abs(gaps - period) / period))
        return 1.0 - min(max(avg_deviation, 0.0), 1.0)

    def calculate_confidence(self, occurrences: int, amount_variance: float, interval_consistency: float) -> float:
        """
        Weighted score of three factors, each in [0, 1]:
            occurrence: 2 occurrences = 0.6, 6+ = 1.0
            amount:     0% variation = 1.0, 30%+ = 0.7
            interval:   the interval consistency itself
        """
        occurrence_factor = 0.6 + min(max(occurrences - 2, 0), 4) * 0.1
        amount_factor = 1.0 - min(max(amount_variance, 0.0), 0.3) / 0.3 * 0.3

        confidence = (
            self.weights["occurrence"] * occurrence_factor
            + self.weights["amount"] * amount_factor
            + self.weights["interval"] * interval_consistency
        )
        return min(max(confidence, 0.0), 1.0)

    # -------------------------------------------------------------------------
    # NEXT OCCURRENCE
    # -------------------------------------------------------------------------

    def predict_next_occurrence(self, last_date: date, frequency: Frequency, day_of_period: int) -> date:
        last_date = _as_date(last_date)

        if frequency == Frequency.WEEKLY:
            return last_date + relativedelta(weeks=1)
        if frequency == Frequency.MONTHLY:
            return self._next_monthly(last_date, day_of_period)
        if frequency == Frequency.YEARLY:
            return self._next_yearly(last_date, day_of_period)
        raise ValueError(f"Unknown frequency: {frequency!r}")

    @staticmethod
    def _next_monthly(last_date: date, day_of_month: int) -> date:
        """Same day next month, clamped to that month's length (31 -> 30 in April)."""
        target = last_date + relativedelta(months=1)
        days_in_month = calendar.monthrange(target.year, target.month)[1]
        return target.replace(day=min(max(day_of_month, 1), days_in_month))

    @staticmethod
    def _next_yearly(last_date: date, day_of_month: int) -> date:
        """Same month next year. A Feb 29 anniversary lands on Feb 28 in common years."""
        year = last_date.year + 1
        days_in_month = calendar.monthrange(year, last_date.month)[1]
        return date(year, last_date.month, min(max(day_of_month, 1), days_in_month))

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    @staticmethod
    def _gaps(dates: Iterable[date]) -> np.ndarray:
        ordinals = np.sort(np.array([_as_date(d).toordinal() for d in dates], dtype=np.int64))
        if ordinals.size < 2:
            return np.array([], dtype=float)
        return np.diff(ordinals).astype(float)

    def _build_suggestion(self, merchant_key: str, group: List[Transaction]) -> Optional[PatternSuggestion]:
        """
        Builds a suggestion for one merchant cluster.

        Returns None when the cluster has a confirmed rule, too few
        occurrences, no recognizable cadence or too little confidence.
        """
        if self.rule_store.find_by_merchant_pattern(merchant_key) is not None:
            logger.debug(f"Skipping '{merchant_key}': already has an active rule")
            return None

        if len(group) < self.min_occurrences:
            return None

        dates = [_as_date(t.transaction_date) for t in group]
        amounts = [t.amount for t in group]

        frequency = self.detect_frequency(dates)
        if frequency is None:
            return None

        amount_variance = self.calculate_amount_variance(amounts)
        typical_day = self.calculate_typical_day_of_period(dates, frequency)
        interval_consistency = self.calculate_interval_consistency(dates, frequency)
        confidence = self.calculate_confidence(len(group), amount_variance, interval_consistency)

        if confidence < self.min_confidence:
            return None

        last_date = max(dates)
        categories = [t.category_id for t in group if t.category_id is not None]
        category_id = Counter(categories).most_common(1)[0][0] if categories else None
        display_name = group[0].display_name

        return PatternSuggestion(
            merchant_pattern=merchant_key,
            display_name=display_name,
            average_amount=round(float(np.mean(amounts)), 2),
            frequency=frequency,
            typical_day_of_period=typical_day,
            occurrence_count=len(group),
            confidence=round(confidence, 4),
            next_expected=self.predict_next_occurrence(last_date, frequency, typical_day),
            category_id=category_id,
            last_occurrence=last_date,
            is_known_subscription=(
                is_known_subscription(merchant_key) or is_known_subscription(display_name)
            ),
        )
