"""
expense_predictor.py
---------------------
Forward-looking projections over confirmed rules and detected patterns.

    - predict_next_month_expenses: what recurring payments land next month
    - identify_new_subscriptions:  recurring charges that only started recently
    - flag_dormant_subscriptions:  confirmed rules whose payments stopped
    - get_recurring_health_summary: one roll-up of the three above

Nothing here is persisted. Every call reads a fresh snapshot from the stores.
All entry points accept `today` so results are reproducible.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

import numpy as np
from dateutil.relativedelta import relativedelta

from core.merchant_resolver import MerchantResolver
from core.models import (
    Direction,
    DormantStatus,
    DormantSubscription,
    NewSubscription,
    PredictedExpense,
    PredictionSource,
    RecurringHealthSummary,
    RecurringRule,
    Transaction,
)
from core.recurring_pattern_detector import PatternDetector
from core.stores import RuleStore, TransactionStore
from config.config_loader import get_prediction_config

logger = logging.getLogger(__name__)


def _month_key(d: date) -> tuple[int, int]:
    return d.year, d.month


class ExpensePredictor:
    """
    Combines confirmed rules with detected patterns into projections and alerts.

    Usage:
        predictor = ExpensePredictor(transaction_store, rule_store)
        upcoming = predictor.predict_next_month_expenses()
        dormant = predictor.flag_dormant_subscriptions()
    """

    def __init__(
        self,
        transaction_store: TransactionStore,
        rule_store: RuleStore,
        detector: PatternDetector | None = None,
    ):
        self.config = get_prediction_config()
        self.transaction_store = transaction_store
        self.rule_store = rule_store
        self.detector = detector or PatternDetector(transaction_store, rule_store)

        self.history_months = self.config["history_months"]
        self.window_months = self.config["new_subscription_window_months"]
        self.grace_period_days = self.config["grace_period_days"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def predict_next_month_expenses(self, today: date | None = None) -> List[PredictedExpense]:
        """
        Confirmed rules due next month, plus detected patterns for merchants
        that no active rule covers. Sorted by expected date.
        """
        today = today or date.today()
        next_month = _month_key(today + relativedelta(months=1))

        active_rules = self.rule_store.get_active_rules(as_of=today)
        predictions: List[PredictedExpense] = []

        for rule in active_rules:
            if rule.next_expected is None or _month_key(rule.next_expected) != next_month:
                continue
            predictions.append(PredictedExpense(
                merchant_name=rule.merchant_pattern,
                display_name=rule.merchant_pattern,
                amount=rule.expected_amount,
                expected_date=rule.next_expected,
                frequency=rule.frequency,
                confidence=self.config["confirmed_rule_confidence"],
                source=PredictionSource.CONFIRMED_RULE,
                category_id=rule.category_id,
            ))

        covered = {rule.merchant_pattern.upper() for rule in active_rules}
        for pattern in self.detector.detect_patterns():
            if pattern.merchant_pattern.upper() in covered:
                continue
            if _month_key(pattern.next_expected) != next_month:
                continue
            predictions.append(PredictedExpense(
                merchant_name=pattern.merchant_pattern,
                display_name=pattern.display_name,
                amount=pattern.average_amount,
                expected_date=pattern.next_expected,
                frequency=pattern.frequency,
                confidence=pattern.confidence,
                source=PredictionSource.DETECTED_PATTERN,
                category_id=pattern.category_id,
            ))

        predictions.sort(key=lambda p: p.expected_date)
        return predictions

    def identify_new_subscriptions(self, today: date | None = None) -> List[NewSubscription]:
        """
        Merchants with >= 2 charges in the recent window and none in the rest
        of the history window. Highest confidence first.
        """
        today = today or date.today()
        window_start = today - relativedelta(months=self.window_months)
        history_start = today - relativedelta(months=self.history_months)

        clusters = self.detector.group_transactions_by_merchant(self._debits())
        found: List[NewSubscription] = []

        for merchant_key, group in clusters.items():
            recent = [t for t in group if self._day(t) >= window_start]
            older = [t for t in group if history_start <= self._day(t) < window_start]

            if len(recent) < self.config["new_subscription_min_occurrences"] or older:
                continue

            dates = [self._day(t) for t in recent]
            amounts = [t.amount for t in recent]
            frequency = self.detector.detect_frequency(dates)

            if frequency is not None:
                confidence = self.detector.calculate_confidence(
                    len(recent),
                    self.detector.calculate_amount_variance(amounts),
                    self.config["assumed_interval_consistency"],
                )
            else:
                confidence = self.config["fallback_new_subscription_confidence"]

            found.append(NewSubscription(
                merchant_name=merchant_key,
                display_name=recent[0].display_name,
                amount=round(float(np.mean(amounts)), 2),
                first_seen_date=min(dates),
                occurrence_count=len(recent),
                detected_frequency=frequency,
                confidence=confidence,
            ))

        found.sort(key=lambda s: s.confidence, reverse=True)
        return found

    def flag_dormant_subscriptions(self, today: date | None = None) -> List[DormantSubscription]:
        """
        Active rules whose payments have stopped. Most missed payments first.

            no matching transaction ever  -> INACTIVE
            2+ missed payments            -> POSSIBLY_CANCELLED
            1 missed payment              -> PAYMENT_ISSUE
        """
        today = today or date.today()
        debits = self._debits()
        flagged: List[DormantSubscription] = []

        for rule in self.rule_store.get_active_rules(as_of=today):
            matches = [t for t in debits if MerchantResolver.matches_rule(t, rule)]

            if not matches:
                start = rule.last_occurrence or rule.created_at.date()
                flagged.append(self._dormant(rule, start, self._missed_payments(rule, start, today),
                                             DormantStatus.INACTIVE))
                continue

            last_seen = max(self._day(t) for t in matches)
            if today <= last_seen + relativedelta(days=self._interval_days(rule)):
                continue

            missed = self._missed_payments(rule, last_seen, today)
            if missed >= self.config["possibly_cancelled_missed_payments"]:
                flagged.append(self._dormant(rule, last_seen, missed, DormantStatus.POSSIBLY_CANCELLED))
            elif missed >= 1:
                flagged.append(self._dormant(rule, last_seen, missed, DormantStatus.PAYMENT_ISSUE))

        flagged.sort(key=lambda d: d.missed_payments, reverse=True)
        return flagged

    def get_recurring_health_summary(self, today: date | None = None) -> RecurringHealthSummary:
        today = today or date.today()
        predictions = self.predict_next_month_expenses(today)
        new_subscriptions = self.identify_new_subscriptions(today)
        dormant = self.flag_dormant_subscriptions(today)

        confirmed = sum(p.amount for p in predictions if p.source == PredictionSource.CONFIRMED_RULE)
        detected = sum(p.amount for p in predictions if p.source == PredictionSource.DETECTED_PATTERN)
        savings = sum(d.expected_amount for d in dormant if d.status == DormantStatus.POSSIBLY_CANCELLED)

        return RecurringHealthSummary(
            next_month_predicted_total=round(confirmed + detected, 2),
            confirmed_recurring_total=round(confirmed, 2),
            detected_pattern_total=round(detected, 2),
            predicted_expense_count=len(predictions),
            new_subscription_count=len(new_subscriptions),
            dormant_subscription_count=len(dormant),
            potential_savings=round(savings, 2),
        )

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _debits(self) -> List[Transaction]:
        return [t for t in self.transaction_store.get_all() if t.direction == Direction.DEBIT]

    @staticmethod
    def _day(txn: Transaction) -> date:
        value = txn.transaction_date
        return value.date() if isinstance(value, datetime) else value

    def _interval_days(self, rule: RecurringRule) -> int:
        return self.detector.period_days[rule.frequency.value]

    def _missed_payments(self, rule: RecurringRule, since: date, today: date) -> int:
        days_since = (today - since).days
        return max(0, days_since - self.grace_period_days) // self._interval_days(rule)

    @staticmethod
    def _dormant(
        rule: RecurringRule, last_seen: Optional[date], missed: int, status: DormantStatus
    ) -> DormantSubscription:
        return DormantSubscription(
            merchant_name=rule.merchant_pattern,
            display_name=rule.merchant_pattern,
            expected_amount=rule.expected_amount,
            last_transaction_date=last_seen,
            missed_payments=missed,
            status=status,
        )
