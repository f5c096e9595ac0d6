"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. Message scan      →  parse bank messages into stored transactions
    2. Pattern detection →  mine the history for recurring payments
    3. Prediction        →  next-month expenses, new / dormant subscriptions,
                            budget forecast
    4. Output serialization → pandas DataFrames for the caller / CSV

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import ExpenseAnalysisPipeline

    pipeline = ExpenseAnalysisPipeline(source, transactions, mappings, rules)
    outputs = pipeline.run()
    outputs["suggestions"].to_csv("suggestions.csv", index=False)
"""

import itertools
import logging
import re
import threading
from dataclasses import asdict
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

import pandas as pd

from core.merchant_resolver import MerchantResolver
from core.models import MatchType, ParsedBill, PatternSuggestion, RawMessage, ScanResult, Transaction
from core.recurring_pattern_detector import PatternDetector
from core.stores import MappingStore, MessageSource, NotificationSink, RuleStore, SuggestionStore, TransactionStore
from config.config_loader import get_parser_config, get_scanner_config
from parsers.message_parser import TextTransactionParser
from prediction.budget_forecaster import BudgetForecaster
from prediction.expense_predictor import ExpensePredictor

logger = logging.getLogger(__name__)

# Operator-style sender headers such as "AD-HDFCBK" or "VM-ICICIB".
_SENDER_HEADER_RE = re.compile(r".*[A-Z]{2}-[A-Z]+.*")

SUGGESTION_COLUMNS = [
    "merchant_pattern", "display_name", "frequency", "average_amount",
    "typical_day_of_period", "occurrence_count", "confidence",
    "next_expected", "last_occurrence", "category_id", "is_known_subscription",
]
PREDICTION_COLUMNS = [
    "merchant_name", "display_name", "amount", "expected_date",
    "frequency", "confidence", "source", "category_id",
]
NEW_SUBSCRIPTION_COLUMNS = [
    "merchant_name", "display_name", "amount", "first_seen_date",
    "occurrence_count", "detected_frequency", "confidence",
]
DORMANT_COLUMNS = [
    "merchant_name", "display_name", "expected_amount",
    "last_transaction_date", "missed_payments", "status",
]


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    return value


def records_to_frame(records: List, columns: List[str]) -> pd.DataFrame:
    """Flattens dataclass records into a DataFrame with a fixed column order."""
    if not records:
        return pd.DataFrame(columns=columns)

    rows = [{k: _plain(v) for k, v in asdict(r).items() if k in columns} for r in records]
    return pd.DataFrame(rows, columns=columns)


class ExpenseAnalysisPipeline:
    """
    End-to-end expense analysis over a message source and a set of stores.

    Detection is single-flight per pipeline instance: a second concurrent
    run_detection() returns nothing instead of racing to create duplicate
    suggestions.
    """

    def __init__(
        self,
        message_source: MessageSource,
        transaction_store: TransactionStore,
        mapping_store: MappingStore,
        rule_store: RuleStore,
        suggestion_store: SuggestionStore | None = None,
        notification_sink: NotificationSink | None = None,
        bill_sink: Callable[[ParsedBill], None] | None = None,
    ):
        self.scanner_config = get_scanner_config()
        self.review_threshold = get_parser_config()["review_threshold"]
        self.bank_senders = [s.upper() for s in self.scanner_config["bank_senders"]]

        self.message_source = message_source
        self.transaction_store = transaction_store
        self.rule_store = rule_store
        self.suggestion_store = suggestion_store
        self.notification_sink = notification_sink
        self.bill_sink = bill_sink

        self.parser = TextTransactionParser()
        self.resolver = MerchantResolver(mapping_store)
        self.detector = PatternDetector(transaction_store, rule_store, scorer=self.resolver.scorer)
        self.predictor = ExpensePredictor(transaction_store, rule_store, detector=self.detector)
        self.forecaster = BudgetForecaster(transaction_store, rule_store)

        self._detection_lock = threading.Lock()
        self._notification_ids = itertools.count(1)

        logger.info(
            f"Pipeline initialized. Templates: {len(self.parser.templates)}. "
            f"Known bank senders: {len(self.bank_senders)}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, period: str | None = None, today: date | None = None) -> Dict[str, pd.DataFrame]:
        """
        Scan, detect, predict.

        Args:
            period: "YYYY-MM" to scan a single month, or None for everything.
            today: Reference date for predictions. Defaults to today.

        Returns:
            Dict of DataFrames: scan_summary, suggestions, predictions,
            new_subscriptions, dormant_subscriptions, forecast.
        """
        today = today or date.today()

        # --- Stage 1: Message scan ---
        scan = self.scan_messages(period)
        logger.info(
            f"Stage 1 complete. Scanned {scan.scanned:,}, saved {scan.saved:,}, "
            f"duplicates {scan.duplicates:,}, bills {scan.bills:,}, errors {scan.errors:,}."
        )

        # --- Stage 2: Pattern detection ---
        suggestions = self.run_detection()
        logger.info(f"Stage 2 complete. New suggestions: {len(suggestions):,}.")

        # --- Stage 3: Prediction ---
        predictions = self.predictor.predict_next_month_expenses(today)
        new_subscriptions = self.predictor.identify_new_subscriptions(today)
        dormant = self.predictor.flag_dormant_subscriptions(today)
        forecast = self.forecaster.calculate_forecast(today=today)
        logger.info(
            f"Stage 3 complete. Predicted {len(predictions):,} expenses, "
            f"{len(new_subscriptions):,} new and {len(dormant):,} dormant subscriptions."
        )

        for subscription in new_subscriptions:
            self._notify("NEW_SUBSCRIPTION", merchant=subscription.display_name, amount=subscription.amount)
        for item in dormant:
            self._notify("DORMANT_SUBSCRIPTION", merchant=item.display_name, status=item.status.value)

        # --- Stage 4: Serialize ---
        scan_row = {k: v for k, v in asdict(scan).items() if k != "transaction_ids"}
        return {
            "scan_summary": pd.DataFrame([scan_row]),
            "suggestions": records_to_frame(suggestions, SUGGESTION_COLUMNS),
            "predictions": records_to_frame(predictions, PREDICTION_COLUMNS),
            "new_subscriptions": records_to_frame(new_subscriptions, NEW_SUBSCRIPTION_COLUMNS),
            "dormant_subscriptions": records_to_frame(dormant, DORMANT_COLUMNS),
            "forecast": pd.DataFrame([
                {
                    "month": forecast.month,
                    "category_id": f.category_id,
                    "category_name": f.category_name,
                    "forecast_amount": f.forecast_amount,
                    "is_recurring": f.is_recurring,
                    "months_of_data": f.months_of_data,
                    "confidence": forecast.confidence.value,
                }
                for f in forecast.category_forecasts
            ], columns=["month", "category_id", "category_name", "forecast_amount",
                        "is_recurring", "months_of_data", "confidence"]),
        }

    def scan_messages(self, period: str | None = None) -> ScanResult:
        """
        Parse every message from the source into the transaction store.

        Each message is handled independently: a failure is logged, counted
        under `errors` and the scan moves on.
        """
        result = ScanResult()

        try:
            messages = self.message_source.read_messages(period)
        except Exception:
            logger.exception(f"Could not read messages for period {period!r}")
            result.errors += 1
            return result

        for message in messages:
            result.scanned += 1

            if not self.is_bank_sender(message.sender):
                result.skipped_senders += 1
                continue

            try:
                self._scan_one(message, result)
            except Exception:
                result.errors += 1
                logger.exception(f"Failed to process message from {message.sender}")

        return result

    def run_detection(self) -> List[PatternSuggestion]:
        """
        Detect patterns and register them with the suggestion store.

        Returns:
            Suggestions that were newly created. Without a suggestion store,
            every detected suggestion.
        """
        if not self._detection_lock.acquire(blocking=False):
            logger.warning("Pattern detection already running for this dataset; skipping.")
            return []

        try:
            detected = self.detector.detect_patterns()
            if self.suggestion_store is None:
                return detected

            created: List[PatternSuggestion] = []
            for suggestion in detected:
                try:
                    stored = self.suggestion_store.create_from_detection(suggestion)
                except Exception:
                    logger.exception(f"Could not store suggestion for '{suggestion.merchant_pattern}'")
                    continue
                if stored is None:
                    continue
                created.append(stored)
                self._notify(
                    "PATTERN_DETECTED",
                    merchant=stored.display_name,
                    amount=stored.average_amount,
                    frequency=stored.frequency.value,
                )
            return created
        finally:
            self._detection_lock.release()

    def confirm_suggestion(self, suggestion_id: int) -> int:
        if self.suggestion_store is None:
            raise ValueError("No suggestion store configured")
        return self.suggestion_store.confirm(suggestion_id)

    def dismiss_suggestion(self, suggestion_id: int, now: datetime | None = None) -> None:
        if self.suggestion_store is None:
            raise ValueError("No suggestion store configured")
        self.suggestion_store.dismiss(suggestion_id, now=now)

    def cleanup_dismissed_suggestions(self, now: datetime | None = None) -> int:
        """Lets merchants dismissed longer ago than the retention window be suggested again."""
        if self.suggestion_store is None:
            return 0
        removed = self.suggestion_store.cleanup_old_dismissed(now=now)
        if removed:
            logger.info(f"Purged {removed} expired suggestion dismissals.")
        return removed

    def is_bank_sender(self, sender: str | None) -> bool:
        if not sender:
            return False
        upper = sender.upper()
        if any(known in upper for known in self.bank_senders):
            return True
        if "BANK" in upper or "UPI" in upper:
            return True
        return _SENDER_HEADER_RE.match(sender) is not None

    # -------------------------------------------------------------------------
    # INTERNAL: SCAN
    # -------------------------------------------------------------------------

    def _scan_one(self, message: RawMessage, result: ScanResult) -> None:
        bill = self.parser.parse_bill(message.body)
        if bill is not None:
            result.bills += 1
            if self.bill_sink is not None:
                self.bill_sink(bill)
            self._notify(
                "BILL_DUE",
                bank=bill.bank_name,
                total_due=bill.total_due,
                due_date=bill.due_date.isoformat(),
            )
            return

        parsed = self.parser.parse(message.body, received_at=message.received_at)
        if parsed is None:
            return
        result.matched += 1

        if self.transaction_store.exists_by_raw_body(message.body):
            result.duplicates += 1
            return

        merchant_normalized: Optional[str] = None
        category_id: Optional[int] = None
        match = self.resolver.find_match(parsed.merchant_name)
        if match.mapping is not None and (
            match.match_type == MatchType.EXACT or not match.requires_confirmation
        ):
            merchant_normalized = match.mapping.display_name
            category_id = match.mapping.category_id

        txn = Transaction.from_parsed(
            parsed,
            raw_body=message.body,
            sender=message.sender,
            merchant_normalized=merchant_normalized,
            category_id=category_id,
            review_threshold=self.review_threshold,
        )
        txn_id = self.transaction_store.insert(txn)
        result.saved += 1
        result.transaction_ids.append(txn_id)

    # -------------------------------------------------------------------------
    # INTERNAL: NOTIFICATIONS
    # -------------------------------------------------------------------------

    def _notify(self, event_type: str, **payload) -> None:
        """Fire-and-forget. Sink failures never interrupt the pipeline."""
        if self.notification_sink is None:
            return

        event = {"id": next(self._notification_ids), "type": event_type, **payload}
        try:
            self.notification_sink.notify(event)
        except Exception as e:
            logger.warning(f"Notification {event_type} #{event['id']} failed: {e}")
