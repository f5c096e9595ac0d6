"""
budget_forecaster.py
---------------------
Next-month budget forecast.

    forecast = recurring rules due next month
             + per-category average of monthly debit totals over the last N
               complete months (categories covered by a rule are excluded)

Confidence tiers come from the category with the most months of data:
3+ HIGH, 2 MEDIUM, 1 LOW, none INSUFFICIENT.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

import pandas as pd

from core.models import BudgetForecast, CategoryForecast, Direction, ForecastConfidence, Transaction
from core.stores import RuleStore, TransactionStore
from config.config_loader import get_forecast_config

logger = logging.getLogger(__name__)

# Transactions and rules without a category are bucketed under this key.
UNCATEGORIZED = 0


def _period(d: date) -> pd.Period:
    return pd.Period(year=d.year, month=d.month, freq="M")


class BudgetForecaster:
    """
    Usage:
        forecaster = BudgetForecaster(transaction_store, rule_store)
        forecast = forecaster.calculate_forecast(category_names={3: "Food"})
    """

    def __init__(self, transaction_store: TransactionStore, rule_store: RuleStore):
        self.config = get_forecast_config()
        self.transaction_store = transaction_store
        self.rule_store = rule_store

    def calculate_forecast(
        self,
        transactions: Iterable[Transaction] | None = None,
        category_names: Dict[int, str] | None = None,
        months_of_history: int | None = None,
        today: date | None = None,
    ) -> BudgetForecast:
        """
        Args:
            transactions: History to average. If None, reads the transaction store.
            category_names: category_id -> display name.
            months_of_history: Trailing complete months to average over.
                Defaults to config.
            today: Reference date. The forecast is for the month after it.
        """
        today = today or date.today()
        category_names = category_names or {}
        months_of_history = months_of_history or self.config["default_history_months"]
        if transactions is None:
            transactions = self.transaction_store.get_all()

        current_month = _period(today)
        next_month = current_month + 1

        rules = [
            r for r in self.rule_store.get_active_rules(as_of=today)
            if r.next_expected is not None and _period(r.next_expected) == next_month
        ]
        recurring_total = float(sum(r.expected_amount for r in rules))

        df = self._to_frame(transactions)
        history = self._monthly_category_totals(df, current_month, months_of_history)

        forecasts: List[CategoryForecast] = []

        recurring_by_category: Dict[int, float] = {}
        for rule in rules:
            key = rule.category_id if rule.category_id is not None else UNCATEGORIZED
            recurring_by_category[key] = recurring_by_category.get(key, 0.0) + rule.expected_amount

        for category_id, amount in recurring_by_category.items():
            forecasts.append(CategoryForecast(
                category_id=self._public_id(category_id),
                category_name=category_names.get(category_id, self.config["recurring_category_name"]),
                forecast_amount=round(amount, 2),
                average_amount=round(amount, 2),
                is_recurring=True,
                months_of_data=months_of_history,
            ))

        for category_id, monthly in history.items():
            if category_id in recurring_by_category:
                continue
            average = float(monthly.mean())
            forecasts.append(CategoryForecast(
                category_id=self._public_id(category_id),
                category_name=category_names.get(category_id, self.config["other_category_name"]),
                forecast_amount=round(average, 2),
                average_amount=round(average, 2),
                is_recurring=False,
                months_of_data=int(monthly.size),
            ))

        forecasts.sort(key=lambda f: f.forecast_amount, reverse=True)

        variable_total = sum(f.forecast_amount for f in forecasts if not f.is_recurring)
        total_forecast = recurring_total + variable_total

        months_with_data = max((int(m.size) for m in history.values()), default=0)

        current_spent = 0.0
        if not df.empty:
            current_spent = float(df.loc[df["month"] == current_month, "amount"].sum())

        percentage = 0.0
        if total_forecast > 0:
            percentage = min(current_spent / total_forecast, self.config["max_progress_ratio"])

        logger.info(
            f"Forecast for {next_month}: {total_forecast:.2f} "
            f"(recurring {recurring_total:.2f}, variable {variable_total:.2f}, {months_with_data} months of data)"
        )

        return BudgetForecast(
            month=str(next_month),
            total_forecast=round(total_forecast, 2),
            recurring_total=round(recurring_total, 2),
            variable_total=round(variable_total, 2),
            category_forecasts=forecasts,
            confidence=self._confidence_tier(months_with_data),
            current_month_spent=round(current_spent, 2),
            percentage_of_forecast=round(percentage, 4),
        )

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
        rows = [
            {
                "amount": t.amount,
                "category_id": t.category_id if t.category_id is not None else UNCATEGORIZED,
                "transaction_date": t.transaction_date,
            }
            for t in transactions
            if t.direction == Direction.DEBIT
        ]
        df = pd.DataFrame(rows, columns=["amount", "category_id", "transaction_date"])
        if df.empty:
            return df

        df["transaction_date"] = pd.to_datetime(df["transaction_date"])
        df["month"] = df["transaction_date"].dt.to_period("M")
        return df

    @staticmethod
    def _monthly_category_totals(
        df: pd.DataFrame, current_month: pd.Period, months_of_history: int
    ) -> Dict[int, pd.Series]:
        """category_id -> Series of monthly totals, one entry per month that had spending."""
        if df.empty:
            return {}

        window = [current_month - offset for offset in range(1, months_of_history + 1)]
        in_window = df[df["month"].isin(window)]
        if in_window.empty:
            return {}

        totals = in_window.groupby(["category_id", "month"])["amount"].sum()
        return {
            int(category_id): monthly.droplevel("category_id")
            for category_id, monthly in totals.groupby(level="category_id")
        }

    @staticmethod
    def _public_id(category_id: int) -> Optional[int]:
        return None if category_id == UNCATEGORIZED else category_id

    @staticmethod
    def _confidence_tier(months_with_data: int) -> ForecastConfidence:
        if months_with_data >= 3:
            return ForecastConfidence.HIGH
        if months_with_data >= 2:
            return ForecastConfidence.MEDIUM
        if months_with_data >= 1:
            return ForecastConfidence.LOW
        return ForecastConfidence.INSUFFICIENT
