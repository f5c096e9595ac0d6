"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- ParsedTransaction / ParsedBill: Output of the message parser. Immutable.
- Transaction: Stored form of a parsed transaction, as read back from the
  transaction store. This is what pattern detection and prediction consume.
- MerchantMapping / MerchantMatchResult: Merchant resolution inputs/outputs.
- PatternSuggestion / RecurringRule: Detected vs. confirmed recurring expenses.
- PredictedExpense, NewSubscription, DormantSubscription, BudgetForecast:
  Read-only projections computed on demand by the prediction layer.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class Direction(str, Enum):
    """Money flow relative to the account holder."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class Frequency(str, Enum):
    """Recurrence bands. Anything outside these bands is not a pattern."""
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class MatchType(str, Enum):
    EXACT = "EXACT"
    FUZZY = "FUZZY"
    NONE = "NONE"


class DormantStatus(str, Enum):
    INACTIVE = "INACTIVE"                      # No matching transaction ever seen
    PAYMENT_ISSUE = "PAYMENT_ISSUE"            # Exactly one missed payment
    POSSIBLY_CANCELLED = "POSSIBLY_CANCELLED"  # Two or more missed payments


class PredictionSource(str, Enum):
    CONFIRMED_RULE = "CONFIRMED_RULE"
    DETECTED_PATTERN = "DETECTED_PATTERN"


class ForecastConfidence(str, Enum):
    HIGH = "HIGH"                  # 3+ months of data
    MEDIUM = "MEDIUM"              # 2 months
    LOW = "LOW"                    # 1 month
    INSUFFICIENT = "INSUFFICIENT"  # no history


class PaymentChannel(str, Enum):
    UPI = "UPI"
    CREDIT_CARD = "CREDIT_CARD"
    AUTOPAY = "AUTOPAY"
    ACCOUNT = "ACCOUNT"
    UNKNOWN = "UNKNOWN"


def clamp_confidence(value: float) -> float:
    """Clamps a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


# =============================================================================
# PARSER OUTPUT
# =============================================================================

@dataclass(frozen=True)
class RawMessage:
    """One inbox message. Ephemeral input, owned by the message source."""
    sender: str
    body: str
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class ParsedTransaction:
    """
    Structured transaction extracted from a single message body.

    Produced once per successfully parsed message and never mutated.
    """

    amount: float
    direction: Direction
    merchant_name: str               # Verbatim payee/merchant text (or VPA)
    transaction_date: datetime
    reference: Optional[str] = None
    bank_name: Optional[str] = None
    card_last_four: Optional[str] = None
    account_last_four: Optional[str] = None
    confidence: float = 0.5          # 0.0 – 1.0. Below 0.7 the record should be reviewed.
    is_likely_subscription: bool = False
    currency: str = "INR"
    payment_channel: PaymentChannel = PaymentChannel.UNKNOWN
    rule_name: Optional[str] = None  # Template that produced this record

    def __post_init__(self):
        if self.amount is None or self.amount <= 0:
            raise ValueError(f"Transaction amount must be positive, got {self.amount!r}")
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def needs_review(self) -> bool:
        return self.confidence < 0.7


@dataclass(frozen=True)
class ParsedBill:
    """Credit card statement extracted from a statement-ready message."""

    total_due: float
    due_date: date
    minimum_due: Optional[float] = None
    card_last_four: Optional[str] = None
    bank_name: Optional[str] = None
    rule_name: Optional[str] = None

    def __post_init__(self):
        if self.total_due is None or self.total_due <= 0:
            raise ValueError(f"Bill total must be positive, got {self.total_due!r}")
        if self.minimum_due is not None and self.minimum_due <= 0:
            raise ValueError(f"Minimum due must be positive, got {self.minimum_due!r}")


# =============================================================================
# STORED RECORDS
# =============================================================================

@dataclass
class Transaction:
    """
    A transaction as held by the transaction store.

    merchant_normalized is the user-facing display name (from a merchant
    mapping) and may be missing for unresolved merchants.
    """

    amount: float
    direction: Direction
    merchant_name: str
    transaction_date: datetime
    id: Optional[int] = None
    merchant_normalized: Optional[str] = None
    category_id: Optional[int] = None
    raw_body: Optional[str] = None
    sender: Optional[str] = None
    confidence: float = 1.0
    needs_review: bool = False
    is_recurring: bool = False
    reference: Optional[str] = None
    bank_name: Optional[str] = None
    card_last_four: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.merchant_normalized or self.merchant_name

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedTransaction,
        raw_body: str | None = None,
        sender: str | None = None,
        merchant_normalized: str | None = None,
        category_id: int | None = None,
        review_threshold: float = 0.7,
    ) -> "Transaction":
        return cls(
            amount=parsed.amount,
            direction=parsed.direction,
            merchant_name=parsed.merchant_name,
            transaction_date=parsed.transaction_date,
            merchant_normalized=merchant_normalized,
            category_id=category_id,
            raw_body=raw_body,
            sender=sender,
            confidence=parsed.confidence,
            needs_review=parsed.confidence < review_threshold or category_id is None,
            is_recurring=parsed.is_likely_subscription,
            reference=parsed.reference,
            bank_name=parsed.bank_name,
            card_last_four=parsed.card_last_four,
        )


@dataclass
class MerchantMapping:
    """Learned association between a raw merchant string and a category."""

    raw_merchant_name: str           # Uppercased, trimmed
    display_name: str
    category_id: Optional[int]
    confidence: float = 1.0
    usage_count: int = 1
    is_fuzzy_match: bool = False
    id: Optional[int] = None

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)


@dataclass
class MerchantMatchResult:
    match_type: MatchType
    mapping: Optional[MerchantMapping]
    confidence: float
    requires_confirmation: bool


# =============================================================================
# PATTERNS & RULES
# =============================================================================

@dataclass
class RecurringRule:
    """Confirmed, persisted periodic expense. Owned by the rule store."""

    merchant_pattern: str
    frequency: Frequency
    expected_amount: float
    next_expected: Optional[date] = None
    last_occurrence: Optional[date] = None
    is_active: bool = True
    category_id: Optional[int] = None
    day_of_period: Optional[int] = None
    occurrence_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class PatternSuggestion:
    """
    Detected but unconfirmed recurring expense.

    Transient output of the pattern detector. Becomes a RecurringRule only
    through an explicit confirmation.
    """

    merchant_pattern: str            # Canonical cluster key
    display_name: str
    average_amount: float
    frequency: Frequency
    typical_day_of_period: int
    occurrence_count: int
    confidence: float
    next_expected: date
    category_id: Optional[int] = None
    last_occurrence: Optional[date] = None
    is_known_subscription: bool = False
    id: Optional[int] = None

    def __post_init__(self):
        if self.occurrence_count < 2:
            raise ValueError(
                f"A pattern needs at least 2 occurrences, got {self.occurrence_count}"
            )
        self.confidence = clamp_confidence(self.confidence)

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence >= 0.8

    def to_recurring_rule(self) -> RecurringRule:
        return RecurringRule(
            merchant_pattern=self.merchant_pattern,
            frequency=self.frequency,
            expected_amount=self.average_amount,
            next_expected=self.next_expected,
            last_occurrence=self.last_occurrence,
            is_active=True,
            category_id=self.category_id,
            day_of_period=self.typical_day_of_period,
            occurrence_count=self.occurrence_count,
        )


# =============================================================================
# PROJECTIONS
# =============================================================================

@dataclass
class PredictedExpense:
    merchant_name: str
    display_name: str
    amount: float
    expected_date: date
    frequency: Frequency
    confidence: float
    source: PredictionSource
    category_id: Optional[int] = None


@dataclass
class NewSubscription:
    merchant_name: str
    display_name: str
    amount: float                    # Average over the recent window
    first_seen_date: date
    occurrence_count: int
    detected_frequency: Optional[Frequency]
    confidence: float


@dataclass
class DormantSubscription:
    merchant_name: str
    display_name: str
    expected_amount: float
    last_transaction_date: Optional[date]
    missed_payments: int
    status: DormantStatus


@dataclass
class RecurringHealthSummary:
    next_month_predicted_total: float
    confirmed_recurring_total: float
    detected_pattern_total: float
    predicted_expense_count: int
    new_subscription_count: int
    dormant_subscription_count: int
    potential_savings: float


@dataclass
class CategoryForecast:
    category_id: Optional[int]
    category_name: str
    forecast_amount: float
    average_amount: float
    is_recurring: bool
    months_of_data: int


@dataclass
class BudgetForecast:
    month: str                       # "YYYY-MM"
    total_forecast: float
    recurring_total: float
    variable_total: float
    category_forecasts: list[CategoryForecast]
    confidence: ForecastConfidence
    current_month_spent: float
    percentage_of_forecast: float


# =============================================================================
# BATCH OUTCOMES
# =============================================================================

@dataclass
class ScanResult:
    """Aggregate counters for one batch scan over many messages."""
    scanned: int = 0
    matched: int = 0
    saved: int = 0
    duplicates: int = 0
    bills: int = 0
    errors: int = 0
    skipped_senders: int = 0
    transaction_ids: list[int] = field(default_factory=list)
