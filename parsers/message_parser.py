"""
message_parser.py
------------------
Turns one bank / payment message body into a ParsedTransaction or ParsedBill.

Flow for parse():
    1. Reject non-transactional shapes (OTPs, promotions, balance inquiries,
       due reminders). These never produce a transaction.
    2. Try each recognizer in TRANSACTION_TEMPLATES order. The first one that
       extracts a valid amount and a merchant wins.
    3. Flag known subscription services, score confidence.

parse_bill() is independent and only looks at statement-ready messages.

A message the parser does not understand is a normal outcome: both entry
points return None and never raise for text input.
"""

import logging
import re
from datetime import datetime, time
from functools import partial
from typing import Callable, List, Optional

from core.models import ParsedBill, ParsedTransaction
from config.config_loader import get_parser_config, get_subscription_vocabulary
from parsers.amounts import parse_amount, parse_date
from parsers.templates import (
    BALANCE_INQUIRY_PATTERNS,
    BANK_MARKERS,
    BILL_TEMPLATES,
    NON_TRANSACTIONAL_PATTERNS,
    TRANSACTION_TEMPLATES,
    TRANSACTION_VERB_RE,
    MessageTemplate,
)

logger = logging.getLogger(__name__)

Recognizer = Callable[[str, Optional[datetime]], Optional[ParsedTransaction]]

# Surrounding characters stripped from an extracted merchant.
_MERCHANT_DELIMITERS = " \t\r\n.,;:'\"-"

_VOCABULARY_RE: re.Pattern | None = None


def _subscription_regex() -> re.Pattern:
    global _VOCABULARY_RE

    if _VOCABULARY_RE is None:
        names = sorted(get_subscription_vocabulary(), key=len, reverse=True)
        alternation = "|".join(re.escape(n) for n in names)
        _VOCABULARY_RE = re.compile(rf"(?<![a-z0-9])(?:{alternation})(?![a-z0-9])")
    return _VOCABULARY_RE


def reset_vocabulary() -> None:
    """Drops the compiled vocabulary so the next call re-reads config."""
    global _VOCABULARY_RE
    _VOCABULARY_RE = None


def is_known_subscription(text: str | None) -> bool:
    """True when the text names a known subscription service ("NETFLIX.COM", "JioHotstar")."""
    if not text:
        return False
    return _subscription_regex().search(text.lower()) is not None


def detect_bank(body: str) -> Optional[str]:
    for bank_name, marker in BANK_MARKERS:
        if marker.search(body):
            return bank_name
    return None


class TextTransactionParser:
    """
    Rule-ordered recognizer for bank and payment messages.

    Usage:
        parser = TextTransactionParser()
        txn = parser.parse(body, received_at=message.received_at)
        bill = parser.parse_bill(body)
    """

    def __init__(self, templates: List[MessageTemplate] | None = None):
        self.config = get_parser_config()
        self.reference_bonus = self.config["reference_bonus"]
        self.bank_bonus = self.config["bank_bonus"]
        self.low_confidence_cap = self.config["low_confidence_cap"]
        self.default_currency = self.config["default_currency"]

        self.templates = templates if templates is not None else TRANSACTION_TEMPLATES
        self.recognizers: List[Recognizer] = [
            partial(self._recognize, template) for template in self.templates
        ]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def parse(self, body: str, received_at: datetime | None = None) -> Optional[ParsedTransaction]:
        """
        Extract a transaction from a message body.

        Args:
            body: Message text.
            received_at: When the message arrived. Used when the body has no
                usable date.

        Returns:
            ParsedTransaction, or None for non-transactional / unrecognized text.
        """
        if not body or not body.strip():
            return None

        if self.is_non_transactional(body):
            logger.debug("Skipping non-transactional message")
            return None

        for recognizer in self.recognizers:
            parsed = recognizer(body, received_at)
            if parsed is not None:
                return parsed

        logger.debug(f"No template matched message: {body[:60]!r}")
        return None

    def parse_bill(self, body: str) -> Optional[ParsedBill]:
        """Extract a credit card statement. None when total due is missing."""
        if not body:
            return None

        for template in BILL_TEMPLATES:
            match = template.pattern.search(body)
            if match is None:
                continue

            groups = match.groupdict()
            total_due = parse_amount(groups.get("total"))
            due_date = parse_date(groups.get("date"))
            if total_due is None or due_date is None:
                continue

            return ParsedBill(
                total_due=total_due,
                due_date=due_date,
                minimum_due=parse_amount(groups.get("minimum")),
                card_last_four=groups.get("card"),
                bank_name=template.bank_name or detect_bank(body),
                rule_name=template.name,
            )

        return None

    @staticmethod
    def is_non_transactional(body: str) -> bool:
        if any(pattern.search(body) for pattern in NON_TRANSACTIONAL_PATTERNS):
            return True
        if TRANSACTION_VERB_RE.search(body):
            return False
        return any(pattern.search(body) for pattern in BALANCE_INQUIRY_PATTERNS)

    # -------------------------------------------------------------------------
    # INTERNAL: RECOGNITION
    # -------------------------------------------------------------------------

    def _recognize(
        self, template: MessageTemplate, body: str, received_at: datetime | None
    ) -> Optional[ParsedTransaction]:
        match = template.pattern.search(body)
        if match is None:
            return None

        groups = match.groupdict()
        amount = parse_amount(groups.get("amount"))
        if amount is None:
            logger.debug(f"{template.name}: unusable amount {groups.get('amount')!r}")
            return None

        merchant = template.merchant or self._clean_merchant(groups.get("merchant"))
        if not merchant:
            return None

        reference = groups.get("ref")
        bank_name = template.bank_name or detect_bank(body)
        currency = (groups.get("currency") or self.default_currency).upper()

        return ParsedTransaction(
            amount=amount,
            direction=template.direction,
            merchant_name=merchant,
            transaction_date=self._resolve_date(groups.get("date"), received_at),
            reference=reference,
            bank_name=bank_name,
            card_last_four=groups.get("card"),
            account_last_four=groups.get("account"),
            confidence=self._score(template, reference, bank_name),
            is_likely_subscription=(
                template.is_subscription
                or is_known_subscription(merchant)
                or is_known_subscription(body)
            ),
            currency=currency,
            payment_channel=template.channel,
            rule_name=template.name,
        )

    def _score(self, template: MessageTemplate, reference: str | None, bank_name: str | None) -> float:
        confidence = template.base_confidence
        if reference:
            confidence += self.reference_bonus
        if bank_name:
            confidence += self.bank_bonus
        if template.loosely_delimited:
            confidence = min(confidence, self.low_confidence_cap)
        return min(confidence, 1.0)

    @staticmethod
    def _clean_merchant(raw: str | None) -> Optional[str]:
        if raw is None:
            return None
        return raw.strip(_MERCHANT_DELIMITERS) or None

    @staticmethod
    def _resolve_date(text: str | None, received_at: datetime | None) -> datetime:
        """
        Naive wall-clock datetime. Body dates carry no zone, so a zoned
        received_at is reduced to its local wall time to keep history comparable.
        """
        parsed = parse_date(text)
        if parsed is not None:
            return datetime.combine(parsed, time.min)
        if received_at is None:
            return datetime.now()
        return received_at.replace(tzinfo=None)
