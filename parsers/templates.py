"""
templates.py
-------------
The fixed set of bank / payment message templates the parser recognizes.

Every template is a compiled regex with named groups:
    amount    (required)  money string, see parsers/amounts.py
    merchant  (required unless the template fixes the merchant)
    date      (optional)  falls back to the message's received-at time
    ref, card, account, currency  (optional)

TRANSACTION_TEMPLATES is ordered: the parser tries them top to bottom and
the first one that yields a valid amount and merchant wins. More specific
bank formats come first, the loose fallback comes last.

Patterns are compiled once, at import.
"""

import re
from dataclasses import dataclass
from typing import Optional

from core.models import Direction, PaymentChannel
from parsers.amounts import AMOUNT, CURRENCY, DATE, amount_group


_FLAGS = re.IGNORECASE | re.DOTALL

AMT = amount_group("amount")


@dataclass(frozen=True)
class MessageTemplate:
    """One recognizable message shape and what it implies about the record."""

    name: str
    pattern: re.Pattern
    base_confidence: float = 0.9
    direction: Direction = Direction.DEBIT
    channel: PaymentChannel = PaymentChannel.UNKNOWN
    bank_name: Optional[str] = None       # None: detect from the body
    merchant: Optional[str] = None        # Fixed merchant for single-service renewals
    is_subscription: bool = False
    loosely_delimited: bool = False       # Confidence is capped for these


@dataclass(frozen=True)
class BillTemplate:
    name: str
    pattern: re.Pattern
    bank_name: Optional[str] = None


def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, _FLAGS)


# =============================================================================
# TRANSACTION TEMPLATES (priority order)
# =============================================================================

TRANSACTION_TEMPLATES: list[MessageTemplate] = [
    # ---- UPI debit to a named payee ----
    MessageTemplate(
        name="HDFC_UPI_SENT",
        pattern=_compile(
            rf"Sent\s+{AMT}\s+From\s+HDFC\s+Bank\s+A/C\s+[*X]+(?P<account>\d+)\s+"
            rf"To\s+(?P<merchant>.+?)\s+On\s+(?P<date>{DATE})\s+Ref\s+(?P<ref>\d+)"
        ),
        channel=PaymentChannel.UPI,
        bank_name="HDFC",
    ),
    MessageTemplate(
        name="UPI_PAID_TO_PAYEE",
        pattern=_compile(
            rf"Paid\s+{AMT}\s+to\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})\s+using\s+UPI"
            rf"(?:.*?UPI\s+Ref[:.\s]*(?P<ref>\d+))?"
        ),
        channel=PaymentChannel.UPI,
    ),

    # ---- UPI debit to a virtual payment address ----
    MessageTemplate(
        name="UPI_DEBIT_TO_VPA",
        pattern=_compile(
            rf"{AMT}\s+debited\s+from\s+A/c\s+X+(?P<account>\d+)\s+to\s+VPA\s+(?P<merchant>\S+)"
            rf"\s+on\s+(?P<date>{DATE})(?:.*?UPI\s+Ref[:.\s]*(?P<ref>\d+))?"
        ),
        channel=PaymentChannel.UPI,
    ),
    MessageTemplate(
        name="ICICI_UPI_TO_VPA",
        pattern=_compile(
            rf"{AMT}\s+debited\s+from\s+A/c\s+X+(?P<account>\d+)\s+on\s+(?P<date>{DATE})\s+"
            rf"for\s+UPI\s+to\s+(?P<merchant>[^\s,;]+?)\.?(?=\s|$)(?:.*?Ref[:.\s]*(?P<ref>\d+))?"
        ),
        channel=PaymentChannel.UPI,
    ),

    # ---- Bank account narrations ----
    MessageTemplate(
        name="ICICI_ACCOUNT_UPI_DEBIT",
        pattern=_compile(
            rf"ICICI\s+Bank\s+Acc?t?\s+X*(?P<account>\d+)\s+debited\s+for\s+{AMT}\s+"
            rf"on\s+(?P<date>{DATE});?\s*(?P<merchant>.+?)\s+credited\.?\s*UPI[:\s]*(?P<ref>\d+)"
        ),
        channel=PaymentChannel.UPI,
        bank_name="ICICI",
    ),
    MessageTemplate(
        name="ACCOUNT_CREDIT",
        pattern=_compile(
            rf"Acc?t?\s+X*(?P<account>\d+)\s+is\s+credited\s+with\s+{AMT}\s+on\s+(?P<date>{DATE})\s+"
            rf"(?:from|by)\s+(?P<merchant>.+?)\.?\s*(?:UPI[:\s]*(?P<ref>\d+)|$)"
        ),
        direction=Direction.CREDIT,
        channel=PaymentChannel.ACCOUNT,
    ),

    # ---- Credit card point-of-sale usage ----
    MessageTemplate(
        name="HDFC_CARD_USED",
        pattern=_compile(
            rf"HDFC\s+Bank\s+Credit\s+Card\s+X+(?P<card>\d{{4}})\s+has\s+been\s+used\s+for\s+{AMT}\s+"
            rf"at\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        bank_name="HDFC",
    ),
    MessageTemplate(
        name="ICICI_CARD_USED",
        pattern=_compile(
            rf"ICICI\s+Card\s+ending\s+(?P<card>\d{{4}})\s+used\s+for\s+{AMT}\s+"
            rf"at\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        bank_name="ICICI",
    ),
    MessageTemplate(
        name="ICICI_CARD_SPENT",
        pattern=_compile(
            rf"(?P<currency>INR|USD)\s*(?P<amount>{AMOUNT})\s+spent\s+using\s+ICICI\s+Bank\s+Card\s+"
            rf"X+(?P<card>\d+)\s+on\s+(?P<date>{DATE})\s+on\s+(?P<merchant>.+?)\.?\s*(?:Avl|If\s+not|$)"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        bank_name="ICICI",
    ),
    MessageTemplate(
        name="SBI_CARD_USED",
        pattern=_compile(
            rf"SBI\s+Card\s+ending\s+(?P<card>\d{{4}})\s+was\s+used\s+for\s+{AMT}\s+"
            rf"at\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        bank_name="SBI",
    ),
    MessageTemplate(
        name="AXIS_CARD_USED",
        pattern=_compile(
            rf"Axis\s+Bank\s+Credit\s+Card\s+ending\s+(?P<card>\d{{4}})\s+was\s+used\s+for\s+{AMT}\s+"
            rf"at\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        bank_name="AXIS",
    ),

    # ---- Subscriptions / auto-renewals ----
    MessageTemplate(
        name="ICICI_AUTOPAY",
        pattern=_compile(
            rf"{AMT}\s+debited\s+from\s+ICICI\s+Bank\s+(?:Savings\s+)?Account\s+X+(?P<account>\d+)\s+"
            rf"on\s+(?P<date>{DATE})\s+towards\s+(?P<merchant>.+?)\s+for\s+.*?AutoPay"
            rf"(?:.*?Ref\s+No\.?\s*(?P<ref>\d+))?"
        ),
        channel=PaymentChannel.AUTOPAY,
        bank_name="ICICI",
        is_subscription=True,
    ),
    MessageTemplate(
        name="AUTOPAY_DEBIT_SUCCESS",
        pattern=_compile(
            rf"successfully\s+debited\s+with\s+{AMT}\s+on\s+(?P<date>{DATE})\s+"
            rf"towards\s+(?P<merchant>.+?)\s+for\s+.*?AutoPay(?:.*?RRN\s+(?P<ref>\d+))?"
        ),
        channel=PaymentChannel.AUTOPAY,
        is_subscription=True,
    ),
    MessageTemplate(
        name="HDFC_AUTO_DEBIT",
        pattern=_compile(
            rf"Auto\s+Debit\s+of\s+{AMT}\s+from\s+HDFC\s+Bank\s+A/C\s+[*X]+(?P<account>\d+)\s+"
            rf"for\s+(?P<merchant>.+?)\s+on\s+(?P<date>{DATE})"
        ),
        channel=PaymentChannel.AUTOPAY,
        bank_name="HDFC",
        is_subscription=True,
    ),
    MessageTemplate(
        name="GOOGLE_PLAY_CHARGE",
        pattern=_compile(
            rf"Google\s+Play\s+charged\s+{AMT}\s+to\s+your\s+card\s+ending\s+(?P<card>\d{{4}})\s+"
            rf"for\s+(?P<merchant>.+?)(?:\s+subscription)?\.?\s*$"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        is_subscription=True,
    ),
    MessageTemplate(
        name="NETFLIX_RENEWAL",
        pattern=_compile(
            rf"Netflix\s+subscription\s+of\s+{AMT}\s+has\s+been\s+renewed"
            rf".*?card\s+(?:ending\s+)?X*(?P<card>\d{{4}})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        merchant="Netflix",
        is_subscription=True,
    ),
    MessageTemplate(
        name="AMAZON_PRIME_RENEWAL",
        pattern=_compile(
            rf"Amazon\s+Prime\s+membership\s+renewed.*?{AMT}\s+charged\s+to\s+card\s+"
            rf"(?:ending\s+)?X*(?P<card>\d{{4}})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        merchant="Amazon Prime",
        is_subscription=True,
    ),
    MessageTemplate(
        name="SPOTIFY_RENEWAL",
        pattern=_compile(
            rf"Spotify\s+Premium\s+renewed.*?{AMT}\s+charged\s+to\s+card\s+"
            rf"(?:ending\s+)?X*(?P<card>\d{{4}})"
        ),
        channel=PaymentChannel.CREDIT_CARD,
        merchant="Spotify Premium",
        is_subscription=True,
    ),

    # ---- Generic account debits ----
    MessageTemplate(
        name="ACCOUNT_DEBIT_TOWARDS",
        pattern=_compile(
            rf"{AMT}\s+(?:has\s+been\s+)?debited\s+from\s+(?:your\s+)?A/c\s+X+(?P<account>\d+)\s+"
            rf"(?:on\s+(?P<date>{DATE})\s+)?towards\s+(?P<merchant>.+?)"
            rf"(?=\s+for\s|\s+on\s|\.\s|\.?$|\s+-)"
        ),
        base_confidence=0.85,
        channel=PaymentChannel.ACCOUNT,
    ),
    MessageTemplate(
        name="GENERIC_SUBSCRIPTION",
        pattern=_compile(
            rf"{AMT}\s+(?:debited|charged)\s+(?:from\s+(?:A/c|Account)\s+X+(?P<account>\d+)\s+)?"
            rf"for\s+(?:your\s+)?(?P<merchant>.+?)\s+subscription"
        ),
        base_confidence=0.85,
        is_subscription=True,
    ),

    # ---- Loosely delimited fallback ----
    MessageTemplate(
        name="LOOSE_DEBIT",
        pattern=_compile(
            rf"{CURRENCY}\s*(?P<amount>{AMOUNT})\s+(?:has\s+been\s+|was\s+)?"
            rf"(?:debited|spent|paid|charged)\b[^\n]*?\b(?:to|at|towards)\s+"
            rf"(?P<merchant>[^\W_][^\n]*?)"
            rf"(?:\s+on\s+(?P<date>{DATE})|(?=\s+-|\.\s|\.?$|\n))"
        ),
        base_confidence=0.6,
        loosely_delimited=True,
    ),
]


# =============================================================================
# BILL TEMPLATES
# =============================================================================

BILL_TEMPLATES: list[BillTemplate] = [
    BillTemplate(
        name="HDFC_STATEMENT",
        pattern=_compile(
            rf"HDFC\s+(?:Bank\s+)?Credit\s+Card\s+X+(?P<card>\d{{4}})\s+statement"
            rf".*?Total\s+Due[:\s]*{amount_group('total')}"
            rf"(?:.*?Min(?:imum)?\s+Due[:\s]*{amount_group('minimum')})?"
            rf".*?Due\s+Date[:\s]*(?P<date>{DATE})"
        ),
        bank_name="HDFC",
    ),
    BillTemplate(
        name="HDFC_BILL_SUMMARY",
        pattern=_compile(
            rf"HDFC\s+(?:Bank\s+)?Credit\s+Card\s+X+(?P<card>\d{{4}})\s+Bill[:\s]+"
            rf"Total\s+Due\s+{amount_group('total')},?\s+Min\s+Due\s+{amount_group('minimum')},?\s+"
            rf"Due\s+(?:Date|by)[:\s]*(?P<date>{DATE})"
        ),
        bank_name="HDFC",
    ),
    BillTemplate(
        name="ICICI_CARD_BILL",
        pattern=_compile(
            rf"ICICI\s+(?:Bank\s+)?Credit\s+Card\s+X+(?P<card>\d{{4}})\s+bill\s+(?:is|of)\s+"
            rf"{amount_group('total')}(?:.*?Min(?:imum)?\s+(?:Amount\s+)?Due[:\s]*{amount_group('minimum')})?"
            rf".*?Due\s+(?:Date|by|on)[:\s]*(?P<date>{DATE})"
        ),
        bank_name="ICICI",
    ),
    BillTemplate(
        name="ICICI_BILL_GENERATED",
        pattern=_compile(
            rf"ICICI\s+Card\s+bill\s+generated.*?Amount[:\s]*{amount_group('total')}"
            rf".*?Due[:\s]*(?P<date>{DATE})"
        ),
        bank_name="ICICI",
    ),
    BillTemplate(
        name="SBI_CARD_STATEMENT",
        pattern=_compile(
            rf"SBI\s+Card\s+X+(?P<card>\d{{4}})\s+Statement[:\s]*Total\s+Due\s+{amount_group('total')},?\s+"
            rf"Min\s+Due\s+{amount_group('minimum')},?\s+Due\s+by\s+(?P<date>{DATE})"
        ),
        bank_name="SBI",
    ),
]


# =============================================================================
# NON-TRANSACTIONAL SHAPES
# =============================================================================

# Any hit here means the message is never parsed as a transaction.
NON_TRANSACTIONAL_PATTERNS: list[re.Pattern] = [
    # Authentication codes
    _compile(r"\bOTP\b"),
    _compile(r"one[\s-]+time\s+password"),
    _compile(r"verification\s+code"),
    # Promotions. Merchant names such as "DISCOUNT MART" must not match.
    _compile(r"\bcash\s*back\b"),
    _compile(r"\b(?:exclusive|special|limited|festive|best|great|exciting)\s+offers?\b"),
    _compile(r"\boffers?\s+(?:valid|ends?|expires?|available|for\s+you)\b"),
    _compile(r"\d+\s*%\s*off\b"),
    _compile(r"\b(?:flat|extra|instant|get|upto|up\s+to)\s+(?:\S+\s+)?discount\b"),
    _compile(r"\bdiscount\s+(?:of|code|coupon|voucher)\b"),
    _compile(r"\bT&C\b"),
    # Deposits maturing
    _compile(r"\bfixed\s+deposit\b"),
    _compile(r"\bFD\s+matures\b"),
    # Payment-due reminders
    _compile(r"\breminder\b"),
    _compile(r"\bpayment\s+(?:of\s+\S+\s+)?is\s+due\b"),
    _compile(r"\bis\s+due\s+on\b"),
    # Shopping pleasantries sent alongside receipts
    _compile(r"thank\s+you\s+for\s+shopping"),
    _compile(r"visit\s+again"),
]

# Balance inquiries. Only rejected when the body reports no money movement:
# debit alerts often end with "Avl bal is Rs...".
BALANCE_INQUIRY_PATTERNS: list[re.Pattern] = [
    _compile(r"\b(?:account|a/c|available|avl\.?)\s+bal(?:ance)?\.?\s+(?:is|as\s+on|in|for)\b"),
    _compile(r"\bbalance\s+is\s+(?:Rs|INR|₹)"),
]

TRANSACTION_VERB_RE = _compile(
    r"\b(?:debited|credited|spent|paid|charged|sent|withdrawn|used\s+for|deducted)\b"
)


# Bank names that can be identified from free text, in lookup order.
BANK_MARKERS: list[tuple[str, re.Pattern]] = [
    ("HDFC", _compile(r"\bHDFC\b")),
    ("ICICI", _compile(r"\bICICI\b")),
    ("SBI", _compile(r"\bSBI\b|State\s+Bank")),
    ("AXIS", _compile(r"\bAxis\b")),
    ("KOTAK", _compile(r"\bKotak\b")),
    ("BOB", _compile(r"\bBOB\b|Bank\s+of\s+Baroda")),
]
