"""
test_parser.py
---------------
Tests for the message parsing layer.

Run from the project root:
    python -m pytest tests/test_parser.py -v

Tests are organized by layer:
    - Amount & date conventions
    - Transaction templates (UPI, card, subscription, fallback)
    - Non-transactional rejection
    - Bill recognizer
"""

import sys
import os
import pytest
from datetime import date, datetime, timedelta, timezone

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from core.models import Direction, PaymentChannel
from parsers.amounts import parse_amount, parse_date
from parsers.message_parser import TextTransactionParser, is_known_subscription, reset_vocabulary


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config and vocabulary caches before each test for isolation."""
    reset_config()
    reset_vocabulary()
    yield
    reset_config()
    reset_vocabulary()


@pytest.fixture
def parser():
    return TextTransactionParser()


RECEIVED_AT = datetime(2024, 12, 20, 9, 30)


# =============================================================================
# AMOUNT & DATE TESTS
# =============================================================================

class TestAmountParsing:
    def test_plain_and_decimal_amounts(self):
        assert parse_amount("350.00") == 350.0
        assert parse_amount("500") == 500.0

    def test_currency_markers_accepted(self):
        assert parse_amount("Rs.350") == 350.0
        assert parse_amount("Rs 350") == 350.0
        assert parse_amount("INR 500") == 500.0
        assert parse_amount("₹1,250") == 1250.0

    def test_indian_grouping(self):
        assert parse_amount("1,25,000.00") == 125000.0
        assert parse_amount("99,99,999.00") == 9999999.0
        assert parse_amount("45,230") == 45230.0

    def test_western_grouping_rejected(self):
        assert parse_amount("125,000") is None

    def test_one_decimal_digit_rejected(self):
        assert parse_amount("12.5") is None

    def test_non_positive_and_empty_rejected(self):
        assert parse_amount("0") is None
        assert parse_amount("0.00") is None
        assert parse_amount("") is None
        assert parse_amount(None) is None


class TestDateParsing:
    def test_numeric_dash_short_year(self):
        assert parse_date("14-12-24") == date(2024, 12, 14)

    def test_numeric_slash_long_year(self):
        assert parse_date("14/12/2024") == date(2024, 12, 14)

    def test_numeric_slash_short_year_is_not_year_24(self):
        assert parse_date("14/12/24") == date(2024, 12, 14)

    def test_abbreviated_month(self):
        assert parse_date("05-Jan-25") == date(2025, 1, 5)
        assert parse_date("17-DEC-2025") == date(2025, 12, 17)

    def test_unsupported_format(self):
        assert parse_date("2024-12-14") is None
        assert parse_date(None) is None


# =============================================================================
# UPI TEMPLATE TESTS
# =============================================================================

class TestUpiMessages:
    def test_hdfc_upi_named_payee(self, parser):
        body = "Paid Rs.350.00 to MY CHICKEN SHOP on 14-12-24 using UPI. UPI Ref: 433218765432. -HDFC Bank"
        txn = parser.parse(body)

        assert txn is not None
        assert txn.amount == pytest.approx(350.00)
        assert txn.direction == Direction.DEBIT
        assert txn.merchant_name == "MY CHICKEN SHOP"
        assert txn.transaction_date == datetime(2024, 12, 14)
        assert txn.reference == "433218765432"
        assert txn.bank_name == "HDFC"
        assert txn.payment_channel == PaymentChannel.UPI
        assert txn.is_likely_subscription is False
        assert txn.confidence >= 0.9

    def test_indian_grouped_amount(self, parser):
        body = "Paid Rs.1,25,000.00 to LANDLORD JOHN on 01-12-24 using UPI. UPI Ref: 433218765433. -HDFC Bank"
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(125000.00)
        assert txn.merchant_name == "LANDLORD JOHN"
        assert txn.transaction_date == datetime(2024, 12, 1)

    def test_large_amount(self, parser):
        body = "Paid Rs.99,99,999.00 to BUILDER LTD on 01-12-24 using UPI. UPI Ref: 433218765439. -HDFC Bank"
        assert parser.parse(body).amount == pytest.approx(9999999.00)

    def test_non_ascii_merchant_preserved(self, parser):
        body = "Paid Rs.500.00 to CAFÉ COFFEE DAY - T.NAGAR on 14-12-24 using UPI. UPI Ref: 433218765434. -HDFC Bank"
        txn = parser.parse(body)
        assert txn.merchant_name == "CAFÉ COFFEE DAY - T.NAGAR"

    def test_ambiguous_amount_is_no_result(self, parser):
        body = "Paid Rs.125,000.00 to LANDLORD JOHN on 01-12-24 using UPI. UPI Ref: 433218765433. -HDFC Bank"
        assert parser.parse(body) is None

    def test_sbi_vpa_debit(self, parser):
        body = "Rs.1200 debited from A/c XX1234 to VPA swiggy@upi on 14-12-24. UPI Ref 433218765432 -SBI"
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(1200.0)
        assert txn.merchant_name == "swiggy@upi"
        assert txn.account_last_four == "1234"
        assert txn.reference == "433218765432"
        assert txn.bank_name == "SBI"

    def test_icici_vpa_debit(self, parser):
        body = "INR 499.00 debited from A/c XX1234 on 14-12-24 for UPI to merchant@ybl. Ref 987654321 -ICICI"
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(499.0)
        assert txn.merchant_name == "merchant@ybl"
        assert txn.reference == "987654321"
        assert txn.bank_name == "ICICI"

    def test_rule_name_recorded(self, parser):
        body = "Paid Rs.350.00 to MY CHICKEN SHOP on 14-12-24 using UPI. UPI Ref: 433218765432. -HDFC Bank"
        assert parser.parse(body).rule_name == "UPI_PAID_TO_PAYEE"

    def test_one_recognizer_per_template(self, parser):
        assert len(parser.recognizers) == len(parser.templates)


# =============================================================================
# CARD TEMPLATE TESTS
# =============================================================================

class TestCardMessages:
    def test_hdfc_card_usage(self, parser):
        body = "HDFC Bank Credit Card XX4523 has been used for Rs.2340.00 at AMAZON on 14-12-24 at 14:30:45"
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(2340.0)
        assert txn.merchant_name == "AMAZON"
        assert txn.card_last_four == "4523"
        assert txn.bank_name == "HDFC"
        assert txn.payment_channel == PaymentChannel.CREDIT_CARD
        assert txn.confidence >= 0.9

    def test_icici_card_usage_abbreviated_month(self, parser):
        body = "Alert: ICICI Card ending 8976 used for INR 5550.00 at CROMA ELECTRONICS on 14-Dec-24"
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(5550.0)
        assert txn.merchant_name == "CROMA ELECTRONICS"
        assert txn.card_last_four == "8976"
        assert txn.transaction_date == datetime(2024, 12, 14)

    def test_sbi_card_netflix_flags_subscription(self, parser):
        body = "Your SBI Card ending 3456 was used for Rs.649 at NETFLIX.COM on 14/12/2024"
        txn = parser.parse(body)

        assert txn.merchant_name == "NETFLIX.COM"
        assert txn.bank_name == "SBI"
        assert txn.is_likely_subscription is True
        assert txn.transaction_date == datetime(2024, 12, 14)

    def test_icici_usd_spend(self, parser):
        body = (
            "USD 12.99 spent using ICICI Bank Card XX9001 on 03-Jan-25 on OPENAI CHATGPT SUBSCR. "
            "Avl Limit: INR 1,20,000.00. If not you, call 18002662."
        )
        txn = parser.parse(body)

        assert txn.amount == pytest.approx(12.99)
        assert txn.currency == "USD"
        assert txn.merchant_name == "OPENAI CHATGPT SUBSCR"
        assert txn.card_last_four == "9001"


# =============================================================================
# SUBSCRIPTION TEMPLATE TESTS
# =============================================================================

class TestSubscriptionMessages:
    def test_google_play_charge(self, parser):
        body = "Google Play charged Rs.129 to your card ending 4523 for YouTube Premium subscription"
        txn = parser.parse(body, received_at=RECEIVED_AT)

        assert txn.amount == pytest.approx(129.0)
        assert txn.merchant_name == "YouTube Premium"
        assert txn.card_last_four == "4523"
        assert txn.is_likely_subscription is True
        assert txn.transaction_date == RECEIVED_AT

    def test_zoned_received_at_becomes_local_wall_time(self, parser):
        ist = timezone(timedelta(hours=5, minutes=30))
        body = "Your Netflix subscription of Rs.649 has been renewed using card XX8976"
        txn = parser.parse(body, received_at=datetime(2024, 12, 20, 9, 30, tzinfo=ist))

        assert txn.transaction_date == datetime(2024, 12, 20, 9, 30)
        assert txn.transaction_date.tzinfo is None

    def test_netflix_renewal(self, parser):
        body = "Your Netflix subscription of Rs.649 has been renewed using card XX8976"
        txn = parser.parse(body, received_at=RECEIVED_AT)

        assert txn.merchant_name == "Netflix"
        assert txn.amount == pytest.approx(649.0)
        assert txn.card_last_four == "8976"
        assert txn.is_likely_subscription is True

    def test_amazon_prime_renewal(self, parser):
        body = "Amazon Prime membership renewed. Rs.1499 charged to card ending 4523."
        txn = parser.parse(body, received_at=RECEIVED_AT)

        assert txn.merchant_name == "Amazon Prime"
        assert txn.amount == pytest.approx(1499.0)
        assert txn.is_likely_subscription is True

    def test_icici_autopay(self, parser):
        body = (
            "Rs 1499.00 debited from ICICI Bank Savings Account XX494 on 17-Dec-25 towards "
            "JioHotstar for Autopay AutoPay Retrieval Ref No.535196959911"
        )
        txn = parser.parse(body)

        assert txn.merchant_name == "JioHotstar"
        assert txn.amount == pytest.approx(1499.0)
        assert txn.reference == "535196959911"
        assert txn.bank_name == "ICICI"
        assert txn.payment_channel == PaymentChannel.AUTOPAY
        assert txn.is_likely_subscription is True
        assert txn.transaction_date == datetime(2025, 12, 17)

    def test_autopay_success_notice(self, parser):
        body = (
            "Your account has been successfully debited with Rs 199.00 on 27-Nov-25 towards "
            "Google Play for GOOGLE AutoPay, RRN 529552463315-ICICI Bank."
        )
        txn = parser.parse(body)

        assert txn.merchant_name == "Google Play"
        assert txn.amount == pytest.approx(199.0)
        assert txn.reference == "529552463315"
        assert txn.bank_name == "ICICI"
        assert txn.is_likely_subscription is True

    def test_known_subscription_vocabulary(self):
        assert is_known_subscription("NETFLIX.COM")
        assert is_known_subscription("JioHotstar")
        assert not is_known_subscription("MY CHICKEN SHOP")
        assert not is_known_subscription(None)


# =============================================================================
# LOW CONFIDENCE FALLBACK
# =============================================================================

class TestLooseFallback:
    def test_loosely_delimited_debit_needs_review(self, parser):
        txn = parser.parse("Rs.250 spent at CORNER STORE on 14-12-24")

        assert txn is not None
        assert txn.merchant_name == "CORNER STORE"
        assert txn.rule_name == "LOOSE_DEBIT"
        assert txn.confidence < 0.7
        assert txn.needs_review is True

    def test_dotted_merchant_keeps_punctuation_and_date(self, parser):
        txn = parser.parse("Rs.250 spent at CAFÉ T.NAGAR on 14-12-24", received_at=RECEIVED_AT)

        assert txn.rule_name == "LOOSE_DEBIT"
        assert txn.merchant_name == "CAFÉ T.NAGAR"
        assert txn.transaction_date == datetime(2024, 12, 14)

    def test_merchant_ends_at_sentence_break(self, parser):
        txn = parser.parse("Rs.120 paid to TEA STALL. Ref 5521", received_at=RECEIVED_AT)

        assert txn.merchant_name == "TEA STALL"
        assert txn.transaction_date == RECEIVED_AT

    def test_unrecognized_message_is_no_result(self, parser):
        assert parser.parse("Transaction of Rs.500 completed") is None
        assert parser.parse("") is None


# =============================================================================
# NON-TRANSACTIONAL REJECTION
# =============================================================================

class TestNonTransactionalMessages:
    @pytest.mark.parametrize("body", [
        "Your OTP is 123456. Valid for 5 minutes. Do not share with anyone.",
        "123456 is your OTP for txn of Rs.2,000.00 at AMAZON on 14-12-24. -HDFC Bank",
        "Get 50% cashback up to Rs.500 on your next UPI payment. T&C apply.",
        "Dear Customer, your account balance is Rs.45,230 as on 14-12-24",
        "Reminder: Your credit card payment of Rs.12,450 is due on 05-Jan-25",
    ])
    def test_rejected(self, parser, body):
        assert parser.parse(body) is None

    def test_available_limit_suffix_not_rejected(self, parser):
        body = "INR 5,000.00 spent using ICICI Bank Card XX1234 on 14-Dec-24 on AMAZON. Avl Limit: INR 95,000.00"
        assert parser.parse(body) is not None

    def test_debit_with_trailing_balance_not_rejected(self, parser):
        body = "Rs.500.00 debited from A/c XX1234 on 14-12-24 towards SWIGGY. Avl bal is Rs.10,000.00"
        txn = parser.parse(body)

        assert txn is not None
        assert txn.merchant_name == "SWIGGY"
        assert txn.amount == pytest.approx(500.0)
        assert txn.transaction_date == datetime(2024, 12, 14)

    def test_merchant_named_discount_not_rejected(self, parser):
        body = "HDFC Bank Credit Card XX4523 has been used for Rs.2340.00 at DISCOUNT MART on 14-12-24"
        txn = parser.parse(body)

        assert txn is not None
        assert txn.merchant_name == "DISCOUNT MART"

    @pytest.mark.parametrize("body", [
        "Exclusive offer! Flat 20% off on electronics at Croma. Shop now.",
        "Get flat Rs.200 discount on your next recharge. Use code SAVE200.",
        "Festive offers valid till 31-12-24 on all HDFC credit cards.",
    ])
    def test_promotions_rejected(self, parser, body):
        assert parser.parse(body) is None


# =============================================================================
# BILL TESTS
# =============================================================================

class TestBillParsing:
    def test_hdfc_statement(self, parser):
        body = "Your HDFC Credit Card XX4523 statement is ready. Total Due: Rs.12450. Min Due: Rs.625. Due Date: 05-Jan-25"
        bill = parser.parse_bill(body)

        assert bill is not None
        assert bill.total_due == pytest.approx(12450.0)
        assert bill.minimum_due == pytest.approx(625.0)
        assert bill.due_date == date(2025, 1, 5)
        assert bill.card_last_four == "4523"
        assert bill.bank_name == "HDFC"

    def test_icici_bill_without_card(self, parser):
        body = "ICICI Card bill generated. Amount: Rs.3200. Due: 12-Jan-25. Pay now to avoid charges."
        bill = parser.parse_bill(body)

        assert bill.total_due == pytest.approx(3200.0)
        assert bill.due_date == date(2025, 1, 12)
        assert bill.minimum_due is None
        assert bill.card_last_four is None

    def test_sbi_statement(self, parser):
        body = "Your SBI Card XX7788 Statement: Total Due Rs.8,540.00, Min Due Rs.427.00, Due by 10-Jan-25"
        bill = parser.parse_bill(body)

        assert bill.total_due == pytest.approx(8540.0)
        assert bill.minimum_due == pytest.approx(427.0)
        assert bill.card_last_four == "7788"

    def test_missing_total_is_no_result(self, parser):
        body = "Your HDFC Credit Card XX4523 statement is ready. Due Date: 05-Jan-25"
        assert parser.parse_bill(body) is None

    def test_transaction_is_not_a_bill(self, parser):
        body = "HDFC Bank Credit Card XX4523 has been used for Rs.2340.00 at AMAZON on 14-12-24"
        assert parser.parse_bill(body) is None


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
