"""
main.py
--------
Entry point for the expense analysis engine.

Reads an export of bank / payment messages, runs the full pipeline
(scan → detection → prediction) against in-memory stores, and writes the
results to the outputs/ folder.

Usage (from the project root):
    python main.py --input messages.csv

    # With optional arguments:
    python main.py --input messages.csv --mappings merchants.csv
    python main.py --input messages.csv --period 2024-12
    python main.py --input messages.csv --today 2025-01-15

Input CSV columns: sender, body, received_at (received_at may be blank).
Mappings CSV columns: raw_merchant_name, display_name, category_id.
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from core.models import MerchantMapping, RawMessage
from core.stores import (
    InMemoryMappingStore,
    InMemoryMessageSource,
    InMemoryRuleStore,
    InMemorySuggestionStore,
    InMemoryTransactionStore,
)
from pipeline import ExpenseAnalysisPipeline


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Expense Analysis Engine - parse bank messages, detect recurring expenses, forecast spend."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to messages CSV (sender, body, received_at)."
    )
    parser.add_argument(
        "--mappings", type=str, default=None,
        help="Optional merchant mappings CSV (raw_merchant_name, display_name, category_id)."
    )
    parser.add_argument(
        "--period", type=str, default=None,
        help="Only scan messages received in this month (YYYY-MM)."
    )
    parser.add_argument(
        "--today", type=str, default=None,
        help="Reference date for predictions (YYYY-MM-DD). Defaults to today."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    return parser.parse_args(argv)


# =============================================================================
# INPUT LOADING
# =============================================================================

def load_messages(path: str) -> list[RawMessage]:
    df = pd.read_csv(path, dtype={"sender": str, "body": str})
    missing = [c for c in ("sender", "body") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    if "received_at" in df.columns:
        received = pd.to_datetime(df["received_at"], errors="coerce")
    else:
        received = pd.Series(pd.NaT, index=df.index)

    messages = []
    for sender, body, ts in zip(df["sender"].fillna(""), df["body"].fillna(""), received):
        messages.append(RawMessage(
            sender=sender,
            body=body,
            received_at=None if pd.isna(ts) else ts.to_pydatetime(),
        ))
    return messages


def load_mappings(path: str) -> list[MerchantMapping]:
    df = pd.read_csv(path)
    mappings = []
    for row in df.itertuples(index=False):
        category_id = getattr(row, "category_id", None)
        mappings.append(MerchantMapping(
            raw_merchant_name=str(row.raw_merchant_name).upper().strip(),
            display_name=str(row.display_name),
            category_id=None if pd.isna(category_id) else int(category_id),
        ))
    return mappings


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None):
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load messages ---
    logger.info(f"Loading messages from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    messages = load_messages(args.input)
    logger.info(f"Loaded {len(messages):,} messages.")

    mappings = load_mappings(args.mappings) if args.mappings else []
    if mappings:
        logger.info(f"Loaded {len(mappings):,} merchant mappings.")

    today = datetime.strptime(args.today, "%Y-%m-%d").date() if args.today else None

    # --- Run pipeline ---
    rule_store = InMemoryRuleStore()
    pipeline = ExpenseAnalysisPipeline(
        message_source=InMemoryMessageSource(messages),
        transaction_store=InMemoryTransactionStore(),
        mapping_store=InMemoryMappingStore(mappings),
        rule_store=rule_store,
        suggestion_store=InMemorySuggestionStore(rule_store),
    )
    outputs = pipeline.run(period=args.period, today=today)

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    for name, df in outputs.items():
        path = os.path.join(output_dir, f"{name}_{timestamp}.csv")
        df.to_csv(path, index=False)
        logger.info(f"{name} saved to: {path}")

    _print_summary(outputs)


def _print_summary(outputs: dict[str, pd.DataFrame]):
    """Prints a clean summary table to the console."""
    scan = outputs["scan_summary"].iloc[0]

    print("\n" + "=" * 80)
    print("  EXPENSE ANALYSIS SUMMARY")
    print("=" * 80)

    print("\n  Message Scan:")
    print("  " + "-" * 60)
    for field in ["scanned", "matched", "saved", "duplicates", "bills", "skipped_senders", "errors"]:
        print(f"    {field:20s}  {int(scan[field]):>6,}")

    suggestions = outputs["suggestions"]
    print(f"\n  Recurring Patterns Detected: {len(suggestions):,}")
    print("  " + "-" * 60)
    for row in suggestions.itertuples(index=False):
        print(f"    {row.display_name:30s}  {row.frequency:8s}  {row.average_amount:>10,.2f}  ({row.confidence:.2f})")

    predictions = outputs["predictions"]
    if not predictions.empty:
        print(f"\n  Next Month: {len(predictions):,} expected payments, total {predictions['amount'].sum():,.2f}")

    dormant = outputs["dormant_subscriptions"]
    if not dormant.empty:
        print(f"\n  Dormant Subscriptions:")
        print("  " + "-" * 60)
        for row in dormant.itertuples(index=False):
            print(f"    {row.display_name:30s}  {row.status:20s}  missed {row.missed_payments}")

    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
