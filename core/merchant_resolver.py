"""
merchant_resolver.py
---------------------
Resolves a raw merchant string to a known category mapping.

Lookup order:
    1. Exact mapping on the uppercased, trimmed name. Trusted as-is.
    2. Fuzzy scan over every stored mapping. The best score >= 0.7 wins and
       needs user confirmation unless it reaches 0.95.
    3. No match.

Confirmations and manual categorizations write new mappings back to the
mapping store; rejections write nothing.
"""

import logging

from core.models import MatchType, MerchantMapping, MerchantMatchResult, RecurringRule, Transaction
from core.similarity import SimilarityScorer
from core.stores import MappingStore
from config.config_loader import get_merchant_resolution_config

logger = logging.getLogger(__name__)


class MerchantResolver:
    """
    Exact-then-fuzzy merchant lookup against a MappingStore.

    Usage:
        resolver = MerchantResolver(mapping_store)
        result = resolver.find_match("SWIGGY INSTAMART")
    """

    def __init__(self, mapping_store: MappingStore, scorer: SimilarityScorer | None = None):
        self.config = get_merchant_resolution_config()
        self.store = mapping_store
        self.scorer = scorer or SimilarityScorer()
        self.fuzzy_threshold = self.config["fuzzy_threshold"]
        self.auto_apply_threshold = self.config["auto_apply_threshold"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def find_match(self, raw_merchant_name: str) -> MerchantMatchResult:
        normalized = self.normalize(raw_merchant_name)

        exact = self.store.find_by_raw_name(normalized)
        if exact is not None:
            return MerchantMatchResult(
                match_type=MatchType.EXACT,
                mapping=exact,
                confidence=exact.confidence,
                requires_confirmation=False,
            )

        best_mapping: MerchantMapping | None = None
        best_score = 0.0
        for mapping in self.store.find_all():
            score = self.scorer.similarity(normalized, mapping.raw_merchant_name)
            if score >= self.fuzzy_threshold and score > best_score:
                best_score = score
                best_mapping = mapping

        if best_mapping is not None:
            logger.debug(
                f"Fuzzy match '{normalized}' -> '{best_mapping.raw_merchant_name}' ({best_score:.3f})"
            )
            return MerchantMatchResult(
                match_type=MatchType.FUZZY,
                mapping=best_mapping,
                confidence=best_score,
                requires_confirmation=best_score < self.auto_apply_threshold,
            )

        return MerchantMatchResult(
            match_type=MatchType.NONE,
            mapping=None,
            confidence=0.0,
            requires_confirmation=False,
        )

    def confirm_fuzzy_match(self, raw_name: str, suggested_mapping: MerchantMapping) -> MerchantMapping:
        """User accepted a fuzzy suggestion: remember the raw name with the same category."""
        mapping = MerchantMapping(
            raw_merchant_name=self.normalize(raw_name),
            display_name=suggested_mapping.display_name,
            category_id=suggested_mapping.category_id,
            confidence=self.config["confirmed_fuzzy_confidence"],
            is_fuzzy_match=True,
        )
        mapping.id = self.store.insert(mapping)
        logger.info(f"Confirmed fuzzy mapping '{mapping.raw_merchant_name}' -> {mapping.display_name}")
        return mapping

    def reject_fuzzy_match(self, raw_name: str, suggested_mapping: MerchantMapping) -> None:
        # Nothing is persisted for a rejection.
        logger.debug(f"Rejected fuzzy mapping '{raw_name}' -> {suggested_mapping.display_name}")

    def create_mapping(self, raw_name: str, display_name: str, category_id: int | None) -> MerchantMapping:
        """Manual categorization. Fully trusted."""
        mapping = MerchantMapping(
            raw_merchant_name=self.normalize(raw_name),
            display_name=display_name,
            category_id=category_id,
            confidence=self.config["manual_mapping_confidence"],
        )
        mapping.id = self.store.insert(mapping)
        return mapping

    # -------------------------------------------------------------------------
    # MATCHING HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def normalize(raw_merchant_name: str) -> str:
        return raw_merchant_name.upper().strip()

    @staticmethod
    def matches_rule(transaction: Transaction, rule: RecurringRule) -> bool:
        """
        Loose containment match between a transaction and a confirmed rule.

        Either name containing the other (case-insensitive, whitespace
        collapsed) counts. Used for dormant-subscription tracking, where
        bank narrations often wrap the rule's merchant in extra text.
        """
        merchant = SimilarityScorer.normalize(transaction.merchant_name)
        pattern = SimilarityScorer.normalize(rule.merchant_pattern)
        if not merchant or not pattern:
            return False
        return pattern in merchant or merchant in pattern
