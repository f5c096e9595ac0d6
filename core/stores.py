"""
stores.py
----------
Collaborator contracts for the storage side of the engine, plus in-memory
implementations.

The engine owns no persistence. Everything it reads (transaction history,
merchant mappings, confirmed rules) and everything it writes (new
transactions, mappings, rules, suggestions) goes through these interfaces.
The in-memory implementations back the CLI and the test suite; a real
deployment plugs in its own database-backed classes.
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from config.config_loader import get_suggestion_config
from core.models import (
    MerchantMapping,
    PatternSuggestion,
    RawMessage,
    RecurringRule,
    Transaction,
)


def _key(name: str) -> str:
    return " ".join(name.upper().split())


# =============================================================================
# CONTRACTS
# =============================================================================

class MessageSource(ABC):
    @abstractmethod
    def read_messages(self, period: str | None = None) -> List[RawMessage]:
        """Returns messages for a period ("YYYY-MM"), or all when None."""
        ...


class TransactionStore(ABC):
    @abstractmethod
    def insert(self, transaction: Transaction) -> int:
        ...

    @abstractmethod
    def exists_by_raw_body(self, text: str) -> bool:
        ...

    @abstractmethod
    def get_all(self) -> List[Transaction]:
        ...


class MappingStore(ABC):
    @abstractmethod
    def find_by_raw_name(self, name: str) -> Optional[MerchantMapping]:
        ...

    @abstractmethod
    def find_all(self) -> List[MerchantMapping]:
        ...

    @abstractmethod
    def insert(self, mapping: MerchantMapping) -> int:
        ...


class RuleStore(ABC):
    @abstractmethod
    def get_active_rules(self, as_of: date | None = None) -> List[RecurringRule]:
        """Rules active on as_of (today when None)."""
        ...

    @abstractmethod
    def find_by_merchant_pattern(self, name: str) -> Optional[RecurringRule]:
        """Returns the active rule for this canonical merchant, if any."""
        ...

    @abstractmethod
    def insert(self, rule: RecurringRule) -> int:
        ...


class SuggestionStore(ABC):
    @abstractmethod
    def create_from_detection(self, suggestion: PatternSuggestion) -> Optional[PatternSuggestion]:
        """Stores a suggestion. None if a pending or dismissed one already exists."""
        ...

    @abstractmethod
    def confirm(self, suggestion_id: int) -> int:
        """Promotes a stored suggestion to a rule and returns the rule id."""
        ...

    @abstractmethod
    def dismiss(self, suggestion_id: int, now: datetime | None = None) -> None:
        ...

    @abstractmethod
    def cleanup_old_dismissed(self, now: datetime | None = None) -> int:
        """Forgets dismissals older than the retention window. Returns how many."""
        ...


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, event: dict) -> None:
        """Best-effort delivery. May raise; callers swallow failures."""
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryMessageSource(MessageSource):
    def __init__(self, messages: Iterable[RawMessage] = ()):
        self.messages = list(messages)

    def read_messages(self, period: str | None = None) -> List[RawMessage]:
        if period is None:
            return list(self.messages)
        return [
            m for m in self.messages
            if m.received_at is not None and m.received_at.strftime("%Y-%m") == period
        ]


class InMemoryTransactionStore(TransactionStore):
    def __init__(self, transactions: Iterable[Transaction] = ()):
        self._ids = itertools.count(1)
        self._rows: List[Transaction] = []
        for txn in transactions:
            self.insert(txn)

    def insert(self, transaction: Transaction) -> int:
        txn_id = transaction.id if transaction.id is not None else next(self._ids)
        self._rows.append(replace(transaction, id=txn_id))
        return txn_id

    def exists_by_raw_body(self, text: str) -> bool:
        return any(t.raw_body == text for t in self._rows)

    def get_all(self) -> List[Transaction]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryMappingStore(MappingStore):
    def __init__(self, mappings: Iterable[MerchantMapping] = ()):
        self._ids = itertools.count(1)
        self._by_name: dict[str, MerchantMapping] = {}
        for mapping in mappings:
            self.insert(mapping)

    def find_by_raw_name(self, name: str) -> Optional[MerchantMapping]:
        return self._by_name.get(_key(name))

    def find_all(self) -> List[MerchantMapping]:
        return list(self._by_name.values())

    def insert(self, mapping: MerchantMapping) -> int:
        mapping_id = mapping.id if mapping.id is not None else next(self._ids)
        self._by_name[_key(mapping.raw_merchant_name)] = replace(mapping, id=mapping_id)
        return mapping_id


class InMemoryRuleStore(RuleStore):
    def __init__(self, rules: Iterable[RecurringRule] = ()):
        self._ids = itertools.count(1)
        self._rules: List[RecurringRule] = []
        for rule in rules:
            self.insert(rule)

    def get_active_rules(self, as_of: date | None = None) -> List[RecurringRule]:
        # Rules here are never deactivated by date, so as_of does not narrow the set.
        return [r for r in self._rules if r.is_active]

    def find_by_merchant_pattern(self, name: str) -> Optional[RecurringRule]:
        wanted = _key(name)
        for rule in self._rules:
            if rule.is_active and _key(rule.merchant_pattern) == wanted:
                return rule
        return None

    def insert(self, rule: RecurringRule) -> int:
        rule_id = rule.id if rule.id is not None else next(self._ids)
        self._rules.append(replace(rule, id=rule_id))
        return rule_id


class InMemorySuggestionStore(SuggestionStore):
    """
    Keeps pending and dismissed suggestions keyed by canonical merchant.

    A dismissal blocks re-detection of the same merchant until it is older
    than the configured retention window and cleanup_old_dismissed() runs.
    """

    def __init__(self, rule_store: RuleStore, retention_days: int | None = None):
        self.config = get_suggestion_config()
        self.rule_store = rule_store
        self.retention_days = (
            retention_days if retention_days is not None else self.config["dismissed_retention_days"]
        )
        self._ids = itertools.count(1)
        self._pending: dict[int, PatternSuggestion] = {}
        self._dismissed: dict[int, tuple[PatternSuggestion, datetime]] = {}

    def create_from_detection(self, suggestion: PatternSuggestion) -> Optional[PatternSuggestion]:
        wanted = _key(suggestion.merchant_pattern)
        known = itertools.chain(
            self._pending.values(), (s for s, _ in self._dismissed.values())
        )
        if any(_key(s.merchant_pattern) == wanted for s in known):
            return None

        stored = replace(suggestion, id=next(self._ids))
        self._pending[stored.id] = stored
        return stored

    def confirm(self, suggestion_id: int) -> int:
        suggestion = self._pending.pop(suggestion_id, None)
        if suggestion is None:
            raise KeyError(f"No pending suggestion with id {suggestion_id}")
        return self.rule_store.insert(suggestion.to_recurring_rule())

    def dismiss(self, suggestion_id: int, now: datetime | None = None) -> None:
        suggestion = self._pending.pop(suggestion_id, None)
        if suggestion is None:
            raise KeyError(f"No pending suggestion with id {suggestion_id}")
        self._dismissed[suggestion_id] = (suggestion, now or datetime.now())

    def cleanup_old_dismissed(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        expired = [sid for sid, (_, dismissed_at) in self._dismissed.items() if dismissed_at < cutoff]
        for sid in expired:
            del self._dismissed[sid]
        return len(expired)

    def pending(self) -> List[PatternSuggestion]:
        return list(self._pending.values())


class InMemoryNotificationSink(NotificationSink):
    def __init__(self):
        self.events: List[dict] = []

    def notify(self, event: dict) -> None:
        self.events.append(event)
