"""
In-memory adapters for the storage ports.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from shared.errors import StoreError
from shared.logging import get_logger
from .store import RuleStore, EvaluationHistory, StoredRuleset, HistoryEntry


class InMemoryRuleStore(RuleStore):
    """
    Rule store backed by a dict.

    Writers for the same key are serialized by a per-key lock and replace
    the stored value in one assignment, so readers always see a complete
    ruleset (old or new).
    """

    def __init__(self):
        self.logger = get_logger("privacy.store.rules")
        self._rulesets: Dict[Tuple[str, str], StoredRuleset] = {}
        self._locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock(self, key: Tuple[str, str]) -> threading.Lock:
        with self._locks_guard:
            return self._locks[key]

    def get(self, user_id: str, service_type: str) -> Optional[StoredRuleset]:
        return self._rulesets.get((user_id, service_type))

    def put(self, ruleset: StoredRuleset) -> None:
        if not ruleset.user_id or not ruleset.service_type:
            raise StoreError("Ruleset requires user_id and service_type")
        key = (ruleset.user_id, ruleset.service_type)
        with self._lock(key):
            self._rulesets[key] = ruleset
        self.logger.info(
            "Ruleset stored",
            user_id=ruleset.user_id,
            service_type=ruleset.service_type,
            rules=len(ruleset.rules)
        )

    def list_for_user(self, user_id: str) -> List[StoredRuleset]:
        rulesets = [r for (uid, _), r in list(self._rulesets.items()) if uid == user_id]
        return sorted(rulesets, key=lambda r: r.service_type)

    def delete(self, user_id: str, service_type: str) -> bool:
        key = (user_id, service_type)
        with self._lock(key):
            removed = self._rulesets.pop(key, None) is not None
        if removed:
            self.logger.info("Ruleset deleted", user_id=user_id, service_type=service_type)
        return removed


class InMemoryEvaluationHistory(EvaluationHistory):
    """Evaluation history with a per-user cap on retained entries."""

    def __init__(self, max_entries_per_user: int = 1000):
        if max_entries_per_user < 1:
            raise StoreError("max_entries_per_user must be positive")
        self.max_entries_per_user = max_entries_per_user
        self._entries: Dict[str, List[HistoryEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, entry: HistoryEntry) -> None:
        with self._lock:
            entries = self._entries[entry.user_id]
            entries.append(entry)
            if len(entries) > self.max_entries_per_user:
                del entries[:len(entries) - self.max_entries_per_user]

    def recent(self, user_id: str, limit: int = 50) -> List[HistoryEntry]:
        if limit < 1:
            return []
        with self._lock:
            return list(self._entries.get(user_id, [])[-limit:])
