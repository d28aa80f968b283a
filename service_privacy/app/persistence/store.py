"""
Storage ports for rulesets and evaluation history.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple

from ..rules.models import Rule


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StoredRuleset:
    """Complete rule set of one user for one service type."""
    user_id: str
    service_type: str
    rules: Tuple[Rule, ...]
    preferences: Dict[str, Any] = field(default_factory=dict)
    ruleset_xml: str = ""
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "service_type": self.service_type,
            "rules": [r.to_dict() for r in self.rules],
            "preferences": dict(self.preferences),
            "ruleset_xml": self.ruleset_xml,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class HistoryEntry:
    """One evaluation recorded for a user."""
    id: str
    user_id: str
    service_type: str
    context: Dict[str, Any]
    result: Dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service_type": self.service_type,
            "context": dict(self.context),
            "result": self.result,
            "timestamp": self.timestamp.isoformat(),
        }


class RuleStore(ABC):
    """Rulesets keyed by (user_id, service_type). A put replaces the whole set."""

    @abstractmethod
    def get(self, user_id: str, service_type: str) -> Optional[StoredRuleset]:
        ...

    @abstractmethod
    def put(self, ruleset: StoredRuleset) -> None:
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[StoredRuleset]:
        ...

    @abstractmethod
    def delete(self, user_id: str, service_type: str) -> bool:
        ...


class EvaluationHistory(ABC):
    """Append-only evaluation log keyed by user."""

    @abstractmethod
    def append(self, entry: HistoryEntry) -> None:
        ...

    @abstractmethod
    def recent(self, user_id: str, limit: int = 50) -> List[HistoryEntry]:
        """Most recent entries, oldest first."""
        ...
