"""
Time-based decay of memory freshness.

Memories untouched for more than a day lose a fraction of their decay score on every
sweep. Important memories fade slower and keep a higher floor.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..utils.logging_config import get_logger
from ..utils.sqlite_client import SQLiteClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class DecayTier:
    min_importance: float
    factor: float
    floor: float


# Ordered from the highest importance threshold down
DECAY_TIERS = (
    DecayTier(min_importance=0.9, factor=0.99, floor=0.5),
    DecayTier(min_importance=0.7, factor=0.97, floor=0.3),
    DecayTier(min_importance=0.5, factor=0.95, floor=0.2),
    DecayTier(min_importance=0.0, factor=0.90, floor=0.1),
)


def tier_for(importance: float, tiers: Sequence[DecayTier] = DECAY_TIERS) -> DecayTier:
    for tier in tiers:
        if importance >= tier.min_importance:
            return tier
    return tiers[-1]


def decayed_score(importance: float, decay_score: float, tiers: Sequence[DecayTier] = DECAY_TIERS) -> float:
    """One decay step. Never raises a score, even one already under its floor."""
    tier = tier_for(importance, tiers)
    return min(decay_score, max(tier.floor, decay_score * tier.factor))


class DecayService:
    """Apply decay sweeps against storage."""

    def __init__(self, storage: SQLiteClient, tiers: Sequence[DecayTier] = DECAY_TIERS):
        self.storage = storage
        self.tiers = tuple(tiers)

    def apply(self, now: Optional[datetime] = None) -> int:
        """
        Decay every memory idle for more than one day.

        Args:
            now: Reference time in UTC (current time if None)

        Returns:
            Number of memories whose score changed
        """
        with self.storage.transaction():
            updates = []
            for memory_id, importance, score in self.storage.decay_candidates(now):
                new_score = decayed_score(importance, score, self.tiers)
                if new_score != score:
                    updates.append((new_score, memory_id))
            self.storage.update_decay_scores(updates)

        logger.debug(f'Decay sweep updated {len(updates)} memories')
        return len(updates)
