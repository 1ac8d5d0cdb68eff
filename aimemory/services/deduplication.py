"""
Near-duplicate detection for incoming memories.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..index.tokenizer import token_set
from ..index.vectors import jaccard_similarity
from ..utils.config import IndexConfig
from ..utils.logging_config import get_logger
from ..utils.sqlite_client import SQLiteClient

logger = get_logger(__name__)


@dataclass
class DuplicateMatch:
    """An existing memory similar enough to count as the same fact."""
    memory_id: int
    content: str
    importance: float
    similarity: float


class DeduplicationService:
    """Find stored memories whose token sets overlap heavily with new content."""

    def __init__(self, storage: SQLiteClient, config: IndexConfig):
        """
        Initialize the deduplication service.

        Args:
            storage: SQLiteClient used for candidate lookup
            config: IndexConfig with threshold and candidate limits
        """
        self.storage = storage
        self.threshold = config.dedup_threshold
        self.sample_tokens = config.dedup_sample_tokens
        self.candidate_limit = config.dedup_candidate_limit

    def find_duplicate(self, content: str, threshold: Optional[float] = None) -> Optional[DuplicateMatch]:
        """Return the best stored match at or above the similarity threshold.

        Candidates come from a substring lookup on a few sample tokens, so this never
        scans the whole table. Among qualifying candidates the highest similarity wins,
        ties going to the lowest id.

        Args:
            content: New memory text
            threshold: Jaccard threshold (config default if None)

        Returns:
            DuplicateMatch or None
        """
        threshold = self.threshold if threshold is None else threshold
        tokens = token_set(content)
        if not tokens:
            return None

        candidates: Dict[int, Tuple[str, float]] = {}
        for token in tokens[:self.sample_tokens]:
            for memory_id, stored, importance in self.storage.find_by_content_substring(token, self.candidate_limit):
                candidates.setdefault(memory_id, (stored, importance))

        best: Optional[DuplicateMatch] = None
        best_similarity = -1.0
        for memory_id in sorted(candidates):
            stored, importance = candidates[memory_id]
            similarity = jaccard_similarity(tokens, token_set(stored))
            if similarity >= threshold and similarity > best_similarity:
                best_similarity = similarity
                best = DuplicateMatch(memory_id=memory_id, content=stored, importance=importance, similarity=round(similarity, 3))

        if best:
            logger.debug(f'Content duplicates memory {best.memory_id} (similarity {best.similarity})')
        return best
