"""
Ranking for lexical and semantic memory retrieval.

Semantic retrieval is an ordered chain of strategies. Each strategy says whether it can
serve a request; the first one that can and does not fail produces the result, tagged
with its name.
"""

import asyncio
import sqlite3
from typing import Callable, List, Optional, Sequence, Tuple

from ..index.tfidf import TfIdfIndex
from ..index.vectors import cosine_similarity, cosine_similarity_dense, deserialize_dense, deserialize_sparse
from ..models.core import Memory, ScoredMemory, SemanticSearchResult
from ..utils.embedding_provider import EmbeddingProvider, EmbeddingProviderError
from ..utils.logging_config import get_logger
from ..utils.sqlite_client import SQLiteClient
from ..utils.timestamp_utils import from_storage_str

logger = get_logger(__name__)


def blended_score(similarity: float, importance: float, decay_score: float) -> float:
    return similarity * (0.5 + 0.5 * importance) * decay_score


def rank_by_similarity(scored: Sequence[Tuple[Memory, float]], limit: int, min_score: float) -> List[ScoredMemory]:
    """Drop weak matches, order by blended score (ties by id) and truncate."""
    ranked = [
        ScoredMemory(memory=memory,
                     similarity=similarity,
                     score=blended_score(similarity, memory.importance, memory.decay_score))
        for memory, similarity in scored if similarity >= min_score
    ]
    ranked.sort(key=lambda r: (-r.score, r.memory.id))
    return ranked[:limit]


class RetrievalStrategy:
    """One way of answering a semantic query."""

    name = ''

    def is_available(self) -> bool:
        return True

    async def search(self, query: str, limit: int, category: Optional[str], min_importance: float,
                     min_score: float) -> List[ScoredMemory]:
        raise NotImplementedError


class TfIdfStrategy(RetrievalStrategy):
    """Cosine similarity over stored sparse TF-IDF vectors. Fully local."""

    name = 'tfidf'

    def __init__(self, storage: SQLiteClient, index_getter: Callable[[], TfIdfIndex]):
        self.storage = storage
        self.index_getter = index_getter

    def rank(self, query: str, limit: int, category: Optional[str], min_importance: float, min_score: float) -> List[ScoredMemory]:
        query_vec = self.index_getter().vectorize(query, expand_synonyms=True)
        if not query_vec:
            return []

        scored = [(memory, cosine_similarity(query_vec, deserialize_sparse(raw)))
                  for memory, raw in self.storage.get_sparse_vectors(category, min_importance)]
        return rank_by_similarity(scored, limit, min_score)

    async def search(self, query, limit, category, min_importance, min_score):
        return self.rank(query, limit, category, min_importance, min_score)


class DenseStrategy(RetrievalStrategy):
    """Cosine similarity over provider embeddings.

    Only available when a provider is configured and at least one dense vector has been
    stored. Provider calls run in a worker thread so the event loop never blocks on them.
    """

    def __init__(self, storage: SQLiteClient, provider: Optional[EmbeddingProvider]):
        self.storage = storage
        self.provider = provider
        self.name = getattr(provider, 'name', 'dense')

    def is_available(self) -> bool:
        return self.provider is not None and self.storage.count_dense_vectors() > 0

    async def search(self, query, limit, category, min_importance, min_score):
        embed_query = getattr(self.provider, 'embed_query', None) or self.provider.embed
        try:
            query_vec = await asyncio.to_thread(embed_query, query)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(f'Query embedding failed: {e}')

        scored = [(memory, cosine_similarity_dense(query_vec, deserialize_dense(raw)))
                  for memory, raw in self.storage.get_dense_vectors(category, min_importance)]
        return rank_by_similarity(scored, limit, min_score)


class Ranker:
    """Lexical search plus the semantic strategy chain."""

    def __init__(self,
                 storage: SQLiteClient,
                 index_getter: Callable[[], TfIdfIndex],
                 dense_provider: Optional[EmbeddingProvider] = None,
                 min_score: float = 0.05):
        """
        Initialize the ranker.

        Args:
            storage: SQLiteClient for records and vectors
            index_getter: Returns the engine's current TF-IDF index
            dense_provider: Optional external embedding provider
            min_score: Default minimum similarity for semantic results
        """
        self.storage = storage
        self.min_score = min_score
        self.tfidf = TfIdfStrategy(storage, index_getter)
        self.strategies: List[RetrievalStrategy] = []
        if dense_provider is not None:
            self.strategies.append(DenseStrategy(storage, dense_provider))
        self.strategies.append(self.tfidf)

    def _touch(self, memories: Sequence[Memory]) -> None:
        """Record the read on storage and on the returned objects."""
        if not memories:
            return
        with self.storage.transaction():
            stamp = self.storage.touch_memories([memory.id for memory in memories])
        accessed = from_storage_str(stamp)
        for memory in memories:
            memory.access_count += 1
            memory.last_accessed = accessed

    def lexical_search(self, query: Optional[str], limit: int, category: Optional[str] = None, min_importance: float = 0.0) -> List[Memory]:
        """
        Keyword search with substring fallback.

        Args:
            query: Search text; None or blank lists memories by importance and decay
            limit: Maximum number of results
            category: Restrict to one category
            min_importance: Importance floor

        Returns:
            Matching memories, best first
        """
        if query and query.strip():
            try:
                memories = self.storage.fts_search(query, limit, category, min_importance)
            except sqlite3.OperationalError as e:
                logger.warning(f'Full-text query rejected, falling back to substring match: {e}')
                memories = []
            if not memories:
                memories = self.storage.like_search(query, limit, category, min_importance)
        else:
            memories = self.storage.list_memories(limit, category, min_importance)

        self._touch(memories)
        logger.debug(f'Lexical search returned {len(memories)} memories')
        return memories

    def semantic_search(self, query: str, limit: int, category: Optional[str] = None, min_importance: float = 0.0,
                        min_score: Optional[float] = None) -> SemanticSearchResult:
        """TF-IDF semantic search; never touches the dense provider."""
        min_score = self.min_score if min_score is None else min_score
        results = self.tfidf.rank(query, limit, category, min_importance, min_score)
        self._touch([r.memory for r in results])
        return SemanticSearchResult(engine=self.tfidf.name, results=results)

    async def semantic_search_async(self, query: str, limit: int, category: Optional[str] = None, min_importance: float = 0.0,
                                    min_score: Optional[float] = None) -> SemanticSearchResult:
        """
        Semantic search through the strategy chain.

        Returns:
            Results from the first available strategy that did not fail
        """
        min_score = self.min_score if min_score is None else min_score
        for strategy in self.strategies:
            if not strategy.is_available():
                continue
            try:
                results = await strategy.search(query, limit, category, min_importance, min_score)
            except EmbeddingProviderError as e:
                logger.warning(f'{strategy.name} search failed, trying next strategy: {e}')
                continue
            self._touch([r.memory for r in results])
            return SemanticSearchResult(engine=strategy.name, results=results)

        # The TF-IDF strategy is always available and never raises provider errors
        return SemanticSearchResult(engine=self.tfidf.name)
