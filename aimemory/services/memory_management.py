"""
Memory engine: deduplicated writes, lexical and semantic retrieval, decay and rebuild.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..index.tfidf import TfIdfIndex
from ..index.vectors import serialize_dense, serialize_sparse
from ..models.core import (DEFAULT_CATEGORY, DEFAULT_IMPORTANCE, AddResult, Entity, ExtractedMemory, Memory, RebuildResult,
                           SemanticSearchResult)
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.embedding_provider import EmbeddingProvider, EmbeddingProviderError
from ..utils.logging_config import get_logger
from ..utils.sqlite_client import SQLiteClient, SQLiteClientError
from .decay import DecayService
from .deduplication import DeduplicationService
from .ranking import Ranker

logger = get_logger(__name__)


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


def _validate_importance(importance: float) -> float:
    importance = float(importance)
    if not 0.0 <= importance <= 1.0:
        raise ValueError(f'Importance must be between 0 and 1, got {importance}')
    return importance


class MemoryEngine:
    """Personal long-term memory store.

    Owns one TF-IDF index, loaded at construction and written back inside the same
    transaction as every change to the record set.
    """

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 storage: Optional[SQLiteClient] = None,
                 dense_provider: Optional[EmbeddingProvider] = None):
        """
        Initialize the memory engine.

        Args:
            config: AppConfig instance, uses default if None
            storage: Pre-opened SQLiteClient (opened from config if None)
            dense_provider: Embedding provider; a BedrockEmbed is created when None and
                dense embeddings are enabled in config
        """
        self.config = config or default_config
        self.storage = storage or SQLiteClient(self.config.storage)

        if dense_provider is None and self.config.bedrock_embed.enabled:
            try:
                dense_provider = BedrockEmbed(self.config.bedrock_embed)
            except Exception as e:
                logger.warning(f'Dense embeddings disabled, Bedrock client could not be created: {e}')
        self.dense_provider = dense_provider

        self._index = self._load_index()
        self.deduplicator = DeduplicationService(self.storage, self.config.index)
        self.ranker = Ranker(self.storage, lambda: self._index, dense_provider=self.dense_provider, min_score=self.config.index.min_score)
        self.decay = DecayService(self.storage)

        logger.info(f'Initialized MemoryEngine with {self._index.doc_count} indexed documents')

    @property
    def index(self) -> TfIdfIndex:
        return self._index

    def _load_index(self) -> TfIdfIndex:
        raw = self.storage.load_index_state()
        if not raw:
            return TfIdfIndex()
        try:
            return TfIdfIndex.from_json(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f'Stored TF-IDF index is unreadable, starting empty (run rebuild): {e}')
            return TfIdfIndex()

    def _limit(self, limit: Optional[int]) -> int:
        return self.config.index.default_limit if limit is None else limit

    # ── Writes ─────────────────────────────────────────────────────────

    def add(self,
            content: str,
            category: str = DEFAULT_CATEGORY,
            importance: float = DEFAULT_IMPORTANCE,
            source: Optional[str] = None,
            tags: Optional[Iterable[str]] = None) -> AddResult:
        """Store a memory unless a near-duplicate already exists.

        A duplicate is not stored again; its importance is raised to ``importance`` when
        that is higher.

        Args:
            content: Memory text
            category: Category label
            importance: Importance in [0, 1]
            source: Free-text provenance
            tags: Tag strings; a single string is one tag

        Returns:
            AddResult with the new or existing memory

        Raises:
            ValueError: If content is blank or importance is out of range
            MemoryManagementError: If storage fails
        """
        if not content or not content.strip():
            raise ValueError('Memory content must not be empty')
        importance = _validate_importance(importance)
        if isinstance(tags, str):
            tags = [tags]
        tags = [str(tag) for tag in tags or []]

        try:
            with self.storage.transaction():
                match = self.deduplicator.find_duplicate(content)
                if match:
                    if importance > match.importance:
                        self.storage.update_importance(match.memory_id, importance)
                    return AddResult(memory=self.storage.get_memory(match.memory_id), duplicate=True, similarity=match.similarity)

                memory_id = self.storage.insert_memory(content, category or DEFAULT_CATEGORY, importance, source, tags)
                self._index.add_document(content)
                self.storage.put_sparse_vector(memory_id, serialize_sparse(self._index.vectorize(content)))
                self.storage.save_index_state(self._index.to_json())
                memory = self.storage.get_memory(memory_id)

        except SQLiteClientError as e:
            self._index = self._load_index()
            logger.error(f'Storage error during memory add: {e}')
            raise MemoryManagementError(f'Memory add failed: {e}')
        except Exception:
            self._index = self._load_index()
            raise

        logger.debug(f'Stored memory {memory.id} [{memory.category}]')
        return AddResult(memory=memory)

    async def add_async(self,
                        content: str,
                        category: str = DEFAULT_CATEGORY,
                        importance: float = DEFAULT_IMPORTANCE,
                        source: Optional[str] = None,
                        tags: Optional[Iterable[str]] = None) -> AddResult:
        """``add``, then store a dense vector for new memories when a provider is configured.

        Provider failures are logged; the memory stays searchable through TF-IDF.
        """
        result = self.add(content, category=category, importance=importance, source=source, tags=tags)
        if result.duplicate or self.dense_provider is None:
            return result

        # The record is already committed; no provider failure may surface as a failed add
        try:
            vector = await asyncio.to_thread(self.dense_provider.embed, content)
        except Exception as e:
            logger.warning(f'Dense embedding failed for memory {result.id}, TF-IDF only: {e}')
            return result

        with self.storage.transaction():
            self.storage.put_dense_vectors([(result.id, serialize_dense(vector))])
        return result

    def add_extracted(self, items: Iterable[Union[ExtractedMemory, Mapping[str, Any]]]) -> List[AddResult]:
        """Store extractor output, one ``add`` per candidate."""
        results = []
        for item in items:
            if not isinstance(item, ExtractedMemory):
                item = ExtractedMemory.from_mapping(item)
            results.append(self.add(item.content, category=item.category, importance=item.importance, source=item.source, tags=item.tags))
        return results

    async def add_extracted_async(self, items: Iterable[Union[ExtractedMemory, Mapping[str, Any]]]) -> List[AddResult]:
        results = []
        for item in items:
            if not isinstance(item, ExtractedMemory):
                item = ExtractedMemory.from_mapping(item)
            results.append(await self.add_async(item.content,
                                                category=item.category,
                                                importance=item.importance,
                                                source=item.source,
                                                tags=item.tags))
        return results

    def get(self, memory_id: int) -> Optional[Memory]:
        return self.storage.get_memory(memory_id)

    def forget(self, memory_id: int) -> bool:
        """
        Delete a memory and its vectors.

        Returns:
            True if the memory existed
        """
        try:
            with self.storage.transaction():
                memory = self.storage.get_memory(memory_id)
                if memory is None:
                    return False
                # Only indexed documents were counted into the statistics
                if self.storage.has_sparse_vector(memory_id):
                    self._index.remove_document(memory.content)
                    self.storage.save_index_state(self._index.to_json())
                self.storage.delete_memory(memory_id)

        except SQLiteClientError as e:
            self._index = self._load_index()
            logger.error(f'Storage error during memory deletion: {e}')
            raise MemoryManagementError(f'Memory deletion failed: {e}')
        except Exception:
            self._index = self._load_index()
            raise

        logger.debug(f'Deleted memory: {memory_id}')
        return True

    def set_importance(self, memory_id: int, importance: float) -> bool:
        importance = _validate_importance(importance)
        with self.storage.transaction():
            return self.storage.update_importance(memory_id, importance)

    # ── Reads ──────────────────────────────────────────────────────────

    def search(self, query: Optional[str] = None, limit: Optional[int] = None, category: Optional[str] = None,
               min_importance: float = 0.0) -> List[Memory]:
        """Keyword search (full-text, falling back to substring match)."""
        return self.ranker.lexical_search(query, self._limit(limit), category=category, min_importance=min_importance)

    def semantic_search(self,
                        query: str,
                        limit: Optional[int] = None,
                        category: Optional[str] = None,
                        min_importance: float = 0.0,
                        min_score: Optional[float] = None) -> SemanticSearchResult:
        """Meaning-based search over TF-IDF vectors with query synonym expansion."""
        return self.ranker.semantic_search(query, self._limit(limit), category=category, min_importance=min_importance, min_score=min_score)

    async def semantic_search_async(self,
                                    query: str,
                                    limit: Optional[int] = None,
                                    category: Optional[str] = None,
                                    min_importance: float = 0.0,
                                    min_score: Optional[float] = None) -> SemanticSearchResult:
        """Semantic search preferring dense embeddings, falling back to TF-IDF."""
        return await self.ranker.semantic_search_async(query,
                                                       self._limit(limit),
                                                       category=category,
                                                       min_importance=min_importance,
                                                       min_score=min_score)

    # ── Maintenance ────────────────────────────────────────────────────

    def rebuild(self) -> int:
        """
        Recompute the TF-IDF statistics and every sparse vector from all memories.

        Returns:
            Number of memories indexed

        Raises:
            MemoryManagementError: If storage fails; the previous index stays in place
        """
        try:
            with self.storage.transaction():
                documents = self.storage.all_memory_contents()
                index = TfIdfIndex()
                index.build_from_documents(content for _, content in documents)
                self.storage.replace_all_sparse_vectors([(memory_id, serialize_sparse(index.vectorize(content)))
                                                         for memory_id, content in documents])
                self.storage.save_index_state(index.to_json())
        except SQLiteClientError as e:
            logger.error(f'Storage error during rebuild: {e}')
            raise MemoryManagementError(f'Rebuild failed: {e}')

        self._index = index
        logger.info(f'Rebuilt TF-IDF vectors for {len(documents)} memories ({len(index.vocabulary)} terms)')
        return len(documents)

    async def rebuild_async(self) -> RebuildResult:
        """Rebuild TF-IDF, then re-embed every memory with the dense provider.

        A provider failure aborts only the dense part; the TF-IDF rebuild is already committed.
        """
        count = self.rebuild()
        if self.dense_provider is None:
            return RebuildResult(count=count)

        documents = self.storage.all_memory_contents()
        try:
            vectors = await asyncio.to_thread(self.dense_provider.embed_batch, [content for _, content in documents])
            if len(vectors) != len(documents):
                raise EmbeddingProviderError(f'Provider returned {len(vectors)} vectors for {len(documents)} texts')
        except Exception as e:
            logger.error(f'Dense vector rebuild failed: {e}')
            return RebuildResult(count=count, dense=False, dense_error=str(e))

        with self.storage.transaction():
            self.storage.put_dense_vectors([(memory_id, serialize_dense(vector)) for (memory_id, _), vector in zip(documents, vectors)])

        logger.info(f'Rebuilt dense vectors for {len(documents)} memories')
        return RebuildResult(count=count, dense=True)

    def apply_decay(self, now: Optional[datetime] = None) -> int:
        """Run one decay sweep; returns the number of memories updated."""
        return self.decay.apply(now)

    # ── Entities ───────────────────────────────────────────────────────

    def add_entity(self, name: str, entity_type: str = 'unknown', attributes: Optional[Mapping[str, Any]] = None) -> Entity:
        """Create or update an entity by name."""
        if not name or not name.strip():
            raise ValueError('Entity name must not be empty')
        with self.storage.transaction():
            return self.storage.upsert_entity(name, entity_type or 'unknown', dict(attributes or {}))

    def get_entity(self, name: str) -> Optional[Entity]:
        return self.storage.get_entity(name)

    def link_memory_entity(self, memory_id: int, entity_name: str) -> bool:
        """
        Associate a memory with a named entity.

        Returns:
            False if the entity or memory does not exist, True once the link exists
        """
        entity = self.storage.get_entity(entity_name)
        if entity is None:
            logger.debug(f'Entity not found for link: {entity_name}')
            return False
        if self.storage.get_memory(memory_id) is None:
            logger.debug(f'Memory not found for link: {memory_id}')
            return False
        with self.storage.transaction():
            self.storage.link_memory_entity(memory_id, entity.id)
        return True

    def get_memory_entities(self, memory_id: int) -> List[Entity]:
        return self.storage.get_memory_entities(memory_id)

    # ── Inspection ─────────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        return {
            'total_memories': self.storage.count_memories(),
            'by_category': self.storage.count_by_category(),
            'total_entities': self.storage.count_entities(),
            'indexed_documents': self._index.doc_count,
            'vocabulary_size': len(self._index.document_frequency),
            'sparse_vectors': self.storage.count_sparse_vectors(),
            'dense_vectors': self.storage.count_dense_vectors(),
            'dense_provider': getattr(self.dense_provider, 'name', None)
        }

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> 'MemoryEngine':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
