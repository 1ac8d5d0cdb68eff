"""
Core data models for the long-term memory system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_CATEGORY = 'general'
DEFAULT_IMPORTANCE = 0.5


@dataclass
class Memory:
    """A single remembered fact with its ranking state."""
    id: int
    content: str
    category: str = DEFAULT_CATEGORY
    importance: float = DEFAULT_IMPORTANCE
    source: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    access_count: int = 0
    decay_score: float = 1.0  # Freshness multiplier in (0, 1]

    def to_dict(self) -> Dict[str, Any]:
        """Export representation with tags as a list and ISO timestamps."""
        return {
            'id': self.id,
            'content': self.content,
            'category': self.category,
            'importance': self.importance,
            'source': self.source,
            'tags': list(self.tags),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_accessed': self.last_accessed.isoformat() if self.last_accessed else None,
            'access_count': self.access_count,
            'decay_score': self.decay_score
        }


@dataclass
class Entity:
    """A named person, place or concept that memories can be linked to."""
    id: int
    name: str  # Globally unique
    type: str = 'unknown'
    attributes: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'attributes': dict(self.attributes),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


@dataclass
class ExtractedMemory:
    """Candidate memory as produced by an extractor, consumed by ``add``."""
    content: str
    category: str = DEFAULT_CATEGORY
    importance: float = DEFAULT_IMPORTANCE
    tags: List[str] = field(default_factory=list)
    source: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'ExtractedMemory':
        importance = data.get('importance')
        return cls(content=data['content'],
                   category=data.get('category') or DEFAULT_CATEGORY,
                   importance=DEFAULT_IMPORTANCE if importance is None else float(importance),
                   tags=list(data.get('tags') or []),
                   source=data.get('source'))


@dataclass
class AddResult:
    """Outcome of ``add``: either a new record or an existing near-duplicate."""
    memory: Memory
    duplicate: bool = False
    similarity: Optional[float] = None  # Jaccard similarity when duplicate

    @property
    def id(self) -> int:
        return self.memory.id


@dataclass
class ScoredMemory:
    """A memory ranked by a semantic strategy."""
    memory: Memory
    similarity: float
    score: float


@dataclass
class SemanticSearchResult:
    """Ranked results tagged with the retrieval engine that produced them."""
    engine: str
    results: List[ScoredMemory] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)


@dataclass
class RebuildResult:
    """Outcome of a full index rebuild."""
    count: int
    dense: bool = False
    dense_error: Optional[str] = None


@dataclass
class ImportResult:
    """Counts from importing an exported document."""
    memories: int = 0
    duplicates: int = 0
    entities: int = 0
