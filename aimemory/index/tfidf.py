"""
TF-IDF statistics and sparse vectorization.

The index only keeps corpus statistics (document count and per-term document
frequency). Per-document vectors are computed on demand and persisted by storage.
"""

import json
import math
from collections import Counter
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from .synonyms import SynonymExpander
from .synonyms import expand_synonyms as _expand_with_defaults
from .tokenizer import tokenize

SparseVector = Dict[str, float]


class TfIdfIndex:
    """Corpus statistics for smoothed TF-IDF weighting.

    ``add_document`` is not idempotent: every call counts as a new document, so callers
    must fold each logical document in exactly once.
    """

    def __init__(self, doc_count: int = 0, document_frequency: Optional[Mapping[str, int]] = None):
        self.doc_count = doc_count
        self.document_frequency: Dict[str, int] = dict(document_frequency or {})

    @property
    def vocabulary(self) -> Set[str]:
        return set(self.document_frequency)

    def add_document(self, text: str) -> None:
        for term in set(tokenize(text)):
            self.document_frequency[term] = self.document_frequency.get(term, 0) + 1
        self.doc_count += 1

    def remove_document(self, text: str) -> None:
        """Undo one ``add_document`` call for the same text."""
        for term in set(tokenize(text)):
            remaining = self.document_frequency.get(term, 0) - 1
            if remaining > 0:
                self.document_frequency[term] = remaining
            else:
                self.document_frequency.pop(term, None)
        self.doc_count = max(0, self.doc_count - 1)

    def build_from_documents(self, texts: Iterable[str]) -> None:
        """Reset the statistics and fold in every text."""
        self.doc_count = 0
        self.document_frequency = {}
        for text in texts:
            self.add_document(text)

    def idf(self, term: str) -> float:
        # Smoothed so unseen terms still get a positive weight
        return math.log((self.doc_count + 1) / (self.document_frequency.get(term, 0) + 1)) + 1

    def vectorize(self, text: str, expand_synonyms: bool = False,
                  expander: Optional[SynonymExpander] = None) -> SparseVector:
        """Compute the sparse TF-IDF vector of a text.

        Args:
            text: Text to vectorize
            expand_synonyms: Add synonym group-mates first (queries only)
            expander: Synonym table to use instead of the built-in one

        Returns:
            Mapping of term to weight; empty for text without tokens
        """
        tokens = tokenize(text)
        if not tokens:
            return {}
        if expand_synonyms:
            tokens = expander.expand(tokens) if expander else _expand_with_defaults(tokens)

        counts = Counter(tokens)
        max_count = max(counts.values())
        return {term: (count / max_count) * self.idf(term) for term, count in counts.items()}

    def copy(self) -> 'TfIdfIndex':
        return TfIdfIndex(self.doc_count, self.document_frequency)

    def to_dict(self) -> Dict[str, Any]:
        return {'docCount': self.doc_count, 'df': [[term, count] for term, count in self.document_frequency.items()]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TfIdfIndex':
        """
        Restore an index from ``to_dict`` output.

        Raises:
            ValueError: If ``data`` is not a mapping or holds malformed entries
        """
        if not isinstance(data, Mapping):
            raise ValueError(f'Index state must be an object, got {type(data).__name__}')
        return cls(doc_count=int(data.get('docCount') or 0),
                   document_frequency={term: int(count) for term, count in data.get('df') or []})

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> 'TfIdfIndex':
        return cls.from_dict(json.loads(raw))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TfIdfIndex):
            return NotImplemented
        return self.doc_count == other.doc_count and self.document_frequency == other.document_frequency

    def __repr__(self) -> str:
        return f'TfIdfIndex(doc_count={self.doc_count}, vocabulary={len(self.document_frequency)})'
