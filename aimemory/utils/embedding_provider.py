"""
Contract for external dense embedding providers.
"""

from typing import List, Protocol, Sequence, runtime_checkable


class EmbeddingProviderError(Exception):
    """Custom exception for dense embedding provider errors."""
    pass


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns text into fixed-dimension float vectors.

    Implementations raise ``EmbeddingProviderError`` on any failure. Calls may block on
    network I/O, so the engine only invokes them from worker threads.
    """

    name: str
    dimension: int

    def embed(self, text: str) -> List[float]:
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...
