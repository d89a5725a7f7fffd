"""
Text embedding providers used for product semantic search.
"""

from abc import ABC, abstractmethod
import hashlib
from typing import List

import numpy as np
import ollama


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate one embedding per text, in order."""
        return [await self.embed_text(text) for text in texts]

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for development and tests.

    The same text always yields the same unit-length vector, so results are
    reproducible without a model server. Vectors are never all-zero, which
    cosine-similarity vector fields reject.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    async def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        vector = rng.standard_normal(self.dimension)
        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            norm = 1.0
        return (vector / norm).tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class OllamaEmbedding(IEmbeddingProvider):
    """Embeddings served by a local Ollama model."""

    def __init__(self, model_name: str = "qwen3-embedding", host: str = None, dimension: int = 4096):
        self.model_name = model_name
        self.dimension = dimension
        self._client = ollama.AsyncClient(host=host)

    async def embed_text(self, text: str) -> List[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed a whole batch in one request."""
        if not texts:
            return []
        response = await self._client.embed(model=self.model_name, input=texts)
        embeddings = [list(vector) for vector in response["embeddings"]]
        if len(embeddings) != len(texts):
            raise ValueError(f"Expected {len(texts)} embeddings from {self.model_name}, got {len(embeddings)}")
        return embeddings

    def get_dimension(self) -> int:
        return self.dimension


def product_embedding_text(product: dict) -> str:
    """Text summarising a product for embedding: name, category, tags, colors and sizes."""
    variants = product.get("variants") or []
    colors = list(dict.fromkeys(v.get("color") for v in variants if v.get("color") is not None))
    sizes = list(dict.fromkeys(v.get("size") for v in variants if v.get("size") is not None))
    tags = product.get("tags") or []
    return (
        f"{product.get('name', '')}. Category: {product.get('category', '')}. "
        f"Tags: {', '.join(tags)}. Colors: {', '.join(colors)}. Sizes: {', '.join(sizes)}"
    )
