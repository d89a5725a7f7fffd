# Package initialization for vector module
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, OllamaEmbedding, product_embedding_text

__all__ = [
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'OllamaEmbedding',
    'product_embedding_text'
]
