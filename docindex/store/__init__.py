# Package initialization for store module
from .base import IDocumentStore, StoreError
from .types import BulkItemResult, KnnQuery, SearchPage
from .memory_store import MemoryDocumentStore
from .elastic_store import ElasticDocumentStore

__all__ = [
    'IDocumentStore',
    'StoreError',
    'BulkItemResult',
    'KnnQuery',
    'SearchPage',
    'MemoryDocumentStore',
    'ElasticDocumentStore'
]
