"""
Configuration from environment variables (a local .env file is honoured).
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Document store configuration
STORE_PROVIDER = os.getenv("STORE_PROVIDER", "elastic")  # elastic|memory
ES_URL = os.getenv("ES_URL", "http://localhost:9200")
ES_USERNAME = os.getenv("ES_USERNAME")
ES_PASSWORD = os.getenv("ES_PASSWORD")
ES_VERIFY_CERTS = os.getenv("ES_VERIFY_CERTS", "true").lower() == "true"
ES_REQUEST_TIMEOUT_SEC = float(os.getenv("ES_REQUEST_TIMEOUT_SEC", "60"))

# Upper bound for one batch or one archival year, in seconds
STORE_CALL_TIMEOUT_SEC = float(os.getenv("STORE_CALL_TIMEOUT_SEC", "300"))

# Lifecycle configuration
RETENTION_YEARS = int(os.getenv("RETENTION_YEARS", "1"))
PRODUCT_BATCH_SIZE = int(os.getenv("PRODUCT_BATCH_SIZE", "50"))  # small: each batch is embedded first
APPLICATION_BATCH_SIZE = int(os.getenv("APPLICATION_BATCH_SIZE", "10000"))

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|ollama
EMBED_DIMENSIONS = int(os.getenv("EMBED_DIMENSIONS", "384"))
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_EMBED_MODEL = os.getenv("OLLAMA_EMBED_MODEL", "qwen3-embedding")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

VERSION = "1.0.0"

_store = None
_embedding_provider = None


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_retention_years() -> int:
    return RETENTION_YEARS


def get_batch_size(kind: str) -> int:
    """Batch capacity for 'products' or 'applications'."""
    if kind == "products":
        return PRODUCT_BATCH_SIZE
    return APPLICATION_BATCH_SIZE


def get_store_timeout() -> float:
    return STORE_CALL_TIMEOUT_SEC


def get_document_store():
    """Get the configured document store. Built once per process."""
    global _store
    if _store is not None:
        return _store

    if STORE_PROVIDER == "memory":
        from ..store.memory_store import MemoryDocumentStore
        _store = MemoryDocumentStore()
    else:
        from ..store.elastic_store import ElasticDocumentStore
        _store = ElasticDocumentStore.from_config(
            url=ES_URL,
            username=ES_USERNAME,
            password=ES_PASSWORD,
            verify_certs=ES_VERIFY_CERTS,
            request_timeout=ES_REQUEST_TIMEOUT_SEC,
        )
    return _store


def get_embedding_provider():
    """Get the configured embedding provider. Built once per process."""
    global _embedding_provider
    if _embedding_provider is not None:
        return _embedding_provider

    if EMBED_PROVIDER == "ollama":
        from ..vector.embeddings import OllamaEmbedding
        _embedding_provider = OllamaEmbedding(model_name=OLLAMA_EMBED_MODEL, host=OLLAMA_HOST,
                                              dimension=EMBED_DIMENSIONS)
    else:
        from ..vector.embeddings import DeterministicHashEmbedding
        _embedding_provider = DeterministicHashEmbedding(dimension=EMBED_DIMENSIONS)
    return _embedding_provider


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if STORE_PROVIDER not in ["elastic", "memory"]:
        issues.append(f"Invalid STORE_PROVIDER: {STORE_PROVIDER}")

    if EMBED_PROVIDER not in ["hash", "ollama"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if RETENTION_YEARS < 1:
        issues.append("RETENTION_YEARS must be >= 1")

    if PRODUCT_BATCH_SIZE < 1 or APPLICATION_BATCH_SIZE < 1:
        issues.append("Batch sizes must be >= 1")

    if EMBED_DIMENSIONS < 1:
        issues.append("EMBED_DIMENSIONS must be >= 1")

    if STORE_CALL_TIMEOUT_SEC <= 0:
        issues.append("STORE_CALL_TIMEOUT_SEC must be > 0")

    if ES_USERNAME and not ES_PASSWORD:
        issues.append("ES_USERNAME is set but ES_PASSWORD is empty")

    return issues
