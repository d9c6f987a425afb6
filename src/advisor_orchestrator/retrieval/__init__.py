"""Context retrieval adapters for assistant answers."""

from advisor_orchestrator.retrieval.context import (
    ChromaContextRetriever,
    ContextDocument,
    ContextRetriever,
    NullContextRetriever,
    build_context_retriever,
)

__all__ = [
    "ChromaContextRetriever",
    "ContextDocument",
    "ContextRetriever",
    "NullContextRetriever",
    "build_context_retriever",
]
