"""Context retrieval for the assistant's retrieval-augmented answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from advisor_orchestrator.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextDocument:
    document_id: str
    content: str
    similarity: float
    source_type: str = "document"
    metadata: dict[str, Any] = field(default_factory=dict)


class ContextRetriever(Protocol):
    def search(self, user_id: str, query: str, *, limit: int, threshold: float) -> list[ContextDocument]: ...


class NullContextRetriever:
    """Retriever used when no document index is configured."""

    def search(self, user_id: str, query: str, *, limit: int, threshold: float) -> list[ContextDocument]:
        return []


class ChromaContextRetriever:
    """Query a persisted Chroma collection holding per-user ingested documents."""

    def __init__(self, *, persist_path: str, collection_name: str) -> None:
        import chromadb

        self._client = chromadb.PersistentClient(path=persist_path)
        self.collection_name = collection_name

    def search(self, user_id: str, query: str, *, limit: int, threshold: float) -> list[ContextDocument]:
        try:
            collection = self._client.get_collection(name=self.collection_name)
            raw = collection.query(
                query_texts=[query],
                n_results=max(limit, 1),
                where={"user_id": user_id},
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("context_search event=error user_id=%s error=%s", user_id, exc)
            return []

        ids = _first_list(raw.get("ids"))
        docs = _first_list(raw.get("documents"))
        metadatas = _first_list(raw.get("metadatas"))
        distances = _first_list(raw.get("distances"))

        hits: list[ContextDocument] = []
        for idx, item_id in enumerate(ids):
            document = str(docs[idx] if idx < len(docs) else "")
            if not document:
                continue
            metadata_raw = metadatas[idx] if idx < len(metadatas) else {}
            metadata = metadata_raw if isinstance(metadata_raw, dict) else {}
            distance = _safe_float(distances[idx] if idx < len(distances) else 1.0, default=1.0)
            similarity = distance_to_similarity(distance)
            if similarity < threshold:
                continue
            hits.append(
                ContextDocument(
                    document_id=str(item_id),
                    content=document,
                    similarity=similarity,
                    source_type=str(metadata.get("source_type") or "document"),
                    metadata=metadata,
                )
            )
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]


def build_context_retriever(settings: Settings) -> ContextRetriever:
    if not settings.chroma_persist_path:
        return NullContextRetriever()
    return ChromaContextRetriever(
        persist_path=settings.chroma_persist_path,
        collection_name=settings.chroma_collection,
    )


def distance_to_similarity(distance: float) -> float:
    # Cosine distance in [0, 2]; similarity clipped to [0, 1].
    return round(max(0.0, min(1.0, 1.0 - distance)), 4)


def _first_list(value: Any) -> list[Any]:
    if isinstance(value, list) and value:
        first = value[0]
        if isinstance(first, list):
            return first
    return []


def _safe_float(value: Any, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
