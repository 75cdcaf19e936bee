"""In-memory key-value store used as the default memory capability."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

__all__ = ["InMemoryStore", "Retrieval", "RetrievalHit"]


@dataclass(slots=True, frozen=True)
class RetrievalHit:
    text: str
    score: float = 0.0


class Retrieval:
    """Naive substring retrieval over documents stored under ``retrieval:<index>``."""

    def __init__(self, documents: list[str]) -> None:
        self._documents = list(documents)

    async def search(self, query: str, top_k: int = 4) -> list[RetrievalHit]:
        needle = query.lower()
        scored = [
            RetrievalHit(text=doc, score=1.0 if needle in doc.lower() else 0.0)
            for doc in self._documents
        ]
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[: max(0, top_k)]


class InMemoryStore:
    """Dictionary-backed implementation of the memory capability."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def retrieval(self, index: str) -> Retrieval:
        documents = self._data.get(f"retrieval:{index}") or []
        return Retrieval([str(doc) for doc in documents])

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
