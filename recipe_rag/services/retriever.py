"""Vector, lexical and hybrid retrieval over an IndexStore."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

import numpy as np

from recipe_rag.core.exceptions import EmbeddingFailure, InvalidArgument, ModelMismatchError
from recipe_rag.services.embeddings import EmbeddingProvider
from recipe_rag.services.index_store import DocumentId, IndexStore


logger = logging.getLogger(__name__)


class SearchMode(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class RetrievalHit:
    document_id: DocumentId
    score: float


def _id_sort_key(doc_id: DocumentId) -> Tuple[int, int | str]:
    # Integers sort numerically and before strings.
    return (0, doc_id) if isinstance(doc_id, int) else (1, str(doc_id))


def _min_max(scores: Dict[int, float]) -> Dict[int, float]:
    if not scores:
        return {}
    low, high = min(scores.values()), max(scores.values())
    if high == low:
        return {pos: 1.0 for pos in scores}
    return {pos: (score - low) / (high - low) for pos, score in scores.items()}


class Retriever:
    """
    Ranks store documents against a question.

    The embedding provider must be the one (same model) the store was built
    with; vector and hybrid searches refuse to run otherwise.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_weight: float = 0.5,
        candidate_multiplier: int = 4,
    ) -> None:
        if not 0.0 <= vector_weight <= 1.0:
            raise ValueError("vector_weight must be within [0, 1].")
        self.embedder = embedder
        self.vector_weight = vector_weight
        self.candidate_multiplier = max(1, candidate_multiplier)

    def check_model(self, store: IndexStore) -> None:
        if self.embedder.model != store.embedding_model:
            raise ModelMismatchError(
                f"Store was built with embedding model '{store.embedding_model}' "
                f"but queries use '{self.embedder.model}'."
            )

    def search(self, store: IndexStore, query: str, k: int, mode: SearchMode | str = SearchMode.HYBRID) -> List[RetrievalHit]:
        if not isinstance(k, int) or isinstance(k, bool) or k <= 0:
            raise InvalidArgument("nbResults must be a positive integer.")
        if not query or not query.strip():
            raise InvalidArgument("Question must not be empty.")
        try:
            mode = SearchMode(mode)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown search mode: {mode}") from exc

        if store.is_empty:
            return []

        if mode is SearchMode.VECTOR:
            ranked = self._vector_ranking(store, query, k)
        elif mode is SearchMode.LEXICAL:
            ranked = store.lexical_index.search(query, k)
        else:
            return self._hybrid(store, query, k)

        return [RetrievalHit(store.documents[pos].id, score) for pos, score in ranked]

    def _vector_ranking(self, store: IndexStore, query: str, top_k: int) -> List[Tuple[int, float]]:
        self.check_model(store)
        vectors = np.asarray(self.embedder.embed_texts([query]), dtype="float32")
        if vectors.ndim != 2 or vectors.shape[0] != 1:
            raise EmbeddingFailure(f"Embedding provider returned shape {vectors.shape} for one query.")
        if vectors.shape[1] != store.dimension:
            raise ModelMismatchError(
                f"Query embedding has dimension {vectors.shape[1]}, store has {store.dimension}."
            )
        ranked = store.vector_index.search(vectors[0], top_k)
        # Exact flat search; stable order for equal scores.
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked

    def _hybrid(self, store: IndexStore, query: str, k: int) -> List[RetrievalHit]:
        pool = min(len(store), k * self.candidate_multiplier)
        vector_ranked = self._vector_ranking(store, query, pool)
        lexical_ranked = store.lexical_index.search(query, pool)

        vector_rank = {pos: rank for rank, (pos, _) in enumerate(vector_ranked)}
        lexical_rank = {pos: rank for rank, (pos, _) in enumerate(lexical_ranked)}
        vector_norm = _min_max(dict(vector_ranked))
        lexical_norm = _min_max(dict(lexical_ranked))

        w = self.vector_weight
        fused = {
            pos: w * vector_norm.get(pos, 0.0) + (1 - w) * lexical_norm.get(pos, 0.0)
            for pos in set(vector_rank) | set(lexical_rank)
        }
        absent = len(store)
        ordered = sorted(
            fused,
            key=lambda pos: (
                -fused[pos],
                vector_rank.get(pos, absent),
                lexical_rank.get(pos, absent),
                _id_sort_key(store.documents[pos].id),
            ),
        )

        logger.debug(
            "Hybrid search: %d vector + %d lexical candidates -> %d fused.",
            len(vector_ranked), len(lexical_ranked), len(fused),
        )
        return [RetrievalHit(store.documents[pos].id, fused[pos]) for pos in ordered[:k]]
