import logging
from typing import List, Tuple

import faiss
import numpy as np

from recipe_rag.core.exceptions import CorruptStoreError


logger = logging.getLogger(__name__)


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype("float32")


class FaissVectorIndex:
    """
    Exact FAISS index over document embeddings.

    Positions in the index are positions in the owning store's document list.
    With the cosine metric vectors are stored L2-normalized and searched by
    inner product; with l2 raw vectors are searched by euclidean distance.
    """

    def __init__(self, index: faiss.Index, metric: str) -> None:
        self.index = index
        self.metric = metric

    @classmethod
    def build(cls, embeddings: np.ndarray, metric: str = "cosine") -> "FaissVectorIndex":
        if embeddings.ndim != 2:
            raise ValueError("embeddings must be a 2D array.")

        dim = embeddings.shape[1]
        if metric == "cosine":
            index = faiss.IndexFlatIP(dim)
        elif metric == "l2":
            index = faiss.IndexFlatL2(dim)
        else:
            raise ValueError(f"Unsupported vector metric: {metric}")

        if embeddings.shape[0]:
            index.add(np.ascontiguousarray(embeddings, dtype="float32"))
        return cls(index, metric)

    @property
    def dimension(self) -> int:
        return self.index.d

    @property
    def size(self) -> int:
        return self.index.ntotal

    def search(self, query_embedding: np.ndarray, top_k: int) -> List[Tuple[int, float]]:
        """
        Search the index with a query embedding.
        Returns a list of (position, similarity_score), best first.
        """
        if self.size == 0 or top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype="float32")
        if query.ndim == 1:
            query = query.reshape(1, -1)
        if query.shape[1] != self.dimension:
            raise ValueError(f"Query dimension {query.shape[1]} does not match index dimension {self.dimension}.")
        if self.metric == "cosine":
            query = normalize_rows(query)

        top_k = min(top_k, self.size)
        distances, indices = self.index.search(np.ascontiguousarray(query), top_k)

        results: List[Tuple[int, float]] = []
        for idx, dist in zip(indices[0], distances[0]):
            if idx < 0:
                continue
            if self.metric == "cosine":
                score = float(dist)
            else:
                # Convert L2 distance to a bounded similarity score in (0, 1]
                score = 1.0 / (1.0 + float(dist))
            results.append((int(idx), score))
        return results

    def serialize(self) -> bytes:
        return faiss.serialize_index(self.index).tobytes()

    @classmethod
    def deserialize(cls, data: bytes, metric: str) -> "FaissVectorIndex":
        try:
            index = faiss.deserialize_index(np.frombuffer(data, dtype="uint8").copy())
        except Exception as exc:  # faiss raises RuntimeError subclasses from C++
            raise CorruptStoreError(f"Unreadable vector index: {exc}") from exc
        return cls(index, metric)
