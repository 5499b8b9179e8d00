import math
import re
from collections import Counter
from typing import Any, Dict, List, Sequence, Tuple

from recipe_rag.core.exceptions import CorruptStoreError


TOKEN_PATTERN = re.compile(r"\w+")


def tokenize(text: str) -> List[str]:
    return TOKEN_PATTERN.findall(text.lower())


class BM25Index:
    """
    Okapi BM25 over the store's documents.

    Positions are positions in the owning store's document list.
    """

    def __init__(
        self,
        term_freqs: List[Dict[str, int]],
        k1: float = 1.5,
        b: float = 0.75,
    ) -> None:
        self.k1, self.b = k1, b
        self._term_freqs = term_freqs
        self._doc_lengths = [sum(tf.values()) for tf in term_freqs]
        self._doc_freqs: Counter = Counter()
        for tf in term_freqs:
            self._doc_freqs.update(tf.keys())
        total = sum(self._doc_lengths)
        self._avg_doc_length = total / len(term_freqs) if term_freqs else 0.0

    @classmethod
    def build(cls, texts: Sequence[str], k1: float = 1.5, b: float = 0.75) -> "BM25Index":
        return cls([dict(Counter(tokenize(text))) for text in texts], k1=k1, b=b)

    @property
    def size(self) -> int:
        return len(self._term_freqs)

    def _idf(self, term: str) -> float:
        n, df = len(self._term_freqs), self._doc_freqs[term]
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def _score(self, query_terms: Counter, position: int) -> float:
        doc_tf = self._term_freqs[position]
        doc_len = self._doc_lengths[position]
        norm = 1 - self.b + self.b * (doc_len / self._avg_doc_length) if self._avg_doc_length else 1.0
        score = 0.0
        for term, q_count in query_terms.items():
            tf = doc_tf.get(term, 0)
            if not tf:
                continue
            score += q_count * self._idf(term) * (tf * (self.k1 + 1)) / (tf + self.k1 * norm)
        return score

    def search(self, query: str, top_k: int) -> List[Tuple[int, float]]:
        """
        Return up to top_k (position, score) pairs with a positive score,
        best first, ties by position.
        """
        query_terms = Counter(t for t in tokenize(query) if t in self._doc_freqs)
        if not query_terms or top_k <= 0:
            return []

        scored = []
        for position in range(self.size):
            score = self._score(query_terms, position)
            if score > 0:
                scored.append((position, score))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:top_k]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "k1": self.k1,
            "b": self.b,
            "term_freqs": self._term_freqs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BM25Index":
        try:
            term_freqs = [{str(t): int(c) for t, c in tf.items()} for tf in data["term_freqs"]]
            return cls(term_freqs, k1=float(data["k1"]), b=float(data["b"]))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CorruptStoreError(f"Unreadable lexical index: {exc}") from exc
