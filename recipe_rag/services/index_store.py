import base64
import binascii
import hashlib
import json
import logging
import math
import os
import tempfile
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import numpy as np

from recipe_rag.core.exceptions import CorruptStoreError, EmbeddingFailure, SchemaError
from recipe_rag.services.chunking import split_for_embedding
from recipe_rag.services.embeddings import EmbeddingProvider
from recipe_rag.services.lexical_index import BM25Index
from recipe_rag.services.vector_store import FaissVectorIndex, normalize_rows


logger = logging.getLogger(__name__)

STORE_FORMAT = "recipe-rag-store"
STORE_FORMAT_VERSION = 1

DocumentId = str | int


@dataclass(frozen=True)
class Document:
    id: DocumentId
    text: str
    row: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(id=data["id"], text=data["text"], row=data["row"])

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "row": self.row}


def _json_safe(value: Any) -> Any:
    """Coerce a raw cell into something JSON can carry without loss of meaning."""
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, np.generic):
        return _json_safe(value.item())
    if isinstance(value, np.ndarray):
        return _json_safe(value.tolist())
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return str(value)


def documents_from_rows(rows: Iterable[Mapping[str, Any]], id_field: str, text_field: str) -> List[Document]:
    """
    Validate raw rows and turn them into documents, keeping input order.
    """
    documents: List[Document] = []
    seen: set = set()

    for number, row in enumerate(rows, start=1):
        for column in (id_field, text_field):
            if column not in row:
                raise SchemaError(f"Missing required column '{column}' (row {number}).")

        doc_id = row[id_field]
        if isinstance(doc_id, np.generic):
            doc_id = doc_id.item()
        if doc_id is None:
            raise SchemaError(f"Row {number} has a null '{id_field}'.")
        if isinstance(doc_id, bool) or not isinstance(doc_id, (str, int)):
            raise SchemaError(f"Row {number} has an unsupported '{id_field}' type: {type(doc_id).__name__}.")
        if doc_id in seen:
            raise SchemaError(f"Duplicate '{id_field}' value: {doc_id!r}.")
        seen.add(doc_id)

        text = row[text_field]
        if not isinstance(text, str) or not text.strip():
            raise SchemaError(f"Row {number} has no usable '{text_field}' text.")

        documents.append(Document(id=doc_id, text=text, row=_json_safe(dict(row))))

    return documents


def normalize_text(text: str) -> str:
    return " ".join(unicodedata.normalize("NFC", text).split())


class EmbeddingCache:
    """
    Content-addressed embedding cache pinned to one embedding model.

    Keys are SHA-256 digests of the normalized text, so unchanged text is
    never sent to the provider twice.
    """

    def __init__(self, model: str, entries: Dict[str, np.ndarray] | None = None) -> None:
        self.model = model
        self._entries: Dict[str, np.ndarray] = entries or {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return self.key(text) in self._entries

    @staticmethod
    def key(text: str) -> str:
        return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()

    def vectors(self) -> Iterable[np.ndarray]:
        return self._entries.values()

    def get(self, text: str) -> np.ndarray | None:
        return self._entries.get(self.key(text))

    def put(self, text: str, vector: np.ndarray) -> None:
        self._entries[self.key(text)] = np.asarray(vector, dtype="float32")

    def retain(self, texts: Iterable[str]) -> "EmbeddingCache":
        """Copy of the cache holding only the entries for `texts`."""
        keys = {self.key(text) for text in texts}
        return EmbeddingCache(self.model, {k: v for k, v in self._entries.items() if k in keys})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "entries": {k: _encode_array(v) for k, v in sorted(self._entries.items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingCache":
        entries = {k: _decode_array(v) for k, v in data["entries"].items()}
        return cls(model=data["model"], entries=entries)


def _encode_array(array: np.ndarray) -> str:
    return base64.b64encode(np.ascontiguousarray(array, dtype="<f4").tobytes()).decode("ascii")


def _decode_array(encoded: str) -> np.ndarray:
    return np.frombuffer(base64.b64decode(encoded, validate=True), dtype="<f4").astype("float32")


def embed_with_cache(
    texts: List[str],
    embedder: EmbeddingProvider,
    cache: EmbeddingCache,
    batch_size: int = 100,
    context_window: int | None = None,
) -> np.ndarray:
    """
    Embed texts, calling the provider only for text missing from the cache.
    Texts longer than the context window are split and their piece vectors
    averaged.
    """
    pending: Dict[str, str] = {}
    for text in texts:
        key = cache.key(text)
        if cache.get(text) is None and key not in pending:
            pending[key] = text

    if pending:
        pieces: List[str] = []
        owners: List[str] = []
        for key, text in pending.items():
            for piece in split_for_embedding(text, context_window):
                pieces.append(piece)
                owners.append(key)

        logger.info(
            "Embedding %d texts (%d pieces) with %s; %d served from cache.",
            len(pending), len(pieces), embedder.model, len(texts) - len(pending),
        )
        vectors: List[np.ndarray] = []
        for start in range(0, len(pieces), batch_size):
            batch = pieces[start:start + batch_size]
            batch_vectors = np.asarray(embedder.embed_texts(batch), dtype="float32")
            if batch_vectors.ndim != 2 or batch_vectors.shape[0] != len(batch):
                raise EmbeddingFailure(
                    f"Embedding provider returned shape {batch_vectors.shape} for {len(batch)} texts."
                )
            vectors.extend(batch_vectors)

        grouped: Dict[str, List[np.ndarray]] = {}
        for key, vector in zip(owners, vectors):
            grouped.setdefault(key, []).append(vector)
        for key, group in grouped.items():
            cache.put(pending[key], np.mean(np.stack(group), axis=0))
    else:
        logger.info("All %d texts served from the embedding cache.", len(texts))

    if not texts:
        return np.empty((0, 0), dtype="float32")

    matrix = [cache.get(text) for text in texts]
    dims = {len(vector) for vector in matrix}
    if len(dims) != 1:
        raise EmbeddingFailure(f"Inconsistent embedding dimensions: {sorted(dims)}.")
    return np.stack(matrix).astype("float32")


class IndexStore:
    """
    Documents with their embeddings, a vector index and a lexical index,
    all derived from the same ordered document list.

    Stores are built once by the ingestion job and only read afterwards.
    """

    def __init__(
        self,
        documents: List[Document],
        embeddings: np.ndarray,
        vector_index: FaissVectorIndex | None,
        lexical_index: BM25Index,
        embedding_model: str,
        id_field: str,
        text_field: str,
        metric: str = "cosine",
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.documents = documents
        self.embeddings = embeddings
        self.vector_index = vector_index
        self.lexical_index = lexical_index
        self.embedding_model = embedding_model
        self.id_field = id_field
        self.text_field = text_field
        self.metric = metric
        self.cache = cache or EmbeddingCache(embedding_model)
        self._positions = {doc.id: pos for pos, doc in enumerate(documents)}

    def __len__(self) -> int:
        return len(self.documents)

    @property
    def is_empty(self) -> bool:
        return not self.documents

    @property
    def dimension(self) -> int:
        return int(self.embeddings.shape[1]) if self.embeddings.ndim == 2 else 0

    def get(self, doc_id: DocumentId) -> Document:
        return self.documents[self._positions[doc_id]]

    def position_of(self, doc_id: DocumentId) -> int:
        return self._positions[doc_id]

    # -------- Construction --------

    @classmethod
    def build(
        cls,
        rows: Iterable[Mapping[str, Any]],
        id_field: str,
        text_field: str,
        embedder: EmbeddingProvider,
        cache: EmbeddingCache | None = None,
        metric: str = "cosine",
        batch_size: int = 100,
        context_window: int | None = None,
    ) -> "IndexStore":
        documents = documents_from_rows(rows, id_field, text_field)

        if cache is None or cache.model != embedder.model:
            if cache is not None:
                logger.warning(
                    "Discarding embedding cache built with %s; current model is %s.", cache.model, embedder.model
                )
            cache = EmbeddingCache(embedder.model)

        texts = [doc.text for doc in documents]
        embeddings = embed_with_cache(
            texts,
            embedder,
            cache,
            batch_size=batch_size,
            context_window=context_window,
        )
        # Entries for texts no longer in the input are dropped so the store
        # only depends on the current rows.
        cached = len(cache)
        cache = cache.retain(texts)
        if cached > len(cache):
            logger.info("Dropped %d stale embedding cache entries.", cached - len(cache))
        return cls.from_embeddings(documents, embeddings, embedder.model, id_field, text_field, metric, cache)

    @classmethod
    def from_embeddings(
        cls,
        documents: List[Document],
        embeddings: np.ndarray,
        embedding_model: str,
        id_field: str,
        text_field: str,
        metric: str = "cosine",
        cache: EmbeddingCache | None = None,
    ) -> "IndexStore":
        vector_index = None
        if documents:
            indexed = normalize_rows(embeddings) if metric == "cosine" else embeddings
            vector_index = FaissVectorIndex.build(indexed, metric=metric)
        lexical_index = BM25Index.build([doc.text for doc in documents])

        logger.info(
            "Built index store: %d documents, dim=%d, metric=%s, model=%s.",
            len(documents), embeddings.shape[1] if embeddings.ndim == 2 else 0, metric, embedding_model,
        )
        return cls(
            documents=documents,
            embeddings=embeddings,
            vector_index=vector_index,
            lexical_index=lexical_index,
            embedding_model=embedding_model,
            id_field=id_field,
            text_field=text_field,
            metric=metric,
            cache=cache,
        )

    # -------- Persistence --------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": STORE_FORMAT,
            "format_version": STORE_FORMAT_VERSION,
            "embedding_model": self.embedding_model,
            "metric": self.metric,
            "dimension": self.dimension,
            "id_field": self.id_field,
            "text_field": self.text_field,
            "documents": [doc.to_dict() for doc in self.documents],
            "embeddings": _encode_array(self.embeddings.reshape(-1)),
            "vector_index": (
                base64.b64encode(self.vector_index.serialize()).decode("ascii")
                if self.vector_index is not None
                else None
            ),
            "lexical_index": self.lexical_index.to_dict(),
            "embedding_cache": self.cache.to_dict(),
        }

    def persist(self, path: str | Path) -> None:
        """Write the store to disk (atomic write via temp file + rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False, separators=(",", ":"))

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".store_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except Exception:
            # Clean up temp file on failure
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        logger.info("Persisted index store with %d documents to %s", len(self), path)

    @classmethod
    def load(cls, path: str | Path) -> "IndexStore":
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise CorruptStoreError(f"No index store at {path}; run the ingestion job first.") from exc
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptStoreError(f"Unreadable index store at {path}: {exc}") from exc

        if not isinstance(data, dict) or data.get("format") != STORE_FORMAT:
            raise CorruptStoreError(f"{path} is not a {STORE_FORMAT} file.")
        if data.get("format_version") != STORE_FORMAT_VERSION:
            raise CorruptStoreError(
                f"Unsupported store format version {data.get('format_version')!r} "
                f"(expected {STORE_FORMAT_VERSION})."
            )

        try:
            store = cls._from_dict(data)
        except CorruptStoreError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError, binascii.Error) as exc:
            raise CorruptStoreError(f"Malformed index store at {path}: {exc}") from exc

        logger.info(
            "Loaded index store from %s: %d documents, dim=%d, model=%s.",
            path, len(store), store.dimension, store.embedding_model,
        )
        return store

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "IndexStore":
        documents = [Document.from_dict(d) for d in data["documents"]]
        dimension = int(data["dimension"])
        metric = data["metric"]

        flat = _decode_array(data["embeddings"])
        if documents and (dimension <= 0 or flat.size != len(documents) * dimension):
            raise CorruptStoreError(
                f"Embedding block holds {flat.size} values, expected {len(documents)} x {dimension}."
            )
        embeddings = flat.reshape(len(documents), dimension) if documents else np.empty((0, 0), dtype="float32")

        vector_index = None
        if data["vector_index"] is not None:
            vector_index = FaissVectorIndex.deserialize(base64.b64decode(data["vector_index"], validate=True), metric)
            if vector_index.dimension != dimension or vector_index.size != len(documents):
                raise CorruptStoreError(
                    f"Vector index ({vector_index.size} x {vector_index.dimension}) does not match "
                    f"documents ({len(documents)} x {dimension})."
                )
        elif documents:
            raise CorruptStoreError("Vector index is missing.")

        lexical_index = BM25Index.from_dict(data["lexical_index"])
        if lexical_index.size != len(documents):
            raise CorruptStoreError(
                f"Lexical index covers {lexical_index.size} documents, store has {len(documents)}."
            )

        cache = EmbeddingCache.from_dict(data["embedding_cache"])
        if documents and cache.model == data["embedding_model"]:
            if any(len(vector) != dimension for vector in cache.vectors()):
                raise CorruptStoreError(f"Embedding cache holds vectors whose dimension is not {dimension}.")

        if len({doc.id for doc in documents}) != len(documents):
            raise CorruptStoreError("Duplicate document ids in store.")

        return cls(
            documents=documents,
            embeddings=embeddings,
            vector_index=vector_index,
            lexical_index=lexical_index,
            embedding_model=data["embedding_model"],
            id_field=data["id_field"],
            text_field=data["text_field"],
            metric=metric,
            cache=cache,
        )
