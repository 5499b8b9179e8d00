import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from recipe_rag.core.config import Settings
from recipe_rag.core.exceptions import InvalidArgument, ServiceNotReady
from recipe_rag.services.answerer import Answerer
from recipe_rag.services.embeddings import EmbeddingProvider, create_embedding_provider
from recipe_rag.services.generation import GenerationProvider, create_generation_provider
from recipe_rag.services.index_store import IndexStore
from recipe_rag.services.retriever import RetrievalHit, Retriever, SearchMode


logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass
class AnswerResult:
    answer: str
    duration_ms: int
    nb_results: int
    thinking: str
    model: str


@dataclass
class DataResult:
    rows: List[Dict[str, Any]]
    duration_ms: int


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class RAGService:
    """
    Holds the in-memory index store for the lifetime of the server process
    and answers questions over it.

    The store is read-only once loaded; requests share it without locking.
    """

    def __init__(
        self,
        settings: Settings,
        embedder: EmbeddingProvider,
        generator: GenerationProvider,
    ) -> None:
        self.settings = settings
        self.retriever = Retriever(
            embedder,
            vector_weight=settings.hybrid_vector_weight,
            candidate_multiplier=settings.candidate_multiplier,
        )
        self.answerer = Answerer(generator, answer_token_reserve=settings.answer_token_reserve)
        self.model = settings.ai_model if settings.llm_provider == "openai" else generator.model

        self._state = ServiceState.UNINITIALIZED
        self._store: IndexStore | None = None
        self._detail: str | None = None
        self._transition = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RAGService":
        settings.require("db_path")
        return cls(
            settings,
            embedder=create_embedding_provider(settings),
            generator=create_generation_provider(settings),
        )

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def detail(self) -> str | None:
        return self._detail

    @property
    def store(self) -> IndexStore | None:
        return self._store

    # -------- Lifecycle --------

    def load(self, path: Path | None = None) -> ServiceState:
        """
        Load the store from disk. Any failure leaves the service degraded
        rather than crashing the process.
        """
        path = path or self.settings.db_path
        with self._transition:
            if self._state is ServiceState.LOADING:
                return self._state
            self._state = ServiceState.LOADING
            self._detail = None

        start = time.perf_counter()
        logger.info("Loading index store from %s...", path)
        try:
            store = IndexStore.load(path)
            self.retriever.check_model(store)
            if self.settings.column_id and self.settings.column_id != store.id_field:
                logger.warning("COLUMN_ID=%s but the store was built with %s.", self.settings.column_id, store.id_field)
            if self.settings.column_text and self.settings.column_text != store.text_field:
                logger.warning(
                    "COLUMN_TEXT=%s but the store was built with %s.", self.settings.column_text, store.text_field
                )
        except Exception as exc:
            logger.error("Index store could not be loaded: %s", exc)
            with self._transition:
                self._detail = type(exc).__name__
                self._state = ServiceState.DEGRADED
            return self._state

        with self._transition:
            # Publish the store before flipping the state so readers never see READY without it.
            self._store = store
            self._state = ServiceState.READY
        logger.info("Index store loaded in %d ms (%d documents). Server ready to handle queries.", _elapsed_ms(start), len(store))
        return self._state

    async def load_async(self, path: Path | None = None) -> ServiceState:
        return await asyncio.to_thread(self.load, path)

    def _ready_store(self) -> IndexStore:
        store = self._store
        if self._state is not ServiceState.READY or store is None:
            raise ServiceNotReady(f"Index store is {self._state.value}.")
        return store

    def _resolve_k(self, nb_results: int | None) -> int:
        k = self.settings.default_nb_results if nb_results is None else nb_results
        if k <= 0:
            raise InvalidArgument("nbResults must be a positive integer.")
        return k

    def _search(self, store: IndexStore, question: str, k: int) -> List[RetrievalHit]:
        return self.retriever.search(store, question, k, SearchMode.HYBRID)

    # -------- Question Answering --------

    def answer_question(
        self,
        question: str,
        nb_results: int | None = None,
        thinking_level: str | None = None,
    ) -> AnswerResult:
        store = self._ready_store()
        k = self._resolve_k(nb_results)
        thinking = thinking_level or "default"
        logger.info(
            'Query: "%s" (nbResults: %d, model: %s, thinking: %s)', question, k, self.model, thinking
        )

        start = time.perf_counter()
        hits = self._search(store, question, k)
        documents = [store.get(hit.document_id) for hit in hits]
        answer = self.answerer.answer(
            question,
            documents,
            thinking_level=thinking_level,
            model_context_window=self.settings.model_context_window,
        )
        duration = _elapsed_ms(start)
        logger.info("Answered in %d ms from %d documents.", duration, len(documents))

        return AnswerResult(answer=answer, duration_ms=duration, nb_results=k, thinking=thinking, model=self.model)

    def retrieve_rows(self, question: str, nb_results: int | None = None) -> DataResult:
        store = self._ready_store()
        k = self._resolve_k(nb_results)
        logger.info('Data query: "%s" (nbResults: %d)', question, k)

        start = time.perf_counter()
        hits = self._search(store, question, k)
        rows = [{**store.get(hit.document_id).row, "_score": hit.score} for hit in hits]
        duration = _elapsed_ms(start)
        logger.info("Data retrieved in %d ms (%d rows).", duration, len(rows))

        return DataResult(rows=rows, duration_ms=duration)
