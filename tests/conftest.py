"""
Test configuration and fixtures.
"""

from typing import List

import pytest

from recipe_rag.core.config import Settings
from recipe_rag.services.embeddings import HashEmbeddingProvider
from recipe_rag.services.generation import ExtractiveGenerationProvider
from recipe_rag.services.index_store import IndexStore
from recipe_rag.services.rag_service import RAGService


RECIPES = [
    {
        "id": 1,
        "title": "Chocolate chip cookies",
        "text": "Chocolate chip cookies with butter, sugar, eggs, flour and chocolate chips. Bake 12 minutes.",
        "minutes": 30,
    },
    {
        "id": 2,
        "title": "Vegan banana bread",
        "text": "Vegan banana bread with ripe bananas, flour, oil and maple syrup. No eggs needed.",
        "minutes": 70,
    },
    {
        "id": 3,
        "title": "Tomato basil pasta",
        "text": "Spaghetti with tomatoes, garlic, fresh basil and olive oil.",
        "minutes": 20,
    },
    {
        "id": 4,
        "title": "Egg-free shortbread",
        "text": "Shortbread pastry made from butter, sugar and flour, without eggs.",
        "minutes": 45,
    },
    {
        "id": 5,
        "title": "Chicken curry",
        "text": "Chicken curry simmered in coconut milk with curry paste, served with rice.",
        "minutes": 40,
    },
]


class CountingEmbeddingProvider(HashEmbeddingProvider):
    """Deterministic embeddings that record every text sent to the provider."""

    def __init__(self, dim: int = 64) -> None:
        super().__init__(dim=dim)
        self.calls: List[List[str]] = []

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)

    def embed_texts(self, texts):
        self.calls.append(list(texts))
        return super().embed_texts(texts)


@pytest.fixture
def recipes():
    return [dict(row) for row in RECIPES]


@pytest.fixture
def embedder():
    return CountingEmbeddingProvider(dim=64)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=tmp_path / "store.json",
        column_id="id",
        column_text="text",
        llm_provider="local",
        embedding_provider="local",
        local_embedding_dim=64,
    )


@pytest.fixture
def store(recipes, embedder):
    return IndexStore.build(recipes, id_field="id", text_field="text", embedder=embedder)


@pytest.fixture
def persisted_store(store, settings):
    store.persist(settings.db_path)
    return settings.db_path


@pytest.fixture
def rag_service(settings):
    return RAGService(settings, embedder=HashEmbeddingProvider(dim=64), generator=ExtractiveGenerationProvider())


@pytest.fixture
def ready_service(rag_service, persisted_store):
    rag_service.load(persisted_store)
    return rag_service
