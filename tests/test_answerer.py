"""Tests for prompt construction, truncation and generation providers."""

from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, OpenAIError

from recipe_rag.core.exceptions import EmbeddingFailure, GenerationFailure, InvalidArgument
from recipe_rag.services.answerer import TRUNCATION_MARKER, Answerer
from recipe_rag.services.embeddings import OpenAIEmbeddingProvider
from recipe_rag.services.generation import (
    ExtractiveGenerationProvider,
    GenerationProvider,
    OpenAIGenerationProvider,
)
from recipe_rag.services.index_store import Document


class RecordingProvider(GenerationProvider):
    model = "recording"

    def __init__(self, answer="An answer."):
        self.answer = answer
        self.prompts = []
        self.thinking_levels = []

    def generate(self, prompt, thinking_level=None):
        self.prompts.append(prompt)
        self.thinking_levels.append(thinking_level)
        return self.answer


class FailingProvider(GenerationProvider):
    model = "failing"

    def generate(self, prompt, thinking_level=None):
        raise GenerationFailure("provider exploded")


@pytest.fixture
def long_documents():
    return [Document(id=i, text=f"{i} " + "x" * 4000) for i in range(3)]


class TestAnswerer:
    def test_prompt_contains_question_and_documents_in_rank_order(self, store):
        provider = RecordingProvider()
        docs = [store.get(5), store.get(1)]
        Answerer(provider).answer("What has curry?", docs)

        prompt = provider.prompts[0]
        assert "What has curry?" in prompt.user
        assert prompt.user.index("[Document 5]") < prompt.user.index("[Document 1]")
        assert prompt.documents == docs

    def test_thinking_level_is_passed_through(self, store):
        provider = RecordingProvider()
        answerer = Answerer(provider)
        answerer.answer("q", [store.get(1)], thinking_level="high")
        answerer.answer("q", [store.get(1)])
        assert provider.thinking_levels == ["high", None]

    def test_lowest_ranked_documents_are_dropped_first(self, long_documents):
        provider = RecordingProvider()
        Answerer(provider, answer_token_reserve=0).answer("q", long_documents, model_context_window=2500)

        prompt = provider.prompts[0]
        assert [doc.id for doc in prompt.documents] == [0, 1]
        assert "[1 lower-ranked document omitted to fit the context window]" in prompt.user
        assert TRUNCATION_MARKER not in prompt.user

    def test_top_document_is_truncated_with_marker(self, long_documents):
        provider = RecordingProvider()
        Answerer(provider, answer_token_reserve=0).answer("q", long_documents, model_context_window=600)

        prompt = provider.prompts[0]
        assert [doc.id for doc in prompt.documents] == [0]
        assert TRUNCATION_MARKER in prompt.user
        assert "2 lower-ranked documents omitted" in prompt.user

    def test_no_window_keeps_everything(self, long_documents):
        provider = RecordingProvider()
        Answerer(provider).answer("q", long_documents)
        assert len(provider.prompts[0].documents) == 3
        assert "omitted" not in provider.prompts[0].user

    def test_provider_failure_propagates(self, store):
        with pytest.raises(GenerationFailure):
            Answerer(FailingProvider()).answer("q", [store.get(1)])

    def test_empty_answer_is_a_failure(self, store):
        with pytest.raises(GenerationFailure):
            Answerer(RecordingProvider(answer="  ")).answer("q", [store.get(1)])

    def test_blank_question(self):
        with pytest.raises(InvalidArgument):
            Answerer(RecordingProvider()).answer(" ", [])


class TestExtractiveProvider:
    def test_summarizes_included_documents(self, store):
        provider = RecordingProvider()
        Answerer(provider).answer("q", [store.get(4)])
        answer = ExtractiveGenerationProvider().generate(provider.prompts[0])
        assert "[Document 4]" in answer
        assert "Shortbread" in answer

    def test_no_documents(self):
        provider = RecordingProvider()
        Answerer(provider).answer("q", [])
        assert "No relevant documents" in ExtractiveGenerationProvider().generate(provider.prompts[0])


class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def chat_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestOpenAIGenerationProvider:
    def test_client_timeout_and_retries(self):
        provider = OpenAIGenerationProvider(model="gpt-test", api_key="sk-test")
        assert provider.client.timeout == 20.0
        assert provider.client.max_retries == 1

    def test_reasoning_effort_only_when_requested(self, store):
        completions = FakeCompletions(response=chat_response(" Bake shortbread. "))
        provider = OpenAIGenerationProvider(model="gpt-test", client=chat_client(completions))
        prompt = Answerer(RecordingProvider()).build_prompt("q", [store.get(4)])

        assert provider.generate(prompt, thinking_level="low") == "Bake shortbread."
        provider.generate(prompt)

        assert completions.calls[0]["reasoning_effort"] == "low"
        assert "reasoning_effort" not in completions.calls[1]
        assert completions.calls[0]["model"] == "gpt-test"
        assert completions.calls[0]["messages"][1]["content"] == prompt.user

    def test_timeout_maps_to_generation_failure(self, store):
        error = APITimeoutError(request=httpx.Request("POST", "https://api.example.test/v1/chat/completions"))
        provider = OpenAIGenerationProvider(model="gpt-test", client=chat_client(FakeCompletions(error=error)))
        prompt = Answerer(RecordingProvider()).build_prompt("q", [store.get(4)])
        with pytest.raises(GenerationFailure, match="timed out"):
            provider.generate(prompt)

    def test_empty_choices_are_malformed(self, store):
        completions = FakeCompletions(response=SimpleNamespace(choices=[]))
        provider = OpenAIGenerationProvider(model="gpt-test", client=chat_client(completions))
        prompt = Answerer(RecordingProvider()).build_prompt("q", [])
        with pytest.raises(GenerationFailure, match="Malformed"):
            provider.generate(prompt)


class TestOpenAIEmbeddingProvider:
    def test_vectors_follow_input_order(self):
        response = SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ])
        embeddings = SimpleNamespace(create=lambda **kwargs: response)
        provider = OpenAIEmbeddingProvider(model="emb-test", client=SimpleNamespace(embeddings=embeddings))

        vectors = provider.embed_texts(["first", "second"])
        assert vectors.tolist() == [[1.0, 0.0], [0.0, 1.0]]

    def test_errors_map_to_embedding_failure(self):
        def fail(**kwargs):
            raise OpenAIError("connection refused")

        provider = OpenAIEmbeddingProvider(
            model="emb-test", client=SimpleNamespace(embeddings=SimpleNamespace(create=fail))
        )
        with pytest.raises(EmbeddingFailure):
            provider.embed_texts(["soup"])
