import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from openai import APITimeoutError, OpenAI, OpenAIError, RateLimitError

from recipe_rag.core.config import Settings
from recipe_rag.core.exceptions import ConfigurationError, GenerationFailure
from recipe_rag.services.index_store import Document


logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    system: str
    user: str
    # Documents actually included in `user`, best first.
    documents: List[Document] = field(default_factory=list)

    def messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


class GenerationProvider(ABC):
    model: str

    @abstractmethod
    def generate(self, prompt: Prompt, thinking_level: str | None = None) -> str:
        """Return the generated answer text; raise GenerationFailure on any provider error."""


class OpenAIGenerationProvider(GenerationProvider):
    """
    Chat completions through the OpenAI API or any compatible endpoint.

    Timeouts and retries are owned by the client; this layer never retries on
    its own so a failed call is never billed twice by us.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 20.0,
        max_retries: int = 1,
        temperature: float | None = None,
        client: OpenAI | None = None,
    ) -> None:
        self.client = client or OpenAI(
            api_key=api_key or ("unused" if base_url else None),
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
        self.model = model
        self.temperature = temperature

    def generate(self, prompt: Prompt, thinking_level: str | None = None) -> str:
        kwargs: Dict[str, Any] = {}
        if thinking_level is not None:
            kwargs["reasoning_effort"] = thinking_level
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=prompt.messages(),
                **kwargs,
            )
        except APITimeoutError as exc:
            raise GenerationFailure(f"Generation with {self.model} timed out.") from exc
        except RateLimitError as exc:
            raise GenerationFailure(f"Generation with {self.model} was rate limited.") from exc
        except OpenAIError as exc:
            raise GenerationFailure(f"Generation with {self.model} failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise GenerationFailure(f"Malformed response from {self.model}.") from exc
        if not content or not content.strip():
            raise GenerationFailure(f"Empty response from {self.model}.")
        return content.strip()


class ExtractiveGenerationProvider(GenerationProvider):
    """
    Answers without an LLM by summarizing the documents included in the
    prompt. Used for offline runs and tests.
    """

    model = "local-extractive"

    def __init__(self, max_documents: int = 3, max_lines: int = 5) -> None:
        self.max_documents = max_documents
        self.max_lines = max_lines

    def generate(self, prompt: Prompt, thinking_level: str | None = None) -> str:
        seen_signatures = set()
        formatted = []

        for doc in prompt.documents:
            # Normalize text and use a prefix signature to skip near-duplicates
            signature = re.sub(r"\s+", " ", doc.text.strip().lower())[:500]
            if signature in seen_signatures:
                continue
            seen_signatures.add(signature)

            paragraphs = []
            seen_paragraphs = set()
            for para in doc.text.strip().split("\n"):
                cleaned = para.strip()
                if cleaned and cleaned not in seen_paragraphs:
                    paragraphs.append(cleaned)
                    seen_paragraphs.add(cleaned)

            snippet = "\n".join(paragraphs[: self.max_lines])
            formatted.append(f"[Document {doc.id}]\n{snippet}")

            if len(formatted) >= self.max_documents:
                break

        if not formatted:
            return "No relevant documents were found to answer the question."

        return "Most relevant documents:\n\n" + "\n\n".join(formatted)


def create_generation_provider(settings: Settings) -> GenerationProvider:
    if settings.llm_provider == "local":
        return ExtractiveGenerationProvider()

    if not settings.openai_api_key and not settings.llm_base_url:
        raise ConfigurationError("OPENAI_API_KEY or LLM_BASE_URL must be set for LLM_PROVIDER=openai")

    logger.info(
        "Generation with %s: %.0fs per attempt, %d retries (at most %.0fs per answer).",
        settings.ai_model, settings.generation_timeout, settings.llm_max_retries, settings.generation_time_bound,
    )
    return OpenAIGenerationProvider(
        model=settings.ai_model,
        api_key=settings.openai_api_key,
        base_url=settings.llm_base_url,
        timeout=settings.generation_timeout,
        max_retries=settings.llm_max_retries,
        temperature=settings.llm_temperature,
    )
