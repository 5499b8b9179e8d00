import logging
from typing import List, Sequence

from recipe_rag.core.exceptions import GenerationFailure, InvalidArgument
from recipe_rag.services.chunking import CHARS_PER_TOKEN, estimate_tokens
from recipe_rag.services.generation import GenerationProvider, Prompt
from recipe_rag.services.index_store import Document


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions strictly based on the provided documents. "
    "If the documents do not contain the answer, say you do not know. "
    "Do not hallucinate or use external knowledge. "
    "Refer to documents by their id when you rely on them."
)

TRUNCATION_MARKER = "[... document truncated to fit the context window]"


def format_document(doc: Document) -> str:
    return f"[Document {doc.id}]\n{doc.text}"


def omitted_note(count: int) -> str:
    noun = "document" if count == 1 else "documents"
    return f"[{count} lower-ranked {noun} omitted to fit the context window]"


class Answerer:
    """
    Builds a grounded prompt from retrieved documents and asks the
    generation provider for an answer.
    """

    def __init__(self, provider: GenerationProvider, answer_token_reserve: int = 512) -> None:
        self.provider = provider
        self.answer_token_reserve = answer_token_reserve

    def build_prompt(
        self,
        question: str,
        documents: Sequence[Document],
        model_context_window: int | None = None,
    ) -> Prompt:
        """
        Fit documents into the context window in rank order.

        Lowest-ranked documents are dropped first; when even the best document
        does not fit it is cut and ends with TRUNCATION_MARKER.
        """
        header = f"Question: {question}\n\nDocuments:\n"
        footer = "\n\nAnswer based only on the documents above."

        if model_context_window is None:
            blocks = [format_document(doc) for doc in documents]
            return Prompt(SYSTEM_PROMPT, header + self._join(blocks) + footer, list(documents))

        budget = (
            model_context_window
            - self.answer_token_reserve
            - estimate_tokens(SYSTEM_PROMPT)
            - estimate_tokens(header + footer)
            # room for the omission note
            - estimate_tokens(omitted_note(len(documents))) - 1
        )

        blocks: List[str] = []
        included: List[Document] = []
        used = 0
        for doc in documents:
            block = format_document(doc)
            cost = estimate_tokens(block) + 1  # separator
            if used + cost > budget:
                break
            blocks.append(block)
            included.append(doc)
            used += cost

        if not included and documents and budget > estimate_tokens(TRUNCATION_MARKER) + 2:
            first = format_document(documents[0])
            keep = (budget - estimate_tokens(TRUNCATION_MARKER) - 2) * CHARS_PER_TOKEN
            blocks.append(first[:keep].rstrip() + "\n" + TRUNCATION_MARKER)
            included.append(documents[0])
            logger.warning("Top document %s truncated to fit a %d-token window.", documents[0].id, model_context_window)

        omitted = len(documents) - len(included)
        if omitted:
            blocks.append(omitted_note(omitted))
            logger.info("Omitted %d of %d documents to fit the context window.", omitted, len(documents))

        return Prompt(SYSTEM_PROMPT, header + self._join(blocks) + footer, included)

    @staticmethod
    def _join(blocks: List[str]) -> str:
        return "\n\n".join(blocks) if blocks else "(no documents)"

    def answer(
        self,
        question: str,
        documents: Sequence[Document],
        thinking_level: str | None = None,
        model_context_window: int | None = None,
    ) -> str:
        if not question or not question.strip():
            raise InvalidArgument("Question must not be empty.")

        prompt = self.build_prompt(question, documents, model_context_window)
        answer = self.provider.generate(prompt, thinking_level=thinking_level)
        if not answer or not answer.strip():
            raise GenerationFailure(f"Empty answer from {self.provider.model}.")
        return answer
