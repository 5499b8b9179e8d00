import logging

from fastapi import APIRouter, Depends, HTTPException, status

from recipe_rag.core.exceptions import InvalidArgument, ServiceNotReady
from recipe_rag.models.schemas import QueryRequest, QueryResponse
from recipe_rag.routers.dependencies import get_rag_service
from recipe_rag.services.rag_service import RAGService


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=QueryResponse,
    status_code=status.HTTP_200_OK,
    summary="Ask a question over the indexed recipes",
    description=(
        "Run hybrid (vector + BM25) retrieval for the question, inject the top documents into the "
        "LLM prompt, and generate an answer grounded in them."
    ),
)
def query_documents(payload: QueryRequest, rag_service: RAGService = Depends(get_rag_service)) -> QueryResponse:
    thinking = payload.thinking_level.value if payload.thinking_level else None
    try:
        result = rag_service.answer_question(
            question=payload.question,
            nb_results=payload.nb_results,
            thinking_level=thinking,
        )
    except InvalidArgument as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ServiceNotReady as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Query failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to answer query.",
        ) from exc

    return QueryResponse(
        answer=result.answer,
        duration=result.duration_ms,
        nb_results=result.nb_results,
        thinking=result.thinking,
        model=result.model,
    )
