import logging

from fastapi import APIRouter, Depends, HTTPException, status

from recipe_rag.core.exceptions import InvalidArgument, ServiceNotReady
from recipe_rag.models.schemas import DataRequest, DataResponse
from recipe_rag.routers.dependencies import get_rag_service
from recipe_rag.services.rag_service import RAGService


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=DataResponse,
    status_code=status.HTTP_200_OK,
    summary="Return the raw rows matching a question",
    description="Hybrid retrieval only, without generation. Useful to debug what the LLM would see.",
)
def query_data(payload: DataRequest, rag_service: RAGService = Depends(get_rag_service)) -> DataResponse:
    try:
        result = rag_service.retrieve_rows(question=payload.question, nb_results=payload.nb_results)
    except InvalidArgument as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ServiceNotReady as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Data query failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve data.",
        ) from exc

    return DataResponse(data=result.rows, duration=result.duration_ms)
