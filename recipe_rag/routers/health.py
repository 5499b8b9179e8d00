from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from recipe_rag.models.schemas import HealthResponse
from recipe_rag.routers.dependencies import get_rag_service
from recipe_rag.services.rag_service import RAGService, ServiceState


router = APIRouter()


@router.get("", response_model=HealthResponse, summary="Report whether the index store is loaded")
def health(rag_service: RAGService = Depends(get_rag_service)):
    state = rag_service.state
    store = rag_service.store if state is ServiceState.READY else None
    body = HealthResponse(
        status=state.value,
        documents=len(store) if store is not None else None,
        detail=rag_service.detail,
    )
    if state is ServiceState.READY:
        return body
    return JSONResponse(status_code=503, content=body.model_dump())
