from fastapi import Request

from recipe_rag.services.rag_service import RAGService


def get_rag_service(request: Request) -> RAGService:
    """
    The service context created at startup by `create_app`.
    """
    return request.app.state.rag_service
