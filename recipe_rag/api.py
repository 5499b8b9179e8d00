from fastapi import FastAPI
from recipe_rag.routers import data, health, query


def register_routers(app: FastAPI) -> None:
    """
    Register all API routers.
    """
    app.include_router(query.router, prefix="/query", tags=["query"])
    app.include_router(data.router, prefix="/data", tags=["data"])
    app.include_router(health.router, prefix="/health", tags=["health"])
