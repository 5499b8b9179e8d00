import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from recipe_rag.api import register_routers
from recipe_rag.core.config import get_settings
from recipe_rag.core.exceptions import ConfigurationError
from recipe_rag.core.logging_config import setup_logging
from recipe_rag.services.rag_service import RAGService, ServiceState


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the service context if none was injected and start loading the
    index store on a worker thread; /health answers while it loads.
    """
    if app.state.rag_service is None:
        app.state.rag_service = RAGService.from_settings(get_settings())

    rag_service: RAGService = app.state.rag_service
    load_task = None
    if rag_service.state is ServiceState.UNINITIALIZED:
        load_task = asyncio.create_task(rag_service.load_async())

    yield

    if load_task is not None and not load_task.done():
        logger.info("Shutting down while the index store is still loading.")
        load_task.cancel()


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(tuple(err.get("loc", ()))[-1:] == ("question",) for err in errors):
        detail = "Missing 'question' field"
    else:
        detail = "; ".join(f"{'.'.join(str(p) for p in err.get('loc', ())[1:])}: {err.get('msg')}" for err in errors)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail or "Invalid request"})


def create_app(rag_service: RAGService | None = None) -> FastAPI:
    setup_logging(get_settings().log_level)

    app = FastAPI(
        title="Recipe RAG Service",
        description="Hybrid retrieval and grounded answers over a recipe index kept in memory.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.rag_service = rag_service

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    register_routers(app)

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    try:
        rag_service = RAGService.from_settings(settings)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    host, port = settings.bind_address
    logger.info("Starting server on %s", settings.server_url)
    uvicorn.run(create_app(rag_service), host=host, port=port)


if __name__ == "__main__":
    main()
