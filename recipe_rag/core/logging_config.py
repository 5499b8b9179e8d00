import logging
import sys


# Chatty at INFO: one line per HTTP request or on every faiss import.
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "faiss.loader")


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the server, the ingestion job and the client.

    LOG_LEVEL applies to the recipe_rag loggers even when a handler is
    already installed (uvicorn, pytest).
    """
    level = level.upper()
    logging.getLogger("recipe_rag").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
