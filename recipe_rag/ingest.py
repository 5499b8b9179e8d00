"""Build the recipe index store from raw rows.

Loads the input file, embeds the text column, builds the vector and BM25
indexes and writes the store the server loads at startup:

    recipe-rag-ingest --input data/recipes.parquet

COLUMN_ID, COLUMN_TEXT and DB_PATH must be set (environment or .env).
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List

from recipe_rag.core.config import Settings, get_settings
from recipe_rag.core.exceptions import CorruptStoreError, RecipeRAGError
from recipe_rag.core.logging_config import setup_logging
from recipe_rag.services.embeddings import EmbeddingProvider, create_embedding_provider
from recipe_rag.services.index_store import EmbeddingCache, IndexStore
from recipe_rag.services.record_loader import RecordLoader


logger = logging.getLogger(__name__)


def load_previous_cache(path: Path) -> EmbeddingCache | None:
    """Reuse the embedding cache of the store currently at `path`, if any."""
    if not path.exists():
        return None
    try:
        previous = IndexStore.load(path)
    except CorruptStoreError as exc:
        logger.warning("Ignoring unreadable store at %s: %s", path, exc)
        return None
    logger.info("Reusing %d cached embeddings from %s", len(previous.cache), path)
    return previous.cache


def run_ingestion(
    settings: Settings,
    input_path: Path,
    output_path: Path,
    embedder: EmbeddingProvider,
    use_cache: bool = True,
) -> IndexStore:
    rows = RecordLoader().load(input_path)
    cache = load_previous_cache(output_path) if use_cache else None

    store = IndexStore.build(
        rows,
        id_field=settings.column_id,
        text_field=settings.column_text,
        embedder=embedder,
        cache=cache,
        metric=settings.vector_metric,
        batch_size=settings.embedding_batch_size,
        context_window=settings.embedding_context_window,
    )
    store.persist(output_path)
    return store


def preview(store: IndexStore, count: int) -> None:
    for doc in store.documents[:count]:
        print(json.dumps(doc.row, ensure_ascii=False, indent=2, default=str))


def parse_args(argv: List[str] | None, settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the recipe index store.")
    parser.add_argument("--input", type=Path, default=settings.input_path, help="Parquet, CSV, JSON or JSONL rows.")
    parser.add_argument("--output", type=Path, default=settings.db_path, help="Store file (defaults to DB_PATH).")
    parser.add_argument("--no-cache", action="store_true", help="Ignore embeddings cached in the existing store.")
    parser.add_argument("--preview", type=int, default=1, metavar="N", help="Print the first N rows when done.")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    settings = get_settings()
    setup_logging(settings.log_level)
    args = parse_args(argv, settings)

    start = time.perf_counter()
    try:
        if args.output is None:
            settings.require("db_path")
        settings.require("column_id", "column_text")
        store = run_ingestion(
            settings,
            input_path=args.input,
            output_path=args.output,
            embedder=create_embedding_provider(settings),
            use_cache=not args.no_cache,
        )
    except (RecipeRAGError, OSError, ValueError) as exc:
        logger.error("Ingestion failed: %s", exc)
        return 1

    logger.info(
        "Indexed %d documents into %s in %.1fs.", len(store), args.output, time.perf_counter() - start
    )
    preview(store, args.preview)
    return 0


if __name__ == "__main__":
    sys.exit(main())
