"""Tests for the ingestion job and input loading."""

import csv
import json

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from recipe_rag import ingest
from recipe_rag.core.config import get_settings
from recipe_rag.core.exceptions import SchemaError
from recipe_rag.services.index_store import IndexStore
from recipe_rag.services.record_loader import RecordLoader

from conftest import CountingEmbeddingProvider


@pytest.fixture
def json_input(tmp_path, recipes):
    path = tmp_path / "recipes.json"
    path.write_text(json.dumps(recipes), encoding="utf-8")
    return path


@pytest.fixture
def ingest_env(monkeypatch, tmp_path):
    db_path = tmp_path / "out" / "store.json"
    monkeypatch.setenv("COLUMN_ID", "id")
    monkeypatch.setenv("COLUMN_TEXT", "text")
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setenv("EMBEDDING_PROVIDER", "local")
    monkeypatch.setenv("LOCAL_EMBEDDING_DIM", "16")
    get_settings.cache_clear()
    yield db_path
    get_settings.cache_clear()


class TestRunIngestion:
    def test_second_run_is_byte_identical_and_uses_cache(self, settings, json_input, tmp_path):
        output = tmp_path / "store.json"

        first_embedder = CountingEmbeddingProvider()
        ingest.run_ingestion(settings, json_input, output, first_embedder)
        first_bytes = output.read_bytes()
        assert first_embedder.texts_embedded == 5

        second_embedder = CountingEmbeddingProvider()
        ingest.run_ingestion(settings, json_input, output, second_embedder)
        assert second_embedder.calls == []
        assert output.read_bytes() == first_bytes

    def test_changed_input_then_original_again_is_byte_identical(self, settings, json_input, tmp_path, recipes):
        output = tmp_path / "store.json"
        ingest.run_ingestion(settings, json_input, output, CountingEmbeddingProvider())
        original = output.read_bytes()

        changed = [dict(row, text=row["text"] + " Serves four.") for row in recipes]
        changed_input = tmp_path / "changed.json"
        changed_input.write_text(json.dumps(changed), encoding="utf-8")
        ingest.run_ingestion(settings, changed_input, output, CountingEmbeddingProvider())
        assert len(IndexStore.load(output).cache) == len(changed)

        embedder = CountingEmbeddingProvider()
        ingest.run_ingestion(settings, json_input, output, embedder)
        assert embedder.texts_embedded == len(recipes)
        assert output.read_bytes() == original

    def test_no_cache_embeds_everything_again(self, settings, json_input, tmp_path):
        output = tmp_path / "store.json"
        ingest.run_ingestion(settings, json_input, output, CountingEmbeddingProvider())

        embedder = CountingEmbeddingProvider()
        ingest.run_ingestion(settings, json_input, output, embedder, use_cache=False)
        assert embedder.texts_embedded == 5

    def test_unreadable_previous_store_is_ignored(self, settings, json_input, tmp_path):
        output = tmp_path / "store.json"
        output.write_text("garbage", encoding="utf-8")

        store = ingest.run_ingestion(settings, json_input, output, CountingEmbeddingProvider())
        assert len(IndexStore.load(output)) == len(store) == 5

    def test_missing_column_is_reported(self, settings, json_input, tmp_path):
        settings.column_text = "instructions"
        with pytest.raises(SchemaError, match="instructions"):
            ingest.run_ingestion(settings, json_input, tmp_path / "store.json", CountingEmbeddingProvider())
        assert not (tmp_path / "store.json").exists()


class TestRecordLoader:
    def test_jsonl(self, tmp_path, recipes):
        path = tmp_path / "recipes.jsonl"
        path.write_text("\n".join(json.dumps(row) for row in recipes) + "\n\n", encoding="utf-8")
        assert RecordLoader().load(path) == recipes

    def test_json_must_be_an_array(self, tmp_path):
        path = tmp_path / "recipes.json"
        path.write_text('{"id": 1}', encoding="utf-8")
        with pytest.raises(SchemaError):
            RecordLoader().load(path)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "recipes.xlsx"
        path.write_bytes(b"")
        with pytest.raises(ValueError, match="Unsupported"):
            RecordLoader().load(path)


class TestMain:
    def test_parquet_input(self, ingest_env, tmp_path, recipes):
        path = tmp_path / "recipes.parquet"
        pq.write_table(pa.Table.from_pylist(recipes), path)

        assert ingest.main(["--input", str(path), "--preview", "0"]) == 0

        store = IndexStore.load(ingest_env)
        assert [doc.id for doc in store.documents] == [1, 2, 3, 4, 5]
        assert store.embedding_model == "local-hash-16"
        assert store.get(5).row["title"] == "Chicken curry"

    def test_csv_input_with_explicit_output(self, ingest_env, tmp_path, recipes, capsys):
        path = tmp_path / "recipes.csv"
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(recipes[0]))
            writer.writeheader()
            writer.writerows(recipes)
        output = tmp_path / "explicit.json"

        assert ingest.main(["--input", str(path), "--output", str(output)]) == 0

        assert IndexStore.load(output).get("3").row["title"] == "Tomato basil pasta"
        assert not ingest_env.exists()
        assert '"Chocolate chip cookies"' in capsys.readouterr().out

    def test_missing_column_fails(self, ingest_env, json_input, monkeypatch):
        monkeypatch.setenv("COLUMN_TEXT", "instructions")
        get_settings.cache_clear()
        assert ingest.main(["--input", str(json_input)]) == 1
        assert not ingest_env.exists()

    def test_missing_input_file_fails(self, ingest_env, tmp_path):
        assert ingest.main(["--input", str(tmp_path / "nope.parquet")]) == 1

    def test_column_settings_are_required(self, ingest_env, json_input, monkeypatch):
        monkeypatch.delenv("COLUMN_ID")
        get_settings.cache_clear()
        assert ingest.main(["--input", str(json_input)]) == 1
