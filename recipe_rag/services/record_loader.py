import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import pyarrow.parquet as pq

from recipe_rag.core.exceptions import SchemaError


logger = logging.getLogger(__name__)


class RecordLoader:
    """
    Loads raw rows for ingestion from:
    - Parquet (via pyarrow)
    - CSV with a header line
    - JSON (an array of objects) and JSON Lines
    """

    def load(self, path: Path) -> List[Dict[str, Any]]:
        path = Path(path)
        logger.info("Loading rows from %s", path)
        suffix = path.suffix.lower()

        if suffix == ".parquet":
            rows = self._load_parquet(path)
        elif suffix == ".csv":
            rows = self._load_csv(path)
        elif suffix == ".json":
            rows = self._load_json(path)
        elif suffix in {".jsonl", ".ndjson"}:
            rows = self._load_jsonl(path)
        else:
            raise ValueError(f"Unsupported input file type: {path.name}")

        logger.info("Loaded %d rows from %s", len(rows), path.name)
        return rows

    @staticmethod
    def _load_parquet(path: Path) -> List[Dict[str, Any]]:
        return pq.read_table(path).to_pylist()

    @staticmethod
    def _load_csv(path: Path) -> List[Dict[str, Any]]:
        with path.open("r", encoding="utf-8", newline="") as f:
            return [dict(row) for row in csv.DictReader(f)]

    @staticmethod
    def _load_json(path: Path) -> List[Dict[str, Any]]:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise SchemaError(f"{path.name} must contain a JSON array of objects.")
        return data

    @staticmethod
    def _load_jsonl(path: Path) -> List[Dict[str, Any]]:
        rows = []
        with path.open("r", encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                item = json.loads(line)
                if not isinstance(item, dict):
                    raise SchemaError(f"{path.name} line {number} is not a JSON object.")
                rows.append(item)
        return rows
