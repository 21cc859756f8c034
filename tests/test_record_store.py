import json
from unittest.mock import patch

import pandas as pd
import pytest

from indexer.errors import ArtifactError, RowEncodeError
from indexer.record_store import RecordStore, coerce_value
from pipelines.records import (
    API_SPEC_COLUMNS,
    API_SPEC_SCHEMA,
    DOCS_CONTENT_COLUMNS,
    DOCS_CONTENT_SCHEMA,
    ContentBlock,
    OperationRecord,
    SchemaRecord,
    SchemaUsage,
)

SIMPLE_SCHEMA = {"name": "TEXT", "count": "INTEGER", "ratio": "REAL"}
SIMPLE_COLUMNS = ["name", "count", "ratio"]


class TestCoerceValue:

    def test_none_passes_through(self):
        assert coerce_value(None, "TEXT") is None
        assert coerce_value(None, "INTEGER") is None

    def test_strings_with_quotes_are_unchanged(self):
        assert coerce_value("it's \"quoted\"", "TEXT") == "it's \"quoted\""

    def test_containers_become_json_text(self):
        assert json.loads(coerce_value({"a": [1, 2]}, "TEXT")) == {"a": [1, 2]}

    def test_booleans(self):
        assert coerce_value(True, "INTEGER") == 1
        assert coerce_value(False, "BOOLEAN") == 0
        assert coerce_value(True, "TEXT") == "true"

    def test_numbers(self):
        assert coerce_value(3.0, "INTEGER") == 3
        assert coerce_value(3, "REAL") == 3.0
        assert coerce_value(7, "TEXT") == "7"

    @pytest.mark.parametrize("value,sql_type", [
        (object(), "TEXT"),
        ("12", "INTEGER"),
        (1.5, "INTEGER"),
        (float("nan"), "REAL"),
        ("x", "BLOB"),
    ])
    def test_unrepresentable_values_raise(self, value, sql_type):
        with pytest.raises(RowEncodeError):
            coerce_value(value, sql_type)


def test_write_exports_parquet_with_column_types(tmp_path):
    rows = [
        {"name": "a", "count": 1, "ratio": 0.5},
        {"name": "b", "count": None, "ratio": None},
    ]
    with RecordStore(tmp_path) as store:
        result = store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, rows)

    assert (result.inserted, result.failed) == (2, 0)
    assert result.artifact_path == tmp_path / "simple.parquet"

    frame = pd.read_parquet(result.artifact_path)
    assert list(frame.columns) == SIMPLE_COLUMNS
    assert frame["name"].tolist() == ["a", "b"]
    assert frame["count"].iloc[0] == 1
    assert pd.isna(frame["count"].iloc[1])


def test_bad_rows_are_counted_and_skipped(tmp_path):
    rows = [
        {"name": "good", "count": 1, "ratio": 1.0},
        {"name": "bad", "count": "not a number", "ratio": 1.0},
        {"name": object(), "count": 2, "ratio": 2.0},
        {"name": "also good", "count": 3, "ratio": 3.0},
    ]
    with RecordStore(tmp_path) as store:
        result = store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, rows)

    assert (result.inserted, result.failed, result.total) == (2, 2, 4)
    assert pd.read_parquet(result.artifact_path)["name"].tolist() == ["good", "also good"]


def test_empty_batch_still_replaces_artifact(tmp_path):
    with RecordStore(tmp_path) as store:
        store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "stale", "count": 1, "ratio": 1.0}])
        result = store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [])

    frame = pd.read_parquet(result.artifact_path)
    assert len(frame) == 0
    assert list(frame.columns) == SIMPLE_COLUMNS


def test_export_failure_raises_and_publishes_nothing(tmp_path):
    with RecordStore(tmp_path) as store:
        with patch("indexer.record_store.pq.write_table", side_effect=OSError("disk full")):
            with pytest.raises(ArtifactError):
                store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "a", "count": 1, "ratio": 1.0}])

    assert list(tmp_path.iterdir()) == []


def test_export_failure_keeps_previous_artifact(tmp_path):
    with RecordStore(tmp_path) as store:
        store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "old", "count": 1, "ratio": 1.0}])
        with patch("indexer.record_store.pq.write_table", side_effect=OSError("disk full")):
            with pytest.raises(ArtifactError):
                store.write("simple", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "new", "count": 2, "ratio": 2.0}])

    assert [p.name for p in tmp_path.iterdir()] == ["simple.parquet"]
    assert pd.read_parquet(tmp_path / "simple.parquet")["name"].tolist() == ["old"]


def test_undeclared_column_is_an_artifact_error(tmp_path):
    with RecordStore(tmp_path) as store:
        with pytest.raises(ArtifactError):
            store.write("simple", SIMPLE_SCHEMA, ["name", "missing"], [])


def test_records_flatten_into_persisted_tables(tmp_path):
    operation = OperationRecord(filePath="api/openapi.json", fileName="openapi.json", apiPath="/v1/voices",
                                method="GET", content="List voices", summary="List voices", order=0)
    schema = SchemaRecord(filePath="api/openapi.json", fileName="openapi.json", content="",
                          schemaDefinition="{}", schemaName="Voice",
                          usedBy=[SchemaUsage("/v1/voices", "GET", "list_voices")], order=1)
    block = ContentBlock(filePath="guide.md", fileName="guide.md", heading1="Guide", heading2=None,
                         heading3=None, contentType="paragraph", content="It's here", lineNumber=3,
                         order=0, fullContent="# Guide\n\nIt's here\n")

    with RecordStore(tmp_path) as store:
        api = store.write("api_spec", API_SPEC_SCHEMA, API_SPEC_COLUMNS, [operation, schema])
        docs = store.write("docs_content", DOCS_CONTENT_SCHEMA, DOCS_CONTENT_COLUMNS, [block])

    api_frame = pd.read_parquet(api.artifact_path)
    assert api_frame["type"].tolist() == ["api", "schema"]
    assert api_frame["summary"].tolist() == ["List voices", "Voice"]
    assert json.loads(api_frame["usedBy"].iloc[1]) == [
        {"apiPath": "/v1/voices", "method": "GET", "operationId": "list_voices"}
    ]

    docs_frame = pd.read_parquet(docs.artifact_path)
    assert docs_frame["content"].iloc[0] == "It's here"
    assert docs_frame["lineNumber"].iloc[0] == 3


def test_staged_tables_are_invisible_until_published(tmp_path):
    with RecordStore(tmp_path) as store:
        first = store.stage("first", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "a", "count": 1, "ratio": 1.0}])
        second = store.stage("second", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [])
        assert not first.artifact_path.exists() and not second.artifact_path.exists()
        assert first.staged_path.exists()

        published = store.publish()

    assert [r.table for r in published] == ["first", "second"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["first.parquet", "second.parquet"]
    assert first.staged_path is None


def test_unpublished_staged_files_are_discarded_on_close(tmp_path):
    with RecordStore(tmp_path) as store:
        store.write("first", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "old", "count": 1, "ratio": 1.0}])
        staged = store.stage("first", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [{"name": "new", "count": 2, "ratio": 2.0}])
        staged_file = staged.staged_path

    assert not staged_file.exists()
    assert [p.name for p in tmp_path.iterdir()] == ["first.parquet"]
    assert pd.read_parquet(tmp_path / "first.parquet")["name"].tolist() == ["old"]


def test_failed_publish_discards_remaining_files(tmp_path):
    with RecordStore(tmp_path) as store:
        store.stage("first", SIMPLE_SCHEMA, SIMPLE_COLUMNS, [])
        with patch("indexer.record_store.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(ArtifactError):
                store.publish()

    assert list(tmp_path.iterdir()) == []
