import logging

import h5py
import numpy as np
import pytest

from featuredb import ioutils
from featuredb.config import ExtractionConfig
from featuredb.data_models import FeatureRow
from featuredb.exceptions import (
    ColumnValueError,
    ConfigurationError,
    FeatureStoreError,
    MissingColumnError,
    RowRangeError,
    SchemaMismatchError,
    StoreCorruptError,
    StoreUnusableError,
)
from featuredb.schema import Schema
from featuredb.store import FeatureStore

from conftest import assert_row_is_consistent, make_row


class TestCreateAndOpen:
    def test_create_empty_store(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            assert store.example_count == 0
            assert len(store) == 0
            assert store.file_list == set()
            assert store.writable

        counts = ioutils.get_counts(store_path)
        assert counts == {
            "label": 0,
            "offset": 0,
            "file_name": 0,
            "spectrum": 0,
            "spectrum_flux": 0,
            "file_list": 0,
        }

    def test_exclusive_create(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()
        with pytest.raises(FileExistsError):
            FeatureStore.create(store_path, schema, chunk_size=4)

    def test_chunk_size_must_be_positive(self, store_path, schema):
        with pytest.raises(ConfigurationError):
            FeatureStore.create(store_path, schema, chunk_size=0)
        assert not store_path.exists()

    def test_overwrite_truncates(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(4))

        with FeatureStore.create(store_path, schema, chunk_size=4, overwrite=True) as store:
            assert store.example_count == 0

    def test_reopen_is_idempotent(self, store_path, schema):
        rows = [make_row(i, file_name=f"{i % 3}.wav") for i in range(12)]
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(rows)
            before = [x.as_tuple() for x in store.read_rows(0, 12)]

        with FeatureStore.open(store_path, schema) as store:
            assert store.example_count == 12
            assert store.chunk_size == 4
            assert store.file_list == {"0.wav", "1.wav", "2.wav"}
            assert [x.as_tuple() for x in store.read_rows(0, 12)] == before
            assert before == [x.as_tuple() for x in rows]

    def test_open_with_wrong_width(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()

        wider = Schema.for_features({"spectrum": 5, "spectrum_flux": 2})
        with pytest.raises(SchemaMismatchError):
            FeatureStore.open(store_path, wider)

    def test_open_with_missing_dataset(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()

        extra = Schema.for_features({"spectrum": 4, "spectrum_flux": 2, "peak_heights": 4})
        with pytest.raises(SchemaMismatchError, match="peak_heights"):
            FeatureStore.open(store_path, extra)

    def test_open_with_other_chunk_size(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()
        with pytest.raises(SchemaMismatchError):
            FeatureStore.open(store_path, schema, chunk_size=8)

    def test_open_detects_columns_out_of_step(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(4))

        with h5py.File(store_path, mode="r+") as f:
            f["spectrum"].resize(8, axis=0)

        with pytest.raises(StoreCorruptError):
            FeatureStore.open(store_path, schema)

    def test_open_infers_schema(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()

        with FeatureStore.open(store_path, None, mode="r") as store:
            assert set(store.schema.names) == set(schema.names)
            assert store.schema["spectrum"].width == 4
            assert not store.writable

    def test_open_or_create(self, store_path, schema):
        with FeatureStore.open_or_create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(4))

        with FeatureStore.open_or_create(store_path, schema) as store:
            assert store.example_count == 4

        with FeatureStore.open_or_create(store_path, schema, overwrite=True, chunk_size=4) as store:
            assert store.example_count == 0

    def test_configuration_is_persisted(self, store_path, schema):
        config = ExtractionConfig(window_size=4096)
        FeatureStore.create(store_path, schema, chunk_size=4, configuration=config).close()

        with FeatureStore.open(store_path, schema, mode="r") as store:
            assert store.configuration == config


class TestAppend:
    def test_chunk_boundaries(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            for i in range(10):
                store.append_row(make_row(i))
                assert store.example_count % 4 == 0

            assert store.example_count == 8
            assert store.pending_count == 2
            assert [x.offset for x in store.read_rows(0, 8)] == list(range(8))
            with pytest.raises(RowRangeError):
                store.read_rows(0, 10)

            store.append_rows([make_row(10), make_row(11)])

            assert store.example_count == 12
            assert store.pending_count == 0
            rows = store.read_rows(0, 12)
            assert [x.offset for x in rows] == list(range(12))
            for row in rows:
                assert_row_is_consistent(row)

    def test_append_rows_spanning_several_chunks(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(3))
            assert store.example_count == 0

            written = store.append_rows(make_row(i) for i in range(3, 14))
            assert written == 3
            assert store.example_count == 12
            assert store.pending_count == 2
            assert [x.offset for x in store.iter_rows(batch_size=5)] == list(range(12))

    def test_file_list_only_grows_with_new_files(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i, file_name="a.wav") for i in range(4))
            store.append_rows(make_row(i, file_name="a.wav") for i in range(4, 8))
            assert store.file_list == {"a.wav"}
            store.append_rows(make_row(i, file_name=f"{i % 2}.wav") for i in range(8, 12))
            assert store.file_list == {"a.wav", "0.wav", "1.wav"}

        assert ioutils.get_counts(store_path)["file_list"] == 3

    def test_pending_rows_are_not_written_on_close(self, store_path, schema, caplog):
        with caplog.at_level(logging.WARNING):
            with FeatureStore.create(store_path, schema, chunk_size=4) as store:
                store.append_rows(make_row(i) for i in range(6))
        assert "Dropping 2 buffered rows" in caplog.text

        with FeatureStore.open(store_path, schema) as store:
            assert store.example_count == 4

    def test_flush_keeps_partial_chunk_buffered(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(5))
            store.flush()
            assert store.example_count == 4
            assert store.pending_count == 1
            assert store.tables["offset"].row_count == 4

    def test_row_missing_a_column_is_rejected_before_buffering(self, store_path, schema):
        bad = FeatureRow(label=1, offset=99, file_name="a.wav", features={"spectrum": np.zeros(4)})
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            with pytest.raises(MissingColumnError):
                store.append_rows([make_row(0), bad])
            assert store.pending_count == 0

            # the store is still usable
            store.append_rows(make_row(i) for i in range(4))
            assert store.example_count == 4

    def test_fractional_value_in_int_column_is_rejected(self, store_path, schema):
        features = make_row(0).features
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            with pytest.raises(ColumnValueError):
                store.append_row(FeatureRow(label=0.75, offset=0, file_name="a.wav", features=features))
            assert store.pending_count == 0

            # integral floats are stored exactly
            store.append_rows(
                [FeatureRow(label=2.0, offset=0, file_name="a.wav", features=features)]
                + [make_row(i) for i in range(1, 4)]
            )
            assert store.read_rows(0, 1)[0].label == 2

    def test_vector_labels(self, store_path):
        schema = Schema.for_features({"spectrum": 2}, label_width=3, label_kind="double")
        with FeatureStore.create(store_path, schema, chunk_size=2) as store:
            store.append_rows(
                FeatureRow(label=[0.0, 1.0, float(i)], offset=i, file_name="a.wav", features={"spectrum": [i, i]})
                for i in range(2)
            )
            assert [x.label for x in store.read_rows(0, 2)] == [[0.0, 1.0, 0.0], [0.0, 1.0, 1.0]]

    def test_failed_write_makes_store_unusable(self, store_path, schema, monkeypatch):
        store = FeatureStore.create(store_path, schema, chunk_size=4)
        store.append_rows(make_row(i) for i in range(4))

        def failing_flush(at_row):
            raise OSError("disk full")

        monkeypatch.setattr(store.tables["spectrum_flux"], "flush", failing_flush)
        with pytest.raises(OSError):
            store.append_rows(make_row(i) for i in range(4, 8))

        with pytest.raises(StoreUnusableError):
            store.read_rows(0, 4)
        with pytest.raises(StoreUnusableError):
            store.append_row(make_row(8))
        store.close()

    def test_read_only_store_rejects_writes(self, store_path, schema):
        FeatureStore.create(store_path, schema, chunk_size=4).close()
        with FeatureStore.open(store_path, schema, mode="r") as store:
            with pytest.raises(FeatureStoreError):
                store.append_row(make_row(0))

    def test_closed_store(self, store_path, schema):
        store = FeatureStore.create(store_path, schema, chunk_size=4)
        store.close()
        store.close()
        with pytest.raises(FeatureStoreError):
            store.read_rows(0, 0)


class TestRead:
    def test_read_column(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i, file_name=f"{i}.wav") for i in range(8))

            assert store.read_column("file_name", 6) == ["6.wav", "7.wav"]
            assert store.read_column("offset")[:, 0].tolist() == list(range(8))
            assert store.read_column("spectrum", 1, 2).shape == (2, 4)
            with pytest.raises(RowRangeError):
                store.read_column("spectrum", 7, 2)

    def test_negative_range(self, store_path, schema):
        with FeatureStore.create(store_path, schema, chunk_size=4) as store:
            store.append_rows(make_row(i) for i in range(4))
            with pytest.raises(RowRangeError):
                store.read_rows(-1, 2)
