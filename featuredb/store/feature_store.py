from contextlib import contextmanager
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Literal, Optional, Union

import h5py

from .. import ioutils
from ..config import ExtractionConfig, StoreSettings
from ..data_models import ColumnSpec, FeatureRow
from ..enums import FILE_LIST_DATASET, ColumnKind, ReservedColumn
from ..exceptions import (
    FeatureStoreError,
    RowRangeError,
    SchemaMismatchError,
    StoreCorruptError,
    StoreUnusableError,
)
from ..schema import Schema
from .column_table import ColumnTable
from .shuffle import ChunkShuffler

logger = logging.getLogger(__name__)

CHUNK_SIZE_ATTR = "chunk_size"
CONFIGURATION_ATTR = "configuration"


class FeatureStore:
    """
    Append-only, chunk aligned column store in a single HDF5 file.

    Rows are buffered in memory and written to every column dataset one
    chunk of chunk_size rows at a time, so the datasets always hold the
    same whole number of chunks. Rows still in the buffer are not visible
    to readers and are not written on close.

    Use FeatureStore.create / FeatureStore.open / FeatureStore.open_or_create
    rather than the constructor. A store is owned by a single writer.
    """

    def __init__(
        self,
        f: h5py.File,
        schema: Schema,
        tables: Dict[str, ColumnTable],
        chunk_size: int,
        example_count: int = 0,
        file_list: Optional[Iterable[str]] = None,
    ):
        self._file = f
        self.path = Path(f.filename)
        self.schema = schema
        self.tables = tables
        self.chunk_size = chunk_size
        self.example_count = example_count
        self.file_list = set(file_list or [])
        self._file_list_ds = f[FILE_LIST_DATASET]
        self._pending: List[FeatureRow] = []
        self._failure: Optional[BaseException] = None

    @classmethod
    def create(
        cls,
        path: Union[str, Path],
        schema: Schema,
        chunk_size: Optional[int] = None,
        overwrite: bool = False,
        configuration: Optional[ExtractionConfig] = None,
        settings: Optional[StoreSettings] = None,
    ):
        """
        Create a new store with one empty dataset per schema column.
        Fails with FileExistsError if path exists and overwrite is False.
        """
        settings = settings or StoreSettings()
        chunk_size = settings.resolve_chunk_size(chunk_size)

        f = h5py.File(path, mode="w" if overwrite else "w-")
        try:
            f.attrs[CHUNK_SIZE_ATTR] = chunk_size
            if configuration is not None:
                f.attrs[CONFIGURATION_ATTR] = configuration.to_json()

            tables = {
                spec.name: ColumnTable.create(f, spec, chunk_size) for spec in schema
            }
            f.create_dataset(
                FILE_LIST_DATASET,
                **ioutils.get_initial_shape_and_dtype_for_string_list(settings.file_list_chunk_size),
            )
        except BaseException:
            f.close()
            raise

        logger.info(f'Created feature store "{path}" with {len(schema)} columns, chunk size {chunk_size}')
        return cls(f, schema, tables, chunk_size)

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        schema: Optional[Schema],
        mode: Literal["r", "r+"] = "r+",
        chunk_size: Optional[int] = None,
    ):
        """
        Open an existing store, checking every dataset against the schema
        before any row is read. Without a schema the columns found in the
        file are used.
        """
        f = h5py.File(path, mode=mode)
        try:
            if schema is None:
                schema = cls._infer_schema(f)
            stored_chunk_size = cls._stored_chunk_size(f, schema)
            if chunk_size is not None and chunk_size != stored_chunk_size:
                raise SchemaMismatchError(
                    f'"{path}" was written with chunk size {stored_chunk_size}, not {chunk_size}'
                )

            tables = {
                spec.name: ColumnTable.bind(f, spec, stored_chunk_size) for spec in schema
            }

            file_list_ds = f.get(FILE_LIST_DATASET)
            if (
                not isinstance(file_list_ds, h5py.Dataset)
                or file_list_ds.ndim != 1
                or ioutils.get_column_kind(file_list_ds) != ColumnKind.STRING
            ):
                raise SchemaMismatchError(
                    f'Existing file does not have a valid "{FILE_LIST_DATASET}" dataset'
                )

            row_counts = {t.row_count for t in tables.values()}
            if len(row_counts) != 1:
                raise StoreCorruptError(
                    f'Datasets in "{path}" disagree on row count: '
                    + ", ".join(f"{t.name}={t.row_count}" for t in tables.values())
                )
            example_count = row_counts.pop()
            if example_count % stored_chunk_size != 0:
                raise StoreCorruptError(
                    f'"{path}" holds {example_count} rows, not a multiple of chunk size {stored_chunk_size}'
                )

            file_list = ioutils.decode_for(file_list_ds)(file_list_ds[...])
        except BaseException:
            f.close()
            raise

        logger.debug(f'Opened feature store "{path}" with {example_count} examples')
        return cls(f, schema, tables, stored_chunk_size, example_count, file_list)

    @classmethod
    def open_or_create(
        cls,
        path: Union[str, Path],
        schema: Schema,
        overwrite: bool = False,
        chunk_size: Optional[int] = None,
        configuration: Optional[ExtractionConfig] = None,
        settings: Optional[StoreSettings] = None,
    ):
        """
        Truncate and create when overwriting, open when the file exists,
        create it exclusively otherwise
        """
        if overwrite:
            return cls.create(path, schema, chunk_size, overwrite=True,
                              configuration=configuration, settings=settings)
        if Path(path).exists():
            return cls.open(path, schema, chunk_size=chunk_size)
        return cls.create(path, schema, chunk_size, configuration=configuration, settings=settings)

    @staticmethod
    def _infer_schema(f: h5py.File) -> Schema:
        """
        Schema of the column datasets found in an open file
        """
        columns = []
        for name, ds in f.items():
            if name == FILE_LIST_DATASET or not isinstance(ds, h5py.Dataset):
                continue
            kind = ioutils.get_column_kind(ds)
            if kind is None:
                raise SchemaMismatchError(f'Dataset "{name}" has unsupported dtype {ds.dtype}')
            columns.append(ColumnSpec(name=name, kind=kind, width=ioutils.get_column_width(ds)))
        return Schema(columns)

    @classmethod
    def read_schema(cls, path: Union[str, Path]) -> Schema:
        with h5py.File(path, mode="r") as f:
            return cls._infer_schema(f)

    @staticmethod
    def _stored_chunk_size(f: h5py.File, schema: Schema) -> int:
        if CHUNK_SIZE_ATTR in f.attrs:
            return int(f.attrs[CHUNK_SIZE_ATTR])

        # files written without the attribute: use the dataset chunking
        first = f.get(schema.columns[0].name)
        if not isinstance(first, h5py.Dataset) or first.chunks is None:
            raise SchemaMismatchError(f'Cannot determine the chunk size of "{f.filename}"')
        return first.chunks[0]

    @property
    def is_open(self):
        return bool(self._file)

    @property
    def writable(self):
        return self.is_open and self._file.mode == "r+"

    @property
    def pending_count(self):
        return len(self._pending)

    @property
    def configuration(self) -> Optional[ExtractionConfig]:
        self._ensure_usable()
        value = self._file.attrs.get(CONFIGURATION_ATTR)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return ExtractionConfig.model_validate_json(value)

    def __len__(self):
        return self.example_count

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"FeatureStore({self.path}, examples={self.example_count}, pending={self.pending_count})"

    # Failure handling

    def _ensure_usable(self):
        if self._failure is not None:
            raise StoreUnusableError(
                f'"{self.path}" is unusable after a failed write: {self._failure}'
            ) from self._failure
        if not self.is_open:
            raise FeatureStoreError(f'"{self.path}" is closed')

    def _ensure_writable(self):
        self._ensure_usable()
        if not self.writable:
            raise FeatureStoreError(f'"{self.path}" was opened read-only')

    @contextmanager
    def mutation(self):
        """
        Wraps a multi-dataset write. A failure inside leaves the datasets
        out of step, so the store refuses any further use.
        """
        self._ensure_writable()
        try:
            yield
        except BaseException as e:
            self._failure = e
            logger.error(f'Write to "{self.path}" failed, store must be rebuilt - ({e.__class__.__name__}) {e}')
            raise

    # Write path

    def check_row(self, row: FeatureRow):
        for table in self.tables.values():
            table.check(row)

    def append_row(self, row: FeatureRow):
        self.append_rows([row])

    def append_rows(self, rows: Iterable[FeatureRow]):
        """
        Buffer rows and write every complete chunk. Rows are validated
        against the schema before any of them is buffered.
        """
        self._ensure_writable()
        rows = list(rows)
        for row in rows:
            self.check_row(row)

        written = 0
        for row in rows:
            self._pending.append(row)
            if len(self._pending) == self.chunk_size:
                self._append_chunk(self._pending)
                self._pending = []
                written += 1

        if written > 0:
            self._file.flush()
        return written

    def _append_chunk(self, rows: List[FeatureRow]):
        at_row = self.example_count
        with self.mutation():
            for table in self.tables.values():
                table.stage(rows)
            for table in self.tables.values():
                table.flush(at_row)
            self._append_to_file_list(rows)
        self.example_count += len(rows)
        logger.debug(f'Wrote rows [{at_row}, {self.example_count}) to "{self.path}"')

    def _append_to_file_list(self, rows: List[FeatureRow]):
        new_files = sorted({row.file_name for row in rows} - self.file_list)
        if not new_files:
            return
        ioutils.append_array_to_dataset(
            self._file_list_ds, ioutils.encode_for(self._file_list_ds)(new_files)
        )
        self.file_list.update(new_files)

    def flush(self):
        """
        Sync the written chunks to disk. Buffered rows of an incomplete chunk stay in memory.
        """
        self._ensure_usable()
        if self.writable:
            self._file.flush()

    def close(self):
        if not self.is_open:
            return
        try:
            if self._pending:
                logger.warning(
                    f'Dropping {len(self._pending)} buffered rows that do not fill a chunk of {self.chunk_size} in "{self.path}"'
                )
                self._pending = []
            if self.writable and self._failure is None:
                self._file.flush()
        finally:
            self._file.close()

    # Read path

    def _check_range(self, start: int, count: int):
        if start < 0 or count < 0 or start + count > self.example_count:
            raise RowRangeError(
                f"Rows [{start}, {start + count}) outside the {self.example_count} durable rows"
            )

    def read_column(self, name: str, start: int = 0, count: Optional[int] = None):
        self._ensure_usable()
        if count is None:
            count = self.example_count - start
        self._check_range(start, count)
        return self.tables[name].read_slice(start, count)

    def read_rows(self, start: int, count: int) -> List[FeatureRow]:
        self._ensure_usable()
        self._check_range(start, count)

        columns = {name: table.read_slice(start, count) for name, table in self.tables.items()}
        labels = columns.pop(ReservedColumn.LABEL.value)
        offsets = columns.pop(ReservedColumn.OFFSET.value)
        file_names = columns.pop(ReservedColumn.FILE_NAME.value)

        rows = []
        for i in range(count):
            label = labels[i]
            rows.append(
                FeatureRow(
                    label=label.item() if label.shape[0] == 1 else label.tolist(),
                    offset=int(offsets[i, 0]),
                    file_name=file_names[i],
                    features={name: values[i] for name, values in columns.items()},
                )
            )
        return rows

    def iter_rows(self, batch_size: int = 1024):
        for start in range(0, self.example_count, batch_size):
            yield from self.read_rows(start, min(batch_size, self.example_count - start))

    # Shuffle

    def shuffle(
        self,
        chunk_size: int,
        passes: int = 1,
        progress: Optional[Callable[[float], None]] = None,
        seed: Optional[int] = None,
        sync_every_step: bool = False,
    ):
        return ChunkShuffler(self, seed=seed).shuffle(
            chunk_size, passes=passes, progress=progress, sync_every_step=sync_every_step
        )
