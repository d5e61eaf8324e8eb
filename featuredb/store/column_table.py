import logging
from typing import List, Sequence, Union

import h5py
import numpy as np

from .. import ioutils
from ..data_models import ColumnSpec, FeatureRow
from ..enums import ColumnKind
from ..exceptions import ColumnValueError, ColumnWidthError, RowRangeError, SchemaMismatchError

logger = logging.getLogger(__name__)

ColumnValues = Union[np.ndarray, List[str]]


class ColumnTable:
    """
    One schema column bound to its extensible HDF5 dataset.

    Rows reach the dataset one whole chunk at a time through a staging
    buffer of chunk_size x width elements that is allocated once and
    reused for every flush.
    """

    def __init__(self, spec: ColumnSpec, dataset: h5py.Dataset, chunk_size: int):
        self.spec = spec
        self.dataset = dataset
        self.chunk_size = chunk_size

        if spec.kind == ColumnKind.STRING:
            self._staging = np.empty((chunk_size,), dtype=h5py.string_dtype(encoding="utf-8"))
        else:
            self._staging = np.zeros((chunk_size, spec.width), dtype=spec.kind.numpy_dtype)
        self._encode = ioutils.encode_for(dataset)
        self._decode = ioutils.decode_for(dataset)

    @classmethod
    def create(cls, group: h5py.Group, spec: ColumnSpec, chunk_size: int):
        ds = group.create_dataset(
            spec.name, **ioutils.get_initial_shape_and_dtype_for_column(spec, chunk_size)
        )
        return cls(spec, ds, chunk_size)

    @classmethod
    def bind(cls, group: h5py.Group, spec: ColumnSpec, chunk_size: int):
        """
        Bind to an existing dataset after checking it matches the column declaration
        """
        if spec.name not in group:
            raise SchemaMismatchError(f'Existing file does not have a "{spec.name}" dataset')
        ds = group[spec.name]
        if not isinstance(ds, h5py.Dataset):
            raise SchemaMismatchError(f'"{spec.name}" is not a dataset')

        kind = ioutils.get_column_kind(ds)
        if kind != spec.kind:
            raise SchemaMismatchError(
                f'Existing dataset "{spec.name}" is of kind {kind}, expected {spec.kind.value}'
            )

        expected_ndim = 1 if spec.kind == ColumnKind.STRING else 2
        if ds.ndim != expected_ndim or ioutils.get_column_width(ds) != spec.width:
            raise SchemaMismatchError(
                f'Existing dataset "{spec.name}" has shape {ds.shape}, expected width {spec.width}'
            )
        if not ioutils.is_extensible(ds):
            raise SchemaMismatchError(f'Existing dataset "{spec.name}" cannot be extended')
        return cls(spec, ds, chunk_size)

    @property
    def name(self):
        return self.spec.name

    @property
    def row_count(self) -> int:
        return self.dataset.len()

    def _to_row(self, row: FeatureRow):
        value = row.value_for(self.spec.name)
        if self.spec.kind == ColumnKind.STRING:
            return str(value)

        arr = np.asarray(value).reshape(-1)
        if arr.shape[0] != self.spec.width:
            raise ColumnWidthError(
                f'Column "{self.spec.name}" expects {self.spec.width} values, '
                f'got {arr.shape[0]} for "{row.file_name}" at offset {row.offset}'
            )
        # int columns must not truncate floats
        if self.spec.kind == ColumnKind.INT and not np.issubdtype(arr.dtype, np.integer):
            if not np.issubdtype(arr.dtype, np.number) or not np.all(np.mod(arr, 1) == 0):
                raise ColumnValueError(
                    f'Column "{self.spec.name}" holds integers, got {arr.tolist()} '
                    f'for "{row.file_name}" at offset {row.offset}'
                )
        return arr

    def check(self, row: FeatureRow):
        self._to_row(row)

    def stage(self, rows: Sequence[FeatureRow]):
        if len(rows) != self.chunk_size:
            raise ValueError(f"Expected exactly {self.chunk_size} rows, got {len(rows)}")

        for i, row in enumerate(rows):
            self._staging[i] = self._to_row(row)

    def flush(self, at_row: int):
        """
        Grow the dataset by one chunk and write the staging buffer into it
        """
        current = self.row_count
        if at_row != current:
            raise ValueError(
                f'Chunk for "{self.spec.name}" must be appended at row {current}, not {at_row}'
            )

        self.dataset.resize(current + self.chunk_size, axis=0)
        self.dataset[at_row:at_row + self.chunk_size, ...] = self._staging

    def _check_range(self, start: int, count: int):
        if start < 0 or count < 0 or start + count > self.row_count:
            raise RowRangeError(
                f'Rows [{start}, {start + count}) outside the {self.row_count} rows of "{self.spec.name}"'
            )

    def read_slice(self, start: int, count: int) -> ColumnValues:
        self._check_range(start, count)
        return self._decode(self.dataset[start:start + count, ...])

    def write_slice(self, start: int, values: ColumnValues):
        count = len(values)
        self._check_range(start, count)
        self.dataset[start:start + count, ...] = self._encode(values)

    def swap_rows(self, i: int, j: int):
        """
        Exchange two single rows in place. The shuffle moves whole windows
        with read_slice and write_slice instead.
        """
        if i == j:
            return
        row_i = self.read_slice(i, 1)
        row_j = self.read_slice(j, 1)
        self.write_slice(i, row_j)
        self.write_slice(j, row_i)

    def __repr__(self):
        return f"ColumnTable({self.spec.name}, {self.spec.kind.value}[{self.spec.width}], rows={self.row_count})"
