import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import h5py
import numpy as np

from .data_models import ColumnSpec
from .enums import BaseStrEnum, ColumnKind

logger = logging.getLogger(__name__)


class H5_ENCODING(BaseStrEnum):
    ARRAY = "array"
    STRING = "utf-8"

    @classmethod
    def _missing_(cls, value: object) -> Any:
        return H5_ENCODING.ARRAY


ENCODING_FNS: Dict[H5_ENCODING, Callable[[Any], np.ndarray]] = {
    H5_ENCODING.ARRAY: lambda x: np.asarray(x),
    H5_ENCODING.STRING: lambda x: np.array(list(x), dtype=h5py.string_dtype(encoding="utf-8")),
}

DECODING_FNS: Dict[H5_ENCODING, Callable[[np.ndarray], Union[np.ndarray, List[str]]]] = {
    H5_ENCODING.ARRAY: lambda arr: arr,
    H5_ENCODING.STRING: lambda arr: [
        x.decode("utf-8") if isinstance(x, bytes) else x for x in arr
    ],
}


def _get_dataset_type(ds: h5py.Dataset):
    if h5py.check_string_dtype(ds.dtype):
        return H5_ENCODING.STRING
    return H5_ENCODING.ARRAY


def encode_for(ds: h5py.Dataset):
    return ENCODING_FNS[_get_dataset_type(ds)]


def decode_for(ds: h5py.Dataset):
    return DECODING_FNS[_get_dataset_type(ds)]


def get_initial_shape_and_dtype_for_column(spec: ColumnSpec, chunk_size: int):
    """
    Arguments for h5py create_dataset: an empty dataset that grows along
    the first axis only, chunked in blocks of chunk_size rows
    """
    if spec.kind == ColumnKind.STRING:
        return {
            "shape": (0,),
            "maxshape": (None,),
            "chunks": (chunk_size,),
            "dtype": h5py.string_dtype(encoding="utf-8"),
        }
    return {
        "shape": (0, spec.width),
        "maxshape": (None, spec.width),
        "chunks": (chunk_size, spec.width),
        "dtype": spec.kind.numpy_dtype,
    }


def get_initial_shape_and_dtype_for_string_list(chunk_size: int):
    return {
        "shape": (0,),
        "maxshape": (None,),
        "chunks": (chunk_size,),
        "dtype": h5py.string_dtype(encoding="utf-8"),
    }


def get_column_kind(ds: h5py.Dataset) -> Optional[ColumnKind]:
    """
    Infer the column kind from the on-disk dtype, None if the dtype is not one we write
    """
    if h5py.check_string_dtype(ds.dtype) is not None:
        return ColumnKind.STRING
    if np.issubdtype(ds.dtype, np.floating) and ds.dtype.itemsize == 8:
        return ColumnKind.DOUBLE
    if np.issubdtype(ds.dtype, np.integer):
        return ColumnKind.INT
    return None


def get_column_width(ds: h5py.Dataset) -> Optional[int]:
    if ds.ndim == 1:
        return 1
    if ds.ndim == 2:
        return ds.shape[1]
    return None


def is_extensible(ds: h5py.Dataset):
    return ds.maxshape is not None and ds.maxshape[0] is None


def append_array_to_dataset(ds: h5py.Dataset, arr: np.ndarray):
    shape_diff = len(ds.shape) - len(arr.shape)
    if shape_diff > 1:
        raise ValueError(
            f"Unsupported array shape - must be {ds.shape[1:]} or {('N',) + ds.shape[1:]}"
        )

    iarr = arr
    if shape_diff == 1:
        iarr = np.expand_dims(arr, axis=0)

    n = ds.shape[0]
    b = iarr.shape[0]

    # Resize
    ds.resize(n + b, axis=0)

    # Write
    ds[-b:, ...] = iarr


def _get_counts(f: h5py.File):
    """
    Recursively descend into the hierarchy of the file and
    get the number of rows of every dataset
    """
    counts = {}

    def fn(name, ds):
        if isinstance(ds, h5py.Dataset):
            counts[name] = ds.len()

    f.visititems(fn)
    return counts


# Public functions


def get_counts(path: Path, **kwargs):
    """
    Returns the row counts of all datasets as dictionary
    """
    with h5py.File(path, mode="r", **kwargs) as f:
        return _get_counts(f)
