from typing import Any, Dict, List, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, field_validator

from .enums import ColumnKind, ReservedColumn
from .exceptions import MissingColumnError

Label = Union[int, float, List[int], List[float], np.ndarray]


class FeatureRow(BaseModel):
    """
    One example: the label, the frame offset inside the source file,
    the source file and one vector per feature column
    """

    label: Label
    offset: int
    file_name: str
    features: Dict[str, np.ndarray] = {}
    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("label", mode="before")
    @classmethod
    def _unwrap_numpy_scalar(cls, value: Any):
        if isinstance(value, np.generic):
            return value.item()
        return value

    @field_validator("features", mode="before")
    @classmethod
    def _as_float_vectors(cls, value: Dict[str, Any]):
        return {
            name: np.asarray(vector, dtype=np.float64).reshape(-1)
            for name, vector in value.items()
        }

    def value_for(self, column: str):
        if column == ReservedColumn.LABEL:
            return self.label
        if column == ReservedColumn.OFFSET:
            return self.offset
        if column == ReservedColumn.FILE_NAME:
            return self.file_name
        try:
            return self.features[column]
        except KeyError:
            raise MissingColumnError(
                f'Row from "{self.file_name}" at offset {self.offset} is missing column "{column}"'
            ) from None

    def as_tuple(self):
        """
        Hashable view of every value in the row, used to compare row multisets
        """
        return (
            tuple(np.asarray(self.label).reshape(-1).tolist()),
            self.offset,
            self.file_name,
            tuple(
                (name, tuple(vector.tolist()))
                for name, vector in sorted(self.features.items())
            ),
        )


class ColumnSpec(BaseModel):
    name: str
    kind: ColumnKind
    width: int = 1
    model_config = ConfigDict(frozen=True)


class CompileResult(BaseModel):
    output_path: str
    example_count: int = 0
    dropped_count: int = 0
    skipped: bool = False
    error: Union[str, None] = None
