import enum

import numpy as np


class ContainsEnumMeta(enum.EnumMeta):
    def __contains__(cls, item):
        if type(item) == cls:
            return enum.EnumMeta.__contains__(cls, item)
        try:
            cls(item)
        except ValueError:
            return False
        return True


class BaseStrEnum(str, enum.Enum, metaclass=ContainsEnumMeta):
    pass


class ColumnKind(BaseStrEnum):
    DOUBLE = "double"
    INT = "int"
    STRING = "string"

    @property
    def numpy_dtype(self):
        if self == ColumnKind.DOUBLE:
            return np.dtype(np.float64)
        if self == ColumnKind.INT:
            return np.dtype(np.int64)
        return np.dtype(object)


class ReservedColumn(BaseStrEnum):
    LABEL = "label"
    OFFSET = "offset"
    FILE_NAME = "file_name"


# Not a row column: the deduplicated list of source files seen by a store
FILE_LIST_DATASET = "file_list"
