from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Union

from .data_models import ColumnSpec
from .enums import FILE_LIST_DATASET, ColumnKind, ReservedColumn
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .config import ExtractionConfig


_RESERVED_COLUMN_RULES = (
    (ReservedColumn.LABEL, (ColumnKind.INT, ColumnKind.DOUBLE), None),
    (ReservedColumn.OFFSET, (ColumnKind.INT,), 1),
    (ReservedColumn.FILE_NAME, (ColumnKind.STRING,), 1),
)


class Schema:
    """
    Ordered, immutable set of column declarations bound once when a store
    is created or opened
    """

    def __init__(self, columns: Iterable[Union[ColumnSpec, dict]]):
        specs = tuple(
            x if isinstance(x, ColumnSpec) else ColumnSpec(**x) for x in columns
        )
        if len(specs) == 0:
            raise ConfigurationError("A schema needs at least one column")

        by_name: Dict[str, ColumnSpec] = {}
        for spec in specs:
            if spec.name in by_name:
                raise ConfigurationError(f'Duplicate column name "{spec.name}"')
            if spec.name == FILE_LIST_DATASET:
                raise ConfigurationError(f'"{FILE_LIST_DATASET}" is a reserved name')
            if spec.width < 1:
                raise ConfigurationError(
                    f'Column "{spec.name}" must have a width of at least 1, got {spec.width}'
                )
            if spec.kind == ColumnKind.STRING and spec.width != 1:
                raise ConfigurationError(
                    f'String column "{spec.name}" must have width 1, got {spec.width}'
                )
            if spec.name not in ReservedColumn and spec.kind != ColumnKind.DOUBLE:
                raise ConfigurationError(
                    f'Feature column "{spec.name}" must be of kind double, got {spec.kind.value}'
                )
            by_name[spec.name] = spec

        for reserved, kinds, width in _RESERVED_COLUMN_RULES:
            spec = by_name.get(reserved.value)
            if spec is None:
                raise ConfigurationError(f'Schema is missing the "{reserved.value}" column')
            if spec.kind not in kinds or (width is not None and spec.width != width):
                raise ConfigurationError(
                    f'Column "{spec.name}" cannot be {spec.kind.value}[{spec.width}]'
                )

        self._columns = specs
        self._by_name = by_name

    @classmethod
    def for_features(
        cls,
        feature_widths: Mapping[str, int],
        label_width: int = 1,
        label_kind: ColumnKind = ColumnKind.INT,
    ):
        columns = [
            ColumnSpec(name=ReservedColumn.LABEL.value, kind=label_kind, width=label_width),
            ColumnSpec(name=ReservedColumn.OFFSET.value, kind=ColumnKind.INT, width=1),
            ColumnSpec(name=ReservedColumn.FILE_NAME.value, kind=ColumnKind.STRING, width=1),
        ]
        columns.extend(
            ColumnSpec(name=name, kind=ColumnKind.DOUBLE, width=width)
            for name, width in feature_widths.items()
        )
        return cls(columns)

    @classmethod
    def from_config(cls, config: "ExtractionConfig"):
        return cls.for_features(
            {name: config.band_count for name in config.features},
            label_width=config.label_count,
            label_kind=ColumnKind.DOUBLE,
        )

    @property
    def columns(self):
        return self._columns

    @property
    def names(self):
        return [x.name for x in self._columns]

    def __getitem__(self, name: str) -> ColumnSpec:
        return self._by_name[name]

    def __contains__(self, name) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._columns)

    def __len__(self):
        return len(self._columns)

    def __eq__(self, other):
        if not isinstance(other, Schema):
            return NotImplemented
        return self._columns == other._columns

    def __hash__(self):
        return hash(self._columns)

    def __repr__(self):
        cols = ", ".join(f"{x.name}:{x.kind.value}[{x.width}]" for x in self._columns)
        return f"Schema({cols})"
