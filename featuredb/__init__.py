from .config import ExtractionConfig, StoreSettings
from .data_models import ColumnSpec, FeatureRow
from .enums import ColumnKind
from .schema import Schema
from .store import ChunkShuffler, ColumnTable, FeatureStore

__version__ = "0.1.0"
