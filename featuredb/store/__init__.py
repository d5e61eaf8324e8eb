from .column_table import ColumnTable
from .feature_store import FeatureStore
from .shuffle import ChunkShuffler
