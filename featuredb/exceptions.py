class FeatureStoreError(Exception):
    pass


class ConfigurationError(FeatureStoreError, ValueError):
    """
    Invalid schema or store settings, raised before any row is accepted
    """


class SchemaMismatchError(ConfigurationError):
    """
    The datasets found in an existing file do not match the requested schema
    """


class ContractViolation(FeatureStoreError):
    """
    A producer or consumer broke the store contract (missing column,
    wrong width, read outside the durable rows)
    """


class MissingColumnError(ContractViolation, KeyError):
    pass


class ColumnWidthError(ContractViolation, ValueError):
    pass


class ColumnValueError(ContractViolation, ValueError):
    """
    A value cannot be stored in its column without changing it
    """


class RowRangeError(ContractViolation, IndexError):
    pass


class StoreCorruptError(FeatureStoreError):
    """
    The datasets of a store disagree on their row count
    """


class StoreUnusableError(FeatureStoreError):
    """
    A previous write failed part way through a chunk; the file needs a rebuild
    """
