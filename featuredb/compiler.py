import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from multiprocessing import cpu_count
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import numpy as np
from pydantic import ConfigDict, dataclasses

from .config import ExtractionConfig, StoreSettings
from .data_models import CompileResult, FeatureRow
from .enums import ColumnKind, ReservedColumn
from .schema import Schema
from .store import FeatureStore
from .utils import batched

logger = logging.getLogger(__name__)

STORE_SUFFIX = ".h5"


@dataclasses.dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class CompileJob:
    output_path: Path
    # yields the rows of one input file
    rows: Callable[[], Iterable[FeatureRow]]


def store_path_for(path: Union[str, Path]) -> Path:
    return Path(path).with_suffix(STORE_SUFFIX)


def rows_from_npz(path: Union[str, Path], file_name: Optional[str] = None):
    """
    Yield rows from a .npz file of pre-extracted features holding a
    "label" array, an "offset" array and one (N, width) array per feature
    """
    path = Path(path)
    file_name = file_name or str(path)
    with np.load(path) as payload:
        labels = payload[ReservedColumn.LABEL.value]
        offsets = payload[ReservedColumn.OFFSET.value]
        features = {
            k: payload[k]
            for k in payload.files
            if k not in ReservedColumn
        }

    for i in range(offsets.shape[0]):
        yield FeatureRow(
            label=labels[i] if labels.ndim == 1 else labels[i].tolist(),
            offset=int(offsets[i]),
            file_name=file_name,
            features={k: v[i] for k, v in features.items()},
        )


def schema_from_npz(path: Union[str, Path]) -> Schema:
    with np.load(path) as payload:
        labels = payload[ReservedColumn.LABEL.value]
        feature_widths = {
            k: int(np.prod(payload[k].shape[1:], dtype=int))
            for k in payload.files
            if k not in ReservedColumn
        }
    label_kind = ColumnKind.INT if np.issubdtype(labels.dtype, np.integer) else ColumnKind.DOUBLE
    label_width = 1 if labels.ndim == 1 else labels.shape[1]
    return Schema.for_features(feature_widths, label_width=label_width, label_kind=label_kind)


class FeatureCompiler:
    """
    Builds one feature store per input file on a pool of worker threads.

    Each worker owns the store it writes. Creating and closing stores is
    serialized with a lock, and a failing input is logged and reported
    without stopping the others.
    """

    def __init__(
        self,
        schema: Schema,
        chunk_size: Optional[int] = None,
        overwrite: bool = False,
        num_workers: Optional[int] = None,
        configuration: Optional[ExtractionConfig] = None,
        settings: Optional[StoreSettings] = None,
    ):
        self.settings = settings or StoreSettings()
        self.schema = schema
        self.chunk_size = self.settings.resolve_chunk_size(chunk_size)
        self.overwrite = overwrite
        self.configuration = configuration

        if num_workers is None:
            num_workers = self.settings.num_workers
        if num_workers <= 0:
            num_workers = min(cpu_count(), 16)
        self.num_workers = num_workers

        self._lock = threading.Lock()

    def compile_job(self, job: CompileJob) -> CompileResult:
        output_path = Path(job.output_path)
        if not self.overwrite and output_path.exists():
            logger.info(f'Skipping "{output_path}", store already exists')
            return CompileResult(output_path=str(output_path), skipped=True)

        with self._lock:
            store = FeatureStore.create(
                output_path,
                self.schema,
                self.chunk_size,
                overwrite=self.overwrite,
                configuration=self.configuration,
                settings=self.settings,
            )

        try:
            for batch in batched(job.rows(), store.chunk_size):
                store.append_rows(batch)
            example_count = store.example_count
            dropped_count = store.pending_count
        except BaseException:
            # a partial store would be skipped by later runs
            with self._lock:
                store.close()
                output_path.unlink(missing_ok=True)
            raise

        with self._lock:
            store.close()

        return CompileResult(
            output_path=str(output_path),
            example_count=example_count,
            dropped_count=dropped_count,
        )

    def _run(self, job: CompileJob) -> CompileResult:
        try:
            return self.compile_job(job)
        except Exception as e:
            logger.error(f"Error {job.output_path} - ({e.__class__.__name__}){e}")
            return CompileResult(output_path=str(job.output_path), error=f"({e.__class__.__name__}) {e}")

    def compile(
        self,
        jobs: Iterable[CompileJob],
        progress: Optional[Callable[[CompileResult], None]] = None,
    ) -> List[CompileResult]:
        jobs = list(jobs)
        logger.info(f"Compiling {len(jobs)} feature stores with {self.num_workers} workers")

        results = []
        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            futures = [executor.submit(self._run, job) for job in jobs]
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                if progress is not None:
                    progress(result)

        results.sort(key=lambda x: x.output_path)
        failed = sum(1 for x in results if x.error is not None)
        if failed > 0:
            logger.warning(f"{failed} of {len(results)} feature stores failed")
        return results
