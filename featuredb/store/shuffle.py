import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

import numpy as np

if TYPE_CHECKING:
    from .feature_store import FeatureStore

logger = logging.getLogger(__name__)

Span = Tuple[int, int]


class ChunkShuffler:
    """
    Randomizes the row order of a store in place with paired-chunk shuffles.

    Each step reads a window sweeping across the store and a second window at
    a random position, permutes the rows of both windows together and writes
    them back. Memory use is bounded by twice the window size whatever the
    size of the store. The same permutation is applied to every column so a
    row keeps all of its values.
    """

    def __init__(self, store: "FeatureStore", seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None):
        self.store = store
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def windows(self, step: int, chunk_size: int, example_count: int) -> List[Span]:
        start1 = (step * chunk_size) % (example_count - chunk_size + 1)
        start2 = int(self.rng.integers(0, example_count - chunk_size + 1))

        if abs(start1 - start2) >= chunk_size:
            return [(start1, chunk_size), (start2, chunk_size)]

        # overlapping windows are shuffled as their union
        lo = min(start1, start2)
        hi = max(start1, start2) + chunk_size
        return [(lo, hi - lo)]

    def swap_order(self, count: int) -> np.ndarray:
        """
        Draw a random permutation and apply it by positional swaps
        (k with perm[k], skipped when equal). Returns, for each position,
        the buffer index of the row that ends up there.
        """
        perm = self.rng.permutation(count)
        order = np.arange(count)
        for k in range(count):
            j = perm[k]
            if j != k:
                order[k], order[j] = order[j], order[k]
        return order

    def shuffle_spans(self, spans: List[Span]):
        total = sum(count for _, count in spans)
        order = self.swap_order(total)

        for table in self.store.tables.values():
            parts = [table.read_slice(start, count) for start, count in spans]
            if isinstance(parts[0], list):
                buffer = np.array(sum(parts, []), dtype=object)
            else:
                buffer = np.concatenate(parts, axis=0)

            permuted = buffer[order]

            offset = 0
            for start, count in spans:
                table.write_slice(start, permuted[offset:offset + count])
                offset += count

    def shuffle(
        self,
        chunk_size: int,
        passes: int = 1,
        progress: Optional[Callable[[float], None]] = None,
        sync_every_step: bool = False,
    ) -> int:
        """
        Run the paired-chunk shuffle over all durable rows and return the number of steps taken.

        chunk_size is clamped to half the row count. progress receives
        i / (steps - 1) after each step.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if passes < 1:
            raise ValueError(f"passes must be positive, got {passes}")

        store = self.store
        store._ensure_writable()
        example_count = store.example_count
        if example_count < 2:
            logger.info(f'Nothing to shuffle in "{store.path}" ({example_count} examples)')
            return 0

        chunk_size = min(chunk_size, example_count // 2)
        steps = passes * example_count // chunk_size
        logger.info(
            f'Shuffling {example_count} examples in "{store.path}" with chunk size {chunk_size}, {steps} steps'
        )

        for i in range(steps):
            with store.mutation():
                self.shuffle_spans(self.windows(i, chunk_size, example_count))
                if sync_every_step:
                    store.flush()
            if progress is not None:
                progress(i / (steps - 1) if steps > 1 else 1.0)

        store.flush()
        return steps
