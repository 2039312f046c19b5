"""Bounded fan-out over proposals or pull requests with per-item failure isolation."""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Hashable, Iterable, List, TypeVar

from eips_insight.exceptions import (
    LifecycleError,
    UpstreamUnavailableError,
    classify_exception,
    is_retryable_exception,
)
from eips_insight.utils.logger import logger

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


@dataclass
class BatchResult(Generic[K, R]):
    results: Dict[K, R] = field(default_factory=dict)
    failures: Dict[K, LifecycleError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def ordered(self, keys: Iterable[K]) -> List[R]:
        """Successful results in the order of ``keys``."""
        return [self.results[k] for k in keys if k in self.results]


def run_batch(
    fn: Callable[[K], R],
    keys: Iterable[K],
    max_workers: int = 4,
) -> BatchResult:
    """Apply ``fn`` to every key on a bounded thread pool.

    An ``UpstreamUnavailableError`` (or any other ``LifecycleError``) fails
    only its own item; sibling items still complete. Transient driver and
    network errors are classified into the taxonomy and isolated the same
    way. Anything else is a programming error and propagates.
    """
    keys = list(dict.fromkeys(keys))
    outcome: BatchResult = BatchResult()
    if not keys:
        return outcome

    workers = max(1, min(max_workers, len(keys)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lifecycle-batch") as executor:
        futures = {executor.submit(fn, key): key for key in keys}
        for future in as_completed(futures):
            key = futures[future]
            try:
                outcome.results[key] = future.result()
            except UpstreamUnavailableError as e:
                logger.warning("Batch: upstream unavailable for %s: %s", key, e.message)
                outcome.failures[key] = e
            except LifecycleError as e:
                logger.warning("Batch: item %s failed (%d): %s", key, e.code, e.message)
                outcome.failures[key] = e
            except Exception as e:
                if not is_retryable_exception(e):
                    raise
                error = classify_exception(e)
                logger.warning("Batch: item %s failed with %s: %s", key, type(e).__name__, error.message)
                outcome.failures[key] = error

    if outcome.failures:
        logger.warning("Batch: %d of %d items failed", len(outcome.failures), len(keys))
    return outcome

