""" Regression memo table and memory-driven eviction of diagram nodes
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Optional

import psutil

from sym_dp.diagram import Forest


logger = logging.getLogger(__name__)


RegressionKey = tuple[int, int, str]


def available_memory_fraction() -> float:
    """ Return the fraction of system memory currently available"""
    memory = psutil.virtual_memory()
    return memory.available / memory.total


def free_memory_mb() -> float:
    return psutil.virtual_memory().available / 1e6


class CacheManager:
    """ Owns the regression memo table and decides when to flush the forest

        Parameters
        ----------
        forest
            The forest to flush
        min_free_fraction
            Flush only once the free memory fraction is at or below this value, by default 0.3
        always_flush
            Flush on every call of :meth:`maybe_flush`, by default ``False``
        free_memory_fraction
            Callable reporting the current free memory fraction, by default computed with :mod:`psutil`

        Attributes
        ----------
        flush_count
            The number of flushes performed so far
    """
    def __init__(self,
                 forest: Forest,
                 min_free_fraction: float = 0.3,
                 always_flush: bool = False,
                 free_memory_fraction: Optional[Callable[[], float]] = None) -> None:
        self.forest = forest
        self.min_free_fraction = min_free_fraction
        self.always_flush = always_flush
        self._free_memory_fraction = free_memory_fraction or available_memory_fraction
        self._table: dict[RegressionKey, int] = {}
        self.flush_count = 0

    def lookup(self, key: RegressionKey) -> Optional[int]:
        return self._table.get(key)

    def store(self, key: RegressionKey, handle: int) -> None:
        self._table[key] = handle

    def clear(self) -> None:
        self._table.clear()

    def __len__(self) -> int:
        return len(self._table)

    def needs_flush(self) -> bool:
        return self.always_flush or self._free_memory_fraction() <= self.min_free_fraction

    def maybe_flush(self, live_roots: Iterable[Optional[int]]) -> bool:
        """ Flush the forest if memory runs low

            Re-marks ``live_roots`` (``None`` entries are skipped) as the forest's only special nodes,
            reclaims every other node and clears the regression memo table,
            whose entries may refer to reclaimed handles.

            Returns
            -------
            bool
                Whether a flush happened.
        """
        if not self.needs_flush():
            logger.info("No need to flush caches.")
            return False

        self._log_memory("Before flush")
        self.forest.clear_special_nodes()
        for handle in live_roots:
            if handle is not None:
                self.forest.add_special_node(handle)
        self.forest.flush_caches()
        self.clear()
        self.flush_count += 1
        self._log_memory("After flush")
        return True

    def _log_memory(self, when: str) -> None:
        logger.info(
            "%s: %d diagram nodes in use, free memory: %.2f MB = %.2f%% available memory",
            when, len(self.forest), free_memory_mb(), 100 * available_memory_fraction()
        )
