""" Solver configuration
"""
from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Mapping, Sequence
from typing import Any, Optional


MAX_BRANCH_COUNT = 1e12


@dataclass
class SolverConfig:
    """ Configuration of :class:`sym_dp.solver.ValueIteration`

        Attributes
        ----------
        reduce_lp
            Prune infeasible branches of every Q-diagram and of every maximum, by default ``True``.
        flush_min_free_fraction
            Flush diagram caches only once the free memory fraction drops to this value or below, by default 0.3.
        always_flush
            Flush after every action regardless of free memory, by default ``False``.
        max_branch_count
            Branch counts and case estimates are clamped to this sentinel, by default ``1e12``.
        belief_points
            The state assigned to each belief hypothesis (optional; see :meth:`sym_dp.belief.Belief.from_problem`).
    """
    reduce_lp: bool = True
    flush_min_free_fraction: float = 0.3
    always_flush: bool = False
    max_branch_count: float = MAX_BRANCH_COUNT
    belief_points: Optional[Sequence[Mapping[str, Any]]] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.flush_min_free_fraction <= 1.0:
            raise ValueError("`flush_min_free_fraction` must lie in [0, 1].")
        if not self.max_branch_count >= 1:
            raise ValueError("`max_branch_count` must be at least 1.")
        if self.belief_points is not None and len(self.belief_points) == 0:
            raise ValueError("Provide at least one belief point.")
