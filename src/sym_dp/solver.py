r"""Symbolic value iteration

Starting from $V_0 = 0$, each horizon $h = 1, \dots, N$ regresses $V_{h-1}$ through every action $a$ and combines
$$V_h = \max_a Q_a^h, \quad Q_a^h = \mathrm{regress}(V_{h-1}, a).$$
The Q-diagrams $\Gamma_h = \{Q_a^h\}_a$ double as the alpha-diagrams of horizon $h$ against which the belief is scored.
No convergence test is made: :meth:`ValueIteration.solve` always runs the requested number of horizons.
"""
from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from pathlib import Path
from collections.abc import Callable, Mapping
from typing import Any, Optional

import psutil

from sym_dp.belief import Belief
from sym_dp.cache import CacheManager
from sym_dp.config import SolverConfig
from sym_dp.diagram import Op, reduce_lp
from sym_dp.errors import BranchCountWarning
from sym_dp.parser import load_problem
from sym_dp.problem import Action, Problem
from sym_dp.regression import RegressionEngine
from sym_dp.utils._repr import create_table


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationStats:
    """ Size and timing of the value function at the end of one horizon

        Attributes
        ----------
        horizon
            The horizon
        nodes
            The node count of the value function
        branches
            The branch (path) count of the value function, clamped to the configured maximum
        cases
            The estimated number of cases, clamped to the configured maximum
        elapsed_ms
            The wall time of the horizon in milliseconds
        overflow
            Whether ``branches`` or ``cases`` was clamped
    """
    horizon: int
    nodes: int
    branches: int
    cases: float
    elapsed_ms: float
    overflow: bool = False


class ValueIteration:
    """ Value iteration over the actions of a :class:`sym_dp.problem.Problem`

        Every horizon scores :attr:`belief` against its alphas; the belief itself stays fixed unless the caller updates it
        (see :meth:`sym_dp.belief.Belief.update`).

        Parameters
        ----------
        problem
            The problem, whose forest ``self`` takes over
        config
            The solver configuration (optional, see :class:`sym_dp.config.SolverConfig`)
        free_memory_fraction
            Callable reporting the free memory fraction to the cache manager (optional, by default measured with :mod:`psutil`)

        Attributes
        ----------
        horizons
            Maps each completed horizon $h$ (and $0$) to the value function $V_h$
        alphas
            Maps the last completed (or running) horizon to its Q-diagrams, in action order;
            the alphas of earlier horizons are dropped so that flushes can reclaim them
        belief_values
            Maps each completed horizon to the value of :attr:`belief` under its alphas
        stats
            The :class:`IterationStats` of the completed horizons
        value_dd, prev_dd, max_dd
            The current, previous and partially maximized value functions
    """
    def __init__(self,
                 problem: Problem,
                 config: Optional[SolverConfig] = None,
                 free_memory_fraction: Optional[Callable[[], float]] = None) -> None:
        self.problem = problem
        self.forest = problem.forest
        self.config = config if config is not None else SolverConfig()

        self.cache = CacheManager(
            self.forest,
            min_free_fraction=self.config.flush_min_free_fraction,
            always_flush=self.config.always_flush,
            free_memory_fraction=free_memory_fraction
        )
        self.engine = RegressionEngine(problem, self.cache)
        self.belief = Belief.from_problem(problem, self.config.belief_points)

        self.value_dd: int = self.forest.zero
        self.prev_dd: Optional[int] = None
        self.max_dd: Optional[int] = None

        self.horizons: dict[int, int] = {0: self.value_dd}
        self.alphas: dict[int, list[int]] = {}
        self.belief_values: dict[int, float] = {}
        self.cases: dict[int, float] = {0: 1.0}
        self.stats: list[IterationStats] = []
        self.elapsed_ms = 0.0

    @classmethod
    def from_file(cls, path: str | Path, config: Optional[SolverConfig] = None, **kwargs: Any) -> ValueIteration:
        """ Load the problem file at ``path`` and construct a :class:`ValueIteration` for it"""
        return cls(load_problem(path), config, **kwargs)

    @property
    def horizon(self) -> int:
        """ The last completed horizon"""
        return max(self.horizons)

    def solve(self, max_iterations: Optional[int] = None) -> int:
        """ Run value iteration

            Parameters
            ----------
            max_iterations
                The number of horizons to run, by default (or if negative) the number of iterations of the problem file

            Returns
            -------
            int
                The number of completed horizons
        """
        if max_iterations is None or max_iterations < 0:
            max_iterations = self.problem.iterations

        start = time.perf_counter()
        first = self.horizon + 1
        for horizon in range(first, first + max_iterations):
            self._iterate(horizon)

        # Flush caches
        self.prev_dd = self.max_dd = None
        self.cache.maybe_flush(self._live_roots())

        logger.info("Value iteration complete!")
        logger.info("%d iterations took %.0f ms", max_iterations, 1000 * (time.perf_counter() - start))
        return self.horizon

    def _iterate(self, horizon: int) -> None:
        start = time.perf_counter()
        logger.info("Iteration #%d, %d bytes, %.0f ms", horizon, psutil.Process().memory_info().rss, self.elapsed_ms)

        self.prev_dd = self.value_dd
        self.max_dd = None
        self.alphas.clear()
        self.alphas[horizon] = []
        self.cases[horizon] = 1.0
        overflow = False

        for action in self.problem.actions.values():
            q = self.engine.regress(self.prev_dd, action)
            if self.config.reduce_lp:
                q = reduce_lp(self.forest, q)

            estimate, clamped = self._estimate_cases(self.cases[horizon - 1], action)
            self.cases[horizon], clamped_total = self._clamp(self.cases[horizon] * estimate)
            overflow = overflow or clamped or clamped_total

            self.max_dd = q if self.max_dd is None else self.forest.apply(self.max_dd, q, Op.MAX)
            self.alphas[horizon].append(q)
            self.cache.maybe_flush(self._live_roots())

        if self.config.reduce_lp:
            self.max_dd = reduce_lp(self.forest, self.max_dd)

        self.value_dd = self.max_dd
        self.horizons[horizon] = self.value_dd

        branches, clamped = self._branch_count(self.value_dd)
        overflow = overflow or clamped
        if overflow:
            message = f"Branch count or case estimate of horizon {horizon} exceeds {self.config.max_branch_count:g} and was clamped."
            logger.warning(message)
            warnings.warn(message, BranchCountWarning)

        elapsed_ms = 1000 * (time.perf_counter() - start)
        self.elapsed_ms += elapsed_ms
        stats = IterationStats(
            horizon=horizon,
            nodes=self.forest.node_count(self.value_dd),
            branches=int(branches),
            cases=self.cases[horizon],
            elapsed_ms=elapsed_ms,
            overflow=overflow
        )
        self.stats.append(stats)
        logger.info(
            "Value function size @ end of iteration %d: %d nodes = %d cases in %.0f ms",
            horizon, stats.nodes, stats.branches, stats.elapsed_ms
        )

        self.belief_values[horizon] = self.belief.value(self.forest, self.alphas[horizon])
        logger.debug("V_%d(%s) = %g", horizon, self.belief, self.belief_values[horizon])

    def _clamp(self, value: float) -> tuple[float, bool]:
        limit = self.config.max_branch_count
        if value > limit:
            return limit, True
        return max(float(value), 0.0), False

    def _branch_count(self, handle: int) -> tuple[float, bool]:
        return self._clamp(self.forest.branch_count(handle))

    def _estimate_cases(self, previous: float, action: Action) -> tuple[float, bool]:
        """ Estimate the number of cases of the Q-diagram of ``action``

            Multiplies the cases of the previous horizon with the branch counts of the transitions (halving for every boolean variable summed out)
            and of the reward.
        """
        overflow = False
        estimate = previous
        for var_prime, dd in action.transitions.items():
            count, clamped_count = self._branch_count(dd)
            estimate, clamped = self._clamp(estimate * count)
            overflow = overflow or clamped_count or clamped
            if self.forest.is_boolean(var_prime) and estimate > 1:
                estimate /= 2
        if action.reward is not None:
            count, clamped_count = self._branch_count(action.reward)
            estimate, clamped = self._clamp(estimate * count)
            overflow = overflow or clamped_count or clamped
        return estimate, overflow

    def _live_roots(self) -> list[Optional[int]]:
        roots: list[Optional[int]] = [*self.problem.diagrams(), self.prev_dd, self.max_dd, self.value_dd]
        roots.extend(self.horizons.values())
        for alphas in self.alphas.values():
            roots.extend(alphas)
        roots.extend(self.engine.live_handles())
        return roots

    def evaluate(self, assignment: Mapping[str, Any], horizon: Optional[int] = None) -> float:
        """ Evaluate the value function of ``horizon`` (by default the last one) at ``assignment``"""
        if horizon is None:
            horizon = self.horizon
        try:
            handle = self.horizons[horizon]
        except KeyError:
            raise KeyError(f"Horizon {horizon} has not been computed.") from None
        return self.forest.evaluate(handle, assignment)

    def as_table(self, width: Optional[int] = None, height: Optional[int] = None) -> str:
        """ Return the iteration statistics of ``self`` as a table

            Parameters
            ----------
            width
                The width of the table (optional).
            height
                The height of the table (optional).

            Returns
            -------
            str
                The string representation of the statistics as a table.
        """
        return "\n".join(create_table(self, width=width, height=height))

    def __repr__(self) -> str:
        return self.as_table()
