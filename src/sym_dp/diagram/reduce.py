r"""LP-based pruning of infeasible branches

A branch of a diagram is *infeasible* if no point satisfies the linear decisions along its path together with the variable bounds of the forest.
:func:`reduce_lp` replaces every branch node one of whose sides is infeasible by its other child.
Feasibility of a path
$$a_k^\top x + c_k \succ_k 0 \ (k \in T), \qquad \neg(a_k^\top x + c_k \succ_k 0) \ (k \in F), \qquad l \le x \le u$$
is decided by a zero-objective linear program,
with $\succ_k$ the relation ($>$ or $\ge$) of decision $k$; strict relations are tightened by a small margin.
Nonlinear decisions and boolean decisions never prune.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.optimize import linprog

from sym_dp.diagram.forest import Forest, Inequality, Leaf


_STRICTNESS = 1e-6

Path = frozenset[tuple[int, bool]]


def reduce_lp(forest: Forest, handle: int) -> int:
    """ Prune the infeasible branches of ``handle``

        Parameters
        ----------
        forest
            The forest holding ``handle``; its :attr:`Forest.bounds` bound the continuous variables.
        handle
            A canonical diagram

        Returns
        -------
        int
            A canonical diagram agreeing with ``handle`` on every feasible point.
    """
    return _LPReducer(forest).reduce(handle, frozenset())


class _LPReducer:

    def __init__(self, forest: Forest) -> None:
        self.forest = forest
        self._feasible: dict[Path, bool] = {}
        self._reduced: dict[tuple[int, Path], int] = {}

    def reduce(self, handle: int, path: Path) -> int:
        key = (handle, path)
        if (cached := self._reduced.get(key)) is not None:
            return cached

        node = self.forest.node(handle)
        if isinstance(node, Leaf):
            result = handle
        else:
            decision = self.forest.decision(node.decision)
            if isinstance(decision, Inequality) and decision.expr.degree() <= 1:
                high_path = path | {(node.decision, True)}
                low_path = path | {(node.decision, False)}
                if not self.is_feasible(high_path):
                    result = self.reduce(node.low, low_path)
                elif not self.is_feasible(low_path):
                    result = self.reduce(node.high, high_path)
                else:
                    result = self.forest.get_branch(
                        node.decision,
                        self.reduce(node.high, high_path),
                        self.reduce(node.low, low_path)
                    )
            else:
                result = self.forest.get_branch(
                    node.decision,
                    self.reduce(node.high, path),
                    self.reduce(node.low, path)
                )

        self._reduced[key] = result
        return result

    def is_feasible(self, path: Path) -> bool:
        if (cached := self._feasible.get(path)) is not None:
            return cached

        constraints = [(self.forest.decision(decision_id), holds) for decision_id, holds in path]
        variables = sorted(set().union(*(decision.expr.variables() for decision, _ in constraints)))
        index = {var: i for i, var in enumerate(variables)}

        rows = []
        bounds = []
        for decision, holds in constraints:
            expr = decision.expr
            row = np.zeros(len(variables))
            for monomial, coefficient in expr.items():
                if monomial:
                    row[index[monomial[0]]] = coefficient
            if holds:  # a.x + c > 0 (>= 0)  <=>  -a.x <= c - eps (c)
                rows.append(-row)
                bounds.append(expr.constant_value - (_STRICTNESS if decision.strict else 0.0))
            else:  # a.x + c <= 0 (< 0)  <=>  a.x <= -c (-c - eps)
                rows.append(row)
                bounds.append(-expr.constant_value - (0.0 if decision.strict else _STRICTNESS))

        result = linprog(
            np.zeros(len(variables)),
            A_ub=np.array(rows),
            b_ub=np.array(bounds),
            bounds=[self._bounds(var) for var in variables],
            method="highs"
        )
        feasible = result.status != 2  # 2: infeasible

        self._feasible[path] = feasible
        return feasible

    def _bounds(self, var: str) -> tuple[Optional[float], Optional[float]]:
        return self.forest.bounds.get(var, (None, None))
