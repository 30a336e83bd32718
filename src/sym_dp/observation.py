r"""Observation isolation

An observation model $o = f(s)$ is a diagram whose leaves are expressions of the state.
For leaves affine in a single continuous state variable, $f(x) = a x + c$ with $a \neq 0$, the model is inverted to
$$x = g(o) = \frac{1}{a} o - \frac{c}{a}.$$
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from collections.abc import Collection
from typing import Optional

from sym_dp.diagram import Forest, Polynomial, Leaf, Branch
from sym_dp.errors import UnsupportedObservationModelError


logger = logging.getLogger(__name__)


@dataclass
class Isolation:
    """ Result of :func:`isolate_observation`

        Attributes
        ----------
        mapping
            Maps each isolated state variable to the leaf diagram of its expression in the observation
        diagram
            The observation model with every leaf replaced by its isolated expression (zero for constant leaves)
    """
    mapping: dict[str, int] = field(default_factory=dict)
    diagram: Optional[int] = None

    def handles(self) -> list[int]:
        handles = list(self.mapping.values())
        if self.diagram is not None:
            handles.append(self.diagram)
        return handles


def isolate_observation(forest: Forest, obs_dd: int, obs_var: str, state_vars: Collection[str]) -> Isolation:
    r"""Rewrite the observation model ``obs_dd`` of ``obs_var`` as state in terms of the observation

        Parameters
        ----------
        forest
            The forest holding ``obs_dd``
        obs_dd
            The observation model $o = f(s)$
        obs_var
            The name of the observation variable $o$
        state_vars
            The continuous state variables that may be isolated

        Returns
        -------
        Isolation
            The isolated expressions.
            Where several leaves isolate the same state variable, the one visited last (high branches are visited after low ones) is kept.

        Raises
        ------
        UnsupportedObservationModelError
            Raised if a leaf is neither constant nor affine and invertible in a single state variable.
    """
    isolation = Isolation()
    isolation.diagram = _isolate(forest, obs_dd, obs_var, frozenset(state_vars), isolation.mapping, {})
    logger.debug("Isolated %s from observation '%s'", sorted(isolation.mapping), obs_var)
    return isolation


def _isolate(forest: Forest, handle: int, obs_var: str, state_vars: frozenset[str],
             mapping: dict[str, int], visited: dict[int, int]) -> int:
    if (cached := visited.get(handle)) is not None:
        return cached

    node = forest.node(handle)
    if isinstance(node, Leaf):
        if (isolated := isolate_expression(node.expr, obs_var, state_vars)) is None:
            result = forest.zero
        else:
            var, expr = isolated
            result = forest.get_leaf(expr)
            mapping[var] = result
    elif isinstance(node, Branch):
        low = _isolate(forest, node.low, obs_var, state_vars, mapping, visited)
        high = _isolate(forest, node.high, obs_var, state_vars, mapping, visited)
        result = forest.get_branch(node.decision, high, low)
    else:
        raise TypeError(f"Not a node: {node!r}")

    visited[handle] = result
    return result


def isolate_expression(expr: Polynomial, obs_var: str,
                       state_vars: Collection[str]) -> Optional[tuple[str, Polynomial]]:
    """ Invert the single observation equation ``obs_var = expr``

        Returns ``None`` for constant ``expr``, else the isolated state variable and its expression in ``obs_var``.
    """
    if expr.is_constant():
        return None

    variables = expr.variables()
    if expr.degree() != 1 or len(variables) != 1 or not variables <= set(state_vars):
        raise UnsupportedObservationModelError(obs_var, expr)

    (var,) = variables
    slope = expr.coefficient((var,))
    if slope == 0:
        raise UnsupportedObservationModelError(obs_var, expr)

    if expr == Polynomial.variable(var):
        return var, Polynomial.variable(obs_var)
    return var, (Polynomial.variable(obs_var) - expr.constant_value) / slope
