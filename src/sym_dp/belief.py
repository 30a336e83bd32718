r"""Beliefs over a small set of state hypotheses

A belief $b$ is a probability distribution over hypotheses $i = 1, \dots, n$, each standing for a state $s_i$.
Its value under a set $\Gamma_h$ of alpha-diagrams (the Q-diagrams of horizon $h$) is
$$V_h(b) = \max_{\alpha \in \Gamma_h} \sum_{i=1}^n b_i \, \alpha(s_i).$$
"""
from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import torch

from sym_dp.diagram import Forest
from sym_dp.problem import Problem


_TOLERANCE = 1e-9


class Belief:
    """ Probability distribution over a fixed set of state hypotheses

        Parameters
        ----------
        probabilities
            Maps hypothesis indices ``0, ..., n - 1`` to their probability
        points
            The state assigned to each hypothesis, in index order

        Raises
        ------
        ValueError
            Raised if indices and points do not match, a probability is negative or the probabilities do not sum to one.
    """
    def __init__(self, probabilities: Mapping[int, float], points: Sequence[Mapping[str, Any]]) -> None:
        if sorted(probabilities) != list(range(len(points))):
            raise ValueError("Provide exactly one probability per belief point.")
        if any(probability < 0 for probability in probabilities.values()):
            raise ValueError("Probabilities must be non-negative.")
        if not math.isclose(sum(probabilities.values()), 1.0, abs_tol=_TOLERANCE):
            raise ValueError("Probabilities must sum to one.")

        self.probabilities = {index: float(probabilities[index]) for index in range(len(points))}
        self.points = [dict(point) for point in points]

    @classmethod
    def uniform(cls, points: Sequence[Mapping[str, Any]]) -> Belief:
        if not points:
            raise ValueError("Provide at least one belief point.")
        return cls({index: 1 / len(points) for index in range(len(points))}, points)

    @classmethod
    def from_problem(cls, problem: Problem, points: Optional[Sequence[Mapping[str, Any]]] = None) -> Belief:
        """ Return the uniform belief over ``points``

            By default there are two hypotheses:
            all booleans false and every continuous variable at its lower bound,
            and all booleans true and every continuous variable at its upper bound
            (unbounded sides at zero).
        """
        if points is None:
            low: dict[str, Any] = {var: False for var in problem.boolean_vars}
            high: dict[str, Any] = {var: True for var in problem.boolean_vars}
            for var in problem.continuous_vars:
                variable = problem.variable(var)
                low[var] = variable.lower if variable.lower is not None else 0.0
                high[var] = variable.upper if variable.upper is not None else 0.0
            points = [low, high]
        return cls.uniform(points)

    def __len__(self) -> int:
        return len(self.points)

    def _weights(self) -> torch.Tensor:
        return torch.tensor([self.probabilities[index] for index in range(len(self))], dtype=torch.float64)

    def _assignment(self) -> dict[str, torch.Tensor]:
        variables = set().union(*(point.keys() for point in self.points))
        assignment = {}
        for var in variables:
            try:
                assignment[var] = torch.tensor([float(point[var]) for point in self.points], dtype=torch.float64)
            except KeyError:
                raise KeyError(f"Not every belief point assigns '{var}'.") from None
        return assignment

    def alpha_values(self, forest: Forest, alphas: Sequence[int]) -> torch.Tensor:
        r"""Return $\sum_i b_i \alpha(s_i)$ for every $\alpha$ in ``alphas``"""
        assignment = self._assignment()
        weights = self._weights()
        return torch.stack([
            (forest.evaluate_batch(alpha, assignment) * weights).sum() for alpha in alphas
        ]) if alphas else torch.empty(0, dtype=torch.float64)

    def value(self, forest: Forest, alphas: Sequence[int]) -> float:
        """ Return the value of ``self`` under the alpha-diagrams ``alphas``

            Raises
            ------
            ValueError
                Raised if ``alphas`` is empty.
        """
        if not alphas:
            raise ValueError("Provide at least one alpha-diagram.")
        return float(self.alpha_values(forest, alphas).max())

    def best_alpha(self, forest: Forest, alphas: Sequence[int]) -> int:
        """ Return the alpha-diagram maximizing the value of ``self``"""
        if not alphas:
            raise ValueError("Provide at least one alpha-diagram.")
        return alphas[int(torch.argmax(self.alpha_values(forest, alphas)))]

    def update(self, likelihoods: Mapping[int, float]) -> Belief:
        r"""Return the posterior $b'_i \propto b_i \, L_i$ for the observation likelihoods $L_i$

            Raises
            ------
            ValueError
                Raised if the observation has probability zero under ``self``.
        """
        unnormalized = {index: probability * float(likelihoods.get(index, 0.0))
                        for index, probability in self.probabilities.items()}
        if (total := sum(unnormalized.values())) <= 0:
            raise ValueError("Observation has zero probability under the belief.")
        return Belief({index: value / total for index, value in unnormalized.items()}, self.points)

    def __repr__(self) -> str:
        return f"Belief({self.probabilities})"
