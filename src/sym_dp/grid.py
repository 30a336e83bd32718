r"""Evaluation of value functions on a two-dimensional grid

The grid spans the declared bounds of two continuous variables $x$ and $y$ with ``resolution`` points each;
every other continuous variable is held at its lower bound (zero if unbounded) and every boolean variable is false.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import torch

from sym_dp.diagram import Forest
from sym_dp.problem import Problem


logger = logging.getLogger(__name__)


def grid_axis(problem: Problem, var: str, resolution: int) -> torch.Tensor:
    variable = problem.variable(var)
    if variable.lower is None or variable.upper is None:
        raise ValueError(f"Grid variable '{var}' needs both a lower and an upper bound.")
    return torch.linspace(variable.lower, variable.upper, resolution, dtype=torch.float64)


def evaluate_grid(forest: Forest,
                  dd: int,
                  x_var: str,
                  y_var: str,
                  resolution: int,
                  problem: Problem) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    r"""Evaluate ``dd`` on the grid of ``x_var`` and ``y_var``

        Returns
        -------
        tuple[torch.Tensor, torch.Tensor, torch.Tensor]
            The grid points $X_0, \dots, X_{n-1}$ and $Y_0, \dots, Y_{n-1}$,
            and the values $V$ with ``V[i, j]`` the value at $(X_j, Y_i)$

        Raises
        ------
        ValueError
            Raised if ``resolution`` is not positive, the grid variables coincide or either lacks a bound.
    """
    if resolution < 1:
        raise ValueError("Grid resolution must be positive.")
    if x_var == y_var:
        raise ValueError("Grid variables must differ.")

    xs = grid_axis(problem, x_var, resolution)
    ys = grid_axis(problem, y_var, resolution)

    assignment: dict[str, torch.Tensor | float] = {var: 0.0 for var in problem.boolean_vars}
    for var in problem.continuous_vars:
        lower = problem.variable(var).lower
        assignment[var] = lower if lower is not None else 0.0
    assignment[x_var], assignment[y_var] = xs.unsqueeze(0), ys.unsqueeze(1)

    values = forest.evaluate_batch(dd, assignment)
    return xs, ys, torch.broadcast_to(values, (resolution, resolution))


def write_grid(path: str | Path,
               forest: Forest,
               dd: int,
               x_var: str,
               y_var: str,
               resolution: int,
               problem: Problem) -> Path:
    r"""Write the grid evaluation of ``dd`` (see :func:`evaluate_grid`) to ``path``

        Row $i$ reads $X_i \; Y_i \; V(X_0, Y_i) \; \dots \; V(X_{n-1}, Y_i)$, whitespace-delimited.
    """
    xs, ys, values = evaluate_grid(forest, dd, x_var, y_var, resolution, problem)
    rows = np.column_stack([xs.numpy(), ys.numpy(), values.numpy()])
    path = Path(path)
    np.savetxt(path, rows, fmt="%.10g", delimiter=" ")
    logger.info("Wrote %dx%d grid of '%s' and '%s' to %s", resolution, resolution, x_var, y_var, path)
    return path


def plot_grid(forest: Forest,
              dd: int,
              x_var: str,
              y_var: str,
              resolution: int,
              problem: Problem,
              ax: Optional[plt.Axes] = None,
              plot_size=(8, 5)) -> plt.Axes:
    """ Plot the grid evaluation of ``dd`` as a surface"""
    xs, ys, values = evaluate_grid(forest, dd, x_var, y_var, resolution, problem)
    grid_x, grid_y = np.meshgrid(xs.numpy(), ys.numpy())

    if ax is None:
        fig = plt.figure()
        fig.set_size_inches(plot_size)
        ax = fig.add_subplot(projection="3d")

    ax.plot_surface(grid_x, grid_y, values.numpy(), cmap="viridis")
    ax.set_xlabel(x_var)
    ax.set_ylabel(y_var)
    ax.set_zlabel("value")
    return ax
