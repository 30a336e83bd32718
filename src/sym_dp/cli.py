from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer

from sym_dp.config import SolverConfig
from sym_dp.errors import SymDPError
from sym_dp.grid import write_grid
from sym_dp.parser import load_problem
from sym_dp.solver import ValueIteration


app = typer.Typer(add_completion=False, no_args_is_help=True)


@app.callback()
def main() -> None:
    """Symbolic dynamic programming for hybrid-state decision problems."""


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stdout,
        force=True
    )


def _fail(exc: Exception) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


@app.command()
def solve(
    problem_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Problem file to solve"),
    max_iterations: int = typer.Argument(..., help="Number of horizons, negative to use the file's iterations"),
    emit_3d_grid: bool = typer.Argument(False, help="Write the final value function on a grid"),
    x_var: Optional[str] = typer.Argument(None, help="Grid variable varying along each row"),
    y_var: Optional[str] = typer.Argument(None, help="Grid variable varying across rows"),
    grid_resolution: Optional[int] = typer.Argument(None, help="Grid points per axis"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Grid file, by default next to the problem file"),
    reduce_lp: bool = typer.Option(True, "--reduce-lp/--no-reduce-lp", help="Prune infeasible branches"),
    always_flush: bool = typer.Option(False, "--always-flush", help="Flush diagram caches after every action"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every regression step"),
) -> None:
    """Run symbolic value iteration on a problem file."""
    if emit_3d_grid and (x_var is None or y_var is None or grid_resolution is None):
        raise typer.BadParameter("Emitting a grid requires X-VAR, Y-VAR and GRID-RESOLUTION.", param_hint="emit-3d-grid")

    _configure_logging(verbose)
    try:
        problem = load_problem(problem_file)
        typer.echo(problem.describe())

        solver = ValueIteration(problem, SolverConfig(reduce_lp=reduce_lp, always_flush=always_flush))
        solver.solve(max_iterations)

        if emit_3d_grid:
            path = output if output is not None else problem_file.with_name(f"{problem_file.stem}3D.dat")
            typer.echo("Creating data file... ", nl=False)
            write_grid(path, problem.forest, solver.value_dd, x_var, y_var, grid_resolution, problem)
            typer.echo("done.")
    except (SymDPError, KeyError, ValueError) as exc:
        _fail(exc)

    typer.echo("")
    typer.echo("Iteration Results summary")
    typer.echo(solver.as_table())


@app.command()
def describe(problem_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Problem file to describe")) -> None:
    """Print the parsed problem."""
    try:
        problem = load_problem(problem_file)
    except SymDPError as exc:
        _fail(exc)
    typer.echo(problem.describe())
    typer.echo(repr(problem))


if __name__ == "__main__":
    app()
