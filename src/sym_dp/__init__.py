r"""Symbolic dynamic programming for hybrid-state sequential decision problems

    A problem within the scope of :mod:`sym_dp` has continuous state variables $x$, boolean state variables $b$ and observation variables $o$,
    and a finite set of actions $a$, each with a piecewise deterministic continuous transition $x' = T_a^{x'}(s)$,
    piecewise boolean transition probabilities $P(b' \mid s, a)$, a piecewise observation model $o = O_a^o(s)$ and a piecewise reward $R_a(s)$.

    All piecewise functions are decision diagrams in one shared :class:`sym_dp.diagram.Forest`.
    Value iteration computes, starting from $V_0 = 0$ and with discount $\gamma$,
    $$V_h(s) = \max_a \Big(R_a(s) + \gamma \, \mathbb{E}\big[V_{h-1}(s') \mid s, a\big]\Big) \prod_i C_i(s), \quad h = 1, \dots, N,$$
    exactly and in closed form: :class:`sym_dp.regression.RegressionEngine` regresses $V_{h-1}$ through each action
    and :class:`sym_dp.solver.ValueIteration` takes the symbolic maximum, records every horizon and scores a small :class:`sym_dp.belief.Belief`.
    Problems are read from text files with :func:`sym_dp.parser.load_problem`.
"""

__version__ = "0.1.0a1"

from .config import SolverConfig
from .errors import SymDPError, MalformedInputError, UnsupportedObservationModelError, MissingActionVariableError, BranchCountWarning
from .problem import Problem, Action, Variable, VariableKind
from .parser import parse_problem, load_problem
from .regression import RegressionEngine
from .solver import ValueIteration, IterationStats
from .belief import Belief
