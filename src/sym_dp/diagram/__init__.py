r"""Decision diagrams over hybrid (boolean and continuous) variables

A reduced substrate for symbolic dynamic programming:
:mod:`sym_dp.diagram.expr` provides leaf expressions, :mod:`sym_dp.diagram.forest` the shared canonical :class:`Forest`,
:mod:`sym_dp.diagram.piecewise` the construction of diagrams from piecewise specifications
and :mod:`sym_dp.diagram.reduce` the LP-based pruning of infeasible branches.
"""

from .expr import Polynomial, parse_expr, to_polynomial
from .forest import Forest, Op, BoolDecision, Inequality, Leaf, Branch
from .piecewise import build
from .reduce import reduce_lp
