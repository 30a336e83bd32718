r"""Piecewise specifications and their construction as canonical diagrams

A piecewise specification is either a :class:`LeafSpec` (one expression) or a :class:`BranchSpec`
$$\text{if } t_1 \wedge \dots \wedge t_k \text{ then } \mathrm{high} \text{ else } \mathrm{low}$$
with tests $t_i$ that are comparisons of expressions (:class:`Comparison`) or boolean variable tests (:class:`BoolTest`).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sym_dp.diagram.expr import Expr, Polynomial, to_polynomial
from sym_dp.diagram.forest import BoolDecision, Forest, Inequality


COMPARISONS = (">", ">=", "<", "<=")


@dataclass(frozen=True)
class Comparison:
    lhs: Expr
    op: str
    rhs: Expr

    def __post_init__(self) -> None:
        if self.op not in COMPARISONS:
            raise ValueError(f"Unsupported comparison '{self.op}'.")

    def as_inequality(self) -> Inequality:
        """ Return the inequality holding exactly where the comparison does"""
        lhs, rhs = to_polynomial(self.lhs), to_polynomial(self.rhs)
        expr = lhs - rhs if self.op in (">", ">=") else rhs - lhs
        return Inequality(expr, strict=self.op in (">", "<"))


@dataclass(frozen=True)
class BoolTest:
    var: str
    value: bool = True


Test = Union[Comparison, BoolTest]


@dataclass(frozen=True)
class LeafSpec:
    expr: Expr


@dataclass(frozen=True)
class BranchSpec:
    tests: tuple[Test, ...]
    high: DiagramSpec
    low: DiagramSpec


DiagramSpec = Union[LeafSpec, BranchSpec]


def build(forest: Forest, spec: DiagramSpec) -> int:
    """ Build the canonical diagram of ``spec`` in ``forest``

        Leaf expressions mentioning boolean variables of ``forest`` are expanded into branches on those variables
        (reading true as ``1`` and false as ``0``).
    """
    if isinstance(spec, LeafSpec):
        return _leaf(forest, to_polynomial(spec.expr))
    elif isinstance(spec, BranchSpec):
        high = build(forest, spec.high)
        low = build(forest, spec.low)
        result = high
        for test in reversed(spec.tests):
            result = _branch(forest, test, result, low)
        return result
    else:
        raise TypeError(f"Not a diagram specification: {spec!r}")


def _leaf(forest: Forest, expr: Polynomial) -> int:
    booleans = sorted(var for var in expr.variables() if forest.is_boolean(var))
    if not booleans:
        return forest.get_leaf(expr)

    var = booleans[0]
    return forest.ite(
        BoolDecision(var),
        _leaf(forest, expr.substitute({var: Polynomial.constant(1.0)})),
        _leaf(forest, expr.substitute({var: Polynomial.constant(0.0)}))
    )


def _branch(forest: Forest, test: Test, high: int, low: int) -> int:
    if isinstance(test, Comparison):
        inequality = test.as_inequality()
        if inequality.expr.is_constant():
            return high if inequality.holds(inequality.expr.constant_value) else low
        return forest.ite(inequality, high, low)
    elif isinstance(test, BoolTest):
        if test.value:
            return forest.ite(BoolDecision(test.var), high, low)
        return forest.ite(BoolDecision(test.var), low, high)
    else:
        raise TypeError(f"Not a test: {test!r}")
