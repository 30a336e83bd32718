r"""Leaf expressions of decision diagrams

Expressions come in two shapes:

* a small closed syntax tree (:class:`Const`, :class:`Var`, :class:`Sum`, :class:`Prod`) as produced by :func:`parse_expr`, and
* the canonical :class:`Polynomial` form stored in diagram leaves and decisions,
  $$p(x) = \sum_{m} c_m \prod_{v\in m} x_v$$
  with monomials $m$ (sorted tuples of variable names, repetition allowed) and non-zero coefficients $c_m$.

Two polynomials compare (and hash) equal if and only if their coefficients agree, which is what makes leaves shareable in a :class:`sym_dp.diagram.forest.Forest`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from collections.abc import Mapping
from typing import Any, Optional, Union


Monomial = tuple[str, ...]

_ZERO_TOLERANCE = 1e-12


class Polynomial:
    r"""Canonical polynomial with real coefficients

        Immutable.
        Arithmetic with plain numbers is supported on both sides (``2 * p``, ``p - 1``, ...).
    """
    __slots__ = ("_terms", "_hash")

    def __init__(self, terms: Optional[Mapping[Monomial, float]] = None) -> None:
        collected: dict[Monomial, float] = {}
        for monomial, coefficient in (terms or {}).items():
            monomial = tuple(sorted(monomial))
            collected[monomial] = collected.get(monomial, 0.0) + float(coefficient)

        self._terms = tuple(sorted(
            ((monomial, coefficient) for monomial, coefficient in collected.items()
             if abs(coefficient) > _ZERO_TOLERANCE),
            key=lambda item: (len(item[0]), item[0])
        ))
        self._hash = hash(self._terms)

    @classmethod
    def constant(cls, value: float) -> Polynomial:
        return cls({(): value})

    @classmethod
    def variable(cls, name: str) -> Polynomial:
        return cls({(name,): 1.0})

    @property
    def terms(self) -> dict[Monomial, float]:
        """ The monomial-to-coefficient mapping (constant term under ``()``)"""
        return dict(self._terms)

    def items(self) -> tuple[tuple[Monomial, float], ...]:
        """ The terms of ``self``, constant term first, then by degree and name"""
        return self._terms

    def coefficient(self, monomial: Monomial) -> float:
        return self.terms.get(tuple(sorted(monomial)), 0.0)

    def is_constant(self) -> bool:
        return all(not monomial for monomial, _ in self._terms)

    @property
    def constant_value(self) -> float:
        """ The constant term of ``self``"""
        return self.coefficient(())

    def degree(self) -> int:
        return max((len(monomial) for monomial, _ in self._terms), default=0)

    def variables(self) -> set[str]:
        return {var for monomial, _ in self._terms for var in monomial}

    def as_variable(self) -> Optional[str]:
        """ Return the variable name if ``self`` is a bare variable, else ``None``"""
        if len(self._terms) == 1:
            monomial, coefficient = self._terms[0]
            if len(monomial) == 1 and coefficient == 1.0:
                return monomial[0]
        return None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Polynomial):
            return self._terms == other._terms
        return NotImplemented

    def __hash__(self) -> int:
        return self._hash

    def __add__(self, other: Polynomial | float) -> Polynomial:
        other = _lift(other)
        terms = self.terms
        for monomial, coefficient in other._terms:
            terms[monomial] = terms.get(monomial, 0.0) + coefficient
        return Polynomial(terms)

    __radd__ = __add__

    def __neg__(self) -> Polynomial:
        return Polynomial({monomial: -coefficient for monomial, coefficient in self._terms})

    def __sub__(self, other: Polynomial | float) -> Polynomial:
        return self + (-_lift(other))

    def __rsub__(self, other: Polynomial | float) -> Polynomial:
        return _lift(other) - self

    def __mul__(self, other: Polynomial | float) -> Polynomial:
        other = _lift(other)
        terms: dict[Monomial, float] = {}
        for monomial, coefficient in self._terms:
            for other_monomial, other_coefficient in other._terms:
                product = tuple(sorted(monomial + other_monomial))
                terms[product] = terms.get(product, 0.0) + coefficient * other_coefficient
        return Polynomial(terms)

    __rmul__ = __mul__

    def __truediv__(self, other: float) -> Polynomial:
        if isinstance(other, Polynomial):
            if not other.is_constant():
                raise ValueError("Can only divide by constants.")
            other = other.constant_value
        if other == 0:
            raise ZeroDivisionError("Polynomial division by zero.")
        return Polynomial({monomial: coefficient / other for monomial, coefficient in self._terms})

    def substitute(self, mapping: Mapping[str, Polynomial]) -> Polynomial:
        r"""Substitute polynomials for variables

            Variables not contained in ``mapping`` are kept.
            All substitutions happen simultaneously, i.e. $p(x, y)[x := y, y := x] = p(y, x)$.
        """
        if not self.variables() & mapping.keys():
            return self

        result = Polynomial()
        for monomial, coefficient in self._terms:
            term = Polynomial.constant(coefficient)
            for var in monomial:
                term = term * mapping.get(var, Polynomial.variable(var))
            result = result + term
        return result

    def evaluate(self, assignment: Mapping[str, Any]) -> Any:
        """ Evaluate ``self`` at ``assignment``

            The values of ``assignment`` may be numbers or :class:`torch.Tensor`'s (or anything else supporting ``+`` and ``*``).

            Raises
            ------
            KeyError
                Raised if ``assignment`` misses a variable of ``self``.
        """
        total = 0.0
        for monomial, coefficient in self._terms:
            term = coefficient
            for var in monomial:
                try:
                    term = term * assignment[var]
                except KeyError:
                    raise KeyError(f"No value assigned to variable '{var}'.") from None
            total = total + term
        return total

    def __str__(self) -> str:
        if not self._terms:
            return "0"
        parts = []
        for monomial, coefficient in self._terms:
            if not monomial:
                parts.append(f"{coefficient:g}")
            elif coefficient == 1.0:
                parts.append("*".join(monomial))
            elif coefficient == -1.0:
                parts.append("-" + "*".join(monomial))
            else:
                parts.append(f"{coefficient:g}*" + "*".join(monomial))
        return " + ".join(parts).replace("+ -", "- ")

    def __repr__(self) -> str:
        return f"Polynomial({self})"


def _lift(value: Polynomial | float) -> Polynomial:
    if isinstance(value, Polynomial):
        return value
    elif isinstance(value, (int, float)):
        return Polynomial.constant(value)
    else:
        raise TypeError(f"Cannot combine Polynomial with {type(value).__name__}.")


@dataclass(frozen=True)
class Const:
    value: float


@dataclass(frozen=True)
class Var:
    name: str


@dataclass(frozen=True)
class Sum:
    terms: tuple[Expr, ...]


@dataclass(frozen=True)
class Prod:
    factors: tuple[Expr, ...]


Expr = Union[Const, Var, Sum, Prod]


def to_polynomial(expr: Expr) -> Polynomial:
    """ Convert an expression tree to its canonical :class:`Polynomial`"""
    if isinstance(expr, Const):
        return Polynomial.constant(expr.value)
    elif isinstance(expr, Var):
        return Polynomial.variable(expr.name)
    elif isinstance(expr, Sum):
        result = Polynomial()
        for term in expr.terms:
            result = result + to_polynomial(term)
        return result
    elif isinstance(expr, Prod):
        result = Polynomial.constant(1.0)
        for factor in expr.factors:
            result = result * to_polynomial(factor)
        return result
    else:
        raise TypeError(f"Not an expression: {expr!r}")


_EXPR_TOKEN = re.compile(
    r"\s*(?:(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*'?)"
    r"|(?P<symbol>[-+*/()]))"
)


def parse_expr(text: str) -> Expr:
    """ Parse an arithmetic expression

        Understands numbers, variable names (optionally primed, e.g. ``x'``), ``+``, ``-``, ``*``, ``/`` and parentheses.
        Division is only allowed by constant expressions.

        Raises
        ------
        ValueError
            Raised if ``text`` is not a well-formed expression.
    """
    tokens = []
    position = 0
    text = text.rstrip()
    while position < len(text):
        match = _EXPR_TOKEN.match(text, position)
        if match is None or match.end() == position:
            raise ValueError(f"Cannot parse expression '{text}' at position {position}.")
        tokens.append((match.lastgroup, match.group(match.lastgroup)))
        position = match.end()

    parser = _ExprParser(text, tokens)
    expr = parser.parse_sum()
    if parser.peek() is not None:
        raise ValueError(f"Cannot parse expression '{text}': unexpected '{parser.peek()[1]}'.")
    return expr


class _ExprParser:

    def __init__(self, text: str, tokens: list[tuple[str, str]]) -> None:
        self._text = text
        self._tokens = tokens
        self._position = 0

    def peek(self) -> Optional[tuple[str, str]]:
        if self._position < len(self._tokens):
            return self._tokens[self._position]
        return None

    def _advance(self) -> tuple[str, str]:
        if (token := self.peek()) is None:
            raise ValueError(f"Cannot parse expression '{self._text}': unexpected end.")
        self._position += 1
        return token

    def parse_sum(self) -> Expr:
        terms = [self.parse_product()]
        while (token := self.peek()) is not None and token[1] in "+-":
            self._advance()
            term = self.parse_product()
            terms.append(term if token[1] == "+" else Prod((Const(-1.0), term)))
        return terms[0] if len(terms) == 1 else Sum(tuple(terms))

    def parse_product(self) -> Expr:
        factors = [self.parse_unary()]
        while (token := self.peek()) is not None and token[1] in "*/":
            self._advance()
            factor = self.parse_unary()
            if token[1] == "/":
                divisor = to_polynomial(factor)
                if not divisor.is_constant():
                    raise ValueError(f"Cannot parse expression '{self._text}': division by non-constant.")
                if divisor.constant_value == 0:
                    raise ValueError(f"Cannot parse expression '{self._text}': division by zero.")
                factor = Const(1.0 / divisor.constant_value)
            factors.append(factor)
        return factors[0] if len(factors) == 1 else Prod(tuple(factors))

    def parse_unary(self) -> Expr:
        token = self.peek()
        if token is not None and token[1] in "+-":
            self._advance()
            operand = self.parse_unary()
            return operand if token[1] == "+" else Prod((Const(-1.0), operand))
        return self.parse_atom()

    def parse_atom(self) -> Expr:
        kind, value = self._advance()
        if kind == "number":
            return Const(float(value))
        elif kind == "name":
            return Var(value)
        elif value == "(":
            expr = self.parse_sum()
            if self._advance()[1] != ")":
                raise ValueError(f"Cannot parse expression '{self._text}': expected ')'.")
            return expr
        else:
            raise ValueError(f"Cannot parse expression '{self._text}': unexpected '{value}'.")
