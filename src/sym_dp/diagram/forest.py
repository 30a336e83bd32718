r"""Shared forest of canonical decision diagrams

A decision diagram represents a piecewise function: internal nodes (:class:`Branch`) test a decision, leaves (:class:`Leaf`) hold a :class:`sym_dp.diagram.expr.Polynomial`.
Decisions are either tests of boolean variables (:class:`BoolDecision`) or inequalities $p(x) > 0$ and $p(x) \ge 0$ (:class:`Inequality`).

All diagrams live in one :class:`Forest`, addressed by integer handles.
Nodes are interned, so two structurally equal nodes share one handle, and decisions are ordered by the order in which the forest first encounters them.
A diagram is *canonical* if decisions strictly increase along every path and no branch has equal children;
every operation of :class:`Forest` returns canonical diagrams, except for the raw constructor :meth:`Forest.get_branch` (see :meth:`Forest.canonicalize`).

Handles stay valid until :meth:`Forest.flush_caches` reclaims every node not reachable from a special (live) node.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

import torch

from sym_dp.diagram.expr import Polynomial


logger = logging.getLogger(__name__)


class Op(enum.Enum):
    SUM = "sum"
    PROD = "prod"
    MINUS = "minus"
    MAX = "max"
    MIN = "min"
    RESTRICT_HIGH = "restrict_high"
    RESTRICT_LOW = "restrict_low"


@dataclass(frozen=True)
class BoolDecision:
    var: str

    def __str__(self) -> str:
        return self.var


@dataclass(frozen=True)
class Inequality:
    """ The decision ``expr > 0``, or ``expr >= 0`` if not ``strict``"""
    expr: Polynomial
    strict: bool = True

    def holds(self, value: Any) -> Any:
        """ Whether the decision holds where ``expr`` takes ``value`` (scalar or tensor)"""
        return value > 0 if self.strict else value >= 0

    def __str__(self) -> str:
        return f"{self.expr} {'>' if self.strict else '>='} 0"


Decision = Union[BoolDecision, Inequality]


@dataclass(frozen=True)
class Leaf:
    expr: Polynomial


@dataclass(frozen=True)
class Branch:
    decision: int
    high: int
    low: int


Node = Union[Leaf, Branch]


class Forest:
    r"""Arena of interned decision-diagram nodes

        Owns the node table, the decision table, the boolean variable declarations, optional variable bounds and the operation caches.
        Nothing outside a :class:`Forest` holds nodes; everything else holds handles.
    """
    def __init__(self) -> None:
        self._nodes: dict[int, Node] = {}
        self._node_ids: dict[Node, int] = {}
        self._next_id = 0

        self._decisions: list[Decision] = []
        self._decision_ids: dict[Decision, int] = {}

        self._booleans: set[str] = set()
        self.bounds: dict[str, tuple[Optional[float], Optional[float]]] = {}

        self._special: set[int] = set()

        self._apply_cache: dict[tuple[int, int, Op], int] = {}
        self._restrict_cache: dict[tuple[int, int, bool], int] = {}
        self._canonical_cache: dict[int, int] = {}

        self.zero = self.get_leaf(Polynomial.constant(0.0))
        self.one = self.get_leaf(Polynomial.constant(1.0))

    # Declarations

    def declare_boolean(self, name: str) -> None:
        self._booleans.add(name)

    def is_boolean(self, name: str) -> bool:
        return name in self._booleans

    @property
    def booleans(self) -> frozenset[str]:
        return frozenset(self._booleans)

    def set_bounds(self, name: str, lower: Optional[float], upper: Optional[float]) -> None:
        if lower is not None and upper is not None and lower > upper:
            raise ValueError(f"Lower bound of '{name}' exceeds its upper bound.")
        self.bounds[name] = (lower, upper)

    # Node and decision tables

    def __len__(self) -> int:
        """ Return the number of nodes currently held by ``self``"""
        return len(self._nodes)

    def node(self, handle: int) -> Node:
        try:
            return self._nodes[handle]
        except KeyError:
            raise KeyError(f"Diagram handle {handle} is not live.") from None

    def decision(self, decision_id: int) -> Decision:
        return self._decisions[decision_id]

    def decision_id(self, decision: Decision) -> tuple[int, bool]:
        """ Return the id of ``decision`` and whether it is stored negated

            Inequalities are normalized so that $p > 0$ and $-p \ge 0$ share one id
            (the second one being the negation of the first).

            Raises
            ------
            ValueError
                Raised if ``decision`` tests an undeclared boolean variable or is a constant inequality.
        """
        if isinstance(decision, BoolDecision):
            if decision.var not in self._booleans:
                raise ValueError(f"'{decision.var}' is not a declared boolean variable.")
            key, negated = decision, False
        elif isinstance(decision, Inequality):
            key, negated = _normalize(decision.expr, decision.strict)
        else:
            raise TypeError(f"Not a decision: {decision!r}")

        if (decision_id := self._decision_ids.get(key)) is None:
            decision_id = len(self._decisions)
            self._decisions.append(key)
            self._decision_ids[key] = decision_id
        return decision_id, negated

    def _intern(self, node: Node) -> int:
        if (handle := self._node_ids.get(node)) is None:
            handle = self._next_id
            self._next_id += 1
            self._nodes[handle] = node
            self._node_ids[node] = handle
        return handle

    def get_leaf(self, expr: Polynomial | float) -> int:
        if not isinstance(expr, Polynomial):
            expr = Polynomial.constant(expr)
        return self._intern(Leaf(expr))

    def get_branch(self, decision_id: int, high: int, low: int) -> int:
        """ Return the branch node testing ``decision_id``

            Does not enforce the decision order: the result may be non-canonical if ``high`` or ``low`` test decisions preceding ``decision_id``.
        """
        if high == low:
            return high
        return self._intern(Branch(decision_id, high, low))

    def var_node(self, name: str) -> int:
        """ Return the indicator diagram of the boolean variable ``name``"""
        return self.ite(BoolDecision(name), self.one, self.zero)

    def ite(self, decision: Decision | int, high: int, low: int) -> int:
        r"""Return the canonical diagram for "if ``decision`` then ``high`` else ``low``"

            Both ``high`` and ``low`` must be canonical.
            Computes $\mathbb{1}_d \cdot h + \mathbb{1}_{\neg d}\cdot l$, which restores the decision order.
        """
        if isinstance(decision, int):
            decision_id, negated = decision, False
        else:
            decision_id, negated = self.decision_id(decision)
        if negated:
            high, low = low, high

        indicator = self.get_branch(decision_id, self.one, self.zero)
        complement = self.get_branch(decision_id, self.zero, self.one)
        return self.apply(
            self.apply(indicator, high, Op.PROD),
            self.apply(complement, low, Op.PROD),
            Op.SUM
        )

    # Algebra

    def apply(self, a: int, b: int, op: Op) -> int:
        """ Combine two canonical diagrams pointwise under ``op``

            ``op`` must be one of :attr:`Op.SUM`, :attr:`Op.PROD`, :attr:`Op.MINUS`, :attr:`Op.MAX` and :attr:`Op.MIN`.
            Maximum and minimum of non-constant leaves introduce new inequality decisions; the result is canonicalized afterwards.
        """
        if op in (Op.RESTRICT_HIGH, Op.RESTRICT_LOW):
            raise ValueError("Restrictions are unary, use `restrict` or `op_out`.")

        result = self._apply(a, b, op)
        if op in (Op.MAX, Op.MIN):
            result = self.canonicalize(result)
        return result

    def _apply(self, a: int, b: int, op: Op) -> int:
        if (shortcut := self._apply_shortcut(a, b, op)) is not None:
            return shortcut

        key = (a, b, op)
        if (cached := self._apply_cache.get(key)) is not None:
            return cached

        node_a, node_b = self.node(a), self.node(b)
        if isinstance(node_a, Leaf) and isinstance(node_b, Leaf):
            result = self._leaf_op(node_a.expr, node_b.expr, op)
        else:
            top = min(node.decision for node in (node_a, node_b) if isinstance(node, Branch))
            high_a, low_a = _cofactors(a, node_a, top)
            high_b, low_b = _cofactors(b, node_b, top)
            result = self.get_branch(
                top,
                self._apply(high_a, high_b, op),
                self._apply(low_a, low_b, op)
            )

        self._apply_cache[key] = result
        return result

    def _apply_shortcut(self, a: int, b: int, op: Op) -> Optional[int]:
        if op is Op.SUM:
            if a == self.zero:
                return b
            if b == self.zero:
                return a
        elif op is Op.PROD:
            if a == self.zero or b == self.zero:
                return self.zero
            if a == self.one:
                return b
            if b == self.one:
                return a
        elif op is Op.MINUS:
            if b == self.zero:
                return a
        return None

    def _leaf_op(self, x: Polynomial, y: Polynomial, op: Op) -> int:
        if op is Op.SUM:
            return self.get_leaf(x + y)
        elif op is Op.PROD:
            return self.get_leaf(x * y)
        elif op is Op.MINUS:
            return self.get_leaf(x - y)
        elif op in (Op.MAX, Op.MIN):
            difference = x - y
            if difference.is_constant():
                x_wins = (difference.constant_value >= 0) == (op is Op.MAX)
                return self.get_leaf(x if x_wins else y)

            # x - y > 0 selects x for the maximum
            decision_id, negated = self.decision_id(Inequality(difference))
            high, low = (self.get_leaf(x), self.get_leaf(y))
            if op is Op.MIN:
                high, low = low, high
            if negated:
                high, low = low, high
            return self.get_branch(decision_id, high, low)
        else:
            raise ValueError(f"Unsupported leaf operation {op}.")

    def scalar_op(self, handle: int, value: float, op: Op) -> int:
        return self.apply(handle, self.get_leaf(value), op)

    def restrict(self, handle: int, var: str, value: bool) -> int:
        """ Fix the boolean variable ``var`` to ``value`` in diagram ``handle``"""
        decision_id, _ = self.decision_id(BoolDecision(var))
        return self._restrict(handle, decision_id, value)

    def _restrict(self, handle: int, decision_id: int, value: bool) -> int:
        key = (handle, decision_id, value)
        if (cached := self._restrict_cache.get(key)) is not None:
            return cached

        node = self.node(handle)
        if isinstance(node, Leaf):
            result = handle
        elif node.decision == decision_id:
            result = self._restrict(node.high if value else node.low, decision_id, value)
        else:
            result = self.get_branch(
                node.decision,
                self._restrict(node.high, decision_id, value),
                self._restrict(node.low, decision_id, value)
            )

        self._restrict_cache[key] = result
        return result

    def op_out(self, handle: int, var: str, op: Op) -> int:
        """ Eliminate the boolean variable ``var`` from ``handle``

            :attr:`Op.RESTRICT_HIGH` and :attr:`Op.RESTRICT_LOW` fix ``var`` to true or false;
            any binary ``op`` combines both restrictions (:attr:`Op.SUM` sums ``var`` out).
        """
        if op is Op.RESTRICT_HIGH:
            return self.restrict(handle, var, True)
        elif op is Op.RESTRICT_LOW:
            return self.restrict(handle, var, False)
        else:
            return self.apply(self.restrict(handle, var, True), self.restrict(handle, var, False), op)

    def substitute(self, handle: int, mapping: Mapping[str, Polynomial | str | float]) -> int:
        r"""Substitute expressions for variables in ``handle``

            Continuous variables may be replaced by arbitrary polynomials;
            boolean variables by other boolean variables (renaming) or by constants ``0``/``1``.
            Decisions that become constant are resolved.
            The result is canonical even if the substitution changes the decision order.
        """
        mapping = {var: _as_polynomial(value) for var, value in mapping.items()}
        return self._substitute(handle, mapping, {})

    def _substitute(self, handle: int, mapping: dict[str, Polynomial], cache: dict[int, int]) -> int:
        if (cached := cache.get(handle)) is not None:
            return cached

        node = self.node(handle)
        if isinstance(node, Leaf):
            result = self.get_leaf(node.expr.substitute(mapping))
        elif isinstance(node, Branch):
            high = self._substitute(node.high, mapping, cache)
            low = self._substitute(node.low, mapping, cache)
            decision = self._decisions[node.decision]
            if isinstance(decision, BoolDecision):
                replacement = mapping.get(decision.var)
                if replacement is None:
                    result = self.ite(node.decision, high, low)
                elif replacement.is_constant():
                    result = high if replacement.constant_value != 0 else low
                elif (renamed := replacement.as_variable()) is not None:
                    result = self.ite(BoolDecision(renamed), high, low)
                else:
                    raise ValueError(f"Boolean variable '{decision.var}' can only be renamed or fixed, not replaced by {replacement}.")
            elif isinstance(decision, Inequality):
                expr = decision.expr.substitute(mapping)
                if expr.is_constant():
                    result = high if decision.holds(expr.constant_value) else low
                else:
                    result = self.ite(Inequality(expr, decision.strict), high, low)
            else:
                raise TypeError(f"Not a decision: {decision!r}")
        else:
            raise TypeError(f"Not a node: {node!r}")

        cache[handle] = result
        return result

    def canonicalize(self, handle: int) -> int:
        """ Return the canonical diagram computing the same function as ``handle``

            Idempotent: canonical diagrams are returned unchanged.
        """
        if (cached := self._canonical_cache.get(handle)) is not None:
            return cached

        node = self.node(handle)
        if isinstance(node, Leaf):
            result = handle
        else:
            result = self.ite(node.decision, self.canonicalize(node.high), self.canonicalize(node.low))

        self._canonical_cache[handle] = result
        return result

    # Inspection

    def evaluate(self, handle: int, assignment: Mapping[str, Any]) -> float:
        """ Evaluate diagram ``handle`` at a point

            Boolean variables are read as truth values, continuous variables as numbers.

            Raises
            ------
            KeyError
                Raised if ``assignment`` misses a variable tested or used along the evaluated path.
        """
        node = self.node(handle)
        while isinstance(node, Branch):
            decision = self._decisions[node.decision]
            node = self._nodes[node.high if _test(decision, assignment) else node.low]
        return float(node.expr.evaluate(assignment))

    def evaluate_batch(self, handle: int, assignment: Mapping[str, Any]) -> torch.Tensor:
        """ Evaluate diagram ``handle`` at a batch of points

            Parameters
            ----------
            handle
                The diagram
            assignment
                Maps variables to tensors of (mutually broadcastable) batch shape

            Returns
            -------
            torch.Tensor
                The values, of the broadcast batch shape and dtype ``torch.float64``
        """
        values = {var: torch.as_tensor(value, dtype=torch.float64) for var, value in assignment.items()}
        shape = torch.broadcast_shapes(*(value.shape for value in values.values()))
        return self._evaluate_batch(handle, values, shape, {})

    def _evaluate_batch(self, handle: int, values: dict[str, torch.Tensor],
                        shape: torch.Size, cache: dict[int, torch.Tensor]) -> torch.Tensor:
        if (cached := cache.get(handle)) is not None:
            return cached

        node = self.node(handle)
        if isinstance(node, Leaf):
            result = torch.broadcast_to(torch.as_tensor(node.expr.evaluate(values), dtype=torch.float64), shape)
        else:
            decision = self._decisions[node.decision]
            if isinstance(decision, BoolDecision):
                mask = values[decision.var] != 0
            else:
                mask = decision.holds(torch.as_tensor(decision.expr.evaluate(values)))
            result = torch.where(
                mask,
                self._evaluate_batch(node.high, values, shape, cache),
                self._evaluate_batch(node.low, values, shape, cache)
            )

        cache[handle] = result
        return result

    def reachable(self, roots: Iterable[int]) -> set[int]:
        seen: set[int] = set()
        stack = list(roots)
        while stack:
            if (handle := stack.pop()) in seen:
                continue
            seen.add(handle)
            if isinstance(node := self.node(handle), Branch):
                stack.extend((node.high, node.low))
        return seen

    def collect_vars(self, handle: int) -> set[str]:
        variables: set[str] = set()
        for reached in self.reachable([handle]):
            node = self._nodes[reached]
            if isinstance(node, Leaf):
                variables |= node.expr.variables()
            else:
                decision = self._decisions[node.decision]
                if isinstance(decision, BoolDecision):
                    variables.add(decision.var)
                else:
                    variables |= decision.expr.variables()
        return variables

    def node_count(self, handle: int) -> int:
        return len(self.reachable([handle]))

    def branch_count(self, handle: int) -> int:
        """ Return the number of root-to-leaf paths of ``handle``"""
        counts: dict[int, int] = {}

        def count(current: int) -> int:
            if (cached := counts.get(current)) is not None:
                return cached
            node = self.node(current)
            result = 1 if isinstance(node, Leaf) else count(node.high) + count(node.low)
            counts[current] = result
            return result

        return count(handle)

    def format(self, handle: int, indent: int = 0) -> str:
        """ Render ``handle`` as an indented tree"""
        pad = "   " * indent
        node = self.node(handle)
        if isinstance(node, Leaf):
            return f"{pad}( [{node.expr}] )"
        return "\n".join([
            f"{pad}( [{self._decisions[node.decision]}]",
            self.format(node.high, indent + 1),
            self.format(node.low, indent + 1),
            f"{pad})"
        ])

    # Liveness and eviction

    @property
    def special_nodes(self) -> frozenset[int]:
        return frozenset(self._special)

    def add_special_node(self, handle: int) -> None:
        """ Mark ``handle`` (and thereby everything reachable from it) as live across flushes"""
        self.node(handle)
        self._special.add(handle)

    def clear_special_nodes(self) -> None:
        self._special.clear()

    def flush_caches(self) -> int:
        """ Reclaim every node not reachable from a special node and clear all operation caches

            The constant leaves :attr:`zero` and :attr:`one` are always kept.
            Handles of kept nodes are unaffected; reclaimed handles are never reused.

            Returns
            -------
            int
                The number of reclaimed nodes.
        """
        live = self.reachable([self.zero, self.one, *self._special])
        reclaimed = [handle for handle in self._nodes if handle not in live]
        for handle in reclaimed:
            del self._node_ids[self._nodes.pop(handle)]

        self._apply_cache.clear()
        self._restrict_cache.clear()
        self._canonical_cache.clear()

        logger.debug("Flushed %d nodes, %d remain", len(reclaimed), len(self._nodes))
        return len(reclaimed)


def _cofactors(handle: int, node: Node, decision_id: int) -> tuple[int, int]:
    if isinstance(node, Branch) and node.decision == decision_id:
        return node.high, node.low
    return handle, handle


def _normalize(expr: Polynomial, strict: bool) -> tuple[Inequality, bool]:
    if expr.is_constant():
        raise ValueError(f"Constant inequality '{Inequality(expr, strict)}' is not a decision.")

    # Scale so that the leading non-constant coefficient is one
    leading = next(coefficient for monomial, coefficient in expr.items() if monomial)
    scale = abs(leading)
    normalized = Polynomial({monomial: round(coefficient / scale, 12) for monomial, coefficient in expr.items()})
    if leading < 0:
        # -p > 0 is the negation of p >= 0 and vice versa
        return Inequality(-normalized, not strict), True
    return Inequality(normalized, strict), False


def _test(decision: Decision, assignment: Mapping[str, Any]) -> bool:
    if isinstance(decision, BoolDecision):
        try:
            return bool(assignment[decision.var])
        except KeyError:
            raise KeyError(f"No value assigned to variable '{decision.var}'.") from None
    elif isinstance(decision, Inequality):
        return bool(decision.holds(decision.expr.evaluate(assignment)))
    else:
        raise TypeError(f"Not a decision: {decision!r}")


def _as_polynomial(value: Polynomial | str | float) -> Polynomial:
    if isinstance(value, Polynomial):
        return value
    elif isinstance(value, str):
        return Polynomial.variable(value)
    elif isinstance(value, (int, float)):
        return Polynomial.constant(value)
    else:
        raise TypeError(f"Cannot substitute {type(value).__name__}.")
