r"""Hybrid-state decision problems

A :class:`Problem` consists of

* variables of four kinds: continuous state variables $x$, boolean state variables $b$, intermediate variables and observation variables $o$,
* actions $a$, each with a transition diagram $T_a^{v'}$ per primed state variable $v'$, an observation diagram $O_a^{o}$ per observation variable and a reward diagram $R_a$,
* constraint diagrams $C_1, \dots, C_k$ (one on feasible states, zero elsewhere),
* a discount factor $\gamma$ and a default number of iterations.

For continuous $v$, $T_a^{v'}$ is the deterministic next value of $v$;
for boolean $v$, $T_a^{v'}$ is the conditional probability table $P(v' \mid s)$ over both values of $v'$.

All diagrams live in the problem's :class:`sym_dp.diagram.Forest`, which the problem owns.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from collections.abc import Iterable, Sequence
from typing import Optional

from sym_dp.diagram import Forest


class VariableKind(enum.Enum):
    CONTINUOUS = "continuous"
    BOOLEAN = "boolean"
    INTERMEDIATE = "intermediate"
    OBSERVATION = "observation"


@dataclass(frozen=True)
class Variable:
    name: str
    kind: VariableKind
    lower: Optional[float] = None
    upper: Optional[float] = None

    @property
    def primed(self) -> str:
        return self.name + "'"


@dataclass
class Action:
    """ Action descriptor

        Attributes
        ----------
        name
            The action name
        transitions
            Maps primed state variables to their transition diagrams
        observations
            Maps observation variables to their generative diagrams
        reward
            The reward diagram
    """
    name: str
    transitions: dict[str, int] = field(default_factory=dict)
    observations: dict[str, int] = field(default_factory=dict)
    reward: Optional[int] = None

    def diagrams(self) -> list[int]:
        """ Return every diagram handle held by ``self``"""
        diagrams = [*self.transitions.values(), *self.observations.values()]
        if self.reward is not None:
            diagrams.append(self.reward)
        return diagrams


class Problem:
    """ A parsed hybrid-state decision problem owning its diagram forest"""

    def __init__(self,
                 forest: Forest,
                 variables: Iterable[Variable],
                 actions: Iterable[Action],
                 constraints: Sequence[int] = (),
                 discount: float = 1.0,
                 iterations: int = 1) -> None:
        r""" Construct a :class:`Problem`

            Parameters
            ----------
            forest
                The forest holding every diagram of the problem
            variables
                The declared variables, in declaration order
            actions
                The actions, in declaration order (the order in which the solver regresses through them)
            constraints
                The constraint diagrams
            discount
                The discount factor $\gamma$
            iterations
                The default number of value-iteration horizons

            Raises
            ------
            ValueError
                Raised if there are no actions, if variable or action names repeat, or if ``discount`` or ``iterations`` is out of range.
        """
        self.forest = forest

        self._variables: dict[str, Variable] = {}
        for variable in variables:
            if variable.name in self._variables:
                raise ValueError(f"Variable '{variable.name}' declared twice.")
            self._variables[variable.name] = variable

        self.actions: dict[str, Action] = {}
        for action in actions:
            if action.name in self.actions:
                raise ValueError(f"Action '{action.name}' declared twice.")
            self.actions[action.name] = action
        if not self.actions:
            raise ValueError("Declare at least one action.")

        if discount < 0:
            raise ValueError("Discount must be non-negative.")
        if iterations < 0:
            raise ValueError("Iterations must be non-negative.")

        self.constraints = list(constraints)
        self.discount = float(discount)
        self.iterations = int(iterations)

    @property
    def variables(self) -> list[Variable]:
        return list(self._variables.values())

    def variable(self, name: str) -> Variable:
        try:
            return self._variables[name]
        except KeyError:
            raise KeyError(f"Unknown variable '{name}'.") from None

    def _names(self, kind: VariableKind) -> list[str]:
        return [variable.name for variable in self._variables.values() if variable.kind is kind]

    @property
    def continuous_vars(self) -> list[str]:
        return self._names(VariableKind.CONTINUOUS)

    @property
    def boolean_vars(self) -> list[str]:
        return self._names(VariableKind.BOOLEAN)

    @property
    def intermediate_vars(self) -> list[str]:
        return self._names(VariableKind.INTERMEDIATE)

    @property
    def observation_vars(self) -> list[str]:
        return self._names(VariableKind.OBSERVATION)

    def diagrams(self) -> list[int]:
        """ Return every diagram handle held by the actions and constraints of ``self``"""
        diagrams = [handle for action in self.actions.values() for handle in action.diagrams()]
        return diagrams + self.constraints

    def describe(self) -> str:
        lower = {var: self.variable(var).lower for var in self.continuous_vars}
        upper = {var: self.variable(var).upper for var in self.continuous_vars}

        lines = ["", "Problem definition:", "==================="]
        lines.append(f"CVars:       {self.continuous_vars}")
        lines.append(f"Min-values:  {lower}")
        lines.append(f"Max-values:  {upper}")
        lines.append(f"BVars:       {self.boolean_vars}")
        lines.append(f"IVars:       {self.intermediate_vars}")
        lines.append(f"OVars:       {self.observation_vars}")
        lines.append(f"Discount:    {self.discount}")
        lines.append(f"Iterations:  {self.iterations}")
        lines.append(f"Constraints ({len(self.constraints)}):")
        for constraint in self.constraints:
            lines.append(self.forest.format(constraint, indent=1))
        lines.append(f"Actions ({len(self.actions)}):")
        for action in self.actions.values():
            lines.append(f"==> {action.name}")
            for var, handle in action.transitions.items():
                lines.append(f"  {var}:")
                lines.append(self.forest.format(handle, indent=1))
            for var, handle in action.observations.items():
                lines.append(f"  {var} (observation):")
                lines.append(self.forest.format(handle, indent=1))
            lines.append("  reward:")
            lines.append(self.forest.format(action.reward, indent=1))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (f"Problem(cvars={self.continuous_vars}, bvars={self.boolean_vars}, "
                f"ovars={self.observation_vars}, actions={list(self.actions)}, "
                f"constraints={len(self.constraints)}, discount={self.discount}, iterations={self.iterations})")
