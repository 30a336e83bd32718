r"""Decision-theoretic regression of value functions through actions

For a value function $V$ and an action $a$ with reward $R_a$, discount $\gamma$ and constraints $C_1, \dots, C_k$,
$$Q_a(s) = \Big(R_a(s) + \gamma \sum_{b'} \prod_{b} P(b' \mid s, a)\, V\big(x' := T_a^{x'}(s),\, b'\big)\Big) \prod_{i=1}^k C_i(s).$$
The continuous next-state values are deterministic, so they are substituted (composed) into the primed value function
rather than integrated; the boolean next-state values are multiplied in and summed out.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from sym_dp.cache import CacheManager
from sym_dp.diagram import Forest, Op, Polynomial, Leaf, Branch
from sym_dp.errors import MissingActionVariableError
from sym_dp.observation import Isolation, isolate_observation
from sym_dp.problem import Action, Problem


logger = logging.getLogger(__name__)


class RegressionEngine:
    r"""Regresses value-function diagrams through the actions of a :class:`sym_dp.problem.Problem`

        Parameters
        ----------
        problem
            The problem whose forest, actions, discount and constraints are used
        cache
            The cache manager holding the regression memo table

        Attributes
        ----------
        state_obs_mapping
            Maps state variables to their expression in the observations, as isolated during the last :meth:`regress`
        isolated
            Maps observation variables to their :class:`sym_dp.observation.Isolation`, as of the last :meth:`regress`
    """
    def __init__(self, problem: Problem, cache: Optional[CacheManager] = None) -> None:
        self.problem = problem
        self.forest: Forest = problem.forest
        self.cache = cache if cache is not None else CacheManager(problem.forest)
        self.state_obs_mapping: dict[str, int] = {}
        self.isolated: dict[str, Isolation] = {}

    def live_handles(self) -> list[int]:
        """ Return the diagrams produced by observation isolation"""
        handles = list(self.state_obs_mapping.values())
        for isolation in self.isolated.values():
            handles.extend(isolation.handles())
        return handles

    def regress(self, vfun: int, action: Action) -> int:
        r"""Compute $Q_a$ from ``vfun``

            Raises
            ------
            MissingActionVariableError
                Raised if ``action`` has no transition for a primed variable of ``vfun``,
                or no observation model for an observation variable of the problem.
            UnsupportedObservationModelError
                Raised if an observation model of ``action`` cannot be isolated.
        """
        self._isolate_observations(action)

        # Prime the value function
        vfun_vars = sorted(self.forest.collect_vars(vfun))
        prime_subs: dict[str, Polynomial | str] = {}
        cvar_pairs: list[tuple[str, int]] = []
        bvar_dds: list[tuple[str, int]] = []
        for var in vfun_vars:
            var_prime = var + "'"
            if (dd := action.transitions.get(var_prime)) is None:
                raise MissingActionVariableError(action.name, var_prime)
            prime_subs[var] = var_prime
            if self.forest.is_boolean(var):
                bvar_dds.append((var_prime, dd))
            else:
                cvar_pairs.append((var_prime, dd))

        logger.debug("%s: BVars %s, CVars %s", action.name, [var for var, _ in bvar_dds], [var for var, _ in cvar_pairs])
        q = self.forest.substitute(vfun, prime_subs)

        # Deterministic regression of the continuous variables, one at a time
        for var_prime, dd in cvar_pairs:
            key = (q, dd, var_prime)
            if (cached := self.cache.lookup(key)) is not None:
                q = cached
                continue
            logger.debug("Regressing %s, size before: %d", var_prime, self.forest.node_count(q))
            regressed = self.compose(q, [(var_prime, dd)])
            logger.debug("Regressing %s, size after: %d", var_prime, self.forest.node_count(regressed))
            self.cache.store(key, regressed)
            q = regressed

        # Multiply in and sum out the conditional probability table of each boolean variable
        for var_prime, dd in bvar_dds:
            q = self.marginalize(self.forest.apply(q, dd, Op.PROD), var_prime)

        reward = action.reward if action.reward is not None else self.forest.zero
        q = self.forest.apply(reward, self.forest.scalar_op(q, self.problem.discount, Op.PROD), Op.SUM)

        # Constraints are one on legal states and zero elsewhere
        for constraint in self.problem.constraints:
            q = self.forest.apply(q, constraint, Op.PROD)

        logger.debug("Final Q(%s):\n%s", action.name, self.forest.format(q))
        return q

    def marginalize(self, handle: int, var: str) -> int:
        r"""Sum the boolean variable ``var`` out of ``handle``

            Computes $f|_{v = 1} + f|_{v = 0}$ from the two restrictions,
            which stays correct if equal-probability branches on ``var`` were collapsed.
        """
        return self.forest.apply(
            self.forest.op_out(handle, var, Op.RESTRICT_HIGH),
            self.forest.op_out(handle, var, Op.RESTRICT_LOW),
            Op.SUM
        )

    def compose(self, vfun: int, pairs: Sequence[tuple[str, int]]) -> int:
        r"""Substitute the deterministic transitions ``pairs`` into ``vfun``

            Parameters
            ----------
            vfun
                The (primed) diagram to regress
            pairs
                The primed variables and their transition diagrams $T^{v'}$

            Returns
            -------
            int
                The canonical diagram of $\mathrm{vfun}(v_1' := T^{v_1'}, \dots, v_n' := T^{v_n'})$.
                Every leaf combination of the transition diagrams is substituted once, simultaneously for all variables.
        """
        subst: list[Optional[Polynomial]] = [None] * len(pairs)
        return self.forest.canonicalize(self._compose(vfun, pairs, subst, 0))

    def _compose(self, vfun: int, pairs: Sequence[tuple[str, int]], subst: list[Optional[Polynomial]], index: int) -> int:
        if index >= len(pairs):
            leaf_subs = {var: expr for (var, _), expr in zip(pairs, subst)}
            return self.forest.substitute(vfun, leaf_subs)
        return self._descend(pairs[index][1], vfun, pairs, subst, index)

    def _descend(self, handle: int, vfun: int, pairs: Sequence[tuple[str, int]],
                 subst: list[Optional[Polynomial]], index: int) -> int:
        node = self.forest.node(handle)
        if isinstance(node, Branch):
            low = self._descend(node.low, vfun, pairs, subst, index)
            high = self._descend(node.high, vfun, pairs, subst, index)
            # May break the decision order, canonicalized in `compose`
            return self.forest.get_branch(node.decision, high, low)
        elif isinstance(node, Leaf):
            subst[index] = node.expr
            result = self._compose(vfun, pairs, subst, index + 1)
            subst[index] = None
            return result
        else:
            raise TypeError(f"Not a node: {node!r}")

    def _isolate_observations(self, action: Action) -> None:
        self.state_obs_mapping = {}
        self.isolated = {}
        state_vars = self.problem.continuous_vars
        state_vars = [*state_vars, *(var + "'" for var in state_vars)]
        for obs_var in self.problem.observation_vars:
            if (obs_dd := action.observations.get(obs_var)) is None:
                raise MissingActionVariableError(action.name, obs_var)
            isolation = isolate_observation(self.forest, obs_dd, obs_var, state_vars)
            self.isolated[obs_var] = isolation
            self.state_obs_mapping.update(isolation.mapping)
