import itertools

import pytest
import torch

from sym_dp.diagram import BoolDecision, Branch, Inequality, Leaf, Op, Polynomial, reduce_lp


x = Polynomial.variable("x")
y = Polynomial.variable("y")


def assignments(*bools, **continuous):
    for values in itertools.product([False, True], repeat=len(bools)):
        yield {**dict(zip(bools, values)), **continuous}


def test_leaves_are_interned(forest):
    assert forest.get_leaf(x + 1) == forest.get_leaf(1 + x)
    assert forest.get_leaf(0.0) == forest.zero
    assert forest.get_leaf(1.0) == forest.one


def test_get_branch_with_equal_children_is_child(forest):
    decision_id, _ = forest.decision_id(BoolDecision("a"))
    assert forest.get_branch(decision_id, forest.one, forest.one) == forest.one


def test_undeclared_boolean_is_rejected(forest):
    with pytest.raises(ValueError):
        forest.var_node("c")


def test_inequalities_share_normalized_decisions(forest):
    positive = forest.ite(Inequality(x - 5), forest.one, forest.zero)
    negative = forest.ite(Inequality(10 - 2 * x, strict=False), forest.zero, forest.one)
    assert positive == negative
    assert forest.evaluate(positive, {"x": 6.0}) == 1.0
    assert forest.evaluate(positive, {"x": 5.0}) == 0.0
    assert forest.evaluate(positive, {"x": 4.0}) == 0.0


def test_negation_flips_strictness(forest):
    # 10 - 2x > 0 is the negation of x - 5 >= 0
    below = forest.ite(Inequality(10 - 2 * x), forest.one, forest.zero)
    at_least = forest.ite(Inequality(x - 5, strict=False), forest.one, forest.zero)
    assert below == forest.apply(forest.one, at_least, Op.MINUS)
    assert below != forest.ite(Inequality(x - 5), forest.zero, forest.one)
    assert forest.evaluate(below, {"x": 5.0}) == 0.0
    assert forest.evaluate(at_least, {"x": 5.0}) == 1.0


@pytest.mark.parametrize("strict, expected", [(True, [0.0, 0.0, 1.0]), (False, [0.0, 1.0, 1.0])])
def test_inequality_boundaries(forest, strict, expected):
    dd = forest.ite(Inequality(x - 5, strict=strict), forest.one, forest.zero)
    points = [4.0, 5.0, 6.0]
    assert [forest.evaluate(dd, {"x": value}) for value in points] == expected
    assert forest.evaluate_batch(dd, {"x": torch.tensor(points)}).tolist() == expected
    assert [forest.substitute(dd, {"x": value}) == forest.one for value in points] == [bool(e) for e in expected]


def test_apply_sum_and_product(forest):
    a, b = forest.var_node("a"), forest.var_node("b")
    total = forest.apply(a, forest.scalar_op(b, 2.0, Op.PROD), Op.SUM)
    product = forest.apply(a, b, Op.PROD)
    for assignment in assignments("a", "b"):
        assert forest.evaluate(total, assignment) == assignment["a"] + 2 * assignment["b"]
        assert forest.evaluate(product, assignment) == float(assignment["a"] and assignment["b"])


def test_apply_minus(forest):
    dd = forest.apply(forest.get_leaf(x), forest.var_node("a"), Op.MINUS)
    assert forest.evaluate(dd, {"a": True, "x": 3.0}) == 2.0
    assert forest.evaluate(dd, {"a": False, "x": 3.0}) == 3.0


@pytest.mark.parametrize("op, expected", [(Op.MAX, [5.0, 7.0]), (Op.MIN, [3.0, 5.0])])
def test_max_and_min_introduce_decisions(forest, op, expected):
    dd = forest.apply(forest.get_leaf(x), forest.get_leaf(5.0), op)
    assert isinstance(forest.node(dd), Branch)
    assert [forest.evaluate(dd, {"x": value}) for value in (3.0, 7.0)] == expected


def test_max_of_piecewise_diagrams(forest):
    first = forest.ite(Inequality(x - 5), forest.get_leaf(x), forest.zero)
    second = forest.ite(BoolDecision("a"), forest.get_leaf(4.0), forest.get_leaf(1.0))
    dd = forest.apply(first, second, Op.MAX)
    for assignment in assignments("a", x=6.0):
        assert forest.evaluate(dd, assignment) == 6.0
    assert forest.evaluate(dd, {"a": True, "x": 2.0}) == 4.0
    assert forest.evaluate(dd, {"a": False, "x": 2.0}) == 1.0
    assert forest.canonicalize(dd) == dd


def test_restrictions_recover_every_assignment(forest):
    dd = forest.ite(
        BoolDecision("a"),
        forest.ite(BoolDecision("b"), forest.get_leaf(3.0), forest.get_leaf(x)),
        forest.ite(Inequality(x - 2), forest.var_node("b"), forest.get_leaf(2.0))
    )
    high = forest.op_out(dd, "a", Op.RESTRICT_HIGH)
    low = forest.op_out(dd, "a", Op.RESTRICT_LOW)
    for assignment in assignments("a", "b", x=4.0):
        restricted = high if assignment["a"] else low
        assert forest.evaluate(restricted, assignment) == forest.evaluate(dd, assignment)

    summed = forest.op_out(dd, "a", Op.SUM)
    for assignment in assignments("b", x=1.0):
        assert forest.evaluate(summed, assignment) == (
            forest.evaluate(dd, {**assignment, "a": True}) + forest.evaluate(dd, {**assignment, "a": False})
        )


def test_canonicalize_is_idempotent(forest):
    id_a, _ = forest.decision_id(BoolDecision("a"))
    id_b, _ = forest.decision_id(BoolDecision("b"))
    # `b` tested above `a` violates the decision order
    raw = forest.get_branch(id_b, forest.get_branch(id_a, forest.one, forest.zero), forest.zero)

    canonical = forest.canonicalize(raw)
    assert canonical == forest.apply(forest.var_node("a"), forest.var_node("b"), Op.PROD)
    assert forest.canonicalize(canonical) == canonical
    for assignment in assignments("a", "b"):
        assert forest.evaluate(raw, assignment) == forest.evaluate(canonical, assignment)


def test_substitute_continuous_and_boolean(forest):
    dd = forest.ite(
        Inequality(x - 5),
        forest.ite(BoolDecision("a"), forest.get_leaf(x), forest.one),
        forest.zero
    )
    shifted = forest.substitute(dd, {"x": y + 1, "a": "a'"})
    assert forest.collect_vars(shifted) == {"y", "a'"}
    assert forest.evaluate(shifted, {"y": 5.0, "a'": True}) == 6.0
    assert forest.evaluate(shifted, {"y": 5.0, "a'": False}) == 1.0
    assert forest.evaluate(shifted, {"y": 4.0, "a'": True}) == 0.0

    fixed = forest.substitute(dd, {"x": 7.0, "a": 0})
    assert fixed == forest.one


def test_substitute_rejects_expressions_for_booleans(forest):
    with pytest.raises(ValueError):
        forest.substitute(forest.var_node("a"), {"a": x + 1})


def test_counts(forest):
    forest.var_node("a")  # Order `a` before `b`
    dd = forest.ite(
        BoolDecision("a"),
        forest.ite(BoolDecision("b"), forest.get_leaf(1.0), forest.get_leaf(2.0)),
        forest.get_leaf(3.0)
    )
    assert forest.branch_count(dd) == 3
    assert forest.node_count(dd) == 5
    assert forest.branch_count(forest.zero) == 1


def test_evaluate_missing_variable(forest):
    with pytest.raises(KeyError):
        forest.evaluate(forest.var_node("a"), {})


def test_evaluate_batch(forest):
    dd = forest.ite(
        Inequality(x - 5),
        forest.get_leaf(x),
        forest.ite(BoolDecision("a"), forest.get_leaf(-1.0), forest.zero)
    )
    values = forest.evaluate_batch(dd, {"x": torch.tensor([4.0, 6.0, 4.0]), "a": torch.tensor([1.0, 0.0, 0.0])})
    assert values.dtype == torch.float64
    assert values.tolist() == [-1.0, 6.0, 0.0]


def test_flush_keeps_special_nodes(forest):
    live = forest.ite(Inequality(x - 5), forest.get_leaf(x + y), forest.get_leaf(2.0))
    garbage = forest.ite(Inequality(y - 1), forest.get_leaf(3 * x), forest.get_leaf(7.0))
    points = [{"x": 6.0, "y": 1.0}, {"x": 2.0, "y": 3.0}]
    before = [forest.evaluate(live, point) for point in points]

    forest.add_special_node(live)
    reclaimed = forest.flush_caches()

    assert reclaimed > 0
    assert [forest.evaluate(live, point) for point in points] == before
    assert forest.node(forest.zero) == Leaf(Polynomial.constant(0.0))
    with pytest.raises(KeyError):
        forest.node(garbage)

    # Reclaimed handles are not reused
    rebuilt = forest.ite(Inequality(y - 1), forest.get_leaf(3 * x), forest.get_leaf(7.0))
    assert rebuilt != garbage


def test_add_special_node_requires_live_handle(forest):
    garbage = forest.get_leaf(x + 42)
    forest.flush_caches()
    with pytest.raises(KeyError):
        forest.add_special_node(garbage)


def test_reduce_lp_prunes_infeasible_paths(forest):
    inner = forest.ite(Inequality(x - 3), forest.one, forest.get_leaf(2.0))
    dd = forest.ite(Inequality(x - 5), inner, forest.zero)

    reduced = reduce_lp(forest, dd)
    assert forest.node_count(reduced) < forest.node_count(dd)
    for value in (1.0, 4.0, 6.0, 9.0):
        assert forest.evaluate(reduced, {"x": value}) == forest.evaluate(dd, {"x": value})


def test_reduce_lp_uses_bounds(forest):
    dd = forest.ite(Inequality(x - 20), forest.get_leaf(x), forest.zero)
    assert reduce_lp(forest, dd) == forest.zero


def test_reduce_lp_respects_strictness(forest):
    # x >= 10 holds at the upper bound, x > 10 nowhere
    at_bound = forest.ite(Inequality(x - 10, strict=False), forest.get_leaf(x), forest.zero)
    assert reduce_lp(forest, at_bound) == at_bound
    assert reduce_lp(forest, forest.ite(Inequality(x - 10), forest.get_leaf(x), forest.zero)) == forest.zero

    # x < 0 nowhere, x <= 0 at the lower bound
    non_negative = forest.ite(Inequality(x, strict=False), forest.get_leaf(x), forest.get_leaf(5.0))
    assert reduce_lp(forest, non_negative) == forest.get_leaf(x)
    positive = forest.ite(Inequality(x), forest.get_leaf(x), forest.get_leaf(5.0))
    assert reduce_lp(forest, positive) == positive


def test_reduce_lp_keeps_nonlinear_decisions(forest):
    dd = forest.ite(Inequality(x * x - 200), forest.one, forest.zero)
    assert reduce_lp(forest, dd) == dd
