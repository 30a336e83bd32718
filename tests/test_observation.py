import pytest

from sym_dp.diagram import Branch, Inequality, Polynomial
from sym_dp.errors import UnsupportedObservationModelError
from sym_dp.observation import isolate_expression, isolate_observation


x = Polynomial.variable("x")
y = Polynomial.variable("y")
o = Polynomial.variable("o")


def test_identity():
    assert isolate_expression(x, "o", ["x", "y"]) == ("x", o)


def test_constant_has_no_mapping():
    assert isolate_expression(Polynomial.constant(3.0), "o", ["x"]) is None


@pytest.mark.parametrize("a, c", [(2.0, 1.0), (-0.5, 4.0), (3.0, 0.0)])
def test_affine_round_trip(a, c):
    var, expr = isolate_expression(a * x + c, "o", ["x"])
    assert var == "x"
    for state in (-2.0, 0.0, 3.5):
        observation = a * state + c
        assert expr.evaluate({"o": observation}) == pytest.approx(state)


@pytest.mark.parametrize("expr", [x * x, x + y, x * y + 1, o + x])
def test_unsupported_models(expr):
    with pytest.raises(UnsupportedObservationModelError) as info:
        isolate_expression(expr, "o", ["x", "y"])
    assert info.value.observation == "o"


def test_isolate_leaf_diagram(forest):
    isolation = isolate_observation(forest, forest.get_leaf(2 * x + 1), "o", ["x", "y"])
    assert set(isolation.mapping) == {"x"}
    assert forest.evaluate(isolation.mapping["x"], {"o": 7.0}) == pytest.approx(3.0)
    assert isolation.diagram == isolation.mapping["x"]


def test_isolate_mirrors_branches(forest):
    obs_dd = forest.ite(Inequality(y - 5), forest.get_leaf(x), forest.get_leaf(3.0))
    isolation = isolate_observation(forest, obs_dd, "o", ["x", "y"])

    node = forest.node(isolation.diagram)
    assert isinstance(node, Branch)
    assert node.decision == forest.node(obs_dd).decision
    assert forest.evaluate(isolation.diagram, {"y": 6.0, "o": 2.0}) == 2.0
    assert forest.evaluate(isolation.diagram, {"y": 4.0, "o": 2.0}) == 0.0
    assert forest.evaluate(isolation.mapping["x"], {"o": 2.0}) == 2.0


def test_high_branch_wins(forest):
    obs_dd = forest.ite(Inequality(y - 5), forest.get_leaf(x), forest.get_leaf(2 * x))
    isolation = isolate_observation(forest, obs_dd, "o", ["x", "y"])
    assert forest.evaluate(isolation.mapping["x"], {"o": 4.0}) == 4.0


def test_unsupported_leaf_in_diagram(forest):
    obs_dd = forest.ite(Inequality(y - 5), forest.get_leaf(x * y), forest.zero)
    with pytest.raises(UnsupportedObservationModelError):
        isolate_observation(forest, obs_dd, "o", ["x", "y"])
