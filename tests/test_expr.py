import pytest
import torch

from sym_dp.diagram import Polynomial, parse_expr, to_polynomial
from sym_dp.diagram.expr import Const, Prod, Sum, Var


def test_polynomial_arithmetic():
    x, y = Polynomial.variable("x"), Polynomial.variable("y")

    p = (x + 1) * (x - 1)
    assert p == x * x - 1
    assert p.degree() == 2
    assert p.variables() == {"x"}
    assert (2 * x + y - y) == x * 2
    assert (x + y) / 2 == 0.5 * x + 0.5 * y
    assert (x - x).is_constant()
    assert (x - x).constant_value == 0.0


def test_polynomial_equality_ignores_term_order():
    x, y = Polynomial.variable("x"), Polynomial.variable("y")
    assert x + y == y + x
    assert hash(x * y) == hash(y * x)


def test_polynomial_division_by_zero():
    with pytest.raises(ZeroDivisionError):
        Polynomial.variable("x") / 0


def test_substitute_is_simultaneous():
    x, y = Polynomial.variable("x"), Polynomial.variable("y")
    p = 2 * x + 3 * y
    assert p.substitute({"x": y, "y": x}) == 2 * y + 3 * x
    assert p.substitute({"x": Polynomial.constant(1.0)}) == 3 * y + 2


def test_as_variable():
    assert Polynomial.variable("x").as_variable() == "x"
    assert (2 * Polynomial.variable("x")).as_variable() is None
    assert Polynomial.constant(1.0).as_variable() is None


def test_evaluate():
    p = to_polynomial(parse_expr("x * y + 2"))
    assert p.evaluate({"x": 2.0, "y": 3.0}) == pytest.approx(8.0)
    values = p.evaluate({"x": torch.tensor([1.0, 2.0]), "y": torch.tensor([1.0, 1.0])})
    assert torch.allclose(values, torch.tensor([3.0, 4.0]))
    with pytest.raises(KeyError):
        p.evaluate({"x": 1.0})


def test_parse_expr_tree():
    assert parse_expr("x") == Var("x")
    assert parse_expr("x'") == Var("x'")
    assert parse_expr("1.5") == Const(1.5)
    assert parse_expr("x + 1") == Sum((Var("x"), Const(1.0)))
    assert parse_expr("2 * x") == Prod((Const(2.0), Var("x")))


@pytest.mark.parametrize("text, expected", [
    ("x + 2 * (y - 1)", {("x",): 1.0, ("y",): 2.0, (): -2.0}),
    ("-x / 4", {("x",): -0.25}),
    ("(x + 1) * (x + 1)", {("x", "x"): 1.0, ("x",): 2.0, (): 1.0}),
    ("1e2 - .5", {(): 99.5}),
])
def test_parse_expr_polynomial(text, expected):
    assert to_polynomial(parse_expr(text)) == Polynomial(expected)


@pytest.mark.parametrize("text", ["x +", "(x", "x / y", "1 / 0", "x $ 2", "x y"])
def test_parse_expr_malformed(text):
    with pytest.raises(ValueError):
        parse_expr(text)


def test_to_polynomial_rejects_foreign_objects():
    with pytest.raises(TypeError):
        to_polynomial("x")
