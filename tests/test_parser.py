import pytest

from sym_dp.diagram import Branch
from sym_dp.errors import MalformedInputError
from sym_dp.parser import load_problem, nest, parse_problem, tokenize
from sym_dp.problem import VariableKind

from conftest import BOOLEAN_PROBLEM, CONTINUOUS_PROBLEM, OBSERVED_PROBLEM


def test_tokenize_tracks_lines_and_skips_comments():
    tokens = tokenize("// comment\ncvariables (x)\n# another\nreward ([x + 1])")
    assert tokens == ["cvariables", "(", "x", ")", "reward", "(", "[x + 1]", ")"]
    assert [token.line for token in tokens] == [2, 2, 2, 2, 4, 4, 4, 4]
    assert tokens[-2].is_bracket


def test_nest_groups_parentheses():
    root = nest(tokenize("a (b (c) d) e"))
    assert root == ["a", ["b", ["c"], "d"], "e"]
    assert root[1].line == 1


@pytest.mark.parametrize("text", ["a (b", "a ) b", "a [b", "a ] b"])
def test_unbalanced_input(text):
    with pytest.raises(MalformedInputError):
        nest(tokenize(text))


def test_parse_observed_problem(observed_problem):
    problem = observed_problem
    assert problem.continuous_vars == ["x", "y"]
    assert problem.boolean_vars == ["b"]
    assert problem.observation_vars == ["o"]
    assert problem.variable("x").lower == 0.0 and problem.variable("x").upper == 10.0
    assert problem.variable("b").kind is VariableKind.BOOLEAN
    assert list(problem.actions) == ["right", "up"]
    assert len(problem.constraints) == 1
    assert problem.discount == pytest.approx(0.9)
    assert problem.iterations == 2
    assert problem.forest.bounds["y"] == (0.0, 10.0)

    forest = problem.forest
    right = problem.actions["right"]
    assert set(right.transitions) == {"x'", "y'", "b'"}
    assert forest.evaluate(right.transitions["x'"], {"b": True, "x": 1.0}) == 3.0
    assert forest.evaluate(right.transitions["x'"], {"b": False, "x": 1.0}) == 2.0
    assert forest.evaluate(right.reward, {"x": 6.0, "y": 1.0}) == 7.0
    assert forest.evaluate(right.reward, {"x": 6.0, "y": 4.0}) == 0.0
    assert forest.evaluate(problem.constraints[0], {"x": 9.5}) == 0.0


def test_boolean_transition_is_full_table(observed_problem):
    forest = observed_problem.forest
    cpt = observed_problem.actions["right"].transitions["b'"]
    assert isinstance(forest.node(cpt), Branch)
    assert forest.evaluate(cpt, {"b": True, "b'": True}) == pytest.approx(0.9)
    assert forest.evaluate(cpt, {"b": True, "b'": False}) == pytest.approx(0.1)
    assert forest.evaluate(cpt, {"b": False, "b'": True}) == pytest.approx(0.1)
    assert forest.evaluate(cpt, {"b": False, "b'": False}) == pytest.approx(0.9)


def test_unbounded_values():
    problem = parse_problem(CONTINUOUS_PROBLEM.replace("max-values (10)", "max-values (x)"))
    assert problem.variable("x").upper is None
    assert problem.variable("x").lower == 0.0


@pytest.mark.parametrize("test, values", [
    ("[b]", {True: 1.0, False: 0.0}),
    ("[~b]", {True: 0.0, False: 1.0}),
    ("[!b]", {True: 0.0, False: 1.0}),
    ("[b == 1]", {True: 1.0, False: 0.0}),
    ("[b == 0]", {True: 0.0, False: 1.0}),
    ("[b != 1]", {True: 0.0, False: 1.0}),
])
def test_boolean_tests(test, values):
    problem = parse_problem(BOOLEAN_PROBLEM.replace("reward ([b] ([1]) ([0]))", f"reward ({test} ([1]) ([0]))"))
    reward = problem.actions["stay"].reward
    for value, expected in values.items():
        assert problem.forest.evaluate(reward, {"b": value}) == expected


def test_conjunctive_tests(observed_problem):
    forest = observed_problem.forest
    reward = observed_problem.actions["right"].reward
    assert forest.evaluate(reward, {"x": 4.0, "y": 1.0}) == 0.0
    assert forest.evaluate(reward, {"x": 7.0, "y": 2.0}) == 9.0


def test_load_problem(problem_file):
    problem = load_problem(problem_file(BOOLEAN_PROBLEM))
    assert list(problem.actions) == ["stay"]
    assert "Problem definition:" in problem.describe()
    assert "stay" in repr(problem)


@pytest.mark.parametrize("old, new, keyword", [
    ("min-values (0)", "", "min-values"),
    ("min-values (0)", "min-values (0 1)", "min-values"),
    ("max-values (10)", "max-values (ten)", "max-values"),
    ("discount 1.0", "discount high", "discount"),
    ("discount 1.0", "", "discount"),
    ("iterations 2", "iterations 2.5", "iterations"),
    ("    observation\n", "", "observation"),
    ("    reward ([x > 5] ([1]) ([0]))\n", "", "reward"),
    ("x' ([x + 1])", "z' ([x + 1])", "action"),
    ("x' ([x + 1])", "x' ([x + 1])\n    x' ([x])", "action"),
])
def test_malformed_problems(old, new, keyword):
    with pytest.raises(MalformedInputError) as info:
        parse_problem(CONTINUOUS_PROBLEM.replace(old, new))
    assert info.value.keyword == keyword
    assert info.value.line is None or "line" in str(info.value)


@pytest.mark.parametrize("old, new", [
    ("action move", "// no actions"),
    ("([x + 1])", "([x +])"),
    ("([x + 1])", "([x > 1] ([1]))"),
    ("([x > 5] ([1]) ([0]))", "([x ~ 5] ([1]) ([0]))"),
    ("([x > 5] ([1]) ([0]))", "([x == 5] ([1]) ([0]))"),
    ("iterations 2", "iterations 2\nextra"),
    ("cvariables (x)", "cvariables ((x))"),
])
def test_more_malformed_problems(old, new):
    text = CONTINUOUS_PROBLEM.replace(old, new)
    if old == "action move":
        text = text.replace("    x' ([x + 1])\n    observation\n    reward ([x > 5] ([1]) ([0]))\nendaction\n", "")
    with pytest.raises(MalformedInputError):
        parse_problem(text)


def test_error_names_line():
    text = CONTINUOUS_PROBLEM.replace("discount 1.0", "discount high")
    with pytest.raises(MalformedInputError, match=r"line 12"):
        parse_problem(text)


def test_unknown_observation_variable():
    text = OBSERVED_PROBLEM.replace("    o ([x])", "    p ([x])")
    with pytest.raises(MalformedInputError) as info:
        parse_problem(text)
    assert info.value.keyword == "observation"


@pytest.mark.parametrize("test, expected", [
    ("x > 5", [0.0, 0.0, 1.0]),
    ("x >= 5", [0.0, 1.0, 1.0]),
    ("x < 5", [1.0, 0.0, 0.0]),
    ("x <= 5", [1.0, 1.0, 0.0]),
    ("5 < x", [0.0, 0.0, 1.0]),
    ("5 >= x", [1.0, 1.0, 0.0]),
    ("2 * x >= 10", [0.0, 1.0, 1.0]),
])
def test_comparison_boundaries(test, expected):
    problem = parse_problem(CONTINUOUS_PROBLEM.replace("[x > 5]", f"[{test}]"))
    reward = problem.actions["move"].reward
    assert [problem.forest.evaluate(reward, {"x": value}) for value in (4.5, 5.0, 5.5)] == expected


@pytest.mark.parametrize("test, at_nine", [("x < 9", 0.0), ("x <= 9", 1.0), ("x >= 9", 1.0), ("x > 9", 0.0)])
def test_constraint_at_boundary(test, at_nine):
    problem = parse_problem(CONTINUOUS_PROBLEM.replace("endaction\n", f"endaction\nconstraint ([{test}] ([1]) ([0])) endconstraint\n"))
    assert problem.forest.evaluate(problem.constraints[0], {"x": 9.0}) == at_nine
