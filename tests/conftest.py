from __future__ import annotations

import matplotlib
import pytest

from sym_dp.diagram import Forest
from sym_dp.parser import parse_problem


matplotlib.use("Agg")


BOOLEAN_PROBLEM = """\
// Reward 1 while b holds, b persists
cvariables ()
min-values ()
max-values ()
bvariables (b)
ivariables ()
ovariables ()
action stay
    b' ([b])
    observation
    reward ([b] ([1]) ([0]))
endaction
discount 0.9
iterations 3
"""


CONTINUOUS_PROBLEM = """\
cvariables (x)
min-values (0)
max-values (10)
bvariables ()
ivariables ()
ovariables ()
action move
    x' ([x + 1])
    observation
    reward ([x > 5] ([1]) ([0]))
endaction
discount 1.0
iterations 2
"""


OBSERVED_PROBLEM = """\
cvariables (x y)
min-values (0 0)
max-values (10 10)
bvariables (b)
ivariables ()
ovariables (o)
action right
    x' ([b] ([x + 2]) ([x + 1]))
    y' ([y])
    b' ([0.8 * b + 0.1])
    observation
    o ([2 * x + 1])
    reward ([x > 5 & y < 3] ([x + y]) ([0]))
endaction
action up
    x' ([x])
    y' ([y + 1])
    b' ([b])
    observation
    o ([x])
    reward ([y > 5] ([1]) ([0]))
endaction
constraint ([x <= 9] ([1]) ([0])) endconstraint
discount 0.9
iterations 2
"""


@pytest.fixture
def forest() -> Forest:
    forest = Forest()
    for var in ("a", "b", "a'", "b'"):
        forest.declare_boolean(var)
    forest.set_bounds("x", 0.0, 10.0)
    forest.set_bounds("y", 0.0, 10.0)
    return forest


@pytest.fixture
def boolean_problem():
    return parse_problem(BOOLEAN_PROBLEM)


@pytest.fixture
def continuous_problem():
    return parse_problem(CONTINUOUS_PROBLEM)


@pytest.fixture
def observed_problem():
    return parse_problem(OBSERVED_PROBLEM)


@pytest.fixture
def problem_file(tmp_path):
    def write(text: str, name: str = "problem.txt"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return write
