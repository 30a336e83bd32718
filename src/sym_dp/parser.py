r"""Problem-file parser

Reads the keyword-delimited problem format::

    cvariables (x y)
    min-values (0 0)
    max-values (10 x)
    bvariables (b)
    ivariables ()
    ovariables (o)
    action move
        x' ([x + 1])
        y' ([y])
        b' ([b])
        observation
        o ([x])
        reward ([x > 5] ([1]) ([0]))
    endaction
    constraint ([x < 9] ([1]) ([0])) endconstraint
    discount 0.9
    iterations 10

A min- or max-value of ``x`` leaves the bound open.
A piecewise diagram is ``([expression])`` or ``([test & ...] (high) (low))``.
For a boolean variable ``b``, the diagram given for ``b'`` is the probability of ``b'`` being true, which the parser turns into the full conditional probability table over ``b'``.
Lines starting with ``//`` or ``#`` are comments.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Union

from sym_dp.diagram import Forest, BoolDecision, Op, parse_expr
from sym_dp.diagram.piecewise import BoolTest, BranchSpec, Comparison, DiagramSpec, LeafSpec, Test, build
from sym_dp.errors import MalformedInputError
from sym_dp.problem import Action, Problem, Variable, VariableKind


_TOKEN = re.compile(r"(?P<bracket>\[[^\[\]]*\])|(?P<paren>[()])|(?P<word>[^\s()\[\]]+)|(?P<stray>[\[\]])")
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_COMPARISON = re.compile(r"(.+?)\s*(>=|<=|==|!=|>|<)\s*(.+)")


class Token(str):
    """ A word or bracketed expression of the input, remembering its line"""
    line: int

    def __new__(cls, text: str, line: int) -> Token:
        token = super().__new__(cls, text)
        token.line = line
        return token

    @property
    def is_bracket(self) -> bool:
        return self.startswith("[") and self.endswith("]")


class Group(list):
    """ A parenthesized group of tokens and nested groups"""

    def __init__(self, line: int) -> None:
        super().__init__()
        self.line = line


Item = Union[Token, Group]


def tokenize(text: str) -> list[Token]:
    tokens = []
    for line_number, line in enumerate(text.splitlines(), 1):
        if line.lstrip().startswith(("//", "#")):
            continue
        for match in _TOKEN.finditer(line):
            if match.lastgroup == "stray":
                raise MalformedInputError(f"Unbalanced bracket '{match.group()}'", line=line_number)
            tokens.append(Token(match.group(), line_number))
    return tokens


def nest(tokens: list[Token]) -> Group:
    root = Group(line=0)
    stack = [root]
    for token in tokens:
        if token == "(":
            group = Group(line=token.line)
            stack[-1].append(group)
            stack.append(group)
        elif token == ")":
            if len(stack) == 1:
                raise MalformedInputError("Unmatched ')'", line=token.line)
            stack.pop()
        else:
            stack[-1].append(token)
    if len(stack) > 1:
        raise MalformedInputError("Unclosed '('", line=stack[-1].line)
    return root


def _line(item: Optional[Item]) -> Optional[int]:
    return None if item is None else item.line


def _describe(item: Optional[Item]) -> str:
    if item is None:
        return "end of input"
    elif isinstance(item, Group):
        return "'( ... )'"
    return f"'{item}'"


class _Reader:

    def __init__(self, items: list[Item]) -> None:
        self._items = items
        self._position = 0

    def peek(self) -> Optional[Item]:
        if self._position < len(self._items):
            return self._items[self._position]
        return None

    def peek_keyword(self, keyword: str) -> bool:
        item = self.peek()
        return isinstance(item, Token) and item.lower() == keyword

    def next(self) -> Optional[Item]:
        item = self.peek()
        self._position += 1
        return item

    def expect_keyword(self, keyword: str, context: str = "") -> Token:
        item = self.next()
        if not isinstance(item, Token) or item.lower() != keyword:
            raise MalformedInputError(
                f"Missing '{keyword}' declaration{context}, found {_describe(item)}",
                keyword=keyword, line=_line(item)
            )
        return item

    def expect_group(self, keyword: str) -> Group:
        item = self.next()
        if not isinstance(item, Group):
            raise MalformedInputError(
                f"Expected '( ... )' after '{keyword}', found {_describe(item)}",
                keyword=keyword, line=_line(item)
            )
        return item

    def expect_token(self, keyword: str) -> Token:
        item = self.next()
        if not isinstance(item, Token):
            raise MalformedInputError(
                f"Expected a value after '{keyword}', found {_describe(item)}",
                keyword=keyword, line=_line(item)
            )
        return item


class ProblemParser:
    """ Parses problem descriptions into :class:`sym_dp.problem.Problem`'s

        Every diagram is built into :attr:`forest`, which is handed over to the parsed problem.
    """
    def __init__(self, forest: Optional[Forest] = None) -> None:
        self.forest = forest if forest is not None else Forest()
        self._state_vars: dict[str, Variable] = {}
        self._observation_vars: set[str] = set()

    def parse(self, text: str) -> Problem:
        """ Parse a problem description

            Raises
            ------
            MalformedInputError
                Raised on a missing or misordered keyword, an unknown or repeated variable, a malformed diagram or an unparsable number;
                the message names the keyword and the line.
        """
        reader = _Reader(nest(tokenize(text)))

        reader.expect_keyword("cvariables")
        cvars = self._names(reader.expect_group("cvariables"), "cvariables")
        reader.expect_keyword("min-values")
        lower = self._bounds(reader.expect_group("min-values"), cvars, "min-values")
        reader.expect_keyword("max-values")
        upper = self._bounds(reader.expect_group("max-values"), cvars, "max-values")
        reader.expect_keyword("bvariables")
        bvars = self._names(reader.expect_group("bvariables"), "bvariables")
        reader.expect_keyword("ivariables")
        ivars = self._names(reader.expect_group("ivariables"), "ivariables")
        reader.expect_keyword("ovariables")
        ovars = self._names(reader.expect_group("ovariables"), "ovariables")

        variables = [Variable(name, VariableKind.CONTINUOUS, low, up) for name, low, up in zip(cvars, lower, upper)]
        variables += [Variable(name, VariableKind.BOOLEAN) for name in bvars]
        variables += [Variable(name, VariableKind.INTERMEDIATE) for name in ivars]
        variables += [Variable(name, VariableKind.OBSERVATION) for name in ovars]
        self._declare(variables)

        actions = []
        while reader.peek_keyword("action"):
            reader.next()
            actions.append(self._action(reader))
        if not actions:
            raise MalformedInputError(
                f"Missing 'action' declaration, found {_describe(reader.peek())}",
                keyword="action", line=_line(reader.peek())
            )

        constraints = []
        while reader.peek_keyword("constraint"):
            reader.next()
            constraints.append(self._diagram(reader.expect_group("constraint")))
            reader.expect_keyword("endconstraint")

        reader.expect_keyword("discount")
        discount = self._number(reader.expect_token("discount"), "discount", float)
        reader.expect_keyword("iterations")
        iterations = self._number(reader.expect_token("iterations"), "iterations", int)

        if (item := reader.peek()) is not None:
            raise MalformedInputError(f"Unexpected {_describe(item)} after 'iterations'", line=_line(item))

        try:
            return Problem(self.forest, variables, actions, constraints, discount, iterations)
        except ValueError as exc:
            raise MalformedInputError(str(exc)) from exc

    def _declare(self, variables: list[Variable]) -> None:
        seen = set()
        for variable in variables:
            if variable.name in seen:
                raise MalformedInputError(f"Variable '{variable.name}' declared twice", keyword=variable.kind.value)
            seen.add(variable.name)

            if variable.kind is VariableKind.OBSERVATION:
                self._observation_vars.add(variable.name)
            else:
                self._state_vars[variable.primed] = variable

            if variable.kind is VariableKind.BOOLEAN:
                self.forest.declare_boolean(variable.name)
                self.forest.declare_boolean(variable.primed)
            elif variable.kind is VariableKind.CONTINUOUS:
                self.forest.set_bounds(variable.name, variable.lower, variable.upper)

    def _action(self, reader: _Reader) -> Action:
        name = reader.expect_token("action")
        action = Action(str(name))
        context = f" for action '{name}'"

        while not reader.peek_keyword("observation"):
            var = reader.next()
            if not isinstance(var, Token) or var.lower() in ("reward", "endaction", "action"):
                raise MalformedInputError(
                    f"Missing 'observation' declaration{context}, found {_describe(var)}",
                    keyword="observation", line=_line(var)
                )
            if var not in self._state_vars:
                raise MalformedInputError(f"Unknown primed state variable '{var}'{context}", keyword="action", line=var.line)
            if var in action.transitions:
                raise MalformedInputError(f"Duplicate transition for '{var}'{context}", keyword="action", line=var.line)
            action.transitions[str(var)] = self._transition(self._state_vars[var], reader.expect_group(var))

        reader.expect_keyword("observation", context)
        while not reader.peek_keyword("reward"):
            var = reader.next()
            if not isinstance(var, Token) or var.lower() in ("endaction", "action"):
                raise MalformedInputError(
                    f"Missing 'reward' declaration{context}, found {_describe(var)}",
                    keyword="reward", line=_line(var)
                )
            if var not in self._observation_vars:
                raise MalformedInputError(f"Unknown observation variable '{var}'{context}", keyword="observation", line=var.line)
            if var in action.observations:
                raise MalformedInputError(f"Duplicate observation model for '{var}'{context}", keyword="observation", line=var.line)
            action.observations[str(var)] = self._diagram(reader.expect_group(var))

        reader.expect_keyword("reward", context)
        action.reward = self._diagram(reader.expect_group("reward"))
        reader.expect_keyword("endaction", context)
        return action

    def _transition(self, variable: Variable, group: Group) -> int:
        diagram = self._diagram(group)
        if variable.kind is not VariableKind.BOOLEAN:
            return diagram

        # P(v' = true) becomes the table ite(v', P, 1 - P)
        return self.forest.ite(
            BoolDecision(variable.primed),
            diagram,
            self.forest.apply(self.forest.one, diagram, Op.MINUS)
        )

    def _diagram(self, group: Group) -> int:
        try:
            return build(self.forest, self._spec(group))
        except ValueError as exc:
            raise MalformedInputError(str(exc), line=group.line) from exc

    def _spec(self, group: Group) -> DiagramSpec:
        if len(group) == 1 and isinstance(group[0], Token) and group[0].is_bracket:
            return LeafSpec(self._expr(group[0]))
        elif (len(group) == 3 and isinstance(group[0], Token) and group[0].is_bracket
              and isinstance(group[1], Group) and isinstance(group[2], Group)):
            return BranchSpec(self._tests(group[0]), self._spec(group[1]), self._spec(group[2]))
        else:
            raise MalformedInputError("Malformed diagram, expected '([expr])' or '([test] (high) (low))'", line=group.line)

    def _expr(self, token: Token):
        try:
            return parse_expr(token[1:-1])
        except ValueError as exc:
            raise MalformedInputError(str(exc), line=token.line) from exc

    def _tests(self, token: Token) -> tuple[Test, ...]:
        tests = []
        for part in token[1:-1].split("&"):
            part = part.strip()
            if (match := _COMPARISON.fullmatch(part)) is not None:
                lhs, op, rhs = match.groups()
                if op in ("==", "!="):
                    tests.append(self._bool_test(lhs.strip(), op, rhs.strip(), token))
                else:
                    try:
                        tests.append(Comparison(parse_expr(lhs), op, parse_expr(rhs)))
                    except ValueError as exc:
                        raise MalformedInputError(str(exc), line=token.line) from exc
            else:
                negated = part.startswith(("~", "!"))
                name = part.lstrip("~!").strip()
                if not self.forest.is_boolean(name):
                    raise MalformedInputError(f"'{part}' is neither a comparison nor a boolean variable", line=token.line)
                tests.append(BoolTest(name, not negated))
        return tuple(tests)

    def _bool_test(self, var: str, op: str, value: str, token: Token) -> BoolTest:
        if not self.forest.is_boolean(var):
            raise MalformedInputError(f"Equality tests are only supported on boolean variables, not '{var}'", line=token.line)
        if value.lower() in ("1", "true"):
            truth = True
        elif value.lower() in ("0", "false"):
            truth = False
        else:
            raise MalformedInputError(f"Boolean variable '{var}' compared to '{value}'", line=token.line)
        return BoolTest(var, truth if op == "==" else not truth)

    @staticmethod
    def _names(group: Group, keyword: str) -> list[str]:
        names = []
        for item in group:
            if not isinstance(item, Token) or not _NAME.fullmatch(item):
                raise MalformedInputError(f"Illegal variable name {_describe(item)} in '{keyword}'", keyword=keyword, line=_line(item) or group.line)
            names.append(str(item))
        return names

    @staticmethod
    def _bounds(group: Group, cvars: list[str], keyword: str) -> list[Optional[float]]:
        if len(group) != len(cvars):
            raise MalformedInputError(
                f"Expected {len(cvars)} entries in '{keyword}', found {len(group)}",
                keyword=keyword, line=group.line
            )
        bounds = []
        for var, item in zip(cvars, group):
            if isinstance(item, Token) and item.strip().lower() == "x":
                bounds.append(None)
            else:
                bounds.append(ProblemParser._number(item, keyword, float, f" for '{var}'"))
        return bounds

    @staticmethod
    def _number(item: Item, keyword: str, kind: type, context: str = ""):
        try:
            if not isinstance(item, Token):
                raise ValueError
            return kind(item)
        except ValueError:
            raise MalformedInputError(
                f"Illegal {keyword} value {_describe(item)}{context}", keyword=keyword, line=_line(item)
            ) from None


def parse_problem(text: str, forest: Optional[Forest] = None) -> Problem:
    """ Parse a problem description (see :class:`ProblemParser`)"""
    return ProblemParser(forest).parse(text)


def load_problem(path: str | Path) -> Problem:
    """ Read and parse the problem file at ``path``"""
    return parse_problem(Path(path).read_text(encoding="utf-8"))
