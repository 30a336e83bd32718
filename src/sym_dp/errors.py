""" Exceptions and warnings raised by :mod:`sym_dp`
"""
from __future__ import annotations

from typing import Optional


class SymDPError(Exception):
    """ Base class of all errors reported by :mod:`sym_dp`"""


class MalformedInputError(SymDPError):
    """ Raised if a problem description misses or misorders a keyword, or has an unparsable literal"""

    def __init__(self, message: str, keyword: Optional[str] = None, line: Optional[int] = None) -> None:
        if line:
            message = f"{message} (line {line})"
        super().__init__(message)
        self.keyword = keyword
        self.line = line


class UnsupportedObservationModelError(SymDPError):
    """ Raised if an observation equation is not affine and invertible in a single state variable"""

    def __init__(self, observation: str, expression: object) -> None:
        super().__init__(
            f"Cannot isolate state from observation '{observation}': "
            f"'{expression}' is not affine in a single state variable."
        )
        self.observation = observation
        self.expression = expression


class MissingActionVariableError(SymDPError):
    """ Raised if an action lacks the transition (or observation) diagram of a variable it is regressed through"""

    def __init__(self, action: str, variable: str) -> None:
        super().__init__(f"Action '{action}' has no diagram for variable '{variable}'.")
        self.action = action
        self.variable = variable


class BranchCountWarning(UserWarning):
    """ Issued if a branch count or case estimate exceeds the representable range and is clamped"""
