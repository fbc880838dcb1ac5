"""Expression-tree nodes handed over by the formula parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Literal:
    value: Any
    kind = "literal"


@dataclass(frozen=True)
class Identifier:
    name: str
    kind = "identifier"


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple[ExprNode, ...] = field(default_factory=tuple)
    kind = "function-call"

    def __post_init__(self) -> None:
        # Accept any sequence from the parser, store a tuple.
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: ExprNode
    kind = "unary"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: ExprNode
    right: ExprNode
    kind = "binary"


ExprNode = Union[Literal, Identifier, FunctionCall, UnaryOp, BinaryOp]
