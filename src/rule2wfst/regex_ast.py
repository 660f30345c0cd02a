from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Epsilon:
    pass


@dataclass(frozen=True)
class Char:
    symbol: str


@dataclass(frozen=True)
class Boundary:
    pass


@dataclass(frozen=True)
class Group:
    nodes: tuple[RegexNode, ...] = ()


@dataclass(frozen=True)
class Disjunction:
    nodes: tuple[RegexNode, ...] = ()


@dataclass(frozen=True)
class Class:
    symbols: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ClassComplement:
    symbols: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Star:
    node: RegexNode


@dataclass(frozen=True)
class Plus:
    node: RegexNode


@dataclass(frozen=True)
class Option:
    node: RegexNode


@dataclass(frozen=True)
class Macro:
    name: str


@dataclass(frozen=True)
class Comment:
    pass


RegexNode = Union[
    Epsilon,
    Char,
    Boundary,
    Group,
    Disjunction,
    Class,
    ClassComplement,
    Star,
    Plus,
    Option,
    Macro,
    Comment,
]

# Separates the underlying form from the surface form inside a rule source.
ARROW = Char(">")


@dataclass(frozen=True)
class RewriteRule:
    left: RegexNode
    source: RegexNode
    right: RegexNode
    target: RegexNode


@dataclass(frozen=True)
class MacroDef:
    name: str
    definition: RegexNode


@dataclass(frozen=True)
class RuleStatement:
    rule: RewriteRule


Statement = Union[Comment, MacroDef, RuleStatement]
Script = list[Statement]


def count_rules(script: Script) -> int:
    return sum(1 for statement in script if isinstance(statement, RuleStatement))
