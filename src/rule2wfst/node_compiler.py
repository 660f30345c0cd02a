from __future__ import annotations

import logging
from collections.abc import Mapping

import pynini

from .fst_utils import class_fst, label_fst, one, seed_fst, zero
from .regex_ast import (
    Boundary,
    Char,
    Class,
    ClassComplement,
    Comment,
    Disjunction,
    Epsilon,
    Group,
    Macro,
    Option,
    Plus,
    RegexNode,
    Star,
)
from .symbols import (
    BOUNDARY,
    EPSILON_LABEL,
    EPSILON_SYMBOL,
    boundary_label,
    iter_symbols,
    label_of,
)

logger = logging.getLogger(__name__)


class NodeCompiler:
    """Translate rule-language AST nodes into pynini fragments.

    Compilation never fails on content: a symbol missing from the table
    becomes epsilon, an unknown class member is skipped and an undefined
    (or self-referencing) macro matches the empty string. Each of these
    is logged as a warning.
    """

    def __init__(
        self,
        symbols: pynini.SymbolTable,
        macros: Mapping[str, RegexNode],
        *,
        boundary: str = BOUNDARY,
    ) -> None:
        self.symbols = symbols
        self.macros = macros
        self.boundary = boundary
        self._expanding: list[str] = []

    def compile(self, node: RegexNode) -> pynini.Fst:
        result = seed_fst(self.symbols)
        result.concat(self._fragment(node))
        return result

    def _fragment(self, node: RegexNode) -> pynini.Fst:
        if isinstance(node, (Epsilon, Comment)):
            return seed_fst(self.symbols)
        if isinstance(node, Char):
            return label_fst(self.symbols, self._char_label(node.symbol))
        if isinstance(node, Boundary):
            return label_fst(
                self.symbols, boundary_label(self.symbols, self.boundary)
            )
        if isinstance(node, Group):
            result = seed_fst(self.symbols)
            for child in node.nodes:
                result.concat(self._fragment(child))
            return result
        if isinstance(node, Disjunction):
            return self._disjunction(node)
        if isinstance(node, Class):
            return class_fst(self.symbols, self._class_labels(node.symbols))
        if isinstance(node, ClassComplement):
            return class_fst(self.symbols, self._complement_labels(node.symbols))
        if isinstance(node, Star):
            return self.compile(node.node).closure()
        if isinstance(node, Plus):
            return self.compile(node.node).closure(1)
        if isinstance(node, Option):
            return self._optional(self.compile(node.node))
        if isinstance(node, Macro):
            return self._macro(node.name)
        raise TypeError(f"Unsupported rule node: {node!r}")

    def _char_label(self, symbol: str) -> int:
        label = label_of(self.symbols, symbol)
        if label is None:
            logger.warning(
                "Symbol %r is not in the symbol table; using epsilon.", symbol
            )
            return EPSILON_LABEL
        return label

    def _class_labels(self, members: frozenset[str]) -> list[int]:
        labels: list[int] = []
        for symbol in sorted(members):
            if symbol == self.boundary:
                labels.append(boundary_label(self.symbols, self.boundary))
                continue
            label = label_of(self.symbols, symbol)
            if label is None:
                logger.warning(
                    "Class member %r is not in the symbol table; skipping.",
                    symbol,
                )
                continue
            labels.append(label)
        return labels

    def _complement_labels(self, members: frozenset[str]) -> list[int]:
        excluded = set(members) | {self.boundary, EPSILON_SYMBOL}
        return [
            label
            for label, symbol in iter_symbols(self.symbols)
            if label != EPSILON_LABEL and symbol not in excluded
        ]

    def _disjunction(self, node: Disjunction) -> pynini.Fst:
        if not node.nodes:
            return seed_fst(self.symbols)
        first, *rest = node.nodes
        result = self.compile(first)
        if rest:
            result.union(*(self.compile(child) for child in rest))
        return result

    def _optional(self, body: pynini.Fst) -> pynini.Fst:
        states = list(body.states())
        start = body.start()
        no_weight = zero()
        super_final = body.add_state()
        for state in states:
            final_weight = body.final(state)
            if final_weight == no_weight:
                continue
            body.add_arc(
                state,
                pynini.Arc(EPSILON_LABEL, EPSILON_LABEL, final_weight, super_final),
            )
            body.set_final(state, no_weight)
        body.set_final(super_final, one())
        body.add_arc(
            start, pynini.Arc(EPSILON_LABEL, EPSILON_LABEL, one(), super_final)
        )
        return body

    def _macro(self, name: str) -> pynini.Fst:
        if name not in self.macros:
            logger.warning("Macro %r is not defined; matching nothing.", name)
            return seed_fst(self.symbols)
        if name in self._expanding:
            logger.warning(
                "Macro %r refers to itself; matching nothing.", name
            )
            return seed_fst(self.symbols)
        self._expanding.append(name)
        try:
            return self.compile(self.macros[name])
        finally:
            self._expanding.pop()


def compile_node(
    symbols: pynini.SymbolTable,
    macros: Mapping[str, RegexNode],
    node: RegexNode,
    *,
    boundary: str = BOUNDARY,
) -> pynini.Fst:
    return NodeCompiler(symbols, macros, boundary=boundary).compile(node)
