from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pynini

from .ruleparse import nfd_normalize

logger = logging.getLogger(__name__)

EPSILON_SYMBOL = "<eps>"
EPSILON_LABEL = 0
BOUNDARY = "#"
# Label used for the boundary when the table has no boundary symbol.
DEFAULT_BOUNDARY_LABEL = 1


def build_symbol_table(
    symbols: Iterable[str], *, boundary: str = BOUNDARY
) -> pynini.SymbolTable:
    """Build a table with ``<eps>`` at 0, then ``symbols``, then ``boundary``."""
    table = pynini.SymbolTable()
    table.add_symbol(EPSILON_SYMBOL, EPSILON_LABEL)
    for symbol in symbols:
        if not symbol or symbol == EPSILON_SYMBOL:
            continue
        table.add_symbol(symbol)
    table.add_symbol(boundary)
    return table


def load_symbol_table(path: Path, *, boundary: str = BOUNDARY) -> pynini.SymbolTable:
    text = path.read_text(encoding="utf-8-sig").lower()
    symbols = [nfd_normalize(line.strip()) for line in text.splitlines()]
    return build_symbol_table(
        (symbol for symbol in symbols if symbol), boundary=boundary
    )


def write_symbol_table(symbols: pynini.SymbolTable, path: Path) -> None:
    lines = [f"{symbol} {label}" for label, symbol in symbols]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def iter_symbols(symbols: pynini.SymbolTable) -> list[tuple[int, str]]:
    return [(label, symbol) for label, symbol in symbols]


def label_of(symbols: pynini.SymbolTable, symbol: str) -> int | None:
    if not symbols.member(symbol):
        return None
    return symbols.find(symbol)


def symbol_of(symbols: pynini.SymbolTable, label: int) -> str | None:
    if not symbols.member(label):
        return None
    return symbols.find(label)


def boundary_label(symbols: pynini.SymbolTable, boundary: str = BOUNDARY) -> int:
    label = label_of(symbols, boundary)
    return DEFAULT_BOUNDARY_LABEL if label is None else label


def tokenize(symbols: pynini.SymbolTable, text: str) -> list[int]:
    """Split ``text`` into labels by greedy longest match.

    Characters that start no known symbol map to epsilon and are reported.
    """
    known = {
        symbol: label
        for label, symbol in symbols
        if label != EPSILON_LABEL
    }
    longest = max((len(symbol) for symbol in known), default=1)
    text = nfd_normalize(text)
    labels: list[int] = []
    idx = 0
    while idx < len(text):
        for size in range(min(longest, len(text) - idx), 0, -1):
            piece = text[idx : idx + size]
            if piece in known:
                labels.append(known[piece])
                idx += size
                break
        else:
            logger.warning(
                "Symbol %r is not in the symbol table; using epsilon.",
                text[idx],
            )
            labels.append(EPSILON_LABEL)
            idx += 1
    return labels


def detokenize(symbols: pynini.SymbolTable, labels: Iterable[int]) -> str:
    parts: list[str] = []
    for label in labels:
        if label == EPSILON_LABEL:
            continue
        symbol = symbol_of(symbols, label)
        if symbol is None:
            raise KeyError(f"Label {label} is not in the symbol table.")
        parts.append(symbol)
    return "".join(parts)
