"""Thin helpers over the pynini (OpenFst) automaton algebra.

All automata use the tropical semiring and share one symbol table.
``optimize_fst`` and ``minimize_fst`` work in place and return their
argument. The other helpers never change the language of an automaton
they are given, though composition arc-sorts its operands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pynini

from .symbols import (
    EPSILON_LABEL,
    EPSILON_SYMBOL,
    detokenize,
    iter_symbols,
    tokenize,
)

WEIGHT_TYPE = "tropical"


class CompileError(RuntimeError):
    pass


def one() -> pynini.Weight:
    return pynini.Weight.one(WEIGHT_TYPE)


def zero() -> pynini.Weight:
    return pynini.Weight.zero(WEIGHT_TYPE)


def weight(value: float) -> pynini.Weight:
    return pynini.Weight(WEIGHT_TYPE, value)


def new_fst(symbols: pynini.SymbolTable) -> pynini.Fst:
    machine = pynini.Fst()
    machine.set_input_symbols(symbols)
    machine.set_output_symbols(symbols)
    return machine


def _two_state(
    symbols: pynini.SymbolTable, labels: Sequence[int], arc_weight: pynini.Weight
) -> pynini.Fst:
    machine = new_fst(symbols)
    start = machine.add_state()
    final = machine.add_state()
    machine.set_start(start)
    machine.set_final(final, one())
    for label in labels:
        machine.add_arc(start, pynini.Arc(label, label, arc_weight, final))
    return machine


def seed_fst(symbols: pynini.SymbolTable) -> pynini.Fst:
    """The epsilon identity: accepts only the empty string at weight one."""
    return _two_state(symbols, [EPSILON_LABEL], one())


def label_fst(symbols: pynini.SymbolTable, label: int) -> pynini.Fst:
    return _two_state(symbols, [label], one())


def class_fst(symbols: pynini.SymbolTable, labels: Sequence[int]) -> pynini.Fst:
    return _two_state(symbols, labels, one())


def filler_fst(symbols: pynini.SymbolTable, cost: float) -> pynini.Fst:
    """Consumes and emits nothing, at a fixed cost."""
    return _two_state(symbols, [EPSILON_LABEL], weight(cost))


def sigma_star(
    symbols: pynini.SymbolTable, cost: float | None = None
) -> pynini.Fst:
    """Identity over every non-epsilon symbol, zero or more times.

    With ``cost`` every consumed symbol adds that weight.
    """
    machine = new_fst(symbols)
    state = machine.add_state()
    machine.set_start(state)
    machine.set_final(state, one())
    arc_weight = one() if cost is None else weight(cost)
    for label, _ in iter_symbols(symbols):
        if label == EPSILON_LABEL:
            continue
        machine.add_arc(state, pynini.Arc(label, label, arc_weight, state))
    return machine


def _epsilon_pairs(symbols: pynini.SymbolTable) -> list[tuple[int, int]]:
    return [
        (label, EPSILON_LABEL)
        for label, _ in iter_symbols(symbols)
        if label != EPSILON_LABEL
    ]


def input_to_epsilons(
    machine: pynini.Fst, symbols: pynini.SymbolTable
) -> pynini.Fst:
    """Copy of ``machine`` that emits its output without consuming input."""
    return machine.copy().relabel_pairs(ipairs=_epsilon_pairs(symbols))


def output_to_epsilons(
    machine: pynini.Fst, symbols: pynini.SymbolTable
) -> pynini.Fst:
    """Copy of ``machine`` that consumes its input and emits nothing."""
    return machine.copy().relabel_pairs(opairs=_epsilon_pairs(symbols))


def linear_acceptor(
    symbols: pynini.SymbolTable, labels: Sequence[int]
) -> pynini.Fst:
    machine = new_fst(symbols)
    state = machine.add_state()
    machine.set_start(state)
    for label in labels:
        next_state = machine.add_state()
        machine.add_arc(state, pynini.Arc(label, label, one(), next_state))
        state = next_state
    machine.set_final(state, one())
    return machine


def string_to_linear_automaton(
    symbols: pynini.SymbolTable, text: str
) -> pynini.Fst:
    return linear_acceptor(symbols, tokenize(symbols, text))


def sort_and_compose(left: pynini.Fst, right: pynini.Fst) -> pynini.Fst:
    """Compose ``left`` with ``right``, arc-sorting both as required."""
    left.arcsort(sort_type="olabel")
    right.arcsort(sort_type="ilabel")
    try:
        return pynini.compose(left, right)
    except pynini.FstOpError as exc:
        raise CompileError(f"Composition failed: {exc}") from exc


def apply_fst_to_string(
    symbols: pynini.SymbolTable, machine: pynini.Fst, text: str
) -> pynini.Fst:
    """Restrict ``machine`` to paths whose input is ``text``."""
    return sort_and_compose(string_to_linear_automaton(symbols, text), machine)


def apply_fst_to_output_string(
    symbols: pynini.SymbolTable, machine: pynini.Fst, text: str
) -> pynini.Fst:
    """Restrict ``machine`` to paths whose output is ``text``."""
    return sort_and_compose(machine, string_to_linear_automaton(symbols, text))


def optimize_fst(machine: pynini.Fst) -> pynini.Fst:
    try:
        return machine.optimize()
    except pynini.FstOpError as exc:
        raise CompileError(f"Optimization failed: {exc}") from exc


def minimize_fst(
    machine: pynini.Fst, *, delta: float, allow_nondet: bool
) -> pynini.Fst:
    try:
        return machine.minimize(delta=delta, allow_nondet=allow_nondet)
    except pynini.FstOpError as exc:
        raise CompileError(f"Minimization failed: {exc}") from exc


def is_empty(machine: pynini.Fst) -> bool:
    return machine.num_states() == 0 or machine.start() == pynini.NO_STATE_ID


def has_epsilon_arcs(machine: pynini.Fst) -> bool:
    for state in machine.states():
        for arc in machine.arcs(state):
            if arc.ilabel == EPSILON_LABEL or arc.olabel == EPSILON_LABEL:
                return True
    return False


def decode_paths(
    symbols: pynini.SymbolTable, machine: pynini.Fst
) -> list[tuple[float, str]]:
    """All accepting paths as ``(weight, output string)`` pairs."""
    if is_empty(machine):
        return []
    try:
        paths = machine.paths(
            input_token_type=symbols, output_token_type=symbols
        )
        items = list(paths.items())
    except (pynini.FstOpError, pynini.FstArgError) as exc:
        raise CompileError(f"Cannot enumerate paths: {exc}") from exc
    return [
        (float(str(path_weight)), _join_tokens(ostring))
        for _, ostring, path_weight in items
    ]


def _join_tokens(text: str) -> str:
    return "".join(token for token in text.split() if token != EPSILON_SYMBOL)


def shortest_output(
    symbols: pynini.SymbolTable, machine: pynini.Fst
) -> tuple[float, str] | None:
    if is_empty(machine):
        return None
    best = pynini.shortestpath(machine)
    paths = decode_paths(symbols, best)
    if not paths:
        return None
    return min(paths, key=lambda item: item[0])


def write_att(
    machine: pynini.Fst, output_path: Path, symbols: pynini.SymbolTable
) -> None:
    """Write ``machine`` as AT&T text with symbol names and weights."""
    lines: list[str] = []
    for state in machine.states():
        for arc in machine.arcs(state):
            isym = detokenize(symbols, [arc.ilabel]) or EPSILON_SYMBOL
            osym = detokenize(symbols, [arc.olabel]) or EPSILON_SYMBOL
            lines.append(
                f"{state} {arc.nextstate} {isym} {osym} {arc.weight}"
            )
    no_weight = zero()
    for state in machine.states():
        final_weight = machine.final(state)
        if final_weight != no_weight:
            lines.append(f"{state} {final_weight}")
    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
