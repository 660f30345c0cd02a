from __future__ import annotations

import logging
from typing import Sequence

import pynini
from tqdm import tqdm

from .config import CompileOptions
from .fst_utils import (
    CompileError,
    filler_fst,
    optimize_fst,
    sigma_star,
    sort_and_compose,
)
from .macros import MacroTable
from .regex_ast import MacroDef, RuleStatement, Script, count_rules
from .rewrite import assemble_rule

logger = logging.getLogger(__name__)


def compile_script(
    symbols: pynini.SymbolTable,
    script: Script,
    options: CompileOptions | None = None,
) -> pynini.Fst:
    """Compile one rule file as a cascade of full-context rules.

    Rules apply in file order, each to the output of the previous one. A
    file without rules is the identity over every symbol.
    """
    options = options or CompileOptions()
    macros = MacroTable(options.macro_redefinition)
    result: pynini.Fst | None = None
    for statement in script:
        if isinstance(statement, MacroDef):
            macros.define(statement.name, statement.definition)
            continue
        if not isinstance(statement, RuleStatement):
            continue
        fragment = assemble_rule(
            symbols,
            macros,
            statement.rule,
            drop_left=False,
            boundary=options.boundary,
        )
        if result is None:
            result = fragment
        else:
            result = optimize_fst(sort_and_compose(result, fragment))
    if result is None:
        return sigma_star(symbols)
    return result


def pad(
    machine: pynini.Fst,
    symbols: pynini.SymbolTable,
    count: int,
    cost: float,
) -> pynini.Fst:
    """Append ``count`` constant-cost epsilon steps to ``machine``."""
    for _ in range(count):
        machine.concat(filler_fst(symbols, cost))
    return machine


def compile_union(
    symbols: pynini.SymbolTable,
    scripts: Sequence[Script],
    options: CompileOptions | None = None,
    *,
    show_progress: bool = False,
) -> pynini.Fst:
    """Union independently compiled rule files into one relation.

    Each file stands for a different number of rule applications. Before a
    file joins the union, whichever side has fewer rules is padded with
    filler steps so every alternative carries the same number of steps.
    """
    options = options or CompileOptions()
    if not scripts:
        raise CompileError("No rule files to compile.")

    accumulator: pynini.Fst | None = None
    level = 0
    if options.identity_weight is not None:
        accumulator = sigma_star(symbols, cost=options.identity_weight)
        level = 1

    for idx, script in enumerate(
        tqdm(scripts, desc="rule files", disable=not show_progress, leave=False)
    ):
        machine = compile_script(symbols, script, options).copy()
        rule_count = count_rules(script)
        logger.debug("Rule file %d: %d rule(s).", idx, rule_count)
        if accumulator is None:
            accumulator = machine
            level = rule_count
            continue
        if rule_count > level:
            pad(accumulator, symbols, rule_count - level, options.filler_weight)
            level = rule_count
        elif rule_count < level:
            pad(machine, symbols, level - rule_count, options.filler_weight)
        accumulator.union(machine)

    logger.info(
        "Unioned %d rule file(s) at padding level %d.", len(scripts), level
    )
    return accumulator.rmepsilon()
