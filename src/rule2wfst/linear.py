from __future__ import annotations

import logging

import pynini
from tqdm import tqdm

from .config import CompileOptions
from .fst_utils import (
    CompileError,
    minimize_fst,
    optimize_fst,
    sigma_star,
    sort_and_compose,
)
from .macros import MacroTable
from .node_compiler import NodeCompiler
from .regex_ast import (
    Boundary,
    Comment,
    Group,
    Macro,
    MacroDef,
    RuleStatement,
    Script,
)
from .rewrite import assemble_rule

logger = logging.getLogger(__name__)


class NonFunctionalRuleSetError(CompileError):
    pass


def compile_linear(
    symbols: pynini.SymbolTable,
    script: Script,
    options: CompileOptions | None = None,
    *,
    show_progress: bool = False,
) -> pynini.Fst:
    """Fold a script into one relation by union, then anchor it per word.

    Rules are alternatives of each other. The union is determinized as a
    function and then composed with ``max_tone_positions`` boundary-anchored
    prefixes built from the ``segment`` and ``tone`` macros. Words with more
    tone-bearing positions than that are not modeled.
    """
    options = options or CompileOptions()
    macros = MacroTable(options.macro_redefinition)
    base = sigma_star(symbols)
    rule_count = 0

    for statement in tqdm(
        script, desc="rules", disable=not show_progress, leave=False
    ):
        if isinstance(statement, Comment):
            continue
        if isinstance(statement, MacroDef):
            macros.define(statement.name, statement.definition)
            continue
        if isinstance(statement, RuleStatement):
            fragment = assemble_rule(
                symbols,
                macros,
                statement.rule,
                drop_left=True,
                boundary=options.boundary,
            )
            optimize_fst(base)
            base.union(fragment)
            rule_count += 1
    logger.info("Linear compilation: %d rule(s) unioned.", rule_count)

    optimize_fst(base)
    try:
        rules_fst = pynini.determinize(
            base, delta=options.delta, det_type="functional"
        )
    except pynini.FstOpError as exc:
        raise NonFunctionalRuleSetError(
            "Rule set maps some input to more than one output; "
            "functional determinization failed."
        ) from exc

    compiler = NodeCompiler(symbols, macros, boundary=options.boundary)
    segment = Macro(options.segment_macro)
    segment_head = Group((Boundary(), segment))
    tone_segment = Group((Macro(options.tone_macro), segment))

    result = sigma_star(symbols)
    for position in range(options.max_tone_positions):
        lhs = compiler.compile(segment_head)
        for _ in range(position):
            lhs.concat(compiler.compile(tone_segment))
        lhs.concat(rules_fst.copy())
        result = sort_and_compose(result, lhs)
        optimize_fst(result)
        minimize_fst(result, delta=options.delta, allow_nondet=False)
        logger.debug(
            "Context position %d: %d state(s).", position, result.num_states()
        )
    return result
