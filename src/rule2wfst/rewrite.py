from __future__ import annotations

from collections.abc import Mapping

import pynini

from .fst_utils import (
    input_to_epsilons,
    optimize_fst,
    output_to_epsilons,
    seed_fst,
    sigma_star,
)
from .node_compiler import NodeCompiler
from .regex_ast import ARROW, Epsilon, Group, RegexNode, RewriteRule
from .symbols import BOUNDARY


class RuleShapeError(ValueError):
    pass


def split_source(source: RegexNode) -> Group:
    """Return the underlying part of a rule source.

    With an arrow, the underlying part sits between the opening delimiter
    and the first arrow; without one it is the whole source.
    """
    if not isinstance(source, Group):
        raise RuleShapeError(
            f"Rule source must be a sequence, got {type(source).__name__}."
        )
    if ARROW in source.nodes:
        arrow_idx = source.nodes.index(ARROW)
        return Group(source.nodes[1:arrow_idx])
    return source


def assemble_rule(
    symbols: pynini.SymbolTable,
    macros: Mapping[str, RegexNode],
    rule: RewriteRule,
    *,
    drop_left: bool = False,
    boundary: str = BOUNDARY,
) -> pynini.Fst:
    """Compile one rewrite rule into a single transducer.

    The chain reads: left context, the source consumed without output,
    the underlying form emitted without input, right context, any tail,
    then the target emitted without input. ``drop_left`` leaves the left
    context out so composition order can supply it instead.
    """
    underlying = split_source(rule.source)
    compiler = NodeCompiler(symbols, macros, boundary=boundary)

    def context(node: RegexNode) -> pynini.Fst:
        if isinstance(node, Epsilon):
            return sigma_star(symbols)
        return compiler.compile(node)

    source_fst = output_to_epsilons(compiler.compile(rule.source), symbols)
    underlying_fst = input_to_epsilons(compiler.compile(underlying), symbols)
    target_fst = input_to_epsilons(compiler.compile(rule.target), symbols)

    chain = seed_fst(symbols)
    if not drop_left:
        chain.concat(context(rule.left))
    chain.concat(source_fst)
    chain.concat(underlying_fst)
    chain.concat(context(rule.right))
    chain.concat(sigma_star(symbols))
    chain.concat(target_fst)

    result = seed_fst(symbols)
    result.concat(chain)
    return optimize_fst(result)
