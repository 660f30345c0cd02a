from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Iterable, TextIO

import pynini
from pydantic import BaseModel, field_validator

from .fst_utils import (
    apply_fst_to_output_string,
    apply_fst_to_string,
    decode_paths,
    minimize_fst,
    output_to_epsilons,
    shortest_output,
    sigma_star,
    sort_and_compose,
)
from .macros import MacroTable
from .node_compiler import NodeCompiler
from .regex_ast import MacroDef, RuleStatement
from .rewrite import assemble_rule
from .ruleparse import nfd_normalize, parse_regex, parse_script
from .symbols import BOUNDARY

logger = logging.getLogger(__name__)

# Deletes a bracketed tone annotation that follows an opening brace and a
# (possibly empty) tone run. A source led by the arrow is deleted whole.
NORMALIZATION_RULES = """\
::tone:: = [1234]
::any:: = ([^]|#)
>[1234>]*} -> 0 / ::any::*{::tone::* _
"""

# An opening brace directly before a tone run. A source without an arrow
# is kept by the rule language, so this deletion is built from its parts.
BRACE_MARKER = "{"
BRACE_CONTEXT = "::tone::+"

DEFAULT_DELTA = 1e-7


class FormPair(BaseModel):
    form: str
    segmentation: str

    @field_validator("form", "segmentation")
    @classmethod
    def _normalize(cls, value: str) -> str:
        value = nfd_normalize(value.strip())
        if not value:
            raise ValueError("Form cannot be empty.")
        return value


DEFAULT_PAIRS = (
    FormPair(form="ni{3>1>4}jo14", segmentation="ni3jo14##3>1>4##14>14"),
)


@dataclass
class ValidationReport:
    passed: list[FormPair] = field(default_factory=list)
    failed: list[FormPair] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.passed) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed


def load_form_pairs(path: Path) -> list[FormPair]:
    """Read ``form``/``segmentation`` pairs from a CSV file.

    Rows without a segmentation are skipped.
    """
    text = path.read_text(encoding="utf-8-sig")
    reader = csv.DictReader(text.splitlines())
    columns = set(reader.fieldnames or [])
    missing = {"form", "segmentation"} - columns
    if missing:
        raise ValueError(
            f"Test file is missing column(s): {', '.join(sorted(missing))}"
        )
    pairs: list[FormPair] = []
    for row in reader:
        segmentation = (row.get("segmentation") or "").strip()
        if not segmentation:
            continue
        pairs.append(
            FormPair(form=row.get("form") or "", segmentation=segmentation)
        )
    return pairs


def build_normalizer(
    symbols: pynini.SymbolTable, *, boundary: str = BOUNDARY
) -> pynini.Fst:
    """Annotation deletion, then brace deletion, each applied optionally.

    Each stage is identity union one or more deletions, so forms without
    annotations pass through unchanged.
    """
    macros = MacroTable()
    deletions: pynini.Fst | None = None
    for statement in parse_script(NORMALIZATION_RULES):
        if isinstance(statement, MacroDef):
            macros.define(statement.name, statement.definition)
        elif isinstance(statement, RuleStatement):
            rule_fst = assemble_rule(
                symbols, macros, statement.rule, boundary=boundary
            )
            if deletions is None:
                deletions = rule_fst
            else:
                deletions.union(rule_fst)

    compiler = NodeCompiler(symbols, macros, boundary=boundary)
    brace = sigma_star(symbols)
    brace.concat(
        output_to_epsilons(compiler.compile(parse_regex(BRACE_MARKER)), symbols)
    )
    brace.concat(compiler.compile(parse_regex(BRACE_CONTEXT)))
    brace.concat(sigma_star(symbols))

    normalizer = _optional(symbols, brace)
    if deletions is not None:
        normalizer = sort_and_compose(_optional(symbols, deletions), normalizer)
    return normalizer


def _optional(symbols: pynini.SymbolTable, rewrite: pynini.Fst) -> pynini.Fst:
    machine = sigma_star(symbols)
    machine.union(rewrite.closure(1))
    return machine


class FormValidator:
    """Check a compiled relation against expected forms.

    Both forms are wrapped in boundary markers. A pair passes when the
    expected form is among the cheapest outputs of the relation; ties at
    the lowest weight all count. Failures are logged and, when ``log`` is
    given, written to it one per line.
    """

    def __init__(
        self,
        relation: pynini.Fst,
        symbols: pynini.SymbolTable,
        *,
        log: TextIO | None = None,
        boundary: str = BOUNDARY,
        delta: float = DEFAULT_DELTA,
    ) -> None:
        self.relation = relation
        self.symbols = symbols
        self.log = log
        self.boundary = boundary
        self.delta = delta

    @cached_property
    def normalizer(self) -> pynini.Fst:
        return build_normalizer(self.symbols, boundary=self.boundary)

    def _wrap(self, form: str) -> str:
        return f"{self.boundary}{nfd_normalize(form)}{self.boundary}"

    def _reduce(self, machine: pynini.Fst) -> pynini.Fst:
        machine.rmepsilon()
        return minimize_fst(machine, delta=self.delta, allow_nondet=True)

    def _apply(self, input_form: str) -> pynini.Fst:
        return self._reduce(
            apply_fst_to_string(self.symbols, self.relation, self._wrap(input_form))
        )

    def _candidates(self, input_form: str, is_intermediate: bool) -> pynini.Fst:
        applied = self._apply(input_form)
        if is_intermediate:
            return applied
        return self._reduce(sort_and_compose(applied, self.normalizer.copy()))

    def rank_outputs(
        self, input_form: str, is_intermediate: bool = True
    ) -> list[tuple[float, str]]:
        """Distinct outputs for ``input_form``, cheapest first.

        Raises ``CompileError`` when the outputs are infinitely many.
        """
        candidates = self._candidates(input_form, is_intermediate)
        return _rank(decode_paths(self.symbols, candidates))

    def validate(
        self,
        input_form: str,
        expected_form: str,
        is_intermediate: bool = False,
    ) -> bool:
        candidates = self._candidates(input_form, is_intermediate)
        expected = self._wrap(expected_form)
        best = shortest_output(self.symbols, candidates)
        if best is None:
            logger.info("%s: no output", input_form)
            passed = False
        else:
            logger.info("%s: best output %s at %g", input_form, best[1], best[0])
            restricted = apply_fst_to_output_string(
                self.symbols, candidates, expected
            )
            match = shortest_output(self.symbols, restricted)
            passed = match is not None and match[0] - best[0] <= self.delta
        if not passed:
            self._record_failure(input_form, expected_form)
        return passed

    def run(
        self,
        pairs: Iterable[FormPair] = DEFAULT_PAIRS,
        is_intermediate: bool = False,
    ) -> ValidationReport:
        report = ValidationReport()
        for pair in pairs:
            if self.validate(pair.form, pair.segmentation, is_intermediate):
                report.passed.append(pair)
            else:
                report.failed.append(pair)
        logger.info("%d/%d test(s) passed.", len(report.passed), report.total)
        return report

    def _record_failure(self, input_form: str, expected_form: str) -> None:
        line = f"{input_form} -> {expected_form} FAILED"
        logger.warning(line)
        if self.log is not None:
            self.log.write(line + "\n")


def _rank(paths: list[tuple[float, str]]) -> list[tuple[float, str]]:
    best: dict[str, float] = {}
    for cost, output in paths:
        if output not in best or cost < best[output]:
            best[output] = cost
    return sorted(
        ((cost, output) for output, cost in best.items()),
        key=lambda item: (item[0], item[1]),
    )


def validate(
    relation: pynini.Fst,
    input_form: str,
    expected_form: str,
    is_intermediate: bool = False,
    *,
    symbols: pynini.SymbolTable | None = None,
    log: TextIO | None = None,
    boundary: str = BOUNDARY,
) -> bool:
    """One-shot check of ``input_form`` against ``expected_form``.

    Uses the relation's own input symbol table unless ``symbols`` is given.
    """
    if symbols is None:
        own = relation.input_symbols()
        if own is None:
            raise ValueError("Relation has no symbol table; pass symbols.")
        symbols = own.copy()
    return FormValidator(
        relation, symbols, log=log, boundary=boundary
    ).validate(input_form, expected_form, is_intermediate)
