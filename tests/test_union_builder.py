import sys
from pathlib import Path

import pytest

# Allow tests to run without installing the package.
SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_ROOT))

pytest.importorskip("pynini")

from rule2wfst.config import CompileOptions
from rule2wfst.fst_utils import CompileError, apply_fst_to_string, decode_paths
from rule2wfst.ruleparse import parse_script
from rule2wfst.union_builder import compile_script, compile_union
from rule2wfst.symbols import build_symbol_table

ONE_RULE = "a -> x\n"
THREE_RULES = "a -> y\na -> y\na -> y\n"


@pytest.fixture
def symbols():
    return build_symbol_table(list("abcxyz"))


def _best(symbols, machine, text: str) -> dict[str, float]:
    applied = apply_fst_to_string(symbols, machine, text)
    best: dict[str, float] = {}
    for cost, output in decode_paths(symbols, applied):
        best[output] = min(cost, best.get(output, cost))
    return best


def test_script_without_rules_is_identity(symbols) -> None:
    machine = compile_script(symbols, parse_script("::seg:: = [abc]\n"))
    assert _best(symbols, machine, "#abc#") == {"#abc#": 0.0}


def test_script_rules_apply_in_order(symbols) -> None:
    machine = compile_script(symbols, parse_script("a -> x\nx -> y\n"))
    assert _best(symbols, machine, "#a#") == {"#a#xy": 0.0}


def test_script_uses_its_macros(symbols) -> None:
    machine = compile_script(
        symbols, parse_script("::seg:: = [bc]\na -> x / ::seg:: _\n")
    )
    assert _best(symbols, machine, "ba") == {"bax": 0.0}
    assert _best(symbols, machine, "aa") == {}


def test_shorter_file_is_padded(symbols) -> None:
    machine = compile_union(
        symbols, [parse_script(ONE_RULE), parse_script(THREE_RULES)]
    )
    assert _best(symbols, machine, "#a#") == {"#a#x": 20.0, "#a#yyy": 0.0}


def test_accumulator_is_padded_when_later_file_is_shorter(symbols) -> None:
    machine = compile_union(
        symbols, [parse_script(THREE_RULES), parse_script(ONE_RULE)]
    )
    assert _best(symbols, machine, "#a#") == {"#a#x": 20.0, "#a#yyy": 0.0}


def test_filler_weight_is_configurable(symbols) -> None:
    machine = compile_union(
        symbols,
        [parse_script(ONE_RULE), parse_script(THREE_RULES)],
        CompileOptions(filler_weight=1.5),
    )
    assert _best(symbols, machine, "#a#") == {"#a#x": 3.0, "#a#yyy": 0.0}


def test_identity_weight_seeds_union(symbols) -> None:
    machine = compile_union(
        symbols,
        [parse_script(ONE_RULE)],
        CompileOptions(identity_weight=1.0),
    )
    assert _best(symbols, machine, "#a#") == {"#a#": 3.0, "#a#x": 0.0}


def test_union_result_has_no_epsilons(symbols) -> None:
    machine = compile_union(
        symbols, [parse_script(ONE_RULE), parse_script(THREE_RULES)]
    )
    for state in machine.states():
        for arc in machine.arcs(state):
            assert not (arc.ilabel == 0 and arc.olabel == 0)


def test_empty_file_list(symbols) -> None:
    with pytest.raises(CompileError):
        compile_union(symbols, [])
