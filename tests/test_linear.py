import logging
import sys
from pathlib import Path

import pytest

# Allow tests to run without installing the package.
SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_ROOT))

pynini = pytest.importorskip("pynini")

from rule2wfst.config import CompileOptions
from rule2wfst.fst_utils import apply_fst_to_string, decode_paths
from rule2wfst.linear import NonFunctionalRuleSetError, compile_linear
from rule2wfst.macros import MacroRedefinitionError
from rule2wfst.ruleparse import parse_script
from rule2wfst.symbols import build_symbol_table

SCRIPT = """\
; segments and tones only
::tone:: = [1234]
::segment:: = [nijo]
"""


@pytest.fixture
def symbols():
    return build_symbol_table(list("nijo1234"))


def _accepted(symbols, machine, text: str) -> set[str]:
    applied = apply_fst_to_string(symbols, machine, text)
    return {output for _, output in decode_paths(symbols, applied)}


def test_words_with_all_tone_positions_pass_through(symbols) -> None:
    machine = compile_linear(symbols, parse_script(SCRIPT))
    assert _accepted(symbols, machine, "#n1i2j3o#") == {"#n1i2j3o#"}
    assert _accepted(symbols, machine, "#n1i2j3o4n#") == {"#n1i2j3o4n#"}


def test_short_words_are_not_modeled(symbols) -> None:
    machine = compile_linear(symbols, parse_script(SCRIPT))
    assert _accepted(symbols, machine, "#n1i#") == set()
    assert _accepted(symbols, machine, "n1i2j3o") == set()


def test_tone_positions_are_configurable(symbols) -> None:
    options = CompileOptions(max_tone_positions=1)
    machine = compile_linear(symbols, parse_script(SCRIPT), options)
    assert _accepted(symbols, machine, "#n#") == {"#n#"}
    assert _accepted(symbols, machine, "#n1i#") == {"#n1i#"}
    assert _accepted(symbols, machine, "#1#") == set()


def test_macro_redefinition_policy_applies(symbols) -> None:
    script = parse_script(SCRIPT + "::tone:: = [12]\n")
    with pytest.raises(MacroRedefinitionError):
        compile_linear(
            symbols, script, CompileOptions(macro_redefinition="error")
        )


def test_missing_segment_macro_is_reported(
    symbols, caplog: pytest.LogCaptureFixture
) -> None:
    script = parse_script("::tone:: = [1234]\n")
    with caplog.at_level(logging.WARNING, logger="rule2wfst.node_compiler"):
        machine = compile_linear(
            symbols, script, CompileOptions(max_tone_positions=1)
        )
    assert "'segment' is not defined" in caplog.text
    assert _accepted(symbols, machine, "#") == {"#"}


def test_rule_rewrites_at_modeled_position(symbols) -> None:
    machine = compile_linear(symbols, parse_script(SCRIPT + "1 -> 2 / _ n\n"))
    assert _accepted(symbols, machine, "#n1n2j3o#") == {
        "#n1n2j3o#",
        "#n1n2j3o#2",
    }
    assert _accepted(symbols, machine, "#n2n2j3o#") == {"#n2n2j3o#"}


def test_failed_functional_determinization_is_reported(
    symbols, monkeypatch: pytest.MonkeyPatch
) -> None:
    def fail(*args, **kwargs):
        raise pynini.FstOpError("Operation failed")

    monkeypatch.setattr(pynini, "determinize", fail)
    with pytest.raises(NonFunctionalRuleSetError):
        compile_linear(symbols, parse_script(SCRIPT + "1 -> 2 / _ n\n"))
