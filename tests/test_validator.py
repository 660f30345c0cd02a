import io
import logging
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

# Allow tests to run without installing the package.
SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_ROOT))

pytest.importorskip("pynini")

from rule2wfst.fst_utils import CompileError, apply_fst_to_string, decode_paths
from rule2wfst.ruleparse import parse_script
from rule2wfst.symbols import build_symbol_table
from rule2wfst.union_builder import compile_script, compile_union
from rule2wfst.validator import (
    DEFAULT_PAIRS,
    FormPair,
    FormValidator,
    build_normalizer,
    load_form_pairs,
    validate,
)

SANDHI_RULES = """\
::tone:: = [1234]
{::tone::>::tone::>::tone::} -> #3>1>4##14>14# / #[^{}]* _ [^{}]*#
"""
INPUT_FORM = "ni{3>1>4}jo14"
EXPECTED_FORM = "ni3jo14##3>1>4##14>14"


@pytest.fixture(scope="module")
def symbols():
    return build_symbol_table(list("nijo1234{}>"))


@pytest.fixture(scope="module")
def relation(symbols):
    return compile_union(symbols, [parse_script(SANDHI_RULES)])


def test_sample_pair_validates(symbols, relation) -> None:
    assert validate(
        relation, INPUT_FORM, EXPECTED_FORM, is_intermediate=False, symbols=symbols
    )


def test_sample_pair_validates_as_intermediate(symbols, relation) -> None:
    assert validate(
        relation, INPUT_FORM, EXPECTED_FORM, is_intermediate=True, symbols=symbols
    )


def test_validate_uses_relation_symbols(relation) -> None:
    assert validate(relation, INPUT_FORM, EXPECTED_FORM)


def test_failure_is_logged(
    symbols, relation, caplog: pytest.LogCaptureFixture
) -> None:
    sink = io.StringIO()
    validator = FormValidator(relation, symbols, log=sink)
    with caplog.at_level(logging.WARNING, logger="rule2wfst.validator"):
        assert validator.validate(INPUT_FORM, "nijo14") is False
    assert sink.getvalue() == f"{INPUT_FORM} -> nijo14 FAILED\n"
    assert "FAILED" in caplog.text


def test_rank_outputs_keeps_cheapest_distinct_outputs(symbols, relation) -> None:
    ranked = FormValidator(relation, symbols).rank_outputs(INPUT_FORM)
    outputs = [output for _, output in ranked]
    assert len(outputs) == len(set(outputs))
    assert f"#{EXPECTED_FORM}#" in outputs
    assert all(cost == 0.0 for cost, _ in ranked)


def test_unmatched_input_has_no_outputs(symbols, relation) -> None:
    assert FormValidator(relation, symbols).rank_outputs("nijo") == []


def test_run_reports_default_pairs(symbols, relation) -> None:
    report = FormValidator(relation, symbols).run()
    assert report.ok
    assert report.passed == list(DEFAULT_PAIRS)
    assert report.total == 1


def test_run_collects_failures(symbols, relation) -> None:
    pairs = [
        FormPair(form=INPUT_FORM, segmentation=EXPECTED_FORM),
        FormPair(form="nijo", segmentation="nijo"),
    ]
    report = FormValidator(relation, symbols).run(pairs)
    assert not report.ok
    assert [pair.form for pair in report.failed] == ["nijo"]


def _normalized(symbols, text: str) -> set[str]:
    applied = apply_fst_to_string(symbols, build_normalizer(symbols), text)
    return {output for _, output in decode_paths(symbols, applied)}


def test_normalizer_drops_annotation_and_brace(symbols) -> None:
    assert _normalized(symbols, "#ni{3>1>4}jo#") == {
        "#ni{3>1>4}jo#",
        "#ni{3jo#",
        "#ni3>1>4}jo#",
        "#ni3jo#",
    }


def test_normalizer_drops_bare_brace_before_tones(symbols) -> None:
    assert _normalized(symbols, "#ni{14#") == {"#ni{14#", "#ni14#"}


def test_normalizer_keeps_brace_without_tones(symbols) -> None:
    assert _normalized(symbols, "#ni{jo#") == {"#ni{jo#"}


def test_normalizer_passes_plain_forms_through(symbols) -> None:
    assert _normalized(symbols, "#ni3jo#") == {"#ni3jo#"}


def test_bare_brace_is_normalized_before_comparison(symbols) -> None:
    identity = compile_script(symbols, parse_script("::tone:: = [1234]\n"))
    validator = FormValidator(identity, symbols)
    assert validator.validate("ni{14", "ni14") is True
    assert validator.validate("ni{14", "ni14", is_intermediate=True) is False


def test_cheaper_competing_output_fails() -> None:
    symbols = build_symbol_table(list("ax"))
    relation = compile_union(
        symbols,
        [parse_script("a -> x#\n"), parse_script("a -> 0\n" * 3)],
    )
    validator = FormValidator(relation, symbols)
    assert validator.rank_outputs("a") == [(0.0, "#a#"), (20.0, "#a#x#")]
    assert validator.validate("a", "a#x", is_intermediate=True) is False
    assert validator.validate("a", "a", is_intermediate=True) is True


def test_star_target_validates_without_enumeration() -> None:
    symbols = build_symbol_table(list("ax1234{}>"))
    relation = compile_union(symbols, [parse_script("a -> x*\n")])
    assert validate(relation, "a", "a", symbols=symbols)
    assert validate(relation, "a", "a", is_intermediate=True, symbols=symbols)
    assert not validate(relation, "a", "ax", symbols=symbols)
    with pytest.raises(CompileError):
        FormValidator(relation, symbols).rank_outputs("a")


def test_load_form_pairs_skips_unsegmented_rows(tmp_path: Path) -> None:
    path = tmp_path / "tests.csv"
    path.write_text(
        "form,segmentation,gloss\n"
        f"{INPUT_FORM},{EXPECTED_FORM},sample\n"
        "nijo,,skipped\n",
        encoding="utf-8",
    )
    pairs = load_form_pairs(path)
    assert pairs == [FormPair(form=INPUT_FORM, segmentation=EXPECTED_FORM)]


def test_load_form_pairs_requires_columns(tmp_path: Path) -> None:
    path = tmp_path / "tests.csv"
    path.write_text("form,output\nnijo,nijo\n", encoding="utf-8")
    with pytest.raises(ValueError, match="segmentation"):
        load_form_pairs(path)


def test_form_pair_rejects_empty_form() -> None:
    with pytest.raises(ValidationError):
        FormPair(form=" ", segmentation="nijo")
