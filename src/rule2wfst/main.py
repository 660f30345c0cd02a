from __future__ import annotations

import json
import logging
from pathlib import Path

import pynini
import typer
from pydantic import ValidationError

from ._version import __version__
from .config import CompileOptions, format_validation_error, load_options
from .fst_utils import CompileError, minimize_fst, write_att
from .linear import compile_linear
from .macros import MacroRedefinitionError
from .regex_ast import Script
from .rewrite import RuleShapeError
from .ruleparse import RuleSyntaxError, load_script
from .symbols import load_symbol_table, write_symbol_table
from .union_builder import compile_union
from .validator import DEFAULT_PAIRS, FormValidator, load_form_pairs

app = typer.Typer(add_completion=False)

RULE_SUFFIXES = {".rules", ".txt"}


@app.callback()
def cli(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log compile and validation details.",
    ),
) -> None:
    """rule2wfst command line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    """Print the rule2wfst version."""
    typer.echo(__version__)


def _load_options(path: Path | None) -> CompileOptions:
    try:
        return load_options(path)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(
            f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})"
        ) from exc
    except ValidationError as exc:
        raise typer.BadParameter(format_validation_error(exc)) from exc


def _expand_rule_paths(paths: list[Path]) -> list[Path]:
    expanded: list[Path] = []
    for path in paths:
        if path.is_dir():
            found = sorted(
                child
                for child in path.iterdir()
                if child.is_file() and child.suffix.lower() in RULE_SUFFIXES
            )
            if not found:
                raise typer.BadParameter(f"No rule files found in {path}.")
            expanded.extend(found)
        else:
            expanded.append(path)
    return expanded


def _load_scripts(paths: list[Path]) -> list[Script]:
    scripts: list[Script] = []
    for path in paths:
        try:
            scripts.append(load_script(path))
        except RuleSyntaxError as exc:
            raise typer.BadParameter(f"{path}: {exc}") from exc
    return scripts


def _read_fst(path: Path) -> pynini.Fst:
    try:
        return pynini.Fst.read(str(path))
    except pynini.FstIOError as exc:
        raise typer.BadParameter(f"Cannot read FST from {path}.") from exc


@app.command("compile")
def compile_rules(
    rules: list[Path] = typer.Argument(
        ...,
        exists=True,
        readable=True,
        help="Rule files, or directories of *.rules / *.txt files.",
    ),
    output: Path = typer.Argument(
        ...,
        dir_okay=False,
        writable=True,
        help="OpenFst binary output path.",
    ),
    symbols_path: Path = typer.Option(
        ...,
        "--symbols",
        "-s",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Symbol file with one symbol per line.",
    ),
    linear: bool = typer.Option(
        False,
        "--linear",
        help="Fold a single script by union and context composition.",
    ),
    att: Path | None = typer.Option(
        None,
        "--att",
        dir_okay=False,
        writable=True,
        help="Also write an AT&T text rendering (and a .sym table).",
    ),
    no_min: bool = typer.Option(
        False,
        "--no-min",
        help="Skip the final minimization.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSON file with compile options.",
    ),
    progress: bool = typer.Option(
        False,
        "--progress",
        help="Show progress bars.",
    ),
) -> None:
    """Compile rule files into a single weighted transducer.

    Without --linear every file is compiled as a cascade of its rules and
    the files are unioned with cost padding.
    """
    options = _load_options(config)
    symbols = load_symbol_table(symbols_path, boundary=options.boundary)
    rule_paths = _expand_rule_paths(rules)
    scripts = _load_scripts(rule_paths)

    if linear and len(scripts) != 1:
        raise typer.BadParameter("--linear expects exactly one rule file.")

    try:
        if linear:
            machine = compile_linear(
                symbols, scripts[0], options, show_progress=progress
            )
        else:
            machine = compile_union(
                symbols, scripts, options, show_progress=progress
            )
        if not no_min:
            minimize_fst(machine, delta=options.delta, allow_nondet=True)
    except (CompileError, MacroRedefinitionError, RuleShapeError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    machine.write(str(output))
    if att is not None:
        write_att(machine, att, symbols)
        write_symbol_table(symbols, att.with_suffix(".sym"))
    typer.echo(
        f"Wrote {output} ({machine.num_states()} states, "
        f"{len(rule_paths)} rule file(s))"
    )


@app.command("check")
def check(
    fst_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Compiled OpenFst binary.",
    ),
    symbols_path: Path = typer.Option(
        ...,
        "--symbols",
        "-s",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Symbol file used at compile time.",
    ),
    tests: Path | None = typer.Option(
        None,
        "--tests",
        "-t",
        exists=True,
        dir_okay=False,
        readable=True,
        help="CSV file with form and segmentation columns.",
    ),
    intermediate: bool = typer.Option(
        False,
        "--intermediate",
        help="Compare raw outputs without tone-annotation normalization.",
    ),
    log: Path | None = typer.Option(
        None,
        "--log",
        dir_okay=False,
        writable=True,
        help="Append failing pairs to this file.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSON file with the options used at compile time.",
    ),
) -> None:
    """Check a compiled transducer against expected forms."""
    options = _load_options(config)
    symbols = load_symbol_table(symbols_path, boundary=options.boundary)
    machine = _read_fst(fst_path)
    if tests is None:
        pairs = list(DEFAULT_PAIRS)
    else:
        try:
            pairs = load_form_pairs(tests)
        except ValidationError as exc:
            raise typer.BadParameter(format_validation_error(exc)) from exc
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc

    log_handle = log.open("a", encoding="utf-8") if log is not None else None
    try:
        validator = FormValidator(
            machine,
            symbols,
            log=log_handle,
            boundary=options.boundary,
            delta=options.delta,
        )
        failed = 0
        for pair in pairs:
            try:
                passed = validator.validate(
                    pair.form, pair.segmentation, intermediate
                )
            except CompileError as exc:
                raise typer.BadParameter(str(exc)) from exc
            status = "OK" if passed else "FAILED"
            typer.echo(f"{status} {pair.form} -> {pair.segmentation}")
            if not passed:
                failed += 1
    finally:
        if log_handle is not None:
            log_handle.close()

    typer.echo(f"{len(pairs) - failed}/{len(pairs)} passed")
    if failed:
        raise typer.Exit(code=1)


@app.command("apply")
def apply_word(
    fst_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Compiled OpenFst binary.",
    ),
    word: str = typer.Argument(..., help="Input form, without boundaries."),
    symbols_path: Path = typer.Option(
        ...,
        "--symbols",
        "-s",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Symbol file used at compile time.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSON file with the options used at compile time.",
    ),
) -> None:
    """Print every output for WORD, cheapest first."""
    options = _load_options(config)
    symbols = load_symbol_table(symbols_path, boundary=options.boundary)
    machine = _read_fst(fst_path)
    validator = FormValidator(
        machine, symbols, boundary=options.boundary, delta=options.delta
    )
    try:
        ranked = validator.rank_outputs(word)
    except CompileError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if not ranked:
        typer.echo("(no output)")
        return
    for cost, output in ranked:
        typer.echo(f"{cost:g}\t{output}")


@app.command("generate")
def generate_samples(
    output_dir: Path = typer.Argument(
        ...,
        dir_okay=True,
        writable=True,
        help="Directory to write sample symbol, rule, and test files.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing sample files.",
    ),
) -> None:
    """Generate sample chars.txt, rules/sample.rules, and tests.csv files."""
    output_dir.mkdir(parents=True, exist_ok=True)

    chars_path = output_dir / "chars.txt"
    rules_path = output_dir / "rules" / "sample.rules"
    tests_path = output_dir / "tests.csv"

    if not force:
        existing = [
            str(path.relative_to(output_dir))
            for path in (chars_path, rules_path, tests_path)
            if path.exists()
        ]
        if existing:
            raise typer.BadParameter(
                "Sample files already exist: " + ", ".join(existing)
            )

    chars_path.write_text(
        "\n".join(["n", "i", "j", "o", "1", "2", "3", "4", "{", "}", ">"])
        + "\n",
        encoding="utf-8",
    )
    rules_path.parent.mkdir(parents=True, exist_ok=True)
    rules_path.write_text(
        "; tone sandhi sample\n"
        "::tone:: = [1234]\n"
        "{::tone::>::tone::>::tone::} -> #3>1>4##14>14# / #[^{}]* _ [^{}]*#\n",
        encoding="utf-8",
    )
    tests_path.write_text(
        "form,segmentation\n"
        "ni{3>1>4}jo14,ni3jo14##3>1>4##14>14\n",
        encoding="utf-8",
    )


def main() -> None:
    app(prog_name="rule2wfst")


if __name__ == "__main__":
    main()
