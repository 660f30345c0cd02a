from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path

from .regex_ast import (
    Boundary,
    Char,
    Class,
    ClassComplement,
    Comment,
    Disjunction,
    Epsilon,
    Group,
    Macro,
    MacroDef,
    Option,
    Plus,
    RegexNode,
    RewriteRule,
    RuleStatement,
    Script,
    Star,
    Statement,
)

_MACRO_DEF = re.compile(r"^::([^:\s]+)::\s*=(.*)$")
_POSTFIX = {"*": Star, "+": Plus, "?": Option}


class RuleSyntaxError(ValueError):
    def __init__(
        self, message: str, *, line: int | None = None, column: int | None = None
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        location = ""
        if line is not None:
            location = f"line {line}"
            if column is not None:
                location += f", column {column}"
            location = f" ({location})"
        super().__init__(f"{message}{location}")


@dataclass(frozen=True)
class _Token:
    kind: str
    value: object
    column: int


def nfd_normalize(text: str) -> str:
    return unicodedata.normalize("NFD", text)


def parse_script(text: str) -> Script:
    """Parse a rule script into an ordered list of statements.

    Each non-blank line is a comment (``; ...``), a macro definition
    (``::name:: = regex``) or a rule (``source -> target / left _ right``).
    """
    statements: Script = []
    for lineno, raw_line in enumerate(nfd_normalize(text).splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        try:
            statements.append(parse_statement(line))
        except RuleSyntaxError as exc:
            raise RuleSyntaxError(
                exc.message, line=lineno, column=exc.column
            ) from exc
    return statements


def load_script(path: Path) -> Script:
    return parse_script(path.read_text(encoding="utf-8-sig"))


def parse_statement(line: str) -> Statement:
    line = line.strip()
    if line.startswith(";"):
        return Comment()
    match = _MACRO_DEF.match(line)
    if match:
        name, body = match.group(1), match.group(2)
        definition = parse_regex(body)
        if isinstance(definition, Epsilon) and not body.strip():
            raise RuleSyntaxError(f"Macro {name!r} has an empty definition.")
        return MacroDef(name=name, definition=definition)
    return RuleStatement(rule=parse_rule(line))


def parse_rule(line: str) -> RewriteRule:
    arrow = _find_unescaped(line, "->")
    if arrow < 0:
        raise RuleSyntaxError("Expected '->' in rule.")
    source_text = line[:arrow]
    rest = line[arrow + 2 :]

    slash = _find_unescaped(rest, "/")
    if slash < 0:
        target_text, context_text = rest, None
    else:
        target_text, context_text = rest[:slash], rest[slash + 1 :]

    left: RegexNode = Epsilon()
    right: RegexNode = Epsilon()
    if context_text is not None:
        underscore = _find_unescaped(context_text, "_")
        if underscore < 0:
            raise RuleSyntaxError("Expected '_' in rule context.")
        left = parse_regex(context_text[:underscore])
        right = parse_regex(context_text[underscore + 1 :])
        if _find_unescaped(context_text[underscore + 1 :], "_") >= 0:
            raise RuleSyntaxError("Rule context has more than one '_'.")

    if not source_text.strip():
        raise RuleSyntaxError("Rule source cannot be empty.")
    return RewriteRule(
        left=left,
        source=parse_regex(source_text),
        right=right,
        target=parse_regex(target_text),
    )


def parse_regex(text: str) -> RegexNode:
    """Parse one side of a rule. Empty text or a lone ``0`` is Epsilon."""
    stripped = text.strip()
    if stripped in {"", "0"}:
        return Epsilon()
    tokens = _tokenize(stripped)
    nodes, idx = _parse_sequence(tokens, 0)
    if idx != len(tokens):
        token = tokens[idx]
        raise RuleSyntaxError(f"Unexpected {token.kind!r}.", column=token.column)
    return Group(tuple(nodes))


def _find_unescaped(text: str, needle: str) -> int:
    idx = 0
    depth = 0
    while idx < len(text):
        ch = text[idx]
        if ch == "\\":
            idx += 2
            continue
        if ch == "[":
            depth += 1
        elif ch == "]" and depth:
            depth -= 1
        elif depth == 0 and text.startswith(needle, idx):
            return idx
        idx += 1
    return -1


def _take_char(text: str, idx: int) -> tuple[str, int]:
    """Read one symbol: a base character plus any combining marks."""
    end = idx + 1
    while end < len(text) and unicodedata.combining(text[end]):
        end += 1
    return text[idx:end], end


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    idx = 0
    while idx < len(text):
        ch = text[idx]
        column = idx + 1
        if ch.isspace():
            idx += 1
        elif ch == "\\":
            if idx + 1 >= len(text):
                raise RuleSyntaxError("Dangling escape.", column=column)
            symbol, idx = _take_char(text, idx + 1)
            tokens.append(_Token("char", symbol, column))
        elif ch == "#":
            tokens.append(_Token("boundary", ch, column))
            idx += 1
        elif ch in "()|":
            tokens.append(_Token(ch, ch, column))
            idx += 1
        elif ch in _POSTFIX:
            tokens.append(_Token("postfix", ch, column))
            idx += 1
        elif ch == "[":
            token, idx = _read_class(text, idx)
            tokens.append(token)
        elif ch == "]":
            raise RuleSyntaxError("Unexpected ']'.", column=column)
        elif text.startswith("::", idx):
            end = text.find("::", idx + 2)
            if end < 0:
                raise RuleSyntaxError("Unclosed macro reference.", column=column)
            name = text[idx + 2 : end]
            if not name or any(c.isspace() for c in name):
                raise RuleSyntaxError(
                    f"Invalid macro name: {name!r}", column=column
                )
            tokens.append(_Token("macro", name, column))
            idx = end + 2
        else:
            symbol, idx = _take_char(text, idx)
            tokens.append(_Token("char", symbol, column))
    return tokens


def _read_class(text: str, start: int) -> tuple[_Token, int]:
    idx = start + 1
    negated = False
    if idx < len(text) and text[idx] == "^":
        negated = True
        idx += 1
    members: set[str] = set()
    while idx < len(text) and text[idx] != "]":
        if text[idx] == "\\":
            if idx + 1 >= len(text):
                raise RuleSyntaxError("Dangling escape.", column=idx + 1)
            symbol, idx = _take_char(text, idx + 1)
        elif text[idx] == "#":
            symbol, idx = "#", idx + 1
        elif text[idx].isspace():
            idx += 1
            continue
        else:
            symbol, idx = _take_char(text, idx)
        members.add(symbol)
    if idx >= len(text):
        raise RuleSyntaxError("Unclosed character class.", column=start + 1)
    kind = "complement" if negated else "class"
    return _Token(kind, frozenset(members), start + 1), idx + 1


def _parse_sequence(
    tokens: list[_Token], start: int
) -> tuple[list[RegexNode], int]:
    nodes: list[RegexNode] = []
    idx = start
    while idx < len(tokens) and tokens[idx].kind not in {")", "|"}:
        token = tokens[idx]
        if token.kind == "postfix":
            if not nodes:
                raise RuleSyntaxError(
                    f"Nothing to repeat before {token.value!r}.",
                    column=token.column,
                )
            nodes[-1] = _POSTFIX[token.value](nodes[-1])
            idx += 1
            continue
        node, idx = _parse_atom(tokens, idx)
        nodes.append(node)
    return nodes, idx


def _parse_atom(tokens: list[_Token], start: int) -> tuple[RegexNode, int]:
    token = tokens[start]
    if token.kind == "char":
        return Char(token.value), start + 1
    if token.kind == "boundary":
        return Boundary(), start + 1
    if token.kind == "class":
        return Class(token.value), start + 1
    if token.kind == "complement":
        return ClassComplement(token.value), start + 1
    if token.kind == "macro":
        return Macro(token.value), start + 1
    if token.kind == "(":
        alternatives: list[Group] = []
        idx = start + 1
        while True:
            nodes, idx = _parse_sequence(tokens, idx)
            alternatives.append(Group(tuple(nodes)))
            if idx >= len(tokens):
                raise RuleSyntaxError("Unclosed group.", column=token.column)
            if tokens[idx].kind == ")":
                break
            idx += 1
        if len(alternatives) == 1:
            return alternatives[0], idx + 1
        return Disjunction(tuple(alternatives)), idx + 1
    raise RuleSyntaxError(f"Unexpected {token.kind!r}.", column=token.column)
