from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Literal

from .regex_ast import RegexNode

logger = logging.getLogger(__name__)

RedefinitionPolicy = Literal["keep-first", "error"]


class MacroRedefinitionError(ValueError):
    pass


class MacroTable(Mapping[str, RegexNode]):
    """Macro definitions for one compile pass.

    The first definition of a name wins. A later definition is either
    ignored with a warning (``keep-first``) or rejected (``error``); it
    never replaces the earlier one.
    """

    def __init__(self, policy: RedefinitionPolicy = "keep-first") -> None:
        self.policy = policy
        self._definitions: dict[str, RegexNode] = {}

    def define(self, name: str, definition: RegexNode) -> bool:
        if name not in self._definitions:
            self._definitions[name] = definition
            return True
        if self._definitions[name] == definition:
            return False
        if self.policy == "error":
            raise MacroRedefinitionError(
                f"Macro {name!r} is already defined."
            )
        logger.warning(
            "Macro %r is already defined; keeping the first definition.", name
        )
        return False

    def __getitem__(self, name: str) -> RegexNode:
        return self._definitions[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)
