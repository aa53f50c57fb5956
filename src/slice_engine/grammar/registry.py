"""Name-keyed grammar registry, populated when it is constructed."""

from __future__ import annotations

from collections.abc import Iterable

from slice_engine.grammar.base import Grammar, UnsupportedGrammarError
from slice_engine.grammar.builtin import default_grammars


class GrammarRegistry:
    """Registry for SQL grammars.

    Instances are independent; pass one explicitly to whatever renders SQL.
    """

    def __init__(self, grammars: Iterable[Grammar] | None = None) -> None:
        self._grammars: dict[str, Grammar] = {}
        for grammar in default_grammars() if grammars is None else grammars:
            self.register(grammar)

    def register(self, grammar: Grammar) -> Grammar:
        self._grammars[grammar.name] = grammar
        return grammar

    def get(self, name: str) -> Grammar:
        if name not in self._grammars:
            raise UnsupportedGrammarError(name, available=self.available())
        return self._grammars[name]

    def available(self) -> list[str]:
        return sorted(self._grammars)

    def __contains__(self, name: object) -> bool:
        return name in self._grammars
